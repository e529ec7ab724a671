"""
ARCANE config.py
Settings file, model catalog, and the frozen settings the core runs with.
"""
from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, Optional

from arcane.compaction import CompactionPolicy

logger = logging.getLogger(__name__)


def _config_dir() -> Path:
    override = os.environ.get("ARCANE_HOME")
    return Path(override).expanduser() if override else Path.home() / ".arcane"


MODELS: Dict[str, Dict[str, Any]] = {
    "codestral-latest": {
        "name": "Codestral", "provider": "Mistral",
        "context_window": 256_000, "description": "Code-focused, 256k context",
    },
    "devstral-medium-latest": {
        "name": "Devstral Medium", "provider": "Mistral",
        "context_window": 131_072, "description": "Agentic coding model",
    },
    "mistral-large-latest": {
        "name": "Mistral Large", "provider": "Mistral",
        "context_window": 131_072, "description": "Top reasoning model",
    },
    "mistral-medium-latest": {
        "name": "Mistral Medium", "provider": "Mistral",
        "context_window": 131_072, "description": "Balanced speed and quality",
    },
    "mistral-small-latest": {
        "name": "Mistral Small", "provider": "Mistral",
        "context_window": 131_072, "description": "Fast and cheap",
    },
}

DEFAULT_MODEL = "codestral-latest"

DEFAULT_CONFIG: Dict[str, Any] = {
    "version": "1.0.0",
    "created_at": "",
    "api_key": "",
    "server_url": "",
    "model": DEFAULT_MODEL,
    "mode": "chat",
    "temperature": 0.3,
    "max_tokens": 8192,
    "max_iterations": 15,
    "context_tokens": 80_000,
    "trailing_keep_agent": 6,
    "trailing_keep_chat": 10,
    "tool_result_truncate_size": 500,
    "chars_per_token": 4,
    "bash_timeout": 30,
    "event_queue_size": 64,
    "show_token_count": True,
}

_RULES: Dict[str, tuple] = {
    "temperature":               (float, 0.0, 1.5,       None),
    "max_tokens":                (int,   256, 65_536,    None),
    "max_iterations":            (int,   1,   100,       None),
    "context_tokens":            (int,   1_000, 2_000_000, None),
    "trailing_keep_agent":       (int,   1,   100,       None),
    "trailing_keep_chat":        (int,   1,   100,       None),
    "tool_result_truncate_size": (int,   50,  100_000,   None),
    "chars_per_token":           (int,   1,   16,        None),
    "bash_timeout":              (int,   1,   3600,      None),
    "event_queue_size":          (int,   1,   10_000,    None),
    "mode": (str, None, None, ["chat", "agent"]),
}

_BOOL_KEYS = {"show_token_count"}

_API_KEY_ENV = ("ARCANE_API_KEY", "MISTRAL_API_KEY")


class ArcaneConfig:
    def __init__(self, directory: Optional[Path] = None):
        self._dir = Path(directory) if directory else _config_dir()
        self._file = self._dir / "config.json"
        self._data: Dict[str, Any] = {}
        self._load()

    def _load(self):
        if self._file.exists():
            try:
                saved = json.loads(self._file.read_text("utf-8"))
                self._data = {**DEFAULT_CONFIG, **saved}
                return
            except (OSError, ValueError) as exc:
                logger.warning("Ignoring unreadable config %s: %s", self._file, exc)
        self._data = DEFAULT_CONFIG.copy()
        self._data["created_at"] = datetime.now().isoformat()
        self._save()

    def _save(self):
        self._data["_updated_at"] = datetime.now().isoformat()
        try:
            self._dir.mkdir(parents=True, exist_ok=True)
            self._file.write_text(
                json.dumps(self._data, indent=2, ensure_ascii=False), "utf-8"
            )
        except OSError as exc:
            logger.warning("Could not write config %s: %s", self._file, exc)

    def _validate(self, key: str, value: Any) -> Any:
        if key in _BOOL_KEYS:
            if isinstance(value, str):
                return value.lower() in ("true", "1", "yes", "on")
            return bool(value)
        if key not in _RULES:
            return value
        typ, vmin, vmax, allowed = _RULES[key]
        try: value = typ(value)
        except (TypeError, ValueError): raise ValueError(f"'{key}' must be {typ.__name__}")
        if vmin is not None and value < vmin: raise ValueError(f"'{key}' >= {vmin}")
        if vmax is not None and value > vmax: raise ValueError(f"'{key}' <= {vmax}")
        if allowed and value not in allowed:
            raise ValueError(f"'{key}' must be: {', '.join(str(a) for a in allowed)}")
        return value

    def get(self, key: str, default: Any = None) -> Any:
        return self._data.get(key, default)

    def set(self, key: str, value: Any) -> None:
        value = self._validate(key, value)
        self._data[key] = value
        self._save()

    def api_key(self) -> str:
        key = self._data.get("api_key", "")
        if key:
            return key
        for name in _API_KEY_ENV:
            if os.environ.get(name):
                return os.environ[name]
        return ""

    def all(self) -> dict:
        return dict(self._data)

    def reset(self) -> None:
        key = self._data.get("api_key", "")
        self._data = DEFAULT_CONFIG.copy()
        self._data["api_key"] = key
        self._data["created_at"] = datetime.now().isoformat()
        self._save()

    def model_info(self, model: str = None) -> dict:
        m = model or self._data.get("model", DEFAULT_MODEL)
        known = dict(MODELS.get(m, {}))
        override = (self._data.get("model_context") or {}).get(m)
        if override:
            known["context_window"] = override
        return known

    def remember_context_windows(self, windows: Dict[str, int]) -> None:
        """Store context windows learned from the provider's model listing."""
        merged = dict(self._data.get("model_context") or {})
        merged.update({k: int(v) for k, v in windows.items() if v})
        self._data["model_context"] = merged
        self._save()

    def path(self) -> Path:
        return self._file


# ── Settings handed to the core ────────────────────────────────────────────────

@dataclass(frozen=True)
class AgentSettings:
    """Everything one turn needs to know, fixed for the life of the turn."""
    model: str = DEFAULT_MODEL
    max_iterations: int = 15
    agent_compaction: CompactionPolicy = CompactionPolicy(trailing_keep=6)
    chat_compaction: CompactionPolicy = CompactionPolicy(trailing_keep=10)
    bash_timeout: int = 30
    temperature: float = 0.3
    max_tokens: int = 8192

    @classmethod
    def from_config(cls, config: ArcaneConfig, model: str = None) -> "AgentSettings":
        model = model or config.get("model", DEFAULT_MODEL)
        budget = config.model_info(model).get("context_window") or int(config.get("context_tokens"))
        base = CompactionPolicy(
            token_budget=int(budget),
            tool_result_truncate_size=int(config.get("tool_result_truncate_size")),
            chars_per_token=int(config.get("chars_per_token")),
        )
        return cls(
            model=model,
            max_iterations=int(config.get("max_iterations")),
            agent_compaction=replace(base, trailing_keep=int(config.get("trailing_keep_agent"))),
            chat_compaction=replace(base, trailing_keep=int(config.get("trailing_keep_chat"))),
            bash_timeout=int(config.get("bash_timeout")),
            temperature=float(config.get("temperature")),
            max_tokens=int(config.get("max_tokens")),
        )
