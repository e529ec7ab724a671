"""
ARCANE client.py
The remote completion endpoint, seen by the core as one method:
complete(model, messages, tools) -> Completion.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional, Protocol

import requests
from mistralai import Mistral

from arcane.messages import Choice, Completion, Message, RawToolCall

logger = logging.getLogger(__name__)

DEFAULT_SERVER_URL = "https://api.mistral.ai"


class CompletionClient(Protocol):
    def complete(self, model: str, messages: List[Message],
                 tools: Optional[List[dict]] = None) -> Completion: ...


def _text_of(content: Any) -> str:
    """Mistral may return content as a list of chunks; keep only the text."""
    if content is None:
        return ""
    if isinstance(content, str):
        return content
    parts = []
    for chunk in content:
        text = getattr(chunk, "text", None)
        if text is None and isinstance(chunk, dict):
            text = chunk.get("text")
        if text:
            parts.append(text)
    return "".join(parts)


def to_completion(resp: Any) -> Completion:
    """Map a mistralai ChatCompletionResponse onto the provider-neutral types."""
    if resp is None:
        return Completion()
    choices = []
    for c in resp.choices or []:
        msg = c.message
        calls = [
            RawToolCall(id=tc.id, name=tc.function.name, arguments=tc.function.arguments)
            for tc in (getattr(msg, "tool_calls", None) or [])
        ]
        choices.append(Choice(
            content=_text_of(getattr(msg, "content", None)),
            tool_calls=calls,
            finish_reason=str(c.finish_reason) if c.finish_reason is not None else None,
        ))
    usage = getattr(resp, "usage", None)
    return Completion(
        choices=choices,
        prompt_tokens=getattr(usage, "prompt_tokens", 0) or 0,
        completion_tokens=getattr(usage, "completion_tokens", 0) or 0,
    )


class MistralCompletionClient:
    def __init__(self, api_key: str, server_url: str = "",
                 temperature: float = 0.3, max_tokens: int = 8192):
        if not api_key:
            raise RuntimeError(
                "No API key set.\n"
                "  Run:  arcane --setkey YOUR_KEY\n"
                "  Or:   export MISTRAL_API_KEY=YOUR_KEY"
            )
        kwargs: Dict[str, Any] = {"api_key": api_key}
        if server_url:
            kwargs["server_url"] = server_url
        self._client = Mistral(**kwargs)
        self.temperature = temperature
        self.max_tokens = max_tokens

    def complete(self, model: str, messages: List[Message],
                 tools: Optional[List[dict]] = None) -> Completion:
        kwargs: Dict[str, Any] = dict(
            model=model,
            messages=[m.to_api() for m in messages],
            temperature=self.temperature,
            max_tokens=self.max_tokens,
        )
        if tools:
            kwargs["tools"] = tools
            kwargs["tool_choice"] = "auto"
        logger.debug("chat.complete model=%s messages=%d tools=%d",
                     model, len(messages), len(tools or []))
        return to_completion(self._client.chat.complete(**kwargs))


# ── Model catalog ──────────────────────────────────────────────────────────────

def fetch_model_catalog(api_key: str, server_url: str = "", timeout: int = 15) -> Dict[str, int]:
    """Ask the provider for its models and their context windows.

    Understands both Mistral's ``max_context_length`` and the
    ``context_length`` field used by OpenAI-compatible gateways.
    """
    url = (server_url or DEFAULT_SERVER_URL).rstrip("/") + "/v1/models"
    resp = requests.get(url, headers={"Authorization": f"Bearer {api_key}"}, timeout=timeout)
    resp.raise_for_status()
    try:
        data = resp.json().get("data") or []
    except (ValueError, AttributeError) as exc:
        raise RuntimeError(f"Unexpected model listing from {url}") from exc

    windows: Dict[str, int] = {}
    for item in data:
        if not isinstance(item, dict) or not item.get("id"):
            continue
        size = item.get("max_context_length") or item.get("context_length")
        if size:
            windows[item["id"]] = int(size)
    logger.info("Fetched %d model context windows from %s", len(windows), url)
    return windows
