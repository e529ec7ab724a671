"""
ARCANE mentions.py
@file references in user input.

  explain @main.py            -> main.py attached
  diff @"my notes.txt" @a.py  -> quoted paths may contain spaces
"""
from __future__ import annotations

import logging
import os
import re
from pathlib import Path
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

MENTION_RE = re.compile(r'@("([^"]+)"|(\S+))')
MAX_ATTACHED_LINES = 500


def extract_file_mentions(text: str, root: Optional[Path] = None) -> Tuple[str, List[str]]:
    """Split ``text`` into the message without mentions and the mentioned files that exist."""
    base = Path(root) if root else Path.cwd()
    files: List[str] = []
    for m in MENTION_RE.finditer(text):
        name = m.group(2) or m.group(3)
        if name and name not in files and (base / name).is_file():
            files.append(name)

    clean = MENTION_RE.sub("", text)
    clean = re.sub(r"\s+", " ", clean).strip()
    return clean, files


def build_file_context(files: List[str], root: Optional[Path] = None) -> str:
    if not files:
        return ""
    base = Path(root) if root else Path.cwd()
    parts = ["\n\n# Attached Files\n"]
    for name in files:
        try:
            text = (base / name).read_text(encoding="utf-8", errors="replace")
        except OSError as exc:
            logger.warning("Skipping @%s: %s", name, exc)
            continue
        lines = text.split("\n")
        if len(lines) > MAX_ATTACHED_LINES:
            text = "\n".join(lines[:MAX_ATTACHED_LINES])
            text += f"\n\n[... truncated, {len(lines) - MAX_ATTACHED_LINES} more lines]"
        parts.append(f"\n## {name}\n```\n{text}\n```\n")
    return "".join(parts)


# ── Completion ─────────────────────────────────────────────────────────────────

MAX_SUGGESTIONS = 10
SCAN_LIMIT = 20
SKIP_DIRS = {"node_modules", "vendor", "__pycache__"}


def _suggestion_key(base: Path, rel: str):
    return (not (base / rel).is_dir(), rel.count("/"), rel.lower())


def file_suggestions(prefix: str, root: Optional[Path] = None) -> List[str]:
    """Paths to offer after ``@``, directories first, then shallow paths.

    A prefix containing ``/`` lists that directory; anything else searches
    file names under ``root`` for a case-insensitive substring.
    """
    base = Path(root) if root else Path.cwd()
    lower = prefix.lower()
    found: List[str] = []

    if "/" in prefix:
        head, _, tail = prefix.rpartition("/")
        try:
            entries = sorted((base / head).iterdir())
        except OSError:
            return []
        for entry in entries:
            if entry.name.startswith(".") and not tail.startswith("."):
                continue
            if entry.name.lower().startswith(tail.lower()):
                found.append(f"{head}/{entry.name}")
    else:
        for dirpath, dirnames, filenames in os.walk(base):
            dirnames[:] = sorted(d for d in dirnames
                                 if not d.startswith(".") and d not in SKIP_DIRS)
            for name in sorted(filenames):
                if name.startswith(".") and not prefix.startswith("."):
                    continue
                if lower in name.lower():
                    found.append(Path(dirpath, name).relative_to(base).as_posix())
                if len(found) >= SCAN_LIMIT:
                    break
            if len(found) >= SCAN_LIMIT:
                break

    found.sort(key=lambda rel: _suggestion_key(base, rel))
    return found[:MAX_SUGGESTIONS]


def expand_mentions(text: str, root: Optional[Path] = None) -> Tuple[str, List[str]]:
    """Message to send plus the files that were attached to it."""
    clean, files = extract_file_mentions(text, root)
    if not files:
        return text, []
    return clean + build_file_context(files, root), files
