"""One-line, human-readable descriptions of finished tool calls. Display only."""
from __future__ import annotations

import os
from typing import Any, Dict

from arcane.tools.sandbox import EMPTY_DIR, NO_MATCHES

BASH_PREVIEW = 30


def _count_lines(result: str) -> int:
    return len(result.splitlines())


def summarize(name: str, arguments: Dict[str, Any], result: str) -> str:
    args = arguments if isinstance(arguments, dict) else {}

    if name == "read":
        return f"READ {os.path.basename(str(args.get('path', '')))} ({_count_lines(result)} lines)"
    if name == "write":
        content = str(args.get("content", ""))
        return f"WRITE {os.path.basename(str(args.get('path', '')))} ({content.count(chr(10)) + 1} lines)"
    if name == "edit":
        base = os.path.basename(str(args.get("path", "")))
        return f"EDIT {base} (failed)" if result.startswith("error") else f"EDIT {base}"
    if name == "glob":
        matches = 0 if result == NO_MATCHES else _count_lines(result)
        return f"GLOB {args.get('pat', '')} ({matches} files)"
    if name == "grep":
        matches = 0 if result == NO_MATCHES else sum(
            1 for line in result.splitlines() if line and not line.startswith("[Results limited")
        )
        return f'GREP "{args.get("pat", "")}" ({matches} matches)'
    if name == "bash":
        cmd = str(args.get("cmd", ""))
        if len(cmd) > BASH_PREVIEW:
            cmd = cmd[:BASH_PREVIEW - 3] + "..."
        return f"BASH {cmd}"
    if name == "ls":
        path = args.get("path") or "."
        entries = 0 if result == EMPTY_DIR else _count_lines(result)
        return f"LS {path} ({entries} entries)"
    return f"{name.upper()} called"
