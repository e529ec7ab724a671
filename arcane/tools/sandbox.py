"""
ARCANE tools/sandbox.py
The seven primitives the agent may call: ls, read, write, edit, glob, grep, bash.

Every tool has a hard output limit because its result goes straight back into
the model's context. Failures come back as ToolResult(success=False) and are
rendered as "error: <detail>" text; nothing here raises into the agent loop.
Relative paths resolve against the process working directory.
"""
from __future__ import annotations

import glob as glob_mod
import inspect
import logging
import os
import re
import signal
import subprocess
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

logger = logging.getLogger(__name__)

# ── Limits ─────────────────────────────────────────────────────────────────────

READ_DEFAULT_LIMIT = 200    # lines returned when limit is unset
READ_MAX_LINE_WIDTH = 500   # chars per line before "..."
GREP_MAX_HITS = 30
GREP_MAX_HITS_PER_FILE = 5
GREP_MAX_LINE_LEN = 120
GREP_SKIP_DIRS = {"node_modules", ".git", "vendor", "__pycache__"}
BASH_TIMEOUT = 30           # seconds
BASH_MAX_OUTPUT = 4000      # chars
BASH_KEEP_LINES = 10        # head and tail kept when output is long

EMPTY_DIR = "(empty directory)"
NO_MATCHES = "none"
EMPTY_OUTPUT = "(empty)"
OK = "ok"


@dataclass
class ToolResult:
    success: bool
    output: str = ""
    error: str = ""
    metadata: Dict[str, Any] = field(default_factory=dict)

    def to_api_str(self) -> str:
        if self.success:
            return self.output
        text = f"error: {self.error}"
        return f"{text}\n{self.output}" if self.output else text


# ── File operations ────────────────────────────────────────────────────────────

def ls(path: str = ".") -> ToolResult:
    path = path or "."
    try:
        entries = sorted(os.scandir(path), key=lambda e: e.name)
    except OSError as exc:
        return ToolResult(False, error=str(exc))
    lines = []
    for entry in entries:
        if entry.is_dir():
            lines.append(f"[DIR] {entry.name}/")
        else:
            lines.append(f"[FILE] {entry.name}")
    if not lines:
        return ToolResult(True, output=EMPTY_DIR, metadata={"count": 0})
    return ToolResult(True, output="\n".join(lines), metadata={"count": len(lines)})


def read(path: str, offset: int = 0, limit: int = 0) -> ToolResult:
    try:
        text = Path(path).read_text(encoding="utf-8", errors="replace")
    except OSError as exc:
        return ToolResult(False, error=str(exc))

    lines = text.splitlines()
    total = len(lines)
    start = min(max(int(offset or 0), 0), total)
    limit = int(limit or 0)
    if limit <= 0:
        limit = READ_DEFAULT_LIMIT
    end = min(start + limit, total)

    out = []
    for i, line in enumerate(lines[start:end], start=start + 1):
        if len(line) > READ_MAX_LINE_WIDTH:
            line = line[:READ_MAX_LINE_WIDTH] + "..."
        out.append(f"{i:4d}| {line}\n")

    remaining = total - end
    if remaining > 0:
        out.append(f"\n[... {remaining} more lines. Use offset={end} to continue reading]\n")
    return ToolResult(True, output="".join(out), metadata={"total_lines": total})


def write(path: str, content: str) -> ToolResult:
    try:
        p = Path(path)
        if str(p.parent) not in ("", "."):
            p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(content, encoding="utf-8")
    except OSError as exc:
        return ToolResult(False, error=str(exc))
    return ToolResult(True, output=OK, metadata={"lines": len(content.splitlines())})


def _as_bool(value: Any) -> bool:
    if isinstance(value, str):
        return value.strip().lower() in ("true", "1", "yes", "on")
    return bool(value)


def edit(path: str, old: str, new: str, all: bool = False) -> ToolResult:
    if not old:
        return ToolResult(False, error="old must not be empty")
    all = _as_bool(all)
    p = Path(path)
    try:
        text = p.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        return ToolResult(False, error=f"{path} is not valid UTF-8 text: {exc.reason}")
    except OSError as exc:
        return ToolResult(False, error=str(exc))

    count = text.count(old)
    if count == 0:
        return ToolResult(False, error="old_string not found")
    if count > 1 and not all:
        return ToolResult(False, error=f"old_string appears {count} times, must be unique (use all=true)")

    updated = text.replace(old, new) if all else text.replace(old, new, 1)
    try:
        p.write_text(updated, encoding="utf-8")
    except OSError as exc:
        return ToolResult(False, error=str(exc))
    return ToolResult(True, output=OK, metadata={"replacements": count if all else 1})


def glob(pat: str, path: str = ".") -> ToolResult:
    root = path or "."
    matches = glob_mod.glob(os.path.join(root, pat), recursive=True)

    def _mtime(p: str) -> float:
        try: return os.stat(p).st_mtime
        except OSError: return 0.0

    matches.sort(key=_mtime, reverse=True)
    if not matches:
        return ToolResult(True, output=NO_MATCHES, metadata={"count": 0})
    return ToolResult(True, output="\n".join(matches), metadata={"count": len(matches)})


def _walk_files(root: str):
    if os.path.isfile(root):
        yield root
        return
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames[:] = sorted(d for d in dirnames if d not in GREP_SKIP_DIRS)
        for name in sorted(filenames):
            yield os.path.join(dirpath, name)


def grep(pat: str, path: str = ".") -> ToolResult:
    try:
        compiled = re.compile(pat)
    except re.error as exc:
        return ToolResult(False, error=f"invalid regex: {exc}")

    hits: List[str] = []
    limited = False
    for fpath in _walk_files(path or "."):
        try:
            with open(fpath, encoding="utf-8", errors="replace") as fh:
                lines = fh.read().splitlines()
        except OSError:
            continue
        file_hits = 0
        for lineno, line in enumerate(lines, start=1):
            if not compiled.search(line):
                continue
            match = line.strip()
            if len(match) > GREP_MAX_LINE_LEN:
                match = match[:GREP_MAX_LINE_LEN] + "..."
            hits.append(f"{fpath}:{lineno}:{match}")
            file_hits += 1
            if len(hits) >= GREP_MAX_HITS:
                limited = True
                break
            if file_hits >= GREP_MAX_HITS_PER_FILE:
                limited = True
                break
        if len(hits) >= GREP_MAX_HITS:
            break

    if not hits:
        return ToolResult(True, output=NO_MATCHES, metadata={"matches": 0})
    result = "\n".join(hits)
    if limited:
        result += "\n[Results limited. Use a more specific pattern or path to narrow search]"
    return ToolResult(True, output=result, metadata={"matches": len(hits), "limited": limited})


# ── Shell ──────────────────────────────────────────────────────────────────────

def _clip_output(text: str) -> str:
    if len(text) <= BASH_MAX_OUTPUT:
        return text
    lines = text.split("\n")
    if len(lines) > 2 * BASH_KEEP_LINES:
        head = "\n".join(lines[:BASH_KEEP_LINES])
        tail = "\n".join(lines[-BASH_KEEP_LINES:])
        dropped = len(lines) - 2 * BASH_KEEP_LINES
        return f"{head}\n\n[... {dropped} lines truncated ...]\n\n{tail}"
    return text[:BASH_MAX_OUTPUT] + "\n[... output truncated]"


def _kill_group(proc: subprocess.Popen) -> None:
    try:
        if hasattr(os, "killpg"):
            os.killpg(proc.pid, signal.SIGKILL)
        else:
            proc.kill()
    except ProcessLookupError:
        pass


def bash(cmd: str, timeout: int = BASH_TIMEOUT) -> ToolResult:
    try:
        proc = subprocess.Popen(
            ["sh", "-c", cmd],
            stdout=subprocess.PIPE, stderr=subprocess.STDOUT,
            stdin=subprocess.DEVNULL, start_new_session=True,
        )
    except OSError as exc:
        return ToolResult(False, error=str(exc))

    timed_out = False
    try:
        raw, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        timed_out = True
        _kill_group(proc)
        raw, _ = proc.communicate()
        logger.info("bash timed out after %ss: %s", timeout, cmd[:80])

    output = _clip_output((raw or b"").decode("utf-8", errors="replace").strip())
    meta = {"exit_code": proc.returncode, "timed_out": timed_out}

    if timed_out:
        note = f"[timed out after {timeout}s]"
        if output:
            return ToolResult(True, output=f"{output}\n{note}", metadata=meta)
        return ToolResult(False, error=f"command timed out after {timeout}s", metadata=meta)
    if proc.returncode != 0:
        return ToolResult(False, output=output, error=f"exit status {proc.returncode}", metadata=meta)
    return ToolResult(True, output=output or EMPTY_OUTPUT, metadata=meta)


# ── Schemas ────────────────────────────────────────────────────────────────────

SCHEMA_VERSION = 1

_S = lambda name, desc, props, req=None: {
    "type": "function",
    "function": {
        "name": name, "description": desc,
        "parameters": {"type": "object", "properties": props, "required": req or []},
    },
}

READ_SCHEMA = _S("read",
    "Read file with line numbers (file path, not directory)",
    {"path": {"type": "string"}, "offset": {"type": "integer"}, "limit": {"type": "integer"}},
    ["path"])

WRITE_SCHEMA = _S("write",
    "Write content to file",
    {"path": {"type": "string"}, "content": {"type": "string"}},
    ["path", "content"])

EDIT_SCHEMA = _S("edit",
    "Replace old with new in file (old must be unique unless all=true)",
    {"path": {"type": "string"}, "old": {"type": "string"},
     "new": {"type": "string"}, "all": {"type": "boolean"}},
    ["path", "old", "new"])

GLOB_SCHEMA = _S("glob",
    "Find files by pattern, sorted by mtime",
    {"pat": {"type": "string"}, "path": {"type": "string"}},
    ["pat"])

GREP_SCHEMA = _S("grep",
    "Search files for regex pattern",
    {"pat": {"type": "string"}, "path": {"type": "string"}},
    ["pat"])

BASH_SCHEMA = _S("bash",
    "Run shell command",
    {"cmd": {"type": "string"}},
    ["cmd"])

LS_SCHEMA = _S("ls",
    "List files and directories in a path (defaults to current directory)",
    {"path": {"type": "string"}})

ALL_SCHEMAS = [READ_SCHEMA, WRITE_SCHEMA, EDIT_SCHEMA, GLOB_SCHEMA, GREP_SCHEMA, BASH_SCHEMA, LS_SCHEMA]

TOOL_CALLABLES = {
    "ls":    ls,
    "read":  read,
    "write": write,
    "edit":  edit,
    "glob":  glob,
    "grep":  grep,
    "bash":  bash,
}

TOOL_NAMES = frozenset(TOOL_CALLABLES)


def dispatch(name: str, args: Dict[str, Any], bash_timeout: int = BASH_TIMEOUT) -> ToolResult:
    fn = TOOL_CALLABLES.get(name)
    if fn is None:
        return ToolResult(False, error=f"unknown tool: {name}")
    if not isinstance(args, dict):
        return ToolResult(False, error=f"arguments for {name} must be an object")
    # undeclared keys are ignored
    accepted = inspect.signature(fn).parameters
    dropped = sorted(k for k in args if k not in accepted)
    if dropped:
        logger.debug("Ignoring extra args for %s: %s", name, ", ".join(dropped))
    args = {k: v for k, v in args.items() if k in accepted}
    if name == "bash":
        args["timeout"] = bash_timeout
    try:
        return fn(**args)
    except (TypeError, ValueError) as exc:
        return ToolResult(False, error=f"bad args for {name}: {exc}")
