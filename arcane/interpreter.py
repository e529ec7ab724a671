"""
ARCANE interpreter.py
Decides whether a model response asks for tools.

Two routes: the provider's structured tool-call list, and a fallback for
models that write the call as plain text, e.g. ``ls{}`` or
``read{"path": "main.py"}``. The fallback only fires when the whole reply is
exactly one such call.
"""
from __future__ import annotations

import json
import logging
import re
import uuid
from typing import Any, Dict, List, Optional, Tuple

from arcane.messages import Choice, ToolCallRequest
from arcane.tools.sandbox import TOOL_NAMES

logger = logging.getLogger(__name__)

INLINE_TOOL_CALL_RE = re.compile(r"^\s*([a-zA-Z][a-zA-Z0-9_]*)\s*(\{.*\})\s*$", re.DOTALL)


def is_known_tool(name: str) -> bool:
    return name in TOOL_NAMES


def parse_arguments(raw: Any) -> Dict[str, Any]:
    """Decode tool arguments into a dict. Raises ValueError for anything else."""
    if isinstance(raw, dict):
        return raw
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return {}
    if not isinstance(raw, str):
        raise ValueError(f"unsupported argument type {type(raw).__name__}")
    value = json.loads(raw)
    if not isinstance(value, dict):
        raise ValueError("arguments must be a JSON object")
    return value


def parse_inline_tool_call(content: str) -> Optional[Tuple[str, Dict[str, Any]]]:
    content = (content or "").strip()
    if not content:
        return None
    m = INLINE_TOOL_CALL_RE.match(content)
    if not m:
        return None
    name = m.group(1).strip()
    if not is_known_tool(name):
        return None
    try:
        args = json.loads(m.group(2))
    except ValueError:
        return None
    if not isinstance(args, dict):
        return None
    return name, args


def _new_call_id() -> str:
    # Mistral only accepts 9-character alphanumeric tool call ids
    return uuid.uuid4().hex[:9]


def _structured_calls(choice: Choice) -> List[ToolCallRequest]:
    accepted = []
    for raw in choice.tool_calls:
        if not is_known_tool(raw.name):
            logger.warning("Rejected tool call to unknown tool %r", raw.name)
            continue
        try:
            args = parse_arguments(raw.arguments)
        except ValueError as exc:
            logger.warning("Rejected %s call with malformed arguments: %s", raw.name, exc)
            continue
        accepted.append(ToolCallRequest(id=raw.id or _new_call_id(), name=raw.name, arguments=args))
    return accepted


def interpret(choice: Choice) -> Optional[List[ToolCallRequest]]:
    """Return the accepted tool calls for ``choice``, or None when it is final text."""
    if choice.tool_calls:
        accepted = _structured_calls(choice)
        if accepted:
            return accepted

    inline = parse_inline_tool_call(choice.content)
    if inline:
        name, args = inline
        return [ToolCallRequest(id=_new_call_id(), name=name, arguments=args, inline=True)]
    return None
