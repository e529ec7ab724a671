"""
ARCANE messages.py
Conversation records shared by the interpreter, compactor and orchestrator.
"""
from __future__ import annotations

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional


class Role(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass
class ToolCallRequest:
    id: str
    name: str
    arguments: Dict[str, Any] = field(default_factory=dict)
    inline: bool = False   # recognized from plain assistant text

    def arguments_json(self) -> str:
        return json.dumps(self.arguments, ensure_ascii=False)

    def to_api(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": "function",
            "function": {"name": self.name, "arguments": self.arguments_json()},
        }


@dataclass
class Message:
    role: Role
    content: str = ""
    tool_call_id: Optional[str] = None
    tool_calls: List[ToolCallRequest] = field(default_factory=list)
    name: Optional[str] = None

    @classmethod
    def system(cls, content: str) -> "Message":
        return cls(Role.SYSTEM, content)

    @classmethod
    def user(cls, content: str) -> "Message":
        return cls(Role.USER, content)

    @classmethod
    def assistant(cls, content: str = "", tool_calls: List[ToolCallRequest] = None) -> "Message":
        return cls(Role.ASSISTANT, content, tool_calls=list(tool_calls or []))

    @classmethod
    def tool(cls, call: ToolCallRequest, content: str) -> "Message":
        return cls(Role.TOOL, content, tool_call_id=call.id, name=call.name)

    def to_api(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"role": self.role.value, "content": self.content}
        if self.tool_calls:
            payload["tool_calls"] = [tc.to_api() for tc in self.tool_calls]
        if self.tool_call_id is not None:
            payload["tool_call_id"] = self.tool_call_id
        if self.name:
            payload["name"] = self.name
        return payload

    @classmethod
    def from_api(cls, data: Dict[str, Any]) -> "Message":
        calls = []
        for raw in data.get("tool_calls") or []:
            fn = raw.get("function", {})
            args = fn.get("arguments") or {}
            if isinstance(args, str):
                args = json.loads(args) if args.strip() else {}
            calls.append(ToolCallRequest(id=raw.get("id", ""), name=fn.get("name", ""), arguments=args))
        return cls(
            role=Role(data["role"]),
            content=data.get("content") or "",
            tool_call_id=data.get("tool_call_id"),
            tool_calls=calls,
            name=data.get("name"),
        )


@dataclass
class ToolExecutionRecord:
    name: str
    arguments: Dict[str, Any]
    result: str
    ordinal: int


# ── Completion responses ───────────────────────────────────────────────────────

@dataclass
class RawToolCall:
    """A tool call exactly as the provider sent it, arguments not yet decoded."""
    id: Optional[str]
    name: str
    arguments: Any = ""


@dataclass
class Choice:
    content: str = ""
    tool_calls: List[RawToolCall] = field(default_factory=list)
    finish_reason: Optional[str] = None


@dataclass
class Completion:
    choices: List[Choice] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0


def strip_system(history: List[Message]) -> List[Message]:
    return [m for m in history if m.role is not Role.SYSTEM]
