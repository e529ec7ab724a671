from __future__ import annotations
from dataclasses import dataclass, field
from typing import List, Optional

from arcane.messages import Message


@dataclass(frozen=True)
class BaseAgent:
    name: str = "base"
    role: str = "General"
    color: str = "#B39DDB"
    system_prompt: str = ""
    tools: List[str] = field(default_factory=list)

    def build_messages(self, prompt: str, history: List[Message],
                       workdir: Optional[str] = None) -> List[Message]:
        msgs = [Message.system(self.format_system(workdir))]
        msgs.extend(history)
        msgs.append(Message.user(prompt))
        return msgs

    def format_system(self, workdir: Optional[str] = None) -> str:
        base = self.system_prompt.strip()
        return base.replace("{workdir}", workdir) if workdir else base

    def get_tool_schemas(self) -> list:
        if not self.tools:
            return []
        from arcane.tools.sandbox import ALL_SCHEMAS
        m = {s["function"]["name"]: s for s in ALL_SCHEMAS}
        return [m[t] for t in self.tools if t in m]
