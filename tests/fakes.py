"""Scripted completion client and response builders for orchestrator tests."""

import json
from typing import List

from arcane.messages import Choice, Completion, RawToolCall


def text_completion(content: str, prompt_tokens: int = 10, completion_tokens: int = 5) -> Completion:
    return Completion(choices=[Choice(content=content, finish_reason="stop")],
                      prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)


def tool_completion(*calls, content: str = "", prompt_tokens: int = 10, completion_tokens: int = 5) -> Completion:
    """Build a response requesting ``calls``, each a (name, args) pair."""
    raw = []
    for i, (name, args) in enumerate(calls):
        arguments = args if isinstance(args, str) else json.dumps(args)
        raw.append(RawToolCall(id=f"call{i:05d}", name=name, arguments=arguments))
    return Completion(choices=[Choice(content=content, tool_calls=raw, finish_reason="tool_calls")],
                      prompt_tokens=prompt_tokens, completion_tokens=completion_tokens)


class ScriptedClient:
    """Replays canned completions in order and records every request.

    With ``repeat_last`` the final response is served forever, which is how
    the iteration-ceiling tests get a model that never stops calling tools.
    """

    def __init__(self, *responses, repeat_last: bool = False):
        self.responses: List = list(responses)
        self.repeat_last = repeat_last
        self.calls: List[dict] = []

    def complete(self, model, messages, tools=None):
        self.calls.append({"model": model, "messages": list(messages), "tools": tools})
        if not self.responses:
            raise AssertionError("ScriptedClient ran out of responses")
        if self.repeat_last and len(self.responses) == 1:
            item = self.responses[0]
        else:
            item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item
