"""
ARCANE compaction.py
Keeps the agent's working history inside the model's context budget.

Token cost is a character-count approximation (chars / 4 by default), not a
real tokenizer. The truncation thresholds below were tuned against that
approximation, so changing the estimator means retuning them too.

When the estimate reaches the budget, tool results between the first message
and the trailing window are replaced by a short "[<n> lines] <preview>..."
form. Nothing else is touched: message count, order, and every non-tool
message survive verbatim.
"""
from __future__ import annotations

import json
import logging
from dataclasses import dataclass, replace
from typing import List

from arcane.messages import Message, Role

logger = logging.getLogger(__name__)

CHARS_PER_TOKEN = 4
DEFAULT_CONTEXT_TOKENS = 80_000
TRUNCATED_RESULT_SIZE = 500


@dataclass(frozen=True)
class CompactionPolicy:
    token_budget: int = DEFAULT_CONTEXT_TOKENS
    trailing_keep: int = 6
    tool_result_truncate_size: int = TRUNCATED_RESULT_SIZE
    chars_per_token: int = CHARS_PER_TOKEN


def estimate_tokens(text: str, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    return len(text) // chars_per_token


def estimate_message_tokens(msg: Message, chars_per_token: int = CHARS_PER_TOKEN) -> int:
    return estimate_tokens(json.dumps(msg.to_api(), ensure_ascii=False), chars_per_token)


def estimate_history_tokens(history: List[Message], chars_per_token: int = CHARS_PER_TOKEN) -> int:
    return sum(estimate_message_tokens(m, chars_per_token) for m in history)


def truncate_tool_result(content: str, size: int = TRUNCATED_RESULT_SIZE) -> str:
    """Shorten a tool result to at most ``size`` characters.

    Content already within ``size`` comes back unchanged, which is what makes
    compaction idempotent: a summary never qualifies for summarizing again.
    """
    if len(content) <= size:
        return content
    header = f"[{len(content.splitlines())} lines] "
    room = max(size - len(header) - 3, 0)
    return f"{header}{content[:room].strip()}..."


def compact(history: List[Message], policy: CompactionPolicy) -> List[Message]:
    if estimate_history_tokens(history, policy.chars_per_token) < policy.token_budget:
        return history

    keep = policy.trailing_keep
    if len(history) <= keep + 1:
        return history

    middle_end = len(history) - keep
    compacted = [history[0]]
    shrunk = 0
    for msg in history[1:middle_end]:
        if msg.role is Role.TOOL and len(msg.content) > policy.tool_result_truncate_size:
            msg = replace(msg, content=truncate_tool_result(msg.content, policy.tool_result_truncate_size))
            shrunk += 1
        compacted.append(msg)
    compacted.extend(history[middle_end:])

    if shrunk:
        logger.debug("Compacted %d tool result(s) in a %d-message history", shrunk, len(history))
    return compacted
