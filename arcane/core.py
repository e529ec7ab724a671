"""
ARCANE core.py
Turn orchestration.

- chat mode: one completion call, no tools
- agent mode: a bounded CALLING -> INTERPRETING -> EXECUTING/FINALIZING loop
- history is compacted before every completion call
- progress goes out through an EventChannel, never by calling into the UI
- a failed or cancelled turn leaves the caller's history untouched
"""
from __future__ import annotations

import functools
import logging
import os
import threading
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Union

from arcane.agents import AGENTS, BaseAgent
from arcane.client import CompletionClient
from arcane.coercion import coerce_final_content
from arcane.compaction import CompactionPolicy, compact, estimate_history_tokens
from arcane.config import AgentSettings
from arcane.events import EventChannel, ToolFinished, ToolStarted, TurnFinished
from arcane.interpreter import interpret
from arcane.messages import (
    Choice, Message, ToolCallRequest, ToolExecutionRecord, strip_system,
)
from arcane.tools.sandbox import ToolResult, dispatch
from arcane.tools.summary import summarize

logger = logging.getLogger(__name__)

TRUNCATION_NOTICE = "\n\n*[Stopped after {n} tool iterations]*"


class Mode(str, Enum):
    CHAT = "chat"
    AGENT = "agent"


class TurnState(Enum):
    CALLING = "calling"
    INTERPRETING = "interpreting"
    EXECUTING = "executing"
    FINALIZING = "finalizing"
    DONE = "done"


# ── Data structures ────────────────────────────────────────────────────────────

@dataclass
class TurnResult:
    text: str
    history: List[Message]
    prompt_tokens: int = 0
    completion_tokens: int = 0
    context_tokens: int = 0
    tool_records: List[ToolExecutionRecord] = field(default_factory=list)
    iterations: int = 0
    error: Optional[str] = None
    cancelled: bool = False

    @property
    def ok(self) -> bool:
        return self.error is None


class TurnAborted(Exception):
    def __init__(self, message: str, cancelled: bool = False):
        super().__init__(message)
        self.cancelled = cancelled


@dataclass
class _TurnContext:
    history: List[Message]
    policy: CompactionPolicy
    tools: Optional[List[dict]] = None
    cancel: Optional[threading.Event] = None
    state: TurnState = TurnState.CALLING
    choice: Optional[Choice] = None
    pending: List[ToolCallRequest] = field(default_factory=list)
    records: List[ToolExecutionRecord] = field(default_factory=list)
    final_text: str = ""
    iteration: int = 0
    prompt_tokens: int = 0
    completion_tokens: int = 0


ToolExecutor = Callable[[str, Dict], ToolResult]


# ── Orchestrator ───────────────────────────────────────────────────────────────

class Orchestrator:
    def __init__(
        self,
        client: CompletionClient,
        settings: AgentSettings = None,
        channel: Optional[EventChannel] = None,
        execute: Optional[ToolExecutor] = None,
        agents: Optional[Dict[str, BaseAgent]] = None,
        tool_schemas: Optional[List[dict]] = None,
        workdir: Optional[str] = None,
    ):
        self.client = client
        self.settings = settings or AgentSettings()
        self.channel = channel
        self._execute = execute
        self.agents = agents or AGENTS
        self.tool_schemas = tool_schemas if tool_schemas is not None else self.agents["agent"].get_tool_schemas()
        self.workdir = workdir

    def _executor(self) -> ToolExecutor:
        if self._execute is not None:
            return self._execute
        return functools.partial(dispatch, bash_timeout=self.settings.bash_timeout)

    def _publish(self, event) -> None:
        if self.channel is not None:
            self.channel.publish(event)

    # ── Public ─────────────────────────────────────────────────────────────────

    def run_turn(
        self,
        prior_history: List[Message],
        user_message: str,
        mode: Mode = Mode.CHAT,
        tools_enabled: Optional[bool] = None,
        cancel: Optional[threading.Event] = None,
    ) -> TurnResult:
        mode = Mode(mode)
        if tools_enabled is None:
            tools_enabled = mode is Mode.AGENT
        agent = self.agents[mode.value]
        workdir = self.workdir or os.getcwd()

        ctx = _TurnContext(
            history=agent.build_messages(user_message, strip_system(prior_history), workdir),
            policy=self.settings.agent_compaction if tools_enabled else self.settings.chat_compaction,
            tools=self.tool_schemas if tools_enabled else None,
            cancel=cancel,
        )
        logger.info("Turn start mode=%s tools=%s prior=%d", mode.value, tools_enabled, len(prior_history))

        try:
            if tools_enabled:
                self._run_agent(ctx)
            else:
                self._run_chat(ctx)
        except TurnAborted as exc:
            logger.warning("Turn aborted after %d call(s): %s", ctx.iteration, exc)
            result = TurnResult(
                text="", history=list(prior_history),
                prompt_tokens=ctx.prompt_tokens, completion_tokens=ctx.completion_tokens,
                tool_records=ctx.records, iterations=ctx.iteration,
                error=str(exc), cancelled=exc.cancelled,
            )
            self._publish(TurnFinished(result))
            return result

        stored = strip_system(ctx.history)
        result = TurnResult(
            text=ctx.final_text,
            history=stored,
            prompt_tokens=ctx.prompt_tokens,
            completion_tokens=ctx.completion_tokens,
            context_tokens=estimate_history_tokens(stored, ctx.policy.chars_per_token),
            tool_records=ctx.records,
            iterations=ctx.iteration,
        )
        logger.info("Turn done: %d call(s), %d tool(s), %d+%d tokens",
                    ctx.iteration, len(ctx.records), ctx.prompt_tokens, ctx.completion_tokens)
        self._publish(TurnFinished(result))
        return result

    # ── Modes ──────────────────────────────────────────────────────────────────

    def _run_chat(self, ctx: _TurnContext) -> None:
        choice = self._call(ctx)
        ctx.final_text = choice.content
        ctx.history.append(Message.assistant(choice.content))

    def _run_agent(self, ctx: _TurnContext) -> None:
        steps = {
            TurnState.CALLING: self._step_calling,
            TurnState.INTERPRETING: self._step_interpreting,
            TurnState.EXECUTING: self._step_executing,
            TurnState.FINALIZING: self._step_finalizing,
        }
        while ctx.state is not TurnState.DONE:
            ctx.state = steps[ctx.state](ctx)

    # ── States ─────────────────────────────────────────────────────────────────

    def _call(self, ctx: _TurnContext) -> Choice:
        self._check_cancel(ctx)
        ctx.history = compact(ctx.history, ctx.policy)
        try:
            completion = self.client.complete(self.settings.model, ctx.history, ctx.tools)
        except Exception as exc:
            logger.error("Completion call failed: %s", exc, exc_info=logger.isEnabledFor(logging.DEBUG))
            raise TurnAborted(str(exc) or type(exc).__name__) from exc
        ctx.iteration += 1
        ctx.prompt_tokens += completion.prompt_tokens
        ctx.completion_tokens += completion.completion_tokens
        if not completion.choices:
            raise TurnAborted("empty response from model")
        return completion.choices[0]

    def _step_calling(self, ctx: _TurnContext) -> TurnState:
        ctx.choice = self._call(ctx)
        return TurnState.INTERPRETING

    def _step_interpreting(self, ctx: _TurnContext) -> TurnState:
        calls = interpret(ctx.choice)
        if calls:
            # text sent alongside a tool call is speculative; keep it out of history
            ctx.history.append(Message.assistant("", calls))
            ctx.pending = calls
            return TurnState.EXECUTING
        ctx.final_text = ctx.choice.content
        ctx.history.append(Message.assistant(ctx.choice.content))
        return TurnState.FINALIZING

    def _step_executing(self, ctx: _TurnContext) -> TurnState:
        execute = self._executor()
        for call in ctx.pending:
            self._check_cancel(ctx)
            self._publish(ToolStarted(call.name, dict(call.arguments)))
            text = self._run_tool(execute, call)
            ctx.history.append(Message.tool(call, text))
            ctx.records.append(ToolExecutionRecord(
                name=call.name, arguments=call.arguments, result=text, ordinal=len(ctx.records) + 1,
            ))
            self._publish(ToolFinished(call.name, text, summarize(call.name, call.arguments, text)))
        ctx.pending = []

        if ctx.iteration >= self.settings.max_iterations:
            logger.warning("Reached %d tool iterations, forcing a final answer", ctx.iteration)
            ctx.final_text = (ctx.choice.content or "") + TRUNCATION_NOTICE.format(n=self.settings.max_iterations)
            ctx.history.append(Message.assistant(ctx.final_text))
            return TurnState.FINALIZING
        return TurnState.CALLING

    def _step_finalizing(self, ctx: _TurnContext) -> TurnState:
        text = coerce_final_content(ctx.final_text, ctx.records)
        if text != ctx.final_text:
            logger.info("Replaced model answer with the last directory listing")
            ctx.history[-1] = replace(ctx.history[-1], content=text)
            ctx.final_text = text
        return TurnState.DONE

    # ── Helpers ────────────────────────────────────────────────────────────────

    @staticmethod
    def _run_tool(execute: ToolExecutor, call: ToolCallRequest) -> str:
        try:
            return execute(call.name, dict(call.arguments)).to_api_str()
        except Exception as exc:
            logger.exception("Tool %s raised", call.name)
            return f"error: {exc}"

    @staticmethod
    def _check_cancel(ctx: _TurnContext) -> None:
        if ctx.cancel is not None and ctx.cancel.is_set():
            raise TurnAborted("turn cancelled", cancelled=True)


# ── Session ────────────────────────────────────────────────────────────────────

class Session:
    """One user's conversation: history, token totals and the current mode."""

    def __init__(self, orchestrator: Orchestrator, mode: Mode = Mode.CHAT):
        self.orchestrator = orchestrator
        self.mode = Mode(mode)
        self.history: List[Message] = []
        self.prompt_tokens = 0
        self.completion_tokens = 0
        self.context_tokens = 0
        self._lock = threading.Lock()

    def send(self, text: str, cancel: Optional[threading.Event] = None) -> TurnResult:
        with self._lock:
            result = self.orchestrator.run_turn(list(self.history), text, self.mode, cancel=cancel)
            if result.ok:
                self.history = result.history
                self.prompt_tokens += result.prompt_tokens
                self.completion_tokens += result.completion_tokens
                self.context_tokens = result.context_tokens
            return result

    def toggle_mode(self) -> Mode:
        self.mode = Mode.CHAT if self.mode is Mode.AGENT else Mode.AGENT
        return self.mode

    def reset(self) -> None:
        with self._lock:
            self.history = []
            self.prompt_tokens = self.completion_tokens = self.context_tokens = 0

    def load(self, history: List[Union[Message, Dict[str, Any]]]) -> None:
        """Replace the conversation, accepting ``Message`` objects or API dicts."""
        messages = [m if isinstance(m, Message) else Message.from_api(m) for m in history]
        with self._lock:
            self.history = strip_system(messages)
            self.prompt_tokens = self.completion_tokens = 0
            self.context_tokens = estimate_history_tokens(self.history)

    def use_settings(self, settings: AgentSettings) -> None:
        self.orchestrator.settings = settings

    @property
    def turns(self) -> int:
        return sum(1 for m in self.history if m.role.value == "user")
