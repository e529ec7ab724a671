"""Orchestrator and Session tests against a scripted completion client.

Tools run for real inside the ``workspace`` fixture unless a test injects its
own executor.
"""

import threading

from arcane.compaction import CompactionPolicy
from arcane.config import AgentSettings
from arcane.core import Mode, Orchestrator, Session
from arcane.events import EventChannel, ToolFinished, ToolStarted, TurnFinished
from arcane.messages import Completion, Message, Role, ToolCallRequest
from arcane.tools.sandbox import ToolResult

from tests.fakes import ScriptedClient, text_completion, tool_completion


def _orchestrator(client, **kw):
    return Orchestrator(client, settings=kw.pop("settings", AgentSettings()), workdir="/work", **kw)


# ---------------------------------------------------------------------------
# chat mode
# ---------------------------------------------------------------------------


class TestChatMode:
    def test_single_call_without_tools(self):
        client = ScriptedClient(text_completion("Hi there!", 20, 4))
        result = _orchestrator(client).run_turn([], "hello", Mode.CHAT)

        assert result.ok
        assert result.text == "Hi there!"
        assert len(client.calls) == 1
        assert client.calls[0]["tools"] is None
        sent = client.calls[0]["messages"]
        assert sent[0].role is Role.SYSTEM and "/agent" in sent[0].content
        assert sent[-1].role is Role.USER and sent[-1].content == "hello"
        assert [(m.role, m.content) for m in result.history] == [
            (Role.USER, "hello"), (Role.ASSISTANT, "Hi there!"),
        ]
        assert (result.prompt_tokens, result.completion_tokens) == (20, 4)
        assert result.context_tokens > 0

    def test_prior_history_is_sent_without_its_system_message(self):
        prior = [Message.system("old"), Message.user("q1"), Message.assistant("a1")]
        client = ScriptedClient(text_completion("a2"))
        result = _orchestrator(client).run_turn(prior, "q2", Mode.CHAT)

        sent = client.calls[0]["messages"]
        assert [m.role for m in sent].count(Role.SYSTEM) == 1
        assert [m.content for m in sent[1:]] == ["q1", "a1", "q2"]
        assert [m.content for m in result.history] == ["q1", "a1", "q2", "a2"]

    def test_tool_calls_ignored_in_chat(self):
        client = ScriptedClient(tool_completion(("ls", {}), content="Here you go"))
        result = _orchestrator(client).run_turn([], "hi", Mode.CHAT)
        assert result.text == "Here you go"
        assert result.tool_records == []
        assert not result.history[-1].tool_calls


# ---------------------------------------------------------------------------
# agent mode
# ---------------------------------------------------------------------------


class TestAgentLoop:
    def test_list_files_end_to_end(self, workspace):
        (workspace / "a.txt").write_text("a")
        (workspace / "sub").mkdir()
        client = ScriptedClient(tool_completion(("ls", {})), text_completion(""))
        result = _orchestrator(client).run_turn([], "list files", Mode.AGENT)

        assert result.ok
        assert result.text == "Entries in the current directory:\n- a.txt\n- sub/"
        assert [m.role for m in result.history] == [Role.USER, Role.ASSISTANT, Role.TOOL, Role.ASSISTANT]
        assert result.history[1].tool_calls[0].name == "ls"
        assert result.history[2].content == "[FILE] a.txt\n[DIR] sub/"
        assert result.history[2].tool_call_id == result.history[1].tool_calls[0].id
        assert result.history[3].content == result.text
        assert [(r.name, r.ordinal) for r in result.tool_records] == [("ls", 1)]
        assert result.iterations == 2
        assert client.calls[0]["tools"] and len(client.calls[0]["tools"]) == 7

    def test_false_empty_claim_replaced_by_listing(self, workspace):
        (workspace / "a.txt").write_text("a")
        (workspace / "sub").mkdir()
        client = ScriptedClient(tool_completion(("ls", {})), text_completion("The directory is empty."))
        result = _orchestrator(client).run_turn([], "what's here?", Mode.AGENT)
        assert result.text == "Entries in the current directory:\n- a.txt\n- sub/"
        assert result.history[-1].content == result.text

    def test_tool_results_feed_the_next_call(self, workspace):
        (workspace / "notes.md").write_text("remember the milk")
        client = ScriptedClient(
            tool_completion(("read", {"path": "notes.md"}), content="Let me look."),
            text_completion("It says to remember the milk."),
        )
        result = _orchestrator(client).run_turn([], "what's in notes.md?", Mode.AGENT)

        second = client.calls[1]["messages"]
        assert second[-1].role is Role.TOOL
        assert second[-1].content == "   1| remember the milk\n"
        # text sent alongside a tool call does not reach history
        assert second[-2].role is Role.ASSISTANT and second[-2].content == ""
        assert result.text == "It says to remember the milk."

    def test_one_tool_message_per_call_in_order(self, workspace):
        (workspace / "a.txt").write_text("1")
        (workspace / "b.txt").write_text("2")
        client = ScriptedClient(
            tool_completion(("read", {"path": "a.txt"}), ("read", {"path": "b.txt"})),
            text_completion("done"),
        )
        result = _orchestrator(client).run_turn([], "read both", Mode.AGENT)

        calls = result.history[1].tool_calls
        tools = [m for m in result.history if m.role is Role.TOOL]
        assert [t.tool_call_id for t in tools] == [c.id for c in calls]
        assert [r.ordinal for r in result.tool_records] == [1, 2]

    def test_inline_call_is_executed(self, workspace):
        (workspace / "x.py").write_text("")
        client = ScriptedClient(text_completion("ls{}"), text_completion("There is one file, x.py."))
        result = _orchestrator(client).run_turn([], "what's here?", Mode.AGENT)

        assert result.text == "There is one file, x.py."
        assistant = result.history[1]
        assert assistant.tool_calls[0].inline
        assert assistant.content == ""
        assert result.history[2].content == "[FILE] x.py"

    def test_unknown_tool_with_text_becomes_answer(self):
        client = ScriptedClient(tool_completion(("format_disk", {}), content="I won't do that."))
        result = _orchestrator(client).run_turn([], "wipe it", Mode.AGENT)
        assert result.text == "I won't do that."
        assert result.tool_records == []
        assert len(client.calls) == 1

    def test_tool_errors_go_back_to_the_model(self, workspace):
        client = ScriptedClient(
            tool_completion(("read", {"path": "ghost.txt"})),
            text_completion("That file does not exist."),
        )
        result = _orchestrator(client).run_turn([], "read ghost.txt", Mode.AGENT)
        assert result.ok
        assert result.history[2].content.startswith("error: ")

    def test_executor_exception_becomes_error_text(self):
        def explode(name, args):
            raise OSError("disk on fire")

        client = ScriptedClient(tool_completion(("ls", {})), text_completion("ok"))
        result = _orchestrator(client, execute=explode).run_turn([], "go", Mode.AGENT)
        assert result.history[2].content == "error: disk on fire"

    def test_iteration_ceiling(self, workspace):
        client = ScriptedClient(tool_completion(("ls", {}), content="still looking"), repeat_last=True)
        result = _orchestrator(client).run_turn([], "loop forever", Mode.AGENT)

        assert len(client.calls) == 15
        assert result.iterations == 15
        assert len(result.tool_records) == 15
        assert result.text == "still looking\n\n*[Stopped after 15 tool iterations]*"
        assert result.history[-1].role is Role.ASSISTANT
        assert result.history[-1].content == result.text

    def test_ceiling_follows_settings(self, workspace):
        client = ScriptedClient(tool_completion(("ls", {})), repeat_last=True)
        settings = AgentSettings(max_iterations=3)
        result = _orchestrator(client, settings=settings).run_turn([], "go", Mode.AGENT)
        assert len(client.calls) == 3
        assert result.text.endswith("*[Stopped after 3 tool iterations]*")

    def test_tools_enabled_overrides_mode(self, workspace):
        client = ScriptedClient(text_completion("hi"))
        _orchestrator(client).run_turn([], "hello", Mode.CHAT, tools_enabled=True)
        assert client.calls[0]["tools"]


# ---------------------------------------------------------------------------
# failures and cancellation
# ---------------------------------------------------------------------------


class TestFailures:
    def test_transport_error_keeps_prior_history(self):
        prior = [Message.user("q"), Message.assistant("a")]
        client = ScriptedClient(ConnectionError("connection refused"))
        result = _orchestrator(client).run_turn(prior, "again", Mode.AGENT)

        assert not result.ok
        assert result.error == "connection refused"
        assert result.history == prior
        assert result.text == ""

    def test_error_after_tools_discards_partial_turn(self, workspace):
        client = ScriptedClient(tool_completion(("ls", {})), RuntimeError("503 upstream"))
        result = _orchestrator(client).run_turn([], "hi", Mode.AGENT)
        assert result.error == "503 upstream"
        assert result.history == []
        assert len(result.tool_records) == 1

    def test_zero_choices(self):
        client = ScriptedClient(Completion(choices=[]))
        result = _orchestrator(client).run_turn([], "hi", Mode.CHAT)
        assert result.error == "empty response from model"

    def test_cancel_before_first_call(self):
        cancel = threading.Event()
        cancel.set()
        client = ScriptedClient(text_completion("never"))
        result = _orchestrator(client).run_turn([], "hi", Mode.AGENT, cancel=cancel)
        assert result.cancelled and not result.ok
        assert client.calls == []

    def test_cancel_between_tools(self):
        cancel = threading.Event()
        executed = []

        def execute(name, args):
            executed.append(name)
            cancel.set()
            return ToolResult(True, output="fine")

        client = ScriptedClient(tool_completion(("ls", {}), ("glob", {"pat": "*"})), text_completion("x"))
        result = _orchestrator(client, execute=execute).run_turn([], "hi", Mode.AGENT, cancel=cancel)
        assert executed == ["ls"]
        assert result.cancelled
        assert result.history == []
        assert len(client.calls) == 1


# ---------------------------------------------------------------------------
# events and compaction
# ---------------------------------------------------------------------------


class TestEventsAndCompaction:
    def test_events_in_order(self, workspace):
        channel = EventChannel()
        client = ScriptedClient(tool_completion(("bash", {"cmd": "echo hi"})), text_completion("said hi"))
        _orchestrator(client, channel=channel).run_turn([], "say hi", Mode.AGENT)

        events = list(channel.drain())
        assert [type(e) for e in events] == [ToolStarted, ToolFinished, TurnFinished]
        assert events[0].arguments == {"cmd": "echo hi"}
        assert events[1].result == "hi"
        assert events[1].summary == "BASH echo hi"
        assert events[2].result.text == "said hi"

    def test_full_channel_does_not_stall_the_turn(self, workspace):
        channel = EventChannel(maxsize=1)
        client = ScriptedClient(tool_completion(("ls", {}), ("ls", {})), text_completion("done"))
        result = _orchestrator(client, channel=channel).run_turn([], "go", Mode.AGENT)
        assert result.ok
        assert channel.dropped == 4

    def test_history_compacted_before_sending(self):
        call = ToolCallRequest(id="abcdefghi", name="read", arguments={"path": "big"})
        big = "\n".join("data " * 20 for _ in range(200))
        prior = [
            Message.user("read big"), Message.assistant("", [call]),
            Message.tool(call, big), Message.assistant("it is big"),
        ]
        settings = AgentSettings(chat_compaction=CompactionPolicy(token_budget=100, trailing_keep=2))
        client = ScriptedClient(text_completion("ok"))
        result = _orchestrator(client, settings=settings).run_turn(prior, "thanks", Mode.CHAT)

        sent_tool = client.calls[0]["messages"][3]
        assert sent_tool.role is Role.TOOL
        assert sent_tool.content.startswith("[200 lines] ")
        assert len(sent_tool.content) <= 500
        assert result.history[2].content == sent_tool.content
        assert prior[2].content == big


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class TestSession:
    def test_history_and_tokens_accumulate(self):
        client = ScriptedClient(text_completion("one", 10, 1), text_completion("two", 30, 2))
        s = Session(_orchestrator(client))
        s.send("first")
        s.send("second")
        assert [m.content for m in s.history] == ["first", "one", "second", "two"]
        assert (s.prompt_tokens, s.completion_tokens) == (40, 3)
        assert s.turns == 2
        assert s.context_tokens > 0

    def test_failed_turn_leaves_session_alone(self):
        client = ScriptedClient(text_completion("one"), TimeoutError("slow"))
        s = Session(_orchestrator(client))
        s.send("first")
        before = list(s.history)
        result = s.send("second")
        assert result.error == "slow"
        assert s.history == before

    def test_mode_toggle_and_reset(self):
        client = ScriptedClient(text_completion("x"))
        s = Session(_orchestrator(client), mode="chat")
        assert s.toggle_mode() is Mode.AGENT
        assert s.toggle_mode() is Mode.CHAT
        s.send("hi")
        s.reset()
        assert s.history == [] and s.prompt_tokens == 0

    def test_load_drops_system_messages(self):
        s = Session(_orchestrator(ScriptedClient()))
        s.load([Message.system("s"), Message.user("u"), Message.assistant("a")])
        assert [m.role for m in s.history] == [Role.USER, Role.ASSISTANT]
        assert s.context_tokens > 0

    def test_load_accepts_api_dicts(self):
        s = Session(_orchestrator(ScriptedClient()))
        s.load([
            {"role": "user", "content": "list"},
            {"role": "assistant", "content": None,
             "tool_calls": [{"id": "x1", "function": {"name": "glob", "arguments": '{"pat": "*.go"}'}}]},
            {"role": "tool", "content": "none", "tool_call_id": "x1", "name": "glob"},
        ])
        assert [m.role for m in s.history] == [Role.USER, Role.ASSISTANT, Role.TOOL]
        assert s.history[1].content == ""
        assert s.history[1].tool_calls[0].arguments == {"pat": "*.go"}
