"""Tests for arcane/compaction.py."""

from arcane.compaction import (
    CompactionPolicy, compact, estimate_history_tokens, estimate_tokens, truncate_tool_result,
)
from arcane.messages import Message, Role, ToolCallRequest


def _history(big: str, rounds: int = 4):
    """system, then ``rounds`` of user / assistant(tool call) / tool(big) / assistant."""
    msgs = [Message.system("sys")]
    for i in range(rounds):
        call = ToolCallRequest(id=f"c{i:08d}", name="read", arguments={"path": f"f{i}"})
        msgs += [
            Message.user(f"question {i}"),
            Message.assistant("", [call]),
            Message.tool(call, big),
            Message.assistant(f"answer {i}"),
        ]
    return msgs


class TestEstimate:
    def test_chars_over_four(self):
        assert estimate_tokens("x" * 40) == 10
        assert estimate_tokens("x" * 41, chars_per_token=2) == 20

    def test_history_sum_uses_serialized_form(self):
        h = [Message.user("hello")]
        assert estimate_history_tokens(h) > estimate_tokens("hello")


class TestTruncate:
    def test_short_content_unchanged(self):
        assert truncate_tool_result("short", 500) == "short"

    def test_summary_has_line_count_and_fits(self):
        content = "\n".join(f"line {i}" for i in range(300))
        out = truncate_tool_result(content, 500)
        assert out.startswith("[300 lines] line 0")
        assert out.endswith("...")
        assert len(out) <= 500


class TestCompact:
    def test_under_budget_is_untouched(self):
        h = _history("x" * 100)
        assert compact(h, CompactionPolicy(token_budget=1_000_000)) is h

    def test_middle_tool_results_shrink(self):
        big = "\n".join("y" * 50 for _ in range(100))
        h = _history(big)
        policy = CompactionPolicy(token_budget=100, trailing_keep=6)
        out = compact(h, policy)

        assert len(out) == len(h)
        assert [m.role for m in out] == [m.role for m in h]
        assert out[0] is h[0]
        assert out[-6:] == h[-6:]
        middle = out[1:-6]
        for before, after in zip(h[1:-6], middle):
            if before.role is Role.TOOL:
                assert after.content.startswith("[100 lines] ")
                assert len(after.content) <= 500
                assert after.tool_call_id == before.tool_call_id
            else:
                assert after == before

    def test_trailing_window_keeps_large_results(self):
        big = "z" * 5000
        h = _history(big, rounds=2)
        out = compact(h, CompactionPolicy(token_budget=10, trailing_keep=3))
        # the second round's tool message is inside the last three
        assert out[-2].role is Role.TOOL and out[-2].content == big
        assert out[3].content != big

    def test_short_history_returned_as_is(self):
        h = [Message.system("s"), Message.user("x" * 10_000)]
        assert compact(h, CompactionPolicy(token_budget=1, trailing_keep=6)) == h

    def test_idempotent(self):
        h = _history("w" * 3000)
        policy = CompactionPolicy(token_budget=50, trailing_keep=2)
        once = compact(h, policy)
        assert compact(once, policy) == once

    def test_input_not_mutated(self):
        big = "q" * 2000
        h = _history(big)
        compact(h, CompactionPolicy(token_budget=10, trailing_keep=2))
        assert h[3].content == big
