"""Tests for tiered context compaction."""

from codeloop.compaction import STALE_PLACEHOLDER, Compactor
from codeloop.messages import (
    AssistantMessage, Conversation, SystemMessage, ToolInvocationRecord, ToolMessage, UserMessage,
)


def call(call_id, name="read_file"):
    return ToolInvocationRecord(call_id, name, '{"path": "x"}')


class TestEstimate:

    def test_counts_tool_call_arguments(self):
        msg = AssistantMessage(content="abcd", tool_calls=[ToolInvocationRecord("1", "x", "1234")])
        assert Compactor().estimate_tokens([msg]) == 2

    def test_null_content_counts_zero(self):
        assert Compactor().estimate_tokens([AssistantMessage(content=None, tool_calls=[call("1")])]) == 3


class TestCompaction:

    def test_under_budget_is_noop(self):
        conv = Conversation("sys", [UserMessage("hi"), AssistantMessage("hello")])
        before = conv.to_dicts()
        report = Compactor().compact(conv)
        assert not report.compacted
        assert conv.to_dicts() == before

    def test_too_few_messages_is_noop(self):
        conv = Conversation("sys", [UserMessage("x" * 40000)])
        report = Compactor(max_tokens=100).compact(conv)
        assert report.tiers == []
        assert len(conv) == 2

    def test_tier_one_alone_keeps_structure(self):
        big = "\n".join(f"line {i}" for i in range(1000))
        messages = [
            UserMessage("read it"),
            AssistantMessage(None, [call("c1")]),
            ToolMessage("c1", big),
            AssistantMessage("done"),
            UserMessage("next"),
        ]
        conv = Conversation("sys", messages)
        identities = [id(m) for m in conv]

        report = Compactor(max_tokens=1000).compact(conv)

        assert report.tiers == [1]
        assert report.tokens_after < report.tokens_before
        assert [id(m) for m in conv] == identities
        text = conv[3].content
        assert "[960 lines omitted]" in text
        assert text.startswith("line 0\n")
        assert text.endswith("line 999")

    def test_tier_two_stubs_only_old_results(self):
        payload = "y" * 1500
        conv = Conversation("sys", [
            UserMessage("go"),
            AssistantMessage(None, [call("c1")]),
            ToolMessage("c1", payload),
            AssistantMessage(None, [call("c2")]),
            ToolMessage("c2", payload),
            AssistantMessage(None, [call("c3")]),
            ToolMessage("c3", payload),
            AssistantMessage("ok"),
            UserMessage("thanks"),
        ])
        report = Compactor(max_tokens=1000).compact(conv)

        assert report.tiers == [2]
        assert conv[3].content == STALE_PLACEHOLDER
        assert conv[5].content == STALE_PLACEHOLDER
        assert conv[7].content == payload
        # the assistant's request is left alone
        assert conv[2].tool_calls[0].id == "c1"

    def test_tier_three_never_orphans_tool_results(self):
        requester = AssistantMessage(None, [call("c1"), call("c2", "search")])
        conv = Conversation("sys", [
            UserMessage("u" * 4000),
            AssistantMessage("a" * 4000),
            requester,
            ToolMessage("c1", "ok"),
            ToolMessage("c2", "ok"),
            AssistantMessage("done"),
            UserMessage("next"),
        ])
        report = Compactor(max_tokens=1000).compact(conv)

        assert report.tiers == [3]
        assert conv[0].content == "sys"
        assert isinstance(conv[1], SystemMessage)
        assert conv[1].content.startswith("[Context compacted: 2 earlier messages summarized]")
        assert "[user] " + "u" * 100 + "..." in conv[1].content
        assert conv[2] is requester
        for prev, msg in zip(conv.messages, conv.messages[1:]):
            if isinstance(msg, ToolMessage):
                assert isinstance(prev, (AssistantMessage, ToolMessage))

    def test_existing_summary_not_resummarized(self):
        conv = Conversation("sys", [
            SystemMessage("[Context compacted: 9 earlier messages summarized]"),
            UserMessage("u" * 2000),
            AssistantMessage("a" * 2000),
            UserMessage("u" * 2000),
            AssistantMessage("a" * 2000),
        ])
        report = Compactor(max_tokens=1000).compact(conv)
        assert report.tiers == []
        assert len(conv) == 6

    def test_system_prompt_always_survives(self):
        conv = Conversation("the system prompt", [UserMessage("q" * 3000) for _ in range(10)])
        Compactor(max_tokens=500, keep_recent=0).compact(conv)
        assert conv[0].content == "the system prompt"
        assert len(conv) == 2
