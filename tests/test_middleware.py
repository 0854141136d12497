"""
Tests for LangChain message conversion and the context middleware.
"""

import pytest
from langchain_core.messages import (
    AIMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

from langchain_context.config import ContextConfig
from langchain_context.errors import ContextBuildError
from langchain_context.manager import ContextManager
from langchain_context.messages import (
    ConversationMessage,
    content_text,
    from_langchain,
    to_langchain,
    tool_call_ids,
)
from langchain_context.middleware import ContextMiddleware


# ── Message Tests ──


class TestConversationMessage:
    def test_unknown_role(self):
        with pytest.raises(ValueError):
            ConversationMessage(role="tool", content="output")

    def test_immutable(self):
        msg = ConversationMessage(role="user", content="Hello")
        with pytest.raises(AttributeError):
            msg.content = "changed"

    def test_from_langchain_roles(self):
        assert from_langchain(SystemMessage(content="s")).role == "system"
        assert from_langchain(HumanMessage(content="h")).role == "user"
        assert from_langchain(AIMessage(content="a")).role == "assistant"
        tool = ToolMessage(content="result", tool_call_id="call-1")
        assert from_langchain(tool) == ConversationMessage(role="assistant", content="result")

    def test_from_langchain_includes_tool_calls(self):
        ai = AIMessage(
            content="Looking it up",
            tool_calls=[{"name": "search", "args": {"query": "weather"}, "id": "call-1"}],
        )
        converted = from_langchain(ai)
        assert converted.content.startswith("Looking it up\n")
        assert '"search"' in converted.content
        assert '"weather"' in converted.content
        assert tool_call_ids(ai) == {"call-1"}

    def test_to_langchain(self):
        assert isinstance(to_langchain(ConversationMessage("system", "s")), SystemMessage)
        assert isinstance(to_langchain(ConversationMessage("user", "u")), HumanMessage)
        ai = to_langchain(ConversationMessage("assistant", "a"))
        assert isinstance(ai, AIMessage)
        assert ai.content == "a"

    def test_content_text_blocks(self):
        content = [
            {"type": "thinking", "thinking": "Let me think..."},
            {"type": "text", "text": "Here is my answer."},
            "plain",
        ]
        assert content_text(content) == "Let me think...\nHere is my answer.\nplain"


# ── Middleware Tests ──


class TestContextMiddleware:
    def _make_messages(self, count: int) -> list:
        """Create a list of alternating human/AI messages."""
        messages = []
        for i in range(count):
            if i % 2 == 0:
                messages.append(HumanMessage(content=f"User message {i}", id=f"msg-{i}"))
            else:
                messages.append(AIMessage(content=f"AI response {i}", id=f"msg-{i}"))
        return messages

    @pytest.fixture
    def flat_manager(self):
        # every non-empty text costs 10 tokens
        return ContextManager(
            ContextConfig(max_tokens=1000, reserve_for_response=100),
            estimator=lambda text: 10,
        )

    def test_small_conversation_kept(self):
        middleware = ContextMiddleware(ContextManager())
        messages = [SystemMessage(content="You are helpful."), *self._make_messages(6)]
        result = middleware.apply(messages)
        assert len(result) == 7
        assert result[1:] == messages[1:]

    def test_large_conversation_is_trimmed(self, flat_manager):
        middleware = ContextMiddleware(flat_manager)
        messages = [SystemMessage(content="You are helpful."), *self._make_messages(50)]
        result = middleware.apply(messages, max_tokens=55)
        # 45 tokens left after the system prompt: four messages fit
        assert len(result) == 5
        assert isinstance(result[0], SystemMessage)
        assert result[-1] is messages[-1]
        assert [m.id for m in result[1:]] == ["msg-46", "msg-47", "msg-48", "msg-49"]
        assert middleware.last_result.token_usage.total == 50

    def test_original_list_unchanged(self, flat_manager):
        middleware = ContextMiddleware(flat_manager)
        messages = self._make_messages(30)
        snapshot = list(messages)
        middleware.apply(messages, max_tokens=30)
        assert messages == snapshot

    def test_system_messages_merged(self):
        middleware = ContextMiddleware(ContextManager())
        messages = [
            SystemMessage(content="You are helpful."),
            HumanMessage(content="Hello"),
            SystemMessage(content="Answer in English."),
        ]
        result = middleware.apply(messages)
        assert result[0].content == "You are helpful.\n\nAnswer in English."
        assert len(result) == 2
        assert result[1] is messages[1]

    def test_schema_and_examples(self):
        middleware = ContextMiddleware(
            ContextManager(),
            schema={"type": "object"},
            examples=[{"input": "hi", "output": "hello"}],
        )
        result = middleware.apply([SystemMessage(content="Base"), HumanMessage(content="Hello")])
        assert "## Response Format" in result[0].content
        assert isinstance(result[1], SystemMessage)
        assert "### Example 1" in result[1].content
        assert result[2].content == "Hello"

    def test_tool_messages_pass_through(self):
        middleware = ContextMiddleware(ContextManager())
        call = AIMessage(
            content="",
            tool_calls=[{"name": "calculator", "args": {"expr": "6*7"}, "id": "call-1"}],
        )
        tool = ToolMessage(content="42", tool_call_id="call-1")
        result = middleware.apply([HumanMessage(content="Compute"), call, tool])
        assert result[-2] is call
        assert result[-1] is tool

    def test_tool_result_dropped_without_its_call(self):
        manager = ContextManager(
            ContextConfig(max_tokens=1000, reserve_for_response=100), estimator=len
        )
        middleware = ContextMiddleware(manager)
        messages = [
            SystemMessage(content="S"),
            HumanMessage(content="h" * 50),
            AIMessage(
                content="a" * 60,
                tool_calls=[{"name": "lookup", "args": {}, "id": "call-1"}],
            ),
            ToolMessage(content="t" * 30, tool_call_id="call-1"),
        ]
        result = middleware.apply(messages, max_tokens=40)
        assert not any(isinstance(m, ToolMessage) for m in result)
        assert [type(m) for m in result] == [SystemMessage]

    def test_large_tool_call_is_not_free(self):
        manager = ContextManager(
            ContextConfig(max_tokens=1000, reserve_for_response=100), estimator=len
        )
        middleware = ContextMiddleware(manager)
        call = AIMessage(
            content="",
            tool_calls=[{"name": "write_file", "args": {"payload": "x" * 20000}, "id": "call-1"}],
        )
        result = middleware.apply([HumanMessage(content="Write it"), call], max_tokens=100)
        assert result == []
        assert middleware.last_result.token_usage.total <= 100

    def test_build_errors_propagate(self, flat_manager):
        middleware = ContextMiddleware(flat_manager, schema={"bad": object()})
        with pytest.raises(ContextBuildError):
            middleware.apply([HumanMessage(content="Hello")])
