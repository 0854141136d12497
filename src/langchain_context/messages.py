"""
Conversation message record and LangChain conversion helpers.

The context subsystem works on plain role/content records. Chat models and
agents speak langchain_core messages, so both directions are provided here.
"""

import json
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from langchain_core.messages import (
    AIMessage,
    BaseMessage,
    HumanMessage,
    SystemMessage,
    ToolMessage,
)

ROLES = ("system", "user", "assistant")


@dataclass(frozen=True)
class ConversationMessage:
    """One turn of conversation history."""

    role: str
    content: str
    timestamp: Optional[datetime] = None

    def __post_init__(self):
        if self.role not in ROLES:
            raise ValueError(
                f"Unknown message role {self.role!r}, expected one of {ROLES}"
            )


TOOL_BLOCK_TYPES = ("tool_use", "tool_call")


def _tool_call_text(name, args) -> str:
    return json.dumps({"name": name, "args": args or {}}, ensure_ascii=False, default=str)


def content_text(content) -> str:
    """
    Flatten LangChain message content (str or content blocks) into text.

    Tool-use blocks are rendered as JSON so their arguments are counted
    against the token budget.
    """
    if isinstance(content, str):
        return content
    if isinstance(content, list):
        parts = []
        for block in content:
            if isinstance(block, str):
                parts.append(block)
            elif isinstance(block, dict):
                if block.get("type") in TOOL_BLOCK_TYPES:
                    args = block.get("input") or block.get("args")
                    parts.append(_tool_call_text(block.get("name"), args))
                    continue
                text = (
                    block.get("text")
                    or block.get("thinking")
                    or block.get("reasoning")
                    or ""
                )
                if text:
                    parts.append(text)
        return "\n".join(parts)
    return str(content) if content else ""


def message_text(msg: BaseMessage) -> str:
    """Text of a LangChain message including any tool calls it carries."""
    text = content_text(msg.content)
    tool_calls = getattr(msg, "tool_calls", None) or []
    has_tool_blocks = isinstance(msg.content, list) and any(
        isinstance(block, dict) and block.get("type") in TOOL_BLOCK_TYPES
        for block in msg.content
    )
    # Anthropic responses carry the same call as a block and in tool_calls
    if tool_calls and not has_tool_blocks:
        calls = [_tool_call_text(call.get("name"), call.get("args")) for call in tool_calls]
        text = "\n".join([text, *calls]) if text else "\n".join(calls)
    return text


def tool_call_ids(msg: BaseMessage) -> set[str]:
    """Ids of the tool calls requested by an AI message."""
    ids = {call.get("id") for call in getattr(msg, "tool_calls", None) or []}
    if isinstance(msg.content, list):
        ids.update(
            block.get("id")
            for block in msg.content
            if isinstance(block, dict) and block.get("type") in TOOL_BLOCK_TYPES
        )
    ids.discard(None)
    return ids


def from_langchain(msg: BaseMessage) -> ConversationMessage:
    """
    Convert a LangChain message into a ConversationMessage.

    - SystemMessage -> system
    - HumanMessage -> user
    - AIMessage / ToolMessage -> assistant (tool output is assistant-side context)
    """
    if isinstance(msg, SystemMessage):
        role = "system"
    elif isinstance(msg, HumanMessage):
        role = "user"
    elif isinstance(msg, (AIMessage, ToolMessage)):
        role = "assistant"
    else:
        raise ValueError(f"Unsupported message type: {type(msg).__name__}")
    return ConversationMessage(role=role, content=message_text(msg))


def to_langchain(message: ConversationMessage) -> BaseMessage:
    """Convert a ConversationMessage into the matching LangChain message."""
    if message.role == "system":
        return SystemMessage(content=message.content)
    if message.role == "user":
        return HumanMessage(content=message.content)
    return AIMessage(content=message.content)
