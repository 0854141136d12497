"""
LangChain context middleware.

Intercepts a list of langchain_core messages before it is sent to the chat
model and replaces it with a budget-respecting context built by a
ContextManager:

- system messages are merged into one system prompt (plus schema/examples)
- the conversation is trimmed by the rolling window
- selected history messages are passed through as the original objects, so
  ids and tool calls survive
- tool results whose requesting AI message was trimmed away are dropped

The caller's checkpointer still stores the complete history; this middleware
only affects what the model sees.
"""

import logging
from typing import Optional

from langchain_core.messages import AIMessage, BaseMessage, SystemMessage, ToolMessage

from .manager import BuildContextResult, ContextManager
from .messages import content_text, from_langchain, tool_call_ids

logger = logging.getLogger(__name__)


class ContextMiddleware:
    """
    Applies a ContextManager to LangChain message lists.

    Usage:
        middleware = ContextMiddleware(sessions.get(thread_id), schema=schema)
        trimmed = middleware.apply(messages)
        # Send trimmed messages to the model instead of the full history
    """

    def __init__(
        self,
        manager: ContextManager,
        schema=None,
        examples: Optional[list] = None,
    ):
        self.manager = manager
        self.schema = schema
        self.examples = examples or []
        self.last_result: Optional[BuildContextResult] = None

    def apply(
        self, messages: list[BaseMessage], max_tokens: Optional[int] = None
    ) -> list[BaseMessage]:
        """
        Return a new message list that fits the manager's budget.

        The original list is not modified.
        """
        system_parts = []
        conversation_msgs = []
        for msg in messages:
            if isinstance(msg, SystemMessage):
                system_parts.append(content_text(msg.content))
            else:
                conversation_msgs.append(msg)

        # Keep a handle on the source object behind every converted message
        converted = [from_langchain(msg) for msg in conversation_msgs]
        originals = {id(conv): msg for conv, msg in zip(converted, conversation_msgs)}

        result = self.manager.build_context(
            system_prompt="\n\n".join(system_parts),
            conversation_history=converted,
            schema=self.schema,
            examples=self.examples,
            max_tokens=max_tokens,
        )
        self.last_result = result

        trimmed: list[BaseMessage] = []
        if result.system_prompt:
            trimmed.append(SystemMessage(content=result.system_prompt))
        kept_call_ids: set[str] = set()
        orphaned = 0
        for conv in result.messages[1:]:
            original = originals.get(id(conv))
            if original is None:
                trimmed.append(SystemMessage(content=conv.content))
                continue
            # Providers reject tool results whose requesting AI message was cut
            if isinstance(original, ToolMessage) and original.tool_call_id not in kept_call_ids:
                orphaned += 1
                continue
            if isinstance(original, AIMessage):
                kept_call_ids |= tool_call_ids(original)
            trimmed.append(original)

        if orphaned:
            logger.info("Dropped %d tool results without their tool call", orphaned)

        if len(result.conversation_history) < len(conversation_msgs):
            logger.info(
                "Context trimmed: kept %d of %d messages (%d/%d tokens)",
                len(result.conversation_history),
                len(conversation_msgs),
                result.token_usage.total,
                result.token_usage.available,
            )
        return trimmed
