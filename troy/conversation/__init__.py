"""Conversation log, chat messages, and the projection between them."""

from troy.conversation.log import (
    ConversationEntry,
    Exchange,
    Prompt,
    Response,
    ToolInput,
    ToolOutput,
    format_entry,
    format_log,
    parse_log,
)
from troy.conversation.messages import (
    AssistantMessage,
    ChatMessage,
    MessageList,
    SystemMessage,
    ToolCall,
    ToolMessage,
    TrustedMessages,
    UntrustedMessages,
    UserMessage,
)

__all__ = [
    "AssistantMessage",
    "ChatMessage",
    "ConversationEntry",
    "Exchange",
    "MessageList",
    "Prompt",
    "Response",
    "SystemMessage",
    "ToolCall",
    "ToolInput",
    "ToolMessage",
    "ToolOutput",
    "TrustedMessages",
    "UntrustedMessages",
    "UserMessage",
    "format_entry",
    "format_log",
    "parse_log",
]
