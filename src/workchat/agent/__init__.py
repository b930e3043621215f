"""Conversation orchestrator: turn engine, store, summarizer and message model."""

from workchat.agent.cancellation import CancellationToken
from workchat.agent.engine import TurnEngine, TurnRequest, TurnResult
from workchat.agent.messages import (
    AssistantMessage,
    Message,
    SystemMessage,
    TokenUsage,
    ToolCall,
    ToolResultMessage,
    UserMessage,
)
from workchat.agent.progress import ProgressEmitter, ProgressEvent
from workchat.agent.prompt import UserContext, build_system_prompt
from workchat.agent.tools import Tool, ToolDescriptor, ToolRegistry

__all__ = [
    "AssistantMessage",
    "CancellationToken",
    "Message",
    "ProgressEmitter",
    "ProgressEvent",
    "SystemMessage",
    "TokenUsage",
    "Tool",
    "ToolCall",
    "ToolDescriptor",
    "ToolRegistry",
    "ToolResultMessage",
    "TurnEngine",
    "TurnRequest",
    "TurnResult",
    "UserContext",
    "UserMessage",
    "build_system_prompt",
]
