"""Tool-calling agent: inference client, tools, bounded conversation loop."""

from watchy.agent.cancellation import CancelToken
from watchy.agent.conversation import Agent, Conversation
from watchy.agent.errors import (
    AgentError,
    Cancelled,
    CommandNotAllowed,
    InferenceError,
    InvalidArgument,
    MaxIterationsExceeded,
    MissingArgument,
    ToolFailure,
    UnknownTool,
)
from watchy.agent.events import EventRelay
from watchy.agent.messages import Message, ToolCall, ToolResultEvent, ToolStartEvent
from watchy.agent.tools import TOOL_SCHEMAS, ToolExecutor

__all__ = [
    "TOOL_SCHEMAS",
    "Agent",
    "AgentError",
    "CancelToken",
    "Cancelled",
    "CommandNotAllowed",
    "Conversation",
    "EventRelay",
    "InferenceError",
    "InvalidArgument",
    "MaxIterationsExceeded",
    "Message",
    "MissingArgument",
    "ToolCall",
    "ToolExecutor",
    "ToolFailure",
    "ToolResultEvent",
    "ToolStartEvent",
    "UnknownTool",
]
