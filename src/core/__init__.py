"""Core - 后端池 + 对话编排 + 工具路由"""
from core.chat import ChatOrchestrator, ChatOutcome, ChatService, MAX_TOOL_ROUNDS, StatusCallback
from core.errors import (
    BackendCallError,
    ConfigurationError,
    NoBackendAvailable,
    RelayError,
    ToolCallError,
    ToolLoopExceeded,
    ToolNotFound,
)
from core.pool import BackendPool, ServerSlot
from core.routing import ToolCatalog, ToolDescriptor, ToolRegistry, get_tool_registry

__all__ = [
    "ChatOrchestrator", "ChatOutcome", "ChatService", "MAX_TOOL_ROUNDS", "StatusCallback",
    "BackendCallError", "ConfigurationError", "NoBackendAvailable", "RelayError",
    "ToolCallError", "ToolLoopExceeded", "ToolNotFound",
    "BackendPool", "ServerSlot",
    "ToolCatalog", "ToolDescriptor", "ToolRegistry", "get_tool_registry",
]
