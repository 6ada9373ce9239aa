"""MCP 客户端 - 连接 MCP 服务器，获取并调用工具"""
from mcp_client.client import (
    connect_mcp_servers,
    get_global_mcp_session,
    init_global_mcp_session,
    reload_global_mcp_session,
    MCPToolSession,
)

__all__ = [
    "connect_mcp_servers",
    "get_global_mcp_session",
    "init_global_mcp_session",
    "reload_global_mcp_session",
    "MCPToolSession",
]
