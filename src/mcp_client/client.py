"""MCP 客户端 - 连接 MCP 服务器，获取并调用工具

每个 MCP 服务器在独立线程+事件循环中连接，避免 anyio cancel scope 跨任务错误。
服务器配置：{name, url} 走 streamable HTTP；{name, command, args, env} 走 stdio 子进程。
"""

import asyncio
import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Any, Callable

from core.errors import ToolCallError, ToolNotFound
from core.routing import ToolDescriptor

_log = logging.getLogger("relay.mcp")

CONNECT_TIMEOUT = 120.0
CALL_TIMEOUT = 120.0
CLOSE_TIMEOUT = 10.0

# MCP 子进程 stderr 重定向到此，静默其 INFO 等日志
_DEVNULL = open(os.devnull, "w", encoding="utf-8")

# 全局会话，启动时连接，供后续复用
_global_session: "MCPToolSession | None" = None


def _mcp_tool_to_descriptor(t: Any) -> ToolDescriptor:
    """将 MCP 工具转为 ToolDescriptor"""
    if isinstance(t, dict):
        name = t.get("name") or ""
        desc = t.get("description") or ""
        schema = t.get("inputSchema")
    else:
        name = getattr(t, "name", "") or ""
        desc = getattr(t, "description", "") or ""
        schema = getattr(t, "inputSchema", None)
    if not isinstance(schema, dict):
        schema = {"type": "object", "properties": {}}
    params = {"type": schema.get("type") or "object", "properties": schema.get("properties") or {}}
    if schema.get("required"):
        params["required"] = list(schema["required"])
    return ToolDescriptor(name=name, description=desc, parameters=params)


def _result_lines(result: Any) -> list[str]:
    lines = []
    for block in getattr(result, "content", None) or []:
        kind = getattr(block, "type", None)
        if kind == "text":
            lines.append(str(getattr(block, "text", "") or ""))
        else:
            lines.append(f"unknown response type: {kind}")
    return lines


def _open_transport(srv: dict):
    if srv.get("url"):
        from mcp.client.streamable_http import streamablehttp_client
        return streamablehttp_client(str(srv["url"]))

    from mcp import StdioServerParameters
    from mcp.client.stdio import stdio_client
    env_overrides = srv.get("env") or {}
    # 空字符串表示从 os.environ 读取（含 .env 加载的变量）
    merged = dict(os.environ)
    for k, v in env_overrides.items():
        val = os.environ.get(k, "") if (v == "" or v is None) else str(v)
        if val:
            merged[k] = val
    params = StdioServerParameters(
        command=str(srv.get("command") or srv.get("cmd")),
        args=[str(a) for a in srv.get("args") or []],
        env=merged if env_overrides else None,
    )
    return stdio_client(params, errlog=_DEVNULL)


@dataclass
class _ServerHolder:
    name: str
    loop: asyncio.AbstractEventLoop
    sess: Any
    tools: list[ToolDescriptor] = field(default_factory=list)
    close: Callable[[], None] | None = None


class _ServerConnection:
    """单个 MCP 服务器的连接线程

    连接、保持、断开都在同一个任务里完成：anyio 的 cancel scope 必须在进入它的任务中退出，
    stdio 子进程也只有在 transport 上下文退出时才会被回收。
    """

    def __init__(self, srv: dict) -> None:
        self.srv = srv
        self.name = str(srv.get("name") or srv.get("url") or srv.get("command"))
        self.loop: asyncio.AbstractEventLoop | None = None
        self.sess: Any = None
        self.tools: list[ToolDescriptor] = []
        self._ready = threading.Event()
        self._lock = threading.Lock()
        self._abandoned = False
        self._stop: asyncio.Event | None = None
        self._thread = threading.Thread(target=self._run, name=f"mcp-{self.name}", daemon=True)

    def start(self) -> None:
        self._thread.start()

    def wait(self, timeout: float) -> bool:
        """等待连接完成；超时后标记放弃，之后才连上的会话会自行断开"""
        self._ready.wait(timeout=timeout)
        with self._lock:
            if self.sess is None:
                self._abandoned = True
                return False
            return True

    def holder(self) -> _ServerHolder:
        return _ServerHolder(name=self.name, loop=self.loop, sess=self.sess, tools=self.tools, close=self.close)

    def close(self, timeout: float = CLOSE_TIMEOUT) -> None:
        loop, stop = self.loop, self._stop
        if loop is not None and stop is not None:
            try:
                loop.call_soon_threadsafe(stop.set)
            except RuntimeError:
                # loop 已关闭，连接线程已退出
                pass
        self._thread.join(timeout=timeout)
        if self._thread.is_alive():
            _log.warning("MCP server %s did not shut down within %.0fs", self.name, timeout)

    async def _serve(self) -> None:
        from mcp import ClientSession

        async with _open_transport(self.srv) as streams:
            async with ClientSession(streams[0], streams[1]) as sess:
                init = await sess.initialize()
                tools_result = await sess.list_tools()
                self._stop = asyncio.Event()
                with self._lock:
                    if self._abandoned:
                        _log.warning("MCP server %s connected after timeout, closing", self.name)
                        return
                    self.tools = [_mcp_tool_to_descriptor(t) for t in getattr(tools_result, "tools", None) or []]
                    self.sess = sess
                self._ready.set()
                info = getattr(init, "serverInfo", None)
                _log.info(
                    "MCP server initialized: %s %s",
                    getattr(info, "name", self.name), getattr(info, "version", ""),
                )
                # 保持会话，供 call_tool 通过 run_coroutine_threadsafe 使用
                await self._stop.wait()
        _log.info("MCP server %s disconnected", self.name)

    def _run(self) -> None:
        _log.info("connecting MCP server %s", self.name)
        loop = asyncio.new_event_loop()
        asyncio.set_event_loop(loop)
        self.loop = loop
        try:
            loop.run_until_complete(self._serve())
        except Exception as e:
            if self.sess is None:
                _log.error("Unable to initialize MCP server %s: %s", self.name, e)
            else:
                _log.error("MCP server %s failed: %s", self.name, e)
        finally:
            self._ready.set()
            loop.close()


def connect_mcp_servers(servers: list[dict], timeout: float = CONNECT_TIMEOUT) -> "MCPToolSession":
    """阻塞连接所有服务器；连接失败或超时的服务器记录日志后跳过"""
    session = MCPToolSession()
    pending = []
    for srv in servers:
        if not (srv.get("url") or srv.get("command") or srv.get("cmd")):
            _log.warning("MCP server entry without url or command skipped: %s", srv)
            continue
        conn = _ServerConnection(srv)
        conn.start()
        pending.append(conn)
    for conn in pending:
        if not conn.wait(timeout):
            _log.warning("MCP server %s not connected, skipped", conn.name)
            continue
        session.add_server(conn.holder())
    _log.info("MCP ready: %d servers, %d tools", len(session.servers), len(session.list_tools()))
    return session


async def init_global_mcp_session(servers: list[dict]) -> "MCPToolSession | None":
    """启动时连接 MCP 服务器，存入全局会话"""
    global _global_session
    if _global_session is not None:
        return _global_session
    if not servers:
        _log.info("no mcp.servers configured, skipping")
        return None
    _global_session = await asyncio.to_thread(connect_mcp_servers, servers)
    return _global_session


def get_global_mcp_session() -> "MCPToolSession | None":
    return _global_session


def reload_global_mcp_session() -> None:
    """关闭并清空全局 MCP 会话，下次初始化时按新配置重连"""
    global _global_session
    if _global_session is not None:
        _global_session.close_sync()
        _global_session = None


class MCPToolSession:
    """MCP 工具会话：聚合多个服务器的工具，每个服务器在独立线程的 loop 中"""

    name = "mcp"

    def __init__(self) -> None:
        self._servers: list[_ServerHolder] = []
        self._tool_to_server: dict[str, _ServerHolder] = {}

    @property
    def servers(self) -> list[str]:
        return [h.name for h in self._servers]

    def add_server(self, holder: _ServerHolder) -> None:
        self._servers.append(holder)
        for t in holder.tools:
            self._tool_to_server.setdefault(t.name, holder)

    def close_sync(self) -> None:
        """断开所有服务器并等待其线程退出（stdio 子进程随之回收）"""
        for h in self._servers:
            if h.close is not None:
                h.close()
            elif h.loop.is_running():
                h.loop.call_soon_threadsafe(h.loop.stop)
        self._servers = []
        self._tool_to_server = {}

    def list_tools(self) -> list[ToolDescriptor]:
        seen = set()
        tools = []
        for h in self._servers:
            for t in h.tools:
                if t.name not in seen:
                    seen.add(t.name)
                    tools.append(t)
        return tools

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> list[str]:
        """调用工具，在对应服务器的 loop 中执行"""
        holder = self._tool_to_server.get(name)
        if holder is None:
            raise ToolNotFound(name)
        if not holder.loop.is_running():
            raise ToolCallError(name, f"MCP server {holder.name} unavailable")
        future = asyncio.run_coroutine_threadsafe(
            holder.sess.call_tool(name, arguments=arguments or {}), holder.loop
        )
        try:
            result = await asyncio.wait_for(asyncio.wrap_future(future), timeout=CALL_TIMEOUT)
        except asyncio.TimeoutError as e:
            raise ToolCallError(name, f"timed out after {CALL_TIMEOUT:.0f}s") from e
        lines = _result_lines(result)
        if getattr(result, "isError", False):
            raise ToolCallError(name, "\n".join(lines) or "tool reported an error")
        return lines
