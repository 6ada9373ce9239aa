"""Core - LLM 对话 + 工具调度

一次对话：渲染模板 -> 占用一台后端 -> 循环 (调用模型 -> 执行工具 -> 回填结果) -> 释放后端。
工具结果作为 role=tool 的消息紧跟在请求它的 assistant 消息之后。
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Callable

from core.backend import BackendServer, OllamaClient, servers_from_mapping
from core.config import RelayConfig
from core.errors import BackendCallError, RelayError, ToolCallError, ToolLoopExceeded, ToolNotFound
from core.models import ChatMessage, ChatRequest, ToolCall
from core.pool import BackendPool
from core.routing import ToolCatalog, ToolRegistry, get_tool_registry
from core.templates import TemplateRenderer

_log = logging.getLogger("relay.chat")

# 单次对话允许的连续工具调用轮数
MAX_TOOL_ROUNDS = 10
CHAT_TIMEOUT = 600.0

STATUS_PREPARING = "📝 Preparing message templates..."
STATUS_FINDING = "🔍 Finding available Ollama server..."
STATUS_THINKING = "🤖 AI is thinking... (using {server})"
STATUS_TOOL_RESULTS = "🤖 AI is processing tool results... (using {server})"
STATUS_FORMATTING = "✨ Formatting response..."

StatusCallback = Callable[[str], None]


def _emit(on_status: StatusCallback | None, status: str) -> None:
    if on_status is not None:
        on_status(status)


class ChatOrchestrator:
    def __init__(
        self,
        model: str,
        pool: BackendPool,
        client: OllamaClient,
        tool_names: dict[str, str] | None = None,
        max_tool_rounds: int = MAX_TOOL_ROUNDS,
    ) -> None:
        self.model = model
        self.pool = pool
        self.client = client
        self.tool_names = dict(tool_names or {})
        self.max_tool_rounds = max_tool_rounds

    def display_name(self, tool: str) -> str:
        return self.tool_names.get(tool, tool)

    async def run(
        self,
        system_prompt: str,
        user_prompt: str,
        catalog: ToolCatalog,
        on_status: StatusCallback | None = None,
        timeout: float | None = None,
    ) -> str:
        conversation = [
            ChatMessage(role="system", content=system_prompt),
            ChatMessage(role="user", content=user_prompt),
        ]
        loop = asyncio.get_running_loop()
        deadline = None if timeout is None else loop.time() + timeout

        _emit(on_status, STATUS_FINDING)
        async with self.pool.acquire(timeout) as server:
            _emit(on_status, STATUS_THINKING.format(server=server.name))
            if deadline is None:
                return await self._converse(server, conversation, catalog, on_status)
            remaining = deadline - loop.time()
            try:
                return await asyncio.wait_for(
                    self._converse(server, conversation, catalog, on_status),
                    timeout=max(remaining, 0),
                )
            except asyncio.TimeoutError as e:
                raise BackendCallError(server.name, f"deadline exceeded after {timeout:.1f}s") from e

    async def _converse(
        self,
        server: BackendServer,
        conversation: list[ChatMessage],
        catalog: ToolCatalog,
        on_status: StatusCallback | None,
    ) -> str:
        tools = catalog.to_wire()
        rounds = 0
        while True:
            request = ChatRequest(model=self.model, messages=conversation, tools=tools, stream=False)
            response = await self.client.chat(server, request)
            message = response.message
            conversation.append(message)

            if not message.tool_calls:
                _emit(on_status, STATUS_FORMATTING)
                return message.content

            rounds += 1
            if rounds > self.max_tool_rounds:
                _log.warning("model kept requesting tools after %d rounds on %s", self.max_tool_rounds, server.name)
                raise ToolLoopExceeded(self.max_tool_rounds)

            await self._dispatch(message.tool_calls, catalog, conversation, on_status)
            _emit(on_status, STATUS_TOOL_RESULTS.format(server=server.name))

    async def _dispatch(
        self,
        tool_calls: list[ToolCall],
        catalog: ToolCatalog,
        conversation: list[ChatMessage],
        on_status: StatusCallback | None,
    ) -> None:
        # 按收到的顺序逐个执行，后面的调用可能依赖前面的副作用
        for call in tool_calls:
            tool = catalog.get(call.name)
            if tool is None:
                _log.warning("Tool not found: %s", call.name)
                conversation.append(ChatMessage(role="tool", content=str(ToolNotFound(call.name))))
                continue

            _emit(on_status, self.display_name(call.name))
            try:
                lines = await tool.call(call.arguments)
            except (ToolNotFound, ToolCallError) as e:
                _log.warning("Unable to call tool %s: %s", call.name, e)
                content = str(e)
            else:
                content = "\n".join(lines)
            conversation.append(ChatMessage(role="tool", content=content))


@dataclass
class ChatOutcome:
    answer: str | None = None
    error: RelayError | None = None
    status: list[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.error is None


class ChatService:
    """对外入口：模板渲染 + 工具快照 + 对话编排"""

    def __init__(
        self,
        renderer: TemplateRenderer,
        orchestrator: ChatOrchestrator,
        registry: ToolRegistry | None = None,
        timeout: float = CHAT_TIMEOUT,
    ) -> None:
        self.renderer = renderer
        self.orchestrator = orchestrator
        self.registry = registry if registry is not None else get_tool_registry()
        self.timeout = timeout

    @classmethod
    def from_config(cls, cfg: RelayConfig, registry: ToolRegistry | None = None) -> "ChatService":
        client = OllamaClient(cfg.model, timeout=cfg.request_timeout)
        pool = BackendPool(servers_from_mapping(cfg.servers), client, poll_interval=cfg.poll_interval)
        orchestrator = ChatOrchestrator(
            cfg.model, pool, client,
            tool_names=cfg.tool_names,
            max_tool_rounds=cfg.max_tool_rounds,
        )
        renderer = TemplateRenderer.from_files(cfg.system_template, cfg.user_template)
        return cls(renderer, orchestrator, registry, timeout=cfg.chat_timeout)

    async def aclose(self) -> None:
        await self.orchestrator.client.aclose()

    async def chat(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        on_status: StatusCallback | None = None,
        timeout: float | None = None,
    ) -> str:
        _emit(on_status, STATUS_PREPARING)
        system_prompt = self.renderer.render_system(context)
        user_prompt = self.renderer.render_user(message, context)
        catalog = self.registry.snapshot()
        _log.debug("chat with %d tools", len(catalog))
        return await self.orchestrator.run(
            system_prompt, user_prompt, catalog,
            on_status=on_status,
            timeout=timeout if timeout is not None else self.timeout,
        )

    async def try_chat(
        self,
        message: str,
        context: dict[str, Any] | None = None,
        on_status: StatusCallback | None = None,
        timeout: float | None = None,
    ) -> ChatOutcome:
        """与 chat 相同，但把错误和状态历史一起装进 ChatOutcome"""
        outcome = ChatOutcome()

        def _record(status: str) -> None:
            outcome.status.append(status)
            _emit(on_status, status)

        try:
            outcome.answer = await self.chat(message, context, _record, timeout)
        except RelayError as e:
            _log.error("Unable to chat: %s", e)
            outcome.error = e
        return outcome
