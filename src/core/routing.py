"""Routing - 工具注册表：聚合多个工具来源（MCP 服务器、本地 Skill），按名称分发调用"""

import logging
from collections.abc import Iterable, Iterator, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

from core.errors import ToolCallError, ToolNotFound

_log = logging.getLogger("relay.tools")


def _empty_schema() -> dict:
    return {"type": "object", "properties": {}}


@dataclass(frozen=True)
class ToolDescriptor:
    name: str
    description: str = ""
    parameters: dict = field(default_factory=_empty_schema)

    def to_wire(self) -> dict:
        """Ollama / OpenAI 的 function tool 格式"""
        return {
            "type": "function",
            "function": {
                "name": self.name,
                "description": self.description,
                "parameters": self.parameters,
            },
        }


class ToolProvider(Protocol):
    name: str

    def list_tools(self) -> list[ToolDescriptor]: ...

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> list[str]: ...


@dataclass(frozen=True)
class Tool:
    descriptor: ToolDescriptor
    provider: ToolProvider

    @property
    def name(self) -> str:
        return self.descriptor.name

    async def call(self, arguments: dict[str, Any]) -> list[str]:
        try:
            result = await self.provider.call_tool(self.name, arguments or {})
        except (ToolCallError, ToolNotFound):
            raise
        except Exception as e:
            raise ToolCallError(self.name, str(e) or type(e).__name__) from e
        return [str(line) for line in result]


class ToolCatalog(Mapping[str, Tool]):
    """一次对话使用的工具快照，创建后不再变化"""

    def __init__(self, tools: Iterable[Tool] = ()) -> None:
        self._tools: dict[str, Tool] = {}
        for t in tools:
            if t.name in self._tools:
                _log.warning(
                    "tool %s from %s shadowed by %s",
                    t.name, t.provider.name, self._tools[t.name].provider.name,
                )
                continue
            self._tools[t.name] = t

    def __getitem__(self, name: str) -> Tool:
        return self._tools[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._tools)

    def __len__(self) -> int:
        return len(self._tools)

    def descriptors(self) -> list[ToolDescriptor]:
        return [t.descriptor for t in self._tools.values()]

    def to_wire(self) -> list[dict]:
        return [d.to_wire() for d in self.descriptors()]

    async def call(self, name: str, arguments: dict[str, Any]) -> list[str]:
        tool = self._tools.get(name)
        if tool is None:
            raise ToolNotFound(name)
        return await tool.call(arguments)


class ToolRegistry:
    def __init__(self) -> None:
        self._providers: list[ToolProvider] = []

    def add_provider(self, provider: ToolProvider) -> None:
        self.remove_provider(provider.name)
        self._providers.append(provider)

    def remove_provider(self, name: str) -> None:
        self._providers = [p for p in self._providers if p.name != name]

    @property
    def providers(self) -> list[ToolProvider]:
        return list(self._providers)

    def snapshot(self) -> ToolCatalog:
        tools: list[Tool] = []
        for p in list(self._providers):
            try:
                descriptors = p.list_tools()
            except Exception as e:
                # 单个来源失效不影响其他来源
                _log.warning("unable to list tools from %s: %s", p.name, e)
                continue
            tools.extend(Tool(d, p) for d in descriptors if d.name)
        return ToolCatalog(tools)

    def list_tools(self) -> list[ToolDescriptor]:
        return self.snapshot().descriptors()

    async def call(self, name: str, arguments: dict[str, Any]) -> list[str]:
        return await self.snapshot().call(name, arguments)

    def clear(self) -> None:
        self._providers.clear()


_registry: ToolRegistry | None = None


def get_tool_registry() -> ToolRegistry:
    global _registry
    if _registry is None:
        _registry = ToolRegistry()
    return _registry
