"""测试公共夹具：假的 Ollama 服务器 + 假工具"""

import asyncio
import json

import httpx
import pytest

from core.backend import OllamaClient, servers_from_mapping
from core.chat import ChatOrchestrator
from core.pool import BackendPool
from core.routing import ToolRegistry
from skills import Skill, SkillRegistry

MODEL = "qwen3:14b"


class FakeOllama:
    """httpx.MockTransport 的处理函数，按脚本返回 assistant 消息"""

    def __init__(self) -> None:
        self.replies: list[dict] = []
        self.dead: set[str] = set()
        self.unreachable: set[str] = set()
        self.chat_status = 200
        self.chat_body: bytes | None = None
        self.probe_delay = 0.0
        self.chat_delay = 0.0
        self.chat_calls: list[dict] = []
        self.chat_hosts: list[str] = []
        self.probe_calls: list[str] = []

    def say(self, text: str) -> "FakeOllama":
        self.replies.append({"role": "assistant", "content": text})
        return self

    def call_tools(self, *calls: tuple[str, dict]) -> "FakeOllama":
        self.replies.append({
            "role": "assistant",
            "content": "",
            "tool_calls": [{"function": {"name": n, "arguments": a}} for n, a in calls],
        })
        return self

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        host = request.url.host
        if host in self.unreachable:
            raise httpx.ConnectError("connection refused", request=request)
        body = json.loads(request.content)
        if request.url.path == "/api/show":
            self.probe_calls.append(host)
            if self.probe_delay:
                await asyncio.sleep(self.probe_delay)
            if host in self.dead:
                return httpx.Response(404, json={"error": f"model '{body['model']}' not found"})
            return httpx.Response(200, json={"details": {"family": "qwen3"}})
        if request.url.path == "/api/chat":
            self.chat_calls.append(body)
            self.chat_hosts.append(host)
            if self.chat_delay:
                await asyncio.sleep(self.chat_delay)
            if self.chat_status != 200:
                return httpx.Response(self.chat_status, text="boom")
            if self.chat_body is not None:
                return httpx.Response(200, content=self.chat_body)
            # 最后一条回复重复使用
            reply = self.replies.pop(0) if len(self.replies) > 1 else self.replies[0]
            return httpx.Response(200, json={
                "model": body["model"],
                "created_at": "2025-06-01T10:00:00.123456789Z",
                "message": reply,
                "done": True,
                "done_reason": "stop",
            })
        return httpx.Response(404)


class WeatherSkill(Skill):
    def __init__(self):
        super().__init__(
            name="weather",
            description="Get current weather for a city",
            parameters={"type": "object", "properties": {"city": {"type": "string"}}, "required": ["city"]},
        )
        self.calls: list[dict] = []

    def run(self, args):
        self.calls.append(args)
        return ["22C clear"]


class BrokenSkill(Skill):
    def __init__(self):
        super().__init__(name="broken", description="Always fails")

    def run(self, args):
        raise RuntimeError("boom")


@pytest.fixture
def ollama() -> FakeOllama:
    return FakeOllama()


@pytest.fixture
def make_client(ollama):
    def _make() -> OllamaClient:
        return OllamaClient(MODEL, client=httpx.AsyncClient(transport=httpx.MockTransport(ollama)))
    return _make


@pytest.fixture
def make_pool(make_client):
    def _make(servers: dict[str, str] | None = None, poll_interval: float = 0.01) -> BackendPool:
        servers = servers or {"main": "http://main:11434"}
        return BackendPool(servers_from_mapping(servers), make_client(), poll_interval=poll_interval)
    return _make


@pytest.fixture
def skills() -> SkillRegistry:
    reg = SkillRegistry()
    reg.register(WeatherSkill())
    reg.register(BrokenSkill())
    return reg


@pytest.fixture
def registry(skills) -> ToolRegistry:
    reg = ToolRegistry()
    reg.add_provider(skills)
    return reg


@pytest.fixture
def make_orchestrator(make_pool):
    def _make(servers=None, tool_names=None, max_tool_rounds=10) -> ChatOrchestrator:
        pool = make_pool(servers)
        return ChatOrchestrator(MODEL, pool, pool.client, tool_names=tool_names, max_tool_rounds=max_tool_rounds)
    return _make
