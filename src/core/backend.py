"""Ollama 后端 HTTP 客户端：/api/chat 与 /api/show"""

import logging
from dataclasses import dataclass, field

import httpx
from pydantic import ValidationError

from core.errors import BackendCallError
from core.models import ChatRequest, ChatResponse, ModelInfoRequest

_log = logging.getLogger("relay.backend")

REQUEST_TIMEOUT = 120.0


@dataclass(frozen=True)
class BackendServer:
    """一台 Ollama 服务器，以 url 作为身份"""

    name: str = field(compare=False)
    url: str


def servers_from_mapping(servers: dict[str, str]) -> list[BackendServer]:
    return [BackendServer(name=n, url=u.strip().rstrip("/")) for n, u in servers.items()]


class OllamaClient:
    """复用一个 httpx.AsyncClient，不做自动重试"""

    def __init__(
        self,
        model: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = REQUEST_TIMEOUT,
    ) -> None:
        self.model = model
        self._own_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._own_client:
            await self._client.aclose()

    async def probe(self, server: BackendServer, timeout: float | None = None) -> bool:
        """/api/show 返回 200 即认为该服务器可用"""
        body = ModelInfoRequest(model=self.model).model_dump()
        kwargs = {"timeout": timeout} if timeout is not None else {}
        try:
            r = await self._client.post(f"{server.url}/api/show", json=body, **kwargs)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            _log.debug("probe %s failed: %s", server.name, e)
            return False
        if r.status_code != 200:
            _log.debug("probe %s returned HTTP %s", server.name, r.status_code)
            return False
        return True

    async def chat(self, server: BackendServer, request: ChatRequest) -> ChatResponse:
        try:
            r = await self._client.post(f"{server.url}/api/chat", json=request.to_wire())
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            _log.error("Ollama call error on %s: %s", server.name, e)
            raise BackendCallError(server.name, f"ollama call failed: {e}") from e
        if r.status_code != 200:
            _log.error("Ollama call returned HTTP %s on %s: %s", r.status_code, server.name, r.text[:500])
            raise BackendCallError(server.name, f"server returned status {r.status_code}", r.status_code)
        try:
            return ChatResponse.model_validate_json(r.content)
        except ValidationError as e:
            _log.error("Unable to parse response from %s: %s", server.name, r.text[:500])
            raise BackendCallError(server.name, f"failed to parse response body: {e}") from e
