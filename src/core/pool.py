"""后端池 - 每台服务器一个互斥槽，选中后独占到对话结束

选择策略：轮询扫描空闲槽，非阻塞占用后立即做存活探测；探测失败马上释放并尝试下一台。
一轮都没有可用服务器时等待 poll_interval 后重扫，等待受调用方截止时间约束。
"""

import asyncio
import logging
import threading
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable

from core.backend import BackendServer, OllamaClient
from core.errors import NoBackendAvailable

_log = logging.getLogger("relay.pool")

POLL_INTERVAL = 0.5

ReleaseFunc = Callable[[], None]


class ServerSlot:
    """单台服务器的互斥令牌，记录占用/释放次数"""

    def __init__(self, server: BackendServer) -> None:
        self.server = server
        self._lock = threading.Lock()
        self.acquired = 0
        self.released = 0

    @property
    def held(self) -> bool:
        return self._lock.locked()

    def try_claim(self) -> bool:
        if not self._lock.acquire(blocking=False):
            return False
        self.acquired += 1
        return True

    def release(self) -> None:
        self.released += 1
        self._lock.release()


class BackendPool:
    def __init__(
        self,
        servers: list[BackendServer],
        client: OllamaClient,
        poll_interval: float = POLL_INTERVAL,
    ) -> None:
        if not servers:
            raise ValueError("backend pool needs at least one server")
        self._servers = list(servers)
        self._slots = {s.url: ServerSlot(s) for s in self._servers}
        self._client = client
        self._poll_interval = poll_interval
        self._next = 0

    @property
    def client(self) -> OllamaClient:
        return self._client

    @property
    def servers(self) -> list[BackendServer]:
        return list(self._servers)

    def slot(self, server: BackendServer) -> ServerSlot:
        return self._slots[server.url]

    def _releaser(self, slot: ServerSlot) -> ReleaseFunc:
        done = False

        def release() -> None:
            nonlocal done
            if done:
                _log.warning("slot for %s already released", slot.server.name)
                return
            done = True
            slot.release()
            _log.debug("released %s", slot.server.name)

        return release

    async def _probe(self, slot: ServerSlot, remaining: float | None) -> bool:
        # 槽已被占用，任何退出路径（含取消）都必须先释放再向上抛
        try:
            if remaining is None:
                return await self._client.probe(slot.server)
            return await asyncio.wait_for(self._client.probe(slot.server), timeout=remaining)
        except asyncio.TimeoutError:
            return False
        except BaseException:
            slot.release()
            raise

    async def select_server(self, timeout: float | None = None) -> tuple[BackendServer, ReleaseFunc]:
        """返回 (服务器, release)，调用方负责恰好释放一次；超时抛 NoBackendAvailable"""
        loop = asyncio.get_running_loop()
        started = loop.time()
        deadline = None if timeout is None else started + timeout
        n = len(self._servers)
        while True:
            start = self._next
            for i in range(n):
                if deadline is not None and loop.time() >= deadline:
                    break
                idx = (start + i) % n
                server = self._servers[idx]
                slot = self._slots[server.url]
                if not slot.try_claim():
                    continue
                remaining = None if deadline is None else deadline - loop.time()
                if not await self._probe(slot, remaining):
                    slot.release()
                    _log.debug("server %s not serving %s, skipped", server.name, self._client.model)
                    continue
                self._next = (idx + 1) % n
                _log.info("selected server %s (%s)", server.name, server.url)
                return server, self._releaser(slot)

            if deadline is None:
                await asyncio.sleep(self._poll_interval)
                continue
            remaining = deadline - loop.time()
            if remaining <= 0:
                waited = loop.time() - started
                _log.warning("no backend available for %s after %.1fs", self._client.model, waited)
                raise NoBackendAvailable(self._client.model, waited)
            await asyncio.sleep(min(self._poll_interval, remaining))

    @asynccontextmanager
    async def acquire(self, timeout: float | None = None) -> AsyncIterator[BackendServer]:
        server, release = await self.select_server(timeout)
        try:
            yield server
        finally:
            release()
