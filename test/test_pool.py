"""后端池测试"""

import asyncio
import time

import pytest

from core.errors import NoBackendAvailable

THREE = {"a": "http://a:11434", "b": "http://b:11434", "c": "http://c:11434"}


def test_select_holds_slot_until_release(make_pool):
    async def _run():
        pool = make_pool()
        server, release = await pool.select_server(timeout=1)
        slot = pool.slot(server)
        assert server.name == "main"
        assert slot.held
        release()
        assert not slot.held
        release()
        assert (slot.acquired, slot.released) == (1, 1)

    asyncio.run(_run())


def test_dead_server_skipped_and_released_immediately(make_pool, ollama):
    ollama.dead.add("a")
    ollama.unreachable.add("b")

    async def _run():
        pool = make_pool(THREE)
        server, release = await pool.select_server(timeout=1)
        assert server.name == "c"
        a, b = pool.servers[0], pool.servers[1]
        assert not pool.slot(a).held and not pool.slot(b).held
        assert pool.slot(a).acquired == pool.slot(a).released == 1
        release()

    asyncio.run(_run())
    assert ollama.probe_calls == ["a", "c"]


def test_all_dead_fails_at_deadline(make_pool, ollama):
    ollama.dead.update({"a", "b", "c"})

    async def _run():
        pool = make_pool(THREE, poll_interval=0.02)
        with pytest.raises(NoBackendAvailable):
            await pool.select_server(timeout=0.2)
        return pool

    started = time.monotonic()
    pool = asyncio.run(_run())
    assert time.monotonic() - started < 1.0
    for s in pool.servers:
        assert not pool.slot(s).held
        assert pool.slot(s).acquired == pool.slot(s).released
    # 多轮扫描
    assert len(ollama.probe_calls) > 3


def test_held_server_is_not_handed_out_twice(make_pool):
    async def _run():
        pool = make_pool()
        server, release = await pool.select_server(timeout=1)
        with pytest.raises(NoBackendAvailable):
            await pool.select_server(timeout=0.1)
        release()
        again, release2 = await pool.select_server(timeout=0.1)
        assert again == server
        release2()

    asyncio.run(_run())


def test_concurrent_callers_get_distinct_servers(make_pool, ollama):
    ollama.probe_delay = 0.01

    async def _run():
        pool = make_pool(THREE)
        results = await asyncio.gather(*(pool.select_server(timeout=1) for _ in range(3)))
        urls = [s.url for s, _ in results]
        assert sorted(urls) == sorted(THREE.values())
        for _, release in results:
            release()

    asyncio.run(_run())


def test_mutual_exclusion_under_contention(make_pool):
    active: dict[str, int] = {}
    overlaps = []

    async def _worker(pool):
        async with pool.acquire(timeout=5) as server:
            active[server.url] = active.get(server.url, 0) + 1
            if active[server.url] > 1:
                overlaps.append(server.url)
            await asyncio.sleep(0.01)
            active[server.url] -= 1

    async def _run():
        pool = make_pool({"a": "http://a:11434", "b": "http://b:11434"})
        await asyncio.gather(*(_worker(pool) for _ in range(8)))
        return pool

    pool = asyncio.run(_run())
    assert overlaps == []
    assert sum(pool.slot(s).acquired for s in pool.servers) == 8
    assert all(pool.slot(s).acquired == pool.slot(s).released for s in pool.servers)


def test_waiter_gets_server_once_released(make_pool):
    async def _run():
        pool = make_pool()
        _, release = await pool.select_server(timeout=1)
        waiter = asyncio.create_task(pool.select_server(timeout=2))
        await asyncio.sleep(0.05)
        assert not waiter.done()
        release()
        server, release2 = await waiter
        assert server.name == "main"
        release2()

    asyncio.run(_run())


def test_round_robin_between_free_servers(make_pool):
    async def _run():
        pool = make_pool({"a": "http://a:11434", "b": "http://b:11434"})
        names = []
        for _ in range(4):
            server, release = await pool.select_server(timeout=1)
            names.append(server.name)
            release()
        return names

    assert asyncio.run(_run()) == ["a", "b", "a", "b"]


def test_cancel_during_probe_releases_slot(make_pool, ollama):
    ollama.probe_delay = 5

    async def _run():
        pool = make_pool()
        task = asyncio.create_task(pool.select_server(timeout=10))
        await asyncio.sleep(0.05)
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task
        slot = pool.slot(pool.servers[0])
        assert not slot.held
        assert slot.acquired == slot.released == 1

    asyncio.run(_run())


def test_slow_probe_bounded_by_deadline(make_pool, ollama):
    ollama.probe_delay = 5

    async def _run():
        pool = make_pool()
        with pytest.raises(NoBackendAvailable):
            await pool.select_server(timeout=0.1)
        assert not pool.slot(pool.servers[0]).held

    started = time.monotonic()
    asyncio.run(_run())
    assert time.monotonic() - started < 1.0


def test_malformed_server_url_is_skipped(make_pool, ollama):
    async def _run():
        pool = make_pool({"bad": "http://bad:abc", "good": "http://good:11434"})
        server, release = await pool.select_server(timeout=1)
        assert server.name == "good"
        bad = pool.servers[0]
        assert not pool.slot(bad).held
        assert pool.slot(bad).acquired == pool.slot(bad).released == 1
        release()

    asyncio.run(_run())
    assert ollama.probe_calls == ["good"]
