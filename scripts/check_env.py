#!/usr/bin/env python3
"""检查环境变量、实际生效配置以及各后端是否在线"""

import asyncio
import os
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
sys.path.insert(0, str(ROOT / "src"))


async def _probe_all(cfg):
    from core.backend import OllamaClient, servers_from_mapping

    client = OllamaClient(cfg.model, timeout=10)
    try:
        for srv in servers_from_mapping(cfg.servers):
            ok = await client.probe(srv)
            print(f"  {srv.name} ({srv.url}): {'✓ 在线' if ok else '✗ 不可用'}")
    finally:
        await client.aclose()


def main():
    print("=== 环境变量 ===")
    for k in ("RELAY_CONFIG", "RELAY_MODEL"):
        v = os.environ.get(k)
        print(f"  {k}: {repr(v) if v else '(未设置)'}")

    print("\n=== 实际生效的配置 ===")
    try:
        from core.config import load_config
        cfg = load_config()
    except Exception as e:
        print(f"  加载失败: {e}")
        return
    print(f"  model: {cfg.model}")
    print(f"  system template: {cfg.system_template}")
    print(f"  user template: {cfg.user_template}")
    print(f"  mcp servers: {len(cfg.mcp_servers)}")

    print("\n=== 后端探测 (/api/show) ===")
    asyncio.run(_probe_all(cfg))


if __name__ == "__main__":
    main()
