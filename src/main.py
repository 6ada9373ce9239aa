#!/usr/bin/env python3
"""Relay - 主入口：relay serve / relay chat"""

import asyncio
import logging
import os
import sys
from pathlib import Path

import click
from dotenv import load_dotenv

ROOT = Path(__file__).resolve().parent.parent
load_dotenv(ROOT / ".env")
sys.path.insert(0, str(ROOT / "src"))

from core.config import load_config  # noqa: E402


def _setup_logging(debug: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    # httpx 每个请求都打 INFO，太吵
    logging.getLogger("httpx").setLevel(logging.WARNING)


@click.group()
def cli():
    """Ollama chat relay with MCP tools."""


@cli.command()
@click.option("--config", "config_path", default=None, envvar="RELAY_CONFIG", help="config file path")
@click.option("--host", default="127.0.0.1")
@click.option("--port", default=8000, type=int)
def serve(config_path, host, port):
    """Run the HTTP API."""
    import uvicorn

    if config_path:
        os.environ["RELAY_CONFIG"] = config_path
    cfg = load_config(config_path)
    _setup_logging(cfg.debug)
    uvicorn.run("api.app:app", host=host, port=port, log_level="debug" if cfg.debug else "info")


@cli.command()
@click.argument("message")
@click.option("--config", "config_path", default=None, envvar="RELAY_CONFIG", help="config file path")
@click.option("--user", "username", default="cli", help="username passed to the templates")
def chat(message, config_path, username):
    """Send one message and print the reply."""
    from api.status import format_reply
    from core.chat import ChatService
    from core.routing import get_tool_registry
    from mcp_client.client import init_global_mcp_session, reload_global_mcp_session
    from skills import register_builtin_skills

    cfg = load_config(config_path)
    _setup_logging(cfg.debug)

    async def _run():
        registry = get_tool_registry()
        registry.add_provider(register_builtin_skills())
        sess = await init_global_mcp_session(cfg.mcp_servers)
        if sess is not None:
            registry.add_provider(sess)
        service = ChatService.from_config(cfg, registry)
        try:
            return await service.try_chat(
                message,
                {"user_id": username, "username": username},
                lambda s: click.echo(s, err=True),
            )
        finally:
            await service.aclose()
            await asyncio.to_thread(reload_global_mcp_session)

    outcome = asyncio.run(_run())
    if not outcome.ok:
        raise click.ClickException(str(outcome.error))
    click.echo(format_reply(outcome.answer or ""))


if __name__ == "__main__":
    cli()
