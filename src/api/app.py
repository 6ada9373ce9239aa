"""FastAPI 应用"""

import asyncio
import logging

from fastapi import Depends, FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from api.status import StatusHistory, format_reply
from core.chat import ChatService
from core.config import RelayConfig, load_config
from core.errors import BackendCallError, NoBackendAvailable, RelayError
from core.routing import ToolRegistry, get_tool_registry
from mcp_client.client import init_global_mcp_session, reload_global_mcp_session
from skills import register_builtin_skills

_log = logging.getLogger("relay.api")

app = FastAPI(title="Relay", description="Ollama chat relay with MCP tools")

_config: RelayConfig | None = None
_service: ChatService | None = None


async def _attach_mcp(registry: ToolRegistry, cfg: RelayConfig) -> None:
    sess = await init_global_mcp_session(cfg.mcp_servers)
    if sess is not None:
        registry.add_provider(sess)


@app.on_event("startup")
async def startup():
    global _config, _service
    _config = load_config()
    registry = get_tool_registry()
    registry.add_provider(register_builtin_skills())
    await _attach_mcp(registry, _config)
    _service = ChatService.from_config(_config, registry)
    _log.info("relay ready: model=%s servers=%s", _config.model, ", ".join(_config.servers))


@app.on_event("shutdown")
async def shutdown():
    if _service is not None:
        await _service.aclose()
    await asyncio.to_thread(reload_global_mcp_session)


def get_service() -> ChatService:
    if _service is None:
        raise HTTPException(status_code=503, detail="service not ready")
    return _service


class ChatIn(BaseModel):
    message: str
    context: dict = Field(default_factory=dict)


def _status_code(err: RelayError) -> int:
    if isinstance(err, NoBackendAvailable):
        return 503
    if isinstance(err, BackendCallError):
        return 502
    return 500


@app.post("/chat")
async def api_chat(body: ChatIn, service: ChatService = Depends(get_service)):
    message = body.message.strip()
    if not message:
        raise HTTPException(status_code=422, detail="message required")
    history = StatusHistory()
    outcome = await service.try_chat(message, body.context, history)
    if outcome.ok:
        return {
            "reply": format_reply(outcome.answer or ""),
            "status": history.lines(finished=True),
            "elapsed": round(history.elapsed, 2),
        }
    return JSONResponse(
        status_code=_status_code(outcome.error),
        content={
            "error": type(outcome.error).__name__,
            "detail": str(outcome.error),
            "status": history.lines(),
        },
    )


@app.get("/tools")
async def api_tools(service: ChatService = Depends(get_service)):
    return [
        {"name": d.name, "description": d.description, "parameters": d.parameters}
        for d in service.registry.list_tools()
    ]


@app.post("/mcp/reload")
async def api_mcp_reload(service: ChatService = Depends(get_service)):
    """断开 MCP 服务器并按当前配置重连"""
    await asyncio.to_thread(reload_global_mcp_session)
    service.registry.remove_provider("mcp")
    cfg = load_config()
    await _attach_mcp(service.registry, cfg)
    return {"ok": True, "tools": len(service.registry.list_tools())}
