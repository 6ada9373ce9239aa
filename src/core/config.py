"""配置 - 读取 config/relay.yaml，环境变量可覆盖部分字段"""

import os
from dataclasses import dataclass, field
from pathlib import Path

import httpx
import yaml

from core.errors import ConfigurationError

ROOT = Path(__file__).resolve().parents[2]
DEFAULT_CONFIG = ROOT / "config" / "relay.yaml"

_DEFAULT_REQUEST_TIMEOUT = 120.0
_DEFAULT_CHAT_TIMEOUT = 600.0
_DEFAULT_POLL_INTERVAL = 0.5
_DEFAULT_MAX_TOOL_ROUNDS = 10


@dataclass
class RelayConfig:
    model: str
    servers: dict[str, str]
    system_template: Path
    user_template: Path
    tool_names: dict[str, str] = field(default_factory=dict)
    mcp_servers: list[dict] = field(default_factory=list)
    request_timeout: float = _DEFAULT_REQUEST_TIMEOUT
    chat_timeout: float = _DEFAULT_CHAT_TIMEOUT
    poll_interval: float = _DEFAULT_POLL_INTERVAL
    max_tool_rounds: int = _DEFAULT_MAX_TOOL_ROUNDS
    debug: bool = False


def _resolve(base: Path, raw: str) -> Path:
    p = Path(raw).expanduser()
    return p if p.is_absolute() else (base / p).resolve()


def _server_url(name: str, raw: str) -> str:
    url = raw.strip().rstrip("/")
    try:
        parsed = httpx.URL(url)
    except httpx.InvalidURL as e:
        raise ConfigurationError(f"invalid url for server {name}: {e}") from e
    if parsed.scheme not in ("http", "https") or not parsed.host:
        raise ConfigurationError(f"invalid url for server {name}: {raw!r}")
    return url


def config_path() -> Path:
    raw = os.getenv("RELAY_CONFIG")
    return Path(raw).expanduser() if raw else DEFAULT_CONFIG


def load_config(path: str | Path | None = None) -> RelayConfig:
    cfg_file = Path(path) if path else config_path()
    if not cfg_file.exists():
        raise ConfigurationError(f"config file not found: {cfg_file}")
    try:
        with open(cfg_file, encoding="utf-8") as f:
            d = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise ConfigurationError(f"invalid config {cfg_file}: {e}") from e
    if not isinstance(d, dict):
        raise ConfigurationError(f"invalid config {cfg_file}: top level must be a mapping")

    model = os.getenv("RELAY_MODEL") or d.get("model") or ""
    if not model:
        raise ConfigurationError("model is required")
    servers = d.get("servers") or {}
    if not isinstance(servers, dict) or not servers:
        raise ConfigurationError("servers must map at least one name to a url")

    templates = d.get("templates") or {}
    if not templates.get("system") or not templates.get("user"):
        raise ConfigurationError("templates.system and templates.user are required")

    base = cfg_file.resolve().parent
    timeouts = d.get("timeouts") or {}
    pool = d.get("pool") or {}
    mcp_servers = (d.get("mcp") or {}).get("servers") or []
    return RelayConfig(
        model=str(model),
        servers={str(k): _server_url(str(k), str(v)) for k, v in servers.items()},
        system_template=_resolve(base, templates["system"]),
        user_template=_resolve(base, templates["user"]),
        tool_names={str(k): str(v) for k, v in (d.get("tool_names") or {}).items()},
        mcp_servers=mcp_servers if isinstance(mcp_servers, list) else [],
        request_timeout=float(timeouts.get("request", _DEFAULT_REQUEST_TIMEOUT)),
        chat_timeout=float(timeouts.get("chat", _DEFAULT_CHAT_TIMEOUT)),
        poll_interval=float(pool.get("poll_interval", _DEFAULT_POLL_INTERVAL)),
        max_tool_rounds=int(d.get("max_tool_rounds", _DEFAULT_MAX_TOOL_ROUNDS)),
        debug=bool(d.get("debug", False)),
    )
