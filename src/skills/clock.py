"""CurrentTime - 当前日期时间"""

from datetime import datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from skills.base import Skill


class CurrentTime(Skill):
    def __init__(self, config: dict | None = None):
        cfg = config or {}
        super().__init__(
            name=cfg.get("name", "current_time"),
            description=cfg.get("description", "Get the current date and time, optionally in an IANA timezone"),
            parameters={
                "type": "object",
                "properties": {
                    "timezone": {"type": "string", "description": "IANA timezone name, e.g. Europe/Paris"},
                },
            },
            config=cfg,
        )

    def run(self, args: dict[str, Any]) -> list[str]:
        tz_name = (args or {}).get("timezone") or ""
        if not tz_name:
            return [datetime.now().astimezone().isoformat(timespec="seconds")]
        try:
            tz = ZoneInfo(tz_name)
        except (ZoneInfoNotFoundError, ValueError) as e:
            raise ValueError(f"unknown timezone: {tz_name}") from e
        return [datetime.now(tz).isoformat(timespec="seconds")]
