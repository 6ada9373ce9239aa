"""Skill 基类 - 进程内工具"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any

from core.routing import ToolDescriptor


def _empty_schema() -> dict:
    return {"type": "object", "properties": {}}


@dataclass
class Skill(ABC):
    name: str
    description: str
    parameters: dict = field(default_factory=_empty_schema)
    config: dict = field(default_factory=dict)

    @abstractmethod
    def run(self, args: dict[str, Any]) -> list[str]:
        """返回文本行；失败时直接抛异常，由注册表转成工具错误"""
        ...

    async def execute(self, args: dict[str, Any]) -> list[str]:
        return self.run(args)

    def to_descriptor(self) -> ToolDescriptor:
        return ToolDescriptor(name=self.name, description=self.description, parameters=self.parameters)
