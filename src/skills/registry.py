"""Skill 注册与发现，同时作为工具注册表的一个工具来源"""

from typing import Any

from core.errors import ToolNotFound
from core.routing import ToolDescriptor
from skills.base import Skill


class SkillRegistry:
    name = "skills"

    def __init__(self) -> None:
        self._skills: dict[str, Skill] = {}

    def register(self, skill: Skill) -> None:
        self._skills[skill.name] = skill

    def unregister(self, name: str) -> None:
        self._skills.pop(name, None)

    def get(self, name: str) -> Skill | None:
        return self._skills.get(name)

    def list_all(self) -> list[Skill]:
        return list(self._skills.values())

    def list_tools(self) -> list[ToolDescriptor]:
        return [s.to_descriptor() for s in self._skills.values()]

    async def call_tool(self, name: str, arguments: dict[str, Any]) -> list[str]:
        skill = self.get(name)
        if not skill:
            raise ToolNotFound(name)
        return await skill.execute(arguments)

    def clear(self) -> None:
        self._skills.clear()


_registry: SkillRegistry | None = None


def get_registry() -> SkillRegistry:
    global _registry
    if _registry is None:
        _registry = SkillRegistry()
    return _registry


def register_builtin_skills(reg: SkillRegistry | None = None) -> SkillRegistry:
    """注册内置 skill，返回注册表"""
    from skills.clock import CurrentTime

    reg = reg or get_registry()
    for cls in [CurrentTime]:
        reg.register(cls())
    return reg
