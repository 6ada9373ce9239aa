from skills.base import Skill
from skills.registry import SkillRegistry, get_registry, register_builtin_skills

__all__ = ["Skill", "SkillRegistry", "get_registry", "register_builtin_skills"]
