"""提示词模板 - 启动时加载，之后只读"""

from pathlib import Path
from typing import Any

import jinja2

from core.errors import ConfigurationError

SYSTEM = "system"
USER = "user"
# 用户模板中原始消息的保留键
MESSAGE_KEY = "message"


class TemplateRenderer:
    """按名称渲染 Jinja2 模板，未定义变量直接报错"""

    def __init__(self, sources: dict[str, str]) -> None:
        self._env = jinja2.Environment(
            loader=jinja2.DictLoader(dict(sources)),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=False,
            autoescape=False,
        )
        self._templates: dict[str, jinja2.Template] = {}
        for name in sources:
            try:
                self._templates[name] = self._env.get_template(name)
            except jinja2.TemplateSyntaxError as e:
                raise ConfigurationError(f"template '{name}' line {e.lineno}: {e.message}") from e

    @classmethod
    def from_files(cls, system: str | Path, user: str | Path) -> "TemplateRenderer":
        sources = {}
        for name, path in ((SYSTEM, system), (USER, user)):
            try:
                sources[name] = Path(path).read_text(encoding="utf-8")
            except OSError as e:
                raise ConfigurationError(f"unable to read template '{name}' from {path}: {e}") from e
        return cls(sources)

    def names(self) -> list[str]:
        return list(self._templates)

    def render(self, name: str, arguments: dict[str, Any] | None = None) -> str:
        tpl = self._templates.get(name)
        if tpl is None:
            raise ConfigurationError(f"template '{name}' not loaded")
        try:
            return tpl.render(arguments or {})
        except jinja2.TemplateError as e:
            raise ConfigurationError(f"error executing template '{name}': {e}") from e

    def render_system(self, arguments: dict[str, Any] | None = None) -> str:
        return self.render(SYSTEM, arguments)

    def render_user(self, message: str, arguments: dict[str, Any] | None = None) -> str:
        args = dict(arguments or {})
        args[MESSAGE_KEY] = message
        return self.render(USER, args)
