"""Relay 异常层级，全部继承 RelayError"""


class RelayError(Exception):
    """Relay 所有错误的基类"""


class ConfigurationError(RelayError):
    """配置或模板加载/渲染失败，不重试"""


class NoBackendAvailable(RelayError):
    """截止时间前没有空闲且存活的后端"""

    def __init__(self, model: str, waited: float) -> None:
        self.model = model
        self.waited = waited
        super().__init__(f"No backend available for model '{model}' after {waited:.1f}s")


class BackendCallError(RelayError):
    """后端调用失败：传输错误、非 200 状态或响应体无法解析"""

    def __init__(self, server: str, reason: str, status_code: int | None = None) -> None:
        self.server = server
        self.status_code = status_code
        super().__init__(f"Backend '{server}' call failed: {reason}")


class ToolNotFound(RelayError):
    def __init__(self, name: str) -> None:
        self.name = name
        super().__init__(f"Tool '{name}' not found")


class ToolCallError(RelayError):
    def __init__(self, name: str, reason: str) -> None:
        self.name = name
        self.reason = reason
        super().__init__(f"Tool '{name}' call error: {reason}")


class ToolLoopExceeded(RelayError):
    """模型连续请求工具超过轮数上限"""

    def __init__(self, rounds: int) -> None:
        self.rounds = rounds
        super().__init__(f"Maximum tool call depth exceeded ({rounds} rounds)")
