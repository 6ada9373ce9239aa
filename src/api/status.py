"""状态历史展示 + 回复整理"""

import re
import time

# 行首的符号类字符（emoji），已完成的状态替换为 ✅
_LEADING_SYMBOL = re.compile(r"^[\u2190-\u2bff\U0001f000-\U0001faff]\ufe0f?")
DONE_MARK = "✅"
MAX_LENGTH = 4096
THINK_CLOSE = "</think>"
EMPTY_REPLY = "AI was thinking too hard so it provided no response... Try again later."


def mark_done(status: str) -> str:
    return _LEADING_SYMBOL.sub(DONE_MARK, status, count=1)


class StatusHistory:
    """可直接作为状态回调；同一对话内只会被顺序调用"""

    def __init__(self) -> None:
        self.events: list[str] = []
        self.started = time.monotonic()

    def __call__(self, status: str) -> None:
        self.events.append(status)

    def __len__(self) -> int:
        return len(self.events)

    def lines(self, finished: bool = False) -> list[str]:
        """之前的状态标记为完成；finished=True 时最后一条也标记"""
        out = [mark_done(s) for s in self.events[:-1]]
        if self.events:
            last = self.events[-1]
            out.append(mark_done(last) if finished else last)
        return out

    def render(self, finished: bool = False) -> str:
        return "\n".join(self.lines(finished))

    @property
    def elapsed(self) -> float:
        return time.monotonic() - self.started


def crop_text(text: str, limit: int = MAX_LENGTH) -> str:
    if len(text) <= limit:
        return text
    return text[: limit - 3] + "..."


def extract_after_last_think_tag(text: str) -> str:
    """推理模型会在 </think> 前输出思考过程，只保留之后的正文"""
    idx = text.rfind(THINK_CLOSE)
    if idx >= 0:
        text = text[idx + len(THINK_CLOSE):]
    return text.strip()


def format_reply(text: str) -> str:
    data = extract_after_last_think_tag(text or "")
    if not data:
        return EMPTY_REPLY
    return crop_text(data)
