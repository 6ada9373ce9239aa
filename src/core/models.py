"""Ollama /api/chat 与 /api/show 的报文模型"""

import json
from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator


class ToolCallFunction(BaseModel):
    name: str
    arguments: dict[str, Any] = Field(default_factory=dict)
    index: int | None = None

    @field_validator("arguments", mode="before")
    @classmethod
    def _decode_arguments(cls, v: Any) -> dict:
        # OpenAI 兼容接口返回 JSON 字符串，Ollama 返回对象
        if v is None or v == "":
            return {}
        if isinstance(v, str):
            try:
                v = json.loads(v)
            except json.JSONDecodeError:
                return {}
        return v if isinstance(v, dict) else {}


class ToolCall(BaseModel):
    function: ToolCallFunction

    @property
    def name(self) -> str:
        return self.function.name

    @property
    def arguments(self) -> dict[str, Any]:
        return self.function.arguments


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_calls: list[ToolCall] = Field(default_factory=list)

    @field_validator("content", mode="before")
    @classmethod
    def _none_content(cls, v: Any) -> str:
        return v or ""

    @field_validator("tool_calls", mode="before")
    @classmethod
    def _none_tool_calls(cls, v: Any) -> list:
        return v or []

    def to_wire(self) -> dict:
        d: dict[str, Any] = {"role": self.role, "content": self.content}
        if self.tool_calls:
            d["tool_calls"] = [tc.model_dump(exclude_none=True) for tc in self.tool_calls]
        return d


class ChatRequest(BaseModel):
    model: str
    messages: list[ChatMessage]
    tools: list[dict] = Field(default_factory=list)
    stream: bool = False

    def to_wire(self) -> dict:
        body: dict[str, Any] = {
            "model": self.model,
            "messages": [m.to_wire() for m in self.messages],
            "stream": self.stream,
        }
        if self.tools:
            body["tools"] = self.tools
        return body


class ChatResponse(BaseModel):
    model: str = ""
    created_at: str | None = None
    message: ChatMessage
    done: bool = True
    done_reason: str = ""
    total_duration: int = 0
    load_duration: int = 0
    prompt_eval_count: int = 0
    eval_count: int = 0


class ModelInfoRequest(BaseModel):
    model: str
