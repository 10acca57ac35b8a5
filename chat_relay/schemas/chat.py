from typing import Any, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator


class Character(BaseModel):
    model_config = ConfigDict(extra="allow")

    description: Optional[str] = None


class HistoryMessage(BaseModel):
    model_config = ConfigDict(extra="allow")

    sender: Optional[str] = None
    main: Optional[str] = None


class InboundChatRequest(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True, protected_namespaces=())

    character: Optional[Character] = None
    chat_history: List[HistoryMessage] = Field(default_factory=list, alias="chatHistory")
    user_message: Optional[str] = Field(default=None, alias="userMessage")
    model_name: Optional[str] = Field(default=None, alias="modelName")
    # 原始值，转发前再做数值转换
    temperature: Any = None
    frequency_penalty: Any = None
    presence_penalty: Any = None

    @field_validator("chat_history", mode="before")
    @classmethod
    def default_history(cls, v):
        return [] if v is None else v


class UpstreamMessage(BaseModel):
    role: Literal["system", "user", "assistant"]
    content: str


class UpstreamChatRequest(BaseModel):
    model: str
    messages: List[UpstreamMessage]
    # None 表示无法解析为数字，序列化为 null
    temperature: Optional[float]
    frequency_penalty: Optional[float]
    presence_penalty: Optional[float]
    stream: Literal[True] = True
