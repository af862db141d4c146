"""HTTP 请求体模型。字段名与前端保持 camelCase。"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class ChatBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    # 内容校验交给 ChatService，这里允许缺省以便返回统一的 EMPTY_MESSAGE
    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    is_voice: bool = Field(default=False, alias="isVoice")


class ImageBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    message: Optional[str] = None
    session_id: Optional[str] = Field(default=None, alias="sessionId")
    style: str = "default"
