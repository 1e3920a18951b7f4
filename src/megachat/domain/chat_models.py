from __future__ import annotations

import json
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


Role = Literal["system", "user", "assistant"]


class ChatTurn(BaseModel):
    role: Role = "user"
    content: str = ""


class ChatRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    user_id: Optional[str] = Field(default=None, alias="userId")
    messages: Optional[List[ChatTurn]] = None
    stream: bool = False


class ChatReply(BaseModel):
    reply: str


class DownloadRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    ai_text: Optional[str] = Field(default=None, alias="aiText")


class StoredMessage(BaseModel):
    message_id: str
    owner_id: str
    role: Role
    content: str
    created_at: str


class StreamChunk(BaseModel):
    """One relay event: a ``token`` fragment or the terminal ``done`` signal."""

    token: Optional[str] = None
    done: bool = False
    # Set on the placeholder token emitted when generation fails
    fallback: bool = Field(default=False, exclude=True)

    @classmethod
    def text(cls, token: str, fallback: bool = False) -> "StreamChunk":
        return cls(token=token, fallback=fallback)

    @classmethod
    def finished(cls) -> "StreamChunk":
        return cls(done=True)

    def to_payload(self) -> dict:
        if self.done:
            return {"done": True}
        return {"token": self.token or ""}

    def to_sse(self) -> str:
        return f"data: {json.dumps(self.to_payload())}\n\n"
