from __future__ import annotations

from typing import List, Literal

from pydantic import BaseModel, ConfigDict, Field, StrictStr


class AnswerRequest(BaseModel):
    model_config = ConfigDict(extra="ignore")

    question: StrictStr = Field(..., min_length=1, description="Question forwarded to the model")


class ChatMessage(BaseModel):
    role: Literal["system", "user", "assistant"] = Field(..., description="Chat role")
    content: str


class ResponseFormat(BaseModel):
    type: str = "json_object"


class CompletionRequest(BaseModel):
    """Outbound chat-completion envelope."""

    model: str
    messages: List[ChatMessage]
    response_format: ResponseFormat = Field(default_factory=ResponseFormat)
    temperature: float = 0.7
    max_tokens: int = 500


class StatusResponse(BaseModel):
    message: str
    version: str
    endpoints: List[str]
    status: str
    model_in_use: str


class NotFoundResponse(BaseModel):
    message: str
    available_paths: List[str]
    method: str
    path: str
