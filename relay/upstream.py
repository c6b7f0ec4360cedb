"""Chat-completion transport and envelope handling.

The upstream contract is OpenAI-compatible: a JSON envelope goes out, a JSON
envelope comes back and ``choices[0].message.content`` holds the model text.
Each call opens its own client and is attempted exactly once.
"""

from __future__ import annotations

import json
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional, Union

import httpx

from config.settings import Settings
from relay.errors import ErrorKind, RelayError
from relay.schemas import ChatMessage, CompletionRequest


def build_completion_request(question: str, settings: Settings) -> CompletionRequest:
    return CompletionRequest(
        model=settings.openai_model,
        messages=[
            ChatMessage(role="system", content=settings.system_prompt),
            ChatMessage(role="user", content=question),
        ],
    )


class CompletionClient:
    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = settings.openai_base_url
        self.timeout = settings.request_timeout
        self._api_key = settings.openai_api_key
        self._transport = transport

    def _headers(self) -> Dict[str, str]:
        return {
            "Content-Type": "application/json",
            "Authorization": f"Bearer {self._api_key}",
        }

    @asynccontextmanager
    async def stream(self, completion: CompletionRequest) -> AsyncIterator[httpx.Response]:
        """POST the envelope and yield the response with its body still unread."""
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            async with client.stream(
                "POST",
                self.url,
                json=completion.model_dump(),
                headers=self._headers(),
            ) as response:
                yield response


def _reject_constant(name: str) -> Any:
    raise ValueError(f"Invalid JSON constant: {name}")


def strict_loads(text: Union[str, bytes]) -> Any:
    """json.loads without NaN, Infinity and -Infinity."""
    return json.loads(text, parse_constant=_reject_constant)


def parse_envelope(raw: bytes) -> Any:
    try:
        return strict_loads(raw)
    except ValueError as exc:
        raise RelayError(ErrorKind.PARSE_ERROR, "OpenAI 响应解析失败", details=str(exc)) from exc


def extract_content(envelope: Any) -> str:
    content = None
    if isinstance(envelope, dict):
        choices = envelope.get("choices")
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                content = message.get("content")

    if not isinstance(content, str) or not content:
        raise RelayError(
            ErrorKind.NO_CONTENT,
            "OpenAI 响应中没有内容",
            openai_response=envelope,
        )
    return content


def summarize_envelope(envelope: Any) -> Dict[str, Any]:
    if not isinstance(envelope, dict):
        return {"choices": 0, "usage": None, "model": None}
    choices = envelope.get("choices")
    return {
        "choices": len(choices) if isinstance(choices, list) else 0,
        "usage": envelope.get("usage"),
        "model": envelope.get("model"),
    }
