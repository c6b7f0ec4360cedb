from __future__ import annotations

import json
import logging
import time
from contextlib import AsyncExitStack
from typing import Any, Awaitable, Callable, Dict, Optional

import httpx
from pydantic import ValidationError

from config.settings import Settings
from relay.errors import ErrorKind, RelayError
from relay.schemas import AnswerRequest, CompletionRequest
from relay.upstream import (
    CompletionClient,
    build_completion_request,
    extract_content,
    parse_envelope,
    strict_loads,
    summarize_envelope,
)


EXPECTED_FIELDS = ("question", "answer")
UNREADABLE_ERROR_BODY = "无法读取错误详情"


def _excerpt(text: str, limit: int = 100) -> str:
    return text[:limit] + ("..." if len(text) > limit else "")


def _dump(value: Any, limit: int = 1000) -> str:
    return _excerpt(json.dumps(value, ensure_ascii=False, default=str), limit)


def parse_request_body(text: str) -> Any:
    try:
        return strict_loads(text)
    except ValueError as exc:
        raise RelayError(ErrorKind.INVALID_JSON, "JSON 格式错误", details=str(exc)) from exc


def validate_request(data: Any) -> AnswerRequest:
    if not isinstance(data, dict):
        raise RelayError(
            ErrorKind.MISSING_FIELD,
            "缺少 'question' 字段",
            details="request body must be a JSON object",
        )
    try:
        return AnswerRequest.model_validate(data)
    except ValidationError as exc:
        raise RelayError(
            ErrorKind.MISSING_FIELD,
            "缺少 'question' 字段",
            details="'question' must be a non-empty string",
        ) from exc


def parse_answer_content(content: str) -> Any:
    """Second parse: the model's message text is itself JSON."""
    try:
        return strict_loads(content)
    except ValueError as exc:
        raise RelayError(
            ErrorKind.AI_RESPONSE_FORMAT_ERROR,
            "AI 回复格式错误",
            raw_response=content,
            parse_error=str(exc),
        ) from exc


def validate_answer(payload: Any) -> Dict[str, Any]:
    if isinstance(payload, dict) and all(payload.get(f) not in (None, "") for f in EXPECTED_FIELDS):
        return payload
    raise RelayError(
        ErrorKind.INCOMPLETE_RESPONSE,
        "AI 响应格式不完整",
        expected=list(EXPECTED_FIELDS),
        received=list(payload.keys()) if isinstance(payload, dict) else [],
        ai_response=payload,
    )


class AnswerPipeline:
    """Turns one ``POST /answer`` body into the model's answer object.

    Every failure leaves ``run`` as a ``RelayError``; unexpected exceptions are
    wrapped as ``INTERNAL_ERROR``. Nothing is retried.
    """

    def __init__(
        self,
        settings: Settings,
        client: CompletionClient,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.settings = settings
        self.client = client
        self.logger = logger or logging.getLogger("question_bank.answer")

    async def run(self, read_body: Callable[[], Awaitable[bytes]]) -> Dict[str, Any]:
        try:
            return await self._run(read_body)
        except RelayError as exc:
            log = self.logger.warning if exc.status_code < 500 else self.logger.error
            log("Answer request failed: type=%s error=%s context=%s", exc.kind.value, exc.message, _dump(exc.fields))
            raise
        except Exception as exc:
            self.logger.exception("Answer pipeline crashed: %s", exc)
            raise RelayError(ErrorKind.INTERNAL_ERROR, "服务器内部错误", details=str(exc)) from exc

    async def _run(self, read_body: Callable[[], Awaitable[bytes]]) -> Dict[str, Any]:
        self.logger.info("Processing answer request")
        try:
            raw = await read_body()
            text = raw.decode("utf-8")
        except Exception as exc:
            raise RelayError(ErrorKind.BODY_READ_ERROR, "无法读取请求体", details=str(exc)) from exc
        self.logger.debug("Request body (raw): %s", text)

        request = validate_request(parse_request_body(text))
        self.logger.info("Question: %r", _excerpt(request.question))

        completion = build_completion_request(request.question, self.settings)
        envelope = await self._call_upstream(completion)

        content = extract_content(envelope)
        self.logger.debug("Model raw content: %s", content)

        payload = validate_answer(parse_answer_content(content))
        self.logger.info("Answer ready: fields=%s", list(payload.keys()))
        return payload

    async def _call_upstream(self, completion: CompletionRequest) -> Any:
        self.logger.info(
            "Sending to upstream: url=%s model=%s messages=%d",
            self.client.url,
            completion.model,
            len(completion.messages),
        )
        started = time.perf_counter()
        async with AsyncExitStack() as stack:
            try:
                response = await stack.enter_async_context(self.client.stream(completion))
            except (httpx.HTTPError, httpx.InvalidURL) as exc:
                raise RelayError(
                    ErrorKind.FETCH_ERROR,
                    "OpenAI API 请求失败",
                    details=str(exc) or exc.__class__.__name__,
                ) from exc

            elapsed_ms = int((time.perf_counter() - started) * 1000)
            self.logger.info(
                "Upstream responded in %dms: %s %s",
                elapsed_ms,
                response.status_code,
                response.reason_phrase,
            )

            if not response.is_success:
                raise await self._upstream_error(response)

            try:
                raw = await response.aread()
            except (httpx.HTTPError, httpx.StreamError) as exc:
                raise RelayError(
                    ErrorKind.PARSE_ERROR,
                    "OpenAI 响应解析失败",
                    details=str(exc) or exc.__class__.__name__,
                ) from exc

        envelope = parse_envelope(raw)
        self.logger.info("Upstream envelope: %s", summarize_envelope(envelope))
        self.logger.debug("Upstream envelope (full): %s", _dump(envelope, limit=10000))
        return envelope

    async def _upstream_error(self, response: httpx.Response) -> RelayError:
        try:
            await response.aread()
            details = response.text
        except (httpx.HTTPError, httpx.StreamError) as exc:
            self.logger.error("Could not read upstream error body: %s", exc)
            details = UNREADABLE_ERROR_BODY
        self.logger.debug("Upstream error headers: %s", dict(response.headers))
        return RelayError(
            ErrorKind.OPENAI_ERROR,
            "OpenAI API 返回错误",
            statusCode=response.status_code,
            statusText=response.reason_phrase,
            details=details,
        )
