from __future__ import annotations

import logging
import sys
from typing import Any, Dict, Optional

import httpx
import uvicorn
from fastapi import FastAPI, Request, Response
from fastapi.exception_handlers import http_exception_handler
from fastapi.responses import JSONResponse
from starlette.exceptions import HTTPException as StarletteHTTPException

from config.settings import ConfigError, Settings, get_settings
from relay.answer import AnswerPipeline
from relay.errors import RelayError
from relay.schemas import NotFoundResponse, StatusResponse
from relay.upstream import CompletionClient


APP_VERSION = "1.0.0"
AVAILABLE_PATHS = ["/", "/answer"]

CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Methods": "GET, POST, OPTIONS, PUT, DELETE",
    "Access-Control-Allow-Headers": "Content-Type, Authorization, X-Requested-With",
    "Access-Control-Max-Age": "86400",
}

logger = logging.getLogger("question_bank")


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="[%(asctime)s] %(levelname)s - %(message)s",
    )


def _client_ip(request: Request) -> str:
    return request.headers.get("x-forwarded-for") or request.headers.get("x-real-ip") or "Unknown"


def _not_found(request: Request) -> JSONResponse:
    logger.info("Unknown path: %s %s", request.method, request.url.path)
    body = NotFoundResponse(
        message="API 路径不存在",
        available_paths=AVAILABLE_PATHS,
        method=request.method,
        path=request.url.path,
    )
    return JSONResponse(status_code=404, content=body.model_dump())


def _log_request(request: Request) -> None:
    headers = request.headers
    logger.info(
        "Incoming request: method=%s url=%s client_ip=%s user_agent=%s content_type=%s origin=%s referer=%s",
        request.method,
        request.url,
        _client_ip(request),
        headers.get("user-agent", "Unknown"),
        headers.get("content-type", "Unknown"),
        headers.get("origin", "None"),
        headers.get("referer", "None"),
    )


def create_app(
    settings: Optional[Settings] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> FastAPI:
    settings = (settings or get_settings()).validate()
    setup_logging(settings.log_level)
    pipeline = AnswerPipeline(
        settings,
        CompletionClient(settings, transport=transport),
        logger=logging.getLogger("question_bank.answer"),
    )

    app = FastAPI(title="AI Question Bank Relay", version=APP_VERSION, docs_url=None, redoc_url=None, openapi_url=None)

    @app.middleware("http")
    async def cors_and_access_log(request: Request, call_next):
        _log_request(request)
        if request.method == "OPTIONS":
            logger.info("Handled OPTIONS preflight: path=%s", request.url.path)
            return Response(status_code=200, headers=CORS_HEADERS)
        response = await call_next(request)
        response.headers.update(CORS_HEADERS)
        return response

    @app.api_route("/", methods=["GET", "HEAD"])
    def status(request: Request) -> Response:
        logger.info("Status page requested (%s)", request.method)
        if request.method == "HEAD":
            return Response(status_code=200, media_type="application/json")
        body = StatusResponse(
            message="OpenAI AI 题库服务器运行正常",
            version=APP_VERSION,
            endpoints=["/answer"],
            status="running",
            model_in_use=settings.openai_model,
        )
        return JSONResponse(content=body.model_dump())

    @app.post("/answer")
    async def answer(request: Request) -> JSONResponse:
        try:
            payload: Dict[str, Any] = await pipeline.run(request.body)
        except RelayError as exc:
            return JSONResponse(status_code=exc.status_code, content=exc.to_payload())
        return JSONResponse(content=payload)

    @app.api_route("/{path:path}", methods=["GET", "HEAD", "POST", "PUT", "DELETE", "PATCH"])
    def not_found(request: Request, path: str) -> JSONResponse:
        return _not_found(request)

    # Methods no route lists (TRACE, CONNECT...) end up as 405 from routing.
    @app.exception_handler(StarletteHTTPException)
    async def unrouted(request: Request, exc: StarletteHTTPException) -> Response:
        if exc.status_code in (404, 405):
            return _not_found(request)
        return await http_exception_handler(request, exc)

    return app


def main() -> None:
    try:
        settings = get_settings().validate()
    except ConfigError as exc:
        setup_logging()
        logger.error("Error: %s", exc)
        sys.exit(1)

    setup_logging(settings.log_level)
    logger.info("AI Question Bank server running on http://%s:%s", settings.host, settings.port)
    logger.info("OpenAI Base URL: %s", settings.openai_base_url)
    logger.info("OpenAI Model: %s", settings.openai_model)
    logger.info("System Prompt: %s...", settings.system_prompt[:100])

    uvicorn.run(create_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    main()
