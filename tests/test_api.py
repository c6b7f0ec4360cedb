from __future__ import annotations

import httpx
import pytest
from fastapi.testclient import TestClient

from app.main import CORS_HEADERS, create_app
from config.settings import ConfigError, Settings

from tests.stubs import answer_handler


def _client(settings, handler=None) -> TestClient:
    transport = httpx.MockTransport(handler or answer_handler({"question": "q", "answer": "a"}))
    return TestClient(create_app(settings, transport=transport))


def _assert_cors(response) -> None:
    for name, value in CORS_HEADERS.items():
        assert response.headers[name] == value


def test_answer_success_returns_model_object(settings) -> None:
    inner = {"question": "水的化学式?", "answer": "H2O", "confidence": 0.9}
    client = _client(settings, answer_handler(inner))

    response = client.post("/answer", json={"question": "水的化学式?"})

    assert response.status_code == 200
    assert response.headers["content-type"].startswith("application/json")
    assert response.json() == inner
    _assert_cors(response)


@pytest.mark.parametrize("body", [{}, {"question": ""}, {"question": "", "other": "x"}, {"topic": "math"}])
def test_answer_missing_question(settings, body) -> None:
    response = _client(settings).post("/answer", json=body)

    assert response.status_code == 400
    assert response.json()["type"] == "MISSING_FIELD"
    _assert_cors(response)


def test_answer_malformed_json(settings) -> None:
    response = _client(settings).post(
        "/answer", content=b"{not json", headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    payload = response.json()
    assert payload["type"] == "INVALID_JSON"
    assert payload["error"]
    assert payload["details"]


def test_answer_undecodable_body(settings) -> None:
    response = _client(settings).post("/answer", content=b"\xff\xfe")

    assert response.status_code == 400
    assert response.json()["type"] == "BODY_READ_ERROR"


def test_answer_upstream_500(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(500, json={"error": {"message": "server exploded"}})

    response = _client(settings, handler).post("/answer", json={"question": "hi"})

    assert response.status_code == 500
    payload = response.json()
    assert payload["type"] == "OPENAI_ERROR"
    assert payload["statusCode"] == 500
    assert payload["statusText"] == "Internal Server Error"
    assert "server exploded" in payload["details"]
    _assert_cors(response)


def test_answer_upstream_unreachable(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectTimeout("timed out")

    response = _client(settings, handler).post("/answer", json={"question": "hi"})

    assert response.status_code == 500
    assert response.json() == {"error": "OpenAI API 请求失败", "details": "timed out", "type": "FETCH_ERROR"}


def test_answer_inner_content_not_json(settings) -> None:
    response = _client(settings, answer_handler("hello")).post("/answer", json={"question": "hi"})

    assert response.status_code == 500
    payload = response.json()
    assert payload["type"] == "AI_RESPONSE_FORMAT_ERROR"
    assert payload["raw_response"] == "hello"


def test_answer_inner_content_missing_answer(settings) -> None:
    response = _client(settings, answer_handler({"question": "x"})).post("/answer", json={"question": "x"})

    assert response.status_code == 500
    payload = response.json()
    assert payload["type"] == "INCOMPLETE_RESPONSE"
    assert payload["received"] == ["question"]
    assert payload["expected"] == ["question", "answer"]


@pytest.mark.parametrize("path", ["/", "/answer", "/anything/else"])
def test_options_is_empty_preflight(settings, path) -> None:
    response = _client(settings).options(path)

    assert response.status_code == 200
    assert response.content == b""
    _assert_cors(response)


def test_status_page_reports_model(settings) -> None:
    response = _client(settings).get("/")

    assert response.status_code == 200
    payload = response.json()
    assert payload["model_in_use"] == "gpt-test"
    assert payload["endpoints"] == ["/answer"]
    assert payload["status"] == "running"
    assert payload["version"] == "1.0.0"
    _assert_cors(response)


def test_status_page_head_has_no_body(settings) -> None:
    response = _client(settings).head("/")

    assert response.status_code == 200
    assert response.content == b""
    assert response.headers["content-type"].startswith("application/json")
    _assert_cors(response)


@pytest.mark.parametrize(
    "method,path",
    [("GET", "/foo"), ("GET", "/answer"), ("POST", "/"), ("DELETE", "/answer"), ("TRACE", "/foo"), ("TRACE", "/answer")],
)
def test_unknown_route_is_404(settings, method, path) -> None:
    response = _client(settings).request(method, path)

    assert response.status_code == 404
    payload = response.json()
    assert payload["available_paths"] == ["/", "/answer"]
    assert payload["method"] == method
    assert payload["path"] == path
    _assert_cors(response)


def test_create_app_refuses_missing_api_key(monkeypatch) -> None:
    monkeypatch.delenv("OPENAI_API_KEY", raising=False)
    with pytest.raises(ConfigError):
        create_app(Settings())


def test_answer_inner_content_with_nan_is_format_error(settings) -> None:
    content = '{"question":"q","answer":"a","score":NaN}'
    response = _client(settings, answer_handler(content)).post("/answer", json={"question": "q"})

    assert response.status_code == 500
    assert response.headers["content-type"].startswith("application/json")
    payload = response.json()
    assert payload["type"] == "AI_RESPONSE_FORMAT_ERROR"
    assert payload["raw_response"] == content
    _assert_cors(response)


def test_answer_envelope_with_nan_is_parse_error(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(200, text='{"choices": [], "usage": {"total_tokens": NaN}}')

    response = _client(settings, handler).post("/answer", json={"question": "q"})

    assert response.status_code == 500
    assert response.json()["type"] == "PARSE_ERROR"
    _assert_cors(response)


def test_answer_request_body_with_nan_is_invalid_json(settings) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("upstream must not be called")

    response = _client(settings, handler).post(
        "/answer", content=b'{"question":"q","x":NaN}', headers={"Content-Type": "application/json"}
    )

    assert response.status_code == 400
    assert response.json()["type"] == "INVALID_JSON"
    _assert_cors(response)


def test_create_app_configures_logging(settings, monkeypatch) -> None:
    levels = []
    monkeypatch.setattr("app.main.setup_logging", levels.append)
    settings.log_level = "DEBUG"

    create_app(settings)

    assert levels == ["DEBUG"]
