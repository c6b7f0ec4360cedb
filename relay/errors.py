from __future__ import annotations

from enum import Enum
from typing import Any, Dict


class ErrorKind(str, Enum):
    BODY_READ_ERROR = "BODY_READ_ERROR"
    INVALID_JSON = "INVALID_JSON"
    MISSING_FIELD = "MISSING_FIELD"
    FETCH_ERROR = "FETCH_ERROR"
    OPENAI_ERROR = "OPENAI_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    NO_CONTENT = "NO_CONTENT"
    AI_RESPONSE_FORMAT_ERROR = "AI_RESPONSE_FORMAT_ERROR"
    INCOMPLETE_RESPONSE = "INCOMPLETE_RESPONSE"
    INTERNAL_ERROR = "INTERNAL_ERROR"

    @property
    def status_code(self) -> int:
        if self in _CLIENT_ERRORS:
            return 400
        return 500


_CLIENT_ERRORS = {
    ErrorKind.BODY_READ_ERROR,
    ErrorKind.INVALID_JSON,
    ErrorKind.MISSING_FIELD,
}


class RelayError(Exception):
    """A classified failure of the answer pipeline.

    ``message`` is the human-readable text returned as ``error``; ``fields``
    carries the diagnostic keys for this kind (``details``, ``statusCode``,
    ``raw_response``...).
    """

    def __init__(self, kind: ErrorKind, message: str, **fields: Any) -> None:
        super().__init__(message)
        self.kind = kind
        self.message = message
        self.fields = fields

    @property
    def status_code(self) -> int:
        return self.kind.status_code

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"error": self.message}
        payload.update(self.fields)
        payload["type"] = self.kind.value
        return payload

    def __repr__(self) -> str:
        return f"RelayError({self.kind.value}, {self.message!r})"
