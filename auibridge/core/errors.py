"""Project error hierarchy."""

from __future__ import annotations


class BridgeError(Exception):
    """Base error."""


class UpstreamUnreachableError(BridgeError):
    """Raised when the backend cannot be reached before a response arrives."""


class UpstreamHTTPError(BridgeError):
    """Raised when the backend answers with a non-success status."""

    def __init__(self, status_code: int, body: str) -> None:
        super().__init__(f"upstream_http_error:{status_code}")
        self.status_code = status_code
        self.body = body


class UpstreamStreamError(BridgeError):
    """Raised when reading the backend body fails mid-stream."""


def error_envelope(message: str, code: str, error_type: str = "auibridge_error", **extra: object) -> dict:
    body: dict = {
        "error": {
            "message": message,
            "type": error_type,
            "code": code,
        }
    }
    body.update(extra)
    return body
