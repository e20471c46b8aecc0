"""Errors raised by the HTTP fallback transport."""

from typing import Any

import grpc
import requests


_CODES_BY_HTTP_STATUS = {
    400: grpc.StatusCode.INVALID_ARGUMENT,
    401: grpc.StatusCode.UNAUTHENTICATED,
    403: grpc.StatusCode.PERMISSION_DENIED,
    404: grpc.StatusCode.NOT_FOUND,
    409: grpc.StatusCode.ABORTED,
    429: grpc.StatusCode.RESOURCE_EXHAUSTED,
    499: grpc.StatusCode.CANCELLED,
    500: grpc.StatusCode.INTERNAL,
    501: grpc.StatusCode.UNIMPLEMENTED,
    503: grpc.StatusCode.UNAVAILABLE,
    504: grpc.StatusCode.DEADLINE_EXCEEDED,
}


class CallError(Exception):
    """Server-reported failure of a call made over the HTTP transport.

    Mirrors the shape of ``grpc.RpcError`` so callers can inspect ``code()``
    and ``details()`` regardless of the transport in use.
    """

    def __init__(
        self,
        message: str,
        status_code: grpc.StatusCode = grpc.StatusCode.UNKNOWN,
        http_status: int | None = None,
        error_details: list[Any] | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.http_status = http_status
        self.error_details = error_details or []

    def code(self) -> grpc.StatusCode:
        return self.status_code

    def details(self) -> str:
        return self.message

    def __str__(self) -> str:
        return f"{self.status_code.name}: {self.message}"

    @classmethod
    def from_response(cls, response: requests.Response) -> "CallError":
        """Build an error from a non-2xx response with a Google JSON error body."""
        try:
            error = response.json().get("error", {})
        except ValueError:
            error = {}
        if not isinstance(error, dict):
            error = {"message": str(error)}

        status_code = None
        status_name = error.get("status")
        if status_name in grpc.StatusCode.__members__:
            status_code = grpc.StatusCode[status_name]
        if status_code is None:
            status_code = _CODES_BY_HTTP_STATUS.get(response.status_code, grpc.StatusCode.UNKNOWN)

        message = error.get("message") or response.reason or f"HTTP {response.status_code}"
        return cls(
            message,
            status_code=status_code,
            http_status=response.status_code,
            error_details=error.get("details"),
        )
