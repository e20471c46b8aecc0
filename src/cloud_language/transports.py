"""Wire transports for the Cloud Natural Language client.

Two transports are available: native gRPC, and an HTTP/JSON fallback for
environments where gRPC cannot be used. Both produce a stub with one
callable per RPC; each invocation returns an in-flight call exposing
``result()`` and ``cancel()``.
"""

from collections.abc import Callable, Sequence
from concurrent.futures import CancelledError
import enum
import logging
import threading

from google.auth import credentials as ga_credentials
from google.auth.transport import grpc as auth_grpc
from google.auth.transport import requests as auth_requests
from google.protobuf import json_format
from google.protobuf.message import Message
import grpc
import requests

from cloud_language.exceptions import CallError
from cloud_language.schema import MethodDescription, ServiceDescription


logger = logging.getLogger(__name__)

Metadata = Sequence[tuple[str, str]]

# Unlimited message sizes, documents can be large
_GRPC_CHANNEL_OPTIONS = [
    ("grpc.max_send_message_length", -1),
    ("grpc.max_receive_message_length", -1),
]


class Transport(str, enum.Enum):
    """Wire transport used by a client."""

    GRPC = "grpc"
    HTTP = "http"


class GrpcStub:
    """Service stub over a gRPC channel."""

    def __init__(self, channel: grpc.Channel, service: ServiceDescription) -> None:
        self._channel = channel
        self.service = service
        self._callables = {
            name: channel.unary_unary(
                method.full_path,
                request_serializer=method.request_class.SerializeToString,
                response_deserializer=method.response_class.FromString,
            )
            for name, method in service.methods.items()
        }

    def describe(self, name: str) -> MethodDescription:
        return self.service.method(name)

    def method(self, name: str) -> Callable[..., grpc.Future]:
        """Return a callable issuing RPC ``name`` as a ``grpc.Future``."""
        self.describe(name)
        multi_callable = self._callables[name]

        def invoke(request: Message, timeout: float | None = None, metadata: Metadata = ()) -> grpc.Future:
            return multi_callable.future(request, timeout=timeout, metadata=list(metadata))

        return invoke

    def close(self) -> None:
        self._channel.close()


class PendingHttpCall:
    """An HTTP call issued by the fallback transport.

    The request is sent when ``result()`` is called, on the caller's thread.
    ``cancel()`` may be called from any thread: it closes the connection of a
    response being read and makes ``result()`` raise ``CancelledError``.
    """

    def __init__(self, send: Callable[[], requests.Response], response_class: type[Message]) -> None:
        self._send = send
        self._response_class = response_class
        self._lock = threading.Lock()
        self._cancelled = False
        self._response: requests.Response | None = None

    def cancel(self) -> bool:
        with self._lock:
            self._cancelled = True
            response = self._response
        if response is not None:
            response.close()
        return True

    def cancelled(self) -> bool:
        return self._cancelled

    def result(self) -> Message:
        if self._cancelled:
            raise CancelledError

        response = self._send()
        with self._lock:
            self._response = response
            cancelled = self._cancelled
        try:
            if cancelled:
                raise CancelledError
            body = response.text
            if not response.ok:
                raise CallError.from_response(response)
            return json_format.Parse(body or "{}", self._response_class(), ignore_unknown_fields=True)
        except CancelledError:
            raise
        except Exception as e:
            # Closing mid-read leaves a failed or truncated body behind
            if self._cancelled:
                raise CancelledError from e
            raise
        finally:
            response.close()


class HttpStub:
    """Service stub speaking the HTTP/JSON form of the API."""

    def __init__(
        self,
        session: requests.Session,
        service: ServiceDescription,
        service_path: str,
        port: int = 443,
    ) -> None:
        self._session = session
        self.service = service
        self.base_url = f"https://{service_path}" if port == 443 else f"https://{service_path}:{port}"

    def describe(self, name: str) -> MethodDescription:
        return self.service.method(name)

    def method(self, name: str) -> Callable[..., PendingHttpCall]:
        """Return a callable issuing RPC ``name`` as an HTTP request."""
        method = self.describe(name)
        if method.http_rule is None:
            msg = f"Method {method.full_path} has no HTTP binding"
            raise ValueError(msg)
        url = self.base_url + method.http_rule.path
        verb = method.http_rule.verb.upper()

        def invoke(request: Message, timeout: float | None = None, metadata: Metadata = ()) -> PendingHttpCall:
            headers = {"Content-Type": "application/json"}
            headers.update(metadata)
            body = json_format.MessageToJson(request) if method.http_rule.body else None

            def send() -> requests.Response:
                logger.debug(f"{verb} {url}")
                return self._session.request(verb, url, data=body, headers=headers, timeout=timeout, stream=True)

            return PendingHttpCall(send, method.response_class)

        return invoke

    def close(self) -> None:
        self._session.close()


def create_grpc_stub(
    credentials: ga_credentials.Credentials,
    service: ServiceDescription,
    service_path: str,
    port: int,
) -> GrpcStub:
    """Open an authorized, TLS secured channel and wrap it in a stub."""
    target = f"{service_path}:{port}"
    channel = auth_grpc.secure_authorized_channel(
        credentials,
        auth_requests.Request(),
        target,
        options=_GRPC_CHANNEL_OPTIONS,
    )
    logger.info(f"Opened gRPC channel to {target}")
    return GrpcStub(channel, service)


def create_http_stub(
    credentials: ga_credentials.Credentials,
    service: ServiceDescription,
    service_path: str,
    port: int,
) -> HttpStub:
    """Create an authorized HTTP session and wrap it in a stub."""
    session = auth_requests.AuthorizedSession(credentials)
    stub = HttpStub(session, service, service_path, port)
    logger.info(f"Using HTTP fallback transport to {stub.base_url}")
    return stub
