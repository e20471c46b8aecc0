"""Call dispatch for the Cloud Natural Language client.

Turns per-method configuration into call settings, creates the service stub
off the calling thread, and wraps every RPC into an api call that runs on an
executor with retries, timeouts and cancellation. The service facade only
binds method names to the api calls built here.
"""

from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import CancelledError, Executor, Future, InvalidStateError, ThreadPoolExecutor
from dataclasses import dataclass, field, replace
import logging
import os
import re
import threading
import time
from typing import Any

from google.protobuf import json_format
from google.protobuf.message import Message
import grpc
import tenacity

from cloud_language import schema, transports
from cloud_language.auth import GoogleAuth
from cloud_language.transports import Transport
from cloud_language.version import __version__


logger = logging.getLogger(__name__)

DISPATCH_VERSION = __version__

Callback = Callable[[BaseException | None, Message | None], Any]

_default_executor: ThreadPoolExecutor | None = None
_default_executor_lock = threading.Lock()


def default_executor() -> ThreadPoolExecutor:
    """Shared thread pool used by clients that were not given an executor."""
    global _default_executor
    with _default_executor_lock:
        if _default_executor is None:
            _default_executor = ThreadPoolExecutor(max_workers=10, thread_name_prefix="cloud-language")
        return _default_executor


def snake_case(name: str) -> str:
    """AnalyzeEntitySentiment -> analyze_entity_sentiment."""
    return re.sub(r"(?<!^)(?=[A-Z])", "_", name).lower()


@dataclass(frozen=True)
class RetryOptions:
    """Retry policy for one method.

    Delays grow exponentially from ``initial_delay`` by ``delay_multiplier``,
    capped at ``max_delay``. Attempts stop once ``total_timeout`` seconds have
    passed; the last error is then raised unchanged.
    """

    retry_codes: frozenset[grpc.StatusCode] = frozenset()
    initial_delay: float = 0.1
    delay_multiplier: float = 1.3
    max_delay: float = 60.0
    total_timeout: float = 600.0

    def is_retryable(self, error: BaseException) -> bool:
        code = getattr(error, "code", None)
        if not callable(code):
            return False
        return code() in self.retry_codes

    def retrying(self, should_stop: Callable[[], bool] = lambda: False) -> tenacity.Retrying:
        return tenacity.Retrying(
            retry=tenacity.retry_if_exception(lambda e: not should_stop() and self.is_retryable(e)),
            wait=tenacity.wait_exponential(
                multiplier=self.initial_delay,
                exp_base=self.delay_multiplier,
                max=self.max_delay,
            ),
            stop=tenacity.stop_after_delay(self.total_timeout),
            before_sleep=_log_retry,
            reraise=True,
        )


def _log_retry(retry_state: tenacity.RetryCallState) -> None:
    error = retry_state.outcome.exception() if retry_state.outcome else None
    logger.warning(f"Retrying call (attempt {retry_state.attempt_number}) after error: {error}")


@dataclass(frozen=True)
class CallSettings:
    """Effective settings of one call: attempt timeout, retry policy, metadata."""

    timeout: float | None = None
    retry: RetryOptions | None = None
    metadata: tuple[tuple[str, str], ...] = field(default_factory=tuple)

    def merge(self, options: Mapping[str, Any] | None) -> "CallSettings":
        """Apply per-call overrides (``timeout``, ``retry``, ``metadata``)."""
        if not options:
            return self
        changes: dict[str, Any] = {}
        if "timeout" in options:
            changes["timeout"] = options["timeout"]
        if "retry" in options:
            changes["retry"] = options["retry"]
        if options.get("metadata"):
            changes["metadata"] = self.metadata + tuple(tuple(item) for item in options["metadata"])
        return replace(self, **changes)


def construct_settings(
    service_name: str,
    client_config: Mapping[str, Any],
    config_overrides: Mapping[str, Any] | None = None,
    headers: Mapping[str, str] | None = None,
) -> dict[str, CallSettings]:
    """Build call settings for every method of a service.

    Args:
        service_name: Fully qualified service name
        client_config: Static config table with ``retry_codes``, ``retry_params`` and ``methods``
        config_overrides: Config table of the same shape whose entries win
        headers: Metadata sent with every call

    Returns:
        Settings keyed by snake_case method name
    """
    try:
        interface = client_config["interfaces"][service_name]
    except KeyError:
        msg = f"Client config has no interface {service_name!r}"
        raise ValueError(msg) from None
    overrides = (config_overrides or {}).get("interfaces", {}).get(service_name, {})

    retry_codes = {**interface.get("retry_codes", {}), **overrides.get("retry_codes", {})}
    retry_params = {**interface.get("retry_params", {}), **overrides.get("retry_params", {})}
    methods = {name: dict(config) for name, config in interface.get("methods", {}).items()}
    for name, config in overrides.get("methods", {}).items():
        methods.setdefault(name, {}).update(config)

    metadata = tuple((headers or {}).items())
    settings = {}
    for rpc_name, config in methods.items():
        retry = None
        codes = retry_codes.get(config.get("retry_codes_name") or "")
        if codes:
            params = retry_params.get(config.get("retry_params_name") or "", {})
            retry = RetryOptions(
                retry_codes=frozenset(grpc.StatusCode[code] for code in codes),
                initial_delay=params.get("initial_retry_delay_millis", 100) / 1000,
                delay_multiplier=params.get("retry_delay_multiplier", 1.3),
                max_delay=params.get("max_retry_delay_millis", 60000) / 1000,
                total_timeout=params.get("total_timeout_millis", 600000) / 1000,
            )
        timeout_millis = config.get("timeout_millis")
        settings[snake_case(rpc_name)] = CallSettings(
            timeout=timeout_millis / 1000 if timeout_millis else None,
            retry=retry,
            metadata=metadata,
        )
    return settings


class CallFuture(Future):
    """Deferred result of one call.

    Resolves to a one-element list holding the response. ``cancel()`` aborts
    the RPC in flight and prevents further retry attempts.
    """

    def __init__(self) -> None:
        super().__init__()
        # Guards cancel against settling; reentrant because done callbacks run under it
        self._call_lock = threading.RLock()
        self._inflight: list[Any] = []

    def cancel(self) -> bool:
        with self._call_lock:
            cancelled = super().cancel()
            inflight = list(self._inflight) if cancelled else []
        for call in inflight:
            call.cancel()
        return cancelled

    def _track(self, call: Any) -> None:
        with self._call_lock:
            if not self.cancelled():
                self._inflight.append(call)
                return
        call.cancel()

    def _untrack(self, call: Any) -> None:
        with self._call_lock:
            if call in self._inflight:
                self._inflight.remove(call)

    def _settle(self, result: Any = None, error: BaseException | None = None) -> None:
        with self._call_lock:
            if self.cancelled():
                logger.debug("Call was cancelled, dropping its outcome")
                return
            try:
                if error is None:
                    self.set_result(result)
                else:
                    self.set_exception(error)
            except InvalidStateError:
                logger.debug("Call already settled, dropping its outcome")


def _deliver_to(callback: Callback) -> Callable[[Future], None]:
    def done(future: Future) -> None:
        if future.cancelled():
            callback(CancelledError(), None)
            return
        error = future.exception()
        if error is not None:
            callback(error, None)
        else:
            callback(None, future.result()[0])

    return done


def _plain(value: Any) -> Any:
    if isinstance(value, Message):
        return json_format.MessageToDict(value, preserving_proto_field_name=True)
    if isinstance(value, Mapping):
        return {key: _plain(item) for key, item in value.items()}
    if isinstance(value, (list, tuple)):
        return [_plain(item) for item in value]
    return value


def coerce_request(request: Message | Mapping[str, Any], request_class: type[Message]) -> Message:
    """Return ``request`` as an instance of ``request_class``."""
    if isinstance(request, request_class):
        return request
    if isinstance(request, Mapping):
        return json_format.ParseDict(_plain(request), request_class())
    if isinstance(request, Message) and request.DESCRIPTOR.full_name == request_class.DESCRIPTOR.full_name:
        return request_class.FromString(request.SerializeToString())
    msg = f"Expected {request_class.DESCRIPTOR.full_name} or dict, got {type(request).__name__}"
    raise TypeError(msg)


class ApiCall:
    """One RPC bound to its stub, default settings and executor."""

    def __init__(self, stub_future: Future, rpc_name: str, settings: CallSettings, executor: Executor) -> None:
        self.stub_future = stub_future
        self.rpc_name = rpc_name
        self.settings = settings
        self.executor = executor

    def __call__(
        self,
        request: Message | Mapping[str, Any],
        options: Mapping[str, Any] | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        future = CallFuture()
        if callback is not None:
            future.add_done_callback(_deliver_to(callback))
        self.executor.submit(self._run, future, request, options or {})
        return future

    def _run(self, future: CallFuture, request: Any, options: Mapping[str, Any]) -> None:
        if future.cancelled():
            return
        try:
            response = self._invoke(future, request, options)
        except Exception as e:
            future._settle(error=e)
        else:
            future._settle([response])

    def _invoke(self, future: CallFuture, request: Any, options: Mapping[str, Any]) -> Message:
        stub = self.stub_future.result()
        method = stub.method(self.rpc_name)
        message = coerce_request(request, stub.describe(self.rpc_name).request_class)
        settings = self.settings.merge(options)

        if settings.retry is None:
            return self._attempt(future, method, message, settings)
        deadline = time.monotonic() + settings.retry.total_timeout
        retrying = settings.retry.retrying(should_stop=future.cancelled)
        return retrying(self._attempt, future, method, message, settings, deadline)

    def _attempt(
        self,
        future: CallFuture,
        method: Callable[..., Any],
        message: Message,
        settings: CallSettings,
        deadline: float | None = None,
    ) -> Message:
        if future.cancelled():
            raise CancelledError
        timeout = settings.timeout
        if deadline is not None:
            # No attempt outlives the total retry budget
            remaining = max(deadline - time.monotonic(), 0.0)
            timeout = remaining if timeout is None else min(timeout, remaining)
        call = method(message, timeout=timeout, metadata=settings.metadata)
        future._track(call)
        try:
            return call.result()
        finally:
            future._untrack(call)


def create_api_call(stub_future: Future, rpc_name: str, settings: CallSettings, executor: Executor) -> ApiCall:
    """Bind RPC ``rpc_name`` of the stub produced by ``stub_future``.

    If ``stub_future`` fails, every invocation of the returned call fails
    with the same exception.
    """
    return ApiCall(stub_future, rpc_name, settings, executor)


class GrpcClient:
    """Transport-level state shared by the methods of one client."""

    def __init__(
        self,
        credentials: Any = None,
        key_filename: str | os.PathLike | None = None,
        email: str | None = None,
        project_id: str | None = None,
        scopes: Sequence[str] | None = None,
        transport: Transport | str = Transport.GRPC,
    ) -> None:
        self.auth = GoogleAuth(
            credentials=credentials,
            key_filename=key_filename,
            email=email,
            project_id=project_id,
            scopes=scopes,
        )
        self.transport = Transport(transport)
        self.grpc_version = grpc.__version__

    def load_proto(self, source: str | os.PathLike | Mapping[str, Any]) -> schema.Protos:
        return schema.load_protos(source)

    def construct_settings(
        self,
        service_name: str,
        client_config: Mapping[str, Any],
        config_overrides: Mapping[str, Any] | None = None,
        headers: Mapping[str, str] | None = None,
    ) -> dict[str, CallSettings]:
        return construct_settings(service_name, client_config, config_overrides, headers)

    def create_stub(
        self,
        protos: schema.Protos,
        service_name: str,
        service_path: str,
        port: int,
        executor: Executor,
    ) -> Future:
        """Start building the service stub; the returned future resolves to it."""
        return executor.submit(self._build_stub, protos, service_name, service_path, port)

    def _build_stub(
        self,
        protos: schema.Protos,
        service_name: str,
        service_path: str,
        port: int,
    ) -> transports.GrpcStub | transports.HttpStub:
        service = protos.lookup_service(service_name)
        credentials = self.auth.get_credentials()
        if self.transport is Transport.HTTP:
            return transports.create_http_stub(credentials, service, service_path, port)
        return transports.create_grpc_stub(credentials, service, service_path, port)
