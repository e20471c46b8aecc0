"""Client for the Cloud Natural Language v1 API.

Provides text analysis operations such as sentiment analysis and entity
recognition.
"""

from collections.abc import Callable, Mapping
from concurrent.futures import Executor, Future
import json
import logging
import os
from pathlib import Path
import platform
from typing import Any

from cloud_language import dispatch, schema
from cloud_language.dispatch import CallFuture
from cloud_language.transports import Transport
from cloud_language.version import __version__


logger = logging.getLogger(__name__)

SERVICE_NAME = "google.cloud.language.v1.LanguageService"

_CLIENT_CONFIG_PATH = Path(__file__).parent / "language_service_client_config.json"

_METHODS = (
    ("analyze_sentiment", "AnalyzeSentiment"),
    ("analyze_entities", "AnalyzeEntities"),
    ("analyze_entity_sentiment", "AnalyzeEntitySentiment"),
    ("analyze_syntax", "AnalyzeSyntax"),
    ("classify_text", "ClassifyText"),
    ("annotate_text", "AnnotateText"),
)

Request = Any  # message instance or dict
Options = Mapping[str, Any]
Callback = Callable[[BaseException | None, Any], Any]


def _load_client_config() -> dict[str, Any]:
    with _CLIENT_CONFIG_PATH.open(encoding="utf-8") as handle:
        return json.load(handle)


def _normalize_call_args(
    request: Request | None,
    options: Options | Callback | None,
    callback: Callback | None,
) -> tuple[Request, Options, Callback | None]:
    # A callable in the options slot is the callback when none was given
    if callable(options) and callback is None:
        callback = options
        options = {}
    return {} if request is None else request, {} if options is None else options, callback


def _close_stub(stub_future: Future) -> None:
    if stub_future.cancelled() or stub_future.exception() is not None:
        return
    stub_future.result().close()


class LanguageServiceClient:
    """Provides text analysis operations such as sentiment analysis and entity recognition.

    Every operation takes ``(request, options=None, callback=None)`` and returns
    a ``CallFuture`` resolving to ``[response]``. When a callback is given it is
    called as ``callback(error, response)`` once the call settles.

    Example:
        >>> client = LanguageServiceClient()
        >>> document = {"content": "Hello, world!", "type": "PLAIN_TEXT"}
        >>> [response] = client.analyze_sentiment({"document": document}).result()
        >>> response.document_sentiment.score
    """

    service_path = "language.googleapis.com"
    api_endpoint = "language.googleapis.com"
    port = 443
    scopes = (
        "https://www.googleapis.com/auth/cloud-language",
        "https://www.googleapis.com/auth/cloud-platform",
    )

    def __init__(
        self,
        credentials: Any = None,
        key_filename: str | os.PathLike | None = None,
        email: str | None = None,
        project_id: str | None = None,
        port: int | None = None,
        service_path: str | None = None,
        api_endpoint: str | None = None,
        transport: Transport | str | None = None,
        fallback: bool = False,
        client_config: Mapping[str, Any] | None = None,
        lib_name: str | None = None,
        lib_version: str | None = None,
        executor: Executor | None = None,
    ) -> None:
        """Construct a client.

        Args:
            credentials: Credentials object, or service account key material
                with ``client_email`` and ``private_key``
            key_filename: Path to a .json, .pem or .p12 key file. With a .json
                key ``project_id`` is not necessary
            email: Account email address, required with .pem and .p12 keys
            project_id: Project id; otherwise detected from the environment
            port: Port of the remote host
            service_path: Domain name of the remote host
            api_endpoint: Domain name of the remote host, used when
                ``service_path`` is not given
            transport: ``Transport.GRPC`` (default) or ``Transport.HTTP``
            fallback: Shorthand for ``transport=Transport.HTTP``
            client_config: Per-method timeout and retry overrides, in the shape
                of the packaged client config
            lib_name: Name of a library wrapping this client, for the API client header
            lib_version: Version of that library
            executor: Executor that runs calls; a shared thread pool by default
        """
        if transport is None:
            transport = Transport.HTTP if fallback else Transport.GRPC
        transport = Transport(transport)
        self._fallback = transport is Transport.HTTP

        self._service_path = service_path or api_endpoint or type(self).service_path
        self._port = port or type(self).port
        self._executor = executor or dispatch.default_executor()

        grpc_client = dispatch.GrpcClient(
            credentials=credentials,
            key_filename=key_filename,
            email=email,
            project_id=project_id,
            scopes=type(self).scopes,
            transport=transport,
        )
        self.auth = grpc_client.auth

        client_header = [
            f"gl-python/{platform.python_version()}",
            f"gax/{dispatch.DISPATCH_VERSION}",
        ]
        if self._fallback:
            client_header.append(f"gl-web/{dispatch.DISPATCH_VERSION}")
        else:
            client_header.append(f"grpc/{grpc_client.grpc_version}")
        client_header.append(f"gapic/{__version__}")
        if lib_name and lib_version:
            client_header.append(f"{lib_name}/{lib_version}")
        self._client_header = " ".join(client_header)

        # The fallback transport takes the embedded description, gRPC reads the packaged file
        protos = grpc_client.load_proto(schema.PROTOS_JSON if self._fallback else schema.PROTOS_PATH)

        defaults = grpc_client.construct_settings(
            SERVICE_NAME,
            _load_client_config(),
            client_config or {},
            {"x-goog-api-client": self._client_header},
        )

        stub_future = grpc_client.create_stub(protos, SERVICE_NAME, self._service_path, self._port, self._executor)
        self._stub_future = stub_future

        self._inner_api_calls = {
            name: dispatch.create_api_call(stub_future, rpc_name, defaults[name], self._executor)
            for name, rpc_name in _METHODS
        }
        logger.debug(f"LanguageServiceClient for {self._service_path}:{self._port} over {transport.value}")

    def get_project_id(self, callback: Callable[[BaseException | None, str | None], Any] | None = None) -> str | None:
        """Return the project id used by this client.

        Args:
            callback: Optional ``callback(error, project_id)``
        """
        return self.auth.get_project_id(callback)

    def close(self) -> None:
        """Close the underlying channel or session, now or once the stub exists."""
        self._stub_future.add_done_callback(_close_stub)

    def __enter__(self) -> "LanguageServiceClient":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # -------------------
    # -- Service calls --
    # -------------------

    def analyze_sentiment(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Analyze the sentiment of the provided text.

        Args:
            request: ``AnalyzeSentimentRequest`` or dict with ``document`` and
                optional ``encoding_type`` (used to calculate sentence offsets)
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, AnalyzeSentimentResponse)``

        Returns:
            Future resolving to ``[AnalyzeSentimentResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["analyze_sentiment"](request, options, callback)

    def analyze_entities(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Find named entities (proper names and common nouns) in the text with
        their types, salience and mentions.

        Args:
            request: ``AnalyzeEntitiesRequest`` or dict with ``document`` and
                optional ``encoding_type``
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, AnalyzeEntitiesResponse)``

        Returns:
            Future resolving to ``[AnalyzeEntitiesResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["analyze_entities"](request, options, callback)

    def analyze_entity_sentiment(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Find entities like ``analyze_entities`` and the sentiment expressed towards each.

        Args:
            request: ``AnalyzeEntitySentimentRequest`` or dict with ``document``
                and optional ``encoding_type``
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, AnalyzeEntitySentimentResponse)``

        Returns:
            Future resolving to ``[AnalyzeEntitySentimentResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["analyze_entity_sentiment"](request, options, callback)

    def analyze_syntax(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Break the text into sentences and tokens with part of speech tags,
        dependency trees and other properties.

        Args:
            request: ``AnalyzeSyntaxRequest`` or dict with ``document`` and
                optional ``encoding_type``
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, AnalyzeSyntaxResponse)``

        Returns:
            Future resolving to ``[AnalyzeSyntaxResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["analyze_syntax"](request, options, callback)

    def classify_text(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Classify a document into categories.

        Args:
            request: ``ClassifyTextRequest`` or dict with ``document``
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, ClassifyTextResponse)``

        Returns:
            Future resolving to ``[ClassifyTextResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["classify_text"](request, options, callback)

    def annotate_text(
        self,
        request: Request | None = None,
        options: Options | Callback | None = None,
        callback: Callback | None = None,
    ) -> CallFuture:
        """Run any combination of the analyses above in one call.

        Args:
            request: ``AnnotateTextRequest`` or dict with ``document``,
                ``features`` (which analyses to run) and optional ``encoding_type``
            options: Per-call overrides: ``timeout``, ``retry``, ``metadata``
            callback: Optional ``callback(error, AnnotateTextResponse)``

        Returns:
            Future resolving to ``[AnnotateTextResponse]``
        """
        request, options, callback = _normalize_call_args(request, options, callback)
        return self._inner_api_calls["annotate_text"](request, options, callback)
