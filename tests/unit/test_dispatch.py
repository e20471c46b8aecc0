"""Unit tests for call settings, api calls and call futures."""

from concurrent.futures import CancelledError
import json
import threading
from unittest.mock import patch

import grpc
import pytest

from cloud_language import dispatch, types
from cloud_language.dispatch import CallSettings, RetryOptions
from cloud_language.language_service_client import SERVICE_NAME, _load_client_config

FAST_RETRY = RetryOptions(
    retry_codes=frozenset({grpc.StatusCode.UNAVAILABLE, grpc.StatusCode.DEADLINE_EXCEEDED}),
    initial_delay=0.001,
    delay_multiplier=1.0,
    max_delay=0.001,
    total_timeout=5.0,
)

DOCUMENT = {"content": "The weather is lovely today.", "type": "PLAIN_TEXT"}


class TestConstructSettings:
    """Test suite for building per-method settings from the config table."""

    @pytest.mark.unit
    def test_defaults_from_config_table(self):
        """Test timeouts and retry policy come from the packaged config."""
        settings = dispatch.construct_settings(SERVICE_NAME, _load_client_config(), {}, {"x-goog-api-client": "gapic/1.0.0"})

        assert set(settings) == {
            "analyze_sentiment",
            "analyze_entities",
            "analyze_entity_sentiment",
            "analyze_syntax",
            "classify_text",
            "annotate_text",
        }
        sentiment = settings["analyze_sentiment"]
        assert sentiment.timeout == 60.0
        assert sentiment.metadata == (("x-goog-api-client", "gapic/1.0.0"),)
        assert sentiment.retry.retry_codes == frozenset({grpc.StatusCode.DEADLINE_EXCEEDED, grpc.StatusCode.UNAVAILABLE})
        assert sentiment.retry.initial_delay == pytest.approx(0.1)
        assert sentiment.retry.delay_multiplier == pytest.approx(1.3)
        assert sentiment.retry.max_delay == pytest.approx(60.0)
        assert sentiment.retry.total_timeout == pytest.approx(600.0)

    @pytest.mark.unit
    def test_overrides_merge_per_method(self):
        """Test client config overrides win over the defaults of a single method."""
        overrides = {
            "interfaces": {
                SERVICE_NAME: {
                    "retry_codes": {"none": []},
                    "methods": {"ClassifyText": {"timeout_millis": 5000, "retry_codes_name": "none"}},
                }
            }
        }

        settings = dispatch.construct_settings(SERVICE_NAME, _load_client_config(), overrides)

        assert settings["classify_text"].timeout == 5.0
        assert settings["classify_text"].retry is None
        assert settings["annotate_text"].timeout == 60.0
        assert settings["annotate_text"].retry is not None

    @pytest.mark.unit
    def test_unknown_service(self):
        """Test a config table without the service is rejected."""
        with pytest.raises(ValueError, match="no interface"):
            dispatch.construct_settings("google.cloud.vision.v1.ImageAnnotator", _load_client_config())

    @pytest.mark.unit
    def test_config_table_is_valid_json(self):
        """Test the packaged config table parses and names every method."""
        from cloud_language.language_service_client import _CLIENT_CONFIG_PATH

        config = json.loads(_CLIENT_CONFIG_PATH.read_text(encoding="utf-8"))
        assert len(config["interfaces"][SERVICE_NAME]["methods"]) == 6

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "rpc_name,expected",
        [
            ("AnalyzeSentiment", "analyze_sentiment"),
            ("AnalyzeEntitySentiment", "analyze_entity_sentiment"),
            ("ClassifyText", "classify_text"),
        ],
    )
    def test_snake_case(self, rpc_name, expected):
        """Test RPC names map to client method names."""
        assert dispatch.snake_case(rpc_name) == expected


class TestCallSettings:
    """Test suite for per-call overrides."""

    @pytest.mark.unit
    def test_merge_overrides(self):
        """Test timeout, retry and metadata overrides."""
        base = CallSettings(timeout=60.0, retry=FAST_RETRY, metadata=(("x-goog-api-client", "gapic/1.0.0"),))

        merged = base.merge({"timeout": 2.5, "retry": None, "metadata": [("x-trace", "abc")]})

        assert merged.timeout == 2.5
        assert merged.retry is None
        assert merged.metadata == (("x-goog-api-client", "gapic/1.0.0"), ("x-trace", "abc"))
        assert base.timeout == 60.0

    @pytest.mark.unit
    def test_empty_options_keep_settings(self):
        """Test empty options return the settings unchanged."""
        base = CallSettings(timeout=60.0)

        assert base.merge({}) is base
        assert base.merge({"page_size": 10}) == base


class TestApiCall:
    """Test suite for wrapped api calls."""

    @pytest.mark.unit
    def test_resolves_to_single_element_list(self, executor, fake_stub, resolved_future):
        """Test the future resolves to [response]."""
        response = types.AnalyzeSentimentResponse(language="en")
        stub = fake_stub([response])
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeSentiment", CallSettings(), executor)

        result = api_call({"document": DOCUMENT}, {}).result(timeout=5)

        assert result == [response]
        assert result[0] is response

    @pytest.mark.unit
    def test_dict_request_is_converted(self, executor, fake_stub, resolved_future):
        """Test dict requests become request messages."""
        stub = fake_stub()
        settings = CallSettings(timeout=30.0, metadata=(("x-goog-api-client", "gapic/1.0.0"),))
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeSyntax", settings, executor)

        api_call({"document": DOCUMENT, "encoding_type": "UTF8"}, {}).result(timeout=5)

        name, request, timeout, metadata = stub.requests[0]
        assert name == "AnalyzeSyntax"
        assert isinstance(request, types.AnalyzeSyntaxRequest)
        assert request.document.content == DOCUMENT["content"]
        assert request.encoding_type == 1
        assert timeout == 30.0
        assert metadata == (("x-goog-api-client", "gapic/1.0.0"),)

    @pytest.mark.unit
    def test_dict_request_with_message_values(self, executor, fake_stub, resolved_future):
        """Test dicts holding message instances are converted too."""
        stub = fake_stub()
        api_call = dispatch.create_api_call(resolved_future(stub), "ClassifyText", CallSettings(), executor)

        api_call({"document": types.Document(content="Stocks rallied.", type=1)}, {}).result(timeout=5)

        assert stub.requests[0][1].document.content == "Stocks rallied."

    @pytest.mark.unit
    def test_wrong_request_type(self, executor, fake_stub, resolved_future):
        """Test requests of another message type are rejected through the future."""
        api_call = dispatch.create_api_call(resolved_future(fake_stub()), "ClassifyText", CallSettings(), executor)

        future = api_call(types.Document(content="x"), {})

        with pytest.raises(TypeError, match="ClassifyTextRequest"):
            future.result(timeout=5)

    @pytest.mark.unit
    def test_stub_failure_reaches_every_call(self, executor, failed_future):
        """Test a failed stub makes every call fail with the same exception."""
        error = RuntimeError("could not load service")
        stub_future = failed_future(error)
        calls = [
            dispatch.create_api_call(stub_future, rpc, CallSettings(), executor)
            for rpc in ("AnalyzeSentiment", "AnnotateText")
        ]

        for api_call in calls:
            future = api_call({}, {})
            assert future.exception(timeout=5) is error

    @pytest.mark.unit
    def test_server_error_passes_through(self, executor, fake_stub, resolved_future, rpc_error):
        """Test non-retryable errors surface unchanged after one attempt."""
        error = rpc_error(grpc.StatusCode.INVALID_ARGUMENT, "document is empty")
        stub = fake_stub([error])
        settings = CallSettings(retry=FAST_RETRY)
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", settings, executor)

        future = api_call({}, {})

        assert future.exception(timeout=5) is error
        assert len(stub.calls) == 1

    @pytest.mark.unit
    def test_retryable_error_is_retried(self, executor, fake_stub, resolved_future, rpc_error):
        """Test retryable errors are retried until a response arrives."""
        response = types.AnalyzeEntitiesResponse(language="en")
        stub = fake_stub([rpc_error(grpc.StatusCode.UNAVAILABLE), rpc_error(grpc.StatusCode.UNAVAILABLE), response])
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", CallSettings(retry=FAST_RETRY), executor)

        assert api_call({}, {}).result(timeout=5) == [response]
        assert len(stub.calls) == 3

    @pytest.mark.unit
    def test_retry_stops_at_total_timeout(self, executor, fake_stub, resolved_future, rpc_error):
        """Test the last error is raised once the total timeout has passed."""
        errors = [rpc_error(grpc.StatusCode.UNAVAILABLE, f"attempt {i}") for i in range(1000)]
        stub = fake_stub(errors)
        retry = RetryOptions(
            retry_codes=frozenset({grpc.StatusCode.UNAVAILABLE}),
            initial_delay=0.01,
            delay_multiplier=1.0,
            max_delay=0.01,
            total_timeout=0.05,
        )
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", CallSettings(retry=retry), executor)

        error = api_call({}, {}).exception(timeout=5)

        assert error is errors[len(stub.calls) - 1]
        assert 1 < len(stub.calls) < 1000

    @pytest.mark.unit
    def test_per_call_retry_override(self, executor, fake_stub, resolved_future, rpc_error):
        """Test options can switch retries off for one call."""
        error = rpc_error(grpc.StatusCode.UNAVAILABLE)
        stub = fake_stub([error])
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", CallSettings(retry=FAST_RETRY), executor)

        assert api_call({}, {"retry": None}).exception(timeout=5) is error
        assert len(stub.calls) == 1

    @pytest.mark.unit
    def test_cancel_aborts_inflight_call(self, executor, fake_stub, resolved_future):
        """Test cancel reaches the RPC in flight."""
        stub = fake_stub(block=True)
        api_call = dispatch.create_api_call(resolved_future(stub), "AnnotateText", CallSettings(retry=FAST_RETRY), executor)

        future = api_call({}, {})
        for _ in range(500):
            if stub.calls:
                break
            threading.Event().wait(0.01)
        assert stub.calls[0].started.wait(timeout=5)

        assert future.cancel()
        assert future.cancelled()
        assert stub.calls[0].cancelled
        with pytest.raises(CancelledError):
            future.result(timeout=5)

    @pytest.mark.unit
    def test_cancel_during_backoff_stops_retries(self, executor, fake_stub, resolved_future, rpc_error):
        """Test a call cancelled while waiting to retry issues no further attempt."""
        stub = fake_stub([rpc_error(grpc.StatusCode.UNAVAILABLE), types.AnalyzeEntitiesResponse()])
        retry = RetryOptions(
            retry_codes=frozenset({grpc.StatusCode.UNAVAILABLE}),
            initial_delay=0.3,
            delay_multiplier=1.0,
            max_delay=0.3,
            total_timeout=5.0,
        )
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", CallSettings(retry=retry), executor)

        future = api_call({}, {})
        for _ in range(500):
            if stub.calls:
                break
            threading.Event().wait(0.01)
        assert stub.calls[0].started.wait(timeout=5)
        threading.Event().wait(0.05)

        assert future.cancel()
        executor.shutdown(wait=True)

        assert len(stub.calls) == 1
        assert not stub.calls[0].cancelled
        assert future.cancelled()

    @pytest.mark.unit
    @pytest.mark.parametrize("timeout", [60.0, None])
    def test_attempt_timeout_capped_by_total_timeout(self, executor, fake_stub, resolved_future, timeout):
        """Test no attempt is given more time than the retry budget has left."""
        stub = fake_stub()
        retry = RetryOptions(retry_codes=frozenset({grpc.StatusCode.UNAVAILABLE}), total_timeout=2.0)
        settings = CallSettings(timeout=timeout, retry=retry)
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", settings, executor)

        api_call({}, {}).result(timeout=5)

        assert 0 < stub.requests[0][2] <= 2.0

    @pytest.mark.unit
    def test_attempt_timeout_below_budget_kept(self, executor, fake_stub, resolved_future):
        """Test attempt timeouts shorter than the remaining budget are used as is."""
        stub = fake_stub()
        settings = CallSettings(timeout=1.5, retry=FAST_RETRY)
        api_call = dispatch.create_api_call(resolved_future(stub), "AnalyzeEntities", settings, executor)

        api_call({}, {}).result(timeout=5)

        assert stub.requests[0][2] == 1.5

    @pytest.mark.unit
    def test_callback_receives_response(self, executor, fake_stub, resolved_future):
        """Test callbacks get (None, response)."""
        response = types.ClassifyTextResponse()
        response.categories.add(name="/Finance", confidence=0.9)
        received = []
        done = threading.Event()

        def callback(error, value):
            received.append((error, value))
            done.set()

        api_call = dispatch.create_api_call(resolved_future(fake_stub([response])), "ClassifyText", CallSettings(), executor)
        api_call({}, {}, callback)

        assert done.wait(timeout=5)
        assert received == [(None, response)]

    @pytest.mark.unit
    def test_callback_receives_error(self, executor, fake_stub, resolved_future, rpc_error):
        """Test callbacks get (error, None)."""
        error = rpc_error(grpc.StatusCode.PERMISSION_DENIED)
        received = []
        done = threading.Event()

        def callback(err, value):
            received.append((err, value))
            done.set()

        api_call = dispatch.create_api_call(resolved_future(fake_stub([error])), "ClassifyText", CallSettings(), executor)
        api_call({}, {}, callback)

        assert done.wait(timeout=5)
        assert received == [(error, None)]


class TestRetryOptions:
    """Test suite for retry classification."""

    @pytest.mark.unit
    def test_is_retryable(self, rpc_error):
        """Test only configured codes are retryable."""
        assert FAST_RETRY.is_retryable(rpc_error(grpc.StatusCode.UNAVAILABLE))
        assert not FAST_RETRY.is_retryable(rpc_error(grpc.StatusCode.NOT_FOUND))
        assert not FAST_RETRY.is_retryable(ValueError("no code"))


class TestGrpcClient:
    """Test suite for stub creation."""

    @pytest.mark.unit
    @pytest.mark.parametrize(
        "transport,factory",
        [("grpc", "create_grpc_stub"), ("http", "create_http_stub")],
    )
    def test_create_stub_picks_transport(self, protos, executor, anonymous_credentials, transport, factory):
        """Test the stub is built off-thread with the transport's factory."""
        client = dispatch.GrpcClient(credentials=anonymous_credentials, transport=transport)

        with patch.object(dispatch.transports, factory) as create:
            stub = client.create_stub(protos, SERVICE_NAME, "language.googleapis.com", 443, executor).result(timeout=5)

        assert stub is create.return_value
        credentials, service, host, port = create.call_args.args
        assert credentials is anonymous_credentials
        assert service.full_name == SERVICE_NAME
        assert (host, port) == ("language.googleapis.com", 443)

    @pytest.mark.unit
    def test_unknown_service_fails_future(self, protos, executor, anonymous_credentials):
        """Test lookup errors surface through the stub future."""
        client = dispatch.GrpcClient(credentials=anonymous_credentials)

        future = client.create_stub(protos, "google.cloud.language.v1.Missing", "localhost", 443, executor)

        assert isinstance(future.exception(timeout=5), KeyError)

    @pytest.mark.unit
    def test_rejects_unknown_transport(self):
        """Test transport names are validated."""
        with pytest.raises(ValueError):
            dispatch.GrpcClient(transport="carrier-pigeon")
