"""Pytest configuration and fixtures."""

from concurrent.futures import Future, ThreadPoolExecutor
import os
from pathlib import Path
import sys
import threading
from unittest.mock import MagicMock

import grpc
import pytest

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root / "src"))
sys.path.insert(0, str(project_root / "client"))

from cloud_language import schema  # noqa: E402


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line("markers", "unit: Unit tests")
    config.addinivalue_line("markers", "integration: Integration tests")
    config.addinivalue_line("markers", "slow: Slow tests")


def pytest_addoption(parser):
    """Add custom command line options."""
    parser.addoption("--run-slow", action="store_true", default=False, help="Run slow tests")
    parser.addoption(
        "--run-integration",
        action="store_true",
        default=False,
        help="Run integration tests",
    )


def pytest_collection_modifyitems(config, items):
    """Modify test collection based on markers."""
    skip_slow = pytest.mark.skip(reason="Need --run-slow option to run")
    skip_integration = pytest.mark.skip(reason="Need --run-integration option to run")

    for item in items:
        if "slow" in item.keywords and not config.getoption("--run-slow"):
            item.add_marker(skip_slow)
        if "integration" in item.keywords and not config.getoption("--run-integration"):
            item.add_marker(skip_integration)


class FakeRpcError(grpc.RpcError):
    """RpcError carrying a status code, like the errors raised by grpc futures."""

    def __init__(self, code: grpc.StatusCode, details: str = "") -> None:
        super().__init__(details)
        self._code = code
        self._details = details

    def code(self) -> grpc.StatusCode:
        return self._code

    def details(self) -> str:
        return self._details


class FakeCall:
    """In-flight call returning a canned outcome, optionally blocking until released."""

    def __init__(self, outcome, block: bool = False) -> None:
        self.outcome = outcome
        self.started = threading.Event()
        self.release = threading.Event()
        self.cancelled = False
        if not block:
            self.release.set()

    def cancel(self) -> bool:
        self.cancelled = True
        self.release.set()
        return True

    def result(self):
        self.started.set()
        self.release.wait(timeout=5)
        if self.cancelled:
            raise grpc.FutureCancelledError
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return self.outcome


class FakeStub:
    """Stub answering every RPC from a queue of outcomes."""

    def __init__(self, outcomes=None, block: bool = False) -> None:
        self.service = schema.load_protos(schema.PROTOS_PATH).lookup_service("LanguageService")
        self.outcomes = list(outcomes or [])
        self.block = block
        self.calls = []
        self.requests = []
        self.closed = False

    def describe(self, name):
        return self.service.method(name)

    def method(self, name):
        response_class = self.describe(name).response_class

        def invoke(request, timeout=None, metadata=()):
            outcome = self.outcomes.pop(0) if self.outcomes else response_class()
            call = FakeCall(outcome, block=self.block)
            self.requests.append((name, request, timeout, tuple(metadata)))
            self.calls.append(call)
            return call

        return invoke

    def close(self) -> None:
        self.closed = True


def resolved(value) -> Future:
    future = Future()
    future.set_result(value)
    return future


def failed(error: BaseException) -> Future:
    future = Future()
    future.set_exception(error)
    return future


@pytest.fixture(scope="session")
def protos():
    """Compiled service schema."""
    return schema.load_protos(schema.PROTOS_PATH)


@pytest.fixture
def executor():
    """Thread pool for calls, shut down after the test."""
    pool = ThreadPoolExecutor(max_workers=4)
    yield pool
    pool.shutdown(wait=True, cancel_futures=True)


@pytest.fixture
def fake_stub():
    """Factory for fake service stubs."""
    return FakeStub


@pytest.fixture(scope="session")
def sample_texts():
    """Sample texts for testing."""
    return {
        "positive": "I love this phone, the screen is gorgeous and the battery lasts forever.",
        "negative": "The package arrived broken and support never answered my emails.",
        "entities": "Sundar Pichai announced the results at the Googleplex in Mountain View.",
        "classify": (
            "The central bank raised interest rates by a quarter point on Wednesday, citing "
            "persistent inflation in housing and energy prices across the region."
        ),
        "japanese": "今日はとても良い天気です。",
    }


@pytest.fixture
def anonymous_credentials():
    """Credentials that never touch the network."""
    from google.auth.credentials import AnonymousCredentials

    return AnonymousCredentials()


@pytest.fixture(autouse=True)
def reset_environment():
    """Reset environment variables before each test."""
    original_env = os.environ.copy()
    yield
    os.environ.clear()
    os.environ.update(original_env)


# Test data generators
@pytest.fixture
def generate_test_sentences():
    """Generate test sentences."""
    from faker import Faker

    fake = Faker()
    return [fake.sentence(nb_words=12) for _ in range(10)]


@pytest.fixture
def mock_http_session():
    """Mock authorized HTTP session returning an empty JSON object."""
    session = MagicMock()
    session.request.return_value.ok = True
    session.request.return_value.status_code = 200
    session.request.return_value.text = "{}"
    return session


@pytest.fixture
def rpc_error():
    """Factory for gRPC errors with a status code."""
    return FakeRpcError


@pytest.fixture
def resolved_future():
    """Factory for futures that already hold a result."""
    return resolved


@pytest.fixture
def failed_future():
    """Factory for futures that already hold an exception."""
    return failed
