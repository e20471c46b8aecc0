"""Client library for the Cloud Natural Language v1 API."""

from cloud_language import enums, types
from cloud_language.dispatch import CallFuture, CallSettings, RetryOptions
from cloud_language.exceptions import CallError
from cloud_language.language_service_client import LanguageServiceClient
from cloud_language.transports import Transport
from cloud_language.version import __version__


__all__ = (
    "CallError",
    "CallFuture",
    "CallSettings",
    "LanguageServiceClient",
    "RetryOptions",
    "Transport",
    "__version__",
    "enums",
    "types",
)
