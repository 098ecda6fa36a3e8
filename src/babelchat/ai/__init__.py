"""Chat request plumbing: OpenAI client, request config and the request service."""

from .client import AIClient, ClientSettings
from .config import RequestConfig
from .request_service import CompletionResult, RequestHandle, RequestService

__all__ = [
    "AIClient",
    "ClientSettings",
    "CompletionResult",
    "RequestConfig",
    "RequestHandle",
    "RequestService",
]
