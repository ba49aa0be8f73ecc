"""
Custom exception types for perfwatch.

This module defines the hierarchy of exceptions raised by the request stack.
Using specific exception types enables:
- Retry decisions based on the failure class, not on message text
- A distinct "service degraded" signal when a circuit is open
- Cleaner separation between transport, protocol and shape failures
"""

from __future__ import annotations

from typing import Any


class PerfwatchError(Exception):
    """Base exception for all perfwatch errors.

    All custom exceptions in perfwatch inherit from this class
    to enable catching all perfwatch-specific errors with a single handler.
    """

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def __str__(self) -> str:
        if self.details:
            return f"{self.message} (details: {self.details})"
        return self.message


class ConfigurationError(PerfwatchError):
    """Raised when a component's configuration is missing or invalid."""

    def __init__(self, component: str, reason: str):
        super().__init__(
            f"Configuration error in {component}: {reason}",
            {"component": component, "reason": reason},
        )
        self.component = component
        self.reason = reason


# ============================================================================
# Request Errors
# ============================================================================


class RequestError(PerfwatchError):
    """Base exception for failures of a single remote request.

    Subclasses set ``retryable`` to tell the retry controller whether
    another attempt could plausibly succeed.
    """

    retryable: bool = False
    kind: str = "request_error"

    def __init__(
        self,
        message: str,
        endpoint: str | None = None,
        correlation_id: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        merged = {"endpoint": endpoint}
        if correlation_id:
            merged["correlation_id"] = correlation_id
        if details:
            merged.update(details)
        super().__init__(message, merged)
        self.endpoint = endpoint
        self.correlation_id = correlation_id


class RequestTimeoutError(RequestError):
    """Raised when a request exceeds its timeout and is cancelled."""

    retryable = True
    kind = "timeout"

    def __init__(
        self,
        endpoint: str | None,
        timeout_seconds: float,
        correlation_id: str | None = None,
    ):
        super().__init__(
            f"Request to {endpoint} timed out after {timeout_seconds:.1f}s",
            endpoint=endpoint,
            correlation_id=correlation_id,
            details={"timeout_seconds": timeout_seconds},
        )
        self.timeout_seconds = timeout_seconds


class HTTPStatusError(RequestError):
    """Raised when the remote service answers with a non-2xx status.

    The body is parsed as ``{code, message, details}`` when possible.
    """

    kind = "http_error"

    def __init__(
        self,
        endpoint: str | None,
        status: int,
        code: str,
        api_message: str,
        api_details: Any = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            f"{endpoint} returned HTTP {status} [{code}]: {api_message}",
            endpoint=endpoint,
            correlation_id=correlation_id,
            details={"status": status, "code": code},
        )
        self.status = status
        self.code = code
        self.api_message = api_message
        self.api_details = api_details


class ClientError(HTTPStatusError):
    """Raised on 4xx responses. Never retried."""

    retryable = False
    kind = "client_error"


class ServerError(HTTPStatusError):
    """Raised on 5xx responses."""

    retryable = True
    kind = "server_error"


class NetworkError(RequestError):
    """Raised on connection-level failures (DNS, refused, reset)."""

    retryable = True
    kind = "network_error"

    def __init__(self, endpoint: str | None, reason: str, correlation_id: str | None = None):
        super().__init__(
            f"Network error calling {endpoint}: {reason}",
            endpoint=endpoint,
            correlation_id=correlation_id,
            details={"reason": reason},
        )
        self.reason = reason


class ResponseValidationError(RequestError):
    """Raised when a response body does not match the expected shape."""

    retryable = False
    kind = "validation_error"

    def __init__(
        self,
        schema_name: str,
        errors: list[str],
        endpoint: str | None = None,
        correlation_id: str | None = None,
    ):
        super().__init__(
            f"Invalid {schema_name} response: {'; '.join(errors[:3])}",
            endpoint=endpoint,
            correlation_id=correlation_id,
            details={"schema": schema_name, "errors": errors},
        )
        self.schema_name = schema_name
        self.errors = errors


class CircuitOpenError(RequestError):
    """Raised when a call is refused because the endpoint's circuit is open.

    No network traffic is generated. Surfaced to collaborators as a
    "service degraded" signal rather than as a network failure.
    """

    retryable = False
    kind = "circuit_open"

    def __init__(self, endpoint: str, cooldown_remaining: float):
        super().__init__(
            f"Circuit breaker for '{endpoint}' is open. Retry in {cooldown_remaining:.1f}s",
            endpoint=endpoint,
            details={"cooldown_remaining": cooldown_remaining},
        )
        self.cooldown_remaining = cooldown_remaining


__all__ = [
    "PerfwatchError",
    "ConfigurationError",
    "RequestError",
    "RequestTimeoutError",
    "HTTPStatusError",
    "ClientError",
    "ServerError",
    "NetworkError",
    "ResponseValidationError",
    "CircuitOpenError",
]
