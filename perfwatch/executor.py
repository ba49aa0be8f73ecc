"""
Single-attempt request execution with failure classification.

The executor performs exactly one HTTP call per ``execute`` and turns every
way it can go wrong into one of the perfwatch request errors:

    asyncio timeout            -> RequestTimeoutError
    aiohttp connection failure -> NetworkError
    HTTP 4xx                   -> ClientError
    HTTP 5xx                   -> ServerError
    undecodable / wrong shape  -> ResponseValidationError

Retrying and circuit breaking are layered on top by the caller.
"""

from __future__ import annotations

import asyncio
import json
import time
import uuid
from typing import Any, Callable, Mapping, Optional, TypeVar

import aiohttp

from perfwatch.exceptions import (
    ClientError,
    HTTPStatusError,
    NetworkError,
    RequestTimeoutError,
    ResponseValidationError,
    ServerError,
)
from perfwatch.http_client import create_client_session
from perfwatch.logging_config import LogContext, get_logger

logger = get_logger(__name__)

T = TypeVar("T")

CORRELATION_HEADER = "X-Correlation-ID"
REQUEST_START_HEADER = "X-Request-Start"


def parse_error_body(status: int, reason: Optional[str], text: str) -> tuple[str, str, Any]:
    """Extract ``(code, message, details)`` from an error response body.

    Accepts ``{code, message, details}`` at the top level or nested under
    ``"error"``; anything else is synthesized from the status line.
    """
    fallback = (f"HTTP_{status}", reason or "HTTP error", None)
    if not text:
        return fallback
    try:
        body = json.loads(text)
    except ValueError:
        return fallback
    if isinstance(body, Mapping) and isinstance(body.get("error"), Mapping):
        body = body["error"]
    if not isinstance(body, Mapping):
        return fallback
    code = body.get("code") or fallback[0]
    message = body.get("message") or fallback[1]
    details = body.get("details", body.get("context"))
    return str(code), str(message), details


class RequestExecutor:
    """Issues one JSON request against ``base_url`` per call.

    The session is borrowed when passed in, otherwise created lazily and
    owned (closed by :meth:`close`).
    """

    def __init__(
        self,
        base_url: str,
        session: Optional[aiohttp.ClientSession] = None,
        default_timeout: float = 30.0,
    ):
        self.base_url = base_url.rstrip("/")
        self.default_timeout = default_timeout
        self._session = session
        self._owns_session = session is None

    def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = create_client_session()
            self._owns_session = True
        return self._session

    async def execute(
        self,
        endpoint: str,
        *,
        method: str = "GET",
        body: Any = None,
        params: Optional[Mapping[str, str]] = None,
        timeout: Optional[float] = None,
        parser: Optional[Callable[[Any], T]] = None,
    ) -> Any:
        """Perform one request and return the (optionally parsed) JSON body.

        Args:
            endpoint: Path relative to the base URL, e.g. ``/api/performance/metrics``.
            method: HTTP method.
            body: JSON-serializable request body.
            params: Query string parameters.
            timeout: Seconds before the call is cancelled (default ``default_timeout``).
            parser: Callable turning the decoded JSON into a typed value; it
                should raise ResponseValidationError on a bad shape.

        Raises:
            RequestTimeoutError, NetworkError, ClientError, ServerError,
            ResponseValidationError
        """
        timeout = timeout or self.default_timeout
        correlation_id = str(uuid.uuid4())
        headers = {
            CORRELATION_HEADER: correlation_id,
            REQUEST_START_HEADER: str(int(time.time() * 1000)),
        }

        with LogContext(correlation_id=correlation_id, endpoint=endpoint):
            start = time.monotonic()
            try:
                status, reason, text = await asyncio.wait_for(
                    self._send(method, endpoint, headers, body, params, timeout),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                logger.warning("Request timed out", method=method, timeout_seconds=timeout)
                raise RequestTimeoutError(endpoint, timeout, correlation_id) from None
            except aiohttp.ClientError as e:
                reason_text = str(e) or type(e).__name__
                logger.warning("Request failed at network level", method=method, error=reason_text)
                raise NetworkError(endpoint, reason_text, correlation_id) from e

            latency_ms = round((time.monotonic() - start) * 1000, 2)
            logger.debug("Request completed", method=method, status=status, latency_ms=latency_ms)

            if not 200 <= status < 300:
                raise self._status_error(endpoint, status, reason, text, correlation_id)

            payload = self._decode(endpoint, text, correlation_id)
            if parser is None:
                return payload
            try:
                return parser(payload)
            except ResponseValidationError as e:
                e.endpoint = endpoint
                e.correlation_id = correlation_id
                logger.warning("Response failed validation", schema=e.schema_name, errors=e.errors)
                raise

    async def _send(
        self,
        method: str,
        endpoint: str,
        headers: dict[str, str],
        body: Any,
        params: Optional[Mapping[str, str]],
        timeout: float,
    ) -> tuple[int, Optional[str], str]:
        session = self._get_session()
        async with session.request(
            method,
            f"{self.base_url}{endpoint}",
            json=body,
            params=params,
            headers=headers,
            timeout=aiohttp.ClientTimeout(total=timeout),
        ) as response:
            text = await response.text()
            return response.status, response.reason, text

    @staticmethod
    def _status_error(
        endpoint: str,
        status: int,
        reason: Optional[str],
        text: str,
        correlation_id: str,
    ) -> HTTPStatusError:
        code, message, details = parse_error_body(status, reason, text)
        error_cls = ServerError if status >= 500 else ClientError
        logger.warning("Request returned error status", status=status, code=code)
        return error_cls(endpoint, status, code, message, details, correlation_id)

    @staticmethod
    def _decode(endpoint: str, text: str, correlation_id: str) -> Any:
        if not text:
            return None
        try:
            return json.loads(text)
        except ValueError as e:
            raise ResponseValidationError(
                "json", [f"body is not valid JSON: {e}"], endpoint, correlation_id
            ) from e

    async def close(self) -> None:
        if self._owns_session and self._session is not None and not self._session.closed:
            await self._session.close()
        self._session = None

    async def __aenter__(self) -> "RequestExecutor":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()


__all__ = ["RequestExecutor", "parse_error_body", "CORRELATION_HEADER"]
