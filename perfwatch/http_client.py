"""
Standardized HTTP session configuration with proper timeouts.

Every aiohttp session perfwatch opens goes through these helpers, so
connection and read limits stay consistent. The executor passes its own
per-request ClientTimeout, which replaces the session limit for that call.

Usage:
    from perfwatch.http_client import create_client_session

    async with create_client_session() as session:
        await session.get(url)

    # For persistent sessions:
    session = create_client_session(timeout=LONG_TIMEOUT)
    try:
        await session.get(url)
    finally:
        await session.close()
"""

from __future__ import annotations

import aiohttp
from aiohttp import ClientTimeout

from perfwatch.__version__ import __version__

__all__ = [
    "LONG_TIMEOUT",
    "DEFAULT_HEADERS",
    "create_client_session",
]

# Benchmarks and deep-zoom renders
LONG_TIMEOUT = ClientTimeout(
    total=120,
    connect=10,
    sock_read=110,
)

DEFAULT_HEADERS = {
    "Accept": "application/json",
    "User-Agent": f"perfwatch/{__version__}",
}


def create_client_session(
    timeout: ClientTimeout | None = None,
    **kwargs,
) -> aiohttp.ClientSession:
    """Create an aiohttp ClientSession with perfwatch defaults.

    Args:
        timeout: Optional custom timeout. Uses LONG_TIMEOUT if not specified.
            Executor calls replace it with their own deadline.
        **kwargs: Additional arguments passed to ClientSession.
    """
    if timeout is None:
        timeout = LONG_TIMEOUT
    headers = {**DEFAULT_HEADERS, **kwargs.pop("headers", {})}
    return aiohttp.ClientSession(timeout=timeout, headers=headers, **kwargs)
