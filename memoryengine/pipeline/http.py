"""Shared mapping from httpx failures to the engine's provider error taxonomy.

Both the embedding provider and the LLM client go through provider_call() so
that a 429 is always RateLimited, a 401/403 always AuthError, and any network
failure, timeout or 5xx always TransientError, whichever provider raised it.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import AsyncIterator

import httpx

from memoryengine.errors import AuthError, ProviderError, RateLimited, TransientError

logger = logging.getLogger(__name__)


def _retry_after(response: httpx.Response) -> float | None:
    value = response.headers.get("retry-after")
    if value is None:
        return None
    try:
        return float(value)
    except ValueError:
        return None


def raise_for_provider_status(response: httpx.Response, provider: str) -> None:
    """Raise the typed provider error matching the response status, if any."""
    status = response.status_code
    if status < 400:
        return
    if status == 429:
        raise RateLimited(f"{provider}: rate limited (HTTP 429)", retry_after=_retry_after(response))
    if status in (401, 403):
        raise AuthError(f"{provider}: credentials rejected (HTTP {status})")
    if status >= 500:
        raise TransientError(f"{provider}: upstream error (HTTP {status})")
    raise ProviderError(f"{provider}: request failed (HTTP {status}): {response.text[:200]}")


@asynccontextmanager
async def provider_call(provider: str) -> AsyncIterator[None]:
    """Translate httpx transport exceptions raised inside the block."""
    try:
        yield
    except httpx.TimeoutException as exc:
        logger.warning("%s: request timed out: %s", provider, exc)
        raise TransientError(f"{provider}: request timed out") from exc
    except httpx.TransportError as exc:
        logger.warning("%s: network error: %s", provider, exc)
        raise TransientError(f"{provider}: network error: {exc}") from exc
