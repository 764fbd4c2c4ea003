"""Shared plumbing for the external HTTP clients."""

import asyncio
import logging
from typing import Optional

import httpx

from app.config import settings

logger = logging.getLogger(__name__)


class RemoteServiceError(RuntimeError):
    """An external service answered with a non-2xx status."""

    def __init__(self, service: str, status_code: int, detail: str):
        super().__init__(detail)
        self.service = service
        self.status_code = status_code
        self.detail = detail


class FeatureDisabledError(RuntimeError):
    """A call needs a base URL or key that is not configured."""


def build_http_client(
    base_url: str = "",
    timeout: Optional[float] = None,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> httpx.AsyncClient:
    """Create an AsyncClient with the uniform request timeout."""
    return httpx.AsyncClient(
        base_url=base_url,
        timeout=timeout if timeout is not None else settings.request_timeout_seconds,
        transport=transport,
    )


def raise_for_status(response: httpx.Response, service: str, fallback: str) -> None:
    """Raise RemoteServiceError for non-2xx responses, keeping the server's detail if any."""
    if response.is_success:
        return
    detail = None
    try:
        body = response.json()
        if isinstance(body, dict):
            detail = body.get("detail") or body.get("message")
    except ValueError:
        pass
    raise RemoteServiceError(
        service=service,
        status_code=response.status_code,
        detail=detail or f"{fallback} ({response.status_code})",
    )


async def probe(client: httpx.AsyncClient, url: str, timeout: float) -> bool:
    """Single bounded GET; any error or timeout counts as unhealthy."""
    try:
        response = await asyncio.wait_for(client.get(url, timeout=timeout), timeout=timeout)
    except (httpx.HTTPError, asyncio.TimeoutError) as exc:
        logger.debug("Health probe %s failed: %s", url, exc)
        return False
    return response.is_success
