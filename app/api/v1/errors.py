"""Translate client-side failures into HTTP responses."""

import httpx
from fastapi import HTTPException

from app.clients.base import FeatureDisabledError, RemoteServiceError


def to_http_exception(exc: Exception) -> HTTPException:
    if isinstance(exc, FeatureDisabledError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, RemoteServiceError):
        # Upstream 4xx are the caller's problem; anything else is a bad gateway
        status = exc.status_code if 400 <= exc.status_code < 500 else 502
        return HTTPException(status_code=status, detail=exc.detail)
    if isinstance(exc, httpx.TimeoutException):
        return HTTPException(status_code=504, detail="Upstream service timed out")
    if isinstance(exc, httpx.HTTPError):
        return HTTPException(status_code=502, detail=f"Upstream service unreachable: {exc}")
    return HTTPException(status_code=500, detail=str(exc))


UPSTREAM_ERRORS = (FeatureDisabledError, RemoteServiceError, httpx.HTTPError)
