"""Supabase JWT validation dependency for FastAPI."""

from fastapi import Header, HTTPException

from app.config import settings
from app.db.supabase_client import get_supabase


async def verify_jwt(authorization: str = Header(None)):
    """Resolve the dashboard user behind a Bearer token.

    Farm creation runs as this user; 503 when auth is not configured.
    """
    if not authorization or not authorization.startswith("Bearer "):
        raise HTTPException(status_code=401, detail="Missing or invalid token")
    if not settings.supabase_url or not settings.supabase_anon_key:
        raise HTTPException(status_code=503, detail="Authentication is not configured")

    token = authorization.removeprefix("Bearer ")
    try:
        user_response = get_supabase().auth.get_user(token)
    except Exception:
        raise HTTPException(status_code=401, detail="Invalid token")
    if user_response is None or user_response.user is None:
        raise HTTPException(status_code=401, detail="Invalid token")
    return user_response.user
