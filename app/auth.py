"""API key check shared by every /engine endpoint."""

from fastapi import Header, HTTPException

from app.config import settings


async def verify_api_key(
    x_api_key: str | None = Header(default=None, alias="X-API-Key"),
    authorization: str | None = Header(default=None),
) -> str:
    """Accept the key from X-API-Key or an `Authorization: Bearer` header.

    Open when ENGINE_API_KEY is unset; otherwise a mismatch is a 401.
    """
    if settings.engine_api_key is None:
        return ""

    presented = x_api_key
    if presented is None and authorization and authorization.lower().startswith("bearer "):
        presented = authorization.split(" ", 1)[1].strip()

    if presented != settings.engine_api_key:
        raise HTTPException(status_code=401, detail="Invalid or missing API key")

    return presented
