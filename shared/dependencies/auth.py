"""FastAPI authentication dependency."""

import secrets

from fastapi import HTTPException, Request


async def verify_api_key(request: Request) -> None:
    """Compare the X-API-Key header against APP_API_KEY.

    Args:
        request (Request): The incoming FastAPI request.

    Raises:
        HTTPException: If the API key is missing or invalid (401).
        ValueError: If APP_API_KEY is not configured.
    """
    expected_key = request.app.state.config.get_string_val("APP_API_KEY")
    provided_key = request.headers.get("X-API-Key") or ""
    if not secrets.compare_digest(provided_key.encode(), expected_key.encode()):
        raise HTTPException(status_code=401, detail="Invalid or missing API key.")
