"""Search router: hybrid conversation search and health."""

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from shared.dependencies.auth import verify_api_key
from shared.models.errors import DimensionMismatchError
from shared.models.search import SearchRequest

search_router = APIRouter()


@search_router.post(
    "/search",
    dependencies=[Depends(verify_api_key)],
    tags=["Search"],
)
async def handle_search(request: Request, body: SearchRequest) -> JSONResponse:
    """Search indexed conversations by query text and/or session and project exemplars.

    Args:
        request (Request): The incoming FastAPI request (carries app state).
        body (SearchRequest): Query, exemplars and filters.

    Returns:
        JSONResponse: Ranked list of matching sessions.

    Raises:
        HTTPException: 400 for invalid parameters, 500 on a vector dimension mismatch.
    """
    request.app.state.logging.info(
        "Search received: mode=%s query=%r", body.mode.value, (body.query or "")[:80]
    )

    search_service = request.app.state.search_service
    try:
        result = await search_service.do_search(body)
    except DimensionMismatchError as e:
        request.app.state.logging.error("Search failed: %s", e)
        raise HTTPException(status_code=500, detail=str(e))
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return JSONResponse(content=result.model_dump(mode="json"))


@search_router.get("/health", tags=["Health"])
async def handle_health(request: Request) -> JSONResponse:
    """Liveness probe. Reports the app version."""
    return JSONResponse(content={"status": "ok", "version": request.app.version})
