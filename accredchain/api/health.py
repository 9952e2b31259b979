"""Health check endpoints."""
import logging

from fastapi import APIRouter

from accredchain.api.models import HealthResponse
from accredchain.store import get_storage

log = logging.getLogger(__name__)
router = APIRouter(tags=["health"])


@router.get("/healthz", response_model=HealthResponse)
async def healthz() -> HealthResponse:
    """Health check endpoint.

    Reports the storage backend in use. A store that cannot be opened
    surfaces as 503 through the error handler.
    """
    storage = get_storage()
    return HealthResponse(ok=True, backend=storage.backend)
