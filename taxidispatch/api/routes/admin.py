"""
Admin / observability endpoints
===============================

GET /api/v1/admin/health -- simple health check
"""

from fastapi import APIRouter, Depends

from taxidispatch.api.container import DispatchContainer
from taxidispatch.api.dependencies import get_container
from taxidispatch.api.schemas import HealthResponse

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/health", response_model=HealthResponse, summary="Health check")
async def health(container: DispatchContainer = Depends(get_container)):
    return HealthResponse(connections=len(container.transport))
