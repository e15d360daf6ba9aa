"""
Health Routes
=============

FastAPI route for the rendering service health check.
"""

from fastapi import APIRouter

from universal_renderer.models.schemas import HealthResponse

router = APIRouter(tags=["Health"])


@router.get("/health", response_model=HealthResponse)
async def health_check() -> HealthResponse:
    """Basic health check endpoint."""
    return HealthResponse()
