# src/fs_gateway/api/routes/__init__.py
"""
This module initializes the API routes package and provides route registration functionality.
Gateway status routes live at the root; switch command routes under ``/api``.
"""

from fastapi import APIRouter
from . import calls, configuration, realtime, status
from .. import websocket
from ..models import ErrorResponse

# Every switch command route can answer with the error body
ERROR_RESPONSES = {
    400: {"model": ErrorResponse, "description": "Invalid request parameter"},
    500: {"model": ErrorResponse, "description": "Switch or connection error"},
}

# Create main router
router = APIRouter()

# Include all route modules
router.include_router(status.router)
router.include_router(realtime.router, prefix="/api", responses=ERROR_RESPONSES)
router.include_router(calls.router, prefix="/api", responses=ERROR_RESPONSES)
router.include_router(configuration.router, prefix="/api", responses=ERROR_RESPONSES)
router.include_router(websocket.router, tags=["websocket"])

__all__ = ["router"]
