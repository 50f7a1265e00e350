# src/fs_gateway/api/models/__init__.py
"""
This module initializes the API models package and re-exports the models
used by the routes.
"""

from .gateway import (
    ErrorResponse,
    HealthResponse,
    OriginateRequest,
    StatusResponse
)

__all__ = [
    "ErrorResponse",
    "HealthResponse",
    "OriginateRequest",
    "StatusResponse"
]
