# src/fs_gateway/api/models/gateway.py
"""
This module defines the data models for gateway API requests and responses.
These models provide validation for request bodies and document the
response shapes in the OpenAPI schema.
"""

from typing import Any, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

class OriginateRequest(BaseModel):
    """
    Model for placing a call between two directory users.
    ``from`` and ``to`` are checked by the route so that a missing value
    answers with the gateway's own error body.
    """
    model_config = ConfigDict(
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "from": "1000",
                "to": "1001",
                "background": False
            }
        }
    )

    from_: Optional[str] = Field(None, alias="from", description="Calling extension")
    to: Optional[str] = Field(None, description="Called extension")
    background: bool = Field(False, description="Run through bgapi and wait for the job result")

    @field_validator("from_", "to", mode="before")
    @classmethod
    def coerce_extension(cls, v: Union[str, int, None]) -> Optional[str]:
        """Extensions are often sent as JSON numbers."""
        if isinstance(v, bool):
            raise ValueError("extension must be a string or number")
        if isinstance(v, int):
            return str(v)
        return v

class ErrorResponse(BaseModel):
    """
    Model for error responses.
    """
    success: bool = Field(False, description="Always false")
    error: str = Field(..., description="Error message")
    code: Optional[str] = Field(None, description="Stable error code")

class HealthResponse(BaseModel):
    """
    Model for the health check.
    """
    status: str = Field(..., description="healthy or unhealthy")
    freeswitch: str = Field(..., description="connected or disconnected")
    connection_state: Optional[str] = Field(None, description="Connection lifecycle state")

class StatusResponse(BaseModel):
    """
    Model for gateway status information.
    """
    freeswitch_connected: bool
    connection_state: str
    server_status: str = "online"
    connection: Dict[str, Any] = Field(default_factory=dict)
    process: Dict[str, Any] = Field(default_factory=dict)
    timestamp: str
