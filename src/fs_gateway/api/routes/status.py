# src/fs_gateway/api/routes/status.py
"""
This module defines the gateway's own status and monitoring endpoints.
They report the state of the switch connection and the gateway process and
never send anything to the switch.
"""

import time
from typing import Any, Dict

import psutil
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_connection
from ..models.gateway import HealthResponse, StatusResponse
from ..responses import timestamp
from ...esl.connection import SwitchConnection
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["status"])

def _process_metrics() -> Dict[str, Any]:
    process = psutil.Process()
    with process.oneshot():
        return {
            "pid": process.pid,
            "uptime": int(time.time() - process.create_time()),
            "cpu_percent": process.cpu_percent(interval=None),
            "memory_mb": round(process.memory_info().rss / (1024 * 1024), 2),
            "threads": process.num_threads()
        }

@router.get("/")
async def root() -> Dict[str, str]:
    return {
        "message": "FreeSWITCH Integration Server",
        "status": "running",
        "timestamp": timestamp()
    }

@router.get("/status", response_model=StatusResponse)
async def gateway_status(
    connection: SwitchConnection = Depends(get_connection)
) -> StatusResponse:
    """
    Connection diagnostics plus resource usage of the gateway process.
    """
    logger.debug("Status requested")
    snapshot = connection.snapshot()
    return StatusResponse(
        freeswitch_connected=connection.is_connected,
        connection_state=connection.state.value,
        server_status="online",
        connection=snapshot,
        process=_process_metrics(),
        timestamp=timestamp()
    )

@router.get("/health", response_model=HealthResponse, responses={503: {"model": HealthResponse}})
async def health_check(
    connection: SwitchConnection = Depends(get_connection)
):
    """
    Health check for load balancers: 200 while the switch connection is
    ready, 503 otherwise.
    """
    if connection.is_connected:
        return HealthResponse(
            status="healthy",
            freeswitch="connected",
            connection_state=connection.state.value
        )

    logger.debug("Health check failed", connection_state=connection.state.value)
    return JSONResponse(
        status_code=503,
        content=HealthResponse(
            status="unhealthy",
            freeswitch="disconnected",
            connection_state=connection.state.value
        ).model_dump()
    )
