# src/fs_gateway/api/routes/calls.py
"""
This module defines the call control endpoints: originating a call between
two directory users and hanging up a call by UUID.

Originate runs as a plain API command by default. With ``background`` set
it is submitted through ``bgapi`` so the connection is not held for the
whole ring time, and the job's result is awaited separately.
"""

from typing import Optional

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from ..dependencies import get_connection
from ..models.gateway import OriginateRequest
from ..responses import command_arg, failure, success
from ...esl.connection import SwitchConnection
from ...utils.errors import InvalidParameterError
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["calls"])

@router.post("/calls/originate")
async def originate_call(
    request: Optional[OriginateRequest] = None,
    connection: SwitchConnection = Depends(get_connection)
):
    """
    Bridge ``user/{from}`` to ``user/{to}``.
    """
    request = request or OriginateRequest()
    if not request.from_ or not request.to:
        return JSONResponse(
            status_code=400,
            content=failure("Both 'from' and 'to' parameters are required",
                            InvalidParameterError.code)
        )

    command = (
        f"originate user/{command_arg('from', request.from_)} "
        f"&bridge(user/{command_arg('to', request.to)})"
    )
    logger.info("Originate requested",
                caller=request.from_,
                callee=request.to,
                background=request.background)

    if request.background:
        job_uuid = await connection.submit_background(command)
        data = await connection.wait_background_job(job_uuid)
        return success(message="Call initiated", response=data, job_uuid=job_uuid)

    data = await connection.send(command)
    return success(message="Call initiated", response=data, job_uuid=None)

@router.delete("/calls/{uuid}")
async def hangup_call(uuid: str, connection: SwitchConnection = Depends(get_connection)):
    data = await connection.send(f"uuid_kill {command_arg('uuid', uuid)}")
    logger.info("Hangup requested", uuid=uuid)
    return success(message="Call terminated", uuid=uuid, response=data)
