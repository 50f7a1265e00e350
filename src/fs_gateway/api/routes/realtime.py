# src/fs_gateway/api/routes/realtime.py
"""
This module defines the live-state endpoints: active calls and channels,
registrations, gateways, loaded modules and the switch's own status.
Each endpoint runs one or more API commands over the shared connection.
"""

import asyncio
from typing import Any, Dict

from fastapi import APIRouter, Depends

from ..dependencies import get_connection
from ..responses import command_arg, leading_int, parse_key_values, parse_lines, success
from ...esl.connection import SwitchConnection
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["realtime"])

async def _table(connection: SwitchConnection, command: str, total_key: str, rows_key: str) -> Dict[str, Any]:
    """Run a ``show ... as json`` style command and return its rows."""
    result = await connection.api(command, expect_json=True)
    return success(**{total_key: result.row_count(), rows_key: result.rows()})

@router.get("/calls")
async def list_calls(connection: SwitchConnection = Depends(get_connection)):
    return await _table(connection, "show calls as json", "total_calls", "calls")

@router.get("/channels")
async def list_channels(connection: SwitchConnection = Depends(get_connection)):
    return await _table(connection, "show channels as json", "total_channels", "channels")

@router.get("/system/status")
async def system_status(connection: SwitchConnection = Depends(get_connection)):
    return success(status=await connection.send("status"))

@router.get("/registrations")
async def list_registrations(connection: SwitchConnection = Depends(get_connection)):
    return await _table(connection, "show registrations as json",
                        "total_registrations", "registrations")

@router.get("/gateways")
async def list_gateways(connection: SwitchConnection = Depends(get_connection)):
    return await _table(connection, "sofia status gateway as json", "total_gateways", "gateways")

@router.get("/stats/calls")
async def call_stats(connection: SwitchConnection = Depends(get_connection)):
    data = await connection.send("show calls count")
    return success(active_calls=leading_int(data))

@router.get("/calls/{uuid}")
async def call_details(uuid: str, connection: SwitchConnection = Depends(get_connection)):
    """
    Channel variables of one call, parsed from ``uuid_dump`` output.
    """
    data = await connection.send(f"uuid_dump {command_arg('uuid', uuid)}")
    return success(uuid=uuid, call_info=parse_key_values(data, ":"))

@router.get("/sip/profiles")
async def sip_profiles(connection: SwitchConnection = Depends(get_connection)):
    return success(profiles=await connection.send("sofia status"))

@router.get("/modules")
async def list_modules(connection: SwitchConnection = Depends(get_connection)):
    return await _table(connection, "show modules as json", "total_modules", "modules")

@router.get("/codecs")
async def list_codecs(connection: SwitchConnection = Depends(get_connection)):
    return success(codecs=await connection.send("show codec"))

@router.get("/system/info")
async def system_info(connection: SwitchConnection = Depends(get_connection)):
    """
    Switch status, start time and session count.
    The three commands are in flight at the same time on the one connection.
    """
    status, uptime, sessions = await asyncio.gather(
        connection.send("status"),
        connection.send("strepoch"),
        connection.api("show sessions as json", expect_json=True)
    )
    return success(system={
        "status": status,
        "uptime_epoch": uptime.strip(),
        "total_sessions": sessions.row_count()
    })

@router.get("/commands")
async def list_commands(connection: SwitchConnection = Depends(get_connection)):
    commands = parse_lines(await connection.send("show api"))
    return success(total_commands=len(commands), commands=commands)
