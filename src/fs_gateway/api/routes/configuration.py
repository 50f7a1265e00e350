# src/fs_gateway/api/routes/configuration.py
"""
This module defines the stored-data and configuration endpoints: call
detail records, voicemail, directory users, global variables and the XML
configuration the switch has loaded.

Values taken from the request are placed into command lines, so each one
is checked with ``command_arg`` first.
"""

from fastapi import APIRouter, Depends, Query

from ..dependencies import get_connection
from ..responses import command_arg, parse_key_values, success
from ...esl.connection import SwitchConnection
from ...utils.logger import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["configuration"])

@router.get("/cdr/recent")
async def recent_cdr(
    limit: int = Query(100, ge=1, le=10000),
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(f"cdr_csv recent {limit}")
    return success(message="Recent call detail records", records=data)

@router.get("/voicemail/{user}")
async def voicemail(
    user: str,
    domain: str = "default",
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(
        f"vm_fsdb pref {command_arg('domain', domain)}/{command_arg('user', user)}"
    )
    return success(user=user, domain=domain, voicemail_data=data)

@router.get("/config/dialplan")
async def dialplan(connection: SwitchConnection = Depends(get_connection)):
    data = await connection.send("xml_locate dialplan")
    return success(message="Current dialplan configuration", dialplan=data)

@router.get("/config/directory")
async def directory(
    domain: str = "default",
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(f"xml_locate directory domain name {command_arg('domain', domain)}")
    return success(domain=domain, directory=data)

@router.get("/users/{extension}")
async def user_data(
    extension: str,
    domain: str = "default",
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(
        f"user_data {command_arg('extension', extension)}@{command_arg('domain', domain)}"
    )
    return success(extension=extension, domain=domain, user_data=data)

@router.get("/config/globals")
async def global_variables(connection: SwitchConnection = Depends(get_connection)):
    """
    All global variables, parsed from ``name=value`` lines.
    """
    variables = parse_key_values(await connection.send("global_getvar"), "=")
    return success(total_variables=len(variables), variables=variables)

@router.get("/config/globals/{variable}")
async def global_variable(
    variable: str,
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(f"global_getvar {command_arg('variable', variable)}")
    return success(variable=variable, value=data.strip())

@router.get("/config/sofia/{profile}")
async def sofia_profile(
    profile: str,
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(f"sofia status profile {command_arg('profile', profile)}")
    return success(profile=profile, configuration=data)

@router.get("/config/xml")
async def xml_config(
    section: str = "configuration",
    connection: SwitchConnection = Depends(get_connection)
):
    data = await connection.send(f"xml_locate {command_arg('section', section)}")
    return success(section=section, xml_config=data)

@router.get("/config/aliases")
async def aliases(connection: SwitchConnection = Depends(get_connection)):
    return success(aliases=await connection.send("alias"))

@router.get("/tasks")
async def tasks(connection: SwitchConnection = Depends(get_connection)):
    result = await connection.api("show tasks as json", expect_json=True)
    return success(total_tasks=result.row_count(), tasks=result.rows())

@router.get("/config/nat")
async def nat_mappings(connection: SwitchConnection = Depends(get_connection)):
    return success(nat_mappings=await connection.send("nat_map status"))
