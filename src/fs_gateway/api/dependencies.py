# src/fs_gateway/api/dependencies.py
"""
FastAPI dependencies giving routes access to the objects created at startup.
The application lifespan stores them on ``app.state``.
"""

from fastapi import Request
from starlette.requests import HTTPConnection

from ..esl.connection import SwitchConnection
from ..events.dispatcher import EventDispatcher

def get_connection(request: Request) -> SwitchConnection:
    return request.app.state.connection

def get_dispatcher(connection: HTTPConnection) -> EventDispatcher:
    # HTTPConnection so the websocket route can depend on it too
    return connection.app.state.dispatcher
