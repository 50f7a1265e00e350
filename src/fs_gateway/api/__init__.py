# src/fs_gateway/api/__init__.py
"""
HTTP surface of the gateway: FastAPI application, routes and the event stream.
"""

from .server import create_app, run

__all__ = ["create_app", "run"]
