# src/fs_gateway/__init__.py
"""
FreeSWITCH gateway: exposes the switch's command surface over HTTP through a
single persistent event socket connection.
"""

__version__ = "1.0.0"
