# src/fs_gateway/events/__init__.py
"""
This module initializes the events package: fan-out of unsolicited switch
events to subscribers such as the websocket event stream.
"""

from .dispatcher import EventDispatcher, EventSubscription

__all__ = [
    "EventDispatcher",
    "EventSubscription"
]
