# src/fs_gateway/esl/__init__.py
"""
FreeSWITCH event socket client used by the gateway.
Exposes the connection manager and the building blocks it is made of.
"""

from .backoff import ReconnectBackoff
from .connection import ConnectionState, SwitchConnection
from .correlator import CommandCorrelator, PendingCommand
from .demux import Demultiplexer
from .frame import Event, Frame, FrameKind, FrameParser, decode_frames, encode_command, parse_event
from .jobs import BackgroundJob, BackgroundJobRegistry
from .result import CommandResult, ResultKind

__all__ = [
    # Connection
    "SwitchConnection",
    "ConnectionState",
    "ReconnectBackoff",

    # Correlation
    "CommandCorrelator",
    "PendingCommand",
    "BackgroundJobRegistry",
    "BackgroundJob",
    "Demultiplexer",

    # Codec
    "Frame",
    "FrameKind",
    "FrameParser",
    "Event",
    "decode_frames",
    "encode_command",
    "parse_event",

    # Results
    "CommandResult",
    "ResultKind"
]
