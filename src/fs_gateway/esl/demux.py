# src/fs_gateway/esl/demux.py
"""
Routing of inbound frames.

Replies go to the correlator, BACKGROUND_JOB events to the job registry, other
events to the event dispatcher, and disconnect notices to the connection's
teardown path. Nothing that arrives on the wire can make ``route`` raise.
"""

from typing import TYPE_CHECKING, Callable, Dict, Optional

from .correlator import CommandCorrelator
from .frame import Frame, FrameKind, parse_event
from .jobs import BackgroundJobRegistry
from ..utils.errors import MalformedFrameError, ProtocolError
from ..utils.logger import get_logger

if TYPE_CHECKING:
    from ..events.dispatcher import EventDispatcher

logger = get_logger(__name__)

BACKGROUND_JOB = "BACKGROUND_JOB"

class Demultiplexer:
    """
    Classifies each frame of one connection session and hands it on.

    Args:
        correlator: Receives command/reply and api/response frames
        jobs: Receives BACKGROUND_JOB events
        dispatcher: Receives all other events; None discards them
        on_disconnect: Called with a reason when the switch announces it is
            closing the connection
        on_protocol_error: Called when the frame stream no longer makes sense
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        jobs: BackgroundJobRegistry,
        dispatcher: Optional["EventDispatcher"],
        on_disconnect: Callable[[str], None],
        on_protocol_error: Callable[[ProtocolError], None]
    ):
        self._correlator = correlator
        self._jobs = jobs
        self._dispatcher = dispatcher
        self._on_disconnect = on_disconnect
        self._on_protocol_error = on_protocol_error
        self.stats: Dict[str, int] = {
            "replies": 0,
            "events": 0,
            "jobs": 0,
            "dropped": 0,
        }

    def route(self, frame: Frame) -> None:
        kind = frame.kind
        try:
            if kind in (FrameKind.COMMAND_REPLY, FrameKind.API_RESPONSE):
                self.stats["replies"] += 1
                self._correlator.resolve(frame)
            elif kind == FrameKind.EVENT:
                self.stats["events"] += 1
                self._route_event(frame)
            elif kind in (FrameKind.DISCONNECT_NOTICE, FrameKind.RUDE_REJECTION):
                reason = frame.get("Content-Disposition") or kind.value
                logger.warning("Switch announced disconnect", reason=reason)
                self._on_disconnect(reason)
            elif kind == FrameKind.AUTH_REQUEST:
                raise ProtocolError("auth/request received on an authenticated connection")
            else:
                self.stats["dropped"] += 1
                logger.warning("Unclassifiable frame dropped",
                               content_type=frame.content_type,
                               headers=list(frame.headers)[:5])
        except ProtocolError as e:
            logger.error("Protocol error", error=str(e))
            self._on_protocol_error(e)
        except Exception as e:
            self.stats["dropped"] += 1
            logger.error("Failed to route frame",
                         content_type=frame.content_type,
                         error=str(e),
                         exc_info=True)

    def _route_event(self, frame: Frame) -> None:
        try:
            event = parse_event(frame)
        except MalformedFrameError as e:
            self.stats["dropped"] += 1
            logger.warning("Malformed event dropped", error=str(e))
            return

        if event.name == BACKGROUND_JOB and self._jobs.resolve(event):
            self.stats["jobs"] += 1
            return

        if self._dispatcher is not None and self._dispatcher.publish(event):
            return

        logger.debug("Event discarded", event_name=event.name)
