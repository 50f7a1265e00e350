# src/fs_gateway/esl/frame.py
"""
Frame codec for the FreeSWITCH event socket protocol.

A frame is a block of ``Name: value`` header lines terminated by a blank line,
optionally followed by exactly ``Content-Length`` bytes of body. The parser is
incremental: bytes are fed as they arrive from the socket, complete frames come
out, and a partial frame stays buffered until the rest of it is fed. It does no
I/O and never blocks.

Event frames carry a second level of encoding in their body (URL-encoded
headers for ``text/event-plain``, a JSON object for ``text/event-json``) which
``parse_event`` decodes.
"""

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, List, Mapping, Optional, Tuple
from urllib.parse import unquote

from ..utils.errors import MalformedFrameError, ProtocolError
from ..utils.logger import get_logger

logger = get_logger(__name__)

# End of a header block; \r\n line endings are tolerated
_HEADER_END = re.compile(rb"\r?\n\r?\n")

# Header blocks larger than this are dropped as malformed
MAX_HEADER_SIZE = 64 * 1024

class FrameKind(str, Enum):
    """Classification of an inbound frame by its Content-Type."""
    AUTH_REQUEST = "auth-request"
    COMMAND_REPLY = "command-reply"
    API_RESPONSE = "api-response"
    EVENT = "event"
    DISCONNECT_NOTICE = "disconnect-notice"
    RUDE_REJECTION = "rude-rejection"
    UNKNOWN = "unknown"

CONTENT_TYPES: Dict[str, FrameKind] = {
    "auth/request": FrameKind.AUTH_REQUEST,
    "command/reply": FrameKind.COMMAND_REPLY,
    "api/response": FrameKind.API_RESPONSE,
    "text/event-plain": FrameKind.EVENT,
    "text/event-json": FrameKind.EVENT,
    "text/disconnect-notice": FrameKind.DISCONNECT_NOTICE,
    "text/rude-rejection": FrameKind.RUDE_REJECTION,
}

@dataclass
class Frame:
    """A parsed protocol unit: headers plus an optional raw body."""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None

    @property
    def content_type(self) -> Optional[str]:
        return self.headers.get("Content-Type")

    @property
    def kind(self) -> FrameKind:
        return CONTENT_TYPES.get(self.content_type or "", FrameKind.UNKNOWN)

    @property
    def reply_text(self) -> Optional[str]:
        return self.headers.get("Reply-Text")

    @property
    def text(self) -> str:
        """Body decoded as UTF-8, empty string when there is no body."""
        if not self.body:
            return ""
        return self.body.decode("utf-8", errors="replace")

    def get(self, name: str, default: Optional[str] = None) -> Optional[str]:
        return self.headers.get(name, default)

@dataclass
class Event:
    """An unsolicited (or background job) event decoded from an event frame."""
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[str] = None

    @property
    def name(self) -> Optional[str]:
        return self.headers.get("Event-Name")

    @property
    def job_uuid(self) -> Optional[str]:
        return self.headers.get("Job-UUID")

    def to_dict(self) -> Dict[str, object]:
        return {"name": self.name, "headers": dict(self.headers), "body": self.body}

def _parse_header_block(block: bytes, decode_values: bool = False) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for line in block.decode("utf-8", errors="replace").splitlines():
        if not line.strip():
            continue
        if ":" not in line:
            logger.warning("Malformed header line ignored", line=line[:120])
            continue
        name, value = line.split(":", 1)
        value = value.strip()
        headers[name.strip()] = unquote(value) if decode_values else value
    return headers

def _content_length(headers: Mapping[str, str]) -> Optional[int]:
    raw = headers.get("Content-Length")
    if raw is None:
        return None
    try:
        length = int(raw)
    except ValueError:
        raise MalformedFrameError(f"Invalid Content-Length: {raw!r}")
    if length < 0:
        raise MalformedFrameError(f"Negative Content-Length: {raw!r}")
    return length

class FrameParser:
    """
    Incremental frame decoder.

    ``feed`` accepts whatever the socket produced and returns the frames that
    became complete. Splitting a byte stream across any number of ``feed``
    calls yields the same frames as feeding it at once.

    A header block longer than ``max_header_size`` is dropped up to its
    terminating blank line and counted in ``malformed``, whether it arrives in
    one read or many. Whatever follows is decoded as the next frame.
    """

    def __init__(self, max_header_size: int = MAX_HEADER_SIZE):
        self.max_header_size = max_header_size
        self._buffer = bytearray()
        # Headers of a frame whose body has not fully arrived yet
        self._pending: Optional[Tuple[Dict[str, str], Optional[int]]] = None
        # Skipping the rest of an oversized header block
        self._discarding = False
        self.consumed = 0
        self.malformed = 0

    @property
    def buffered(self) -> int:
        """Number of bytes received but not yet part of a complete frame."""
        return len(self._buffer)

    def reset(self) -> None:
        self._buffer.clear()
        self._pending = None
        self._discarding = False

    def _consume(self, count: int) -> None:
        del self._buffer[:count]
        self.consumed += count

    def _drop_oversized(self, size: int) -> None:
        if self._discarding:
            return
        self._discarding = True
        self.malformed += 1
        logger.warning("Malformed frame dropped",
                       reason="header block too large",
                       size=size)

    def _skip_blank_lines(self) -> None:
        while self._buffer:
            if self._buffer[:1] == b"\n":
                self._consume(1)
            elif self._buffer[:2] == b"\r\n":
                self._consume(2)
            else:
                break

    def feed(self, data: bytes) -> List[Frame]:
        """
        Add received bytes and return every frame completed by them.

        Args:
            data: Bytes read from the socket (may be empty)

        Returns:
            List of complete frames in wire order
        """
        if data:
            self._buffer.extend(data)

        frames: List[Frame] = []
        while True:
            if self._pending is None:
                if not self._discarding:
                    self._skip_blank_lines()
                match = _HEADER_END.search(self._buffer)
                if match is None:
                    # Up to three bytes may be the start of the terminator
                    if len(self._buffer) - 3 > self.max_header_size:
                        self._drop_oversized(len(self._buffer))
                        self._consume(len(self._buffer) - 3)
                    break

                if self._discarding or match.start() > self.max_header_size:
                    self._drop_oversized(match.start())
                    self._discarding = False
                    self._consume(match.end())
                    continue

                headers = _parse_header_block(bytes(self._buffer[:match.start()]))
                self._consume(match.end())
                try:
                    length = _content_length(headers)
                except MalformedFrameError as e:
                    self.malformed += 1
                    logger.warning("Malformed frame dropped", reason=str(e))
                    continue
                self._pending = (headers, length)

            headers, length = self._pending
            if length is None:
                frames.append(Frame(headers))
                self._pending = None
                continue

            if len(self._buffer) < length:
                break

            body = bytes(self._buffer[:length])
            self._consume(length)
            self._pending = None
            frames.append(Frame(headers, body))

        return frames

def decode_frames(data: bytes) -> Tuple[List[Frame], int]:
    """
    One-shot decode of a byte string.

    Returns:
        The complete frames and the number of bytes they (and any skipped
        malformed input) consumed; the remainder is an incomplete frame.
    """
    parser = FrameParser()
    frames = parser.feed(data)
    return frames, parser.consumed

def encode_command(command: str, headers: Optional[Mapping[str, str]] = None) -> bytes:
    """
    Serialize an outbound command frame.

    Args:
        command: Command line, e.g. ``api status`` or ``auth ClueCon``
        headers: Extra header lines sent after the command line

    Returns:
        Wire bytes terminated by a blank line

    Raises:
        ProtocolError: If the command or a header would break framing
    """
    if not command or not command.strip():
        raise ProtocolError("Empty command")
    lines = [command]
    for name, value in (headers or {}).items():
        lines.append(f"{name}: {value}")
    for line in lines:
        if "\n" in line or "\r" in line:
            raise ProtocolError("Command text must not contain line breaks")
    return ("\n".join(lines) + "\n\n").encode("utf-8")

def parse_event(frame: Frame) -> Event:
    """
    Decode the body of an event frame.

    Raises:
        MalformedFrameError: If the body cannot be decoded
    """
    raw = frame.body or b""

    if frame.content_type == "text/event-plain":
        match = _HEADER_END.search(raw)
        if match is None:
            block, rest = raw, b""
        else:
            block, rest = raw[:match.start()], raw[match.end():]
        headers = _parse_header_block(block, decode_values=True)
        length = _content_length(headers)
        body = None
        if length is not None:
            if len(rest) < length:
                raise MalformedFrameError("Event body shorter than its Content-Length")
            body = rest[:length].decode("utf-8", errors="replace")
        return Event(headers, body)

    if frame.content_type == "text/event-json":
        try:
            data = json.loads(raw.decode("utf-8", errors="replace"))
        except ValueError as e:
            raise MalformedFrameError(f"Invalid event JSON: {e}")
        if not isinstance(data, dict):
            raise MalformedFrameError("Event JSON is not an object")
        body = data.pop("_body", None)
        headers = {str(k): str(v) for k, v in data.items()}
        return Event(headers, None if body is None else str(body))

    raise MalformedFrameError(f"Unsupported event format: {frame.content_type}")
