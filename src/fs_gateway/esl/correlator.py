# src/fs_gateway/esl/correlator.py
"""
Command correlation for the event socket.

The switch answers commands on a connection strictly in the order it received
them and carries no request identifier in its replies. The correlator keeps a
FIFO of in-flight commands whose order is the wire order: enqueueing and
writing happen under one lock, and every reply frame resolves the oldest entry.

A command whose caller stopped waiting (deadline passed, or the calling task
was cancelled) stays in the FIFO as a tombstone until its reply arrives, so the
late reply is discarded instead of being handed to the next command.
"""

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass
from typing import Awaitable, Callable, Deque, Dict, Mapping, Optional

from .frame import Frame, FrameKind, encode_command
from ..utils.errors import (
    CommandError,
    CommandTimeoutError,
    ConnectionLostError,
    GatewayError,
    ProtocolError,
)
from ..utils.logger import get_logger

logger = get_logger(__name__)

WriteBytes = Callable[[bytes], Awaitable[None]]

@dataclass
class PendingCommand:
    """One in-flight command awaiting its reply."""
    command: str
    handle: int
    future: asyncio.Future
    created_at: float
    deadline: float

    @property
    def abandoned(self) -> bool:
        """True once nobody waits for the reply any more."""
        return self.future.done()

def command_name(command: str) -> str:
    """First words of a command, safe to log."""
    parts = command.split()
    if not parts:
        return ""
    # "api status" -> "api status", "bgapi originate ..." -> "bgapi originate"
    return " ".join(parts[:2])

class CommandCorrelator:
    """
    Matches reply frames to the commands that caused them.

    Args:
        write: Coroutine that puts bytes on the socket
        default_timeout: Deadline in seconds for commands sent without one
        pipelining: When False, a command is only written once the previous
            one has been answered or has timed out
    """

    def __init__(
        self,
        write: WriteBytes,
        default_timeout: float = 5.0,
        pipelining: bool = True
    ):
        self._write = write
        self.default_timeout = default_timeout
        self.pipelining = pipelining
        self._queue: Deque[PendingCommand] = deque()
        self._dispatch_lock = asyncio.Lock()
        self._serial_lock: Optional[asyncio.Lock] = None if pipelining else asyncio.Lock()
        self._handles = itertools.count(1)
        self._closed: Optional[GatewayError] = None
        self.stats: Dict[str, int] = {
            "sent": 0,
            "replied": 0,
            "timeouts": 0,
            "orphaned_replies": 0,
            "failed": 0,
        }

    @property
    def pending(self) -> int:
        """Number of commands somebody is still waiting for."""
        return sum(1 for entry in self._queue if not entry.abandoned)

    @property
    def depth(self) -> int:
        """Number of replies still expected on the wire, tombstones included."""
        return len(self._queue)

    @property
    def closed(self) -> bool:
        return self._closed is not None

    async def send(
        self,
        command: str,
        timeout: Optional[float] = None,
        headers: Optional[Mapping[str, str]] = None
    ) -> str:
        """
        Write a command and wait for its reply.

        Args:
            command: Full command line, e.g. ``api status``
            timeout: Deadline in seconds (defaults to ``default_timeout``)
            headers: Extra header lines for the command frame

        Returns:
            The api/response body, or the Reply-Text of a command/reply

        Raises:
            CommandTimeoutError: No reply before the deadline
            CommandError: The switch answered -ERR
            ConnectionLostError: The connection dropped before the reply
            ProtocolError: The command cannot be framed
        """
        timeout = self.default_timeout if timeout is None else timeout
        payload = encode_command(command, headers)

        if self._serial_lock is None:
            return await self._send(command, payload, timeout)
        async with self._serial_lock:
            return await self._send(command, payload, timeout)

    async def _send(self, command: str, payload: bytes, timeout: float) -> str:
        loop = asyncio.get_running_loop()

        async with self._dispatch_lock:
            if self._closed is not None:
                raise type(self._closed)(str(self._closed))

            now = loop.time()
            entry = PendingCommand(
                command=command,
                handle=next(self._handles),
                future=loop.create_future(),
                created_at=now,
                deadline=now + timeout,
            )
            self._queue.append(entry)
            try:
                await self._write(payload)
            except BaseException:
                # Whatever reached the wire, nobody waits for this reply any more
                if not entry.future.done():
                    entry.future.cancel()
                elif not entry.future.cancelled():
                    # Already failed by the connection teardown; the caller gets
                    # the write error instead
                    entry.future.exception()
                raise
            self.stats["sent"] += 1
            logger.debug("Command sent",
                         handle=entry.handle,
                         command=command_name(command),
                         depth=len(self._queue))

        remaining = max(entry.deadline - loop.time(), 0)
        try:
            return await asyncio.wait_for(entry.future, timeout=remaining)
        except asyncio.TimeoutError:
            self.stats["timeouts"] += 1
            logger.warning("Command timed out",
                           handle=entry.handle,
                           command=command_name(command),
                           timeout=timeout)
            raise CommandTimeoutError(
                f"Command '{command_name(command)}' timed out after {timeout}s"
            )

    def resolve(self, frame: Frame) -> bool:
        """
        Hand a reply frame to the oldest in-flight command.

        Returns:
            True if a waiting caller received the reply, False if it belonged
            to an abandoned command and was discarded

        Raises:
            ProtocolError: A reply arrived while no command was in flight
        """
        if not self._queue:
            raise ProtocolError(
                f"Unexpected {frame.content_type} with no command in flight"
            )

        entry = self._queue.popleft()
        if entry.abandoned:
            self.stats["orphaned_replies"] += 1
            logger.info("Orphaned reply discarded",
                        handle=entry.handle,
                        command=command_name(entry.command))
            return False

        self.stats["replied"] += 1
        if frame.kind == FrameKind.API_RESPONSE:
            entry.future.set_result(frame.text)
            return True

        reply_text = frame.reply_text or ""
        if reply_text.startswith("-ERR"):
            entry.future.set_exception(CommandError(reply_text[4:].strip() or reply_text))
        else:
            entry.future.set_result(reply_text)
        return True

    def fail_all(self, exc: Optional[GatewayError] = None) -> int:
        """
        Reject every outstanding command and refuse new ones.

        Args:
            exc: Error given to each caller (ConnectionLostError by default)

        Returns:
            Number of callers that were still waiting
        """
        exc = exc or ConnectionLostError()
        self._closed = exc
        failed = 0
        while self._queue:
            entry = self._queue.popleft()
            if not entry.future.done():
                entry.future.set_exception(type(exc)(str(exc)))
                failed += 1
        self.stats["failed"] += failed
        if failed:
            logger.warning("Failed outstanding commands",
                           count=failed,
                           reason=exc.code)
        return failed
