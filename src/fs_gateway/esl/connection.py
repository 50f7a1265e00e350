# src/fs_gateway/esl/connection.py
"""
Connection lifecycle manager for the FreeSWITCH event socket.

One ``SwitchConnection`` exists per gateway process. It owns the TCP socket and
drives it through::

    disconnected -> connecting -> authenticating -> ready
         ^                                           |
         |            reconnecting <- degraded <-----+
         +-- (authentication failed: stays disconnected)

A supervisor task performs every state change. While ``ready`` a single reader
task feeds the frame parser and the demultiplexer; request handlers only talk
to the correlator and the job registry. When the socket is lost, every
outstanding command and background job fails at once with ConnectionLostError,
and the next ``ready`` starts with empty queues. Nothing is replayed.
"""

import asyncio
import time
from collections import deque
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Deque, Dict, Iterable, List, Optional, Union

from .auth import authenticate
from .backoff import ReconnectBackoff
from .correlator import CommandCorrelator
from .demux import BACKGROUND_JOB, Demultiplexer
from .frame import Frame, FrameParser
from .jobs import BackgroundJobRegistry
from .result import CommandResult
from ..utils.config import SwitchConfig
from ..utils.errors import (
    AuthFailedError,
    CommandTimeoutError,
    ConnectionLostError,
    GatewayError,
    NotConnectedError,
    ProtocolError,
)
from ..utils.logger import get_logger, log_function_call

if TYPE_CHECKING:
    from ..events.dispatcher import EventDispatcher

logger = get_logger(__name__)

READ_CHUNK_SIZE = 65536

class ConnectionState(str, Enum):
    """Lifecycle states of the switch connection."""
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    AUTHENTICATING = "authenticating"
    READY = "ready"
    DEGRADED = "degraded"
    RECONNECTING = "reconnecting"
    CLOSED = "closed"

class _Session:
    """
    Everything that lives exactly as long as one TCP connection: the streams,
    the parser and the correlation state.
    """

    def __init__(
        self,
        reader: asyncio.StreamReader,
        writer: asyncio.StreamWriter,
        config: SwitchConfig,
        dispatcher: Optional["EventDispatcher"]
    ):
        self._reader = reader
        self._writer = writer
        self.parser = FrameParser()
        self.correlator = CommandCorrelator(
            self.write,
            default_timeout=config.command_timeout,
            pipelining=config.pipelining
        )
        self.jobs = BackgroundJobRegistry(self.correlator, default_timeout=config.job_timeout)
        self.demux = Demultiplexer(
            self.correlator,
            self.jobs,
            dispatcher,
            on_disconnect=lambda reason: self.lose(f"disconnect notice ({reason})"),
            on_protocol_error=lambda exc: self.lose(f"protocol error: {exc}")
        )
        self._backlog: Deque[Frame] = deque()
        self.closed: asyncio.Future = asyncio.get_running_loop().create_future()
        self.lost = False
        self.last_frame_at = asyncio.get_running_loop().time()
        self.reader_task: Optional[asyncio.Task] = None

    async def read_frame(self) -> Frame:
        """Read the next frame directly; only used before the reader task runs."""
        while not self._backlog:
            data = await self._reader.read(READ_CHUNK_SIZE)
            if not data:
                raise ConnectionLostError("Connection closed by switch during handshake")
            self._backlog.extend(self.parser.feed(data))
        return self._backlog.popleft()

    async def write(self, data: bytes) -> None:
        if self.lost:
            raise ConnectionLostError()
        try:
            self._writer.write(data)
            await self._writer.drain()
        except (OSError, ConnectionError) as e:
            self.lose(f"write failed: {e}")
            raise ConnectionLostError(f"Connection to FreeSWITCH lost: {e}") from e

    def start_reader(self) -> None:
        self.reader_task = asyncio.create_task(self._read_loop())

    async def _read_loop(self) -> None:
        try:
            # Frames that arrived together with the auth reply
            while self._backlog and not self.lost:
                self.demux.route(self._backlog.popleft())

            while not self.lost:
                data = await self._reader.read(READ_CHUNK_SIZE)
                if not data:
                    self.lose("connection closed by switch")
                    break
                self.last_frame_at = asyncio.get_running_loop().time()
                for frame in self.parser.feed(data):
                    self.demux.route(frame)
                    if self.lost:
                        break
        except asyncio.CancelledError:
            raise
        except (OSError, ConnectionError) as e:
            self.lose(f"socket error: {e}")
        except Exception as e:
            logger.error("Reader loop crashed", error=str(e), exc_info=True)
            self.lose(f"reader error: {e}")

    def lose(self, reason: str, exc: Optional[GatewayError] = None) -> None:
        """
        Tear the session down once: wake the supervisor, fail all waiters,
        close the socket.
        """
        if self.lost:
            return
        self.lost = True
        # Resolved first so the supervisor observes the loss before any waiter runs
        if not self.closed.done():
            self.closed.set_result(reason)
        exc = exc or ConnectionLostError(f"Connection to FreeSWITCH lost: {reason}")
        self.correlator.fail_all(exc)
        self.jobs.fail_all(exc)
        self._writer.close()

    async def close(self, reason: str = "closed", exc: Optional[GatewayError] = None) -> None:
        self.lose(reason, exc)
        if self.reader_task is not None and not self.reader_task.done():
            self.reader_task.cancel()
            try:
                await self.reader_task
            except asyncio.CancelledError:
                pass
        try:
            await self._writer.wait_closed()
        except (OSError, ConnectionError):
            pass

class SwitchConnection:
    """
    The gateway's single connection to the switch.

    Created at startup and passed to whoever needs it (the HTTP app keeps it
    on ``app.state``). All methods must be called from the event loop that
    runs ``start``.

    Args:
        config: Switch connection settings
        dispatcher: Receives unsolicited events; None discards them
    """

    def __init__(
        self,
        config: SwitchConfig,
        dispatcher: Optional["EventDispatcher"] = None
    ):
        self.config = config
        self.dispatcher = dispatcher
        self.backoff = ReconnectBackoff(
            initial_delay=config.reconnect.initial_delay,
            max_delay=config.reconnect.max_delay,
            backoff_factor=config.reconnect.backoff_factor
        )
        self._state = ConnectionState.DISCONNECTED
        self._state_changed = asyncio.Event()
        self._state_history: List[Dict[str, Any]] = []
        self._max_history = 100
        self._session: Optional[_Session] = None
        self._supervisor: Optional[asyncio.Task] = None
        self._keepalive: Optional[asyncio.Task] = None
        self._stopping = False
        self.authenticated = False
        self.auth_failed = False
        self.last_error: Optional[GatewayError] = None
        self.reconnect_attempts = 0
        self.connected_since: Optional[float] = None

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    @property
    def is_connected(self) -> bool:
        session = self._session
        return (
            self._state == ConnectionState.READY
            and session is not None
            and not session.lost
        )

    def _set_state(self, new_state: ConnectionState, **details: Any) -> None:
        old_state = self._state
        if old_state == new_state:
            return
        self._state = new_state
        self._state_history.append({
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "old_state": old_state.value,
            "new_state": new_state.value,
            **details
        })
        if len(self._state_history) > self._max_history:
            self._state_history.pop(0)

        logger.info("Connection state changed",
                    old_state=old_state.value,
                    new_state=new_state.value,
                    **details)

        # Wake everyone waiting on a state change and arm a fresh event
        self._state_changed.set()
        self._state_changed = asyncio.Event()

    async def wait_for_state(
        self,
        states: Union[ConnectionState, Iterable[ConnectionState]],
        timeout: Optional[float] = None
    ) -> ConnectionState:
        """
        Suspend until the connection is in one of ``states``.

        Raises:
            asyncio.TimeoutError: If ``timeout`` elapses first
        """
        wanted = {states} if isinstance(states, ConnectionState) else set(states)

        async def _wait() -> ConnectionState:
            while self._state not in wanted:
                await self._state_changed.wait()
            return self._state

        return await asyncio.wait_for(_wait(), timeout)

    async def wait_ready(self, timeout: Optional[float] = None) -> None:
        """
        Suspend until the connection is ready.

        Raises:
            AuthFailedError: The switch rejected the password
            NotConnectedError: The connection was closed, or ``timeout`` elapsed
        """
        async def _wait() -> None:
            while True:
                if self.is_connected:
                    return
                if self.auth_failed and self._state == ConnectionState.DISCONNECTED:
                    raise AuthFailedError(str(self.last_error or "Authentication failed"))
                if self._state == ConnectionState.CLOSED:
                    raise NotConnectedError()
                await self._state_changed.wait()

        try:
            await asyncio.wait_for(_wait(), timeout)
        except asyncio.TimeoutError:
            raise NotConnectedError(f"FreeSWITCH not ready within {timeout}s")

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    @log_function_call(level="DEBUG")
    async def start(self) -> None:
        """Start connecting in the background; returns immediately."""
        if self._supervisor is not None and not self._supervisor.done():
            return
        self._stopping = False
        self.auth_failed = False
        self.backoff.reset()
        logger.info("Attempting to connect to FreeSWITCH",
                    host=self.config.host,
                    port=self.config.port)
        self._supervisor = asyncio.create_task(self._run())

    @log_function_call(level="DEBUG")
    async def stop(self) -> None:
        """Say goodbye to the switch, fail pending work and close the socket."""
        self._stopping = True
        session = self._session

        if session is not None and not session.lost:
            try:
                await session.correlator.send("exit", timeout=1.0)
            except GatewayError as e:
                logger.debug("No reply to exit", error=str(e))

        await self._cancel_keepalive()

        if self._supervisor is not None and not self._supervisor.done():
            self._supervisor.cancel()
            try:
                await self._supervisor
            except asyncio.CancelledError:
                pass
        self._supervisor = None

        if session is not None:
            await session.close(
                "shutdown",
                ConnectionLostError("Gateway shutting down")
            )
        self._session = None
        self.authenticated = False
        self._set_state(ConnectionState.CLOSED)
        logger.info("Disconnected from FreeSWITCH")

    async def _run(self) -> None:
        """Supervisor: connect, authenticate, serve, and reconnect forever."""
        while not self._stopping:
            self._set_state(ConnectionState.CONNECTING, attempt=self.reconnect_attempts)
            try:
                reader, writer = await asyncio.wait_for(
                    asyncio.open_connection(self.config.host, self.config.port),
                    timeout=self.config.connect_timeout
                )
            except (OSError, asyncio.TimeoutError) as e:
                self.last_error = ConnectionLostError(
                    f"Cannot connect to {self.config.host}:{self.config.port}: {str(e) or 'timeout'}"
                )
                logger.error("FreeSWITCH connection error", error=str(self.last_error))
                self._set_state(ConnectionState.DEGRADED, reason="connect failed")
                await self._wait_before_reconnect()
                continue

            logger.info("TCP socket connected, waiting for authentication")
            session = _Session(reader, writer, self.config, self.dispatcher)
            self._set_state(ConnectionState.AUTHENTICATING)

            try:
                await authenticate(
                    session.read_frame,
                    session.write,
                    self.config.password,
                    timeout=self.config.auth_timeout
                )
            except AuthFailedError as e:
                self.last_error = e
                self.auth_failed = True
                await session.close("authentication failed", e)
                logger.error("Authentication with FreeSWITCH failed, not retrying",
                             error=str(e))
                self._set_state(ConnectionState.DISCONNECTED, reason="auth failed")
                return
            except (ProtocolError, ConnectionLostError, OSError) as e:
                self.last_error = e if isinstance(e, GatewayError) else ConnectionLostError(str(e))
                await session.close("handshake aborted")
                logger.error("Handshake aborted", error=str(e))
                self._set_state(ConnectionState.DEGRADED, reason="handshake aborted")
                await self._wait_before_reconnect()
                continue

            session.start_reader()
            try:
                await self._subscribe_events(session)
            except GatewayError as e:
                self.last_error = e
                await session.close("event subscription failed")
                logger.error("Event subscription failed", error=str(e))
                self._set_state(ConnectionState.DEGRADED, reason="event subscription failed")
                await self._wait_before_reconnect()
                continue

            self._session = session
            self.authenticated = True
            self.connected_since = time.time()
            self.last_error = None
            self.backoff.reset()
            self.reconnect_attempts = 0
            self._set_state(ConnectionState.READY)
            logger.info("Successfully authenticated with FreeSWITCH",
                        connected_at=datetime.now(timezone.utc).isoformat())
            self._start_keepalive(session)

            reason = await asyncio.shield(session.closed)

            await self._cancel_keepalive()
            self._session = None
            self.authenticated = False
            self.connected_since = None
            if self._stopping:
                break

            self.last_error = ConnectionLostError(f"Connection to FreeSWITCH lost: {reason}")
            self._set_state(ConnectionState.DEGRADED, reason=reason)
            await session.close(reason)
            await self._wait_before_reconnect()

    async def _wait_before_reconnect(self) -> None:
        delay = self.backoff.get_next_delay()
        self.reconnect_attempts += 1
        self._set_state(ConnectionState.RECONNECTING, delay=round(delay, 3))
        logger.info(f"Reconnecting to FreeSWITCH in {delay:.2f}s",
                    attempt=self.reconnect_attempts)
        await asyncio.sleep(delay)

    async def _subscribe_events(self, session: _Session) -> None:
        names = [BACKGROUND_JOB]
        for name in self.config.subscribe_events:
            name = str(name).strip().upper()
            if name and name not in names:
                names.append(name)
        await session.correlator.send(f"event plain {' '.join(names)}")
        logger.debug("Subscribed to events", events=names)

    def _start_keepalive(self, session: _Session) -> None:
        if self.config.keepalive_interval > 0:
            self._keepalive = asyncio.create_task(self._keepalive_loop(session))

    async def _cancel_keepalive(self) -> None:
        task, self._keepalive = self._keepalive, None
        if task is not None and not task.done() and task is not asyncio.current_task():
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass

    async def _keepalive_loop(self, session: _Session) -> None:
        loop = asyncio.get_running_loop()
        interval = self.config.keepalive_interval
        while not session.lost:
            await asyncio.sleep(interval)
            # Replies arrive in order, so a probe queued behind a slow command
            # would time out on a healthy switch. Any recent traffic counts.
            if session.correlator.depth or loop.time() - session.last_frame_at < interval:
                continue
            try:
                await session.correlator.send("api status")
            except CommandTimeoutError:
                logger.warning("Keepalive timed out, treating connection as degraded")
                session.lose("keepalive timeout")
            except GatewayError as e:
                logger.debug("Keepalive failed", error=str(e))

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _ready_session(self) -> _Session:
        session = self._session
        if self._state != ConnectionState.READY or session is None or session.lost:
            raise NotConnectedError()
        return session

    async def send(self, command: str, timeout: Optional[float] = None) -> str:
        """
        Run an API command and return its output text.

        Args:
            command: API command, e.g. ``status`` or ``show calls as json``
            timeout: Seconds to wait for the reply (defaults to command_timeout)

        Raises:
            NotConnectedError: Connection is not ready; nothing was sent
            CommandTimeoutError: No reply in time
            ConnectionLostError: Connection dropped before the reply
        """
        session = self._ready_session()
        return await session.correlator.send(f"api {command}", timeout)

    async def send_json(self, command: str, timeout: Optional[float] = None) -> CommandResult:
        """
        Run an API command whose output is JSON.

        Raises:
            ResultParseError: Output was not JSON
        """
        return CommandResult.from_json(await self.send(command, timeout))

    async def api(
        self,
        command: str,
        expect_json: bool = False,
        timeout: Optional[float] = None
    ) -> CommandResult:
        """Run an API command and wrap its output in a tagged result."""
        if expect_json:
            return await self.send_json(command, timeout)
        return CommandResult.raw(await self.send(command, timeout))

    async def submit_background_job(
        self,
        command: str,
        timeout: Optional[float] = None
    ) -> str:
        """
        Run an API command through ``bgapi`` and wait for its result event.

        Args:
            command: API command, e.g. ``originate user/1000 &park``
            timeout: Seconds from submission until the job is given up
                (defaults to job_timeout)

        Returns:
            Output of the job
        """
        session = self._ready_session()
        job_uuid = await session.jobs.submit(command, timeout)
        return await session.jobs.wait(job_uuid)

    async def submit_background(
        self,
        command: str,
        timeout: Optional[float] = None
    ) -> str:
        """Submit a background job without waiting; returns its Job-UUID."""
        session = self._ready_session()
        return await session.jobs.submit(command, timeout)

    async def wait_background_job(self, job_uuid: str, timeout: Optional[float] = None) -> str:
        """Wait for a job submitted with ``submit_background``."""
        session = self._ready_session()
        return await session.jobs.wait(job_uuid, timeout)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    def snapshot(self) -> Dict[str, Any]:
        """Connection diagnostics for status endpoints."""
        session = self._session
        return {
            "state": self._state.value,
            "connected": self.is_connected,
            "authenticated": self.authenticated,
            "host": self.config.host,
            "port": self.config.port,
            "connected_since": (
                datetime.fromtimestamp(self.connected_since, timezone.utc).isoformat()
                if self.connected_since else None
            ),
            "reconnect_attempts": self.reconnect_attempts,
            "backoff_delay": self.backoff.last_delay,
            "last_error": str(self.last_error) if self.last_error else None,
            "pending_commands": session.correlator.pending if session else 0,
            "pending_jobs": session.jobs.pending if session else 0,
            "commands": dict(session.correlator.stats) if session else {},
            "frames": dict(session.demux.stats) if session else {},
            "transitions": self._state_history[-10:],
        }
