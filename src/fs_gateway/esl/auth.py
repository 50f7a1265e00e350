# src/fs_gateway/esl/auth.py
"""
Authentication handshake of the event socket.

On connect the switch sends ``Content-Type: auth/request``. The client answers
``auth <password>`` and gets exactly one ``command/reply`` whose Reply-Text is
``+OK accepted`` or ``-ERR invalid``. Failure is final: a wrong password will
not become right by retrying.
"""

import asyncio
from typing import Awaitable, Callable

from .frame import Frame, FrameKind, encode_command
from ..utils.errors import AuthFailedError, ProtocolError
from ..utils.logger import get_logger

logger = get_logger(__name__)

ReadFrame = Callable[[], Awaitable[Frame]]
WriteBytes = Callable[[bytes], Awaitable[None]]

async def authenticate(
    read_frame: ReadFrame,
    write: WriteBytes,
    password: str,
    timeout: float = 5.0
) -> None:
    """
    Run the handshake on a freshly connected socket.

    Args:
        read_frame: Coroutine returning the next inbound frame
        write: Coroutine sending raw bytes to the switch
        password: Event socket password
        timeout: Bound on the whole exchange in seconds

    Raises:
        AuthFailedError: Password rejected, connection refused by ACL, or no
            answer within ``timeout``
        ProtocolError: The switch sent something other than the handshake frames
    """
    try:
        await asyncio.wait_for(_handshake(read_frame, write, password), timeout)
    except asyncio.TimeoutError:
        logger.error("Authentication timed out", timeout=timeout)
        raise AuthFailedError(f"No authentication reply within {timeout}s")

async def _handshake(read_frame: ReadFrame, write: WriteBytes, password: str) -> None:
    request = await read_frame()
    _check_rejection(request)
    if request.kind != FrameKind.AUTH_REQUEST:
        raise ProtocolError(
            f"Expected auth/request, got {request.content_type or 'frame without Content-Type'}"
        )

    logger.debug("Auth request received, sending credentials")
    await write(encode_command(f"auth {password}"))

    reply = await read_frame()
    _check_rejection(reply)
    if reply.kind != FrameKind.COMMAND_REPLY:
        raise ProtocolError(
            f"Expected command/reply to auth, got {reply.content_type or 'frame without Content-Type'}"
        )

    reply_text = reply.reply_text or ""
    if not reply_text.startswith("+OK"):
        logger.error("Authentication rejected", reply=reply_text)
        raise AuthFailedError(f"Authentication rejected: {reply_text or 'no reply text'}")

    logger.info("Authenticated with FreeSWITCH")

def _check_rejection(frame: Frame) -> None:
    if frame.kind == FrameKind.RUDE_REJECTION:
        reason = frame.text.strip() or "access denied"
        logger.error("Connection rejected by switch", reason=reason)
        raise AuthFailedError(f"Connection rejected by switch: {reason}")
