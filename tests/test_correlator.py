"""
Tests for command/reply correlation.
"""

import asyncio

import pytest

from fs_gateway.esl.correlator import CommandCorrelator, command_name
from fs_gateway.utils.errors import (
    CommandError,
    CommandTimeoutError,
    ConnectionLostError,
    ProtocolError,
)

from .mock_switch import api_frame, reply_frame, wait_until

class RecordingWriter:
    """Stands in for the socket: remembers every command written."""

    def __init__(self):
        self.commands = []
        self.fail_with = None

    async def write(self, data: bytes) -> None:
        if self.fail_with is not None:
            raise self.fail_with
        self.commands.append(data.decode().split("\n")[0])

@pytest.fixture
def writer():
    return RecordingWriter()

class TestCommandName:
    """Test the log-safe command summary."""

    def test_keeps_first_two_words(self):
        assert command_name("api originate user/1000 &park") == "api originate"
        assert command_name("exit") == "exit"
        assert command_name("") == ""

class TestPipelinedCorrelator:
    """Test FIFO matching with several commands on the wire."""

    @pytest.mark.asyncio
    async def test_replies_pair_in_send_order(self, writer):
        correlator = CommandCorrelator(writer.write)
        tasks = [
            asyncio.create_task(correlator.send(f"api cmd{i}"))
            for i in range(3)
        ]
        await wait_until(lambda: len(writer.commands) == 3)

        assert writer.commands == ["api cmd0", "api cmd1", "api cmd2"]
        for i in range(3):
            assert correlator.resolve(api_frame(f"result{i}"))

        assert await asyncio.gather(*tasks) == ["result0", "result1", "result2"]
        assert correlator.depth == 0
        assert correlator.stats["replied"] == 3

    @pytest.mark.asyncio
    async def test_timed_out_command_leaves_tombstone(self, writer):
        """A late reply is discarded instead of reaching the next command."""
        correlator = CommandCorrelator(writer.write)

        with pytest.raises(CommandTimeoutError):
            await correlator.send("api slow", timeout=0.05)

        assert correlator.depth == 1
        assert correlator.pending == 0

        fast = asyncio.create_task(correlator.send("api fast"))
        await wait_until(lambda: len(writer.commands) == 2)

        assert correlator.resolve(api_frame("late answer to slow")) is False
        assert correlator.resolve(api_frame("answer to fast")) is True
        assert await fast == "answer to fast"
        assert correlator.stats["orphaned_replies"] == 1
        assert correlator.stats["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_timeout_respects_deadline(self, writer):
        correlator = CommandCorrelator(writer.write, default_timeout=0.1)
        loop = asyncio.get_running_loop()
        started = loop.time()

        with pytest.raises(CommandTimeoutError):
            await correlator.send("api slow")

        assert 0.1 <= loop.time() - started < 0.5

    @pytest.mark.asyncio
    async def test_cancelled_caller_leaves_tombstone(self, writer):
        correlator = CommandCorrelator(writer.write)
        task = asyncio.create_task(correlator.send("api originate user/1000 &park"))
        await wait_until(lambda: len(writer.commands) == 1)

        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        assert correlator.depth == 1
        assert correlator.resolve(api_frame("+OK")) is False

    @pytest.mark.asyncio
    async def test_command_reply_err_raises(self, writer):
        correlator = CommandCorrelator(writer.write)
        task = asyncio.create_task(correlator.send("event plain NOT_AN_EVENT"))
        await wait_until(lambda: len(writer.commands) == 1)

        correlator.resolve(reply_frame("-ERR invalid event"))

        with pytest.raises(CommandError, match="invalid event"):
            await task

    @pytest.mark.asyncio
    async def test_command_reply_ok_returns_reply_text(self, writer):
        correlator = CommandCorrelator(writer.write)
        task = asyncio.create_task(correlator.send("event plain BACKGROUND_JOB"))
        await wait_until(lambda: len(writer.commands) == 1)

        correlator.resolve(reply_frame("+OK event listener enabled plain"))

        assert await task == "+OK event listener enabled plain"

    @pytest.mark.asyncio
    async def test_api_response_err_text_is_returned_verbatim(self, writer):
        correlator = CommandCorrelator(writer.write)
        task = asyncio.create_task(correlator.send("api nosuchcommand"))
        await wait_until(lambda: len(writer.commands) == 1)

        correlator.resolve(api_frame("-ERR nosuchcommand Command not found!\n"))

        assert await task == "-ERR nosuchcommand Command not found!\n"

    def test_reply_with_nothing_in_flight(self, writer):
        correlator = CommandCorrelator(writer.write)

        with pytest.raises(ProtocolError):
            correlator.resolve(reply_frame("+OK"))

    @pytest.mark.asyncio
    async def test_fail_all_rejects_every_waiter_once(self, writer):
        correlator = CommandCorrelator(writer.write)
        tasks = [asyncio.create_task(correlator.send(f"api cmd{i}")) for i in range(2)]
        await wait_until(lambda: len(writer.commands) == 2)

        assert correlator.fail_all(ConnectionLostError("socket closed")) == 2

        results = await asyncio.gather(*tasks, return_exceptions=True)
        assert all(isinstance(result, ConnectionLostError) for result in results)
        assert correlator.depth == 0
        assert correlator.closed

    @pytest.mark.asyncio
    async def test_send_after_fail_all_is_refused(self, writer):
        correlator = CommandCorrelator(writer.write)
        correlator.fail_all()

        with pytest.raises(ConnectionLostError):
            await correlator.send("api status")
        assert writer.commands == []

    @pytest.mark.asyncio
    async def test_write_failure_propagates(self, writer):
        correlator = CommandCorrelator(writer.write)
        writer.fail_with = ConnectionLostError("write failed")

        with pytest.raises(ConnectionLostError):
            await correlator.send("api status")

        # Whatever reached the wire, the reply has nobody to go to
        assert correlator.pending == 0

    @pytest.mark.asyncio
    async def test_unframeable_command_is_not_queued(self, writer):
        correlator = CommandCorrelator(writer.write)

        with pytest.raises(ProtocolError):
            await correlator.send("api status\n\napi fsctl shutdown")
        assert correlator.depth == 0

class TestSerializedCorrelator:
    """Test dispatch with at most one command outstanding."""

    @pytest.mark.asyncio
    async def test_second_command_waits_for_first_reply(self, writer):
        correlator = CommandCorrelator(writer.write, pipelining=False)
        first = asyncio.create_task(correlator.send("api first"))
        second = asyncio.create_task(correlator.send("api second"))
        await wait_until(lambda: len(writer.commands) == 1)
        await asyncio.sleep(0.02)

        assert writer.commands == ["api first"]

        correlator.resolve(api_frame("one"))
        await wait_until(lambda: len(writer.commands) == 2)
        correlator.resolve(api_frame("two"))

        assert await first == "one"
        assert await second == "two"

    @pytest.mark.asyncio
    async def test_timeout_releases_next_command(self, writer):
        correlator = CommandCorrelator(writer.write, pipelining=False)
        first = asyncio.create_task(correlator.send("api slow", timeout=0.05))
        second = asyncio.create_task(correlator.send("api next"))

        with pytest.raises(CommandTimeoutError):
            await first
        await wait_until(lambda: len(writer.commands) == 2)

        assert correlator.resolve(api_frame("late")) is False
        correlator.resolve(api_frame("next result"))
        assert await second == "next result"
