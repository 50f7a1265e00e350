# src/fs_gateway/esl/jobs.py
"""
Background job tracking.

``bgapi`` commands return immediately with ``+OK Job-UUID: ...`` and deliver
their output later in a BACKGROUND_JOB event carrying the same Job-UUID. The
registry generates the identifier, sends it with the command and resolves the
waiting caller when the event shows up.
"""

import asyncio
import uuid
from collections import OrderedDict
from dataclasses import dataclass
from typing import Dict, Optional

from .correlator import CommandCorrelator, command_name
from .frame import Event
from ..utils.errors import CommandTimeoutError, ConnectionLostError, GatewayError
from ..utils.logger import get_logger

logger = get_logger(__name__)

@dataclass
class BackgroundJob:
    """A submitted bgapi command awaiting its BACKGROUND_JOB event."""
    job_uuid: str
    command: str
    future: asyncio.Future
    created_at: float
    deadline: float
    waited: bool = False
    expiry: Optional[asyncio.TimerHandle] = None

class BackgroundJobRegistry:
    """
    Registry of background jobs for one connection lifetime.

    Args:
        correlator: Correlator of the same connection, used to send ``bgapi``
        default_timeout: Seconds a job may run before its waiter gives up
        expired_memory: How many timed-out job ids to remember so that their
            late results are recognised as orphans
    """

    def __init__(
        self,
        correlator: CommandCorrelator,
        default_timeout: float = 30.0,
        expired_memory: int = 1024
    ):
        self._correlator = correlator
        self.default_timeout = default_timeout
        self._jobs: Dict[str, BackgroundJob] = {}
        self._expired: "OrderedDict[str, None]" = OrderedDict()
        self._expired_memory = expired_memory
        self._closed: Optional[GatewayError] = None

    @property
    def pending(self) -> int:
        """Jobs still waiting for their BACKGROUND_JOB event."""
        return sum(1 for job in self._jobs.values() if not job.future.done())

    def __contains__(self, job_uuid: str) -> bool:
        return job_uuid in self._jobs

    async def submit(self, command: str, timeout: Optional[float] = None) -> str:
        """
        Send ``bgapi <command>`` with a fresh Job-UUID.

        Args:
            command: API command to run in the background
            timeout: Seconds from now until the job's deadline

        Returns:
            The job identifier to pass to ``wait``
        """
        loop = asyncio.get_running_loop()
        timeout = self.default_timeout if timeout is None else timeout
        job_uuid = str(uuid.uuid4())
        now = loop.time()
        job = BackgroundJob(
            job_uuid=job_uuid,
            command=command,
            future=loop.create_future(),
            created_at=now,
            deadline=now + timeout,
        )
        # Registered before sending: the event may overtake our own bookkeeping
        self._jobs[job_uuid] = job
        try:
            await self._correlator.send(f"bgapi {command}", headers={"Job-UUID": job_uuid})
        except BaseException:
            self._jobs.pop(job_uuid, None)
            if not job.future.done():
                job.future.cancel()
            raise

        # Nobody may ever call ``wait``; the deadline still releases the job
        job.expiry = loop.call_at(job.deadline, self._expire_unwaited, job_uuid)
        logger.debug("Background job submitted",
                     job_uuid=job_uuid,
                     command=command_name(command))
        return job_uuid

    async def wait(self, job_uuid: str, timeout: Optional[float] = None) -> str:
        """
        Suspend until the job's result arrives.

        Args:
            job_uuid: Identifier returned by ``submit``
            timeout: Seconds to wait from now; defaults to the job's own deadline

        Returns:
            Body of the BACKGROUND_JOB event

        Raises:
            CommandTimeoutError: Deadline elapsed first
            ConnectionLostError: The connection dropped first
            GatewayError: Unknown job identifier
        """
        job = self._jobs.get(job_uuid)
        if job is None:
            if self._closed is not None:
                raise type(self._closed)(str(self._closed))
            if job_uuid in self._expired:
                raise CommandTimeoutError(f"Background job {job_uuid} expired")
            raise GatewayError(f"Unknown background job {job_uuid}")

        job.waited = True
        if job.expiry is not None:
            job.expiry.cancel()
            job.expiry = None

        loop = asyncio.get_running_loop()
        if timeout is None:
            timeout = max(job.deadline - loop.time(), 0)

        try:
            return await asyncio.wait_for(job.future, timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning("Background job timed out",
                           job_uuid=job_uuid,
                           command=command_name(job.command),
                           timeout=timeout)
            raise CommandTimeoutError(
                f"Background job '{command_name(job.command)}' timed out after {timeout:.1f}s"
            )
        finally:
            if not job.future.done() or job.future.cancelled():
                self._expire(job_uuid)
            else:
                self._jobs.pop(job_uuid, None)

    def _expire(self, job_uuid: str) -> None:
        self._jobs.pop(job_uuid, None)
        self._expired[job_uuid] = None
        while len(self._expired) > self._expired_memory:
            self._expired.popitem(last=False)

    def _expire_unwaited(self, job_uuid: str) -> None:
        job = self._jobs.get(job_uuid)
        if job is None or job.waited:
            return
        job.expiry = None
        if not job.future.done():
            job.future.cancel()
            logger.warning("Background job expired without a waiter",
                           job_uuid=job_uuid,
                           command=command_name(job.command))
        self._expire(job_uuid)

    def resolve(self, event: Event) -> bool:
        """
        Resolve the job named by a BACKGROUND_JOB event.

        Returns:
            True if the event belonged to this registry (including late
            results of expired jobs, which are dropped), False otherwise
        """
        job_uuid = event.job_uuid
        if not job_uuid:
            return False

        # Completed jobs stay registered until ``wait`` collects the result;
        # the event can arrive in the same read as the bgapi reply
        job = self._jobs.get(job_uuid)
        if job is None:
            if job_uuid in self._expired:
                del self._expired[job_uuid]
                logger.info("Orphaned background job result dropped", job_uuid=job_uuid)
                return True
            return False

        if job.future.done():
            logger.info("Orphaned background job result dropped", job_uuid=job_uuid)
            return True

        job.future.set_result(event.body or "")
        logger.debug("Background job completed", job_uuid=job_uuid)
        return True

    def fail_all(self, exc: Optional[GatewayError] = None) -> int:
        """Reject every pending job; returns how many waiters were failed."""
        exc = exc or ConnectionLostError()
        self._closed = exc
        failed = 0
        for job in self._jobs.values():
            if job.expiry is not None:
                job.expiry.cancel()
            if not job.future.done():
                job.future.set_exception(type(exc)(str(exc)))
                failed += 1
        self._jobs.clear()
        if failed:
            logger.warning("Failed pending background jobs", count=failed, reason=exc.code)
        return failed
