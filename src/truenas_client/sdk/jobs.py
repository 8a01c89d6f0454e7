"""Job tracker - blocking calls for long-running middleware jobs.

``call_and_wait`` issues a call; if the server answers with a job id, the
caller is suspended on a future that the dispatch path resolves when a
``core.get_jobs`` update reports a terminal state. No polling is involved:
updates are applied in the order the server emitted them.

The middleware may push updates for a job before the call that created it
has returned its id, so recent updates for unclaimed jobs are kept and
replayed when a waiter registers.
"""

from __future__ import annotations

import asyncio
import logging
from collections import OrderedDict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from ..errors import (
    ConnectionLostError,
    JobFailedError,
    JobOutcomeUnknownError,
    JobWaitTimeoutError,
)
from ..protocol.jobs import Job, JobState
from ..protocol.messages import JOBS_COLLECTION, CollectionUpdate
from .subscriptions import SubscriptionRegistry
from .transport import ClientTransport

logger = logging.getLogger(__name__)


@dataclass
class _JobWaiter:
    job: Job
    futures: list[asyncio.Future[Any]] = field(default_factory=list)


def as_job_id(result: Any) -> int | None:
    """Return the job id if a call result is one (bools are not)."""
    if isinstance(result, int) and not isinstance(result, bool):
        return result
    return None


class JobTracker:
    """Tracks middleware jobs to completion over a shared transport."""

    def __init__(
        self,
        transport: ClientTransport,
        registry: SubscriptionRegistry,
        *,
        unclaimed_limit: int = 256,
    ):
        self._transport = transport
        self._registry = registry
        self._unclaimed_limit = unclaimed_limit
        self._waiters: dict[int, _JobWaiter] = {}
        self._unclaimed: OrderedDict[int, Job] = OrderedDict()
        self._detach: Callable[[], None] | None = None
        self._subscribe_lock = asyncio.Lock()
        transport.add_disconnect_handler(self._on_disconnect)

    @property
    def jobs(self) -> dict[int, Job]:
        """Snapshots of jobs currently being waited on."""
        return {job_id: w.job.model_copy(deep=True) for job_id, w in self._waiters.items()}

    async def ensure_subscribed(self) -> None:
        """Subscribe to job updates once per connection."""
        async with self._subscribe_lock:
            if self._detach is None:
                self._detach = await self._registry.attach(JOBS_COLLECTION, self._on_job_update)
                logger.debug("Subscribed to job updates")

    async def call_and_wait(
        self,
        method: str,
        params: Any = None,
        timeout: float | None = None,
    ) -> Any:
        """Call a job-producing method and wait for its result.

        Args:
            method: Middleware method name
            params: Call params (see ``to_wire_params``)
            timeout: Max seconds to wait for the job (None waits indefinitely).
                The submitting call itself uses the transport's default timeout.

        Returns:
            The job result, or the call result if the method completed synchronously

        Raises:
            JobFailedError: The job ended FAILED/ABORTED
            JobOutcomeUnknownError: The connection dropped before a terminal state
            JobWaitTimeoutError: ``timeout`` expired (the remote job keeps running)
            RemoteError / ConnectionLostError / CallTimeoutError: From the submitting call
        """
        await self.ensure_subscribed()

        try:
            result = await self._transport.request(method, params)
        except ConnectionLostError as e:
            if e.sent:
                raise JobOutcomeUnknownError(None, method) from e
            raise

        job_id = as_job_id(result)
        if job_id is None:
            return result

        logger.debug(f"{method} started job {job_id}")
        return await self.wait(job_id, method=method, timeout=timeout)

    async def wait(self, job_id: int, method: str | None = None, timeout: float | None = None) -> Any:
        """Wait for an already-submitted job to finish."""
        waiter = self._waiters.get(job_id)
        if waiter is None:
            job = self._unclaimed.pop(job_id, None) or Job(id=job_id)
            job.method = job.method or method
            if job.is_terminal:
                return _outcome(job)
            if not self._transport.is_connected:
                raise JobOutcomeUnknownError(job_id, method)
            waiter = _JobWaiter(job=job)
            self._waiters[job_id] = waiter

        future: asyncio.Future[Any] = asyncio.get_running_loop().create_future()
        waiter.futures.append(future)
        try:
            async with asyncio.timeout(timeout):
                return await future
        except TimeoutError as e:
            raise JobWaitTimeoutError(job_id, timeout or 0.0) from e
        finally:
            waiter.futures.remove(future)
            if not waiter.futures and self._waiters.get(job_id) is waiter:
                del self._waiters[job_id]

    def _on_job_update(self, update: CollectionUpdate) -> None:
        """Apply one job update (runs on the dispatch path)."""
        if update.msg == "removed":
            return
        fields = update.fields if isinstance(update.fields, dict) else {}
        job_id = as_job_id(fields.get("id", update.id))
        if job_id is None:
            logger.debug(f"Ignoring job update without id: {update}")
            return

        waiter = self._waiters.get(job_id)
        if waiter is not None:
            job = waiter.job
        else:
            job = self._unclaimed.get(job_id) or Job(id=job_id)

        try:
            changed = job.apply(fields)
        except ValueError as e:
            logger.warning(f"Ignoring job {job_id} update with bad state: {e}")
            return
        if not changed:
            logger.debug(f"Ignoring update for finished job {job_id}")
            return

        if waiter is None:
            self._remember(job)
            return

        logger.debug(f"Job {job_id} is {job.state.value}")
        if job.is_terminal:
            self._settle(waiter)

    def _remember(self, job: Job) -> None:
        self._unclaimed[job.id] = job
        self._unclaimed.move_to_end(job.id)
        while len(self._unclaimed) > self._unclaimed_limit:
            self._unclaimed.popitem(last=False)

    def _settle(self, waiter: _JobWaiter) -> None:
        for future in waiter.futures:
            if future.done():
                continue
            try:
                future.set_result(_outcome(waiter.job))
            except JobFailedError as e:
                future.set_exception(e)

    def _on_disconnect(self, error: BaseException | None) -> None:
        self._detach = None
        self._unclaimed.clear()
        for job_id, waiter in list(self._waiters.items()):
            for future in waiter.futures:
                if not future.done():
                    future.set_exception(JobOutcomeUnknownError(job_id, waiter.job.method))


def _outcome(job: Job) -> Any:
    if job.state == JobState.SUCCESS:
        return job.result
    raise JobFailedError(job.id, job.state.value, job.error or f"Job {job.state.value}", job.method)
