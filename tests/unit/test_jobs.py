"""Unit tests for the job tracker (call_and_wait)."""

from __future__ import annotations

import asyncio

import pytest

from truenas_client.errors import (
    CallTimeoutError,
    JobFailedError,
    JobOutcomeUnknownError,
    JobWaitTimeoutError,
    RemoteError,
)
from truenas_client.protocol import JobState, Request, Response
from truenas_client.protocol.messages import CollectionUpdate
from truenas_client.sdk import MockClientTransport, TrueNASClient


async def _start(client: TrueNASClient, transport: MockClientTransport, method: str, job_id: int):
    """Start call_and_wait for a method answering with job_id and wait for the submit."""
    transport.set_response(method, job_id)
    task = asyncio.create_task(client.call_and_wait(method, {"name": "plex"}))
    await transport.wait_for_request(method)
    # Let the job id response reach the waiter
    for _ in range(50):
        if job_id in client.jobs.jobs:
            break
        await asyncio.sleep(0.005)
    return task


class TestCallAndWait:
    """Test blocking waits on job completion."""

    @pytest.mark.asyncio
    async def test_success_returns_job_result(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """RUNNING then SUCCESS resolves with the job's result."""
        task = await _start(client, transport, "app.create", 42)

        transport.push_job_update(42, "RUNNING", progress={"percent": 50})
        transport.push_job_update(42, "SUCCESS", result={"name": "plex", "state": "RUNNING"})

        assert await task == {"name": "plex", "state": "RUNNING"}
        assert client.jobs.jobs == {}

    @pytest.mark.asyncio
    async def test_subscribes_to_jobs_before_call(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """core.get_jobs is subscribed before the job-producing call is sent."""
        task = await _start(client, transport, "app.create", 1)
        transport.push_job_update(1, "SUCCESS")
        await task

        methods = [r.method for r in transport.recorded_requests]
        assert methods.index("core.subscribe") < methods.index("app.create")
        assert transport.requests_for("core.subscribe")[0].params == ["core.get_jobs"]

    @pytest.mark.asyncio
    async def test_subscribes_to_jobs_once(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """Job updates are subscribed once per connection."""
        transport.set_response("app.start", True)

        await client.call_and_wait("app.start", "a")
        await client.call_and_wait("app.start", "b")

        assert len(transport.requests_for("core.subscribe")) == 1

    @pytest.mark.asyncio
    async def test_synchronous_result_returned(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """Methods that do not create a job return their result directly."""
        transport.set_response("service.start", True)

        assert await client.call_and_wait("service.start", "ssh") is True

    @pytest.mark.asyncio
    async def test_failed_job_surfaces_error_text(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """A FAILED job raises with the recorded error, not a generic message."""
        task = await _start(client, transport, "app.create", 7)

        transport.push_job_update(7, "RUNNING")
        transport.push_job_update(7, "FAILED", error="[EFAULT] Failed to pull image 'plex:latest'")

        with pytest.raises(JobFailedError) as exc_info:
            await task

        err = exc_info.value
        assert str(err) == "[EFAULT] Failed to pull image 'plex:latest'"
        assert err.job_id == 7
        assert err.state == "failed"
        assert err.method == "app.create"
        assert isinstance(err, RemoteError)

    @pytest.mark.asyncio
    async def test_aborted_job(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        task = await _start(client, transport, "pool.scrub.run", 8)

        transport.push_job_update(8, "ABORTED")

        with pytest.raises(JobFailedError) as exc_info:
            await task
        assert exc_info.value.state == "aborted"
        assert str(exc_info.value) == "Job aborted"

    @pytest.mark.asyncio
    async def test_updates_after_terminal_ignored(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """Terminal states are final."""
        task = await _start(client, transport, "app.create", 9)

        transport.push_job_update(9, "SUCCESS", result="first")
        transport.push_job_update(9, "FAILED", error="late")

        assert await task == "first"

    @pytest.mark.asyncio
    async def test_other_jobs_do_not_resolve_waiter(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        task = await _start(client, transport, "app.create", 10)

        transport.push_job_update(11, "SUCCESS", result="other")
        await client.call("core.ping")
        assert not task.done()

        transport.push_job_update(10, "SUCCESS", result="mine")
        assert await task == "mine"

    @pytest.mark.asyncio
    async def test_submit_error_propagates(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """A rejected submission raises the remote error."""
        transport.set_error("app.create", "[EINVAL] app_create.values: invalid")

        with pytest.raises(RemoteError, match="app_create.values"):
            await client.call_and_wait("app.create", {})


class TestEarlyUpdates:
    """Test job updates that arrive before the job id response."""

    @pytest.mark.asyncio
    async def test_terminal_update_before_response(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """A job that finishes before its id is returned still resolves."""

        def finish_first(req: Request) -> list:
            return [
                CollectionUpdate.notification(
                    "core.get_jobs",
                    {"id": 5, "state": "SUCCESS", "result": "done"},
                    item_id=5,
                ),
                Response.success(req.id, 5),
            ]

        transport.set_handler("app.create", finish_first)

        assert await client.call_and_wait("app.create", {}) == "done"

    @pytest.mark.asyncio
    async def test_running_update_before_response(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        def running_first(req: Request) -> list:
            return [
                CollectionUpdate.notification("core.get_jobs", {"id": 6, "state": "RUNNING"}, item_id=6),
                Response.success(req.id, 6),
            ]

        transport.set_handler("app.create", running_first)
        task = asyncio.create_task(client.call_and_wait("app.create", {}))
        for _ in range(50):
            if 6 in client.jobs.jobs:
                break
            await asyncio.sleep(0.005)

        assert client.jobs.jobs[6].state == JobState.RUNNING

        transport.push_job_update(6, "SUCCESS", result=1)
        assert await task == 1


class TestWaitTermination:
    """Test that waits always terminate."""

    @pytest.mark.asyncio
    async def test_connection_drop_is_unknown_outcome(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """A dropped connection fails the waiter instead of hanging."""
        task = await _start(client, transport, "app.create", 12)

        transport.push_job_update(12, "RUNNING")
        transport.drop_connection()

        with pytest.raises(JobOutcomeUnknownError) as exc_info:
            await task
        assert exc_info.value.job_id == 12

    @pytest.mark.asyncio
    async def test_drop_before_job_id_is_unknown_outcome(
        self, client: TrueNASClient, transport: MockClientTransport
    ) -> None:
        """Losing the connection after submission leaves the outcome unknown."""
        transport.set_no_reply("app.create")
        task = asyncio.create_task(client.call_and_wait("app.create", {}))
        await transport.wait_for_request("app.create")

        transport.drop_connection()

        with pytest.raises(JobOutcomeUnknownError) as exc_info:
            await task
        assert exc_info.value.job_id is None

    @pytest.mark.asyncio
    async def test_wait_timeout(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """The job wait honours its timeout; the waiter is cleaned up."""
        transport.set_response("app.create", 13)

        with pytest.raises(JobWaitTimeoutError) as exc_info:
            await client.call_and_wait("app.create", {}, timeout=0.05)

        assert exc_info.value.job_id == 13
        assert isinstance(exc_info.value, TimeoutError)
        assert client.jobs.jobs == {}

    @pytest.mark.asyncio
    async def test_submit_timeout(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """A submission that is never answered times out like any call."""
        transport.set_no_reply("app.create")
        client.transport.config.timeout = 0.05

        with pytest.raises(CallTimeoutError):
            await client.call_and_wait("app.create", {})

    @pytest.mark.asyncio
    async def test_cancel_leaves_other_waiters(self, client: TrueNASClient, transport: MockClientTransport) -> None:
        """Cancelling one wait does not disturb another job's wait."""
        first = await _start(client, transport, "app.create", 20)
        second = await _start(client, transport, "app.update", 21)

        first.cancel()
        with pytest.raises(asyncio.CancelledError):
            await first
        assert 20 not in client.jobs.jobs

        transport.push_job_update(21, "SUCCESS", result="updated")
        assert await second == "updated"
