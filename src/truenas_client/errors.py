"""Error taxonomy for the TrueNAS client.

- ConnectionLostError: transport-level failure, the caller may retry
- RemoteError: the server executed the method and rejected it
- JobFailedError: a job reached FAILED or ABORTED
- JobOutcomeUnknownError: the connection dropped while waiting on a job
- SchemaDecodeError: a payload did not match the selected wire variant
- InvalidParamsError: params cannot be put on the wire (programmer error)
- AuthenticationError: the login handshake was refused
"""

from __future__ import annotations

from typing import Any

# Substrings the middleware uses for missing resources.
_NOT_FOUND_MARKERS = ("does not exist", "[ENOENT]", "not found", "no such instance")


class TrueNASError(Exception):
    """Base class for all client errors."""


class ConnectionLostError(TrueNASError, ConnectionError):
    """The connection is unavailable or dropped mid-call.

    ``sent`` is True when the request had already been written to the wire,
    so the server may have acted on it.
    """

    def __init__(self, message: str, sent: bool = False):
        super().__init__(message)
        self.sent = sent


class AuthenticationError(TrueNASError):
    """The server refused the configured credentials."""


class InvalidParamsError(TrueNASError, ValueError):
    """Params are not representable as JSON-RPC positional arguments."""


class UnsupportedOperationError(TrueNASError):
    """The client implementation does not support this operation."""


class CallTimeoutError(TrueNASError, TimeoutError):
    """No response arrived for a call within its timeout."""

    def __init__(self, method: str, timeout: float):
        super().__init__(f"{method} timed out after {timeout}s")
        self.method = method
        self.timeout = timeout


class RemoteError(TrueNASError):
    """The server rejected a call.

    ``str(err)`` is the server-provided message, unmodified.
    """

    def __init__(
        self,
        message: str,
        code: int | None = None,
        data: dict[str, Any] | None = None,
        method: str | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.code = code
        self.data = data or {}
        self.method = method

    @property
    def errname(self) -> str | None:
        return self.data.get("errname")

    @property
    def reason(self) -> str | None:
        return self.data.get("reason")

    @property
    def trace(self) -> Any:
        return self.data.get("trace")

    @classmethod
    def from_wire(cls, error: dict[str, Any], method: str | None = None) -> RemoteError:
        """Build from a JSON-RPC ``error`` object."""
        data = error.get("data")
        return cls(
            str(error.get("message", "Unknown error")),
            code=error.get("code"),
            data=data if isinstance(data, dict) else None,
            method=method,
        )


class JobFailedError(RemoteError):
    """A job finished in FAILED or ABORTED state."""

    def __init__(self, job_id: int, state: str, message: str, method: str | None = None):
        super().__init__(message, method=method)
        self.job_id = job_id
        self.state = state


class JobOutcomeUnknownError(TrueNASError):
    """The connection dropped before the job reached a terminal state.

    The job may still be running (or may have finished) on the server.
    """

    def __init__(self, job_id: int | None, method: str | None = None):
        subject = f"job {job_id}" if job_id is not None else "job submission"
        super().__init__(
            f"Connection lost while waiting for {subject}"
            + (f" ({method})" if method else "")
            + "; outcome unknown"
        )
        self.job_id = job_id
        self.method = method


class JobWaitTimeoutError(TrueNASError, TimeoutError):
    """Local wait for a job expired; the remote job is left running."""

    def __init__(self, job_id: int, timeout: float):
        super().__init__(f"Timed out after {timeout}s waiting for job {job_id}")
        self.job_id = job_id
        self.timeout = timeout


class SchemaDecodeError(TrueNASError, ValueError):
    """Payload could not be handled under the selected wire variant."""

    def __init__(self, operation: str, variant: str, detail: str):
        super().__init__(f"{operation}: cannot decode as {variant!r} variant: {detail}")
        self.operation = operation
        self.variant = variant
        self.detail = detail


def is_not_found_error(err: BaseException | None) -> bool:
    """Check whether an error means the requested resource does not exist.

    Query-style methods report "not found" as an empty list and never reach
    this; it is meant for get/item methods that raise instead.
    """
    if err is None or not isinstance(err, RemoteError):
        return False
    if err.errname == "ENOENT":
        return True
    return any(marker in err.message for marker in _NOT_FOUND_MARKERS)
