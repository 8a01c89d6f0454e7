"""Job state model.

Job-producing methods return an integer job id. Progress is then reported
through ``core.get_jobs`` collection updates whose ``fields`` look like:

    {"id": 42, "method": "app.create", "state": "RUNNING",
     "progress": {"percent": 30, "description": "Pulling images"},
     "result": null, "error": null, "exception": null}
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, Field


class JobState(str, Enum):
    """Job lifecycle: submitted -> running -> success | failed | aborted."""

    SUBMITTED = "submitted"
    RUNNING = "running"
    SUCCESS = "success"
    FAILED = "failed"
    ABORTED = "aborted"

    @classmethod
    def from_wire(cls, value: str) -> JobState:
        """Map middleware state names (WAITING, RUNNING, ...) to JobState.

        Raises:
            ValueError: For unknown states
        """
        normalized = value.lower()
        if normalized == "waiting":
            return cls.SUBMITTED
        return cls(normalized)

    @property
    def is_terminal(self) -> bool:
        return self in (JobState.SUCCESS, JobState.FAILED, JobState.ABORTED)


class Job(BaseModel):
    """Client-side snapshot of a server job."""

    id: int
    method: str | None = None
    state: JobState = JobState.SUBMITTED
    progress: dict[str, Any] = Field(default_factory=dict)
    result: Any = None
    error: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def apply(self, fields: dict[str, Any]) -> bool:
        """Apply a ``core.get_jobs`` update.

        Returns False (and leaves the job untouched) if the job is already
        terminal; terminal states are final.

        Raises:
            ValueError: If the update carries an unknown state
        """
        if self.is_terminal:
            return False

        if fields.get("state"):
            self.state = JobState.from_wire(fields["state"])
        if fields.get("method"):
            self.method = fields["method"]
        if isinstance(fields.get("progress"), dict):
            self.progress = fields["progress"]
        if "result" in fields:
            self.result = fields["result"]
        if self.state in (JobState.FAILED, JobState.ABORTED):
            self.error = _job_error_message(fields, self.state)
        return True


def _job_error_message(fields: dict[str, Any], state: JobState) -> str:
    """Recorded failure text: ``error`` first, then ``exception``, then the state."""
    for key in ("error", "exception"):
        value = fields.get(key)
        if value:
            return str(value)
    return f"Job {state.value}"
