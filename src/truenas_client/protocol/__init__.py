"""Wire protocol layer.

Defines the JSON-RPC 2.0 frames used over the middleware connection and
the job model driven by ``core.get_jobs`` updates.

Key concepts:
- Requests carry a correlation id; responses echo it back
- Notifications (``collection_update``) have no id and are routed by collection
- Job progress arrives as notifications on the ``core.get_jobs`` collection
"""

from .jobs import Job, JobState
from .messages import (
    COLLECTION_UPDATE,
    JOBS_COLLECTION,
    CollectionUpdate,
    IncomingMessage,
    Method,
    Notification,
    Request,
    Response,
    namespace,
    parse_message,
    to_wire_params,
)

__all__ = [
    "COLLECTION_UPDATE",
    "JOBS_COLLECTION",
    "CollectionUpdate",
    "IncomingMessage",
    "Job",
    "JobState",
    "Method",
    "Notification",
    "Request",
    "Response",
    "namespace",
    "parse_message",
    "to_wire_params",
]
