"""TrueNAS middleware client core.

Typed building blocks for TrueNAS API wrappers: a JSON-RPC call transport,
blocking job waits, live subscriptions, file upload, and version-gated
wire-format adapters.
"""

from .errors import (
    AuthenticationError,
    CallTimeoutError,
    ConnectionLostError,
    InvalidParamsError,
    JobFailedError,
    JobOutcomeUnknownError,
    JobWaitTimeoutError,
    RemoteError,
    SchemaDecodeError,
    TrueNASError,
    UnsupportedOperationError,
    is_not_found_error,
)
from .protocol import Job, JobState, namespace
from .sdk import (
    ClientTransportConfig,
    OverflowPolicy,
    Subscription,
    TrueNASClient,
    UnsupportedClient,
    WriteFileParams,
    create_client,
    create_mock_transport,
    create_websocket_transport,
    decode_model,
    decode_model_list,
)
from .version import Version

__version__ = "0.1.0"

__all__ = [
    "TrueNASClient",
    "UnsupportedClient",
    "ClientTransportConfig",
    "OverflowPolicy",
    "Subscription",
    "WriteFileParams",
    "Version",
    "Job",
    "JobState",
    "create_client",
    "create_websocket_transport",
    "create_mock_transport",
    "decode_model",
    "decode_model_list",
    "namespace",
    "is_not_found_error",
    # Errors
    "TrueNASError",
    "ConnectionLostError",
    "AuthenticationError",
    "RemoteError",
    "JobFailedError",
    "JobOutcomeUnknownError",
    "CallTimeoutError",
    "JobWaitTimeoutError",
    "SchemaDecodeError",
    "InvalidParamsError",
    "UnsupportedOperationError",
]
