"""TrueNAS SDK - client core over one persistent middleware connection.

Provides multiple transport modes:
- websocket: Connect to the middleware JSON-RPC endpoint
- mock: For testing without real I/O

Built on the transport:
- JobTracker: call_and_wait for long-running jobs
- SubscriptionRegistry: typed live event streams
- write_file: whole-file upload via filesystem.file_receive
- file_exists, chown, chmod_recursive: stat and setperm helpers
"""

from .client import (
    AsyncCaller,
    Caller,
    FileCaller,
    SubscribeCaller,
    TrueNASClient,
    UnsupportedClient,
    create_client,
    create_test_client,
)
from .files import (
    WriteFileParams,
    build_file_receive_params,
    build_setperm_params,
    chmod_recursive,
    chown,
    file_exists,
    write_file,
)
from .jobs import JobTracker
from .subscriptions import (
    OverflowPolicy,
    Subscription,
    SubscriptionRegistry,
    decode_model,
    decode_model_list,
)
from .transport import (
    BaseClientTransport,
    ClientTransport,
    ClientTransportConfig,
    MockClientTransport,
    TransportState,
    WebSocketClientTransport,
    create_mock_transport,
    create_websocket_transport,
)

__all__ = [
    # Client
    "TrueNASClient",
    "UnsupportedClient",
    "Caller",
    "AsyncCaller",
    "SubscribeCaller",
    "FileCaller",
    "create_client",
    "create_test_client",
    # Jobs, subscriptions, files
    "JobTracker",
    "Subscription",
    "SubscriptionRegistry",
    "OverflowPolicy",
    "decode_model",
    "decode_model_list",
    "WriteFileParams",
    "build_file_receive_params",
    "write_file",
    "file_exists",
    "build_setperm_params",
    "chown",
    "chmod_recursive",
    # Transport Protocol & Base
    "ClientTransport",
    "BaseClientTransport",
    "ClientTransportConfig",
    "TransportState",
    # Transport Implementations
    "WebSocketClientTransport",
    "MockClientTransport",
    # Transport Factory Functions
    "create_websocket_transport",
    "create_mock_transport",
]
