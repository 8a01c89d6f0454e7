"""JSON-RPC 2.0 messages exchanged with the TrueNAS middleware.

Three kinds of frames travel over the connection:
- Request: client -> server, carries a correlation ``id``
- Response: server -> client, carries the ``id`` of its request
- Notification: server -> client, no ``id`` (e.g. ``collection_update``)

Example request:
    {"jsonrpc": "2.0", "id": "req_1a2b3c4d5e6f", "method": "app.query",
     "params": [[["name", "=", "plex"]]]}

Example collection update (JSON-RPC form):
    {"jsonrpc": "2.0", "method": "collection_update",
     "params": {"msg": "changed", "collection": "app.stats", "fields": [...]}}

The legacy DDP form ``{"msg": "method", "method": "collection_update", ...}``
is accepted as well.
"""

from __future__ import annotations

import json
import uuid
from enum import Enum
from typing import Any, Literal

from pydantic import BaseModel, Field

from ..errors import InvalidParamsError


class Method(str, Enum):
    """Middleware methods the core itself issues."""

    AUTH_LOGIN_EX = "auth.login_ex"
    CORE_PING = "core.ping"
    CORE_SUBSCRIBE = "core.subscribe"
    CORE_UNSUBSCRIBE = "core.unsubscribe"
    SYSTEM_VERSION_SHORT = "system.version_short"
    FILESYSTEM_FILE_RECEIVE = "filesystem.file_receive"
    FILESYSTEM_STAT = "filesystem.stat"
    FILESYSTEM_SETPERM = "filesystem.setperm"


COLLECTION_UPDATE = "collection_update"
JOBS_COLLECTION = "core.get_jobs"


def namespace(method: str) -> str:
    """Service namespace of a method: ``app.registry.create`` -> ``app.registry``."""
    head, sep, _ = method.rpartition(".")
    return head if sep else method


def to_wire_params(params: Any) -> list[Any]:
    """Convert call params to the positional list the middleware expects.

    - None -> []
    - list/tuple -> positional arguments as-is
    - anything else (scalar, mapping) -> a single positional argument

    Raises:
        InvalidParamsError: If params are not JSON-serializable
    """
    if params is None:
        wire: list[Any] = []
    elif isinstance(params, (list, tuple)):
        wire = list(params)
    else:
        wire = [params]

    try:
        json.dumps(wire)
    except (TypeError, ValueError) as e:
        raise InvalidParamsError(f"Params are not JSON-serializable: {e}") from e
    return wire


class Request(BaseModel):
    """A call from client to server."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str = Field(default_factory=lambda: f"req_{uuid.uuid4().hex[:12]}")
    method: str
    params: list[Any] = Field(default_factory=list)

    @classmethod
    def create(
        cls,
        method: str | Method,
        params: Any = None,
        request_id: str | None = None,
    ) -> Request:
        """Factory method for creating requests.

        Raises:
            InvalidParamsError: If method is empty or params are malformed
        """
        name = method.value if isinstance(method, Method) else method
        if not isinstance(name, str) or not name:
            raise InvalidParamsError("Method name must be a non-empty string")
        return cls(
            id=request_id or f"req_{uuid.uuid4().hex[:12]}",
            method=name,
            params=to_wire_params(params),
        )

    def to_wire(self) -> str:
        return self.model_dump_json()


class Response(BaseModel):
    """Server reply to a request; exactly one of result/error is meaningful."""

    jsonrpc: Literal["2.0"] = "2.0"
    id: str | int | None = None
    result: Any = None
    error: dict[str, Any] | None = None

    def is_error(self) -> bool:
        return self.error is not None

    @classmethod
    def success(cls, request_id: str | int, result: Any) -> Response:
        return cls(id=request_id, result=result)

    @classmethod
    def failure(
        cls,
        request_id: str | int | None,
        message: str,
        code: int = -32001,
        data: dict[str, Any] | None = None,
    ) -> Response:
        error: dict[str, Any] = {"code": code, "message": message}
        if data:
            error["data"] = data
        return cls(id=request_id, error=error)

    def to_wire(self) -> str:
        if self.error is not None:
            return self.model_dump_json(exclude={"result"})
        return self.model_dump_json(exclude={"error"})


class Notification(BaseModel):
    """Server-initiated message without a correlation id."""

    jsonrpc: Literal["2.0"] = "2.0"
    method: str
    params: dict[str, Any] = Field(default_factory=dict)

    def to_wire(self) -> str:
        return self.model_dump_json()


class CollectionUpdate(BaseModel):
    """Payload of a ``collection_update`` notification."""

    msg: str = "changed"  # "added" | "changed" | "removed"
    collection: str
    id: Any = None
    fields: Any = None

    def has_fields(self) -> bool:
        return "fields" in self.model_fields_set

    @classmethod
    def notification(
        cls,
        collection: str,
        fields: Any = None,
        msg: str = "changed",
        item_id: Any = None,
    ) -> Notification:
        """Build the notification frame a server would push."""
        params: dict[str, Any] = {"msg": msg, "collection": collection}
        if item_id is not None:
            params["id"] = item_id
        if fields is not None:
            params["fields"] = fields
        return Notification(method=COLLECTION_UPDATE, params=params)


IncomingMessage = Response | Notification


def parse_message(raw: str | bytes) -> IncomingMessage:
    """Decode one frame from the server.

    Raises:
        ValueError: If the frame is not JSON or has no recognizable shape
            (json.JSONDecodeError and pydantic.ValidationError are both ValueErrors)
    """
    data = json.loads(raw)
    if not isinstance(data, dict):
        raise ValueError(f"Expected a JSON object, got {type(data).__name__}")

    if "id" in data and ("result" in data or "error" in data):
        return Response.model_validate(data)
    if "method" in data:
        return Notification.model_validate(
            {"method": data["method"], "params": data.get("params") or {}}
        )
    raise ValueError(f"Unrecognized message: {str(data)[:80]}")
