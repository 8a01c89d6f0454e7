"""File transfer over the API connection.

Files are written with ``filesystem.file_receive``, which takes fixed
positional params: ``[path, base64_content, {"mode", "uid", "gid"}]``.
Ownership that should stay unchanged is sent as ``-1`` (never omitted).
Whole files only; there is no chunking.

Existence checks go through ``filesystem.stat`` and ownership or mode
changes through the ``filesystem.setperm`` job. Reading, deleting and
creating directories have no API method and need shell access.
"""

from __future__ import annotations

import base64
from dataclasses import dataclass
from typing import Any, Protocol

from ..errors import is_not_found_error
from ..protocol.messages import Method

# Ownership value meaning "leave unchanged"
UNCHANGED_ID = -1


class _Caller(Protocol):
    async def call(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any: ...


class _JobCaller(_Caller, Protocol):
    async def call_and_wait(self, method: str, params: Any = None, *, timeout: float | None = None) -> Any: ...


@dataclass
class WriteFileParams:
    """Parameters for writing a file.

    ``uid``/``gid`` of None leave ownership unchanged; 0 means root.
    """

    content: bytes
    mode: int = 0o644
    uid: int | None = None
    gid: int | None = None


def build_file_receive_params(path: str, params: WriteFileParams) -> list[Any]:
    """Build the positional params for ``filesystem.file_receive``."""
    if not path:
        raise ValueError("Path must be a non-empty string")
    return [
        path,
        base64.b64encode(params.content).decode("ascii"),
        {
            "mode": int(params.mode),
            "uid": UNCHANGED_ID if params.uid is None else params.uid,
            "gid": UNCHANGED_ID if params.gid is None else params.gid,
        },
    ]


async def write_file(caller: _Caller, path: str, params: WriteFileParams) -> None:
    """Write ``params.content`` to ``path`` on the server."""
    try:
        await caller.call(Method.FILESYSTEM_FILE_RECEIVE.value, build_file_receive_params(path, params))
    except Exception as e:
        e.add_note(f"while writing file {path!r}")
        raise


async def file_exists(caller: _Caller, path: str) -> bool:
    """Check whether ``path`` exists on the server."""
    try:
        await caller.call(Method.FILESYSTEM_STAT.value, path)
    except Exception as e:
        if is_not_found_error(e):
            return False
        e.add_note(f"while checking {path!r}")
        raise
    return True


def build_setperm_params(
    path: str,
    *,
    uid: int | None = None,
    gid: int | None = None,
    mode: int | None = None,
    recursive: bool = False,
) -> dict[str, Any]:
    """Build the params for ``filesystem.setperm``; unset fields are omitted.

    The mode travels as an octal string such as ``"755"``.
    """
    if not path:
        raise ValueError("Path must be a non-empty string")
    params: dict[str, Any] = {"path": path}
    if uid is not None:
        params["uid"] = uid
    if gid is not None:
        params["gid"] = gid
    if mode is not None:
        params["mode"] = f"{mode & 0o7777:03o}"
    if recursive:
        params["options"] = {"recursive": True}
    return params


async def chown(caller: _JobCaller, path: str, uid: int, gid: int) -> None:
    """Change the owner of ``path``, waiting for the setperm job."""
    await caller.call_and_wait(Method.FILESYSTEM_SETPERM.value, build_setperm_params(path, uid=uid, gid=gid))


async def chmod_recursive(caller: _JobCaller, path: str, mode: int) -> None:
    """Apply ``mode`` to ``path`` and everything below it."""
    await caller.call_and_wait(
        Method.FILESYSTEM_SETPERM.value,
        build_setperm_params(path, mode=mode, recursive=True),
    )
