"""Snapshot method names.

Snapshot methods moved from ``zfs.snapshot.*`` to ``pool.snapshot.*`` in 25.10.
"""

from __future__ import annotations

from collections.abc import Callable

from ..version import Version
from .base import VersionedCodec

POOL_SNAPSHOT_SINCE = Version(25, 10)


def _prefixed(prefix: str) -> tuple[Callable[[str], str], Callable[[str], str]]:
    def encode(action: str) -> str:
        if not isinstance(action, str) or not action:
            raise ValueError("snapshot action must be a non-empty string")
        return f"{prefix}.{action}"

    def decode(method: str) -> str:
        head, sep, action = method.rpartition(".")
        if not sep or head != prefix:
            raise ValueError(f"{method!r} is not a {prefix}.* method")
        return action

    return encode, decode


_zfs_encode, _zfs_decode = _prefixed("zfs.snapshot")
_pool_encode, _pool_decode = _prefixed("pool.snapshot")

snapshot_method: VersionedCodec[str] = VersionedCodec("snapshot.method", json_wire=False)
snapshot_method.register("zfs_snapshot", None, encode=_zfs_encode, decode=_zfs_decode)
snapshot_method.register("pool_snapshot", POOL_SNAPSHOT_SINCE, encode=_pool_encode, decode=_pool_decode)


def resolve_snapshot_method(version: Version, action: str) -> str:
    """Full method name for a snapshot action, e.g. ``create`` -> ``pool.snapshot.create``."""
    return snapshot_method.encode(version, action)
