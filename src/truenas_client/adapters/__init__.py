"""Schema adapters - one stable model across server wire-format changes.

Each adapter is a VersionedCodec whose variants are tagged with the release
that introduced them. Wrappers call ``encode``/``decode`` with the client's
version and never branch on versions themselves.
"""

from .base import VersionedCodec, WireVariant
from .cloudsync import (
    CloudSyncCredential,
    build_credentials_params,
    cloudsync_credentials,
    parse_credentials,
)
from .snapshot import resolve_snapshot_method, snapshot_method

__all__ = [
    "VersionedCodec",
    "WireVariant",
    "CloudSyncCredential",
    "cloudsync_credentials",
    "build_credentials_params",
    "parse_credentials",
    "snapshot_method",
    "resolve_snapshot_method",
]
