"""Cloud sync credential wire shapes.

Before 25.0 the provider is a bare type string with a sibling attributes map:
    {"name": "c", "provider": "S3", "attributes": {"access_key_id": "..."}}

From 25.0 the provider is one object with the attributes merged in:
    {"name": "c", "provider": {"type": "S3", "access_key_id": "..."}}
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from ..version import Version
from .base import VersionedCodec

PROVIDER_OBJECT_SINCE = Version(25, 0)


class CloudSyncCredential(BaseModel):
    """A cloud sync credential independent of server version."""

    name: str
    type: str
    attributes: dict[str, Any] = Field(default_factory=dict)
    id: int | None = None


Credentials = CloudSyncCredential | list[CloudSyncCredential]


def _encode_with_attributes(value: CloudSyncCredential) -> dict[str, Any]:
    wire: dict[str, Any] = {
        "name": value.name,
        "provider": value.type,
        "attributes": dict(value.attributes),
    }
    if value.id is not None:
        wire["id"] = value.id
    return wire


def _decode_with_attributes(wire: Any) -> Credentials:
    if isinstance(wire, list):
        return [_decode_one_with_attributes(item) for item in wire]
    return _decode_one_with_attributes(wire)


def _decode_one_with_attributes(wire: dict[str, Any]) -> CloudSyncCredential:
    provider = wire["provider"]
    if not isinstance(provider, str):
        raise TypeError(f"provider must be a string, got {type(provider).__name__}")
    # The middleware reports missing attributes as false
    attributes = wire.get("attributes") or {}
    if not isinstance(attributes, dict):
        raise TypeError(f"attributes must be an object, got {type(attributes).__name__}")
    return CloudSyncCredential(
        name=wire["name"],
        type=provider,
        attributes=attributes,
        id=wire.get("id"),
    )


def _encode_provider_object(value: CloudSyncCredential) -> dict[str, Any]:
    if "type" in value.attributes:
        raise ValueError("attribute name 'type' collides with the provider type")
    wire: dict[str, Any] = {
        "name": value.name,
        "provider": {"type": value.type, **value.attributes},
    }
    if value.id is not None:
        wire["id"] = value.id
    return wire


def _decode_provider_object(wire: Any) -> Credentials:
    if isinstance(wire, list):
        return [_decode_one_provider_object(item) for item in wire]
    return _decode_one_provider_object(wire)


def _decode_one_provider_object(wire: dict[str, Any]) -> CloudSyncCredential:
    provider = wire["provider"]
    if not isinstance(provider, dict):
        raise TypeError(f"provider must be an object, got {type(provider).__name__}")
    attributes = dict(provider)
    provider_type = attributes.pop("type")
    return CloudSyncCredential(
        name=wire["name"],
        type=provider_type,
        attributes=attributes,
        id=wire.get("id"),
    )


cloudsync_credentials: VersionedCodec[Any] = VersionedCodec("cloudsync.credentials")
cloudsync_credentials.register(
    "provider_string",
    None,
    encode=_encode_with_attributes,
    decode=_decode_with_attributes,
)
cloudsync_credentials.register(
    "provider_object",
    PROVIDER_OBJECT_SINCE,
    encode=_encode_provider_object,
    decode=_decode_provider_object,
)


def build_credentials_params(
    version: Version,
    name: str,
    provider_type: str,
    attributes: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Params for ``cloudsync.credentials.create``/``update`` on ``version``."""
    credential = CloudSyncCredential(name=name, type=provider_type, attributes=attributes or {})
    return cloudsync_credentials.encode(version, credential)


def parse_credentials(version: Version, wire: Any) -> list[CloudSyncCredential]:
    """Decode a ``cloudsync.credentials.query`` result (always a list)."""
    decoded = cloudsync_credentials.decode(version, wire)
    return decoded if isinstance(decoded, list) else [decoded]
