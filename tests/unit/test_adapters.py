"""Unit tests for version-gated wire adapters."""

from __future__ import annotations

import json

import pytest

from truenas_client.adapters import (
    CloudSyncCredential,
    VersionedCodec,
    build_credentials_params,
    cloudsync_credentials,
    parse_credentials,
    resolve_snapshot_method,
    snapshot_method,
)
from truenas_client.errors import SchemaDecodeError
from truenas_client.version import Version

V24 = Version(24, 10)
V25 = Version(25, 4)

CREDENTIAL = CloudSyncCredential(
    name="c",
    type="S3",
    attributes={"access_key_id": "AKIA", "secret_access_key": "s3cr3t"},
)


class TestVariantSelection:
    """Test VersionedCodec.select()."""

    def test_threshold_is_inclusive(self):
        assert cloudsync_credentials.select(Version(24, 10, 2)).name == "provider_string"
        assert cloudsync_credentials.select(Version(25, 0)).name == "provider_object"
        assert cloudsync_credentials.select(Version(25, 10)).name == "provider_object"

    def test_new_variant_needs_no_call_site_change(self):
        """Registering a later branch changes selection only above its threshold."""
        codec: VersionedCodec[int] = VersionedCodec("example")
        codec.register("v1", None, encode=lambda v: v, decode=lambda w: w)
        codec.register("v2", Version(26, 0), encode=lambda v: {"value": v}, decode=lambda w: w["value"])

        assert codec.encode(V25, 3) == 3
        assert codec.encode(Version(26, 4), 3) == {"value": 3}
        assert codec.decode(Version(26, 4), '{"value": 3}') == 3

    def test_duplicate_threshold_rejected(self):
        """Two variants can never be active for the same version."""
        codec: VersionedCodec[int] = VersionedCodec("example")
        codec.register("a", Version(25, 0), encode=int, decode=int)

        with pytest.raises(ValueError):
            codec.register("b", Version(25, 0), encode=int, decode=int)

    def test_no_variant_for_version(self):
        codec: VersionedCodec[int] = VersionedCodec("example")
        codec.register("new", Version(25, 0), encode=int, decode=int)

        with pytest.raises(LookupError):
            codec.select(V24)


class TestCloudSyncCredentials:
    """Test the credential provider shapes on both sides of 25.0."""

    def test_encode_provider_object(self):
        """25.x merges attributes into a provider object, no attributes field."""
        wire = cloudsync_credentials.encode(V25, CREDENTIAL)

        assert wire == {
            "name": "c",
            "provider": {"type": "S3", "access_key_id": "AKIA", "secret_access_key": "s3cr3t"},
        }

    def test_encode_provider_string(self):
        """Older releases take a provider string plus sibling attributes."""
        wire = cloudsync_credentials.encode(V24, CREDENTIAL)

        assert wire == {
            "name": "c",
            "provider": "S3",
            "attributes": {"access_key_id": "AKIA", "secret_access_key": "s3cr3t"},
        }

    @pytest.mark.parametrize("version", [V24, V25])
    def test_round_trip(self, version: Version):
        """Decoding either wire form reproduces the logical credential."""
        wire = json.dumps(cloudsync_credentials.encode(version, CREDENTIAL))

        assert cloudsync_credentials.decode(version, wire) == CREDENTIAL

    def test_decode_query_result(self):
        """Query results decode as a list, keeping ids."""
        wire = [
            {"id": 1, "name": "a", "provider": {"type": "B2", "account": "x", "key": "y"}},
            {"id": 2, "name": "b", "provider": {"type": "S3"}},
        ]

        creds = parse_credentials(V25, wire)

        assert [c.id for c in creds] == [1, 2]
        assert creds[0].attributes == {"account": "x", "key": "y"}
        assert creds[1].attributes == {}

    def test_legacy_false_attributes(self):
        """Older servers may report attributes as false."""
        [cred] = parse_credentials(V24, [{"id": 3, "name": "n", "provider": "FTP", "attributes": False}])

        assert cred.attributes == {}

    def test_decode_error_names_variant(self):
        """A new-style payload under the old branch fails naming that branch."""
        wire = {"name": "c", "provider": {"type": "S3"}}

        with pytest.raises(SchemaDecodeError) as exc_info:
            cloudsync_credentials.decode(V24, wire)

        assert exc_info.value.variant == "provider_string"
        assert "provider_string" in str(exc_info.value)

    def test_decode_error_new_branch(self):
        with pytest.raises(SchemaDecodeError) as exc_info:
            cloudsync_credentials.decode(V25, {"name": "c", "provider": "S3", "attributes": {}})

        assert exc_info.value.variant == "provider_object"

    def test_decode_invalid_json(self):
        with pytest.raises(SchemaDecodeError):
            cloudsync_credentials.decode(V25, b"{not json")

    def test_build_params(self):
        params = build_credentials_params(V25, "c", "S3", {"region": "us-east-1"})

        assert params == {"name": "c", "provider": {"type": "S3", "region": "us-east-1"}}


class TestSnapshotMethod:
    """Test snapshot method names across 25.10."""

    def test_before_25_10(self):
        assert resolve_snapshot_method(Version(25, 4), "create") == "zfs.snapshot.create"

    def test_from_25_10(self):
        assert resolve_snapshot_method(Version(25, 10), "rollback") == "pool.snapshot.rollback"

    def test_decode_method(self):
        assert snapshot_method.decode(Version(25, 10), "pool.snapshot.clone") == "clone"

    def test_decode_wrong_prefix(self):
        with pytest.raises(SchemaDecodeError):
            snapshot_method.decode(Version(25, 10), "zfs.snapshot.clone")
