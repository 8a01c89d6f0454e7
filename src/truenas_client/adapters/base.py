"""Version-gated wire variants.

A VersionedCodec holds every wire shape one operation has had across
releases. Each variant is tagged with the first version that uses it, and a
single threshold comparison picks exactly one for a given server version.

Usage:
    codec = VersionedCodec("widget")
    codec.register("legacy", None, encode=..., decode=...)
    codec.register("nested", Version(25, 0), encode=..., decode=...)

    wire = codec.encode(client.version, widget)
    widget = codec.decode(client.version, raw_result)
"""

from __future__ import annotations

import json
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from ..errors import SchemaDecodeError
from ..version import Version

L = TypeVar("L")

# Applies to every version below the first explicit threshold
_BASELINE = Version(0, 0)


@dataclass(frozen=True)
class WireVariant(Generic[L]):
    """One wire encoding of an operation, active from ``since`` onwards."""

    name: str
    since: Version | None
    encode: Callable[[L], Any]
    decode: Callable[[Any], L]

    @property
    def threshold(self) -> Version:
        return self.since or _BASELINE


class VersionedCodec(Generic[L]):
    """Registry of the wire variants of one operation.

    With ``json_wire`` (the default) text passed to ``decode`` is parsed as
    JSON first; otherwise it is handed to the variant as-is.
    """

    def __init__(self, operation: str, *, json_wire: bool = True):
        self.operation = operation
        self.json_wire = json_wire
        self._variants: list[WireVariant[L]] = []

    @property
    def variants(self) -> list[WireVariant[L]]:
        return list(self._variants)

    def register(
        self,
        name: str,
        since: Version | None,
        *,
        encode: Callable[[L], Any],
        decode: Callable[[Any], L],
    ) -> WireVariant[L]:
        """Add a variant.

        Raises:
            ValueError: If the name or threshold is already registered
        """
        variant = WireVariant(name=name, since=since, encode=encode, decode=decode)
        for existing in self._variants:
            if existing.name == name:
                raise ValueError(f"{self.operation}: variant {name!r} already registered")
            if existing.threshold == variant.threshold:
                raise ValueError(
                    f"{self.operation}: variants {existing.name!r} and {name!r} "
                    f"share threshold {variant.threshold}"
                )
        self._variants.append(variant)
        self._variants.sort(key=lambda v: v.threshold)
        return variant

    def select(self, version: Version) -> WireVariant[L]:
        """Pick the variant with the highest threshold not above ``version``.

        Raises:
            LookupError: If no variant applies (nothing registered for that range)
        """
        selected: WireVariant[L] | None = None
        for variant in self._variants:
            if variant.threshold <= version:
                selected = variant
        if selected is None:
            raise LookupError(f"{self.operation}: no wire variant for version {version}")
        return selected

    def encode(self, version: Version, value: L) -> Any:
        """Encode a logical value into the wire shape for ``version``.

        Raises:
            SchemaDecodeError: If the value does not fit the selected variant
        """
        variant = self.select(version)
        try:
            return variant.encode(value)
        except SchemaDecodeError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SchemaDecodeError(self.operation, variant.name, f"encode failed: {e}") from e

    def decode(self, version: Version, wire: Any) -> L:
        """Decode a wire payload (JSON text or already-parsed) for ``version``.

        Raises:
            SchemaDecodeError: If the payload is malformed under the selected variant
        """
        variant = self.select(version)
        if self.json_wire and isinstance(wire, (str, bytes, bytearray)):
            try:
                wire = json.loads(wire)
            except ValueError as e:
                raise SchemaDecodeError(self.operation, variant.name, f"invalid JSON: {e}") from e
        try:
            return variant.decode(wire)
        except SchemaDecodeError:
            raise
        except (KeyError, TypeError, ValueError, AttributeError) as e:
            raise SchemaDecodeError(self.operation, variant.name, str(e)) from e
