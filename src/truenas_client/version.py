"""TrueNAS release version value.

Used only to pick wire-format branches (see ``truenas_client.adapters``);
never persisted.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

_VERSION_RE = re.compile(r"(\d+)\.(\d+)(?:\.(\d+))?(?:\.(\d+))?")


@dataclass(frozen=True, order=True)
class Version:
    """Immutable (major, minor, patch, build) ordered lexicographically."""

    major: int
    minor: int
    patch: int = 0
    build: int = 0

    @classmethod
    def parse(cls, text: str) -> Version:
        """Parse a version from strings like ``25.04.2`` or ``TrueNAS-SCALE-24.10.2.1``.

        Raises:
            ValueError: If no ``major.minor`` pair is found
        """
        match = _VERSION_RE.search(text)
        if match is None:
            raise ValueError(f"Unrecognized TrueNAS version: {text!r}")
        major, minor, patch, build = match.groups()
        return cls(int(major), int(minor), int(patch or 0), int(build or 0))

    def at_least(self, major: int, minor: int, patch: int = 0, build: int = 0) -> bool:
        """Check whether this version is >= the given one."""
        return self >= Version(major, minor, patch, build)

    def __str__(self) -> str:
        text = f"{self.major}.{self.minor:02d}"
        if self.patch or self.build:
            text += f".{self.patch}"
        if self.build:
            text += f".{self.build}"
        return text
