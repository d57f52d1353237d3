"""Production-safety naming convention.

Every synthetic entity in the live system carries a fixed marker token in
its display name (``"Bugs Bunny - looneyTunesTest"``) and its email. The
marker is the only thing separating safe-to-mutate test data from real
customers and routes.
"""
from __future__ import annotations

import re
from typing import Iterable, List

from fieldservice_testing.config import DEFAULT_MARKER
from fieldservice_testing.models import EntityRecord


class NamingConventionValidator:
    """Checks and applies the test-data marker."""

    def __init__(self, marker: str = DEFAULT_MARKER) -> None:
        if not marker or not marker.strip():
            raise ValueError("Naming convention marker must be a non-empty string")
        self.marker = marker

    def is_compliant(self, value: str | None) -> bool:
        """True if ``value`` contains the marker (case-sensitive)."""
        return bool(value) and self.marker in value

    def validate_record(self, record: EntityRecord) -> bool:
        return record.is_test_data and self.is_compliant(record.name)

    def non_compliant(self, records: Iterable[EntityRecord]) -> List[EntityRecord]:
        return [record for record in records if not self.validate_record(record)]

    def apply(self, name: str) -> str:
        """Append the marker to a display name unless it is already there."""
        if self.is_compliant(name):
            return name
        return f"{name.strip()} - {self.marker}"

    def email_for(self, display_name: str) -> str:
        """``Bugs Bunny - looneyTunesTest`` -> ``bugs.bunny@looneyTunesTest.com``."""
        base = display_name.replace(self.marker, "")
        local = re.sub(r"[^a-z0-9]+", ".", base.lower()).strip(".") or "test"
        return f"{local}@{self.marker}.com"

    def __repr__(self) -> str:
        return f"NamingConventionValidator(marker={self.marker!r})"
