"""Value types shared by the dual-mode test execution controller.

Everything here is a plain dataclass or enum. ``DataContext`` is the only
type with a lifecycle: it owns the release callback that tears down the
scratch database or the live-system session of one scenario.
"""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Iterable, Mapping, Optional, Tuple

logger = logging.getLogger(__name__)

# Categories every field-service dataset knows about
DEFAULT_CATEGORIES: Tuple[str, ...] = ("customers", "routes", "tickets")

# Entity kind (singular, as used by the live API) -> dataset category
KIND_TO_CATEGORY: Dict[str, str] = {
    "customer": "customers",
    "route": "routes",
    "ticket": "tickets",
}


class TestMode(str, Enum):
    """Execution mode of a scenario.

    DUAL is a declaration only: it is always resolved to ISOLATED or
    PRODUCTION before a DataContext is built.
    """

    __test__ = False  # keep pytest from collecting this as a test class

    ISOLATED = "isolated"
    PRODUCTION = "production"
    DUAL = "dual"

    @classmethod
    def parse(cls, value: str) -> "TestMode":
        """Parse ``isolated``/``@Production``/... into a TestMode.

        Raises:
            ValueError: If the value names no mode
        """
        normalized = value.strip().lstrip("@").lower()
        for mode in cls:
            if mode.value == normalized:
                return mode
        raise ValueError(f"Unknown test mode: {value!r}")

    @property
    def is_concrete(self) -> bool:
        return self is not TestMode.DUAL


@dataclass(frozen=True)
class EntityRecord:
    """One customer/route/ticket as seen by the test suite."""

    id: str
    name: str
    is_test_data: bool
    attributes: Mapping[str, Any] = field(default_factory=dict)

    def get(self, key: str, default: Any = None) -> Any:
        return self.attributes.get(key, default)


class TestDataSet:
    """Ordered entity records grouped by category."""

    __test__ = False

    def __init__(self, records: Optional[Mapping[str, Iterable[EntityRecord]]] = None) -> None:
        self._records: Dict[str, Tuple[EntityRecord, ...]] = {}
        for category, items in (records or {}).items():
            self._records[category] = tuple(items)

    def categories(self) -> list[str]:
        return list(self._records)

    def records(self, category: str) -> Tuple[EntityRecord, ...]:
        return self._records.get(category, ())

    def all_records(self) -> list[EntityRecord]:
        return [record for items in self._records.values() for record in items]

    def find(self, category: str, name: str) -> Optional[EntityRecord]:
        for record in self.records(category):
            if record.name == name:
                return record
        return None

    def count(self, category: Optional[str] = None) -> int:
        if category is not None:
            return len(self.records(category))
        return sum(len(items) for items in self._records.values())

    @property
    def customers(self) -> Tuple[EntityRecord, ...]:
        return self.records("customers")

    @property
    def routes(self) -> Tuple[EntityRecord, ...]:
        return self.records("routes")

    @property
    def tickets(self) -> Tuple[EntityRecord, ...]:
        return self.records("tickets")

    def __len__(self) -> int:
        return self.count()

    def __repr__(self) -> str:
        counts = ", ".join(f"{name}={len(items)}" for name, items in self._records.items())
        return f"TestDataSet({counts})"


@dataclass(frozen=True)
class TestMetadata:
    """Write-once correlation data for logs and error reports."""

    __test__ = False

    created_at: datetime
    mode: TestMode
    version: str
    test_run_id: str

    @classmethod
    def create(cls, mode: TestMode, version: str, test_run_id: Optional[str] = None) -> "TestMetadata":
        return cls(
            created_at=datetime.now(timezone.utc),
            mode=mode,
            version=version,
            test_run_id=test_run_id or new_test_run_id(mode),
        )


@dataclass(frozen=True)
class ConnectionInfo:
    """Where the scenario's data lives.

    ``is_test_connection`` is a safety marker read by the guard, not an
    isolation mechanism: production contexts point at the live system.
    """

    host: str
    database: str
    is_test_connection: bool
    port: Optional[int] = None


@dataclass(frozen=True)
class EntitySpec:
    """A synthetic entity that must exist in the live system."""

    kind: str
    name: str
    attributes: Mapping[str, Any] = field(default_factory=dict)

    @property
    def category(self) -> str:
        return KIND_TO_CATEGORY.get(self.kind, f"{self.kind}s")

    def payload(self) -> Dict[str, Any]:
        """Request body used to create the entity."""
        return {"name": self.name, **dict(self.attributes)}


@dataclass(frozen=True)
class ModeDetectionResult:
    """Outcome of mode detection plus where the decision came from."""

    mode: TestMode
    source: str  # 'environment', 'tags', 'ambient', 'default'
    fallback_reason: Optional[str] = None


CleanupCallback = Callable[[], Awaitable[None]]


class DataContext:
    """Per-scenario handle bundling mode, dataset, connection and cleanup.

    ``cleanup()`` runs the release callback at most once; later calls are
    no-ops, so teardown hooks and explicit calls cannot double-release.
    """

    def __init__(
        self,
        mode: TestMode,
        test_data: TestDataSet,
        connection_info: ConnectionInfo,
        metadata: TestMetadata,
        cleanup: Optional[CleanupCallback] = None,
        session: Any = None,
        guard: Any = None,
    ) -> None:
        if not mode.is_concrete:
            raise ValueError("DataContext requires a concrete mode (isolated or production)")
        self.mode = mode
        self.test_data = test_data
        self.connection_info = connection_info
        self.metadata = metadata
        self.session = session
        self.guard = guard
        self._release = cleanup
        self._cleaned_up = False

    @property
    def cleaned_up(self) -> bool:
        return self._cleaned_up

    @property
    def test_run_id(self) -> str:
        return self.metadata.test_run_id

    async def cleanup(self) -> None:
        if self._cleaned_up:
            logger.debug("[CONTEXT] cleanup already ran for %s", self.metadata.test_run_id)
            return
        self._cleaned_up = True
        if self._release is not None:
            await self._release()

    def __repr__(self) -> str:
        return (
            f"DataContext(mode={self.mode.value}, run={self.metadata.test_run_id}, "
            f"data={self.test_data!r}, db={self.connection_info.database})"
        )


def new_test_run_id(mode: TestMode) -> str:
    """Return an id like ``isolated-20250101120000-1a2b3c``."""
    stamp = datetime.now(timezone.utc).strftime("%Y%m%d%H%M%S")
    return f"{mode.value}-{stamp}-{secrets.token_hex(3)}"
