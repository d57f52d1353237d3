"""Error taxonomy for dual-mode scenario setup and teardown.

Each error knows whether it is worth retrying (``retryable``); the retry
predicate consults that attribute before anything else. Messages carry the
mode and the dataset/catalog so a failing scenario tells "my fixture is
missing" apart from "I tried to mutate a real customer".
"""
from __future__ import annotations

from typing import Any, Dict, Iterable, Optional

from fieldservice_testing.models import TestMode


class DualModeError(Exception):
    """Base class for controller errors."""

    retryable: bool = False

    def __init__(
        self,
        message: str,
        mode: Optional[TestMode] = None,
        **context: Any,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.mode = mode
        self.context: Dict[str, Any] = {k: v for k, v in context.items() if v is not None}

    def __str__(self) -> str:
        parts = []
        if self.mode is not None:
            parts.append(f"mode={self.mode.value}")
        parts.extend(f"{key}={value}" for key, value in self.context.items())
        if not parts:
            return self.message
        return f"[{' '.join(parts)}] {self.message}"


class ConfigurationError(DualModeError):
    """Invalid configuration or environment value."""

    def __init__(self, message: str, key: Optional[str] = None, value: Any = None) -> None:
        super().__init__(message, key=key, value=value)
        self.key = key
        self.value = value


class AmbiguousModeError(DualModeError):
    """Scenario tags name more than one mode."""

    def __init__(self, tags: Iterable[str], scenario: Optional[str] = None) -> None:
        self.tags = sorted(tags)
        super().__init__(
            f"Conflicting mode tags {', '.join(self.tags)}: a scenario must carry exactly one of "
            f"@isolated, @production, @dual",
            scenario=scenario,
        )


class FixtureNotFoundError(DualModeError):
    """No fixture bundle exists for the requested dataset."""

    retryable = True

    def __init__(self, dataset: str, searched: Iterable[str] = ()) -> None:
        self.dataset = dataset
        self.searched = list(searched)
        locations = ", ".join(self.searched) or "<none>"
        super().__init__(
            f"Fixture bundle '{dataset}' not found (searched: {locations})",
            mode=TestMode.ISOLATED,
            dataset=dataset,
        )


class FixtureVerificationError(DualModeError):
    """Restored scratch database failed its verification queries."""

    retryable = True

    def __init__(self, dataset: str, failures: Iterable[str]) -> None:
        self.dataset = dataset
        self.failures = list(failures)
        super().__init__(
            f"Fixture '{dataset}' failed verification: " + "; ".join(self.failures),
            mode=TestMode.ISOLATED,
            dataset=dataset,
        )


class EntityEnsureError(DualModeError):
    """Synthetic production entities could not be confirmed present."""

    def __init__(self, catalog: str, missing: Iterable[str], reason: str = "") -> None:
        self.catalog = catalog
        self.missing = list(missing)
        detail = f"could not confirm {len(self.missing)} entity(ies): {', '.join(self.missing)}"
        if reason:
            detail = f"{detail} ({reason})"
        super().__init__(detail, mode=TestMode.PRODUCTION, catalog=catalog)


class SafetyViolationError(DualModeError):
    """A mutating operation targeted an entity outside the test naming convention.

    Indicates a test-authoring bug; never retried, always surfaced as-is.
    """

    def __init__(
        self,
        operation: str,
        target_kind: str,
        target_name: str,
        marker: str,
        mode: Optional[TestMode] = TestMode.PRODUCTION,
    ) -> None:
        self.operation = operation
        self.target_kind = target_kind
        self.target_name = target_name
        self.marker = marker
        super().__init__(
            f"Refusing to {operation} {target_kind} '{target_name}': name does not contain "
            f"test marker '{marker}'",
            mode=mode,
            operation=operation,
            target_kind=target_kind,
        )


class CleanupError(DualModeError):
    """Teardown failed. Reported as a secondary issue, never raised over the test outcome."""

    def __init__(self, mode: TestMode, test_run_id: str, cause: BaseException) -> None:
        self.cause = cause
        super().__init__(
            f"Cleanup failed: {type(cause).__name__}: {cause}",
            mode=mode,
            run=test_run_id,
        )


class LiveSystemError(DualModeError):
    """The live field-service API rejected a request."""

    def __init__(self, message: str, status_code: Optional[int] = None, url: Optional[str] = None) -> None:
        self.status_code = status_code
        self.url = url
        super().__init__(message, mode=TestMode.PRODUCTION, status=status_code, url=url)


class DuplicateEntityError(LiveSystemError):
    """Create hit an existing entity (another worker won the race)."""


class CleanupWarning(UserWarning):
    """Emitted into the pytest report when a scenario's cleanup failed."""
