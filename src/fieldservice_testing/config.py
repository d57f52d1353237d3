"""Test run configuration for dual-mode execution.

Settings come from an ``EnvironmentView`` (process environment over
`.env.defaults`). Explicit environment values win over the per-mode tables
below, which only supply defaults.

Environment variables:
- ISOLATED_FIXTURES_DIR, ISOLATED_SCRATCH_DIR, ISOLATED_RESTORE_TIMEOUT,
  ISOLATED_VERIFICATION_QUERIES (';'-separated), ISOLATED_DEFAULT_DATASET
- FIELDSERVICE_API_BASE_URL, FIELDSERVICE_API_TOKEN,
  PRODUCTION_TEST_DATA_MARKER, PRODUCTION_LOCATIONS, PRODUCTION_CUSTOMER_NAMES,
  PRODUCTION_CLEANUP_POLICY (preserve|remove), PRODUCTION_ENSURE_TIMEOUT
- TEST_RETRY_ATTEMPTS, TEST_RETRY_BASE_DELAY, TEST_RETRY_MAX_DELAY
- TEST_DATA_VERSION
"""
from __future__ import annotations

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Optional, Tuple

from fieldservice_testing.environment import REPO_ROOT, EnvironmentView
from fieldservice_testing.errors import ConfigurationError
from fieldservice_testing.models import DEFAULT_CATEGORIES, TestMode

DEFAULT_MARKER = "looneyTunesTest"

DEFAULT_LOCATIONS: Tuple[str, ...] = ("Cedar Falls", "Winfield", "O'Fallon")

DEFAULT_CUSTOMER_NAMES: Tuple[str, ...] = (
    "Bugs Bunny",
    "Daffy Duck",
    "Porky Pig",
    "Tweety Bird",
    "Sylvester Cat",
    "Pepe Le Pew",
    "Foghorn Leghorn",
    "Marvin Martian",
)

DEFAULT_VERIFICATION_QUERIES: Tuple[str, ...] = (
    "SELECT id FROM customers LIMIT 1",
    "SELECT id FROM routes LIMIT 1",
)

CLEANUP_POLICIES = ("preserve", "remove")
_CLEANUP_ALIASES = {"cleanup": "remove"}

# Seconds per operation type
MODE_TIMEOUTS: Dict[TestMode, Dict[str, float]] = {
    TestMode.ISOLATED: {"default": 30.0, "database": 60.0, "setup": 45.0, "cleanup": 30.0},
    TestMode.PRODUCTION: {"default": 45.0, "database": 30.0, "setup": 60.0, "cleanup": 45.0},
    TestMode.DUAL: {"default": 60.0, "database": 90.0, "setup": 75.0, "cleanup": 60.0},
}

# Total attempts per operation type
MODE_RETRIES: Dict[TestMode, Dict[str, int]] = {
    TestMode.ISOLATED: {"default": 2, "database": 3, "network": 1},
    TestMode.PRODUCTION: {"default": 3, "database": 2, "network": 4},
    TestMode.DUAL: {"default": 4, "database": 3, "network": 5},
}


@dataclass
class IsolatedSettings:
    fixtures_dir: Path
    scratch_dir: Optional[Path] = None
    restore_timeout: float = MODE_TIMEOUTS[TestMode.ISOLATED]["database"]
    verification_queries: Tuple[str, ...] = DEFAULT_VERIFICATION_QUERIES
    default_dataset: str = "baseline"
    categories: Tuple[str, ...] = DEFAULT_CATEGORIES


@dataclass
class ProductionSettings:
    api_base_url: Optional[str] = None
    api_token: Optional[str] = None
    marker: str = DEFAULT_MARKER
    locations: Tuple[str, ...] = DEFAULT_LOCATIONS
    customer_names: Tuple[str, ...] = DEFAULT_CUSTOMER_NAMES
    cleanup_policy: str = "preserve"
    ensure_timeout: float = MODE_TIMEOUTS[TestMode.PRODUCTION]["setup"]

    @property
    def removes_data(self) -> bool:
        return self.cleanup_policy == "remove"


@dataclass
class RetrySettings:
    max_attempts: Optional[int] = None  # None -> per-mode table
    base_delay: float = 1.0
    max_delay: Optional[float] = 30.0


@dataclass
class TestRunConfig:
    """Everything the controller needs for one test run."""

    __test__ = False

    isolated: IsolatedSettings
    production: ProductionSettings = field(default_factory=ProductionSettings)
    retry: RetrySettings = field(default_factory=RetrySettings)
    version: str = "1.0.0"

    @classmethod
    def from_environment(cls, env: EnvironmentView) -> "TestRunConfig":
        scratch = env.get("ISOLATED_SCRATCH_DIR")
        queries = env.get_list("ISOLATED_VERIFICATION_QUERIES", separator=";")
        isolated = IsolatedSettings(
            fixtures_dir=_resolve_path(env.get("ISOLATED_FIXTURES_DIR", "ui_tests/fixtures/isolated")),
            scratch_dir=_resolve_path(scratch) if scratch else None,
            restore_timeout=_positive(
                env.get_float("ISOLATED_RESTORE_TIMEOUT", MODE_TIMEOUTS[TestMode.ISOLATED]["database"]),
                "ISOLATED_RESTORE_TIMEOUT",
            ),
            verification_queries=tuple(queries) if queries else DEFAULT_VERIFICATION_QUERIES,
            default_dataset=env.get("ISOLATED_DEFAULT_DATASET", "baseline"),
        )

        policy = env.get("PRODUCTION_CLEANUP_POLICY", "preserve").lower()
        policy = _CLEANUP_ALIASES.get(policy, policy)
        if policy not in CLEANUP_POLICIES:
            raise ConfigurationError(
                f"PRODUCTION_CLEANUP_POLICY must be one of {', '.join(CLEANUP_POLICIES)}, got {policy!r}",
                key="PRODUCTION_CLEANUP_POLICY",
                value=policy,
            )
        marker = env.get("PRODUCTION_TEST_DATA_MARKER", DEFAULT_MARKER)
        production = ProductionSettings(
            api_base_url=env.get("FIELDSERVICE_API_BASE_URL"),
            api_token=env.get("FIELDSERVICE_API_TOKEN"),
            marker=marker,
            locations=tuple(env.get_list("PRODUCTION_LOCATIONS", list(DEFAULT_LOCATIONS))),
            customer_names=tuple(env.get_list("PRODUCTION_CUSTOMER_NAMES", list(DEFAULT_CUSTOMER_NAMES))),
            cleanup_policy=policy,
            ensure_timeout=_positive(
                env.get_float("PRODUCTION_ENSURE_TIMEOUT", MODE_TIMEOUTS[TestMode.PRODUCTION]["setup"]),
                "PRODUCTION_ENSURE_TIMEOUT",
            ),
        )

        max_attempts: Optional[int] = None
        if env.get("TEST_RETRY_ATTEMPTS"):
            max_attempts = int(_positive(env.get_int("TEST_RETRY_ATTEMPTS", 1), "TEST_RETRY_ATTEMPTS"))
        retry = RetrySettings(
            max_attempts=max_attempts,
            base_delay=env.get_float("TEST_RETRY_BASE_DELAY", 1.0),
            max_delay=env.get_float("TEST_RETRY_MAX_DELAY", 30.0),
        )

        return cls(
            isolated=isolated,
            production=production,
            retry=retry,
            version=env.get("TEST_DATA_VERSION", "1.0.0"),
        )

    def timeout_for(self, mode: TestMode, operation: str = "default") -> float:
        table = MODE_TIMEOUTS[mode]
        return table.get(operation, table["default"])

    def retries_for(self, mode: TestMode, operation: str = "default") -> int:
        """Total attempts for an operation; TEST_RETRY_ATTEMPTS overrides the table."""
        if self.retry.max_attempts is not None:
            return self.retry.max_attempts
        table = MODE_RETRIES[mode]
        return table.get(operation, table["default"])


def _resolve_path(value: str) -> Path:
    path = Path(value).expanduser()
    if not path.is_absolute():
        path = REPO_ROOT / path
    return path


def _positive(value: float, key: str) -> float:
    if value <= 0:
        raise ConfigurationError(f"{key} must be positive, got {value}", key=key, value=value)
    return value
