"""Dual-mode (isolated / production) test data controller."""
from fieldservice_testing.config import TestRunConfig
from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.errors import (
    AmbiguousModeError,
    CleanupError,
    CleanupWarning,
    ConfigurationError,
    DualModeError,
    EntityEnsureError,
    FixtureNotFoundError,
    FixtureVerificationError,
    SafetyViolationError,
)
from fieldservice_testing.isolated import IsolatedDataProvider
from fieldservice_testing.lifecycle import DataContextController, ScenarioLifecycle, ScenarioState
from fieldservice_testing.mode_detector import ModeDetector
from fieldservice_testing.models import (
    ConnectionInfo,
    DataContext,
    EntityRecord,
    EntitySpec,
    TestDataSet,
    TestMetadata,
    TestMode,
)
from fieldservice_testing.naming import NamingConventionValidator
from fieldservice_testing.production import ProductionTestDataProvider, default_catalog
from fieldservice_testing.retry import RetryExecutor, RetryPolicy, default_is_retryable
from fieldservice_testing.safety import ProductionSafetyGuard, SafetyOperation

__all__ = [
    "AmbiguousModeError",
    "CleanupError",
    "CleanupWarning",
    "ConfigurationError",
    "ConnectionInfo",
    "DataContext",
    "DataContextController",
    "DualModeError",
    "EntityEnsureError",
    "EntityRecord",
    "EntitySpec",
    "EnvironmentView",
    "FixtureNotFoundError",
    "FixtureVerificationError",
    "IsolatedDataProvider",
    "ModeDetector",
    "NamingConventionValidator",
    "ProductionSafetyGuard",
    "ProductionTestDataProvider",
    "RetryExecutor",
    "RetryPolicy",
    "SafetyOperation",
    "SafetyViolationError",
    "ScenarioLifecycle",
    "ScenarioState",
    "TestDataSet",
    "TestMetadata",
    "TestMode",
    "TestRunConfig",
    "default_catalog",
    "default_is_retryable",
]
