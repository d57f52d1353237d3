"""Scenario lifecycle and the per-run DataContext controller.

A scenario moves through

    UNDETERMINED -> MODE_RESOLVED -> CONTEXT_BUILDING -> CONTEXT_READY -> IN_USE -> TORN_DOWN

with ABORTED reachable from detection and context building. Teardown runs
the context's cleanup exactly once, shielded from cancellation, and never
raises over the scenario outcome: failures are kept as ``cleanup_error``.
"""
from __future__ import annotations

import logging
from collections import Counter
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import Enum
from typing import AsyncIterator, Iterable, List, Optional

import anyio

from fieldservice_testing.config import TestRunConfig
from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.errors import CleanupError
from fieldservice_testing.isolated import IsolatedDataProvider
from fieldservice_testing.mode_detector import ModeDetector
from fieldservice_testing.models import DataContext, EntitySpec, TestMode, new_test_run_id
from fieldservice_testing.naming import NamingConventionValidator
from fieldservice_testing.production import ProductionTestDataProvider
from fieldservice_testing.retry import RetryExecutor, RetryPolicy
from fieldservice_testing.safety import ProductionSafetyGuard

logger = logging.getLogger(__name__)


class ScenarioState(str, Enum):
    UNDETERMINED = "undetermined"
    MODE_RESOLVED = "mode_resolved"
    CONTEXT_BUILDING = "context_building"
    CONTEXT_READY = "context_ready"
    IN_USE = "in_use"
    TORN_DOWN = "torn_down"
    ABORTED = "aborted"


_TRANSITIONS = {
    ScenarioState.UNDETERMINED: {ScenarioState.MODE_RESOLVED, ScenarioState.ABORTED},
    ScenarioState.MODE_RESOLVED: {ScenarioState.CONTEXT_BUILDING, ScenarioState.ABORTED},
    ScenarioState.CONTEXT_BUILDING: {ScenarioState.CONTEXT_READY, ScenarioState.ABORTED},
    ScenarioState.CONTEXT_READY: {ScenarioState.IN_USE, ScenarioState.TORN_DOWN},
    ScenarioState.IN_USE: {ScenarioState.TORN_DOWN},
    ScenarioState.TORN_DOWN: set(),
    ScenarioState.ABORTED: set(),
}


class ScenarioLifecycle:
    """State machine for one scenario's DataContext."""

    def __init__(
        self,
        controller: "DataContextController",
        name: str,
        tags: Iterable[str] = (),
        dataset: Optional[str] = None,
    ) -> None:
        self.controller = controller
        self.name = name
        self.tags = list(tags)
        self.dataset = dataset
        self.state = ScenarioState.UNDETERMINED
        self.history: List[ScenarioState] = [self.state]
        self.mode: Optional[TestMode] = None
        self.context: Optional[DataContext] = None
        self.error: Optional[BaseException] = None
        self.cleanup_error: Optional[CleanupError] = None
        self.recovery_hint: Optional[str] = None

    def _transition(self, state: ScenarioState) -> None:
        if state not in _TRANSITIONS[self.state]:
            raise RuntimeError(f"Scenario '{self.name}': invalid transition {self.state.value} -> {state.value}")
        logger.debug("[LIFECYCLE] %s: %s -> %s", self.name, self.state.value, state.value)
        self.state = state
        self.history.append(state)
        if state in (ScenarioState.TORN_DOWN, ScenarioState.ABORTED):
            self.controller.summary.record(self)

    async def setup(self) -> DataContext:
        """Resolve the mode and build the context (the Before hook)."""
        try:
            self.mode = self.controller.resolve_mode(self.name, self.tags)
        except Exception as exc:
            self.error = exc
            self._transition(ScenarioState.ABORTED)
            raise
        self._transition(ScenarioState.MODE_RESOLVED)

        self._transition(ScenarioState.CONTEXT_BUILDING)
        try:
            self.context = await self.controller.build_context(self.mode, self.dataset)
        except BaseException as exc:
            self.error = exc
            self.recovery_hint = self._recovery_hint()
            self._transition(ScenarioState.ABORTED)
            logger.error(
                "[LIFECYCLE] %s aborted while building %s context: %s%s",
                self.name,
                self.mode.value,
                exc,
                f" ({self.recovery_hint})" if self.recovery_hint else "",
            )
            raise
        self._transition(ScenarioState.CONTEXT_READY)
        logger.info("[LIFECYCLE] %s ready in %s mode (%s)", self.name, self.mode.value, self.context.test_run_id)
        return self.context

    def _recovery_hint(self) -> Optional[str]:
        fallback = self.controller.detector.fallback_mode(self.mode)
        if fallback is None or not self.controller.detector.is_compatible(fallback, self.tags):
            return None
        return f"retry with TEST_MODE={fallback.value}"

    def acquire(self) -> DataContext:
        """Hand the context to the scenario body."""
        if self.state is not ScenarioState.CONTEXT_READY or self.context is None:
            raise RuntimeError(f"Scenario '{self.name}' has no ready context (state: {self.state.value})")
        self._transition(ScenarioState.IN_USE)
        return self.context

    async def teardown(self) -> Optional[CleanupError]:
        """Release the context (the After hook). Never raises cleanup failures."""
        if self.state in (ScenarioState.ABORTED, ScenarioState.TORN_DOWN, ScenarioState.UNDETERMINED):
            return self.cleanup_error
        if self.context is None:
            return None

        with anyio.CancelScope(shield=True):
            try:
                await self.context.cleanup()
            except Exception as exc:
                self.cleanup_error = CleanupError(self.context.mode, self.context.test_run_id, exc)
                logger.warning("[LIFECYCLE] %s: %s", self.name, self.cleanup_error)
        self._transition(ScenarioState.TORN_DOWN)
        return self.cleanup_error


@dataclass
class ScenarioSummary:
    """Finished scenarios per mode; only aborted ones and failed cleanups are kept."""

    modes: Counter = field(default_factory=Counter)
    incidents: List[ScenarioLifecycle] = field(default_factory=list)

    def record(self, lifecycle: ScenarioLifecycle) -> None:
        self.modes[lifecycle.mode.value if lifecycle.mode is not None else "unresolved"] += 1
        if lifecycle.state is ScenarioState.ABORTED or lifecycle.cleanup_error is not None:
            self.incidents.append(lifecycle)

    @property
    def aborted(self) -> List[ScenarioLifecycle]:
        return [s for s in self.incidents if s.state is ScenarioState.ABORTED]


class DataContextController:
    """Wires detector, providers and guard for one test run."""

    def __init__(
        self,
        config: TestRunConfig,
        env: EnvironmentView,
        detector: Optional[ModeDetector] = None,
        isolated_provider: Optional[IsolatedDataProvider] = None,
        production_provider: Optional[ProductionTestDataProvider] = None,
        guard: Optional[ProductionSafetyGuard] = None,
        catalog: Optional[List[EntitySpec]] = None,
    ) -> None:
        self.config = config
        self.env = env
        self.detector = detector or ModeDetector()
        self.guard = guard or ProductionSafetyGuard(NamingConventionValidator(config.production.marker))
        self.isolated_provider = isolated_provider
        self.production_provider = production_provider
        self.catalog = catalog
        self.summary = ScenarioSummary()

    @classmethod
    def from_config(cls, config: TestRunConfig, env: EnvironmentView, **overrides) -> "DataContextController":
        executor = RetryExecutor()
        client_factory = overrides.pop("client_factory", None)
        guard = overrides.pop("guard", None) or ProductionSafetyGuard(NamingConventionValidator(config.production.marker))
        isolated = overrides.pop("isolated_provider", None) or IsolatedDataProvider(
            config.isolated,
            retry_policy=RetryPolicy(
                max_attempts=config.retries_for(TestMode.ISOLATED, "database"),
                base_delay=config.retry.base_delay,
                max_delay=config.retry.max_delay,
            ),
            version=config.version,
            executor=executor,
        )
        production = overrides.pop("production_provider", None) or ProductionTestDataProvider(
            config.production,
            guard=guard,
            client_factory=client_factory,
            retry_policy=RetryPolicy(
                max_attempts=config.retries_for(TestMode.PRODUCTION, "network"),
                base_delay=config.retry.base_delay,
                max_delay=config.retry.max_delay,
            ),
            version=config.version,
            executor=executor,
        )
        return cls(
            config,
            env,
            guard=guard,
            isolated_provider=isolated,
            production_provider=production,
            **overrides,
        )

    def resolve_mode(self, scenario: str, tags: Iterable[str]) -> TestMode:
        tags = list(tags)
        mode = self.detector.resolve(tags, self.env, scenario=scenario)
        if not self.detector.is_compatible(mode, tags):
            logger.warning("[MODE] %s is tagged %s but runs in %s mode (TEST_MODE override)", scenario, tags, mode.value)
        return mode

    async def build_context(
        self,
        mode: TestMode,
        dataset: Optional[str] = None,
        test_run_id: Optional[str] = None,
    ) -> DataContext:
        run_id = test_run_id or new_test_run_id(mode)
        if mode is TestMode.ISOLATED:
            if self.isolated_provider is None:
                raise RuntimeError("No isolated data provider configured")
            return await self.isolated_provider.load(dataset, test_run_id=run_id)
        if mode is TestMode.PRODUCTION:
            if self.production_provider is None:
                raise RuntimeError("No production data provider configured")
            return await self.production_provider.ensure(self.catalog, test_run_id=run_id)
        raise ValueError(f"Cannot build a context for unresolved mode {mode.value}")

    def lifecycle(self, scenario_name: str, tags: Iterable[str] = (), dataset: Optional[str] = None) -> ScenarioLifecycle:
        return ScenarioLifecycle(self, scenario_name, tags, dataset)

    @asynccontextmanager
    async def scenario(
        self,
        scenario_name: str,
        tags: Iterable[str] = (),
        dataset: Optional[str] = None,
    ) -> AsyncIterator[DataContext]:
        """Build a context, yield it, and always tear it down."""
        lifecycle = self.lifecycle(scenario_name, tags, dataset)
        await lifecycle.setup()
        try:
            yield lifecycle.acquire()
        finally:
            await lifecycle.teardown()

    def cleanup_errors(self) -> List[CleanupError]:
        return [s.cleanup_error for s in self.summary.incidents if s.cleanup_error is not None]
