"""pytest integration for dual-mode data contexts.

Load it from the root ``conftest.py``::

    pytest_plugins = ["fieldservice_testing.pytest_plugin"]

Scenarios declare their mode with the ``isolated``, ``production`` or
``dual`` markers and, for isolated runs, the fixture bundle with
``dataset("name")``. Requesting the ``data_context`` fixture runs mode
detection and context setup before the test and cleanup after it, whatever
the outcome.

With ``--production-health`` the synthetic production catalog is checked once
before the run and the result is printed in the terminal summary.
"""
from __future__ import annotations

import warnings
from typing import List, Optional

import anyio
import pytest
import pytest_asyncio

from fieldservice_testing.config import TestRunConfig
from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.errors import CleanupWarning, ConfigurationError
from fieldservice_testing.lifecycle import DataContextController, ScenarioState, ScenarioSummary
from fieldservice_testing.models import TestMode
from fieldservice_testing.production import HealthReport, ProductionTestDataProvider

MODE_MARKERS = tuple(mode.value for mode in TestMode)

_MARKER_HELP = (
    "isolated: run against a freshly restored fixture database",
    "production: run against marker-named synthetic data in the live system",
    "dual: runs in either mode (DUAL_MODE_TARGET picks one per invocation)",
    "dataset(name): fixture bundle restored for isolated runs",
)

_SUMMARY = pytest.StashKey[ScenarioSummary]()
_HEALTH = pytest.StashKey[HealthReport]()


def pytest_addoption(parser):
    group = parser.getgroup("fieldservice", "dual-mode test data")
    group.addoption(
        "--test-mode",
        action="store",
        dest="test_mode",
        default=None,
        choices=MODE_MARKERS,
        help="Force the test mode for every scenario (overrides TEST_MODE).",
    )
    group.addoption(
        "--production-health",
        action="store_true",
        dest="production_health",
        default=False,
        help="Check the synthetic production catalog before the run and report it.",
    )


def pytest_configure(config):
    for line in _MARKER_HELP:
        config.addinivalue_line("markers", line)


def pytest_sessionstart(session):
    config = session.config
    if not config.getoption("production_health", default=False):
        return
    try:
        run_config = TestRunConfig.from_environment(EnvironmentView.from_process())
        provider = ProductionTestDataProvider(run_config.production, version=run_config.version)
        config.stash[_HEALTH] = anyio.run(provider.health_check)
    except ConfigurationError as exc:
        raise pytest.UsageError(f"--production-health: {exc}") from exc


def scenario_tags(item: pytest.Item) -> List[str]:
    """Mode markers on the test, nearest first."""
    return [marker.name for marker in item.iter_markers() if marker.name in MODE_MARKERS]


def scenario_dataset(item: pytest.Item) -> Optional[str]:
    marker = item.get_closest_marker("dataset")
    if marker is None:
        return None
    if marker.args:
        return str(marker.args[0])
    return marker.kwargs.get("name")


@pytest.fixture(scope="session")
def environment_view(pytestconfig) -> EnvironmentView:
    env = EnvironmentView.from_process()
    forced = pytestconfig.getoption("test_mode", default=None)
    if forced:
        env = env.with_overrides(TEST_MODE=forced)
    return env


@pytest.fixture(scope="session")
def test_run_config(environment_view) -> TestRunConfig:
    return TestRunConfig.from_environment(environment_view)


@pytest.fixture(scope="session")
def data_context_controller(test_run_config, environment_view) -> DataContextController:
    return DataContextController.from_config(test_run_config, environment_view)


@pytest_asyncio.fixture()
async def data_context(request, data_context_controller):
    """Per-test DataContext; setup is the Before hook, the finally block the After hook."""
    item = request.node
    lifecycle = data_context_controller.lifecycle(item.nodeid, scenario_tags(item), scenario_dataset(item))
    request.config.stash[_SUMMARY] = data_context_controller.summary

    context = await lifecycle.setup()
    item.user_properties.append(("test_mode", context.mode.value))
    item.user_properties.append(("test_run_id", context.test_run_id))
    try:
        yield lifecycle.acquire()
    finally:
        cleanup_error = await lifecycle.teardown()
        if cleanup_error is not None:
            item.user_properties.append(("cleanup_error", str(cleanup_error)))
            warnings.warn(CleanupWarning(f"{item.nodeid}: {cleanup_error}"))


@pytest_asyncio.fixture()
async def production_health(data_context_controller) -> HealthReport:
    """Health report of the production catalog this run would ensure."""
    provider = data_context_controller.production_provider
    if provider is None:
        pytest.skip("no production data provider configured")
    return await provider.health_check(data_context_controller.catalog)


def pytest_terminal_summary(terminalreporter, exitstatus, config):
    health = config.stash.get(_HEALTH, None)
    if health is not None:
        terminalreporter.write_sep("-", "production test data")
        terminalreporter.write_line(f"{health.base_url}: {health.summary()}")
        for advice in health.recommendations():
            terminalreporter.write_line(f"  - {advice}")

    summary = config.stash.get(_SUMMARY, None)
    if summary is None or not summary.modes:
        return

    terminalreporter.write_sep("-", "dual-mode data contexts")
    for mode, count in sorted(summary.modes.items()):
        terminalreporter.write_line(f"{mode}: {count} scenario(s)")

    for lifecycle in summary.incidents:
        if lifecycle.state is ScenarioState.ABORTED:
            hint = f" ({lifecycle.recovery_hint})" if lifecycle.recovery_hint else ""
            terminalreporter.write_line(f"ABORTED {lifecycle.name}: {lifecycle.error}{hint}")
        if lifecycle.cleanup_error is not None:
            terminalreporter.write_line(f"CLEANUP FAILED {lifecycle.name}: {lifecycle.cleanup_error}")
