"""
pytest plugin tests, run through pytester.

Each test writes a throwaway test module plus a conftest that loads the
plugin, runs it in-process and checks outcomes and the terminal summary.
"""
import pytest

from ui_tests import mock_fieldservice_api as mock_api

PLUGIN_CONFTEST = 'pytest_plugins = ["fieldservice_testing.pytest_plugin"]\n'

BROKEN_CLEANUP_CONFTEST = PLUGIN_CONFTEST + '''
import pytest

from fieldservice_testing import (
    ConnectionInfo,
    DataContext,
    DataContextController,
    TestDataSet,
    TestMetadata,
    TestMode,
)


class BrokenCleanupProvider:
    async def load(self, dataset_name=None, test_run_id=None):
        async def release():
            raise RuntimeError("scratch database is locked")

        return DataContext(
            mode=TestMode.ISOLATED,
            test_data=TestDataSet({}),
            connection_info=ConnectionInfo("localhost", ":memory:", True),
            metadata=TestMetadata.create(TestMode.ISOLATED, "1.0.0", test_run_id),
            cleanup=release,
        )


@pytest.fixture(scope="session")
def data_context_controller(test_run_config, environment_view):
    return DataContextController(test_run_config, environment_view, isolated_provider=BrokenCleanupProvider())
'''


@pytest.fixture
def plugin_env(monkeypatch, tmp_path):
    for key in ("TEST_MODE", "APP_ENV", "DUAL_MODE_TARGET", "TEST_RETRY_ATTEMPTS", "ISOLATED_FIXTURES_DIR"):
        monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("ISOLATED_SCRATCH_DIR", str(tmp_path / "scratch"))
    return monkeypatch


def test_isolated_markers_and_dataset(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest
        from fieldservice_testing import TestMode

        pytestmark = pytest.mark.asyncio

        @pytest.mark.isolated
        @pytest.mark.dataset("dispatch-board")
        async def test_dispatch_board(data_context):
            assert data_context.mode is TestMode.ISOLATED
            assert data_context.test_data.find("customers", "Prairie Grocery") is not None

        @pytest.mark.isolated
        async def test_default_dataset(data_context):
            assert data_context.test_data.count("customers") == 3
    """)

    result = pytester.runpytest()

    result.assert_outcomes(passed=2)
    result.stdout.fnmatch_lines(["*dual-mode data contexts*", "isolated: 2 scenario(s)"])


def test_user_properties_record_mode_and_run(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        @pytest.mark.dual
        async def test_anything(data_context):
            pass
    """)
    plugin_env.setenv("DUAL_MODE_TARGET", "isolated")

    reprec = pytester.inline_run()

    reprec.assertoutcome(passed=1)
    call = [r for r in reprec.getreports("pytest_runtest_logreport") if r.when == "call"][0]
    properties = dict(call.user_properties)
    assert properties["test_mode"] == "isolated"
    assert properties["test_run_id"].startswith("isolated-")


def test_unmarked_test_falls_back_to_isolated(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest
        from fieldservice_testing import TestMode

        @pytest.mark.asyncio
        async def test_unmarked(data_context):
            assert data_context.mode is TestMode.ISOLATED
    """)

    result = pytester.runpytest()

    result.assert_outcomes(passed=1)


def test_ambiguous_markers_error_at_setup(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        @pytest.mark.isolated
        @pytest.mark.production
        async def test_confused(data_context):
            pass
    """)

    result = pytester.runpytest()

    result.assert_outcomes(errors=1)
    result.stdout.fnmatch_lines(["unresolved: 1 scenario(s)", "ABORTED *Conflicting mode tags @isolated, @production*"])


def test_test_mode_option_overrides_markers(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest
        from fieldservice_testing import TestMode

        @pytest.mark.asyncio
        @pytest.mark.production
        async def test_forced(data_context):
            assert data_context.mode is TestMode.ISOLATED
    """)

    result = pytester.runpytest("--test-mode=isolated")

    result.assert_outcomes(passed=1)


def test_invalid_test_mode_option(pytester, plugin_env):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("def test_nothing():\n    pass\n")

    result = pytester.runpytest("--test-mode=staging")

    assert result.ret == pytest.ExitCode.USAGE_ERROR


def test_missing_fixture_bundle_aborts(pytester, plugin_env):
    plugin_env.setenv("TEST_RETRY_ATTEMPTS", "1")
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        @pytest.mark.isolated
        @pytest.mark.dataset("no-such-bundle")
        async def test_needs_bundle(data_context):
            pass
    """)

    result = pytester.runpytest()

    result.assert_outcomes(errors=1)
    result.stdout.fnmatch_lines(["ABORTED *Fixture bundle 'no-such-bundle' not found*"])


def test_cleanup_failure_is_a_warning(pytester, plugin_env):
    pytester.makeconftest(BROKEN_CLEANUP_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        @pytest.mark.isolated
        async def test_passes(data_context):
            assert data_context.test_data.count() == 0
    """)

    result = pytester.runpytest()

    result.assert_outcomes(passed=1)
    result.stdout.fnmatch_lines(["*CleanupWarning*scratch database is locked*"])
    result.stdout.fnmatch_lines(["CLEANUP FAILED *scratch database is locked*"])


def test_cleanup_runs_when_test_fails(pytester, plugin_env, tmp_path):
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        @pytest.mark.isolated
        async def test_fails(data_context):
            assert data_context.test_data.count("customers") == 99
    """)

    result = pytester.runpytest()

    result.assert_outcomes(failed=1)
    assert list((tmp_path / "scratch").glob("*.sqlite3")) == []


def test_production_run_against_mock_api(pytester, plugin_env, mock_fieldservice_api):
    plugin_env.setenv("FIELDSERVICE_API_BASE_URL", mock_fieldservice_api.url)
    plugin_env.setenv("FIELDSERVICE_API_TOKEN", mock_api.MOCK_API_TOKEN)
    plugin_env.setenv("PRODUCTION_CUSTOMER_NAMES", "Bugs Bunny")
    plugin_env.setenv("PRODUCTION_LOCATIONS", "Cedar Falls")
    plugin_env.setenv("PRODUCTION_CLEANUP_POLICY", "remove")
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest
        from fieldservice_testing import TestMode

        @pytest.mark.asyncio
        @pytest.mark.production
        async def test_catalog(data_context):
            assert data_context.mode is TestMode.PRODUCTION
            assert [c.name for c in data_context.test_data.customers] == ["Bugs Bunny - looneyTunesTest"]
            assert [r.name for r in data_context.test_data.routes] == ["Cedar Falls Route - looneyTunesTest"]
    """)

    result = pytester.runpytest()

    result.assert_outcomes(passed=1)
    result.stdout.fnmatch_lines(["production: 1 scenario(s)"])
    assert len(mock_api.requests_matching("POST", "customers")) == 1
    assert mock_api.ENTITIES["customers"] == {}
    assert mock_api.ENTITIES["routes"] == {}


@pytest.fixture
def production_env(plugin_env, mock_fieldservice_api):
    plugin_env.setenv("FIELDSERVICE_API_BASE_URL", mock_fieldservice_api.url)
    plugin_env.setenv("FIELDSERVICE_API_TOKEN", mock_api.MOCK_API_TOKEN)
    plugin_env.setenv("PRODUCTION_CUSTOMER_NAMES", "Bugs Bunny")
    plugin_env.setenv("PRODUCTION_LOCATIONS", "Cedar Falls")
    return plugin_env


def test_production_health_option_reports_catalog(pytester, production_env):
    mock_api.seed_entity("customers", "Bugs Bunny - looneyTunesTest", is_test_data=True)
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("def test_nothing():\n    pass\n")

    result = pytester.runpytest("--production-health")

    result.assert_outcomes(passed=1)
    result.stdout.fnmatch_lines([
        "*production test data*",
        "http://127.0.0.1:*: healthy: 1 missing, 0 duplicated, 0 not flagged",
        "*Create missing entities: Cedar Falls Route - looneyTunesTest",
    ])
    assert mock_api.requests_matching("POST", "routes") == []


def test_production_health_option_needs_api_url(pytester, plugin_env):
    plugin_env.setenv("FIELDSERVICE_API_BASE_URL", "")
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("def test_nothing():\n    pass\n")

    result = pytester.runpytest("--production-health")

    assert result.ret == pytest.ExitCode.USAGE_ERROR


def test_production_health_fixture(pytester, production_env):
    mock_api.seed_entity("routes", "Cedar Falls Route - looneyTunesTest", is_test_data=False)
    pytester.makeconftest(PLUGIN_CONFTEST)
    pytester.makepyfile("""
        import pytest

        @pytest.mark.asyncio
        async def test_catalog_health(production_health):
            assert production_health.missing == ["Bugs Bunny - looneyTunesTest"]
            assert production_health.non_compliant == ["Cedar Falls Route - looneyTunesTest"]
            assert not production_health.healthy
    """)

    result = pytester.runpytest()

    result.assert_outcomes(passed=1)
