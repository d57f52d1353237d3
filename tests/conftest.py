import threading
from pathlib import Path

import pytest
from werkzeug.serving import make_server

from fieldservice_testing.config import IsolatedSettings, ProductionSettings
from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.retry import RetryExecutor

ROOT = Path(__file__).resolve().parents[1]
FIXTURES_DIR = ROOT / "ui_tests" / "fixtures" / "isolated"


class SleepRecorder:
    """Stand-in for anyio.sleep that records delays instead of waiting."""

    def __init__(self):
        self.delays = []

    async def __call__(self, delay):
        self.delays.append(delay)


@pytest.fixture
def make_env():
    """Build an EnvironmentView from keyword arguments (no process env, no defaults)."""

    def _make(**values):
        return EnvironmentView(values)

    return _make


@pytest.fixture
def sleeps():
    return SleepRecorder()


@pytest.fixture
def executor(sleeps):
    return RetryExecutor(sleep=sleeps)


@pytest.fixture
def fixtures_dir():
    return FIXTURES_DIR


@pytest.fixture
def isolated_settings(tmp_path):
    return IsolatedSettings(
        fixtures_dir=FIXTURES_DIR,
        scratch_dir=tmp_path / "scratch",
        restore_timeout=10.0,
    )


# ============================================================================
# Mock field-service API fixtures
# ============================================================================

@pytest.fixture(scope='function')
def mock_fieldservice_api(monkeypatch):
    """Fixture that provides a running mock field-service API server."""
    for proxy_var in ('HTTP_PROXY', 'HTTPS_PROXY', 'ALL_PROXY', 'http_proxy', 'https_proxy', 'all_proxy'):
        monkeypatch.delenv(proxy_var, raising=False)
    from ui_tests.mock_fieldservice_api import create_mock_api_app, reset_mock_state

    class MockServer:
        def __init__(self, host='127.0.0.1'):
            self.host = host
            self.app = create_mock_api_app()
            self.server = None
            self.thread = None

        def start(self):
            # Port 0: let the OS pick a free port
            self.server = make_server(self.host, 0, self.app, threaded=True)
            self.thread = threading.Thread(target=self.server.serve_forever, daemon=True)
            self.thread.start()

        def stop(self):
            if self.server:
                self.server.shutdown()
                if self.thread:
                    self.thread.join(timeout=5)

        @property
        def url(self):
            return f"http://{self.host}:{self.server.server_port}"

    reset_mock_state()
    server = MockServer()
    server.start()

    yield server

    server.stop()
    reset_mock_state()


@pytest.fixture
def production_settings(mock_fieldservice_api):
    from ui_tests.mock_fieldservice_api import MOCK_API_TOKEN

    return ProductionSettings(
        api_base_url=mock_fieldservice_api.url,
        api_token=MOCK_API_TOKEN,
        customer_names=("Bugs Bunny", "Daffy Duck"),
        locations=("Cedar Falls",),
        ensure_timeout=10.0,
    )
