import sys
from pathlib import Path

import pytest_asyncio

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from ui_tests.browser import Browser
from ui_tests.config import settings
from ui_tests.playwright_client import PlaywrightClient


@pytest_asyncio.fixture()
async def browser():
    """Browser wrapper over a fresh Playwright page, closed after the test."""
    async with PlaywrightClient(settings) as client:
        yield Browser(client.page)
