import pytest
import pytest_asyncio

from ui_tests.config import settings
from ui_tests.pages import CustomersPage, RoutesPage


def pytest_collection_modifyitems(config, items):
    """Skip browser tests when no field-service app is configured."""
    if settings.enabled:
        return
    skip_e2e = pytest.mark.skip(reason="UI_BASE_URL not set; no field-service app to drive")
    for item in items:
        if "e2e" in item.keywords:
            item.add_marker(skip_e2e)


@pytest_asyncio.fixture()
async def customers_page(browser, data_context):
    """Customers page bound to the scenario's DataContext and opened."""
    page = CustomersPage(browser)
    page.set_data_context(data_context)
    assert page.validate_context(), f"DataContext unusable for customers page: {data_context!r}"
    await page.open()
    return page


@pytest_asyncio.fixture()
async def routes_page(browser, data_context):
    page = RoutesPage(browser)
    page.set_data_context(data_context)
    assert page.validate_context(), f"DataContext unusable for routes page: {data_context!r}"
    await page.open()
    return page
