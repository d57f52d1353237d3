"""
Context-aware page object tests with a recording fake browser.

Checks mode-specific selectors, context validation and that every
mutating page action goes through the production safety guard before the
browser is touched.
"""
import pytest

from fieldservice_testing.errors import SafetyViolationError
from fieldservice_testing.models import ConnectionInfo, DataContext, EntityRecord, TestDataSet, TestMetadata, TestMode
from fieldservice_testing.naming import NamingConventionValidator
from fieldservice_testing.safety import ProductionSafetyGuard
from ui_tests.browser import ToolError
from ui_tests.pages import CustomersPage, PageContextError, RoutesPage


class FakeBrowser:
    """Records calls; selectors in ``broken`` fail like a missing element."""

    def __init__(self, broken=(), visible=()):
        self.calls = []
        self.broken = set(broken)
        self.visible = set(visible)

    async def _record(self, name, *args):
        self.calls.append((name, *args))
        if args and args[0] in self.broken:
            raise ToolError(name=name, payload={"selector": args[0]}, message="element not found")

    async def goto(self, url):
        await self._record("goto", url)

    async def fill(self, selector, value):
        await self._record("fill", selector, value)

    async def click(self, selector):
        await self._record("click", selector)

    async def select(self, selector, value):
        await self._record("select", selector, value)

    async def text(self, selector):
        await self._record("text", selector)
        return "Bugs Bunny - looneyTunesTest"

    async def is_visible(self, selector):
        return selector in self.visible

    async def accept_next_dialog(self):
        self.calls.append(("accept_next_dialog",))


def make_context(mode, records, guard=None, cleaned_up=False):
    async def release():
        pass

    context = DataContext(
        mode=mode,
        test_data=TestDataSet(records),
        connection_info=ConnectionInfo("localhost", "test.sqlite3", mode is TestMode.ISOLATED),
        metadata=TestMetadata.create(mode, "1.0.0"),
        cleanup=release,
        guard=guard,
    )
    if cleaned_up:
        context._cleaned_up = True
    return context


ISOLATED_RECORDS = {
    "customers": [EntityRecord("cust-001", "Acme Hardware", True)],
    "routes": [EntityRecord("route-001", "Cedar Falls North", True)],
}
PRODUCTION_RECORDS = {
    "customers": [EntityRecord("customer-1", "Bugs Bunny - looneyTunesTest", True)],
    "routes": [],
}


@pytest.fixture
def browser():
    return FakeBrowser()


@pytest.fixture
def guard():
    return ProductionSafetyGuard(NamingConventionValidator())


@pytest.fixture
def isolated_context():
    return make_context(TestMode.ISOLATED, ISOLATED_RECORDS)


@pytest.fixture
def production_context(guard):
    return make_context(TestMode.PRODUCTION, PRODUCTION_RECORDS, guard=guard)


class TestSelectors:
    def test_mode_specific_selectors(self, browser, isolated_context, production_context):
        page = CustomersPage(browser)
        assert page.selector("list") == ".customer-list"

        page.set_data_context(isolated_context)
        assert page.get_test_mode() is TestMode.ISOLATED
        assert page.selector("list") == "[data-testid='customers-container']"

        page.set_data_context(production_context)
        assert page.selector("list") == ".customers-container, .customer-list"
        # no production override: base selector
        assert page.selector("save") == "button[type='submit']"

    def test_unknown_element(self, browser):
        with pytest.raises(KeyError):
            CustomersPage(browser).selector("nope")

    def test_unregistered_key_returns_base_selector(self, browser, isolated_context):
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)
        assert page.get_mode_specific_selector(".anything", "unregistered") == ".anything"

    @pytest.mark.asyncio
    async def test_click_falls_back_when_mode_selector_fails(self, isolated_context):
        browser = FakeBrowser(broken={"[data-testid='new-customer']"})
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)

        await page.click_element("new")

        assert browser.calls == [
            ("click", "[data-testid='new-customer']"),
            ("click", "a[href$='/customers/new']"),
        ]

    @pytest.mark.asyncio
    async def test_click_without_fallback_raises(self, isolated_context):
        browser = FakeBrowser(broken={".alert, .flash"})
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)
        with pytest.raises(ToolError):
            await page.click_element("flash")

    @pytest.mark.asyncio
    async def test_missing_required_elements(self, isolated_context):
        browser = FakeBrowser(visible={"[data-testid='customers-container']"})
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)
        assert await page.missing_required_elements() == ["search"]


class TestContextValidation:
    def test_no_context(self, browser):
        page = CustomersPage(browser)
        assert page.get_data_context() is None
        assert page.get_test_mode() is None
        assert not page.validate_context()
        with pytest.raises(PageContextError):
            page.require_context()

    def test_isolated_needs_records(self, browser, isolated_context):
        page = RoutesPage(browser)
        page.set_data_context(isolated_context)
        assert page.validate_context()

        page.set_data_context(make_context(TestMode.ISOLATED, {"routes": []}))
        assert not page.validate_context()

    def test_production_needs_marked_record(self, browser, production_context, guard):
        customers = CustomersPage(browser)
        customers.set_data_context(production_context)
        assert customers.validate_context()

        # the production catalog has no routes
        routes = RoutesPage(browser)
        routes.set_data_context(production_context)
        assert not routes.validate_context()

        unmarked = make_context(TestMode.PRODUCTION, {"customers": [EntityRecord("c9", "Real Customer", True)]}, guard)
        customers.set_data_context(unmarked)
        assert not customers.validate_context()

    def test_cleaned_up_context_is_invalid(self, browser):
        page = CustomersPage(browser)
        page.set_data_context(make_context(TestMode.ISOLATED, ISOLATED_RECORDS, cleaned_up=True))
        assert not page.validate_context()


@pytest.mark.asyncio
class TestGuardedActions:
    async def test_production_create_applies_marker_and_email(self, browser, production_context, guard):
        page = CustomersPage(browser)
        page.set_data_context(production_context)

        name = await page.create_customer("Porky Pig", location="Winfield")

        assert name == "Porky Pig - looneyTunesTest"
        assert ("fill", "#customer-name", "Porky Pig - looneyTunesTest") in browser.calls
        assert ("fill", "#customer-email", "porky.pig@looneyTunesTest.com") in browser.calls
        assert ("select", "#customer-location", "Winfield") in browser.calls
        assert [entry.operation for entry in guard.operation_log] == ["create"]

    async def test_isolated_create_keeps_plain_name(self, browser, isolated_context):
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)

        name = await page.create_customer("Prairie Grocery")

        assert name == "Prairie Grocery"
        assert not any(call[1] == "#customer-email" for call in browser.calls if call[0] == "fill")

    async def test_production_delete_of_real_customer_is_blocked(self, browser, production_context):
        page = CustomersPage(browser)
        page.set_data_context(production_context)

        with pytest.raises(SafetyViolationError) as excinfo:
            await page.delete_customer("Acme Hardware")

        assert excinfo.value.operation == "delete"
        assert excinfo.value.target_kind == "customer"
        assert browser.calls == []

    async def test_isolated_delete_is_not_guarded(self, browser, isolated_context):
        page = CustomersPage(browser)
        page.set_data_context(isolated_context)

        await page.delete_customer("Acme Hardware")

        assert browser.calls[0] == ("accept_next_dialog",)
        assert browser.calls[1][0] == "click"
        assert "Acme Hardware" in browser.calls[1][1]

    async def test_rename_to_marked_name(self, browser, production_context):
        page = CustomersPage(browser)
        page.set_data_context(production_context)

        result = await page.update_customer("Bugs Bunny - looneyTunesTest", new_name="Bugs Bunny Jr")

        assert result == "Bugs Bunny Jr - looneyTunesTest"
        assert ("fill", "#customer-name", "Bugs Bunny Jr - looneyTunesTest") in browser.calls

    async def test_update_of_real_customer_is_blocked(self, browser, production_context):
        page = CustomersPage(browser)
        page.set_data_context(production_context)
        with pytest.raises(SafetyViolationError):
            await page.update_customer("Acme Hardware", email="new@acme.example")
        assert browser.calls == []

    async def test_route_actions(self, browser, production_context):
        page = RoutesPage(browser)
        page.set_data_context(production_context)

        name = await page.create_route("Winfield Route", "Winfield")
        assert name == "Winfield Route - looneyTunesTest"

        await page.assign_ticket(name, "ticket-101")
        assert ("select", "select[name='ticket']", "ticket-101") in browser.calls

        with pytest.raises(SafetyViolationError):
            await page.assign_ticket("Cedar Falls North", "ticket-001")

    async def test_actions_require_context(self, browser):
        with pytest.raises(PageContextError):
            await RoutesPage(browser).delete_route("Anything - looneyTunesTest")

    async def test_context_without_guard_uses_default_marker(self, browser):
        page = CustomersPage(browser)
        page.set_data_context(make_context(TestMode.PRODUCTION, PRODUCTION_RECORDS))
        assert page.entity_name("Tweety Bird") == "Tweety Bird - looneyTunesTest"
        with pytest.raises(SafetyViolationError):
            page.guard_mutation("delete", "customer", "Tweety Bird")
