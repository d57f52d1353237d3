"""Customers page object."""
from __future__ import annotations

from typing import Optional

from fieldservice_testing.models import TestMode

from ui_tests.pages.base import ContextAwarePage, ElementConfig


class CustomersPage(ContextAwarePage):
    path = "/customers"
    required_category = "customers"

    def configure_elements(self) -> None:
        self.register_element("list", ElementConfig(
            base_selector=".customer-list",
            isolated_selector="[data-testid='customers-container']",
            production_selector=".customers-container, .customer-list",
            fallback_selector=".customer-list",
            required=True,
        ))
        self.register_element("search", ElementConfig(
            base_selector="input[name='search']",
            isolated_selector="[data-testid='customer-search'] input",
            production_selector=".customer-search input, .search-interface input",
            required=True,
        ))
        self.register_element("search_submit", ElementConfig(
            base_selector="button[type='submit']",
            isolated_selector="[data-testid='customer-search'] button[type='submit']",
            fallback_selector=".search-interface button",
        ))
        self.register_element("new", ElementConfig(
            base_selector="a[href$='/customers/new']",
            isolated_selector="[data-testid='new-customer']",
            fallback_selector="a[href$='/customers/new']",
        ))
        self.register_element("name", ElementConfig(base_selector="#customer-name"))
        self.register_element("email", ElementConfig(base_selector="#customer-email"))
        self.register_element("location", ElementConfig(base_selector="#customer-location"))
        self.register_element("save", ElementConfig(
            base_selector="button[type='submit']",
            isolated_selector="[data-testid='save-customer']",
            fallback_selector="button[type='submit']",
        ))
        self.register_element("flash", ElementConfig(base_selector=".alert, .flash"))

    def row_selector(self, name: str) -> str:
        base = self.selector("list")
        return f"{base} .customer-row:has-text(\"{name}\")"

    async def search(self, term: str) -> str:
        """Search customers and return the text of the result list."""
        await self.fill_element("search", term)
        await self.click_element("search_submit")
        return await self.browser.text(self.selector("list"))

    async def create_customer(self, name: str, email: Optional[str] = None, location: Optional[str] = None) -> str:
        """Create a customer; in production the name gets the test marker. Returns the name used."""
        name = self.entity_name(name)
        self.guard_mutation("create", "customer", name)
        await self.click_element("new")
        await self.fill_element("name", name)
        context = self.require_context()
        if email is None and context.mode is TestMode.PRODUCTION:
            email = self._guard(context).validator.email_for(name)
        if email:
            await self.fill_element("email", email)
        if location:
            await self.browser.select(self.selector("location"), location)
        await self.click_element("save")
        return name

    async def update_customer(
        self,
        current_name: str,
        new_name: Optional[str] = None,
        email: Optional[str] = None,
    ) -> str:
        self.guard_mutation("update", "customer", current_name)
        if new_name is not None:
            new_name = self.entity_name(new_name)
            self.guard_mutation("rename", "customer", new_name)
        await self.browser.click(f"{self.row_selector(current_name)} .edit")
        if new_name is not None:
            await self.fill_element("name", new_name)
        if email is not None:
            await self.fill_element("email", email)
        await self.click_element("save")
        return new_name or current_name

    async def delete_customer(self, name: str) -> None:
        self.guard_mutation("delete", "customer", name)
        await self.browser.accept_next_dialog()
        await self.browser.click(f"{self.row_selector(name)} .delete")
