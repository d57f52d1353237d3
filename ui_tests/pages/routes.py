"""Routes page object."""
from __future__ import annotations

from ui_tests.pages.base import ContextAwarePage, ElementConfig


class RoutesPage(ContextAwarePage):
    path = "/routes"
    required_category = "routes"

    def configure_elements(self) -> None:
        self.register_element("list", ElementConfig(
            base_selector=".route-list",
            isolated_selector="[data-testid='routes-container']",
            production_selector=".routes-container, .route-list",
            fallback_selector=".route-list",
            required=True,
        ))
        self.register_element("new", ElementConfig(
            base_selector="a[href$='/routes/new']",
            isolated_selector="[data-testid='new-route']",
            fallback_selector="a[href$='/routes/new']",
        ))
        self.register_element("name", ElementConfig(base_selector="#route-name"))
        self.register_element("location", ElementConfig(base_selector="#route-location"))
        self.register_element("ticket", ElementConfig(
            base_selector="select[name='ticket']",
            isolated_selector="[data-testid='ticket-select']",
        ))
        self.register_element("assign", ElementConfig(
            base_selector="button.assign-ticket",
            isolated_selector="[data-testid='assign-ticket']",
            fallback_selector="button.assign-ticket",
        ))
        self.register_element("save", ElementConfig(
            base_selector="button[type='submit']",
            isolated_selector="[data-testid='save-route']",
            fallback_selector="button[type='submit']",
        ))

    def row_selector(self, name: str) -> str:
        return f"{self.selector('list')} .route-row:has-text(\"{name}\")"

    async def create_route(self, name: str, location: str) -> str:
        name = self.entity_name(name)
        self.guard_mutation("create", "route", name)
        await self.click_element("new")
        await self.fill_element("name", name)
        await self.browser.select(self.selector("location"), location)
        await self.click_element("save")
        return name

    async def delete_route(self, name: str) -> None:
        self.guard_mutation("delete", "route", name)
        await self.browser.accept_next_dialog()
        await self.browser.click(f"{self.row_selector(name)} .delete")

    async def assign_ticket(self, route_name: str, ticket_id: str) -> None:
        """Assign a ticket to a route (mutates the route)."""
        self.guard_mutation("assign ticket to", "route", route_name)
        await self.browser.click(self.row_selector(route_name))
        await self.browser.select(self.selector("ticket"), ticket_id)
        await self.click_element("assign")
