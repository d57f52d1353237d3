"""Page actions used by the page objects, with failures raised as ToolError."""
from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Any, AsyncIterator, Dict

import anyio
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page


@dataclass
class ToolError(Exception):
    """A browser action failed; ``name`` is the action, ``payload`` its arguments."""

    name: str
    payload: Dict[str, Any]
    message: str

    def __str__(self) -> str:
        return f"{self.name} failed ({self.message}) with payload={self.payload}"


@asynccontextmanager
async def _action(name: str, **payload: Any) -> AsyncIterator[None]:
    try:
        yield
    except PlaywrightError as exc:
        raise ToolError(name=name, payload=payload, message=str(exc)) from exc


class Browser:
    def __init__(self, page: Page) -> None:
        self.page = page

    async def goto(self, url: str) -> None:
        async with _action("goto", url=url):
            await self.page.goto(url, wait_until="domcontentloaded")

    async def fill(self, selector: str, value: str) -> None:
        async with _action("fill", selector=selector, value=value):
            await self.page.fill(selector, value)

    async def click(self, selector: str) -> None:
        async with _action("click", selector=selector):
            await self.page.click(selector)

    async def select(self, selector: str, value: str) -> None:
        async with _action("select", selector=selector, value=value):
            await self.page.select_option(selector, value)

    async def text(self, selector: str, timeout_ms: int = 5000) -> str:
        async with _action("text", selector=selector):
            return await self.page.text_content(selector, timeout=timeout_ms) or ""

    async def is_visible(self, selector: str) -> bool:
        async with _action("is_visible", selector=selector):
            return await self.page.is_visible(selector)

    async def accept_next_dialog(self) -> None:
        """Accept the confirm() the next delete button opens."""

        async def accept(dialog) -> None:
            await dialog.accept()

        self.page.once("dialog", accept)

    async def wait_for_text(self, selector: str, expected: str, timeout: float = 3.0, interval: float = 0.5) -> str:
        """Poll ``selector`` until its text contains ``expected``; AssertionError on timeout."""
        content = ""
        with anyio.move_on_after(timeout):
            while True:
                try:
                    content = await self.text(selector)
                except ToolError:
                    content = ""
                if expected in content:
                    return content
                await anyio.sleep(interval)
        raise AssertionError(f"Timed out waiting for {expected!r} in {selector!r}; last text was {content!r}")
