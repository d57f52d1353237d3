"""Shared configuration for browser tests.

Values come from the same ``EnvironmentView`` as the data-mode settings
(process environment over `.env` and `.env.defaults`):
- UI_BASE_URL: field-service web app under test (browser tests skip without it)
- UI_BROWSER: chromium, firefox or webkit (default: chromium)
- PLAYWRIGHT_HEADLESS: run the browser headless (default: true)
- UI_TIMEOUT_MS: default Playwright action timeout
- UI_VIEWPORT_WIDTH / UI_VIEWPORT_HEIGHT: default viewport
"""
from __future__ import annotations

from typing import Dict, Optional
from urllib.parse import urljoin

from fieldservice_testing.environment import EnvironmentView
from fieldservice_testing.errors import ConfigurationError

BROWSER_TYPES = ("chromium", "firefox", "webkit")


class UiTestConfig:
    """Browser settings for the UI suite.

    Unlike the data-mode configuration a missing UI_BASE_URL never fails
    the run: the browser tests are skipped instead.
    """

    def __init__(self, env: Optional[EnvironmentView] = None) -> None:
        env = env if env is not None else EnvironmentView.from_process()
        self.base_url: Optional[str] = env.get("UI_BASE_URL")
        self.browser_type = env.get("UI_BROWSER", "chromium").lower()
        if self.browser_type not in BROWSER_TYPES:
            raise ConfigurationError(
                f"UI_BROWSER must be one of {', '.join(BROWSER_TYPES)}, got {self.browser_type!r}",
                key="UI_BROWSER",
                value=self.browser_type,
            )
        self.headless = env.get_bool("PLAYWRIGHT_HEADLESS", True)
        self.timeout_ms = env.get_int("UI_TIMEOUT_MS", 30000)
        self.viewport_width = env.get_int("UI_VIEWPORT_WIDTH", 1440)
        self.viewport_height = env.get_int("UI_VIEWPORT_HEIGHT", 900)

        if self.base_url:
            print(f"[CONFIG] UI tests target {self.base_url} ({self.browser_type}, headless={self.headless})")

    @property
    def enabled(self) -> bool:
        return bool(self.base_url)

    @property
    def viewport(self) -> Dict[str, int]:
        return {"width": self.viewport_width, "height": self.viewport_height}

    def url(self, path: str) -> str:
        """Return an absolute URL for the provided path."""
        if not self.base_url:
            raise RuntimeError("UI_BASE_URL is not set; browser tests need a running field-service app")
        return urljoin(self.base_url.rstrip("/") + "/", path.lstrip("/"))


# Singleton instance - initialized on first import
settings = UiTestConfig()
