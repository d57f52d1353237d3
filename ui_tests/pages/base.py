"""Context-aware page object base.

Page objects receive the scenario's DataContext and adapt to its mode:
selectors can differ between the seeded isolated app and the live system,
and every mutating action is checked by the production safety guard first.
"""
from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional

from fieldservice_testing.models import DataContext, TestMode
from fieldservice_testing.naming import NamingConventionValidator
from fieldservice_testing.safety import ProductionSafetyGuard, SafetyOperation

from ui_tests.browser import Browser, ToolError
from ui_tests.config import settings


class PageContextError(RuntimeError):
    """Page object used without (or with an unusable) DataContext."""


@dataclass(frozen=True)
class ElementConfig:
    """Selectors for one element, per mode."""

    base_selector: str
    isolated_selector: Optional[str] = None
    production_selector: Optional[str] = None
    fallback_selector: Optional[str] = None
    required: bool = False


class ContextAwarePage:
    path = "/"
    # Category whose records must be present for validate_context()
    required_category: Optional[str] = None

    def __init__(self, browser: Browser) -> None:
        self.browser = browser
        self._context: Optional[DataContext] = None
        self._elements: Dict[str, ElementConfig] = {}
        self._default_guard: Optional[ProductionSafetyGuard] = None
        self.configure_elements()

    def configure_elements(self) -> None:
        """Register ``ElementConfig`` entries; subclasses override."""

    def register_element(self, key: str, config: ElementConfig) -> None:
        self._elements[key] = config

    # ---- context -------------------------------------------------------------
    def set_data_context(self, context: DataContext) -> None:
        self._context = context

    def get_data_context(self) -> Optional[DataContext]:
        return self._context

    def get_test_mode(self) -> Optional[TestMode]:
        return self._context.mode if self._context is not None else None

    def require_context(self) -> DataContext:
        if self._context is None:
            raise PageContextError(f"{type(self).__name__} has no DataContext; call set_data_context() first")
        return self._context

    def validate_context(self) -> bool:
        """Mode-appropriate sanity check of the attached DataContext.

        Production needs at least one marker-named test record in the
        page's category; isolated needs any records at all.
        """
        context = self._context
        if context is None or context.cleaned_up:
            return False

        data = context.test_data
        records = data.records(self.required_category) if self.required_category else data.all_records()
        if context.mode is TestMode.ISOLATED:
            return len(records) > 0

        validator = self._guard(context).validator
        return any(validator.validate_record(record) for record in records)

    # ---- selectors -------------------------------------------------------------
    def get_mode_specific_selector(self, base_selector: str, element_key: str) -> str:
        config = self._elements.get(element_key)
        mode = self.get_test_mode()
        if config is None or mode is None:
            return base_selector
        if mode is TestMode.ISOLATED:
            return config.isolated_selector or base_selector
        if mode is TestMode.PRODUCTION:
            return config.production_selector or base_selector
        return config.fallback_selector or base_selector

    def selector(self, element_key: str) -> str:
        config = self._elements.get(element_key)
        if config is None:
            raise KeyError(f"{type(self).__name__} has no element '{element_key}'")
        return self.get_mode_specific_selector(config.base_selector, element_key)

    async def missing_required_elements(self) -> List[str]:
        """Keys of required elements not visible on the current page."""
        missing = []
        for key, config in self._elements.items():
            if config.required and not await self.browser.is_visible(self.selector(key)):
                missing.append(key)
        return missing

    async def click_element(self, element_key: str) -> None:
        """Click using the mode selector, retrying once with the fallback selector."""
        selector = self.selector(element_key)
        try:
            await self.browser.click(selector)
        except ToolError:
            fallback = self._elements[element_key].fallback_selector
            if not fallback or fallback == selector:
                raise
            await self.browser.click(fallback)

    async def fill_element(self, element_key: str, value: str) -> None:
        await self.browser.fill(self.selector(element_key), value)

    async def open(self) -> None:
        await self.browser.goto(settings.url(self.path))

    # ---- safety ----------------------------------------------------------------
    def _guard(self, context: DataContext) -> ProductionSafetyGuard:
        if isinstance(context.guard, ProductionSafetyGuard):
            return context.guard
        if self._default_guard is None:
            self._default_guard = ProductionSafetyGuard(NamingConventionValidator())
        return self._default_guard

    def guard_mutation(self, operation: str, target_kind: str, target_name: str) -> None:
        """Raise SafetyViolationError before mutating a non-test entity in production."""
        context = self.require_context()
        self._guard(context).check(context.mode, SafetyOperation(target_name, target_kind, operation))

    def entity_name(self, name: str) -> str:
        """Display name to use for a new entity in the current mode."""
        context = self.require_context()
        if context.mode is TestMode.PRODUCTION:
            return self._guard(context).validator.apply(name)
        return name
