from ui_tests.pages.base import ContextAwarePage, ElementConfig, PageContextError
from ui_tests.pages.customers import CustomersPage
from ui_tests.pages.routes import RoutesPage

__all__ = ["ContextAwarePage", "CustomersPage", "ElementConfig", "PageContextError", "RoutesPage"]
