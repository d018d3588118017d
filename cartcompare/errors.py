"""Error types raised by the comparison engine."""

from typing import List, Optional


class CartCompareError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(CartCompareError):
    """Required configuration or credentials are missing. Fatal at startup."""

    def __init__(self, message: str, missing: Optional[List[str]] = None):
        super().__init__(message)
        self.missing = missing or []


class UnitError(CartCompareError):
    """
    A single unit of work (one product on one site) failed.

    Callers recover locally: the unit is excluded from results.
    """


class BrowserNotInitializedError(UnitError):
    """A page was requested before the browser was launched."""


class NavigationError(UnitError):
    """Navigation to a URL failed or timed out."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Navigation to {url} failed: {reason}")
        self.url = url
        self.reason = reason


class PopupDismissError(UnitError):
    """A detected popup could not be dismissed by any strategy."""

    def __init__(self, selector: str, page_url: str, screenshot_path: Optional[str] = None):
        super().__init__(f"Could not dismiss popup {selector!r} on {page_url}")
        self.selector = selector
        self.page_url = page_url
        self.screenshot_path = screenshot_path


class SearchInputNotFoundError(UnitError):
    """No usable search input was found on the page."""

    def __init__(self, page_url: str, tried: Optional[List[str]] = None):
        tried = tried or []
        super().__init__(
            f"No search input found on {page_url} (tried {len(tried)} selectors)"
        )
        self.page_url = page_url
        self.tried = tried


class ExtractionError(UnitError):
    """The generative model failed to produce a usable structured result."""


class PageInteractionError(UnitError):
    """The browser failed while reading or driving an already open page."""

    def __init__(self, url: str, reason: str):
        super().__init__(f"Page interaction on {url} failed: {reason}")
        self.url = url
        self.reason = reason
