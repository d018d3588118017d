"""Headless browser lifecycle for a comparison session."""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Callable, Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright.async_api import async_playwright

from .errors import BrowserNotInitializedError, NavigationError
from .stealth import STEALTH_ARGS, apply_stealth, get_stealth_context_options

logger = structlog.get_logger(__name__).bind(service="cartcompare")


def normalize_url(url: str) -> str:
    """
    Turn a hostname or URL into an absolute URL, defaulting to https.

    Raises:
        NavigationError: if no host can be derived
    """
    candidate = (url or "").strip()
    if not candidate.startswith(("http://", "https://")):
        candidate = "https://" + candidate.lstrip("/")

    parsed = urlparse(candidate)
    if not parsed.netloc or " " in parsed.netloc:
        raise NavigationError(url, "invalid URL")
    return candidate


class BrowserController:
    """
    Owns one Chromium process and hands out single-use pages.

    ``initialize()`` is idempotent; after ``close()`` the controller must be
    initialized again before new pages can be opened.
    """

    def __init__(
        self,
        headless: bool = True,
        navigation_timeout: float = 5.0,
        locale: str = "en-ZA",
        timezone_id: str = "Africa/Johannesburg",
        playwright_factory: Callable = async_playwright,
    ):
        """
        Initialize browser controller.

        Args:
            headless: Launch Chromium without a window
            navigation_timeout: Default per-page timeout (seconds)
            locale: Browser locale for page contexts
            timezone_id: Timezone for page contexts
            playwright_factory: Returns a Playwright context manager (injectable for tests)
        """
        self.headless = headless
        self.navigation_timeout = navigation_timeout * 1000  # Convert to milliseconds
        self.locale = locale
        self.timezone_id = timezone_id
        self._playwright_factory = playwright_factory
        self._playwright = None
        self._browser = None
        self._lock = asyncio.Lock()

    @property
    def is_initialized(self) -> bool:
        return self._browser is not None

    async def initialize(self) -> None:
        """Launch the browser unless it is already running."""
        async with self._lock:
            if self._browser is not None:
                return

            self._playwright = await self._playwright_factory().start()
            self._browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=STEALTH_ARGS,
            )
            logger.info("browser_initialized", headless=self.headless)

    async def new_page(self) -> Page:
        """
        Open a page in a fresh context with stealth and default timeouts.

        Raises:
            BrowserNotInitializedError: if ``initialize()`` has not been awaited
        """
        if self._browser is None:
            raise BrowserNotInitializedError("Browser not initialized")

        context = await self._browser.new_context(
            **get_stealth_context_options(self.locale, self.timezone_id)
        )
        page = await context.new_page()
        await apply_stealth(page)
        page.set_default_timeout(self.navigation_timeout)
        page.set_default_navigation_timeout(self.navigation_timeout)
        return page

    async def close_page(self, page: Page) -> None:
        """Close a page together with its context."""
        try:
            await page.context.close()
        except PlaywrightError as e:
            logger.debug("page_close_failed", error=str(e))

    @asynccontextmanager
    async def page(self) -> AsyncIterator[Page]:
        """Yield a new page and always close it afterwards."""
        page = await self.new_page()
        try:
            yield page
        finally:
            await self.close_page(page)

    async def goto(
        self,
        page: Page,
        url: str,
        wait_until: str = "domcontentloaded",
        timeout: Optional[float] = None,
    ) -> str:
        """
        Navigate a page, normalizing the target URL first.

        Args:
            page: Page to navigate
            url: Hostname or URL
            wait_until: Playwright load state to wait for
            timeout: Override in seconds (defaults to the controller timeout)

        Returns:
            The absolute URL that was requested

        Raises:
            NavigationError: on invalid URL, timeout or network failure
        """
        target = normalize_url(url)
        timeout_ms = timeout * 1000 if timeout is not None else self.navigation_timeout

        logger.debug("navigation_started", url=target, timeout_ms=timeout_ms)
        try:
            await page.goto(target, wait_until=wait_until, timeout=timeout_ms)
        except PlaywrightTimeoutError as e:
            raise NavigationError(target, "timeout") from e
        except PlaywrightError as e:
            raise NavigationError(target, str(e)) from e

        return target

    async def close(self) -> None:
        """Release the browser process."""
        async with self._lock:
            if self._browser is not None:
                await self._browser.close()
                self._browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            logger.info("browser_closed")

    async def __aenter__(self) -> "BrowserController":
        await self.initialize()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        await self.close()
