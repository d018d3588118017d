"""Find a site's search box and run a query through it."""

import asyncio
from typing import List

import structlog
from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .errors import SearchInputNotFoundError
from .html_parser import make_soup, rank_search_inputs

logger = structlog.get_logger(__name__).bind(service="cartcompare")


class SearchInputLocator:
    """Heuristic search-input discovery, verified against the live page."""

    def __init__(
        self,
        attempt_timeout: float = 1.5,
        search_timeout: float = 10.0,
        settle_delay: float = 2.0,
    ):
        """
        Initialize search input locator.

        Args:
            attempt_timeout: Wait per candidate selector (seconds)
            search_timeout: Wait for the results page to load (seconds)
            settle_delay: Extra wait for client-side rendering after a search (seconds)
        """
        self.attempt_timeout = attempt_timeout * 1000  # Convert to milliseconds
        self.search_timeout = search_timeout * 1000
        self.settle_delay = settle_delay

    def candidate_selectors(self, html: str) -> List[str]:
        return rank_search_inputs(make_soup(html))

    async def locate(self, page: Page) -> ElementHandle:
        """
        Return a handle to the first candidate selector that resolves visibly.

        Raises:
            SearchInputNotFoundError: no candidate resolved
        """
        selectors = self.candidate_selectors(await page.content())
        tried: List[str] = []

        for selector in selectors:
            tried.append(selector)
            try:
                handle = await page.wait_for_selector(
                    selector, state="visible", timeout=self.attempt_timeout
                )
            except PlaywrightError as e:
                logger.debug("search_input_candidate_failed", selector=selector, error=str(e))
                continue

            if handle is not None:
                logger.info("search_input_found", url=page.url, selector=selector)
                return handle

        logger.warning("search_input_not_found", url=page.url, tried=len(tried))
        raise SearchInputNotFoundError(page.url, tried)

    async def perform_search(self, page: Page, handle: ElementHandle, term: str) -> None:
        """Type the term, submit with Enter and wait for results to render."""
        logger.debug("search_submitting", url=page.url, term=term)
        await handle.fill(term)
        await handle.press("Enter")

        try:
            await page.wait_for_load_state("domcontentloaded", timeout=self.search_timeout)
        except PlaywrightTimeoutError:
            logger.debug("search_load_wait_timed_out", url=page.url)

        await asyncio.sleep(self.settle_delay)
        logger.info("search_submitted", url=page.url, term=term)
