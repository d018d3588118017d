"""Detect and dismiss cookie banners, consent walls and modal overlays."""

import asyncio
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Optional
from urllib.parse import urlparse

import structlog
from playwright.async_api import Dialog, Page
from playwright.async_api import Error as PlaywrightError

from .errors import PopupDismissError
from .html_parser import find_popup_candidates
from .models import PopupEvaluation

logger = structlog.get_logger(__name__).bind(service="cartcompare")

# Computed style check; getClientRects() is empty when an ancestor is display:none
VISIBILITY_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    const style = window.getComputedStyle(el);
    return el.getClientRects().length > 0
        && style.display !== 'none'
        && style.visibility !== 'hidden'
        && style.opacity !== '0';
}
"""

DOM_CLICK_SCRIPT = """
(selector) => {
    const el = document.querySelector(selector);
    if (!el) return false;
    el.click();
    return true;
}
"""


class PopupState(str, Enum):
    UNKNOWN = "unknown"
    POPUP_PRESENT = "popup_present"
    NO_POPUP = "no_popup"


class PopupHandler:
    """
    Popup state machine for a page: ``UNKNOWN -> {POPUP_PRESENT, NO_POPUP}``.

    Candidates come from the locally parsed DOM; the browser is only asked
    for computed visibility and to perform the click.
    """

    def __init__(
        self,
        max_popup_length: int = 5000,
        click_timeout: float = 2.0,
        settle_delay: float = 1.0,
        screenshot_dir: Optional[str] = None,
    ):
        """
        Initialize popup handler.

        Args:
            max_popup_length: Containers with larger inner HTML are not popups
            click_timeout: Timeout for scroll/click actions (seconds)
            settle_delay: Wait after a dismissal for the page to settle (seconds)
            screenshot_dir: Where to save a screenshot when dismissal fails
        """
        self.max_popup_length = max_popup_length
        self.click_timeout = click_timeout * 1000  # Convert to milliseconds
        self.settle_delay = settle_delay
        self.screenshot_dir = screenshot_dir

    @staticmethod
    def register_dialog_handler(page: Page) -> None:
        """Auto-dismiss native alert/confirm/prompt dialogs on the page."""

        async def _dismiss(dialog: Dialog) -> None:
            logger.debug("dialog_dismissed", dialog_type=dialog.type, message=dialog.message[:200])
            await dialog.dismiss()

        page.on("dialog", _dismiss)

    async def is_visible(self, page: Page, selector: str) -> bool:
        return bool(await page.evaluate(VISIBILITY_SCRIPT, selector))

    async def detect(self, page: Page) -> PopupEvaluation:
        """
        Find the first visible popup with a dismiss control.

        Detection problems are logged and reported as no popup.
        """
        try:
            html = await page.content()
            candidates = find_popup_candidates(html, self.max_popup_length)

            for candidate in candidates:
                if await self.is_visible(page, candidate.container_selector):
                    logger.info(
                        "popup_detected",
                        url=page.url,
                        container_selector=candidate.container_selector,
                        reject_selector=candidate.reject_selector,
                        popup_length=candidate.length,
                    )
                    return candidate
        except PlaywrightError as e:
            logger.warning("popup_detection_failed", url=page.url, error=str(e))

        logger.debug("no_popup_detected", url=page.url)
        return PopupEvaluation(is_popup=False)

    async def _click(self, page: Page, selector: str) -> bool:
        locator = page.locator(selector).first
        await locator.scroll_into_view_if_needed(timeout=self.click_timeout)
        await locator.click(timeout=self.click_timeout)
        return True

    async def _dom_click(self, page: Page, selector: str) -> bool:
        return bool(await page.evaluate(DOM_CLICK_SCRIPT, selector))

    async def _press_escape(self, page: Page, selector: str) -> bool:
        await page.keyboard.press("Escape")
        await asyncio.sleep(self.settle_delay)
        return not await self.is_visible(page, selector)

    async def _capture_screenshot(self, page: Page) -> Optional[str]:
        if not self.screenshot_dir:
            return None

        hostname = urlparse(page.url).hostname or "unknown"
        timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%f")
        path = Path(self.screenshot_dir) / f"popup-{hostname}-{timestamp}.png"
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            await page.screenshot(path=str(path), full_page=True)
        except (PlaywrightError, OSError) as e:
            logger.warning("popup_screenshot_failed", url=page.url, error=str(e))
            return None

        logger.info("popup_screenshot_saved", path=str(path))
        return str(path)

    async def dismiss(self, page: Page, selector: str, container_selector: Optional[str] = None) -> str:
        """
        Dismiss a popup: real click, then DOM click, then Escape.

        Args:
            page: Page showing the popup
            selector: Dismiss control
            container_selector: Popup container; Escape succeeds once it is
                no longer visible (the control itself when not given)

        Returns:
            Name of the strategy that worked

        Raises:
            PopupDismissError: when every strategy fails
        """
        strategies = [
            ("click", self._click, selector),
            ("dom_click", self._dom_click, selector),
            ("escape", self._press_escape, container_selector or selector),
        ]

        for name, strategy, target in strategies:
            try:
                if not await strategy(page, target):
                    continue
            except PlaywrightError as e:
                logger.debug(
                    "popup_dismiss_strategy_failed",
                    strategy=name,
                    selector=selector,
                    error=str(e),
                )
                continue

            if name != "escape":
                await asyncio.sleep(self.settle_delay)
            logger.info("popup_dismissed", strategy=name, selector=selector, url=page.url)
            return name

        screenshot_path = await self._capture_screenshot(page)
        logger.error("popup_dismiss_failed", selector=selector, url=page.url)
        raise PopupDismissError(selector, page.url, screenshot_path)

    async def handle(self, page: Page) -> PopupState:
        """
        Detect and dismiss a popup on the page.

        Returns:
            Resolved state for the page

        Raises:
            PopupDismissError: popup found but could not be dismissed
        """
        evaluation = await self.detect(page)
        if not evaluation.is_popup:
            return PopupState.NO_POPUP

        await self.dismiss(page, evaluation.reject_selector, evaluation.container_selector)
        return PopupState.POPUP_PRESENT
