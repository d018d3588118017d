"""Find one cart product on one candidate site."""

from typing import List, Optional, Sequence
from urllib.parse import urlparse

import structlog
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from .browser import BrowserController
from .errors import PageInteractionError, UnitError
from .extractor import ContentExtractor
from .html_parser import parse_html
from .models import AlternativeProduct, CartProduct, ExtractedProduct, ExtractionMode
from .popups import PopupHandler
from .search_input import SearchInputLocator

logger = structlog.get_logger(__name__).bind(service="cartcompare")


def page_origin(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}"


def cheapest(products: Sequence[ExtractedProduct]) -> Optional[ExtractedProduct]:
    """Lowest priced product; the first one wins a tie."""
    best = None
    for product in products:
        if best is None or product.price < best.price:
            best = product
    return best


class SiteProductSearcher:
    """
    One unit of work: a single product looked up on a single site.

    A page is opened per unit and always closed. Unit failures are logged
    and reported as no match.
    """

    def __init__(
        self,
        browser: BrowserController,
        popups: PopupHandler,
        search_input: SearchInputLocator,
        extractor: ContentExtractor,
        search_results: int = 3,
    ):
        self.browser = browser
        self.popups = popups
        self.search_input = search_input
        self.extractor = extractor
        self.search_results = search_results

    async def _from_product_page(self, page: Page, site: str, product: CartProduct, url: str) -> List[ExtractedProduct]:
        await self.browser.goto(page, url)
        await self.popups.handle(page)

        try:
            html = await page.content()
        except PlaywrightError as e:
            raise PageInteractionError(page.url, str(e)) from e

        parsed = parse_html(html, page_origin(page.url))
        extracted = await self.extractor.extract(
            ExtractionMode.SINGLE_PRODUCT,
            content=parsed.visible_text,
            site=site,
            product_name=product.product_name,
        )
        return [item.model_copy(update={"url": item.url or page.url}) for item in extracted]

    async def _from_site_search(self, page: Page, site: str, product: CartProduct) -> List[ExtractedProduct]:
        await self.browser.goto(page, site)
        await self.popups.handle(page)

        try:
            handle = await self.search_input.locate(page)
            await self.search_input.perform_search(page, handle, product.product_name)
            html = await page.content()
        except PlaywrightError as e:
            raise PageInteractionError(page.url, str(e)) from e

        parsed = parse_html(html, page_origin(page.url))
        return await self.extractor.extract(
            ExtractionMode.SEARCH_RESULTS,
            content=parsed.visible_text,
            site=site,
            search_term=product.product_name,
            anchor_links=parsed.anchor_links,
            max_results=self.search_results,
        )

    async def _lookup(self, page: Page, site: str, product: CartProduct, known_url: Optional[str]) -> List[ExtractedProduct]:
        if known_url:
            try:
                return await self._from_product_page(page, site, product, known_url)
            except UnitError as e:
                logger.info(
                    "direct_product_page_failed",
                    site=site,
                    product=product.product_name,
                    url=known_url,
                    error_type=type(e).__name__,
                )

        return await self._from_site_search(page, site, product)

    async def find_product(
        self,
        site: str,
        product: CartProduct,
        known_url: Optional[str] = None,
    ) -> Optional[AlternativeProduct]:
        """
        Look a product up on a site and return its cheapest match.

        Args:
            site: Candidate hostname
            product: Cart product to find
            known_url: Product page seen during discovery, tried before site search

        Returns:
            Match priced for the cart quantity, or None
        """
        logger.debug("product_match_started", site=site, product=product.product_name)

        async with self.browser.page() as page:
            self.popups.register_dialog_handler(page)
            try:
                matches = await self._lookup(page, site, product, known_url)
            except UnitError as e:
                logger.info(
                    "product_match_failed",
                    site=site,
                    product=product.product_name,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                return None

        best = cheapest(matches)
        if best is None:
            logger.info("product_match_empty", site=site, product=product.product_name)
            return None

        logger.info(
            "product_matched",
            site=site,
            product=product.product_name,
            match=best.product_name,
            unit_price=str(best.price),
        )
        return AlternativeProduct(
            product_name=best.product_name,
            price=best.price * product.quantity,
            unit_price=best.price,
            quantity=product.quantity,
            url=best.url,
            site_url=site,
            description=best.description,
        )
