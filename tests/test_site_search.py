"""Tests for the per-site product lookup."""

from decimal import Decimal

import pytest

from cartcompare.browser import BrowserController
from cartcompare.extractor import ContentExtractor
from cartcompare.models import CartProduct, ExtractedProduct
from cartcompare.popups import PopupHandler
from cartcompare.search_input import SearchInputLocator
from cartcompare.site_search import SiteProductSearcher, cheapest
from conftest import FakeModel, FakePage, FakePlaywright

HOME_HTML = """
<html><body>
    <form role="search"><input type="search" id="q" name="q"></form>
    <h1>Alt Store</h1>
</body></html>
"""

PRODUCT_HTML = "<html><body><h1>Gadget X</h1><span>R 39.50</span></body></html>"

SEARCH_ITEMS = {
    "products": [
        {"product_name": "Widget Pro", "price": 120},
        {"product_name": "Widget Basic", "price": 80},
    ]
}
MAPPED_ITEMS = {
    "products": [
        {"product_name": "Widget Pro", "price": 120, "url": "https://alt.co.za/p/widget-pro"},
        {"product_name": "Widget Basic", "price": 80, "url": "https://alt.co.za/p/widget-basic"},
    ]
}


def _searcher(model, search_results_html, resolvable=("#q",), failing_routes=(), content_failing_urls=()):
    def page_factory():
        return FakePage(
            routes={
                "https://alt.co.za": HOME_HTML,
                "https://alt.co.za/p/gadget-x": PRODUCT_HTML,
            },
            failing_routes=set(failing_routes),
            content_failing_urls=set(content_failing_urls),
            resolvable=set(resolvable),
            search_results_html=search_results_html,
        )

    playwright = FakePlaywright(page_factory)
    browser = BrowserController(playwright_factory=playwright)
    searcher = SiteProductSearcher(
        browser,
        PopupHandler(settle_delay=0),
        SearchInputLocator(attempt_timeout=0.1, search_timeout=0.1, settle_delay=0),
        ContentExtractor(model),
        search_results=3,
    )
    return searcher, browser, playwright


class TestCheapest:
    """Test cheapest match selection."""

    def test_lowest_price_wins_and_first_breaks_ties(self):
        products = [
            ExtractedProduct(product_name="A", price=Decimal("20")),
            ExtractedProduct(product_name="B", price=Decimal("10")),
            ExtractedProduct(product_name="C", price=Decimal("10")),
        ]

        assert cheapest(products).product_name == "B"
        assert cheapest([]) is None


class TestSiteProductSearcher:
    """Test SiteProductSearcher.find_product."""

    @pytest.mark.asyncio
    async def test_site_search_picks_cheapest_and_scales_quantity(self, search_results_html):
        model = FakeModel({"SearchItems": [SEARCH_ITEMS], "MappedItems": [MAPPED_ITEMS]})
        searcher, browser, playwright = _searcher(model, search_results_html)
        product = CartProduct(product_name="Widget", price=Decimal("100"), quantity=3)

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product)
        await browser.close()

        assert match.product_name == "Widget Basic"
        assert match.unit_price == Decimal("80")
        assert match.price == Decimal("240")
        assert match.quantity == 3
        assert match.url == "https://alt.co.za/p/widget-basic"
        assert match.site_url == "alt.co.za"
        assert playwright.chromium.contexts[0].closed is True

    @pytest.mark.asyncio
    async def test_known_url_uses_product_page(self, search_results_html):
        model = FakeModel({"SingleProduct": [{"product_name": "Gadget X", "price": 39.5}]})
        searcher, browser, _ = _searcher(model, search_results_html)
        product = CartProduct(product_name="Gadget", price=Decimal("50"), quantity=2)

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product, "https://alt.co.za/p/gadget-x")
        await browser.close()

        assert match.product_name == "Gadget X"
        assert match.price == Decimal("79.0")
        assert match.url == "https://alt.co.za/p/gadget-x"
        assert model.prompts[0][0] == "SingleProduct"

    @pytest.mark.asyncio
    async def test_broken_known_url_falls_back_to_site_search(self, search_results_html):
        model = FakeModel({"SearchItems": [SEARCH_ITEMS], "MappedItems": [MAPPED_ITEMS]})
        searcher, browser, _ = _searcher(
            model, search_results_html, failing_routes={"https://alt.co.za/p/gadget-x"}
        )
        product = CartProduct(product_name="Widget", price=Decimal("100"))

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product, "https://alt.co.za/p/gadget-x")
        await browser.close()

        assert match.product_name == "Widget Basic"

    @pytest.mark.asyncio
    async def test_unreadable_known_url_falls_back_to_site_search(self, search_results_html):
        model = FakeModel({"SearchItems": [SEARCH_ITEMS], "MappedItems": [MAPPED_ITEMS]})
        searcher, browser, _ = _searcher(
            model, search_results_html, content_failing_urls={"https://alt.co.za/p/gadget-x"}
        )
        product = CartProduct(product_name="Widget", price=Decimal("100"))

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product, "https://alt.co.za/p/gadget-x")
        await browser.close()

        assert match.product_name == "Widget Basic"
        assert [name for name, _ in model.prompts] == ["SearchItems", "MappedItems"]

    @pytest.mark.asyncio
    async def test_browser_error_after_search_is_no_match(self, search_results_html):
        model = FakeModel()
        searcher, browser, playwright = _searcher(
            model, search_results_html, content_failing_urls={"https://alt.co.za/search"}
        )
        product = CartProduct(product_name="Widget", price=Decimal("100"))

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product)
        await browser.close()

        assert match is None
        assert model.prompts == []
        assert playwright.chromium.contexts[0].closed is True

    @pytest.mark.asyncio
    async def test_unit_failure_is_no_match_and_page_closed(self, search_results_html):
        model = FakeModel()
        searcher, browser, playwright = _searcher(model, search_results_html, resolvable=())
        product = CartProduct(product_name="Widget", price=Decimal("100"))

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product)
        await browser.close()

        assert match is None
        assert model.prompts == []
        assert playwright.chromium.contexts[0].closed is True

    @pytest.mark.asyncio
    async def test_empty_results_is_no_match(self, search_results_html):
        model = FakeModel({"SearchItems": [{"products": []}]})
        searcher, browser, _ = _searcher(model, search_results_html)
        product = CartProduct(product_name="Widget", price=Decimal("100"))

        await browser.initialize()
        match = await searcher.find_product("alt.co.za", product)
        await browser.close()

        assert match is None
