"""Turn page text into structured product records with a generative model."""

from decimal import Decimal
from typing import List, Optional, Sequence

import structlog
from pydantic import BaseModel, Field

from .cache import ResultCache, make_key
from .errors import ExtractionError
from .llm import GenerativeModel
from .models import AnchorLink, ExtractedProduct, ExtractionMode

logger = structlog.get_logger(__name__).bind(service="cartcompare")

# Bump when prompts or schemas change so stale cache entries are not reused
PROMPT_VERSION = "2"

LINK_SEPARATOR = "|||"


class SearchItem(BaseModel):
    product_name: str = Field(description="Product title as shown on the page")
    price: float = Field(description="Current price as a plain number, without currency symbol")


class SearchItems(BaseModel):
    products: List[SearchItem] = Field(default_factory=list)


class MappedItem(SearchItem):
    url: str = Field(default="", description="Matching product URL, or empty string if none")


class MappedItems(BaseModel):
    products: List[MappedItem] = Field(default_factory=list)


class SingleProduct(BaseModel):
    product_name: Optional[str] = Field(default=None, description="Product title")
    price: Optional[float] = Field(default=None, description="Current selling price as a plain number")
    description: Optional[str] = Field(default=None, description="Short product description")


SEARCH_RESULTS_PROMPT = """You are reading the visible text of an online store's search results page.
The shopper searched for: "{search_term}"

List the first {max_results} products on the page with their titles and current prices.
Ignore adverts, navigation and recommendations unrelated to the search.
Prices are plain numbers without currency symbols or thousands separators.

Page text:
{content}"""

LINK_MAPPING_PROMPT = """Map these products to the most relevant URLs.

Products (title{sep}price):
{products}

URLs (href{sep}link text):
{links}

Search term: "{search_term}"

Return every product with its title, price and url. Only use URLs from the list above.
Use an empty string for url if no match is found."""

SINGLE_PRODUCT_PROMPT = """You are reading the visible text of a single product page in an online store.
The shopper is looking for: "{product_name}"

Extract the product title, its current selling price as a plain number and a one sentence description.
Leave a field empty if the page does not show it.

Page text:
{content}"""


def _to_decimal(value: float) -> Decimal:
    return Decimal(str(value))


class ContentExtractor:
    """
    Extract products from page text via schema-constrained prompts.

    Results are cached by a hash of the inputs and the prompt version.
    """

    def __init__(
        self,
        model: GenerativeModel,
        cache: Optional[ResultCache] = None,
        max_content_chars: int = 60000,
        max_anchor_links: int = 200,
        cache_ttl: Optional[int] = None,
    ):
        """
        Initialize content extractor.

        Args:
            model: Structured-output generative model
            cache: Result cache (None disables caching)
            max_content_chars: Page text is truncated to this length before prompting
            max_anchor_links: Most anchors offered for link mapping
            cache_ttl: TTL for cached results (seconds); cache default when None
        """
        self.model = model
        self.cache = cache or ResultCache(None)
        self.max_content_chars = max_content_chars
        self.max_anchor_links = max_anchor_links
        self.cache_ttl = cache_ttl

    def _truncate(self, content: str) -> str:
        if len(content) <= self.max_content_chars:
            return content
        logger.debug("content_truncated", original=len(content), limit=self.max_content_chars)
        return content[: self.max_content_chars]

    async def extract(
        self,
        mode: ExtractionMode,
        *,
        content: str,
        site: str,
        search_term: Optional[str] = None,
        anchor_links: Sequence[AnchorLink] = (),
        max_results: int = 3,
        product_name: Optional[str] = None,
    ) -> List[ExtractedProduct]:
        """
        Extract products from a page.

        Args:
            mode: SEARCH_RESULTS (needs search_term, anchor_links, max_results)
                or SINGLE_PRODUCT (needs product_name)
            content: Visible page text
            site: Site hostname, part of the cache key

        Returns:
            Extracted products; a single-product page yields exactly one

        Raises:
            ExtractionError: model failure or unusable output
        """
        content = self._truncate(content or "")
        term = search_term if mode == ExtractionMode.SEARCH_RESULTS else product_name
        key = make_key(
            mode=mode.value,
            content=content,
            site=site,
            term=term,
            max_results=max_results,
            prompt_version=PROMPT_VERSION,
        )

        cached = await self.cache.get(key)
        if cached is not None:
            try:
                products = [ExtractedProduct.model_validate(item) for item in cached]
            except (TypeError, ValueError):
                logger.warning("cached_extraction_invalid", site=site, mode=mode.value)
            else:
                logger.info("extraction_cache_hit", site=site, mode=mode.value, count=len(products))
                return products

        if mode == ExtractionMode.SEARCH_RESULTS:
            products, cacheable = await self._extract_search_results(
                content, search_term or "", list(anchor_links), max_results
            )
        elif mode == ExtractionMode.SINGLE_PRODUCT:
            products = [await self._extract_single_product(content, product_name or "")]
            cacheable = True
        else:
            raise ExtractionError(f"Unsupported extraction mode: {mode}")

        if cacheable:
            await self.cache.set(
                key,
                [product.model_dump(mode="json") for product in products],
                ttl=self.cache_ttl,
            )

        logger.info("extraction_completed", site=site, mode=mode.value, count=len(products))
        return products

    async def _extract_search_results(
        self,
        content: str,
        search_term: str,
        anchor_links: List[AnchorLink],
        max_results: int,
    ):
        prompt = SEARCH_RESULTS_PROMPT.format(
            search_term=search_term, max_results=max_results, content=content
        )
        result = await self.model.generate(prompt, SearchItems)
        items = result.products[:max_results]
        if not items:
            return [], True

        if not anchor_links:
            logger.debug("link_mapping_skipped", reason="no_anchor_links")
            return self._without_urls(items), True

        try:
            mapped = await self._map_links(items, anchor_links, search_term)
        except ExtractionError as e:
            # Items are still usable, just not linkable; keep them out of the cache
            logger.warning("link_mapping_failed", search_term=search_term, error=str(e))
            return self._without_urls(items), False

        return mapped, True

    async def _map_links(
        self, items: List[SearchItem], anchor_links: List[AnchorLink], search_term: str
    ) -> List[ExtractedProduct]:
        anchors = anchor_links[: self.max_anchor_links]
        prompt = LINK_MAPPING_PROMPT.format(
            sep=LINK_SEPARATOR,
            products="\n".join(f"{item.product_name}{LINK_SEPARATOR}{item.price}" for item in items),
            links="\n".join(f"{link.href}{LINK_SEPARATOR}{link.inner_text}" for link in anchors),
            search_term=search_term,
        )
        result = await self.model.generate(prompt, MappedItems)
        if not result.products:
            raise ExtractionError("Link mapping returned no products")

        known = {link.href for link in anchors}
        products = []
        for item in result.products[: len(items)]:
            url = item.url if item.url in known else ""
            products.append(
                ExtractedProduct(
                    product_name=item.product_name,
                    price=_to_decimal(item.price),
                    url=url,
                )
            )
        return products

    @staticmethod
    def _without_urls(items: List[SearchItem]) -> List[ExtractedProduct]:
        return [
            ExtractedProduct(product_name=item.product_name, price=_to_decimal(item.price))
            for item in items
        ]

    async def _extract_single_product(self, content: str, product_name: str) -> ExtractedProduct:
        prompt = SINGLE_PRODUCT_PROMPT.format(product_name=product_name, content=content)
        result = await self.model.generate(prompt, SingleProduct)

        if not result.product_name or result.price is None:
            raise ExtractionError("Product page did not yield a name and price")

        return ExtractedProduct(
            product_name=result.product_name,
            price=_to_decimal(result.price),
            description=result.description,
        )
