"""Data models for the comparison engine."""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Dict, List, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    computed_field,
    model_validator,
)
from pydantic.alias_generators import to_camel

# Decimal internally, plain JSON number at the boundary
Money = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class CamelModel(BaseModel):
    """Base model accepting and emitting camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class CartProduct(CamelModel):
    """Product captured from the user's cart."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    product_name: str = Field(min_length=1)
    price: Money = Field(ge=0)
    quantity: int = Field(default=1, ge=1)

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity


class OriginalCart(CamelModel):
    """The user's cart, in capture order."""

    products: List[CartProduct]

    def get_total_price(self) -> Decimal:
        return sum((p.line_total for p in self.products), Decimal("0"))

    @computed_field
    @property
    def total_price(self) -> Money:
        return self.get_total_price()


class AlternativeProduct(CamelModel):
    """A product matched on a candidate site. ``price`` is quantity scaled."""

    product_name: str
    price: Money
    url: str = ""
    site_url: str
    description: Optional[str] = None
    unit_price: Optional[Money] = None
    quantity: int = 1


class AlternativeCart(CamelModel):
    """
    A full cart rebuilt from one candidate site.

    ``products`` is index aligned with ``original_products``; a cart with a
    missing product cannot be constructed.
    """

    products: List[AlternativeProduct]
    original_products: List[CartProduct]

    @model_validator(mode="after")
    def _require_complete(self) -> "AlternativeCart":
        if len(self.products) != len(self.original_products):
            raise ValueError(
                f"Alternative cart has {len(self.products)} products, "
                f"expected {len(self.original_products)}"
            )
        return self

    @property
    def site_url(self) -> str:
        return self.products[0].site_url if self.products else ""

    def get_total_price(self) -> Decimal:
        return sum((p.price for p in self.products), Decimal("0"))

    def get_potential_savings(self) -> Decimal:
        original_total = OriginalCart(products=self.original_products).get_total_price()
        return max(Decimal("0"), original_total - self.get_total_price())

    @computed_field
    @property
    def total_price(self) -> Money:
        return self.get_total_price()

    @computed_field
    @property
    def potential_savings(self) -> Money:
        return self.get_potential_savings()


class HostnameScore(CamelModel):
    """Ranking signal for one candidate retailer hostname."""

    hostname: str
    normalized_hostname: str
    raw_score: float = 0.0
    appearances: int = 0
    score: float = 0.0
    product_urls: Dict[str, str] = Field(default_factory=dict)


class PopupEvaluation(BaseModel):
    """Transient result of popup detection on a page."""

    is_popup: bool
    container_selector: Optional[str] = None
    reject_selector: Optional[str] = None
    length: Optional[int] = None


class SearchResult(BaseModel):
    """Single item returned by the web search API."""

    model_config = ConfigDict(extra="ignore")

    title: str = ""
    link: str
    snippet: str = ""


class AnchorLink(BaseModel):
    """Anchor with an image descendant, as seen on a results page."""

    inner_text: str
    href: str


class ParsedContent(BaseModel):
    """Locally parsed page content."""

    visible_text: str = ""
    anchor_links: List[AnchorLink] = Field(default_factory=list)


class ExtractionMode(str, Enum):
    """What kind of page the extractor is looking at."""

    SEARCH_RESULTS = "search_results"
    SINGLE_PRODUCT = "single_product"


class ExtractedProduct(BaseModel):
    """Structured product record produced by extraction."""

    product_name: str
    price: Decimal
    url: str = ""
    description: Optional[str] = None


class ComparisonRequest(CamelModel):
    """Request body accepted at the HTTP boundary."""

    cart_products: List[CartProduct] = Field(min_length=1)
    hostname: str = ""


class ComparisonResult(CamelModel):
    """Outcome of one comparison run."""

    original_cart: OriginalCart
    alternative_carts: List[AlternativeCart] = Field(default_factory=list)
    candidates: int = 0
    attempts: int = 0
    started_at: datetime
    completed_at: Optional[datetime] = None
    duration_seconds: Optional[float] = None
