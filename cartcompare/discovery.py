"""Discover and rank alternative retailer hostnames for a cart."""

import asyncio
import re
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence
from urllib.parse import urlparse

import structlog
from rapidfuzz.distance import Levenshtein

from .models import CartProduct, HostnameScore, SearchResult
from .search_engine import SearchEngine

logger = structlog.get_logger(__name__).bind(service="cartcompare")

DEFAULT_EXCLUDED_DOMAINS = ["youtube.com", "facebook.com", "twitter.com", "instagram.com"]
DEFAULT_SITE_FILTERS = [".co.za", ".com"]

OUT_OF_STOCK_PHRASES = [
    "out of stock",
    "sold out",
    "unavailable",
    "no stock",
    "not available",
    "back order",
    "pre order",
    "discontinued",
]
MAX_PHRASE_WORDS = 5

# Positive availability wording sits within fuzzy distance of the negative
# phrases ("in stock" vs "no stock", "available" vs "unavailable")
IN_STOCK_PATTERN = re.compile(r"\bin[\s-]stock\b|(?<!not )\bavailable\b", re.IGNORECASE)


def normalize_hostname(url: str) -> str:
    """
    Reduce a URL (or bare host) to a lowercase hostname without ``www.``.

    Returns an empty string when no hostname can be recovered.
    """
    url = (url or "").strip()
    if not url:
        return ""
    if "://" not in url:
        url = f"http://{url}"
    try:
        hostname = urlparse(url).hostname or ""
    except ValueError:
        return ""
    hostname = hostname.lower()
    if hostname.startswith("www."):
        hostname = hostname[4:]
    return hostname


def hostname_pattern(hostname: str) -> Optional[re.Pattern]:
    """Regex matching ``hostname`` and its subdomains (``www.`` included)."""
    normalized = normalize_hostname(hostname)
    if not normalized:
        return None
    return re.compile(r"(?:^|\.)" + re.escape(normalized) + r"$", re.IGNORECASE)


def closest_phrase_distance(text: str, phrases: Sequence[str]) -> float:
    """
    Smallest relative edit distance between any phrase and any run of
    1-5 consecutive words in ``text``.
    """
    words = re.sub(r"\s+", " ", text.lower()).strip().split(" ")
    best = 1.0
    for start in range(len(words)):
        for end in range(start + 1, min(start + MAX_PHRASE_WORDS, len(words)) + 1):
            chunk = " ".join(words[start:end])
            for phrase in phrases:
                distance = Levenshtein.normalized_distance(chunk, phrase)
                if distance < best:
                    best = distance
    return best


@dataclass
class _HostnameTally:
    points: int = 0
    appearances: int = 0
    product_urls: Dict[str, str] = field(default_factory=dict)


class HostnameDiscovery:
    """
    Turn a cart into candidate retailer hostnames ranked by search presence.

    Every product is searched; a hostname scores well when it appears for
    many products and near the top of the results.
    """

    def __init__(
        self,
        search_engine: SearchEngine,
        max_results: int = 10,
        batch_size: int = 3,
        stagger_delay: float = 0.2,
        min_score: float = 0.3,
        intent_keywords: str = "buy price",
        site_filters: Optional[Iterable[str]] = None,
        excluded_domains: Optional[Iterable[str]] = None,
        out_of_stock_threshold: float = 0.3,
    ):
        """
        Initialize hostname discovery.

        Args:
            search_engine: Web search collaborator
            max_results: Results requested per product query
            batch_size: Product searches run concurrently per batch
            stagger_delay: Delay between launches within a batch (seconds)
            min_score: Hostnames must score strictly above this
            intent_keywords: Purchase-intent words appended to queries
            site_filters: Allowed hostname suffixes, also used as ``site:`` filters
            excluded_domains: Hostnames never returned
            out_of_stock_threshold: Relative edit distance below which a
                result counts as out of stock
        """
        self.search_engine = search_engine
        self.max_results = max_results
        self.batch_size = max(1, batch_size)
        self.stagger_delay = stagger_delay
        self.min_score = min_score
        self.intent_keywords = intent_keywords
        self.site_filters = list(site_filters if site_filters is not None else DEFAULT_SITE_FILTERS)
        self.excluded_domains = [
            normalize_hostname(d)
            for d in (excluded_domains if excluded_domains is not None else DEFAULT_EXCLUDED_DOMAINS)
        ]
        self.out_of_stock_threshold = out_of_stock_threshold

    def build_query(self, product_name: str, current_hostname: str = "") -> str:
        parts = [product_name, self.intent_keywords]
        if self.site_filters:
            parts.append(" OR ".join(f"site:{suffix}" for suffix in self.site_filters))
        current = normalize_hostname(current_hostname)
        if current:
            parts.append(f"-site:{current}")
        return " ".join(part for part in parts if part)

    def is_allowed(self, hostname: str) -> bool:
        if not hostname:
            return False
        for domain in self.excluded_domains:
            if hostname == domain or hostname.endswith("." + domain):
                return False
        if self.site_filters:
            return any(hostname.endswith(suffix) for suffix in self.site_filters)
        return True

    def is_out_of_stock(self, result: SearchResult) -> bool:
        text = IN_STOCK_PATTERN.sub(" ", f"{result.title} {result.snippet}").strip()
        if not text:
            return False
        return closest_phrase_distance(text, OUT_OF_STOCK_PHRASES) < self.out_of_stock_threshold

    async def _search_product(
        self, product: CartProduct, current_hostname: str, delay: float, max_results: int
    ) -> List[SearchResult]:
        if delay:
            await asyncio.sleep(delay)
        return await self.search_engine.search(
            self.build_query(product.product_name, current_hostname), max_results
        )

    async def _search_all(
        self, cart_products: Sequence[CartProduct], current_hostname: str, max_results: int
    ) -> List[List[SearchResult]]:
        all_results: List[List[SearchResult]] = []

        for start in range(0, len(cart_products), self.batch_size):
            batch = cart_products[start : start + self.batch_size]
            outcomes = await asyncio.gather(
                *[
                    self._search_product(
                        product, current_hostname, index * self.stagger_delay, max_results
                    )
                    for index, product in enumerate(batch)
                ],
                return_exceptions=True,
            )

            for product, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(
                        "product_search_failed",
                        product=product.product_name,
                        error=str(outcome),
                    )
                    all_results.append([])
                else:
                    all_results.append(outcome)

        return all_results

    def _tally(
        self,
        cart_products: Sequence[CartProduct],
        all_results: Sequence[List[SearchResult]],
        current_hostname: str,
        max_results: int,
    ) -> Dict[str, _HostnameTally]:
        current = hostname_pattern(current_hostname)
        tallies: Dict[str, _HostnameTally] = {}

        for product, results in zip(cart_products, all_results):
            seen = set()
            for rank, result in enumerate(results[:max_results]):
                hostname = normalize_hostname(result.link)
                if not self.is_allowed(hostname):
                    continue
                if current is not None and current.search(hostname):
                    continue
                if hostname in seen:
                    continue
                if self.is_out_of_stock(result):
                    logger.debug(
                        "out_of_stock_result_skipped",
                        product=product.product_name,
                        hostname=hostname,
                    )
                    continue

                # Count a hostname once per product, at its best rank
                seen.add(hostname)
                tally = tallies.setdefault(hostname, _HostnameTally())
                tally.points += max_results - rank
                tally.appearances += 1
                tally.product_urls.setdefault(product.product_name, result.link)

        return tallies

    async def discover(
        self,
        cart_products: Sequence[CartProduct],
        current_hostname: str = "",
        max_results: Optional[int] = None,
    ) -> List[HostnameScore]:
        """
        Search for every product and rank the hostnames that come back.

        Args:
            cart_products: Products in the cart
            current_hostname: Site the user is on; never returned
            max_results: Results per query (defaults to the configured value)

        Returns:
            Hostnames scoring above the threshold, best first; ties by name
        """
        max_results = max_results or self.max_results
        total = len(cart_products)
        if total == 0:
            return []

        logger.info("discovery_started", products=total, current_hostname=current_hostname)

        all_results = await self._search_all(cart_products, current_hostname, max_results)
        tallies = self._tally(cart_products, all_results, current_hostname, max_results)

        scores = []
        for hostname, tally in tallies.items():
            raw_score = tally.points / max_results
            score = (raw_score / total) * (tally.appearances / total)
            if score <= self.min_score:
                continue
            scores.append(
                HostnameScore(
                    hostname=hostname,
                    normalized_hostname=hostname,
                    raw_score=raw_score,
                    appearances=tally.appearances,
                    score=score,
                    product_urls=tally.product_urls,
                )
            )

        scores.sort(key=lambda s: (-s.score, s.hostname))

        logger.info(
            "discovery_completed",
            candidates=len(scores),
            hostnames_seen=len(tallies),
            top=[s.hostname for s in scores[:5]],
        )
        return scores
