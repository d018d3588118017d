"""Cross-site cart comparison under a time and attempt budget."""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import List, Optional, Sequence

import structlog

from .browser import BrowserController
from .discovery import HostnameDiscovery
from .models import (
    AlternativeCart,
    AlternativeProduct,
    CartProduct,
    ComparisonResult,
    HostnameScore,
    OriginalCart,
)
from .site_search import SiteProductSearcher

logger = structlog.get_logger(__name__).bind(service="cartcompare")


class ComparisonState(str, Enum):
    INIT = "init"
    DISCOVERING = "discovering"
    PROCESSING = "processing"
    DONE = "done"


@dataclass
class ComparisonBudget:
    """Attempt and result limits for a single comparison request."""

    max_attempts: int
    max_results: int
    attempts: int = 0
    batches: int = 0

    @property
    def remaining_attempts(self) -> int:
        return max(0, self.max_attempts - self.attempts)

    def record_batch(self, size: int) -> None:
        """Count every site in a finished batch as attempted, matched or not."""
        self.attempts += size
        self.batches += 1

    def exhausted(self, results: int) -> bool:
        return results >= self.max_results or self.attempts >= self.max_attempts


class ComparisonOrchestrator:
    """
    Discover candidate sites and rebuild the cart on each of them.

    Sites are processed in sequential batches, concurrently within a batch.
    A site only yields a cart when every product matched.
    """

    def __init__(
        self,
        discovery: HostnameDiscovery,
        searcher: SiteProductSearcher,
        browser: Optional[BrowserController] = None,
        site_batch_size: int = 3,
        product_batch_size: int = 2,
        max_attempts: int = 9,
        max_results: int = 2,
        site_timeout: float = 45.0,
    ):
        """
        Initialize comparison orchestrator.

        Args:
            discovery: Hostname discovery
            searcher: Per-site product lookup
            browser: Launched for the run and closed afterwards (None when
                the searcher manages its own)
            site_batch_size: Sites processed concurrently per round
            product_batch_size: Products looked up concurrently within a site
            max_attempts: Most candidate sites visited per request
            max_results: Alternative carts wanted
            site_timeout: Wall-clock limit per site (seconds)
        """
        self.discovery = discovery
        self.searcher = searcher
        self.browser = browser
        self.site_batch_size = max(1, site_batch_size)
        self.product_batch_size = max(1, product_batch_size)
        self.max_attempts = max_attempts
        self.max_results = max_results
        self.site_timeout = site_timeout
        self.state = ComparisonState.INIT

    async def close(self) -> None:
        """
        Release the search, model and cache clients used by this run.

        A client that fails to close is logged and the rest are still closed.
        """
        extractor = self.searcher.extractor
        for resource in (self.discovery.search_engine, extractor.model, extractor.cache):
            close = getattr(resource, "close", None)
            if close is None:
                continue
            try:
                await close()
            except Exception as e:
                logger.warning(
                    "resource_close_failed",
                    resource=type(resource).__name__,
                    error_type=type(e).__name__,
                    error=str(e),
                )

    async def _process_site(
        self, candidate: HostnameScore, cart_products: Sequence[CartProduct]
    ) -> Optional[AlternativeCart]:
        matches: List[AlternativeProduct] = []

        for start in range(0, len(cart_products), self.product_batch_size):
            batch = cart_products[start : start + self.product_batch_size]
            outcomes = await asyncio.gather(
                *[
                    self.searcher.find_product(
                        candidate.hostname,
                        product,
                        candidate.product_urls.get(product.product_name),
                    )
                    for product in batch
                ],
                return_exceptions=True,
            )

            for product, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(
                        "product_lookup_crashed",
                        site=candidate.hostname,
                        product=product.product_name,
                        error_type=type(outcome).__name__,
                        error=str(outcome),
                    )
                    return None
                if outcome is None:
                    logger.info(
                        "site_disqualified",
                        site=candidate.hostname,
                        missing_product=product.product_name,
                    )
                    return None
                matches.append(outcome)

        return AlternativeCart(products=matches, original_products=list(cart_products))

    async def _run_site(
        self, candidate: HostnameScore, cart_products: Sequence[CartProduct]
    ) -> Optional[AlternativeCart]:
        try:
            return await asyncio.wait_for(
                self._process_site(candidate, cart_products), timeout=self.site_timeout
            )
        except asyncio.TimeoutError:
            logger.info("site_timed_out", site=candidate.hostname, timeout=self.site_timeout)
            return None

    async def _process_candidates(
        self,
        candidates: List[HostnameScore],
        cart_products: Sequence[CartProduct],
        budget: ComparisonBudget,
    ) -> List[AlternativeCart]:
        results: List[AlternativeCart] = []
        index = 0

        while index < len(candidates) and not budget.exhausted(len(results)):
            size = min(self.site_batch_size, budget.remaining_attempts)
            batch = candidates[index : index + size]
            index += len(batch)

            logger.info(
                "site_batch_started",
                batch=budget.batches + 1,
                sites=[c.hostname for c in batch],
                attempts=budget.attempts,
            )

            outcomes = await asyncio.gather(
                *[self._run_site(candidate, cart_products) for candidate in batch],
                return_exceptions=True,
            )
            budget.record_batch(len(batch))

            for candidate, outcome in zip(batch, outcomes):
                if isinstance(outcome, BaseException):
                    if not isinstance(outcome, Exception):
                        raise outcome
                    logger.warning(
                        "site_failed",
                        site=candidate.hostname,
                        error_type=type(outcome).__name__,
                        error=str(outcome),
                    )
                elif outcome is not None:
                    results.append(outcome)
                    logger.info(
                        "alternative_cart_found",
                        site=candidate.hostname,
                        total_price=str(outcome.get_total_price()),
                        potential_savings=str(outcome.get_potential_savings()),
                    )

            logger.info(
                "site_batch_completed",
                batch=budget.batches,
                results=len(results),
                attempts=budget.attempts,
            )

        return results[: budget.max_results]

    async def compare(
        self, cart_products: Sequence[CartProduct], current_hostname: str = ""
    ) -> ComparisonResult:
        """
        Run a full comparison for a cart.

        Args:
            cart_products: Products in the user's cart
            current_hostname: Site the user is shopping on, never a candidate

        Returns:
            ComparisonResult with at most ``max_results`` alternative carts
        """
        started_at = datetime.now(timezone.utc)
        cart_products = list(cart_products)
        budget = ComparisonBudget(max_attempts=self.max_attempts, max_results=self.max_results)

        logger.info(
            "comparison_started",
            products=len(cart_products),
            current_hostname=current_hostname,
            max_attempts=budget.max_attempts,
            max_results=budget.max_results,
        )

        self.state = ComparisonState.DISCOVERING
        candidates = await self.discovery.discover(cart_products, current_hostname)

        self.state = ComparisonState.PROCESSING
        results: List[AlternativeCart] = []
        if candidates:
            if self.browser is not None:
                await self.browser.initialize()
            try:
                results = await self._process_candidates(candidates, cart_products, budget)
            finally:
                if self.browser is not None:
                    await self.browser.close()

        self.state = ComparisonState.DONE
        completed_at = datetime.now(timezone.utc)
        duration = (completed_at - started_at).total_seconds()

        logger.info(
            "comparison_completed",
            candidates=len(candidates),
            attempts=budget.attempts,
            batches=budget.batches,
            alternative_carts=len(results),
            duration_seconds=round(duration, 2),
        )

        return ComparisonResult(
            original_cart=OriginalCart(products=cart_products),
            alternative_carts=results,
            candidates=len(candidates),
            attempts=budget.attempts,
            started_at=started_at,
            completed_at=completed_at,
            duration_seconds=duration,
        )
