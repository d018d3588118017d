"""Web search API client."""

from typing import List, Optional, Protocol

import httpx
import structlog
from pydantic import ValidationError

from .errors import ConfigurationError
from .models import SearchResult

logger = structlog.get_logger(__name__).bind(service="cartcompare")

GOOGLE_SEARCH_URL = "https://www.googleapis.com/customsearch/v1"
# The Custom Search API returns at most 10 items per request
MAX_PAGE_SIZE = 10


class SearchEngine(Protocol):
    async def search(self, query: str, max_results: int = 10) -> List[SearchResult]:
        ...


class GoogleSearchClient:
    """
    Google Custom Search JSON API.

    Failures never raise: a broken search contributes no results.
    """

    def __init__(
        self,
        api_key: Optional[str],
        engine_id: Optional[str],
        api_url: str = GOOGLE_SEARCH_URL,
        country: Optional[str] = "countryZA",
        geolocation: Optional[str] = "za",
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ):
        missing = []
        if not api_key:
            missing.append("GOOGLE_SEARCH_API_KEY")
        if not engine_id:
            missing.append("GOOGLE_SEARCH_ENGINE_ID")
        if missing:
            raise ConfigurationError(
                f"Missing search credentials: {', '.join(missing)}", missing=missing
            )

        self.api_key = api_key
        self.engine_id = engine_id
        self.api_url = api_url
        self.country = country
        self.geolocation = geolocation
        self._client = client or httpx.AsyncClient(timeout=timeout, follow_redirects=True)

    def build_params(self, query: str, max_results: int) -> dict:
        params = {
            "key": self.api_key,
            "cx": self.engine_id,
            "q": query,
            "num": max(1, min(max_results, MAX_PAGE_SIZE)),
        }
        if self.country:
            params["cr"] = self.country
        if self.geolocation:
            params["gl"] = self.geolocation
        return params

    async def search(self, query: str, max_results: int = 10) -> List[SearchResult]:
        """
        Run a query.

        Returns:
            Results in rank order, empty on any failure
        """
        try:
            response = await self._client.get(self.api_url, params=self.build_params(query, max_results))
            response.raise_for_status()
            data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning("search_request_rejected", query=query, status_code=e.response.status_code)
            return []
        except httpx.HTTPError as e:
            logger.warning("search_request_failed", query=query, error=str(e))
            return []
        except ValueError as e:
            logger.warning("search_response_malformed", query=query, error=str(e))
            return []

        items = data.get("items") if isinstance(data, dict) else None
        if not isinstance(items, list):
            logger.debug("search_no_items", query=query)
            return []

        results = []
        for item in items[:max_results]:
            try:
                results.append(SearchResult.model_validate(item))
            except ValidationError:
                logger.debug("search_item_skipped", query=query)

        logger.info("search_completed", query=query, results=len(results))
        return results

    async def close(self) -> None:
        await self._client.aclose()
