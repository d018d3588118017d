"""Request-body entry point for the HTTP boundary."""

from typing import Any, Dict, Optional

import structlog
from pydantic import ValidationError

from .browser import BrowserController
from .cache import ResultCache
from .comparison import ComparisonOrchestrator
from .config import load_config, require_credentials
from .discovery import HostnameDiscovery
from .errors import ConfigurationError
from .extractor import ContentExtractor
from .llm import ClaudeModel
from .models import ComparisonRequest
from .popups import PopupHandler
from .search_engine import GoogleSearchClient
from .search_input import SearchInputLocator
from .site_search import SiteProductSearcher

logger = structlog.get_logger(__name__).bind(service="cartcompare")


def build_orchestrator(config: Dict[str, Any]) -> ComparisonOrchestrator:
    """
    Wire a fresh instance graph from configuration.

    Raises:
        ConfigurationError: missing credentials
    """
    require_credentials(config)

    search_cfg = config.get("search", {})
    discovery_cfg = config.get("discovery", {})
    browser_cfg = config.get("browser", {})
    popup_cfg = config.get("popup", {})
    input_cfg = config.get("search_input", {})
    llm_cfg = config.get("llm", {})
    extraction_cfg = config.get("extraction", {})
    cache_cfg = config.get("cache", {})
    comparison_cfg = config.get("comparison", {})

    search_engine = GoogleSearchClient(
        api_key=search_cfg.get("api_key"),
        engine_id=search_cfg.get("engine_id"),
        api_url=search_cfg.get("api_url", "https://www.googleapis.com/customsearch/v1"),
        country=search_cfg.get("country", "countryZA"),
        geolocation=search_cfg.get("geolocation", "za"),
        timeout=search_cfg.get("timeout", 10.0),
    )

    discovery = HostnameDiscovery(
        search_engine,
        max_results=discovery_cfg.get("max_results", 10),
        batch_size=discovery_cfg.get("batch_size", 3),
        stagger_delay=discovery_cfg.get("stagger_delay", 0.2),
        min_score=discovery_cfg.get("min_score", 0.3),
        intent_keywords=discovery_cfg.get("intent_keywords", "buy price"),
        site_filters=discovery_cfg.get("site_filters"),
        excluded_domains=discovery_cfg.get("excluded_domains"),
        out_of_stock_threshold=discovery_cfg.get("out_of_stock_threshold", 0.3),
    )

    browser = BrowserController(
        headless=browser_cfg.get("headless", True),
        navigation_timeout=browser_cfg.get("navigation_timeout", 5.0),
        locale=browser_cfg.get("locale", "en-ZA"),
        timezone_id=browser_cfg.get("timezone_id", "Africa/Johannesburg"),
    )

    model = ClaudeModel(
        api_key=llm_cfg.get("api_key"),
        model=llm_cfg.get("model", "claude-sonnet-4-5-20250929"),
        max_tokens=llm_cfg.get("max_tokens", 4096),
        temperature=llm_cfg.get("temperature", 0.2),
        timeout=llm_cfg.get("timeout", 30.0),
    )

    cache = ResultCache.from_url(
        cache_cfg.get("redis_url"),
        default_ttl=cache_cfg.get("ttl", 21600),
        max_ttl=cache_cfg.get("max_ttl", 86400),
    )

    extractor = ContentExtractor(
        model,
        cache,
        max_content_chars=extraction_cfg.get("max_content_chars", 60000),
        max_anchor_links=extraction_cfg.get("max_anchor_links", 200),
        cache_ttl=cache_cfg.get("ttl"),
    )

    searcher = SiteProductSearcher(
        browser,
        PopupHandler(
            max_popup_length=popup_cfg.get("max_popup_length", 5000),
            click_timeout=popup_cfg.get("click_timeout", 2.0),
            settle_delay=popup_cfg.get("settle_delay", 1.0),
            screenshot_dir=popup_cfg.get("screenshot_dir"),
        ),
        SearchInputLocator(
            attempt_timeout=input_cfg.get("attempt_timeout", 1.5),
            search_timeout=input_cfg.get("search_timeout", 10.0),
            settle_delay=input_cfg.get("settle_delay", 2.0),
        ),
        extractor,
        search_results=extraction_cfg.get("search_results", 3),
    )

    return ComparisonOrchestrator(
        discovery,
        searcher,
        browser=browser,
        site_batch_size=comparison_cfg.get("site_batch_size", 3),
        product_batch_size=comparison_cfg.get("product_batch_size", 2),
        max_attempts=comparison_cfg.get("max_attempts", 9),
        max_results=comparison_cfg.get("max_results", 2),
        site_timeout=comparison_cfg.get("site_timeout", 45.0),
    )


def _error(status_code: int, message: str, **extra) -> Dict[str, Any]:
    return {"success": False, "status_code": status_code, "error": message, **extra}


async def compare_cart_direct(
    payload: Dict[str, Any],
    config: Optional[Dict[str, Any]] = None,
    orchestrator: Optional[ComparisonOrchestrator] = None,
) -> Dict[str, Any]:
    """
    Run a comparison for a raw ``{cartProducts, hostname}`` request body.

    Always returns a well-formed response dict: ``success`` with
    ``originalCart`` / ``alternativeCarts`` (camelCase), or an error with a
    400 (invalid body) or 500 (configuration or unexpected failure) status.

    An orchestrator built here from ``config`` is closed before returning.
    An injected ``orchestrator`` stays open; the caller owns it.
    """
    try:
        request = ComparisonRequest.model_validate(payload)
    except ValidationError as e:
        logger.info("comparison_request_invalid", errors=e.error_count())
        return _error(
            400,
            "Invalid request body",
            details=e.errors(include_url=False, include_context=False),
        )

    owned = orchestrator is None
    if owned:
        try:
            orchestrator = build_orchestrator(config if config is not None else load_config())
        except ConfigurationError as e:
            logger.error("comparison_misconfigured", missing=e.missing)
            return _error(500, str(e))
        except Exception as e:
            logger.exception("comparison_setup_failed", error=str(e))
            return _error(500, "Comparison failed")

    try:
        result = await orchestrator.compare(request.cart_products, request.hostname)
    except Exception as e:
        logger.exception("comparison_failed", error=str(e))
        return _error(500, "Comparison failed")
    finally:
        if owned:
            await orchestrator.close()

    body = result.model_dump(mode="json", by_alias=True, include={"original_cart", "alternative_carts"})
    return {"success": True, "status_code": 200, **body}
