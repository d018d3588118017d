"""Pytest configuration and fixtures."""

import sys
from decimal import Decimal
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional

import pytest
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from redis.exceptions import ConnectionError as RedisConnectionError

# Add repository root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from cartcompare.models import CartProduct, SearchResult  # noqa: E402
from cartcompare.popups import DOM_CLICK_SCRIPT, VISIBILITY_SCRIPT  # noqa: E402


class FakeContext:
    def __init__(self, page_factory: Optional[Callable] = None):
        self.closed = False
        self._page_factory = page_factory or FakePage

    async def new_page(self):
        page = self._page_factory()
        page.context = self
        return page

    async def close(self):
        self.closed = True


class FakeLocator:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    @property
    def first(self):
        return self

    async def scroll_into_view_if_needed(self, timeout=None):
        self.page.actions.append(("scroll", self.selector))

    async def click(self, timeout=None):
        if self.page.click_fails:
            raise PlaywrightError("Element is not clickable")
        self.page.actions.append(("click", self.selector))
        self.page.visible.discard(self.selector)


class FakeKeyboard:
    def __init__(self, page: "FakePage"):
        self.page = page

    async def press(self, key: str):
        self.page.actions.append(("key", key))
        if key == "Escape" and self.page.escape_closes:
            self.page.visible.clear()


class FakeElementHandle:
    def __init__(self, page: "FakePage", selector: str):
        self.page = page
        self.selector = selector

    async def fill(self, text: str):
        self.page.actions.append(("fill", self.selector, text))

    async def press(self, key: str):
        self.page.actions.append(("press", self.selector, key))
        if key == "Enter" and self.page.search_results_html is not None:
            self.page.html = self.page.search_results_html
            self.page.url = self.page.url.rstrip("/") + "/search"


class FakePage:
    """
    Stand-in for a Playwright page driven by plain HTML strings.

    ``visible`` holds selectors the browser would report as visible,
    ``resolvable`` holds selectors ``wait_for_selector`` resolves, and
    ``routes`` maps URLs to the HTML served for them; ``content()`` raises for
    URLs in ``content_failing_urls``.
    """

    def __init__(
        self,
        html: str = "<html><body></body></html>",
        url: str = "https://shop.example.co.za/",
        visible=None,
        resolvable=None,
        routes: Optional[Dict[str, str]] = None,
        failing_routes=None,
        content_failing_urls=None,
        search_results_html: Optional[str] = None,
        click_fails: bool = False,
        dom_click_works: bool = False,
        escape_closes: bool = False,
    ):
        self.html = html
        self.url = url
        self.visible = set(visible or [])
        self.resolvable = set(resolvable or [])
        self.routes = routes or {}
        self.failing_routes = set(failing_routes or [])
        self.content_failing_urls = set(content_failing_urls or [])
        self.search_results_html = search_results_html
        self.click_fails = click_fails
        self.dom_click_works = dom_click_works
        self.escape_closes = escape_closes
        self.context = FakeContext()
        self.keyboard = FakeKeyboard(self)
        self.actions: List[Any] = []
        self.visited: List[str] = []
        self.handlers: Dict[str, Callable] = {}
        self.screenshots: List[str] = []
        self.init_scripts: List[str] = []
        self.default_timeout = None
        self.default_navigation_timeout = None

    async def content(self) -> str:
        if self.url in self.content_failing_urls:
            raise PlaywrightError("Unable to retrieve content because the page is navigating")
        return self.html

    async def evaluate(self, script: str, arg=None):
        if script == VISIBILITY_SCRIPT:
            return arg in self.visible
        if script == DOM_CLICK_SCRIPT:
            self.actions.append(("dom_click", arg))
            if self.dom_click_works:
                self.visible.discard(arg)
            return self.dom_click_works
        raise AssertionError(f"unexpected script: {script[:40]}")

    def locator(self, selector: str) -> FakeLocator:
        return FakeLocator(self, selector)

    async def wait_for_selector(self, selector: str, state: str = "visible", timeout=None):
        if selector in self.resolvable:
            return FakeElementHandle(self, selector)
        raise PlaywrightTimeoutError(f"Timeout waiting for {selector}")

    async def wait_for_load_state(self, state: str = "load", timeout=None):
        self.actions.append(("load_state", state))

    async def goto(self, url: str, wait_until: str = "load", timeout=None):
        self.visited.append(url)
        if url in self.failing_routes:
            raise PlaywrightTimeoutError(f"Navigation to {url} timed out")
        if url in self.routes:
            self.html = self.routes[url]
        self.url = url

    async def screenshot(self, path: str, full_page: bool = False):
        self.screenshots.append(path)

    async def add_init_script(self, script: str):
        self.init_scripts.append(script)

    def set_default_timeout(self, timeout):
        self.default_timeout = timeout

    def set_default_navigation_timeout(self, timeout):
        self.default_navigation_timeout = timeout

    def on(self, event: str, handler: Callable):
        self.handlers[event] = handler


class FakeChromium:
    def __init__(self, page_factory: Optional[Callable] = None):
        self.launches = 0
        self.contexts: List[FakeContext] = []
        self._page_factory = page_factory

    async def launch(self, headless=True, args=None):
        self.launches += 1
        return FakeBrowserProcess(self)


class FakeBrowserProcess:
    def __init__(self, chromium: FakeChromium):
        self.chromium = chromium
        self.closed = False

    async def new_context(self, **options):
        context = FakeContext(self.chromium._page_factory)
        context.options = options
        self.chromium.contexts.append(context)
        return context

    async def close(self):
        self.closed = True


class FakePlaywright:
    def __init__(self, page_factory: Optional[Callable] = None):
        self.chromium = FakeChromium(page_factory)
        self.started = 0
        self.stopped = 0

    def __call__(self):
        return self

    async def start(self):
        self.started += 1
        return self

    async def stop(self):
        self.stopped += 1


class FakeModel:
    """
    Generative model returning canned payloads per schema name.

    A queued item may be a dict (validated against the schema) or an
    exception instance (raised).
    """

    def __init__(self, responses: Optional[Dict[str, List[Any]]] = None):
        self.responses = {name: list(items) for name, items in (responses or {}).items()}
        self.prompts: List[Any] = []

    async def generate(self, prompt, schema):
        self.prompts.append((schema.__name__, prompt))
        queue = self.responses.get(schema.__name__)
        if not queue:
            raise AssertionError(f"no response queued for {schema.__name__}")
        item = queue.pop(0)
        if isinstance(item, Exception):
            raise item
        return schema.model_validate(item)


class FakeSearchEngine:
    """Search collaborator keyed by the product name the query starts with."""

    def __init__(self, results: Optional[Dict[str, List[str]]] = None, failing=None):
        self.results = results or {}
        self.failing = set(failing or [])
        self.queries: List[str] = []

    async def search(self, query: str, max_results: int = 10):
        self.queries.append(query)
        for name, links in self.results.items():
            if query.startswith(name + " "):
                if name in self.failing:
                    raise RuntimeError("search backend exploded")
                return [
                    SearchResult(title=f"{name} result", link=link, snippet="In stock now")
                    if isinstance(link, str)
                    else link
                    for link in links
                ][:max_results]
        return []


class FakeRedis:
    def __init__(self, fail: bool = False):
        self.store: Dict[str, bytes] = {}
        self.ttls: Dict[str, int] = {}
        self.fail = fail
        self.closed = False

    async def get(self, key):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        self.store[key] = value.encode("utf-8") if isinstance(value, str) else value
        self.ttls[key] = ex
        return True

    async def aclose(self):
        if self.fail:
            raise RedisConnectionError("Connection reset by peer")
        self.closed = True


@pytest.fixture
def widget_gadget_cart():
    """Widget 100 x1 and Gadget 50 x2, total 200."""
    return [
        CartProduct(product_name="Widget", price=Decimal("100"), quantity=1),
        CartProduct(product_name="Gadget", price=Decimal("50"), quantity=2),
    ]


@pytest.fixture
def popup_html():
    """Page with a cookie banner and a newsletter modal."""
    return """
<html>
<body>
    <header><input type="search" id="site-search" name="q" placeholder="Search products"></header>
    <div id="cookie-banner" class="cookie-consent">
        <p>We use cookies to improve your experience.</p>
        <button id="reject-all" class="btn btn-secondary">Reject all</button>
    </div>
    <main><h1>Welcome</h1></main>
</body>
</html>
"""


@pytest.fixture
def search_results_html():
    """Search results page with product tiles."""
    return """
<html>
<body>
    <nav><a href="/"><img src="/logo.png" alt="Home"></a></nav>
    <ul class="results">
        <li><a href="/p/widget-pro"><img src="/w1.jpg" alt="Widget Pro"><span>Widget Pro</span></a><span>R 120.00</span></li>
        <li><a href="/p/widget-basic"><img src="/w2.jpg" alt="Widget Basic"></a><span>R 80.00</span></li>
        <li><a href="/p/widget-basic"><img src="/w2b.jpg" alt="Widget Basic again"></a></li>
    </ul>
    <script>window.analytics = {};</script>
</body>
</html>
"""
