"""Tests for popup detection and dismissal."""

import pytest

from cartcompare.errors import PopupDismissError
from cartcompare.popups import PopupHandler, PopupState
from conftest import FakePage

CONTAINER = "div#cookie-banner.cookie-consent"
REJECT = f"{CONTAINER} button#reject-all.btn.btn-secondary"

BARE_BUTTON_HTML = """
<html>
<body>
    <header><button>Menu</button></header>
    <div class="cookie-banner"><p>We use cookies.</p><button>Accept</button></div>
</body>
</html>
"""


@pytest.fixture
def handler(tmp_path):
    return PopupHandler(settle_delay=0, screenshot_dir=str(tmp_path / "shots"))


class TestDetect:
    """Test PopupHandler.detect."""

    @pytest.mark.asyncio
    async def test_detects_visible_popup(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={CONTAINER})

        evaluation = await handler.detect(page)

        assert evaluation.is_popup is True
        assert evaluation.container_selector == CONTAINER
        assert evaluation.reject_selector == REJECT

    @pytest.mark.asyncio
    async def test_invisible_candidate_is_not_a_popup(self, handler, popup_html):
        page = FakePage(html=popup_html, visible=set())

        evaluation = await handler.detect(page)

        assert evaluation.is_popup is False

    @pytest.mark.asyncio
    async def test_hidden_container_with_bare_button_is_not_a_popup(self, handler):
        # Header button is visible, the banner itself is hidden by CSS
        page = FakePage(html=BARE_BUTTON_HTML, visible={"button", "div.cookie-banner button"})

        evaluation = await handler.detect(page)

        assert evaluation.is_popup is False
        assert await handler.handle(page) == PopupState.NO_POPUP
        assert page.actions == []

    @pytest.mark.asyncio
    async def test_bare_button_click_is_scoped_to_container(self, handler):
        page = FakePage(html=BARE_BUTTON_HTML, visible={"button", "div.cookie-banner"})

        assert await handler.handle(page) == PopupState.POPUP_PRESENT
        assert ("click", "div.cookie-banner button") in page.actions
        assert ("click", "button") not in page.actions


class TestDismiss:
    """Test dismissal strategies in order."""

    @pytest.mark.asyncio
    async def test_real_click_first(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={REJECT})

        assert await handler.dismiss(page, REJECT) == "click"
        assert ("click", REJECT) in page.actions

    @pytest.mark.asyncio
    async def test_falls_back_to_dom_click(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={REJECT}, click_fails=True, dom_click_works=True)

        assert await handler.dismiss(page, REJECT) == "dom_click"

    @pytest.mark.asyncio
    async def test_falls_back_to_escape(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={REJECT}, click_fails=True, escape_closes=True)

        assert await handler.dismiss(page, REJECT) == "escape"
        assert ("key", "Escape") in page.actions

    @pytest.mark.asyncio
    async def test_escape_checks_container_visibility(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={CONTAINER, REJECT}, click_fails=True, escape_closes=True)

        assert await handler.dismiss(page, REJECT, CONTAINER) == "escape"
        assert CONTAINER not in page.visible

    @pytest.mark.asyncio
    async def test_raises_with_screenshot_when_all_fail(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={REJECT}, click_fails=True)

        with pytest.raises(PopupDismissError) as exc_info:
            await handler.dismiss(page, REJECT)

        assert exc_info.value.selector == REJECT
        assert exc_info.value.page_url == page.url
        assert exc_info.value.screenshot_path == page.screenshots[0]


class TestHandle:
    """Test the detect-then-dismiss flow."""

    @pytest.mark.asyncio
    async def test_no_popup(self, handler):
        page = FakePage(html="<html><body><p>Plain page</p></body></html>")

        assert await handler.handle(page) == PopupState.NO_POPUP

    @pytest.mark.asyncio
    async def test_popup_dismissed(self, handler, popup_html):
        page = FakePage(html=popup_html, visible={CONTAINER, REJECT})

        assert await handler.handle(page) == PopupState.POPUP_PRESENT
        assert REJECT not in page.visible

    def test_dialog_handler_registered(self):
        page = FakePage()

        PopupHandler.register_dialog_handler(page)

        assert "dialog" in page.handlers
