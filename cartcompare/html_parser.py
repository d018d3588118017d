"""
Heuristics over locally parsed HTML.

Everything here is a pure function of the serialized page so the popup,
search-input and link heuristics can be tested without a browser. Live checks
(computed visibility, clicks) live in ``popups`` and ``search_input``.
"""

import re
from typing import List, Optional, Tuple
from urllib.parse import urljoin

import structlog
from bs4 import BeautifulSoup, Tag

from .models import AnchorLink, ParsedContent, PopupEvaluation

logger = structlog.get_logger(__name__).bind(service="cartcompare")

SEARCH_PATTERN = re.compile(r"search|query|find|lookup|seek|\bq\b", re.IGNORECASE)
POPUP_PATTERN = re.compile(r"popup|modal|cookie|consent", re.IGNORECASE)

POPUP_TAGS = ["div", "section", "aside", "dialog"]
POPUP_BUTTON_VOCABULARY = [
    "reject",
    "decline",
    "no thanks",
    "close",
    "dismiss",
    "accept",
    "agree",
    "got it",
    "i understand",
    "continue",
    "ok",
]
POPUP_BUTTON_PATTERN = re.compile(
    r"\b(" + "|".join(re.escape(word) for word in POPUP_BUTTON_VOCABULARY) + r")\b",
    re.IGNORECASE,
)

TEXT_INPUT_TYPES = {"search", "text", ""}
FALLBACK_SEARCH_SELECTORS = [
    'input[type="search"]',
    'input[name="q"]',
    'form[role="search"] input',
]

_HIDDEN_STYLE = re.compile(
    r"display\s*:\s*none|visibility\s*:\s*hidden|opacity\s*:\s*0(\.0+)?\s*(;|$)",
    re.IGNORECASE,
)
_CSS_IDENT = re.compile(r"^-?[_a-zA-Z][_a-zA-Z0-9-]*$")


def make_soup(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", "lxml")


def clean_text(text: str) -> str:
    """Collapse whitespace runs into single spaces."""
    if not text:
        return ""
    return re.sub(r"\s+", " ", text).strip()


def css_ident(value: str) -> Optional[str]:
    """Return ``value`` if it is usable as a bare CSS identifier, else None."""
    if value and _CSS_IDENT.match(value):
        return value
    return None


def element_selector(element: Tag) -> str:
    """
    Best-effort ``tag#id.class1.class2`` selector for an element.

    Ids and classes that are not plain CSS identifiers are skipped.
    """
    selector = element.name
    element_id = css_ident(element.get("id") or "")
    if element_id:
        selector += f"#{element_id}"
    for cls in element.get("class", []):
        ident = css_ident(cls)
        if ident:
            selector += f".{ident}"
    return selector


def _nth_of_type(element: Tag) -> str:
    index = 1 + len(element.find_previous_siblings(element.name))
    return f"{element.name}:nth-of-type({index})"


def scoped_selector(element: Tag, scope: Tag, scope_selector: str = "") -> str:
    """
    Selector whose first match under ``scope`` is ``element`` itself.

    ``tag#id.class`` is used when it already picks the element out; otherwise
    an ``nth-of-type`` child path from ``scope`` down to the element.
    ``scope_selector`` (the selector of ``scope`` in the page) is prefixed.
    """
    selector = element_selector(element)
    if scope.select_one(selector) is element:
        return f"{scope_selector} {selector}".strip()

    parts = []
    node = element
    while isinstance(node, Tag) and node is not scope:
        parts.append(_nth_of_type(node))
        node = node.parent
    if scope_selector:
        parts.append(scope_selector)
    return " > ".join(reversed(parts))


def is_hidden(element: Tag) -> bool:
    """Whether markup alone hides the element or one of its ancestors."""
    node = element
    while isinstance(node, Tag) and node.name not in ("body", "html", "[document]"):
        if node.has_attr("hidden") or node.get("aria-hidden") == "true":
            return True
        style = node.get("style") or ""
        if _HIDDEN_STYLE.search(style):
            return True
        node = node.parent
    return False


def _attribute_text(value) -> str:
    if isinstance(value, (list, tuple)):
        return " ".join(value)
    return str(value or "")


def extract_visible_text(soup: BeautifulSoup) -> str:
    """Text a user would see: no scripts, styles or markup-hidden elements."""
    body = soup.body or soup
    for element in body.find_all(["script", "style", "noscript", "template"]):
        element.decompose()

    hidden = [el for el in body.find_all(True) if is_hidden(el)]
    for element in hidden:
        if not element.decomposed:
            element.decompose()

    return clean_text(body.get_text(" "))


def find_anchor_links(soup: BeautifulSoup, root_url: str) -> List[AnchorLink]:
    """
    Collect anchors that wrap an image, the usual shape of a product tile.

    Args:
        soup: Parsed page
        root_url: Origin used to resolve relative hrefs

    Returns:
        Anchor text/href pairs with absolute hrefs
    """
    links: List[AnchorLink] = []
    seen = set()
    body = soup.body or soup

    for anchor in body.find_all("a", href=True):
        href = anchor["href"].strip()
        if not href or href.startswith(("#", "javascript:", "mailto:", "tel:")):
            continue

        image = anchor.find("img")
        if image is None:
            continue

        full_url = urljoin(root_url.rstrip("/") + "/", href)
        if full_url in seen:
            continue
        seen.add(full_url)

        inner_text = clean_text(anchor.get_text(" ")) or clean_text(image.get("alt", ""))
        links.append(AnchorLink(inner_text=inner_text, href=full_url))

    logger.debug("anchor_links_found", count=len(links))
    return links


def _score_search_input(soup: BeautifulSoup, element: Tag) -> Optional[int]:
    input_type = (element.get("type") or "").strip().lower()
    if input_type not in TEXT_INPUT_TYPES:
        return None

    score = 5 if input_type == "search" else 1

    for name, value in element.attrs.items():
        if name in ("type", "aria-label", "aria-placeholder"):
            continue
        if SEARCH_PATTERN.search(name) or SEARCH_PATTERN.search(_attribute_text(value)):
            score += 2
            break

    for aria in ("aria-label", "aria-placeholder"):
        if SEARCH_PATTERN.search(_attribute_text(element.get(aria))):
            score += 2

    element_id = element.get("id")
    if element_id:
        label = soup.find("label", attrs={"for": element_id})
        if label is not None and SEARCH_PATTERN.search(label.get_text(" ")):
            score += 2

    return score


def _input_selectors(element: Tag) -> List[str]:
    selectors = []
    element_id = css_ident(element.get("id") or "")
    if element_id:
        selectors.append(f"#{element_id}")

    name = element.get("name")
    if name and '"' not in name:
        selectors.append(f'input[name="{name}"]')

    for cls in element.get("class", []):
        ident = css_ident(cls)
        if ident:
            selectors.append(f"input.{ident}")
            break

    return selectors


def rank_search_inputs(soup: BeautifulSoup) -> List[str]:
    """
    Rank candidate search box selectors, best first.

    Scoring per ``<input>``: ``type=search`` 5, text/untyped 1; +2 when any
    attribute name or value matches the search vocabulary; +2 per matching
    aria-label / aria-placeholder; +2 for a matching ``<label for=id>``.
    Structural fallbacks are appended after scored candidates.
    """
    ranked: List[Tuple[int, int, List[str]]] = []
    for index, element in enumerate(soup.find_all("input")):
        score = _score_search_input(soup, element)
        if score is None:
            continue
        selectors = _input_selectors(element)
        if selectors:
            ranked.append((score, index, selectors))

    ranked.sort(key=lambda item: (-item[0], item[1]))

    result: List[str] = []
    for _, _, selectors in ranked:
        for selector in selectors:
            if selector not in result:
                result.append(selector)

    for selector in FALLBACK_SEARCH_SELECTORS:
        if selector not in result:
            result.append(selector)

    logger.debug("search_inputs_ranked", candidates=len(ranked), selectors=len(result))
    return result


def _find_dismiss_control(container: Tag) -> Optional[Tag]:
    for control in container.find_all(["button", "a", "input"]):
        if control.name == "input" and (control.get("type") or "").lower() not in ("button", "submit"):
            continue
        text = clean_text(control.get_text(" ") or control.get("value", "")).lower()
        if not text:
            text = _attribute_text(control.get("aria-label")).lower()
        if POPUP_BUTTON_PATTERN.search(text):
            return control
    return None


def find_popup_candidates(html: str, max_length: int = 5000) -> List[PopupEvaluation]:
    """
    Find popup/consent containers and the control that dismisses each.

    Containers are matched on class/id keywords; those whose inner HTML is
    longer than ``max_length`` are rejected as page-level wrappers, and those
    hidden by markup are skipped.

    Both selectors are resolved against this document: the container
    selector matches the container first, and the reject selector matches
    the control first inside it, so a bare ``button`` never lands on an
    unrelated control elsewhere on the page.

    Returns:
        Candidates in document order, each with ``is_popup=True``
    """
    soup = make_soup(html)
    candidates: List[PopupEvaluation] = []

    for element in soup.find_all(POPUP_TAGS):
        hint = " ".join([_attribute_text(element.get("class")), element.get("id") or ""])
        if not POPUP_PATTERN.search(hint):
            continue

        length = len(element.decode_contents())
        if length > max_length:
            continue

        if is_hidden(element):
            continue

        control = _find_dismiss_control(element)
        if control is None:
            continue

        container_selector = scoped_selector(element, soup)
        candidates.append(
            PopupEvaluation(
                is_popup=True,
                container_selector=container_selector,
                reject_selector=scoped_selector(control, element, container_selector),
                length=length,
            )
        )

    return candidates


def parse_html(html: str, root_url: str) -> ParsedContent:
    """
    Parse a page into the pieces the pipeline needs.

    Args:
        html: Serialized page
        root_url: Origin for resolving relative links

    Returns:
        ParsedContent (empty on unparseable input)
    """
    try:
        soup = make_soup(html)
        if soup.body is None:
            raise ValueError("Document body is empty")

        anchor_links = find_anchor_links(soup, root_url)
        visible_text = extract_visible_text(soup)
    except ValueError as e:
        logger.warning("html_parse_failed", root_url=root_url, error=str(e))
        return ParsedContent()

    return ParsedContent(visible_text=visible_text, anchor_links=anchor_links)
