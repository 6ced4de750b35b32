"""Selector handling and text normalisation shared by extraction and suggestions."""

import re
from typing import List, Optional, Union

import soupsieve
from bs4 import BeautifulSoup, Tag

from ..core.exceptions import SelectorError


MAX_SELECTOR_LENGTH = 500

ZERO_WIDTH_RE = re.compile('[\u200b\u200c\u200d\ufeff]')
WHITESPACE_RE = re.compile(r'\s+')
MATCH_NOISE_RE = re.compile(r'[\s,$€£¥₹]')
NON_DIGIT_RE = re.compile(r'[^\d.]')
BARE_NAME_RE = re.compile(r'^-?[A-Za-z_][\w-]*$')

HTML_TAGS = frozenset("""
a abbr address area article aside audio b bdi bdo blockquote body br button canvas
caption cite code col colgroup data datalist dd del details dfn dialog div dl dt em
embed fieldset figcaption figure footer form h1 h2 h3 h4 h5 h6 head header hgroup hr
html i iframe img input ins kbd label legend li link main map mark menu meta meter nav
noscript object ol optgroup option output p param picture pre progress q rp rt ruby s
samp script search section select slot small source span strong style sub summary sup
table tbody td template textarea tfoot th thead time title tr track u ul var video wbr
""".split())


def parse_html(html: str) -> BeautifulSoup:
    return BeautifulSoup(html or "", 'html.parser')


def normalize_value(text: Optional[str]) -> str:
    """Strip zero-width characters, collapse whitespace and trim."""
    if not text:
        return ""
    text = ZERO_WIDTH_RE.sub('', text)
    return WHITESPACE_RE.sub(' ', text).strip()


def normalize_text_for_match(text: Optional[str]) -> str:
    """Lowercase and drop whitespace, thousands separators and currency symbols."""
    return MATCH_NOISE_RE.sub('', normalize_value(text).lower())


def extract_digits(text: Optional[str]) -> str:
    return NON_DIGIT_RE.sub('', text or "")


def text_matches(candidate: Optional[str], expected: Optional[str]) -> bool:
    """
    Loose comparison used when looking for an element by its expected text.

    "$1,299.00" matches "1299.00"; when the expected text carries enough
    digits, a digits-only comparison is tried as a fallback.
    """
    wanted = normalize_text_for_match(expected)
    if not wanted:
        return True
    haystack = normalize_text_for_match(candidate)
    if wanted in haystack:
        return True

    wanted_digits = extract_digits(wanted)
    if len(wanted) >= 4 and len(wanted_digits) >= 3:
        return wanted_digits in extract_digits(haystack)
    return False


def normalize_selector(selector: Optional[str]) -> str:
    """Trim a selector and treat a bare non-tag word as a class name."""
    selector = (selector or "").strip()
    if BARE_NAME_RE.match(selector) and selector.lower() not in HTML_TAGS:
        return f".{selector}"
    return selector


def validate_css_selector(selector: Optional[str]) -> Optional[str]:
    """Return an error message for an unusable selector, None when it is fine."""
    trimmed = (selector or "").strip()
    if not trimmed:
        return "Selector cannot be empty"
    if len(trimmed) > MAX_SELECTOR_LENGTH:
        return f"Selector is too long (max {MAX_SELECTOR_LENGTH} characters)"
    try:
        soupsieve.compile(normalize_selector(trimmed))
    except (soupsieve.SelectorSyntaxError, ValueError, TypeError):
        return f"Invalid CSS selector syntax: {trimmed}"
    return None


def select_elements(document: Union[str, BeautifulSoup, Tag], selector: str) -> List[Tag]:
    """
    Evaluate a selector against a parsed or raw HTML document.

    Raises:
        SelectorError: if the selector cannot be parsed
    """
    if isinstance(document, str):
        document = parse_html(document)
    normalized = normalize_selector(selector)
    if not normalized:
        raise SelectorError("Selector cannot be empty")
    try:
        return document.select(normalized)
    except (soupsieve.SelectorSyntaxError, ValueError, TypeError) as e:
        raise SelectorError(f"Invalid CSS selector syntax: {selector}") from e


def element_value(element: Tag) -> str:
    """Visible text of an element, falling back to its content attribute."""
    text = normalize_value(element.get_text())
    if text:
        return text
    content = element.get('content')
    if isinstance(content, str):
        return normalize_value(content)
    return ""
