"""Propose alternative selectors by analysing a DOM snapshot."""

import re
from collections import Counter
from dataclasses import asdict, dataclass, field
from typing import Any, Dict, List, Optional, Tuple

import soupsieve
from bs4 import BeautifulSoup, Tag

from ..core.exceptions import SelectorError
from ..extraction.selectors import (
    extract_digits, normalize_selector, normalize_text_for_match, normalize_value,
    parse_html, select_elements, text_matches, validate_css_selector,
)


DEFAULT_LIMIT = 10
MAX_SAMPLE_CHARS = 80
MAX_ANCESTOR_ANCHORS = 3
MAX_CANDIDATES = 150
MAX_CANDIDATE_TEXT = 200
MAX_CANDIDATE_CHILDREN = 3

SKIPPED_TAGS = {
    'script', 'style', 'noscript', 'template', 'svg', 'head', 'title', 'meta',
    'link', 'iframe', 'html', 'body', 'br', 'hr', 'option',
}
STATEFUL_CLASSES = {
    'active', 'selected', 'open', 'hidden', 'visible', 'show', 'current',
    'focus', 'hover', 'disabled', 'loading', 'loaded',
}
GENERATED_PREFIX_RE = re.compile(r'^(css|sc|jsx|emotion|styled|svelte|astro)-', re.I)
TOKEN_SEGMENT_RE = re.compile(r'[-_]+')
HIDDEN_STYLE_RE = re.compile(r'display\s*:\s*none|visibility\s*:\s*hidden', re.I)
ALNUM_RE = re.compile(r'\w', re.UNICODE)


@dataclass(frozen=True)
class SelectorInfo:
    selector: str
    count: int
    valid: bool
    error: Optional[str] = None


@dataclass(frozen=True)
class Suggestion:
    selector: str
    count: int
    sample_text: str


@dataclass
class SuggestionReport:
    current_selector: SelectorInfo
    suggestions: List[Suggestion] = field(default_factory=list)
    note: Optional[str] = None
    page_title: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "current_selector": asdict(self.current_selector),
            "suggestions": [asdict(s) for s in self.suggestions],
            "note": self.note,
            "page_title": self.page_title,
        }


def looks_generated(token: Optional[str]) -> bool:
    """
    Guess whether a class or id was generated by a build tool.

    Hashed names (css-1x2y3z, sc-bdVaJa, Button_root__3xYz9, ember123)
    change between deploys and make brittle selectors.
    """
    if not token:
        return True
    if GENERATED_PREFIX_RE.match(token):
        return True
    for segment in TOKEN_SEGMENT_RE.split(token):
        has_digit = any(ch.isdigit() for ch in segment)
        has_alpha = any(ch.isalpha() for ch in segment)
        if len(segment) >= 5 and has_digit and has_alpha:
            return True
        if len(segment) >= 5 and segment.isdigit():
            return True
    return False


def _stable_classes(element: Tag) -> List[str]:
    classes = []
    for token in element.get('class') or []:
        lowered = token.lower()
        if lowered in STATEFUL_CLASSES or lowered.startswith(('is-', 'has-')):
            continue
        if looks_generated(token) or token in classes:
            continue
        classes.append(token)
    return classes


def _stable_id(element: Tag) -> Optional[str]:
    element_id = element.get('id')
    if isinstance(element_id, str) and element_id.strip() and not looks_generated(element_id):
        return element_id
    return None


def _is_hidden(element: Tag) -> bool:
    for node in [element, *element.parents]:
        if not isinstance(node, Tag):
            continue
        if node.has_attr('hidden') or node.get('aria-hidden') == 'true':
            return True
        if node.name == 'input' and node.get('type') == 'hidden':
            return True
        if HIDDEN_STYLE_RE.search(node.get('style') or ''):
            return True
    return False


def _count(soup: BeautifulSoup, selector: str) -> int:
    try:
        return len(soup.select(selector))
    except (soupsieve.SelectorSyntaxError, ValueError):
        return 0


def _part_options(element: Tag) -> List[str]:
    classes = [soupsieve.escape(c) for c in _stable_classes(element)[:2]]
    if not classes:
        return [element.name]
    options = [f".{classes[0]}"]
    if len(classes) > 1:
        options.append("." + ".".join(classes))
    options.append(element.name + "." + ".".join(classes))
    return options


def _anchor(element: Tag) -> Optional[str]:
    element_id = _stable_id(element)
    if element_id:
        return f"#{soupsieve.escape(element_id)}"
    classes = _stable_classes(element)
    if classes:
        return f".{soupsieve.escape(classes[0])}"
    return None


def synthesize_selector(soup: BeautifulSoup, element: Tag) -> Tuple[str, int]:
    """Shortest stable selector found for an element and its match count."""
    element_id = _stable_id(element)
    if element_id:
        selector = f"#{soupsieve.escape(element_id)}"
        if _count(soup, selector) == 1:
            return selector, 1

    best = None
    for option in _part_options(element):
        count = _count(soup, option)
        candidate = (count, len(option), option)
        best = candidate if best is None or candidate < best else best
        if count == 1:
            return option, 1

    parts = [_part_options(element)[-1]]
    anchors = 0
    for ancestor in element.parents:
        if not isinstance(ancestor, Tag) or ancestor.name in ('[document]', 'html', 'body'):
            break
        anchor = _anchor(ancestor)
        if anchor is None:
            continue
        parts.insert(0, anchor)
        selector = " ".join(parts)
        count = _count(soup, selector)
        candidate = (count, len(selector), selector)
        if candidate < best:
            best = candidate
        if count == 1 or anchor.startswith('#'):
            break
        anchors += 1
        if anchors >= MAX_ANCESTOR_ANCHORS:
            break

    return best[2], best[0]


def _sample(text: str) -> str:
    if len(text) <= MAX_SAMPLE_CHARS:
        return text
    return text[:MAX_SAMPLE_CHARS - 3] + "..."


def _text_score(text: str, expected: str) -> float:
    wanted = normalize_text_for_match(expected)
    found = normalize_text_for_match(text)
    if found == wanted:
        return 1.0
    if wanted and wanted in found:
        return len(wanted) / len(found)
    wanted_digits = extract_digits(wanted)
    found_digits = extract_digits(found)
    return 0.5 * len(wanted_digits) / max(len(found_digits), 1)


def _length_score(text: str) -> float:
    length = len(text)
    if length < 3:
        return 0.3
    if length <= 120:
        return 1.0
    return max(0.05, 120 / length)


def _candidates(soup: BeautifulSoup, expected_text: Optional[str]) -> List[Tuple[Tag, str]]:
    root = soup.body or soup
    found = []
    for element in root.find_all(True):
        if element.name in SKIPPED_TAGS or _is_hidden(element):
            continue
        text = normalize_value(element.get_text())
        if not text or not ALNUM_RE.search(text):
            continue
        if expected_text:
            if text_matches(text, expected_text):
                found.append((element, text))
        elif len(text) <= MAX_CANDIDATE_TEXT and len(element.find_all(True, recursive=False)) <= MAX_CANDIDATE_CHILDREN:
            found.append((element, text))

    if expected_text:
        # Tightest text first so containers do not crowd out the real element
        found.sort(key=lambda item: -_text_score(item[1], expected_text))
    else:
        # Repeated shapes (menus, lists) rank below one-off elements
        shapes = Counter(_shape(element) for element, _ in found)
        found.sort(key=lambda item: -_length_score(item[1]) / shapes[_shape(item[0])])
    return found[:MAX_CANDIDATES]


def _shape(element: Tag) -> Tuple[str, ...]:
    element_id = _stable_id(element)
    if element_id:
        return (element.name, '#' + element_id)
    return (element.name, *_stable_classes(element))


def describe_selector(soup: BeautifulSoup, selector: str) -> SelectorInfo:
    error = validate_css_selector(selector)
    if error:
        return SelectorInfo(selector=selector, count=0, valid=False, error=error)
    try:
        count = len(select_elements(soup, selector))
    except SelectorError as e:
        return SelectorInfo(selector=selector, count=0, valid=False, error=str(e))
    return SelectorInfo(selector=normalize_selector(selector), count=count, valid=count >= 1)


def suggest(dom_snapshot: str, current_selector: str, expected_text: Optional[str] = None,
            limit: int = DEFAULT_LIMIT) -> SuggestionReport:
    """
    Rank alternative selectors for a page.

    With expected_text, candidates are elements whose text matches it, best
    textual fit first. Without it, specific selectors over short text win.
    Ties go to fewer matches, then the shorter selector, then alphabetical.
    The DOM is only read.

    Args:
        dom_snapshot: Page HTML
        current_selector: Selector the monitor uses now
        expected_text: Value the user expects the selector to yield
        limit: Maximum number of suggestions

    Returns:
        SuggestionReport with current selector info and ranked suggestions
    """
    soup = parse_html(dom_snapshot)
    expected_text = normalize_value(expected_text) or None
    report = SuggestionReport(
        current_selector=describe_selector(soup, current_selector),
        page_title=normalize_value(soup.title.get_text()) if soup.title else None,
    )

    ranked: Dict[str, Tuple[float, int, str]] = {}
    for element, text in _candidates(soup, expected_text):
        selector, count = synthesize_selector(soup, element)
        if count == 0:
            continue
        if expected_text:
            score = _text_score(text, expected_text)
        else:
            score = _length_score(text) / count
        previous = ranked.get(selector)
        if previous is None or score > previous[0]:
            ranked[selector] = (score, count, text)

    ordered = sorted(ranked.items(), key=lambda item: (-item[1][0], item[1][1], len(item[0]), item[0]))
    report.suggestions = [
        Suggestion(selector=selector, count=count, sample_text=_sample(text))
        for selector, (_, count, text) in ordered[:limit]
    ]

    if expected_text and not report.suggestions:
        report.note = "No element matched expectedText"
    return report
