"""
Heuristic ad detection for page elements.

Classifies BeautifulSoup tags as advertising using custom hiding selectors and
a built-in library of attribute, class, id and text patterns. The patterns
avoid generic words ("ad", "banner") on their own; class keywords like
``ad-`` need the literal hyphen so ``adventure-list`` is not an ad.
"""

from __future__ import annotations

import logging
import re
import weakref
from collections.abc import Iterator, Sequence
from dataclasses import dataclass
from urllib.parse import parse_qs, urlparse

from bs4 import BeautifulSoup, Tag

logger = logging.getLogger(__name__)

# Ancestors examined above the target element
MAX_ANCESTOR_DEPTH = 5

REASON_PROCESSED = "already processed"


def _compile(patterns: Sequence[str]) -> tuple[re.Pattern[str], ...]:
    return tuple(re.compile(p, re.IGNORECASE) for p in patterns)


# src of images, frames, scripts
SRC_RULES = _compile(
    [
        r"(?:^|[/._-])ads?(?:[-_]\w*)?\.(?:gif|jpe?g|png|webp|js|html?)\b",
        r"banners?[-_]\d+x\d+",
        r"(?:^|[/.])doubleclick\.(?:net|com)",
        r"(?:^|[/.])googleadservices\.com",
        r"(?:^|[/.])googlesyndication\.com",
        r"(?:^|[/.])amazon-adsystem\.com",
        r"(?:^|[/.])adnxs\.com",
        r"(?:^|[/.])adform\.net",
        r"(?:^|[/.])bidswitch\.net",
        r"(?:^|[/.])criteo\.(?:com|net)",
        r"(?:^|[/.])adsystem\.",
        r"(?:^|[/.])adtech\.",
        r"(?:^|[/.])advert(?:ising)?\.",
        r"(?:^|[/.])affiliat(?:e|ion)\.",
        r"/pagead/",
    ]
)

ID_RULES = _compile(
    [
        r"^ads?(?:[-_][a-z0-9]+)+$",
        r"^ads?\d+$",
        r"^ads?(?:container|slot|unit|frame|box|wrapper|banner)\w*$",
        r"^advert(?:isement|s)?(?:[-_]\w+)?$",
        r"^sponsor(?:ed)?(?:[-_]\w+)?$",
        r"(?:^|[-_])banner[-_]?ads?\b",
        r"^div-gpt-ad",
        r"^google_ads?_",
        r"^googlead",
        r"^dfp[-_]",
        r"^aswift_\d+$",
    ]
)

# Tested against each class token separately
CLASS_RULES = _compile(
    [
        r"^ad-",
        r"-ad$",
        r"-ads?-",
        r"^ads?_",
        r"^ads-",
        r"^ads?(?:by|container|slot|unit|box|wrapper|banner|frame)",
        r"^advert(?:isement|ising|s)?(?:$|[-_])",
        r"^sponsored(?:$|[-_])",
        r"googlead",
        r"adsense",
        r"adwords",
        r"doubleclick",
        r"guanggao",
        r"广告",
    ]
)

NAME_RULES = _compile(
    [
        r"^ads?(?:[-_]\w+|\d+)$",
        r"^advert(?:isement)?(?:[-_]\w+)?$",
        r"^sponsor(?:ed)?(?:[-_]\w+)?$",
        r"^adsense",
        r"^doubleclick",
        r"^google_ads?_",
        r"^aswift_\d+$",
    ]
)

# Text content and title
CONTENT_RULES = _compile(
    [
        r"^(?:advertisement|sponsored|广告|廣告|推广|推廣)(?![a-z])",
    ]
)

AD_DATA_ATTRIBUTES = (
    "data-ad",
    "data-ad-client",
    "data-ad-slot",
    "data-adtest",
    "data-ad-layout",
    "data-ad-format",
)

AD_LINK_FRAGMENTS = (
    "/adclick",
    "/pagead/",
    "doubleclick.net",
    "googleadservices",
    "googlesyndication",
    "amazon-adsystem.com",
    "cpro.baidu.com",
    "pos.baidu.com",
)

AD_LINK_PARAMS = ("adurl", "adid", "adfrom")

# Frame checks
FRAME_TITLE_RULES = _compile([r"advertisement", r"广告"])
FRAME_ID_RULES = _compile([r"ad_?iframe", r"ad[-_]?frame", r"(?:^|[^a-z])ad_", r"^aswift_\d+$"])
FRAME_NAME_RULES = _compile([r"ad_?iframe", r"adframe", r"^aswift_\d+$"])

AD_NETWORK_FRAGMENTS = (
    "doubleclick.net",
    "googleadservices",
    "googlesyndication",
    "adserver",
    "adservice",
    "adsystem",
    "adnxs",
    "adroll",
    "adform",
    "admeld",
    "adtech",
    "/ad/",
    "/ads/",
    "/advert",
    "pagead",
    "cpro.baidu.com",
    "pos.baidu.com",
)

# Standard creative sizes (width, height)
AD_SIZES = frozenset(
    {
        (300, 250),
        (336, 280),
        (728, 90),
        (160, 600),
        (320, 50),
        (300, 600),
        (970, 90),
        (970, 250),
        (250, 250),
        (200, 200),
        (468, 60),
        (120, 600),
    }
)

_STYLE_DIMENSION = {
    "width": re.compile(r"(?:^|;)\s*width\s*:\s*(\d+)(?:px)?\s*(?:;|$)", re.IGNORECASE),
    "height": re.compile(r"(?:^|;)\s*height\s*:\s*(\d+)(?:px)?\s*(?:;|$)", re.IGNORECASE),
}

# Structural tags never reported by a document scan
SKIP_TAGS = frozenset(
    {"html", "head", "body", "script", "style", "noscript", "meta", "link", "title", "template"}
)


@dataclass(frozen=True)
class ElementClassification:
    """Result of classifying an element."""

    is_ad: bool
    reason: str | None = None
    attribute: str | None = None
    value: str | None = None


NOT_AD = ElementClassification(is_ad=False)


class ProcessedMarker:
    """Weakly-held, identity-keyed set of already classified elements.

    Tags compare structurally, so two equal-looking tags would collide in a
    plain ``WeakSet``. Entries vanish when the element is garbage collected.
    """

    def __init__(self) -> None:
        self._elements: weakref.WeakValueDictionary[int, Tag] = weakref.WeakValueDictionary()

    def add(self, element: Tag) -> None:
        self._elements[id(element)] = element

    def discard(self, element: Tag) -> None:
        if element in self:
            del self._elements[id(element)]

    def __contains__(self, element: object) -> bool:
        return self._elements.get(id(element)) is element

    def __len__(self) -> int:
        return len(self._elements)


def iter_ancestry(element: Tag, max_depth: int = MAX_ANCESTOR_DEPTH) -> Iterator[tuple[int, Tag]]:
    """Yield ``(depth, tag)`` for the element and up to ``max_depth`` ancestors.

    The walk stops at the document root; the document itself is not an element.
    """
    current: Tag | None = element
    depth = 0
    while current is not None and not isinstance(current, BeautifulSoup):
        yield depth, current
        if depth >= max_depth:
            return
        current = current.parent
        depth += 1


def _attr(element: Tag, name: str) -> str:
    value = element.get(name)
    if value is None:
        return ""
    if isinstance(value, list):
        return " ".join(value)
    return str(value)


def _first_match(patterns: Sequence[re.Pattern[str]], value: str) -> re.Pattern[str] | None:
    if not value:
        return None
    for pattern in patterns:
        if pattern.search(value):
            return pattern
    return None


def matches_any_selector(element: Tag, selectors: Sequence[str]) -> str | None:
    """Return the first selector the element matches.

    Invalid selectors are skipped.
    """
    for selector in selectors:
        try:
            if element.css.match(selector):
                return selector
        except Exception as e:
            logger.debug("Skipping selector %r: %s", selector, e)
    return None


def _check_selectors(element: Tag, selectors: Sequence[str]) -> ElementClassification:
    for depth, tag in iter_ancestry(element):
        selector = matches_any_selector(tag, selectors)
        if selector is None:
            continue
        where = "element" if depth == 0 else f"ancestor at depth {depth}"
        return ElementClassification(
            is_ad=True,
            reason=f"{where} matches custom selector {selector}",
            attribute="selector",
            value=selector,
        )
    return NOT_AD


def _check_link(tag: Tag) -> tuple[str, str] | None:
    if tag.name not in ("a", "area"):
        return None
    href = _attr(tag, "href")
    if not href:
        return None
    lowered = href.lower()
    for fragment in AD_LINK_FRAGMENTS:
        if fragment in lowered:
            return fragment, href
    try:
        parsed = urlparse(href)
    except ValueError:
        return None
    params = parse_qs(parsed.query)
    for param in AD_LINK_PARAMS:
        if param in params:
            return f"{param}=", href
    if "aclk" in parsed.path:
        return "aclk", href
    return None


def match_presets(tag: Tag) -> ElementClassification:
    """Check a single tag against the built-in pattern libraries.

    Libraries are tried in order: src, id, class, name, text content, title;
    then ad data attributes and ad-click link targets.
    """
    src = _attr(tag, "src")
    pattern = _first_match(SRC_RULES, src)
    if pattern:
        return _preset_hit("src", src, pattern.pattern)

    element_id = _attr(tag, "id")
    pattern = _first_match(ID_RULES, element_id)
    if pattern:
        return _preset_hit("id", element_id, pattern.pattern)

    for token in _attr(tag, "class").split():
        pattern = _first_match(CLASS_RULES, token)
        if pattern:
            return _preset_hit("class", token, pattern.pattern)

    name = _attr(tag, "name")
    pattern = _first_match(NAME_RULES, name)
    if pattern:
        return _preset_hit("name", name, pattern.pattern)

    text = tag.get_text(" ", strip=True)
    pattern = _first_match(CONTENT_RULES, text)
    if pattern:
        return _preset_hit("textContent", text[:50], pattern.pattern)

    title = _attr(tag, "title").strip()
    pattern = _first_match(CONTENT_RULES, title)
    if pattern:
        return _preset_hit("title", title, pattern.pattern)

    for data_attr in AD_DATA_ATTRIBUTES:
        if tag.has_attr(data_attr):
            return _preset_hit(data_attr, _attr(tag, data_attr), data_attr)

    link = _check_link(tag)
    if link:
        fragment, href = link
        return _preset_hit("href", href[:100], fragment)

    return NOT_AD


def _preset_hit(attribute: str, value: str, rule: str) -> ElementClassification:
    return ElementClassification(
        is_ad=True,
        reason=f"{attribute} matches {rule}",
        attribute=attribute,
        value=value,
    )


def _check_presets(element: Tag) -> ElementClassification:
    for depth, tag in iter_ancestry(element):
        if tag.name in SKIP_TAGS:
            continue
        result = match_presets(tag)
        if not result.is_ad:
            continue
        if depth == 0:
            return result
        return ElementClassification(
            is_ad=True,
            reason=f"ancestor at depth {depth}: {result.reason}",
            attribute=result.attribute,
            value=result.value,
        )
    return NOT_AD


def classify_element(
    element: Tag,
    custom_selectors: Sequence[str] = (),
    processed: ProcessedMarker | None = None,
) -> ElementClassification:
    """Classify an element as advertising or not.

    Args:
        element: The tag to classify.
        custom_selectors: Hiding selectors to test the element and its
            ancestors against.
        processed: Marker of elements already classified as ads; members
            short-circuit to an ad verdict and new ads are added to it.

    Returns:
        ``ElementClassification`` with the triggering attribute and value.
    """
    if processed is not None and element in processed:
        return ElementClassification(is_ad=True, reason=REASON_PROCESSED)

    result = NOT_AD
    if custom_selectors:
        result = _check_selectors(element, custom_selectors)
    if not result.is_ad:
        result = _check_presets(element)

    if result.is_ad:
        logger.debug("Ad element <%s>: %s", element.name, result.reason)
        if processed is not None:
            processed.add(element)

    return result


def _dimension(frame: Tag, name: str) -> int | None:
    raw = _attr(frame, name).strip().lower().removesuffix("px")
    if not raw:
        match = _STYLE_DIMENSION[name].search(_attr(frame, "style"))
        raw = match.group(1) if match else ""
    try:
        return int(raw)
    except ValueError:
        return None


def classify_frame(frame: Tag) -> ElementClassification:
    """Classify an iframe using frame-specific signals.

    Checks title/id/name keywords, then the src against known ad network
    fragments, then the frame size against standard ad creative sizes.
    """
    for attribute, rules in (
        ("title", FRAME_TITLE_RULES),
        ("id", FRAME_ID_RULES),
        ("name", FRAME_NAME_RULES),
    ):
        value = _attr(frame, attribute)
        pattern = _first_match(rules, value)
        if pattern:
            return _preset_hit(attribute, value, pattern.pattern)

    src = _attr(frame, "src")
    lowered = src.lower()
    for fragment in AD_NETWORK_FRAGMENTS:
        if fragment in lowered:
            return _preset_hit("src", src[:100], fragment)

    width = _dimension(frame, "width")
    height = _dimension(frame, "height")
    if width is not None and height is not None and (width, height) in AD_SIZES:
        size = f"{width}x{height}"
        return ElementClassification(
            is_ad=True,
            reason=f"standard ad size {size}",
            attribute="size",
            value=size,
        )

    return NOT_AD


def css_path(element: Tag) -> str:
    """Build a structural CSS selector (``html > body > div:nth-of-type(2)``)."""
    steps: list[str] = []
    current: Tag | None = element
    while current is not None and not isinstance(current, BeautifulSoup):
        parent = current.parent
        if parent is None or isinstance(parent, BeautifulSoup):
            steps.append(current.name)
        else:
            index = 1 + sum(
                1
                for sibling in current.previous_siblings
                if isinstance(sibling, Tag) and sibling.name == current.name
            )
            steps.append(f"{current.name}:nth-of-type({index})")
        current = parent
    return " > ".join(reversed(steps))


@dataclass(frozen=True)
class AdFinding:
    """An ad element found by a document scan."""

    element: Tag
    classification: ElementClassification
    path: str


class AdScanner:
    """Scan documents for ad elements."""

    def __init__(
        self,
        custom_selectors: Sequence[str] = (),
        processed: ProcessedMarker | None = None,
    ) -> None:
        self.custom_selectors = list(custom_selectors)
        self.processed = processed if processed is not None else ProcessedMarker()

    def scan(self, root: Tag) -> list[AdFinding]:
        """Find ad elements under ``root`` not reported before.

        Descendants of an element found in this scan, or already processed,
        are not reported separately.

        Args:
            root: Document or subtree to scan.

        Returns:
            New findings in document order.
        """
        findings: list[AdFinding] = []
        flagged: set[int] = set()

        for element in root.find_all(True):
            if any(id(parent) in flagged for parent in element.parents):
                continue
            if element in self.processed:
                flagged.add(id(element))
                continue
            if element.name in SKIP_TAGS:
                continue

            result = NOT_AD
            if element.name == "iframe":
                result = classify_frame(element)
            if not result.is_ad:
                result = classify_element(element, self.custom_selectors)
            if not result.is_ad:
                continue

            self.processed.add(element)
            flagged.add(id(element))
            findings.append(
                AdFinding(element=element, classification=result, path=css_path(element))
            )

        if findings:
            logger.debug("Scan found %d ad elements", len(findings))

        return findings
