"""
Main adblock engine that ties URL blocking, element hiding and heuristic
element scans together and wires them into Playwright pages.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Iterable, Sequence
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any
from urllib.parse import urlparse

from bs4 import BeautifulSoup

from adsift.config import AdsiftConfig, resolve_rule_files

from .cosmetic import HIDE_DECLARATION, css_for_selectors, inject_css, selectors_for_domain
from .heuristics import (
    AdFinding,
    AdScanner,
    ElementClassification,
    ProcessedMarker,
    classify_element,
    classify_frame,
)
from .matcher import REASON_EXCEPTION, UrlCheckResult, check_url
from .rule_lists import load_rule_file
from .ruleset import EMPTY_RULE_SET, RawRuleEntry, RuleSet, build_rule_set

if TYPE_CHECKING:
    from bs4 import Tag
    from playwright.async_api import Frame, Page, Route

logger = logging.getLogger(__name__)

# Name of the page binding the mutation observer calls
MUTATION_BINDING = "__adsiftMutation"

# Attribute set on live ad elements; one CSS rule hides every marked node
AD_MARKER_ATTRIBUTE = "data-adsift-ad"

MARKER_CSS = f"[{AD_MARKER_ATTRIBUTE}] {HIDE_DECLARATION}"

MARK_ELEMENTS_SCRIPT = f"""
(els) => {{
    els.forEach((e) => e.setAttribute('{AD_MARKER_ATTRIBUTE}', ''));
    return els.length;
}}
"""

MUTATION_OBSERVER_SCRIPT = f"""
(() => {{
    if (window.__adsiftObserver) return;
    const notify = () => {{
        try {{ window.{MUTATION_BINDING}(); }} catch (e) {{}}
    }};
    const start = () => {{
        if (window.__adsiftObserver || !document.documentElement) return;
        window.__adsiftObserver = new MutationObserver((mutations) => {{
            if (mutations.some((m) => m.type === 'childList' && m.addedNodes.length > 0)) {{
                notify();
            }}
        }});
        window.__adsiftObserver.observe(document.documentElement, {{
            childList: true,
            subtree: true,
        }});
        notify();
    }};
    if (document.readyState === 'loading') {{
        document.addEventListener('DOMContentLoaded', start);
    }} else {{
        start();
    }}
}})();
"""


def _hostname(url: str) -> str:
    parsed = urlparse(url)
    hostname = parsed.netloc.lower()
    if "@" in hostname:
        hostname = hostname.rsplit("@", 1)[1]
    if ":" in hostname:
        hostname = hostname.split(":")[0]
    return hostname


class ScanScheduler:
    """Coalesce scan requests into one delayed run.

    Requests arriving while a run is waiting join it; the run starts
    ``delay`` seconds after the first request. A request arriving while the
    callback is running schedules one more run after it.
    """

    def __init__(self, callback: Callable[[], Awaitable[Any]], delay: float) -> None:
        self._callback = callback
        self._delay = delay
        self._pending: asyncio.Task[None] | None = None
        self._running = False
        self._rerun = False

    @property
    def pending(self) -> bool:
        return self._pending is not None and not self._pending.done()

    def request(self, *args: Any) -> None:
        """Request a scan. Extra arguments from page bindings are ignored."""
        if self.pending:
            if self._running:
                self._rerun = True
            return
        self._pending = asyncio.create_task(self._run())

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self._delay)
            self._rerun = False
            self._running = True
            try:
                await self._callback()
            except Exception as e:
                logger.debug("Scheduled scan failed: %s", e)
            finally:
                self._running = False
            if not self._rerun:
                return

    def cancel(self) -> None:
        if self._pending is not None:
            self._pending.cancel()
            self._pending = None
        self._running = False
        self._rerun = False


@dataclass
class _PageState:
    scheduler: ScanScheduler | None = None
    # Whether the document carries the marker hiding rule
    marker_css_injected: bool = False


class AdblockEngine:
    """Adblock engine holding one rule set, replaced wholesale on update."""

    def __init__(
        self,
        rules: Iterable[RawRuleEntry] = (),
        config: AdsiftConfig | None = None,
    ) -> None:
        """Initialize the engine.

        Args:
            rules: Raw rule entries to build the initial rule set from.
            config: Engine configuration. If None, uses defaults.
        """
        self.config = config if config is not None else AdsiftConfig()
        self._rule_set: RuleSet = EMPTY_RULE_SET
        self._processed = ProcessedMarker()

        # Statistics
        self._requests_checked = 0
        self._requests_blocked = 0
        self._requests_excepted = 0
        self._elements_hidden = 0

        self.update(rules)

    @classmethod
    def from_config(cls, config: AdsiftConfig | None = None) -> AdblockEngine:
        """Create an engine from configuration, loading its rule files."""
        if config is None:
            config = AdsiftConfig.load()

        entries: list[RawRuleEntry] = []
        for path in resolve_rule_files(config):
            try:
                entries.extend(load_rule_file(path))
            except OSError as e:
                logger.warning("Failed to load rule file %s: %s", path, e)

        return cls(entries, config)

    @property
    def rule_set(self) -> RuleSet:
        return self._rule_set

    def update(self, raw_entries: Iterable[RawRuleEntry]) -> RuleSet:
        """Rebuild the rule set from a complete rule list.

        The new set replaces the old one in a single assignment, so queries
        see either the old or the new rules.

        Args:
            raw_entries: The complete, ordered rule list.

        Returns:
            The new rule set.
        """
        if self.config.custom_rules_enabled:
            rule_set = build_rule_set(raw_entries)
        else:
            rule_set = EMPTY_RULE_SET
        self._rule_set = rule_set
        return rule_set

    def check_url(self, url: Any) -> UrlCheckResult:
        """Check a URL against the current rules."""
        return check_url(url, self._rule_set)

    def selectors_for_domain(self, domain: str) -> list[str]:
        """Get hiding selectors for a page hostname."""
        return selectors_for_domain(domain, self._rule_set)

    def classify_element(
        self, element: Tag, custom_selectors: Sequence[str] = ()
    ) -> ElementClassification:
        """Classify an element, remembering elements found to be ads."""
        return classify_element(element, custom_selectors, self._processed)

    def classify_frame(self, frame: Tag) -> ElementClassification:
        """Classify an iframe."""
        return classify_frame(frame)

    def scan_document(self, root: Tag, hostname: str = "") -> list[AdFinding]:
        """Scan a parsed document for ad elements.

        Args:
            root: Parsed document or subtree.
            hostname: Page hostname, used to pick the custom selectors.

        Returns:
            Newly found ad elements.
        """
        selectors = self.selectors_for_domain(hostname) if hostname else []
        return AdScanner(selectors, self._processed).scan(root)

    async def setup_page(self, page: Page) -> None:
        """Setup ad filtering for a page.

        Installs the route handler for network blocking, element hiding on
        navigation and, with heuristics enabled, debounced element scans on
        DOM mutations.

        Args:
            page: The Playwright page to setup.
        """
        state = _PageState()

        if self.config.adblock_enabled:
            await page.route("**/*", self._handle_route)

        page.on(
            "framenavigated",
            lambda frame: asyncio.create_task(self._on_frame_navigated(frame, state)),
        )

        if self.config.heuristics_enabled:
            state.scheduler = ScanScheduler(
                lambda: self._scan_and_hide(page, state), self.config.scan_delay
            )
            try:
                await page.expose_function(MUTATION_BINDING, state.scheduler.request)
                await page.add_init_script(MUTATION_OBSERVER_SCRIPT)
            except Exception as e:
                logger.debug("Failed to install mutation observer: %s", e)

        logger.info(
            "Adblock setup complete for page (%d rules, heuristics %s)",
            len(self._rule_set),
            "on" if self.config.heuristics_enabled else "off",
        )

    async def _handle_route(self, route: Route) -> None:
        """Handle a route (network request)."""
        url = route.request.url

        # Skip non-http(s) URLs
        if not url.startswith(("http://", "https://")):
            await route.continue_()
            return

        self._requests_checked += 1
        result = self.check_url(url)

        if result.blocked:
            self._requests_blocked += 1
            logger.debug("Blocking: %s", url[:80])
            try:
                await route.abort("blockedbyclient")
            except Exception as e:
                logger.debug("Failed to abort: %s", e)
            return

        if result.reason == REASON_EXCEPTION:
            self._requests_excepted += 1

        try:
            await route.continue_()
        except Exception as e:
            # Route may already be handled
            logger.debug("Failed to continue route: %s", e)

    async def _on_frame_navigated(self, frame: Frame, state: _PageState) -> None:
        """Inject element hiding CSS when the main frame navigates."""
        # Only handle main frame
        if frame.parent_frame is not None:
            return

        url = frame.url
        if not url or not url.startswith(("http://", "https://")):
            return

        state.marker_css_injected = False
        hostname = _hostname(url)
        css = css_for_selectors(self.selectors_for_domain(hostname))
        if await inject_css(frame.page, css):
            logger.debug("Injected cosmetic CSS for %s", hostname)

    async def scan_page(self, page: Page) -> list[AdFinding]:
        """Scan the current page content for ad elements."""
        hostname = _hostname(page.url)
        html = await page.content()
        soup = BeautifulSoup(html, "html.parser")
        return self.scan_document(soup, hostname)

    async def _scan_and_hide(self, page: Page, state: _PageState) -> None:
        """Mark newly found ad elements in the live page so the marker rule hides them.

        Paths only locate elements at scan time; the hiding itself follows the
        marked nodes, not their positions.
        """
        findings = await self.scan_page(page)
        paths = [f.path for f in findings if not f.element.has_attr(AD_MARKER_ATTRIBUTE)]
        if not paths:
            return

        if not state.marker_css_injected:
            state.marker_css_injected = await inject_css(page, MARKER_CSS)

        marked = 0
        for path in paths:
            try:
                marked += await page.eval_on_selector_all(path, MARK_ELEMENTS_SCRIPT)
            except Exception as e:
                logger.debug("Failed to mark ad element %s: %s", path, e)

        if marked:
            self._elements_hidden += marked
            logger.debug("Hid %d ad elements on %s", marked, page.url[:80])

    def get_stats(self) -> dict[str, int]:
        """Get blocking statistics."""
        return {
            "requests_checked": self._requests_checked,
            "requests_blocked": self._requests_blocked,
            "requests_excepted": self._requests_excepted,
            "elements_hidden": self._elements_hidden,
        }
