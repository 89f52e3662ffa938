"""
Element hiding selectors and CSS injection.

Collects the hiding selectors that apply to a page hostname and renders them
as CSS rules to inject into the page.

Domain keys are stored lowercased by the parser and hostnames are lowercased
before the exact key lookup, so matching ignores hostname case. There is no
parent-domain fallback.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from .parser import ElementHidingRule

if TYPE_CHECKING:
    from playwright.async_api import Page

    from .ruleset import RuleSet

logger = logging.getLogger(__name__)

# Selectors per CSS rule; some browsers limit selector count per rule
CSS_BATCH_SIZE = 100

HIDE_DECLARATION = "{ display: none !important; }"


def global_selectors(rule_set: RuleSet) -> list[str]:
    """Selectors of hiding rules that carry no domain list."""
    return [
        rule.selector
        for rule in rule_set.global_rules
        if isinstance(rule, ElementHidingRule)
    ]


def selectors_for_domain(domain: str, rule_set: RuleSet) -> list[str]:
    """Get the hiding selectors for a page hostname.

    Global selectors come first, followed by the selectors recorded for the
    exact hostname. Exception selectors are not subtracted.

    Args:
        domain: Page hostname.
        rule_set: Rules to read from.

    Returns:
        Ordered list of CSS selectors.
    """
    selectors = global_selectors(rule_set)

    domain_rules = rule_set.domain_rules.get(domain.lower()) if domain else None
    if domain_rules is not None:
        selectors.extend(domain_rules.element_hiding)

    return selectors


def css_for_selectors(selectors: Iterable[str]) -> str:
    """Render selectors as ``display: none`` CSS rules.

    Args:
        selectors: CSS selectors to hide.

    Returns:
        CSS text, empty if there is nothing to hide.
    """
    # Braces would terminate the rule early
    safe = [s for s in selectors if s and "{" not in s and "}" not in s]

    css_rules: list[str] = []
    for i in range(0, len(safe), CSS_BATCH_SIZE):
        batch = safe[i : i + CSS_BATCH_SIZE]
        css_rules.append(f"{', '.join(batch)} {HIDE_DECLARATION}")

    return "\n".join(css_rules)


def css_for_domain(domain: str, rule_set: RuleSet) -> str:
    """Get the hiding CSS for a page hostname."""
    return css_for_selectors(selectors_for_domain(domain, rule_set))


async def inject_css(page: Page, css: str) -> bool:
    """Inject CSS into a page.

    Args:
        page: The Playwright page.
        css: CSS text; nothing is injected when empty.

    Returns:
        True if a style tag was added.
    """
    if not css:
        return False

    try:
        await page.add_style_tag(content=css)
        return True
    except Exception as e:
        logger.debug("Failed to inject cosmetic CSS: %s", e)
        return False
