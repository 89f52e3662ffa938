"""
URL decision engine.

Resolves block/allow verdicts for request URLs. Exception rules are checked
first and always win, whatever their position relative to blocking rules.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from .parser import UrlBlockingExceptionRule, UrlBlockingRule

if TYPE_CHECKING:
    from .parser import UrlRule
    from .ruleset import RuleSet

logger = logging.getLogger(__name__)

REASON_EXCEPTION = "exception"


@dataclass(frozen=True)
class UrlCheckResult:
    """Result of a URL check."""

    blocked: bool
    reason: str | None = None
    matched_rule: str | None = None


NOT_BLOCKED = UrlCheckResult(blocked=False)


def _matches(rule: UrlRule, url: str) -> bool:
    """Run a rule's matcher; inert rules and matcher errors never match."""
    matcher: re.Pattern[str] | None = rule.matcher
    if matcher is None:
        return False
    try:
        return matcher.search(url) is not None
    except Exception as e:
        logger.warning("URL rule %r failed on %s: %s", rule.pattern_text, url[:80], e)
        return False


def find_exception(url: str, rule_set: RuleSet) -> UrlBlockingExceptionRule | None:
    """Return the first URL exception rule matching ``url``."""
    for rule in rule_set.global_rules:
        if isinstance(rule, UrlBlockingExceptionRule) and _matches(rule, url):
            return rule
    return None


def find_blocking_rule(url: str, rule_set: RuleSet) -> UrlBlockingRule | None:
    """Return the first URL blocking rule matching ``url``."""
    for rule in rule_set.global_rules:
        if isinstance(rule, UrlBlockingRule) and _matches(rule, url):
            return rule
    return None


def check_url(url: Any, rule_set: RuleSet) -> UrlCheckResult:
    """Check whether a URL should be blocked.

    Args:
        url: Request URL. Anything other than a non-empty string is allowed.
        rule_set: Rules to check against.

    Returns:
        ``UrlCheckResult``. ``reason`` is ``"exception"`` when an exception
        rule allowed the URL; ``matched_rule`` holds the deciding pattern text.
    """
    if not isinstance(url, str) or not url:
        return NOT_BLOCKED

    exception = find_exception(url, rule_set)
    if exception is not None:
        logger.debug("URL exception: %s (rule %s)", url[:80], exception.pattern_text)
        return UrlCheckResult(
            blocked=False,
            reason=REASON_EXCEPTION,
            matched_rule=exception.pattern_text,
        )

    blocking = find_blocking_rule(url, rule_set)
    if blocking is not None:
        logger.debug("URL blocked: %s (rule %s)", url[:80], blocking.pattern_text)
        return UrlCheckResult(blocked=True, matched_rule=blocking.pattern_text)

    return NOT_BLOCKED
