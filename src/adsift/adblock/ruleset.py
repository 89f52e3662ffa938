"""
Rule set construction.

Classifies parsed rules into domain-scoped hiding selectors and global rules.
A ``RuleSet`` is immutable; a changed rule list means building a new one.

URL blocking rules and URL blocking exceptions always land in the global
rules, whatever domain annotation the raw line carries. A hiding rule with a
negated domain (``~example.com##.ad``) only records a per-domain exception for
that domain; it does not become a hide-everywhere-else selector.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any, Union

from .parser import (
    Comment,
    ElementHidingExceptionRule,
    ElementHidingRule,
    RuleRecord,
    UnknownRule,
    UrlBlockingExceptionRule,
    UrlBlockingRule,
    parse_rule,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RuleEntry:
    """Raw rule as supplied by the caller."""

    text: str
    enabled: bool = True


RawRuleEntry = Union[str, RuleEntry, Mapping[str, Any]]


@dataclass(frozen=True)
class DomainRules:
    """Hiding selectors recorded for one domain."""

    element_hiding: tuple[str, ...] = ()
    element_hiding_exception: tuple[str, ...] = ()


@dataclass(frozen=True)
class RuleSet:
    """Classified rules, ready for URL and selector queries."""

    domain_rules: Mapping[str, DomainRules] = field(
        default_factory=lambda: MappingProxyType({})
    )
    global_rules: tuple[RuleRecord, ...] = ()

    def __len__(self) -> int:
        return len(self.global_rules) + sum(
            len(r.element_hiding) + len(r.element_hiding_exception)
            for r in self.domain_rules.values()
        )


EMPTY_RULE_SET = RuleSet()


def normalize_entry(entry: RawRuleEntry) -> RuleEntry | None:
    """Convert a raw entry to a ``RuleEntry``; None if it cannot be read."""
    if isinstance(entry, RuleEntry):
        return entry
    if isinstance(entry, str):
        return RuleEntry(text=entry)
    if isinstance(entry, Mapping):
        text = entry.get("text")
        if not isinstance(text, str):
            return None
        enabled = entry.get("enabled", True)
        return RuleEntry(text=text, enabled=enabled is not False)
    return None


def build_rule_set(raw_entries: Iterable[RawRuleEntry]) -> RuleSet:
    """Parse and classify raw rule entries.

    Args:
        raw_entries: Ordered rules, each a string, a ``RuleEntry``, or a
            mapping with ``text`` and optional ``enabled`` (default True).

    Returns:
        A new ``RuleSet``. Disabled entries, blank lines, comments and
        unknown rules contribute nothing.
    """
    hiding: dict[str, list[str]] = {}
    hiding_exceptions: dict[str, list[str]] = {}
    domain_order: list[str] = []
    global_rules: list[RuleRecord] = []
    skipped = 0

    def add(index: dict[str, list[str]], domain: str, selector: str) -> None:
        if domain not in hiding and domain not in hiding_exceptions:
            domain_order.append(domain)
        index.setdefault(domain, []).append(selector)

    for raw in raw_entries:
        entry = normalize_entry(raw)
        if entry is None or not entry.enabled:
            skipped += 1
            continue

        rule = parse_rule(entry.text)
        if rule is None or isinstance(rule, (Comment, UnknownRule)):
            continue

        if isinstance(rule, ElementHidingRule):
            if not rule.domains:
                global_rules.append(rule)
            for spec in rule.domains:
                target = hiding_exceptions if spec.negated else hiding
                add(target, spec.name, rule.selector)
        elif isinstance(rule, ElementHidingExceptionRule):
            if not rule.domains:
                global_rules.append(rule)
            for spec in rule.domains:
                add(hiding_exceptions, spec.name, rule.selector)
        elif isinstance(rule, (UrlBlockingRule, UrlBlockingExceptionRule)):
            global_rules.append(rule)

    domain_rules = {
        domain: DomainRules(
            element_hiding=tuple(hiding.get(domain, ())),
            element_hiding_exception=tuple(hiding_exceptions.get(domain, ())),
        )
        for domain in domain_order
    }

    rule_set = RuleSet(
        domain_rules=MappingProxyType(domain_rules),
        global_rules=tuple(global_rules),
    )

    logger.debug(
        "Built rule set: %d global rules, %d domains, %d disabled or unreadable entries skipped",
        len(rule_set.global_rules),
        len(domain_rules),
        skipped,
    )

    return rule_set
