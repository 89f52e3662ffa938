"""
Filter rule parser.

Parses single lines of the supported filter syntax subset into typed rule
records: comments, element hiding rules (``##``, ``#?#``), element hiding
exceptions (``#@#``), URL blocking rules and URL blocking exceptions (``@@``).

Domain names in hiding rules are lowercased. A domain list that names no
domain (``~##.ad``, ``,##.ad``) makes the line an unknown rule.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from typing import ClassVar, Union

from .patterns import compile_url_pattern


class RuleType(Enum):
    """Type of filter rule."""

    COMMENT = "comment"
    UNKNOWN = "unknown"
    ELEMENT_HIDING = "element hiding"
    ELEMENT_HIDING_EXCEPTION = "element hiding exception"
    URL_BLOCKING = "URL blocking"
    URL_BLOCKING_EXCEPTION = "URL blocking exception"


# Prefixes that make a leading "#" a hiding rule rather than a comment
_HIDING_PREFIXES = ("##", "#@#", "#?#")

# Characters that make a line a URL pattern
_URL_PATTERN_CHARS = ("^", "*")


@dataclass(frozen=True)
class DomainSpec:
    """One entry of a hiding rule's domain list."""

    name: str
    negated: bool = False


@dataclass(frozen=True)
class Comment:
    """Comment line (``! text``)."""

    rule_type: ClassVar[RuleType] = RuleType.COMMENT

    text: str


@dataclass(frozen=True)
class UnknownRule:
    """Line that is not part of the supported syntax."""

    rule_type: ClassVar[RuleType] = RuleType.UNKNOWN

    text: str


@dataclass(frozen=True)
class ElementHidingRule:
    """Element hiding rule: ``example.com##.banner-ad``."""

    rule_type: ClassVar[RuleType] = RuleType.ELEMENT_HIDING

    selector: str
    domains: tuple[DomainSpec, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class ElementHidingExceptionRule:
    """Element hiding exception: ``example.com#@#.banner-ad``."""

    rule_type: ClassVar[RuleType] = RuleType.ELEMENT_HIDING_EXCEPTION

    selector: str
    domains: tuple[DomainSpec, ...] = field(default_factory=tuple)


@dataclass(frozen=True)
class UrlBlockingRule:
    """URL blocking rule: ``||ads.example.com^``."""

    rule_type: ClassVar[RuleType] = RuleType.URL_BLOCKING

    pattern_text: str
    matcher: re.Pattern[str] | None


@dataclass(frozen=True)
class UrlBlockingExceptionRule:
    """URL blocking exception: ``@@||ads.example.com/safe.js|``."""

    rule_type: ClassVar[RuleType] = RuleType.URL_BLOCKING_EXCEPTION

    pattern_text: str
    matcher: re.Pattern[str] | None


RuleRecord = Union[
    Comment,
    UnknownRule,
    ElementHidingRule,
    ElementHidingExceptionRule,
    UrlBlockingRule,
    UrlBlockingExceptionRule,
]

HidingRule = Union[ElementHidingRule, ElementHidingExceptionRule]
UrlRule = Union[UrlBlockingRule, UrlBlockingExceptionRule]


def parse_domains(domain_part: str) -> tuple[DomainSpec, ...]:
    """Parse a comma-separated domain list; ``~`` marks a negated domain."""
    specs: list[DomainSpec] = []
    for domain in domain_part.split(","):
        domain = domain.strip().lower()
        if not domain:
            continue
        if domain.startswith("~"):
            name = domain[1:].strip()
            if name:
                specs.append(DomainSpec(name=name, negated=True))
        else:
            specs.append(DomainSpec(name=domain))
    return tuple(specs)


def _is_comment(line: str) -> bool:
    if line.startswith("!"):
        return True
    return line.startswith("#") and not line.startswith(_HIDING_PREFIXES)


def _split_hiding(line: str, sep: str) -> tuple[tuple[DomainSpec, ...] | None, str]:
    """Split a hiding rule; domains are None when the list names no domain."""
    domain_part, selector = line.split(sep, 1)
    domains = parse_domains(domain_part)
    if domain_part.strip() and not domains:
        return None, selector.strip()
    return domains, selector.strip()


def parse_rule(line: str) -> RuleRecord | None:
    """Parse one line of filter text.

    Args:
        line: Rule text. Surrounding whitespace is ignored.

    Returns:
        The parsed rule record, or None for a blank line. Never raises:
        unrecognized syntax becomes an ``UnknownRule`` and an uncompilable URL
        pattern becomes a rule with ``matcher=None``.
    """
    line = line.strip()
    if not line:
        return None

    if _is_comment(line):
        return Comment(text=line)

    if line.startswith("@@"):
        pattern = line[2:]
        return UrlBlockingExceptionRule(
            pattern_text=pattern, matcher=compile_url_pattern(pattern)
        )

    if "#@#" in line:
        domains, selector = _split_hiding(line, "#@#")
        if domains is None or not selector:
            return UnknownRule(text=line)
        return ElementHidingExceptionRule(selector=selector, domains=domains)

    if "##" in line or "#?#" in line:
        sep = "##" if "##" in line else "#?#"
        domains, selector = _split_hiding(line, sep)
        if domains is None or not selector:
            return UnknownRule(text=line)
        return ElementHidingRule(selector=selector, domains=domains)

    if line.startswith("|") or any(c in line for c in _URL_PATTERN_CHARS):
        return UrlBlockingRule(pattern_text=line, matcher=compile_url_pattern(line))

    return UnknownRule(text=line)
