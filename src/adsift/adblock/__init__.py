"""
Ad filtering for adsift.

Provides URL blocking and element hiding driven by filter rules, plus
heuristic ad detection for page elements.
"""

from .cosmetic import selectors_for_domain
from .engine import AdblockEngine
from .heuristics import ProcessedMarker, classify_element, classify_frame
from .matcher import UrlCheckResult, check_url
from .parser import RuleType, parse_rule
from .patterns import compile_url_pattern
from .ruleset import RuleEntry, RuleSet, build_rule_set

__all__ = [
    "AdblockEngine",
    "ProcessedMarker",
    "RuleEntry",
    "RuleSet",
    "RuleType",
    "UrlCheckResult",
    "build_rule_set",
    "check_url",
    "classify_element",
    "classify_frame",
    "compile_url_pattern",
    "parse_rule",
    "selectors_for_domain",
]
