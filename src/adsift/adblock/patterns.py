"""
URL pattern compiler for filter-syntax blocking rules.

Turns patterns like ``||ads.example.com^`` or ``|https://cdn.*/banner|`` into
precompiled, case-insensitive regular expressions.
"""

from __future__ import annotations

import logging
import re

logger = logging.getLogger(__name__)

# "||" anchor: start of the URL, start of the host after the scheme, or a label boundary
DOMAIN_ANCHOR = r"(?:^|://|\.)"

# "^" separator: anything but a letter, digit, _ . - % ; or the end of the URL
SEPARATOR = r"(?:[^A-Za-z0-9_.%\-]|$)"

WILDCARD = ".*"


def _translate(body: str) -> str:
    """Translate the pattern body, escaping literals before substituting wildcards."""
    parts: list[str] = []
    for c in body:
        if c == "*":
            parts.append(WILDCARD)
        elif c == "^":
            parts.append(SEPARATOR)
        else:
            parts.append(re.escape(c))
    return "".join(parts)


def compile_url_pattern(pattern: str) -> re.Pattern[str] | None:
    """Compile a URL blocking pattern into a matcher.

    Args:
        pattern: Pattern text without any ``@@`` exception prefix.

    Returns:
        Compiled regex to ``search`` URLs with, or None if the pattern could
        not be compiled (the rule is then inert).
    """
    body = pattern
    prefix = ""
    suffix = ""

    if body.startswith("||"):
        prefix = DOMAIN_ANCHOR
        body = body[2:]
    elif body.startswith("|"):
        prefix = "^"
        body = body[1:]

    if body.endswith("|"):
        suffix = "$"
        body = body[:-1]

    try:
        return re.compile(prefix + _translate(body) + suffix, re.IGNORECASE)
    except (re.error, OverflowError, RecursionError) as e:
        logger.warning("Could not compile URL pattern %r: %s", pattern, e)
        return None
