"""
Plain-text rule lists.

Reads and writes rule lists as text (one rule per line, ``!`` comments) and
validates rule lines before they are added to a list.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from .parser import Comment, RuleType, parse_rule
from .ruleset import RawRuleEntry, RuleEntry, normalize_entry

logger = logging.getLogger(__name__)

EXPORT_HEADER = "! adsift custom filter rules"
DISABLED_PREFIX = "! disabled: "


@dataclass(frozen=True)
class RuleValidation:
    """Validation result for a single rule line."""

    rule: str
    valid: bool
    rule_type: RuleType | None = None
    message: str | None = None


def validate_rule(line: str, existing: Iterable[str] = ()) -> RuleValidation:
    """Validate a rule line.

    Args:
        line: Rule text.
        existing: Rule texts already in the list; a duplicate is invalid.

    Returns:
        ``RuleValidation`` with the parsed rule type.
    """
    text = line.strip()
    if not text:
        return RuleValidation(rule=line, valid=False, message="Rule is empty")

    rule = parse_rule(text)
    if rule is None:
        return RuleValidation(rule=line, valid=False, message="Rule is empty")

    if not isinstance(rule, Comment) and text in set(existing):
        return RuleValidation(
            rule=line,
            valid=False,
            rule_type=rule.rule_type,
            message="Rule already exists",
        )

    return RuleValidation(rule=line, valid=True, rule_type=rule.rule_type)


def validate_rules(lines: Iterable[str]) -> list[RuleValidation]:
    """Validate each line independently."""
    return [validate_rule(line) for line in lines]


def parse_rule_text(content: str) -> list[RuleEntry]:
    """Import rules from text.

    Blank lines and comments are skipped, except ``! disabled: <rule>`` lines
    which come back as disabled entries. Duplicates keep the first occurrence.

    Args:
        content: Rule list text.

    Returns:
        Rule entries in file order.
    """
    entries: list[RuleEntry] = []
    seen: set[str] = set()
    skipped = 0

    for line in content.splitlines():
        line = line.strip()
        enabled = True
        if line.startswith(DISABLED_PREFIX):
            line = line[len(DISABLED_PREFIX) :].strip()
            enabled = False

        if not line or isinstance(parse_rule(line), Comment):
            continue

        if line in seen:
            skipped += 1
            continue

        seen.add(line)
        entries.append(RuleEntry(text=line, enabled=enabled))

    logger.debug("Imported %d rules, skipped %d duplicates", len(entries), skipped)

    return entries


def format_rule_text(entries: Iterable[RawRuleEntry], exported_at: datetime | None = None) -> str:
    """Export rules as text, writing disabled rules as comments.

    Args:
        entries: Rules to export.
        exported_at: Timestamp for the header; defaults to now (UTC).

    Returns:
        Rule list text ending in a newline.
    """
    if exported_at is None:
        exported_at = datetime.now(timezone.utc)

    lines = [EXPORT_HEADER, f"! exported: {exported_at.isoformat(timespec='seconds')}", ""]
    for raw in entries:
        entry = normalize_entry(raw)
        if entry is None or not entry.text.strip():
            continue
        if entry.enabled:
            lines.append(entry.text)
        else:
            lines.append(DISABLED_PREFIX + entry.text)

    return "\n".join(lines) + "\n"


def load_rule_file(path: Path) -> list[RuleEntry]:
    """Load a rule list file."""
    with open(path, encoding="utf-8") as f:
        content = f.read()

    entries = parse_rule_text(content)
    logger.debug("Loaded rule file %s (%d rules)", path, len(entries))
    return entries


def save_rule_file(path: Path, entries: Iterable[RawRuleEntry]) -> None:
    """Write a rule list file, creating parent directories."""
    path.parent.mkdir(parents=True, exist_ok=True)

    with open(path, "w", encoding="utf-8") as f:
        f.write(format_rule_text(entries))
