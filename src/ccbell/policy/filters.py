"""Event filters — config-driven predicates over event metadata."""

import logging
import re

from ccbell.config import FilterRule

logger = logging.getLogger(__name__)


def rule_passes(rule: FilterRule, metadata: dict[str, str]) -> bool:
    """Evaluate one filter rule.

    A missing field or a non-numeric value under a numeric bound fails the
    rule. An invalid regex is ignored (treated as matching).

    Args:
        rule: The configured rule.
        metadata: Event metadata from the CLI.

    Returns:
        True if the notification may proceed as far as this rule is concerned.
    """
    value = metadata.get(rule.field)
    matched = value is not None

    if matched and rule.pattern is not None:
        try:
            matched = re.search(rule.pattern, value) is not None
        except re.error as exc:
            logger.warning("Ignoring invalid filter pattern %r: %s", rule.pattern, exc)

    if matched and (rule.min is not None or rule.max is not None):
        try:
            number = float(value)
        except ValueError:
            matched = False
        else:
            if rule.min is not None and number < rule.min:
                matched = False
            if rule.max is not None and number > rule.max:
                matched = False

    return matched != rule.negate


def first_failing_rule(rules: list[FilterRule], metadata: dict[str, str]) -> FilterRule | None:
    """Return the first rule that rejects the metadata, or None if all pass."""
    for rule in rules:
        if not rule_passes(rule, metadata):
            return rule
    return None
