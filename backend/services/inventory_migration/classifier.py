"""
Inventory Migration - Outbound Subtype Classification

Outbound orders are typed from their free-text reason. Rules are checked in
order and the first rule with a matching keyword wins; a reason matching no
rule is "other". Matching is a case-insensitive substring test.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Iterable, Optional, Tuple


class OutboundSubtype(str, Enum):
    """Outbound order subtypes."""
    EVENT = "event"
    SALE = "sale"
    OTHER = "other"


@dataclass(frozen=True)
class KeywordRule:
    """Maps any of `keywords` found in a reason to `subtype`."""
    subtype: OutboundSubtype
    keywords: Tuple[str, ...]

    def matches(self, reason: str) -> bool:
        folded = reason.casefold()
        return any(keyword.casefold() in folded for keyword in self.keywords)


DEFAULT_OUTBOUND_RULES: Tuple[KeywordRule, ...] = (
    KeywordRule(OutboundSubtype.EVENT, ("活动", "event")),
    KeywordRule(OutboundSubtype.SALE, ("销售", "sale")),
)


class OutboundSubtypeClassifier:
    """
    Pure reason -> OutboundSubtype mapping.

    Example:
        classifier = OutboundSubtypeClassifier().with_rule(
            KeywordRule(OutboundSubtype.SALE, ("retail",))
        )
        classifier.classify("Retail counter")  # OutboundSubtype.SALE
    """

    def __init__(
        self,
        rules: Iterable[KeywordRule] = DEFAULT_OUTBOUND_RULES,
        default: OutboundSubtype = OutboundSubtype.OTHER
    ):
        self.rules = tuple(rules)
        self.default = default

    def classify(self, reason: Optional[str]) -> OutboundSubtype:
        if not reason:
            return self.default
        for rule in self.rules:
            if rule.matches(reason):
                return rule.subtype
        return self.default

    def with_rule(self, rule: KeywordRule) -> "OutboundSubtypeClassifier":
        """Return a new classifier with `rule` appended after the existing rules."""
        return OutboundSubtypeClassifier(self.rules + (rule,), self.default)


def extract_order_id(reference_no: str, prefix: str = "ORD-") -> Optional[str]:
    """The reference number when it carries the order-number prefix, else None."""
    if prefix and reference_no.startswith(prefix):
        return reference_no
    return None
