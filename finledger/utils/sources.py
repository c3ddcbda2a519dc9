"""
FinLedger - Primary/Fallback Source Selection

Several statement figures can be derived from two independent sources
(postings vs. source documents). The policy decides which one is reported;
the name of the winner is always exposed.
"""

from decimal import Decimal
from enum import Enum
from typing import Tuple


class SourcePolicy(str, Enum):
    # Larger of the two; primary wins ties
    MAX = "max"
    # Primary unless it is zero
    PRIMARY_IF_NONZERO = "primary_if_nonzero"


def choose_source(
    primary: Decimal,
    fallback: Decimal,
    policy: SourcePolicy,
    primary_name: str,
    fallback_name: str,
) -> Tuple[Decimal, str]:
    """Return (amount, source name) according to ``policy``."""
    if policy == SourcePolicy.MAX:
        if primary >= fallback:
            return primary, primary_name
        return fallback, fallback_name

    if primary != 0:
        return primary, primary_name
    return fallback, fallback_name
