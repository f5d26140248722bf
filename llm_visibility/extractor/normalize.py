"""
Entity-name normalization.

Two names refer to the same company exactly when their normalized forms are
equal. There is deliberately no fuzzy matching and no alias table.

    >>> normalize("Shopify Inc.")
    'shopifyinc'
    >>> normalize("shopify-inc")
    'shopifyinc'
"""

import re

_NON_ALNUM = re.compile(r"[^a-z0-9]")


def normalize(name: str) -> str:
    """Lowercase and strip every character outside [a-z0-9]."""
    return _NON_ALNUM.sub("", name.lower())


def same_entity(a: str, b: str) -> bool:
    """True when both names normalize to the same non-empty token."""
    normalized = normalize(a)
    return bool(normalized) and normalized == normalize(b)
