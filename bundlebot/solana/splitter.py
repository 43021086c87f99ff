"""
Splits oversized bundles to the relay's transaction limit.
"""

from typing import List

from bundlebot.config import MAX_TX_PER_BUNDLE
from bundlebot.solana.models import Bundle


def split_bundles(bundles: List[Bundle], max_size: int = MAX_TX_PER_BUNDLE) -> List[Bundle]:
    """
    Split bundles so none holds more than max_size transactions.

    The order of transactions across the output is the order of the input.
    Bundles already within the limit are passed through as-is and empty
    bundles are dropped.

    Args:
        bundles: Bundles to split
        max_size: Maximum number of transactions per bundle

    Returns:
        List of bundles within the limit
    """
    if max_size < 1:
        raise ValueError("max_size must be at least 1")

    result: List[Bundle] = []

    for bundle in bundles:
        if not bundle:
            continue

        if len(bundle) <= max_size:
            result.append(bundle)
            continue

        for i in range(0, len(bundle), max_size):
            result.append(bundle[i:i + max_size])

    return result
