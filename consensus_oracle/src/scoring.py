"""Weighted averaging and confidence scoring for a set of quotes.

The confidence score rewards both broad source coverage and tight price
agreement:

    source_ratio = min(used / total, 1)
    cv           = population_stddev / mean   (0 when mean is 0)
    consistency  = max(0, 1 - cv * CV_PENALTY)
    confidence   = source_ratio * COVERAGE_WEIGHT + consistency * CONSISTENCY_WEIGHT

.. code-block:: python

    >>> quotes = [Quote(1.20, "a"), Quote(1.22, "b"), Quote(1.25, "c")]
    >>> round(weighted_average(quotes), 4)
    1.2233
"""

from __future__ import annotations

from statistics import fmean, pstdev
from typing import Sequence

from .Quote import Quote

COVERAGE_WEIGHT = 0.6
CONSISTENCY_WEIGHT = 0.4

# A coefficient of variation of 10% or more yields zero consistency.
CV_PENALTY = 10.0


def weighted_average(quotes: Sequence[Quote]) -> float:
    """Compute sum(price * weight) / sum(weight).

    The result is clamped to the input price range, so rounding can never
    push it outside [min(prices), max(prices)].

    :param quotes: Non-empty sequence of quotes.
    :returns: Weighted average price.
    :raises ValueError: If quotes is empty.
    """
    if not quotes:
        raise ValueError("Cannot average an empty quote set")

    total_weight = sum(q.weight for q in quotes)
    weighted_sum = sum(q.weighted_price for q in quotes)
    average = weighted_sum / total_weight

    lowest = min(q.price for q in quotes)
    highest = max(q.price for q in quotes)
    return min(max(average, lowest), highest)


def coefficient_of_variation(prices: Sequence[float]) -> float:
    """Return population stddev / mean, or 0 for a zero mean."""
    mean = fmean(prices)
    if mean == 0:
        return 0.0
    return pstdev(prices, mu=mean) / mean


def confidence_score(quotes: Sequence[Quote], total_sources: int) -> float:
    """Rate how trustworthy an aggregate built from quotes is.

    :param quotes: Quotes used in the aggregate (post-filter).
    :param total_sources: Number of registered sources.
    :returns: Score in [0, 1].
    :raises ValueError: If quotes is empty or total_sources is not positive.
    """
    if not quotes:
        raise ValueError("Cannot score an empty quote set")
    if total_sources < 1:
        raise ValueError("total_sources must be at least 1")

    source_ratio = min(len(quotes) / total_sources, 1.0)
    cv = coefficient_of_variation([q.price for q in quotes])
    consistency = max(0.0, 1.0 - cv * CV_PENALTY)

    score = source_ratio * COVERAGE_WEIGHT + consistency * CONSISTENCY_WEIGHT
    return min(max(score, 0.0), 1.0)
