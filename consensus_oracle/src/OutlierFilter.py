"""OutlierFilter: Median-relative outlier removal.

Algorithm:
    1. With fewer than MIN_QUOTES_FOR_FILTERING quotes, keep everything
    2. Sort prices ascending and take the element at index n // 2 as the
       median (the upper median for even counts)
    3. threshold = threshold_percent / 100 * median
    4. Drop every quote whose absolute deviation from the median exceeds
       the threshold (a deviation exactly at the threshold is kept)

.. code-block:: python

    >>> quotes = [Quote(1.20, "a"), Quote(1.22, "b"), Quote(5.00, "rogue")]
    >>> result = OutlierFilter(threshold_percent=10.0).filter(quotes)
    >>> [q.source_name for q in result.kept]
    ['a', 'b']
    >>> result.median
    1.22
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Sequence

from .Quote import Quote

logger = logging.getLogger(__name__)

# Below this many quotes there is not enough data to judge outliers.
MIN_QUOTES_FOR_FILTERING = 3


@dataclass
class FilterResult:
    """Outcome of an outlier filtering pass.

    :ivar kept: Quotes within the threshold, in input order.
    :ivar dropped: Quotes removed as outliers, in input order.
    :ivar median: Median used as reference, or None if filtering was skipped.
    """

    kept: list[Quote]
    dropped: list[Quote] = field(default_factory=list)
    median: float | None = None


def upper_median(prices: Sequence[float]) -> float:
    """Return the element at index n // 2 of the ascending sort.

    :param prices: Non-empty sequence of prices.
    :returns: Median price (upper median for even counts).
    :raises ValueError: If prices is empty.
    """
    if not prices:
        raise ValueError("Cannot compute median of empty price list")
    ordered = sorted(prices)
    return ordered[len(ordered) // 2]


class OutlierFilter:
    """Removes quotes that deviate too far from the median price.

    :ivar threshold_percent: Max allowed deviation from the median, in percent.
    """

    def __init__(self, threshold_percent: float = 10.0) -> None:
        """Initialize the filter.

        :param threshold_percent: Max deviation from the median (0-100).
        :raises ValueError: If threshold_percent is outside [0, 100].
        """
        if not 0 <= threshold_percent <= 100:
            raise ValueError("threshold_percent must be between 0 and 100")
        self.threshold_percent = threshold_percent

    def filter(self, quotes: Sequence[Quote]) -> FilterResult:
        """Split quotes into survivors and outliers.

        :param quotes: Quotes collected in this cycle.
        :returns: FilterResult; kept may be empty if every quote is an outlier.
        """
        if len(quotes) < MIN_QUOTES_FOR_FILTERING:
            return FilterResult(kept=list(quotes))

        median = upper_median([q.price for q in quotes])
        threshold = (self.threshold_percent / 100) * median

        kept: list[Quote] = []
        dropped: list[Quote] = []
        for quote in quotes:
            deviation = abs(quote.price - median)
            if deviation > threshold:
                logger.warning(
                    f"Outlier detected: source={quote.source_name} "
                    f"price={quote.price:.6f} median={median:.6f} "
                    f"deviation={deviation:.6f} threshold={threshold:.6f}"
                )
                dropped.append(quote)
            else:
                kept.append(quote)

        return FilterResult(kept=kept, dropped=dropped, median=median)
