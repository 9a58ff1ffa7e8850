"""Quote: a single source's price observation.

Quotes are produced by a source on each successful fetch and consumed once per
aggregation cycle. They are immutable once created.

.. code-block:: python

    >>> quote = Quote(price=1.25, source_name="okx", weight=2.0)
    >>> quote.weighted_price
    2.5
"""

from __future__ import annotations

import math
from dataclasses import dataclass, field
from datetime import datetime, timezone


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class Quote:
    """One source's observation of the asset price.

    :ivar price: Observed price in USD, strictly positive.
    :ivar source_name: Name of the source that produced the quote.
    :ivar observed_at: When the price was observed (UTC).
    :ivar weight: Relative weight in the weighted average, strictly positive.
    """

    price: float
    source_name: str
    observed_at: datetime = field(default_factory=utc_now)
    weight: float = 1.0

    def __post_init__(self) -> None:
        """Validate price and weight.

        :raises ValueError: If price or weight is not a positive finite number.
        """
        if not _is_positive(self.price):
            raise ValueError(f"Quote price must be positive and finite, got {self.price!r}")
        if not _is_positive(self.weight):
            raise ValueError(f"Quote weight must be positive and finite, got {self.weight!r}")

    @property
    def weighted_price(self) -> float:
        """Return price multiplied by weight."""
        return self.price * self.weight


def _is_positive(value: float) -> bool:
    return isinstance(value, (int, float)) and math.isfinite(value) and value > 0
