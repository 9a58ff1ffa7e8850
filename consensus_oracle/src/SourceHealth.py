"""SourceHealth: Per-source rolling health statistics.

Every source owns exactly one SourceHealthTracker and is the only writer to it.
Everything outside the source reads immutable SourceHealth snapshots.

Latencies are kept in a bounded ring buffer: once it holds
RECENT_LATENCY_CAPACITY samples, the oldest sample is evicted first.

.. code-block:: python

    >>> tracker = SourceHealthTracker("okx")
    >>> tracker.record_success(120.0)
    >>> tracker.record_failure("HTTP 503: unavailable")
    >>> snapshot = tracker.snapshot()
    >>> snapshot.success_rate
    0.5
    >>> snapshot.status
    'active'
"""

from __future__ import annotations

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from .Quote import utc_now

# Number of latency samples retained per source.
RECENT_LATENCY_CAPACITY = 100


@dataclass(frozen=True)
class SourceHealth:
    """Read-only snapshot of a source's health.

    :ivar name: Source name.
    :ivar success_count: Total successful fetches.
    :ivar error_count: Total failed fetches.
    :ivar last_success_at: Time of the last successful fetch, if any.
    :ivar last_error: Message of the last failure, if any.
    :ivar recent_latencies_ms: Latencies of the most recent successful fetches.
    """

    name: str
    success_count: int = 0
    error_count: int = 0
    last_success_at: datetime | None = None
    last_error: str | None = None
    recent_latencies_ms: tuple[float, ...] = ()

    @property
    def success_rate(self) -> float:
        """Fraction of fetch attempts that succeeded (0 when never attempted)."""
        total = self.success_count + self.error_count
        if total == 0:
            return 0.0
        return self.success_count / total

    @property
    def avg_response_time_ms(self) -> float:
        """Mean latency of the retained samples (0 when there are none)."""
        if not self.recent_latencies_ms:
            return 0.0
        return sum(self.recent_latencies_ms) / len(self.recent_latencies_ms)

    @property
    def status(self) -> str:
        """Return "active" unless the source has only ever failed."""
        if self.error_count == 0 or self.success_count > 0:
            return "active"
        return "error"

    def to_dict(self) -> dict[str, Any]:
        """Serialize the snapshot for the source status endpoint."""
        return {
            "name": self.name,
            "status": self.status,
            "last_success": (
                self.last_success_at.isoformat() if self.last_success_at else None
            ),
            "last_error": self.last_error,
            "success_rate": self.success_rate,
            "avg_response_time_ms": self.avg_response_time_ms,
            "success_count": self.success_count,
            "error_count": self.error_count,
        }


class SourceHealthTracker:
    """Mutable health record owned by a single source.

    :ivar name: Source name the record belongs to.
    :ivar success_count: Total successful fetches.
    :ivar error_count: Total failed fetches.
    :ivar last_success_at: Time of the last successful fetch.
    :ivar last_error: Message of the last failure.
    """

    def __init__(
        self,
        name: str,
        latency_capacity: int = RECENT_LATENCY_CAPACITY,
    ) -> None:
        """Initialize an empty health record.

        :param name: Source name.
        :param latency_capacity: Maximum number of latency samples retained.
        :raises ValueError: If latency_capacity is not positive.
        """
        if latency_capacity < 1:
            raise ValueError("latency_capacity must be at least 1")

        self.name = name
        self.success_count = 0
        self.error_count = 0
        self.last_success_at: datetime | None = None
        self.last_error: str | None = None
        self._latencies_ms: deque[float] = deque(maxlen=latency_capacity)

    def record_success(self, latency_ms: float) -> None:
        """Record a successful fetch and its latency.

        :param latency_ms: Time the fetch took in milliseconds.
        """
        self.success_count += 1
        self.last_success_at = utc_now()
        self._latencies_ms.append(latency_ms)

    def record_failure(self, error: str) -> None:
        """Record a failed fetch.

        :param error: Human-readable failure description.
        """
        self.error_count += 1
        self.last_error = error

    def snapshot(self) -> SourceHealth:
        """Return an immutable copy of the current statistics."""
        return SourceHealth(
            name=self.name,
            success_count=self.success_count,
            error_count=self.error_count,
            last_success_at=self.last_success_at,
            last_error=self.last_error,
            recent_latencies_ms=tuple(self._latencies_ms),
        )

