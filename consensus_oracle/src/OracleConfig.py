"""OracleConfig: Construction-time configuration for the consensus oracle.

Configuration is supplied once at startup and never mutated afterwards.
Invalid values raise ValueError at construction time.

Per-source settings can be given as comma-separated "source=value" strings
(e.g. ``WEIGHTS=okx=2.0,coingecko=1.5``) or as individual prefixed environment
variables (e.g. ``WEIGHT_OKX=2.0``, ``SYMBOL_OKX=PI-USDT``,
``API_KEY_COINGECKO=demo:CG-xxx``).

.. code-block:: python

    >>> parse_key_values("okx=2.0,coingecko=1.5", cast=float)
    {'okx': 2.0, 'coingecko': 1.5}
    >>> AggregatorConfig(min_sources_required=0)
    Traceback (most recent call last):
    ...
    ValueError: min_sources_required must be at least 1
"""

from __future__ import annotations

import math
import os
from dataclasses import dataclass
from typing import Callable, Mapping, Sequence, TypeVar

T = TypeVar("T")


@dataclass(frozen=True)
class AggregatorConfig:
    """Aggregation settings.

    :ivar symbol: Asset symbol (cache key and response label).
    :ivar min_sources_required: Minimum quotes needed for a result.
    :ivar outlier_threshold_percent: Max deviation from the median (0-100).
    :ivar cache_ttl_seconds: Lifetime of a cached aggregate.
    """

    symbol: str = "PI"
    min_sources_required: int = 1
    outlier_threshold_percent: float = 10.0
    cache_ttl_seconds: float = 30.0

    def __post_init__(self) -> None:
        if not self.symbol:
            raise ValueError("symbol must not be empty")
        if self.min_sources_required < 1:
            raise ValueError("min_sources_required must be at least 1")
        if not 0 <= self.outlier_threshold_percent <= 100:
            raise ValueError("outlier_threshold_percent must be between 0 and 100")
        if not self.cache_ttl_seconds > 0:
            raise ValueError("cache_ttl_seconds must be positive")


@dataclass(frozen=True)
class SourceConfig:
    """Settings for one price source.

    Unset values fall back to the source's own defaults.

    :ivar name: Registered source name (e.g. "okx").
    :ivar symbol: Upstream instrument identifier.
    :ivar weight: Weight of this source's quotes.
    :ivar api_key: Optional API key.
    :ivar timeout: Optional per-call timeout in seconds.
    :ivar enabled: Disabled sources are not instantiated.
    """

    name: str
    symbol: str | None = None
    weight: float | None = None
    api_key: str | None = None
    timeout: float | None = None
    enabled: bool = True

    def __post_init__(self) -> None:
        if not self.name:
            raise ValueError("source name must not be empty")
        if self.weight is not None and (
            not math.isfinite(self.weight) or self.weight <= 0
        ):
            raise ValueError(f"weight for {self.name} must be positive, got {self.weight}")
        if self.timeout is not None and not self.timeout > 0:
            raise ValueError(f"timeout for {self.name} must be positive, got {self.timeout}")


def parse_key_values(
    value: str | None,
    cast: Callable[[str], T] = str,  # type: ignore[assignment]
) -> dict[str, T]:
    """Parse a comma-separated "source=value" string into a dictionary.

    Format: source1=value1,source2=value2
    Example: coingecko=abc123,okx=xyz789

    :param value: String to parse; None or empty yields an empty dict.
    :param cast: Conversion applied to each value.
    :returns: Dict mapping lowercase source names to converted values.
    :raises ValueError: If a value cannot be converted.
    """
    if not value:
        return {}

    parsed: dict[str, T] = {}
    for item in value.split(","):
        item = item.strip()
        if "=" not in item:
            continue
        source, raw = item.split("=", 1)
        source = source.strip().lower()
        try:
            parsed[source] = cast(raw.strip())
        except ValueError as e:
            raise ValueError(f"Invalid value for {source}: {raw.strip()!r}") from e
    return parsed


def parse_env_prefixed(
    prefixes: Sequence[str],
    environ: Mapping[str, str] | None = None,
) -> dict[str, str]:
    """Collect per-source values from prefixed environment variables.

    Looks for e.g. API_KEY_COINGECKO, APIKEY_OKX when prefixes are
    ["API_KEY_", "APIKEY_"].

    :param prefixes: Variable name prefixes to match, in priority order.
    :param environ: Environment mapping (default: os.environ).
    :returns: Dict mapping lowercase source names to raw values.
    """
    environ = os.environ if environ is None else environ
    values = {}

    for key, value in environ.items():
        for prefix in prefixes:
            if key.startswith(prefix) and len(key) > len(prefix) and value:
                values[key[len(prefix):].lower()] = value
                break

    return values


def build_source_configs(
    names: Sequence[str],
    *,
    symbols: Mapping[str, str] | None = None,
    weights: Mapping[str, float] | None = None,
    api_keys: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> list[SourceConfig]:
    """Build one SourceConfig per name, preserving order.

    :param names: Source names in registration order.
    :param symbols: Optional per-source symbol overrides.
    :param weights: Optional per-source weight overrides.
    :param api_keys: Optional per-source API keys.
    :param timeout: Optional per-call timeout applied to every source.
    :returns: List of SourceConfig.
    :raises ValueError: If a name repeats or a value is invalid.
    """
    symbols = symbols or {}
    weights = weights or {}
    api_keys = api_keys or {}

    seen: set[str] = set()
    configs = []
    for name in names:
        if name in seen:
            raise ValueError(f"Source {name} listed more than once")
        seen.add(name)
        configs.append(
            SourceConfig(
                name=name,
                symbol=symbols.get(name),
                weight=weights.get(name),
                api_key=api_keys.get(name),
                timeout=timeout,
            )
        )
    return configs
