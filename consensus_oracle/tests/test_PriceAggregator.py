"""Unit tests for PriceAggregator."""

import asyncio
from unittest.mock import patch

import pytest

from consensus_oracle.src.PriceAggregator import (
    AggregationResult,
    InsufficientSourcesError,
    PriceAggregator,
)
from consensus_oracle.src.Quote import Quote
from consensus_oracle.src.ResultCache import ResultCache
from consensus_oracle.src.SourceHealth import SourceHealthTracker
from consensus_oracle.src.sources.base import SourceFetchError


class FakeSource:
    """In-memory source returning a fixed price or raising a fixed error."""

    def __init__(
        self,
        name: str,
        price: float | None = None,
        *,
        weight: float = 1.0,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.name = name
        self.price = price
        self.weight = weight
        self.error = error
        self.delay = delay
        self.calls = 0
        self._health = SourceHealthTracker(name)

    async def fetch_quote(self) -> Quote:
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            self._health.record_failure(str(self.error))
            raise self.error
        self._health.record_success(1.0)
        return Quote(price=self.price, source_name=self.name, weight=self.weight)

    def health_snapshot(self):
        return self._health.snapshot()


def failing(name: str) -> FakeSource:
    return FakeSource(name, error=SourceFetchError(name, "HTTP 503: unavailable"))


def make_sources(prices: list[float]) -> list[FakeSource]:
    return [FakeSource(name, price) for name, price in zip("abcdefgh", prices)]


class TestPriceAggregatorInit:
    """Test PriceAggregator initialization."""

    def test_default_values(self) -> None:
        """Default values should be reasonable."""
        agg = PriceAggregator(make_sources([1.0]))
        assert agg.symbol == "PI"
        assert agg.min_sources_required == 1
        assert agg.outlier_filter.threshold_percent == 10.0
        assert agg.cache.ttl_seconds == 30.0

    def test_custom_values(self) -> None:
        """Custom values should be stored."""
        cache: ResultCache[AggregationResult] = ResultCache(ttl_seconds=5)
        agg = PriceAggregator(
            make_sources([1.0, 1.1, 1.2]),
            cache,
            symbol="BTC",
            min_sources_required=2,
            outlier_threshold_percent=5.0,
        )
        assert agg.cache is cache
        assert agg.symbol == "BTC"
        assert agg.min_sources_required == 2
        assert agg.total_sources == 3

    def test_no_sources(self) -> None:
        """An empty source list should raise ValueError."""
        with pytest.raises(ValueError, match="At least one source"):
            PriceAggregator([])

    def test_duplicate_names(self) -> None:
        """Source names must be unique."""
        with pytest.raises(ValueError, match="Duplicate source names"):
            PriceAggregator([FakeSource("a", 1.0), FakeSource("a", 2.0)])

    def test_invalid_min_sources(self) -> None:
        """min_sources_required < 1 should raise ValueError."""
        with pytest.raises(ValueError, match="must be at least 1"):
            PriceAggregator(make_sources([1.0]), min_sources_required=0)

    def test_min_sources_exceeds_sources(self) -> None:
        """min_sources_required larger than the source count can never succeed."""
        with pytest.raises(ValueError, match="exceeds the number of sources"):
            PriceAggregator(make_sources([1.0, 2.0]), min_sources_required=3)

    def test_invalid_threshold(self) -> None:
        """outlier_threshold_percent outside [0, 100] should raise ValueError."""
        with pytest.raises(ValueError, match="between 0 and 100"):
            PriceAggregator(make_sources([1.0]), outlier_threshold_percent=-1)

        with pytest.raises(ValueError, match="between 0 and 100"):
            PriceAggregator(make_sources([1.0]), outlier_threshold_percent=101)


class TestPriceAggregatorAggregation:
    """Test the fetch -> filter -> average -> score flow."""

    @pytest.mark.asyncio
    async def test_no_outliers(self) -> None:
        """Three agreeing prices are all used."""
        agg = PriceAggregator(make_sources([1.20, 1.22, 1.25]))
        result = await agg.get_aggregated_price()

        assert result.price == pytest.approx(3.67 / 3)
        assert result.sources_used == 3
        assert result.total_sources == 3
        assert result.cache_hit is False
        assert result.degraded is False
        assert result.dropped == {}

    @pytest.mark.asyncio
    async def test_outlier_dropped(self) -> None:
        """A price far from the median is excluded from the average."""
        agg = PriceAggregator(make_sources([1.20, 1.22, 5.00]))
        result = await agg.get_aggregated_price()

        assert result.price == pytest.approx(1.21)
        assert result.sources_used == 2
        assert result.total_sources == 3
        assert set(result.per_source_detail) == {"a", "b"}
        assert result.dropped == {"c": 5.00}

    @pytest.mark.asyncio
    async def test_weights_applied(self) -> None:
        """Heavier sources pull the average towards their price."""
        sources = [
            FakeSource("coingecko", 1.00, weight=1.0),
            FakeSource("okx", 1.06, weight=2.0),
        ]
        result = await PriceAggregator(sources).get_aggregated_price()

        assert result.price == pytest.approx((1.00 + 2 * 1.06) / 3)
        assert result.per_source_detail["okx"].weight == 2.0

    @pytest.mark.asyncio
    async def test_failed_source_abstains(self) -> None:
        """A failing source is skipped, not fatal."""
        sources = [FakeSource("a", 1.20), failing("b"), FakeSource("c", 1.22)]
        agg = PriceAggregator(sources, min_sources_required=2)
        result = await agg.get_aggregated_price()

        assert result.price == pytest.approx(1.21)
        assert result.sources_used == 2
        assert result.total_sources == 3
        assert "b" not in result.per_source_detail

    @pytest.mark.asyncio
    async def test_unexpected_exception_abstains(self) -> None:
        """Errors other than SourceFetchError are absorbed as well."""
        sources = [FakeSource("a", 1.0), FakeSource("b", error=RuntimeError("bug"))]
        result = await PriceAggregator(sources).get_aggregated_price()

        assert result.sources_used == 1
        assert list(result.per_source_detail) == ["a"]

    @pytest.mark.asyncio
    async def test_mislabelled_quote_ignored(self) -> None:
        """A quote claiming another source's name is not used."""

        class Impostor(FakeSource):
            async def fetch_quote(self) -> Quote:
                return Quote(price=9.0, source_name="a")

        sources = [FakeSource("a", 1.0), Impostor("b")]
        result = await PriceAggregator(sources).get_aggregated_price()

        assert result.sources_used == 1
        assert result.per_source_detail["a"].price == 1.0

    @pytest.mark.asyncio
    async def test_detail_in_registration_order(self) -> None:
        """Per-source detail follows registration order, not completion order."""
        sources = [
            FakeSource("slow", 1.00, delay=0.05),
            FakeSource("medium", 1.01, delay=0.02),
            FakeSource("fast", 1.02),
        ]
        result = await PriceAggregator(sources).get_aggregated_price()

        assert list(result.per_source_detail) == ["slow", "medium", "fast"]

    @pytest.mark.asyncio
    async def test_confidence_in_range(self) -> None:
        """Confidence is always within [0, 1]."""
        for prices in ([1.0], [1.0, 1.0, 1.0], [1.0, 1.5, 1.9], [0.01, 100.0]):
            agg = PriceAggregator(make_sources(prices), outlier_threshold_percent=100)
            result = await agg.get_aggregated_price()
            assert 0.0 <= result.confidence_score <= 1.0

    @pytest.mark.asyncio
    async def test_full_agreement_full_confidence(self) -> None:
        """All sources reporting the same price yields confidence 1."""
        result = await PriceAggregator(make_sources([2.0, 2.0, 2.0])).get_aggregated_price()
        assert result.confidence_score == pytest.approx(1.0)


class TestPriceAggregatorInsufficientSources:
    """Test insufficient source handling."""

    @pytest.mark.asyncio
    async def test_too_few_successes(self) -> None:
        """Two successes with three required should fail."""
        sources = [FakeSource("a", 1.20), FakeSource("b", 1.22), failing("c")]
        cache: ResultCache[AggregationResult] = ResultCache()
        agg = PriceAggregator(sources, cache, min_sources_required=3)

        with pytest.raises(InsufficientSourcesError) as exc_info:
            await agg.get_aggregated_price()

        assert exc_info.value.available == 2
        assert exc_info.value.required == 3
        assert "2/3" in str(exc_info.value)
        assert cache.get("PI") is None

    @pytest.mark.asyncio
    async def test_all_sources_fail(self) -> None:
        """No successful quote at all should fail."""
        agg = PriceAggregator([failing("a"), failing("b")])

        with pytest.raises(InsufficientSourcesError):
            await agg.get_aggregated_price()

    @pytest.mark.asyncio
    async def test_failure_after_expiry_caches_nothing(self) -> None:
        """A failed cycle never writes a result into the cache."""
        source = FakeSource("a", 1.0)
        cache: ResultCache[AggregationResult] = ResultCache(ttl_seconds=10)
        agg = PriceAggregator([source], cache)

        with patch("consensus_oracle.src.ResultCache.time.time") as mock_time:
            mock_time.return_value = 1000.0
            first = await agg.get_aggregated_price()
            assert cache.stats()["keys"] == 1

            source.error = SourceFetchError("a", "down")
            mock_time.return_value = 1011.0  # expired
            with pytest.raises(InsufficientSourcesError):
                await agg.get_aggregated_price()

            assert cache.stats()["keys"] == 0
            assert cache.get("PI") is None

        assert first.price == 1.0


class TestPriceAggregatorDegradedMode:
    """Test the unfiltered fallback when filtering leaves too few quotes."""

    @pytest.mark.asyncio
    async def test_fallback_to_unfiltered(self) -> None:
        """Too many outliers falls back to every quote instead of failing."""
        agg = PriceAggregator(make_sources([1.00, 1.01, 5.00]), min_sources_required=3)
        result = await agg.get_aggregated_price()

        assert result.degraded is True
        assert result.sources_used == 3
        assert result.price == pytest.approx(7.01 / 3)
        assert result.dropped == {}
        assert result.to_response()["degraded"] is True
        assert result.to_response()["dropped"] == {}

    @pytest.mark.asyncio
    async def test_fallback_logs_warning(self, caplog: pytest.LogCaptureFixture) -> None:
        """Degraded mode is announced in the logs."""
        agg = PriceAggregator(make_sources([1.00, 1.01, 5.00]), min_sources_required=3)
        with caplog.at_level("WARNING"):
            await agg.get_aggregated_price()

        assert "degraded mode" in caplog.text

    @pytest.mark.asyncio
    async def test_fallback_result_is_cached(self) -> None:
        """The degraded result is cached like any other result."""
        sources = make_sources([1.00, 1.01, 5.00])
        agg = PriceAggregator(sources, min_sources_required=3)

        await agg.get_aggregated_price()
        second = await agg.get_aggregated_price()

        assert second.cache_hit is True
        assert second.degraded is True
        assert all(s.calls == 1 for s in sources)


class TestPriceAggregatorCaching:
    """Test result caching."""

    @pytest.mark.asyncio
    async def test_second_call_hits_cache(self) -> None:
        """A call within the TTL returns the identical cached result."""
        sources = make_sources([1.20, 1.22, 1.25])
        agg = PriceAggregator(sources)

        first = await agg.get_aggregated_price()
        second = await agg.get_aggregated_price()

        assert first.cache_hit is False
        assert second.cache_hit is True
        assert second.to_response()["price_usd"] == first.to_response()["price_usd"]
        assert second.to_response()["source_prices"] == first.to_response()["source_prices"]
        assert all(s.calls == 1 for s in sources)

    @pytest.mark.asyncio
    async def test_expired_cache_refetches(self) -> None:
        """A call after the TTL triggers a fresh fetch cycle."""
        sources = make_sources([1.20, 1.22])
        agg = PriceAggregator(sources, ResultCache(ttl_seconds=30))

        with patch("consensus_oracle.src.ResultCache.time.time") as mock_time:
            mock_time.return_value = 1000.0
            await agg.get_aggregated_price()

            mock_time.return_value = 1029.0
            cached = await agg.get_aggregated_price()
            assert cached.cache_hit is True

            mock_time.return_value = 1031.0
            fresh = await agg.get_aggregated_price()

        assert fresh.cache_hit is False
        assert all(s.calls == 2 for s in sources)

    @pytest.mark.asyncio
    async def test_cached_entry_keeps_cache_hit_false(self) -> None:
        """Marking a hit does not mutate the stored result."""
        cache: ResultCache[AggregationResult] = ResultCache()
        agg = PriceAggregator(make_sources([1.0]), cache)

        await agg.get_aggregated_price()
        await agg.get_aggregated_price()

        assert cache.get("PI").cache_hit is False


class TestPriceAggregatorConcurrency:
    """Test concurrent fan-out."""

    @pytest.mark.asyncio
    async def test_sources_fetched_concurrently(self) -> None:
        """Every source is in flight at the same time."""
        started = 0
        all_started = asyncio.Event()

        class BarrierSource(FakeSource):
            async def fetch_quote(self) -> Quote:
                nonlocal started
                started += 1
                if started == 3:
                    all_started.set()
                await all_started.wait()
                return await super().fetch_quote()

        sources = [BarrierSource(n, 1.0) for n in ("a", "b", "c")]
        result = await asyncio.wait_for(
            PriceAggregator(sources).get_aggregated_price(), timeout=2.0
        )

        assert result.sources_used == 3

    @pytest.mark.asyncio
    async def test_failure_does_not_short_circuit(self) -> None:
        """An immediate failure does not cancel slower sources."""
        sources = [
            failing("fast-fail"),
            FakeSource("slow-a", 1.0, delay=0.05),
            FakeSource("slow-b", 1.02, delay=0.05),
        ]
        result = await PriceAggregator(sources, min_sources_required=2).get_aggregated_price()

        assert set(result.per_source_detail) == {"slow-a", "slow-b"}


class TestSourceStatuses:
    """Test get_all_source_statuses()."""

    @pytest.mark.asyncio
    async def test_statuses_in_registration_order(self) -> None:
        """One snapshot per source, in registration order."""
        sources = [FakeSource("b", 1.0), failing("a"), FakeSource("c", 1.0)]
        agg = PriceAggregator(sources)
        await agg.get_aggregated_price()

        statuses = agg.get_all_source_statuses()

        assert [s.name for s in statuses] == ["b", "a", "c"]
        assert statuses[0].success_count == 1
        assert statuses[1].error_count == 1
        assert statuses[1].last_error == "[a] HTTP 503: unavailable"


class TestAggregationResultResponse:
    """Test the response field contract."""

    @pytest.mark.asyncio
    async def test_response_fields(self) -> None:
        """to_response() exposes every contract field."""
        agg = PriceAggregator(make_sources([1.20, 1.22]))
        response = (await agg.get_aggregated_price()).to_response()

        assert response["symbol"] == "PI"
        assert response["price_usd"] == pytest.approx(1.21)
        assert response["sources_used"] == 2
        assert response["total_sources"] == 2
        assert response["aggregation_method"] == "weighted_average"
        assert response["cache_hit"] is False
        assert response["degraded"] is False
        assert 0.0 <= response["confidence_score"] <= 1.0
        assert set(response["source_prices"]["a"]) == {"price", "weight", "timestamp"}
        assert response["source_prices"]["a"]["price"] == 1.20
        assert response["timestamp"].endswith("+00:00")
        assert response["dropped"] == {}

    @pytest.mark.asyncio
    async def test_dropped_outliers_in_response(self) -> None:
        """Outliers removed by the filter are reported with their prices."""
        agg = PriceAggregator(make_sources([1.20, 1.22, 5.00]))
        response = (await agg.get_aggregated_price()).to_response()

        assert response["dropped"] == {"c": 5.00}
        assert set(response["source_prices"]) == {"a", "b"}
        assert response["sources_used"] == 2
