#!/usr/bin/env python3
"""Consensus Price Oracle.

Polls several independent price sources concurrently, discards outliers, and
prints a weighted-average consensus price with a confidence score as JSON.

Configure via CLI flags or environment variables (CLI takes precedence).
"""

import argparse
import asyncio
import json
import logging
import os
import sys

from .src.OracleConfig import (
    AggregatorConfig,
    build_source_configs,
    parse_env_prefixed,
    parse_key_values,
)
from .src.PriceAggregator import InsufficientSourcesError
from .src.PriceOracle import PriceOracle
from .src.sources import get_available_sources

# Configure logging
logging.basicConfig(
    level=os.environ.get("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
    stream=sys.stderr,
)
logger = logging.getLogger(__name__)


def _merge_weights(cli_value: str | None) -> dict[str, float]:
    """Merge WEIGHT_<SOURCE> variables with the --weights/WEIGHTS string."""
    weights = {
        source: float(value)
        for source, value in parse_env_prefixed(["WEIGHT_"]).items()
    }
    weights.update(parse_key_values(cli_value, cast=float))
    return weights


async def run(
    oracle: PriceOracle,
    show_status: bool,
    fetch_period: float = 60,
    count: int = 1,
) -> int:
    """Request the consensus price every fetch_period seconds.

    Each cycle prints one JSON line. Requests within the cache TTL are served
    from the cache, and source health accumulates across cycles.

    :param oracle: Configured oracle.
    :param show_status: Also print per-source health each cycle.
    :param fetch_period: Seconds between cycles.
    :param count: Number of cycles to run; 0 runs until interrupted.
    :returns: Process exit code of the last cycle.
    """
    exit_code = 0
    cycle = 0
    async with oracle:
        while True:
            cycle += 1
            try:
                payload: dict = {"price": await oracle.get_price()}
                exit_code = 0
            except InsufficientSourcesError as e:
                logger.error(f"Error fetching aggregated price: {e}")
                payload = {"error": "Failed to fetch price", "message": str(e)}
                exit_code = 1

            if show_status:
                payload["sources"] = oracle.get_source_statuses()

            print(json.dumps(payload), flush=True)

            if count and cycle >= count:
                break
            await asyncio.sleep(fetch_period)

    return exit_code


def main() -> None:
    """Main entry point for the Consensus Price Oracle CLI."""
    available_sources = get_available_sources()

    parser = argparse.ArgumentParser(
        description="Consensus Price Oracle: weighted multi-source price",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=f"""
Available price sources:
  {', '.join(available_sources)}

Examples:
  # PI/USD from the default sources
  python -m consensus_oracle.main

  # Require two agreeing sources and show per-source health
  python -m consensus_oracle.main --min-sources 2 --status

  # Poll every 10 seconds until interrupted (cache hits within the TTL)
  python -m consensus_oracle.main --fetch-period 10 --count 0 --status

  # BTC/USD from exchanges with custom symbols and weights
  python -m consensus_oracle.main --symbol BTC \\
      --sources coinbase,kraken,coingecko \\
      --source-symbols coinbase=BTC-USD,kraken=XBTUSD,coingecko=bitcoin \\
      --weights coinbase=2,kraken=2,coingecko=1

Environment variables (CLI args take precedence):
  SYMBOL, SOURCES, MIN_SOURCES_REQUIRED, OUTLIER_THRESHOLD_PERCENT,
  CACHE_TTL_SECONDS, FETCH_TIMEOUT, FETCH_PERIOD, FETCH_COUNT, LOG_LEVEL,
  WEIGHTS / WEIGHT_<SOURCE>, SOURCE_SYMBOLS / SYMBOL_<SOURCE>,
  API_KEYS / API_KEY_<SOURCE>
""",
    )

    parser.add_argument(
        "--symbol",
        type=str,
        help="Asset symbol reported in the response (default: PI)",
        default=os.environ.get("SYMBOL") or "PI",
    )

    parser.add_argument(
        "--sources",
        type=str,
        help=f"Comma-separated price sources. Available: {', '.join(available_sources)}",
        default=os.environ.get("SOURCES") or "coingecko,bitget,okx",
    )

    parser.add_argument(
        "--min-sources",
        dest="min_sources",
        type=int,
        help="Minimum sources required for a valid price (default: 1)",
        default=int(os.environ.get("MIN_SOURCES_REQUIRED") or "1"),
    )

    parser.add_argument(
        "--outlier-threshold",
        dest="outlier_threshold",
        type=float,
        help="Max deviation from the median in percent before a price is dropped (default: 10)",
        default=float(os.environ.get("OUTLIER_THRESHOLD_PERCENT") or "10"),
    )

    parser.add_argument(
        "--cache-ttl",
        dest="cache_ttl",
        type=float,
        help="Seconds an aggregated price is served from cache (default: 30)",
        default=float(os.environ.get("CACHE_TTL_SECONDS") or "30"),
    )

    parser.add_argument(
        "--fetch-timeout",
        dest="fetch_timeout",
        type=float,
        help="Timeout for individual source requests in seconds (default: 5.0)",
        default=float(os.environ.get("FETCH_TIMEOUT") or "5.0"),
    )

    parser.add_argument(
        "--weights",
        type=str,
        help="Comma-separated source weights (e.g., okx=2.0,coingecko=1.5)",
        default=os.environ.get("WEIGHTS"),
    )

    parser.add_argument(
        "--source-symbols",
        dest="source_symbols",
        type=str,
        help="Comma-separated upstream symbols (e.g., okx=PI-USDT,coingecko=pi-network)",
        default=os.environ.get("SOURCE_SYMBOLS"),
    )

    parser.add_argument(
        "--api-keys",
        dest="api_keys",
        type=str,
        help="Comma-separated API keys (e.g., coingecko=demo:CG-xxx)",
        default=os.environ.get("API_KEYS"),
    )

    parser.add_argument(
        "--fetch-period",
        dest="fetch_period",
        type=int,
        help="Seconds between price requests (minimum: 1, default: 60)",
        default=int(os.environ.get("FETCH_PERIOD") or "60"),
    )

    parser.add_argument(
        "--count",
        type=int,
        help="Number of price requests to make; 0 runs until interrupted (default: 1)",
        default=int(os.environ.get("FETCH_COUNT") or "1"),
    )

    parser.add_argument(
        "--status",
        action="store_true",
        help="Also print per-source health statistics",
    )

    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Enable verbose (DEBUG) logging",
    )

    args = parser.parse_args()

    # Configure logging level
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    if args.fetch_period < 1:
        parser.error("--fetch-period must be at least 1 second")
    if args.count < 0:
        parser.error("--count must not be negative")

    sources = [s.strip().lower() for s in args.sources.split(",") if s.strip()]
    if not sources:
        parser.error("At least one source must be specified")

    invalid_sources = [s for s in sources if s not in available_sources]
    if invalid_sources:
        parser.error(
            f"Unknown sources: {invalid_sources}. "
            f"Available: {', '.join(available_sources)}"
        )

    # Per-source settings (CLI + environment)
    try:
        weights = _merge_weights(args.weights)
        symbols = parse_env_prefixed(["SYMBOL_"])
        symbols.update(parse_key_values(args.source_symbols))
        api_keys = parse_env_prefixed(["API_KEY_", "APIKEY_"])
        api_keys.update(parse_key_values(args.api_keys))

        config = AggregatorConfig(
            symbol=args.symbol,
            min_sources_required=args.min_sources,
            outlier_threshold_percent=args.outlier_threshold,
            cache_ttl_seconds=args.cache_ttl,
        )
        source_configs = build_source_configs(
            sources,
            symbols=symbols,
            weights=weights,
            api_keys=api_keys,
            timeout=args.fetch_timeout,
        )
    except ValueError as e:
        parser.error(str(e))

    # Log configuration
    logger.info("=" * 60)
    logger.info("Consensus Price Oracle - Weighted Multi-Source Aggregation")
    logger.info("=" * 60)
    logger.info(f"Symbol:            {config.symbol}")
    logger.info(f"Sources:           {', '.join(sources)}")
    logger.info(f"Min Sources:       {config.min_sources_required}")
    logger.info(f"Outlier Threshold: {config.outlier_threshold_percent}%")
    logger.info(f"Cache TTL:         {config.cache_ttl_seconds}s")
    logger.info(f"Fetch Timeout:     {args.fetch_timeout}s")
    if args.count != 1:
        logger.info(f"Fetch Period:      {args.fetch_period}s")
        logger.info(f"Cycles:            {args.count or 'until interrupted'}")
    if api_keys:
        logger.info(f"API Keys:          {', '.join(api_keys.keys())}")
    logger.info("=" * 60)

    try:
        oracle = PriceOracle(config, source_configs)
        sys.exit(asyncio.run(run(oracle, args.status, args.fetch_period, args.count)))
    except KeyboardInterrupt:
        logger.info("Shutting down...")
    except ValueError as e:
        logger.error(f"Invalid configuration: {e}")
        sys.exit(2)
    except Exception as e:
        logger.error(f"Fatal error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
