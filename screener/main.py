"""Main entry point: one screening pass over the universe, printed as JSON.

Usage:
    python -m screener.main [--symbols AAPL MSFT ...] [--force] [--stats] [--calibration]
"""

from __future__ import annotations

import asyncio
import json
import logging
import sys
from datetime import datetime, timezone

from screener.config import get_settings
from screener.data.cache import DataCache, MemoryCache
from screener.data.yfinance_client import YFinanceClient
from screener.db.session import close_db, init_db
from screener.screening.pipeline import run_scan
from screener.tracking.calibration import (
    calibration_summary,
    get_calibration_data,
    get_confidence_calibration,
    miscalibration_report,
)
from screener.tracking.ledger import InMemoryLedgerStore, SqlLedgerStore
from screener.tracking.signal_tracker import get_signal_stats

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"


class JsonFormatter(logging.Formatter):
    """One JSON object per log line."""

    def format(self, record: logging.LogRecord) -> str:
        data = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            data["exception"] = self.formatException(record.exc_info)
        return json.dumps(data)


def configure_logging(log_format: str = "text") -> None:
    if log_format == "json":
        handler = logging.StreamHandler()
        handler.setFormatter(JsonFormatter())
        logging.basicConfig(level=logging.INFO, handlers=[handler], force=True)
    else:
        logging.basicConfig(level=logging.INFO, format=LOG_FORMAT, force=True)


def parse_symbols(argv: list[str]) -> list[str] | None:
    """Symbols following --symbols up to the next flag, or None when absent."""
    if "--symbols" not in argv:
        return None
    idx = argv.index("--symbols") + 1
    symbols = []
    while idx < len(argv) and not argv[idx].startswith("--"):
        symbols.append(argv[idx].upper())
        idx += 1
    return symbols


async def main(argv: list[str] | None = None) -> None:
    argv = sys.argv[1:] if argv is None else argv
    settings = get_settings()
    configure_logging(settings.log_format)

    if settings.database_url:
        await init_db()
        ledger = SqlLedgerStore()
    else:
        logger.warning("database_url not set - signals are kept in memory for this run only")
        ledger = InMemoryLedgerStore()

    if settings.cache_db_path:
        cache = DataCache(settings.cache_db_path)
        logger.debug("Evicted %d expired cache entries", cache.clear_expired())
    else:
        cache = MemoryCache()
    client = YFinanceClient()

    try:
        if "--stats" in argv:
            print(json.dumps(await get_signal_stats(ledger), indent=2, default=str))
            return

        if "--calibration" in argv:
            calibration = await get_calibration_data(ledger)
            logger.info(calibration_summary(calibration))
            for line in calibration.recommendations:
                print(line)
            drift = miscalibration_report(calibration)
            if drift["needed"]:
                print(f"Miscalibration severity: {drift['severity']}")
                for line in drift["adjustments"]:
                    print(line)
            buckets = await get_confidence_calibration(ledger)
            for line in buckets.recommendations:
                print(line)
            return

        report = await run_scan(
            client,
            symbols=parse_symbols(argv),
            cache=cache,
            ledger=ledger,
            force="--force" in argv,
        )
        print(json.dumps(report.to_dict(), indent=2, ensure_ascii=False))
    finally:
        logger.info("Cache stats: %s", cache.get_stats())
        client.close()
        if isinstance(cache, DataCache):
            cache.close()
        if settings.database_url:
            await close_db()


def run() -> None:
    asyncio.run(main())


if __name__ == "__main__":
    run()
