"""yfinance market-data client: daily history and live quotes."""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
import asyncio
import logging

import pandas as pd
import yfinance as yf

from screener.features.indicators import OHLCV_COLUMNS

logger = logging.getLogger(__name__)


@dataclass
class Quote:
    symbol: str
    name: str
    price: float
    previous_close: float
    change: float
    change_percent: float
    volume: float


class YFinanceClient:
    """Synchronous yfinance wrapped for async usage via executor."""

    def __init__(self, max_workers: int = 4):
        self._executor = ThreadPoolExecutor(max_workers=max_workers)

    def _fetch_history(self, symbol: str, period: str, interval: str) -> pd.DataFrame:
        tk = yf.Ticker(symbol)
        df = tk.history(period=period, interval=interval, auto_adjust=True)
        if df.empty:
            return pd.DataFrame(columns=OHLCV_COLUMNS)
        df = df.reset_index()
        df.columns = [str(c).lower() for c in df.columns]
        if "datetime" in df.columns:
            df = df.rename(columns={"datetime": "date"})
        df["date"] = pd.to_datetime(df["date"]).dt.date
        return df[OHLCV_COLUMNS].dropna().reset_index(drop=True)

    async def fetch_history(
        self, symbol: str, period: str = "3mo", interval: str = "1d"
    ) -> pd.DataFrame:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(
            self._executor, self._fetch_history, symbol, period, interval
        )

    def _fetch_quote(self, symbol: str) -> Quote:
        tk = yf.Ticker(symbol)
        info = tk.fast_info
        price = float(info["last_price"] or 0.0)
        prev_close = float(info["previous_close"] or price)
        change = price - prev_close
        return Quote(
            symbol=symbol.upper(),
            name=symbol.upper(),
            price=round(price, 2),
            previous_close=round(prev_close, 2),
            change=round(change, 2),
            change_percent=round(change / prev_close * 100, 2) if prev_close else 0.0,
            volume=float(info["last_volume"] or 0.0),
        )

    async def fetch_quote(self, symbol: str) -> Quote:
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(self._executor, self._fetch_quote, symbol)

    def close(self) -> None:
        self._executor.shutdown(wait=False)
