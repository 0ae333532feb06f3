from __future__ import annotations

import logging
import re
import time
from collections import deque
from typing import Any, Callable
from urllib.parse import quote

import requests
from tenacity import Retrying, retry_if_exception, stop_after_attempt, wait_exponential_jitter

from tip_reputation.config import PriceFeedConfig
from tip_reputation.models import PriceQuote
from tip_reputation.utils.time import parse_datetime, utc_now

logger = logging.getLogger(__name__)

HEADERS = {
    "User-Agent": "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko)",
    "Accept": "application/json",
}

EXCHANGE_SUFFIX = {
    "NYSE": "",
    "NASDAQ": "",
    "TSX": ".TO",
    "LSE": ".L",
    "XETRA": ".DE",
    "EURONEXT": ".PA",
    "NSE": ".NS",
    "BSE": ".BO",
    "TSE": ".T",
    "HKEX": ".HK",
    "ASX": ".AX",
    "KRX": ".KS",
    "SGX": ".SI",
    "MCX": ".NS",
    "CRYPTO": "-USD",
    "INDEX": "",
}


def _should_retry(exc: BaseException) -> bool:
    if isinstance(exc, requests.HTTPError):
        if exc.response is None:
            return True
        status = exc.response.status_code
        return status >= 500 or status == 429
    return isinstance(exc, (requests.Timeout, requests.ConnectionError))


def to_feed_symbol(symbol: str, exchange: str) -> str:
    clean = re.sub(r"\s+", "", symbol)
    return f"{clean}{EXCHANGE_SUFFIX.get(exchange, '')}"


class PriceFeedClient:
    """Current quotes from the Yahoo chart endpoint.

    ``get_current_price`` returns ``None`` when the feed has no price for the
    symbol and raises ``requests.RequestException`` once retries are exhausted.
    """

    def __init__(
        self,
        config: PriceFeedConfig | None = None,
        session: requests.Session | None = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.config = config or PriceFeedConfig()
        self.session = session or requests.Session()
        self.timeout = (self.config.request_timeout_s, self.config.request_timeout_s)
        self._sleep = sleep
        self._clock = clock
        self._request_times: deque[float] = deque()
        self._retrying = Retrying(
            stop=stop_after_attempt(self.config.retry_max),
            wait=wait_exponential_jitter(
                initial=self.config.backoff_initial_s,
                max=self.config.backoff_max_s,
            ),
            retry=retry_if_exception(_should_retry),
            sleep=sleep,
            reraise=True,
        )
        self.request_count = 0

    def get_current_price(self, symbol: str, exchange: str = "NSE") -> PriceQuote | None:
        feed_symbol = to_feed_symbol(symbol, exchange)
        url = f"{self.config.base_url}/{quote(feed_symbol, safe='')}"
        try:
            payload = self._retrying(self._get_json, url, {"range": "1d", "interval": "1d"})
        except requests.HTTPError as exc:
            if exc.response is not None and exc.response.status_code == 404:
                logger.warning("Unknown symbol %s on the price feed", feed_symbol)
                return None
            raise
        return self._parse_quote(symbol, payload)

    def _get_json(self, url: str, params: dict[str, Any]) -> Any:
        self._wait_for_rate_limit()
        self.request_count += 1
        response = self.session.get(url, params=params, headers=HEADERS, timeout=self.timeout)
        response.raise_for_status()
        return response.json()

    def _wait_for_rate_limit(self) -> None:
        window_s = 1.0
        now = self._clock()
        while self._request_times and self._request_times[0] < now - window_s:
            self._request_times.popleft()
        if len(self._request_times) >= self.config.rate_limit_per_s:
            wait_s = self._request_times[0] + window_s - now
            if wait_s > 0:
                self._sleep(wait_s)
            self._request_times.popleft()
        self._request_times.append(self._clock())

    @staticmethod
    def _parse_quote(symbol: str, payload: Any) -> PriceQuote | None:
        chart = payload.get("chart") if isinstance(payload, dict) else None
        if not isinstance(chart, dict):
            return None
        if chart.get("error"):
            logger.warning("Price feed error for %s: %s", symbol, chart["error"])
            return None
        results = chart.get("result") or []
        if not results:
            return None
        meta = results[0].get("meta") or {}
        price = meta.get("regularMarketPrice")
        if price is None:
            return None
        price = float(price)
        previous_close = float(meta.get("previousClose") or price)
        change = price - previous_close
        timestamp = parse_datetime(meta.get("regularMarketTime")) or utc_now()
        return PriceQuote(
            symbol=symbol,
            price=price,
            timestamp=timestamp,
            change=change,
            change_pct=change / previous_close * 100 if previous_close > 0 else 0.0,
        )
