from __future__ import annotations

from datetime import datetime, timezone

import pytest
import requests

from tip_reputation.api.price_feed import PriceFeedClient, to_feed_symbol
from tip_reputation.config import PriceFeedConfig


class FakeResponse:
    def __init__(self, status_code: int, payload=None) -> None:
        self.status_code = status_code
        self._payload = payload

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self):
        return self._payload


class FakeSession:
    def __init__(self, responses: list[FakeResponse]) -> None:
        self.responses = list(responses)
        self.urls: list[str] = []

    def get(self, url, params=None, headers=None, timeout=None):
        self.urls.append(url)
        if len(self.responses) > 1:
            return self.responses.pop(0)
        return self.responses[0]


def _chart(price=2500.0, previous_close=2450.0, market_time=1_700_000_000):
    return {
        "chart": {
            "result": [
                {
                    "meta": {
                        "regularMarketPrice": price,
                        "previousClose": previous_close,
                        "regularMarketTime": market_time,
                    }
                }
            ],
            "error": None,
        }
    }


def _client(responses: list[FakeResponse], **config) -> tuple[PriceFeedClient, FakeSession, list[float]]:
    session = FakeSession(responses)
    sleeps: list[float] = []
    client = PriceFeedClient(
        PriceFeedConfig(**config),
        session=session,
        sleep=sleeps.append,
        clock=lambda: 100.0,
    )
    return client, session, sleeps


def test_feed_symbol_suffixes():
    assert to_feed_symbol("RELIANCE", "NSE") == "RELIANCE.NS"
    assert to_feed_symbol("RELIANCE", "BSE") == "RELIANCE.BO"
    assert to_feed_symbol("BTC", "CRYPTO") == "BTC-USD"
    assert to_feed_symbol("NIFTY 50", "INDEX") == "NIFTY50"
    assert to_feed_symbol("AAPL", "UNKNOWN") == "AAPL"


def test_current_price_parsed_from_chart():
    client, session, _ = _client([FakeResponse(200, _chart())])
    quote = client.get_current_price("RELIANCE", "NSE")

    assert quote.symbol == "RELIANCE"
    assert quote.price == 2500.0
    assert quote.change == pytest.approx(50.0)
    assert quote.change_pct == pytest.approx(50.0 / 2450.0 * 100)
    assert quote.timestamp == datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
    assert session.urls[0].endswith("/RELIANCE.NS")


def test_missing_price_returns_none():
    error_payload = {"chart": {"result": None, "error": {"code": "Not Found"}}}
    client, _, _ = _client([FakeResponse(200, error_payload)])
    assert client.get_current_price("NOPE") is None

    client, _, _ = _client([FakeResponse(200, {"chart": {"result": [{"meta": {}}], "error": None}})])
    assert client.get_current_price("NOPE") is None

    client, _, _ = _client([FakeResponse(404)])
    assert client.get_current_price("NOPE") is None


def test_retries_server_errors_then_succeeds():
    client, session, sleeps = _client(
        [FakeResponse(503), FakeResponse(429), FakeResponse(200, _chart(price=10.0, previous_close=10.0))],
        retry_max=3,
    )
    quote = client.get_current_price("TCS")
    assert quote.price == 10.0
    assert quote.change_pct == 0.0
    assert len(session.urls) == 3
    assert len(sleeps) == 2


def test_retries_exhausted_raises():
    client, session, _ = _client([FakeResponse(502)], retry_max=2)
    with pytest.raises(requests.HTTPError):
        client.get_current_price("TCS")
    assert len(session.urls) == 2


def test_client_errors_are_not_retried():
    client, session, _ = _client([FakeResponse(400)], retry_max=3)
    with pytest.raises(requests.HTTPError):
        client.get_current_price("TCS")
    assert len(session.urls) == 1


def test_rate_limit_waits_when_window_is_full():
    client, _, sleeps = _client([FakeResponse(200, _chart())], rate_limit_per_s=2)
    for _ in range(3):
        client.get_current_price("TCS")
    assert sleeps == [pytest.approx(1.0)]
