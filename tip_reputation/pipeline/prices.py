from __future__ import annotations

import logging
import sqlite3
from collections import defaultdict
from datetime import datetime
from typing import Any, Protocol

from tip_reputation.config import AppConfig
from tip_reputation.db import store
from tip_reputation.lifecycle.evaluator import evaluate_tip, transition_updates
from tip_reputation.models import PriceQuote, Tip
from tip_reputation.utils.time import utc_now

logger = logging.getLogger(__name__)


class PriceFeed(Protocol):
    def get_current_price(self, symbol: str, exchange: str = "NSE") -> PriceQuote | None: ...


class PriceCache:
    """One quote per (symbol, exchange) for the lifetime of a single sweep."""

    def __init__(self, feed: PriceFeed) -> None:
        self.feed = feed
        self._quotes: dict[tuple[str, str], PriceQuote | None] = {}

    def get(self, symbol: str, exchange: str) -> PriceQuote | None:
        key = (symbol, exchange)
        if key not in self._quotes:
            self._quotes[key] = self.feed.get_current_price(symbol, exchange)
        return self._quotes[key]

    def quotes(self) -> dict[tuple[str, str], PriceQuote]:
        return {key: quote for key, quote in self._quotes.items() if quote is not None}


def check_active_tips(
    conn: sqlite3.Connection,
    feed: PriceFeed,
    config: AppConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    now = now or utc_now()
    tips = store.fetch_open_tips(conn)
    cache = PriceCache(feed)

    tips_by_symbol: dict[tuple[str, str], list[Tip]] = defaultdict(list)
    for tip in tips:
        tips_by_symbol[(tip.symbol, tip.exchange)].append(tip)

    diagnostics: dict[str, Any] = {
        "tips_checked": len(tips),
        "symbols": len(tips_by_symbol),
        "symbols_failed": 0,
        "symbols_missing": 0,
        "transitions": 0,
        "closed": 0,
        "closed_creator_ids": [],
    }
    touched_creators: set[str] = set()
    closed_creators: set[str] = set()

    for (symbol, exchange), symbol_tips in sorted(tips_by_symbol.items()):
        try:
            quote = cache.get(symbol, exchange)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Price fetch failed for %s:%s, skipping this tick: %s", exchange, symbol, exc)
            diagnostics["symbols_failed"] += 1
            continue
        if quote is None:
            diagnostics["symbols_missing"] += 1
            continue

        for tip in symbol_tips:
            transition = evaluate_tip(
                tip,
                quote.price,
                now,
                min_risk_pct=config.lifecycle.min_risk_pct,
                target_mode=config.lifecycle.target_mode,
            )
            if transition is None:
                continue
            applied = store.apply_tip_update(
                conn, tip.id, tip.status, transition_updates(tip, transition), commit=False
            )
            if not applied:
                logger.info("Tip %s changed underneath the sweep; skipped", tip.id)
                continue
            diagnostics["transitions"] += 1
            touched_creators.add(tip.creator_id)
            logger.info(
                "Tip %s %s -> %s at %.2f",
                tip.id,
                transition.old_status.value,
                transition.new_status.value,
                quote.price,
            )
            if transition.is_terminal:
                diagnostics["closed"] += 1
                closed_creators.add(tip.creator_id)

    store.update_stock_prices(
        conn,
        [
            {"symbol": symbol, "exchange": exchange, "price": quote.price, "timestamp": quote.timestamp}
            for (symbol, exchange), quote in cache.quotes().items()
        ],
        commit=False,
    )
    store.reconcile_creator_counters(conn, touched_creators, commit=False)
    conn.commit()

    diagnostics["closed_creator_ids"] = sorted(closed_creators)
    logger.info(
        "Price check tips=%s symbols=%s failed=%s missing=%s transitions=%s closed=%s",
        diagnostics["tips_checked"],
        diagnostics["symbols"],
        diagnostics["symbols_failed"],
        diagnostics["symbols_missing"],
        diagnostics["transitions"],
        diagnostics["closed"],
    )
    return diagnostics
