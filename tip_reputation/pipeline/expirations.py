from __future__ import annotations

import logging
import sqlite3
from datetime import datetime
from typing import Any

from tip_reputation.config import AppConfig
from tip_reputation.db import store
from tip_reputation.lifecycle.evaluator import evaluate_tip, transition_updates
from tip_reputation.models import TipStatus
from tip_reputation.utils.time import ensure_utc, utc_now

logger = logging.getLogger(__name__)


def check_expirations(
    conn: sqlite3.Connection,
    config: AppConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Close every overdue open tip at the last stored price for its stock.

    That price can be hours old; such closes are counted as
    ``stale_expiry_closes``. With no stored price the tip closes flat at entry.
    """
    now = now or utc_now()
    last_prices = store.fetch_stock_last_prices(conn)
    overdue = [tip for tip in store.fetch_open_tips(conn) if ensure_utc(tip.expires_at) <= ensure_utc(now)]

    diagnostics = {"expired": 0, "stale_expiry_closes": 0, "failed": 0}
    touched_creators: set[str] = set()

    for tip in overdue:
        price = last_prices.get((tip.symbol, tip.exchange))
        has_stored_price = price is not None
        if price is None:
            price = tip.entry_price
        try:
            transition = evaluate_tip(
                tip,
                price,
                now,
                min_risk_pct=config.lifecycle.min_risk_pct,
                target_mode=config.lifecycle.target_mode,
            )
            if transition is None or transition.new_status is not TipStatus.EXPIRED:
                continue
            applied = store.apply_tip_update(
                conn, tip.id, tip.status, transition_updates(tip, transition), commit=False
            )
        except ValueError as exc:
            logger.warning("Could not expire tip %s: %s", tip.id, exc)
            diagnostics["failed"] += 1
            continue
        if not applied:
            continue
        diagnostics["expired"] += 1
        touched_creators.add(tip.creator_id)
        if has_stored_price:
            diagnostics["stale_expiry_closes"] += 1
            logger.info("Tip %s expired at last known price %.2f", tip.id, price)
        else:
            logger.info("Tip %s expired with no known price; closed at entry", tip.id)

    store.reconcile_creator_counters(conn, touched_creators, commit=False)
    conn.commit()
    logger.info(
        "Expiry check expired=%s stale=%s failed=%s",
        diagnostics["expired"],
        diagnostics["stale_expiry_closes"],
        diagnostics["failed"],
    )
    return diagnostics
