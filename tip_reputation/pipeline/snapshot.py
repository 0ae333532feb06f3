from __future__ import annotations

import logging
import sqlite3
from datetime import date
from typing import Any

from tip_reputation.db import store
from tip_reputation.models import ScoreSnapshot

logger = logging.getLogger(__name__)


def create_daily_snapshots(conn: sqlite3.Connection, snapshot_date: date) -> dict[str, Any]:
    """Upsert one snapshot per scored creator for ``snapshot_date``; reruns overwrite."""
    diagnostics = {"snapshots": 0, "failed": 0}
    for creator_id in store.fetch_scored_creator_ids(conn):
        try:
            score = store.fetch_creator_score(conn, creator_id)
        except ValueError:
            logger.exception("Unreadable score for creator %s", creator_id)
            diagnostics["failed"] += 1
            continue
        if score is None:
            continue
        store.upsert_score_snapshot(
            conn,
            ScoreSnapshot(
                creator_id=creator_id,
                snapshot_date=snapshot_date,
                rmt_score=score.rmt_score,
                accuracy_rate=score.accuracy_rate,
                total_scored_tips=score.total_scored_tips,
            ),
            commit=False,
        )
        diagnostics["snapshots"] += 1
    conn.commit()
    logger.info(
        "Snapshots date=%s written=%s failed=%s",
        snapshot_date.isoformat(),
        diagnostics["snapshots"],
        diagnostics["failed"],
    )
    return diagnostics
