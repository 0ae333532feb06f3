from __future__ import annotations

import logging
import sqlite3
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime
from typing import Any, Sequence

from tip_reputation.config import AppConfig
from tip_reputation.db import store
from tip_reputation.models import CompletedTip, ScoreSnapshot
from tip_reputation.scoring.composite import CompositeResult, score_creator
from tip_reputation.utils.time import local_today, utc_now

logger = logging.getLogger(__name__)


def persist_result(
    conn: sqlite3.Connection,
    result: CompositeResult,
    config: AppConfig,
    now: datetime,
    commit: bool = True,
) -> None:
    """Write a scoring result: score and today's snapshot when published, tier and counters always."""
    if result.score is not None:
        score = result.score
        store.upsert_creator_score(conn, score, commit=False)
        store.upsert_score_snapshot(
            conn,
            ScoreSnapshot(
                creator_id=score.creator_id,
                snapshot_date=local_today(config.run.timezone, now),
                rmt_score=score.rmt_score,
                accuracy_rate=score.accuracy_rate,
                total_scored_tips=score.total_scored_tips,
            ),
            commit=False,
        )
    store.update_creator_tier(conn, result.creator_id, result.tier, commit=False)
    store.reconcile_creator_counters(conn, [result.creator_id], commit=False)
    if commit:
        conn.commit()


def recompute_creator(
    conn: sqlite3.Connection,
    creator_id: str,
    config: AppConfig,
    now: datetime | None = None,
) -> CompositeResult:
    now = now or utc_now()
    tips = store.fetch_completed_tips(conn, creator_id)
    result = score_creator(creator_id, tips, config, now)
    persist_result(conn, result, config, now)
    if result.score is not None:
        logger.info(
            "Creator %s rmt=%.2f tier=%s tips=%s",
            creator_id,
            result.score.rmt_score,
            result.tier.value,
            result.total_scored_tips,
        )
    else:
        logger.info("Creator %s unrated with %s completed tips", creator_id, result.total_scored_tips)
    return result


def _score_batch(
    tips_by_creator: dict[str, Sequence[CompletedTip]],
    config: AppConfig,
    now: datetime,
) -> tuple[list[CompositeResult], int]:
    results: list[CompositeResult] = []
    failed = 0
    max_workers = max(1, min(config.orchestrator.max_workers, len(tips_by_creator)))
    with ThreadPoolExecutor(max_workers=max_workers) as executor:
        futures = {
            executor.submit(score_creator, creator_id, tips, config, now): creator_id
            for creator_id, tips in tips_by_creator.items()
        }
        for future in as_completed(futures):
            creator_id = futures[future]
            try:
                results.append(future.result())
            except Exception:  # noqa: BLE001
                logger.exception("Score computation failed for creator %s", creator_id)
                failed += 1
    results.sort(key=lambda result: result.creator_id)
    return results, failed


def recompute_all(
    conn: sqlite3.Connection,
    config: AppConfig,
    now: datetime | None = None,
) -> dict[str, Any]:
    """Score every active creator in fixed-size batches.

    Scoring runs on worker threads; reads and writes stay on the calling
    thread. One creator failing is counted and skipped. Enumeration and
    persistence errors propagate.
    """
    now = now or utc_now()
    creator_ids = store.fetch_active_creator_ids(conn)
    summary = {"processed": 0, "failed": 0, "published": 0, "unrated": 0, "total": len(creator_ids)}
    if not creator_ids:
        logger.info("No active creators to score")
        return summary

    batch_size = max(1, config.orchestrator.batch_size)
    for start in range(0, len(creator_ids), batch_size):
        batch = creator_ids[start : start + batch_size]
        tips_by_creator: dict[str, Sequence[CompletedTip]] = {}
        for creator_id in batch:
            try:
                tips_by_creator[creator_id] = store.fetch_completed_tips(conn, creator_id)
            except ValueError:
                logger.exception("Malformed tips for creator %s", creator_id)
                summary["failed"] += 1

        results, failed = _score_batch(tips_by_creator, config, now) if tips_by_creator else ([], 0)
        summary["failed"] += failed

        for result in results:
            persist_result(conn, result, config, now, commit=False)
            summary["processed"] += 1
            if result.published:
                summary["published"] += 1
            else:
                summary["unrated"] += 1
        conn.commit()
        logger.info(
            "Batch %s-%s scored=%s failed=%s",
            start + 1,
            start + len(batch),
            len(results),
            len(batch) - len(results),
        )

    logger.info(
        "Score recompute total=%s processed=%s published=%s unrated=%s failed=%s",
        summary["total"],
        summary["processed"],
        summary["published"],
        summary["unrated"],
        summary["failed"],
    )
    return summary
