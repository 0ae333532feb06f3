from __future__ import annotations

import json
import logging
import sqlite3
from datetime import date, datetime
from enum import Enum
from pathlib import Path
from typing import Any, Iterable, Mapping

from tip_reputation.db.schema import SCHEMA_SQL
from tip_reputation.models import (
    OPEN_STATUSES,
    TERMINAL_STATUSES,
    CompletedTip,
    CreatorScore,
    ScoreSnapshot,
    Tier,
    TimeframeAccuracy,
    Tip,
    TipStatus,
)
from tip_reputation.utils.time import parse_datetime, to_iso, utc_now

logger = logging.getLogger(__name__)

_TIP_COLUMNS = (
    "id",
    "creator_id",
    "symbol",
    "exchange",
    "direction",
    "timeframe",
    "entry_price",
    "target1",
    "target2",
    "target3",
    "stop_loss",
    "status",
    "tip_timestamp",
    "expires_at",
    "closed_price",
    "closed_at",
    "return_pct",
    "risk_reward_ratio",
    "target1_hit_at",
    "target2_hit_at",
    "target3_hit_at",
    "stoploss_hit_at",
    "status_updated_at",
)

_TIP_DATETIME_COLUMNS = frozenset(
    {
        "tip_timestamp",
        "expires_at",
        "closed_at",
        "target1_hit_at",
        "target2_hit_at",
        "target3_hit_at",
        "stoploss_hit_at",
        "status_updated_at",
    }
)

# Columns the lifecycle evaluator is allowed to write back.
_TIP_UPDATE_COLUMNS = frozenset(
    {
        "status",
        "status_updated_at",
        "closed_price",
        "closed_at",
        "return_pct",
        "risk_reward_ratio",
        "target1_hit_at",
        "target2_hit_at",
        "target3_hit_at",
        "stoploss_hit_at",
    }
)

_SCORE_COLUMNS = (
    "creator_id",
    "accuracy_score",
    "risk_adjusted_score",
    "consistency_score",
    "volume_factor_score",
    "rmt_score",
    "confidence_interval",
    "accuracy_rate",
    "avg_return_pct",
    "avg_risk_reward_ratio",
    "win_streak",
    "loss_streak",
    "best_tip_return_pct",
    "worst_tip_return_pct",
    "intraday_accuracy",
    "swing_accuracy",
    "positional_accuracy",
    "long_term_accuracy",
    "total_scored_tips",
    "score_period_start",
    "score_period_end",
    "calculated_at",
    "tier",
)


def get_connection(db_path: Path | str) -> sqlite3.Connection:
    if str(db_path) != ":memory:":
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    conn = sqlite3.connect(db_path)
    conn.row_factory = sqlite3.Row
    return conn


def init_db(conn: sqlite3.Connection) -> None:
    conn.executescript(SCHEMA_SQL)
    conn.commit()


def _placeholders(values: Iterable[Any]) -> str:
    return ", ".join("?" for _ in values)


def _to_db(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return to_iso(value)
    if isinstance(value, date):
        return value.isoformat()
    return value


def upsert_creators(
    conn: sqlite3.Connection,
    creators: Iterable[Mapping[str, Any]],
    commit: bool = True,
) -> None:
    now = utc_now().isoformat()
    rows = []
    for creator in creators:
        rows.append(
            (
                creator.get("id"),
                creator.get("name"),
                1 if creator.get("is_active", True) else 0,
                now,
            )
        )
    # Counters and tier are derived here, so an upsert never resets them.
    conn.executemany(
        """
        INSERT INTO creators (id, name, is_active, updated_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(id) DO UPDATE SET
            name = excluded.name,
            is_active = excluded.is_active,
            updated_at = excluded.updated_at
        """,
        rows,
    )
    if commit:
        conn.commit()


def upsert_stocks(
    conn: sqlite3.Connection,
    stocks: Iterable[Mapping[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for stock in stocks:
        rows.append(
            (
                stock.get("symbol"),
                stock.get("exchange", "NSE"),
                stock.get("name"),
                stock.get("last_price"),
                _to_db(stock.get("last_price_at")),
            )
        )
    conn.executemany(
        """
        INSERT OR REPLACE INTO stocks (symbol, exchange, name, last_price, last_price_at)
        VALUES (?, ?, ?, ?, ?)
        """,
        rows,
    )
    if commit:
        conn.commit()


def insert_tips(
    conn: sqlite3.Connection,
    tips: Iterable[Tip],
    commit: bool = True,
) -> None:
    rows = []
    for tip in tips:
        data = tip.model_dump()
        rows.append(tuple(_to_db(data[column]) for column in _TIP_COLUMNS))
    conn.executemany(
        f"""
        INSERT OR REPLACE INTO tips ({", ".join(_TIP_COLUMNS)})
        VALUES ({_placeholders(_TIP_COLUMNS)})
        """,
        rows,
    )
    if commit:
        conn.commit()


def _row_to_tip_data(row: sqlite3.Row) -> dict[str, Any]:
    data: dict[str, Any] = {}
    for column in _TIP_COLUMNS:
        value = row[column]
        if column in _TIP_DATETIME_COLUMNS and value is not None:
            parsed = parse_datetime(value)
            if parsed is None:
                raise ValueError(f"tip {row['id']}: unparseable {column} {value!r}")
            value = parsed
        data[column] = value
    return data


def row_to_tip(row: sqlite3.Row) -> Tip:
    return Tip(**_row_to_tip_data(row))


def row_to_completed_tip(row: sqlite3.Row) -> CompletedTip:
    return CompletedTip(**_row_to_tip_data(row))


def fetch_open_tips(conn: sqlite3.Connection) -> list[Tip]:
    statuses = sorted(status.value for status in OPEN_STATUSES)
    rows = conn.execute(
        f"""
        SELECT {", ".join(_TIP_COLUMNS)} FROM tips
        WHERE status IN ({_placeholders(statuses)})
        ORDER BY symbol, id
        """,
        statuses,
    ).fetchall()
    tips = []
    for row in rows:
        try:
            tips.append(row_to_tip(row))
        except ValueError as exc:
            logger.warning("Skipping malformed open tip %s: %s", row["id"], exc)
    return tips


def fetch_completed_tips(conn: sqlite3.Connection, creator_id: str) -> list[CompletedTip]:
    """Completed tips for one creator.

    Raises ``ValueError`` on the first malformed row so the caller can count the
    creator as failed instead of scoring a partial history.
    """
    statuses = sorted(status.value for status in TERMINAL_STATUSES)
    rows = conn.execute(
        f"""
        SELECT {", ".join(_TIP_COLUMNS)} FROM tips
        WHERE creator_id = ? AND closed_at IS NOT NULL
          AND status IN ({_placeholders(statuses)})
        ORDER BY tip_timestamp, id
        """,
        (creator_id, *statuses),
    ).fetchall()
    return [row_to_completed_tip(row) for row in rows]


def fetch_tip(conn: sqlite3.Connection, tip_id: str) -> Tip | None:
    row = conn.execute(
        f"SELECT {', '.join(_TIP_COLUMNS)} FROM tips WHERE id = ?",
        (tip_id,),
    ).fetchone()
    if row is None:
        return None
    return row_to_tip(row)


def fetch_active_creator_ids(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT id FROM creators WHERE is_active = 1 ORDER BY id").fetchall()
    return [row["id"] for row in rows]


def apply_tip_update(
    conn: sqlite3.Connection,
    tip_id: str,
    expected_status: TipStatus,
    updates: Mapping[str, Any],
    commit: bool = True,
) -> bool:
    """Write lifecycle fields back, guarded on the status the decision was made from.

    Returns ``False`` when the row has moved on (or is gone), which makes a
    retried sweep a no-op instead of a second transition.
    """
    unknown = set(updates) - _TIP_UPDATE_COLUMNS
    if unknown:
        raise ValueError(f"tip {tip_id}: refusing to update columns {sorted(unknown)}")
    columns = sorted(updates)
    assignments = ", ".join(f"{column} = ?" for column in columns)
    params = [_to_db(updates[column]) for column in columns]
    cursor = conn.execute(
        f"UPDATE tips SET {assignments} WHERE id = ? AND status = ?",
        (*params, tip_id, _to_db(expected_status)),
    )
    if commit:
        conn.commit()
    return cursor.rowcount == 1


def update_stock_prices(
    conn: sqlite3.Connection,
    prices: Iterable[Mapping[str, Any]],
    commit: bool = True,
) -> None:
    rows = []
    for price in prices:
        rows.append(
            (
                price.get("symbol"),
                price.get("exchange", "NSE"),
                price.get("price"),
                _to_db(price.get("timestamp")),
            )
        )
    conn.executemany(
        """
        INSERT INTO stocks (symbol, exchange, last_price, last_price_at)
        VALUES (?, ?, ?, ?)
        ON CONFLICT(symbol, exchange) DO UPDATE SET
            last_price = excluded.last_price,
            last_price_at = excluded.last_price_at
        """,
        rows,
    )
    if commit:
        conn.commit()


def fetch_stock_last_prices(conn: sqlite3.Connection) -> dict[tuple[str, str], float]:
    rows = conn.execute(
        "SELECT symbol, exchange, last_price FROM stocks WHERE last_price IS NOT NULL"
    ).fetchall()
    return {(row["symbol"], row["exchange"]): row["last_price"] for row in rows}


def upsert_creator_score(
    conn: sqlite3.Connection,
    score: CreatorScore,
    commit: bool = True,
) -> None:
    data = score.model_dump(exclude={"timeframe_accuracy"})
    timeframes = score.timeframe_accuracy
    data.update(
        {
            "intraday_accuracy": timeframes.intraday,
            "swing_accuracy": timeframes.swing,
            "positional_accuracy": timeframes.positional,
            "long_term_accuracy": timeframes.long_term,
        }
    )
    conn.execute(
        f"""
        INSERT OR REPLACE INTO creator_scores ({", ".join(_SCORE_COLUMNS)})
        VALUES ({_placeholders(_SCORE_COLUMNS)})
        """,
        tuple(_to_db(data[column]) for column in _SCORE_COLUMNS),
    )
    if commit:
        conn.commit()


def _row_to_score(row: sqlite3.Row) -> CreatorScore:
    data = {column: row[column] for column in _SCORE_COLUMNS}
    data["timeframe_accuracy"] = TimeframeAccuracy(
        intraday=data.pop("intraday_accuracy"),
        swing=data.pop("swing_accuracy"),
        positional=data.pop("positional_accuracy"),
        long_term=data.pop("long_term_accuracy"),
    )
    for column in ("score_period_start", "score_period_end", "calculated_at"):
        data[column] = parse_datetime(data[column])
    return CreatorScore(**data)


def fetch_creator_scores(conn: sqlite3.Connection) -> list[CreatorScore]:
    rows = conn.execute(
        f"SELECT {', '.join(_SCORE_COLUMNS)} FROM creator_scores ORDER BY creator_id"
    ).fetchall()
    return [_row_to_score(row) for row in rows]


def fetch_scored_creator_ids(conn: sqlite3.Connection) -> list[str]:
    rows = conn.execute("SELECT creator_id FROM creator_scores ORDER BY creator_id").fetchall()
    return [row["creator_id"] for row in rows]


def fetch_creator_score(conn: sqlite3.Connection, creator_id: str) -> CreatorScore | None:
    row = conn.execute(
        f"SELECT {', '.join(_SCORE_COLUMNS)} FROM creator_scores WHERE creator_id = ?",
        (creator_id,),
    ).fetchone()
    if row is None:
        return None
    return _row_to_score(row)


def upsert_score_snapshot(
    conn: sqlite3.Connection,
    snapshot: ScoreSnapshot,
    commit: bool = True,
) -> None:
    conn.execute(
        """
        INSERT OR REPLACE INTO score_snapshots
        (creator_id, snapshot_date, rmt_score, accuracy_rate, total_scored_tips)
        VALUES (?, ?, ?, ?, ?)
        """,
        (
            snapshot.creator_id,
            snapshot.snapshot_date.isoformat(),
            snapshot.rmt_score,
            snapshot.accuracy_rate,
            snapshot.total_scored_tips,
        ),
    )
    if commit:
        conn.commit()


def fetch_score_snapshots(
    conn: sqlite3.Connection,
    creator_id: str | None = None,
) -> list[ScoreSnapshot]:
    query = "SELECT creator_id, snapshot_date, rmt_score, accuracy_rate, total_scored_tips FROM score_snapshots"
    params: tuple[Any, ...] = ()
    if creator_id is not None:
        query += " WHERE creator_id = ?"
        params = (creator_id,)
    query += " ORDER BY creator_id, snapshot_date"
    rows = conn.execute(query, params).fetchall()
    return [
        ScoreSnapshot(
            creator_id=row["creator_id"],
            snapshot_date=date.fromisoformat(row["snapshot_date"]),
            rmt_score=row["rmt_score"],
            accuracy_rate=row["accuracy_rate"],
            total_scored_tips=row["total_scored_tips"],
        )
        for row in rows
    ]


def update_creator_tier(
    conn: sqlite3.Connection,
    creator_id: str,
    tier: Tier,
    commit: bool = True,
) -> None:
    conn.execute(
        "UPDATE creators SET tier = ?, updated_at = ? WHERE id = ?",
        (tier.value, utc_now().isoformat(), creator_id),
    )
    if commit:
        conn.commit()


def reconcile_creator_counters(
    conn: sqlite3.Connection,
    creator_ids: Iterable[str] | None = None,
    commit: bool = True,
) -> int:
    """Re-derive active/completed tip counts from the tips table."""
    open_statuses = sorted(status.value for status in OPEN_STATUSES)
    terminal_statuses = sorted(status.value for status in TERMINAL_STATUSES)
    query = f"""
        UPDATE creators SET
            active_tips = (
                SELECT COUNT(*) FROM tips
                WHERE tips.creator_id = creators.id AND tips.status IN ({_placeholders(open_statuses)})
            ),
            completed_tips = (
                SELECT COUNT(*) FROM tips
                WHERE tips.creator_id = creators.id AND tips.status IN ({_placeholders(terminal_statuses)})
            ),
            updated_at = ?
    """
    params: list[Any] = [*open_statuses, *terminal_statuses, utc_now().isoformat()]
    if creator_ids is not None:
        ids = sorted(set(creator_ids))
        if not ids:
            return 0
        query += f" WHERE id IN ({_placeholders(ids)})"
        params.extend(ids)
    cursor = conn.execute(query, params)
    if commit:
        conn.commit()
    return cursor.rowcount


def fetch_creator(conn: sqlite3.Connection, creator_id: str) -> dict[str, Any] | None:
    row = conn.execute(
        """
        SELECT id, name, is_active, tier, active_tips, completed_tips, updated_at
        FROM creators WHERE id = ?
        """,
        (creator_id,),
    ).fetchone()
    if row is None:
        return None
    return {
        "id": row["id"],
        "name": row["name"],
        "is_active": bool(row["is_active"]),
        "tier": Tier(row["tier"]),
        "active_tips": row["active_tips"],
        "completed_tips": row["completed_tips"],
        "updated_at": row["updated_at"],
    }


def start_job_run(
    conn: sqlite3.Connection,
    job_name: str,
    trigger_type: str,
    creator_id: str | None = None,
    attempt: int = 1,
) -> int:
    cursor = conn.execute(
        """
        INSERT INTO job_runs (job_name, trigger_type, creator_id, attempt, status, started_at)
        VALUES (?, ?, ?, ?, 'running', ?)
        """,
        (job_name, trigger_type, creator_id, attempt, utc_now().isoformat()),
    )
    conn.commit()
    return int(cursor.lastrowid)


def finish_job_run(
    conn: sqlite3.Connection,
    run_id: int,
    status: str,
    error_message: str | None = None,
    result: dict[str, Any] | None = None,
) -> None:
    conn.execute(
        """
        UPDATE job_runs
        SET status = ?, finished_at = ?, error_message = ?, result_json = ?
        WHERE id = ?
        """,
        (
            status,
            utc_now().isoformat(),
            error_message,
            json.dumps(result, ensure_ascii=True, default=str) if result is not None else None,
            run_id,
        ),
    )
    conn.commit()


def fetch_job_runs(conn: sqlite3.Connection, job_name: str | None = None) -> list[dict[str, Any]]:
    query = """
        SELECT id, job_name, trigger_type, creator_id, attempt, status,
               started_at, finished_at, error_message, result_json
        FROM job_runs
    """
    params: tuple[Any, ...] = ()
    if job_name is not None:
        query += " WHERE job_name = ?"
        params = (job_name,)
    query += " ORDER BY id"
    results = []
    for row in conn.execute(query, params).fetchall():
        results.append(
            {
                "id": row["id"],
                "job_name": row["job_name"],
                "trigger_type": row["trigger_type"],
                "creator_id": row["creator_id"],
                "attempt": row["attempt"],
                "status": row["status"],
                "started_at": row["started_at"],
                "finished_at": row["finished_at"],
                "error_message": row["error_message"],
                "result": json.loads(row["result_json"]) if row["result_json"] else None,
            }
        )
    return results
