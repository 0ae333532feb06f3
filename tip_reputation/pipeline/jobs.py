from __future__ import annotations

import logging
from datetime import datetime, timedelta
from enum import Enum
from pathlib import Path
from typing import Any, Optional

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.cron import CronTrigger
from apscheduler.triggers.date import DateTrigger
from pydantic import BaseModel

from tip_reputation.config import AppConfig
from tip_reputation.db import store
from tip_reputation.pipeline.expirations import check_expirations
from tip_reputation.pipeline.prices import PriceFeed, check_active_tips
from tip_reputation.pipeline.score import recompute_all, recompute_creator
from tip_reputation.pipeline.snapshot import create_daily_snapshots
from tip_reputation.utils.time import local_today, utc_now

logger = logging.getLogger(__name__)


class JobType(str, Enum):
    PRICE_CHECK = "price-check"
    EXPIRY = "expiry"
    FULL = "full"
    CREATOR = "creator"
    SNAPSHOT = "snapshot"


# Bookkeeping names; attempts in the schedule config are keyed by these.
JOB_NAMES = {
    JobType.PRICE_CHECK: "update_prices",
    JobType.EXPIRY: "check_expirations",
    JobType.FULL: "calculate_scores",
    JobType.CREATOR: "calculate_scores",
    JobType.SNAPSHOT: "daily_snapshot",
}


class JobTrigger(BaseModel):
    type: JobType
    triggered_at: datetime
    creator_id: Optional[str] = None

    @property
    def job_id(self) -> str:
        parts = [self.type.value]
        if self.creator_id:
            parts.append(self.creator_id)
        parts.append(self.triggered_at.isoformat())
        return ":".join(parts)


class JobRunner:
    def __init__(
        self,
        config: AppConfig,
        db_path: Path | str,
        feed: PriceFeed,
        scheduler: BackgroundScheduler | None = None,
    ) -> None:
        self.config = config
        self.db_path = db_path
        self.feed = feed
        self.scheduler = scheduler or BackgroundScheduler(timezone="UTC")

    def register_schedules(self) -> None:
        schedule = self.config.schedule
        crons = [
            ("price_check", schedule.price_check_cron, JobType.PRICE_CHECK),
            ("expiry_check", schedule.expiry_check_cron, JobType.EXPIRY),
        ]
        if schedule.full_recompute_cron:
            crons.append(("full_recompute", schedule.full_recompute_cron, JobType.FULL))
        for job_id, expression, job_type in crons:
            self.scheduler.add_job(
                func=self.run_scheduled,
                trigger=CronTrigger.from_crontab(expression, timezone="UTC"),
                args=[job_type],
                id=job_id,
                name=JOB_NAMES[job_type],
                replace_existing=True,
                coalesce=True,
                max_instances=1,
            )
            logger.info("Scheduled %s with cron '%s' (UTC)", job_id, expression)

    def start(self) -> None:
        self.scheduler.start()

    def stop(self) -> None:
        self.scheduler.shutdown(wait=True)

    def run_scheduled(self, job_type: JobType) -> dict[str, Any] | None:
        return self.run_job(JobTrigger(type=job_type, triggered_at=utc_now()))

    def enqueue(self, trigger: JobTrigger, delay_s: float = 0) -> None:
        run_date = trigger.triggered_at + timedelta(seconds=delay_s)
        self.scheduler.add_job(
            func=self.run_job,
            trigger=DateTrigger(run_date=run_date),
            args=[trigger],
            id=trigger.job_id,
            name=JOB_NAMES[trigger.type],
            replace_existing=True,
            misfire_grace_time=None,
        )
        logger.info("Enqueued %s for %s", trigger.job_id, run_date.isoformat())

    def enqueue_creator(self, creator_id: str, delay_s: float = 0) -> JobTrigger:
        trigger = JobTrigger(type=JobType.CREATOR, triggered_at=utc_now(), creator_id=creator_id)
        self.enqueue(trigger, delay_s=delay_s)
        return trigger

    def run_job(self, trigger: JobTrigger) -> dict[str, Any] | None:
        """Run one job with bounded attempts and chain its follow-up on success.

        Every attempt is recorded in ``job_runs``. Returns the job result, or
        ``None`` when every attempt failed, in which case nothing is chained.
        """
        name = JOB_NAMES[trigger.type]
        attempts = max(1, self.config.schedule.job_attempts.get(name, 1))
        conn = store.get_connection(self.db_path)
        try:
            for attempt in range(1, attempts + 1):
                run_id = store.start_job_run(conn, name, trigger.type.value, trigger.creator_id, attempt)
                try:
                    result = self._execute(conn, trigger)
                except Exception as exc:  # noqa: BLE001
                    conn.rollback()
                    store.finish_job_run(conn, run_id, "failed", error_message=str(exc))
                    logger.warning("Job %s attempt %s/%s failed: %s", name, attempt, attempts, exc)
                    continue
                store.finish_job_run(conn, run_id, "success", result=result)
                self._chain(trigger)
                return result
        finally:
            conn.close()
        logger.error("Job %s gave up after %s attempts", name, attempts)
        return None

    def _execute(self, conn, trigger: JobTrigger) -> dict[str, Any]:
        now = trigger.triggered_at
        if trigger.type is JobType.PRICE_CHECK:
            return check_active_tips(conn, self.feed, self.config, now)
        if trigger.type is JobType.EXPIRY:
            return check_expirations(conn, self.config, now)
        if trigger.type is JobType.FULL:
            return recompute_all(conn, self.config, now)
        if trigger.type is JobType.CREATOR:
            if not trigger.creator_id:
                raise ValueError("creator recompute needs a creator_id")
            result = recompute_creator(conn, trigger.creator_id, self.config, now)
            return {
                "creator_id": result.creator_id,
                "tier": result.tier.value,
                "published": result.published,
                "total_scored_tips": result.total_scored_tips,
            }
        if trigger.type is JobType.SNAPSHOT:
            return create_daily_snapshots(conn, local_today(self.config.run.timezone, now))
        raise ValueError(f"unknown job type {trigger.type}")

    def _chain(self, trigger: JobTrigger) -> None:
        now = utc_now()
        if trigger.type is JobType.PRICE_CHECK:
            self.enqueue(JobTrigger(type=JobType.FULL, triggered_at=now))
        elif trigger.type is JobType.FULL:
            self.enqueue(
                JobTrigger(type=JobType.SNAPSHOT, triggered_at=now),
                delay_s=self.config.schedule.snapshot_delay_s,
            )
