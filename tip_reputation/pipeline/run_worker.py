from __future__ import annotations

import logging
import time
from pathlib import Path

from tip_reputation.api.price_feed import PriceFeedClient
from tip_reputation.config import load_config
from tip_reputation.db import store
from tip_reputation.pipeline.jobs import JobRunner

logger = logging.getLogger(__name__)


def main() -> None:
    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")
    root = Path(__file__).resolve().parents[2]
    config = load_config(root / "config.yaml")

    db_path = Path(config.run.db_path)
    if not db_path.is_absolute():
        db_path = root / db_path
    conn = store.get_connection(db_path)
    store.init_db(conn)
    conn.close()

    runner = JobRunner(config, db_path, PriceFeedClient(config.price_feed))
    runner.register_schedules()
    runner.start()
    logger.info("Worker started db=%s timezone=%s", db_path, config.run.timezone)

    try:
        while True:
            time.sleep(1)
    except (KeyboardInterrupt, SystemExit):
        logger.info("Shutting down worker")
    finally:
        runner.stop()


if __name__ == "__main__":
    main()
