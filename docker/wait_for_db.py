import logging
import os
import time

from sqlalchemy import create_engine
from sqlalchemy.exc import OperationalError

from educomm.config import Config

MAX_ATTEMPTS = int(os.environ.get("DB_WAIT_ATTEMPTS", "30"))
SLEEP_SECONDS = int(os.environ.get("DB_WAIT_INTERVAL", "2"))

logger = logging.getLogger("wait_for_db")


def main() -> None:
    if Config.DATABASE_URL.startswith("sqlite"):
        logger.info("SQLite database configured; nothing to wait for.")
        return

    engine = create_engine(Config.DATABASE_URL, pool_pre_ping=True)
    for attempt in range(1, MAX_ATTEMPTS + 1):
        try:
            with engine.connect():
                logger.info("Database connection established.")
                return
        except OperationalError as exc:
            logger.warning("Attempt %s/%s failed: %s", attempt, MAX_ATTEMPTS, exc)
            time.sleep(SLEEP_SECONDS)

    raise RuntimeError("Database not reachable after waiting.")


if __name__ == "__main__":
    logging.basicConfig(level=Config.LOG_LEVEL, format="[wait_for_db] %(message)s")
    main()
