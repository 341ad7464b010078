from __future__ import annotations

import logging
import os
import subprocess
import time

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from reporting.core.config import get_settings
from reporting.db.session import make_engine, make_session_factory, session_scope

logger = logging.getLogger("reporting.migrate")


def wait_for_db(engine, timeout_s: int = 60) -> None:
    """Wait until the database is accepting connections."""
    start = time.time()
    delay = 1.0

    while True:
        try:
            with engine.begin() as conn:
                conn.execute(text("SELECT 1"))
            return
        except OperationalError:
            if time.time() - start > timeout_s:
                raise
            time.sleep(delay)
            delay = min(delay * 1.5, 5.0)


def run(cmd: list[str]) -> int:
    p = subprocess.run(cmd, check=False)
    return p.returncode


def main() -> int:
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    settings = get_settings()
    logger.info("Migrating %s (%s)", settings.APP_NAME, settings.ENV)
    engine = make_engine(settings)

    # Wait for DB readiness (important in docker-compose)
    wait_for_db(engine, timeout_s=int(os.getenv("DB_WAIT_TIMEOUT", "90")))

    rc = run(["alembic", "upgrade", "head"])
    if rc != 0:
        logger.error("alembic upgrade failed with exit code %s", rc)
        return rc

    # Seed sample dataset (idempotent)
    if settings.AUTO_SEED_SAMPLE:
        from reporting.scripts.seed_sample import seed_sample

        with session_scope(make_session_factory(engine)) as db:
            created = seed_sample(db)
            db.commit()
        logger.info("Seeded %d sample users", created)

    return 0


if __name__ == "__main__":
    raise SystemExit(main())
