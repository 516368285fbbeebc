from __future__ import annotations

import time
from typing import Any, Dict

from sqlalchemy import text
from sqlalchemy.exc import OperationalError

from educomm.database import engine


def check_database_health() -> Dict[str, Any]:
    """Run a trivial query to confirm the database answers."""
    started = time.perf_counter()
    try:
        with engine.connect() as connection:
            connection.execute(text("SELECT 1"))
    except OperationalError as exc:
        return {"status": "DOWN", "database": engine.dialect.name, "detail": str(exc)}
    return {
        "status": "UP",
        "database": engine.dialect.name,
        "latency_ms": round((time.perf_counter() - started) * 1000, 2),
    }
