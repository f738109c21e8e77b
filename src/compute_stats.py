# src/compute_stats.py

# ------------------------------------------------------------
# Enable postponed evaluation of type hints (Python 3.10+)
# ------------------------------------------------------------
from __future__ import annotations

# ------------------------------------------------------------
# Used for timing logs
# ------------------------------------------------------------
from datetime import datetime

# ------------------------------------------------------------
# SQLAlchemy session manager
# ------------------------------------------------------------
from sqlalchemy.orm import Session

# ------------------------------------------------------------
# DB engine (configured via DATABASE_URL)
# ------------------------------------------------------------
from src.weather_api.db import engine, ensure_tables_exist

# ------------------------------------------------------------
# Cache backend (configured via CACHE_BACKEND)
# ------------------------------------------------------------
from src.weather_api.cache import build_cache
from src.weather_api.config import get_settings

# ------------------------------------------------------------
# Aggregation
# ------------------------------------------------------------
from src.weather_api.stats import compute_all


def main() -> None:
    """
    Compute an all-time statistic for every city and store it in statistics.

    For each city with non-archived measurements:
      - avg/max/min temperature over non-archived readings
      - last reading's temperature and time
      - from_time = earliest reading (archived included)
      - to_time = last non-archived reading

    Cities without usable readings are skipped.
    """

    # Record start time for log output
    start = datetime.now()

    # Make sure the schema exists before querying
    ensure_tables_exist()

    # Only a shared backend (redis) makes these entries visible to the API
    cache = build_cache(get_settings())

    # Open DB session; compute_all commits once per statistic
    with Session(engine) as db:
        rows_written = compute_all(db, cache)

    # Record end time
    end = datetime.now()

    # Print final summary
    print(
        f"[stats] start={start.isoformat()} end={end.isoformat()} rows={rows_written}",
        flush=True,
    )


# Standard entry point guard
if __name__ == "__main__":
    main()
