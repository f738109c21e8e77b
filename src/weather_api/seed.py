"""
src/weather_api/seed.py

Startup seeding for an empty database:
1) Ensures tables exist (create_all is safe to call repeatedly)
2) Skips seeding if any city or measurement is already present
3) Inserts three demo cities and recent readings for two of them

Call once from the FastAPI lifespan:
    from src.weather_api.seed import run_startup_seed
    run_startup_seed()
"""

from __future__ import annotations  # allows forward type refs

import logging  # module logger
from datetime import datetime, timedelta  # reading offsets
from typing import Dict, List, Optional, Tuple  # typing helpers

from sqlalchemy import func, select  # SQLAlchemy core
from sqlalchemy.exc import SQLAlchemyError  # base SQLAlchemy exception type
from sqlalchemy.orm import Session  # session type for type hints

from src.weather_api.db import SessionLocal, ensure_tables_exist  # session factory + schema
from src.weather_api.models import City, Measurement, utcnow  # ORM models

logger = logging.getLogger(__name__)


SEED_CITIES: List[str] = ["Kharkiv", "Dnipro", "Poltava"]

# (city name, hours before now, temperature)
SEED_READINGS: List[Tuple[str, int, int]] = [
    ("Kharkiv", 0, 10),
    ("Kharkiv", 1, 1),
    ("Kharkiv", 2, 12),
    ("Dnipro", 15, 4),
    ("Dnipro", 8, 6),
    ("Dnipro", 12, -1),
]


def already_seeded(session: Session) -> bool:
    """Return True if the database already holds cities or measurements."""
    city_count = session.execute(select(func.count()).select_from(City)).scalar_one()
    measurement_count = session.execute(select(func.count()).select_from(Measurement)).scalar_one()
    return city_count > 0 or measurement_count > 0


def seed(session: Session, now: Optional[datetime] = None) -> Tuple[int, int]:
    """Insert the demo data and return (cities, measurements) written."""
    now = now or utcnow()  # naive UTC reference point

    cities: Dict[str, City] = {name: City(name=name) for name in SEED_CITIES}
    session.add_all(cities.values())
    session.flush()  # assign ids

    for name, hours_ago, temperature in SEED_READINGS:
        session.add(
            Measurement(
                city_id=cities[name].id,
                timestamp=now - timedelta(hours=hours_ago),
                temperature=temperature,
                is_archived=False,
            )
        )

    session.commit()  # persist everything in one transaction
    return len(cities), len(SEED_READINGS)


def run_startup_seed() -> None:
    """
    Call this once at app startup.

    Behavior:
    - Create tables if missing
    - If the database already has data: skip
    - Else insert the demo cities and readings
    """
    ensure_tables_exist()  # always ensure schema exists first

    session: Optional[Session] = None  # init session handle
    try:
        session = SessionLocal()  # open a DB session

        if already_seeded(session):  # check row counts
            logger.info("[seed] Data already present, skipping seeding.")
            return

        n_cities, n_readings = seed(session)
        logger.info("[seed] Done. Inserted cities=%d, measurements=%d.", n_cities, n_readings)

    except SQLAlchemyError:
        # Roll back if anything went wrong during DB work.
        if session is not None:
            session.rollback()
        raise

    finally:
        # Always close the session.
        if session is not None:
            session.close()  # release DB connection back to pool
