"""
src/weather_api/crud.py

Query helpers for City and Measurement.

Every helper takes the request-scoped Session first; helpers that touch the
lookaside cache also take the Cache explicitly.

Failures are raised, not returned:
- NotFoundError: no matching city / measurement
- ConflictError: duplicate composite key or city name
- ConcurrencyConflictError: the row changed under us but still exists
"""

from __future__ import annotations  # forward refs

import logging  # module logger
from datetime import datetime  # timestamp type
from typing import Callable, List, Optional  # typing

from sqlalchemy import func, select  # query building
from sqlalchemy.exc import IntegrityError, SQLAlchemyError  # DB failures
from sqlalchemy.orm import Session  # DB session
from sqlalchemy.orm.exc import StaleDataError  # concurrent update/delete

from .cache import Cache, measurement_key  # lookaside cache
from .errors import ConcurrencyConflictError, ConflictError, NotFoundError  # domain errors
from .models import City, Measurement, normalize_timestamp  # ORM models

logger = logging.getLogger(__name__)


def commit_or_recheck(db: Session, still_exists: Callable[[], bool], what: str) -> None:
    """
    Commit pending changes.

    A StaleDataError means the UPDATE/DELETE matched no row. After rolling
    back, re-check the row: gone -> NotFoundError, present -> the write
    collided with another writer and ConcurrencyConflictError is raised.
    """
    try:
        db.commit()
    except StaleDataError:
        db.rollback()
        if not still_exists():
            raise NotFoundError(f"{what} not found")
        raise ConcurrencyConflictError(f"{what} was modified concurrently")
    except SQLAlchemyError:
        db.rollback()
        raise


# ---------------------------------------------------------------------
# City Directory
# ---------------------------------------------------------------------
def _normalize_name(name: str) -> str:
    return name.strip().lower()


def _find_city(db: Session, name: str) -> Optional[City]:
    """Case-insensitive lookup; lowest id wins if legacy duplicates exist."""
    q = (
        select(City)
        .where(func.lower(City.name) == _normalize_name(name))
        .order_by(City.id.asc())
        .limit(1)
    )
    return db.execute(q).scalar_one_or_none()


def resolve_city_id(db: Session, name: str) -> int:
    """Return the id of the city called `name` (case-insensitive)."""
    city = _find_city(db, name)
    if city is None:
        raise NotFoundError(f"City {name!r} not found")
    return city.id


def list_cities(db: Session) -> List[City]:
    return list(db.execute(select(City).order_by(City.id.asc())).scalars())


def get_city(db: Session, city_id: int) -> City:
    city = db.get(City, city_id)
    if city is None:
        raise NotFoundError(f"City {city_id} not found")
    return city


def create_city(db: Session, name: str) -> City:
    if _find_city(db, name) is not None:
        raise ConflictError(f"City {name!r} already exists")

    city = City(name=name.strip())
    db.add(city)
    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(city)
    logger.info("Created city id=%s name=%r", city.id, city.name)
    return city


def update_city(db: Session, city_id: int, name: str) -> City:
    city = get_city(db, city_id)

    other = _find_city(db, name)
    if other is not None and other.id != city_id:
        raise ConflictError(f"City {name!r} already exists")

    city.name = name.strip()
    commit_or_recheck(db, lambda: db.get(City, city_id) is not None, f"City {city_id}")
    logger.info("Renamed city id=%s to %r", city_id, name)
    return city


def delete_city(db: Session, city_id: int) -> None:
    city = get_city(db, city_id)
    db.delete(city)  # cascades to measurements and statistics
    commit_or_recheck(db, lambda: db.get(City, city_id) is not None, f"City {city_id}")
    logger.info("Deleted city id=%s", city_id)


# ---------------------------------------------------------------------
# Measurement Store
# ---------------------------------------------------------------------
def _measurement_exists(db: Session, city_id: int, timestamp: datetime) -> bool:
    q = select(func.count()).select_from(Measurement).where(
        Measurement.city_id == city_id,
        Measurement.timestamp == timestamp,
    )
    return db.execute(q).scalar_one() > 0


def _load_measurement(db: Session, city_id: int, timestamp: datetime) -> Measurement:
    measurement = db.get(Measurement, (city_id, timestamp))  # composite PK lookup
    if measurement is None:
        raise NotFoundError(f"Measurement for city {city_id} at {timestamp.isoformat()} not found")
    return measurement


def list_measurements(db: Session) -> List[Measurement]:
    """All measurements, ordered by city then timestamp."""
    q = select(Measurement).order_by(Measurement.city_id.asc(), Measurement.timestamp.asc())
    return list(db.execute(q).scalars())


def get_measurement(db: Session, cache: Cache, city_id: int, timestamp: datetime) -> Measurement:
    """
    Exact composite lookup.

    A cache hit returns a transient Measurement rebuilt from the cached dict.
    A miss goes to the database and does not populate the cache.
    """
    timestamp = normalize_timestamp(timestamp)  # stored as naive UTC

    cached = cache.get(measurement_key(city_id, timestamp))  # lookaside read
    if cached is not None:
        return Measurement.from_dict(cached)

    return _load_measurement(db, city_id, timestamp)


def latest_measurement(db: Session, city_id: int) -> Measurement:
    """
    Measurement with the greatest timestamp for the city, archived included.

    The composite key makes timestamps unique per city, so there is no tie.
    """
    q = (
        select(Measurement)
        .where(Measurement.city_id == city_id)
        .order_by(Measurement.timestamp.desc())
        .limit(1)
    )
    measurement = db.execute(q).scalar_one_or_none()
    if measurement is None:
        raise NotFoundError(f"No measurements for city {city_id}")
    return measurement


def measurement_history(db: Session, city_id: int) -> List[Measurement]:
    q = (
        select(Measurement)
        .where(Measurement.city_id == city_id)
        .order_by(Measurement.timestamp.asc())
    )
    rows = list(db.execute(q).scalars())
    if not rows:
        raise NotFoundError(f"No measurements for city {city_id}")
    return rows


def insert_measurement(
    db: Session,
    cache: Cache,
    city_id: int,
    timestamp: datetime,
    temperature: int,
    is_archived: bool = False,
) -> Measurement:
    """Insert a reading; ConflictError if (city_id, timestamp) already exists."""
    timestamp = normalize_timestamp(timestamp)

    if db.get(City, city_id) is None:  # readings must reference a city
        raise NotFoundError(f"City {city_id} not found")

    if db.get(Measurement, (city_id, timestamp)) is not None:  # never overwrite
        raise ConflictError(f"Measurement for city {city_id} at {timestamp.isoformat()} already exists")

    measurement = Measurement(
        city_id=city_id,
        timestamp=timestamp,
        temperature=temperature,
        is_archived=is_archived,
    )
    db.add(measurement)

    try:
        db.commit()
    except IntegrityError:
        # another writer inserted the same key between our check and commit
        db.rollback()
        if _measurement_exists(db, city_id, timestamp):
            raise ConflictError(
                f"Measurement for city {city_id} at {timestamp.isoformat()} already exists"
            )
        raise
    except SQLAlchemyError:
        db.rollback()
        raise

    cache.set(measurement_key(city_id, timestamp), measurement.to_dict())  # populate on write only
    logger.info("Inserted measurement city_id=%s timestamp=%s", city_id, timestamp.isoformat())
    return measurement


def update_measurement(
    db: Session,
    city_id: int,
    timestamp: datetime,
    temperature: Optional[int] = None,
    is_archived: Optional[bool] = None,
) -> Measurement:
    """
    Update the mutable fields of a reading.

    Archival is one-way: clearing `is_archived` on an archived reading is a
    ConflictError. The cache is not touched.
    """
    timestamp = normalize_timestamp(timestamp)
    measurement = _load_measurement(db, city_id, timestamp)

    if is_archived is False and measurement.is_archived:
        raise ConflictError("Archived measurements cannot be un-archived")

    if temperature is not None:
        measurement.temperature = temperature
    if is_archived:
        measurement.is_archived = True

    commit_or_recheck(
        db,
        lambda: _measurement_exists(db, city_id, timestamp),
        f"Measurement for city {city_id} at {timestamp.isoformat()}",
    )
    return measurement


def archive_measurements(db: Session, city_id: int, from_time: datetime, to_time: datetime) -> int:
    """
    Archive the city's readings in the closed interval [from_time, to_time].

    Returns how many readings matched, already-archived ones included, so
    archiving the same window twice is a no-op that reports the same count.
    """
    from_time = normalize_timestamp(from_time)
    to_time = normalize_timestamp(to_time)

    q = select(Measurement).where(
        Measurement.city_id == city_id,
        Measurement.timestamp >= from_time,
        Measurement.timestamp <= to_time,
    )
    rows = list(db.execute(q).scalars())
    if not rows:
        raise NotFoundError(
            f"No measurements for city {city_id} between {from_time.isoformat()} and {to_time.isoformat()}"
        )

    for m in rows:
        m.is_archived = True

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise

    logger.info("Archived %d measurements for city_id=%s", len(rows), city_id)
    return len(rows)


def delete_measurement(db: Session, city_id: int, timestamp: datetime) -> None:
    timestamp = normalize_timestamp(timestamp)
    measurement = _load_measurement(db, city_id, timestamp)

    db.delete(measurement)
    commit_or_recheck(
        db,
        lambda: _measurement_exists(db, city_id, timestamp),
        f"Measurement for city {city_id} at {timestamp.isoformat()}",
    )
    logger.info("Deleted measurement city_id=%s timestamp=%s", city_id, timestamp.isoformat())
