# src/weather_api/stats.py
"""
Statistics aggregation over a city's measurements.

A Statistic summarizes the non-archived readings of one city:
  - avg / max / min temperature
  - temperature and time of the most recent reading
  - the [from_time, to_time] window it covers

Without an explicit lower bound, from_time is the earliest reading of the
city INCLUDING archived ones, while archived readings never contribute to
the aggregates themselves.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from statistics import mean
from typing import List, Optional, Sequence

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from .cache import Cache, statistic_key
from .crud import commit_or_recheck, list_cities
from .errors import NotFoundError
from .models import City, Measurement, Statistic, normalize_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TemperatureSummary:
    avg_temperature: float
    max_temperature: float
    min_temperature: float
    last_measurement_temperature: int
    last_measurement_time: datetime


def summarize(measurements: Sequence[Measurement]) -> TemperatureSummary:
    """Aggregate a non-empty sequence of readings."""
    if not measurements:
        raise ValueError("Cannot summarize an empty set of measurements")

    temps = [m.temperature for m in measurements]
    last = max(measurements, key=lambda m: m.timestamp)

    return TemperatureSummary(
        avg_temperature=float(mean(temps)),
        max_temperature=float(max(temps)),
        min_temperature=float(min(temps)),
        last_measurement_temperature=last.temperature,
        last_measurement_time=last.timestamp,
    )


def compute_statistic(
    db: Session,
    cache: Cache,
    city_id: int,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
) -> Statistic:
    """
    Aggregate the city's non-archived readings and persist the result.

    The selection and the insert share one transaction; the selected rows
    are locked FOR UPDATE on backends that support it, so a concurrent
    archive cannot slip in between.
    """
    if db.get(City, city_id) is None:
        raise NotFoundError(f"City {city_id} not found")

    if from_time is not None:
        from_time = normalize_timestamp(from_time)
    if to_time is not None:
        to_time = normalize_timestamp(to_time)

    q = select(Measurement).where(
        Measurement.city_id == city_id,
        Measurement.is_archived.is_(False),
    )
    if from_time is not None:
        q = q.where(Measurement.timestamp >= from_time)
    if to_time is not None:
        q = q.where(Measurement.timestamp <= to_time)
    q = q.order_by(Measurement.timestamp.asc()).with_for_update()

    rows = list(db.execute(q).scalars())
    if not rows:
        db.rollback()  # release row locks
        raise NotFoundError(f"No non-archived measurements for city {city_id} in the requested window")

    summary = summarize(rows)

    if from_time is None:
        # earliest reading of the city, archived ones included
        from_time = db.execute(
            select(func.min(Measurement.timestamp)).where(Measurement.city_id == city_id)
        ).scalar_one()
    if to_time is None:
        to_time = summary.last_measurement_time

    stat = Statistic(
        city_id=city_id,
        from_time=from_time,
        to_time=to_time,
        avg_temperature=summary.avg_temperature,
        max_temperature=summary.max_temperature,
        min_temperature=summary.min_temperature,
        last_measurement_temperature=summary.last_measurement_temperature,
        last_measurement_time=summary.last_measurement_time,
    )
    db.add(stat)

    try:
        db.commit()
    except SQLAlchemyError:
        db.rollback()
        raise
    db.refresh(stat)

    cache.set(statistic_key(stat.id), stat.to_dict())
    logger.info(
        "Computed statistic id=%s city_id=%s readings=%d window=%s..%s",
        stat.id,
        city_id,
        len(rows),
        from_time.isoformat(),
        to_time.isoformat(),
    )
    return stat


def get_statistic(db: Session, cache: Cache, statistic_id: int) -> Statistic:
    cached = cache.get(statistic_key(statistic_id))
    if cached is not None:
        return Statistic.from_dict(cached)

    stat = db.get(Statistic, statistic_id)
    if stat is None:
        raise NotFoundError(f"Statistic {statistic_id} not found")
    return stat


def list_statistics(
    db: Session,
    city_id: Optional[int] = None,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
) -> List[Statistic]:
    """
    Statistics ordered by id, optionally for one city.

    With a window, only statistics lying entirely inside it are returned,
    and an empty result raises NotFoundError.
    """
    q = select(Statistic)

    if city_id is not None:
        q = q.where(Statistic.city_id == city_id)

    windowed = from_time is not None or to_time is not None
    if from_time is not None:
        q = q.where(Statistic.from_time >= normalize_timestamp(from_time))
    if to_time is not None:
        q = q.where(Statistic.to_time <= normalize_timestamp(to_time))

    rows = list(db.execute(q.order_by(Statistic.id.asc())).scalars())
    if windowed and not rows:
        raise NotFoundError("No statistics in the requested window")
    return rows


def delete_statistic(db: Session, statistic_id: int) -> None:
    stat = db.get(Statistic, statistic_id)
    if stat is None:
        raise NotFoundError(f"Statistic {statistic_id} not found")

    db.delete(stat)
    commit_or_recheck(
        db,
        lambda: db.get(Statistic, statistic_id) is not None,
        f"Statistic {statistic_id}",
    )
    logger.info("Deleted statistic id=%s", statistic_id)


def compute_all(db: Session, cache: Cache) -> int:
    """Compute an all-time statistic for every city with usable readings."""
    written = 0
    for city in list_cities(db):
        try:
            compute_statistic(db, cache, city.id)
        except NotFoundError:
            logger.info(
                "Skipping city id=%s name=%r: no non-archived measurements", city.id, city.name
            )
            continue
        written += 1
    return written
