from datetime import datetime, timedelta

import pytest
from sqlalchemy.orm import Session

from src.weather_api import crud, stats
from src.weather_api.cache import MemoryCache, NullCache, statistic_key
from src.weather_api.errors import NotFoundError
from src.weather_api.models import Measurement, Statistic
from tests.factories import T0


def test_summarize_computes_aggregates_and_last_reading() -> None:
    # Arrange
    rows = [
        Measurement(city_id=1, timestamp=T0, temperature=10),
        Measurement(city_id=1, timestamp=T0 - timedelta(hours=1), temperature=1),
        Measurement(city_id=1, timestamp=T0 - timedelta(hours=2), temperature=12),
    ]

    # Act
    summary = stats.summarize(rows)

    # Assert
    assert summary.avg_temperature == pytest.approx(23 / 3)
    assert summary.max_temperature == 12
    assert summary.min_temperature == 1
    assert summary.last_measurement_temperature == 10
    assert summary.last_measurement_time == T0


def test_summarize_rejects_empty_input() -> None:
    with pytest.raises(ValueError):
        stats.summarize([])


def test_compute_all_time_statistic_for_kharkiv(seeded: Session, cache: MemoryCache) -> None:
    # Act
    stat = stats.compute_statistic(seeded, cache, 1)

    # Assert
    assert stat.id is not None
    assert round(stat.avg_temperature, 2) == 7.67
    assert stat.max_temperature == 12
    assert stat.min_temperature == 1
    assert stat.last_measurement_temperature == 10
    assert stat.last_measurement_time == T0
    assert stat.from_time == T0 - timedelta(hours=2)
    assert stat.to_time == T0


def test_compute_excludes_archived_readings(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    crud.archive_measurements(seeded, 1, T0 - timedelta(hours=2), T0 - timedelta(hours=1))

    # Act
    stat = stats.compute_statistic(seeded, cache, 1)

    # Assert
    assert stat.avg_temperature == stat.max_temperature == stat.min_temperature == 10
    assert stat.last_measurement_time == T0


def test_compute_default_window_starts_at_earliest_reading_even_if_archived(
    seeded: Session, cache: MemoryCache
) -> None:
    # Arrange: archive only the earliest reading
    crud.archive_measurements(seeded, 1, T0 - timedelta(hours=2), T0 - timedelta(hours=2))

    # Act
    stat = stats.compute_statistic(seeded, cache, 1)

    # Assert: excluded from aggregates but still opens the window
    assert stat.max_temperature == 10
    assert stat.min_temperature == 1
    assert stat.from_time == T0 - timedelta(hours=2)
    assert stat.to_time == T0


def test_compute_with_explicit_window_stores_given_bounds(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    start = T0 - timedelta(hours=1, minutes=30)
    end = T0 + timedelta(hours=1)

    # Act
    stat = stats.compute_statistic(seeded, cache, 1, from_time=start, to_time=end)

    # Assert
    assert stat.avg_temperature == pytest.approx(5.5)
    assert stat.from_time == start
    assert stat.to_time == end
    assert stat.last_measurement_temperature == 10


def test_compute_with_no_usable_readings_raises_not_found(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    crud.archive_measurements(seeded, 1, T0 - timedelta(days=1), T0)

    # Act / Assert
    with pytest.raises(NotFoundError):
        stats.compute_statistic(seeded, cache, 1)
    with pytest.raises(NotFoundError):
        stats.compute_statistic(seeded, cache, 3)  # Poltava has no readings
    with pytest.raises(NotFoundError):
        stats.compute_statistic(seeded, cache, 99)  # no such city
    assert stats.list_statistics(seeded) == []


def test_compute_populates_cache_and_get_uses_it(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    stat = stats.compute_statistic(seeded, cache, 1)
    stat_id = stat.id

    # Act
    seeded.delete(seeded.get(Statistic, stat_id))
    seeded.commit()
    cached = stats.get_statistic(seeded, cache, stat_id)

    # Assert: cache is not invalidated by deletes
    assert cache.has(statistic_key(stat_id))
    assert cached.id == stat_id
    assert cached.last_measurement_time == T0
    with pytest.raises(NotFoundError):
        stats.get_statistic(seeded, NullCache(), stat_id)


def test_list_statistics_filters_by_city_and_window(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    kharkiv_all = stats.compute_statistic(seeded, cache, 1)
    kharkiv_hour = stats.compute_statistic(
        seeded, cache, 1, from_time=T0 - timedelta(hours=1), to_time=T0
    )
    dnipro_all = stats.compute_statistic(seeded, cache, 2)

    # Act
    everything = stats.list_statistics(seeded)
    kharkiv = stats.list_statistics(seeded, city_id=1)
    inside = stats.list_statistics(
        seeded, city_id=1, from_time=T0 - timedelta(hours=1, minutes=30), to_time=T0
    )

    # Assert
    assert [s.id for s in everything] == [kharkiv_all.id, kharkiv_hour.id, dnipro_all.id]
    assert [s.id for s in kharkiv] == [kharkiv_all.id, kharkiv_hour.id]
    assert [s.id for s in inside] == [kharkiv_hour.id]


def test_list_statistics_empty_window_raises_not_found(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    stats.compute_statistic(seeded, cache, 1)

    # Act / Assert
    with pytest.raises(NotFoundError):
        stats.list_statistics(seeded, city_id=1, from_time=datetime(2030, 1, 1), to_time=datetime(2030, 2, 1))
    assert stats.list_statistics(seeded, city_id=2) == []


def test_delete_statistic(seeded: Session, cache: MemoryCache) -> None:
    # Arrange
    stat_id = stats.compute_statistic(seeded, cache, 1).id

    # Act
    stats.delete_statistic(seeded, stat_id)

    # Assert
    assert seeded.get(Statistic, stat_id) is None
    with pytest.raises(NotFoundError):
        stats.delete_statistic(seeded, stat_id)


def test_compute_all_skips_cities_without_readings(seeded: Session, cache: MemoryCache) -> None:
    # Act
    written = stats.compute_all(seeded, cache)

    # Assert
    assert written == 2
    assert sorted(s.city_id for s in stats.list_statistics(seeded)) == [1, 2]
