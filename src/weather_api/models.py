# src/weather_api/models.py
from __future__ import annotations

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Index,
    Integer,
    String,
)
from sqlalchemy.orm import relationship

from .db import Base


def normalize_timestamp(value: datetime) -> datetime:
    """Return `value` as naive UTC; aware datetimes are converted first."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


def utcnow() -> datetime:
    return normalize_timestamp(datetime.now(timezone.utc))


def _parse_time(value: Any) -> Optional[datetime]:
    if value is None or isinstance(value, datetime):
        return value
    return normalize_timestamp(datetime.fromisoformat(value))


class City(Base):
    __tablename__ = "cities"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(100), nullable=False, index=True)

    measurements = relationship(
        "Measurement",
        back_populates="city",
        cascade="all, delete-orphan",
    )
    statistics = relationship(
        "Statistic",
        back_populates="city",
        cascade="all, delete-orphan",
    )

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


class Measurement(Base):
    __tablename__ = "measurements"

    # (city_id, timestamp) is the composite identity of a reading
    city_id = Column(
        Integer,
        ForeignKey("cities.id", ondelete="CASCADE"),
        primary_key=True,
    )
    timestamp = Column(DateTime, primary_key=True)
    temperature = Column(Integer, nullable=False)
    is_archived = Column(Boolean, nullable=False, default=False)

    city = relationship("City", back_populates="measurements")

    __table_args__ = (
        Index("ix_measurements_city_archived", "city_id", "is_archived"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-ready representation, also used as the cached form."""
        return {
            "city_id": self.city_id,
            "timestamp": self.timestamp.isoformat(),
            "temperature": self.temperature,
            "is_archived": bool(self.is_archived),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Measurement":
        """Rebuild a transient (session-less) Measurement from `to_dict` output."""
        return cls(
            city_id=data["city_id"],
            timestamp=_parse_time(data["timestamp"]),
            temperature=data["temperature"],
            is_archived=data["is_archived"],
        )


class Statistic(Base):
    __tablename__ = "statistics"

    id = Column(Integer, primary_key=True, index=True)
    city_id = Column(
        Integer,
        ForeignKey("cities.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    from_time = Column(DateTime, nullable=False)
    to_time = Column(DateTime, nullable=False)

    avg_temperature = Column(Float, nullable=False)
    max_temperature = Column(Float, nullable=False)
    min_temperature = Column(Float, nullable=False)
    last_measurement_temperature = Column(Integer, nullable=False)
    last_measurement_time = Column(DateTime, nullable=False)

    city = relationship("City", back_populates="statistics")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "city_id": self.city_id,
            "from_time": self.from_time.isoformat(),
            "to_time": self.to_time.isoformat(),
            "avg_temperature": self.avg_temperature,
            "max_temperature": self.max_temperature,
            "min_temperature": self.min_temperature,
            "last_measurement_temperature": self.last_measurement_temperature,
            "last_measurement_time": self.last_measurement_time.isoformat(),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Statistic":
        return cls(
            id=data["id"],
            city_id=data["city_id"],
            from_time=_parse_time(data["from_time"]),
            to_time=_parse_time(data["to_time"]),
            avg_temperature=data["avg_temperature"],
            max_temperature=data["max_temperature"],
            min_temperature=data["min_temperature"],
            last_measurement_temperature=data["last_measurement_temperature"],
            last_measurement_time=_parse_time(data["last_measurement_time"]),
        )
