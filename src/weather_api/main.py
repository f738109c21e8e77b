"""
src/weather_api/main.py

FastAPI entry point for the Weather API.

Features:
- CRUD endpoints for cities, measurements and statistics
- Archival of measurement windows (excluded from statistics)
- Lookaside cache for freshly written measurements and statistics
- Startup seeding of an empty database
- Domain errors mapped to 404 / 409, database errors to 500
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Depends, FastAPI, Query, Request, Response, status
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from src.weather_api import crud, stats
from src.weather_api.cache import Cache, build_cache
from src.weather_api.config import get_settings
from src.weather_api.db import ensure_tables_exist, get_db
from src.weather_api.errors import WeatherApiError
from src.weather_api.logging_config import configure_logging
from src.weather_api.models import City, Measurement, Statistic
from src.weather_api.seed import run_startup_seed


settings = get_settings()


# -------------------------------------------------
# Logging configuration
# -------------------------------------------------
configure_logging(settings.log_level, settings.log_format)
logger = logging.getLogger("weather_api")


# -------------------------------------------------
# Cache dependency
# -------------------------------------------------
def get_cache(request: Request) -> Cache:
    """Return the process-wide cache created at import time."""
    return request.app.state.cache


# -------------------------------------------------
# Helper: round numeric values safely
# -------------------------------------------------
def round_2(value: Any) -> Any:
    """Round floats to 2 decimal places; other values pass through."""
    if isinstance(value, float):
        return round(value, 2)
    return value


def city_out(city: City) -> Dict[str, Any]:
    return city.to_dict()


def measurement_out(m: Measurement) -> Dict[str, Any]:
    return m.to_dict()


def statistic_out(s: Statistic) -> Dict[str, Any]:
    data = s.to_dict()
    for key in ("avg_temperature", "max_temperature", "min_temperature"):
        data[key] = round_2(data[key])
    return data


# -------------------------------------------------
# Request bodies
# -------------------------------------------------
class CityIn(BaseModel):
    name: str


class MeasurementIn(BaseModel):
    temperature: int


class MeasurementUpdate(BaseModel):
    temperature: Optional[int] = None
    is_archived: Optional[bool] = None


# -------------------------------------------------
# Application lifespan (startup / shutdown)
# -------------------------------------------------
@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables and seed an empty database at startup."""
    try:
        if settings.seed_on_startup:
            logger.info("[startup] Running seed check...")
            run_startup_seed()
            logger.info("[startup] Seed step finished.")
        else:
            ensure_tables_exist()
    except Exception:
        logger.exception("[startup] Database initialisation failed.")
        raise

    yield

    logger.info("[shutdown] Application shutting down.")


# -------------------------------------------------
# FastAPI app instance
# -------------------------------------------------
app = FastAPI(
    title=settings.app_title,
    version=settings.app_version,
    lifespan=lifespan,
)
app.state.cache = build_cache(settings)


# -------------------------------------------------
# CORS (development-friendly defaults)
# -------------------------------------------------
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


# -------------------------------------------------
# Error mapping
# -------------------------------------------------
@app.exception_handler(WeatherApiError)
async def weather_api_error_handler(request: Request, exc: WeatherApiError) -> JSONResponse:
    logger.warning(
        "%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.message
    )
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.message})


@app.exception_handler(SQLAlchemyError)
async def database_error_handler(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.exception("%s %s failed with a database error", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"detail": "Database error"})


# -------------------------------------------------
# Meta endpoints
# -------------------------------------------------
@app.get("/", tags=["meta"])
def root():
    return {"status": "ok", "docs": "/docs"}


@app.get("/health", tags=["meta"])
def health():
    return {"status": "healthy"}


@app.get("/ping", tags=["meta"])
def ping():
    return {"ping": "pong"}


# -------------------------------------------------
# Cities
# -------------------------------------------------
@app.get("/api/cities", tags=["cities"])
def api_list_cities(db: Session = Depends(get_db)) -> List[Dict[str, Any]]:
    return [city_out(c) for c in crud.list_cities(db)]


@app.get("/api/cities/{city_id}", tags=["cities"])
def api_get_city(city_id: int, db: Session = Depends(get_db)):
    return city_out(crud.get_city(db, city_id))


@app.post("/api/cities", tags=["cities"], status_code=status.HTTP_201_CREATED)
def api_create_city(body: CityIn, response: Response, db: Session = Depends(get_db)):
    city = crud.create_city(db, body.name)
    response.headers["Location"] = f"/api/cities/{city.id}"
    return city_out(city)


@app.put("/api/cities/{city_id}", tags=["cities"], status_code=status.HTTP_204_NO_CONTENT)
def api_update_city(city_id: int, body: CityIn, db: Session = Depends(get_db)):
    crud.update_city(db, city_id, body.name)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete("/api/cities/{city_id}", tags=["cities"], status_code=status.HTTP_204_NO_CONTENT)
def api_delete_city(city_id: int, db: Session = Depends(get_db)):
    crud.delete_city(db, city_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------
# Measurements
# -------------------------------------------------
@app.get("/api/measurements", tags=["measurements"])
def api_list_measurements(db: Session = Depends(get_db)):
    return [measurement_out(m) for m in crud.list_measurements(db)]


@app.get("/api/measurements/{city}", tags=["measurements"])
def api_measurement_history(city: str, db: Session = Depends(get_db)):
    """Readings of one city, oldest first."""
    city_id = crud.resolve_city_id(db, city)
    return [measurement_out(m) for m in crud.measurement_history(db, city_id)]


@app.get("/api/measurements/{city}/latest", tags=["measurements"])
def api_latest_measurement(city: str, db: Session = Depends(get_db)):
    """Current conditions: the most recent reading of the city."""
    city_id = crud.resolve_city_id(db, city)
    return measurement_out(crud.latest_measurement(db, city_id))


@app.get("/api/measurements/{city}/{timestamp}", tags=["measurements"])
def api_get_measurement(
    city: str,
    timestamp: datetime,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    city_id = crud.resolve_city_id(db, city)
    return measurement_out(crud.get_measurement(db, cache, city_id, timestamp))


@app.post(
    "/api/measurements/{city}/{timestamp}",
    tags=["measurements"],
    status_code=status.HTTP_201_CREATED,
)
def api_create_measurement(
    city: str,
    timestamp: datetime,
    body: MeasurementIn,
    response: Response,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    city_id = crud.resolve_city_id(db, city)
    m = crud.insert_measurement(db, cache, city_id, timestamp, body.temperature)
    response.headers["Location"] = f"/api/measurements/{city}/{m.timestamp.isoformat()}"
    return measurement_out(m)


@app.put(
    "/api/measurements/{city}/archive/{from_time}/{to_time}",
    tags=["measurements"],
    status_code=status.HTTP_204_NO_CONTENT,
)
def api_archive_measurements(
    city: str,
    from_time: datetime,
    to_time: datetime,
    db: Session = Depends(get_db),
):
    """Exclude the city's readings in [from_time, to_time] from statistics."""
    city_id = crud.resolve_city_id(db, city)
    crud.archive_measurements(db, city_id, from_time, to_time)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.put(
    "/api/measurements/{city}/{timestamp}",
    tags=["measurements"],
    status_code=status.HTTP_204_NO_CONTENT,
)
def api_update_measurement(
    city: str,
    timestamp: datetime,
    body: MeasurementUpdate,
    db: Session = Depends(get_db),
):
    city_id = crud.resolve_city_id(db, city)
    crud.update_measurement(
        db,
        city_id,
        timestamp,
        temperature=body.temperature,
        is_archived=body.is_archived,
    )
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@app.delete(
    "/api/measurements/{city}/{timestamp}",
    tags=["measurements"],
    status_code=status.HTTP_204_NO_CONTENT,
)
def api_delete_measurement(city: str, timestamp: datetime, db: Session = Depends(get_db)):
    city_id = crud.resolve_city_id(db, city)
    crud.delete_measurement(db, city_id, timestamp)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------
# Statistics
# -------------------------------------------------
@app.get("/api/statistics", tags=["statistics"])
def api_list_statistics(
    city: Optional[str] = Query(None),
    from_time: Optional[datetime] = Query(None),
    to_time: Optional[datetime] = Query(None),
    db: Session = Depends(get_db),
):
    city_id = crud.resolve_city_id(db, city) if city else None
    rows = stats.list_statistics(db, city_id=city_id, from_time=from_time, to_time=to_time)
    return [statistic_out(s) for s in rows]


@app.get("/api/statistics/{statistic_id}", tags=["statistics"])
def api_get_statistic(
    statistic_id: int,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    return statistic_out(stats.get_statistic(db, cache, statistic_id))


def _create_statistic(
    city: str,
    response: Response,
    db: Session,
    cache: Cache,
    from_time: Optional[datetime] = None,
    to_time: Optional[datetime] = None,
) -> Dict[str, Any]:
    city_id = crud.resolve_city_id(db, city)
    stat = stats.compute_statistic(db, cache, city_id, from_time=from_time, to_time=to_time)
    response.headers["Location"] = f"/api/statistics/{stat.id}"
    return statistic_out(stat)


@app.post("/api/statistics/{city}", tags=["statistics"], status_code=status.HTTP_201_CREATED)
def api_create_statistic(
    city: str,
    response: Response,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    """All-time statistic over the city's non-archived readings."""
    return _create_statistic(city, response, db, cache)


@app.post(
    "/api/statistics/{city}/{from_time}/{to_time}",
    tags=["statistics"],
    status_code=status.HTTP_201_CREATED,
)
def api_create_window_statistic(
    city: str,
    from_time: datetime,
    to_time: datetime,
    response: Response,
    db: Session = Depends(get_db),
    cache: Cache = Depends(get_cache),
):
    return _create_statistic(city, response, db, cache, from_time=from_time, to_time=to_time)


@app.delete(
    "/api/statistics/{statistic_id}",
    tags=["statistics"],
    status_code=status.HTTP_204_NO_CONTENT,
)
def api_delete_statistic(statistic_id: int, db: Session = Depends(get_db)):
    stats.delete_statistic(db, statistic_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# -------------------------------------------------
# Local development entrypoint
# -------------------------------------------------
if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "src.weather_api.main:app",
        host=settings.host,
        port=settings.port,
        reload=False,
    )
