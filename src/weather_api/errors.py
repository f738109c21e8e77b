# src/weather_api/errors.py
"""
Domain errors raised by the query helpers and mapped to HTTP statuses in
`main.py`:

- NotFoundError            -> 404
- ConflictError            -> 409
- ConcurrencyConflictError -> 409
"""


class WeatherApiError(Exception):
    """Base class for expected, client-facing failures."""

    status_code = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class NotFoundError(WeatherApiError):
    status_code = 404


class ConflictError(WeatherApiError):
    status_code = 409


class ConcurrencyConflictError(ConflictError):
    """A write collided with a concurrent change to a row that still exists."""
