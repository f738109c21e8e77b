import logging

from src.weather_api.logging_config import JsonFormatter, configure_logging


def test_json_formatter_formats_message_as_json() -> None:
    # Arrange
    fmt = JsonFormatter()
    record = logging.LogRecord(
        name="x",
        level=logging.INFO,
        pathname=__file__,
        lineno=1,
        msg="hello %s",
        args=("world",),
        exc_info=None,
    )

    # Act
    out = fmt.format(record)

    # Assert
    assert '"message": "hello world"' in out
    assert '"level": "INFO"' in out


def test_configure_logging_json_installs_json_handler() -> None:
    # Arrange
    root = logging.getLogger()
    saved = root.handlers[:], root.level

    try:
        # Act
        configure_logging("WARNING", "json")

        # Assert
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JsonFormatter)
    finally:
        root.handlers[:] = saved[0]
        root.setLevel(saved[1])
