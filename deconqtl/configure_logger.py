import logging
from enum import Enum
from typing import Literal


class LogLevel(Enum):
    """Logging levels accepted on the command line and in `configure_logger`."""

    DEBUG = logging.DEBUG
    INFO = logging.INFO
    WARNING = logging.WARNING
    ERROR = logging.ERROR
    CRITICAL = logging.CRITICAL

    @classmethod
    def from_string(cls, level_str: str) -> int:
        """
        Convert a string such as "info" or "DEBUG" to the matching logging level.

        :param level_str: Name of the level, case insensitive.
        :return: The integer logging level.
        :raises ValueError: If the string is not a valid level name.

        """
        try:
            return cls[level_str.upper()].value
        except KeyError:
            raise ValueError(
                f"Invalid log level: {level_str}. "
                f"Choose from {', '.join(cls.__members__)}."
            )

    @classmethod
    def to_string(cls, level: int) -> str:
        for member in cls:
            if member.value == level:
                return member.name
        raise ValueError(f"Invalid log level: {level}")


def configure_logger(
    name: str,
    level: int = logging.INFO,
    handler_type: Literal["console", "file"] = "console",
    log_file: str | None = None,
) -> logging.Logger:
    """
    Configure a named logger with a single console or file handler.

    Calling this more than once for the same logger replaces the handler rather than
    adding a second one, so messages are not duplicated.

    :param name: Name of the logger, e.g. "main".
    :param level: Logging level, e.g. `logging.INFO`.
    :param handler_type: Either "console" or "file".
    :param log_file: Path of the log file. Required when `handler_type` is "file".
    :return: The configured logger.
    :raises ValueError: If `handler_type` is unknown, or "file" is requested
        without a `log_file`.

    """
    if level not in [member.value for member in LogLevel]:
        raise ValueError(f"Invalid log level: {level}")

    logger = logging.getLogger(name)
    logger.setLevel(level)

    formatter = logging.Formatter(
        "%(asctime)s - %(name)s - %(levelname)s - %(filename)s:%(lineno)d "
        "- %(message)s"
    )

    if handler_type == "console":
        handler: logging.Handler = logging.StreamHandler()
    elif handler_type == "file":
        if not log_file:
            raise ValueError("log_file must be provided when handler_type is 'file'")
        handler = logging.FileHandler(log_file)
    else:
        raise ValueError(f"Invalid handler_type: {handler_type}")

    handler.setLevel(level)
    handler.setFormatter(formatter)

    for existing in list(logger.handlers):
        logger.removeHandler(existing)
        existing.close()
    logger.addHandler(handler)

    return logger
