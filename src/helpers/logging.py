"""Logger module."""

import logging
import sys

import colorlog

loggers: dict[str, logging.Logger] = {}

LOG_LEVELS = {
    "DEBUG": logging.DEBUG,
    "INFO": logging.INFO,
    "WARNING": logging.WARNING,
    "ERROR": logging.ERROR,
    "CRITICAL": logging.CRITICAL,
}

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"

_defaults: dict[str, str | bool] = {"log_level": "INFO", "log_color": False}


def configure_logging(log_level: str = "INFO", *, log_color: bool = False) -> None:
    """Set the level and colour used by loggers created afterwards.

    Already created loggers are re-levelled so that settings loaded at startup
    apply to module-level loggers too.

    Args:
        log_level: The logging level ('DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL').
        log_color: Whether new loggers use coloured output.

    Raises:
        ValueError: If an invalid log level is provided.
    """
    level_name = log_level.upper()
    if level_name not in LOG_LEVELS:
        err_msg = f"Invalid log level: {log_level}"
        raise ValueError(err_msg)

    _defaults["log_level"] = level_name
    _defaults["log_color"] = log_color

    for logger in loggers.values():
        logger.setLevel(LOG_LEVELS[level_name])
        for handler in logger.handlers:
            handler.setLevel(LOG_LEVELS[level_name])


def get_logger(
    name: str,
    log_handler: str = "stdout",
    log_level: str | None = None,
    log_color: bool | None = None,
) -> logging.Logger:
    """Get logger.

    Args:
        name: The name of the logger.
        log_handler: The log handler type ('stdout' or 'stderr').
        log_level: The logging level, defaults to the configured level.
        log_color: Whether to use colored output, defaults to the configured value.

    Returns:
        logging.Logger: Configured logger instance.

    Raises:
        ValueError: If invalid handler or log level is provided.
    """
    if name in loggers:
        return loggers[name]

    level_name = str(log_level or _defaults["log_level"]).upper()
    color = bool(_defaults["log_color"]) if log_color is None else log_color

    streams = {"stdout": sys.stdout, "stderr": sys.stderr}
    if log_handler not in streams:
        err_msg = f"Invalid handler: {log_handler}"
        raise ValueError(err_msg)

    if level_name not in LOG_LEVELS:
        err_msg = f"Invalid log level: {level_name}"
        raise ValueError(err_msg)

    if color:
        logger = colorlog.getLogger(name)
        handler: logging.Handler = colorlog.StreamHandler(streams[log_handler])
        formatter: logging.Formatter = colorlog.ColoredFormatter(
            f"%(log_color)s {LOG_FORMAT}",
            log_colors={
                "DEBUG": "cyan",
                "INFO": "green",
                "WARNING": "yellow",
                "ERROR": "red",
                "CRITICAL": "red,bg_white",
            },
        )
    else:
        logger = logging.getLogger(name)
        handler = logging.StreamHandler(streams[log_handler])
        formatter = logging.Formatter(LOG_FORMAT)

    level = LOG_LEVELS[level_name]
    logger.setLevel(level)
    handler.setLevel(level)
    handler.setFormatter(formatter)
    logger.addHandler(handler)

    loggers[name] = logger
    return logger
