"""Logging configuration for sinfpatch."""

import logging
import sys
from pathlib import Path

_PACKAGE_LOGGER = "sinfpatch"


def setup_logger(
    name: str = _PACKAGE_LOGGER,
    level: str | None = None,
    log_file: Path | None = None,
) -> logging.Logger:
    """Configure and return a logger instance.

    Module loggers (``sinfpatch.*``) carry no handlers of their own and
    propagate to the package logger, so one call from the CLI sets the
    level and destinations for the whole package. Console output goes to
    stderr (stdout carries command output) and follows the current
    ``sys.stderr`` on every call.

    Args:
        name: Logger name.
        level: Log level string (DEBUG, INFO, WARNING, ERROR). ``None`` keeps
            the current level (INFO on first configuration).
        log_file: Optional file path for log output.

    Returns:
        Configured logger.
    """
    logger = logging.getLogger(name)
    if name.startswith(f"{_PACKAGE_LOGGER}."):
        return logger

    if level is not None:
        logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    fmt = logging.Formatter(
        "[%(asctime)s] %(levelname)-8s %(name)s | %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )

    if not logger.handlers:
        if level is None:
            logger.setLevel(logging.INFO)
        logger.propagate = False
        console = logging.StreamHandler(sys.stderr)
        console.setFormatter(fmt)
        logger.addHandler(console)
    else:
        for handler in logger.handlers:
            if type(handler) is logging.StreamHandler:
                handler.setStream(sys.stderr)

    if log_file is not None:
        log_file = Path(log_file)
        if not any(
            isinstance(h, logging.FileHandler) and Path(h.baseFilename) == log_file.resolve()
            for h in logger.handlers
        ):
            log_file.parent.mkdir(parents=True, exist_ok=True)
            fh = logging.FileHandler(log_file, encoding="utf-8")
            fh.setFormatter(fmt)
            logger.addHandler(fh)

    return logger
