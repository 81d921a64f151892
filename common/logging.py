from __future__ import annotations
import logging, os
from logging.handlers import RotatingFileHandler
from typing import Dict, Optional

_LEVELS = {
    "CRITICAL": logging.CRITICAL,
    "ERROR": logging.ERROR,
    "WARNING": logging.WARNING,
    "INFO": logging.INFO,
    "DEBUG": logging.DEBUG,
}

_FORMAT = logging.Formatter(
    fmt="%(asctime)s %(levelname)s %(name)s - %(message)s",
    datefmt="%Y-%m-%dT%H:%M:%S%z",
)

# every logger handed out by get_logger, so configure_logging can re-target them
_LOGGERS: Dict[str, logging.Logger] = {}

def _parse_level(level: Optional[str]) -> int:
    if level:
        return _LEVELS.get(level.upper(), logging.INFO)
    return _LEVELS.get(os.getenv("LOG_LEVEL", "INFO").upper(), logging.INFO)

def _file_handler(name: str, log_dir: str, log_level: int) -> RotatingFileHandler:
    os.makedirs(log_dir, exist_ok=True)
    fh = RotatingFileHandler(
        filename=os.path.join(log_dir, f"{name}.log"),
        maxBytes=5_000_000,
        backupCount=5,
        encoding="utf-8",
    )
    fh.setFormatter(_FORMAT)
    fh.setLevel(log_level)
    return fh

def get_logger(name: str, log_dir: Optional[str] = None, level: Optional[str] = None) -> logging.Logger:
    """
    Logger for one screening component, writing to:
      - stdout (console)
      - <log_dir>/<name>.log (rotating: 5MB x 5 files)
    log_dir falls back to $LOG_DIR, then "logs"; level to $LOG_LEVEL, then INFO.
    Idempotent: calling twice returns the same configured logger.
    """
    logger = logging.getLogger(name)
    if logger.handlers:  # already configured
        return logger

    log_dir = log_dir or os.getenv("LOG_DIR", "logs")
    log_level = _parse_level(level)

    ch = logging.StreamHandler()
    ch.setFormatter(_FORMAT)
    ch.setLevel(log_level)

    logger.addHandler(_file_handler(name, log_dir, log_level))
    logger.addHandler(ch)
    logger.setLevel(log_level)
    logger.propagate = False
    _LOGGERS[name] = logger
    return logger

def configure_logging(log_dir: Optional[str] = None, level: Optional[str] = None):
    """
    Apply runtime.log_dir / runtime.log_level from config.

    Module loggers exist before config is read, so each one gets its file
    handler moved to log_dir and its level reset. Loggers created later pick
    the values up through LOG_DIR / LOG_LEVEL.
    """
    if log_dir:
        os.environ["LOG_DIR"] = str(log_dir)
    if level:
        os.environ["LOG_LEVEL"] = level.upper()
    log_level = _parse_level(level)

    for name, logger in _LOGGERS.items():
        for h in list(logger.handlers):
            if log_dir and isinstance(h, RotatingFileHandler):
                logger.removeHandler(h)
                h.close()
            elif level:
                h.setLevel(log_level)
        if log_dir:
            logger.addHandler(_file_handler(name, str(log_dir), log_level if level else logger.level))
        if level:
            logger.setLevel(log_level)
