"""
Centralized logging setup for PeerLink.
"""
import json
import logging
import datetime
import os
import sys
import tempfile
from typing import Any, Optional


def _resolve_log_dir() -> Optional[str]:
    """Determine a writable log directory, or None when nothing is writable."""
    candidates = []

    env_dir = os.environ.get("PEERLINK_LOG_DIR")
    if env_dir:
        candidates.append(env_dir)

    # Fallback to system temporary directory
    candidates.append(os.path.join(tempfile.gettempdir(), "peerlink-logs"))

    for directory in candidates:
        try:
            os.makedirs(directory, exist_ok=True)
        except OSError:
            continue
        if os.access(directory, os.W_OK):
            return directory

    return None


def setup_logging(level: str = "INFO", log_file: Optional[str] = "peerlink_relay.log") -> logging.Logger:
    """Setup logging configuration with console and optional file output."""
    handlers = [logging.StreamHandler()]  # Always include console output
    log_path = None

    log_dir = _resolve_log_dir() if log_file else None
    if log_dir:
        log_path = os.path.join(log_dir, log_file)
        try:
            handlers.append(logging.FileHandler(log_path, mode='a', encoding='utf-8'))
        except OSError as e:
            print(f"WARNING: Cannot write to log file {log_path}: {e}", file=sys.stderr)
            log_path = None

    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format='%(asctime)s [%(levelname)s] %(message)s',
        datefmt='%H:%M:%S',
        handlers=handlers
    )

    logger = logging.getLogger("peerlink")
    logger.info(f"Logging initialized - output will be written to: {log_path or 'console only'}")

    return logger


def debug_log(message: str, data: Optional[Any] = None, level: str = "INFO",
              logger: Optional[logging.Logger] = None) -> None:
    """
    Log a message with an optional structured payload.

    Dict payloads are rendered as indented JSON under the message; anything
    else is appended after a dash. Nothing is formatted when the level is
    disabled.

    Args:
        message: The log message
        data: Optional payload
        level: Level name (DEBUG, INFO, WARNING, ERROR)
        logger: Target logger; defaults to the package logger
    """
    log_level = getattr(logging, level.upper())
    target = logger or logging.getLogger("peerlink")
    if not target.isEnabledFor(log_level):
        return

    stamp = datetime.datetime.now().strftime("%H:%M:%S.%f")[:-3]
    if not data:
        target.log(log_level, f"[{stamp}] {message}")
    elif isinstance(data, dict):
        target.log(log_level, f"[{stamp}] {message}\nData: {json.dumps(data, indent=2, default=str)}")
    else:
        target.log(log_level, f"[{stamp}] {message} - {data}")


class LoggerMixin:
    """Gives a class ``log_*`` helpers bound to a logger named after it.

    Loggers live under ``peerlink.<module>.<Class>``, below the package
    logger that ``setup_logging`` configures.
    """

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.logger = logging.getLogger(f"{self.__class__.__module__}.{self.__class__.__name__}")

    def log_debug(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "DEBUG", self.logger)

    def log_info(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "INFO", self.logger)

    def log_warning(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "WARNING", self.logger)

    def log_error(self, message: str, data: Optional[Any] = None):
        debug_log(message, data, "ERROR", self.logger)
