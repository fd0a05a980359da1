# Connection & File Logger
# Logs client connection events to logs/connection.log
# Also exports create_file_logger() for other log files (access.log, server.log)
# Rotation: 5MB max, backups named {name}-{yyyyMMddHHmmss}.log

import os
import logging
from datetime import datetime
from pathlib import Path
from logging.handlers import RotatingFileHandler

# Project root = 2 levels up from src/lib/
PROJECT_ROOT = Path(__file__).parent.parent.parent
LOG_DIR = PROJECT_ROOT / "logs"

MAX_BYTES = 5 * 1024 * 1024  # 5MB
BACKUP_COUNT = 10


def _make_timestamped_namer(base_name):
    """Create a namer function for rotated logs: base.log.1 → base-20260201210352.log"""
    stem = base_name.rsplit(".", 1)[0] if "." in base_name else base_name
    def namer(default_name):
        base_dir = os.path.dirname(default_name)
        stamp = datetime.now().strftime("%Y%m%d%H%M%S")
        return os.path.join(base_dir, f"{stem}-{stamp}.log")
    return namer


def _rename_rotator(source, dest):
    if os.path.exists(source):
        os.rename(source, dest)


def create_file_logger(name, filename, max_bytes=MAX_BYTES, backup_count=BACKUP_COUNT):
    """Create a named logger that writes to logs/{filename} with rotation.

    Returns the configured logger. Idempotent, safe to call multiple times.
    """
    os.makedirs(LOG_DIR, exist_ok=True)

    file_logger = logging.getLogger(name)
    if file_logger.handlers:
        return file_logger

    file_logger.setLevel(logging.INFO)
    file_logger.propagate = False

    handler = RotatingFileHandler(
        str(LOG_DIR / filename),
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding="utf-8",
    )
    handler.namer = _make_timestamped_namer(filename)
    handler.rotator = _rename_rotator

    formatter = logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    )
    handler.setFormatter(formatter)
    file_logger.addHandler(handler)

    return file_logger


def attach_file_handler(logger_name, filename):
    """Mirror an existing (propagating) logger into logs/{filename}."""
    os.makedirs(LOG_DIR, exist_ok=True)
    target = logging.getLogger(logger_name)
    handler = RotatingFileHandler(
        str(LOG_DIR / filename),
        maxBytes=MAX_BYTES,
        backupCount=BACKUP_COUNT,
        encoding="utf-8",
    )
    handler.namer = _make_timestamped_namer(filename)
    handler.rotator = _rename_rotator
    handler.setFormatter(logging.Formatter(
        "[%(asctime)s] [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%dT%H:%M:%S",
    ))
    target.addHandler(handler)
    return handler


_logger = None


def _connection_logger():
    global _logger
    if _logger is None:
        _logger = create_file_logger("connection", "connection.log")
    return _logger


def _extract_client_info(request):
    ip = request.headers.get("X-Forwarded-For", request.remote or "unknown")
    ua = request.headers.get("User-Agent", "unknown")
    return ip, ua


def log_ws_connect(request):
    ip, ua = _extract_client_info(request)
    _connection_logger().info(f"WS_CONNECT {ip} | {ua}")


def log_ws_disconnect(request):
    ip = request.headers.get("X-Forwarded-For", request.remote or "unknown")
    _connection_logger().info(f"WS_DISCONNECT {ip}")


def log_client_event(request, event):
    ip = request.headers.get("X-Forwarded-For", request.remote or "unknown")
    _connection_logger().info(f"WS_EVENT {ip} | event={event}")
