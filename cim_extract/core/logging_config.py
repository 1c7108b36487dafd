"""
Logging setup for cim-extract.

Two rotating files plus stderr:

    logs/cim_extract/system.log    - everything at the configured level
    logs/cim_extract/attempts.log  - one line per provider attempt and request

The attempts log is what an operator greps when a provider starts failing:

    grep "| failed |" logs/cim_extract/attempts.log

Call setup_logging() once per process (API lifespan, CLI main); modules
just use logging.getLogger(__name__).
"""

import logging
import os
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Optional

LOG_DIR = Path(os.getenv("CIM_EXTRACT_LOG_DIR", "logs/cim_extract"))
SYSTEM_LOG_FILE = LOG_DIR / "system.log"
ATTEMPT_LOG_FILE = LOG_DIR / "attempts.log"

ROTATE_BYTES = 10 * 1024 * 1024
ROTATE_BACKUPS = 5

# Records from these loggers also land in attempts.log
ATTEMPT_LOGGER = "cim_extract.attempts"

FILE_FORMAT = "%(asctime)s | %(levelname)-5s | %(name)-36s | %(message)s"
STDERR_FORMAT = "%(asctime)s %(levelname)-5s %(name)s: %(message)s"

QUIET_LIBRARIES = ("httpx", "httpcore", "botocore", "boto3", "urllib3", "PIL", "fitz")

_configured = False


def _rotating(path: Path, level: int) -> RotatingFileHandler:
    handler = RotatingFileHandler(path, maxBytes=ROTATE_BYTES, backupCount=ROTATE_BACKUPS, encoding="utf-8")
    handler.setLevel(level)
    handler.setFormatter(logging.Formatter(FILE_FORMAT))
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_to_console: bool = True,
    log_to_file: bool = True,
    service_name: str = "cim_extract",
) -> None:
    """
    Install handlers on the root logger. Later calls are no-ops.

    Args:
        level: DEBUG, INFO, WARNING or ERROR; falls back to LOG_LEVEL, then INFO
        log_to_console: Mirror records to stderr (stdout stays free for CLI JSON)
        log_to_file: Write system.log and attempts.log under LOG_DIR
        service_name: Logger used for the startup banner
    """
    global _configured
    if _configured:
        return

    level_name = (level or os.getenv("LOG_LEVEL") or "INFO").upper()
    log_level = getattr(logging, level_name, logging.INFO)

    root = logging.getLogger()
    root.setLevel(log_level)
    for handler in list(root.handlers):
        root.removeHandler(handler)

    if log_to_file:
        LOG_DIR.mkdir(parents=True, exist_ok=True)
        root.addHandler(_rotating(SYSTEM_LOG_FILE, log_level))
        logging.getLogger(ATTEMPT_LOGGER).addHandler(_rotating(ATTEMPT_LOG_FILE, logging.INFO))

    if log_to_console:
        stderr = logging.StreamHandler(sys.stderr)
        stderr.setLevel(log_level)
        stderr.setFormatter(logging.Formatter(STDERR_FORMAT))
        root.addHandler(stderr)

    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(logging.WARNING)

    _configured = True

    banner = logging.getLogger(service_name)
    banner.info(f"[Logging] {service_name} started at level {level_name}")
    if log_to_file:
        banner.info(f"[Logging] writing {SYSTEM_LOG_FILE.absolute()} and {ATTEMPT_LOG_FILE.name}")


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


def _attempt_logger(logger: logging.Logger) -> logging.Logger:
    # Child of the attempts logger so records reach attempts.log and still propagate to root
    return logging.getLogger(f"{ATTEMPT_LOGGER}.{logger.name}")


def log_request_start(logger: logging.Logger, request_id: str, file_name: str, image_count: int, has_file: bool):
    _attempt_logger(logger).info(
        f"[{request_id}] request | {file_name} | images={image_count} | fileData={'yes' if has_file else 'no'}"
    )


def log_request_end(logger: logging.Logger, request_id: str, success: bool, elapsed_ms: float):
    outcome = "ok" if success else "all attempts failed"
    _attempt_logger(logger).info(f"[{request_id}] done | {outcome} | {elapsed_ms:.0f}ms")


def log_attempt(
    logger: logging.Logger,
    request_id: str,
    stage: str,
    method: str,
    success: bool,
    confidence: Optional[float] = None,
    elapsed_ms: Optional[float] = None,
    error: Optional[str] = None,
):
    """One line per attempt: stage, method/provider, outcome, timing."""
    timing = f"{elapsed_ms:.0f}ms" if elapsed_ms is not None else "-"
    target = _attempt_logger(logger)
    if success:
        target.info(f"[{request_id}] {stage} | {method} | ok confidence={confidence:g} | {timing}")
    else:
        target.warning(f"[{request_id}] {stage} | {method} | failed | {error} | {timing}")
