# logging_utils.py
import logging
import sys
import threading
from collections.abc import Callable
from datetime import timedelta
from pathlib import Path
from typing import Any

from loguru import logger

# NOTE: loguru internal helper; stdlib file birth time is not portable and
# age-based rotation needs a creation time on every platform.
from loguru._ctime_functions import get_ctime

LOG_ROTATION_SIZE_BYTES = 5 * 1024 * 1024
LOG_ROTATION_MAX_AGE = timedelta(days=7)
LOG_RETENTION_MAX_FILES = 10
DEFAULT_LOG_FILENAME = "server-list-reporter.log"
RotationRule = str | int | float | timedelta | Callable[[Any, Any], bool]
RetentionRule = str | int | float | timedelta | Callable[[list[Any]], Any]


class _RotationClock:
    """Creation time of the active log file, cached across rotation checks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._started: float | None = None

    def get(self) -> float | None:
        with self._lock:
            return self._started

    def set(self, value: float | None) -> None:
        with self._lock:
            self._started = value

    def get_or_set(self, factory: Callable[[], float]) -> float:
        with self._lock:
            if self._started is None:
                self._started = factory()
            return self._started


_rotation_clock = _RotationClock()


class InterceptHandler(logging.Handler):
    """Route stdlib logging records (used by the library modules) into loguru."""

    def emit(self, record: logging.LogRecord) -> None:
        try:
            level = logger.level(record.levelname).name
        except (ValueError, TypeError):
            level = record.levelno

        frame = logging.currentframe()
        depth = 2
        while frame and frame.f_code.co_filename == logging.__file__:
            frame = frame.f_back  # type: ignore[assignment]
            depth += 1

        logger.opt(depth=depth, exception=record.exc_info).log(
            level, f"[{record.name}] {record.getMessage()}"
        )


def _log_path(file: Any) -> Path:
    if isinstance(file, Path):
        return file
    return Path(getattr(file, "name", file))


def _rotation_start(path: Path, record_ts: float) -> float:
    def _creation_time() -> float:
        try:
            return get_ctime(str(path)) or record_ts
        except (OSError, ValueError) as exc:
            logger.debug(f"get_ctime failed for {path}: {exc}")
            return record_ts

    return _rotation_clock.get_or_set(_creation_time)


def _default_rotation_condition(message: Any, file: Any) -> bool:
    """Rotate once the file is too big or too old."""
    record_ts = message.record["time"].timestamp()

    try:
        path = _log_path(file)
        size = path.stat().st_size
    except (OSError, TypeError, ValueError) as exc:
        logger.debug(f"Rotation check skipped; stat failed: {exc}")
        return False

    too_big = size >= LOG_ROTATION_SIZE_BYTES
    too_old = record_ts - _rotation_start(path, record_ts) >= LOG_ROTATION_MAX_AGE.total_seconds()
    if too_big or too_old:
        _rotation_clock.set(record_ts)
        return True
    return False


def _default_retention_policy(logs: list[Any]) -> None:
    """Delete all but the newest LOG_RETENTION_MAX_FILES rotated logs."""
    dated: list[tuple[float, Path]] = []
    for item in logs:
        try:
            path = Path(item)
            dated.append((path.stat().st_mtime, path))
        except (OSError, TypeError, ValueError):
            continue

    dated.sort(key=lambda entry: entry[0], reverse=True)
    for _, path in dated[LOG_RETENTION_MAX_FILES:]:
        try:
            path.unlink()
        except OSError as exc:
            logger.debug(f"Retention skip for {path}: {exc}")


def configure_logging(
    log_dir: Path | None,
    console_level: str = "INFO",
    console_json: bool = False,
    rotation: RotationRule | None = None,
    retention: RetentionRule | None = None,
) -> None:
    """
    Set up console logging and an optional rotated JSON file sink.

    Args:
        log_dir: Directory for `server-list-reporter.log`; no file sink when None.
        console_level: Console level string (e.g., INFO/DEBUG).
        console_json: Emit console records as JSON instead of colored text.
        rotation: loguru rotation rule; defaults to 5 MB or 7 days.
        retention: loguru retention rule; defaults to the newest 10 files.
    """
    _rotation_clock.set(None)
    logger.remove()

    console_kwargs: dict[str, Any] = {
        "level": console_level.upper(),
        "serialize": console_json,
        "enqueue": True,
        "backtrace": False,
        "diagnose": False,
    }
    if not console_json:
        console_kwargs["format"] = (
            "<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | {message}"
        )
    logger.add(sys.stderr, **console_kwargs)

    if log_dir is not None:
        log_dir_path = Path(log_dir)
        try:
            log_dir_path.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error(f"Failed to create log directory {log_dir_path}: {exc}")
        else:
            log_file = log_dir_path / DEFAULT_LOG_FILENAME
            logger.add(
                log_file,
                level="DEBUG",
                serialize=True,
                rotation=rotation if rotation is not None else _default_rotation_condition,
                retention=retention if retention is not None else _default_retention_policy,
                enqueue=True,
                backtrace=False,
                diagnose=False,
            )
            logger.info(f"File logging enabled at {log_file}")

    logging.basicConfig(handlers=[InterceptHandler()], level=logging.NOTSET, force=True)
    logging.captureWarnings(True)


def configure_logging_from_config(config) -> None:
    """Apply the [logging] section of a ReporterConfig."""
    configure_logging(
        log_dir=Path(config.log_dir) if config.log_dir else None,
        console_level=config.log_level_console,
        console_json=config.log_json_console,
        rotation=config.log_rotation,
        retention=config.log_retention,
    )


def get_rotation_start() -> float | None:
    """Cached creation time of the active log file (for tests/diagnostics)."""
    return _rotation_clock.get()


def reset_rotation_state() -> None:
    _rotation_clock.set(None)
