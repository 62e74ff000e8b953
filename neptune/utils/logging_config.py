"""
Logging setup for Neptune.

Console output is colored for interactive runs or JSON lines when
LOG_FORMAT=json; a daily rotating file under LOG_DIR keeps a week of history.
"""

import json
import logging
import logging.handlers
import sys
import time
from datetime import datetime, timezone
from pathlib import Path
from typing import IO, Optional

LOG_FILE_NAME = "neptune.log"
FILE_FORMAT = '%(asctime)s | %(levelname)-8s | %(name)-20s | %(message)s'


class JsonFormatter(logging.Formatter):
    """One JSON object per record; aggregation metrics ride along under 'metrics'."""

    def format(self, record):
        entry = {
            'timestamp': datetime.now(timezone.utc).isoformat(),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        metrics = getattr(record, 'metrics', None)
        if metrics:
            entry['metrics'] = metrics
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, ensure_ascii=False)


class ConsoleFormatter(logging.Formatter):
    """[HH:MM:SS] LEVEL [logger] message, colored by level."""

    COLORS = {
        'DEBUG': '\033[36m',
        'INFO': '\033[32m',
        'WARNING': '\033[33m',
        'ERROR': '\033[31m',
        'CRITICAL': '\033[35m',
    }
    RESET = '\033[0m'

    def __init__(self, use_color: bool = True):
        super().__init__()
        self.use_color = use_color

    def format(self, record):
        line = (
            f"[{self.formatTime(record, '%H:%M:%S')}] {record.levelname:8} "
            f"[{record.name:20}] {record.getMessage()}"
        )
        if self.use_color:
            line = f"{self.COLORS.get(record.levelname, '')}{line}{self.RESET}"
        if record.exc_info:
            line += f"\n{self.formatException(record.exc_info)}"
        return line


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[str] = None,
    json_logs: bool = False,
    stream: Optional[IO[str]] = None
) -> None:
    """
    Configure the root logger.

    Args:
        log_level: Console level; the log file always records DEBUG
        log_dir: Directory for neptune.log, no file logging when None
        json_logs: JSON lines on the console instead of colored text
        stream: Console stream; MCP and --search modes pass stderr so stdout
            carries only protocol messages or results
    """
    level = getattr(logging, log_level.upper(), logging.INFO)
    console_stream = stream or sys.stdout

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG if log_dir else level)
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(console_stream)
    console_handler.setLevel(level)
    if json_logs:
        console_handler.setFormatter(JsonFormatter())
    else:
        console_handler.setFormatter(ConsoleFormatter(use_color=console_stream.isatty()))
    root_logger.addHandler(console_handler)

    if log_dir:
        log_path = Path(log_dir)
        log_path.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.TimedRotatingFileHandler(
            log_path / LOG_FILE_NAME,
            when='midnight',
            backupCount=7,
            encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JsonFormatter() if json_logs else logging.Formatter(FILE_FORMAT))
        root_logger.addHandler(file_handler)

    # Per-request access lines and malformed-date chatter stay out of the logs
    logging.getLogger('aiohttp.access').setLevel(logging.WARNING)
    logging.getLogger('neptune.utils.date_parsing').setLevel(logging.INFO)


class PerformanceTracker:
    """Logs how long a block took, or that it failed."""

    def __init__(self, operation_name: str, logger: Optional[logging.Logger] = None):
        self.operation_name = operation_name
        self.logger = logger or logging.getLogger(__name__)
        self.duration_ms = 0.0
        self._started = 0.0

    def __enter__(self):
        self._started = time.perf_counter()
        self.logger.debug(f"⏱️ Starting: {self.operation_name}")
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.duration_ms = (time.perf_counter() - self._started) * 1000
        if exc_type:
            self.logger.error(f"💥 Failed: {self.operation_name} ({self.duration_ms:.1f}ms) - {exc_val}")
        else:
            self.logger.info(f"✅ Completed: {self.operation_name} ({self.duration_ms:.1f}ms)")


def log_aggregation_metrics(logger: logging.Logger, report) -> None:
    """One summary line per aggregation run, with the full report attached for JSON logs."""
    logger.info(
        f"📊 aggregation: {report.feeds_with_items}/{report.feeds_total} feeds, "
        f"{report.items_total} → {report.unique_items} items ({report.duration_ms:.1f}ms)",
        extra={'metrics': report.to_dict()},
    )
