"""
Logging configuration for playlist-notes.

This module sets up the logging system with multiple outputs:
    - Console: Colored, tqdm-compatible output
    - log_full.log: Complete log of all events (DEBUG and above)
    - log_errors.log: Only ERROR and CRITICAL level messages
    - sync_failures.log: Queue items dropped as unauthorized or permanently failed

Log File Locations:
    All log files are created in <storage directory>/logs with a per-run
    timestamp in the file name.

Usage:
    from playlist_notes.core.logger import setup_logging, get_logger
    
    setup_logging(storage_dir)  # Call once at startup
    logger = get_logger(__name__)  # Get logger for each module
    
    logger.info("Sync started")
    log_sync_failure(logger, "note-deletion", "n1", "t1", "unauthorized", 403)
"""

import logging
import sys
from datetime import datetime
from pathlib import Path
from typing import TextIO

from tqdm import tqdm


# Log file name stems (created in storage_dir/logs)
LOG_FULL_FILENAME = "log_full"
LOG_ERRORS_FILENAME = "log_errors"
SYNC_FAILURES_FILENAME = "sync_failures"

# Log format for file output (detailed with timestamp)
FILE_LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
FILE_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


# ANSI color codes
class Colors:
    """ANSI color codes for terminal output."""
    RESET = "\033[0m"
    RED = "\033[31m"
    GREEN = "\033[32m"
    YELLOW = "\033[33m"
    BLUE = "\033[34m"
    CYAN = "\033[36m"
    WHITE = "\033[37m"
    BOLD = "\033[1m"


class ColoredConsoleFormatter(logging.Formatter):
    """
    Custom formatter that adds colors to console output.
    
    Colors:
        - DEBUG: Blue
        - INFO: Green
        - WARNING: Yellow
        - ERROR: Red
        - CRITICAL: Bold Red
    """
    
    LEVEL_COLORS = {
        logging.DEBUG: Colors.BLUE,
        logging.INFO: Colors.GREEN,
        logging.WARNING: Colors.YELLOW,
        logging.ERROR: Colors.RED,
        logging.CRITICAL: Colors.BOLD + Colors.RED,
    }
    
    def format(self, record: logging.LogRecord) -> str:
        color = self.LEVEL_COLORS.get(record.levelno, Colors.WHITE)
        colored_levelname = f"{color}{record.levelname}{Colors.RESET}"
        return f"{colored_levelname}: {record.getMessage()}"


class TqdmLoggingHandler(logging.Handler):
    """
    Logging handler that writes to console without breaking tqdm progress bars.
    
    Uses tqdm.write(), which prints above any active progress bar instead
    of tearing it.
    """
    
    def __init__(self, stream: TextIO = sys.stderr) -> None:
        super().__init__()
        self.stream = stream
    
    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
            tqdm.write(msg, file=self.stream)
        except Exception:
            self.handleError(record)


class SyncFailureHandler(logging.Handler):
    """
    Handler that captures dropped queue items for the sync failure report.
    
    Only records carrying the 'sync_failed_queue' extra field are written,
    in a simple human-readable format:
    
        [note-deletion] note=n1 track=t1
        unauthorized (HTTP 403)
    
    The handler looks for these extra fields in log records:
        - 'sync_failed_queue': Queue name ("note-deletion" or "tag-sync")
        - 'sync_failed_item': Note id or track id the item refers to
        - 'sync_failed_track': Track id (optional)
        - 'sync_failed_reason': Short classification
        - 'sync_failed_status': HTTP status code (optional)
    
    Attributes:
        report_path: Path to the sync_failures log file.
        report_file: Open file handle (opened by open()).
    """
    
    def __init__(self, report_path: Path) -> None:
        super().__init__()
        self.report_path = report_path
        self.report_file: TextIO | None = None
    
    def open(self) -> None:
        """Open the report file for writing (overwrites existing content)."""
        self.report_file = open(self.report_path, "w", encoding="utf-8")
    
    def emit(self, record: logging.LogRecord) -> None:
        if not hasattr(record, "sync_failed_queue"):
            return
        
        if self.report_file is None:
            return
        
        try:
            queue = getattr(record, "sync_failed_queue", "unknown")
            item = getattr(record, "sync_failed_item", "")
            track = getattr(record, "sync_failed_track", None)
            reason = getattr(record, "sync_failed_reason", "")
            status = getattr(record, "sync_failed_status", None)
            
            header = f"[{queue}] item={item}"
            if track:
                header += f" track={track}"
            line = reason if status is None else f"{reason} (HTTP {status})"
            
            self.report_file.write(f"{header}\n{line}\n\n")
            self.report_file.flush()
        except Exception:
            self.handleError(record)
    
    def close(self) -> None:
        """Close the report file handle. Safe to call multiple times."""
        if self.report_file is not None:
            try:
                self.report_file.close()
            except OSError:
                pass
            self.report_file = None
        super().close()


class ErrorOnlyFilter(logging.Filter):
    """Filter that only allows ERROR and CRITICAL level records."""
    
    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno >= logging.ERROR


def setup_logging(storage_dir: Path, verbose: bool = False) -> None:
    """
    Configure the logging system for the application.
    
    This function should be called ONCE at application startup, after
    the configuration is loaded but before any other operations.
    
    Args:
        storage_dir: Directory where log files will be created.
                     Logs are stored in a 'logs' subdirectory.
        verbose: Show DEBUG messages on the console.
    
    Behavior:
        1. Create storage_dir/logs if it doesn't exist
        2. Configure root logger level to DEBUG, dropping old handlers
        3. Console handler (tqdm-compatible, colored), INFO or DEBUG
        4. Full log file handler, DEBUG
        5. Error log file handler, ERROR+ via ErrorOnlyFilter
        6. Sync failure report handler
    
    Thread Safety:
        NOT thread-safe. Call it once from the main thread before
        any timers are started.
    """
    logs_dir = storage_dir / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    
    timestamp = datetime.now().strftime("%Y-%m-%d_%H-%M-%S")
    
    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    root_logger.handlers.clear()
    
    console_handler = TqdmLoggingHandler()
    console_handler.setLevel(logging.DEBUG if verbose else logging.INFO)
    console_handler.setFormatter(ColoredConsoleFormatter())
    root_logger.addHandler(console_handler)
    
    full_handler = logging.FileHandler(
        logs_dir / f"{LOG_FULL_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    full_handler.setLevel(logging.DEBUG)
    full_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    root_logger.addHandler(full_handler)
    
    error_handler = logging.FileHandler(
        logs_dir / f"{LOG_ERRORS_FILENAME}_{timestamp}.log", mode="w", encoding="utf-8"
    )
    error_handler.setLevel(logging.DEBUG)  # Filter handles the level restriction
    error_handler.setFormatter(logging.Formatter(FILE_LOG_FORMAT, FILE_DATE_FORMAT))
    error_handler.addFilter(ErrorOnlyFilter())
    root_logger.addHandler(error_handler)
    
    failures_handler = SyncFailureHandler(logs_dir / f"{SYNC_FAILURES_FILENAME}_{timestamp}.log")
    failures_handler.open()
    root_logger.addHandler(failures_handler)
    
    # urllib3 is chatty at DEBUG
    logging.getLogger("urllib3").setLevel(logging.WARNING)


def get_logger(name: str) -> logging.Logger:
    """
    Get a logger instance for a module.
    
    Args:
        name: The logger name, typically __name__ of the calling module.
    
    Returns:
        logging.Logger: A logger instance configured by setup_logging().
    
    Note:
        Loggers obtained before setup_logging() is called propagate to an
        unconfigured root logger. Tests rely on this with pytest's caplog.
    """
    return logging.getLogger(name)


def log_sync_failure(
    logger: logging.Logger,
    queue: str,
    item_id: str,
    track_id: str | None,
    reason: str,
    status_code: int | None = None
) -> None:
    """
    Log a queue item that was dropped without being synced.
    
    Logs a WARNING and attaches the extra fields SyncFailureHandler uses
    to write the sync failure report.
    
    Args:
        logger: The logger to use for the message.
        queue: Queue name, e.g. "note-deletion" or "tag-sync".
        item_id: Note id or track id.
        track_id: Track id for context (may equal item_id).
        reason: Short classification ("unauthorized", "rejected", "evicted").
        status_code: HTTP status, when the remote answered.
    
    Example:
        log_sync_failure(logger, "note-deletion", "n1", "t1", "unauthorized", 403)
    """
    suffix = f" (HTTP {status_code})" if status_code is not None else ""
    logger.warning(
        f"Dropped {queue} item {item_id}: {reason}{suffix}",
        extra={
            "sync_failed_queue": queue,
            "sync_failed_item": item_id,
            "sync_failed_track": track_id,
            "sync_failed_reason": reason,
            "sync_failed_status": status_code,
        }
    )


def shutdown_logging() -> None:
    """
    Flush and close all handlers on the root logger.
    
    Called in the CLI's finally block. After this, logging no longer
    writes to the run's files.
    """
    root_logger = logging.getLogger()
    
    for handler in root_logger.handlers[:]:
        try:
            handler.flush()
            handler.close()
        except (OSError, ValueError):
            pass
        root_logger.removeHandler(handler)
