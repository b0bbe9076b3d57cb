"""Logging for the checker and scheduler processes.

Console output is plain text for operators; logs/checker.log and
logs/error.log carry one JSON object per line for log shipping. Candidate
check logs carry the retailer slug and candidate id so a single drop can be
followed across batches.
"""

import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from pythonjsonlogger import jsonlogger

from dropwatch.config import settings

SERVICE_NAME = "dropwatch"

# Context keys promoted to top-level JSON fields when a record carries them
CONTEXT_FIELDS = ("retailer", "candidate_id", "url")

# Libraries that log every request or job run at INFO
NOISY_LOGGERS = ("httpx", "apscheduler.executors.default", "apscheduler.scheduler")


def _context_of(record: logging.LogRecord) -> dict:
    context = {}
    for key in CONTEXT_FIELDS:
        value = getattr(record, key, None)
        if value is not None:
            context[key] = str(value)
    return context


class CheckerJsonFormatter(jsonlogger.JsonFormatter):
    """JSON formatter adding timestamp, level, service and candidate context."""

    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        log_record['timestamp'] = datetime.now(timezone.utc).isoformat().replace('+00:00', 'Z')
        log_record['level'] = record.levelname
        log_record['logger'] = record.name
        log_record['source'] = f"{record.filename}:{record.lineno}"
        log_record['service'] = SERVICE_NAME

        # UUID ids are not JSON serializable as-is
        log_record.update(_context_of(record))


class CheckerConsoleFormatter(logging.Formatter):
    """Plain-text formatter that suffixes retailer and candidate when present."""

    def format(self, record):
        line = super().format(record)
        context = _context_of(record)
        if not context:
            return line
        tags = " ".join(f"{key}={context[key]}" for key in CONTEXT_FIELDS if key in context)
        return f"{line} [{tags}]"


def setup_logging(base_dir: str | Path | None = None):
    """Configure logging for the checker process.

    Args:
        base_dir: Directory to place the logs/ folder in.
                  If omitted, uses the current working directory.
    """
    logs_dir = (Path(base_dir) if base_dir else Path.cwd()) / "logs"
    logs_dir.mkdir(exist_ok=True)

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, settings.log_level.upper()))
    root_logger.handlers.clear()

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(logging.DEBUG)
    console_handler.setFormatter(
        CheckerConsoleFormatter("%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    )
    root_logger.addHandler(console_handler)

    json_formatter = CheckerJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s")

    checker_handler = logging.FileHandler(logs_dir / "checker.log")
    checker_handler.setLevel(logging.DEBUG)
    checker_handler.setFormatter(json_formatter)
    root_logger.addHandler(checker_handler)

    error_handler = logging.FileHandler(logs_dir / "error.log")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(json_formatter)
    root_logger.addHandler(error_handler)

    for name in NOISY_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)

    return root_logger


class CandidateLoggerAdapter(logging.LoggerAdapter):
    """Adapter that stamps retailer and candidate context onto every record."""

    def process(self, msg, kwargs):
        extra = dict(self.extra)
        extra.update(kwargs.get('extra') or {})
        kwargs['extra'] = extra
        return msg, kwargs


def get_logger(name: str, **context) -> CandidateLoggerAdapter:
    """
    Get a logger bound to a candidate check.

    Args:
        name: Logger name (usually __name__)
        **context: Context fields, e.g. retailer='walmart', candidate_id=candidate.id

    Returns:
        CandidateLoggerAdapter with context
    """
    return CandidateLoggerAdapter(logging.getLogger(name), context)
