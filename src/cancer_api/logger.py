"""
Logging setup for the prediction service.

Records are written to stdout, either as one JSON object per line or as
plain text. Request, model and record ids passed through ``extra=`` become
top-level JSON keys.
"""

import json
import logging
import sys
from datetime import datetime, timezone

SERVICE_NAME = 'cancer-api'
TEXT_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
TEXT_DATEFMT = '%Y-%m-%d %H:%M:%S'

_CONTEXT_FIELDS = ('request_id', 'model_url', 'record_id')


class StructuredFormatter(logging.Formatter):
    """JSON lines keyed by the record's own creation time."""

    def format(self, record: logging.LogRecord) -> str:
        created = datetime.fromtimestamp(record.created, timezone.utc)
        entry = {
            'timestamp': created.isoformat(timespec='milliseconds').replace('+00:00', 'Z'),
            'service': SERVICE_NAME,
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
        }
        entry.update(
            (field, getattr(record, field))
            for field in _CONTEXT_FIELDS
            if hasattr(record, field)
        )
        if record.exc_info:
            entry['exception'] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def build_formatter(fmt: str) -> logging.Formatter:
    """'json' gives StructuredFormatter, anything else the plain text format."""
    if fmt == 'json':
        return StructuredFormatter()
    return logging.Formatter(TEXT_FORMAT, datefmt=TEXT_DATEFMT)


def setup_logging(level: str = 'INFO', fmt: str = 'json') -> None:
    """
    Replace the root handlers with a single stdout handler.

    Args:
        level: Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
        fmt: 'json' for structured logs, 'text' for the plain format
    """
    log_level = getattr(logging, level.upper(), logging.INFO)

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(build_formatter(fmt))
    logging.basicConfig(level=log_level, handlers=[handler], force=True)

    # Werkzeug's request log duplicates ours
    logging.getLogger('werkzeug').setLevel(max(log_level, logging.WARNING))


def get_logger(name: str) -> logging.Logger:
    """Module logger; handlers live on the root logger set up by setup_logging()."""
    return logging.getLogger(name)
