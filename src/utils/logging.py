"""Logging configuration and utilities."""

import json
import logging
import logging.handlers
import sys
from pathlib import Path
from typing import Optional, Dict, Any

from rich.console import Console
from rich.logging import RichHandler

from .config import Settings, get_settings

console = Console(stderr=True)

# SDK loggers that are chatty at INFO
NOISY_LOGGERS = (
    "httpx",
    "httpcore",
    "urllib3",
    "openai",
    "pinecone",
    "langchain_core",
    "langchain_openai",
)

# Attributes every LogRecord has; anything else was passed through ``extra``
_RECORD_ATTRIBUTES = set(vars(logging.LogRecord("", 0, "", 0, "", None, None))) | {"message", "asctime"}


class JSONFormatter(logging.Formatter):
    """One JSON object per line, with ``extra_fields`` merged in at the top level."""

    def format(self, record: logging.LogRecord) -> str:
        log_entry: Dict[str, Any] = {
            'timestamp': self.formatTime(record, self.datefmt),
            'level': record.levelname,
            'logger': record.name,
            'message': record.getMessage(),
            'location': f"{record.module}:{record.funcName}:{record.lineno}",
        }

        if record.exc_info:
            log_entry['exception'] = self.formatException(record.exc_info)

        extra_fields = getattr(record, 'extra_fields', None)
        if extra_fields:
            log_entry.update(extra_fields)

        for key, value in vars(record).items():
            if key not in _RECORD_ATTRIBUTES and key != 'extra_fields' and key not in log_entry:
                log_entry[key] = value

        return json.dumps(log_entry, ensure_ascii=False, default=str)


class ContextFilter(logging.Filter):
    """Attach fixed context (tenant, pipeline, component) to every record.

    Values already present in a record's ``extra_fields`` win over the filter's.
    """

    def __init__(self, context: Optional[Dict[str, Any]] = None):
        super().__init__()
        self.context = dict(context or {})

    def filter(self, record: logging.LogRecord) -> bool:
        if self.context:
            extra_fields = getattr(record, 'extra_fields', None)
            if extra_fields is None:
                extra_fields = {}
                record.extra_fields = extra_fields
            for key, value in self.context.items():
                extra_fields.setdefault(key, value)
        return True


def _console_handler(settings: Settings, use_rich: bool) -> logging.Handler:
    if use_rich and settings.is_development:
        handler: logging.Handler = RichHandler(
            console=console,
            show_time=True,
            show_path=settings.debug,
            markup=False,
            rich_tracebacks=True
        )
        handler.setFormatter(logging.Formatter(fmt="%(message)s", datefmt="[%X]"))
        return handler

    handler = logging.StreamHandler(sys.stderr)
    handler.setFormatter(logging.Formatter(settings.logging.format))
    return handler


def _file_handler(settings: Settings, file_path: str, use_json: bool) -> logging.Handler:
    Path(file_path).parent.mkdir(parents=True, exist_ok=True)
    handler = logging.handlers.RotatingFileHandler(
        filename=file_path,
        maxBytes=settings.logging.max_file_size,
        backupCount=settings.logging.backup_count,
        encoding='utf-8'
    )
    if use_json or settings.is_production:
        handler.setFormatter(JSONFormatter(datefmt='%Y-%m-%d %H:%M:%S'))
    else:
        handler.setFormatter(logging.Formatter(settings.logging.format))
    return handler


def setup_logging(
    level: Optional[str] = None,
    log_file: Optional[str] = None,
    use_rich: bool = True,
    use_json: bool = False,
    context: Optional[Dict[str, Any]] = None,
    settings: Optional[Settings] = None
) -> None:
    """Configure the root logger.

    Console output goes through Rich in development and a plain stream
    handler elsewhere. A rotating file handler is added when ``log_file`` (or
    ``LOG_FILE_PATH``) is set; it writes JSON in production or when
    ``use_json`` is true.

    Args:
        level: Log level name; defaults to ``LOG_LEVEL``
        log_file: Path to a rotating log file (optional)
        use_rich: Use the Rich console handler in development
        use_json: Force JSON output for the file handler
        context: Fields attached to every record
        settings: Application settings; loaded from the environment when omitted
    """
    settings = settings or get_settings()
    log_level = getattr(logging, (level or settings.logging.level).upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(log_level)
    root_logger.handlers.clear()

    handlers = [_console_handler(settings, use_rich)]
    file_path = log_file or settings.logging.file_path
    if file_path:
        handlers.append(_file_handler(settings, file_path, use_json))

    for handler in handlers:
        handler.setLevel(log_level)
        if context:
            # Handler-level so records from every logger carry the context
            handler.addFilter(ContextFilter(context))
        root_logger.addHandler(handler)

    for logger_name in NOISY_LOGGERS:
        logging.getLogger(logger_name).setLevel(logging.WARNING)


def get_logger(name: str, context: Optional[Dict[str, Any]] = None) -> logging.Logger:
    """Get a logger, attaching ``context`` once per distinct context."""
    logger = logging.getLogger(name)

    if context:
        already_attached = any(
            isinstance(existing, ContextFilter) and existing.context == context
            for existing in logger.filters
        )
        if not already_attached:
            logger.addFilter(ContextFilter(context))

    return logger


class LoggerMixin:
    """Mixin class to add logging capabilities to any class."""

    @property
    def logger(self) -> logging.Logger:
        if not hasattr(self, '_logger'):
            self._logger = get_logger(
                f"{self.__class__.__module__}.{self.__class__.__name__}",
                context={'class': self.__class__.__name__}
            )
        return self._logger


def setup_pipeline_logging(
    pipeline_name: str,
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    use_json: bool = False,
    context: Optional[Dict[str, Any]] = None
) -> logging.Logger:
    """Set up logging for a pipeline run.

    Args:
        pipeline_name: Name of the pipeline (e.g., 'catalog_retrieval')
        log_level: Logging level
        log_file: Optional rotating log file
        use_json: Whether the file handler writes JSON
        context: Extra fields attached to every record (e.g. tenant_id)

    Returns:
        Logger instance for the pipeline
    """
    pipeline_context = {'pipeline': pipeline_name, **(context or {})}

    setup_logging(
        level=log_level,
        log_file=log_file,
        use_json=use_json,
        context=pipeline_context
    )

    return get_logger(f"pipelines.{pipeline_name}", pipeline_context)
