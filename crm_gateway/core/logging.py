import logging
import sys
from typing import Any, Dict, Optional
import structlog
from pythonjsonlogger import jsonlogger

from crm_gateway.core.config import settings


def setup_logging():
    """
    Configure structured logging for the application.
    """
    # Standard library handlers (uvicorn, celery, sqlalchemy) emit JSON too
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(jsonlogger.JsonFormatter("%(asctime)s %(name)s %(levelname)s %(message)s"))
    logging.basicConfig(
        format="%(message)s",
        handlers=[handler],
        level=getattr(logging, settings.LOG_LEVEL.upper(), logging.INFO),
        force=True,
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


class ContextLogger:
    """
    Logger with context support for tracing requests and operations.
    """

    def __init__(self, name: str):
        self.logger = structlog.get_logger(name)

    def info(self, message: str, **kwargs):
        self.logger.info(message, **kwargs)

    def error(self, message: str, **kwargs):
        self.logger.error(message, **kwargs)

    def warning(self, message: str, **kwargs):
        self.logger.warning(message, **kwargs)

    def debug(self, message: str, **kwargs):
        self.logger.debug(message, **kwargs)


class StructuredLogger(ContextLogger):
    """
    Job lifecycle events for queue processors.

    Every event carries an ``event_type`` so log pipelines can group
    start/complete/failed lines per job id.
    """

    def job_start(self, job_id: str, context: Optional[Dict[str, Any]] = None):
        self.logger.info("Job started", event_type="job_start", job_id=job_id, **(context or {}))

    def job_complete(self, job_id: str, duration_ms: float, context: Optional[Dict[str, Any]] = None):
        self.logger.info(
            "Job completed",
            event_type="job_complete",
            job_id=job_id,
            duration_ms=round(duration_ms, 2),
            **(context or {}),
        )

    def job_failed(self, job_id: str, error: BaseException, duration_ms: float,
                   context: Optional[Dict[str, Any]] = None):
        self.logger.error(
            "Job failed",
            event_type="job_failed",
            job_id=job_id,
            duration_ms=round(duration_ms, 2),
            error=str(error),
            error_class=error.__class__.__name__,
            **(context or {}),
        )

    def metrics(self, data: Dict[str, Any]):
        self.logger.info("Metrics", event_type="metrics", **data)

    def api_call(self, method: str, url: str, status_code: int, duration_ms: float, **kwargs):
        self.logger.info(
            "API call",
            event_type="api_call",
            method=method,
            url=url,
            status_code=status_code,
            duration_ms=round(duration_ms, 2),
            **kwargs,
        )

    def alert(self, message: str, severity: str = "warning", **kwargs):
        self.logger.warning(message, event_type="alert", severity=severity, **kwargs)


def get_logger(name: str) -> ContextLogger:
    """
    Get a context-aware logger instance.
    """
    return ContextLogger(name)


def get_structured_logger(name: str) -> StructuredLogger:
    return StructuredLogger(name)
