"""Structured JSON logging shared by the API and the queue worker"""

import logging
import sys
from typing import Any, Dict
from pythonjsonlogger import jsonlogger

from microlend_gateway.config import settings
from microlend_gateway.utils.date_utils import utcnow

# Chatty third-party loggers kept at WARNING
QUIET_LOGGERS = ("httpx", "httpcore", "sqlalchemy.engine")


class CustomJsonFormatter(jsonlogger.JsonFormatter):
    """Adds UTC timestamp, level, service and process role to every record"""

    def __init__(self, *args: Any, component: str = "api", **kwargs: Any):
        super().__init__(*args, **kwargs)
        self.component = component

    def add_fields(self, log_record: Dict[str, Any], record: logging.LogRecord, message_dict: Dict[str, Any]) -> None:
        super().add_fields(log_record, record, message_dict)
        log_record["timestamp"] = utcnow().isoformat()
        log_record["level"] = record.levelname
        log_record["service"] = settings.service_name
        log_record["component"] = self.component


def setup_logging(level: str = "INFO", component: str = "api") -> None:
    """Route the root logger to stdout as one JSON object per line"""
    root = logging.getLogger()
    root.setLevel(level)
    root.handlers.clear()

    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(CustomJsonFormatter("%(timestamp)s %(level)s %(name)s %(message)s", component=component))
    root.addHandler(handler)

    for name in QUIET_LOGGERS:
        logging.getLogger(name).setLevel(logging.WARNING)


def log_issuance(
    request_id: str,
    borrower_id: str,
    loan_id: str,
    status: str,
    created: bool,
    duration_ms: float,
) -> None:
    """Log structured accept-offer outcome for analysis"""
    logging.info(
        "Loan issuance completed",
        extra={
            "request_id": request_id,
            "borrower_id": borrower_id,
            "loan_id": loan_id,
            "step": "issuance_complete",
            "loan_status": status,
            "issuance_outcome": "created" if created else "replayed",
            "duration_ms": duration_ms,
        },
    )
