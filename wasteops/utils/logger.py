import logging
import sys
from pythonjsonlogger import jsonlogger
import contextvars

# Context variables for correlation
ctx_request_id = contextvars.ContextVar("request_id", default=None)
ctx_staff_id = contextvars.ContextVar("staff_id", default=None)


class CorrelationJsonFormatter(jsonlogger.JsonFormatter):
    def add_fields(self, log_record, record, message_dict):
        super().add_fields(log_record, record, message_dict)

        request_id = ctx_request_id.get()
        if request_id:
            log_record["request_id"] = request_id

        staff_id = ctx_staff_id.get()
        if staff_id is not None:
            log_record["staff_id"] = staff_id


def setup_logger(log_format: str = "text", log_level: str = "INFO"):
    """Configure the root logger."""
    root_logger = logging.getLogger()

    # Remove existing handlers to avoid duplicates
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    handler = logging.StreamHandler(sys.stdout)

    if log_format.lower() == "json":
        formatter = CorrelationJsonFormatter(
            '%(asctime)s %(levelname)s %(name)s %(message)s',
            rename_fields={"levelname": "level", "asctime": "timestamp"}
        )
    else:
        formatter = logging.Formatter(
            "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
        )

    handler.setFormatter(formatter)
    root_logger.addHandler(handler)

    numeric_level = getattr(logging, log_level.upper(), logging.INFO)
    root_logger.setLevel(numeric_level)

    # Silence third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiosqlite").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)

    return root_logger
