import logging
import logging.handlers
import datetime
import json
import os
from typing import Optional

from decouple import config


class JSONFormatter(logging.Formatter):
    def format(self, record):
        log_record = {
            "timestamp": datetime.datetime.utcnow().isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno
        }
        if record.exc_info:
            log_record["exception"] = {
                "type": record.exc_info[0].__name__,
                "message": str(record.exc_info[1]),
                "traceback": self.formatException(record.exc_info)
            }
        if hasattr(record, "extra") and isinstance(record.extra, dict):
            log_record.update(record.extra)
        return json.dumps(log_record, default=str)


def _rotating_handler(path: str, level: int) -> logging.Handler:
    # Daily files, two weeks kept
    handler = logging.handlers.TimedRotatingFileHandler(
        path, when="midnight", backupCount=14, encoding="utf-8"
    )
    handler.setLevel(level)
    handler.setFormatter(JSONFormatter())
    return handler


def setup_logging(name: Optional[str] = None, log_dir: Optional[str] = None):
    """Configure JSON logging on `name` (the root logger when omitted)."""
    logger = logging.getLogger(name)
    level_name = config("LOG_LEVEL", default="INFO")
    logger.setLevel(getattr(logging, str(level_name).upper(), logging.INFO))
    console_handler = logging.StreamHandler()
    console_handler.setFormatter(JSONFormatter())
    logger.handlers = []  # Remove any existing handlers
    logger.addHandler(console_handler)

    log_dir = log_dir if log_dir is not None else config("LOG_DIR", default="")
    if log_dir:
        os.makedirs(log_dir, exist_ok=True)
        logger.addHandler(_rotating_handler(os.path.join(log_dir, "combined.log"), logging.DEBUG))
        logger.addHandler(_rotating_handler(os.path.join(log_dir, "error.log"), logging.ERROR))
    if name:
        logger.propagate = False
    return logger
