"""
Logging setup shared by the API, the ledger and the CLI tools.
"""
import json
import logging
import os
import sys
from datetime import datetime, timezone

ROOT_LOGGER = "shielded"

_configured = False


class JsonFormatter(logging.Formatter):
    def format(self, record: logging.LogRecord) -> str:
        payload = {
            "ts": datetime.now(timezone.utc).replace(microsecond=0).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "msg": record.getMessage(),
        }
        if record.exc_info:
            payload["exc"] = self.formatException(record.exc_info)
        return json.dumps(payload, separators=(",", ":"))


def configure_logging(level: str = None, fmt: str = None) -> None:
    """
    Install one stderr handler on the root logger.

    Args:
        level: log level name, defaults to $LOG_LEVEL or INFO
        fmt: "json" for JSON lines, anything else for plain text
    """
    global _configured
    level = (level or os.getenv("LOG_LEVEL", "INFO")).upper()
    fmt = (fmt or os.getenv("LOG_FORMAT", "text")).lower()

    handler = logging.StreamHandler(sys.stderr)
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s [%(name)s] %(message)s"))

    root = logging.getLogger()
    if _configured:
        for h in list(root.handlers):
            if getattr(h, "_shielded", False):
                root.removeHandler(h)
    handler._shielded = True
    root.addHandler(handler)
    root.setLevel(level)
    _configured = True


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
