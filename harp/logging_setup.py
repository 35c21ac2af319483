"""Logging setup — JSON lines to the HARP log file, readable lines to stderr."""

from __future__ import annotations

import json
import logging
import sys
from datetime import datetime, timezone
from pathlib import Path

from harp.config import Settings, settings as default_settings

LOGGER_NAME = "harp"


class JSONFormatter(logging.Formatter):
    """One JSON object per record, with the call site and any traceback."""

    def format(self, record: logging.LogRecord) -> str:
        entry: dict[str, object] = {
            "ts": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "where": f"{record.module}:{record.funcName}:{record.lineno}",
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["traceback"] = self.formatException(record.exc_info)
        return json.dumps(entry, default=str)


def configure_logging(
    settings: Settings | None = None,
    *,
    verbose: bool = False,
    log_file: Path | None = None,
) -> logging.Logger:
    """Attach file and console handlers to the ``harp`` logger.

    The log file is truncated on every call, so it holds one session's
    history, like the HARP.log the desktop client kept.
    """
    cfg = settings or default_settings
    harp_logger = logging.getLogger(LOGGER_NAME)
    level = logging.DEBUG if verbose or cfg.debug else getattr(logging, cfg.log_level.upper(), logging.INFO)
    harp_logger.setLevel(level)
    for handler in list(harp_logger.handlers):
        harp_logger.removeHandler(handler)
        handler.close()

    path = log_file or cfg.log_file
    if path is not None:
        path = Path(path).expanduser()
        path.parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.FileHandler(path, mode="w", encoding="utf-8")
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(JSONFormatter())
        harp_logger.addHandler(file_handler)

    console = logging.StreamHandler(sys.stderr)
    console.setLevel(level)
    console.setFormatter(logging.Formatter("%(asctime)s [%(levelname)s] %(name)s: %(message)s", datefmt="%H:%M:%S"))
    harp_logger.addHandler(console)
    harp_logger.propagate = False
    return harp_logger
