"""Tests for harp.logging_setup."""
from __future__ import annotations

import json
import logging
from pathlib import Path

from harp.config import Settings
from harp.logging_setup import configure_logging


def test_log_file_gets_json_lines(tmp_path: Path) -> None:
    log_file = tmp_path / "logs" / "HARP.log"
    logger = configure_logging(Settings(log_file=log_file))

    logging.getLogger("harp.services.session").info("📋 Loaded %s", "Pitch Shifter")
    for handler in logger.handlers:
        handler.flush()

    entry = json.loads(log_file.read_text(encoding="utf-8").splitlines()[-1])
    assert entry["level"] == "INFO"
    assert entry["logger"] == "harp.services.session"
    assert entry["message"] == "📋 Loaded Pitch Shifter"


def test_reconfigure_truncates_and_replaces_handlers(tmp_path: Path) -> None:
    log_file = tmp_path / "HARP.log"
    configure_logging(Settings(log_file=log_file))
    logging.getLogger("harp").warning("first run")

    logger = configure_logging(Settings(log_file=log_file))

    assert len(logger.handlers) == 2
    assert "first run" not in log_file.read_text(encoding="utf-8")


def test_verbose_enables_debug_without_file() -> None:
    logger = configure_logging(Settings(log_file=None), verbose=True)

    assert logger.level == logging.DEBUG
    assert len(logger.handlers) == 1
    assert logger.propagate is False


def test_level_from_settings() -> None:
    logger = configure_logging(Settings(log_file=None, log_level="warning"))

    assert logger.level == logging.WARNING
