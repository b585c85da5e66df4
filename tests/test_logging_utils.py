"""Tests for logging utilities."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler
from pathlib import Path

from taskdown import logging_utils


def _reset_logger() -> logging.Logger:
    logger = logging.getLogger("taskdown")
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    logger.propagate = True
    return logger


def test_setup_logging_creates_rotating_files(tmp_path: Path):
    logger = _reset_logger()
    log_path = logging_utils.setup_logging(tmp_path, level="INFO", console=False)

    assert log_path == tmp_path / "logs" / "taskdown.log"
    assert log_path.exists()

    file_handlers = [
        handler for handler in logger.handlers if isinstance(handler, RotatingFileHandler)
    ]
    assert sorted(Path(h.baseFilename).name for h in file_handlers) == ["taskdown.jsonl", "taskdown.log"]
    _reset_logger()


def test_setup_logging_is_idempotent(tmp_path: Path):
    logger = _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO")
    handler_count = len(logger.handlers)

    logging_utils.setup_logging(tmp_path, level="INFO")
    assert len(logger.handlers) == handler_count
    _reset_logger()


def test_structured_log_carries_collection(tmp_path: Path):
    _reset_logger()
    logging_utils.setup_logging(tmp_path, level="INFO", console=False)

    logging.getLogger("taskdown.sync.reconciler").info(
        "Reconciled '%s'", "tasks", extra={"collection": "tasks"}
    )
    for handler in logging.getLogger("taskdown").handlers:
        handler.flush()

    lines = (tmp_path / "logs" / "taskdown.jsonl").read_text(encoding="utf-8").splitlines()
    entry = json.loads(lines[-1])
    assert entry["message"] == "Reconciled 'tasks'"
    assert entry["collection"] == "tasks"
    assert entry["logger"] == "taskdown.sync.reconciler"
    _reset_logger()


def test_setup_logging_falls_back_when_permission_denied(tmp_path: Path, monkeypatch):
    _reset_logger()
    data_dir = tmp_path / "home"
    primary_parent = data_dir / "logs"
    original_mkdir = Path.mkdir

    def fake_mkdir(self, *args, **kwargs):
        if str(self).startswith(str(primary_parent)):
            raise PermissionError
        return original_mkdir(self, *args, **kwargs)

    monkeypatch.setattr(Path, "mkdir", fake_mkdir)
    fallback_root = tmp_path / "fallback"
    monkeypatch.setattr(logging_utils, "FALLBACK_ROOT", fallback_root)

    log_path = logging_utils.setup_logging(data_dir, level="INFO", structured=False, console=False)
    expected = fallback_root / "logs" / "taskdown.log"

    assert log_path == expected
    assert expected.exists()
    _reset_logger()
