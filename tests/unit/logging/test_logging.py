# tests/unit/logging/test_logging.py — v1
"""Tests for logging/ — context vars, formatters, setup and rotation."""

from __future__ import annotations

import json
import logging
from logging.handlers import RotatingFileHandler

import pytest

from fitscore.config.settings import Settings
from fitscore.logging.context import (
    clear_context,
    get_context,
    set_run_context,
    set_step_context,
)
from fitscore.logging.handlers import RunContextFilter, create_rotating_handler, parse_size
from fitscore.logging.logger import (
    JsonFormatter,
    TextFormatter,
    setup_logging,
    setup_logging_from_settings,
)


@pytest.fixture(autouse=True)
def _reset_context():
    clear_context()
    yield
    clear_context()
    root = logging.getLogger("fitscore")
    root.handlers.clear()
    root.setLevel(logging.NOTSET)


def _record(msg: str = "hello", data: dict | None = None) -> logging.LogRecord:
    record = logging.LogRecord("fitscore.test", logging.INFO, __file__, 1, msg, (), None)
    if data is not None:
        record.data = data
    return record


class TestContext:
    def test_empty(self):
        assert get_context().as_dict() == {}

    def test_run_and_step(self):
        set_run_context("run_1", "acct_1")
        set_step_context("score")
        assert get_context().as_dict() == {
            "run_id": "run_1", "account_id": "acct_1", "step": "score",
        }

    def test_clear(self):
        set_run_context("run_1", "acct_1")
        clear_context()
        assert get_context().run_id is None


class TestFormatters:
    def test_json_includes_context_and_data(self):
        set_run_context("run_1", "acct_1")
        entry = json.loads(JsonFormatter().format(_record(data={"score": 82})))
        assert entry["message"] == "hello"
        assert entry["level"] == "INFO"
        assert entry["context"] == {"run_id": "run_1", "account_id": "acct_1"}
        assert entry["data"] == {"score": 82}

    def test_json_without_context(self):
        entry = json.loads(JsonFormatter().format(_record()))
        assert "context" not in entry
        assert "data" not in entry

    def test_text_format(self):
        set_run_context("run_1", "acct_1")
        set_step_context("fetch_subject")
        line = TextFormatter().format(_record(data={"k": 1}))
        assert "[run_1]" in line
        assert "(fetch_subject)" in line
        assert line.endswith('- hello {"k": 1}')


class TestSetup:
    def test_setup_does_not_stack_handlers(self):
        setup_logging(level="DEBUG", log_format="text")
        setup_logging(level="DEBUG", log_format="text")
        root = logging.getLogger("fitscore")
        assert len(root.handlers) == 1
        assert root.level == logging.DEBUG
        assert isinstance(root.handlers[0].formatter, TextFormatter)

    def test_setup_with_file(self, tmp_path):
        setup_logging(log_file=str(tmp_path / "logs" / "worker.log"))
        root = logging.getLogger("fitscore")
        assert any(isinstance(h, RotatingFileHandler) for h in root.handlers)
        assert (tmp_path / "logs").is_dir()

    def test_from_settings(self):
        setup_logging_from_settings(Settings(log_level="WARNING", log_format="json"))
        root = logging.getLogger("fitscore")
        assert root.level == logging.WARNING
        assert isinstance(root.handlers[0].formatter, JsonFormatter)


class TestHandlers:
    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("10MB", 10 * 1024**2),
            ("512kb", 512 * 1024),
            ("2 GB", 2 * 1024**3),
            ("1.5MB", int(1.5 * 1024**2)),
            ("64k", 64 * 1024),
            ("100", 100),
            ("0", 0),
        ],
    )
    def test_parse_size(self, text, expected):
        assert parse_size(text) == expected

    @pytest.mark.parametrize("text", ["ten megabytes", "10TB", "", "-5MB"])
    def test_parse_size_invalid(self, text):
        with pytest.raises(ValueError):
            parse_size(text)

    def test_rotating_handler(self, tmp_path):
        handler = create_rotating_handler(str(tmp_path / "a" / "w.log"), "1KB", 3)
        assert handler.maxBytes == 1024
        assert handler.backupCount == 3
        assert any(isinstance(f, RunContextFilter) for f in handler.filters)
        assert not (tmp_path / "a" / "w.log").exists()
        handler.close()

    def test_context_filter_tags_records(self):
        set_run_context("run_001", "acct_001")
        set_step_context("score")
        record = _record()
        assert RunContextFilter().filter(record) is True
        assert (record.run_id, record.account_id, record.step) == ("run_001", "acct_001", "score")

    def test_context_filter_outside_run(self):
        record = _record()
        RunContextFilter().filter(record)
        assert record.run_id is None and record.step is None

    def test_file_lines_carry_run_id(self, tmp_path):
        log_file = tmp_path / "w.log"
        handler = create_rotating_handler(str(log_file))
        handler.setFormatter(logging.Formatter("%(run_id)s %(step)s %(message)s"))
        logger = logging.getLogger("fitscore.test.file")
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        try:
            set_run_context("run_042", "acct_001")
            set_step_context("persist_lead")
            logger.info("lead stored")
        finally:
            logger.removeHandler(handler)
            handler.close()
        assert log_file.read_text(encoding="utf-8").strip() == "run_042 persist_lead lead stored"
