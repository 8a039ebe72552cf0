"""Tests for settings loading and logging setup."""

import json
import logging

import pytest
import structlog

from sales_import.config import ImportSettings, LoggingSettings
from sales_import.logging_config import setup_logging


@pytest.fixture
def root_logger():
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield root
    for handler in root.handlers:
        if handler not in handlers:
            handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestImportSettings:

    def test_environment_overrides(self, monkeypatch):
        monkeypatch.setenv("IMPORT_CHUNK_SIZE", "250")
        monkeypatch.setenv("IMPORT_EXCLUDED_QUOTE_PREFIXES", '["tmp", " adi "]')

        import_settings = ImportSettings()

        assert import_settings.chunk_size == 250
        assert import_settings.excluded_quote_prefixes == ("TMP", "ADI")

    def test_chunk_size_must_be_positive(self):
        with pytest.raises(ValueError):
            ImportSettings(chunk_size=0)


class TestSetupLogging:

    def test_json_lines(self, root_logger, tmp_path):
        log_file = tmp_path / "import.log"
        setup_logging(LoggingSettings(level="INFO", format="json", file=str(log_file)))

        logging.getLogger("sales_import.test").info("chunk written", extra={"salesCreated": 3})
        for handler in root_logger.handlers:
            handler.flush()

        line = json.loads(log_file.read_text(encoding="utf-8").strip().splitlines()[-1])
        assert line["event"] == "chunk written"
        assert line["level"] == "info"
        assert line["logger"] == "sales_import.test"
        assert line["salesCreated"] == 3

    def test_repeated_setup_replaces_handlers(self, root_logger):
        setup_logging(LoggingSettings(format="json"))
        setup_logging(LoggingSettings(format="text", level="debug"))

        owned = [h for h in root_logger.handlers if getattr(h, "_sales_import", False)]
        assert len(owned) == 1
        assert not isinstance(owned[0].formatter, structlog.stdlib.ProcessorFormatter)
        assert root_logger.level == logging.DEBUG
