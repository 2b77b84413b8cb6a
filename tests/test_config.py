"""Tests for engine settings and logging setup."""

import io
import logging
from pathlib import Path

import pytest
from pydantic import ValidationError
from rich.logging import RichHandler

from auto_tax_engine.config import BUNDLED_RULES_DIR, EngineSettings, configure_logging


@pytest.fixture
def package_logger():
    logger = logging.getLogger("auto_tax_engine")
    handlers, level = list(logger.handlers), logger.level
    yield logger
    logger.handlers = handlers
    logger.setLevel(level)


# ── Settings ─────────────────────────────────────────────────────────


def test_defaults():
    settings = EngineSettings.from_env({})
    assert settings.rules_dir == BUNDLED_RULES_DIR
    assert settings.strict_rules is False
    assert settings.needs_review_policy == "warn"
    assert settings.log_level == "WARNING"


def test_from_env():
    settings = EngineSettings.from_env(
        {
            "AUTO_TAX_RULES_DIR": "/srv/tax/rules",
            "AUTO_TAX_STRICT_RULES": "Yes",
            "AUTO_TAX_NEEDS_REVIEW": " REJECT ",
            "AUTO_TAX_LOG_LEVEL": "debug",
        }
    )
    assert settings.rules_dir == Path("/srv/tax/rules")
    assert settings.strict_rules is True
    assert settings.needs_review_policy == "reject"
    assert settings.log_level == "DEBUG"


def test_strict_flag_off():
    assert EngineSettings.from_env({"AUTO_TAX_STRICT_RULES": "0"}).strict_rules is False


def test_unknown_policy_rejected():
    with pytest.raises(ValidationError):
        EngineSettings.from_env({"AUTO_TAX_NEEDS_REVIEW": "ignore"})


def test_unknown_log_level_rejected():
    with pytest.raises(ValidationError):
        EngineSettings(log_level="LOUD")


def test_settings_are_frozen():
    settings = EngineSettings()
    with pytest.raises(ValidationError):
        settings.strict_rules = True


# ── Logging ──────────────────────────────────────────────────────────


def test_configure_logging_installs_rich_handler(package_logger):
    logger = configure_logging(logging.DEBUG)
    assert logger is package_logger
    assert logger.level == logging.DEBUG
    assert any(isinstance(h, RichHandler) for h in logger.handlers)


def test_configure_logging_replaces_handler(package_logger):
    stream = io.StringIO()
    configure_logging("INFO")
    configure_logging("INFO", handler=logging.StreamHandler(stream))

    active = [h for h in package_logger.handlers if not isinstance(h, logging.NullHandler)]
    assert len(active) == 1
    logging.getLogger("auto_tax_engine.registry").info("records loaded")
    assert "records loaded" in stream.getvalue()
