"""
Engine settings and logging setup.

Settings come from keyword arguments or from the environment:

    AUTO_TAX_RULES_DIR      directory of jurisdiction YAML records
    AUTO_TAX_STRICT_RULES   "1"/"true" aborts the load on the first bad record
    AUTO_TAX_NEEDS_REVIEW   "warn" (default) or "reject"
    AUTO_TAX_LOG_LEVEL      level for ``configure_logging``
"""

from __future__ import annotations

import logging
import os
from pathlib import Path
from typing import Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, field_validator
from rich.logging import RichHandler

_LOGGER_NAME = "auto_tax_engine"

BUNDLED_RULES_DIR = Path(__file__).parent / "jurisdictions"

_TRUE = {"1", "true", "yes", "on"}


class EngineSettings(BaseModel):
    """Runtime configuration for a ``TaxEngine``."""

    model_config = ConfigDict(extra="forbid", frozen=True)

    rules_dir: Path = BUNDLED_RULES_DIR
    strict_rules: bool = False
    needs_review_policy: Literal["warn", "reject"] = "warn"
    log_level: str = "WARNING"

    @field_validator("log_level")
    @classmethod
    def _known_level(cls, v: str) -> str:
        v = v.upper()
        if not isinstance(logging.getLevelName(v), int):
            raise ValueError(f"unknown log level {v!r}")
        return v

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> "EngineSettings":
        env = os.environ if environ is None else environ
        values: dict = {}
        if env.get("AUTO_TAX_RULES_DIR"):
            values["rules_dir"] = Path(env["AUTO_TAX_RULES_DIR"])
        if env.get("AUTO_TAX_STRICT_RULES"):
            values["strict_rules"] = env["AUTO_TAX_STRICT_RULES"].strip().lower() in _TRUE
        if env.get("AUTO_TAX_NEEDS_REVIEW"):
            values["needs_review_policy"] = env["AUTO_TAX_NEEDS_REVIEW"].strip().lower()
        if env.get("AUTO_TAX_LOG_LEVEL"):
            values["log_level"] = env["AUTO_TAX_LOG_LEVEL"]
        return cls(**values)


def configure_logging(
    level: int | str = logging.INFO, handler: Optional[logging.Handler] = None
) -> logging.Logger:
    """
    Attach a console handler to the package logger.

    The library itself only installs a ``NullHandler``; hosts without
    their own logging setup call this once. Repeated calls replace the
    handler rather than stacking a second one.
    """
    logger = logging.getLogger(_LOGGER_NAME)
    logger.setLevel(level)
    for existing in list(logger.handlers):
        if not isinstance(existing, logging.NullHandler):
            logger.removeHandler(existing)
    logger.addHandler(handler or RichHandler(show_path=False, rich_tracebacks=True))
    return logger
