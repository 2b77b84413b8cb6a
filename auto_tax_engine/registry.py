"""
Jurisdiction rule registry.

Loads one YAML record per jurisdiction, validates each against the
strict schema, and serves immutable records by code. A record that is a
declared stub, still carries ``TODO`` placeholders, or fails validation
is never served: it is listed in ``unusable`` and ``lookup`` raises
``UnusableJurisdiction`` for it.
"""

from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Union

import yaml
from pydantic import ValidationError

from auto_tax_engine.config import BUNDLED_RULES_DIR
from auto_tax_engine.exceptions import (
    RuleValidationError,
    UnknownJurisdiction,
    UnusableJurisdiction,
)
from auto_tax_engine.rules import Confidence, JurisdictionTaxRules
from auto_tax_engine.schemes import scheme_problems

logger = logging.getLogger(__name__)

_PLACEHOLDER = "TODO"


def _find_placeholder(value: Any, path: str = "") -> Optional[str]:
    """Path of the first string value containing a TODO placeholder."""
    if isinstance(value, str):
        if _PLACEHOLDER in value:
            return path or "<root>"
        return None
    if isinstance(value, dict):
        for key, item in value.items():
            found = _find_placeholder(item, f"{path}.{key}" if path else str(key))
            if found:
                return found
    if isinstance(value, list):
        for i, item in enumerate(value):
            found = _find_placeholder(item, f"{path}[{i}]")
            if found:
                return found
    return None


def _describe(error: ValidationError) -> str:
    parts = []
    for err in error.errors():
        where = ".".join(str(p) for p in err["loc"]) or "<record>"
        parts.append(f"{where}: {err['msg']}")
    return "; ".join(parts)


class _Rejected(Exception):
    """A record that cannot be served; ``stub`` records are expected gaps."""

    def __init__(self, code: str, reason: str, stub: bool = False) -> None:
        super().__init__(reason)
        self.code = code
        self.reason = reason
        self.stub = stub


def parse_record(
    raw: Any, source: str, expected_code: Optional[str] = None
) -> JurisdictionTaxRules:
    """
    Validate one raw mapping into a rule record.

    Raises ``_Rejected`` with the reason the record is unusable.
    """
    fallback_code = (expected_code or source).upper()
    if not isinstance(raw, dict):
        raise _Rejected(fallback_code, "record is not a mapping")

    data = dict(raw)
    code = str(data.get("code") or fallback_code).upper()
    status = str(data.pop("status", "active")).lower()
    if status == "stub":
        raise _Rejected(code, "record is a stub", stub=True)
    if status != "active":
        raise _Rejected(code, f"unknown record status {status!r}")

    placeholder = _find_placeholder(data)
    if placeholder:
        raise _Rejected(code, f"placeholder TODO value at {placeholder}")

    try:
        record = JurisdictionTaxRules.model_validate(data)
    except ValidationError as e:
        raise _Rejected(code, _describe(e)) from e

    if expected_code and record.code != expected_code.upper():
        raise _Rejected(code, f"code {record.code} does not match file name {expected_code}")
    problems = scheme_problems(record)
    if problems:
        raise _Rejected(code, "; ".join(problems))
    return record


class RuleRegistry:
    """Immutable set of jurisdiction records keyed by code."""

    def __init__(
        self,
        records: Mapping[str, JurisdictionTaxRules],
        unusable: Optional[Mapping[str, str]] = None,
        *,
        source: Optional[Path] = None,
        strict: bool = False,
    ) -> None:
        self._records = dict(records)
        self.unusable: dict[str, str] = dict(unusable or {})
        self.source = source
        self.strict = strict
        self.fingerprint = self._fingerprint()

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def load(
        cls, directory: Optional[Union[str, Path]] = None, *, strict: bool = False
    ) -> "RuleRegistry":
        """Load every ``*.yaml`` record in ``directory`` (default: bundled rules)."""
        root = Path(directory) if directory is not None else BUNDLED_RULES_DIR
        if not root.is_dir():
            raise RuleValidationError(str(root), "rules directory not found")

        entries = []
        for path in sorted(root.glob("*.yaml")) + sorted(root.glob("*.yml")):
            try:
                with open(path, encoding="utf-8") as f:
                    raw = yaml.safe_load(f)
            except yaml.YAMLError as e:
                raw = e
            entries.append((path.name, path.stem, raw))

        registry = cls._build(entries, strict=strict, source=root)
        logger.info(
            "Loaded %d jurisdiction records from %s (%d unusable, fingerprint %s)",
            len(registry), root, len(registry.unusable), registry.fingerprint[:12],
        )
        return registry

    @classmethod
    def from_records(
        cls,
        records: Iterable[Union[JurisdictionTaxRules, Mapping[str, Any]]],
        *,
        strict: bool = False,
    ) -> "RuleRegistry":
        """Build a registry from in-memory records or raw mappings."""
        entries = []
        for i, record in enumerate(records):
            if isinstance(record, JurisdictionTaxRules):
                entries.append((f"record[{i}]", None, record))
            else:
                entries.append((f"record[{i}]", None, dict(record)))
        return cls._build(entries, strict=strict)

    @classmethod
    def _build(
        cls,
        entries: list[tuple[str, Optional[str], Any]],
        *,
        strict: bool,
        source: Optional[Path] = None,
    ) -> "RuleRegistry":
        records: dict[str, JurisdictionTaxRules] = {}
        unusable: dict[str, str] = {}

        for name, expected_code, raw in entries:
            try:
                if isinstance(raw, yaml.YAMLError):
                    raise _Rejected((expected_code or name).upper(), f"unreadable YAML: {raw}")
                if isinstance(raw, JurisdictionTaxRules):
                    problems = scheme_problems(raw)
                    if problems:
                        raise _Rejected(raw.code, "; ".join(problems))
                    record = raw
                else:
                    record = parse_record(raw, name, expected_code)
                if record.code in records:
                    raise _Rejected(record.code, f"duplicate record for {record.code}")
            except _Rejected as e:
                if strict and not e.stub:
                    raise RuleValidationError(name, e.reason) from e
                if e.code not in records:
                    unusable[e.code] = e.reason
                logger.warning("Rule record %s unusable: %s", name, e.reason)
                continue
            records[record.code] = record
            unusable.pop(record.code, None)

        return cls(records, unusable, source=source, strict=strict)

    def reload(self) -> "RuleRegistry":
        """
        Load a fresh registry from the same directory.

        Returns a new registry; this one and the records it holds are
        left untouched for callers still using them.
        """
        if self.source is None:
            raise RuleValidationError("<in-memory>", "registry has no source directory")
        return type(self).load(self.source, strict=self.strict)

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    def lookup(self, code: str) -> JurisdictionTaxRules:
        key = code.strip().upper()
        record = self._records.get(key)
        if record is not None:
            return record
        if key in self.unusable:
            raise UnusableJurisdiction(key, self.unusable[key])
        raise UnknownJurisdiction(key)

    def codes(self) -> list[str]:
        return sorted(self._records)

    def needs_review(self) -> list[str]:
        """Codes of records whose research is not fully verified."""
        return [
            code for code in self.codes()
            if self._records[code].confidence is Confidence.NEEDS_REVIEW
        ]

    def __contains__(self, code: object) -> bool:
        return isinstance(code, str) and code.strip().upper() in self._records

    def __len__(self) -> int:
        return len(self._records)

    def _fingerprint(self) -> str:
        """SHA-256 over the canonical JSON of every usable record."""
        canonical = json.dumps(
            {code: self._records[code].model_dump(mode="json") for code in sorted(self._records)},
            sort_keys=True,
            separators=(",", ":"),
        )
        return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
