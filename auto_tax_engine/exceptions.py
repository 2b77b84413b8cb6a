"""
Typed errors raised by the auto tax engine.

Jurisdiction, scheme, fee and rate failures are request-level errors:
the deal cannot be priced and the caller must see them. Reciprocity
gaps are the only failures the engine resolves itself (to zero credit).
"""

from __future__ import annotations

from typing import Optional


class AutoTaxError(Exception):
    """Base exception for the auto tax engine."""

    code = "AUTO_TAX_ERROR"


class UnknownJurisdiction(AutoTaxError):
    """No rule record exists for the requested jurisdiction code."""

    code = "UNKNOWN_JURISDICTION"

    def __init__(self, jurisdiction: str) -> None:
        self.jurisdiction = jurisdiction
        super().__init__(f"Unknown jurisdiction: {jurisdiction}")


class UnusableJurisdiction(AutoTaxError):
    """A rule record exists but was rejected at load (stub or malformed)."""

    code = "UNUSABLE_JURISDICTION"

    def __init__(self, jurisdiction: str, reason: str) -> None:
        self.jurisdiction = jurisdiction
        self.reason = reason
        super().__init__(f"Jurisdiction {jurisdiction} is unusable: {reason}")


class RuleValidationError(AutoTaxError):
    """A rule record failed schema validation during a strict load."""

    code = "RULE_VALIDATION"

    def __init__(self, source: str, reason: str) -> None:
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid rule record {source}: {reason}")


class UnresolvedFeeCode(AutoTaxError):
    """A fee or line item has no applicable taxability rule."""

    code = "UNRESOLVED_FEE_CODE"

    def __init__(self, fee_code: str, jurisdiction: str, context: str) -> None:
        self.fee_code = fee_code
        self.jurisdiction = jurisdiction
        self.context = context
        super().__init__(
            f"No {context.lower()} taxability rule for fee code "
            f"{fee_code!r} in {jurisdiction}"
        )


class InvalidSchemeDispatch(AutoTaxError):
    """A special scheme or lease method has no registered handler."""

    code = "INVALID_SCHEME_DISPATCH"

    def __init__(self, jurisdiction: str, scheme: str) -> None:
        self.jurisdiction = jurisdiction
        self.scheme = scheme
        super().__init__(f"No handler for {scheme} (jurisdiction {jurisdiction})")


class MalformedTransaction(AutoTaxError):
    """The transaction input is rejected before any computation."""

    code = "MALFORMED_TRANSACTION"

    def __init__(self, transaction_id: str, problems: list[str]) -> None:
        self.transaction_id = transaction_id
        self.problems = problems
        super().__init__(
            f"Transaction {transaction_id or '<no id>'}: " + "; ".join(problems)
        )


class RateResolutionError(AutoTaxError):
    """The rate stack for a jurisdiction could not be resolved."""

    code = "RATE_RESOLUTION"

    def __init__(self, jurisdiction: str, reason: str) -> None:
        self.jurisdiction = jurisdiction
        self.reason = reason
        super().__init__(f"Cannot resolve rates for {jurisdiction}: {reason}")


class ReciprocityProofMissing(AutoTaxError):
    """Credit was claimed but the jurisdiction requires proof of tax paid."""

    code = "RECIPROCITY_PROOF_MISSING"

    def __init__(self, jurisdiction: str, origin: Optional[str]) -> None:
        self.jurisdiction = jurisdiction
        self.origin = origin
        super().__init__(
            f"{jurisdiction} requires proof of tax paid in {origin or 'origin state'}"
        )


class RulesNeedReview(AutoTaxError):
    """The engine is set to reject results built on unverified rules."""

    code = "RULES_NEED_REVIEW"

    def __init__(self, jurisdiction: str, flags: tuple[str, ...]) -> None:
        self.jurisdiction = jurisdiction
        self.flags = flags
        super().__init__(
            f"Rules for {jurisdiction} need review: " + "; ".join(flags)
        )
