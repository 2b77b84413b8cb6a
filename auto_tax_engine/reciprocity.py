"""
Reciprocity credit for tax already paid to another jurisdiction.

A buyer who paid tax on the same vehicle elsewhere may be credited
against the home jurisdiction's tax. Each record decides whether it
credits at all, for which transaction types, on which basis, and with
which origin-specific exceptions (time windows, disallowed origins,
mutual credit, same owner, vehicle class and weight limits).

Every override matching the claim is applied in list order; any one of
them can deny the credit. Any gap in the claim (missing proof, missing
paid date, expired window, unconfirmed mutual credit) resolves to zero
credit. Reciprocity never blocks a computation.
"""

from __future__ import annotations

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from auto_tax_engine.aggregator import ReciprocityOutcome
from auto_tax_engine.exceptions import ReciprocityProofMissing
from auto_tax_engine.models import ZERO, PriorTaxPaid
from auto_tax_engine.rules import (
    CreditBasis,
    JurisdictionTaxRules,
    ReciprocityOverride,
    ReciprocityScope,
    TransactionType,
)

logger = logging.getLogger(__name__)

_SCOPES: dict[ReciprocityScope, frozenset[TransactionType]] = {
    ReciprocityScope.RETAIL_ONLY: frozenset({TransactionType.RETAIL}),
    ReciprocityScope.LEASE_ONLY: frozenset({TransactionType.LEASE}),
    ReciprocityScope.BOTH: frozenset(TransactionType),
}


def matching_overrides(
    rules: JurisdictionTaxRules,
    origin: str,
    vehicle_class: Optional[str] = None,
    gvw_lbs: Optional[int] = None,
) -> list[ReciprocityOverride]:
    """Every override that applies to a claim from ``origin``, in list order."""
    return [
        override for override in rules.reciprocity.overrides
        if override.matches(origin, vehicle_class, gvw_lbs)
    ]


def cap_setting(rules: JurisdictionTaxRules, overrides: list[ReciprocityOverride]) -> bool:
    """Cap at home tax: an exact-origin override beats ``ALL``, which beats the record."""
    for exact in (True, False):
        for override in overrides:
            if override.is_exact is exact and override.cap_at_home_tax is not None:
                return override.cap_at_home_tax
    return rules.reciprocity.cap_at_home_tax


def credits_origin(
    rules: Optional[JurisdictionTaxRules],
    home: str,
    transaction_type: TransactionType,
) -> bool:
    """Whether ``rules`` would itself credit tax paid to ``home``."""
    if rules is None or not rules.reciprocity.enabled:
        return False
    if transaction_type not in _SCOPES[rules.reciprocity.scope]:
        return False
    return not any(o.disallow_credit for o in matching_overrides(rules, home))


class ReciprocityEngine:
    """Computes the credit a home jurisdiction allows for prior tax."""

    def compute_credit(
        self,
        rules: JurisdictionTaxRules,
        tax_owed: Decimal,
        prior: Optional[PriorTaxPaid],
        *,
        as_of: date,
        transaction_type: TransactionType = TransactionType.RETAIL,
        state_tax_owed: Optional[Decimal] = None,
        vehicle_class: Optional[str] = None,
        gvw_lbs: Optional[int] = None,
        origin_rules: Optional[JurisdictionTaxRules] = None,
    ) -> ReciprocityOutcome:
        """
        Credit allowed against ``tax_owed``.

        For leases ``tax_owed`` is the tax due at signing. ``state_tax_owed``
        is the state component of it, used when the record credits only
        state tax. ``origin_rules`` is the origin jurisdiction's own record,
        consulted when an override requires mutual credit.
        """
        if prior is None or prior.amount <= 0:
            return ReciprocityOutcome.none("no prior tax claimed")

        recip = rules.reciprocity
        origin = prior.origin_jurisdiction.upper()
        if not recip.enabled:
            return ReciprocityOutcome.none(f"{rules.code} does not offer reciprocity credit")
        if transaction_type not in _SCOPES[recip.scope]:
            return ReciprocityOutcome.none(
                f"{rules.code} reciprocity is {recip.scope.value}; "
                f"not available for {transaction_type.value}"
            )

        overrides = matching_overrides(rules, origin, vehicle_class, gvw_lbs)
        applied = ",".join(o.origin for o in overrides) or None
        for override in overrides:
            denial = self._override_denial(
                rules, override, prior, as_of, transaction_type, origin_rules
            )
            if denial is not None:
                return self._denied(denial, applied)

        try:
            self._check_proof(rules, prior)
        except ReciprocityProofMissing as e:
            logger.warning("%s; crediting zero", e)
            return self._denied(str(e), applied)

        if recip.credit_basis is CreditBasis.STATE_TAX_ONLY and state_tax_owed is not None:
            credit = min(prior.amount, state_tax_owed)
            note = f"credit limited to {rules.code} state tax"
        elif cap_setting(rules, overrides):
            credit = min(prior.amount, tax_owed)
            note = f"credit for tax paid in {origin}, capped at {rules.code} tax"
        else:
            credit = prior.amount
            note = f"credit for tax paid in {origin}"

        credit = max(credit, ZERO)
        logger.debug("%s reciprocity credit %s from %s", rules.code, credit, origin)
        return ReciprocityOutcome(credit=credit, allowed=True, note=note, override=applied)

    @staticmethod
    def _override_denial(
        rules: JurisdictionTaxRules,
        override: ReciprocityOverride,
        prior: PriorTaxPaid,
        as_of: date,
        transaction_type: TransactionType,
        origin_rules: Optional[JurisdictionTaxRules],
    ) -> Optional[str]:
        """Reason ``override`` denies the credit, or None."""
        origin = prior.origin_jurisdiction.upper()
        if override.disallow_credit:
            return f"{rules.code} does not reciprocate with {origin}"
        if override.max_age_days is not None:
            if prior.paid_date is None:
                return (
                    f"{rules.code} credits tax paid within {override.max_age_days} days; "
                    "no paid date supplied"
                )
            age = (as_of - prior.paid_date).days
            if age < 0:
                return f"tax paid date {prior.paid_date} is in the future"
            if age > override.max_age_days:
                return (
                    f"tax paid in {origin} {age} days ago; {rules.code} allows "
                    f"{override.max_age_days}"
                )
        if override.requires_same_owner and not prior.same_owner:
            return f"{rules.code} requires the same owner who paid tax in {origin}"
        if override.requires_mutual_credit and not credits_origin(
            origin_rules, rules.code, transaction_type
        ):
            return f"{rules.code} requires mutual credit; {origin} does not credit {rules.code}"
        return None

    @staticmethod
    def _check_proof(rules: JurisdictionTaxRules, prior: PriorTaxPaid) -> None:
        if rules.reciprocity.require_proof and not prior.proof_provided:
            raise ReciprocityProofMissing(rules.code, prior.origin_jurisdiction)

    @staticmethod
    def _denied(note: str, override: Optional[str]) -> ReciprocityOutcome:
        return ReciprocityOutcome(credit=ZERO, allowed=False, note=note, override=override)
