"""
Retail (purchase) tax calculation.

Standard schemes tax the resolved base at each rate component in force
(state only, state plus local stack, or local only). A jurisdiction-level
``extras.tax_cap`` bounds the final tax. Special schemes are handed to
their handler untouched.
"""

from __future__ import annotations

import logging
from typing import Optional

from auto_tax_engine.aggregator import Computation, apply_cap, tax_lines_for, total_of
from auto_tax_engine.models import TransactionInput
from auto_tax_engine.rates import JurisdictionRateResolver, rate_components
from auto_tax_engine.rules import JurisdictionTaxRules
from auto_tax_engine.schemes import handler_for
from auto_tax_engine.taxable_base import TaxableBaseResolver

logger = logging.getLogger(__name__)


class RetailTaxCalculator:
    """Computes purchase tax for one jurisdiction's rule record."""

    def __init__(
        self,
        rules: JurisdictionTaxRules,
        rate_resolver: Optional[JurisdictionRateResolver] = None,
        bases: Optional[TaxableBaseResolver] = None,
    ) -> None:
        self.rules = rules
        self.rate_resolver = rate_resolver
        self.bases = bases or TaxableBaseResolver(rules)

    def compute(self, txn: TransactionInput) -> Computation:
        scheme_id = self.rules.retail_scheme_id
        if scheme_id is not None:
            logger.debug("%s retail dispatched to %s", self.rules.code, scheme_id.value)
            return handler_for(self.rules.code, scheme_id).retail(txn, self.rules, self.bases)

        scheme = self.rules.retail_rate_scheme
        base = self.bases.resolve(txn)
        components = rate_components(
            scheme,
            self.rules.code,
            txn.jurisdiction,
            self.rules.extras.state_rate,
            self.rate_resolver,
        )
        lines = apply_cap(
            tax_lines_for(base.amount, [(c.label, c.rate) for c in components]),
            self.rules.extras.tax_cap,
        )
        total = total_of(lines)
        logger.debug("%s retail tax %s on base %s", self.rules.code, total, base.amount)

        return Computation(
            scheme=scheme.value,
            taxable_base=base.amount,
            breakdown=base.lines,
            tax_lines=lines,
            total_tax=total,
            due_at_signing=total,
            notes=base.notes,
        )
