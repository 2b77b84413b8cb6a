"""
Auto tax engine facade.

Wires the registry, calculators, reciprocity and aggregation into one
entry point for single and batch computation:

    engine = TaxEngine(rate_resolver=resolver)
    result = engine.compute(txn)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Iterable, Optional, Union

from auto_tax_engine.aggregator import ResultAggregator, TaxComputationResult
from auto_tax_engine.config import EngineSettings
from auto_tax_engine.exceptions import AutoTaxError, RulesNeedReview
from auto_tax_engine.lease import LeaseTaxCalculator
from auto_tax_engine.models import ZERO, TransactionInput
from auto_tax_engine.rates import JurisdictionRateResolver
from auto_tax_engine.reciprocity import ReciprocityEngine
from auto_tax_engine.registry import RuleRegistry
from auto_tax_engine.retail import RetailTaxCalculator
from auto_tax_engine.rules import Confidence, JurisdictionTaxRules, TransactionType

logger = logging.getLogger(__name__)

TransactionLike = Union[TransactionInput, dict]


@dataclass
class BatchResult:
    """Aggregated result for a batch of transactions."""

    results: list[TaxComputationResult]
    total_tax: Decimal
    total_credit: Decimal
    net_tax_due: Decimal
    transaction_count: int
    review_count: int
    jurisdiction_breakdown: dict[str, Decimal]
    errors: list[str] = field(default_factory=list)
    failures: list[AutoTaxError] = field(default_factory=list)


class TaxEngine:
    """
    Vehicle sales and lease tax engine.

    Holds a rule registry and an optional rate resolver (needed only for
    jurisdictions that stack local rates). Computation is pure: the same
    input against the same registry always yields the same result.
    """

    def __init__(
        self,
        registry: Optional[RuleRegistry] = None,
        rate_resolver: Optional[JurisdictionRateResolver] = None,
        settings: Optional[EngineSettings] = None,
    ) -> None:
        self.settings = settings or EngineSettings.from_env()
        self.registry = registry or RuleRegistry.load(
            self.settings.rules_dir, strict=self.settings.strict_rules
        )
        self.rate_resolver = rate_resolver
        self.reciprocity = ReciprocityEngine()
        self.aggregator = ResultAggregator()

    def compute(self, transaction: TransactionLike) -> TaxComputationResult:
        """Compute tax for a single transaction."""
        txn = (
            transaction
            if isinstance(transaction, TransactionInput)
            else TransactionInput.from_dict(transaction)
        )
        txn.validate()

        rules = self.registry.lookup(txn.jurisdiction_code)
        if rules.confidence is Confidence.NEEDS_REVIEW:
            if self.settings.needs_review_policy == "reject":
                raise RulesNeedReview(rules.code, rules.review_flags)
            logger.warning(
                "%s computed on unverified rules for %s: %s",
                txn.transaction_id, rules.code, "; ".join(rules.review_flags),
            )

        if txn.transaction_type is TransactionType.LEASE:
            calculator = LeaseTaxCalculator(rules, self.rate_resolver)
        else:
            calculator = RetailTaxCalculator(rules, self.rate_resolver)
        computation = calculator.compute(txn)

        reciprocity = self.reciprocity.compute_credit(
            rules,
            computation.due_at_signing,
            txn.prior_tax,
            as_of=txn.transaction_date,
            transaction_type=txn.transaction_type,
            state_tax_owed=computation.state_tax_at_signing,
            vehicle_class=txn.vehicle_class,
            gvw_lbs=txn.gvw_lbs,
            origin_rules=self._origin_rules(txn),
        )
        result = self.aggregator.aggregate(txn, rules, computation, reciprocity)
        logger.debug(
            "%s %s %s: tax %s, credit %s, net %s",
            txn.transaction_id, rules.code, result.scheme,
            result.total_tax, result.reciprocity_credit, result.net_tax_due,
        )
        return result

    def compute_batch(self, transactions: Iterable[TransactionLike]) -> BatchResult:
        """
        Compute tax for a batch of transactions.

        Engine errors are collected per transaction; any other exception
        propagates.
        """
        results: list[TaxComputationResult] = []
        errors: list[str] = []
        failures: list[AutoTaxError] = []
        breakdown: dict[str, Decimal] = {}

        for i, transaction in enumerate(transactions):
            try:
                result = self.compute(transaction)
            except AutoTaxError as e:
                txn_id = (
                    transaction.transaction_id
                    if isinstance(transaction, TransactionInput)
                    else str(transaction.get("transaction_id", f"#{i}"))
                    if isinstance(transaction, dict)
                    else f"#{i}"
                )
                errors.append(f"{txn_id}: [{e.code}] {e}")
                failures.append(e)
                continue
            results.append(result)
            breakdown[result.jurisdiction] = (
                breakdown.get(result.jurisdiction, ZERO) + result.net_tax_due
            )

        if errors:
            logger.info(
                "Batch finished with %d errors out of %d",
                len(errors), len(errors) + len(results),
            )
        return BatchResult(
            results=results,
            total_tax=sum((r.total_tax for r in results), ZERO),
            total_credit=sum((r.reciprocity_credit for r in results), ZERO),
            net_tax_due=sum((r.net_tax_due for r in results), ZERO),
            transaction_count=len(results),
            review_count=sum(1 for r in results if r.confidence is Confidence.NEEDS_REVIEW),
            jurisdiction_breakdown=breakdown,
            errors=errors,
            failures=failures,
        )

    def _origin_rules(self, txn: TransactionInput) -> Optional[JurisdictionTaxRules]:
        """Usable record of the jurisdiction the prior tax was paid to, if any."""
        if txn.prior_tax is None:
            return None
        origin = txn.prior_tax.origin_jurisdiction
        return self.registry.lookup(origin) if origin in self.registry else None

    def reload_rules(self) -> RuleRegistry:
        """Swap in a freshly loaded registry; computations in flight keep the old one."""
        self.registry = self.registry.reload()
        return self.registry
