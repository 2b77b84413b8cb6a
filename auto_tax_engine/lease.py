"""
Lease tax calculation.

Three methods are supported:

- MONTHLY: each payment is taxed as it falls due. Cap reductions are
  taxed once at signing when ``tax_cap_reduction_upfront`` is set, and
  taxable fees when ``tax_fees_upfront`` is set.
- FULL_UPFRONT: the capitalized cost (plus taxable cap reductions and
  fees, less any trade-in credit) is taxed once at inception; payments
  carry no tax.
- HYBRID: cap reductions, the first payment and fees are taxed at
  signing; payments 2..n are taxed monthly.

Every method produces a per-period schedule (period 0 is signing).
"""

from __future__ import annotations

import dataclasses
import logging
from decimal import Decimal
from typing import Callable, Optional

from auto_tax_engine.aggregator import (
    BreakdownLine,
    Computation,
    TaxLine,
    apply_cap,
    combine_lines,
    lease_schedule,
    tax_lines_for,
    total_of,
)
from auto_tax_engine.exceptions import InvalidSchemeDispatch
from auto_tax_engine.fees import FeeCategory
from auto_tax_engine.models import ZERO, CapReductionKind, TransactionInput
from auto_tax_engine.rates import JurisdictionRateResolver, rate_components
from auto_tax_engine.rules import (
    JurisdictionTaxRules,
    LeaseMethod,
    LeaseRebateBehavior,
    LeaseTradeInCredit,
    RebateSource,
    TransactionType,
)
from auto_tax_engine.schemes import handler_for
from auto_tax_engine.taxable_base import TaxableBaseResolver

logger = logging.getLogger(__name__)

Components = list[tuple[str, Decimal]]


class LeaseTaxCalculator:
    """Computes lease tax for one jurisdiction's rule record."""

    def __init__(
        self,
        rules: JurisdictionTaxRules,
        rate_resolver: Optional[JurisdictionRateResolver] = None,
        bases: Optional[TaxableBaseResolver] = None,
    ) -> None:
        self.rules = rules
        self.lease_rules = rules.lease_rules
        self.rate_resolver = rate_resolver
        self.bases = bases or TaxableBaseResolver(rules)

    def compute(self, txn: TransactionInput) -> Computation:
        scheme_id = self.rules.lease_scheme_id
        if scheme_id is not None:
            logger.debug("%s lease dispatched to %s", self.rules.code, scheme_id.value)
            return handler_for(self.rules.code, scheme_id).lease(txn, self.rules, self.bases)

        method = self.lease_rules.method
        pipeline = _PIPELINES.get(method)
        if pipeline is None:
            raise InvalidSchemeDispatch(self.rules.code, f"lease method {method.value}")

        components = rate_components(
            self.rules.lease_rate_scheme,
            self.rules.code,
            txn.jurisdiction,
            self.rules.extras.state_rate,
            self.rate_resolver,
        )
        return pipeline(self, txn, [(c.label, c.rate) for c in components])

    # ------------------------------------------------------------------
    # Signing-time items
    # ------------------------------------------------------------------

    def trade_in_credit(self, value: Decimal) -> tuple[Decimal, str]:
        behavior = self.lease_rules.trade_in_credit
        if behavior is LeaseTradeInCredit.FOLLOW_RETAIL:
            credit, rule = self.bases.trade_in_credit(value)
            return credit, f"lease_rules.trade_in_credit=FOLLOW_RETAIL ({rule})"
        if behavior is LeaseTradeInCredit.FULL:
            return value, "lease_rules.trade_in_credit=FULL"
        if behavior is LeaseTradeInCredit.CAP_COST_ONLY:
            return value, "lease_rules.trade_in_credit=CAP_COST_ONLY"
        return ZERO, "lease_rules.trade_in_credit=NONE"

    def trade_in_line(self, txn: TransactionInput, upfront_method: bool) -> Optional[BreakdownLine]:
        """
        Trade equity applied to the lease.

        The uncredited part is a taxable cap reduction. Under FULL_UPFRONT
        the credited part is also deducted from the capitalized cost; the
        other methods realize the credit through lower taxed payments.
        """
        value = txn.lease_trade_in_value
        if value <= 0:
            return None
        credit, rule = self.trade_in_credit(value)
        if self.lease_rules.trade_in_credit is LeaseTradeInCredit.CAP_COST_ONLY:
            contribution = ZERO
        elif upfront_method:
            contribution = (value - credit) - credit
        else:
            contribution = value - credit
        return BreakdownLine(
            category="trade_in",
            code="TRADE_IN",
            amount=value,
            taxable=value > credit,
            contribution=contribution,
            rule=rule,
        )

    def rebate_taxable(self, source: Optional[RebateSource]) -> tuple[bool, str]:
        behavior = self.lease_rules.rebate_behavior
        if behavior is LeaseRebateBehavior.ALWAYS_TAXABLE:
            return True, "lease_rules.rebate_behavior=ALWAYS_TAXABLE"
        if behavior is LeaseRebateBehavior.ALWAYS_NON_TAXABLE:
            return False, "lease_rules.rebate_behavior=ALWAYS_NON_TAXABLE"
        source = source or RebateSource.MANUFACTURER
        return (
            self.rules.rebate_rules.for_source(source).taxable,
            f"lease_rules.rebate_behavior=FOLLOW_RETAIL (rebate_rules.{source.value.lower()})",
        )

    def cap_reduction_lines(self, txn: TransactionInput) -> list[BreakdownLine]:
        """Cash and rebate cap reductions; trade-in equity is itemized separately."""
        lines = []
        for reduction in txn.lease.cap_reductions:
            if reduction.kind is CapReductionKind.TRADE_IN:
                continue
            if reduction.kind is CapReductionKind.CASH:
                taxable, rule = True, "cash cap reduction"
                code = "CASH_CAP_REDUCTION"
            else:
                taxable, rule = self.rebate_taxable(reduction.rebate_source)
                code = f"{(reduction.rebate_source or RebateSource.MANUFACTURER).value}_REBATE"
            lines.append(
                BreakdownLine(
                    category="cap_reduction",
                    code=code,
                    amount=reduction.amount,
                    taxable=taxable,
                    contribution=reduction.amount if taxable else ZERO,
                    rule=rule,
                )
            )
        return lines

    def fee_lines(self, txn: TransactionInput) -> list[BreakdownLine]:
        context = TransactionType.LEASE
        return self.bases.item_lines(
            txn.accessories, context, "accessory", fallback=FeeCategory.ACCESSORY
        ) + self.bases.item_lines(txn.fees, context, "fee")

    @staticmethod
    def _deferred(lines: list[BreakdownLine], reason: str) -> list[BreakdownLine]:
        """Keep lines in the audit trail without a signing-time contribution."""
        return [
            dataclasses.replace(line, contribution=ZERO, rule=f"{line.rule}; {reason}")
            for line in lines
        ]

    def _payment_line(self, txn: TransactionInput) -> BreakdownLine:
        payment = txn.lease.monthly_payment
        return BreakdownLine(
            "payment", "MONTHLY_PAYMENT", payment, True, payment, "lease.monthly_payment"
        )

    # ------------------------------------------------------------------
    # Methods
    # ------------------------------------------------------------------

    def _monthly(self, txn: TransactionInput, components: Components) -> Computation:
        rules = self.lease_rules
        reductions = self.cap_reduction_lines(txn)
        trade = self.trade_in_line(txn, upfront_method=False)
        if trade is not None:
            reductions.append(trade)
        if not rules.tax_cap_reduction_upfront:
            reductions = self._deferred(
                reductions, "lease_rules.tax_cap_reduction_upfront=false"
            )
        fees = self.fee_lines(txn)
        if not rules.tax_fees_upfront:
            fees = self._deferred(fees, "capitalized into payments")

        signing_lines = reductions + fees
        upfront = max(sum((line.contribution for line in signing_lines), ZERO), ZERO)
        return self._periodic(
            txn, components, "LEASE:MONTHLY", upfront, signing_lines, prepaid_periods=0
        )

    def _hybrid(self, txn: TransactionInput, components: Components) -> Computation:
        reductions = self.cap_reduction_lines(txn)
        trade = self.trade_in_line(txn, upfront_method=False)
        if trade is not None:
            reductions.append(trade)
        signing_lines = reductions + self.fee_lines(txn)
        first_payment = txn.lease.monthly_payment
        upfront = max(
            sum((line.contribution for line in signing_lines), ZERO) + first_payment, ZERO
        )
        return self._periodic(
            txn, components, "LEASE:HYBRID", upfront, signing_lines, prepaid_periods=1
        )

    def _full_upfront(self, txn: TransactionInput, components: Components) -> Computation:
        terms = txn.lease
        gross = terms.gross_cap_cost
        lines = [
            BreakdownLine("cap_cost", "GROSS_CAP_COST", gross, True, gross, "lease.gross_cap_cost")
        ]
        lines += self.cap_reduction_lines(txn)
        trade = self.trade_in_line(txn, upfront_method=True)
        if trade is not None:
            lines.append(trade)
        negative_equity = txn.effective_negative_equity
        if negative_equity > 0:
            lines.append(
                self.bases.negative_equity_line(
                    negative_equity,
                    self.lease_rules.negative_equity_taxable,
                    "lease_rules.negative_equity_taxable",
                )
            )
        lines += self.fee_lines(txn)

        base = max(sum((line.contribution for line in lines), ZERO), ZERO)
        tax_lines = apply_cap(tax_lines_for(base, components), self.rules.extras.tax_cap)
        total = total_of(tax_lines)
        schedule = lease_schedule(
            base, total, terms.monthly_payment, ZERO, terms.term_months,
            prepaid_periods=terms.term_months,
        )
        logger.debug("%s full-upfront lease tax %s on %s", self.rules.code, total, base)
        return Computation(
            scheme="LEASE:FULL_UPFRONT",
            taxable_base=base,
            breakdown=tuple(lines),
            tax_lines=tax_lines,
            total_tax=total,
            due_at_signing=total,
            schedule=schedule,
        )

    def _periodic(
        self,
        txn: TransactionInput,
        components: Components,
        scheme: str,
        upfront: Decimal,
        signing_lines: list[BreakdownLine],
        prepaid_periods: int,
    ) -> Computation:
        terms = txn.lease
        payments = terms.term_months - prepaid_periods
        signing = tax_lines_for(upfront, components)
        per_payment = tax_lines_for(terms.monthly_payment, components)
        schedule = lease_schedule(
            upfront,
            total_of(signing),
            terms.monthly_payment,
            total_of(per_payment),
            terms.term_months,
            prepaid_periods=prepaid_periods,
            cap=self.rules.extras.tax_cap,
        )
        total = sum((p.tax for p in schedule), ZERO)
        tax_lines = combine_lines(signing, per_payment, payments)
        uncapped = sum((t.amount for t in tax_lines), ZERO)
        if total < uncapped:
            base = tax_lines[0].base if tax_lines else ZERO
            tax_lines += (TaxLine("CAP", ZERO, base, total - uncapped),)

        logger.debug(
            "%s %s lease: %s at signing, %s per payment",
            self.rules.code, scheme, schedule[0].tax, total_of(per_payment),
        )
        return Computation(
            scheme=scheme,
            taxable_base=upfront + terms.monthly_payment * payments,
            breakdown=tuple(signing_lines) + (self._payment_line(txn),),
            tax_lines=tax_lines,
            total_tax=total,
            due_at_signing=schedule[0].tax,
            schedule=schedule,
        )


_PIPELINES: dict[LeaseMethod, Callable[..., Computation]] = {
    LeaseMethod.MONTHLY: LeaseTaxCalculator._monthly,
    LeaseMethod.FULL_UPFRONT: LeaseTaxCalculator._full_upfront,
    LeaseMethod.HYBRID: LeaseTaxCalculator._hybrid,
}
