"""
Special vehicle tax schemes.

Some jurisdictions replace the stacked state+local sales tax with a
title or privilege tax of their own. Each scheme is a handler with a
retail and a lease pipeline that fully owns the computation: no rate
stacking, no resolver lookup. The handler table is keyed by ``SchemeId``
and must cover every member of the enum.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from decimal import Decimal
from typing import Mapping, Optional

from auto_tax_engine.aggregator import (
    BreakdownLine,
    Computation,
    apply_cap,
    combine_lines,
    lease_schedule,
    tax_lines_for,
    total_of,
)
from auto_tax_engine.exceptions import InvalidSchemeDispatch
from auto_tax_engine.fees import FeeCategory
from auto_tax_engine.models import ZERO, TransactionInput
from auto_tax_engine.rules import (
    JurisdictionTaxRules,
    LeaseBase,
    SchemeId,
    TransactionType,
)
from auto_tax_engine.taxable_base import TaxableBase, TaxableBaseResolver

logger = logging.getLogger(__name__)


class SpecialSchemeHandler(ABC):
    """Retail and lease pipelines for one special scheme."""

    scheme_id: SchemeId
    required_extras: tuple[str, ...] = ("scheme_rate",)

    def missing_extras(self, rules: JurisdictionTaxRules) -> list[str]:
        """Names of required ``extras`` fields the record leaves unset."""
        return [
            name for name in self.required_extras
            if getattr(rules.extras, name) is None
        ]

    def rate(self, txn: TransactionInput, rules: JurisdictionTaxRules) -> Decimal:
        return rules.extras.scheme_rate or ZERO

    def components(
        self, txn: TransactionInput, rules: JurisdictionTaxRules
    ) -> list[tuple[str, Decimal]]:
        return [(self.scheme_id.value, self.rate(txn, rules))]

    @abstractmethod
    def retail(
        self, txn: TransactionInput, rules: JurisdictionTaxRules, bases: TaxableBaseResolver
    ) -> Computation:
        ...

    @abstractmethod
    def lease(
        self, txn: TransactionInput, rules: JurisdictionTaxRules, bases: TaxableBaseResolver
    ) -> Computation:
        ...

    # ------------------------------------------------------------------
    # Shared pipeline pieces
    # ------------------------------------------------------------------

    def _retail_result(
        self, txn: TransactionInput, rules: JurisdictionTaxRules, base: TaxableBase
    ) -> Computation:
        lines = apply_cap(
            tax_lines_for(base.amount, self.components(txn, rules)), rules.extras.tax_cap
        )
        total = total_of(lines)
        logger.debug("%s %s retail tax %s on %s", rules.code, self.scheme_id.value, total, base.amount)
        return Computation(
            scheme=self.scheme_id.value,
            taxable_base=base.amount,
            breakdown=base.lines,
            tax_lines=lines,
            total_tax=total,
            due_at_signing=total,
            notes=base.notes,
        )

    def _upfront_lease(
        self,
        txn: TransactionInput,
        rules: JurisdictionTaxRules,
        base: Decimal,
        breakdown: list[BreakdownLine],
    ) -> Computation:
        """Whole lease taxed once at signing; payments carry no tax."""
        base = max(base, ZERO)
        lines = apply_cap(tax_lines_for(base, self.components(txn, rules)), rules.extras.tax_cap)
        total = total_of(lines)
        terms = txn.lease
        schedule = lease_schedule(
            base, total, terms.monthly_payment, ZERO, terms.term_months,
            prepaid_periods=terms.term_months,
        )
        return Computation(
            scheme=f"{self.scheme_id.value}:LEASE",
            taxable_base=base,
            breakdown=tuple(breakdown),
            tax_lines=lines,
            total_tax=total,
            due_at_signing=total,
            schedule=schedule,
        )

    @staticmethod
    def _cap_cost_line(txn: TransactionInput) -> BreakdownLine:
        gross = txn.lease.gross_cap_cost
        return BreakdownLine("cap_cost", "GROSS_CAP_COST", gross, True, gross, "lease.gross_cap_cost")

    @staticmethod
    def _assessed_price(
        txn: TransactionInput, rules: JurisdictionTaxRules
    ) -> tuple[Decimal, str]:
        """Higher of price and assessed value when the record taxes assessed value."""
        if rules.extras.use_assessed_value and txn.assessed_value is not None:
            if txn.assessed_value > txn.price:
                return txn.assessed_value, "extras.use_assessed_value (assessed value)"
            return txn.price, "extras.use_assessed_value (price)"
        return txn.price, "price"


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------


class TitleAdValoremTax(SpecialSchemeHandler):
    """One-time title tax on fair market value, replacing sales tax."""

    scheme_id = SchemeId.TAVT

    def retail(self, txn, rules, bases):
        price, rule = self._assessed_price(txn, rules)
        base = bases.resolve(
            txn, price=price, price_rule=rule, include_fees=False, allow_rebates=False
        )
        return self._retail_result(txn, rules, base)

    def lease(self, txn, rules, bases):
        if rules.extras.lease_base is LeaseBase.AGREED_VALUE:
            amount = txn.price
            line = BreakdownLine(
                "cap_cost", "AGREED_VALUE", amount, True, amount, "extras.lease_base=AGREED_VALUE"
            )
        else:
            amount = txn.lease.gross_cap_cost
            line = self._cap_cost_line(txn)
        return self._upfront_lease(txn, rules, amount, [line])


class HighwayUseTax(SpecialSchemeHandler):
    """Title-time highway use tax on the vehicle's net price."""

    scheme_id = SchemeId.HUT

    def retail(self, txn, rules, bases):
        base = bases.resolve(txn, include_fees=False, tax_negative_equity=False)
        return self._retail_result(txn, rules, base)

    def lease(self, txn, rules, bases):
        return self._upfront_lease(
            txn, rules, txn.lease.gross_cap_cost, [self._cap_cost_line(txn)]
        )


class GeneralExciseTax(SpecialSchemeHandler):
    """Gross receipts tax: no trade-in credit, county surcharge on top."""

    scheme_id = SchemeId.GET

    def components(self, txn, rules):
        components = [("GET", rules.extras.scheme_rate or ZERO)]
        county = (txn.jurisdiction.county or "").strip().upper()
        surcharge = rules.extras.county_surcharges.get(county)
        if surcharge:
            components.append(("COUNTY_SURCHARGE", surcharge))
        return components

    def retail(self, txn, rules, bases):
        base = bases.resolve(txn, allow_trade_in=False)
        return self._retail_result(txn, rules, base)

    def lease(self, txn, rules, bases):
        """Each payment is gross income to the lessor, taxed as received."""
        terms = txn.lease
        context = TransactionType.LEASE
        fee_lines = bases.item_lines(
            txn.accessories, context, "accessory", fallback=FeeCategory.ACCESSORY
        ) + bases.item_lines(txn.fees, context, "fee")
        upfront = ZERO
        if rules.lease_rules.tax_fees_upfront:
            upfront = sum((line.contribution for line in fee_lines), ZERO)

        components = self.components(txn, rules)
        signing = tax_lines_for(upfront, components)
        per_payment = tax_lines_for(terms.monthly_payment, components)
        payment_tax = total_of(per_payment)
        schedule = lease_schedule(
            upfront, total_of(signing), terms.monthly_payment, payment_tax, terms.term_months
        )
        lines = combine_lines(signing, per_payment, terms.term_months)
        payment_line = BreakdownLine(
            "payment", "MONTHLY_PAYMENT", terms.monthly_payment, True,
            terms.monthly_payment, "lease.monthly_payment",
        )
        return Computation(
            scheme="GET:LEASE",
            taxable_base=upfront + terms.monthly_payment * terms.term_months,
            breakdown=tuple(fee_lines) + (payment_line,),
            tax_lines=lines,
            total_tax=sum((p.tax for p in schedule), ZERO),
            due_at_signing=schedule[0].tax,
            schedule=schedule,
        )


class PrivilegeTax(SpecialSchemeHandler):
    """Privilege tax on titling, rated by vehicle class where the record says so."""

    scheme_id = SchemeId.PRIVILEGE_TAX

    def rate(self, txn, rules):
        if txn.vehicle_class:
            rate = rules.extras.vehicle_class_rates.get(txn.vehicle_class.upper())
            if rate is not None:
                return rate
        return rules.extras.scheme_rate or ZERO

    def retail(self, txn, rules, bases):
        price, rule = self._assessed_price(txn, rules)
        base = bases.resolve(txn, price=price, price_rule=rule, include_fees=False)
        return self._retail_result(txn, rules, base)

    def lease(self, txn, rules, bases):
        return self._upfront_lease(
            txn, rules, txn.lease.gross_cap_cost, [self._cap_cost_line(txn)]
        )


class CappedInfrastructureFee(SpecialSchemeHandler):
    """Infrastructure maintenance fee: a flat rate with a hard dollar cap."""

    scheme_id = SchemeId.IMF_CAPPED
    required_extras = ("scheme_rate", "tax_cap")

    def retail(self, txn, rules, bases):
        return self._retail_result(txn, rules, bases.resolve(txn))

    def lease(self, txn, rules, bases):
        trade = txn.lease_trade_in_value
        lines = [self._cap_cost_line(txn)]
        if trade > 0:
            lines.append(
                BreakdownLine("trade_in", "TRADE_IN", trade, False, -trade, "lease trade-in credit")
            )
        return self._upfront_lease(txn, rules, txn.lease.gross_cap_cost - trade, lines)


HANDLERS: dict[SchemeId, SpecialSchemeHandler] = {
    handler.scheme_id: handler
    for handler in (
        TitleAdValoremTax(),
        HighwayUseTax(),
        GeneralExciseTax(),
        PrivilegeTax(),
        CappedInfrastructureFee(),
    )
}

_unhandled = set(SchemeId) - set(HANDLERS)
if _unhandled:
    raise RuntimeError(f"no handler for schemes: {sorted(s.value for s in _unhandled)}")


def handler_for(
    jurisdiction: str,
    scheme_id: Optional[SchemeId],
    handlers: Mapping[SchemeId, SpecialSchemeHandler] = HANDLERS,
) -> SpecialSchemeHandler:
    """Handler for a special scheme, or ``InvalidSchemeDispatch``."""
    handler = handlers.get(scheme_id) if scheme_id is not None else None
    if handler is None:
        raise InvalidSchemeDispatch(jurisdiction, str(getattr(scheme_id, "value", scheme_id)))
    return handler


def scheme_problems(
    rules: JurisdictionTaxRules,
    handlers: Mapping[SchemeId, SpecialSchemeHandler] = HANDLERS,
) -> list[str]:
    """Load-time check that every scheme a record dispatches to can run."""
    problems = []
    for transaction_type in TransactionType:
        scheme_id = rules.scheme_for(transaction_type)
        if scheme_id is None:
            continue
        handler = handlers.get(scheme_id)
        if handler is None:
            problems.append(f"no handler for {transaction_type.value} scheme {scheme_id.value}")
            continue
        for name in handler.missing_extras(rules):
            problems.append(f"{scheme_id.value} requires extras.{name}")
    return problems
