"""
Result assembly.

Calculators produce a ``Computation`` (base, per-line audit, tax lines,
lease schedule). ``ResultAggregator`` combines it with the reciprocity
outcome into the immutable ``TaxComputationResult`` handed back to the
caller. Every number in a result can be traced to the rule that
produced it through ``breakdown[].rule`` and ``tax_lines[].label``.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, replace
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, Iterable, Optional

from auto_tax_engine.models import ZERO, TransactionInput, round_cents
from auto_tax_engine.rules import Confidence, JurisdictionTaxRules, SchemeId, TransactionType

# State-imposed tax lines: the stacked state rate and every special scheme
# (a scheme's county surcharge carries its own label and stays local).
STATE_LEVEL_LABELS = frozenset({"STATE"} | {scheme.value for scheme in SchemeId})


@dataclass(frozen=True)
class BreakdownLine:
    """One input amount and what it contributed to the taxable base."""

    category: str  # price, accessory, fee, trade_in, rebate, ...
    code: str
    amount: Decimal
    taxable: bool
    contribution: Decimal  # signed effect on the base
    rule: str


@dataclass(frozen=True)
class TaxLine:
    """Tax from one rate component (or a cap adjustment) on a base."""

    label: str
    rate: Decimal
    base: Decimal
    amount: Decimal


@dataclass(frozen=True)
class PeriodTax:
    """Lease tax due in one period; period 0 is lease signing."""

    period: int
    taxable_amount: Decimal
    tax: Decimal


@dataclass(frozen=True)
class ReciprocityOutcome:
    credit: Decimal
    allowed: bool
    note: str
    override: Optional[str] = None

    @classmethod
    def none(cls, note: str) -> "ReciprocityOutcome":
        return cls(credit=ZERO, allowed=False, note=note)


@dataclass(frozen=True)
class Computation:
    """Intermediate output of a retail, lease, or special-scheme pipeline."""

    scheme: str
    taxable_base: Decimal
    breakdown: tuple[BreakdownLine, ...]
    tax_lines: tuple[TaxLine, ...]
    total_tax: Decimal
    due_at_signing: Decimal
    schedule: tuple[PeriodTax, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def state_tax(self) -> Decimal:
        """Tax attributable to state-level components, after any cap."""
        state = sum(
            (t.amount for t in self.tax_lines if t.label in STATE_LEVEL_LABELS), ZERO
        )
        return min(state, self.total_tax)

    @property
    def state_tax_at_signing(self) -> Decimal:
        """State share of the tax due at signing."""
        if self.total_tax <= 0:
            return ZERO
        return round_cents(self.state_tax * self.due_at_signing / self.total_tax)

    def line(self, code: str) -> Optional[BreakdownLine]:
        return find_line(self.breakdown, code)


def find_line(breakdown: Iterable[BreakdownLine], code: str) -> Optional[BreakdownLine]:
    """First breakdown line for ``code``."""
    for item in breakdown:
        if item.code == code:
            return item
    return None


def tax_lines_for(
    base: Decimal, components: Iterable[tuple[str, Decimal]]
) -> tuple[TaxLine, ...]:
    """Apply each (label, rate) to ``base``, rounding each line to cents."""
    return tuple(
        TaxLine(label=label, rate=rate, base=base, amount=round_cents(base * rate))
        for label, rate in components
    )


def apply_cap(
    lines: tuple[TaxLine, ...], cap: Optional[Decimal], label: str = "CAP"
) -> tuple[TaxLine, ...]:
    """
    Bound the total of ``lines`` by ``cap``.

    The reduction is recorded as its own negative adjustment line so the
    uncapped computation stays visible in the audit trail.
    """
    total = sum((t.amount for t in lines), ZERO)
    if cap is None or total <= cap:
        return lines
    base = lines[0].base if lines else ZERO
    return lines + (TaxLine(label=label, rate=ZERO, base=base, amount=cap - total),)


def total_of(lines: Iterable[TaxLine]) -> Decimal:
    return max(sum((t.amount for t in lines), ZERO), ZERO)


def combine_lines(
    upfront: tuple[TaxLine, ...],
    per_payment: tuple[TaxLine, ...],
    payments: int,
) -> tuple[TaxLine, ...]:
    """Fold signing-time and per-payment lines into one line per component."""
    combined = []
    for up, pay in zip(upfront, per_payment):
        combined.append(
            TaxLine(
                label=up.label,
                rate=up.rate,
                base=up.base + pay.base * payments,
                amount=up.amount + pay.amount * payments,
            )
        )
    return tuple(combined)


def lease_schedule(
    signing_base: Decimal,
    signing_tax: Decimal,
    payment: Decimal,
    payment_tax: Decimal,
    term: int,
    prepaid_periods: int = 0,
    cap: Optional[Decimal] = None,
) -> tuple[PeriodTax, ...]:
    """
    Per-period lease tax: period 0 is signing, 1..term are payments.

    Periods up to ``prepaid_periods`` were already taxed at signing and
    carry no tax. With a ``cap``, cumulative tax stops once it is reached.
    """
    remaining = cap

    def take(tax: Decimal) -> Decimal:
        nonlocal remaining
        if remaining is None:
            return tax
        tax = min(tax, remaining)
        remaining -= tax
        return tax

    schedule = [PeriodTax(0, signing_base, take(signing_tax))]
    for period in range(1, term + 1):
        if period <= prepaid_periods:
            schedule.append(PeriodTax(period, ZERO, ZERO))
        else:
            schedule.append(PeriodTax(period, payment, take(payment_tax)))
    return tuple(schedule)


@dataclass(frozen=True)
class TaxComputationResult:
    """Final, immutable tax result for one transaction."""

    transaction_id: str
    jurisdiction: str
    rules_version: int
    transaction_type: TransactionType
    scheme: str
    taxable_base: Decimal
    tax_lines: tuple[TaxLine, ...]
    breakdown: tuple[BreakdownLine, ...]
    total_tax: Decimal
    reciprocity: ReciprocityOutcome
    net_tax_due: Decimal
    amount_financed: Decimal
    schedule: tuple[PeriodTax, ...]
    confidence: Confidence
    review_flags: tuple[str, ...] = ()
    notes: tuple[str, ...] = ()

    @property
    def reciprocity_credit(self) -> Decimal:
        return self.reciprocity.credit

    @property
    def effective_rate(self) -> Decimal:
        if self.taxable_base <= 0:
            return ZERO
        return (self.total_tax / self.taxable_base).quantize(Decimal("0.000001"))

    @property
    def monthly_tax(self) -> Decimal:
        """Tax on each regular lease payment (zero for retail)."""
        payments = [p.tax for p in self.schedule if p.period > 0 and p.taxable_amount > 0]
        return payments[0] if payments else ZERO

    def line(self, code: str) -> Optional[BreakdownLine]:
        """First breakdown line for ``code``."""
        return find_line(self.breakdown, code)

    def to_dict(self) -> dict[str, Any]:
        """Canonical JSON-safe mapping (Decimals as strings)."""
        return _canonical(self)

    def to_json(self) -> str:
        """Byte-stable JSON rendering of ``to_dict``."""
        return json.dumps(self.to_dict(), sort_keys=True, separators=(",", ":"))


def _canonical(obj: Any) -> Any:
    if isinstance(obj, Decimal):
        return str(obj)
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, date):
        return obj.isoformat()
    if isinstance(obj, (list, tuple)):
        return [_canonical(i) for i in obj]
    if isinstance(obj, dict):
        return {str(k): _canonical(v) for k, v in obj.items()}
    if hasattr(obj, "__dataclass_fields__"):
        data = {name: _canonical(getattr(obj, name)) for name in obj.__dataclass_fields__}
        if isinstance(obj, TaxComputationResult):
            data["reciprocity_credit"] = _canonical(obj.reciprocity_credit)
        return data
    return obj


class ResultAggregator:
    """Combines a computation and reciprocity outcome into a final result."""

    def aggregate(
        self,
        txn: TransactionInput,
        rules: JurisdictionTaxRules,
        computation: Computation,
        reciprocity: ReciprocityOutcome,
    ) -> TaxComputationResult:
        total_tax = max(round_cents(computation.total_tax), ZERO)
        credit = round_cents(reciprocity.credit)
        if credit != reciprocity.credit:
            reciprocity = replace(reciprocity, credit=credit)
        net_due = max(total_tax - credit, ZERO)

        return TaxComputationResult(
            transaction_id=txn.transaction_id,
            jurisdiction=rules.code,
            rules_version=rules.version,
            transaction_type=txn.transaction_type,
            scheme=computation.scheme,
            taxable_base=max(round_cents(computation.taxable_base), ZERO),
            tax_lines=computation.tax_lines,
            breakdown=computation.breakdown,
            total_tax=total_tax,
            reciprocity=reciprocity,
            net_tax_due=net_due,
            amount_financed=self._amount_financed(txn, net_due),
            schedule=computation.schedule,
            confidence=rules.confidence,
            review_flags=rules.review_flags,
            notes=computation.notes,
        )

    @staticmethod
    def _amount_financed(txn: TransactionInput, net_tax_due: Decimal) -> Decimal:
        if txn.lease is not None:
            return round_cents(txn.lease.adjusted_cap_cost)
        gross = (
            txn.price
            + sum((a.amount for a in txn.accessories), ZERO)
            + sum((f.amount for f in txn.fees), ZERO)
            + txn.effective_negative_equity
            + net_tax_due
        )
        credits = txn.trade_in_value + txn.rebate_total() + txn.cash_down
        return round_cents(max(gross - credits, ZERO))
