"""
Normalized transaction input for the auto tax engine.

A ``TransactionInput`` is built once per pricing request, usually by the
deal/scenario persistence layer through ``TransactionInput.from_dict``.
All money is ``Decimal``; all records are frozen so the same input always
produces the same result.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal, ROUND_HALF_UP
from enum import Enum
from typing import Any, Mapping, Optional

from auto_tax_engine.exceptions import MalformedTransaction
from auto_tax_engine.rules import RebateSource, TransactionType

ZERO = Decimal("0")
CENT = Decimal("0.01")


def round_cents(amount: Decimal) -> Decimal:
    """Round a money amount to the nearest cent, halves away from zero."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def _money(value: Any) -> Decimal:
    amount = Decimal(str(value))
    if not amount.is_finite():
        raise ValueError(f"amount must be a finite number (got {value!r})")
    return amount


def _opt_money(value: Any) -> Optional[Decimal]:
    return None if value is None else _money(value)


def _date(value: Any) -> Optional[date]:
    if value is None or isinstance(value, date):
        return value
    return date.fromisoformat(str(value))


def _flag(value: Any) -> bool:
    """Strict boolean: real booleans or the strings true/false/1/0."""
    if value is None:
        return False
    if isinstance(value, bool):
        return value
    text = str(value).strip().lower()
    if text in ("true", "1"):
        return True
    if text in ("false", "0"):
        return False
    raise ValueError(f"expected true or false (got {value!r})")


class CapReductionKind(Enum):
    CASH = "CASH"
    REBATE = "REBATE"
    TRADE_IN = "TRADE_IN"


@dataclass(frozen=True)
class Jurisdiction:
    """Where the buyer registers the vehicle and where it was sold."""

    state_code: str
    zip_code: Optional[str] = None
    county: Optional[str] = None
    city: Optional[str] = None


@dataclass(frozen=True)
class LineItem:
    """A fee, F&I product, or accessory on the deal."""

    code: str
    amount: Decimal
    description: str = ""


@dataclass(frozen=True)
class TradeIn:
    value: Decimal
    payoff: Decimal = ZERO

    @property
    def negative_equity(self) -> Decimal:
        return max(self.payoff - self.value, ZERO)


@dataclass(frozen=True)
class Rebate:
    source: RebateSource
    amount: Decimal


@dataclass(frozen=True)
class CapReduction:
    """An amount applied at lease signing to reduce the capitalized cost."""

    kind: CapReductionKind
    amount: Decimal
    rebate_source: Optional[RebateSource] = None


@dataclass(frozen=True)
class LeaseTerms:
    gross_cap_cost: Decimal
    monthly_payment: Decimal
    term_months: int
    cap_reductions: tuple[CapReduction, ...] = ()

    @property
    def total_cap_reductions(self) -> Decimal:
        return sum((r.amount for r in self.cap_reductions), ZERO)

    @property
    def adjusted_cap_cost(self) -> Decimal:
        return max(self.gross_cap_cost - self.total_cap_reductions, ZERO)


@dataclass(frozen=True)
class PriorTaxPaid:
    """Tax already paid to another jurisdiction on the same vehicle."""

    amount: Decimal
    origin_jurisdiction: str
    proof_provided: bool = False
    paid_date: Optional[date] = None
    same_owner: bool = False


@dataclass(frozen=True)
class TransactionInput:
    """A single vehicle purchase or lease to be taxed."""

    transaction_id: str
    transaction_date: date
    transaction_type: TransactionType
    jurisdiction: Jurisdiction
    price: Decimal
    accessories: tuple[LineItem, ...] = ()
    fees: tuple[LineItem, ...] = ()
    trade_in: Optional[TradeIn] = None
    rebates: tuple[Rebate, ...] = ()
    negative_equity: Optional[Decimal] = None
    cash_down: Decimal = ZERO
    lease: Optional[LeaseTerms] = None
    prior_tax: Optional[PriorTaxPaid] = None
    assessed_value: Optional[Decimal] = None
    vehicle_class: Optional[str] = None
    gvw_lbs: Optional[int] = None

    @property
    def jurisdiction_code(self) -> str:
        return self.jurisdiction.state_code.upper()

    @property
    def trade_in_value(self) -> Decimal:
        return self.trade_in.value if self.trade_in else ZERO

    @property
    def effective_negative_equity(self) -> Decimal:
        """Explicit negative equity, else payoff above trade-in value."""
        if self.negative_equity is not None:
            return self.negative_equity
        return self.trade_in.negative_equity if self.trade_in else ZERO

    @property
    def lease_trade_in_value(self) -> Decimal:
        """Trade equity applied to a lease: TRADE_IN cap reductions, else the trade-in."""
        if self.lease is not None:
            applied = [
                r.amount for r in self.lease.cap_reductions
                if r.kind is CapReductionKind.TRADE_IN
            ]
            if applied:
                return sum(applied, ZERO)
        return self.trade_in_value

    def rebate_total(self, source: Optional[RebateSource] = None) -> Decimal:
        return sum(
            (r.amount for r in self.rebates if source is None or r.source is source),
            ZERO,
        )

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def problems(self) -> list[str]:
        """Return every reason this input cannot be taxed (empty if valid)."""
        problems: list[str] = []
        non_finite = [label for label, amount in self._amounts() if not amount.is_finite()]
        if non_finite:
            return [f"{label} must be a finite number" for label in non_finite]
        if not self.jurisdiction.state_code:
            problems.append("jurisdiction state_code is required")
        if self.price < 0:
            problems.append(f"price must not be negative (got {self.price})")
        for label, items in (("accessory", self.accessories), ("fee", self.fees)):
            for item in items:
                if item.amount < 0:
                    problems.append(f"{label} {item.code} has negative amount")
                if not item.code:
                    problems.append(f"{label} without a code")
        for rebate in self.rebates:
            if rebate.amount < 0:
                problems.append(f"{rebate.source.value} rebate has negative amount")
        if self.trade_in is not None:
            if self.trade_in.value < 0 or self.trade_in.payoff < 0:
                problems.append("trade-in value and payoff must not be negative")
        if self.negative_equity is not None and self.negative_equity < 0:
            problems.append("negative_equity must not be negative")
        if self.cash_down < 0:
            problems.append("cash_down must not be negative")
        if self.assessed_value is not None and self.assessed_value < 0:
            problems.append("assessed_value must not be negative")
        if self.gvw_lbs is not None and self.gvw_lbs < 0:
            problems.append("gvw_lbs must not be negative")

        if self.transaction_type is TransactionType.LEASE:
            if self.lease is None:
                problems.append("lease transaction is missing lease terms")
            else:
                problems.extend(_lease_problems(self.lease))
        elif self.lease is not None:
            problems.append("retail transaction must not carry lease terms")

        if self.prior_tax is not None:
            if self.prior_tax.amount < 0:
                problems.append("prior tax paid must not be negative")
            if not self.prior_tax.origin_jurisdiction:
                problems.append("prior tax paid requires an origin jurisdiction")
        return problems

    def _amounts(self) -> list[tuple[str, Decimal]]:
        amounts = [("price", self.price), ("cash_down", self.cash_down)]
        amounts += [(f"accessory {i.code}", i.amount) for i in self.accessories]
        amounts += [(f"fee {i.code}", i.amount) for i in self.fees]
        amounts += [(f"{r.source.value} rebate", r.amount) for r in self.rebates]
        if self.trade_in is not None:
            amounts += [
                ("trade-in value", self.trade_in.value),
                ("trade-in payoff", self.trade_in.payoff),
            ]
        for label in ("negative_equity", "assessed_value"):
            if getattr(self, label) is not None:
                amounts.append((label, getattr(self, label)))
        if self.lease is not None:
            amounts += [
                ("gross_cap_cost", self.lease.gross_cap_cost),
                ("monthly_payment", self.lease.monthly_payment),
            ]
            amounts += [
                (f"{r.kind.value} cap reduction", r.amount) for r in self.lease.cap_reductions
            ]
        if self.prior_tax is not None:
            amounts.append(("prior tax paid", self.prior_tax.amount))
        return amounts

    def validate(self) -> None:
        """Raise ``MalformedTransaction`` if the input cannot be taxed."""
        problems = self.problems()
        if problems:
            raise MalformedTransaction(self.transaction_id, problems)

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_dict(cls, data: dict) -> "TransactionInput":
        """Build an input from a plain mapping of stored deal fields."""
        try:
            juris = data["jurisdiction"]
            if isinstance(juris, str):
                juris = {"state_code": juris}
            lease = data.get("lease")
            trade = data.get("trade_in")
            prior = data.get("prior_tax")
            return cls(
                transaction_id=str(data.get("transaction_id", "")),
                transaction_date=_date(data["transaction_date"]),
                transaction_type=TransactionType(
                    str(data.get("transaction_type", "RETAIL")).upper()
                ),
                jurisdiction=Jurisdiction(
                    state_code=str(juris["state_code"]).upper(),
                    zip_code=juris.get("zip_code"),
                    county=juris.get("county"),
                    city=juris.get("city"),
                ),
                price=_money(data["price"]),
                accessories=tuple(
                    _line_item(a, default_code="ACCESSORY")
                    for a in data.get("accessories", ())
                ),
                fees=tuple(_line_item(f) for f in data.get("fees", ())),
                trade_in=(
                    TradeIn(
                        value=_money(trade.get("value", 0)),
                        payoff=_money(trade.get("payoff", 0)),
                    )
                    if trade
                    else None
                ),
                rebates=tuple(
                    Rebate(
                        source=RebateSource(str(r["source"]).upper()),
                        amount=_money(r["amount"]),
                    )
                    for r in data.get("rebates", ())
                ),
                negative_equity=_opt_money(data.get("negative_equity")),
                cash_down=_money(data.get("cash_down", 0)),
                lease=_lease_terms(lease) if lease else None,
                prior_tax=(
                    PriorTaxPaid(
                        amount=_money(prior["amount"]),
                        origin_jurisdiction=str(prior["origin_jurisdiction"]).upper(),
                        proof_provided=_flag(prior.get("proof_provided")),
                        same_owner=_flag(prior.get("same_owner")),
                        paid_date=_date(prior.get("paid_date")),
                    )
                    if prior
                    else None
                ),
                assessed_value=_opt_money(data.get("assessed_value")),
                vehicle_class=data.get("vehicle_class"),
                gvw_lbs=int(data["gvw_lbs"]) if data.get("gvw_lbs") is not None else None,
            )
        except (KeyError, ValueError, TypeError, AttributeError, ArithmeticError) as e:
            txn_id = data.get("transaction_id", "") if isinstance(data, Mapping) else ""
            raise MalformedTransaction(str(txn_id), [f"unreadable input: {e!r}"]) from e


def _line_item(data: dict, default_code: str = "") -> LineItem:
    return LineItem(
        code=str(data.get("code", default_code)).strip().upper(),
        amount=_money(data["amount"]),
        description=data.get("description", ""),
    )


def _lease_terms(data: dict) -> LeaseTerms:
    return LeaseTerms(
        gross_cap_cost=_money(data["gross_cap_cost"]),
        monthly_payment=_money(data["monthly_payment"]),
        term_months=int(data["term_months"]),
        cap_reductions=tuple(
            CapReduction(
                kind=CapReductionKind(str(r["kind"]).upper()),
                amount=_money(r["amount"]),
                rebate_source=(
                    RebateSource(str(r["rebate_source"]).upper())
                    if r.get("rebate_source")
                    else None
                ),
            )
            for r in data.get("cap_reductions", ())
        ),
    )


def _lease_problems(lease: LeaseTerms) -> list[str]:
    problems: list[str] = []
    if lease.gross_cap_cost < 0:
        problems.append("gross_cap_cost must not be negative")
    if lease.monthly_payment < 0:
        problems.append("monthly_payment must not be negative")
    if lease.term_months <= 0:
        problems.append("term_months must be positive")
    for reduction in lease.cap_reductions:
        if reduction.amount < 0:
            problems.append(f"{reduction.kind.value} cap reduction has negative amount")
    return problems
