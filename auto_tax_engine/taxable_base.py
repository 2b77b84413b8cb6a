"""
Taxable base resolution for vehicle sales.

    base = price + taxable accessories + taxable fees (fee caps respected)
         + negative equity (if taxed)
         - trade-in credit
         - non-taxable rebates

floored at zero. The record's ``fee_order`` decides whether deductions
reduce the price alone (TRADE_IN_FIRST) or the full sum (FEES_FIRST).
Every input line is itemized with the rule that decided it.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from auto_tax_engine.aggregator import BreakdownLine
from auto_tax_engine.fees import FeeCategory, FeeResolver
from auto_tax_engine.models import ZERO, LineItem, TransactionInput
from auto_tax_engine.rules import (
    CappedTradeIn,
    FeeOrder,
    FullTradeIn,
    JurisdictionTaxRules,
    RebateSource,
    TransactionType,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class TaxableBase:
    """A resolved base and the itemized lines that produced it."""

    amount: Decimal
    lines: tuple[BreakdownLine, ...]
    notes: tuple[str, ...] = ()

    def contribution(self, category: str) -> Decimal:
        return sum(
            (line.contribution for line in self.lines if line.category == category), ZERO
        )


class TaxableBaseResolver:
    """Computes the taxable base for one jurisdiction's rule record."""

    def __init__(
        self, rules: JurisdictionTaxRules, fees: Optional[FeeResolver] = None
    ) -> None:
        self.rules = rules
        self.fees = fees or FeeResolver(rules)

    # ------------------------------------------------------------------
    # Line builders (shared with the lease and special-scheme pipelines)
    # ------------------------------------------------------------------

    def trade_in_credit(self, value: Decimal) -> tuple[Decimal, str]:
        """Credit allowed for a trade-in of ``value`` under the retail policy."""
        policy = self.rules.trade_in_policy
        if isinstance(policy, FullTradeIn):
            return value, "trade_in_policy=FULL"
        if isinstance(policy, CappedTradeIn):
            return min(value, policy.cap_amount), f"trade_in_policy=CAPPED({policy.cap_amount})"
        return ZERO, "trade_in_policy=NONE"

    def trade_in_line(self, value: Decimal) -> BreakdownLine:
        credit, rule = self.trade_in_credit(value)
        return BreakdownLine(
            category="trade_in",
            code="TRADE_IN",
            amount=value,
            taxable=False,
            contribution=-credit,
            rule=rule,
        )

    def item_lines(
        self,
        items: Iterable[LineItem],
        context: TransactionType,
        category: str,
        fallback: Optional[FeeCategory] = None,
    ) -> list[BreakdownLine]:
        """Resolve each fee or accessory item to an audit line."""
        lines = []
        for item in items:
            resolution = self.fees.resolve(item.code, context, category=fallback)
            lines.append(
                BreakdownLine(
                    category=category,
                    code=resolution.code,
                    amount=item.amount,
                    taxable=resolution.taxable,
                    contribution=resolution.contribution(item.amount),
                    rule=resolution.rule,
                )
            )
        return lines

    def rebate_lines(self, txn: TransactionInput) -> list[BreakdownLine]:
        """Non-taxable rebates reduce the base; taxable ones stay in it."""
        lines = []
        for source in RebateSource:
            amount = txn.rebate_total(source)
            if amount <= 0:
                continue
            rule = self.rules.rebate_rules.for_source(source)
            lines.append(
                BreakdownLine(
                    category="rebate",
                    code=f"{source.value}_REBATE",
                    amount=amount,
                    taxable=rule.taxable,
                    contribution=ZERO if rule.taxable else -amount,
                    rule=f"rebate_rules.{source.value.lower()}",
                )
            )
        return lines

    def negative_equity_line(
        self, amount: Decimal, taxable: bool, rule: str
    ) -> BreakdownLine:
        return BreakdownLine(
            category="negative_equity",
            code="NEGATIVE_EQUITY",
            amount=amount,
            taxable=taxable,
            contribution=amount if taxable else ZERO,
            rule=rule,
        )

    # ------------------------------------------------------------------
    # Resolution
    # ------------------------------------------------------------------

    def resolve(
        self,
        txn: TransactionInput,
        *,
        price: Optional[Decimal] = None,
        price_rule: str = "price",
        include_fees: bool = True,
        allow_trade_in: bool = True,
        allow_rebates: bool = True,
        tax_negative_equity: Optional[bool] = None,
        fee_order: Optional[FeeOrder] = None,
    ) -> TaxableBase:
        """
        Resolve the retail taxable base for ``txn``.

        The keyword arguments let special schemes narrow the standard
        formula (e.g. TAVT taxes the higher of price and assessed value
        and ignores fees; GET allows no trade-in credit).
        """
        context = TransactionType.RETAIL
        order = fee_order or self.rules.fee_order
        taxed_price = txn.price if price is None else price

        lines: list[BreakdownLine] = [
            BreakdownLine("price", "PRICE", taxed_price, True, taxed_price, price_rule)
        ]
        if include_fees:
            lines += self.item_lines(
                txn.accessories, context, "accessory", fallback=FeeCategory.ACCESSORY
            )
            lines += self.item_lines(txn.fees, context, "fee")

        negative_equity = txn.effective_negative_equity
        if negative_equity > 0:
            if tax_negative_equity is None:
                flag = self.rules.global_product_flags.tax_on_negative_equity
                rule = "global_product_flags.tax_on_negative_equity"
            else:
                flag, rule = tax_negative_equity, "scheme negative equity treatment"
            lines.append(self.negative_equity_line(negative_equity, flag, rule))

        if txn.trade_in is not None and txn.trade_in_value > 0:
            if allow_trade_in:
                lines.append(self.trade_in_line(txn.trade_in_value))
            else:
                lines.append(
                    BreakdownLine(
                        "trade_in", "TRADE_IN", txn.trade_in_value, False, ZERO,
                        "scheme allows no trade-in credit",
                    )
                )
        if allow_rebates:
            lines += self.rebate_lines(txn)

        additions = sum(
            (
                line.contribution
                for line in lines
                if line.category != "price" and line.contribution > 0
            ),
            ZERO,
        )
        deductions = -sum((line.contribution for line in lines if line.contribution < 0), ZERO)

        notes: list[str] = []
        if order is FeeOrder.FEES_FIRST:
            amount = max(taxed_price + additions - deductions, ZERO)
        else:
            if deductions > taxed_price:
                notes.append("deductions exceed price; price floored at zero")
            amount = max(taxed_price - deductions, ZERO) + additions

        logger.debug(
            "%s base %s (order=%s, additions=%s, deductions=%s)",
            self.rules.code, amount, order.value, additions, deductions,
        )
        return TaxableBase(amount=amount, lines=tuple(lines), notes=tuple(notes))
