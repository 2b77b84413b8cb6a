"""
Fee and product taxability resolution.

Every fee code resolves to exactly one taxability per context (retail or
lease). Lookup order:

1. an explicit ``fee_tax_rules`` entry for the context, by exact code
2. the category fallback (doc fee, service contract, GAP, accessory)
3. otherwise ``UnresolvedFeeCode``; nothing defaults to non-taxable
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from enum import Enum
from typing import Optional

from auto_tax_engine.exceptions import UnresolvedFeeCode
from auto_tax_engine.rules import (
    Confidence,
    DocFeeTaxability,
    FeeTaxRule,
    JurisdictionTaxRules,
    TransactionType,
)


class FeeCategory(Enum):
    DOC_FEE = "doc_fee"
    SERVICE_CONTRACT = "service_contract"
    GAP = "gap"
    ACCESSORY = "accessory"


# Map common fee codes to fallback categories
_CATEGORY_MAP: dict[str, FeeCategory] = {
    "DOC_FEE": FeeCategory.DOC_FEE,
    "DOC": FeeCategory.DOC_FEE,
    "DOCUMENTATION_FEE": FeeCategory.DOC_FEE,
    "SERVICE_CONTRACT": FeeCategory.SERVICE_CONTRACT,
    "VSC": FeeCategory.SERVICE_CONTRACT,
    "EXTENDED_WARRANTY": FeeCategory.SERVICE_CONTRACT,
    "GAP": FeeCategory.GAP,
    "GAP_INSURANCE": FeeCategory.GAP,
    "ACCESSORY": FeeCategory.ACCESSORY,
    "ACCESSORIES": FeeCategory.ACCESSORY,
}


def categorize(code: str) -> Optional[FeeCategory]:
    return _CATEGORY_MAP.get(code.strip().upper())


@dataclass(frozen=True)
class FeeResolution:
    """Resolved taxability of one fee code, with the rule that decided it."""

    code: str
    taxable: bool
    rule: str
    cap: Optional[Decimal] = None
    confidence: Confidence = Confidence.VERIFIED

    def contribution(self, amount: Decimal) -> Decimal:
        """Portion of ``amount`` that enters the taxable base."""
        if not self.taxable:
            return Decimal("0")
        if self.cap is not None:
            return min(amount, self.cap)
        return amount


class FeeResolver:
    """Resolves fee taxability against one jurisdiction's rule record."""

    def __init__(self, rules: JurisdictionTaxRules) -> None:
        self.rules = rules
        self._retail: dict[str, FeeTaxRule] = {r.code: r for r in rules.fee_tax_rules}
        self._lease: dict[str, FeeTaxRule] = {
            r.code: r for r in rules.lease_rules.fee_tax_rules
        }

    def _explicit(self, code: str, context: TransactionType) -> Optional[FeeTaxRule]:
        table = self._retail if context is TransactionType.RETAIL else self._lease
        return table.get(code)

    def resolve(
        self,
        code: str,
        context: TransactionType,
        category: Optional[FeeCategory] = None,
    ) -> FeeResolution:
        """
        Resolve one fee code for a retail or lease context.

        ``category`` forces the fallback category (accessory line items
        carry free-form codes but always fall back to the accessory flag).
        """
        key = code.strip().upper()
        where = "fee_tax_rules" if context is TransactionType.RETAIL else "lease_rules.fee_tax_rules"

        explicit = self._explicit(key, context)
        if explicit is not None:
            cap = explicit.cap
            if cap is None and categorize(key) is FeeCategory.DOC_FEE:
                cap = self.rules.doc_fee_cap
            return FeeResolution(
                code=key,
                taxable=explicit.taxable,
                rule=f"{where}[{key}]",
                cap=cap,
                confidence=explicit.confidence,
            )

        cat = category or categorize(key)
        if cat is None:
            raise UnresolvedFeeCode(key, self.rules.code, context.value)
        return self._fallback(key, cat, context)

    def _fallback(
        self, code: str, category: FeeCategory, context: TransactionType
    ) -> FeeResolution:
        flags = self.rules.global_product_flags
        if category is FeeCategory.DOC_FEE:
            if context is TransactionType.LEASE:
                behavior = self.rules.lease_rules.doc_fee_taxability
                if behavior is DocFeeTaxability.FOLLOW_RETAIL:
                    taxable = self.rules.doc_fee_taxable
                else:
                    taxable = behavior is DocFeeTaxability.ALWAYS
                rule = f"lease_rules.doc_fee_taxability={behavior.value}"
            else:
                taxable = self.rules.doc_fee_taxable
                rule = "doc_fee_taxable"
            return FeeResolution(code, taxable, rule, cap=self.rules.doc_fee_cap)
        if category is FeeCategory.SERVICE_CONTRACT:
            return FeeResolution(
                code,
                flags.tax_on_service_contracts,
                "global_product_flags.tax_on_service_contracts",
            )
        if category is FeeCategory.GAP:
            return FeeResolution(code, flags.tax_on_gap, "global_product_flags.tax_on_gap")
        return FeeResolution(
            code, flags.tax_on_accessories, "global_product_flags.tax_on_accessories"
        )

    def is_taxable(self, code: str, context: TransactionType) -> bool:
        return self.resolve(code, context).taxable
