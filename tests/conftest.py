"""Shared builders for rule records, rate stacks and transactions."""

from __future__ import annotations

import copy
from decimal import Decimal
from typing import Any, Callable

import pytest

from auto_tax_engine.models import TransactionInput
from auto_tax_engine.rates import RateComponent, RateStack, StaticRateResolver
from auto_tax_engine.registry import RuleRegistry
from auto_tax_engine.rules import JurisdictionTaxRules


def _record(code: str) -> dict[str, Any]:
    """A plain state-plus-local record with full trade-in credit."""
    return {
        "code": code,
        "version": 1,
        "name": "Testland",
        "trade_in_policy": {"type": "FULL"},
        "rebate_rules": {
            "manufacturer": {"taxable": False},
            "dealer": {"taxable": False},
        },
        "doc_fee_taxable": True,
        "doc_fee_cap": None,
        "fee_tax_rules": [
            {"code": "DOC_FEE", "taxable": True},
            {"code": "TITLE", "taxable": False},
            {"code": "REG", "taxable": False},
        ],
        "global_product_flags": {
            "tax_on_accessories": True,
            "tax_on_negative_equity": True,
            "tax_on_service_contracts": False,
            "tax_on_gap": False,
        },
        "vehicle_tax_scheme": {"type": "STATE_PLUS_LOCAL"},
        "uses_local_rate_stack": True,
        "fee_order": "TRADE_IN_FIRST",
        "lease_rules": {
            "method": "MONTHLY",
            "tax_cap_reduction_upfront": True,
            "rebate_behavior": "FOLLOW_RETAIL",
            "doc_fee_taxability": "FOLLOW_RETAIL",
            "trade_in_credit": "FULL",
            "negative_equity_taxable": True,
            "fee_tax_rules": [
                {"code": "TITLE", "taxable": False},
                {"code": "REG", "taxable": False},
            ],
            "tax_fees_upfront": True,
        },
        "reciprocity": {
            "enabled": True,
            "scope": "BOTH",
            "credit_basis": "TAX_PAID",
            "cap_at_home_tax": True,
            "require_proof": False,
        },
        "extras": {},
    }


def _merge(base: dict, overrides: dict) -> dict:
    for key, value in overrides.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            _merge(base[key], value)
        else:
            base[key] = value
    return base


@pytest.fixture
def state_only() -> Callable[[str], dict]:
    """Overrides turning the base record into a flat state-rate record."""

    def build(rate: str) -> dict[str, Any]:
        return {
            "vehicle_tax_scheme": {"type": "STATE_ONLY"},
            "uses_local_rate_stack": False,
            "extras": {"state_rate": rate},
        }

    return build


@pytest.fixture
def record_data() -> Callable[..., dict]:
    """Raw record mapping, with nested overrides merged in."""

    def build(code: str = "ZZ", **overrides: Any) -> dict:
        return _merge(copy.deepcopy(_record(code)), copy.deepcopy(overrides))

    return build


@pytest.fixture
def make_rules(record_data) -> Callable[..., JurisdictionTaxRules]:
    def build(code: str = "ZZ", **overrides: Any) -> JurisdictionTaxRules:
        return JurisdictionTaxRules.model_validate(record_data(code, **overrides))

    return build


@pytest.fixture
def make_registry(make_rules) -> Callable[..., RuleRegistry]:
    def build(*records: JurisdictionTaxRules) -> RuleRegistry:
        return RuleRegistry.from_records(records or [make_rules()])

    return build


@pytest.fixture
def resolver() -> StaticRateResolver:
    """ZZ at 6% state plus a 2.1% county rate."""
    return StaticRateResolver().add(
        "ZZ",
        RateStack(Decimal("0.06"), (RateComponent("COUNTY", Decimal("0.021"), "county"),)),
    )


@pytest.fixture
def make_txn() -> Callable[..., TransactionInput]:
    def build(**fields: Any) -> TransactionInput:
        data: dict[str, Any] = {
            "transaction_id": "DEAL-001",
            "transaction_date": "2025-03-01",
            "transaction_type": "RETAIL",
            "jurisdiction": {"state_code": "ZZ"},
            "price": "30000",
        }
        data.update(fields)
        return TransactionInput.from_dict(data)

    return build


@pytest.fixture
def make_lease(make_txn) -> Callable[..., TransactionInput]:
    def build(
        gross: str = "30000",
        payment: str = "500",
        term: int = 36,
        cap_reductions: tuple = (),
        **fields: Any,
    ) -> TransactionInput:
        return make_txn(
            transaction_type="LEASE",
            lease={
                "gross_cap_cost": gross,
                "monthly_payment": payment,
                "term_months": term,
                "cap_reductions": list(cap_reductions),
            },
            **fields,
        )

    return build


@pytest.fixture(scope="session")
def bundled() -> RuleRegistry:
    return RuleRegistry.load()
