"""Tests for special vehicle tax schemes and their dispatch table."""

from decimal import Decimal

import pytest

from auto_tax_engine.exceptions import InvalidSchemeDispatch
from auto_tax_engine.lease import LeaseTaxCalculator
from auto_tax_engine.retail import RetailTaxCalculator
from auto_tax_engine.schemes import HANDLERS, handler_for, scheme_problems
from auto_tax_engine.rules import SchemeId


def _retail(rules, txn):
    return RetailTaxCalculator(rules).compute(txn)


def _lease(rules, txn):
    return LeaseTaxCalculator(rules).compute(txn)


@pytest.fixture
def privilege_rules(make_rules):
    return make_rules(
        vehicle_tax_scheme={"type": "SPECIAL", "scheme_id": "PRIVILEGE_TAX"},
        uses_local_rate_stack=False,
        rebate_rules={"manufacturer": {"taxable": True}},
        lease_rules={"special_scheme": "PRIVILEGE_TAX"},
        extras={"scheme_rate": "0.07", "vehicle_class_rates": {"TRUCK": "0.03"}},
    )


# ── Dispatch table ───────────────────────────────────────────────────


def test_every_scheme_has_a_handler():
    assert set(HANDLERS) == set(SchemeId)


def test_partial_table_is_invalid_dispatch():
    partial = {SchemeId.TAVT: HANDLERS[SchemeId.TAVT]}
    with pytest.raises(InvalidSchemeDispatch) as exc:
        handler_for("HI", SchemeId.GET, handlers=partial)
    assert exc.value.scheme == "GET"
    assert exc.value.code == "INVALID_SCHEME_DISPATCH"


def test_partial_table_flags_record_at_load(bundled):
    partial = {SchemeId.HUT: HANDLERS[SchemeId.HUT]}
    problems = scheme_problems(bundled.lookup("GA"), handlers=partial)
    assert problems == [
        "no handler for RETAIL scheme TAVT",
        "no handler for LEASE scheme TAVT",
    ]


# ── Title ad valorem tax ─────────────────────────────────────────────


def test_tavt_uses_higher_assessed_value(bundled, make_txn):
    txn = make_txn(
        jurisdiction={"state_code": "GA"},
        price="30000",
        assessed_value="32000",
        trade_in={"value": "5000"},
        fees=[{"code": "DOC_FEE", "amount": "500"}],
        rebates=[{"source": "MANUFACTURER", "amount": "1000"}],
    )
    result = _retail(bundled.lookup("GA"), txn)
    assert result.scheme == "TAVT"
    assert result.taxable_base == Decimal("27000")
    assert result.total_tax == Decimal("1890.00")
    assert result.breakdown[0].amount == Decimal("32000")


def test_tavt_lease_taxes_agreed_value(bundled, make_lease):
    txn = make_lease(jurisdiction={"state_code": "GA"}, gross="33000")
    result = _lease(bundled.lookup("GA"), txn)
    assert result.scheme == "TAVT:LEASE"
    assert result.taxable_base == Decimal("30000")
    assert result.due_at_signing == Decimal("2100.00")
    assert result.breakdown[0].code == "AGREED_VALUE"


# ── Highway use tax ──────────────────────────────────────────────────


def test_hut_excludes_fees_and_negative_equity(bundled, make_txn):
    txn = make_txn(
        jurisdiction={"state_code": "NC"},
        price="30000",
        trade_in={"value": "5000", "payoff": "7000"},
        fees=[{"code": "DOC_FEE", "amount": "500"}],
    )
    result = _retail(bundled.lookup("NC"), txn)
    assert result.scheme == "HUT"
    assert result.taxable_base == Decimal("25000")
    assert result.total_tax == Decimal("750.00")


def test_nc_lease_falls_back_to_state_rate(bundled, make_lease):
    txn = make_lease(jurisdiction={"state_code": "NC"}, payment="400")
    result = _lease(bundled.lookup("NC"), txn)
    assert result.scheme == "LEASE:MONTHLY"
    assert result.schedule[1].tax == Decimal("12.00")


# ── General excise tax ───────────────────────────────────────────────


def test_get_adds_county_surcharge_and_ignores_trade_in(bundled, make_txn):
    txn = make_txn(
        jurisdiction={"state_code": "HI", "county": "Honolulu"},
        price="30000",
        trade_in={"value": "8000"},
    )
    result = _retail(bundled.lookup("HI"), txn)
    assert [(t.label, t.amount) for t in result.tax_lines] == [
        ("GET", Decimal("1200.00")),
        ("COUNTY_SURCHARGE", Decimal("150.00")),
    ]
    assert result.total_tax == Decimal("1350.00")
    assert result.breakdown[-1].rule == "scheme allows no trade-in credit"


def test_get_state_share_excludes_county_surcharge(bundled, make_txn):
    txn = make_txn(jurisdiction={"state_code": "HI", "county": "Honolulu"}, price="30000")
    result = _retail(bundled.lookup("HI"), txn)
    assert result.state_tax == Decimal("1200.00")
    assert result.total_tax == Decimal("1350.00")


def test_get_lease_is_taxed_per_payment(bundled, make_lease):
    txn = make_lease(
        jurisdiction={"state_code": "HI", "county": "Maui"},
        payment="500",
        term=36,
        fees=[{"code": "DOC_FEE", "amount": "300"}],
    )
    result = _lease(bundled.lookup("HI"), txn)
    assert result.scheme == "GET:LEASE"
    assert result.due_at_signing == Decimal("13.50")
    assert result.schedule[1].tax == Decimal("22.50")
    assert result.total_tax == Decimal("13.50") + Decimal("22.50") * 36


# ── Privilege tax ────────────────────────────────────────────────────


def test_privilege_tax_with_taxable_rebate(privilege_rules, make_txn):
    txn = make_txn(
        price="25000",
        trade_in={"value": "5000"},
        rebates=[{"source": "MANUFACTURER", "amount": "3000"}],
    )
    result = _retail(privilege_rules, txn)
    assert result.scheme == "PRIVILEGE_TAX"
    assert result.taxable_base == Decimal("20000")
    assert result.total_tax == Decimal("1400.00")


def test_privilege_tax_vehicle_class_rate(privilege_rules, make_txn):
    txn = make_txn(price="25000", trade_in={"value": "5000"}, vehicle_class="truck")
    assert _retail(privilege_rules, txn).total_tax == Decimal("600.00")


def test_privilege_tax_lease_on_gross_cap_cost(privilege_rules, make_lease):
    result = _lease(privilege_rules, make_lease(gross="30000"))
    assert result.scheme == "PRIVILEGE_TAX:LEASE"
    assert result.total_tax == Decimal("2100.00")


# ── Capped infrastructure fee ────────────────────────────────────────


def test_imf_is_capped(bundled, make_txn):
    txn = make_txn(jurisdiction={"state_code": "SC"}, price="40000")
    result = _retail(bundled.lookup("SC"), txn)
    assert result.total_tax == Decimal("500")
    assert result.tax_lines[0].amount == Decimal("2000.00")
    assert result.tax_lines[-1].label == "CAP"


def test_imf_scenario_with_trade_in(bundled, make_txn):
    txn = make_txn(
        jurisdiction={"state_code": "SC"}, price="30000", trade_in={"value": "10000"}
    )
    result = _retail(bundled.lookup("SC"), txn)
    # (30,000 - 10,000) x 5% = 1,000 before the 500 cap
    assert result.taxable_base == Decimal("20000")
    assert result.tax_lines[0].amount == Decimal("1000.00")
    assert [t.label for t in result.tax_lines] == ["IMF_CAPPED", "CAP"]
    assert result.tax_lines[-1].amount == Decimal("-500.00")
    assert result.total_tax == Decimal("500.00")


@pytest.mark.parametrize("price", ["10000", "30000", "250000"])
def test_imf_is_flat_at_and_above_threshold(bundled, make_txn, price):
    txn = make_txn(jurisdiction={"state_code": "SC"}, price=price)
    assert _retail(bundled.lookup("SC"), txn).total_tax == Decimal("500.00")


def test_imf_below_cap(bundled, make_txn):
    txn = make_txn(jurisdiction={"state_code": "SC"}, price="8000")
    assert _retail(bundled.lookup("SC"), txn).total_tax == Decimal("400.00")


def test_imf_lease_credits_trade_equity(bundled, make_lease):
    txn = make_lease(
        jurisdiction={"state_code": "SC"},
        gross="9000",
        cap_reductions=[{"kind": "TRADE_IN", "amount": "3000"}],
    )
    result = _lease(bundled.lookup("SC"), txn)
    assert result.scheme == "IMF_CAPPED:LEASE"
    assert result.taxable_base == Decimal("6000")
    assert result.total_tax == Decimal("300.00")
