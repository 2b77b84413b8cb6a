"""Tests for the TaxEngine facade and result aggregation."""

import json
from dataclasses import replace
from decimal import Decimal

import pytest
import yaml

from auto_tax_engine.config import EngineSettings
from auto_tax_engine.engine import BatchResult, TaxEngine
from auto_tax_engine.exceptions import (
    MalformedTransaction,
    RulesNeedReview,
    UnknownJurisdiction,
    UnusableJurisdiction,
)
from auto_tax_engine.models import TransactionInput
from auto_tax_engine.rates import RateComponent, RateStack, StaticRateResolver
from auto_tax_engine.registry import RuleRegistry
from auto_tax_engine.rules import Confidence


@pytest.fixture
def engine(make_registry, resolver) -> TaxEngine:
    return TaxEngine(make_registry(), resolver, settings=EngineSettings())


def _deal(**fields) -> dict:
    data = {
        "transaction_id": "DEAL-100",
        "transaction_date": "2025-03-01",
        "jurisdiction": "ZZ",
        "price": "30000",
        "trade_in": {"value": "10000"},
    }
    data.update(fields)
    return data


# ── Single computation ───────────────────────────────────────────────


def test_compute_from_dict(engine: TaxEngine):
    result = engine.compute(_deal())
    assert result.transaction_id == "DEAL-100"
    assert result.jurisdiction == "ZZ"
    assert result.rules_version == 1
    assert result.taxable_base == Decimal("20000.00")
    assert result.total_tax == Decimal("1620.00")
    assert result.net_tax_due == Decimal("1620.00")
    assert result.effective_rate == Decimal("0.081000")
    assert result.confidence is Confidence.VERIFIED
    assert result.line("TRADE_IN").contribution == Decimal("-10000")


def test_amount_financed_includes_net_tax(engine: TaxEngine):
    result = engine.compute(_deal(cash_down="1000"))
    # 30,000 + 1,620 tax - 10,000 trade - 1,000 down
    assert result.amount_financed == Decimal("20620.00")


def test_identical_inputs_give_identical_output(engine: TaxEngine):
    first = engine.compute(_deal()).to_json()
    second = engine.compute(TransactionInput.from_dict(_deal())).to_json()
    assert first == second
    data = json.loads(first)
    assert data["total_tax"] == "1620.00"
    assert Decimal(data["reciprocity_credit"]) == 0
    assert data["transaction_type"] == "RETAIL"


def test_reciprocity_nets_against_tax(engine: TaxEngine):
    deal = _deal(prior_tax={"amount": "2000", "origin_jurisdiction": "fl"})
    result = engine.compute(deal)
    assert result.reciprocity_credit == Decimal("1620.00")
    assert result.net_tax_due == Decimal("0")


def test_heavy_vehicle_override_reaches_engine(make_rules, resolver):
    rules = make_rules(
        reciprocity={
            "overrides": [{"origin": "ALL", "disallow_credit": True, "min_gvw_lbs": 10001}]
        }
    )
    engine = TaxEngine(RuleRegistry.from_records([rules]), resolver, settings=EngineSettings())
    prior = {"amount": "2000", "origin_jurisdiction": "FL"}

    heavy = engine.compute(_deal(prior_tax=prior, gvw_lbs="26000"))
    assert heavy.reciprocity_credit == Decimal("0")
    assert heavy.reciprocity.override == "ALL"

    light = engine.compute(_deal(prior_tax=prior, gvw_lbs=6000))
    assert light.reciprocity_credit == Decimal("1620.00")


def test_state_tax_only_credit(make_rules, resolver):
    rules = make_rules(reciprocity={"credit_basis": "STATE_TAX_ONLY"})
    engine = TaxEngine(RuleRegistry.from_records([rules]), resolver, settings=EngineSettings())
    result = engine.compute(
        _deal(prior_tax={"amount": "2000", "origin_jurisdiction": "FL"})
    )
    assert result.reciprocity_credit == Decimal("1200.00")
    assert result.net_tax_due == Decimal("420.00")


def test_state_tax_only_credit_under_special_scheme(make_rules):
    rules = make_rules(
        vehicle_tax_scheme={"type": "SPECIAL", "scheme_id": "PRIVILEGE_TAX"},
        uses_local_rate_stack=False,
        lease_rules={"special_scheme": "PRIVILEGE_TAX"},
        reciprocity={"credit_basis": "STATE_TAX_ONLY"},
        extras={"scheme_rate": "0.07"},
    )
    engine = TaxEngine(RuleRegistry.from_records([rules]), settings=EngineSettings())
    result = engine.compute(
        _deal(prior_tax={"amount": "2000", "origin_jurisdiction": "FL"})
    )
    # (30,000 - 10,000 trade) x 7% privilege tax is all state-imposed
    assert result.total_tax == Decimal("1400.00")
    assert result.reciprocity_credit == Decimal("1400.00")
    assert result.net_tax_due == Decimal("0")


@pytest.fixture
def proof_engine(make_rules, resolver) -> TaxEngine:
    rules = make_rules(reciprocity={"require_proof": True})
    return TaxEngine(RuleRegistry.from_records([rules]), resolver, settings=EngineSettings())


@pytest.mark.parametrize(
    "flag, credit",
    [
        ("false", "0"),
        ("0", "0"),
        (False, "0"),
        ("true", "1000.00"),
        ("1", "1000.00"),
        (True, "1000.00"),
    ],
)
def test_proof_flag_from_stored_strings(proof_engine: TaxEngine, flag, credit):
    deal = _deal(
        prior_tax={"amount": "1000", "origin_jurisdiction": "GA", "proof_provided": flag}
    )
    assert proof_engine.compute(deal).reciprocity_credit == Decimal(credit)


def test_lease_credit_limited_to_tax_at_signing(make_rules, state_only):
    rules = make_rules(**state_only("0.06"))
    engine = TaxEngine(RuleRegistry.from_records([rules]), settings=EngineSettings())
    result = engine.compute(
        {
            "transaction_id": "LEASE-1",
            "transaction_date": "2025-03-01",
            "transaction_type": "LEASE",
            "jurisdiction": "ZZ",
            "price": "30000",
            "fees": [{"code": "DOC_FEE", "amount": "300"}],
            "lease": {
                "gross_cap_cost": "30000",
                "monthly_payment": "500",
                "term_months": 36,
                "cap_reductions": [{"kind": "CASH", "amount": "2000"}],
            },
            "prior_tax": {"amount": "1000", "origin_jurisdiction": "FL"},
        }
    )
    # signing: (2,000 cash + 300 doc fee) x 6%
    assert result.reciprocity_credit == Decimal("138.00")
    assert result.monthly_tax == Decimal("30.00")
    assert result.amount_financed == Decimal("28000.00")
    assert result.net_tax_due == result.total_tax - Decimal("138.00")


# ── Rejections ───────────────────────────────────────────────────────


def test_malformed_transaction(engine: TaxEngine):
    with pytest.raises(MalformedTransaction) as exc:
        engine.compute(_deal(price="-1"))
    assert "price must not be negative (got -1)" in exc.value.problems


def test_lease_without_terms_is_malformed(engine: TaxEngine):
    with pytest.raises(MalformedTransaction) as exc:
        engine.compute(_deal(transaction_type="LEASE"))
    assert "lease transaction is missing lease terms" in exc.value.problems


def test_unreadable_input_is_malformed(engine: TaxEngine):
    deal = _deal()
    del deal["price"]
    with pytest.raises(MalformedTransaction):
        engine.compute(deal)


def test_unrecognized_proof_flag_is_malformed(engine: TaxEngine):
    deal = _deal(
        prior_tax={"amount": "1000", "origin_jurisdiction": "GA", "proof_provided": "maybe"}
    )
    with pytest.raises(MalformedTransaction) as exc:
        engine.compute(deal)
    assert "maybe" in str(exc.value)


@pytest.mark.parametrize("price", ["NaN", "Infinity", "-Infinity", "sNaN"])
def test_non_finite_amount_is_malformed(engine: TaxEngine, price):
    with pytest.raises(MalformedTransaction):
        engine.compute(_deal(price=price))


def test_non_finite_amount_fails_validation():
    txn = TransactionInput.from_dict(_deal())
    txn = replace(txn, price=Decimal("NaN"), cash_down=Decimal("Infinity"))
    assert txn.problems() == [
        "price must be a finite number",
        "cash_down must be a finite number",
    ]


@pytest.mark.parametrize(
    "fields",
    [
        {"trade_in": "5000"},
        {"prior_tax": "1000"},
        {"fees": ["DOC_FEE"]},
        {"gvw_lbs": "heavy"},
    ],
)
def test_misshapen_input_is_malformed(engine: TaxEngine, fields):
    with pytest.raises(MalformedTransaction) as exc:
        engine.compute(_deal(**fields))
    assert exc.value.transaction_id == "DEAL-100"


def test_non_mapping_input_is_malformed(engine: TaxEngine):
    with pytest.raises(MalformedTransaction):
        engine.compute(["not", "a", "deal"])


def test_unknown_jurisdiction(engine: TaxEngine):
    with pytest.raises(UnknownJurisdiction):
        engine.compute(_deal(jurisdiction="QQ"))


# ── Needs-review policy ──────────────────────────────────────────────


def test_needs_review_warns_by_default(make_rules, resolver, caplog):
    rules = make_rules(extras={"review_notes": ["local surtax unconfirmed"]})
    engine = TaxEngine(RuleRegistry.from_records([rules]), resolver, settings=EngineSettings())
    result = engine.compute(_deal())
    assert result.confidence is Confidence.NEEDS_REVIEW
    assert result.review_flags == ("ZZ: local surtax unconfirmed",)
    assert "unverified rules" in caplog.text


def test_needs_review_reject_policy(make_rules, resolver):
    rules = make_rules(extras={"review_notes": ["local surtax unconfirmed"]})
    engine = TaxEngine(
        RuleRegistry.from_records([rules]),
        resolver,
        settings=EngineSettings(needs_review_policy="reject"),
    )
    with pytest.raises(RulesNeedReview) as exc:
        engine.compute(_deal())
    assert exc.value.flags == ("ZZ: local surtax unconfirmed",)


# ── Batch ────────────────────────────────────────────────────────────


def test_batch_collects_errors(engine: TaxEngine):
    batch = engine.compute_batch(
        [
            _deal(transaction_id="A"),
            _deal(transaction_id="B", jurisdiction="QQ"),
            _deal(transaction_id="C", trade_in=None),
        ]
    )
    assert isinstance(batch, BatchResult)
    assert batch.transaction_count == 2
    assert batch.total_tax == Decimal("1620.00") + Decimal("2430.00")
    assert batch.jurisdiction_breakdown == {"ZZ": Decimal("4050.00")}
    assert batch.errors == ["B: [UNKNOWN_JURISDICTION] Unknown jurisdiction: QQ"]
    assert isinstance(batch.failures[0], UnknownJurisdiction)


def test_batch_collects_non_finite_input(engine: TaxEngine):
    batch = engine.compute_batch(
        [_deal(transaction_id="BAD", price="NaN"), _deal(transaction_id="GOOD")]
    )
    assert batch.transaction_count == 1
    assert batch.results[0].transaction_id == "GOOD"
    assert len(batch.errors) == 1
    assert batch.errors[0].startswith("BAD: [MALFORMED_TRANSACTION]")
    assert isinstance(batch.failures[0], MalformedTransaction)


# ── Bundled records ──────────────────────────────────────────────────


@pytest.fixture
def bundled_engine(bundled) -> TaxEngine:
    resolver = StaticRateResolver().add(
        "KS",
        RateStack(Decimal("0.065"), (RateComponent("CITY", Decimal("0.01"), "city"),)),
    )
    return TaxEngine(bundled, resolver, settings=EngineSettings())


def test_full_upfront_lease_with_untaxed_trade_credit(bundled_engine: TaxEngine):
    result = bundled_engine.compute(
        {
            "transaction_id": "KS-LEASE",
            "transaction_date": "2025-03-01",
            "transaction_type": "LEASE",
            "jurisdiction": "KS",
            "price": "30000",
            "lease": {
                "gross_cap_cost": "30000",
                "monthly_payment": "350",
                "term_months": 36,
                "cap_reductions": [{"kind": "TRADE_IN", "amount": "10000"}],
            },
        }
    )
    # (30,000 + 10,000 trade equity) x 7.5%, all at signing
    assert result.total_tax == Decimal("3000.00")
    assert result.monthly_tax == Decimal("0")
    assert result.scheme == "LEASE:FULL_UPFRONT"


def test_stub_jurisdiction_is_rejected(bundled_engine: TaxEngine):
    with pytest.raises(UnusableJurisdiction):
        bundled_engine.compute(_deal(jurisdiction="TX"))


def test_engine_loads_rules_from_settings(tmp_path, record_data):
    (tmp_path / "ZZ.yaml").write_text(yaml.safe_dump(record_data()), encoding="utf-8")
    engine = TaxEngine(settings=EngineSettings(rules_dir=tmp_path))
    assert engine.registry.codes() == ["ZZ"]

    (tmp_path / "YY.yaml").write_text(yaml.safe_dump(record_data("YY")), encoding="utf-8")
    assert engine.reload_rules().codes() == ["YY", "ZZ"]
    assert engine.registry.codes() == ["YY", "ZZ"]


def _pa_engine(bundled) -> TaxEngine:
    resolver = StaticRateResolver().add("PA", RateStack(Decimal("0.06"), ()))
    return TaxEngine(bundled, resolver, settings=EngineSettings())


def _pa_deal(origin: str) -> dict:
    return _deal(
        jurisdiction="PA",
        prior_tax={"amount": "500", "origin_jurisdiction": origin, "proof_provided": "true"},
    )


def test_pa_credits_origin_that_credits_pa(bundled):
    result = _pa_engine(bundled).compute(_pa_deal("GA"))
    assert result.total_tax == Decimal("1200.00")
    assert result.reciprocity_credit == Decimal("500.00")
    assert result.reciprocity.override == "ALL"


@pytest.mark.parametrize("origin", ["NY", "DE"])
def test_pa_denies_origin_without_mutual_credit(bundled, origin):
    result = _pa_engine(bundled).compute(_pa_deal(origin))
    assert result.reciprocity_credit == Decimal("0")
    assert result.net_tax_due == Decimal("1200.00")
    assert "requires mutual credit" in result.reciprocity.note


def test_bundled_totals_are_never_negative(bundled):
    resolver = StaticRateResolver()
    for code in bundled.codes():
        resolver.add(
            code,
            RateStack(Decimal("0.05"), (RateComponent("COUNTY", Decimal("0.01"), "county"),)),
        )
    engine = TaxEngine(bundled, resolver, settings=EngineSettings())
    deals = [
        _deal(
            trade_in={"value": "45000", "payoff": "2000"},
            rebates=[{"source": "MANUFACTURER", "amount": "1000"}],
            fees=[{"code": "DOC_FEE", "amount": "400"}],
        ),
        _deal(
            transaction_type="LEASE",
            trade_in=None,
            lease={
                "gross_cap_cost": "30000",
                "monthly_payment": "450",
                "term_months": 36,
                "cap_reductions": [
                    {"kind": "TRADE_IN", "amount": "3000"},
                    {"kind": "CASH", "amount": "1000"},
                ],
            },
        ),
    ]
    for code in bundled.codes():
        for deal in deals:
            result = engine.compute({**deal, "jurisdiction": code})
            assert result.total_tax >= 0, code
            assert result.taxable_base >= 0, code
            assert result.net_tax_due >= 0, code
