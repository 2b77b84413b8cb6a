#!/usr/bin/env python3
"""
Quick Start Example
===================

Computes tax on a Kansas purchase with a trade-in, a Georgia purchase
under the title ad valorem tax, and a North Carolina lease, then renders
the first result.

Usage:
    python examples/quick_start.py
"""

from datetime import date
from decimal import Decimal

from auto_tax_engine import (
    EngineSettings,
    RateComponent,
    RateStack,
    StaticRateResolver,
    TaxEngine,
    configure_logging,
)
from auto_tax_engine.report import ReportGenerator


def main() -> None:
    settings = EngineSettings.from_env()
    configure_logging(settings.log_level)

    # Kansas stacks local rates, so the engine needs a rate resolver
    resolver = StaticRateResolver().add(
        "KS",
        RateStack(Decimal("0.065"), (RateComponent("COUNTY", Decimal("0.0125"), "county"),)),
        county="Sedgwick",
    )
    engine = TaxEngine(rate_resolver=resolver, settings=settings)
    today = date.today().isoformat()

    # Purchase in Sedgwick County, KS with a trade-in and a doc fee
    result = engine.compute(
        {
            "transaction_id": "KS-001",
            "transaction_date": today,
            "jurisdiction": {"state_code": "KS", "county": "Sedgwick"},
            "price": "32000",
            "trade_in": {"value": "9000", "payoff": "4000"},
            "fees": [
                {"code": "DOC_FEE", "amount": "399"},
                {"code": "TITLE", "amount": "10"},
            ],
        }
    )
    ReportGenerator().render(result)

    # Georgia title ad valorem tax on the higher of price and assessed value
    print("\n--- Georgia TAVT ---")
    ga = engine.compute(
        {
            "transaction_id": "GA-001",
            "transaction_date": today,
            "jurisdiction": "GA",
            "price": "28000",
            "assessed_value": "29500",
            "trade_in": {"value": "6000"},
        }
    )
    print(f"Scheme:         {ga.scheme}")
    print(f"Taxable Base:   ${ga.taxable_base:,.2f}")
    print(f"Total Tax:      ${ga.total_tax:,.2f}")

    # North Carolina lease: taxed on each payment at the state rate
    print("\n--- North Carolina Lease ---")
    nc = engine.compute(
        {
            "transaction_id": "NC-L-001",
            "transaction_date": today,
            "transaction_type": "LEASE",
            "jurisdiction": "NC",
            "price": "35000",
            "lease": {
                "gross_cap_cost": "35000",
                "monthly_payment": "425",
                "term_months": 36,
                "cap_reductions": [{"kind": "CASH", "amount": "2500"}],
            },
        }
    )
    print(f"Scheme:         {nc.scheme}")
    print(f"Due at Signing: ${nc.schedule[0].tax:,.2f}")
    print(f"Monthly Tax:    ${nc.monthly_tax:,.2f}")
    print(f"Total Tax:      ${nc.total_tax:,.2f}")


if __name__ == "__main__":
    main()
