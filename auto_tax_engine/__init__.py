"""
Auto Tax Engine
===============

Vehicle sales and lease tax rule interpretation. Each US jurisdiction's
vehicle tax regime is a YAML rule record; one deterministic engine
interprets every record for purchases and leases, including fee
taxability, special title/privilege schemes and reciprocity credit for
tax paid elsewhere.

Modules:
    rules         - Immutable jurisdiction rule record schema
    registry      - Rule record loading, validation and lookup
    rates         - Stacked state and local rate resolution
    models        - Transaction input types
    fees          - Fee and F&I product taxability
    taxable_base  - Taxable base construction with audit trail
    retail        - Retail purchase calculation
    lease         - Lease calculation (monthly, upfront, hybrid)
    schemes       - TAVT, HUT, GET, privilege tax and capped IMF
    reciprocity   - Credit for tax paid in another state
    aggregator    - Result assembly
    engine        - Dispatch and batch processing
    report        - JSON/CSV export and console rendering
    config        - Engine settings and logging setup
"""

import logging

from auto_tax_engine.aggregator import TaxComputationResult
from auto_tax_engine.config import EngineSettings, configure_logging
from auto_tax_engine.engine import BatchResult, TaxEngine
from auto_tax_engine.exceptions import (
    AutoTaxError,
    InvalidSchemeDispatch,
    MalformedTransaction,
    RateResolutionError,
    ReciprocityProofMissing,
    RuleValidationError,
    RulesNeedReview,
    UnknownJurisdiction,
    UnresolvedFeeCode,
    UnusableJurisdiction,
)
from auto_tax_engine.models import TransactionInput
from auto_tax_engine.rates import RateComponent, RateStack, StaticRateResolver
from auto_tax_engine.registry import RuleRegistry
from auto_tax_engine.rules import JurisdictionTaxRules

__version__ = "0.1.0"

logging.getLogger(__name__).addHandler(logging.NullHandler())

__all__ = [
    "AutoTaxError",
    "BatchResult",
    "EngineSettings",
    "InvalidSchemeDispatch",
    "JurisdictionTaxRules",
    "MalformedTransaction",
    "RateComponent",
    "RateResolutionError",
    "RateStack",
    "ReciprocityProofMissing",
    "RuleRegistry",
    "RuleValidationError",
    "RulesNeedReview",
    "StaticRateResolver",
    "TaxComputationResult",
    "TaxEngine",
    "TransactionInput",
    "UnknownJurisdiction",
    "UnresolvedFeeCode",
    "UnusableJurisdiction",
    "configure_logging",
]
