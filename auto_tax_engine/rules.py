"""
Jurisdiction tax rule records.

One ``JurisdictionTaxRules`` record describes how a single jurisdiction
taxes vehicle purchases and leases. Records are pure data: the engine
interprets them, they never contain code. Every model is frozen and
forbids unknown keys so a record either validates completely or is
rejected at load.

Variant fields (trade-in policy, vehicle tax scheme) are tagged unions
discriminated by their ``type`` key.
"""

from __future__ import annotations

from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class _Record(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class TransactionType(str, Enum):
    RETAIL = "RETAIL"
    LEASE = "LEASE"


class Confidence(str, Enum):
    """How settled the legal research behind a rule is."""

    VERIFIED = "VERIFIED"
    NEEDS_REVIEW = "NEEDS_REVIEW"


class RebateSource(str, Enum):
    MANUFACTURER = "MANUFACTURER"
    DEALER = "DEALER"


class SchemeId(str, Enum):
    """Alternate pipelines that replace the stacked state+local rate."""

    TAVT = "TAVT"  # title ad valorem tax
    HUT = "HUT"  # highway use tax
    GET = "GET"  # general excise tax
    PRIVILEGE_TAX = "PRIVILEGE_TAX"
    IMF_CAPPED = "IMF_CAPPED"  # infrastructure maintenance fee with a cap


class RateScheme(str, Enum):
    """Standard (non-special) ways of assembling a rate."""

    STATE_ONLY = "STATE_ONLY"
    STATE_PLUS_LOCAL = "STATE_PLUS_LOCAL"
    LOCAL_ONLY = "LOCAL_ONLY"


class FeeOrder(str, Enum):
    TRADE_IN_FIRST = "TRADE_IN_FIRST"  # deductions reduce the price alone
    FEES_FIRST = "FEES_FIRST"  # fees enter the base before deductions


class LeaseMethod(str, Enum):
    MONTHLY = "MONTHLY"
    FULL_UPFRONT = "FULL_UPFRONT"
    HYBRID = "HYBRID"


class LeaseRebateBehavior(str, Enum):
    FOLLOW_RETAIL = "FOLLOW_RETAIL"
    ALWAYS_TAXABLE = "ALWAYS_TAXABLE"
    ALWAYS_NON_TAXABLE = "ALWAYS_NON_TAXABLE"


class DocFeeTaxability(str, Enum):
    ALWAYS = "ALWAYS"
    NEVER = "NEVER"
    FOLLOW_RETAIL = "FOLLOW_RETAIL"


class LeaseTradeInCredit(str, Enum):
    FULL = "FULL"
    NONE = "NONE"
    CAP_COST_ONLY = "CAP_COST_ONLY"  # lowers cap cost, neither taxed nor deducted
    FOLLOW_RETAIL = "FOLLOW_RETAIL"


class ReciprocityScope(str, Enum):
    RETAIL_ONLY = "RETAIL_ONLY"
    LEASE_ONLY = "LEASE_ONLY"
    BOTH = "BOTH"


class CreditBasis(str, Enum):
    TAX_PAID = "TAX_PAID"
    STATE_TAX_ONLY = "STATE_TAX_ONLY"  # only the state component is creditable


class LeaseBase(str, Enum):
    GROSS_CAP_COST = "GROSS_CAP_COST"
    AGREED_VALUE = "AGREED_VALUE"


# ---------------------------------------------------------------------------
# Tagged variants
# ---------------------------------------------------------------------------


class FullTradeIn(_Record):
    type: Literal["FULL"] = "FULL"


class NoTradeIn(_Record):
    type: Literal["NONE"] = "NONE"


class CappedTradeIn(_Record):
    type: Literal["CAPPED"] = "CAPPED"
    cap_amount: Decimal = Field(ge=0)


TradeInPolicy = Annotated[
    Union[FullTradeIn, NoTradeIn, CappedTradeIn], Field(discriminator="type")
]


class StateOnlyScheme(_Record):
    type: Literal["STATE_ONLY"] = "STATE_ONLY"


class StatePlusLocalScheme(_Record):
    type: Literal["STATE_PLUS_LOCAL"] = "STATE_PLUS_LOCAL"


class LocalOnlyScheme(_Record):
    type: Literal["LOCAL_ONLY"] = "LOCAL_ONLY"


class SpecialScheme(_Record):
    type: Literal["SPECIAL"] = "SPECIAL"
    scheme_id: SchemeId


VehicleTaxScheme = Annotated[
    Union[StateOnlyScheme, StatePlusLocalScheme, LocalOnlyScheme, SpecialScheme],
    Field(discriminator="type"),
]


# ---------------------------------------------------------------------------
# Rule blocks
# ---------------------------------------------------------------------------


class FeeTaxRule(_Record):
    """Explicit taxability for one fee or product code."""

    code: str = Field(min_length=1)
    taxable: bool
    cap: Optional[Decimal] = Field(default=None, ge=0)
    note: str = ""
    confidence: Confidence = Confidence.VERIFIED

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()


class RebateRule(_Record):
    taxable: bool
    note: str = ""
    confidence: Confidence = Confidence.VERIFIED


class RebateRules(_Record):
    manufacturer: RebateRule
    dealer: RebateRule

    def for_source(self, source: RebateSource) -> RebateRule:
        if source is RebateSource.MANUFACTURER:
            return self.manufacturer
        return self.dealer


class GlobalProductFlags(_Record):
    """Fallback taxability when a fee code has no explicit rule."""

    tax_on_accessories: bool
    tax_on_negative_equity: bool
    tax_on_service_contracts: bool
    tax_on_gap: bool


def _unique_codes(rules: tuple[FeeTaxRule, ...], where: str) -> None:
    seen: set[str] = set()
    for rule in rules:
        if rule.code in seen:
            raise ValueError(f"duplicate fee code {rule.code!r} in {where}")
        seen.add(rule.code)


class LeaseRules(_Record):
    method: LeaseMethod
    tax_cap_reduction_upfront: bool
    rebate_behavior: LeaseRebateBehavior
    doc_fee_taxability: DocFeeTaxability
    trade_in_credit: LeaseTradeInCredit
    negative_equity_taxable: bool
    fee_tax_rules: tuple[FeeTaxRule, ...]
    tax_fees_upfront: bool
    special_scheme: Optional[SchemeId] = None
    rate_scheme: Optional[RateScheme] = None
    confidence: Confidence = Confidence.VERIFIED
    note: str = ""

    @model_validator(mode="after")
    def _check_fee_codes(self) -> LeaseRules:
        _unique_codes(self.fee_tax_rules, "lease_rules.fee_tax_rules")
        return self


class ReciprocityOverride(_Record):
    """
    Origin-specific exception to the default reciprocity treatment.

    An override applies to a claim when its origin matches (or is ``ALL``)
    and the vehicle falls within its class and weight limits, if any.
    """

    origin: str = Field(min_length=2)  # jurisdiction code or ALL
    max_age_days: Optional[int] = Field(default=None, ge=0)
    disallow_credit: bool = False
    cap_at_home_tax: Optional[bool] = None
    requires_mutual_credit: bool = False
    requires_same_owner: bool = False
    vehicle_classes: tuple[str, ...] = ()
    min_gvw_lbs: Optional[int] = Field(default=None, ge=0)
    max_gvw_lbs: Optional[int] = Field(default=None, ge=0)
    note: str = ""

    @field_validator("origin")
    @classmethod
    def _upper_origin(cls, v: str) -> str:
        return v.strip().upper()

    @field_validator("vehicle_classes")
    @classmethod
    def _upper_classes(cls, v: tuple[str, ...]) -> tuple[str, ...]:
        return tuple(c.strip().upper() for c in v)

    @model_validator(mode="after")
    def _check_gvw_range(self) -> ReciprocityOverride:
        if (
            self.min_gvw_lbs is not None
            and self.max_gvw_lbs is not None
            and self.min_gvw_lbs > self.max_gvw_lbs
        ):
            raise ValueError("min_gvw_lbs must not exceed max_gvw_lbs")
        return self

    @property
    def is_exact(self) -> bool:
        return self.origin != "ALL"

    def matches(
        self,
        origin: str,
        vehicle_class: Optional[str] = None,
        gvw_lbs: Optional[int] = None,
    ) -> bool:
        if self.origin != "ALL" and self.origin != origin.upper():
            return False
        if self.vehicle_classes:
            if vehicle_class is None or vehicle_class.upper() not in self.vehicle_classes:
                return False
        if gvw_lbs is not None:
            if self.min_gvw_lbs is not None and gvw_lbs < self.min_gvw_lbs:
                return False
            if self.max_gvw_lbs is not None and gvw_lbs > self.max_gvw_lbs:
                return False
        return True


class ReciprocityRules(_Record):
    enabled: bool
    scope: ReciprocityScope
    credit_basis: CreditBasis
    cap_at_home_tax: bool
    require_proof: bool
    overrides: tuple[ReciprocityOverride, ...] = ()
    note: str = ""


class JurisdictionExtras(_Record):
    """Jurisdiction-specific constants consumed by the interpreters."""

    state_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    scheme_rate: Optional[Decimal] = Field(default=None, ge=0, le=1)
    tax_cap: Optional[Decimal] = Field(default=None, ge=0)
    vehicle_class_rates: dict[str, Decimal] = Field(default_factory=dict)
    use_assessed_value: bool = False
    county_surcharges: dict[str, Decimal] = Field(default_factory=dict)
    lease_base: LeaseBase = LeaseBase.GROSS_CAP_COST
    verified: bool = True
    review_notes: tuple[str, ...] = ()
    last_updated: Optional[str] = None
    sources: tuple[str, ...] = ()
    notes: str = ""


# ---------------------------------------------------------------------------
# Jurisdiction record
# ---------------------------------------------------------------------------


class JurisdictionTaxRules(_Record):
    """Complete, immutable tax rule record for one jurisdiction."""

    code: str = Field(min_length=2, max_length=8)
    version: int = Field(ge=1)
    name: str = ""
    trade_in_policy: TradeInPolicy
    rebate_rules: RebateRules
    doc_fee_taxable: bool
    doc_fee_cap: Optional[Decimal] = Field(default=None, ge=0)
    fee_tax_rules: tuple[FeeTaxRule, ...]
    global_product_flags: GlobalProductFlags
    vehicle_tax_scheme: VehicleTaxScheme
    uses_local_rate_stack: bool
    fee_order: FeeOrder = FeeOrder.TRADE_IN_FIRST
    lease_rules: LeaseRules
    reciprocity: ReciprocityRules
    extras: JurisdictionExtras = Field(default_factory=JurisdictionExtras)

    @field_validator("code")
    @classmethod
    def _upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def _check_consistency(self) -> JurisdictionTaxRules:
        _unique_codes(self.fee_tax_rules, "fee_tax_rules")

        scheme = self.vehicle_tax_scheme
        if isinstance(scheme, StateOnlyScheme):
            if self.extras.state_rate is None:
                raise ValueError("STATE_ONLY scheme requires extras.state_rate")
            if self.uses_local_rate_stack:
                raise ValueError("STATE_ONLY scheme cannot use a local rate stack")
        elif isinstance(scheme, (StatePlusLocalScheme, LocalOnlyScheme)):
            if not self.uses_local_rate_stack:
                raise ValueError(f"{scheme.type} scheme requires uses_local_rate_stack")

        lease = self.lease_rules
        if lease.special_scheme is None:
            lease_rates = self.lease_rate_scheme
            if lease_rates is None:
                raise ValueError(
                    "lease_rules.rate_scheme is required when the retail scheme "
                    "is SPECIAL and the lease has no special_scheme"
                )
            if lease_rates is RateScheme.STATE_ONLY and self.extras.state_rate is None:
                raise ValueError("STATE_ONLY lease rates require extras.state_rate")

        if self.reciprocity.credit_basis is CreditBasis.STATE_TAX_ONLY:
            local_only = [self.retail_rate_scheme]
            if lease.special_scheme is None:
                local_only.append(self.lease_rate_scheme)
            if RateScheme.LOCAL_ONLY in local_only:
                raise ValueError(
                    "STATE_TAX_ONLY credit basis cannot apply to LOCAL_ONLY rates, "
                    "which carry no state tax"
                )
        return self

    # ------------------------------------------------------------------
    # Dispatch helpers
    # ------------------------------------------------------------------

    @property
    def retail_scheme_id(self) -> Optional[SchemeId]:
        if isinstance(self.vehicle_tax_scheme, SpecialScheme):
            return self.vehicle_tax_scheme.scheme_id
        return None

    @property
    def lease_scheme_id(self) -> Optional[SchemeId]:
        return self.lease_rules.special_scheme

    def scheme_for(self, transaction_type: TransactionType) -> Optional[SchemeId]:
        """Special scheme for a (jurisdiction, transaction type) pair, if any."""
        if transaction_type is TransactionType.RETAIL:
            return self.retail_scheme_id
        return self.lease_scheme_id

    @property
    def retail_rate_scheme(self) -> Optional[RateScheme]:
        if isinstance(self.vehicle_tax_scheme, SpecialScheme):
            return None
        return RateScheme(self.vehicle_tax_scheme.type)

    @property
    def lease_rate_scheme(self) -> Optional[RateScheme]:
        return self.lease_rules.rate_scheme or self.retail_rate_scheme

    # ------------------------------------------------------------------
    # Confidence
    # ------------------------------------------------------------------

    @property
    def review_flags(self) -> tuple[str, ...]:
        """Rules in this record whose legal research is not settled."""
        flags: list[str] = []
        if not self.extras.verified:
            flags.append(f"{self.code}: jurisdiction record not verified")
        flags.extend(f"{self.code}: {note}" for note in self.extras.review_notes)
        for rule in self.fee_tax_rules:
            if rule.confidence is Confidence.NEEDS_REVIEW:
                flags.append(f"{self.code}: fee_tax_rules[{rule.code}] {rule.note}".rstrip())
        for source in RebateSource:
            rebate = self.rebate_rules.for_source(source)
            if rebate.confidence is Confidence.NEEDS_REVIEW:
                flags.append(f"{self.code}: rebate_rules.{source.value.lower()} {rebate.note}".rstrip())
        if self.lease_rules.confidence is Confidence.NEEDS_REVIEW:
            flags.append(f"{self.code}: lease_rules {self.lease_rules.note}".rstrip())
        for rule in self.lease_rules.fee_tax_rules:
            if rule.confidence is Confidence.NEEDS_REVIEW:
                flags.append(
                    f"{self.code}: lease_rules.fee_tax_rules[{rule.code}] {rule.note}".rstrip()
                )
        return tuple(flags)

    @property
    def confidence(self) -> Confidence:
        if self.review_flags:
            return Confidence.NEEDS_REVIEW
        return Confidence.VERIFIED
