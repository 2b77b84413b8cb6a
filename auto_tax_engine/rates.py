"""
Rate stacks and the jurisdiction rate resolver interface.

The engine does not own the zip/county/city rate store. It consumes a
``JurisdictionRateResolver`` that turns a buyer address into a
``RateStack`` (state rate plus local components). ``StaticRateResolver``
is an in-memory implementation over a supplied mapping, suitable for
tests and for hosts that preload their rate tables.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Protocol

from auto_tax_engine.exceptions import RateResolutionError
from auto_tax_engine.models import Jurisdiction
from auto_tax_engine.rules import RateScheme


@dataclass(frozen=True)
class RateComponent:
    """One layer of a stacked rate, e.g. STATE, COUNTY, CITY, DISTRICT."""

    label: str
    rate: Decimal  # decimal, e.g. 0.0625 = 6.25%
    jurisdiction_type: str = "state"  # state, county, city, district


@dataclass(frozen=True)
class RateStack:
    """Rates in force at a buyer address."""

    state_rate: Decimal
    local_components: tuple[RateComponent, ...] = ()


class JurisdictionRateResolver(Protocol):
    """Resolves a buyer jurisdiction to its rate stack."""

    def resolve(self, jurisdiction: Jurisdiction) -> RateStack:
        ...


class StaticRateResolver:
    """
    Rate resolver backed by an in-memory mapping.

    Stacks are keyed per state by zip code, county, or city. Lookup order
    is zip, then county, then city (case-insensitive), then the state's
    default stack if one was registered.
    """

    def __init__(self) -> None:
        self._by_zip: dict[tuple[str, str], RateStack] = {}
        self._by_county: dict[tuple[str, str], RateStack] = {}
        self._by_city: dict[tuple[str, str], RateStack] = {}
        self._defaults: dict[str, RateStack] = {}

    def add(
        self,
        state_code: str,
        stack: RateStack,
        *,
        zip_code: Optional[str] = None,
        county: Optional[str] = None,
        city: Optional[str] = None,
    ) -> "StaticRateResolver":
        state = state_code.upper()
        if zip_code:
            self._by_zip[(state, zip_code.strip())] = stack
        if county:
            self._by_county[(state, county.strip().lower())] = stack
        if city:
            self._by_city[(state, city.strip().lower())] = stack
        if not (zip_code or county or city):
            self._defaults[state] = stack
        return self

    @classmethod
    def from_rows(cls, rows: Iterable[dict]) -> "StaticRateResolver":
        """
        Build a resolver from flat rows.

        Each row: state_code, state_rate, optional zip_code/county/city and
        optional county_rate/city_rate/district_rate.
        """
        resolver = cls()
        for row in rows:
            components = tuple(
                RateComponent(label.upper(), Decimal(str(row[f"{label}_rate"])), label)
                for label in ("county", "city", "district")
                if row.get(f"{label}_rate") not in (None, "", 0)
            )
            resolver.add(
                row["state_code"],
                RateStack(Decimal(str(row["state_rate"])), components),
                zip_code=row.get("zip_code"),
                county=row.get("county"),
                city=row.get("city"),
            )
        return resolver

    def resolve(self, jurisdiction: Jurisdiction) -> RateStack:
        state = jurisdiction.state_code.upper()
        if jurisdiction.zip_code and (state, jurisdiction.zip_code) in self._by_zip:
            return self._by_zip[(state, jurisdiction.zip_code)]
        if jurisdiction.county:
            stack = self._by_county.get((state, jurisdiction.county.strip().lower()))
            if stack:
                return stack
        if jurisdiction.city:
            stack = self._by_city.get((state, jurisdiction.city.strip().lower()))
            if stack:
                return stack
        if state in self._defaults:
            return self._defaults[state]
        raise RateResolutionError(state, "no rate stack for the buyer address")


def rate_components(
    scheme: RateScheme,
    state_code: str,
    jurisdiction: Jurisdiction,
    state_rate: Optional[Decimal],
    resolver: Optional[JurisdictionRateResolver],
) -> tuple[RateComponent, ...]:
    """
    Rate components in force for a standard (non-special) rate scheme.

    STATE_ONLY uses the record's own state rate and never consults the
    resolver; STATE_PLUS_LOCAL stacks the resolver's state and local
    layers; LOCAL_ONLY keeps only the local layers.
    """
    if scheme is RateScheme.STATE_ONLY:
        if state_rate is None:
            raise RateResolutionError(state_code, "record has no state_rate")
        return (RateComponent("STATE", state_rate),)

    if resolver is None:
        raise RateResolutionError(
            state_code, f"{scheme.value} requires a jurisdiction rate resolver"
        )
    stack = resolver.resolve(jurisdiction)
    if scheme is RateScheme.LOCAL_ONLY:
        return stack.local_components
    return (RateComponent("STATE", stack.state_rate),) + stack.local_components
