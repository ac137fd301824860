"""
Rate components and the ZIP-code local rate database.

Two halves:
- The rate-component aggregator, which turns a local tax summary or a
  detailed jurisdiction breakdown into the ordered {label, rate} list the
  calculator consumes.
- LocalRateDatabase, a read-only ZIP -> local rate lookup with per-state
  average fallbacks.

Rates are decimals, e.g. 0.0625 = 6.25%. Sample ZIP data covers major
metro areas only; anything else resolves through the state average.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional

from auto_tax_engine.models import ZERO, TaxRateComponent

STATE = "STATE"
COUNTY = "COUNTY"
CITY = "CITY"
SPECIAL_DISTRICT = "SPECIAL_DISTRICT"

_NON_ALNUM = re.compile(r"[^A-Za-z0-9]+")


@dataclass(frozen=True)
class LocalTaxInfo:
    """Flat local tax summary for one location."""

    state_code: str
    state_tax_rate: Decimal
    county_rate: Decimal = ZERO
    city_rate: Decimal = ZERO
    special_district_rate: Decimal = ZERO
    zip_code: str = ""
    county: str = ""
    city: str = ""
    source: str = "zip"  # zip, state_average

    @property
    def local_rate(self) -> Decimal:
        return self.county_rate + self.city_rate + self.special_district_rate

    @property
    def combined_rate(self) -> Decimal:
        return self.state_tax_rate + self.local_rate


@dataclass(frozen=True)
class JurisdictionRate:
    """One entry of a detailed jurisdiction breakdown."""

    jurisdiction_type: str  # STATE, COUNTY, CITY, SPECIAL_DISTRICT
    name: str
    rate: Decimal


@dataclass(frozen=True)
class StateVehicleRate:
    """State-level vehicle sales tax rate and its average local add-on."""

    state_code: str
    state_name: str
    state_rate: Decimal
    has_local_tax: bool
    avg_local_rate: Decimal


# ---------------------------------------------------------------------------
# Aggregator
# ---------------------------------------------------------------------------


def district_label(name: str) -> str:
    """DISTRICT_<NAME> with every run of non-alphanumerics collapsed to '_'."""
    cleaned = _NON_ALNUM.sub("_", name.strip()).strip("_").upper()
    return f"DISTRICT_{cleaned}" if cleaned else "DISTRICT"


def build_rate_components_from_local_info(
    info: LocalTaxInfo,
) -> list[TaxRateComponent]:
    """
    Build rate components from a flat summary.

    STATE is always present, even at 0. COUNTY, CITY and SPECIAL_DISTRICT
    appear only when their rate is non-zero.
    """
    components = [TaxRateComponent(STATE, info.state_tax_rate)]
    for label, rate in (
        (COUNTY, info.county_rate),
        (CITY, info.city_rate),
        (SPECIAL_DISTRICT, info.special_district_rate),
    ):
        if rate != ZERO:
            components.append(TaxRateComponent(label, rate))
    return components


def build_rate_components_from_breakdown(
    breakdown: Iterable[JurisdictionRate],
) -> list[TaxRateComponent]:
    """
    Build rate components from a detailed breakdown, preserving order.

    Special districts get a synthesized label so that several of them can
    coexist in one list.
    """
    components: list[TaxRateComponent] = []
    for entry in breakdown:
        kind = entry.jurisdiction_type.upper()
        if kind == SPECIAL_DISTRICT:
            label = district_label(entry.name)
        else:
            label = kind
        components.append(TaxRateComponent(label, entry.rate))
    return components


# ---------------------------------------------------------------------------
# State averages and sample ZIP data
# ---------------------------------------------------------------------------

_STATE_DATA: dict[str, dict] = {
    "AK": {"name": "Alaska", "rate": 0.0, "has_local": True, "avg_local": 0.0143},
    "AZ": {"name": "Arizona", "rate": 0.056, "has_local": True, "avg_local": 0.028},
    "CA": {"name": "California", "rate": 0.0725, "has_local": True, "avg_local": 0.0125},
    "DE": {"name": "Delaware", "rate": 0.0, "has_local": False, "avg_local": 0.0},
    "FL": {"name": "Florida", "rate": 0.06, "has_local": True, "avg_local": 0.01},
    "GA": {"name": "Georgia", "rate": 0.04, "has_local": True, "avg_local": 0.03},
    "IL": {"name": "Illinois", "rate": 0.0625, "has_local": True, "avg_local": 0.025},
    "IN": {"name": "Indiana", "rate": 0.07, "has_local": False, "avg_local": 0.0},
    "MI": {"name": "Michigan", "rate": 0.06, "has_local": False, "avg_local": 0.0},
    "MT": {"name": "Montana", "rate": 0.0, "has_local": False, "avg_local": 0.0},
    "NC": {"name": "North Carolina", "rate": 0.03, "has_local": True, "avg_local": 0.0225},
    "NH": {"name": "New Hampshire", "rate": 0.0, "has_local": False, "avg_local": 0.0},
    "NJ": {"name": "New Jersey", "rate": 0.06625, "has_local": False, "avg_local": 0.0},
    "NY": {"name": "New York", "rate": 0.04, "has_local": True, "avg_local": 0.045},
    "OH": {"name": "Ohio", "rate": 0.0575, "has_local": True, "avg_local": 0.0225},
    "OR": {"name": "Oregon", "rate": 0.0, "has_local": False, "avg_local": 0.0},
    "PA": {"name": "Pennsylvania", "rate": 0.06, "has_local": True, "avg_local": 0.01},
    "SC": {"name": "South Carolina", "rate": 0.05, "has_local": True, "avg_local": 0.0143},
    "TX": {"name": "Texas", "rate": 0.0625, "has_local": True, "avg_local": 0.0195},
    "WV": {"name": "West Virginia", "rate": 0.06, "has_local": True, "avg_local": 0.007},
}

# Combined local rate per ZIP, recorded as the city component.
_ZIP_DATA: dict[str, dict] = {
    "90001": {"state": "CA", "city": "Los Angeles", "county": "Los Angeles", "local": 0.025},
    "94102": {"state": "CA", "city": "San Francisco", "county": "San Francisco", "local": 0.01375},
    "92101": {"state": "CA", "city": "San Diego", "county": "San Diego", "local": 0.0175},
    "95814": {"state": "CA", "city": "Sacramento", "county": "Sacramento", "local": 0.0175},
    "77001": {"state": "TX", "city": "Houston", "county": "Harris", "local": 0.02},
    "78701": {"state": "TX", "city": "Austin", "county": "Travis", "local": 0.02},
    "75201": {"state": "TX", "city": "Dallas", "county": "Dallas", "local": 0.02},
    "78201": {"state": "TX", "city": "San Antonio", "county": "Bexar", "local": 0.02},
    "33101": {"state": "FL", "city": "Miami", "county": "Miami-Dade", "local": 0.01},
    "32801": {"state": "FL", "city": "Orlando", "county": "Orange", "local": 0.005},
    "33601": {"state": "FL", "city": "Tampa", "county": "Hillsborough", "local": 0.015},
    "32202": {"state": "FL", "city": "Jacksonville", "county": "Duval", "local": 0.015},
    "10001": {"state": "NY", "city": "New York City", "county": "New York", "local": 0.04875},
    "11201": {"state": "NY", "city": "Brooklyn", "county": "Kings", "local": 0.04875},
    "10451": {"state": "NY", "city": "Bronx", "county": "Bronx", "local": 0.04875},
    "14201": {"state": "NY", "city": "Buffalo", "county": "Erie", "local": 0.0475},
    "60601": {"state": "IL", "city": "Chicago", "county": "Cook", "local": 0.0475},
    "60101": {"state": "IL", "city": "Addison", "county": "DuPage", "local": 0.0175},
    "61601": {"state": "IL", "city": "Peoria", "county": "Peoria", "local": 0.035},
    "62701": {"state": "IL", "city": "Springfield", "county": "Sangamon", "local": 0.03},
}


class LocalRateDatabase:
    """
    Read-only ZIP -> local rate lookup.

    Built once; lookups never mutate it. A ZIP that is unknown (or that
    belongs to another state than the one asked for) resolves to the state
    rate plus the state's average local rate.
    """

    def __init__(self) -> None:
        self._states: dict[str, StateVehicleRate] = {}
        self._zips: dict[str, LocalTaxInfo] = {}
        self._load_rates()

    def _load_rates(self) -> None:
        for code, data in _STATE_DATA.items():
            self._states[code] = StateVehicleRate(
                state_code=code,
                state_name=data["name"],
                state_rate=Decimal(str(data["rate"])),
                has_local_tax=data["has_local"],
                avg_local_rate=Decimal(str(data["avg_local"])),
            )
        for zip_code, data in _ZIP_DATA.items():
            state = self._states[data["state"]]
            self._zips[zip_code] = LocalTaxInfo(
                state_code=state.state_code,
                state_tax_rate=state.state_rate,
                city_rate=Decimal(str(data["local"])),
                zip_code=zip_code,
                county=data["county"],
                city=data["city"],
                source="zip",
            )

    @property
    def state_count(self) -> int:
        return len(self._states)

    def get_state(self, state_code: str) -> Optional[StateVehicleRate]:
        return self._states.get(state_code.upper())

    def all_states(self) -> list[StateVehicleRate]:
        return [self._states[k] for k in sorted(self._states)]

    def zip_codes(self, state_code: Optional[str] = None) -> list[str]:
        """Known ZIP codes, optionally restricted to one state."""
        if state_code is None:
            return sorted(self._zips)
        code = state_code.upper()
        return sorted(z for z, info in self._zips.items() if info.state_code == code)

    def lookup(
        self, zip_code: Optional[str], state_code: Optional[str] = None
    ) -> Optional[LocalTaxInfo]:
        """
        Resolve a ZIP (and optional state) to a local tax summary.

        Returns None when neither the ZIP nor the state is known.
        """
        code = state_code.upper() if state_code else None
        hit = self._zips.get((zip_code or "").strip())
        if hit is not None and (code is None or hit.state_code == code):
            return hit
        if code is None:
            return None

        state = self._states.get(code)
        if state is None:
            return None
        local = state.avg_local_rate if state.has_local_tax else ZERO
        return LocalTaxInfo(
            state_code=code,
            state_tax_rate=state.state_rate,
            county_rate=local,
            zip_code=(zip_code or "").strip(),
            source="state_average",
        )

    def rate_components(
        self, zip_code: Optional[str], state_code: Optional[str] = None
    ) -> list[TaxRateComponent]:
        """Rate components for a location; empty when it cannot be resolved."""
        info = self.lookup(zip_code, state_code)
        if info is None:
            return []
        return build_rate_components_from_local_info(info)
