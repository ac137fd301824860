"""
Rate and price selection for the named vehicle tax schemes.

The calculation core passes SPECIAL_TAVT, SPECIAL_HUT and DMV_PRIVILEGE_TAX
rates through untouched. What makes those schemes different (the TAVT
"higher of price or assessed value" base, the HUT flat rate, the privilege
tax class table) is resolved here, before the deal reaches calculate_tax.
"""

from __future__ import annotations

from dataclasses import replace
from decimal import Decimal
from typing import Optional

from auto_tax_engine.models import (
    HutConfig,
    PrivilegeTaxConfig,
    TavtConfig,
    TaxCalculationInput,
    TaxRateComponent,
    TaxRulesConfig,
    VehicleTaxScheme,
)

TAVT_LABEL = "GA_TAVT"
HUT_LABEL = "NC_HUT"
PRIVILEGE_LABEL = "WV_PRIVILEGE"


def tavt_taxable_price(
    price: Decimal, assessed_value: Optional[Decimal], config: TavtConfig
) -> Decimal:
    """Higher of sale price or assessed value, when the config asks for it."""
    if assessed_value is None or not config.use_higher_of_price_or_assessed:
        return price
    return max(price, assessed_value)


def privilege_rate(
    config: PrivilegeTaxConfig, vehicle_class: Optional[str] = None
) -> Decimal:
    """Class rate when the class is listed, else the base rate."""
    if vehicle_class:
        rate = config.vehicle_class_rates.get(vehicle_class.lower())
        if rate is not None:
            return rate
    return config.base_rate


def select_scheme_rates(
    rules: TaxRulesConfig, vehicle_class: Optional[str] = None
) -> Optional[list[TaxRateComponent]]:
    """
    Rate components a special scheme charges instead of sales tax.

    Returns None for ordinary schemes or when the scheme config is missing,
    in which case the caller keeps its own rates.
    """
    scheme = rules.vehicle_tax_scheme
    config = rules.special_scheme_config

    if scheme == VehicleTaxScheme.SPECIAL_TAVT and isinstance(config, TavtConfig):
        return [TaxRateComponent(TAVT_LABEL, config.rate)]
    if scheme == VehicleTaxScheme.SPECIAL_HUT and isinstance(config, HutConfig):
        return [TaxRateComponent(HUT_LABEL, config.rate)]
    if scheme == VehicleTaxScheme.DMV_PRIVILEGE_TAX and isinstance(
        config, PrivilegeTaxConfig
    ):
        return [TaxRateComponent(PRIVILEGE_LABEL, privilege_rate(config, vehicle_class))]
    return None


def prepare_special_scheme_deal(
    deal: TaxCalculationInput,
    rules: TaxRulesConfig,
    assessed_value: Optional[Decimal] = None,
    vehicle_class: Optional[str] = None,
) -> TaxCalculationInput:
    """
    Return a copy of deal with scheme rates (and TAVT price) filled in.

    Deals under ordinary schemes come back unchanged.
    """
    rates = select_scheme_rates(rules, vehicle_class)
    if rates is None:
        return deal

    price = deal.vehicle_price
    config = rules.special_scheme_config
    if isinstance(config, TavtConfig):
        price = tavt_taxable_price(price, assessed_value, config)
    return replace(deal, vehicle_price=price, rates=tuple(rates))
