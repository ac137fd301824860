"""Shared fixtures for the auto tax engine tests."""

from decimal import Decimal

import pytest
import structlog

from auto_tax_engine.config import get_settings
from auto_tax_engine.models import (
    FeeTaxRule,
    FullTradeInCredit,
    LeaseMethod,
    LeaseRules,
    RebateParty,
    RebateRule,
    ReciprocityRules,
    TaxRateComponent,
    TaxRulesConfig,
    VehicleTaxScheme,
)


@pytest.fixture
def base_rules() -> TaxRulesConfig:
    """A plain jurisdiction: full trade-in credit, all rates apply, no reciprocity."""
    return TaxRulesConfig(
        state_code="XX",
        version=1,
        trade_in_policy=FullTradeInCredit(),
        rebates=(
            RebateRule(RebateParty.MANUFACTURER, taxable=False),
            RebateRule(RebateParty.DEALER, taxable=True),
        ),
        doc_fee_taxable=True,
        fee_tax_rules=(
            FeeTaxRule("TITLE", False),
            FeeTaxRule("REG", False),
            FeeTaxRule("ETCH", True),
        ),
        tax_on_accessories=True,
        tax_on_negative_equity=True,
        tax_on_service_contracts=True,
        tax_on_gap=False,
        vehicle_tax_scheme=VehicleTaxScheme.STATE_PLUS_LOCAL,
        vehicle_uses_local_sales_tax=True,
        lease_rules=LeaseRules(method=LeaseMethod.MONTHLY),
        reciprocity=ReciprocityRules(enabled=False),
    )


@pytest.fixture
def state_rate() -> tuple[TaxRateComponent, ...]:
    return (TaxRateComponent("STATE", Decimal("0.06")),)


@pytest.fixture(autouse=True)
def _fresh_settings():
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()
    structlog.reset_defaults()
