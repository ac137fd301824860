"""Tests for retail tax calculation and the TaxCalculator engine."""

from dataclasses import replace
from decimal import Decimal

import pytest

from auto_tax_engine.calculator import (
    BatchResult,
    TaxCalculator,
    apply_tax_rates,
    calculate_tax,
    scale_taxes,
)
from auto_tax_engine.errors import InvalidDealError, UnsupportedStateError
from auto_tax_engine.models import (
    CappedTradeInCredit,
    ComponentTax,
    DealType,
    FeeLine,
    HomeStateBehavior,
    NoTradeInCredit,
    OriginTaxInfo,
    PercentTradeInCredit,
    ReciprocityRules,
    TaxAmountBreakdown,
    TaxCalculationInput,
    TaxRateComponent,
    VehicleTaxScheme,
)
from auto_tax_engine.state_rules import US_SC


def _deal(price: str = "30000", **kwargs) -> TaxCalculationInput:
    kwargs.setdefault("rates", (TaxRateComponent("STATE", Decimal("0.06")),))
    return TaxCalculationInput(
        deal_type=DealType.RETAIL,
        vehicle_price=Decimal(price),
        **kwargs,
    )


def _rates(**labels: str) -> tuple[TaxRateComponent, ...]:
    return tuple(TaxRateComponent(k, Decimal(v)) for k, v in labels.items())


@pytest.fixture
def calc() -> TaxCalculator:
    return TaxCalculator()


# ── Trade-in credit ──────────────────────────────────────────────────


def test_full_trade_in_reduces_base(base_rules):
    result = calculate_tax(_deal(trade_in_value=Decimal("10000")), base_rules)
    assert result.mode == DealType.RETAIL
    assert result.bases.vehicle_base == Decimal("20000")
    assert result.bases.total_taxable_base == Decimal("20000")
    assert result.taxes.total_tax == Decimal("1200")
    assert result.debug.applied_trade_in == Decimal("10000")


def test_no_trade_in_credit(base_rules):
    rules = replace(base_rules, trade_in_policy=NoTradeInCredit())
    result = calculate_tax(_deal(trade_in_value=Decimal("10000")), rules)
    assert result.bases.vehicle_base == Decimal("30000")
    assert result.debug.applied_trade_in == Decimal("0")
    assert any("no credit" in n for n in result.debug.notes)


def test_capped_trade_in_credit(base_rules):
    rules = replace(base_rules, trade_in_policy=CappedTradeInCredit(Decimal("5000")))
    result = calculate_tax(_deal(trade_in_value=Decimal("8000")), rules)
    assert result.debug.applied_trade_in == Decimal("5000")
    assert result.bases.vehicle_base == Decimal("25000")


def test_percent_trade_in_credit(base_rules):
    rules = replace(base_rules, trade_in_policy=PercentTradeInCredit(Decimal("0.5")))
    result = calculate_tax(_deal(trade_in_value=Decimal("10000")), rules)
    assert result.debug.applied_trade_in == Decimal("5000")
    assert result.bases.vehicle_base == Decimal("25000")


def test_trade_in_exceeding_price_floors_base_at_zero(base_rules):
    result = calculate_tax(
        _deal("10000", trade_in_value=Decimal("15000"), doc_fee=Decimal("200")),
        base_rules,
    )
    assert result.bases.vehicle_base == Decimal("0")
    assert result.bases.fees_base == Decimal("200")
    assert result.taxes.total_tax == Decimal("12")
    assert any("floored" in n for n in result.debug.notes)


# ── Rebates ──────────────────────────────────────────────────────────


def test_manufacturer_rebate_non_taxable_reduces_base(base_rules):
    result = calculate_tax(_deal(rebate_manufacturer=Decimal("2000")), base_rules)
    assert result.bases.vehicle_base == Decimal("28000")
    assert result.taxes.total_tax == Decimal("1680")
    assert result.debug.applied_rebates_non_taxable == Decimal("2000")


def test_dealer_rebate_taxable_keeps_base(base_rules):
    result = calculate_tax(_deal(rebate_dealer=Decimal("1000")), base_rules)
    assert result.bases.vehicle_base == Decimal("30000")
    assert result.debug.applied_rebates_taxable == Decimal("1000")
    assert result.debug.applied_rebates_non_taxable == Decimal("0")


def test_rebate_without_rule_treated_non_taxable(base_rules):
    rules = replace(base_rules, rebates=())
    result = calculate_tax(_deal(rebate_dealer=Decimal("500")), rules)
    assert result.bases.vehicle_base == Decimal("29500")
    assert any("No rebate rule" in n for n in result.debug.notes)


# ── Fees and products ────────────────────────────────────────────────


def test_doc_fee_and_taxable_fees(base_rules):
    deal = _deal(
        doc_fee=Decimal("300"),
        other_fees=(FeeLine("TITLE", Decimal("25")), FeeLine("etch", Decimal("200"))),
    )
    result = calculate_tax(deal, base_rules)
    assert result.bases.fees_base == Decimal("500")
    assert result.debug.taxable_doc_fee == Decimal("300")
    assert [f.code for f in result.debug.taxable_fees] == ["etch"]
    assert any("Fee TITLE is not taxable" in n for n in result.debug.notes)


def test_doc_fee_not_taxable(base_rules):
    rules = replace(base_rules, doc_fee_taxable=False)
    result = calculate_tax(_deal(doc_fee=Decimal("300")), rules)
    assert result.bases.fees_base == Decimal("0")
    assert any("Doc fee" in n for n in result.debug.notes)


def test_unknown_fee_code_excluded_with_note(base_rules):
    result = calculate_tax(
        _deal(other_fees=(FeeLine("WIDGET", Decimal("100")),)), base_rules
    )
    assert result.bases.fees_base == Decimal("0")
    assert any("Unknown fee code WIDGET" in n for n in result.debug.notes)


def test_service_contracts_and_gap(base_rules):
    deal = _deal(service_contracts=Decimal("1500"), gap=Decimal("500"))
    result = calculate_tax(deal, base_rules)
    assert result.bases.products_base == Decimal("1500")
    assert result.debug.taxable_service_contracts == Decimal("1500")
    assert result.debug.taxable_gap == Decimal("0")
    assert "GAP not taxed" in result.debug.notes


def test_accessories_and_negative_equity(base_rules):
    deal = _deal(accessories_amount=Decimal("1000"), negative_equity=Decimal("2000"))
    assert calculate_tax(deal, base_rules).bases.vehicle_base == Decimal("33000")

    rules = replace(base_rules, tax_on_accessories=False, tax_on_negative_equity=False)
    result = calculate_tax(deal, rules)
    assert result.bases.vehicle_base == Decimal("30000")
    assert any("Accessories" in n for n in result.debug.notes)
    assert any("Negative equity" in n for n in result.debug.notes)


# ── Vehicle tax schemes ──────────────────────────────────────────────


def test_state_only_ignores_local_rates(base_rules):
    rules = replace(base_rules, vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY)
    deal = _deal("10000", rates=_rates(STATE="0.07", COUNTY="0.01", CITY="0.005"))
    result = calculate_tax(deal, rules)
    assert [c.label for c in result.taxes.component_taxes] == ["STATE"]
    assert result.taxes.total_tax == Decimal("700")


def test_state_plus_local_applies_all_rates(base_rules):
    deal = _deal("10000", rates=_rates(STATE="0.04", COUNTY="0.03", CITY="0.01"))
    result = calculate_tax(deal, base_rules)
    assert [c.label for c in result.taxes.component_taxes] == ["STATE", "COUNTY", "CITY"]
    assert result.taxes.total_tax == Decimal("800")


def test_local_only_drops_state_rate(base_rules):
    rules = replace(base_rules, vehicle_tax_scheme=VehicleTaxScheme.LOCAL_ONLY)
    deal = _deal("10000", rates=_rates(STATE="0.04", COUNTY="0.02"))
    result = calculate_tax(deal, rules)
    assert [c.label for c in result.taxes.component_taxes] == ["COUNTY"]
    assert result.taxes.total_tax == Decimal("200")


def test_no_rates_means_no_tax(base_rules):
    result = calculate_tax(_deal(rates=()), base_rules)
    assert result.taxes.total_tax == Decimal("0")
    assert result.taxes.component_taxes == ()
    assert result.bases.total_taxable_base == Decimal("30000")


# ── Maximum tax ──────────────────────────────────────────────────────


def test_south_carolina_cap():
    deal = _deal("100000", rates=_rates(STATE="0.05"))
    result = calculate_tax(deal, US_SC)
    assert result.taxes.total_tax == Decimal("500")
    assert sum(c.amount for c in result.taxes.component_taxes) == Decimal("500")
    assert any("capped at $500.00" in n for n in result.debug.notes)


def test_cap_not_applied_below_maximum():
    result = calculate_tax(_deal("5000", rates=_rates(STATE="0.05")), US_SC)
    assert result.taxes.total_tax == Decimal("250")


# ── Reciprocity on retail deals ──────────────────────────────────────


def test_retail_reciprocity_credit(base_rules):
    rules = replace(
        base_rules,
        reciprocity=ReciprocityRules(
            enabled=True,
            home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
        ),
    )
    deal = _deal(
        trade_in_value=Decimal("10000"),
        tax_already_collected=Decimal("500"),
        rates=_rates(STATE="0.04", COUNTY="0.02"),
    )
    result = calculate_tax(deal, rules)
    assert result.debug.reciprocity_credit == Decimal("500")
    assert result.taxes.total_tax == Decimal("700")
    assert sum(c.amount for c in result.taxes.component_taxes) == Decimal("700")


def test_no_reciprocity_when_nothing_paid(base_rules):
    result = calculate_tax(_deal(), base_rules)
    assert result.debug.reciprocity_credit == Decimal("0")
    assert not any("Reciprocity" in n for n in result.debug.notes)


def test_origin_without_tax_paid_is_noted(base_rules):
    deal = _deal(origin_tax_info=OriginTaxInfo("OH"))
    result = calculate_tax(deal, base_rules)
    assert result.debug.reciprocity_credit == Decimal("0")
    assert result.taxes.total_tax == Decimal("1800")
    assert any("Reciprocity not offered by XX" in n for n in result.debug.notes)

    enabled = replace(
        base_rules,
        reciprocity=ReciprocityRules(
            enabled=True,
            home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
        ),
    )
    result = calculate_tax(deal, enabled)
    assert any("No tax paid elsewhere" in n for n in result.debug.notes)


# ── Result invariants ────────────────────────────────────────────────


def test_result_totals_are_consistent(base_rules):
    deal = _deal(
        trade_in_value=Decimal("5000"),
        doc_fee=Decimal("150"),
        service_contracts=Decimal("900"),
        rates=_rates(STATE="0.05", COUNTY="0.0125", SPECIAL_DISTRICT="0.0025"),
    )
    result = calculate_tax(deal, base_rules)
    bases = result.bases
    assert bases.total_taxable_base == (
        bases.vehicle_base + bases.fees_base + bases.products_base
    )
    assert result.taxes.total_tax == sum(c.amount for c in result.taxes.component_taxes)
    assert result.lease_breakdown is None


def test_calculation_is_deterministic(base_rules):
    deal = _deal(trade_in_value=Decimal("1234.56"), rebate_manufacturer=Decimal("750"))
    assert calculate_tax(deal, base_rules) == calculate_tax(deal, base_rules)


# ── Tax amount helpers ───────────────────────────────────────────────


def test_apply_tax_rates_keeps_rate_order():
    taxes = apply_tax_rates(Decimal("1000"), _rates(CITY="0.01", STATE="0.05"))
    assert [(c.label, c.amount) for c in taxes.component_taxes] == [
        ("CITY", Decimal("10")),
        ("STATE", Decimal("50")),
    ]
    assert taxes.total_tax == Decimal("60")


def test_scale_taxes_proportional_and_exact():
    taxes = TaxAmountBreakdown(
        component_taxes=(
            ComponentTax("STATE", Decimal("0.06"), Decimal("60")),
            ComponentTax("COUNTY", Decimal("0.04"), Decimal("40")),
        ),
        total_tax=Decimal("100"),
    )
    scaled = scale_taxes(taxes, Decimal("50"))
    assert scaled.total_tax == Decimal("50")
    assert scaled.component_taxes[0].amount == Decimal("30")
    assert scaled.component_taxes[1].amount == Decimal("20")


def test_scale_taxes_remainder_goes_to_last_component():
    taxes = apply_tax_rates(Decimal("100"), _rates(A="0.01", B="0.01", C="0.01"))
    scaled = scale_taxes(taxes, Decimal("1"))
    assert sum(c.amount for c in scaled.component_taxes) == Decimal("1")


# ── TaxCalculator ────────────────────────────────────────────────────


def test_calculator_uses_state_rate_database(calc: TaxCalculator):
    deal = _deal(trade_in_value=Decimal("10000"), rates=())
    result = calc.calculate(deal, "in")
    # Indiana: 7% state-only
    assert result.taxes.total_tax == Decimal("1400")


def test_calculator_uses_zip_rates(calc: TaxCalculator):
    deal = _deal("10000", rates=(), zip_code="10001")
    result = calc.calculate(deal, "NY")
    # NY 4% + NYC 4.875%
    assert result.taxes.total_tax == Decimal("887.5")
    assert [c.label for c in result.taxes.component_taxes] == ["STATE", "CITY"]


def test_calculator_keeps_supplied_rates(calc: TaxCalculator):
    deal = _deal("10000", rates=_rates(STATE="0.05"))
    assert calc.calculate(deal, "IN").taxes.total_tax == Decimal("500")


@pytest.mark.parametrize(
    "origin, expected_tax, expected_note",
    [
        ("NJ", Decimal("700"), "Mutual credit confirmed: NJ reciprocates with PA"),
        ("NY", Decimal("1200"), "NY does not credit tax paid to PA"),
        ("OH", Decimal("1200"), "cannot be confirmed for OH"),
    ],
)
def test_calculator_resolves_mutual_credit(
    calc: TaxCalculator, origin, expected_tax, expected_note
):
    deal = _deal(
        "20000",
        tax_already_collected=Decimal("500"),
        origin_tax_info=OriginTaxInfo(origin),
    )
    result = calc.calculate(deal, "PA")
    assert result.taxes.total_tax == expected_tax
    assert any(expected_note in n for n in result.debug.notes)


def test_calculator_highway_use_tax(calc: TaxCalculator):
    result = calc.calculate(_deal("20000", rates=()), "NC")
    assert [c.label for c in result.taxes.component_taxes] == ["NC_HUT"]
    assert result.taxes.total_tax == Decimal("600")


def test_calculator_privilege_tax_vehicle_class(calc: TaxCalculator):
    result = calc.calculate(_deal("20000", rates=()), "WV", vehicle_class="RV")
    assert result.taxes.total_tax == Decimal("1200")


def test_calculator_unsupported_state(calc: TaxCalculator):
    with pytest.raises(UnsupportedStateError, match="ZZ"):
        calc.calculate(_deal(), "ZZ")


def test_calculator_requires_a_state(calc: TaxCalculator):
    with pytest.raises(InvalidDealError):
        calc.calculate(_deal())


def test_calculator_default_state():
    calc = TaxCalculator(default_state="in")
    assert calc.resolve_state(_deal()) == "IN"
    assert calc.resolve_state(_deal(state_code="NC")) == "NC"
    assert calc.resolve_state(_deal(state_code="NC"), "sc") == "SC"


# ── Batch calculation ────────────────────────────────────────────────


def test_batch_calculation(calc: TaxCalculator):
    deals = [
        _deal("10000", rates=(), state_code="IN", deal_id="D1"),
        _deal("100000", rates=(), state_code="SC", deal_id="D2"),
        _deal("20000", rates=(), state_code="ZZ", deal_id="D3"),
    ]
    batch = calc.calculate_batch(deals)
    assert isinstance(batch, BatchResult)
    assert batch.deal_count == 3
    assert batch.success_count == 2
    assert batch.total_tax == Decimal("1200")
    assert batch.state_breakdown == {"IN": Decimal("700"), "SC": Decimal("500")}
    assert batch.errors == ["Deal D3: Unsupported state code: ZZ"]


def test_batch_missing_state_reported_by_position(calc: TaxCalculator):
    batch = calc.calculate_batch([_deal(rates=())])
    assert batch.success_count == 0
    assert batch.errors == ["Deal 1: no state code given"]


def test_batch_includes_rejected_records(calc: TaxCalculator):
    rejected = [InvalidDealError("row 2: bad price", "D9")]
    batch = calc.calculate_batch([_deal("10000", rates=(), state_code="IN")], rejected)
    assert batch.deal_count == 2
    assert batch.success_count == 1
    assert batch.errors == ["Deal D9: row 2: bad price"]


def test_deal_from_dict():
    deal = TaxCalculationInput.from_dict(
        {
            "deal_id": "D-100",
            "vehicle_price": 25000,
            "trade_in_value": "5000.50",
            "other_fees": [{"code": "title", "amount": 25}],
            "rates": [{"label": "STATE", "rate": "0.07"}],
            "state_code": "in",
            "as_of_date": "2024-06-15",
        }
    )
    assert deal.deal_type == DealType.RETAIL
    assert deal.vehicle_price == Decimal("25000")
    assert deal.trade_in_value == Decimal("5000.50")
    assert deal.other_fees == (FeeLine("TITLE", Decimal("25")),)
    assert deal.state_code == "IN"
    assert deal.as_of_date.isoformat() == "2024-06-15"
    assert deal.lease is None
