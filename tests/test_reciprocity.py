"""Tests for reciprocity credit computation."""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest

from auto_tax_engine.models import (
    DealType,
    HomeStateBehavior,
    OriginTaxInfo,
    ReciprocityOverride,
    ReciprocityRules,
    ReciprocityScope,
    TaxCalculationInput,
    TaxRulesConfig,
)
from auto_tax_engine.reciprocity import (
    apply_reciprocity,
    credits_origin,
    find_reciprocity_override,
    is_within_time_window,
    origin_credit_mode,
    reciprocal_states,
    scope_covers,
    validate_reciprocity_config,
)

DUE = Decimal("1000")


def _deal(
    paid: str = "400",
    origin: str = "OH",
    deal_type: DealType = DealType.RETAIL,
    paid_on: date | None = date(2024, 4, 1),
    as_of: date | None = date(2024, 6, 1),
    same_owner: bool = True,
    is_home_state: bool = False,
    mutual_credit: bool | None = None,
) -> TaxCalculationInput:
    return TaxCalculationInput(
        deal_type=deal_type,
        vehicle_price=Decimal("20000"),
        tax_already_collected=Decimal(paid),
        as_of_date=as_of,
        origin_tax_info=OriginTaxInfo(
            origin,
            tax_paid_date=paid_on,
            same_owner=same_owner,
            is_home_state=is_home_state,
            mutual_credit=mutual_credit,
        ),
    )


def _rules(base: TaxRulesConfig, **recip) -> TaxRulesConfig:
    recip.setdefault("enabled", True)
    recip.setdefault("home_state_behavior", HomeStateBehavior.CREDIT_UP_TO_STATE_RATE)
    return replace(base, reciprocity=ReciprocityRules(**recip))


# ── Gates ────────────────────────────────────────────────────────────


def test_disabled_reciprocity(base_rules):
    result = apply_reciprocity(DUE, _deal(), base_rules)
    assert result.final_tax == DUE
    assert result.credit == 0
    assert result.credit_allowed is False
    assert "not offered" in result.notes[0]


def test_scope_excludes_deal_type(base_rules):
    rules = _rules(base_rules, scope=ReciprocityScope.LEASE)
    result = apply_reciprocity(DUE, _deal(), rules)
    assert result.credit == 0
    assert "LEASE deals only" in result.notes[0]


def test_lease_exception(base_rules):
    rules = _rules(base_rules, has_lease_exception=True)
    result = apply_reciprocity(DUE, _deal(deal_type=DealType.LEASE), rules)
    assert result.credit == 0
    assert "no reciprocity credit on leases" in result.notes[0]


def test_nothing_paid(base_rules):
    result = apply_reciprocity(DUE, _deal(paid="0"), _rules(base_rules))
    assert result.credit == 0
    assert result.final_tax == DUE


# ── Crediting modes ──────────────────────────────────────────────────


def test_credit_up_to_state_tax(base_rules):
    result = apply_reciprocity(DUE, _deal("400"), _rules(base_rules))
    assert result.credit == Decimal("400")
    assert result.final_tax == Decimal("600")


def test_credit_limited_to_tax_due(base_rules):
    result = apply_reciprocity(DUE, _deal("1500"), _rules(base_rules))
    assert result.credit == DUE
    assert result.final_tax == 0


def test_credit_full_uncapped_never_negative(base_rules):
    rules = _rules(
        base_rules,
        home_state_behavior=HomeStateBehavior.CREDIT_FULL,
        cap_at_this_states_tax=False,
    )
    result = apply_reciprocity(DUE, _deal("1500"), rules)
    assert result.credit == Decimal("1500")
    assert result.final_tax == 0


def test_credit_full_capped(base_rules):
    rules = _rules(base_rules, home_state_behavior=HomeStateBehavior.CREDIT_FULL)
    result = apply_reciprocity(DUE, _deal("1500"), rules)
    assert result.credit == DUE
    assert any("capped" in n for n in result.notes)


def test_home_state_only(base_rules):
    rules = _rules(base_rules, home_state_behavior=HomeStateBehavior.HOME_STATE_ONLY)
    assert apply_reciprocity(DUE, _deal(), rules).credit == 0
    assert apply_reciprocity(DUE, _deal(is_home_state=True), rules).credit == Decimal("400")


def test_behavior_none(base_rules):
    rules = _rules(base_rules, home_state_behavior=HomeStateBehavior.NONE)
    assert apply_reciprocity(DUE, _deal(), rules).credit == 0


def test_proof_of_payment_note(base_rules):
    rules = _rules(base_rules, require_proof_of_tax_paid=True)
    result = apply_reciprocity(DUE, _deal(), rules)
    assert any("requires proof of tax paid in OH" in n for n in result.notes)


# ── Overrides ────────────────────────────────────────────────────────


def test_override_disallows_credit(base_rules):
    override = ReciprocityOverride("OH", disallow_credit=True)
    rules = _rules(base_rules, overrides=(override,))
    result = apply_reciprocity(DUE, _deal(), rules)
    assert result.credit == 0
    assert result.override_applied == override


def test_override_time_window(base_rules):
    rules = _rules(
        base_rules, overrides=(ReciprocityOverride("ALL", max_age_days_since_tax_paid=90),)
    )
    assert apply_reciprocity(DUE, _deal(), rules).credit == Decimal("400")
    stale = apply_reciprocity(DUE, _deal(paid_on=date(2024, 1, 1)), rules)
    assert stale.credit == 0
    assert any("more than 90 days" in n for n in stale.notes)


def test_override_time_window_missing_date_denies_credit(base_rules):
    rules = _rules(
        base_rules, overrides=(ReciprocityOverride("ALL", max_age_days_since_tax_paid=90),)
    )
    result = apply_reciprocity(DUE, _deal(paid_on=None), rules)
    assert result.credit == 0
    assert any("missing" in n for n in result.notes)


def test_override_requires_same_owner(base_rules):
    rules = _rules(
        base_rules, overrides=(ReciprocityOverride("OH", requires_same_owner=True),)
    )
    assert apply_reciprocity(DUE, _deal(same_owner=False), rules).credit == 0
    assert apply_reciprocity(DUE, _deal(), rules).credit == Decimal("400")


def test_override_requires_mutual_credit(base_rules):
    rules = _rules(
        base_rules, overrides=(ReciprocityOverride("ALL", requires_mutual_credit=True),)
    )
    confirmed = apply_reciprocity(DUE, _deal(mutual_credit=True), rules)
    assert confirmed.credit == Decimal("400")
    assert any("Mutual credit confirmed: OH" in n for n in confirmed.notes)

    refused = apply_reciprocity(DUE, _deal(mutual_credit=False), rules)
    assert refused.credit == 0
    assert any("OH does not credit tax paid to XX" in n for n in refused.notes)

    unknown = apply_reciprocity(DUE, _deal(), rules)
    assert unknown.credit == 0
    assert any("cannot be confirmed" in n for n in unknown.notes)


def test_override_changes_mode_and_cap(base_rules):
    override = ReciprocityOverride(
        "OH", mode=HomeStateBehavior.CREDIT_FULL, cap_at_this_states_tax=False
    )
    rules = _rules(base_rules, overrides=(override,))
    result = apply_reciprocity(DUE, _deal("1200"), rules)
    assert result.credit == Decimal("1200")
    assert result.final_tax == 0


def test_override_lookup_prefers_exact_origin():
    exact = ReciprocityOverride("oh", disallow_credit=True)
    wildcard = ReciprocityOverride("ALL", max_age_days_since_tax_paid=30)
    assert find_reciprocity_override("OH", (wildcard, exact)) is exact
    assert find_reciprocity_override("KY", (wildcard, exact)) is wildcard
    assert find_reciprocity_override(None, (exact,)) is None


# ── Helpers ──────────────────────────────────────────────────────────


def test_time_window():
    assert is_within_time_window(date(2024, 1, 1), date(2024, 3, 31), 90) is True
    assert is_within_time_window(date(2024, 1, 1), date(2024, 4, 1), 90) is False
    assert is_within_time_window(None, date(2024, 4, 1), 90) is None


@pytest.mark.parametrize(
    "scope, deal_type, expected",
    [
        (ReciprocityScope.BOTH, DealType.LEASE, True),
        (ReciprocityScope.RETAIL, DealType.RETAIL, True),
        (ReciprocityScope.RETAIL, DealType.LEASE, False),
        (ReciprocityScope.LEASE, DealType.RETAIL, False),
    ],
)
def test_scope_covers(scope, deal_type, expected):
    assert scope_covers(scope, deal_type) is expected


def test_validate_reciprocity_config(base_rules):
    rules = _rules(
        base_rules,
        enabled=False,
        overrides=(
            ReciprocityOverride("OH"),
            ReciprocityOverride("oh", max_age_days_since_tax_paid=-1),
        ),
    )
    problems = validate_reciprocity_config(rules)
    assert len(problems) == 3
    assert any("duplicate" in p for p in problems)
    assert any("negative" in p for p in problems)
    assert any("disabled" in p for p in problems)


def test_valid_config_has_no_problems(base_rules):
    assert validate_reciprocity_config(_rules(base_rules)) == []


# ── Reciprocal states ────────────────────────────────────────────────


def test_origin_credit_mode(base_rules):
    assert origin_credit_mode(base_rules, "OH") == HomeStateBehavior.NONE

    rules = _rules(
        base_rules,
        overrides=(
            ReciprocityOverride("KY", disallow_credit=True),
            ReciprocityOverride("MI", mode=HomeStateBehavior.CREDIT_FULL),
        ),
    )
    assert origin_credit_mode(rules, "OH") == HomeStateBehavior.CREDIT_UP_TO_STATE_RATE
    assert origin_credit_mode(rules, "KY") == HomeStateBehavior.NONE
    assert origin_credit_mode(rules, "MI") == HomeStateBehavior.CREDIT_FULL
    assert credits_origin(rules, "OH") is True
    assert credits_origin(rules, "KY") is False


def test_reciprocal_states_lists_credited_origins(base_rules):
    rules = _rules(
        base_rules,
        overrides=(
            ReciprocityOverride("KY", disallow_credit=True),
            ReciprocityOverride("MI", max_age_days_since_tax_paid=60),
        ),
    )
    found = reciprocal_states(rules, ["ky", "MI", "OH", "XX"])
    assert [s.state_code for s in found] == ["MI", "OH"]
    assert found[0].has_restrictions is True
    assert found[1].has_restrictions is False
    assert found[1].mode == HomeStateBehavior.CREDIT_UP_TO_STATE_RATE


def test_reciprocal_states_empty_when_disabled(base_rules):
    assert reciprocal_states(base_rules, ["OH", "KY"]) == []
