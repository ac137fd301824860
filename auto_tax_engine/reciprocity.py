"""
Reciprocity credit for tax already paid to another jurisdiction.

The credit amount is always TaxCalculationInput.tax_already_collected;
OriginTaxInfo only says where and when it was paid. Overrides keyed by
origin state are matched first (exact code, then "ALL") and can deny the
credit outright, impose a time window, require the same owner or mutual
credit, or change the crediting mode. Whether the origin state credits this
state in turn is resolved by the caller from the origin state's rules and
passed in on OriginTaxInfo.mutual_credit.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, Optional

from auto_tax_engine.interpreters import format_money
from auto_tax_engine.models import (
    ZERO,
    DealType,
    HomeStateBehavior,
    ReciprocityOverride,
    ReciprocityScope,
    TaxCalculationInput,
    TaxRulesConfig,
)

ALL_ORIGINS = "ALL"


@dataclass(frozen=True)
class ReciprocityResult:
    final_tax: Decimal
    credit: Decimal
    notes: tuple[str, ...]
    override_applied: Optional[ReciprocityOverride] = None

    @property
    def credit_allowed(self) -> bool:
        return self.credit > ZERO


def find_reciprocity_override(
    origin_state: Optional[str], overrides: Iterable[ReciprocityOverride]
) -> Optional[ReciprocityOverride]:
    """Exact origin match first, then the ALL wildcard."""
    overrides = tuple(overrides)
    if origin_state:
        key = origin_state.upper()
        for override in overrides:
            if override.origin_state.upper() == key:
                return override
    for override in overrides:
        if override.origin_state.upper() == ALL_ORIGINS:
            return override
    return None


def is_within_time_window(
    tax_paid_date: Optional[date], as_of_date: Optional[date], max_age_days: int
) -> Optional[bool]:
    """None when either date is missing and the window cannot be checked."""
    if tax_paid_date is None or as_of_date is None:
        return None
    return (as_of_date - tax_paid_date).days <= max_age_days


def scope_covers(scope: ReciprocityScope, deal_type: DealType) -> bool:
    if scope == ReciprocityScope.BOTH:
        return True
    if scope == ReciprocityScope.RETAIL:
        return deal_type == DealType.RETAIL
    return deal_type == DealType.LEASE


def _no_credit(tax_due: Decimal, notes: list[str], override=None) -> ReciprocityResult:
    return ReciprocityResult(
        final_tax=tax_due, credit=ZERO, notes=tuple(notes), override_applied=override
    )


def apply_reciprocity(
    tax_due: Decimal, deal: TaxCalculationInput, rules: TaxRulesConfig
) -> ReciprocityResult:
    """
    Compute the credit against tax_due and the resulting final tax.

    The final tax is never negative.
    """
    recip = rules.reciprocity
    state = rules.state_code
    paid = deal.tax_already_collected
    origin = deal.origin_tax_info
    origin_code = origin.state_code if origin is not None else "another state"
    notes: list[str] = []

    if not recip.enabled:
        notes.append(f"Reciprocity not offered by {state}: no credit for tax paid elsewhere")
        return _no_credit(tax_due, notes)

    if not scope_covers(recip.scope, deal.deal_type):
        notes.append(
            f"Reciprocity in {state} covers {recip.scope.value} deals only: "
            f"no credit on {deal.deal_type.value}"
        )
        return _no_credit(tax_due, notes)

    if deal.deal_type == DealType.LEASE and recip.has_lease_exception:
        notes.append(f"{state} grants no reciprocity credit on leases")
        return _no_credit(tax_due, notes)

    if paid <= ZERO:
        notes.append("No tax paid elsewhere: no reciprocity credit")
        return _no_credit(tax_due, notes)

    behavior = recip.home_state_behavior
    cap = recip.cap_at_this_states_tax

    override = find_reciprocity_override(
        origin.state_code if origin is not None else None, recip.overrides
    )
    if override is not None:
        notes.append(
            f"Reciprocity override for origin {override.origin_state}"
            + (f": {override.notes}" if override.notes else "")
        )
        if override.disallow_credit:
            notes.append(f"{state} does not reciprocate with {origin_code}")
            return _no_credit(tax_due, notes, override)

        if override.max_age_days_since_tax_paid is not None:
            within = is_within_time_window(
                origin.tax_paid_date if origin is not None else None,
                deal.as_of_date,
                override.max_age_days_since_tax_paid,
            )
            if within is None:
                notes.append(
                    f"{state} requires tax paid within "
                    f"{override.max_age_days_since_tax_paid} days but the payment "
                    "or deal date is missing: no credit"
                )
                return _no_credit(tax_due, notes, override)
            if not within:
                notes.append(
                    f"Tax paid in {origin_code} more than "
                    f"{override.max_age_days_since_tax_paid} days ago: no credit"
                )
                return _no_credit(tax_due, notes, override)

        if override.requires_mutual_credit:
            mutual = origin.mutual_credit if origin is not None else None
            if mutual is None:
                notes.append(
                    f"{state} requires mutual credit but it cannot be confirmed "
                    f"for {origin_code}: no credit"
                )
                return _no_credit(tax_due, notes, override)
            if not mutual:
                notes.append(
                    f"{origin_code} does not credit tax paid to {state}: "
                    "mutual credit required, no credit"
                )
                return _no_credit(tax_due, notes, override)
            notes.append(f"Mutual credit confirmed: {origin_code} reciprocates with {state}")

        if override.requires_same_owner and (origin is None or not origin.same_owner):
            notes.append(
                f"{state} requires the same owner as when tax was paid in "
                f"{origin_code}: no credit"
            )
            return _no_credit(tax_due, notes, override)

        if override.mode is not None:
            behavior = override.mode
        if override.cap_at_this_states_tax is not None:
            cap = override.cap_at_this_states_tax

    if behavior == HomeStateBehavior.NONE:
        notes.append(f"{state} allows no reciprocity credit")
        return _no_credit(tax_due, notes, override)

    if behavior == HomeStateBehavior.CREDIT_UP_TO_STATE_RATE:
        credit = min(paid, tax_due)
        notes.append(
            f"Credit up to {state} tax: {format_money(credit)} "
            f"(paid {format_money(paid)}, due {format_money(tax_due)})"
        )
    elif behavior == HomeStateBehavior.CREDIT_FULL:
        credit = paid
        notes.append(f"Full credit for tax paid in {origin_code}: {format_money(credit)}")
    elif behavior == HomeStateBehavior.HOME_STATE_ONLY:
        if origin is None or not origin.is_home_state:
            notes.append(f"No credit: {origin_code} is not the owner's home state")
            return _no_credit(tax_due, notes, override)
        credit = min(paid, tax_due)
        notes.append(f"Home state credit: {format_money(credit)}")
    else:
        notes.append(f"Unknown reciprocity mode {behavior!r}: no credit")
        return _no_credit(tax_due, notes, override)

    if cap and credit > tax_due:
        credit = tax_due
        notes.append(f"Credit capped at {state} tax of {format_money(tax_due)}")

    if recip.require_proof_of_tax_paid:
        notes.append(f"{state} requires proof of tax paid in {origin_code}")

    final_tax = max(ZERO, tax_due - credit)
    return ReciprocityResult(
        final_tax=final_tax,
        credit=credit,
        notes=tuple(notes),
        override_applied=override,
    )


@dataclass(frozen=True)
class ReciprocalState:
    state_code: str
    mode: HomeStateBehavior
    has_restrictions: bool


def origin_credit_mode(rules: TaxRulesConfig, origin_state: str) -> HomeStateBehavior:
    """Crediting mode the rules' state applies to tax paid in origin_state."""
    recip = rules.reciprocity
    if not recip.enabled:
        return HomeStateBehavior.NONE
    override = find_reciprocity_override(origin_state, recip.overrides)
    if override is None:
        return recip.home_state_behavior
    if override.disallow_credit:
        return HomeStateBehavior.NONE
    return override.mode or recip.home_state_behavior


def credits_origin(rules: TaxRulesConfig, origin_state: str) -> bool:
    return origin_credit_mode(rules, origin_state) != HomeStateBehavior.NONE


def reciprocal_states(
    rules: TaxRulesConfig, candidates: Iterable[str]
) -> list[ReciprocalState]:
    """
    The candidate origin states whose tax the rules' state credits.

    has_restrictions marks origins whose override adds a time window, a
    same-owner requirement or a mutual-credit requirement.
    """
    found: list[ReciprocalState] = []
    for code in candidates:
        code = code.upper()
        if code == rules.state_code.upper():
            continue
        mode = origin_credit_mode(rules, code)
        if mode == HomeStateBehavior.NONE:
            continue
        override = find_reciprocity_override(code, rules.reciprocity.overrides)
        restricted = override is not None and (
            override.max_age_days_since_tax_paid is not None
            or override.requires_same_owner
            or override.requires_mutual_credit
        )
        found.append(ReciprocalState(code, mode, restricted))
    return found


def validate_reciprocity_config(rules: TaxRulesConfig) -> list[str]:
    """Configuration problems worth a warning; never raises."""
    problems: list[str] = []
    seen: set[str] = set()
    for override in rules.reciprocity.overrides:
        key = override.origin_state.upper()
        if key in seen:
            problems.append(
                f"{rules.state_code}: duplicate reciprocity override for {key}"
            )
        seen.add(key)
        days = override.max_age_days_since_tax_paid
        if days is not None and days < 0:
            problems.append(
                f"{rules.state_code}: negative time window ({days} days) for {key}"
            )
    if not rules.reciprocity.enabled and rules.reciprocity.overrides:
        problems.append(
            f"{rules.state_code}: reciprocity overrides defined but reciprocity disabled"
        )
    return problems
