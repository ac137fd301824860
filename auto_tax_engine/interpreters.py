"""
Policy interpreters.

Each function decodes one axis of a TaxRulesConfig. None of them raise for
configuration gaps: an unknown variant, fee code or scheme degrades to the
conservative answer and says so in the notes.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from auto_tax_engine.models import (
    ZERO,
    CappedTradeInCredit,
    DealType,
    DocFeeTaxability,
    FeeLine,
    FeeTaxRule,
    FullTradeInCredit,
    LeaseSpecialScheme,
    NoTradeInCredit,
    PercentTradeInCredit,
    RebateParty,
    RebateRule,
    TaxRateComponent,
    TaxRulesConfig,
    TradeInPolicy,
    VehicleTaxScheme,
)

NJ_LUXURY_THRESHOLD = Decimal("45000")
NJ_LUXURY_RATE = Decimal("0.004")
NJ_LUXURY_FEE_CODE = "NJ_LUXURY_TAX"


def format_money(amount: Decimal) -> str:
    return f"${amount:,.2f}"


# ---------------------------------------------------------------------------
# Trade-in
# ---------------------------------------------------------------------------


def interpret_trade_in_policy(
    policy: TradeInPolicy,
    trade_in_value: Decimal,
    vehicle_price: Decimal,
    notes: list[str],
) -> Decimal:
    """
    Return the trade-in credit a policy allows and append a note.

    The credit is not clamped against vehicle_price here; the caller limits
    the reduction so the vehicle base never goes negative.
    """
    if isinstance(policy, NoTradeInCredit):
        if trade_in_value > ZERO:
            notes.append("Trade-in policy NONE: no credit allowed")
        return ZERO

    if isinstance(policy, FullTradeInCredit):
        notes.append(f"Trade-in policy FULL: credit {format_money(trade_in_value)}")
        if trade_in_value > vehicle_price:
            notes.append(
                f"Trade-in {format_money(trade_in_value)} exceeds vehicle price "
                f"{format_money(vehicle_price)}"
            )
        return trade_in_value

    if isinstance(policy, CappedTradeInCredit):
        applied = min(trade_in_value, policy.cap_amount)
        notes.append(
            f"Trade-in policy CAPPED at {format_money(policy.cap_amount)}: "
            f"credit {format_money(applied)}"
        )
        return applied

    if isinstance(policy, PercentTradeInCredit):
        applied = trade_in_value * policy.percent
        notes.append(
            f"Trade-in policy PERCENT ({float(policy.percent * 100):g}%): "
            f"credit {format_money(applied)}"
        )
        return applied

    notes.append(f"Unknown trade-in policy {policy!r}: no credit applied")
    return ZERO


# ---------------------------------------------------------------------------
# Rebates
# ---------------------------------------------------------------------------


def find_rebate_rule(
    party: RebateParty, rebates: Iterable[RebateRule]
) -> Optional[RebateRule]:
    """Exact party match first, then an ANY rule, else None."""
    rebates = tuple(rebates)
    for rule in rebates:
        if rule.applies_to == party:
            return rule
    for rule in rebates:
        if rule.applies_to == RebateParty.ANY:
            return rule
    return None


def is_rebate_taxable(party: RebateParty, rules: TaxRulesConfig) -> bool:
    """
    True when the rebate stays in the taxable base.

    A jurisdiction with no matching rule is treated as non-taxable, so the
    rebate reduces the base.
    """
    rule = find_rebate_rule(party, rules.rebates)
    return rule.taxable if rule is not None else False


# ---------------------------------------------------------------------------
# Fees
# ---------------------------------------------------------------------------


def find_fee_rule(
    code: str, fee_rules: Iterable[FeeTaxRule]
) -> Optional[FeeTaxRule]:
    key = code.upper()
    for rule in fee_rules:
        if rule.code.upper() == key:
            return rule
    return None


def is_fee_taxable(code: str, deal_type: DealType, rules: TaxRulesConfig) -> bool:
    """Unknown fee codes are not taxable."""
    if deal_type == DealType.LEASE:
        fee_rules: Sequence[FeeTaxRule] = rules.lease_rules.fee_tax_rules
    else:
        fee_rules = rules.fee_tax_rules
    rule = find_fee_rule(code, fee_rules)
    return rule.taxable if rule is not None else False


def is_doc_fee_taxable(deal_type: DealType, rules: TaxRulesConfig) -> bool:
    if deal_type == DealType.RETAIL:
        return rules.doc_fee_taxable

    taxability = rules.lease_rules.doc_fee_taxability
    if taxability == DocFeeTaxability.ALWAYS:
        return True
    if taxability == DocFeeTaxability.NEVER:
        return False
    if taxability == DocFeeTaxability.FOLLOW_RETAIL_RULE:
        return rules.doc_fee_taxable
    if taxability == DocFeeTaxability.ONLY_UPFRONT:
        # Taxed once at signing, never again in the payment stream.
        return True
    return rules.doc_fee_taxable


# ---------------------------------------------------------------------------
# Vehicle tax scheme
# ---------------------------------------------------------------------------

_SCHEME_NOTES = {
    VehicleTaxScheme.SPECIAL_HUT: "SPECIAL_HUT (NC Highway Use Tax)",
    VehicleTaxScheme.SPECIAL_TAVT: "SPECIAL_TAVT (GA Title Ad Valorem Tax, one-time)",
    VehicleTaxScheme.DMV_PRIVILEGE_TAX: "DMV_PRIVILEGE_TAX (privilege tax collected at titling)",
}


def interpret_vehicle_tax_scheme(
    scheme: VehicleTaxScheme,
    rates: Sequence[TaxRateComponent],
    rules: TaxRulesConfig,
) -> tuple[list[TaxRateComponent], list[str]]:
    """
    Return the rate components that apply under a scheme, plus notes.

    Named special schemes pass rates through; the caller has already picked
    the right rates for them (see special_schemes.select_scheme_rates).
    """
    if scheme == VehicleTaxScheme.STATE_ONLY:
        effective = [r for r in rates if r.label == "STATE"]
        notes = ["Vehicle tax scheme STATE_ONLY: local rates ignored"]
        if not effective:
            notes.append("STATE_ONLY scheme but no STATE rate supplied: no tax computed")
        return effective, notes

    if scheme == VehicleTaxScheme.STATE_PLUS_LOCAL:
        return list(rates), ["Vehicle tax scheme STATE_PLUS_LOCAL: all rates apply"]

    if scheme == VehicleTaxScheme.LOCAL_ONLY:
        effective = [r for r in rates if r.label != "STATE"]
        return effective, ["Vehicle tax scheme LOCAL_ONLY: state rate ignored"]

    if scheme in _SCHEME_NOTES:
        return list(rates), [
            f"Vehicle tax scheme {_SCHEME_NOTES[scheme]} for {rules.state_code}"
        ]

    return list(rates), [f"Unknown vehicle tax scheme {scheme!r}: all rates apply"]


# ---------------------------------------------------------------------------
# Lease special schemes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class LeaseSchemeAdjustment:
    upfront_base_adjustment: Decimal = ZERO
    monthly_base_adjustment: Decimal = ZERO
    special_fees: tuple[FeeLine, ...] = ()
    notes: tuple[str, ...] = ()


_LEASE_SCHEME_NOTES: dict[LeaseSpecialScheme, tuple[str, ...]] = {
    LeaseSpecialScheme.NY_MTR: (
        "Lease scheme NY_MTR: Metropolitan Commuter Transportation District",
        "MCTD surcharge is carried in the supplied local rates",
    ),
    LeaseSpecialScheme.PA_LEASE_TAX: (
        "Lease scheme PA_LEASE_TAX: tax on payments, no upfront vehicle tax",
    ),
    LeaseSpecialScheme.IL_CHICAGO_COOK: (
        "Lease scheme IL_CHICAGO_COOK: Chicago/Cook County lease rates",
        "Chicago lease tax is carried in the supplied local rates",
    ),
    LeaseSpecialScheme.TX_LEASE_SPECIAL: (
        "Lease scheme TX_LEASE_SPECIAL: motor vehicle sales tax on the lease",
    ),
    LeaseSpecialScheme.VA_USAGE: (
        "Lease scheme VA_USAGE: motor vehicle sales and use tax",
    ),
    LeaseSpecialScheme.MD_UPFRONT_GAIN: (
        "Lease scheme MD_UPFRONT_GAIN: tax on upfront gain",
    ),
    LeaseSpecialScheme.CO_HOME_RULE_LEASE: (
        "Lease scheme CO_HOME_RULE_LEASE: home-rule cities may differ",
    ),
    LeaseSpecialScheme.GA_TAVT: (
        "Lease scheme GA_TAVT: TAVT collected at titling",
    ),
}


def interpret_lease_special_scheme(
    scheme: LeaseSpecialScheme,
    gross_cap_cost: Decimal,
    base_payment: Decimal,
    payment_count: int,
    rules: TaxRulesConfig,
) -> LeaseSchemeAdjustment:
    """Base adjustments and extra fees a lease scheme adds."""
    if scheme == LeaseSpecialScheme.NONE:
        return LeaseSchemeAdjustment(notes=("Lease scheme NONE: standard lease taxation",))

    if scheme == LeaseSpecialScheme.NJ_LUXURY:
        notes = ["Lease scheme NJ_LUXURY: luxury surcharge above threshold"]
        fees: tuple[FeeLine, ...] = ()
        if gross_cap_cost > NJ_LUXURY_THRESHOLD:
            amount = (gross_cap_cost - NJ_LUXURY_THRESHOLD) * NJ_LUXURY_RATE
            fees = (FeeLine(NJ_LUXURY_FEE_CODE, amount),)
            notes.append(
                f"NJ luxury surcharge {float(NJ_LUXURY_RATE * 100):g}% over "
                f"{format_money(NJ_LUXURY_THRESHOLD)} = {format_money(amount)}"
            )
        return LeaseSchemeAdjustment(special_fees=fees, notes=tuple(notes))

    if scheme in _LEASE_SCHEME_NOTES:
        return LeaseSchemeAdjustment(notes=_LEASE_SCHEME_NOTES[scheme])

    return LeaseSchemeAdjustment(
        notes=(f"Unknown lease scheme {scheme!r} for {rules.state_code}: no adjustment",)
    )
