"""
Automotive sales/use tax calculation engine.

Handles:
- Retail sales: trade-in credit, rebates, fee and product taxability
- Leases: monthly, full-upfront and hybrid taxation, special lease schemes
- Vehicle tax schemes (state-only, state+local, HUT, TAVT, privilege tax)
- Per-transaction tax ceilings
- Reciprocity credit for tax already paid elsewhere
- Single and batch calculation with state-code resolution

calculate_tax is a pure function of its two arguments: it does no I/O,
never raises for configuration gaps and records every non-default decision
in debug.notes.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Iterable, Optional, Sequence

from auto_tax_engine.errors import AutoTaxError, InvalidDealError
from auto_tax_engine.interpreters import (
    find_fee_rule,
    find_rebate_rule,
    format_money,
    interpret_lease_special_scheme,
    interpret_trade_in_policy,
    interpret_vehicle_tax_scheme,
    is_doc_fee_taxable,
)
from auto_tax_engine.logging import get_logger
from auto_tax_engine.models import (
    ZERO,
    AutoTaxDebug,
    ComponentTax,
    DealType,
    FeeLine,
    FeeTaxRule,
    LeaseMethod,
    LeaseRebateBehavior,
    LeaseTaxBreakdown,
    LeaseTerms,
    LeaseTitleFeeRule,
    LeaseTradeInCredit,
    RebateParty,
    TaxAmountBreakdown,
    TaxBaseBreakdown,
    TaxCalculationInput,
    TaxCalculationResult,
    TaxRateComponent,
    TaxRulesConfig,
)
from auto_tax_engine.rates import LocalRateDatabase
from auto_tax_engine.reciprocity import apply_reciprocity
from auto_tax_engine.special_schemes import prepare_special_scheme_deal
from auto_tax_engine.state_rules import DEFAULT_REGISTRY, StateRulesRegistry

logger = get_logger(__name__)

# Precision kept when scaling component taxes to a capped or credited total.
_SCALE_QUANTUM = Decimal("0.0000000001")

SERVICE_CONTRACT_CODE = "SERVICE_CONTRACT"
GAP_CODE = "GAP"


# ---------------------------------------------------------------------------
# Tax amount helpers
# ---------------------------------------------------------------------------


def apply_tax_rates(
    base: Decimal, rates: Sequence[TaxRateComponent]
) -> TaxAmountBreakdown:
    """One component tax per rate, in rate order."""
    components = tuple(ComponentTax(r.label, r.rate, base * r.rate) for r in rates)
    return TaxAmountBreakdown(
        component_taxes=components,
        total_tax=sum((c.amount for c in components), ZERO),
    )


def scale_taxes(taxes: TaxAmountBreakdown, new_total: Decimal) -> TaxAmountBreakdown:
    """
    Scale component taxes proportionally so they sum to new_total.

    The last component absorbs the remainder so the sum is exact.
    """
    components = taxes.component_taxes
    if taxes.total_tax == new_total or not components:
        return taxes
    if taxes.total_tax == ZERO:
        return taxes

    factor = new_total / taxes.total_tax
    scaled = [
        replace(c, amount=(c.amount * factor).quantize(_SCALE_QUANTUM))
        for c in components[:-1]
    ]
    remainder = new_total - sum((c.amount for c in scaled), ZERO)
    scaled.append(replace(components[-1], amount=remainder))
    return TaxAmountBreakdown(component_taxes=tuple(scaled), total_tax=new_total)


def _apply_max_tax(
    taxes: TaxAmountBreakdown, rules: TaxRulesConfig, notes: list[str]
) -> TaxAmountBreakdown:
    cap = rules.max_tax_amount
    if cap is None or taxes.total_tax <= cap:
        return taxes
    notes.append(
        f"Calculated tax {format_money(taxes.total_tax)} exceeds "
        f"{rules.state_code} maximum: capped at {format_money(cap)}"
    )
    return scale_taxes(taxes, cap)


def _apply_reciprocity(
    taxes: TaxAmountBreakdown,
    deal: TaxCalculationInput,
    rules: TaxRulesConfig,
    notes: list[str],
) -> tuple[TaxAmountBreakdown, Decimal]:
    # Deals that claim no tax paid elsewhere carry no reciprocity notes.
    if deal.tax_already_collected <= ZERO and deal.origin_tax_info is None:
        return taxes, ZERO
    result = apply_reciprocity(taxes.total_tax, deal, rules)
    notes.extend(result.notes)
    if not result.credit_allowed:
        return taxes, ZERO
    return scale_taxes(taxes, result.final_tax), result.credit


# ---------------------------------------------------------------------------
# Shared base steps
# ---------------------------------------------------------------------------


def _split_rebates(
    manufacturer: Decimal,
    dealer: Decimal,
    rules: TaxRulesConfig,
    notes: list[str],
) -> tuple[Decimal, Decimal]:
    """Return (taxable, non_taxable) rebate totals per the retail rebate rules."""
    taxable = ZERO
    non_taxable = ZERO
    for party, amount in (
        (RebateParty.MANUFACTURER, manufacturer),
        (RebateParty.DEALER, dealer),
    ):
        if amount <= ZERO:
            continue
        rule = find_rebate_rule(party, rules.rebates)
        name = party.value.lower()
        if rule is None:
            non_taxable += amount
            notes.append(
                f"No rebate rule for {name} rebate: treated as non-taxable, "
                f"base reduced by {format_money(amount)}"
            )
        elif rule.taxable:
            taxable += amount
            notes.append(
                f"{name.capitalize()} rebate {format_money(amount)} is taxable: "
                "base not reduced"
            )
        else:
            non_taxable += amount
            notes.append(
                f"{name.capitalize()} rebate {format_money(amount)} is non-taxable: "
                "base reduced"
            )
    return taxable, non_taxable


def _reduce_vehicle_base(
    gross: Decimal, reduction: Decimal, notes: list[str]
) -> Decimal:
    if reduction > gross:
        notes.append(
            f"Credits {format_money(reduction)} exceed vehicle subtotal "
            f"{format_money(gross)}: vehicle base floored at $0.00"
        )
        return ZERO
    return gross - reduction


def _taxable_other_fees(
    fees: Iterable[FeeLine],
    fee_rules: Iterable[FeeTaxRule],
    notes: list[str],
    title_rules: Iterable[LeaseTitleFeeRule] = (),
) -> list[FeeLine]:
    taxable: list[FeeLine] = []
    title_by_code = {r.code.upper(): r for r in title_rules}
    for fee in fees:
        title_rule = title_by_code.get(fee.code.upper())
        if title_rule is not None:
            if title_rule.taxable and title_rule.included_in_upfront:
                taxable.append(fee)
            else:
                notes.append(f"Title fee {fee.code} not taxed on lease")
            continue

        rule = find_fee_rule(fee.code, fee_rules)
        if rule is None:
            notes.append(
                f"Unknown fee code {fee.code} ({format_money(fee.amount)}): "
                "excluded from taxable base"
            )
        elif rule.taxable:
            taxable.append(fee)
        else:
            notes.append(f"Fee {fee.code} is not taxable")
    return taxable


def _debug(
    applied_trade_in: Decimal,
    rebates_taxable: Decimal,
    rebates_non_taxable: Decimal,
    taxable_doc_fee: Decimal,
    taxable_fees: Sequence[FeeLine],
    service_contracts: Decimal,
    gap: Decimal,
    credit: Decimal,
    notes: list[str],
) -> AutoTaxDebug:
    return AutoTaxDebug(
        applied_trade_in=applied_trade_in,
        applied_rebates_taxable=rebates_taxable,
        applied_rebates_non_taxable=rebates_non_taxable,
        taxable_doc_fee=taxable_doc_fee,
        taxable_fees=tuple(taxable_fees),
        taxable_service_contracts=service_contracts,
        taxable_gap=gap,
        reciprocity_credit=credit,
        notes=tuple(notes),
    )


# ---------------------------------------------------------------------------
# Retail
# ---------------------------------------------------------------------------


def _calculate_retail(
    deal: TaxCalculationInput, rules: TaxRulesConfig
) -> TaxCalculationResult:
    notes: list[str] = []

    applied_trade_in = interpret_trade_in_policy(
        rules.trade_in_policy, deal.trade_in_value, deal.vehicle_price, notes
    )
    rebates_taxable, rebates_non_taxable = _split_rebates(
        deal.rebate_manufacturer, deal.rebate_dealer, rules, notes
    )

    gross = deal.vehicle_price
    if rules.tax_on_accessories:
        gross += deal.accessories_amount
    elif deal.accessories_amount > ZERO:
        notes.append(f"Accessories {format_money(deal.accessories_amount)} not taxed")
    if rules.tax_on_negative_equity:
        gross += deal.negative_equity
    elif deal.negative_equity > ZERO:
        notes.append(f"Negative equity {format_money(deal.negative_equity)} not taxed")

    vehicle_base = _reduce_vehicle_base(
        gross, applied_trade_in + rebates_non_taxable, notes
    )

    taxable_doc_fee = ZERO
    if deal.doc_fee > ZERO:
        if is_doc_fee_taxable(DealType.RETAIL, rules):
            taxable_doc_fee = deal.doc_fee
        else:
            notes.append(f"Doc fee {format_money(deal.doc_fee)} not taxable in {rules.state_code}")
    taxable_fees = _taxable_other_fees(deal.other_fees, rules.fee_tax_rules, notes)
    fees_base = taxable_doc_fee + sum((f.amount for f in taxable_fees), ZERO)

    taxable_sc = ZERO
    if rules.tax_on_service_contracts:
        taxable_sc = deal.service_contracts
    elif deal.service_contracts > ZERO:
        notes.append("Service contracts not taxed")
    taxable_gap = ZERO
    if rules.tax_on_gap:
        taxable_gap = deal.gap
    elif deal.gap > ZERO:
        notes.append("GAP not taxed")
    products_base = taxable_sc + taxable_gap

    total_base = vehicle_base + fees_base + products_base

    effective_rates, scheme_notes = interpret_vehicle_tax_scheme(
        rules.vehicle_tax_scheme, deal.rates, rules
    )
    notes.extend(scheme_notes)

    taxes = apply_tax_rates(total_base, effective_rates)
    taxes = _apply_max_tax(taxes, rules, notes)
    taxes, credit = _apply_reciprocity(taxes, deal, rules, notes)

    return TaxCalculationResult(
        mode=DealType.RETAIL,
        bases=TaxBaseBreakdown(
            vehicle_base=vehicle_base,
            fees_base=fees_base,
            products_base=products_base,
            total_taxable_base=total_base,
        ),
        taxes=taxes,
        debug=_debug(
            applied_trade_in,
            rebates_taxable,
            rebates_non_taxable,
            taxable_doc_fee,
            taxable_fees,
            taxable_sc,
            taxable_gap,
            credit,
            notes,
        ),
    )


# ---------------------------------------------------------------------------
# Lease
# ---------------------------------------------------------------------------


def _lease_trade_in(
    deal: TaxCalculationInput,
    terms: LeaseTerms,
    rules: TaxRulesConfig,
    notes: list[str],
) -> tuple[Decimal, Decimal]:
    """Return (trade-in recorded as applied, reduction of the cap cost base)."""
    amount = terms.cap_reduction_trade_in or deal.trade_in_value
    mode = rules.lease_rules.trade_in_credit
    if amount <= ZERO:
        return ZERO, ZERO

    if mode == LeaseTradeInCredit.NONE:
        notes.append("Lease trade-in credit NONE: trade-in does not reduce the base")
        return ZERO, ZERO
    if mode in (LeaseTradeInCredit.FULL, LeaseTradeInCredit.CAP_COST_ONLY):
        notes.append(
            f"Lease trade-in credit {mode.value}: cap cost reduced by {format_money(amount)}"
        )
        return amount, amount
    if mode == LeaseTradeInCredit.APPLIED_TO_PAYMENT:
        notes.append(
            f"Lease trade-in {format_money(amount)} applied to payments, "
            "not to the taxable base"
        )
        return amount, ZERO
    if mode == LeaseTradeInCredit.FOLLOW_RETAIL_RULE:
        applied = interpret_trade_in_policy(
            rules.trade_in_policy, amount, terms.gross_cap_cost, notes
        )
        return applied, applied
    notes.append(f"Unknown lease trade-in credit {mode!r}: no credit applied")
    return ZERO, ZERO


def _lease_rebates(
    deal: TaxCalculationInput,
    terms: LeaseTerms,
    rules: TaxRulesConfig,
    notes: list[str],
) -> tuple[Decimal, Decimal]:
    manufacturer = terms.cap_reduction_rebate_manufacturer or deal.rebate_manufacturer
    dealer = terms.cap_reduction_rebate_dealer or deal.rebate_dealer
    total = manufacturer + dealer
    behavior = rules.lease_rules.rebate_behavior

    if behavior == LeaseRebateBehavior.ALWAYS_TAXABLE:
        if total > ZERO:
            notes.append(f"Lease rebates {format_money(total)} always taxable")
        return total, ZERO
    if behavior == LeaseRebateBehavior.ALWAYS_NON_TAXABLE:
        if total > ZERO:
            notes.append(f"Lease rebates {format_money(total)} reduce the cap cost base")
        return ZERO, total
    return _split_rebates(manufacturer, dealer, rules, notes)


def _lease_product(
    code: str,
    amount: Decimal,
    retail_flag: bool,
    rules: TaxRulesConfig,
    notes: list[str],
) -> Decimal:
    if amount <= ZERO:
        return ZERO
    rule = find_fee_rule(code, rules.lease_rules.fee_tax_rules)
    if rule is None:
        notes.append(f"No lease rule for {code}: retail taxability applies")
        taxable = retail_flag
    else:
        taxable = rule.taxable
    if not taxable:
        notes.append(f"{code} not taxed on lease")
        return ZERO
    return amount


def _calculate_lease(
    deal: TaxCalculationInput, rules: TaxRulesConfig
) -> TaxCalculationResult:
    notes: list[str] = []
    lease_rules = rules.lease_rules

    terms = deal.lease
    if terms is None:
        terms = LeaseTerms(gross_cap_cost=deal.vehicle_price)
        notes.append(
            "No lease terms supplied: gross cap cost taken from vehicle price, "
            "no payments"
        )
        if deal.accessories_amount > ZERO:
            notes.append(
                f"Accessories {format_money(deal.accessories_amount)} not in the "
                "cap cost without lease terms"
            )
    count = terms.payment_count

    applied_trade_in, trade_in_reduction = _lease_trade_in(deal, terms, rules, notes)
    rebates_taxable, rebates_non_taxable = _lease_rebates(deal, terms, rules, notes)

    gross = terms.gross_cap_cost
    if lease_rules.negative_equity_taxable:
        gross += deal.negative_equity
    elif deal.negative_equity > ZERO:
        notes.append(f"Negative equity {format_money(deal.negative_equity)} not taxed on lease")
    vehicle_base = _reduce_vehicle_base(
        gross, trade_in_reduction + rebates_non_taxable, notes
    )

    taxable_doc_fee = ZERO
    if deal.doc_fee > ZERO:
        if is_doc_fee_taxable(DealType.LEASE, rules):
            taxable_doc_fee = deal.doc_fee
        else:
            notes.append(f"Doc fee {format_money(deal.doc_fee)} not taxable on lease")
    taxable_fees = _taxable_other_fees(
        deal.other_fees, lease_rules.fee_tax_rules, notes, lease_rules.title_fee_rules
    )
    fees_base = taxable_doc_fee + sum((f.amount for f in taxable_fees), ZERO)

    taxable_sc = _lease_product(
        SERVICE_CONTRACT_CODE, deal.service_contracts, rules.tax_on_service_contracts, rules, notes
    )
    taxable_gap = _lease_product(GAP_CODE, deal.gap, rules.tax_on_gap, rules, notes)
    products_base = taxable_sc + taxable_gap

    adjustment = interpret_lease_special_scheme(
        lease_rules.special_scheme, terms.gross_cap_cost, terms.base_payment, count, rules
    )
    notes.extend(adjustment.notes)

    upfront_base = ZERO
    per_period_base = ZERO
    method = lease_rules.method

    if method == LeaseMethod.FULL_UPFRONT:
        upfront_base = vehicle_base + fees_base + products_base
        notes.append("Lease method FULL_UPFRONT: cap cost taxed once at signing")
    elif method == LeaseMethod.HYBRID:
        upfront_base = fees_base + products_base + terms.cap_reduction_cash + rebates_taxable
        per_period_base = terms.base_payment + adjustment.monthly_base_adjustment
        notes.append("Lease method HYBRID: cap cost reductions upfront plus payments")
    else:
        if method != LeaseMethod.MONTHLY:
            notes.append(f"Unknown lease method {method!r}: taxed as MONTHLY")
        else:
            notes.append("Lease method MONTHLY: tax on each payment")
        per_period_base = terms.base_payment + adjustment.monthly_base_adjustment
        spread = products_base
        if lease_rules.tax_fees_upfront:
            upfront_base += fees_base
        else:
            spread += fees_base
        if spread > ZERO:
            if count > 0:
                per_period_base += spread / count
            else:
                upfront_base += spread
                notes.append("No payment count: capitalized amounts taxed upfront")
        if lease_rules.tax_cap_reduction:
            upfront_base += terms.cap_reduction_cash
            if terms.cap_reduction_cash > ZERO:
                notes.append(
                    f"Cap cost reduction {format_money(terms.cap_reduction_cash)} taxed upfront"
                )
    upfront_base += adjustment.upfront_base_adjustment

    effective_rates, scheme_notes = interpret_vehicle_tax_scheme(
        rules.vehicle_tax_scheme, deal.rates, rules
    )
    notes.extend(scheme_notes)

    upfront_taxes = apply_tax_rates(upfront_base, effective_rates)
    if adjustment.special_fees:
        extra = tuple(ComponentTax(f.code, ZERO, f.amount) for f in adjustment.special_fees)
        upfront_taxes = TaxAmountBreakdown(
            component_taxes=upfront_taxes.component_taxes + extra,
            total_tax=upfront_taxes.total_tax + sum((c.amount for c in extra), ZERO),
        )
    upfront_taxes = _apply_max_tax(upfront_taxes, rules, notes)
    upfront_taxes, credit = _apply_reciprocity(upfront_taxes, deal, rules, notes)

    if method == LeaseMethod.FULL_UPFRONT:
        payment_taxes = TaxAmountBreakdown.empty()
    else:
        payment_taxes = apply_tax_rates(per_period_base, effective_rates)
    periods = max(count, 0)
    total_over_term = upfront_taxes.total_tax + payment_taxes.total_tax * periods

    return TaxCalculationResult(
        mode=DealType.LEASE,
        bases=TaxBaseBreakdown(
            vehicle_base=vehicle_base,
            fees_base=fees_base,
            products_base=products_base,
            total_taxable_base=vehicle_base + fees_base + products_base,
        ),
        taxes=upfront_taxes,
        debug=_debug(
            applied_trade_in,
            rebates_taxable,
            rebates_non_taxable,
            taxable_doc_fee,
            taxable_fees,
            taxable_sc,
            taxable_gap,
            credit,
            notes,
        ),
        lease_breakdown=LeaseTaxBreakdown(
            upfront_taxable_base=upfront_base,
            upfront_taxes=upfront_taxes,
            payment_taxable_base_per_period=per_period_base,
            payment_taxes_per_period=payment_taxes,
            special_fees=adjustment.special_fees,
            total_tax_over_term=total_over_term,
        ),
    )


def calculate_tax(
    deal: TaxCalculationInput, rules: TaxRulesConfig
) -> TaxCalculationResult:
    """
    Calculate tax on one retail sale or lease under one jurisdiction's rules.

    Neither argument is modified. Identical arguments always produce an
    identical result.
    """
    if deal.deal_type == DealType.LEASE:
        result = _calculate_lease(deal, rules)
    else:
        result = _calculate_retail(deal, rules)

    logger.debug(
        "tax_calculated",
        state=rules.state_code,
        deal_id=deal.deal_id or None,
        mode=result.mode.value,
        taxable_base=str(result.bases.total_taxable_base),
        total_tax=str(result.taxes.total_tax),
        reciprocity_credit=str(result.debug.reciprocity_credit),
    )
    return result


# ---------------------------------------------------------------------------
# State-resolving calculator
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class BatchItem:
    deal_id: str
    state_code: str
    result: TaxCalculationResult


@dataclass
class BatchResult:
    """Aggregated result for a batch of deals."""

    items: list[BatchItem]
    total_taxable_base: Decimal
    total_tax: Decimal
    deal_count: int
    state_breakdown: dict[str, Decimal]
    errors: list[str] = field(default_factory=list)

    @property
    def success_count(self) -> int:
        return len(self.items)


class TaxCalculator:
    """
    Resolves a state's rules and rates, then runs calculate_tax.

    Deals that carry no rates get the special-scheme rate for their state
    or, failing that, the local rate database's rates for the deal's ZIP code.
    Whether the origin state of tax already paid credits this state in turn
    is looked up in the registry.
    """

    def __init__(
        self,
        registry: Optional[StateRulesRegistry] = None,
        rate_db: Optional[LocalRateDatabase] = None,
        default_state: Optional[str] = None,
    ) -> None:
        self.registry = registry or DEFAULT_REGISTRY
        self.rate_db = rate_db or LocalRateDatabase()
        self.default_state = default_state.upper() if default_state else None

    def resolve_state(self, deal: TaxCalculationInput, state_code: Optional[str] = None) -> str:
        code = state_code or deal.state_code or self.default_state
        if not code:
            raise InvalidDealError("no state code given")
        return code.upper()

    def calculate(
        self,
        deal: TaxCalculationInput,
        state_code: Optional[str] = None,
        zip_code: Optional[str] = None,
        vehicle_class: Optional[str] = None,
    ) -> TaxCalculationResult:
        """
        Calculate tax for a deal, resolving its state's rules.

        Raises UnsupportedStateError when no rules exist for the state.
        """
        code = self.resolve_state(deal, state_code)
        rules = self.registry.require(code)
        if not deal.rates:
            prepared = prepare_special_scheme_deal(deal, rules, vehicle_class=vehicle_class)
            if prepared is deal:
                rates = self.rate_db.rate_components(zip_code or deal.zip_code, code)
                prepared = replace(deal, rates=tuple(rates))
            deal = prepared
        origin = deal.origin_tax_info
        if origin is not None and origin.mutual_credit is None:
            mutual = self.registry.mutual_credit(origin.state_code, code)
            if mutual is not None:
                deal = replace(deal, origin_tax_info=replace(origin, mutual_credit=mutual))
        return calculate_tax(deal, rules)

    def calculate_batch(
        self,
        deals: Iterable[TaxCalculationInput],
        rejected: Iterable[InvalidDealError] = (),
    ) -> BatchResult:
        """
        Calculate tax for a batch of deals.

        Deals that cannot be resolved are reported in errors; the rest of
        the batch still runs. rejected holds records that already failed to
        parse; they count towards the batch and are reported first.
        """
        items: list[BatchItem] = []
        errors: list[str] = [str(e) for e in rejected]
        total_base = ZERO
        total_tax = ZERO
        state_tax: dict[str, Decimal] = {}
        count = len(errors)

        for deal in deals:
            count += 1
            try:
                code = self.resolve_state(deal)
                result = self.calculate(deal, code)
            except AutoTaxError as e:
                errors.append(f"Deal {deal.deal_id or count}: {e}")
                logger.warning("batch_deal_failed", deal_id=deal.deal_id, error=str(e))
                continue

            items.append(BatchItem(deal.deal_id, code, result))
            total_base += result.bases.total_taxable_base
            total_tax += result.taxes.total_tax
            state_tax[code] = state_tax.get(code, ZERO) + result.taxes.total_tax

        return BatchResult(
            items=items,
            total_taxable_base=total_base,
            total_tax=total_tax,
            deal_count=count,
            state_breakdown=state_tax,
            errors=errors,
        )
