"""
Value types shared by the tax engine.

Three groups live here:
- Jurisdiction policy (TaxRulesConfig and its parts), supplied whole by
  the rules-lookup layer and never mutated by the engine.
- One transaction (TaxCalculationInput), built by the caller per call.
- The calculation output (TaxCalculationResult).

Money and rates are Decimal throughout. Rates are decimals, e.g.
0.0625 = 6.25%.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Any, ClassVar, Mapping, Optional, Union

ZERO = Decimal("0")


def to_decimal(value: Any) -> Decimal:
    """Coerce ints, floats and numeric strings to Decimal without float noise."""
    if value is None or value == "":
        return ZERO
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ---------------------------------------------------------------------------
# Policy enums
# ---------------------------------------------------------------------------


class DealType(Enum):
    RETAIL = "RETAIL"
    LEASE = "LEASE"


class RebateParty(Enum):
    """Who funds a rebate. ANY only appears on rules, never on a deal."""

    MANUFACTURER = "MANUFACTURER"
    DEALER = "DEALER"
    ANY = "ANY"


class VehicleTaxScheme(Enum):
    STATE_ONLY = "STATE_ONLY"
    STATE_PLUS_LOCAL = "STATE_PLUS_LOCAL"
    LOCAL_ONLY = "LOCAL_ONLY"
    SPECIAL_HUT = "SPECIAL_HUT"  # NC Highway Use Tax
    SPECIAL_TAVT = "SPECIAL_TAVT"  # GA Title Ad Valorem Tax
    DMV_PRIVILEGE_TAX = "DMV_PRIVILEGE_TAX"  # WV-style privilege tax


class LeaseMethod(Enum):
    MONTHLY = "MONTHLY"
    FULL_UPFRONT = "FULL_UPFRONT"
    HYBRID = "HYBRID"


class DocFeeTaxability(Enum):
    ALWAYS = "ALWAYS"
    NEVER = "NEVER"
    FOLLOW_RETAIL_RULE = "FOLLOW_RETAIL_RULE"
    ONLY_UPFRONT = "ONLY_UPFRONT"


class LeaseTradeInCredit(Enum):
    NONE = "NONE"
    FULL = "FULL"
    CAP_COST_ONLY = "CAP_COST_ONLY"
    APPLIED_TO_PAYMENT = "APPLIED_TO_PAYMENT"
    FOLLOW_RETAIL_RULE = "FOLLOW_RETAIL_RULE"


class LeaseRebateBehavior(Enum):
    FOLLOW_RETAIL_RULE = "FOLLOW_RETAIL_RULE"
    ALWAYS_TAXABLE = "ALWAYS_TAXABLE"
    ALWAYS_NON_TAXABLE = "ALWAYS_NON_TAXABLE"


class LeaseSpecialScheme(Enum):
    NONE = "NONE"
    NY_MTR = "NY_MTR"
    NJ_LUXURY = "NJ_LUXURY"
    PA_LEASE_TAX = "PA_LEASE_TAX"
    IL_CHICAGO_COOK = "IL_CHICAGO_COOK"
    TX_LEASE_SPECIAL = "TX_LEASE_SPECIAL"
    VA_USAGE = "VA_USAGE"
    MD_UPFRONT_GAIN = "MD_UPFRONT_GAIN"
    CO_HOME_RULE_LEASE = "CO_HOME_RULE_LEASE"
    GA_TAVT = "GA_TAVT"


class ReciprocityScope(Enum):
    RETAIL = "RETAIL"
    LEASE = "LEASE"
    BOTH = "BOTH"


class HomeStateBehavior(Enum):
    NONE = "NONE"
    CREDIT_UP_TO_STATE_RATE = "CREDIT_UP_TO_STATE_RATE"
    CREDIT_FULL = "CREDIT_FULL"
    HOME_STATE_ONLY = "HOME_STATE_ONLY"


class ReciprocityBasis(Enum):
    TAX_PAID = "TAX_PAID"


# ---------------------------------------------------------------------------
# Trade-in policy variants
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class NoTradeInCredit:
    kind: ClassVar[str] = "NONE"


@dataclass(frozen=True)
class FullTradeInCredit:
    kind: ClassVar[str] = "FULL"


@dataclass(frozen=True)
class CappedTradeInCredit:
    cap_amount: Decimal
    kind: ClassVar[str] = "CAPPED"


@dataclass(frozen=True)
class PercentTradeInCredit:
    percent: Decimal  # 0..1
    kind: ClassVar[str] = "PERCENT"


TradeInPolicy = Union[
    NoTradeInCredit, FullTradeInCredit, CappedTradeInCredit, PercentTradeInCredit
]


# ---------------------------------------------------------------------------
# Jurisdiction policy
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RebateRule:
    applies_to: RebateParty
    taxable: bool
    notes: str = ""


@dataclass(frozen=True)
class FeeTaxRule:
    code: str
    taxable: bool
    notes: str = ""


@dataclass(frozen=True)
class LeaseTitleFeeRule:
    code: str
    taxable: bool
    included_in_cap_cost: bool = True
    included_in_upfront: bool = True
    included_in_monthly: bool = False


@dataclass(frozen=True)
class LeaseRules:
    method: LeaseMethod
    tax_cap_reduction: bool = False
    rebate_behavior: LeaseRebateBehavior = LeaseRebateBehavior.FOLLOW_RETAIL_RULE
    doc_fee_taxability: DocFeeTaxability = DocFeeTaxability.FOLLOW_RETAIL_RULE
    trade_in_credit: LeaseTradeInCredit = LeaseTradeInCredit.FULL
    negative_equity_taxable: bool = True
    fee_tax_rules: tuple[FeeTaxRule, ...] = ()
    title_fee_rules: tuple[LeaseTitleFeeRule, ...] = ()
    tax_fees_upfront: bool = True
    special_scheme: LeaseSpecialScheme = LeaseSpecialScheme.NONE
    notes: str = ""


@dataclass(frozen=True)
class ReciprocityOverride:
    """
    Per-origin exception to the generic reciprocity computation.

    origin_state is a state code, a marker such as "TRIBAL", or "ALL".
    """

    origin_state: str
    disallow_credit: bool = False
    mode: Optional[HomeStateBehavior] = None
    max_age_days_since_tax_paid: Optional[int] = None
    requires_same_owner: bool = False
    requires_mutual_credit: bool = False
    cap_at_this_states_tax: Optional[bool] = None
    notes: str = ""


@dataclass(frozen=True)
class ReciprocityRules:
    enabled: bool
    scope: ReciprocityScope = ReciprocityScope.BOTH
    home_state_behavior: HomeStateBehavior = HomeStateBehavior.NONE
    require_proof_of_tax_paid: bool = False
    basis: ReciprocityBasis = ReciprocityBasis.TAX_PAID
    cap_at_this_states_tax: bool = True
    has_lease_exception: bool = False
    overrides: tuple[ReciprocityOverride, ...] = ()
    notes: str = ""


@dataclass(frozen=True)
class TavtConfig:
    rate: Decimal
    use_higher_of_price_or_assessed: bool = True


@dataclass(frozen=True)
class HutConfig:
    rate: Decimal


@dataclass(frozen=True)
class PrivilegeTaxConfig:
    base_rate: Decimal
    vehicle_class_rates: Mapping[str, Decimal] = field(default_factory=dict)


SpecialSchemeConfig = Union[TavtConfig, HutConfig, PrivilegeTaxConfig]


@dataclass(frozen=True)
class TaxRulesConfig:
    """One jurisdiction's complete vehicle tax policy."""

    state_code: str
    version: int
    trade_in_policy: TradeInPolicy
    rebates: tuple[RebateRule, ...]
    doc_fee_taxable: bool
    fee_tax_rules: tuple[FeeTaxRule, ...]
    tax_on_accessories: bool
    tax_on_negative_equity: bool
    tax_on_service_contracts: bool
    tax_on_gap: bool
    vehicle_tax_scheme: VehicleTaxScheme
    vehicle_uses_local_sales_tax: bool
    lease_rules: LeaseRules
    reciprocity: ReciprocityRules
    max_tax_amount: Optional[Decimal] = None
    special_scheme_config: Optional[SpecialSchemeConfig] = None
    notes: str = ""


# ---------------------------------------------------------------------------
# Transaction input
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class FeeLine:
    code: str
    amount: Decimal


@dataclass(frozen=True)
class TaxRateComponent:
    label: str
    rate: Decimal


@dataclass(frozen=True)
class LeaseTerms:
    gross_cap_cost: Decimal
    base_payment: Decimal = ZERO
    payment_count: int = 0
    cap_reduction_cash: Decimal = ZERO
    cap_reduction_trade_in: Decimal = ZERO
    cap_reduction_rebate_manufacturer: Decimal = ZERO
    cap_reduction_rebate_dealer: Decimal = ZERO

    @classmethod
    def from_dict(cls, data: dict) -> "LeaseTerms":
        return cls(
            gross_cap_cost=to_decimal(data.get("gross_cap_cost")),
            base_payment=to_decimal(data.get("base_payment")),
            payment_count=int(data.get("payment_count") or 0),
            cap_reduction_cash=to_decimal(data.get("cap_reduction_cash")),
            cap_reduction_trade_in=to_decimal(data.get("cap_reduction_trade_in")),
            cap_reduction_rebate_manufacturer=to_decimal(
                data.get("cap_reduction_rebate_manufacturer")
            ),
            cap_reduction_rebate_dealer=to_decimal(
                data.get("cap_reduction_rebate_dealer")
            ),
        )


@dataclass(frozen=True)
class OriginTaxInfo:
    """
    Where tax in TaxCalculationInput.tax_already_collected was paid.

    mutual_credit says whether the origin state credits tax paid to this
    state in turn. It is filled in by the calling layer from the origin
    state's rules; None means it is not known.
    """

    state_code: str
    tax_paid_date: Optional[date] = None
    same_owner: bool = True
    is_home_state: bool = False
    mutual_credit: Optional[bool] = None

    @classmethod
    def from_dict(cls, data: dict) -> "OriginTaxInfo":
        paid = data.get("tax_paid_date") or None
        mutual = data.get("mutual_credit")
        return cls(
            state_code=str(data["state_code"]).upper(),
            tax_paid_date=date.fromisoformat(paid) if isinstance(paid, str) else paid,
            same_owner=bool(data.get("same_owner", True)),
            is_home_state=bool(data.get("is_home_state", False)),
            mutual_credit=None if mutual is None else bool(mutual),
        )


@dataclass(frozen=True)
class TaxCalculationInput:
    """A single retail sale or lease."""

    deal_type: DealType
    vehicle_price: Decimal
    accessories_amount: Decimal = ZERO
    trade_in_value: Decimal = ZERO
    rebate_manufacturer: Decimal = ZERO
    rebate_dealer: Decimal = ZERO
    doc_fee: Decimal = ZERO
    other_fees: tuple[FeeLine, ...] = ()
    service_contracts: Decimal = ZERO
    gap: Decimal = ZERO
    negative_equity: Decimal = ZERO
    tax_already_collected: Decimal = ZERO
    rates: tuple[TaxRateComponent, ...] = ()
    deal_id: str = ""
    zip_code: str = ""
    state_code: Optional[str] = None
    as_of_date: Optional[date] = None
    lease: Optional[LeaseTerms] = None
    origin_tax_info: Optional[OriginTaxInfo] = None

    @classmethod
    def from_dict(cls, data: dict) -> "TaxCalculationInput":
        as_of = data.get("as_of_date") or None
        lease = data.get("lease")
        origin = data.get("origin_tax_info")
        return cls(
            deal_type=DealType(str(data.get("deal_type") or "RETAIL").upper()),
            vehicle_price=to_decimal(data["vehicle_price"]),
            accessories_amount=to_decimal(data.get("accessories_amount")),
            trade_in_value=to_decimal(data.get("trade_in_value")),
            rebate_manufacturer=to_decimal(data.get("rebate_manufacturer")),
            rebate_dealer=to_decimal(data.get("rebate_dealer")),
            doc_fee=to_decimal(data.get("doc_fee")),
            other_fees=tuple(
                FeeLine(str(f["code"]).upper(), to_decimal(f["amount"]))
                for f in data.get("other_fees", [])
            ),
            service_contracts=to_decimal(data.get("service_contracts")),
            gap=to_decimal(data.get("gap")),
            negative_equity=to_decimal(data.get("negative_equity")),
            tax_already_collected=to_decimal(data.get("tax_already_collected")),
            rates=tuple(
                TaxRateComponent(str(r["label"]), to_decimal(r["rate"]))
                for r in data.get("rates", [])
            ),
            deal_id=str(data.get("deal_id") or ""),
            zip_code=str(data.get("zip_code") or ""),
            state_code=(
                str(data["state_code"]).upper() if data.get("state_code") else None
            ),
            as_of_date=date.fromisoformat(as_of) if isinstance(as_of, str) else as_of,
            lease=LeaseTerms.from_dict(lease) if lease else None,
            origin_tax_info=OriginTaxInfo.from_dict(origin) if origin else None,
        )


# ---------------------------------------------------------------------------
# Calculation output
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class ComponentTax:
    label: str
    rate: Decimal
    amount: Decimal


@dataclass(frozen=True)
class TaxAmountBreakdown:
    component_taxes: tuple[ComponentTax, ...]
    total_tax: Decimal

    @classmethod
    def empty(cls) -> "TaxAmountBreakdown":
        return cls(component_taxes=(), total_tax=ZERO)


@dataclass(frozen=True)
class TaxBaseBreakdown:
    vehicle_base: Decimal
    fees_base: Decimal
    products_base: Decimal
    total_taxable_base: Decimal


@dataclass(frozen=True)
class LeaseTaxBreakdown:
    upfront_taxable_base: Decimal
    upfront_taxes: TaxAmountBreakdown
    payment_taxable_base_per_period: Decimal
    payment_taxes_per_period: TaxAmountBreakdown
    special_fees: tuple[FeeLine, ...]
    total_tax_over_term: Decimal


@dataclass(frozen=True)
class AutoTaxDebug:
    applied_trade_in: Decimal
    applied_rebates_taxable: Decimal
    applied_rebates_non_taxable: Decimal
    taxable_doc_fee: Decimal
    taxable_fees: tuple[FeeLine, ...]
    taxable_service_contracts: Decimal
    taxable_gap: Decimal
    reciprocity_credit: Decimal
    notes: tuple[str, ...]


@dataclass(frozen=True)
class TaxCalculationResult:
    mode: DealType
    bases: TaxBaseBreakdown
    taxes: TaxAmountBreakdown
    debug: AutoTaxDebug
    lease_breakdown: Optional[LeaseTaxBreakdown] = None
