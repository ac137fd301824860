"""
Per-state vehicle tax rules and the read-only registry that serves them.

Rules current as of the 2024-2025 legislative sessions for the states
shipped here. Sources: state revenue department and DMV publications.

The registry is built once at import time and never mutated afterwards;
lookups are case-insensitive and return None for states without rules.
"""

from __future__ import annotations

from decimal import Decimal
from types import MappingProxyType
from typing import Iterable, Optional

from auto_tax_engine.errors import UnsupportedStateError
from auto_tax_engine.logging import get_logger
from auto_tax_engine.models import (
    DocFeeTaxability,
    FeeTaxRule,
    FullTradeInCredit,
    HomeStateBehavior,
    HutConfig,
    LeaseMethod,
    LeaseRebateBehavior,
    LeaseRules,
    LeaseSpecialScheme,
    LeaseTitleFeeRule,
    LeaseTradeInCredit,
    NoTradeInCredit,
    PrivilegeTaxConfig,
    RebateParty,
    RebateRule,
    ReciprocityOverride,
    ReciprocityRules,
    ReciprocityScope,
    TavtConfig,
    TaxRulesConfig,
    VehicleTaxScheme,
)
from auto_tax_engine.reciprocity import (
    ReciprocalState,
    credits_origin,
    reciprocal_states,
    validate_reciprocity_config,
)

logger = get_logger(__name__)


def _fee_rules(doc_fee: Optional[bool], products: bool, *extra: str) -> tuple[FeeTaxRule, ...]:
    """DOC_FEE (when given), SERVICE_CONTRACT, GAP, then non-taxable govt fees."""
    rules = []
    if doc_fee is not None:
        rules.append(FeeTaxRule("DOC_FEE", doc_fee))
    rules.append(FeeTaxRule("SERVICE_CONTRACT", products))
    rules.append(FeeTaxRule("GAP", products))
    for code in ("TITLE", "REG") + extra:
        rules.append(FeeTaxRule(code, False))
    return tuple(rules)


_TITLE_FEES = (
    LeaseTitleFeeRule("TITLE", taxable=False, included_in_cap_cost=False),
    LeaseTitleFeeRule("REG", taxable=False, included_in_cap_cost=False),
)

_MFR_REDUCES = (
    RebateRule(RebateParty.MANUFACTURER, taxable=False),
    RebateRule(RebateParty.DEALER, taxable=True),
)

_ALL_REBATES_TAXABLE = (
    RebateRule(RebateParty.MANUFACTURER, taxable=True),
    RebateRule(RebateParty.DEALER, taxable=True),
)

_STANDARD_RECIPROCITY = ReciprocityRules(
    enabled=True,
    scope=ReciprocityScope.BOTH,
    home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
    require_proof_of_tax_paid=True,
    cap_at_this_states_tax=True,
)

_NO_RECIPROCITY = ReciprocityRules(
    enabled=False,
    home_state_behavior=HomeStateBehavior.NONE,
    cap_at_this_states_tax=False,
)


US_IN = TaxRulesConfig(
    state_code="IN",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, True, "LIEN"),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=True,
    tax_on_gap=True,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, False),
        title_fee_rules=_TITLE_FEES,
        notes="Tax on each payment; cap cost reductions are not taxed.",
    ),
    reciprocity=_STANDARD_RECIPROCITY,
    notes="7% state-only rate; doc fee capped at $250 (IC 6-6-5.5).",
)

US_SC = TaxRulesConfig(
    state_code="SC",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_ALL_REBATES_TAXABLE,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(True, False, "IMF"),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.FULL_UPFRONT,
        rebate_behavior=LeaseRebateBehavior.ALWAYS_TAXABLE,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, False, "IMF"),
        title_fee_rules=_TITLE_FEES,
        notes="IMF collected once at lease signing; no tax on payments.",
    ),
    reciprocity=_NO_RECIPROCITY,
    max_tax_amount=Decimal("500"),
    notes="Infrastructure Maintenance Fee: 5% capped at $500.",
)

US_NC = TaxRulesConfig(
    state_code="NC",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, False),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.SPECIAL_HUT,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, False),
        title_fee_rules=_TITLE_FEES,
    ),
    reciprocity=ReciprocityRules(
        enabled=True,
        scope=ReciprocityScope.BOTH,
        home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
        require_proof_of_tax_paid=True,
        cap_at_this_states_tax=True,
        overrides=(
            ReciprocityOverride(
                origin_state="ALL",
                max_age_days_since_tax_paid=90,
                notes="HUT credit only for tax paid within 90 days",
            ),
        ),
    ),
    special_scheme_config=HutConfig(rate=Decimal("0.03")),
    notes="3% Highway Use Tax in place of sales tax.",
)

US_GA = TaxRulesConfig(
    state_code="GA",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_ALL_REBATES_TAXABLE,
    doc_fee_taxable=False,
    fee_tax_rules=_fee_rules(None, False),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.SPECIAL_TAVT,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        rebate_behavior=LeaseRebateBehavior.ALWAYS_TAXABLE,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.CAP_COST_ONLY,
        fee_tax_rules=_fee_rules(True, False),
        title_fee_rules=_TITLE_FEES,
        special_scheme=LeaseSpecialScheme.GA_TAVT,
    ),
    reciprocity=_STANDARD_RECIPROCITY,
    special_scheme_config=TavtConfig(rate=Decimal("0.07")),
    notes="One-time 7% Title Ad Valorem Tax on the higher of price or assessed value.",
)

US_WV = TaxRulesConfig(
    state_code="WV",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, True),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=True,
    tax_on_gap=True,
    vehicle_tax_scheme=VehicleTaxScheme.DMV_PRIVILEGE_TAX,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, True),
        title_fee_rules=_TITLE_FEES,
    ),
    reciprocity=_STANDARD_RECIPROCITY,
    special_scheme_config=PrivilegeTaxConfig(
        base_rate=Decimal("0.05"),
        vehicle_class_rates=MappingProxyType({
            "auto": Decimal("0.05"),
            "truck": Decimal("0.05"),
            "rv": Decimal("0.06"),
            "trailer": Decimal("0.03"),
            "motorcycle": Decimal("0.05"),
        }),
    ),
    notes="Privilege tax collected by the DMV at titling.",
)

US_NY = TaxRulesConfig(
    state_code="NY",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, True),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=True,
    tax_on_gap=True,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_PLUS_LOCAL,
    vehicle_uses_local_sales_tax=True,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, True),
        title_fee_rules=_TITLE_FEES,
        special_scheme=LeaseSpecialScheme.NY_MTR,
    ),
    reciprocity=_NO_RECIPROCITY,
    notes="4% state plus local rates; MCTD surcharge in the metro region.",
)

US_NJ = TaxRulesConfig(
    state_code="NJ",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_ALL_REBATES_TAXABLE,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, True),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=True,
    tax_on_gap=True,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.FULL_UPFRONT,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, True),
        title_fee_rules=_TITLE_FEES,
        special_scheme=LeaseSpecialScheme.NJ_LUXURY,
    ),
    reciprocity=_STANDARD_RECIPROCITY,
    notes="6.625% state rate; luxury surcharge on leases above $45,000.",
)

US_PA = TaxRulesConfig(
    state_code="PA",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=False,
    fee_tax_rules=_fee_rules(None, False),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_PLUS_LOCAL,
    vehicle_uses_local_sales_tax=True,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.NEVER,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(False, False),
        title_fee_rules=_TITLE_FEES,
        tax_fees_upfront=False,
        special_scheme=LeaseSpecialScheme.PA_LEASE_TAX,
    ),
    reciprocity=ReciprocityRules(
        enabled=True,
        scope=ReciprocityScope.BOTH,
        home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
        require_proof_of_tax_paid=True,
        cap_at_this_states_tax=True,
        overrides=(
            ReciprocityOverride(
                origin_state="ALL",
                requires_mutual_credit=True,
                notes="Credit only for states that credit Pennsylvania tax",
            ),
        ),
    ),
    notes="6% state plus 1% Allegheny / 2% Philadelphia local rates.",
)

US_AZ = TaxRulesConfig(
    state_code="AZ",
    version=2,
    trade_in_policy=FullTradeInCredit(),
    rebates=_MFR_REDUCES,
    doc_fee_taxable=True,
    fee_tax_rules=_fee_rules(None, False, "VLT"),
    tax_on_accessories=True,
    tax_on_negative_equity=True,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_PLUS_LOCAL,
    vehicle_uses_local_sales_tax=True,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        tax_cap_reduction=True,
        rebate_behavior=LeaseRebateBehavior.ALWAYS_TAXABLE,
        doc_fee_taxability=DocFeeTaxability.ALWAYS,
        trade_in_credit=LeaseTradeInCredit.FULL,
        fee_tax_rules=_fee_rules(True, False),
        title_fee_rules=_TITLE_FEES,
    ),
    reciprocity=ReciprocityRules(
        enabled=True,
        scope=ReciprocityScope.BOTH,
        home_state_behavior=HomeStateBehavior.CREDIT_UP_TO_STATE_RATE,
        require_proof_of_tax_paid=True,
        cap_at_this_states_tax=True,
        overrides=(
            ReciprocityOverride(
                origin_state="TRIBAL",
                disallow_credit=False,
                notes="Tribal-land purchases by enrolled members",
            ),
        ),
    ),
    notes="5.6% TPT plus city and county rates; VLT billed separately.",
)

US_OR = TaxRulesConfig(
    state_code="OR",
    version=2,
    trade_in_policy=NoTradeInCredit(),
    rebates=(
        RebateRule(RebateParty.MANUFACTURER, taxable=False),
        RebateRule(RebateParty.DEALER, taxable=False),
    ),
    doc_fee_taxable=False,
    fee_tax_rules=_fee_rules(None, False, "PLATE_FEE", "VIN_INSPECTION"),
    tax_on_accessories=False,
    tax_on_negative_equity=False,
    tax_on_service_contracts=False,
    tax_on_gap=False,
    vehicle_tax_scheme=VehicleTaxScheme.STATE_ONLY,
    vehicle_uses_local_sales_tax=False,
    lease_rules=LeaseRules(
        method=LeaseMethod.MONTHLY,
        doc_fee_taxability=DocFeeTaxability.NEVER,
        trade_in_credit=LeaseTradeInCredit.NONE,
        negative_equity_taxable=False,
        fee_tax_rules=_fee_rules(False, False),
        title_fee_rules=_TITLE_FEES,
        tax_fees_upfront=False,
    ),
    reciprocity=ReciprocityRules(
        enabled=True,
        scope=ReciprocityScope.RETAIL,
        home_state_behavior=HomeStateBehavior.CREDIT_FULL,
        require_proof_of_tax_paid=True,
        cap_at_this_states_tax=True,
        has_lease_exception=True,
        overrides=tuple(
            ReciprocityOverride(origin_state=code) for code in ("AK", "DE", "MT", "NH")
        ),
    ),
    notes="No sales tax; 0.5% vehicle privilege tax applies to new vehicles only.",
)


class StateRulesRegistry:
    """
    Immutable lookup of TaxRulesConfig by state code.

    Configuration problems (duplicate state codes, bad reciprocity
    overrides) are logged as warnings at construction and never raised.
    """

    def __init__(self, configs: Iterable[TaxRulesConfig]) -> None:
        table: dict[str, TaxRulesConfig] = {}
        for rules in configs:
            code = rules.state_code.upper()
            if code in table:
                logger.warning("duplicate_state_rules", state=code, kept="last")
            for problem in validate_reciprocity_config(rules):
                logger.warning("reciprocity_config_problem", state=code, problem=problem)
            table[code] = rules
        self._rules = MappingProxyType(table)

    def __len__(self) -> int:
        return len(self._rules)

    def __contains__(self, state_code: object) -> bool:
        return isinstance(state_code, str) and self.is_implemented(state_code)

    def get(self, state_code: Optional[str]) -> Optional[TaxRulesConfig]:
        """Case-insensitive lookup; None for unknown or unimplemented codes."""
        if not state_code:
            return None
        return self._rules.get(state_code.strip().upper())

    def is_implemented(self, state_code: Optional[str]) -> bool:
        return self.get(state_code) is not None

    def implemented_states(self) -> list[str]:
        return sorted(self._rules)

    def require(self, state_code: Optional[str]) -> TaxRulesConfig:
        """Like get(), but raises UnsupportedStateError instead of returning None."""
        rules = self.get(state_code)
        if rules is None:
            raise UnsupportedStateError(state_code or "")
        return rules

    def reciprocal_states(self, state_code: Optional[str]) -> list[ReciprocalState]:
        """Implemented states whose tax the given state credits."""
        rules = self.get(state_code)
        if rules is None:
            return []
        return reciprocal_states(rules, self.implemented_states())

    def mutual_credit(self, origin_state: Optional[str], state_code: str) -> Optional[bool]:
        """
        Whether origin_state credits tax paid to state_code.

        None when origin_state has no rules and the answer is unknown.
        """
        origin_rules = self.get(origin_state)
        if origin_rules is None:
            return None
        return credits_origin(origin_rules, state_code)


DEFAULT_REGISTRY = StateRulesRegistry(
    [US_AZ, US_GA, US_IN, US_NC, US_NJ, US_NY, US_OR, US_PA, US_SC, US_WV]
)


def get_rules_for_state(state_code: Optional[str]) -> Optional[TaxRulesConfig]:
    return DEFAULT_REGISTRY.get(state_code)


def is_state_implemented(state_code: Optional[str]) -> bool:
    return DEFAULT_REGISTRY.is_implemented(state_code)
