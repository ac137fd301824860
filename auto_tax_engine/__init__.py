"""
Auto Tax Engine
===============

A motor vehicle sales/use tax engine for dealership retail sales and leases,
driven by per-state rule configurations.

Modules:
    models          - Deal, rule and result value types
    interpreters    - Trade-in, rebate, fee and scheme rule interpreters
    reciprocity     - Credit for tax already paid to another state
    calculator      - Retail and lease tax calculation engine
    special_schemes - TAVT, HUT and privilege tax rate selection
    state_rules     - Per-state rule configurations and registry
    rates           - Rate components and ZIP-code local rate database
    report_generator- Calculation reports with CSV/JSON export
    config          - Environment-driven settings
    logging         - structlog configuration
    cli             - Command-line interface
"""

__version__ = "1.0.0"
__author__ = "Taofik Bishi"

from auto_tax_engine.calculator import TaxCalculator, calculate_tax
from auto_tax_engine.errors import AutoTaxError, InvalidDealError, UnsupportedStateError
from auto_tax_engine.models import TaxCalculationInput, TaxCalculationResult, TaxRulesConfig
from auto_tax_engine.rates import LocalRateDatabase
from auto_tax_engine.report_generator import ReportGenerator
from auto_tax_engine.state_rules import get_rules_for_state, is_state_implemented

__all__ = [
    "TaxCalculator",
    "calculate_tax",
    "AutoTaxError",
    "InvalidDealError",
    "UnsupportedStateError",
    "TaxCalculationInput",
    "TaxCalculationResult",
    "TaxRulesConfig",
    "LocalRateDatabase",
    "ReportGenerator",
    "get_rules_for_state",
    "is_state_implemented",
]
