#!/usr/bin/env python3
"""
Quick Start Example
===================

Demonstrates basic usage of the TaxCalculator to compute tax on a retail
vehicle sale in Indiana and a lease in New Jersey, and print the results.

Usage:
    python examples/quick_start.py
"""

from datetime import date
from decimal import Decimal

from auto_tax_engine.calculator import TaxCalculator
from auto_tax_engine.models import DealType, FeeLine, LeaseTerms, TaxCalculationInput
from auto_tax_engine.rates import LocalRateDatabase


def main() -> None:
    # Initialize the rate database and calculator
    db = LocalRateDatabase()
    calculator = TaxCalculator(rate_db=db)

    # A $30,000 sale with a $10,000 trade-in and a $2,000 manufacturer rebate
    deal = TaxCalculationInput(
        deal_type=DealType.RETAIL,
        vehicle_price=Decimal("30000.00"),
        trade_in_value=Decimal("10000.00"),
        rebate_manufacturer=Decimal("2000.00"),
        doc_fee=Decimal("199.00"),
        other_fees=(FeeLine("TITLE", Decimal("15.00")),),
        deal_id="DEAL-001",
        as_of_date=date.today(),
    )

    # Calculate tax
    result = calculator.calculate(deal, "IN")

    # Print the result
    print(f"Deal:           {deal.deal_id}")
    print(f"Vehicle Base:   ${result.bases.vehicle_base:,.2f}")
    print(f"Fees Base:      ${result.bases.fees_base:,.2f}")
    print(f"Taxable Base:   ${result.bases.total_taxable_base:,.2f}")
    for component in result.taxes.component_taxes:
        print(f"{component.label + ':':<16}${component.amount:,.2f} at {component.rate:.3%}")
    print(f"Total Tax:      ${result.taxes.total_tax:,.2f}")

    print("Notes:")
    for note in result.debug.notes:
        print(f"  - {note}")

    # A lease above the New Jersey luxury threshold
    print("\n--- Lease ---")
    lease_deal = TaxCalculationInput(
        deal_type=DealType.LEASE,
        vehicle_price=Decimal("60000.00"),
        deal_id="LEASE-001",
        lease=LeaseTerms(
            gross_cap_cost=Decimal("60000.00"),
            base_payment=Decimal("799.00"),
            payment_count=36,
        ),
    )

    lease_result = calculator.calculate(lease_deal, "NJ")
    breakdown = lease_result.lease_breakdown
    print(f"Deal:           {lease_deal.deal_id}")
    print(f"Upfront Tax:    ${breakdown.upfront_taxes.total_tax:,.2f}")
    print(f"Tax / Payment:  ${breakdown.payment_taxes_per_period.total_tax:,.2f}")
    print(f"Tax Over Term:  ${breakdown.total_tax_over_term:,.2f}")
    for fee in breakdown.special_fees:
        print(f"Special Fee:    {fee.code} ${fee.amount:,.2f}")


if __name__ == "__main__":
    main()
