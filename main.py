#!/usr/bin/env python3
"""
Auto Tax Engine - Entry Point

A motor vehicle sales/use tax engine for dealerships. Calculates tax on
retail sales and leases under per-state rules, including trade-in credit,
rebates, fees, special state schemes and reciprocity credit.

Usage:
    python main.py calculate --state IN --price 30000 --trade-in 10000
    python main.py calculate --state NJ --deal-type LEASE --price 60000 --cap-cost 60000 --payment 800 --term 36
    python main.py calculate --file deal.json --json
    python main.py batch --file data/sample_deals.csv --export-csv results.csv
    python main.py rules --state SC
    python main.py rates --zip 90001
"""

from auto_tax_engine.cli import main

if __name__ == "__main__":
    main()
