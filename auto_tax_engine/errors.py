"""
Exceptions raised by the layers around the calculation core.

calculate_tax itself never raises for configuration gaps; these cover
state-code resolution and parsing of caller-supplied deals.
"""

from __future__ import annotations


class AutoTaxError(Exception):
    """Base class for auto tax engine errors."""


class UnsupportedStateError(AutoTaxError, ValueError):
    """No rules are implemented for the requested state code."""

    def __init__(self, state_code: str) -> None:
        self.state_code = state_code
        super().__init__(f"Unsupported state code: {state_code}")


class InvalidDealError(AutoTaxError, ValueError):
    """A deal record could not be turned into a TaxCalculationInput."""

    def __init__(self, message: str, deal_id: str = "") -> None:
        self.deal_id = deal_id
        prefix = f"Deal {deal_id}: " if deal_id else ""
        super().__init__(f"{prefix}{message}")
