"""
Tax calculation report generator.

Produces:
- Single-deal calculation reports (bases, component taxes, audit notes)
- Batch summaries with state-by-state breakdowns
- pandas DataFrame of batch results
- CSV and JSON export
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd

from auto_tax_engine.calculator import BatchResult
from auto_tax_engine.models import ZERO, TaxCalculationResult

RESULT_COLUMNS = [
    "deal_id",
    "state",
    "mode",
    "vehicle_base",
    "fees_base",
    "products_base",
    "total_taxable_base",
    "total_tax",
    "reciprocity_credit",
    "total_tax_over_term",
    "components",
]


class _DecimalEncoder(json.JSONEncoder):
    """JSON encoder that handles Decimal and date objects."""

    def default(self, o: Any) -> Any:
        if isinstance(o, Decimal):
            return float(o)
        if isinstance(o, date):
            return o.isoformat()
        return super().default(o)


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal values to float for serialization."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


def _components_text(result: TaxCalculationResult) -> str:
    return "; ".join(
        f"{c.label}={float(c.amount):.2f}" for c in result.taxes.component_taxes
    )


class ReportGenerator:
    """
    Builds reports from calculation results, with export capabilities.

    Reports are plain dicts that can be rendered to console text or
    exported to JSON; batch results also export to CSV through pandas.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    def _write(self, filename: str, content: str) -> Path:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        path = self.output_dir / filename
        path.write_text(content, encoding="utf-8")
        return path

    # ------------------------------------------------------------------
    # Single calculation
    # ------------------------------------------------------------------

    def result_report(
        self,
        result: TaxCalculationResult,
        state_code: str = "",
        deal_id: str = "",
    ) -> dict[str, Any]:
        """Structured report of one calculation."""
        debug = result.debug
        summary: dict[str, Any] = {
            "mode": result.mode.value,
            "vehicle_base": result.bases.vehicle_base,
            "fees_base": result.bases.fees_base,
            "products_base": result.bases.products_base,
            "total_taxable_base": result.bases.total_taxable_base,
            "reciprocity_credit": debug.reciprocity_credit,
            "total_tax": result.taxes.total_tax,
        }
        lease = result.lease_breakdown
        if lease is not None:
            summary["upfront_taxable_base"] = lease.upfront_taxable_base
            summary["payment_base_per_period"] = lease.payment_taxable_base_per_period
            summary["payment_tax_per_period"] = lease.payment_taxes_per_period.total_tax
            summary["total_tax_over_term"] = lease.total_tax_over_term

        report: dict[str, Any] = {
            "report_type": "tax_calculation",
            "generated_date": date.today().isoformat(),
            "state": state_code,
            "deal_id": deal_id,
            "summary": summary,
            "component_taxes": [
                {"label": c.label, "rate": c.rate, "amount": c.amount}
                for c in result.taxes.component_taxes
            ],
            "debug": {
                "applied_trade_in": debug.applied_trade_in,
                "applied_rebates_taxable": debug.applied_rebates_taxable,
                "applied_rebates_non_taxable": debug.applied_rebates_non_taxable,
                "taxable_doc_fee": debug.taxable_doc_fee,
                "taxable_fees": [
                    {"code": f.code, "amount": f.amount} for f in debug.taxable_fees
                ],
                "taxable_service_contracts": debug.taxable_service_contracts,
                "taxable_gap": debug.taxable_gap,
            },
            "notes": list(debug.notes),
        }
        if lease is not None and lease.special_fees:
            report["special_fees"] = [
                {"code": f.code, "amount": f.amount} for f in lease.special_fees
            ]
        return report

    # ------------------------------------------------------------------
    # Batch
    # ------------------------------------------------------------------

    def batch_report(
        self, batch: BatchResult, period_label: str = ""
    ) -> dict[str, Any]:
        """Batch summary with a per-state breakdown."""
        per_state: dict[str, dict[str, Any]] = {}
        for item in batch.items:
            row = per_state.setdefault(
                item.state_code,
                {"state": item.state_code, "deal_count": 0, "taxable_amount": ZERO, "tax": ZERO},
            )
            row["deal_count"] += 1
            row["taxable_amount"] += item.result.bases.total_taxable_base
            row["tax"] += item.result.taxes.total_tax

        return {
            "report_type": "batch_tax_summary",
            "period": period_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "total_deals": batch.deal_count,
                "calculated": batch.success_count,
                "failed": len(batch.errors),
                "total_taxable_base": batch.total_taxable_base,
                "total_tax": batch.total_tax,
                "overall_effective_rate": (
                    float(batch.total_tax / batch.total_taxable_base)
                    if batch.total_taxable_base > 0
                    else 0.0
                ),
            },
            "state_breakdown": [per_state[k] for k in sorted(per_state)],
            "errors": list(batch.errors),
        }

    def results_frame(self, batch: BatchResult) -> pd.DataFrame:
        """One row per calculated deal."""
        rows = []
        for item in batch.items:
            result = item.result
            lease = result.lease_breakdown
            rows.append(
                {
                    "deal_id": item.deal_id,
                    "state": item.state_code,
                    "mode": result.mode.value,
                    "vehicle_base": float(result.bases.vehicle_base),
                    "fees_base": float(result.bases.fees_base),
                    "products_base": float(result.bases.products_base),
                    "total_taxable_base": float(result.bases.total_taxable_base),
                    "total_tax": float(result.taxes.total_tax),
                    "reciprocity_credit": float(result.debug.reciprocity_credit),
                    "total_tax_over_term": float(
                        lease.total_tax_over_term if lease else result.taxes.total_tax
                    ),
                    "components": _components_text(result),
                }
            )
        return pd.DataFrame(rows, columns=RESULT_COLUMNS)

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def to_json(
        self,
        report: dict[str, Any],
        filename: Optional[str] = None,
    ) -> str:
        """Export a report to JSON. Returns the JSON string."""
        serializable = _decimal_to_float(report)
        json_str = json.dumps(serializable, indent=2, cls=_DecimalEncoder)
        if filename:
            self._write(filename, json_str)
        return json_str

    def to_csv(
        self,
        batch: BatchResult,
        filename: Optional[str] = None,
    ) -> str:
        """Export batch results to CSV. Returns the CSV string."""
        csv_str = self.results_frame(batch).to_csv(index=False, float_format="%.2f")
        if filename:
            self._write(filename, csv_str)
        return csv_str

    # ------------------------------------------------------------------
    # Console-formatted text output
    # ------------------------------------------------------------------

    def format_text(self, report: dict[str, Any]) -> str:
        """Format a report as human-readable text for console output."""
        lines: list[str] = []
        report_type = report.get("report_type", "report").replace("_", " ").title()
        lines.append(f"{'=' * 60}")
        lines.append(f"  {report_type}")
        lines.append(f"  Generated: {report.get('generated_date', '')}")
        if report.get("state"):
            lines.append(f"  State: {report['state']}")
        if report.get("period"):
            lines.append(f"  Period: {report['period']}")
        lines.append(f"{'=' * 60}")
        lines.append("")

        summary = report.get("summary", {})
        if summary:
            lines.append("SUMMARY")
            lines.append("-" * 40)
            for key, value in summary.items():
                label = key.replace("_", " ").title()
                if isinstance(value, (float, Decimal)):
                    if "rate" in key:
                        lines.append(f"  {label}: {float(value):.2%}")
                    else:
                        lines.append(f"  {label}: ${float(value):,.2f}")
                else:
                    lines.append(f"  {label}: {value}")
            lines.append("")

        components = report.get("component_taxes", [])
        if components:
            lines.append("COMPONENT TAXES")
            lines.append("-" * 40)
            for c in components:
                lines.append(
                    f"  {c['label']:<20} {float(c['rate']):>8.4%}  ${float(c['amount']):>10,.2f}"
                )
            lines.append("")

        state_data = report.get("state_breakdown", [])
        if state_data:
            lines.append("STATE BREAKDOWN")
            lines.append("-" * 40)
            for sd in state_data:
                lines.append(
                    f"  {sd['state']}: ${float(sd['taxable_amount']):>12,.2f} taxable | "
                    f"${float(sd['tax']):>10,.2f} tax | {sd['deal_count']} deals"
                )
            lines.append("")

        notes = report.get("notes", [])
        if notes:
            lines.append("NOTES")
            lines.append("-" * 40)
            for n in notes:
                lines.append(f"  * {n}")
            lines.append("")

        errors = report.get("errors", [])
        if errors:
            lines.append("ERRORS")
            lines.append("-" * 40)
            for e in errors:
                lines.append(f"  * {e}")
            lines.append("")

        return "\n".join(lines)
