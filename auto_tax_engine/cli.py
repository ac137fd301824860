"""
Command-line interface for the Auto Tax Engine.

Provides subcommands for single-deal calculation, CSV batch calculation,
state rule inspection and local rate lookup.
"""

from __future__ import annotations

import argparse
import json
import sys
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from auto_tax_engine.calculator import TaxCalculator
from auto_tax_engine.config import get_settings
from auto_tax_engine.errors import AutoTaxError, InvalidDealError
from auto_tax_engine.logging import configure_logging, get_logger
from auto_tax_engine.models import TaxCalculationInput, TaxCalculationResult
from auto_tax_engine.rates import LocalRateDatabase
from auto_tax_engine.report_generator import ReportGenerator
from auto_tax_engine.special_schemes import prepare_special_scheme_deal
from auto_tax_engine.state_rules import DEFAULT_REGISTRY

console = Console()
logger = get_logger(__name__)

LEASE_FIELDS = (
    "gross_cap_cost",
    "base_payment",
    "payment_count",
    "cap_reduction_cash",
    "cap_reduction_trade_in",
    "cap_reduction_rebate_manufacturer",
    "cap_reduction_rebate_dealer",
)


def _parse_pairs(text: str, key_name: str, value_name: str) -> list[dict[str, str]]:
    """Parse "A=1;B=2" (or a list of "A=1" items) into dicts."""
    items = text.split(";") if isinstance(text, str) else list(text)
    pairs = []
    for item in items:
        item = item.strip()
        if not item:
            continue
        if "=" not in item:
            raise ValueError(f"expected {key_name.upper()}={value_name.upper()}, got {item!r}")
        key, value = item.split("=", 1)
        pairs.append({key_name: key.strip().upper(), value_name: value.strip()})
    return pairs


def _flag(value: Any, default: bool) -> bool:
    if value in (None, ""):
        return default
    return str(value).strip().lower() in ("1", "true", "yes", "y")


def _deal_from_row(row: dict[str, Any], line: int) -> TaxCalculationInput:
    """Build a deal from one flat CSV row."""
    data = {k: v.strip() if isinstance(v, str) else v for k, v in row.items()}
    data["deal_id"] = data.get("deal_id") or str(line)
    data["other_fees"] = _parse_pairs(data.get("other_fees") or "", "code", "amount")
    data["rates"] = _parse_pairs(data.get("rates") or "", "label", "rate")
    if data.get("gross_cap_cost"):
        data["lease"] = {k: data.get(k) for k in LEASE_FIELDS}
    if data.get("origin_state"):
        data["origin_tax_info"] = {
            "state_code": data["origin_state"],
            "tax_paid_date": data.get("tax_paid_date"),
            "same_owner": _flag(data.get("same_owner"), True),
            "is_home_state": _flag(data.get("is_home_state"), False),
        }
    return TaxCalculationInput.from_dict(data)


def _load_deals_csv(
    path: str,
) -> tuple[list[TaxCalculationInput], list[InvalidDealError]]:
    """
    Load deals from a CSV file.

    Required columns: vehicle_price and (unless a default state is
    configured) state_code. Optional: deal_id, deal_type, zip_code, the
    amount columns of TaxCalculationInput, other_fees and rates as
    "CODE=AMOUNT;..." lists, lease columns and origin_state/tax_paid_date.

    Returns the parsed deals and one InvalidDealError per row that could
    not be parsed.
    """
    csv_path = Path(path)
    if not csv_path.exists():
        console.print(f"[red]File not found: {path}[/red]")
        sys.exit(1)

    frame = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    deals: list[TaxCalculationInput] = []
    rejected: list[InvalidDealError] = []
    for i, row in enumerate(frame.to_dict(orient="records")):
        try:
            deals.append(_deal_from_row(row, i + 1))
        except (KeyError, ValueError, InvalidOperation) as e:
            rejected.append(
                InvalidDealError(f"row {i + 1}: {e}", str(row.get("deal_id") or ""))
            )
            logger.warning("deal_row_rejected", row=i + 1, error=str(e))
    return deals, rejected


def _deal_from_args(args: argparse.Namespace) -> TaxCalculationInput:
    if args.file:
        path = Path(args.file)
        if not path.exists():
            console.print(f"[red]File not found: {args.file}[/red]")
            sys.exit(1)
        return TaxCalculationInput.from_dict(json.loads(path.read_text(encoding="utf-8")))

    if not args.price:
        console.print("[red]Provide --price (and --state), or --file[/red]")
        sys.exit(1)

    data: dict[str, Any] = {
        "deal_id": "cli-calc",
        "deal_type": args.deal_type,
        "vehicle_price": args.price,
        "accessories_amount": args.accessories,
        "trade_in_value": args.trade_in,
        "rebate_manufacturer": args.rebate_mfr,
        "rebate_dealer": args.rebate_dealer,
        "doc_fee": args.doc_fee,
        "service_contracts": args.service_contracts,
        "gap": args.gap,
        "negative_equity": args.negative_equity,
        "tax_already_collected": args.tax_paid,
        "other_fees": _parse_pairs(args.fee or [], "code", "amount"),
        "rates": _parse_pairs(args.rate or [], "label", "rate"),
        "zip_code": args.zip,
        "state_code": args.state,
        "as_of_date": args.as_of,
    }
    if args.cap_cost:
        data["lease"] = {
            "gross_cap_cost": args.cap_cost,
            "base_payment": args.payment,
            "payment_count": args.term,
            "cap_reduction_cash": args.cap_reduction_cash,
        }
    if args.origin_state:
        data["origin_tax_info"] = {
            "state_code": args.origin_state,
            "tax_paid_date": args.tax_paid_date,
        }
    return TaxCalculationInput.from_dict(data)


def _print_result(result: TaxCalculationResult, state_code: str) -> None:
    bases = result.bases
    body = (
        f"[bold]State:[/bold] {state_code}\n"
        f"[bold]Mode:[/bold] {result.mode.value}\n"
        f"[bold]Vehicle Base:[/bold] ${bases.vehicle_base:,.2f}\n"
        f"[bold]Fees Base:[/bold] ${bases.fees_base:,.2f}\n"
        f"[bold]Products Base:[/bold] ${bases.products_base:,.2f}\n"
        f"[bold]Total Taxable Base:[/bold] ${bases.total_taxable_base:,.2f}\n"
        f"[bold]Reciprocity Credit:[/bold] ${result.debug.reciprocity_credit:,.2f}\n"
        f"[bold]Total Tax:[/bold] ${result.taxes.total_tax:,.2f}"
    )
    lease = result.lease_breakdown
    if lease is not None:
        body += (
            f"\n[bold]Tax Per Payment:[/bold] ${lease.payment_taxes_per_period.total_tax:,.2f}"
            f"\n[bold]Tax Over Term:[/bold] ${lease.total_tax_over_term:,.2f}"
        )
    console.print(Panel(body, title="Tax Calculation", border_style="blue"))

    if result.taxes.component_taxes:
        table = Table(title="Component Taxes", box=box.SIMPLE)
        table.add_column("Component")
        table.add_column("Rate", justify="right")
        table.add_column("Tax", justify="right", style="bold")
        for c in result.taxes.component_taxes:
            table.add_row(c.label, f"{c.rate:.3%}", f"${c.amount:,.2f}")
        console.print(table)

    for note in result.debug.notes:
        console.print(f"[dim]- {note}[/dim]")


# -----------------------------------------------------------------------
# Subcommand: calculate
# -----------------------------------------------------------------------


def cmd_calculate(args: argparse.Namespace) -> None:
    """Calculate tax for a single retail or lease deal."""
    settings = get_settings()
    try:
        deal = _deal_from_args(args)
    except (KeyError, ValueError, InvalidOperation) as e:
        console.print(f"[red]Invalid deal: {e}[/red]")
        sys.exit(1)

    calc = TaxCalculator(default_state=settings.default_state)
    try:
        state_code = calc.resolve_state(deal, args.state)
        rules = calc.registry.require(state_code)
        if not deal.rates and (args.assessed_value or args.vehicle_class):
            deal = prepare_special_scheme_deal(
                deal,
                rules,
                assessed_value=Decimal(args.assessed_value) if args.assessed_value else None,
                vehicle_class=args.vehicle_class,
            )
        result = calc.calculate(deal, state_code, vehicle_class=args.vehicle_class)
    except (AutoTaxError, InvalidOperation) as e:
        console.print(f"[red]{e}[/red]")
        sys.exit(1)

    rg = ReportGenerator(args.output_dir or settings.output_dir)
    report = rg.result_report(result, state_code=state_code, deal_id=deal.deal_id)

    if args.json:
        sys.stdout.write(rg.to_json(report) + "\n")
    else:
        _print_result(result, state_code)

    if args.export_json:
        rg.to_json(report, args.export_json)
        console.print(f"[green]JSON exported to {args.export_json}[/green]")


# -----------------------------------------------------------------------
# Subcommand: batch
# -----------------------------------------------------------------------


def cmd_batch(args: argparse.Namespace) -> None:
    """Calculate tax for every deal in a CSV file."""
    settings = get_settings()
    deals, rejected = _load_deals_csv(args.file)
    calc = TaxCalculator(default_state=settings.default_state)
    batch = calc.calculate_batch(deals, rejected)

    table = Table(
        title="Tax Calculation Results",
        box=box.ROUNDED,
        show_lines=True,
    )
    table.add_column("ID", style="dim")
    table.add_column("State")
    table.add_column("Mode")
    table.add_column("Taxable Base", justify="right")
    table.add_column("Credit", justify="right")
    table.add_column("Tax", justify="right", style="bold")

    for item in batch.items:
        r = item.result
        table.add_row(
            item.deal_id[:12],
            item.state_code,
            r.mode.value,
            f"${r.bases.total_taxable_base:,.2f}",
            f"${r.debug.reciprocity_credit:,.2f}",
            f"${r.taxes.total_tax:,.2f}",
        )

    console.print(table)
    console.print()
    console.print(
        Panel(
            f"[bold]Deals:[/bold] {batch.deal_count}\n"
            f"[bold]Calculated:[/bold] {batch.success_count}\n"
            f"[bold]Total Taxable:[/bold] ${batch.total_taxable_base:,.2f}\n"
            f"[bold]Total Tax:[/bold] ${batch.total_tax:,.2f}",
            title="Batch Summary",
            border_style="green",
        )
    )
    for error in batch.errors:
        console.print(f"[yellow]Error: {error}[/yellow]")

    rg = ReportGenerator(args.output_dir or settings.output_dir)
    if args.export_json:
        report = rg.batch_report(batch, period_label=args.period or "")
        rg.to_json(report, args.export_json)
        console.print(f"[green]JSON exported to {args.export_json}[/green]")
    if args.export_csv:
        rg.to_csv(batch, args.export_csv)
        console.print(f"[green]CSV exported to {args.export_csv}[/green]")


# -----------------------------------------------------------------------
# Subcommand: rules
# -----------------------------------------------------------------------


def cmd_rules(args: argparse.Namespace) -> None:
    """Show implemented states, or one state's tax policy."""
    if args.state:
        rules = DEFAULT_REGISTRY.get(args.state)
        if rules is None:
            console.print(f"[red]No rules implemented for state: {args.state}[/red]")
            sys.exit(1)

        lease = rules.lease_rules
        recip = rules.reciprocity
        console.print(
            Panel(
                f"[bold]State:[/bold] {rules.state_code} (v{rules.version})\n"
                f"[bold]Trade-in:[/bold] {rules.trade_in_policy.kind}\n"
                f"[bold]Vehicle Scheme:[/bold] {rules.vehicle_tax_scheme.value}\n"
                f"[bold]Doc Fee Taxable:[/bold] {'Yes' if rules.doc_fee_taxable else 'No'}\n"
                f"[bold]Service Contracts / GAP:[/bold] "
                f"{'Yes' if rules.tax_on_service_contracts else 'No'} / "
                f"{'Yes' if rules.tax_on_gap else 'No'}\n"
                f"[bold]Max Tax:[/bold] "
                f"{f'${rules.max_tax_amount:,.2f}' if rules.max_tax_amount is not None else 'None'}\n"
                f"[bold]Lease Method:[/bold] {lease.method.value} "
                f"(scheme {lease.special_scheme.value})\n"
                f"[bold]Reciprocity:[/bold] "
                f"{recip.home_state_behavior.value if recip.enabled else 'Disabled'}\n"
                f"[bold]Notes:[/bold] {rules.notes}",
                title=f"{rules.state_code} Vehicle Tax Rules",
                border_style="cyan",
            )
        )

        table = Table(title="Fee Rules", box=box.SIMPLE)
        table.add_column("Code")
        table.add_column("Retail", justify="center")
        for fee in rules.fee_tax_rules:
            table.add_row(fee.code, "taxable" if fee.taxable else "-")
        console.print(table)

        credited = DEFAULT_REGISTRY.reciprocal_states(rules.state_code)
        if credited:
            table = Table(title="Reciprocal States", box=box.SIMPLE)
            table.add_column("Origin")
            table.add_column("Mode")
            table.add_column("Restricted", justify="center")
            for state in credited:
                table.add_row(
                    state.state_code, state.mode.value, "Yes" if state.has_restrictions else "-"
                )
            console.print(table)
        return

    table = Table(title="Implemented States", box=box.ROUNDED)
    table.add_column("State", style="bold")
    table.add_column("Scheme")
    table.add_column("Trade-in")
    table.add_column("Lease Method")
    table.add_column("Reciprocity", justify="center")
    for code in DEFAULT_REGISTRY.implemented_states():
        rules = DEFAULT_REGISTRY.require(code)
        table.add_row(
            code,
            rules.vehicle_tax_scheme.value,
            rules.trade_in_policy.kind,
            rules.lease_rules.method.value,
            "Y" if rules.reciprocity.enabled else "",
        )
    console.print(table)


# -----------------------------------------------------------------------
# Subcommand: rates
# -----------------------------------------------------------------------


def cmd_rates(args: argparse.Namespace) -> None:
    """Look up local rates by ZIP code and state."""
    db = LocalRateDatabase()

    if args.zip or args.state:
        info = db.lookup(args.zip, args.state)
        if info is None:
            console.print(f"[red]No rate data for ZIP {args.zip or '-'} / state {args.state or '-'}[/red]")
            sys.exit(1)
        where = ", ".join(p for p in (info.city, info.county) if p) or "state average"
        console.print(
            Panel(
                f"[bold]Location:[/bold] {where} ({info.state_code})\n"
                f"[bold]Source:[/bold] {info.source}\n"
                f"[bold]State Rate:[/bold] {info.state_tax_rate:.3%}\n"
                f"[bold]Local Rate:[/bold] {info.local_rate:.3%}\n"
                f"[bold]Combined:[/bold] {info.combined_rate:.3%}",
                title=f"Rates for {info.zip_code or info.state_code}",
                border_style="cyan",
            )
        )
        return

    table = Table(title="Vehicle Sales Tax Rates", box=box.ROUNDED)
    table.add_column("State", style="bold")
    table.add_column("Name")
    table.add_column("State Rate", justify="right")
    table.add_column("Avg Local", justify="right")
    table.add_column("ZIPs", justify="right")
    for state in db.all_states():
        table.add_row(
            state.state_code,
            state.state_name,
            f"{state.state_rate:.3%}" if state.state_rate > 0 else "None",
            f"{state.avg_local_rate:.3%}" if state.has_local_tax else "-",
            str(len(db.zip_codes(state.state_code))),
            style="dim" if state.state_rate == 0 else "",
        )
    console.print(table)


# -----------------------------------------------------------------------
# Argument parser
# -----------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="auto-tax",
        description="Auto Tax Engine - Motor vehicle sales/use tax for retail sales and leases",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    # calculate
    calc_p = subparsers.add_parser("calculate", help="Calculate tax for one deal")
    calc_p.add_argument("--file", "-f", help="JSON file describing the deal")
    calc_p.add_argument("--state", "-s", help="Two-letter state code")
    calc_p.add_argument("--zip", help="ZIP code for local rate lookup")
    calc_p.add_argument(
        "--deal-type", choices=["RETAIL", "LEASE"], default="RETAIL", type=str.upper
    )
    calc_p.add_argument("--price", help="Vehicle price")
    calc_p.add_argument("--accessories", help="Accessories amount")
    calc_p.add_argument("--trade-in", help="Trade-in value")
    calc_p.add_argument("--rebate-mfr", help="Manufacturer rebate")
    calc_p.add_argument("--rebate-dealer", help="Dealer rebate")
    calc_p.add_argument("--doc-fee", help="Documentation fee")
    calc_p.add_argument("--fee", action="append", help="Other fee as CODE=AMOUNT (repeatable)")
    calc_p.add_argument("--rate", action="append", help="Rate component as LABEL=RATE (repeatable)")
    calc_p.add_argument("--service-contracts", help="Service contract amount")
    calc_p.add_argument("--gap", help="GAP amount")
    calc_p.add_argument("--negative-equity", help="Negative equity rolled into the deal")
    calc_p.add_argument("--tax-paid", help="Tax already paid to another state")
    calc_p.add_argument("--origin-state", help="State where tax was already paid")
    calc_p.add_argument("--tax-paid-date", help="Date tax was paid (YYYY-MM-DD)")
    calc_p.add_argument("--as-of", help="Deal date (YYYY-MM-DD)")
    calc_p.add_argument("--cap-cost", help="Lease gross capitalized cost")
    calc_p.add_argument("--payment", help="Lease base payment")
    calc_p.add_argument("--term", type=int, default=0, help="Number of lease payments")
    calc_p.add_argument("--cap-reduction-cash", help="Lease cash cap cost reduction")
    calc_p.add_argument("--assessed-value", help="Assessed value (TAVT states)")
    calc_p.add_argument("--vehicle-class", help="Vehicle class (privilege tax states)")
    calc_p.add_argument("--json", action="store_true", help="Print the report as JSON")
    calc_p.add_argument("--export-json", help="Export report to JSON file")
    calc_p.add_argument("--output-dir", help="Output directory for exports")
    calc_p.set_defaults(func=cmd_calculate)

    # batch
    batch_p = subparsers.add_parser("batch", help="Calculate tax for a CSV of deals")
    batch_p.add_argument("--file", "-f", required=True, help="CSV file with deals")
    batch_p.add_argument("--period", help="Period label for reports")
    batch_p.add_argument("--export-json", help="Export summary to JSON filename")
    batch_p.add_argument("--export-csv", help="Export per-deal results to CSV filename")
    batch_p.add_argument("--output-dir", help="Output directory for exports")
    batch_p.set_defaults(func=cmd_batch)

    # rules
    rules_p = subparsers.add_parser("rules", help="View implemented state rules")
    rules_p.add_argument("--state", "-s", help="State code to show")
    rules_p.set_defaults(func=cmd_rules)

    # rates
    rates_p = subparsers.add_parser("rates", help="Look up local tax rates")
    rates_p.add_argument("--zip", help="ZIP code")
    rates_p.add_argument("--state", "-s", help="State code")
    rates_p.set_defaults(func=cmd_rates)

    return parser


def main(argv: Optional[list[str]] = None) -> None:
    settings = get_settings()
    configure_logging(json_format=settings.log_json, log_level=settings.log_level)

    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(0)

    args.func(args)
