"""
Tax result reporting.

Produces:
- Per-deal computation reports (summary, tax lines, audit breakdown)
- Batch summaries by jurisdiction
- pandas frames of the audit trail and lease schedule
- CSV and JSON export
- rich console rendering
"""

from __future__ import annotations

import json
from datetime import date
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

import pandas as pd
from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.table import Table

from auto_tax_engine.aggregator import TaxComputationResult
from auto_tax_engine.engine import BatchResult
from auto_tax_engine.rules import Confidence


def _decimal_to_float(obj: Any) -> Any:
    """Recursively convert Decimal values to float for serialization."""
    if isinstance(obj, dict):
        return {k: _decimal_to_float(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_decimal_to_float(i) for i in obj]
    if isinstance(obj, Decimal):
        return float(obj)
    if isinstance(obj, date):
        return obj.isoformat()
    return obj


class ReportGenerator:
    """
    Formats tax results for people and spreadsheets.

    Reports are structured dicts that can be exported to JSON, turned
    into DataFrames for CSV export, or rendered to the console.
    """

    def __init__(self, output_dir: Optional[str] = None) -> None:
        self.output_dir = Path(output_dir) if output_dir else Path("reports")

    # ------------------------------------------------------------------
    # Reports
    # ------------------------------------------------------------------

    def result_report(self, result: TaxComputationResult) -> dict[str, Any]:
        """Structured report for a single computation."""
        return {
            "report_type": "tax_computation",
            "generated_date": date.today().isoformat(),
            "summary": {
                "transaction_id": result.transaction_id,
                "jurisdiction": result.jurisdiction,
                "rules_version": result.rules_version,
                "transaction_type": result.transaction_type.value,
                "scheme": result.scheme,
                "taxable_base": result.taxable_base,
                "total_tax": result.total_tax,
                "reciprocity_credit": result.reciprocity_credit,
                "net_tax_due": result.net_tax_due,
                "amount_financed": result.amount_financed,
                "effective_rate": result.effective_rate,
                "confidence": result.confidence.value,
            },
            "tax_lines": [
                {"label": t.label, "rate": t.rate, "base": t.base, "amount": t.amount}
                for t in result.tax_lines
            ],
            "breakdown": self.breakdown_frame(result).to_dict(orient="records"),
            "reciprocity": {
                "allowed": result.reciprocity.allowed,
                "credit": result.reciprocity.credit,
                "override": result.reciprocity.override,
                "note": result.reciprocity.note,
            },
            "warnings": list(result.review_flags) + list(result.notes),
        }

    def batch_report(self, batch: BatchResult, period_label: str = "") -> dict[str, Any]:
        """Tax liability summary for a batch, grouped by jurisdiction."""
        by_jurisdiction: dict[str, list[TaxComputationResult]] = {}
        for r in batch.results:
            by_jurisdiction.setdefault(r.jurisdiction, []).append(r)

        details = []
        for code in sorted(by_jurisdiction):
            results = by_jurisdiction[code]
            details.append(
                {
                    "jurisdiction": code,
                    "transaction_count": len(results),
                    "taxable_base": sum(r.taxable_base for r in results),
                    "total_tax": sum(r.total_tax for r in results),
                    "reciprocity_credit": sum(r.reciprocity_credit for r in results),
                    "net_tax_due": batch.jurisdiction_breakdown.get(code, Decimal("0")),
                    "needs_review": sum(
                        1 for r in results if r.confidence is Confidence.NEEDS_REVIEW
                    ),
                }
            )

        return {
            "report_type": "batch_tax_summary",
            "period": period_label,
            "generated_date": date.today().isoformat(),
            "summary": {
                "total_transactions": batch.transaction_count,
                "total_tax": batch.total_tax,
                "total_credit": batch.total_credit,
                "net_tax_due": batch.net_tax_due,
                "needs_review": batch.review_count,
                "failed": len(batch.errors),
            },
            "jurisdiction_breakdown": details,
            "errors": batch.errors,
        }

    # ------------------------------------------------------------------
    # Frames
    # ------------------------------------------------------------------

    @staticmethod
    def breakdown_frame(result: TaxComputationResult) -> pd.DataFrame:
        """Audit trail as a DataFrame, one row per input line."""
        return pd.DataFrame(
            [
                {
                    "category": b.category,
                    "code": b.code,
                    "amount": float(b.amount),
                    "taxable": b.taxable,
                    "contribution": float(b.contribution),
                    "rule": b.rule,
                }
                for b in result.breakdown
            ],
            columns=["category", "code", "amount", "taxable", "contribution", "rule"],
        )

    @staticmethod
    def schedule_frame(result: TaxComputationResult) -> pd.DataFrame:
        """Lease schedule as a DataFrame (empty for retail)."""
        return pd.DataFrame(
            [
                {
                    "period": p.period,
                    "taxable_amount": float(p.taxable_amount),
                    "tax": float(p.tax),
                }
                for p in result.schedule
            ],
            columns=["period", "taxable_amount", "tax"],
        )

    # ------------------------------------------------------------------
    # Export methods
    # ------------------------------------------------------------------

    def _write(self, filename: str, text: str) -> None:
        self.output_dir.mkdir(parents=True, exist_ok=True)
        (self.output_dir / filename).write_text(text, encoding="utf-8")

    def to_json(self, report: dict[str, Any], filename: Optional[str] = None) -> str:
        """Export a report to JSON. Returns the JSON string."""
        json_str = json.dumps(_decimal_to_float(report), indent=2)
        if filename:
            self._write(filename, json_str)
        return json_str

    def to_csv(self, frame: pd.DataFrame, filename: Optional[str] = None) -> str:
        """Export a frame to CSV. Returns the CSV string."""
        csv_str = frame.to_csv(index=False)
        if filename:
            self._write(filename, csv_str)
        return csv_str

    # ------------------------------------------------------------------
    # Console output
    # ------------------------------------------------------------------

    def render(self, result: TaxComputationResult, console: Optional[Console] = None) -> None:
        """Print a computation as a breakdown table and summary panel."""
        console = console or Console()

        table = Table(
            title=f"{result.jurisdiction} {result.transaction_type.value} ({result.scheme})",
            box=box.ROUNDED,
            show_lines=True,
        )
        table.add_column("Category", style="dim")
        table.add_column("Code")
        table.add_column("Amount", justify="right")
        table.add_column("Taxable", justify="center")
        table.add_column("Contribution", justify="right", style="bold")
        table.add_column("Rule")
        for b in result.breakdown:
            table.add_row(
                b.category,
                b.code,
                f"${b.amount:,.2f}",
                "Y" if b.taxable else "",
                f"${b.contribution:,.2f}",
                b.rule,
            )
        console.print(table)

        lines = "\n".join(
            f"[bold]{t.label}:[/bold] {t.rate:.4%} of ${t.base:,.2f} = ${t.amount:,.2f}"
            for t in result.tax_lines
        )
        border = "green" if result.confidence is Confidence.VERIFIED else "yellow"
        console.print(
            Panel(
                f"{lines}\n"
                f"[bold]Taxable Base:[/bold] ${result.taxable_base:,.2f}\n"
                f"[bold]Total Tax:[/bold] ${result.total_tax:,.2f}\n"
                f"[bold]Reciprocity Credit:[/bold] ${result.reciprocity_credit:,.2f}\n"
                f"[bold]Net Tax Due:[/bold] ${result.net_tax_due:,.2f}\n"
                f"[bold]Amount Financed:[/bold] ${result.amount_financed:,.2f}",
                title=f"Tax Computation {result.transaction_id}",
                border_style=border,
            )
        )
        for flag in result.review_flags:
            console.print(f"[yellow]Needs review: {flag}[/yellow]")
