"""
Report generator module for formatting aggregation results.

This module turns the figures produced by aggregation.py into text
reports, tables, pandas DataFrames, CSV files and line charts. It never
re-derives totals; every number shown comes from the engine.
"""

import calendar
import logging
from io import BytesIO
from pathlib import Path
from typing import Mapping, Optional, Sequence

import pandas as pd
import matplotlib
matplotlib.use('Agg')  # Non-interactive backend for CLI
import matplotlib.pyplot as plt
from tabulate import tabulate

from aggregation import ChartPoint, WindowFigure, YearSummary, budget_color_band, merge_thresholds
from exceptions import ReportError

logger = logging.getLogger(__name__)

GRID_COLUMNS = [
    'month',
    'month_name',
    'adhoc',
    'fixed',
    'spent',
    'income',
    'remaining',
    'percent_used',
    'raw_percent_used',
    'over_budget',
    'income_overridden',
]


class ReportGenerator:
    """
    Generate formatted reports from aggregation results.

    Supports text reports, tabulate tables, DataFrames, CSV export and
    matplotlib line charts.
    """

    def __init__(self, currency_symbol: str = '₹', thresholds: Optional[Mapping[str, float]] = None):
        """
        Initialize the report generator.

        Args:
            currency_symbol: Symbol prefixed to formatted amounts
            thresholds: Colour band lower bounds (defaults used when None)
        """
        self.currency_symbol = currency_symbol
        self.thresholds = merge_thresholds(thresholds)
        logger.debug("Report generator initialized")

    def format_currency(self, amount: float) -> str:
        """
        Format amount as currency string, without fraction digits.

        Args:
            amount: Amount to format

        Returns:
            Formatted currency string, e.g. "₹12,500" or "-₹3,000"
        """
        sign = '-' if amount < 0 else ''
        return f"{sign}{self.currency_symbol}{abs(amount):,.0f}"

    def format_percentage(self, percentage: float) -> str:
        """Format percentage string."""
        return f"{percentage:.1f}%"

    def month_name(self, month: int) -> str:
        return calendar.month_name[month]

    def color_band(self, percent: float) -> str:
        return budget_color_band(percent, self.thresholds)

    def generate_window_report(self, window: WindowFigure, title: str = 'selected period') -> str:
        """
        Generate text report for the totals of a window.

        Args:
            window: Window figures from aggregation.aggregate
            title: Period label

        Returns:
            Formatted text report
        """
        if not window.months:
            return f"\nNo months selected for: {title}\n"

        months = ", ".join(calendar.month_abbr[m] for m in window.month_numbers)
        status = "OVER BUDGET" if window.is_over_budget else self.color_band(window.percent_used).upper()

        report_lines = [
            "=" * 80,
            f"BUDGET SUMMARY ({title})",
            "=" * 80,
            "",
            f"Months:                 {months:>20}",
            f"Ad-hoc Expenses:        {self.format_currency(window.adhoc_total):>20}",
            f"Fixed Expenses:         {self.format_currency(window.fixed_total):>20}",
            f"Total Spent:            {self.format_currency(window.total_spent):>20}",
            f"Total Income:           {self.format_currency(window.total_income):>20}",
            "-" * 80,
            f"Remaining:              {self.format_currency(window.total_remaining):>20}",
            f"Used:                   {self.format_percentage(window.percent_used):>20}  ({status})",
            f"Left:                   {self.format_percentage(window.percent_remaining):>20}",
            "=" * 80
        ]

        return "\n".join(report_lines)

    def generate_month_grid(self, window: WindowFigure, tablefmt: str = 'grid') -> str:
        """
        Generate a table with one row per month of the window.

        Args:
            window: Window figures (typically aggregation.month_grid)
            tablefmt: tabulate table format

        Returns:
            Formatted table
        """
        if not window.months:
            return "\nNo months to display\n"

        rows = []
        for figure in window.months:
            marker = '*' if figure.income_overridden else ''
            rows.append([
                figure.name,
                self.format_currency(figure.adhoc_total),
                self.format_currency(figure.fixed_total),
                self.format_currency(figure.total_spent),
                self.format_currency(figure.income) + marker,
                self.format_currency(figure.remaining),
                self.format_percentage(figure.percent_used),
                'over' if figure.is_over_budget else self.color_band(figure.percent_used),
            ])

        rows.append([
            'TOTAL',
            self.format_currency(window.adhoc_total),
            self.format_currency(window.fixed_total),
            self.format_currency(window.total_spent),
            self.format_currency(window.total_income),
            self.format_currency(window.total_remaining),
            self.format_percentage(window.percent_used),
            'over' if window.is_over_budget else self.color_band(window.percent_used),
        ])

        return tabulate(
            rows,
            headers=['Month', 'Ad-hoc', 'Fixed', 'Spent', 'Income', 'Remaining', 'Used', 'Status'],
            tablefmt=tablefmt,
            stralign='right'
        )

    def generate_year_overview(self, summary: YearSummary, year: int) -> str:
        """Generate text report for a whole-year summary."""
        report_lines = [
            "=" * 80,
            f"YEAR OVERVIEW ({year})",
            "=" * 80,
            "",
            f"Total Income:           {self.format_currency(summary.total_income):>20}",
            f"Monthly Expenses:       {self.format_currency(summary.monthly_expenses):>20}",
            f"Yearly Expenses:        {self.format_currency(summary.yearly_expenses):>20}",
            f"Fixed Expenses:         {self.format_currency(summary.fixed_expenses):>20}",
            f"Total Expenses:         {self.format_currency(summary.total_expenses):>20}",
            "-" * 80,
            f"Net Savings:            {self.format_currency(summary.net_savings):>20}",
            "=" * 80
        ]

        return "\n".join(report_lines)

    def generate_chart_report(
        self,
        points: Sequence[ChartPoint],
        view: str = 'expenses',
        change: Optional[float] = None
    ) -> str:
        """
        Generate a text listing of chart points.

        Args:
            points: Chart points in charting order
            view: "expenses" or "savings"
            change: Optional first-to-last percentage change

        Returns:
            Formatted text report
        """
        if not points:
            return "\nNo chart data\n"

        rows = [[point.label, self.format_currency(point.value)] for point in points]
        report_lines = [
            f"{view.upper()} TREND",
            tabulate(rows, headers=['Month', view.capitalize()], tablefmt='simple', stralign='right'),
        ]
        if change is not None:
            report_lines.append(f"Change: {change:+.1f}%")

        return "\n".join(report_lines)

    def window_to_dataframe(self, window: WindowFigure) -> pd.DataFrame:
        """
        Convert window figures to a DataFrame with one row per month.

        Args:
            window: Window figures

        Returns:
            DataFrame with the GRID_COLUMNS columns, in window order
        """
        records = [
            {
                'month': figure.month,
                'month_name': figure.name,
                'adhoc': figure.adhoc_total,
                'fixed': figure.fixed_total,
                'spent': figure.total_spent,
                'income': figure.income,
                'remaining': figure.remaining,
                'percent_used': figure.percent_used,
                'raw_percent_used': figure.raw_percent_used,
                'over_budget': figure.is_over_budget,
                'income_overridden': figure.income_overridden,
            }
            for figure in window.months
        ]
        return pd.DataFrame(records, columns=GRID_COLUMNS)

    def export_to_csv(
        self,
        df: pd.DataFrame,
        output_path: Path,
        report_name: str = "report"
    ) -> None:
        """
        Export DataFrame to CSV file.

        Args:
            df: DataFrame to export
            output_path: Output file path
            report_name: Name of the report for logging

        Raises:
            ReportError: If the file cannot be written
        """
        try:
            df.to_csv(output_path, index=False)
            logger.info(f"Exported {report_name} to {output_path}")
        except OSError as e:
            logger.error(f"Failed to export {report_name}: {e}")
            raise ReportError(
                f"Failed to export {report_name}",
                details={"path": str(output_path)},
                original_error=e
            ) from e

    def create_trend_chart(
        self,
        points: Sequence[ChartPoint],
        output_path: Optional[Path] = None,
        title: str = "Monthly Expenses"
    ) -> Optional[BytesIO]:
        """
        Create a line chart from chart points.

        Args:
            points: Chart points in charting order
            output_path: Optional file path to save chart
            title: Chart title

        Returns:
            BytesIO object if output_path is None, otherwise None

        Raises:
            ReportError: If the chart cannot be written to output_path
        """
        if not points:
            logger.warning("No data to plot trend chart")
            return None

        fig, ax = plt.subplots(figsize=(10, 5))

        x = range(len(points))
        values = [point.value for point in points]
        ax.plot(x, values, color='#3498db', marker='o', linewidth=2)
        ax.axhline(y=0, color='gray', linestyle='--', linewidth=0.5)

        ax.set_xlabel('Month', fontsize=11)
        ax.set_ylabel(f'Amount ({self.currency_symbol})', fontsize=11)
        ax.set_title(title, fontsize=14, fontweight='bold', pad=20)
        ax.set_xticks(list(x))
        ax.set_xticklabels([point.label for point in points])
        ax.grid(True, alpha=0.3)

        plt.tight_layout()

        # Save or return
        try:
            if output_path:
                try:
                    plt.savefig(output_path, dpi=150, bbox_inches='tight')
                except OSError as e:
                    logger.error(f"Failed to save trend chart: {e}")
                    raise ReportError(
                        "Failed to save trend chart",
                        details={"path": str(output_path)},
                        original_error=e
                    ) from e
                logger.info(f"Saved trend chart to {output_path}")
                return None
            buf = BytesIO()
            plt.savefig(buf, format='png', dpi=150, bbox_inches='tight')
            buf.seek(0)
            return buf
        finally:
            plt.close(fig)
