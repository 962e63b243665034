"""
Main module for the budget tracker command line.

This module wires configuration, logging, storage and the aggregation
engine together:
1. Loads config.yaml and sets up logging
2. Opens the database and loads one snapshot per command
3. Runs the requested aggregation
4. Prints or exports the report
"""

import argparse
import logging
import sys
from datetime import date
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from aggregation import (
    aggregate_snapshot,
    chart_series,
    month_grid,
    percentage_change,
    summarize_snapshot,
)
from config_manager import (
    get_budget_thresholds,
    get_currency_symbol,
    get_default_period,
    get_user_id,
    load_config,
)
from database_ops import DatabaseManager
from exceptions import BudgetTrackerError, ValidationError
from periods import TimePeriod, build_window
from records import BudgetSnapshot, ExpenseKind, IncomeKey, validate_year
from report_generator import ReportGenerator
from utils import ensure_data_dir, resolve_connection_string, resolve_log_path

# Configure module-level logger
logger = logging.getLogger(__name__)


def setup_logging(config: dict) -> None:
    """
    Configure logging based on config settings.

    Args:
        config: Configuration dictionary with logging settings
    """
    log_config = config.get("logging", {})
    level_name = str(log_config.get("level", "INFO")).upper()
    log_level = getattr(logging, level_name, None)
    if not isinstance(log_level, int):
        log_level = None
    log_format = log_config.get("format", "%(asctime)s - %(name)s - %(levelname)s - %(message)s")
    log_file = log_config.get("file")

    handlers = [logging.StreamHandler(sys.stdout)]
    if log_file:
        try:
            log_path = resolve_log_path(log_file)
        except OSError as exc:
            raise RuntimeError(f"Unable to prepare log file path '{log_file}': {exc}") from exc
        handlers.append(logging.FileHandler(log_path))

    logging.basicConfig(
        level=log_level if log_level is not None else logging.INFO,
        format=log_format,
        handlers=handlers
    )

    if log_level is None:
        logger.warning(f"Invalid log level '{level_name}', falling back to INFO")


def create_connection_string(config: dict) -> str:
    """
    Create SQLAlchemy connection string from config.

    Args:
        config: Configuration dictionary with database settings

    Returns:
        SQLAlchemy connection string
    """
    return resolve_connection_string(config)


def import_budget_file(file_path: Path, db_manager: DatabaseManager) -> Dict[str, Any]:
    """
    Import budget records from a YAML file.

    The file holds a ``year`` plus optional ``income``, ``income_overrides``,
    ``expenses`` and ``fixed_expenses`` sections. Invalid entries are
    skipped and reported in the returned statistics.

    Args:
        file_path: Path to the YAML file
        db_manager: DatabaseManager instance

    Returns:
        Dictionary with import statistics

    Raises:
        ValidationError: If the file has no valid year or is not a mapping
    """
    with open(file_path, 'r') as f:
        data = yaml.safe_load(f) or {}

    if not isinstance(data, dict):
        raise ValidationError("Import file must contain a mapping", details={"file": str(file_path)})

    year = data.get("year")
    if year is None:
        raise ValidationError("Import file must define a year", details={"file": str(file_path)})
    validate_year(year)

    stats = {
        "year": year,
        "income_set": False,
        "expenses": 0,
        "fixed_expenses": 0,
        "fixed_overrides": 0,
        "income_overrides": 0,
        "errors": []
    }

    income = data.get("income")
    if income is not None:
        try:
            if isinstance(income, dict):
                db_manager.set_income(income.get("value"), year, income.get("key", IncomeKey.MONTHLY.value))
            else:
                db_manager.set_income(income, year)
            stats["income_set"] = True
        except ValidationError as e:
            stats["errors"].append(f"income: {e}")

    for entry in data.get("income_overrides") or []:
        try:
            db_manager.upsert_income_override(entry.get("month"), year, entry.get("amount"), entry.get("date"))
            stats["income_overrides"] += 1
        except (ValidationError, AttributeError) as e:
            stats["errors"].append(f"income override {entry}: {e}")

    for entry in data.get("expenses") or []:
        try:
            db_manager.add_expense(
                name=entry.get("name"),
                amount=entry.get("amount"),
                year=year,
                kind=entry.get("kind", ExpenseKind.MONTHLY.value if entry.get("month") else ExpenseKind.YEARLY.value),
                month=entry.get("month"),
                date=entry.get("date"),
            )
            stats["expenses"] += 1
        except (ValidationError, AttributeError) as e:
            stats["errors"].append(f"expense {entry}: {e}")

    for entry in data.get("fixed_expenses") or []:
        try:
            definition = db_manager.add_fixed_expense(
                name=entry.get("name"),
                amount=entry.get("amount"),
                applicable_months=entry.get("months") or [],
                year=year,
            )
            stats["fixed_expenses"] += 1
        except (ValidationError, AttributeError) as e:
            stats["errors"].append(f"fixed expense {entry}: {e}")
            continue

        for override in entry.get("overrides") or []:
            try:
                db_manager.upsert_fixed_expense_override(
                    int(definition.id), override.get("month"), year, override.get("amount"), override.get("date")
                )
                stats["fixed_overrides"] += 1
            except (ValidationError, AttributeError) as e:
                stats["errors"].append(f"override for '{definition.name}' {override}: {e}")

    logger.info(
        f"Imported {file_path.name}: {stats['expenses']} expenses, "
        f"{stats['fixed_expenses']} fixed expenses, {len(stats['errors'])} errors"
    )
    return stats


def load_snapshot(connection_string: str, config: dict, year: int) -> BudgetSnapshot:
    """Open the database, read one snapshot for the year and close it again."""
    db_manager = DatabaseManager(connection_string, user_id=get_user_id(config))
    try:
        db_manager.create_tables()
        return db_manager.load_snapshot(year)
    finally:
        db_manager.close()


def build_report_generator(config: dict) -> ReportGenerator:
    return ReportGenerator(
        currency_symbol=get_currency_symbol(config),
        thresholds=get_budget_thresholds(config)
    )


def _reference_month(args: argparse.Namespace) -> int:
    return args.month if args.month is not None else date.today().month


def build_parser() -> argparse.ArgumentParser:
    """Build the argument parser with all subcommands."""
    parser = argparse.ArgumentParser(
        description="Monthly budget tracker",
        formatter_class=argparse.RawDescriptionHelpFormatter
    )
    parser.add_argument(
        "--config",
        "-c",
        type=str,
        default="config.yaml",
        help="Path to configuration file (default: config.yaml)"
    )

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    # Shared year/month options
    period_options = argparse.ArgumentParser(add_help=False)
    period_options.add_argument(
        "--year",
        type=int,
        default=date.today().year,
        help="Budget year (default: current year)"
    )
    period_options.add_argument(
        "--month",
        type=int,
        choices=range(1, 13),
        metavar="MONTH",
        help="Reference month 1-12 (default: current month)"
    )

    # Import command
    import_parser = subparsers.add_parser(
        "import",
        aliases=["imp"],
        help="Import budget records from YAML files"
    )
    import_parser.add_argument(
        "files",
        nargs="+",
        type=str,
        help="YAML file(s) to import"
    )

    # Summary command
    summary_parser = subparsers.add_parser(
        "summary",
        parents=[period_options],
        help="Show spent/income/remaining for a period"
    )
    summary_parser.add_argument(
        "--period",
        "-p",
        type=str,
        help="Period: this-month, last-month, past-3-months, past-6-months, entire-year "
             "(default from config)"
    )

    # Months command
    months_parser = subparsers.add_parser(
        "months",
        aliases=["grid"],
        parents=[period_options],
        help="Show the month-by-month grid for a year"
    )
    months_parser.add_argument(
        "--format",
        dest="tablefmt",
        type=str,
        default="grid",
        help="Table format passed to tabulate (default: grid)"
    )

    # Chart command
    chart_parser = subparsers.add_parser(
        "chart",
        parents=[period_options],
        help="Show the monthly expenses or savings trend"
    )
    chart_parser.add_argument(
        "--period",
        "-p",
        type=str,
        default="6M",
        help="Chart period: 1M, 3M, 6M, 1Y, All or a period name (default: 6M)"
    )
    chart_parser.add_argument(
        "--view",
        type=str,
        choices=["expenses", "savings"],
        default="expenses",
        help="Series to plot (default: expenses)"
    )
    chart_parser.add_argument(
        "--output",
        "-o",
        type=str,
        metavar="FILE",
        help="Write the chart as a PNG file"
    )

    # Overview command
    subparsers.add_parser(
        "overview",
        parents=[period_options],
        help="Show whole-year totals"
    )

    # Export command
    export_parser = subparsers.add_parser(
        "export",
        parents=[period_options],
        help="Export the month grid to CSV"
    )
    export_parser.add_argument(
        "output",
        type=str,
        help="Output CSV file"
    )

    return parser


def main(argv: Optional[List[str]] = None):
    """Main entry point for the application."""
    parser = build_parser()
    args = parser.parse_args(argv)

    # Handle case where no command is provided
    if not args.command:
        parser.print_help()
        sys.exit(1)

    # Load configuration
    config = load_config(Path(args.config))

    # Ensure data directory exists before logging/database work
    try:
        ensure_data_dir(config)
    except OSError as exc:
        print(f"Failed to prepare data directory: {exc}", file=sys.stderr)
        sys.exit(1)

    # Setup logging
    setup_logging(config)

    # Get database connection string
    try:
        connection_string = create_connection_string(config)
    except Exception as e:
        logger.error(f"Failed to create connection string: {e}")
        sys.exit(1)

    # Route to appropriate command handler
    if args.command in ["import", "imp"]:
        handle_import_command(args, config, connection_string)
    elif args.command == "summary":
        handle_summary_command(args, config, connection_string)
    elif args.command in ["months", "grid"]:
        handle_months_command(args, config, connection_string)
    elif args.command == "chart":
        handle_chart_command(args, config, connection_string)
    elif args.command == "overview":
        handle_overview_command(args, config, connection_string)
    elif args.command == "export":
        handle_export_command(args, config, connection_string)
    else:
        parser.print_help()
        sys.exit(1)


def handle_import_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """
    Handle the import command.

    Args:
        args: Parsed command-line arguments
        config: Configuration dictionary
        connection_string: Database connection string
    """
    file_paths = [Path(f) for f in args.files]
    invalid_files = [f for f in file_paths if not f.exists()]
    if invalid_files:
        logger.error(f"Files not found: {invalid_files}")
        print(f"Error: Files not found: {', '.join(str(f) for f in invalid_files)}", file=sys.stderr)
        sys.exit(1)

    try:
        db_manager = DatabaseManager(connection_string, user_id=get_user_id(config))
        db_manager.create_tables()
    except BudgetTrackerError as e:
        logger.error(f"Failed to initialize database: {e}")
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    failed = False
    try:
        for file_path in file_paths:
            try:
                stats = import_budget_file(file_path, db_manager)
            except (OSError, yaml.YAMLError, BudgetTrackerError) as e:
                logger.error(f"Error importing {file_path}: {e}", exc_info=True)
                print(f"Error: {file_path}: {e}", file=sys.stderr)
                failed = True
                continue

            print("\n" + "=" * 60)
            print(f"IMPORT SUMMARY ({file_path.name}, {stats['year']})")
            print("=" * 60)
            print(f"Income set: {'yes' if stats['income_set'] else 'no'}")
            print(f"Income overrides: {stats['income_overrides']}")
            print(f"Expenses: {stats['expenses']}")
            print(f"Fixed expenses: {stats['fixed_expenses']}")
            print(f"Fixed expense overrides: {stats['fixed_overrides']}")
            if stats["errors"]:
                print(f"\nSkipped entries ({len(stats['errors'])}):")
                for error in stats["errors"]:
                    print(f"  - {error}")
            print("=" * 60)
    finally:
        db_manager.close()

    if failed:
        sys.exit(1)


def handle_summary_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """Handle the summary command."""
    try:
        period = TimePeriod.parse(args.period) if args.period else get_default_period(config)
        window = build_window(period, reference_month=_reference_month(args))
        snapshot = load_snapshot(connection_string, config, args.year)
        figure = aggregate_snapshot(window, snapshot)

        reporter = build_report_generator(config)
        print(reporter.generate_window_report(figure, title=f"{period.value}, {args.year}"))
    except BudgetTrackerError as e:
        logger.error(f"Summary command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def handle_months_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """Handle the months command."""
    try:
        snapshot = load_snapshot(connection_string, config, args.year)
        grid = month_grid(snapshot.expenses, snapshot.fixed_expenses, snapshot.income, snapshot.income_overrides)

        reporter = build_report_generator(config)
        print(f"\nMONTHLY BREAKDOWN ({args.year})")
        print(reporter.generate_month_grid(grid, tablefmt=args.tablefmt))
        if any(figure.income_overridden for figure in grid.months):
            print("* income overridden for this month")
    except BudgetTrackerError as e:
        logger.error(f"Months command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def handle_chart_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """Handle the chart command."""
    try:
        snapshot = load_snapshot(connection_string, config, args.year)
        points = chart_series(
            args.period,
            _reference_month(args),
            snapshot.expenses,
            snapshot.fixed_expenses,
            snapshot.income,
            snapshot.income_overrides,
            view=args.view
        )

        reporter = build_report_generator(config)
        print(reporter.generate_chart_report(points, view=args.view, change=percentage_change(points)))
        if args.output:
            reporter.create_trend_chart(
                points,
                output_path=Path(args.output),
                title=f"Monthly {args.view.capitalize()} ({args.year})"
            )
            print(f"\nChart written to {args.output}")
    except BudgetTrackerError as e:
        logger.error(f"Chart command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def handle_overview_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """Handle the overview command."""
    try:
        snapshot = load_snapshot(connection_string, config, args.year)
        summary = summarize_snapshot(snapshot)

        reporter = build_report_generator(config)
        print(reporter.generate_year_overview(summary, args.year))
    except BudgetTrackerError as e:
        logger.error(f"Overview command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


def handle_export_command(args: argparse.Namespace, config: dict, connection_string: str) -> None:
    """Handle the export command."""
    try:
        snapshot = load_snapshot(connection_string, config, args.year)
        grid = month_grid(snapshot.expenses, snapshot.fixed_expenses, snapshot.income, snapshot.income_overrides)

        reporter = build_report_generator(config)
        df = reporter.window_to_dataframe(grid)
        reporter.export_to_csv(df, Path(args.output), report_name=f"month grid {args.year}")
        print(f"Exported {len(df)} months to {args.output}")
    except BudgetTrackerError as e:
        logger.error(f"Export command failed: {e}", exc_info=True)
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    main()
