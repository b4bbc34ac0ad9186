"""Command line entry point.

Usage:
    python -m logistics run orders.xlsx
    python -m logistics run orders.xlsx --test-level 22 --batch 2차 --yes
    python -m logistics sales-input
    python -m logistics steps
    python -m logistics steps --disable BOX_MARKING
    python -m logistics batch --check 3차
    python -m logistics init-db
"""

import argparse
import asyncio
import logging
import sys

from logistics.config import get_settings
from logistics.services import DEFAULT_INVOICE_STEPS, create_invoice_processor
from logistics.storage import CommonCodeRepository, get_database, init_database
from logistics_core.batch import BatchClassifier, BatchValidation
from logistics_core.outcome import RunOutcome, RunResult, StepProgress
from logistics_core.steps import StepRegistry

EXIT_CODES = {
    RunOutcome.SUCCESS: 0,
    RunOutcome.FAILED: 1,
    RunOutcome.NO_DATA: 2,
    RunOutcome.ABORTED: 3,
}


def positive_int(value: str) -> int:
    try:
        number = int(value)
    except ValueError:
        raise argparse.ArgumentTypeError(f"Not an integer: {value}")
    if number < 1:
        raise argparse.ArgumentTypeError(f"Must be >= 1: {value}")
    return number


def parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m logistics",
        description="Invoice batch pipeline",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m logistics run orders.xlsx --test-level 22
  python -m logistics run orders.xlsx --batch 2차 --yes
  python -m logistics batch --check 3차
        """,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Verbose logging")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Process an order spreadsheet")
    run.add_argument("file", help="Order spreadsheet (.xlsx)")
    run.add_argument(
        "--test-level",
        type=positive_int,
        default=None,
        help="Run only the first N enabled steps (default: TEST_LEVEL setting)",
    )
    run.add_argument("--batch", default=None, help="Declared batch label, e.g. 2차")
    run.add_argument("--yes", "-y", action="store_true", help="Proceed on batch mismatch without asking")

    sales = sub.add_parser("sales-input", help="Generate and send the sales input file only")
    sales.add_argument("--batch", default=None, help="Batch label for the notification title")

    steps = sub.add_parser("steps", help="List enabled processing steps")
    toggle = steps.add_mutually_exclusive_group()
    toggle.add_argument("--enable", default=None, metavar="CODE", help="Turn a step on")
    toggle.add_argument("--disable", default=None, metavar="CODE", help="Turn a step off")

    batch = sub.add_parser("batch", help="Show the current batch and the batch table")
    batch.add_argument("--check", default=None, metavar="LABEL", help="Validate a declared batch")

    sub.add_parser("init-db", help="Create tables and seed step codes")
    return parser.parse_args(argv)


def print_log(line: str) -> None:
    print(line, flush=True)


def print_progress(progress: StepProgress) -> None:
    filled = int(progress.fraction * 20)
    bar = "#" * filled + "-" * (20 - filled)
    print(f"  [{bar}] {progress.fraction:6.1%} {progress.index}/{progress.total} {progress.name}", flush=True)


async def ask_confirmation(validation: BatchValidation) -> bool:
    print(validation.explanation)
    answer = await asyncio.to_thread(input, "계속 진행하시겠습니까? [y/N] ")
    return answer.strip().lower() in ("y", "yes")


def print_result(result: RunResult) -> None:
    print()
    print(result.user_message)
    for warning in result.warnings:
        print(f"  경고: {warning}")
    for upload in result.uploads:
        print(f"  파일: {upload.remote_url}")


async def cmd_run(args: argparse.Namespace) -> int:
    processor = create_invoice_processor(get_settings())
    confirm = (lambda validation: True) if args.yes else ask_confirmation
    try:
        result = await processor.run(
            args.file,
            log_sink=print_log,
            progress_sink=print_progress,
            test_level=args.test_level,
            batch_label=args.batch,
            confirm=confirm,
        )
    finally:
        await processor.close()
    print_result(result)
    return EXIT_CODES[result.outcome]


async def cmd_sales_input(args: argparse.Namespace) -> int:
    processor = create_invoice_processor(get_settings())
    try:
        result = await processor.process_sales_input_data(
            log_sink=print_log,
            progress_sink=print_progress,
            batch_label=args.batch,
        )
    finally:
        await processor.close()
    print_result(result)
    return EXIT_CODES[result.outcome]


async def cmd_steps(args: argparse.Namespace) -> int:
    settings = get_settings()
    repo = CommonCodeRepository()
    code = args.enable or args.disable
    if code:
        if not await repo.set_used(settings.step_group_code, code, is_used=bool(args.enable)):
            print(f"Unknown step code: {code}")
            return 1
        print(f"{code}: {'enabled' if args.enable else 'disabled'}")

    registry = StepRegistry(repo, DEFAULT_INVOICE_STEPS, settings.step_group_code)
    steps = await registry.load_steps()

    print(f"\n{'#':>3} {'Code':<22} {'Order':>6}  Name")
    print("-" * 60)
    for step in steps:
        marker = "*" if step.index <= settings.test_level else " "
        print(f"{step.index:>3}{marker}{step.code:<22} {step.sort_order:>6}  {step.name}")
    print(f"\n* = runs at TEST_LEVEL={settings.test_level}")
    return 0


def cmd_batch(args: argparse.Namespace) -> int:
    classifier = BatchClassifier()
    current = classifier.classify_now()
    print(f"현재 배치: {current}")
    for label, ranges in classifier.describe().items():
        marker = "▶" if label == current else " "
        print(f" {marker} {label:<4} {ranges}")

    if args.check:
        validation = classifier.validate(args.check)
        print()
        print(validation.explanation)
        return 0 if validation.matches else 1
    return 0


async def cmd_init_db(args: argparse.Namespace) -> int:
    settings = get_settings()
    await init_database()
    print("Tables created: common_codes, invoice_orders, sales_input, sp_execution_log")

    registry = StepRegistry(None, DEFAULT_INVOICE_STEPS, settings.step_group_code)
    inserted = await CommonCodeRepository().seed(registry.default_common_codes())
    print(f"Seeded {inserted} {settings.step_group_code} step codes")
    return 0


async def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)

    level = logging.DEBUG if args.verbose else logging.INFO
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    logging.getLogger("asyncio").setLevel(logging.WARNING)
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("sqlalchemy").setLevel(logging.WARNING)

    if args.command == "batch":
        return cmd_batch(args)

    commands = {
        "run": cmd_run,
        "sales-input": cmd_sales_input,
        "steps": cmd_steps,
        "init-db": cmd_init_db,
    }
    try:
        return await commands[args.command](args)
    finally:
        await get_database().close()


def run_cli() -> None:
    sys.exit(asyncio.run(main()))


if __name__ == "__main__":
    run_cli()
