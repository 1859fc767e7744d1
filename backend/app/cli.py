"""Management CLI for ledger operations.

Usage:
    python -m app.cli trace CODE                       # Print a traceability report
    python -m app.cli stock CODE [--as-of YYYY-MM-DD]  # Stock summary for a batch
    python -m app.cli rollup LEVEL METRIC              # e.g. rollup province harvest_total
    python -m app.cli verify-ledger [--cooperative ID] # Run the integrity audit
    python -m app.cli token USER_ID ROLE [COOP_ID...]  # Mint a dev access token

Runs with national scope (LedgerContext.system()).  Exit code 1 when the
audit finds problems, 0 otherwise.
"""

import argparse
import asyncio
import sys
from datetime import date

from app.auth.context import LedgerContext
from app.auth.jwt import create_access_token
from app.database import async_session, engine
from app.services.aggregation import LEVELS, METRICS, rollup
from app.services.integrity import verify_ledger
from app.services.stock import stock_summary
from app.services.traceability import reconstruct


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kopitrace", description="KopiTrace ledger tools")
    commands = parser.add_subparsers(dest="command", required=True)

    trace = commands.add_parser("trace", help="Print the traceability report of a batch")
    trace.add_argument("code")

    stock = commands.add_parser("stock", help="Stock summary for a batch")
    stock.add_argument("code")
    stock.add_argument("--as-of", type=date.fromisoformat, help="Cut-off date (YYYY-MM-DD)")

    report = commands.add_parser("rollup", help="Aggregate a metric at a level")
    report.add_argument("level", choices=LEVELS)
    report.add_argument("metric", choices=METRICS)

    verify = commands.add_parser("verify-ledger", help="Run the ledger integrity audit")
    verify.add_argument("--cooperative", help="Limit the audit to one cooperative")

    token = commands.add_parser("token", help="Mint a development access token")
    token.add_argument("user_id")
    token.add_argument("role")
    token.add_argument("cooperative_ids", nargs="*")

    return parser


async def run(args: argparse.Namespace, session_factory=async_session) -> int:
    """Execute one parsed command; returns the process exit code."""
    if args.command == "token":
        print(create_access_token(args.user_id, args.role, args.cooperative_ids))
        return 0

    ctx = LedgerContext.system()
    async with session_factory() as db:
        if args.command == "trace":
            report = await reconstruct(db, args.code)
            print(report.model_dump_json(indent=2, by_alias=True))
            return 0

        if args.command == "stock":
            summary = await stock_summary(db, args.code, args.as_of)
            print(summary.model_dump_json(indent=2))
            return 0

        if args.command == "rollup":
            rows = await rollup(db, ctx, args.level, args.metric)
            for row in rows:
                value = "n/a" if row.value is None else f"{row.value:,.2f}"
                print(f"  {row.label:<30} {value:>14}")
            print(f"\n{len(rows)} row(s)")
            return 0

        report = await verify_ledger(db, ctx, args.cooperative)
        for finding in report.findings:
            print(f"  [{finding.severity}] {finding.check}: {finding.message}")
        print(
            f"\n{report.batches_checked} batch(es), {report.operations_checked} "
            f"transformation(s), {len(report.findings)} finding(s)"
        )
        return 0 if report.ok else 1


async def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        return await run(args)
    finally:
        await engine.dispose()


if __name__ == "__main__":
    sys.exit(asyncio.run(main()))
