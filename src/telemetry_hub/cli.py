from __future__ import annotations

import argparse
import asyncio
import json
from datetime import date

from telemetry_hub.core.config import get_settings
from telemetry_hub.core.container import get_orchestrator, get_reporting_service
from telemetry_hub.core.logging import setup_logging


def _previous_month_default() -> tuple[int, int]:
    today = date.today()
    return (today.year - 1, 12) if today.month == 1 else (today.year, today.month - 1)


def _dump(payload: object) -> None:
    print(json.dumps(payload, ensure_ascii=False, indent=2, default=str))


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Security telemetry hub CLI")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("sync-all", help="Collect from every registered source")

    one = sub.add_parser("sync", help="Collect from one source")
    one.add_argument("source")

    sub.add_parser("status", help="Show the last run status of every source")

    history = sub.add_parser("history", help="Show the collection run log")
    history.add_argument("--source", default=None)
    history.add_argument("--limit", type=int, default=20)
    history.add_argument("--offset", type=int, default=0)

    year, month = _previous_month_default()
    report = sub.add_parser("monthly-report", help="Generate the monthly report")
    report.add_argument("--year", type=int, default=year)
    report.add_argument("--month", type=int, default=month)
    report.add_argument("--no-file", action="store_true", help="Do not write the report JSON to disk")
    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    setup_logging(get_settings().log_level)
    orchestrator = get_orchestrator()

    if args.command == "sync-all":
        outcomes = asyncio.run(orchestrator.collect_all(triggered_by="cli"))
        _dump([o.model_dump(mode="json") for o in outcomes])
        return 0
    if args.command == "sync":
        try:
            outcome = asyncio.run(orchestrator.collect_one(args.source, triggered_by="cli"))
        except KeyError as exc:
            parser.error(str(exc))
        _dump(outcome.model_dump(mode="json"))
        return 0 if outcome.status.value != "failed" else 1
    if args.command == "status":
        _dump([s.model_dump(mode="json") for s in orchestrator.source_statuses()])
        return 0
    if args.command == "history":
        try:
            page = orchestrator.run_history(source=args.source, limit=args.limit, offset=args.offset)
        except KeyError as exc:
            parser.error(str(exc))
        _dump(page.model_dump(mode="json"))
        return 0
    if args.command == "monthly-report":
        try:
            result = get_reporting_service().generate_monthly_report(
                args.year,
                args.month,
                write_file=not args.no_file,
            )
        except ValueError as exc:
            parser.error(str(exc))
        _dump(result.model_dump(mode="json"))
        return 0
    return 2


if __name__ == "__main__":
    raise SystemExit(main())
