from __future__ import annotations

import argparse
import asyncio
import json
import sys

from .config import load_config
from .errors import FixturesEtlError, UpstreamError
from .logging_utils import log_json, setup_logging
from .orchestrate import Orchestrator
from .store import FixtureStore


def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(prog="fixtures_etl")
    parser.add_argument("--config", help="Path to config.yaml (default: $FIXTURES_ETL_CONFIG or ./config.yaml)")
    parser.add_argument("--log-level", default="INFO")
    sub = parser.add_subparsers(dest="command", required=True)

    run = sub.add_parser("run", help="Ingest fixtures for one league and date window")
    run.add_argument("--league", help="Configured slug or provider league id")
    run.add_argument("--date", help="YYYY-MM-DD (default: today in the timezone)")
    run.add_argument("--to", dest="date_to", help="Inclusive window end YYYY-MM-DD")
    run.add_argument("--days-ahead", type=int, default=0)
    run.add_argument("--season", type=int)
    run.add_argument("--timezone")
    run.add_argument("--debug", action="store_true")

    sub.add_parser("init-db", help="Create the leagues/teams/matches tables if missing")

    return parser.parse_args(argv)


def main(argv=None) -> None:
    args = _parse_args(argv)
    logger = setup_logging(args.log_level)
    cfg = load_config(args.config)

    if args.command == "init-db":
        store = FixtureStore.from_url(cfg.database_url)
        store.create_schema()
        log_json(logger, "schema_ready")
        return

    orchestrator = Orchestrator(cfg, logger)

    async def _run():
        try:
            return await orchestrator.run(
                league=args.league,
                date=args.date,
                date_to=args.date_to,
                days_ahead=args.days_ahead,
                season=args.season,
                timezone=args.timezone,
            )
        finally:
            await orchestrator.close()

    try:
        summary = asyncio.run(_run())
    except UpstreamError as exc:
        print(json.dumps({"ok": False, "reason": "upstream_error", "api_errors": exc.api_errors, "last_url": exc.last_url}))
        sys.exit(2)
    except FixturesEtlError as exc:
        print(json.dumps({"ok": False, "error": str(exc)}))
        sys.exit(1)
    print(json.dumps(summary.as_response(debug=args.debug), default=str))


if __name__ == "__main__":
    main()
