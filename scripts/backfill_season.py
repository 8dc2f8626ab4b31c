"""Walk a configured league's season in fixed-size date windows.

Each window is one pipeline run using the from/to query; re-running is safe
because every write is an upsert. Completed windows are recorded in a resume
file so an interrupted backfill picks up where it stopped.
"""
from __future__ import annotations

import argparse
import asyncio
from pathlib import Path

from fixtures_etl.config import load_config
from fixtures_etl.errors import TransportError, UpstreamError
from fixtures_etl.logging_utils import log_json, setup_logging
from fixtures_etl.orchestrate import Orchestrator, resolve_league
from fixtures_etl.utils import date_chunks, parse_date


def _parse_args() -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Backfill one league season window by window.")
    parser.add_argument("--league", required=True, help="Configured league slug")
    parser.add_argument("--start", help="YYYY-MM-DD (default: season_start)")
    parser.add_argument("--end", help="YYYY-MM-DD (default: season_end)")
    parser.add_argument("--chunk-days", type=int, default=7)
    parser.add_argument("--max-attempts", type=int, default=3, help="Max attempts per window")
    parser.add_argument("--base-delay", type=float, default=5.0, help="Base delay (seconds) between retries")
    parser.add_argument("--resume-file", default="tmp/backfill_done.txt")
    return parser.parse_args()


def _load_done(path: Path) -> set[str]:
    if not path.exists():
        return set()
    return {line.strip() for line in path.read_text().splitlines() if line.strip()}


def _mark_done(path: Path, key: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("a", encoding="utf-8") as f:
        f.write(f"{key}\n")


async def _run_window(orchestrator: Orchestrator, league: str, start, end, max_attempts: int, base_delay: float):
    for attempt in range(1, max_attempts + 1):
        try:
            return await orchestrator.run(league=league, date=start, date_to=end)
        except TransportError:
            if attempt >= max_attempts:
                raise
            await asyncio.sleep(base_delay * (2 ** (attempt - 1)))


def main() -> None:
    args = _parse_args()
    logger = setup_logging()
    cfg = load_config()
    league = resolve_league(args.league, cfg.leagues)
    start = parse_date(args.start) or league.season_start
    end = parse_date(args.end) or league.season_end
    if start is None or end is None:
        raise SystemExit("--start/--end are required when the league has no season bounds")
    resume_path = Path(args.resume_file)
    done = _load_done(resume_path)
    orchestrator = Orchestrator(cfg, logger)

    async def _run() -> None:
        totals = {"created": 0, "updated": 0, "skipped": 0}
        try:
            for chunk_start, chunk_end in date_chunks(start, end, args.chunk_days):
                key = f"{league.slug}:{chunk_start.isoformat()}:{chunk_end.isoformat()}"
                if key in done:
                    print(f"skip window {key} (resume)")
                    continue
                try:
                    summary = await _run_window(
                        orchestrator, league.slug, chunk_start, chunk_end, args.max_attempts, args.base_delay
                    )
                except UpstreamError as exc:
                    log_json(logger, "backfill_upstream_error", window=key, errors=exc.api_errors)
                    raise
                for name in totals:
                    totals[name] += getattr(summary, name)
                _mark_done(resume_path, key)
        finally:
            await orchestrator.close()
        log_json(logger, "backfill_done", league=league.slug, **totals)

    asyncio.run(_run())


if __name__ == "__main__":
    main()
