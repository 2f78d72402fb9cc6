"""
CTV Rollup – command line: schema, seed data, CSV ingestion, campaigns and rollup reports.

  pip install -e .
  copy .env.example to .env and set STORAGE_BACKEND / Snowflake credentials
  python cli.py init-schema
  python cli.py seed
  python cli.py ingest exports/pluto_q3.csv [--campaign-name "Pluto Q3"]
  python cli.py campaigns
  python cli.py rollup app [--campaign pluto-q3-k3x9qa] [--limit 20]
  python cli.py stats pluto-q3-k3x9qa
  python cli.py delete pluto-q3-k3x9qa

With STORAGE_BACKEND=memory every command starts from an empty store, so ingest and report
in one invocation: python cli.py ingest FILE --report app
"""

import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

import pandas as pd

from config import LOG_LEVEL
from engine import RollupEngine, build_storage
from errors import RollupError
from ingest import ingest_csv
from storage import SnowflakeStorage

logging.basicConfig(level=getattr(logging, LOG_LEVEL, logging.INFO), format="%(asctime)s [%(levelname)s] %(name)s: %(message)s")
logger = logging.getLogger(__name__)

ROLLUP_KINDS = ("app", "genre", "content")


def rollup_frame(engine: RollupEngine, kind: str, campaign_id: Optional[str] = None) -> pd.DataFrame:
    if kind == "app":
        rows = engine.get_app_rollup(campaign_id)
    elif kind == "genre":
        rows = engine.get_genre_rollup(campaign_id)
    elif kind == "content":
        rows = engine.get_content_rollup(campaign_id)
    else:
        raise ValueError(f"Unknown rollup kind: {kind}")
    return pd.DataFrame([r.to_dict() for r in rows])


def _print_frame(df: pd.DataFrame, limit: Optional[int] = None) -> None:
    if df.empty:
        print("(no rows)")
        return
    if limit:
        df = df.head(limit)
    print(df.to_string(index=False))


def cmd_init_schema(args: argparse.Namespace) -> int:
    n = SnowflakeStorage().init_schema()
    logger.info("Schema ready (%s statements)", n)
    return 0


def cmd_seed(engine: RollupEngine, args: argparse.Namespace) -> int:
    counts = engine.seed_reference_tables()
    logger.info("Seeded: %s", counts)
    return 0


def cmd_ingest(engine: RollupEngine, args: argparse.Namespace) -> int:
    path = Path(args.file)
    if not path.exists():
        logger.error("File not found: %s", path)
        return 1
    if args.seed:
        engine.seed_reference_tables()
    result = ingest_csv(engine, path.name, path.read_bytes(), campaign_name=args.campaign_name)
    campaign_id = result["campaign"]["id"]
    logger.info(
        "Campaign %s (%s): %s rows inserted",
        campaign_id,
        result["campaign"]["name"],
        result["content"]["rows_inserted"],
    )
    for kind in args.report or []:
        print(f"\n== {kind} rollup ==")
        _print_frame(rollup_frame(engine, kind, campaign_id), args.limit)
    return 0


def cmd_campaigns(engine: RollupEngine, args: argparse.Namespace) -> int:
    _print_frame(pd.DataFrame([c.to_dict() for c in engine.list_campaigns()]))
    return 0


def cmd_rollup(engine: RollupEngine, args: argparse.Namespace) -> int:
    _print_frame(rollup_frame(engine, args.kind, args.campaign), args.limit)
    return 0


def cmd_stats(engine: RollupEngine, args: argparse.Namespace) -> int:
    stats = engine.get_campaign_stats(args.campaign_id)
    if stats is None:
        logger.error("Campaign not found: %s", args.campaign_id)
        return 1
    for key, value in stats.to_dict().items():
        print(f"{key}: {value}")
    return 0


def cmd_delete(engine: RollupEngine, args: argparse.Namespace) -> int:
    engine.delete_campaign(args.campaign_id)
    logger.info("Deleted campaign %s", args.campaign_id)
    return 0


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="CTV Rollup: ingest CTV delivery exports and report rollups")
    parser.add_argument("--backend", choices=["memory", "snowflake"], default=None, help="Override STORAGE_BACKEND")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-schema", help="Create Snowflake tables if missing")
    sub.add_parser("seed", help="Upsert bundle/genre/alias seed rows")

    p = sub.add_parser("ingest", help="Ingest one CSV export")
    p.add_argument("file", type=str, help="Path to a .csv export")
    p.add_argument("--campaign-name", type=str, default=None, help="Campaign name (default: file name); an existing name merges")
    p.add_argument("--seed", action="store_true", help="Seed reference tables before ingesting")
    p.add_argument("--report", choices=ROLLUP_KINDS, action="append", help="Print a rollup for the campaign afterwards (repeatable)")
    p.add_argument("--limit", type=int, default=None, help="Max rows per printed rollup")

    sub.add_parser("campaigns", help="List campaigns, newest first")

    p = sub.add_parser("rollup", help="Print a rollup")
    p.add_argument("kind", choices=ROLLUP_KINDS)
    p.add_argument("--campaign", type=str, default=None, help="Campaign id (default: all campaigns)")
    p.add_argument("--limit", type=int, default=None, help="Max rows to print")

    p = sub.add_parser("stats", help="Print totals for one campaign")
    p.add_argument("campaign_id", type=str)

    p = sub.add_parser("delete", help="Delete a campaign with its uploads and rows")
    p.add_argument("campaign_id", type=str)
    return parser


COMMANDS = {
    "seed": cmd_seed,
    "ingest": cmd_ingest,
    "campaigns": cmd_campaigns,
    "rollup": cmd_rollup,
    "stats": cmd_stats,
    "delete": cmd_delete,
}


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "init-schema":
            return cmd_init_schema(args)
        engine = RollupEngine(build_storage(args.backend))
        try:
            return COMMANDS[args.command](engine, args)
        finally:
            engine.close()
    except RollupError as e:
        logger.error("%s failed: %s", args.command, e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
