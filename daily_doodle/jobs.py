"""Scheduled jobs.

    python -m daily_doodle.jobs generate-daily-word [--date yyyy-mm-dd]
    python -m daily_doodle.jobs score-pending
    python -m daily_doodle.jobs init-db

generate-daily-word is meant for a 00:00 UTC cron; score-pending sweeps up
attempts whose scoring trigger was lost.
"""
import argparse
import asyncio
import logging

from openai import AsyncOpenAI

from daily_doodle.classifier import OpenAIClassifier
from daily_doodle.daily import generate_daily_word
from daily_doodle.dates import is_valid_date_key
from daily_doodle.db import get_engine, get_sessionmaker, get_settings, init_db
from daily_doodle.repository import DoodleRepository
from daily_doodle.scoring import score_pending
from daily_doodle.storage import LocalRasterStore

logger = logging.getLogger(__name__)


async def run_generate_daily_word(date_key: str | None) -> None:
    repo = DoodleRepository(get_sessionmaker())
    daily = await generate_daily_word(repo, date_key)
    print(f"{daily.date}: {daily.word} ({daily.difficulty}, threshold {daily.threshold})")


async def run_score_pending() -> None:
    settings = get_settings()
    repo = DoodleRepository(get_sessionmaker())
    store = LocalRasterStore(settings.storage_root)
    classifier = OpenAIClassifier(AsyncOpenAI(api_key=settings.openai_api_key or None), model=settings.openai_model)

    outcomes = await score_pending(repo, store, classifier)
    wins = sum(1 for o in outcomes if o.is_win)
    print(f"Scored {len(outcomes)} pending attempts ({wins} wins)")


async def main(argv: list[str] | None = None) -> None:
    parser = argparse.ArgumentParser(prog="daily_doodle.jobs")
    sub = parser.add_subparsers(dest="command", required=True)

    gen = sub.add_parser("generate-daily-word", help="Pick and store the word for a day")
    gen.add_argument("--date", help="Date key (yyyy-mm-dd), defaults to today in UTC")
    sub.add_parser("score-pending", help="Score every attempt still pending")
    sub.add_parser("init-db", help="Create database tables")

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=get_settings().log_level,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if getattr(args, "date", None) and not is_valid_date_key(args.date):
        parser.error(f"invalid date key: {args.date}")

    try:
        await init_db()
        if args.command == "generate-daily-word":
            await run_generate_daily_word(args.date)
        elif args.command == "score-pending":
            await run_score_pending()
    finally:
        await get_engine().dispose()


if __name__ == "__main__":
    asyncio.run(main())
