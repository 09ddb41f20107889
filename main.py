"""
Competitor Sentiment Engine — Command-line entrypoint

Runs one sentiment analysis for one competitor:
  1. Scrape recent posts + comments on every configured platform (Apify)
  2. Classify comment sentiment (LLM)
  3. Persist posts, comments and run statistics (SQLite)

Usage:
  python main.py --init-db                          # create tables only
  python main.py --competitor-id 3                  # new run for competitor 3
  python main.py --competitor-id 3 --run-id 12      # fill in an existing run
  python main.py --competitor-id 3 --settings analysis_settings.yaml
"""

import argparse
import json
import logging
import sys

import config
from sentiment_pipeline import run_sentiment_analysis
from sentiment_store import SentimentStore

logger = logging.getLogger(__name__)


def setup_logging():
    """Configure console logging with timestamps."""
    logging.basicConfig(
        level=getattr(logging, config.LOG_LEVEL, logging.INFO),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


def parse_args(argv=None):
    """Parse CLI arguments."""
    parser = argparse.ArgumentParser(
        description="Competitor Sentiment Engine — social comment sentiment analysis"
    )
    parser.add_argument(
        "--competitor-id", "-c",
        type=int,
        default=None,
        help="Competitor row to analyze",
    )
    parser.add_argument(
        "--run-id", "-r",
        type=int,
        default=None,
        help="Existing analysis run to record results under (created when omitted)",
    )
    parser.add_argument(
        "--settings", "-s",
        default=None,
        help="YAML file with analysis setting overrides",
    )
    parser.add_argument(
        "--init-db",
        action="store_true",
        help="Create the database tables before running",
    )
    return parser.parse_args(argv)


def main(argv=None) -> int:
    setup_logging()
    args = parse_args(argv)

    store = SentimentStore()
    if args.init_db:
        store.init_db()
        if args.competitor_id is None:
            return 0

    if args.competitor_id is None:
        logger.error("--competitor-id is required")
        return 2

    try:
        settings = config.load_settings(args.settings)
    except config.SettingsValidationError as e:
        logger.error(f"Invalid settings: {e}")
        return 2

    run_id = args.run_id
    if run_id is None:
        if store.get_competitor(args.competitor_id) is None:
            logger.error(f"Competitor {args.competitor_id} not found")
            return 1
        run_id = store.create_run(args.competitor_id)
        logger.info(f"Created analysis run {run_id} for competitor {args.competitor_id}")

    result = run_sentiment_analysis(
        args.competitor_id, run_id, store=store, settings=settings,
    )

    if not result.get("success"):
        logger.error(result.get("error"))
        return 1

    logger.info(result["message"])
    print(json.dumps(result, indent=2))
    return 0


if __name__ == "__main__":
    sys.exit(main())
