"""remove unshared conversations past their retention window and expired shares.

meant for cron: `convo-cleanup` or `python -m convo.cleanup`
"""
import argparse
import json
import logging

from convo.config import settings
from convo.storage import conversations

logger = logging.getLogger("convo.cleanup")


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description=__doc__.splitlines()[0])
    parser.add_argument(
        "--max-age-days", type=int, default=settings.unshared_max_age_days,
        help="remove unshared conversations older than this (default: %(default)s)",
    )
    parser.add_argument("--dry-run", action="store_true", help="report what would be removed")
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    logger.info("starting conversation cleanup in %s", settings.data_dir)
    report = conversations.sweep(max_age_days=args.max_age_days, dry_run=args.dry_run)
    print(json.dumps(report.model_dump()))
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
