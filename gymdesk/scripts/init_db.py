#!/usr/bin/env python3
"""
Create the gymdesk schema and seed catalog data.

Usage:
    python -m gymdesk.scripts.init_db [--reset] [--no-seed]

Prerequisites:
    - DATABASE_URL set (or TEST_DATABASE_URL for a scratch database)
"""
import argparse
import logging
import sys

from dotenv import load_dotenv

load_dotenv()

from gymdesk.core.config import settings
from gymdesk.core.database import create_all_tables, init_engine, reset_database
from gymdesk.core.logging import configure_logging
from gymdesk.features.achievements.service import seed_achievements
from gymdesk.features.plans.service import seed_plans


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Create gymdesk tables and seed defaults")
    parser.add_argument("--reset", action="store_true", help="Drop and recreate all tables (destructive)")
    parser.add_argument("--no-seed", action="store_true", help="Skip seeding plans and achievements")
    args = parser.parse_args(argv)

    configure_logging(settings.ENV)
    logger = logging.getLogger("gymdesk")

    try:
        init_engine()
    except ValueError as e:
        logger.error(str(e))
        return 1

    if args.reset:
        if settings.ENV == "production":
            logger.error("Refusing to reset a production database")
            return 1
        reset_database()
        logger.info("db.reset")
    else:
        create_all_tables()
        logger.info("db.tables_created")

    if not args.no_seed:
        seed_plans()
        added = seed_achievements()
        logger.info("db.seeded", extra={"achievements_added": added})

    return 0


if __name__ == "__main__":
    sys.exit(main())
