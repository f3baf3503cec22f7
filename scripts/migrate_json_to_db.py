"""
Import the JSON-file store (users.json, prescriptions.json) into the
configured database.

Run with DATABASE_URL set (or config/database.json present):

    python scripts/migrate_json_to_db.py --data-dir data
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from medizo.config import get_settings, resolve_database_url
from medizo.db import JsonFileDbClient, SqlDocumentDbClient
from medizo.migrate import migrate

logger = logging.getLogger(__name__)


def main() -> int:
    settings = get_settings()
    parser = argparse.ArgumentParser(description="Import JSON data files into the database.")
    parser.add_argument(
        "--data-dir",
        default=settings.data_dir,
        help="Directory holding users.json and prescriptions.json",
    )
    parser.add_argument(
        "--database-url",
        default=None,
        help="SQLAlchemy URL of the target database (defaults to DATABASE_URL)",
    )
    args = parser.parse_args()

    logging.basicConfig(level=logging.INFO, format="%(levelname)s:%(message)s")
    database_url = args.database_url or resolve_database_url(settings)
    if not database_url:
        logger.error("No database configured; set DATABASE_URL or pass --database-url")
        return 1

    source = JsonFileDbClient(args.data_dir)
    target = SqlDocumentDbClient(database_url)
    summary = migrate(source, target)

    print("Migration complete")
    print(f"  users created:          {summary.users_created}")
    print(f"  users updated:          {summary.users_updated}")
    print(f"  prescriptions imported: {summary.prescriptions_created}")
    print(f"  prescriptions skipped:  {summary.prescriptions_skipped}")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
