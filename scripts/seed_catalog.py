import json
import os
import sys
from pathlib import Path

from dotenv import load_dotenv

from paysync.core.logging import configure_logging
from paysync.infrastructure.persistence.sqlite import SQLitePersistence
from paysync.services.catalog_service import seed_catalog


def main() -> None:
    load_dotenv()
    configure_logging()

    if len(sys.argv) < 2:
        raise SystemExit("Usage: python scripts/seed_catalog.py <catalog.json>")
    catalog_path = Path(sys.argv[1])
    database_path = Path(os.getenv("DATABASE_PATH", "data/paysync.db")).resolve()

    data = json.loads(catalog_path.read_text(encoding="utf-8"))
    persistence = SQLitePersistence(database_path)
    try:
        counts = seed_catalog(persistence, data)
    finally:
        persistence.close()
    print(f"Seeded {counts['plans']} plans and {counts['gifts']} gifts into {database_path}")


if __name__ == "__main__":
    main()
