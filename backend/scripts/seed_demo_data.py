"""
Create the asset tables and load a demo hierarchy.

Usage:
    DATABASE_URL=sqlite:///./assets.db python scripts/seed_demo_data.py
    python scripts/seed_demo_data.py --sites 5 --subjects 10 --reset
"""

import argparse
import logging
import sys
from pathlib import Path

from dotenv import load_dotenv

# Load .env from project root
load_dotenv(Path(__file__).parent.parent.parent / ".env")

# Add parent directory to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent))

from asset_api.config import settings
from asset_api.db import drop_schema, get_session_factory, init_schema
from asset_api.services.demo_seed import seed_demo_hierarchy

logger = logging.getLogger(__name__)


def main():
    parser = argparse.ArgumentParser(description="Seed demo data for the asset browser")
    parser.add_argument("--sites", type=int, default=3, help="Number of sites")
    parser.add_argument("--subjects", type=int, default=4, help="Subjects per site")
    parser.add_argument("--assets", type=int, default=2, help="Assets per procedure")
    parser.add_argument("--seed", type=int, default=7, help="Random seed")
    parser.add_argument("--reset", action="store_true", help="Drop existing tables first")
    parser.add_argument("--log-level", default="INFO", help="Logging level")
    args = parser.parse_args()

    logging.basicConfig(
        level=getattr(logging, args.log_level.upper(), logging.INFO),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )

    if not settings.database_url:
        logger.error("DATABASE_URL is not set")
        return 1

    if args.reset:
        logger.info("Dropping existing tables...")
        drop_schema()
    init_schema()

    db = get_session_factory()()
    try:
        counts = seed_demo_hierarchy(
            db,
            sites=args.sites,
            subjects_per_site=args.subjects,
            assets_per_procedure=args.assets,
            seed=args.seed,
        )
    finally:
        db.close()

    print("Demo data loaded:")
    for name, count in counts.items():
        print(f"  - {name}: {count}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
