#!/usr/bin/env python3
"""
Seed known personnel and vendors from a roster file.

Usage:
    python scripts/seed_roster.py
    python scripts/seed_roster.py config/master_roster.yaml
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from config.settings import settings
from sitelog.database import SessionLocal, init_db
from sitelog.entity_resolution import EntityResolver
from sitelog.models import EntityKind
from sitelog.roster import load_roster, seed_roster
from sitelog.store import SqlEntityStore


def main():
    parser = argparse.ArgumentParser(description="Seed personnel and vendors from a roster")
    parser.add_argument(
        "roster",
        nargs="?",
        type=Path,
        default=settings.project_root / "config" / "master_roster.yaml",
        help="Roster YAML file (default: config/master_roster.yaml)",
    )

    args = parser.parse_args()
    roster = load_roster(args.roster)

    init_db()
    db = SessionLocal()

    try:
        store = SqlEntityStore(db)
        stats = seed_roster(EntityResolver(store), roster)

        print("=" * 60)
        print("ROSTER SEEDED")
        print("=" * 60)
        print(f"Created entities:  {stats['created']}")
        print(f"Already known:     {stats['existing']}")
        print(f"Aliases added:     {stats['aliases']}")
        print(f"Conflicts:         {stats['conflicts']}")
        print(f"Active people:     {store.count_entities(EntityKind.PERSON)}")
        print(f"Active vendors:    {store.count_entities(EntityKind.VENDOR)}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
