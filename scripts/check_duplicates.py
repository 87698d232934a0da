#!/usr/bin/env python3
"""
Duplicate Entity Diagnostic Script

Finds active entities that probably refer to the same person or vendor
(typically two reports creating the same new name at once, or a spelling the
resolver could not connect), and reconciles them.

Usage:
    python scripts/check_duplicates.py
    python scripts/check_duplicates.py --kind vendor --threshold 0.9
    python scripts/check_duplicates.py --export
    python scripts/check_duplicates.py --apply data/review_queue.csv
    python scripts/check_duplicates.py --merge PRIMARY_ID DUPLICATE_ID
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitelog.database import SessionLocal, init_db
from sitelog.entity_resolution import EntityMerger, MergeError
from sitelog.models import EntityKind
from sitelog.store import SqlEntityStore


def print_pair(merger: EntityMerger, pair, pair_num: int):
    """Print details about a potential duplicate pair."""
    primary, duplicate = merger.choose_primary(pair.entity_a, pair.entity_b)
    preview = merger.preview(primary.id, duplicate.id)

    print(f"\n{'='*70}")
    print(f"Potential Duplicate #{pair_num} ({primary.kind.value}, similarity {pair.score:.2f})")
    print(f"{'='*70}")

    for entity in (primary, duplicate):
        print(f"\n  Entity {entity.id[:8]}...")
        print(f"    Name: \"{entity.display_name}\"")
        print(f"    Aliases: {', '.join(entity.alias_names) or 'none'}")
        print(f"    Seen: {entity.occurrence_count} times, "
              f"{entity.first_seen:%Y-%m-%d} to {entity.last_seen:%Y-%m-%d}")
        if entity.attributes:
            print(f"    Attributes: {entity.attributes}")

    print(f"\n  Merging would move {len(preview.aliases_to_move)} aliases and "
          f"{preview.history_records_to_move} history records into \"{primary.display_name}\"")
    for key, (kept, dropped) in preview.attribute_conflicts.items():
        print(f"  Conflict on {key}: keeps {kept!r}, drops {dropped!r}")

    if pair.score >= 0.95:
        print("  Recommendation: LIKELY DUPLICATE - should merge")
    elif pair.score >= 0.85:
        print("  Recommendation: POSSIBLE DUPLICATE - review manually")
    else:
        print("  Recommendation: UNCERTAIN - different people/vendors?")


def main():
    parser = argparse.ArgumentParser(description="Find and reconcile duplicate entities")
    parser.add_argument(
        "--kind",
        choices=[k.value for k in EntityKind],
        help="Only check one entity kind (default: both)",
    )
    parser.add_argument(
        "--threshold",
        type=float,
        default=0.85,
        help="Similarity threshold (0-1, default: 0.85)",
    )
    parser.add_argument(
        "--limit",
        type=int,
        default=20,
        help="Maximum number of pairs to show (default: 20)",
    )
    parser.add_argument(
        "--export",
        action="store_true",
        help="Export the pairs to data/review_queue.csv for manual review",
    )
    parser.add_argument(
        "--apply",
        type=Path,
        metavar="CSV",
        help="Apply merge/keep_separate decisions from a reviewed CSV",
    )
    parser.add_argument(
        "--merge",
        nargs=2,
        metavar=("PRIMARY_ID", "DUPLICATE_ID"),
        help="Merge one entity into another",
    )

    args = parser.parse_args()

    init_db()
    db = SessionLocal()

    try:
        merger = EntityMerger(db)
        store = SqlEntityStore(db)

        if args.merge:
            try:
                primary = merger.merge(*args.merge)
            except MergeError as e:
                print(f"Merge refused: {e}")
                sys.exit(1)
            print(f"Merged into \"{primary.display_name}\" "
                  f"({primary.occurrence_count} occurrences)")
            return

        if args.apply:
            results = merger.apply_manual_decisions(args.apply)
            print(f"Merged: {results['merged']}  Kept separate: {results['kept_separate']}  "
                  f"Skipped: {results['skipped']}")
            return

        kind = EntityKind(args.kind) if args.kind else None

        print("=" * 70)
        print("DUPLICATE ENTITY DIAGNOSTIC")
        print("=" * 70)
        print(f"Active people:  {store.count_entities(EntityKind.PERSON)}")
        print(f"Active vendors: {store.count_entities(EntityKind.VENDOR)}")

        pairs = merger.find_potential_duplicates(kind, threshold=args.threshold, limit=1000)

        if not pairs:
            print("\n" + "=" * 70)
            print("NO POTENTIAL DUPLICATES FOUND")
            print("=" * 70)
            return

        print(f"\n{'='*70}")
        print(f"FOUND {len(pairs)} POTENTIAL DUPLICATE PAIRS")
        print(f"{'='*70}")

        for i, pair in enumerate(pairs[:args.limit], 1):
            print_pair(merger, pair, i)

        if len(pairs) > args.limit:
            print(f"\n... and {len(pairs) - args.limit} more pairs (use --limit to see more)")

        if args.export:
            csv_path = merger.export_review_queue(pairs)
            print(f"\nReview queue exported to: {csv_path}")
            print("Fill the decision column with merge/keep_separate, then run:")
            print(f"   python scripts/check_duplicates.py --apply {csv_path}")

    finally:
        db.close()


if __name__ == "__main__":
    main()
