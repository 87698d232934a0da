#!/usr/bin/env python3
"""
Resolve a single name against the entity database.

Usage:
    python scripts/resolve_name.py "Owen glass burner" --kind person
    python scripts/resolve_name.py "ABC" --kind vendor --dry-run
    python scripts/resolve_name.py "Scott R." --kind person --create --project-id P-17
"""

import argparse
import sys
from pathlib import Path

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from sitelog.database import SessionLocal, init_db
from sitelog.entity_resolution import EntityResolver, ResolutionContext
from sitelog.models import EntityKind
from sitelog.store import SqlEntityStore


def main():
    parser = argparse.ArgumentParser(description="Resolve a person or vendor name")
    parser.add_argument("name", help="Name as it appears in the transcript")
    parser.add_argument(
        "--kind",
        choices=[k.value for k in EntityKind],
        default=EntityKind.PERSON.value,
        help="Entity kind (default: person)",
    )
    parser.add_argument(
        "--create",
        action="store_true",
        help="Create a new entity when nothing matches",
    )
    parser.add_argument(
        "--force",
        action="store_true",
        help="Break close-score ties instead of reporting ambiguity",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Classify only; do not record the mention",
    )
    parser.add_argument("--project-id", help="Project the mention came from")

    args = parser.parse_args()
    if args.create and args.dry_run:
        parser.error("--create and --dry-run are mutually exclusive")

    init_db()
    db = SessionLocal()

    try:
        kind = EntityKind(args.kind)
        resolver = EntityResolver(SqlEntityStore(db))
        context = ResolutionContext(project_id=args.project_id)

        if args.create:
            result, entity_id, created = resolver.resolve_or_create(
                args.name, kind, context, force=args.force
            )
        else:
            result = resolver.resolve(
                args.name, kind, context, force=args.force, dry_run=args.dry_run
            )
            entity_id, created = result.entity_id, False

        candidate = result.candidate
        print("=" * 60)
        print(f"Input:      {args.name!r} ({kind.value})")
        print(f"Normalized: {candidate.normalized_text if candidate else ''!r}")
        print(f"Outcome:    {result.outcome.value.upper()}")
        print("=" * 60)

        if created:
            entity = resolver.store.get_entity(entity_id)
            print(f"Created {entity.display_name} ({entity.id})")
        elif result.is_match:
            entity = resolver.store.get_entity(result.entity_id)
            print(f"Matched {entity.display_name} ({entity.id})")
            print(f"  Method: {result.method}, confidence: {result.confidence:.2f}")
            print(f"  Seen {entity.occurrence_count} times, last {entity.last_seen:%Y-%m-%d}")
        elif result.is_ambiguous:
            print(f"Ambiguous ({result.reason.value}), candidates:")
            scores = {c.entity_id: c.score for c in result.scored}
            for candidate_id in result.candidate_ids:
                entity = resolver.store.get_entity(candidate_id)
                score = scores.get(candidate_id)
                score_str = f"{score:.2f}" if score is not None else "  - "
                print(f"  {score_str}  {entity.display_name} ({entity.id})")
        else:
            print("No existing entity matches this name")

    finally:
        db.close()


if __name__ == "__main__":
    main()
