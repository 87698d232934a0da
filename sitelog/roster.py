"""
Seeding known personnel and vendors from a roster file.

Each roster entry is resolved like any mention and only created on NoMatch,
through the resolver's create path. An entry whose name already belongs to an
entity (exact alias) is reused; an entry that fuzzy-matches or is ambiguous
against existing entities is reported as a conflict and left for a person to
sort out, so the roster can never introduce a near-duplicate. Extra aliases go
through the alias index with the usual conflict checks. Seeding is idempotent.

Roster format (YAML):
    personnel:
      - display_name: Owen Glassburn
        aliases: [Owen, Owen glass burner]
        attributes: {position: Laborer}
    vendors:
      - display_name: ABC Supply Co., Inc.
"""

from pathlib import Path
from typing import Union

import yaml

from config.logging import logger
from sitelog.entity_resolution.exceptions import AliasConflict
from sitelog.entity_resolution.resolver import EntityResolver
from sitelog.models import EntityKind

SECTIONS = {"personnel": EntityKind.PERSON, "vendors": EntityKind.VENDOR}


def load_roster(path: Union[str, Path]) -> dict:
    with open(path, encoding="utf-8") as f:
        roster = yaml.safe_load(f) or {}
    if not isinstance(roster, dict):
        raise ValueError(f"Roster file {path} must contain a mapping")
    return roster


def seed_roster(resolver: EntityResolver, roster: dict) -> dict:
    """
    Create or reuse one entity per roster entry and register its aliases.

    Returns:
        Dict with counts of created/existing entities, new aliases, conflicts
        (entries too close to another entity plus aliases held elsewhere)
    """
    stats = {"created": 0, "existing": 0, "aliases": 0, "conflicts": 0}
    store = resolver.store
    normalizer = resolver.normalizer

    for section, kind in SECTIONS.items():
        for entry in roster.get(section) or []:
            display_name = " ".join(str(entry.get("display_name") or "").split())

            # Seeding is not a sighting: classify without counting
            result = resolver.resolve(display_name, kind, dry_run=True)

            if result.is_no_match:
                if not result.candidate or not result.candidate.normalized_text:
                    logger.warning(f"Skipping roster entry with unusable name: {entry!r}")
                    continue
                entity_id = resolver.create_from_candidate(result, entry.get("attributes"))
                stats["created"] += 1
            elif result.is_match and result.method == "alias":
                entity_id = result.entity_id
                stats["existing"] += 1
            else:
                names = [
                    s.display_name for s in result.scored
                    if s.entity_id == result.entity_id or s.entity_id in result.candidate_ids
                ]
                logger.warning(
                    f"[REVIEW] Roster entry '{display_name}' not seeded, too close to: "
                    f"{', '.join(names)}"
                )
                stats["conflicts"] += 1
                continue

            for alias in entry.get("aliases") or []:
                normalized = normalizer.normalize(str(alias), kind)
                if not normalized:
                    continue
                try:
                    if store.alias_index.register(entity_id, normalized, kind):
                        stats["aliases"] += 1
                except AliasConflict as e:
                    logger.warning(f"Roster alias skipped for {display_name}: {e}")
                    stats["conflicts"] += 1

    logger.info(f"Roster seeded: {stats}")
    return stats
