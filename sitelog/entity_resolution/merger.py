"""
Duplicate reconciliation.

Resolution only ever creates or matches; near-duplicates that slip through
(two transcripts creating "Bob Smith" and "Bobby Smith" at the same time, or a
spelling the scorer could not connect) are found here, reviewed, and
soft-merged. Nothing is deleted: the duplicate keeps its row with
merged_into_id pointing at the survivor.
"""

import csv
from dataclasses import dataclass, field
from decimal import Decimal
from pathlib import Path
from typing import Any, Optional

from sqlalchemy import or_, select, update
from sqlalchemy.orm import Session, selectinload

from config.logging import logger
from config.settings import settings
from sitelog.entity_resolution.alias_index import AliasIndex
from sitelog.entity_resolution.exceptions import MergeError
from sitelog.entity_resolution.normalizer import Normalizer
from sitelog.entity_resolution.scorer import SimilarityScorer
from sitelog.models import (
    CanonicalEntity,
    DeliveryRecord,
    EntityKind,
    EntityMerge,
    MergeReason,
    WorkRecord,
)


@dataclass
class PotentialDuplicate:
    """Two active entities of one kind whose names score above the threshold."""
    entity_a: CanonicalEntity
    entity_b: CanonicalEntity
    score: float


@dataclass
class MergePreview:
    """What merge() would do, without doing it."""
    primary_id: str
    duplicate_id: str
    primary_name: str
    duplicate_name: str
    aliases_to_move: list[str] = field(default_factory=list)
    work_records_to_move: int = 0
    delivery_records_to_move: int = 0
    combined_occurrences: int = 0
    attributes_to_fill: dict[str, Any] = field(default_factory=dict)
    # key -> (primary value kept, duplicate value dropped)
    attribute_conflicts: dict[str, tuple[Any, Any]] = field(default_factory=dict)

    @property
    def history_records_to_move(self) -> int:
        return self.work_records_to_move + self.delivery_records_to_move


class EntityMerger:
    """
    Finds and merges duplicate entities.

    Usage:
        merger = EntityMerger(db)
        for dup in merger.find_potential_duplicates(EntityKind.PERSON):
            print(dup.entity_a.display_name, dup.entity_b.display_name, dup.score)
        merger.merge(primary_id, duplicate_id)
    """

    def __init__(
        self,
        db: Session,
        normalizer: Optional[Normalizer] = None,
        scorer: Optional[SimilarityScorer] = None,
    ):
        self.db = db
        self.alias_index = AliasIndex(db)
        self.normalizer = normalizer or Normalizer(settings.load_abbreviations())
        self.scorer = scorer or SimilarityScorer()

    def find_potential_duplicates(
        self,
        kind: Optional[EntityKind] = None,
        threshold: float = 0.85,
        limit: int = 100,
    ) -> list[PotentialDuplicate]:
        """
        Pairwise scan of active entities of a kind (both kinds when None).

        Each pair is scored as the best match between any name of one entity
        (display name or alias) and any name of the other.

        Returns:
            Up to `limit` pairs, highest score first
        """
        kinds = [kind] if kind else list(EntityKind)
        duplicates = []

        for current_kind in kinds:
            entities = list(
                self.db.execute(
                    select(CanonicalEntity)
                    .where(
                        CanonicalEntity.kind == current_kind,
                        CanonicalEntity.merged_into_id.is_(None),
                    )
                    .options(selectinload(CanonicalEntity.aliases))
                    .order_by(CanonicalEntity.id)
                ).scalars()
            )
            names = {e.id: self._names(e) for e in entities}

            for i, e1 in enumerate(entities):
                for e2 in entities[i + 1:]:
                    score = max(
                        (self.scorer.best_score(name, names[e2.id]) for name in names[e1.id]),
                        default=0.0,
                    )
                    if score >= threshold:
                        duplicates.append(PotentialDuplicate(e1, e2, score))

        duplicates.sort(key=lambda d: (-d.score, d.entity_a.id, d.entity_b.id))
        logger.info(f"Found {len(duplicates)} potential duplicate pairs (threshold {threshold})")
        return duplicates[:limit]

    def preview(self, primary_id: str, duplicate_id: str) -> MergePreview:
        primary, duplicate = self._load_pair(primary_id, duplicate_id)

        fill, conflicts = self._diff_attributes(primary, duplicate)
        return MergePreview(
            primary_id=primary.id,
            duplicate_id=duplicate.id,
            primary_name=primary.display_name,
            duplicate_name=duplicate.display_name,
            aliases_to_move=self.alias_index.aliases_for(duplicate.id),
            work_records_to_move=self._count(WorkRecord, duplicate.id),
            delivery_records_to_move=self._count(DeliveryRecord, duplicate.id),
            combined_occurrences=primary.occurrence_count + duplicate.occurrence_count,
            attributes_to_fill=fill,
            attribute_conflicts=conflicts,
        )

    def merge(
        self,
        primary_id: str,
        duplicate_id: str,
        reason: MergeReason = MergeReason.MANUAL,
        confidence: float = 1.0,
        details: Optional[dict] = None,
    ) -> CanonicalEntity:
        """
        Merge the duplicate entity into the primary.

        - Moves all aliases and work/delivery history to the primary
        - Sums occurrence counts and widens the first/last seen window
        - Fills attributes the primary lacks; the primary wins conflicts
        - Soft deletes the duplicate (sets merged_into_id)
        - Creates an audit record

        Raises:
            MergeError: unknown ids, self-merge, cross-kind merge, or an
                entity that was already merged
        """
        primary, duplicate = self._load_pair(primary_id, duplicate_id)

        logger.info(
            f"Merging '{duplicate.display_name}' into '{primary.display_name}' "
            f"(confidence: {confidence:.2f}, reason: {reason.value})"
        )

        try:
            fill, conflicts = self._diff_attributes(primary, duplicate)
            moved_aliases = self.alias_index.repoint(duplicate.id, primary.id)
            moved_work = self._repoint_records(WorkRecord, duplicate.id, primary.id)
            moved_deliveries = self._repoint_records(DeliveryRecord, duplicate.id, primary.id)

            # Earlier merges into the duplicate now point at the survivor
            self.db.execute(
                update(CanonicalEntity)
                .where(CanonicalEntity.merged_into_id == duplicate.id)
                .values(merged_into_id=primary.id)
            )

            if fill:
                attributes = dict(primary.attributes or {})
                attributes.update(fill)
                primary.attributes = attributes

            primary.occurrence_count += duplicate.occurrence_count
            primary.first_seen = min(primary.first_seen, duplicate.first_seen)
            primary.last_seen = max(primary.last_seen, duplicate.last_seen)

            duplicate.merged_into_id = primary.id

            audit_details = dict(details or {})
            audit_details.update({
                "aliases_moved": moved_aliases,
                "work_records_moved": moved_work,
                "delivery_records_moved": moved_deliveries,
                "attributes_filled": sorted(fill),
                "attribute_conflicts": {
                    k: {"kept": kept, "dropped": dropped}
                    for k, (kept, dropped) in conflicts.items()
                },
            })
            self.db.add(EntityMerge(
                source_entity_id=duplicate.id,
                target_entity_id=primary.id,
                merge_reason=reason,
                confidence_score=Decimal(str(round(confidence, 2))),
                source_name=duplicate.display_name,
                target_name=primary.display_name,
                details=audit_details,
            ))

            self.db.commit()

        except Exception as e:
            logger.error(f"Merge failed, rolling back: {e}")
            self.db.rollback()
            raise

        logger.info(
            f"Merge complete. {primary.display_name} now has "
            f"{primary.occurrence_count} occurrences, {moved_aliases} aliases moved"
        )
        return primary

    def choose_primary(
        self, e1: CanonicalEntity, e2: CanonicalEntity
    ) -> tuple[CanonicalEntity, CanonicalEntity]:
        """
        Decide which of two entities survives a merge.

        Prefers the entity seen more often, then the one seen first.

        Returns:
            (primary, duplicate)
        """
        def rank(e: CanonicalEntity):
            return (-e.occurrence_count, e.first_seen, e.id)

        if rank(e1) <= rank(e2):
            return e1, e2
        return e2, e1

    def export_review_queue(
        self,
        pairs: list[PotentialDuplicate],
        path: Optional[Path] = None,
    ) -> Path:
        """
        Export potential duplicates to CSV for manual review.

        Reviewers fill the decision column with "merge" or "keep_separate".

        Returns:
            Path to the created CSV file
        """
        if path is None:
            path = settings.project_root / "data" / "review_queue.csv"

        path = Path(path)
        path.parent.mkdir(parents=True, exist_ok=True)

        def entity_summary(e: CanonicalEntity) -> str:
            parts = [f"Seen:{e.occurrence_count}"]
            parts.append(f"Aliases:{'/'.join(e.alias_names)}")
            for key, value in sorted((e.attributes or {}).items()):
                parts.append(f"{key}:{value}")
            return " | ".join(parts)

        with open(path, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow([
                "kind",
                "entity_a_id", "entity_a_name", "entity_a_data",
                "entity_b_id", "entity_b_name", "entity_b_data",
                "similarity_score", "suggested_action", "decision",
            ])

            for pair in pairs:
                suggested = "merge" if pair.score >= settings.REVIEW_CONFIDENCE else "keep_separate"
                writer.writerow([
                    pair.entity_a.kind.value,
                    pair.entity_a.id,
                    pair.entity_a.display_name,
                    entity_summary(pair.entity_a),
                    pair.entity_b.id,
                    pair.entity_b.display_name,
                    entity_summary(pair.entity_b),
                    f"{pair.score:.2f}",
                    suggested,
                    "",  # Decision column for manual input
                ])

        logger.info(f"Exported {len(pairs)} items to {path}")
        return path

    def apply_manual_decisions(self, csv_path: Path) -> dict:
        """
        Apply manual merge decisions from a reviewed CSV.

        Returns:
            Dict with counts of actions taken
        """
        results = {"merged": 0, "kept_separate": 0, "skipped": 0}

        with open(csv_path, "r", newline="", encoding="utf-8") as f:
            reader = csv.DictReader(f)

            for row in reader:
                decision = (row.get("decision") or "").strip().lower()

                if not decision:
                    results["skipped"] += 1
                    continue

                entity_a = self.db.get(CanonicalEntity, row["entity_a_id"])
                entity_b = self.db.get(CanonicalEntity, row["entity_b_id"])

                if not entity_a or not entity_b:
                    logger.warning(f"Entity not found: {row['entity_a_id']} or {row['entity_b_id']}")
                    results["skipped"] += 1
                    continue

                if entity_a.is_merged or entity_b.is_merged:
                    logger.warning(f"Entity already merged: {entity_a.id} or {entity_b.id}")
                    results["skipped"] += 1
                    continue

                if decision == "merge":
                    primary, duplicate = self.choose_primary(entity_a, entity_b)
                    try:
                        self.merge(
                            primary.id,
                            duplicate.id,
                            reason=MergeReason.MANUAL,
                            confidence=float(row.get("similarity_score") or 0),
                            details={"csv_row": row},
                        )
                    except MergeError as e:
                        logger.warning(f"Merge refused for row {reader.line_num}: {e}")
                        results["skipped"] += 1
                        continue
                    results["merged"] += 1
                    logger.info(f"[MANUAL MERGE] {entity_a.display_name} <-> {entity_b.display_name}")

                elif decision == "keep_separate":
                    results["kept_separate"] += 1
                    logger.info(f"[KEEP SEPARATE] {entity_a.display_name} <-> {entity_b.display_name}")

                else:
                    results["skipped"] += 1

        logger.info(f"Manual decisions applied: {results}")
        return results

    def get_merge_history(self, entity_id: str) -> list[EntityMerge]:
        """Get merge history for an entity."""
        return list(
            self.db.execute(
                select(EntityMerge)
                .where(
                    or_(
                        EntityMerge.source_entity_id == entity_id,
                        EntityMerge.target_entity_id == entity_id,
                    )
                )
                .order_by(EntityMerge.created_at.desc())
            ).scalars()
        )

    def _load_pair(
        self, primary_id: str, duplicate_id: str
    ) -> tuple[CanonicalEntity, CanonicalEntity]:
        if primary_id == duplicate_id:
            raise MergeError(f"Cannot merge entity {primary_id} into itself")

        primary = self.db.get(CanonicalEntity, primary_id)
        duplicate = self.db.get(CanonicalEntity, duplicate_id)
        if primary is None or duplicate is None:
            raise MergeError(f"Entity not found: {primary_id if primary is None else duplicate_id}")
        if primary.kind != duplicate.kind:
            raise MergeError(
                f"Cannot merge {duplicate.kind.value} '{duplicate.display_name}' into "
                f"{primary.kind.value} '{primary.display_name}'"
            )
        for entity in (primary, duplicate):
            if entity.is_merged:
                raise MergeError(
                    f"Entity '{entity.display_name}' was already merged into {entity.merged_into_id}"
                )
        return primary, duplicate

    def _names(self, entity: CanonicalEntity) -> list[str]:
        names = [self.normalizer.normalize(entity.display_name, entity.kind)]
        names.extend(a for a in entity.alias_names if a not in names)
        return [n for n in names if n]

    @staticmethod
    def _diff_attributes(
        primary: CanonicalEntity, duplicate: CanonicalEntity
    ) -> tuple[dict[str, Any], dict[str, tuple[Any, Any]]]:
        ours = primary.attributes or {}
        fill = {}
        conflicts = {}
        for key, value in (duplicate.attributes or {}).items():
            if value is None:
                continue
            if ours.get(key) is None:
                fill[key] = value
            elif ours[key] != value:
                conflicts[key] = (ours[key], value)
        return fill, conflicts

    def _count(self, record_model, entity_id: str) -> int:
        return len(
            self.db.execute(
                select(record_model.id).where(record_model.entity_id == entity_id)
            ).all()
        )

    def _repoint_records(self, record_model, from_id: str, to_id: str) -> int:
        result = self.db.execute(
            update(record_model)
            .where(record_model.entity_id == from_id)
            .values(entity_id=to_id)
        )
        return result.rowcount
