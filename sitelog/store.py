"""
Entity store: persistence boundary for canonical entities and their aliases.

The resolver only talks to the narrow EntityStore interface; SqlEntityStore is
the SQLAlchemy implementation used by the scripts and the report pipeline.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Optional, Union

from sqlalchemy import func, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, scoped_session, selectinload

from config.logging import logger
from sitelog.entity_resolution.alias_index import AliasIndex
from sitelog.entity_resolution.exceptions import AliasConflict, DuplicateEntityRace, MergeError
from sitelog.entity_resolution.merger import EntityMerger
from sitelog.models import (
    CanonicalEntity,
    DeliveryRecord,
    EntityKind,
    MergeReason,
    WorkRecord,
    to_timestamp,
)


class EntityStore(ABC):
    """Read/write API the resolver needs from whatever holds the entities."""

    @property
    @abstractmethod
    def alias_index(self) -> AliasIndex:
        ...

    @abstractmethod
    def list_entities(self, kind: EntityKind) -> list[CanonicalEntity]:
        """Active (unmerged) entities of a kind, in a stable order."""

    @abstractmethod
    def get_entity(self, entity_id: str) -> Optional[CanonicalEntity]:
        ...

    @abstractmethod
    def create_entity(
        self,
        display_name: str,
        kind: EntityKind,
        alias: str,
        attributes: Optional[dict] = None,
        seen_at: Optional[datetime] = None,
    ) -> str:
        """Create an entity with its first alias; returns the new id."""

    @abstractmethod
    def touch_entity(self, entity_id: str, seen_at: datetime) -> None:
        ...

    @abstractmethod
    def increment_occurrence(self, entity_id: str) -> None:
        ...

    @abstractmethod
    def record_resolution(
        self,
        entity_id: str,
        kind: EntityKind,
        seen_at: datetime,
        alias: Optional[str] = None,
    ) -> bool:
        """
        Apply an accepted resolution in one transaction: register the alias (if
        given), increment the occurrence count, and widen the seen window.

        Returns True if a new alias was registered.
        """

    @abstractmethod
    def update_attributes(self, entity_id: str, updates: dict) -> None:
        ...

    @abstractmethod
    def entities_seen_on_project(self, entity_ids: list[str], project_id: str) -> set[str]:
        """Which of the given entities already have history on a project."""

    @abstractmethod
    def merge_entities(
        self,
        entity_id: str,
        other_id: str,
        reason: MergeReason,
        confidence: float,
        details: Optional[dict] = None,
    ) -> str:
        """
        Soft-merge two entities of one kind; returns the surviving id.

        Raises:
            MergeError: either entity is unknown or already merged
        """


class SqlEntityStore(EntityStore):
    """
    SQLAlchemy-backed entity store.

    Pass a Session for single-threaded use, or a scoped_session so every thread
    works in its own session and transaction.
    """

    def __init__(self, db: Union[Session, scoped_session]):
        self.db = db
        self._alias_index = AliasIndex(db)

    @property
    def alias_index(self) -> AliasIndex:
        return self._alias_index

    def list_entities(self, kind: EntityKind) -> list[CanonicalEntity]:
        return list(
            self.db.execute(
                select(CanonicalEntity)
                .where(
                    CanonicalEntity.kind == kind,
                    CanonicalEntity.merged_into_id.is_(None),
                )
                .options(selectinload(CanonicalEntity.aliases))
                .order_by(CanonicalEntity.id)
            ).scalars()
        )

    def get_entity(self, entity_id: str) -> Optional[CanonicalEntity]:
        return self.db.get(CanonicalEntity, entity_id)

    def count_entities(self, kind: Optional[EntityKind] = None) -> int:
        query = select(func.count(CanonicalEntity.id)).where(
            CanonicalEntity.merged_into_id.is_(None)
        )
        if kind:
            query = query.where(CanonicalEntity.kind == kind)
        return self.db.execute(query).scalar_one()

    def create_entity(
        self,
        display_name: str,
        kind: EntityKind,
        alias: str,
        attributes: Optional[dict] = None,
        seen_at: Optional[datetime] = None,
    ) -> str:
        """
        Insert the entity and its first alias atomically.

        Raises:
            DuplicateEntityRace: the alias was taken, typically by a concurrent
                writer resolving the same name from another transcript
        """
        if not display_name or not alias:
            raise ValueError("Entities need a display name and a first alias")

        seen = to_timestamp(seen_at)
        entity = CanonicalEntity(
            kind=kind,
            display_name=display_name,
            attributes=dict(attributes or {}),
            first_seen=seen,
            last_seen=seen,
            occurrence_count=1,
        )
        self.db.add(entity)
        try:
            self.db.flush()
            self.alias_index.register(entity.id, alias, kind, commit=False)
            self.db.commit()
        except AliasConflict:
            self.db.rollback()
            logger.warning(f"Creation race on alias '{alias}' ({kind.value})")
            raise DuplicateEntityRace(alias)
        except SQLAlchemyError as e:
            logger.error(f"Failed to create entity '{display_name}', rolling back: {e}")
            self.db.rollback()
            raise

        logger.info(f"Created new {kind.value}: {display_name} ({entity.id})")
        return entity.id

    def touch_entity(self, entity_id: str, seen_at: datetime, commit: bool = True) -> None:
        entity = self._require(entity_id)
        seen = to_timestamp(seen_at)
        if seen > entity.last_seen:
            entity.last_seen = seen
        if seen < entity.first_seen:
            entity.first_seen = seen
        if commit:
            self._commit()

    def increment_occurrence(self, entity_id: str, commit: bool = True) -> None:
        # Increment in SQL so concurrent writers never lose a count
        self.db.execute(
            update(CanonicalEntity)
            .where(CanonicalEntity.id == entity_id)
            .values(occurrence_count=CanonicalEntity.occurrence_count + 1)
        )
        if commit:
            self._commit()

    def record_resolution(
        self,
        entity_id: str,
        kind: EntityKind,
        seen_at: datetime,
        alias: Optional[str] = None,
    ) -> bool:
        registered = False
        if alias:
            # AliasConflict leaves the session clean and propagates
            registered = self.alias_index.register(entity_id, alias, kind, commit=False)
        try:
            self.increment_occurrence(entity_id, commit=False)
            self.touch_entity(entity_id, seen_at, commit=False)
        except SQLAlchemyError:
            self.db.rollback()
            raise
        self._commit()
        return registered

    def update_attributes(self, entity_id: str, updates: dict) -> None:
        entity = self._require(entity_id)
        merged = dict(entity.attributes or {})
        merged.update({k: v for k, v in updates.items() if v is not None})
        if merged != (entity.attributes or {}):
            entity.attributes = merged
            self._commit()

    def entities_seen_on_project(self, entity_ids: list[str], project_id: str) -> set[str]:
        if not entity_ids or not project_id:
            return set()
        seen = set()
        for record_model in (WorkRecord, DeliveryRecord):
            seen.update(
                self.db.execute(
                    select(record_model.entity_id).where(
                        record_model.entity_id.in_(entity_ids),
                        record_model.project_id == project_id,
                    ).distinct()
                ).scalars()
            )
        return seen

    def merge_entities(
        self,
        entity_id: str,
        other_id: str,
        reason: MergeReason,
        confidence: float,
        details: Optional[dict] = None,
    ) -> str:
        # Another writer may have merged either side since our last read
        self.db.expire_all()
        merger = EntityMerger(self.db)
        entity, other = self.get_entity(entity_id), self.get_entity(other_id)
        if entity is None or other is None:
            raise MergeError(f"Entity not found: {entity_id if entity is None else other_id}")
        primary, duplicate = merger.choose_primary(entity, other)
        return merger.merge(
            primary.id, duplicate.id, reason=reason, confidence=confidence, details=details
        ).id

    def _require(self, entity_id: str) -> CanonicalEntity:
        entity = self.get_entity(entity_id)
        if entity is None:
            raise KeyError(f"Entity not found: {entity_id}")
        return entity

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Store commit failed, rolling back: {e}")
            self.db.rollback()
            raise
