"""
Alias index: normalized alias -> canonical entity id, per entity kind.
"""

from typing import Optional

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from config.logging import logger
from sitelog.entity_resolution.exceptions import AliasConflict
from sitelog.models import EntityAlias, EntityKind


class AliasIndex:
    """
    Exact-match lookup over known aliases.

    Backed by the unique (kind, alias) index on entity_aliases, so finding an
    alias is a single index lookup and two writers can never bind one
    spelling to two entities. Aliases must already be normalized.
    """

    def __init__(self, db: Session):
        self.db = db

    def lookup_exact(self, alias: str, kind: EntityKind) -> Optional[str]:
        """Return the entity id an alias points to, if any."""
        if not alias:
            return None
        return self.db.execute(
            select(EntityAlias.entity_id).where(
                EntityAlias.kind == kind,
                EntityAlias.alias == alias,
            )
        ).scalar_one_or_none()

    def register(
        self,
        entity_id: str,
        alias: str,
        kind: EntityKind,
        commit: bool = True,
    ) -> bool:
        """
        Bind an alias to an entity.

        Idempotent for the same (entity_id, alias) pair. An alias already bound to
        a different entity raises AliasConflict and is left untouched.

        Returns:
            True if a new alias row was written, False if it already existed
        """
        if not alias:
            raise ValueError("Cannot register an empty alias")

        existing = self.lookup_exact(alias, kind)
        if existing == entity_id:
            return False
        if existing is not None:
            raise AliasConflict(alias, existing, entity_id)

        self.db.add(EntityAlias(entity_id=entity_id, kind=kind, alias=alias))
        try:
            if commit:
                self.db.commit()
            else:
                self.db.flush()
        except IntegrityError:
            # Lost a race with another writer; classify against what they wrote
            self.db.rollback()
            existing = self.lookup_exact(alias, kind)
            if existing is None:
                raise
            if existing == entity_id:
                return False
            raise AliasConflict(alias, existing, entity_id)

        logger.debug(f"Registered alias '{alias}' -> {entity_id} ({kind.value})")
        return True

    def aliases_for(self, entity_id: str) -> list[str]:
        """All aliases bound to an entity, sorted."""
        return list(
            self.db.execute(
                select(EntityAlias.alias)
                .where(EntityAlias.entity_id == entity_id)
                .order_by(EntityAlias.alias)
            ).scalars()
        )

    def repoint(self, from_entity_id: str, to_entity_id: str) -> int:
        """Move every alias of one entity to another. Caller commits."""
        result = self.db.execute(
            update(EntityAlias)
            .where(EntityAlias.entity_id == from_entity_id)
            .values(entity_id=to_entity_id)
        )
        return result.rowcount
