"""
Errors raised by the entity resolution core.
"""

from typing import Optional


class EntityResolutionError(Exception):
    """Base class for entity resolution errors."""


class ConfigurationError(EntityResolutionError, ValueError):
    """Thresholds or tables that would produce nonsense decisions."""


class AliasConflict(EntityResolutionError):
    """An alias is already registered to a different entity of the same kind."""

    def __init__(self, alias: str, existing_entity_id: str, requested_entity_id: str):
        self.alias = alias
        self.existing_entity_id = existing_entity_id
        self.requested_entity_id = requested_entity_id
        super().__init__(
            f"Alias '{alias}' already belongs to {existing_entity_id}, "
            f"cannot register it for {requested_entity_id}"
        )


class StoreInconsistency(EntityResolutionError):
    """
    The alias index references an entity the store does not hold.

    Indicates corruption outside the resolver; never patched silently.
    """

    def __init__(self, message: str, alias: Optional[str] = None, entity_id: Optional[str] = None):
        self.alias = alias
        self.entity_id = entity_id
        super().__init__(message)


class DuplicateEntityRace(EntityResolutionError):
    """Another writer registered the new entity's first alias first."""

    def __init__(self, alias: str):
        self.alias = alias
        super().__init__(f"Entity with alias '{alias}' was created concurrently")


class MergeError(EntityResolutionError):
    """A merge request that cannot be applied."""
