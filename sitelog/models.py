"""
SiteLog - Database Models

SQLAlchemy ORM models for canonical personnel/vendor entities, their aliases,
and the work/delivery history attached to them.
"""

import uuid
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Optional, Union

from sqlalchemy import (
    Date,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    func,
)
from sqlalchemy.dialects.sqlite import JSON
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    pass


# Enums
class EntityKind(PyEnum):
    PERSON = "person"
    VENDOR = "vendor"


class MergeReason(PyEnum):
    """Reason for entity merge."""
    CREATION_RACE = "creation_race"
    NAME_SIMILARITY = "name_similarity"
    MANUAL = "manual"


def generate_uuid() -> str:
    return str(uuid.uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_timestamp(value: Union[datetime, date, str, None]) -> datetime:
    """
    Coerce a mention time to the naive-UTC datetimes stored in the database.

    Accepts datetimes (aware or naive), dates, ISO strings, or None (now).
    """
    if value is None:
        return utcnow()
    if isinstance(value, str):
        value = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            value = value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    return datetime(value.year, value.month, value.day)


class CanonicalEntity(Base):
    """
    The single authoritative record a set of name variants collapses to.

    Entities are never deleted by resolution; duplicates found after the fact
    are soft-merged through merged_into_id.
    """

    __tablename__ = "entities"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    kind: Mapped[EntityKind] = mapped_column(
        Enum(EntityKind), nullable=False, index=True
    )
    display_name: Mapped[str] = mapped_column(Text, nullable=False)

    # Kind-specific metadata (position/status for people, vendor type for vendors)
    attributes: Mapped[Optional[dict]] = mapped_column(JSON, default=dict)

    # Activity window
    first_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    last_seen: Mapped[datetime] = mapped_column(DateTime, nullable=False, index=True)
    occurrence_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # Soft delete for merged entities
    merged_into_id: Mapped[Optional[str]] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=True, index=True
    )

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), onupdate=func.now(), nullable=False
    )

    # Relationships
    aliases: Mapped[list["EntityAlias"]] = relationship(
        back_populates="entity", order_by="EntityAlias.alias"
    )
    work_records: Mapped[list["WorkRecord"]] = relationship(back_populates="entity")
    delivery_records: Mapped[list["DeliveryRecord"]] = relationship(
        back_populates="entity"
    )

    __table_args__ = (
        Index("ix_entities_kind_merged", "kind", "merged_into_id"),
    )

    @property
    def is_merged(self) -> bool:
        """Check if this entity has been merged into another."""
        return self.merged_into_id is not None

    @property
    def alias_names(self) -> list[str]:
        return [a.alias for a in self.aliases]

    def __repr__(self) -> str:
        return f"<CanonicalEntity(id={self.id}, name={self.display_name}, kind={self.kind.value})>"


class EntityAlias(Base):
    """
    A normalized name variant known to refer to an entity.

    (kind, alias) is unique: one spelling can only ever point at one entity of a kind.
    """

    __tablename__ = "entity_aliases"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    entity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=False, index=True
    )
    kind: Mapped[EntityKind] = mapped_column(Enum(EntityKind), nullable=False)
    alias: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    entity: Mapped["CanonicalEntity"] = relationship(back_populates="aliases")

    __table_args__ = (
        UniqueConstraint("kind", "alias", name="uq_entity_aliases_kind_alias"),
    )

    def __repr__(self) -> str:
        return f"<EntityAlias({self.alias} -> {self.entity_id})>"


class WorkRecord(Base):
    """
    One person's appearance in one daily report.
    """

    __tablename__ = "work_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    entity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=False, index=True
    )

    report_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    report_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    project_name: Mapped[Optional[str]] = mapped_column(Text)
    position: Mapped[Optional[str]] = mapped_column(String(100))
    team_assignment: Mapped[Optional[str]] = mapped_column(String(100))
    hours_worked: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    overtime_hours: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2))
    health_status: Mapped[Optional[str]] = mapped_column(String(50))
    activities: Mapped[Optional[str]] = mapped_column(Text)
    extracted_from_text: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    entity: Mapped["CanonicalEntity"] = relationship(back_populates="work_records")

    __table_args__ = (
        Index("ix_work_entity_date", "entity_id", "report_date"),
    )

    def __repr__(self) -> str:
        return f"<WorkRecord(entity={self.entity_id}, report={self.report_id}, hours={self.hours_worked})>"


class DeliveryRecord(Base):
    """
    One vendor delivery mentioned in one daily report.
    """

    __tablename__ = "delivery_records"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    entity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=False, index=True
    )

    report_id: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    report_date: Mapped[Optional[date]] = mapped_column(Date, index=True)
    project_id: Mapped[Optional[str]] = mapped_column(String(100), index=True)
    project_name: Mapped[Optional[str]] = mapped_column(Text)
    materials_delivered: Mapped[Optional[str]] = mapped_column(Text)
    delivery_time: Mapped[Optional[str]] = mapped_column(String(50))
    received_by: Mapped[Optional[str]] = mapped_column(Text)
    notes: Mapped[Optional[str]] = mapped_column(Text)
    extracted_from_text: Mapped[Optional[str]] = mapped_column(Text)

    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    entity: Mapped["CanonicalEntity"] = relationship(back_populates="delivery_records")

    __table_args__ = (
        Index("ix_delivery_entity_date", "entity_id", "report_date"),
    )

    def __repr__(self) -> str:
        return f"<DeliveryRecord(entity={self.entity_id}, report={self.report_id})>"


class EntityMerge(Base):
    """
    Audit trail for entity merges.
    Tracks all merge decisions for transparency and potential rollback.
    """

    __tablename__ = "entity_merges"

    id: Mapped[str] = mapped_column(
        String(36), primary_key=True, default=generate_uuid
    )
    source_entity_id: Mapped[str] = mapped_column(
        String(36), nullable=False, index=True
    )
    target_entity_id: Mapped[str] = mapped_column(
        String(36), ForeignKey("entities.id"), nullable=False, index=True
    )
    merge_reason: Mapped[MergeReason] = mapped_column(
        Enum(MergeReason), nullable=False
    )
    confidence_score: Mapped[Decimal] = mapped_column(Numeric(3, 2), nullable=False)
    source_name: Mapped[str] = mapped_column(Text, nullable=False)
    target_name: Mapped[str] = mapped_column(Text, nullable=False)
    details: Mapped[Optional[dict]] = mapped_column(JSON)
    created_at: Mapped[datetime] = mapped_column(
        DateTime, default=func.now(), nullable=False
    )

    target_entity: Mapped["CanonicalEntity"] = relationship("CanonicalEntity")

    def __repr__(self) -> str:
        return f"<EntityMerge(source={self.source_name} -> target={self.target_name}, reason={self.merge_reason.value})>"
