"""
Work and delivery history attached to resolved entities.

Records are keyed by entity id only, so a merge can move them wholesale.
"""

from datetime import date
from decimal import Decimal, InvalidOperation
from typing import TYPE_CHECKING, Optional

from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from config.logging import logger
from sitelog.models import DeliveryRecord, WorkRecord

if TYPE_CHECKING:
    from sitelog.mentions import ExtractedReport, PersonMention, VendorMention


def to_hours(value) -> Optional[Decimal]:
    """Parse an hours figure from extraction output; unusable values become None."""
    if value is None or value == "":
        return None
    try:
        hours = Decimal(str(value)).quantize(Decimal("0.01"))
    except (InvalidOperation, ValueError):
        logger.warning(f"Ignoring unparseable hours value: {value!r}")
        return None
    if hours < 0:
        logger.warning(f"Ignoring negative hours value: {value!r}")
        return None
    return hours


class HistoryRecorder:
    """
    Writes one history row per (entity, report).

    Reprocessing a report updates its rows instead of duplicating them.
    """

    def __init__(self, db: Session):
        self.db = db

    def record_work(
        self,
        entity_id: str,
        report: "ExtractedReport",
        person: "PersonMention",
    ) -> WorkRecord:
        record = self._existing(WorkRecord, entity_id, report.report_id)
        if record is None:
            record = WorkRecord(entity_id=entity_id, report_id=report.report_id)
            self.db.add(record)

        record.report_date = report.report_date
        record.project_id = report.project_id
        record.project_name = report.project_name
        record.position = person.position or record.position
        record.team_assignment = person.team_assignment or record.team_assignment
        hours = to_hours(person.hours_worked)
        if hours is not None:
            record.hours_worked = hours
        overtime = to_hours(person.overtime_hours)
        if overtime is not None:
            record.overtime_hours = overtime
        record.health_status = person.health_status or record.health_status
        record.activities = person.activities or record.activities
        record.extracted_from_text = person.extracted_from_text or record.extracted_from_text

        self._commit(f"work record for {entity_id} on {report.report_id}")
        return record

    def record_delivery(
        self,
        entity_id: str,
        report: "ExtractedReport",
        vendor: "VendorMention",
    ) -> DeliveryRecord:
        record = self._existing(DeliveryRecord, entity_id, report.report_id)
        if record is None:
            record = DeliveryRecord(entity_id=entity_id, report_id=report.report_id)
            self.db.add(record)

        record.report_date = report.report_date
        record.project_id = report.project_id
        record.project_name = report.project_name
        record.materials_delivered = vendor.materials_delivered or record.materials_delivered
        record.delivery_time = vendor.delivery_time or record.delivery_time
        record.received_by = vendor.received_by or record.received_by
        record.notes = vendor.notes or record.notes
        record.extracted_from_text = vendor.extracted_from_text or record.extracted_from_text

        self._commit(f"delivery record for {entity_id} on {report.report_id}")
        return record

    def work_history(
        self,
        entity_id: str,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[WorkRecord]:
        """Work records for a person, newest report first."""
        query = select(WorkRecord).where(WorkRecord.entity_id == entity_id)
        if start:
            query = query.where(WorkRecord.report_date >= start)
        if end:
            query = query.where(WorkRecord.report_date <= end)
        return list(
            self.db.execute(
                query.order_by(WorkRecord.report_date.desc(), WorkRecord.report_id)
            ).scalars()
        )

    def delivery_history(self, entity_id: str) -> list[DeliveryRecord]:
        return list(
            self.db.execute(
                select(DeliveryRecord)
                .where(DeliveryRecord.entity_id == entity_id)
                .order_by(DeliveryRecord.report_date.desc(), DeliveryRecord.report_id)
            ).scalars()
        )

    def total_hours(self, entity_id: str, include_overtime: bool = False) -> Decimal:
        columns = [func.coalesce(func.sum(WorkRecord.hours_worked), 0)]
        if include_overtime:
            columns.append(func.coalesce(func.sum(WorkRecord.overtime_hours), 0))
        row = self.db.execute(
            select(*columns).where(WorkRecord.entity_id == entity_id)
        ).one()
        return sum((Decimal(str(v)) for v in row), Decimal("0"))

    def _existing(self, record_model, entity_id: str, report_id: str):
        return self.db.execute(
            select(record_model).where(
                record_model.entity_id == entity_id,
                record_model.report_id == report_id,
            )
        ).scalar_one_or_none()

    def _commit(self, what: str) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError as e:
            logger.error(f"Failed to save {what}, rolling back: {e}")
            self.db.rollback()
            raise
