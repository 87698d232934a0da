"""
Report mention processing.

Takes the structured output of the transcript extraction step (reporter,
personnel and vendor names plus per-mention details), resolves every name to
a canonical entity, and writes the history rows.

Mentions are resolved one at a time in transcript order so that a name created
early in a report is matched, not created again, when it comes up later.
"""

from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Optional

from config.logging import logger
from config.settings import settings
from sitelog.entity_resolution.resolver import (
    EntityResolver,
    ResolutionContext,
    ResolutionResult,
)
from sitelog.history import HistoryRecorder
from sitelog.models import EntityKind


def _first(data: dict, *keys: str) -> Any:
    """Value of the first key present with a non-empty value."""
    for key in keys:
        value = data.get(key)
        if value not in (None, ""):
            return value
    return None


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, (list, tuple)):
        value = "; ".join(str(v) for v in value if v)
    value = str(value).strip()
    return value or None


@dataclass
class PersonMention:
    """A person named in a report, with what the extraction found about them."""
    name: str
    position: Optional[str] = None
    go_by_name: Optional[str] = None
    team_assignment: Optional[str] = None
    hours_worked: Any = None
    overtime_hours: Any = None
    health_status: Optional[str] = None
    activities: Optional[str] = None
    extracted_from_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "PersonMention":
        return cls(
            name=_text(_first(data, "name", "full_name")) or "",
            position=_text(_first(data, "position", "role")),
            go_by_name=_text(_first(data, "go_by_name", "nickname")),
            team_assignment=_text(_first(data, "team_assignment", "team")),
            hours_worked=_first(data, "hours_worked", "hours"),
            overtime_hours=_first(data, "overtime_hours", "overtime"),
            health_status=_text(data.get("health_status")),
            activities=_text(_first(data, "activities", "tasks")),
            extracted_from_text=_text(data.get("extracted_from_text")),
        )

    @property
    def attributes(self) -> dict:
        return {"position": self.position, "go_by_name": self.go_by_name}


@dataclass
class VendorMention:
    """A vendor/company named in a report, usually for a delivery."""
    name: str
    vendor_type: Optional[str] = None
    materials_delivered: Optional[str] = None
    delivery_time: Optional[str] = None
    received_by: Optional[str] = None
    notes: Optional[str] = None
    extracted_from_text: Optional[str] = None

    @classmethod
    def from_dict(cls, data: dict) -> "VendorMention":
        return cls(
            name=_text(_first(data, "name", "company")) or "",
            vendor_type=_text(_first(data, "vendor_type", "delivery_type")),
            materials_delivered=_text(_first(data, "materials_delivered", "materials")),
            delivery_time=_text(_first(data, "delivery_time", "time")),
            received_by=_text(data.get("received_by")),
            notes=_text(data.get("notes")),
            extracted_from_text=_text(data.get("extracted_from_text")),
        )

    @property
    def attributes(self) -> dict:
        return {"vendor_type": self.vendor_type}


@dataclass
class ExtractedReport:
    """Structured extraction output for one daily report."""
    report_id: str
    report_date: Optional[date] = None
    project_id: Optional[str] = None
    project_name: Optional[str] = None
    reporter_name: Optional[str] = None
    personnel: list[PersonMention] = field(default_factory=list)
    vendors: list[VendorMention] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: dict) -> "ExtractedReport":
        """
        Parse extraction JSON.

        Raises:
            ValueError: report_id missing or report_date not an ISO date
        """
        report_id = _text(data.get("report_id"))
        if not report_id:
            raise ValueError("Extracted report has no report_id")

        report_date = data.get("report_date")
        if isinstance(report_date, str) and report_date.strip():
            report_date = date.fromisoformat(report_date.strip()[:10])
        elif isinstance(report_date, datetime):
            report_date = report_date.date()
        elif not isinstance(report_date, date):
            report_date = None

        personnel = _first(data, "personnel", "additional_personnel") or []
        return cls(
            report_id=report_id,
            report_date=report_date,
            project_id=_text(data.get("project_id")),
            project_name=_text(data.get("project_name")),
            reporter_name=_text(data.get("reporter_name")),
            personnel=[PersonMention.from_dict(p) for p in personnel if isinstance(p, dict)],
            vendors=[VendorMention.from_dict(v) for v in data.get("vendors") or [] if isinstance(v, dict)],
        )

    @property
    def context(self) -> ResolutionContext:
        seen_at = None
        if self.report_date:
            seen_at = datetime(self.report_date.year, self.report_date.month, self.report_date.day)
        return ResolutionContext(
            project_id=self.project_id,
            report_id=self.report_id,
            seen_at=seen_at,
        )


@dataclass
class ProcessorConfig:
    # Matches scoring below this are flagged for review
    review_confidence: float = 0.90
    # Create entities for names that match nothing
    auto_create: bool = True

    @classmethod
    def from_settings(cls, app_settings=settings) -> "ProcessorConfig":
        return cls(
            review_confidence=app_settings.REVIEW_CONFIDENCE,
            auto_create=app_settings.AUTO_CREATE_ENTITIES,
        )


@dataclass
class MentionOutcome:
    """How one name in a report was resolved."""
    role: str  # reporter | personnel | vendor
    raw_text: str
    kind: EntityKind
    result: ResolutionResult
    entity_id: Optional[str] = None
    created: bool = False
    needs_review: bool = False
    review_reason: Optional[str] = None  # new_entity | ambiguous | unresolved | low_confidence


@dataclass
class ReportResolution:
    report_id: str
    mentions: list[MentionOutcome] = field(default_factory=list)

    @property
    def created(self) -> list[MentionOutcome]:
        return [m for m in self.mentions if m.created]

    @property
    def needs_review(self) -> list[MentionOutcome]:
        return [m for m in self.mentions if m.needs_review]

    @property
    def unresolved(self) -> list[MentionOutcome]:
        return [m for m in self.mentions if m.entity_id is None]

    def summary(self) -> dict:
        return {
            "mentions": len(self.mentions),
            "resolved": len(self.mentions) - len(self.unresolved),
            "created": len(self.created),
            "needs_review": len(self.needs_review),
        }


class ReportMentionProcessor:
    """
    Resolves every name in an extracted report and records history.

    Ambiguous and unresolved names never stop processing; they are returned
    flagged for a reviewer. StoreInconsistency propagates.
    """

    def __init__(
        self,
        resolver: EntityResolver,
        history: HistoryRecorder,
        config: Optional[ProcessorConfig] = None,
    ):
        self.resolver = resolver
        self.history = history
        self.config = config or ProcessorConfig.from_settings()

    def process_report(self, report: ExtractedReport) -> ReportResolution:
        logger.info(
            f"Processing report {report.report_id}: {len(report.personnel)} personnel, "
            f"{len(report.vendors)} vendors"
        )
        resolution = ReportResolution(report_id=report.report_id)
        context = report.context

        people = []
        if report.reporter_name:
            people.append(("reporter", PersonMention(name=report.reporter_name)))
        people.extend(("personnel", p) for p in report.personnel)

        for role, person in people:
            outcome = self._resolve(role, person.name, EntityKind.PERSON, context, person.attributes)
            if outcome is None:
                continue
            if outcome.entity_id:
                self.history.record_work(outcome.entity_id, report, person)
            resolution.mentions.append(outcome)

        for vendor in report.vendors:
            outcome = self._resolve("vendor", vendor.name, EntityKind.VENDOR, context, vendor.attributes)
            if outcome is None:
                continue
            if outcome.entity_id:
                self.history.record_delivery(outcome.entity_id, report, vendor)
            resolution.mentions.append(outcome)

        logger.info(f"Report {report.report_id} resolved: {resolution.summary()}")
        return resolution

    def _resolve(
        self,
        role: str,
        raw_text: str,
        kind: EntityKind,
        context: ResolutionContext,
        attributes: dict,
    ) -> Optional[MentionOutcome]:
        if not raw_text or not raw_text.strip():
            logger.debug(f"Skipping blank {role} name in report {context.report_id}")
            return None

        attributes = {k: v for k, v in attributes.items() if v is not None}

        if self.config.auto_create:
            result, entity_id, created = self.resolver.resolve_or_create(
                raw_text, kind, context, attributes=attributes
            )
        else:
            result = self.resolver.resolve(raw_text, kind, context)
            entity_id, created = result.entity_id, False

        outcome = MentionOutcome(
            role=role,
            raw_text=raw_text,
            kind=kind,
            result=result,
            entity_id=entity_id,
            created=created,
        )

        if created:
            outcome.needs_review, outcome.review_reason = True, "new_entity"
        elif result.is_ambiguous:
            outcome.needs_review, outcome.review_reason = True, "ambiguous"
        elif entity_id is None:
            outcome.needs_review, outcome.review_reason = True, "unresolved"
        elif result.confidence < self.config.review_confidence:
            outcome.needs_review, outcome.review_reason = True, "low_confidence"

        if entity_id and not created and attributes:
            self.resolver.store.update_attributes(entity_id, attributes)

        if outcome.needs_review:
            logger.warning(
                f"[REVIEW] {role} '{raw_text}' in {context.report_id}: {outcome.review_reason}"
                + (f" candidates={result.candidate_ids}" if result.candidate_ids else "")
            )
        return outcome
