"""
Entity Resolver

Decides whether a name extracted from a voice transcript refers to an existing
person/vendor, is too close to call, or is new.

Resolution states per call:
    START -> NORMALIZED -> ALIAS_CHECKED -> SCORED -> DECIDED

1. Normalize; empty input is NoMatch without scoring
2. Exact alias lookup (fast path) -> Matched, confidence 1.0
3. Score every active entity of the kind (display name + aliases)
4. Nothing above threshold -> NoMatch; one clear best -> Matched;
   several within the ambiguity margin -> Ambiguous (or a forced tie-break)
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Optional

from config.logging import logger
from config.settings import settings
from sitelog.entity_resolution.exceptions import (
    AliasConflict,
    ConfigurationError,
    DuplicateEntityRace,
    MergeError,
    StoreInconsistency,
)
from sitelog.entity_resolution.normalizer import CORPORATE_SUFFIXES, Normalizer
from sitelog.entity_resolution.scorer import SimilarityScorer
from sitelog.models import CanonicalEntity, EntityKind, MergeReason
from sitelog.models import to_timestamp

if TYPE_CHECKING:
    from sitelog.store import EntityStore


class Outcome(Enum):
    MATCHED = "matched"
    AMBIGUOUS = "ambiguous"
    NO_MATCH = "no_match"


class ResolutionState(Enum):
    START = "start"
    NORMALIZED = "normalized"
    ALIAS_CHECKED = "alias_checked"
    SCORED = "scored"
    DECIDED = "decided"


class AmbiguityReason(Enum):
    CLOSE_SCORES = "close_scores"      # Several candidates within the margin
    ALIAS_CONFLICT = "alias_conflict"  # New alias already bound elsewhere


@dataclass
class ResolverConfig:
    """
    Tunable resolution policy.

    Validated on construction so a bad combination fails before any traffic.
    """
    # Minimum combined score for an entity to count as a candidate at all
    match_threshold: float = 0.80

    # Candidates scoring less than this far below the best are too close to call
    ambiguity_margin: float = 0.05

    # Shorthand -> expansion, applied before matching
    abbreviations: dict[str, str] = field(default_factory=dict)

    # Trailing legal-form words stripped from vendor names
    corporate_suffixes: tuple[str, ...] = CORPORATE_SUFFIXES

    def __post_init__(self) -> None:
        if not 0.0 <= self.match_threshold <= 1.0:
            raise ConfigurationError(
                f"match_threshold must be between 0 and 1, got {self.match_threshold}"
            )
        if not 0.0 <= self.ambiguity_margin <= 1.0:
            raise ConfigurationError(
                f"ambiguity_margin must be between 0 and 1, got {self.ambiguity_margin}"
            )
        if self.ambiguity_margin >= self.match_threshold:
            raise ConfigurationError(
                f"ambiguity_margin ({self.ambiguity_margin}) must be smaller than "
                f"match_threshold ({self.match_threshold})"
            )
        for short, expanded in self.abbreviations.items():
            if not str(short).strip() or not str(expanded).strip():
                raise ConfigurationError(f"Empty abbreviation entry: {short!r} -> {expanded!r}")

    @classmethod
    def from_settings(cls, app_settings=settings) -> "ResolverConfig":
        return cls(
            match_threshold=app_settings.MATCH_THRESHOLD,
            ambiguity_margin=app_settings.AMBIGUITY_MARGIN,
            abbreviations=app_settings.load_abbreviations(),
        )


@dataclass
class ResolutionContext:
    """
    Where a mention came from. Only ever used as a tie-break, never as a match key.
    """
    project_id: Optional[str] = None
    report_id: Optional[str] = None
    seen_at: Optional[datetime] = None


@dataclass
class ResolutionCandidate:
    """A single mention being resolved."""
    raw_text: str
    normalized_text: str
    kind: EntityKind
    context: ResolutionContext


@dataclass
class ScoredCandidate:
    """An existing entity that scored at or above the match threshold."""
    entity_id: str
    display_name: str
    score: float
    occurrence_count: int
    last_seen: datetime


@dataclass
class ResolutionResult:
    """Classification of one mention."""
    outcome: Outcome
    confidence: float = 0.0
    entity_id: Optional[str] = None
    candidate_ids: list[str] = field(default_factory=list)
    method: str = "none"  # alias | fuzzy | tie_break | manual | none
    reason: Optional[AmbiguityReason] = None
    candidate: Optional[ResolutionCandidate] = None
    scored: list[ScoredCandidate] = field(default_factory=list)
    states: list[ResolutionState] = field(default_factory=list)

    @property
    def is_match(self) -> bool:
        return self.outcome == Outcome.MATCHED

    @property
    def is_ambiguous(self) -> bool:
        return self.outcome == Outcome.AMBIGUOUS

    @property
    def is_no_match(self) -> bool:
        return self.outcome == Outcome.NO_MATCH

    def __repr__(self) -> str:
        if self.is_match:
            return f"<ResolutionResult(matched {self.entity_id}, {self.method}, conf={self.confidence:.2f})>"
        if self.is_ambiguous:
            return f"<ResolutionResult(ambiguous {self.candidate_ids}, {self.reason.value})>"
        return "<ResolutionResult(no match)>"


class EntityResolver:
    """
    Resolves raw names against the entity store.

    The resolver keeps no state between calls; all shared state lives in the
    store, so one instance can serve many threads when the store is thread-safe.

    Usage:
        resolver = EntityResolver(SqlEntityStore(db))
        result, entity_id, created = resolver.resolve_or_create(
            "Owen glass burner", EntityKind.PERSON,
        )
    """

    def __init__(
        self,
        store: "EntityStore",
        config: Optional[ResolverConfig] = None,
        normalizer: Optional[Normalizer] = None,
        scorer: Optional[SimilarityScorer] = None,
    ):
        self.store = store
        self.config = config or ResolverConfig.from_settings()
        self.normalizer = normalizer or Normalizer(
            self.config.abbreviations, self.config.corporate_suffixes
        )
        self.scorer = scorer or SimilarityScorer()

    def resolve(
        self,
        raw_text: str,
        kind: EntityKind,
        context: Optional[ResolutionContext] = None,
        force: bool = False,
        dry_run: bool = False,
    ) -> ResolutionResult:
        """
        Classify a mention as Matched, Ambiguous, or NoMatch.

        Args:
            raw_text: Name as extracted from the transcript
            kind: Person or Vendor
            context: Optional project/report/time of the mention
            force: Apply the tie-break to close-score ambiguity
            dry_run: Classify only; register nothing, count nothing

        Returns:
            ResolutionResult; Matched results have already been recorded
            against the entity unless dry_run is set

        Raises:
            StoreInconsistency: an alias points at an entity the store lacks
        """
        context = context or ResolutionContext()
        states = [ResolutionState.START]

        normalized = self.normalizer.normalize(raw_text, kind)
        candidate = ResolutionCandidate(
            raw_text=raw_text if isinstance(raw_text, str) else "",
            normalized_text=normalized,
            kind=kind,
            context=context,
        )
        states.append(ResolutionState.NORMALIZED)

        if not normalized:
            logger.debug(f"Empty after normalization: {raw_text!r}")
            return self._decided(Outcome.NO_MATCH, candidate, states)

        # Fast path: exact alias
        entity_id = self.store.alias_index.lookup_exact(normalized, kind)
        states.append(ResolutionState.ALIAS_CHECKED)
        if entity_id is not None:
            entity = self._require_entity(entity_id, kind, normalized)
            if not dry_run:
                self.store.record_resolution(
                    entity.id, kind, to_timestamp(context.seen_at)
                )
            logger.debug(f"Alias match: '{normalized}' -> {entity.display_name}")
            return self._decided(
                Outcome.MATCHED, candidate, states,
                confidence=1.0, entity_id=entity.id, method="alias",
            )

        # Slow path: fuzzy scoring
        scored = self._score_candidates(normalized, kind)
        states.append(ResolutionState.SCORED)

        if not scored:
            logger.debug(f"No candidate above {self.config.match_threshold} for '{normalized}'")
            return self._decided(Outcome.NO_MATCH, candidate, states)

        best = scored[0]
        close = [
            c for c in scored
            if round(best.score - c.score, 9) < self.config.ambiguity_margin
        ]

        if len(close) > 1:
            if force:
                winner = self._break_tie(close, context)
                if winner is not None:
                    return self._accept(candidate, winner, states, scored, "tie_break", dry_run)

            logger.warning(
                f"Ambiguous {kind.value} '{raw_text}': "
                + ", ".join(f"{c.display_name} ({c.score:.2f})" for c in close)
            )
            return self._decided(
                Outcome.AMBIGUOUS, candidate, states,
                confidence=best.score,
                candidate_ids=[c.entity_id for c in close],
                reason=AmbiguityReason.CLOSE_SCORES,
                scored=scored,
            )

        return self._accept(candidate, best, states, scored, "fuzzy", dry_run)

    def create_from_candidate(
        self,
        result: ResolutionResult,
        attributes: Optional[dict] = None,
    ) -> str:
        """
        The NoMatch -> create path. The display name keeps the original casing;
        the normalized text becomes the first alias.

        The new entity is then scored against the store again. The NoMatch saw
        nothing above threshold, so a candidate there now was created by a
        concurrent writer from the same stale view, and the two are merged.

        Returns:
            Id of the entity the mention now belongs to (the survivor when a
            creation race was reconciled)

        Raises:
            ValueError: result is not a NoMatch with usable text
            DuplicateEntityRace: another writer created the same alias first
        """
        candidate = result.candidate
        if not result.is_no_match or candidate is None or not candidate.normalized_text:
            raise ValueError("Only a NoMatch result with a usable name can create an entity")

        entity_id = self.store.create_entity(
            display_name=" ".join(candidate.raw_text.split()),
            kind=candidate.kind,
            alias=candidate.normalized_text,
            attributes=attributes,
            seen_at=to_timestamp(candidate.context.seen_at),
        )
        return self._reconcile_creation_race(candidate, entity_id)

    def resolve_or_create(
        self,
        raw_text: str,
        kind: EntityKind,
        context: Optional[ResolutionContext] = None,
        attributes: Optional[dict] = None,
        force: bool = False,
    ) -> tuple[ResolutionResult, Optional[str], bool]:
        """
        Resolve a mention, creating a new entity on NoMatch.

        A creation that collides with a concurrent writer is reconciled by
        resolving again, which then lands on the alias fast path.

        Returns:
            Tuple of (result, entity_id, created). entity_id is None when the
            result is Ambiguous or the input was empty.
        """
        result = self.resolve(raw_text, kind, context, force=force)

        if result.is_no_match and result.candidate and result.candidate.normalized_text:
            try:
                entity_id = self.create_from_candidate(result, attributes)
                return result, entity_id, True
            except DuplicateEntityRace as e:
                logger.info(f"Lost creation race for '{e.alias}', resolving again")
                result = self.resolve(raw_text, kind, context, force=force)

        if result.is_match:
            return result, result.entity_id, False
        return result, None, False

    def confirm_match(
        self,
        entity_id: str,
        raw_text: str,
        kind: EntityKind,
        context: Optional[ResolutionContext] = None,
    ) -> ResolutionResult:
        """
        Record a human reviewer's decision that a mention refers to an entity.

        Raises:
            AliasConflict: the spelling already belongs to another entity
            StoreInconsistency: entity_id is unknown or of another kind
        """
        context = context or ResolutionContext()
        normalized = self.normalizer.normalize(raw_text, kind)
        entity = self._require_entity(entity_id, kind, normalized)
        self.store.record_resolution(
            entity.id, kind, to_timestamp(context.seen_at), alias=normalized or None
        )
        logger.info(f"Confirmed '{raw_text}' -> {entity.display_name}")
        return ResolutionResult(
            outcome=Outcome.MATCHED,
            confidence=1.0,
            entity_id=entity.id,
            method="manual",
            candidate=ResolutionCandidate(raw_text, normalized, kind, context),
            states=list(ResolutionState),
        )

    def _score_candidates(self, normalized: str, kind: EntityKind) -> list[ScoredCandidate]:
        """Score all active entities of a kind; keep those at or above threshold."""
        scored = []
        for entity in self.store.list_entities(kind):
            names = [self.normalizer.normalize(entity.display_name, kind)]
            names.extend(entity.alias_names)
            score = self.scorer.best_score(normalized, names)
            if score >= self.config.match_threshold:
                scored.append(ScoredCandidate(
                    entity_id=entity.id,
                    display_name=entity.display_name,
                    score=score,
                    occurrence_count=entity.occurrence_count,
                    last_seen=entity.last_seen,
                ))

        scored.sort(key=lambda c: (-c.score, c.entity_id))
        return scored

    def _break_tie(
        self,
        close: list[ScoredCandidate],
        context: ResolutionContext,
    ) -> Optional[ScoredCandidate]:
        """
        Forced decision among close candidates.

        More occurrences, then more recent activity, then (only if still tied)
        the single candidate already seen on the mention's project. Returns None
        when nothing separates them.
        """
        def rank(c: ScoredCandidate):
            return (c.occurrence_count, c.last_seen)

        top_rank = max(rank(c) for c in close)
        tied = [c for c in close if rank(c) == top_rank]
        if len(tied) == 1:
            return tied[0]

        if context.project_id:
            on_project = self.store.entities_seen_on_project(
                [c.entity_id for c in tied], context.project_id
            )
            matches = [c for c in tied if c.entity_id in on_project]
            if len(matches) == 1:
                return matches[0]

        return None

    def _reconcile_creation_race(self, candidate: ResolutionCandidate, entity_id: str) -> str:
        """
        Merge a just-created entity with a near-duplicate created concurrently.

        One clear rival is merged (the busier or older entity survives);
        several close rivals are left for duplicate review.
        """
        rivals = [
            c for c in self._score_candidates(candidate.normalized_text, candidate.kind)
            if c.entity_id != entity_id
        ]
        if not rivals:
            return entity_id

        best = rivals[0]
        close = [
            c for c in rivals
            if round(best.score - c.score, 9) < self.config.ambiguity_margin
        ]
        if len(close) > 1:
            logger.warning(
                f"[REVIEW] New {candidate.kind.value} '{candidate.raw_text}' ({entity_id}) "
                f"was created alongside close matches: "
                + ", ".join(f"{c.display_name} ({c.score:.2f})" for c in close)
            )
            return entity_id

        logger.warning(
            f"Creation race: '{candidate.raw_text}' ({entity_id}) duplicates "
            f"{best.display_name} ({best.entity_id}), score {best.score:.2f}"
        )
        try:
            return self.store.merge_entities(
                entity_id,
                best.entity_id,
                reason=MergeReason.CREATION_RACE,
                confidence=best.score,
                details={
                    "alias": candidate.normalized_text,
                    "report_id": candidate.context.report_id,
                    "project_id": candidate.context.project_id,
                },
            )
        except MergeError as e:
            # The other writer reconciled first
            logger.info(f"Creation race already reconciled: {e}")
            return self._require_entity(entity_id, candidate.kind, candidate.normalized_text).id

    def _accept(
        self,
        candidate: ResolutionCandidate,
        chosen: ScoredCandidate,
        states: list[ResolutionState],
        scored: list[ScoredCandidate],
        method: str,
        dry_run: bool,
    ) -> ResolutionResult:
        """Record a fuzzy/tie-break match, surfacing alias conflicts as ambiguity."""
        if not dry_run:
            try:
                self.store.record_resolution(
                    chosen.entity_id,
                    candidate.kind,
                    to_timestamp(candidate.context.seen_at),
                    alias=candidate.normalized_text,
                )
            except AliasConflict as e:
                logger.warning(f"Alias conflict while matching '{candidate.raw_text}': {e}")
                return self._decided(
                    Outcome.AMBIGUOUS, candidate, states,
                    confidence=chosen.score,
                    candidate_ids=[chosen.entity_id, e.existing_entity_id],
                    reason=AmbiguityReason.ALIAS_CONFLICT,
                    scored=scored,
                )

        logger.debug(
            f"{method} match: '{candidate.normalized_text}' -> {chosen.display_name} "
            f"({chosen.score:.2f})"
        )
        return self._decided(
            Outcome.MATCHED, candidate, states,
            confidence=chosen.score, entity_id=chosen.entity_id,
            method=method, scored=scored,
        )

    def _require_entity(
        self,
        entity_id: str,
        kind: EntityKind,
        alias: str,
    ) -> CanonicalEntity:
        """Load the entity an alias points to, following merges to the survivor."""
        visited = set()
        entity = self.store.get_entity(entity_id)
        while entity is not None and entity.merged_into_id is not None:
            if entity.id in visited:
                break
            visited.add(entity.id)
            entity = self.store.get_entity(entity.merged_into_id)

        if entity is None or entity.merged_into_id is not None:
            logger.error(f"Alias '{alias}' points to missing entity {entity_id}")
            raise StoreInconsistency(
                f"Alias '{alias}' references entity {entity_id}, which is not in the store",
                alias=alias,
                entity_id=entity_id,
            )
        if entity.kind != kind:
            logger.error(f"Alias '{alias}' ({kind.value}) points to a {entity.kind.value}")
            raise StoreInconsistency(
                f"Alias '{alias}' of kind {kind.value} references {entity.kind.value} "
                f"entity {entity.id}",
                alias=alias,
                entity_id=entity.id,
            )
        return entity

    def _decided(
        self,
        outcome: Outcome,
        candidate: ResolutionCandidate,
        states: list[ResolutionState],
        **fields,
    ) -> ResolutionResult:
        return ResolutionResult(
            outcome=outcome,
            candidate=candidate,
            states=states + [ResolutionState.DECIDED],
            **fields,
        )
