"""
Similarity scoring between a normalized mention and a canonical name.
"""

from dataclasses import dataclass
from typing import Iterable

from rapidfuzz import fuzz
from rapidfuzz.distance import Levenshtein


@dataclass(frozen=True)
class ScoreBreakdown:
    """Individual signals behind a combined score (all 0-1)."""
    edit: float
    token: float

    @property
    def combined(self) -> float:
        return max(self.edit, self.token)


class SimilarityScorer:
    """
    Two independent signals, combined permissively:

    - Edit: Levenshtein similarity normalized by the longer string, for
      transcription typos ("glassburn" vs "glass burner")
    - Token: token set ratio, for reordered or partial names
      ("scott russell" vs "russell")

    Either signal alone is enough evidence; a missed match creates a duplicate
    entity, which costs more than a match that goes to review.
    """

    def score(self, candidate: str, canonical: str) -> float:
        """Combined similarity in [0, 1]. Empty input scores 0."""
        return self.score_breakdown(candidate, canonical).combined

    def score_breakdown(self, candidate: str, canonical: str) -> ScoreBreakdown:
        if not candidate or not canonical:
            return ScoreBreakdown(edit=0.0, token=0.0)

        edit = Levenshtein.normalized_similarity(candidate, canonical)
        token = fuzz.token_set_ratio(candidate, canonical) / 100.0

        return ScoreBreakdown(
            edit=min(1.0, max(0.0, edit)),
            token=min(1.0, max(0.0, token)),
        )

    def best_score(self, candidate: str, names: Iterable[str]) -> float:
        """Best score of a candidate against several names of one entity."""
        best = 0.0
        for name in names:
            best = max(best, self.score(candidate, name))
            if best >= 1.0:
                break
        return best
