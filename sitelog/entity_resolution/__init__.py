"""
Entity Resolution Module

Maps noisy transcript names to canonical personnel/vendor entities:
- Normalization (case, punctuation, abbreviations, vendor suffixes)
- Exact alias lookup (unique per kind)
- Fuzzy name scoring (rapidfuzz) with ambiguity detection
- Duplicate reconciliation with soft merges
"""

from sitelog.entity_resolution.alias_index import AliasIndex
from sitelog.entity_resolution.exceptions import (
    AliasConflict,
    ConfigurationError,
    DuplicateEntityRace,
    EntityResolutionError,
    MergeError,
    StoreInconsistency,
)
from sitelog.entity_resolution.merger import EntityMerger, MergePreview, PotentialDuplicate
from sitelog.entity_resolution.normalizer import Normalizer
from sitelog.entity_resolution.resolver import (
    AmbiguityReason,
    EntityResolver,
    Outcome,
    ResolutionContext,
    ResolutionResult,
    ResolverConfig,
)
from sitelog.entity_resolution.scorer import SimilarityScorer

__all__ = [
    "AliasIndex",
    "AliasConflict",
    "AmbiguityReason",
    "ConfigurationError",
    "DuplicateEntityRace",
    "EntityMerger",
    "EntityResolutionError",
    "EntityResolver",
    "MergeError",
    "MergePreview",
    "Normalizer",
    "Outcome",
    "PotentialDuplicate",
    "ResolutionContext",
    "ResolutionResult",
    "ResolverConfig",
    "SimilarityScorer",
    "StoreInconsistency",
]
