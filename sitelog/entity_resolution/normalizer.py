"""
Name normalization applied before any lookup or comparison.
"""

import re
import unicodedata
from typing import Mapping, Optional, Sequence

from sitelog.models import EntityKind

# Trailing legal-form words dropped from vendor names
CORPORATE_SUFFIXES = (
    "incorporated",
    "inc",
    "corporation",
    "corp",
    "company",
    "co",
    "limited",
    "ltd",
    "llc",
    "llp",
    "lp",
    "pllc",
    "pc",
)

_DELETED = re.compile(r"[.'’`]")
_NOISE = re.compile(r"[^\w\s-]|_")
# Hyphens survive only between two word characters ("smith-jones")
_LOOSE_HYPHEN = re.compile(r"(?<!\w)-+|-+(?!\w)")
_HYPHEN_RUN = re.compile(r"-{2,}")
_WHITESPACE = re.compile(r"\s+")


def clean_text(raw) -> str:
    """
    Case, whitespace, and punctuation cleanup without any table lookups.

    Periods and apostrophes are deleted outright so "L.L.C." becomes "llc" and
    "O'Brien" becomes "obrien"; other punctuation becomes whitespace.
    """
    if not isinstance(raw, str):
        return ""

    text = unicodedata.normalize("NFKC", raw).lower()
    text = _DELETED.sub("", text)
    text = _NOISE.sub(" ", text)
    text = _HYPHEN_RUN.sub("-", text)
    text = _LOOSE_HYPHEN.sub(" ", text)
    return _WHITESPACE.sub(" ", text).strip()


class Normalizer:
    """
    Canonicalizes raw names from transcripts.

    Abbreviation expansion runs after cleanup and before any matching, so an
    exact expansion always wins over approximate scoring. Vendor names
    additionally lose trailing corporate suffixes.
    """

    def __init__(
        self,
        abbreviations: Optional[Mapping[str, str]] = None,
        corporate_suffixes: Sequence[str] = CORPORATE_SUFFIXES,
    ):
        self.abbreviations: dict[str, str] = {}
        for short, expanded in (abbreviations or {}).items():
            key = clean_text(short)
            if key:
                self.abbreviations[key] = clean_text(expanded)

        self._abbreviation_pattern: Optional[re.Pattern] = None
        if self.abbreviations:
            # Longest keys first so "slu res" wins over "slu"
            keys = sorted(self.abbreviations, key=len, reverse=True)
            self._abbreviation_pattern = re.compile(
                r"(?<![\w-])(" + "|".join(re.escape(k) for k in keys) + r")(?![\w-])"
            )

        self.corporate_suffixes = frozenset(clean_text(s) for s in corporate_suffixes)

    def normalize(self, raw, kind: Optional[EntityKind] = None) -> str:
        """
        Normalize a raw name. Never raises; unusable input yields "".

        Args:
            raw: Name as extracted from the transcript
            kind: Entity kind; vendors get corporate suffix stripping

        Returns:
            Normalized name, possibly empty
        """
        text = clean_text(raw)
        if not text:
            return ""

        text = self.expand_abbreviations(text)

        if kind == EntityKind.VENDOR:
            text = self.strip_corporate_suffixes(text)

        return text

    def expand_abbreviations(self, text: str) -> str:
        """Replace whole-word abbreviations with their expansions (single pass)."""
        if not self._abbreviation_pattern:
            return text
        expanded = self._abbreviation_pattern.sub(
            lambda m: self.abbreviations[m.group(1)], text
        )
        return _WHITESPACE.sub(" ", expanded).strip()

    def strip_corporate_suffixes(self, text: str) -> str:
        """Drop trailing legal-form words, keeping at least one token."""
        tokens = text.split(" ")
        while len(tokens) > 1 and tokens[-1] in self.corporate_suffixes:
            tokens.pop()
        return " ".join(tokens)
