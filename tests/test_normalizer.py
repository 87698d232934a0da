"""
Tests for name normalization.
"""

import pytest

from sitelog.entity_resolution.normalizer import Normalizer, clean_text
from sitelog.models import EntityKind


@pytest.fixture
def normalizer():
    return Normalizer({
        "Sx Partners": "Surgery Partners",
        "slu": "saint louis university",
        "slu res": "saint louis university residence",
    })


@pytest.mark.parametrize("raw,expected", [
    ("  Scott   R. ", "scott r"),
    ("OWEN Glassburn", "owen glassburn"),
    ("O'Brien", "obrien"),
    ("Smith-Jones", "smith-jones"),
    ("Mary-Anne --- Smith", "mary-anne smith"),
    ("- Kurt -", "kurt"),
    ("Wes, (foreman)", "wes foreman"),
    ("L.L.C.", "llc"),
    ("snake_case_name", "snake case name"),
])
def test_clean_text(raw, expected):
    assert clean_text(raw) == expected


@pytest.mark.parametrize("raw", ["", "   ", "...", "?!", None, 42, ["bob"]])
def test_unusable_input_normalizes_to_empty(normalizer, raw):
    assert normalizer.normalize(raw) == ""
    assert normalizer.normalize(raw, EntityKind.VENDOR) == ""


def test_unicode_is_folded(normalizer):
    # Full-width letters and a non-breaking space
    assert normalizer.normalize("\uff2b\uff55\uff52\uff54\u00a0Smith") == "kurt smith"


def test_abbreviation_expansion(normalizer):
    assert normalizer.normalize("Sx Partners") == "surgery partners"
    assert normalizer.normalize("sx partners job") == "surgery partners job"


def test_abbreviation_longest_key_wins(normalizer):
    assert normalizer.normalize("SLU Res") == "saint louis university residence"
    assert normalizer.normalize("SLU") == "saint louis university"


def test_abbreviation_whole_words_only(normalizer):
    assert normalizer.normalize("Slurry Co") == "slurry co"
    assert normalizer.normalize("slu-res") == "slu-res"


def test_abbreviation_single_pass():
    normalizer = Normalizer({"bob": "bob smith", "smith": "smithers"})
    assert normalizer.normalize("Bob") == "bob smith"


def test_vendor_suffixes_stripped(normalizer):
    assert normalizer.normalize("ABC Supply Co., Inc.", EntityKind.VENDOR) == "abc supply"
    assert normalizer.normalize("Triad LLC", EntityKind.VENDOR) == "triad"
    assert normalizer.normalize("Acme Corporation", EntityKind.VENDOR) == "acme"


def test_vendor_suffix_never_empties_name(normalizer):
    assert normalizer.normalize("Inc.", EntityKind.VENDOR) == "inc"
    assert normalizer.normalize("Co", EntityKind.VENDOR) == "co"


def test_person_names_keep_suffix_words(normalizer):
    assert normalizer.normalize("Jim Co", EntityKind.PERSON) == "jim co"


def test_normalize_is_deterministic(normalizer):
    raw = "  Owen   glass-burner!! "
    assert normalizer.normalize(raw) == normalizer.normalize(raw) == "owen glass-burner"
