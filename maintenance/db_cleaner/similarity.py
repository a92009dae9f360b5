"""
Name similarity scoring for duplicate detection.

Combines three signals over normalized company names:
- Levenshtein similarity on token-sorted names (rapidfuzz)
- Jaro-Winkler similarity with a configurable prefix weight (rapidfuzz)
- Phonetic agreement: Soundex and Double Metaphone (phonetics)
"""

import re
import unicodedata
from dataclasses import dataclass
from typing import Optional

from phonetics import dmetaphone, soundex
from rapidfuzz.distance import JaroWinkler, Levenshtein

from config.settings import settings

# Legal-form tokens stripped from the end of a name
LEGAL_SUFFIXES = frozenset({
    "ab", "ag", "bv", "co", "company", "corp", "corporation", "eurl", "gmbh",
    "inc", "incorporated", "kk", "limited", "llc", "llp", "lp", "ltd", "nv",
    "oy", "plc", "pte", "pty", "sa", "sarl", "sas", "sasu", "spa", "srl",
})

# Dots are dropped before splitting so "S.A.S." and "Inc." become tokens
_ABBREVIATION_DOTS = re.compile(r"\.")
# Any run of non-word characters; letters of every script are kept
_NON_WORD = re.compile(r"[\W_]+", re.UNICODE)
# Phonetic codes are only defined over lowercase ASCII letters
_NON_ALPHA = re.compile(r"[^a-z]+")

SOUNDEX_WEIGHT = 0.3
METAPHONE_WEIGHT = 0.7


@dataclass
class SimilarityConfig:
    """Weights and thresholds for name similarity."""
    jaro_winkler_weight: float = 0.4
    levenshtein_weight: float = 0.3
    phonetic_weight: float = 0.2
    # Added when normalized names are identical
    normalized_match_bonus: float = 0.1
    jaro_winkler_prefix_weight: float = 0.1

    # Pair classification
    duplicate_threshold: float = 0.90
    moderate_threshold: float = 0.80

    # Justification wording
    very_high_jaro_winkler: float = 0.95
    high_jaro_winkler: float = 0.85
    high_levenshtein: float = 0.90
    phonetic_match: float = 0.80

    @classmethod
    def from_settings(cls) -> "SimilarityConfig":
        return cls(
            jaro_winkler_weight=settings.SIMILARITY_WEIGHT_JARO_WINKLER,
            levenshtein_weight=settings.SIMILARITY_WEIGHT_LEVENSHTEIN,
            phonetic_weight=settings.SIMILARITY_WEIGHT_PHONETIC,
            normalized_match_bonus=settings.NORMALIZED_MATCH_BONUS,
            jaro_winkler_prefix_weight=settings.JARO_WINKLER_PREFIX_WEIGHT,
            duplicate_threshold=settings.DUPLICATE_SIMILARITY_THRESHOLD,
            moderate_threshold=settings.MODERATE_SIMILARITY_THRESHOLD,
        )


@dataclass(frozen=True)
class SimilarityScore:
    """Per-signal scores for one name pair, all in [0, 1]."""
    combined: float
    levenshtein: float
    jaro_winkler: float
    phonetic: float
    normalized_match: bool

    def explain(self, same_country: bool = False, config: Optional[SimilarityConfig] = None) -> str:
        """Human-readable reason this pair looks like a duplicate."""
        config = config or SimilarityConfig()
        reasons = []

        if self.normalized_match:
            reasons.append("exact normalized name match")
        if self.jaro_winkler >= config.very_high_jaro_winkler:
            reasons.append(f"very high Jaro-Winkler ({self.jaro_winkler:.0%})")
        elif self.jaro_winkler >= config.high_jaro_winkler:
            reasons.append(f"high Jaro-Winkler ({self.jaro_winkler:.0%})")
        if self.levenshtein >= config.high_levenshtein:
            reasons.append(f"high edit similarity ({self.levenshtein:.0%})")
        if self.phonetic >= config.phonetic_match:
            reasons.append("phonetically similar")
        if same_country:
            reasons.append("same country")

        if not reasons:
            return f"combined similarity {self.combined:.0%}"
        return ", ".join(reasons)

    def to_dict(self) -> dict:
        return {
            "combined": round(self.combined, 4),
            "levenshtein": round(self.levenshtein, 4),
            "jaro_winkler": round(self.jaro_winkler, 4),
            "phonetic": round(self.phonetic, 4),
            "normalized_match": self.normalized_match,
        }


def strip_accents(text: str) -> str:
    """Decompose and drop combining marks: 'Société' -> 'Societe'."""
    decomposed = unicodedata.normalize("NFKD", text)
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch))


def normalize_name(name: Optional[str]) -> str:
    """
    Normalize a company name for comparison.

    Casefolds, strips diacritics and drops punctuation, then removes trailing
    legal-form suffixes (at least one token is kept). Letters of any script
    survive, so "Яндекс" stays "яндекс" and "Ørsted" stays "ørsted".

    "Société Générale S.A." -> "societe generale"
    """
    if not name:
        return ""

    text = strip_accents(name).casefold()
    text = _ABBREVIATION_DOTS.sub("", text)
    tokens = _NON_WORD.sub(" ", text).split()

    while len(tokens) > 1 and tokens[-1] in LEGAL_SUFFIXES:
        tokens.pop()

    return " ".join(tokens)


def bucket_key(name: Optional[str]) -> str:
    """Grouping key: the normalized name with spacing removed ("Open AI" == "OpenAI Inc")."""
    return normalize_name(name).replace(" ", "")


def levenshtein_similarity(a: str, b: str) -> float:
    """Normalized edit similarity of token-sorted strings."""
    if not a or not b:
        return 0.0
    a_sorted = " ".join(sorted(a.split()))
    b_sorted = " ".join(sorted(b.split()))
    return Levenshtein.normalized_similarity(a_sorted, b_sorted)


def jaro_winkler_similarity(a: str, b: str, prefix_weight: float = 0.1) -> float:
    if not a or not b:
        return 0.0
    return JaroWinkler.similarity(a, b, prefix_weight=prefix_weight)


def _letters(text: str) -> str:
    return _NON_ALPHA.sub("", text.lower())


def soundex_code(text: str) -> str:
    letters = _letters(text)
    return soundex(letters) if letters else ""


def double_metaphone_codes(text: str) -> tuple:
    """(primary, alternate) Double Metaphone codes; missing codes are ''."""
    letters = _letters(text)
    if not letters:
        return ("", "")
    primary, alternate = dmetaphone(letters)
    return (primary or "", alternate or "")


def phonetic_similarity(a: str, b: str) -> float:
    """
    Soundex agreement (weight 0.3) plus Double Metaphone agreement (weight 0.7).

    Metaphone agreement is 1.0 for equal primary codes, 0.8 when one primary
    equals the other's alternate, 0.6 when only the alternates agree.
    """
    if not _letters(a) or not _letters(b):
        return 0.0

    soundex_match = 1.0 if soundex_code(a) == soundex_code(b) else 0.0

    primary_a, alternate_a = double_metaphone_codes(a)
    primary_b, alternate_b = double_metaphone_codes(b)
    if primary_a and primary_a == primary_b:
        metaphone_match = 1.0
    elif (primary_a and primary_a == alternate_b) or (primary_b and primary_b == alternate_a):
        metaphone_match = 0.8
    elif alternate_a and alternate_a == alternate_b:
        metaphone_match = 0.6
    else:
        metaphone_match = 0.0

    return soundex_match * SOUNDEX_WEIGHT + metaphone_match * METAPHONE_WEIGHT


def combined_similarity(
    name_a: Optional[str],
    name_b: Optional[str],
    config: Optional[SimilarityConfig] = None,
) -> SimilarityScore:
    """
    Score two raw company names.

    Pure and symmetric in its arguments; the combined score is clamped to [0, 1].
    """
    config = config or SimilarityConfig()
    a = normalize_name(name_a)
    b = normalize_name(name_b)

    if not a or not b:
        return SimilarityScore(0.0, 0.0, 0.0, 0.0, False)

    lev = levenshtein_similarity(a, b)
    jw = jaro_winkler_similarity(a, b, config.jaro_winkler_prefix_weight)
    phon = phonetic_similarity(a, b)
    normalized_match = a == b

    combined = (
        jw * config.jaro_winkler_weight
        + lev * config.levenshtein_weight
        + phon * config.phonetic_weight
    )
    if normalized_match:
        combined += config.normalized_match_bonus

    return SimilarityScore(
        combined=min(1.0, max(0.0, combined)),
        levenshtein=lev,
        jaro_winkler=jw,
        phonetic=phon,
        normalized_match=normalized_match,
    )
