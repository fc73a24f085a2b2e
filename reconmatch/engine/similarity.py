"""Text similarity strategies for transaction descriptions.

All strategies return a score in [0, 1]. ``ADVANCED`` blends the others:

    0.6 * Jaro-Winkler + 0.3 * normalized Levenshtein + 0.1 * containment

where containment is 1 when one text contains the other.
"""

import re
import unicodedata
from enum import Enum
from typing import Callable, Dict

from rapidfuzz.distance import JaroWinkler, Levenshtein

_NON_WORD = re.compile(r"[^\w\s]+")
_SPACES = re.compile(r"\s+")


class SimilarityAlgorithm(Enum):
    JACCARD = "jaccard"
    LEVENSHTEIN = "levenshtein"
    JARO_WINKLER = "jaro_winkler"
    ADVANCED = "advanced"


def normalize_text(text: str) -> str:
    """Lower-case, strip accents and punctuation, collapse whitespace."""
    decomposed = unicodedata.normalize("NFKD", text or "")
    stripped = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    stripped = _NON_WORD.sub(" ", stripped.lower()).replace("_", " ")
    return _SPACES.sub(" ", stripped).strip()


def jaccard_similarity(text1: str, text2: str) -> float:
    """Word-set overlap |A∩B| / |A∪B|; 0 if either side has no words."""
    words1 = set((text1 or "").lower().split())
    words2 = set((text2 or "").lower().split())
    if not words1 or not words2:
        return 0.0
    return len(words1 & words2) / len(words1 | words2)


def levenshtein_similarity(text1: str, text2: str) -> float:
    """1 - editDistance / max(len); 1.0 when both are empty."""
    s1 = (text1 or "").lower()
    s2 = (text2 or "").lower()
    longest = max(len(s1), len(s2))
    if longest == 0:
        return 1.0
    return 1.0 - Levenshtein.distance(s1, s2) / longest


def jaro_winkler_similarity(text1: str, text2: str) -> float:
    s1 = (text1 or "").lower()
    s2 = (text2 or "").lower()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0
    return JaroWinkler.similarity(s1, s2, prefix_weight=0.1)


def advanced_similarity(text1: str, text2: str) -> float:
    s1 = (text1 or "").lower().strip()
    s2 = (text2 or "").lower().strip()
    if s1 == s2:
        return 1.0
    if not s1 or not s2:
        return 0.0

    containment = 1.0 if (s1 in s2 or s2 in s1) else 0.0
    return (
        jaro_winkler_similarity(s1, s2) * 0.6
        + levenshtein_similarity(s1, s2) * 0.3
        + containment * 0.1
    )


ALGORITHMS: Dict[SimilarityAlgorithm, Callable[[str, str], float]] = {
    SimilarityAlgorithm.JACCARD: jaccard_similarity,
    SimilarityAlgorithm.LEVENSHTEIN: levenshtein_similarity,
    SimilarityAlgorithm.JARO_WINKLER: jaro_winkler_similarity,
    SimilarityAlgorithm.ADVANCED: advanced_similarity,
}


class TextSimilarity:
    """Score two descriptions with the configured algorithm."""

    def __init__(
        self,
        algorithm: SimilarityAlgorithm = SimilarityAlgorithm.ADVANCED,
        normalize: bool = True,
    ):
        self.algorithm = algorithm
        self.normalize = normalize
        self._func = ALGORITHMS[algorithm]

    def similarity(self, text1: str, text2: str) -> float:
        if self.normalize:
            text1, text2 = normalize_text(text1), normalize_text(text2)
        return min(1.0, max(0.0, self._func(text1, text2)))
