"""
Similarity scoring: cosine over vectors, keyword overlap over text.
All functions are pure and never raise on bad input.
"""

import re
from typing import List, Optional, Sequence, Union

import numpy as np

VectorLike = Union[np.ndarray, Sequence[float]]

_WORD_RE = re.compile(r"[a-z0-9]+")

# Added to the overlap fraction when the whole query appears verbatim in the text
EXACT_PHRASE_BONUS = 0.25


def cosine(a: Optional[VectorLike], b: Optional[VectorLike]) -> float:
    """Cosine similarity in [-1, 1]; 0.0 on length mismatch or a zero vector."""
    if a is None or b is None:
        return 0.0

    va = np.asarray(a, dtype=np.float64)
    vb = np.asarray(b, dtype=np.float64)
    if va.ndim != 1 or va.shape != vb.shape or va.size == 0:
        return 0.0

    norm_a = np.linalg.norm(va)
    norm_b = np.linalg.norm(vb)
    if norm_a == 0 or norm_b == 0:
        return 0.0

    value = float(np.dot(va, vb) / (norm_a * norm_b))
    # Guard against floating point drift past the bounds
    return max(-1.0, min(1.0, value))


def clipped_cosine(a: Optional[VectorLike], b: Optional[VectorLike]) -> float:
    """Cosine similarity clipped to [0, 1]; negative similarity counts as none."""
    return max(0.0, cosine(a, b))


def tokenize(text: str, min_length: int = 3) -> List[str]:
    """Lowercase word tokens of at least min_length characters."""
    return [w for w in _WORD_RE.findall((text or "").lower()) if len(w) >= min_length]


def keyword_overlap(query: str, text: str) -> float:
    """Fraction of distinct query terms that appear in text."""
    query_terms = set(tokenize(query))
    if not query_terms:
        return 0.0
    text_terms = set(tokenize(text))
    return len(query_terms & text_terms) / len(query_terms)


def keyword_score(query: str, text: str) -> float:
    """Keyword relevance in [0, 1]: term overlap plus an exact-phrase bonus."""
    score = keyword_overlap(query, text)
    if score == 0.0:
        return 0.0

    phrase = " ".join((query or "").lower().split())
    if phrase and phrase in " ".join((text or "").lower().split()):
        score += EXACT_PHRASE_BONUS
    return min(1.0, score)
