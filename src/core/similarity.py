# src/core/similarity.py — v2
"""Normalized text similarity used by cache invalidation.

similarity = 1 - levenshtein(a, b) / max(len(a), len(b))

Equal strings score 1.0, one empty side scores 0.0, and the measure is
symmetric. The edit distance runs row by row on numpy arrays: deletions
and substitutions are vectorized, insertions are resolved with a running
minimum over ``row - j``.
"""

from __future__ import annotations

import numpy as np


def _codepoints(text: str) -> np.ndarray:
    return np.fromiter((ord(c) for c in text), dtype=np.int64, count=len(text))


def edit_distance(a: str, b: str) -> int:
    """Levenshtein distance (unit cost insert, delete, substitute)."""
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)

    # Keep the row along the longer string for better vectorization.
    if len(b) < len(a):
        a, b = b, a

    b_codes = _codepoints(b)
    offsets = np.arange(len(b) + 1, dtype=np.int64)
    prev = offsets.copy()

    for i, ch in enumerate(a, start=1):
        cost = (b_codes != ord(ch)).astype(np.int64)
        row = np.empty_like(prev)
        row[0] = i
        row[1:] = np.minimum(prev[1:] + 1, prev[:-1] + cost)
        row = np.minimum.accumulate(row - offsets) + offsets
        prev = row

    return int(prev[-1])


def text_similarity(a: str, b: str) -> float:
    """Return normalized similarity in [0, 1].

    Args:
        a: First string.
        b: Second string.

    Returns:
        1.0 for identical strings, 0.0 when exactly one side is empty.
    """
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longest = max(len(a), len(b))
    return 1.0 - edit_distance(a, b) / longest
