"""Turn CloudTurbine text responses into numeric samples.

Responses carry one value per line. Anything that is not a finite number
(blank lines, ``NotFound`` markers, stray text) is dropped rather than
zero-filled, so a sparse response shortens the result instead of corrupting it.
"""

from __future__ import annotations

import math
from typing import List, Optional

import numpy as np


def split_tokens(text: str) -> List[str]:
    if not text:
        return []
    return text.split("\n")


def parse_value(token: str) -> Optional[float]:
    try:
        value = float(token.strip())
    except (TypeError, ValueError):
        return None
    if not math.isfinite(value):
        return None
    return value


def parse_scalar_samples(text: str) -> np.ndarray:
    """Parse a single-channel body into a 1-D array, in response order."""
    values = [v for v in (parse_value(tok) for tok in split_tokens(text)) if v is not None]
    return np.asarray(values, dtype=np.float64)


def parse_paired_samples(text1: str, text2: str) -> np.ndarray:
    """
    Zip two channel bodies line by line into an ``(n, 2)`` array.

    Pairing is positional up to the shorter raw token list; an index where
    either side is unparseable is skipped as a whole. Rows are not matched by
    timestamp: both requests used the same time window.
    """
    tokens1 = split_tokens(text1)
    tokens2 = split_tokens(text2)
    pairs = []
    for tok1, tok2 in zip(tokens1, tokens2):
        x = parse_value(tok1)
        y = parse_value(tok2)
        if x is None or y is None:
            continue
        pairs.append((x, y))
    if not pairs:
        return np.empty((0, 2), dtype=np.float64)
    return np.asarray(pairs, dtype=np.float64)


__all__ = ["parse_paired_samples", "parse_scalar_samples", "parse_value", "split_tokens"]
