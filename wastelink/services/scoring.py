# wastelink/services/scoring.py
"""Contamination score scales.

Providers speak a raw 1..10 integer scale, which drives the label buckets and
the alert threshold. Pickups persist a canonical 0..1 score derived from the
raw score once, when the score is attached to a pickup.
"""
import math
from typing import Any, Optional

from pydantic import BaseModel

MIN_RAW, MAX_RAW = 1, 10

LABELS = [
    (1, 2, "Clean"),
    (3, 4, "Low"),
    (5, 7, "Moderate"),
    (8, 10, "High"),
]

class RawScore(BaseModel):
    score: int  # 1..10
    label: str
    rationale: Optional[str] = None

def round_half_up(x: float) -> int:
    return int(math.floor(x + 0.5))

def clamp_raw(x: float) -> int:
    """Round first, then clamp into 1..10."""
    return max(MIN_RAW, min(MAX_RAW, round_half_up(x)))

def label_for(score: int) -> Optional[str]:
    for lo, hi, label in LABELS:
        if lo <= score <= hi:
            return label
    return None

def normalize_external_score(raw: float) -> int:
    """Map a 0..1, 0..100 or 1..10 score onto the 1..10 integer scale."""
    n = float(raw)
    if n <= 1:
        scaled = n * 10
    elif n > 10:
        scaled = n / 10
    else:
        scaled = n
    return clamp_raw(scaled)

def coerce_number(value: Any) -> Optional[float]:
    if value is None or isinstance(value, bool):
        return None
    try:
        n = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(n) or math.isinf(n):
        return None
    return n

def to_canonical(score: int) -> float:
    """Raw 1..10 -> persisted 0..1."""
    return max(0.0, min(1.0, (score - 1) / 9))

def repair_stored_score(stored: float) -> float:
    """Fix a persisted score that was written on the wrong scale.

    Values already in 0..1 come back unchanged, so repeated runs are no-ops.
    """
    if stored > 10:
        fixed = stored / 100
    elif stored > 1:
        fixed = (stored - 1) / 9
    else:
        return stored
    return max(0.0, min(1.0, fixed))
