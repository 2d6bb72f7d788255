"""
Derived clinical metrics.

Pure functions over stored measurements. Nothing here touches the
database; results are computed on read and never persisted.
"""
from enum import Enum
from typing import Optional

GOOD_RETENTION_THRESHOLD = 70.0
STANDARD_RETENTION_THRESHOLD = 50.0

PRE_OPERATIVE_TIMING = '術前'

# (first day, last day, label) of the follow-up windows used by the practice
TIMING_WINDOWS = (
    (0, 10, '1W'),
    (25, 35, '1M'),
    (80, 100, '3M'),
    (170, 190, '6M'),
    (350, 380, '12M'),
)


class RetentionBand(str, Enum):
    """Display band of a fat-graft retention rate."""
    GOOD = 'good'
    STANDARD = 'standard'
    NEEDS_OBSERVATION = 'needs_observation'

    @property
    def label(self):
        return {
            RetentionBand.GOOD: '良好',
            RetentionBand.STANDARD: '標準',
            RetentionBand.NEEDS_OBSERVATION: '要観察',
        }[self]


def compute_bmi(height_cm: Optional[float], weight_kg: Optional[float]) -> Optional[float]:
    """
    Body-mass index from height in centimetres and weight in kilograms.

    Returns None unless both inputs are present and height is positive.
    """
    if height_cm is None or weight_kg is None or height_cm <= 0:
        return None
    height_m = height_cm / 100.0
    return weight_kg / (height_m * height_m)


def compute_retention_rate(
    post_op_volume: Optional[float],
    pre_op_volume: Optional[float],
    injected_volume: Optional[float],
) -> Optional[float]:
    """
    Fat-graft retention rate for one side, in percent.

    (post-op volume - pre-op volume) / injected volume * 100. Returns None
    unless the injected volume is positive and both volumes are known.
    Left and right are always computed separately.
    """
    if injected_volume is None or injected_volume <= 0:
        return None
    if post_op_volume is None or pre_op_volume is None:
        return None
    return (post_op_volume - pre_op_volume) / injected_volume * 100


def classify_retention_rate(rate: float) -> RetentionBand:
    """Band a retention rate; each band includes its lower bound."""
    if rate >= GOOD_RETENTION_THRESHOLD:
        return RetentionBand.GOOD
    if rate >= STANDARD_RETENTION_THRESHOLD:
        return RetentionBand.STANDARD
    return RetentionBand.NEEDS_OBSERVATION


def estimate_timing(days_after_surgery: int) -> str:
    """Follow-up timing label for a number of days after surgery."""
    if days_after_surgery < 0:
        return PRE_OPERATIVE_TIMING
    for first_day, last_day, label in TIMING_WINDOWS:
        if first_day <= days_after_surgery <= last_day:
            return label
    return f"Day {days_after_surgery}"
