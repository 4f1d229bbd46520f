"""
Recency weighting: the only time-dependent term of the ranking.
"""

import math
import sys
from datetime import datetime

from ..utils.timestamp_utils import age_in_days


def temporal_score(created_at: datetime, decay_factor: float, now: datetime) -> float:
    """Exponential decay of a memory's age in days, kept within (0, 1].

    A memory created at ``now`` (or in the future) scores 1. Very old memories
    never reach 0; the result bottoms out at the smallest positive float.
    """
    if not decay_factor > 0:
        raise ValueError(f'decay_factor must be > 0, got {decay_factor}')

    age = age_in_days(created_at, now)
    if age <= 0:
        return 1.0
    return min(1.0, max(math.exp(-decay_factor * age), sys.float_info.min))
