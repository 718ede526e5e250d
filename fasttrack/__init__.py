"""
Fast-Track Schedule Engine
==========================
Critical path scheduling (PDM, Activity-on-Node) with FS/SS/FF/SF logic and
lags, fast-track opportunity analysis and validated field updates.
"""

from .api import (
    compute_schedule,
    get_fast_track_opportunities,
    implement_fast_track,
    validate_and_commit,
)
from .schedule import Schedule

__all__ = [
    "Schedule",
    "compute_schedule",
    "get_fast_track_opportunities",
    "implement_fast_track",
    "validate_and_commit",
]
