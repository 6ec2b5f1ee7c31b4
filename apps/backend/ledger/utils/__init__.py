"""
Utils package
"""

from .periods import add_months, clamp_day, period_bounds, period_end, period_start

__all__ = [
    "add_months",
    "clamp_day",
    "period_bounds",
    "period_end",
    "period_start",
]
