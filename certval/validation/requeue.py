"""
Side-channel re-queue signal.

The batch orchestrator has no "re-evaluate this" API; it polls
evaluation_reports and re-runs certificates whose created_at is old enough.
Moving created_at back two calendar years is how a rejection asks for a
fresh evaluation.
"""

from datetime import datetime

REQUEUE_YEARS = 2


def shift_back_years(value: datetime, years: int = REQUEUE_YEARS) -> datetime:
    """
    Same month, day and time-of-day, `years` calendar years earlier.

    Feb 29 has no counterpart in a non-leap target year and rolls over to
    Mar 1.
    """
    target_year = value.year - years
    try:
        return value.replace(year=target_year)
    except ValueError:
        # Feb 29 -> Mar 1
        return value.replace(year=target_year, month=3, day=1)
