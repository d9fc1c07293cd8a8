from datetime import datetime


def overlaps(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """Half-open interval test: [a_start, a_end) against [b_start, b_end).

    Intervals that only touch (a_end == b_start) do not overlap, so a rental
    ending at 10:00 and another starting at 10:00 can share a vehicle.
    """
    return a_start < b_end and a_end > b_start
