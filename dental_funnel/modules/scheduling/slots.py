from datetime import date, timedelta
from dental_funnel.platform.ports.scheduling import SlotDay


def next_business_days(start: date, count: int) -> list[date]:
    """The `count` weekdays strictly after `start`."""
    days = []
    current = start
    while len(days) < count:
        current += timedelta(days=1)
        if current.weekday() < 5:
            days.append(current)
    return days


def placeholder_slots(start: date, times: tuple[str, ...], business_days: int = 5) -> list[SlotDay]:
    return [SlotDay(date=d.isoformat(), times=list(times)) for d in next_business_days(start, business_days)]
