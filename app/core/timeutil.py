import math
from datetime import datetime, timedelta, timezone

DAY = timedelta(days=1)


def utcnow() -> datetime:
    """Naive UTC; every datetime column stores naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta / DAY)
