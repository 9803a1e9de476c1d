from decimal import Decimal
from typing import Optional

ZERO_RATE = Decimal("0")


def _rate_of(obj, attr: str) -> Optional[Decimal]:
    if obj is None:
        return None
    value = getattr(obj, attr, None)
    if value is None:
        return None
    return Decimal(str(value))


def resolve_hourly_rate(task=None, project=None, user=None) -> Decimal:
    """Return the rate to freeze onto an entry.

    Priority is task override, then project, then the user's default, then 0.
    Accepts ORM rows or any object exposing the same attribute names; missing
    inputs simply fall through.
    """
    for obj, attr in (
        (task, "hourly_rate"),
        (project, "hourly_rate"),
        (user, "default_hourly_rate"),
    ):
        rate = _rate_of(obj, attr)
        if rate is not None:
            return rate
    return ZERO_RATE
