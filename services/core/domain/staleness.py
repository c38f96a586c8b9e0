"""Cache staleness rule shared by every summary consumer."""
from datetime import datetime, timezone
from typing import Optional


def _as_utc(value: datetime) -> datetime:
    # SQLite отдаёт naive datetime
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def is_stale(generated_at: Optional[datetime], updated_at: Optional[datetime]) -> bool:
    """
    A cached artifact is stale iff the source was updated strictly after
    it was generated. Never generated means stale; an unknown source
    update time means fresh.
    """
    if generated_at is None:
        return True
    if updated_at is None:
        return False
    return _as_utc(updated_at) > _as_utc(generated_at)
