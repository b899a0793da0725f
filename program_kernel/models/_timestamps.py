from datetime import datetime, timezone


def as_utc(value: datetime | None) -> datetime | None:
    """Reattach UTC to timestamps read back from backends that drop tzinfo."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)
