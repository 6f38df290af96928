from datetime import UTC, datetime


def as_utc(value: datetime | None) -> datetime | None:
    """Attach UTC to naive datetimes handed back by some providers."""
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value
