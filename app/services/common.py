from datetime import UTC, datetime
from uuid import UUID

from app.services.crm.inbox.errors import InboxValidationError


def now_utc() -> datetime:
    return datetime.now(UTC)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a datetime to aware UTC; SQLite hands back naive values."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def from_epoch_ms(value: int | None) -> datetime | None:
    if value is None:
        return None
    return datetime.fromtimestamp(value / 1000, tz=UTC)


def coerce_uuid(value, field: str = "id") -> UUID:
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except (TypeError, ValueError) as exc:
        raise InboxValidationError("invalid_id", f"Invalid {field}: {value}") from exc


def apply_pagination(query, limit: int, offset: int):
    return query.limit(limit).offset(offset)
