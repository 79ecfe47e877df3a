"""Common domain types."""
from datetime import datetime, timezone
from uuid import uuid4


def generate_id() -> str:
    """Generate a new UUID string."""
    return str(uuid4())


def utcnow() -> datetime:
    """Naive UTC now (all DateTime columns are stored as naive UTC)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


class Timestamped:
    """Mixin for timestamped entities."""
    created_at: datetime
    updated_at: datetime
