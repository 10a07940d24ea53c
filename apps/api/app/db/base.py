from datetime import datetime, timezone

from sqlalchemy.orm import DeclarativeBase

from app.db.types import UTCDateTime


def utcnow() -> datetime:
    """Timezone-aware current UTC time (column default)."""
    return datetime.now(timezone.utc)


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""
    type_annotation_map = {
        datetime: UTCDateTime(),
    }
