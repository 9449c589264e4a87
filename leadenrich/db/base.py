# leadenrich/db/base.py
from __future__ import annotations

import enum
from datetime import date, datetime, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import DateTime, Integer, MetaData, event
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column
from sqlalchemy.sql import func

# Use naming convention for constraints
convention = {
    "ix": "ix_%(column_0_label)s",
    "uq": "uq_%(table_name)s_%(column_0_name)s",
    "ck": "ck_%(table_name)s_%(constraint_name)s",
    "fk": "fk_%(table_name)s_%(column_0_name)s_%(referred_table_name)s",
    "pk": "pk_%(table_name)s",
}


class Base(DeclarativeBase):
    """Base class for all SQLAlchemy models."""

    metadata = MetaData(naming_convention=convention)

    # Common columns
    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        onupdate=func.now(),
        nullable=False,
    )

    def to_dict(self, exclude: Optional[List[str]] = None) -> Dict[str, Any]:
        """Convert model instance to dictionary."""
        exclude = exclude or []
        result = {}

        for column in self.__table__.columns:
            if column.name in exclude:
                continue
            value = getattr(self, column.key)

            if isinstance(value, (datetime, date)):
                value = value.isoformat()
            elif isinstance(value, enum.Enum):
                value = value.value

            result[column.name] = value

        return result

    def __repr__(self) -> str:
        attrs = []
        for column in self.__table__.columns:
            if column.primary_key or column.name in ["created_at", "updated_at"]:
                continue
            value = getattr(self, column.key)
            if value is not None:
                attrs.append(f"{column.name}={value!r}")

        return f"<{self.__class__.__name__}({', '.join(attrs)})>"


# Event listeners for automatic timestamp updates
@event.listens_for(Base, "before_update", propagate=True)
def receive_before_update(mapper, connection, target):
    """Update updated_at timestamp before update."""
    target.updated_at = datetime.now(timezone.utc)


__all__ = ["Base"]
