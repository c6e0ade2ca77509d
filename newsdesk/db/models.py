"""
Database models for the newsdesk service.
Defines SQLAlchemy models for topic tabs and per-user API keys.
"""

import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Optional
from sqlalchemy import (
    Column, Integer, String, Text, DateTime, Index, UniqueConstraint
)
from sqlalchemy.orm import declarative_base, Mapped

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return str(uuid.uuid4())


def _isoformat(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


class Tab(Base):
    """
    A user-owned news topic with its own refresh state and display position.
    """
    __tablename__ = "tabs"

    id: Mapped[str] = Column(String(36), primary_key=True, default=_new_id)
    user_id: Mapped[str] = Column(String(64), nullable=False, index=True)
    topic: Mapped[str] = Column(Text, nullable=False, default="")
    last_refreshed_at: Mapped[Optional[datetime]] = Column(DateTime(timezone=True), nullable=True)
    display_order: Mapped[int] = Column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    __table_args__ = (
        UniqueConstraint("user_id", "display_order", name="uq_tabs_user_display_order"),
        Index("idx_tabs_user_order", "user_id", "display_order"),
    )

    def to_dict(self) -> Dict[str, Any]:
        """Serialize using the stored column names."""
        return {
            "id": self.id,
            "user_id": self.user_id,
            "topic": self.topic,
            "last_refreshed_at": _isoformat(self.last_refreshed_at),
            "display_order": self.display_order,
            "created_at": _isoformat(self.created_at),
            "updated_at": _isoformat(self.updated_at),
        }

    def __repr__(self) -> str:
        return f"<Tab(id={self.id}, topic='{self.topic[:50]}', order={self.display_order})>"


class UserApiKey(Base):
    """
    Encrypted provider API key, at most one row per user.
    """
    __tablename__ = "user_api_keys"

    id: Mapped[int] = Column(Integer, primary_key=True, autoincrement=True)
    user_id: Mapped[str] = Column(String(64), unique=True, nullable=False, index=True)
    encrypted_api_key: Mapped[str] = Column(Text, nullable=False)

    created_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = Column(DateTime(timezone=True), default=utcnow, onupdate=utcnow, nullable=False)

    def __repr__(self) -> str:
        return f"<UserApiKey(user_id={self.user_id})>"
