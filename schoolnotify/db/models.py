"""SQLAlchemy ORM models for the notification pipeline.

Tables:
- notification_state: one serialized JSON blob per logical key
  (queue, digest lists, delivery history, recipient preferences)
"""

from sqlalchemy import Column, DateTime, LargeBinary, String, func

from schoolnotify.db.base import Base


class NotificationState(Base):
    """Wholesale-rewritten state blob for one pipeline component."""

    __tablename__ = "notification_state"

    key = Column(String(255), primary_key=True)
    value = Column(LargeBinary, nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=func.now(), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<NotificationState({self.key}, {len(self.value or b'')} bytes)>"
