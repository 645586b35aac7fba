"""Event Outbox ORM — durable hand-off point for lifecycle events.

Invariants:
    - id is the event_id (publishing the same event twice violates the primary key)
    - topic is derived from the event type (core/lifecycle_events.py)
    - published_at stays NULL until a relay forwards the row to the broker

Design Decisions:
    - Outbox table over a direct broker client: the event is durable as soon as the
      row commits, and subscribers catch up eventually
"""

from datetime import datetime, timezone

from sqlalchemy import String, DateTime, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column

from lifeflow.db.base import Base


class EventOutboxRow(Base):
    __tablename__ = "event_outbox"
    __table_args__ = (
        Index("idx_event_outbox_unpublished", "published_at", "created_at"),
    )

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    topic: Mapped[str] = mapped_column(String(100), nullable=False)
    event_type: Mapped[str] = mapped_column(String(30), nullable=False)
    request_id: Mapped[str] = mapped_column(String(50), nullable=False)
    payload: Mapped[dict] = mapped_column(JSON, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    published_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
