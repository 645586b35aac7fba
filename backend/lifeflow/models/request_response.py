"""RequestResponse ORM — one donor's reply to one blood request.

Invariants:
    - request_id references blood_requests.id; the row belongs to exactly one request
    - confirmation_code is unique per response
"""

from datetime import datetime, timezone

from sqlalchemy import String, Integer, DateTime, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from lifeflow.db.base import Base


class RequestResponseRow(Base):
    __tablename__ = "request_responses"
    __table_args__ = (
        Index("idx_request_responses_request_id", "request_id"),
        Index("idx_request_responses_donor_id", "donor_id"),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    request_id: Mapped[str] = mapped_column(
        String(50), ForeignKey("blood_requests.id", ondelete="CASCADE"), nullable=False,
    )
    donor_id: Mapped[str] = mapped_column(String(50), nullable=False)
    hospital_id: Mapped[str] = mapped_column(String(50), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING")
    match_score: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    confirmation_code: Mapped[str] = mapped_column(String(50), nullable=False, unique=True)
    eta_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    scheduled_pickup_time: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    confirmed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    rejection_reason: Mapped[str | None] = mapped_column(String(500), nullable=True)
    blood_bag_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
