"""BloodRequest ORM — persists the request aggregate root.

Invariants:
    - id is the domain request id (req-XXXXXXXX), not a surrogate key
    - enum columns store the Enum .value string
    - version increments on every update (optimistic concurrency in the store)

Design Decisions:
    - Indexes on status and deadline: the sweeper scans non-terminal overdue rows
"""

from datetime import datetime, timezone

from sqlalchemy import String, Text, Integer, Float, Boolean, DateTime, Index
from sqlalchemy.orm import Mapped, mapped_column

from lifeflow.db.base import Base


class BloodRequestRow(Base):
    __tablename__ = "blood_requests"
    __table_args__ = (
        Index("idx_blood_requests_status_deadline", "status", "deadline"),
        Index("idx_blood_requests_hospital_id", "hospital_id"),
    )

    id: Mapped[str] = mapped_column(String(50), primary_key=True)
    hospital_id: Mapped[str] = mapped_column(String(50), nullable=False)
    blood_type: Mapped[str] = mapped_column(String(20), nullable=False)
    units_required: Mapped[float] = mapped_column(Float, nullable=False)
    urgency: Mapped[str] = mapped_column(String(20), nullable=False)
    urgency_score: Mapped[int] = mapped_column(Integer, nullable=False)
    patient_age: Mapped[int | None] = mapped_column(Integer, nullable=True)
    patient_condition: Mapped[str | None] = mapped_column(String(500), nullable=True)
    procedure_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    hospital_location: Mapped[str | None] = mapped_column(String(100), nullable=True)
    deadline_minutes: Mapped[int] = mapped_column(Integer, nullable=False)
    deadline: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="PENDING")
    stock_checked: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    donor_search_initiated: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    fulfilled_from_stock: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=False,
    )
    units_delivered: Mapped[float | None] = mapped_column(Float, nullable=True)
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
    fulfilled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancelled_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    cancellation_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    expired_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True,
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
