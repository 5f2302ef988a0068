"""SQLAlchemy model for counters."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ..db.session import Base


class CounterModel(Base):
    """Persisted counter state, presentation flags and hierarchy position."""

    __tablename__ = "counters"
    __table_args__ = (
        Index("ix_counters_project_sort", "project_id", "sort_order"),
        Index("ix_counters_project_active", "project_id", "is_active"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    parent_counter_id: Mapped[UUID | None] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("counters.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    type: Mapped[str] = mapped_column(String(50), default="row", nullable=False)
    current_value: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    target_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    increment_by: Mapped[int] = mapped_column(Integer, default=1, nullable=False)
    min_value: Mapped[int | None] = mapped_column(Integer, default=0, nullable=True)
    max_value: Mapped[int | None] = mapped_column(Integer, nullable=True)
    increment_pattern: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    # invocation tally for every_n / custom patterns; never exposed to clients
    pattern_tally: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    display_color: Mapped[str] = mapped_column(String(7), default="#3B82F6", nullable=False)
    is_visible: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )

    project = relationship("ProjectModel", back_populates="counters")
