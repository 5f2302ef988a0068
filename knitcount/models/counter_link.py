"""SQLAlchemy model for directed links between counters."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, String, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..db.session import Base


class CounterLinkModel(Base):
    """Conditional edge: when the source satisfies the trigger, act on the target."""

    __tablename__ = "counter_links"
    __table_args__ = (
        UniqueConstraint("source_counter_id", "target_counter_id", name="uq_counter_links_pair"),
    )

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    project_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("projects.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    source_counter_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("counters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    target_counter_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("counters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    link_type: Mapped[str] = mapped_column(String(50), nullable=False)
    trigger_condition: Mapped[dict] = mapped_column(JSON, nullable=False)
    action: Mapped[dict] = mapped_column(JSON, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
