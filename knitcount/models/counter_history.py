"""SQLAlchemy model for the append-only counter history ledger."""

from __future__ import annotations

from datetime import datetime
from uuid import UUID, uuid4

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text, Uuid
from sqlalchemy.orm import Mapped, mapped_column

from ..db.session import Base


class CounterHistoryModel(Base):
    """One value transition of a counter. Rows are inserted, never updated."""

    __tablename__ = "counter_history"
    __table_args__ = (Index("ix_counter_history_counter_sequence", "counter_id", "sequence"),)

    id: Mapped[UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid4)
    counter_id: Mapped[UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("counters.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    sequence: Mapped[int] = mapped_column(Integer, nullable=False)
    old_value: Mapped[int] = mapped_column(Integer, nullable=False)
    new_value: Mapped[int] = mapped_column(Integer, nullable=False)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    user_note: Mapped[str | None] = mapped_column(Text, nullable=True)
    link_id: Mapped[UUID | None] = mapped_column(Uuid(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=False), default=datetime.utcnow, nullable=False
    )
