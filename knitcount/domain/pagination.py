from __future__ import annotations

from pydantic import BaseModel, Field


class PaginationParams(BaseModel):
    """Offset pagination over newest-first listings such as counter history."""

    limit: int = Field(default=50, ge=1, le=100)
    offset: int = Field(default=0, ge=0)


class PaginationMeta(BaseModel):
    limit: int
    offset: int
    count: int
    total: int
    has_more: bool
    next_offset: int | None = None

    @classmethod
    def for_window(cls, params: PaginationParams, count: int, total: int) -> PaginationMeta:
        """Describe a page of ``count`` items fetched at ``params`` out of ``total``."""

        end = params.offset + count
        next_offset = end if end < total else None
        return cls(
            limit=params.limit,
            offset=params.offset,
            count=count,
            total=total,
            has_more=next_offset is not None,
            next_offset=next_offset,
        )
