from typing import Generic, Sequence, TypeVar

from pydantic import BaseModel

T = TypeVar("T")


class PaginationMeta(BaseModel):
    total: int
    limit: int
    offset: int
    has_more: bool


class PaginatedResponse(BaseModel, Generic[T]):
    """A page of list results plus where it sits in the full list."""
    items: list[T]
    pagination: PaginationMeta

    @classmethod
    def slice(cls, rows: Sequence[T], *, limit: int, offset: int) -> "PaginatedResponse[T]":
        items = list(rows[offset: offset + limit])
        return cls(
            items=items,
            pagination=PaginationMeta(
                total=len(rows),
                limit=limit,
                offset=offset,
                has_more=offset + len(items) < len(rows),
            ),
        )
