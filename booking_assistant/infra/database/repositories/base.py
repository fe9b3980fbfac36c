"""Shared persistence helpers for the booking repositories."""
from __future__ import annotations

from typing import Any, ClassVar, Generic, List, Mapping, Optional, Sequence, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession

ModelT = TypeVar("ModelT")


class BaseRepository(Generic[ModelT]):
    """Thin wrapper over one mapped class. Writes flush but never commit;
    the caller's unit of work decides that."""

    model: ClassVar[type]

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    def _build(self, values: Mapping[str, Any]) -> ModelT:
        return self.model(**dict(values))  # type: ignore[return-value]

    async def get_by_id(self, key: Any) -> Optional[ModelT]:
        return await self.session.get(self.model, key)  # type: ignore[return-value]

    async def create(self, values: Mapping[str, Any]) -> ModelT:
        row = self._build(values)
        self.session.add(row)
        await self.session.flush()
        # Pick up server-side values such as seq and created_at.
        await self.session.refresh(row)
        return row

    async def bulk_create(self, rows: Sequence[Mapping[str, Any]]) -> List[ModelT]:
        built = [self._build(values) for values in rows]
        if built:
            self.session.add_all(built)
            await self.session.flush()
        return built
