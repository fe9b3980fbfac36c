"""Review lookup tool."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Protocol, Sequence

from booking_assistant.tools.registry import ToolDefinition

_DEFAULT_LIMIT = 3
_MAX_LIMIT = 10


@dataclass(frozen=True)
class Review:
    vehicle_id: str
    rating: float
    comment: str
    reviewer: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {"rating": self.rating, "comment": self.comment, "reviewer": self.reviewer}


class ReviewSource(Protocol):
    async def reviews_for(self, vehicle_id: str, *, limit: int = _DEFAULT_LIMIT) -> List[Review]:
        ...


class InMemoryReviewSource:
    def __init__(self, reviews: Mapping[str, Sequence[Review]] | None = None) -> None:
        self._reviews = {k: list(v) for k, v in (reviews or {}).items()}

    async def reviews_for(self, vehicle_id: str, *, limit: int = _DEFAULT_LIMIT) -> List[Review]:
        return self._reviews.get(vehicle_id, [])[:limit]


def build_reviews_tool(source: ReviewSource, *, timeout_seconds: float | None = None) -> ToolDefinition:
    async def get_reviews(vehicle_id: str, limit: int = _DEFAULT_LIMIT) -> Dict[str, Any]:
        limit = max(1, min(int(limit), _MAX_LIMIT))
        reviews = await source.reviews_for(vehicle_id, limit=limit)
        average = round(sum(r.rating for r in reviews) / len(reviews), 2) if reviews else None
        return {
            "vehicle_id": vehicle_id,
            "count": len(reviews),
            "average_rating": average,
            "reviews": [r.to_dict() for r in reviews],
        }

    return ToolDefinition(
        name="get_reviews",
        description="Recent guest reviews for one vehicle, by its id.",
        parameters={
            "type": "object",
            "properties": {
                "vehicle_id": {"type": "string"},
                "limit": {"type": "integer", "minimum": 1, "maximum": _MAX_LIMIT},
            },
            "required": ["vehicle_id"],
        },
        handler=get_reviews,
        timeout_seconds=timeout_seconds,
    )
