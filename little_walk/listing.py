"""
Read paths over walk requests.

Listings use the same predicate language as the lifecycle verbs. A proximity
clause is part of the predicate, so a nearby search with extra filters runs
as one query at the backend.
"""

from collections.abc import Sequence

from .errors import NotFoundError, backend_errors
from .models import WalkingLocation, WalkRequest
from .repository import (
    Nearby,
    Order,
    Pagination,
    SortBy,
    WalkRequestQuery,
    WalkRequestRepository,
)


class WalkListing:
    """Query service for owners and walkers."""

    def __init__(self, repository: WalkRequestRepository) -> None:
        self._repository = repository

    async def get_walk_request(self, request_id: str) -> WalkRequest:
        with backend_errors("get walk request"):
            request = await self._repository.get_walk_request(request_id)
        if request is None:
            raise NotFoundError(request_id)
        return request

    async def nearby_walk_requests(
        self,
        nearby: Sequence[float],
        pagination: Pagination | None = None,
        sort_by: SortBy | None = None,
    ) -> list[WalkRequest]:
        """
        Unclaimed walk requests within a radius of an origin point.

        Args:
            nearby: [longitude, latitude, radius-in-meters] triple
            pagination: Optional skip/limit window
            sort_by: Optional ordering; without it results come in backend order

        Returns:
            Matching requests, each with distance set

        Raises:
            InvalidInputError: If nearby is not a valid triple
        """
        query = WalkRequestQuery(accepted_by_is_null=True, nearby=Nearby.from_triple(nearby))
        return await self.search_walk_requests(query, sort_by=sort_by, pagination=pagination)

    async def my_walk_requests(
        self, owner_id: str, pagination: Pagination | None = None
    ) -> list[WalkRequest]:
        """An owner's walk requests, newest first."""
        return await self.search_walk_requests(
            WalkRequestQuery(created_by=owner_id),
            sort_by=SortBy(field="created_at", order=Order.DESC),
            pagination=pagination,
        )

    async def search_walk_requests(
        self,
        query: WalkRequestQuery,
        sort_by: SortBy | None = None,
        pagination: Pagination | None = None,
    ) -> list[WalkRequest]:
        with backend_errors("query walk requests"):
            return await self._repository.query_walk_requests(
                query, sort_by=sort_by, pagination=pagination
            )

    async def walk_trail(self, request_id: str) -> list[WalkingLocation]:
        """Location samples of one walk request, oldest first."""
        with backend_errors("query walking locations"):
            if await self._repository.get_walk_request(request_id) is None:
                raise NotFoundError(request_id)
            return await self._repository.query_walking_locations(request_id)
