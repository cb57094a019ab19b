"""
In-memory walk request storage for the Little Walk service.

This module provides MemoryStore, an asyncio implementation of the
WalkRequestRepository port. It evaluates the same predicates and partial
updates a document database would, including spherical proximity search,
so it can back the HTTP server and the test suite. Persistent backends can
replace it without touching the coordinator.
"""

import asyncio
import math
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Any
from uuid import uuid4

from .models import WalkingLocation, WalkRequest, utcnow
from .repository import (
    Nearby,
    Order,
    Pagination,
    SortBy,
    WalkingLocationCreate,
    WalkRequestCreate,
    WalkRequestQuery,
    WalkRequestRepository,
    WalkRequestUpdate,
)

# Sphere radius used by MongoDB's spherical $geoNear, in meters.
EARTH_RADIUS_METERS = 6_378_100.0


def great_circle_distance(
    longitude1: float, latitude1: float, longitude2: float, latitude2: float
) -> float:
    """Haversine distance between two [longitude, latitude] points, in meters."""
    phi1 = math.radians(latitude1)
    phi2 = math.radians(latitude2)
    dphi = math.radians(latitude2 - latitude1)
    dlambda = math.radians(longitude2 - longitude1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2) ** 2
    )
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(a)))


def _matches(query: WalkRequestQuery, request: WalkRequest) -> bool:
    """Evaluate every non-spatial term of query against request."""
    if query.id is not None and request.id != query.id:
        return False
    if query.created_by is not None and request.created_by != query.created_by:
        return False
    if query.accepted_by is not None and request.accepted_by != query.accepted_by:
        return False
    if query.accepted_by_neq is not None and request.accepted_by == query.accepted_by_neq:
        return False
    if query.accepted_by_is_null is not None:
        if (request.accepted_by is None) != query.accepted_by_is_null:
            return False
    if query.canceled_at_is_null is not None:
        if (request.canceled_at is None) != query.canceled_at_is_null:
            return False

    dog_ids = {dog.id for dog in request.dogs}
    if query.dog_ids_includes_any is not None and not dog_ids & query.dog_ids_includes_any:
        return False
    if query.dog_ids_includes_all is not None and not query.dog_ids_includes_all <= dog_ids:
        return False
    if (
        query.acceptances_includes_any is not None
        and not request.acceptances & query.acceptances_includes_any
    ):
        return False
    if (
        query.acceptances_includes_all is not None
        and not query.acceptances_includes_all <= request.acceptances
    ):
        return False
    return True


def _distance_from(nearby: Nearby, request: WalkRequest) -> float:
    return great_circle_distance(
        nearby.longitude, nearby.latitude, request.longitude, request.latitude
    )


def _apply(request: WalkRequest, update: WalkRequestUpdate, now: datetime) -> WalkRequest:
    """Return a copy of request with update applied."""
    changes: dict[str, Any] = {"updated_at": now}
    for name in ("accepted_by", "accepted_at", "canceled_at", "started_at", "finished_at"):
        value = getattr(update, name)
        if value is not None:
            changes[name] = value
    if update.unset_accepted_by:
        changes["accepted_by"] = None
    if update.unset_accepted_at:
        changes["accepted_at"] = None

    acceptances = set(request.acceptances)
    if update.add_to_acceptances is not None:
        acceptances.add(update.add_to_acceptances)
    if update.remove_from_acceptances is not None:
        acceptances.discard(update.remove_from_acceptances)
    changes["acceptances"] = frozenset(acceptances)

    return request.model_copy(update=changes)


def _sort_key(field: str) -> Callable[[WalkRequest], tuple[bool, Any]]:
    # Nulls order before any value, as in a document database.
    def key(request: WalkRequest) -> tuple[bool, Any]:
        value = getattr(request, field)
        return (value is not None, value)

    return key


class MemoryStore(WalkRequestRepository):
    """
    In-memory walk request storage with atomic conditional updates.

    A single asyncio lock is held while a predicate is evaluated and its
    update applied, so each conditional update sees the latest state and no
    two of them interleave. Insertion order is kept, which makes unsorted
    results deterministic.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow) -> None:
        self._clock = clock
        self._walk_requests: dict[str, WalkRequest] = {}
        self._walking_locations: dict[str, list[WalkingLocation]] = {}
        self._lock = asyncio.Lock()

    async def create_walk_request(self, create: WalkRequestCreate) -> str:
        async with self._lock:
            now = self._clock()
            request = WalkRequest(
                id=uuid4().hex,
                dogs=create.dogs,
                should_start_after=create.should_start_after,
                should_start_before=create.should_start_before,
                should_end_after=create.should_end_after,
                should_end_before=create.should_end_before,
                longitude=create.longitude,
                latitude=create.latitude,
                created_by=create.created_by,
                created_at=now,
                updated_at=now,
            )
            self._walk_requests[request.id] = request
            return request.id

    async def get_walk_request(self, walk_request_id: str) -> WalkRequest | None:
        async with self._lock:
            return self._walk_requests.get(walk_request_id)

    async def update_walk_request_by_query(
        self, query: WalkRequestQuery, update: WalkRequestUpdate
    ) -> WalkRequest | None:
        async with self._lock:
            for request in self._select(query):
                updated = _apply(request, update, self._clock())
                self._walk_requests[updated.id] = updated
                return updated
            return None

    async def update_walk_requests_by_query(
        self, query: WalkRequestQuery, update: WalkRequestUpdate
    ) -> int:
        async with self._lock:
            matched = list(self._select(query))
            now = self._clock()
            for request in matched:
                self._walk_requests[request.id] = _apply(request, update, now)
            return len(matched)

    async def query_walk_requests(
        self,
        query: WalkRequestQuery,
        sort_by: SortBy | None = None,
        pagination: Pagination | None = None,
    ) -> list[WalkRequest]:
        async with self._lock:
            results = list(self._select(query))

        if query.nearby is not None:
            results = [
                request.model_copy(update={"distance": _distance_from(query.nearby, request)})
                for request in results
            ]
        if sort_by is not None:
            results.sort(key=_sort_key(sort_by.field), reverse=sort_by.order is Order.DESC)
        if pagination is not None:
            results = results[pagination.skip : pagination.skip + pagination.limit]
        return results

    async def create_walking_location(self, create: WalkingLocationCreate) -> str:
        async with self._lock:
            location = WalkingLocation(
                id=uuid4().hex,
                walk_request_id=create.walk_request_id,
                longitude=create.longitude,
                latitude=create.latitude,
                created_at=self._clock(),
            )
            self._walking_locations.setdefault(create.walk_request_id, []).append(location)
            return location.id

    async def query_walking_locations(self, walk_request_id: str) -> list[WalkingLocation]:
        async with self._lock:
            locations = list(self._walking_locations.get(walk_request_id, []))
        return sorted(locations, key=lambda location: location.created_at)

    def _select(self, query: WalkRequestQuery) -> Iterator[WalkRequest]:
        """Yield stored walk requests matching query, including its proximity clause."""
        if query.id is not None:
            candidates = [self._walk_requests[query.id]] if query.id in self._walk_requests else []
        else:
            candidates = list(self._walk_requests.values())

        for request in candidates:
            if not _matches(query, request):
                continue
            if query.nearby is not None and _distance_from(query.nearby, request) > query.nearby.radius:
                continue
            yield request
