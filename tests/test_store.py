"""
Tests for the MemoryStore persistence backend.

These tests verify predicate evaluation, atomic conditional updates,
proximity search, sorting and pagination.
"""

import pytest
from pydantic import ValidationError

from little_walk.errors import InvalidInputError
from little_walk.repository import (
    Nearby,
    Order,
    Pagination,
    SortBy,
    WalkingLocationCreate,
    WalkRequestCreate,
    WalkRequestQuery,
    WalkRequestUpdate,
)
from little_walk.store import MemoryStore, great_circle_distance

from tests.factories import FakeClock, make_dog


def _create(owner: str = "owner-1", longitude: float = 0.0, latitude: float = 0.0, dogs=None):
    return WalkRequestCreate(
        dogs=dogs or (make_dog(owner_id=owner),),
        longitude=longitude,
        latitude=latitude,
        created_by=owner,
    )


class TestMemoryStore:
    """Test suite for MemoryStore functionality."""

    def setup_method(self):
        """Set up a fresh MemoryStore for each test."""
        self.clock = FakeClock()
        self.store = MemoryStore(clock=self.clock)

    async def test_create_and_get(self):
        request_id = await self.store.create_walk_request(_create(longitude=2.35, latitude=48.85))
        request = await self.store.get_walk_request(request_id)

        assert request is not None
        assert request.id == request_id
        assert request.created_by == "owner-1"
        assert (request.longitude, request.latitude) == (2.35, 48.85)
        assert request.created_at == request.updated_at
        assert request.accepted_by is None
        assert request.acceptances == frozenset()
        assert request.distance is None

    async def test_get_unknown_returns_none(self):
        assert await self.store.get_walk_request("missing") is None

    async def test_conditional_update_one_applies_when_predicate_holds(self):
        request_id = await self.store.create_walk_request(_create())
        now = self.clock()

        updated = await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=request_id, accepted_by_is_null=True),
            WalkRequestUpdate(accepted_by="walker-1", accepted_at=now),
        )

        assert updated is not None
        assert updated.accepted_by == "walker-1"
        assert updated.accepted_at == now
        assert updated.updated_at > updated.created_at
        assert await self.store.get_walk_request(request_id) == updated

    async def test_conditional_update_one_returns_none_when_predicate_fails(self):
        request_id = await self.store.create_walk_request(_create())
        before = await self.store.get_walk_request(request_id)

        updated = await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=request_id, accepted_by="walker-1"),
            WalkRequestUpdate(started_at=self.clock()),
        )

        assert updated is None
        assert await self.store.get_walk_request(request_id) == before

    async def test_conditional_update_many_counts_matches(self):
        first = await self.store.create_walk_request(_create())
        await self.store.create_walk_request(_create())

        count = await self.store.update_walk_requests_by_query(
            WalkRequestQuery(id=first), WalkRequestUpdate(canceled_at=self.clock())
        )
        assert count == 1

        count = await self.store.update_walk_requests_by_query(
            WalkRequestQuery(id=first, canceled_at_is_null=True),
            WalkRequestUpdate(canceled_at=self.clock()),
        )
        assert count == 0

    async def test_acceptances_add_is_idempotent_and_remove_tolerates_absence(self):
        request_id = await self.store.create_walk_request(_create())
        query = WalkRequestQuery(id=request_id)

        await self.store.update_walk_request_by_query(query, WalkRequestUpdate(add_to_acceptances="w1"))
        updated = await self.store.update_walk_request_by_query(
            query, WalkRequestUpdate(add_to_acceptances="w1")
        )
        assert updated.acceptances == frozenset({"w1"})

        count = await self.store.update_walk_requests_by_query(
            query, WalkRequestUpdate(remove_from_acceptances="w2")
        )
        assert count == 1
        assert (await self.store.get_walk_request(request_id)).acceptances == frozenset({"w1"})

    async def test_unset_flags_clear_the_claim(self):
        request_id = await self.store.create_walk_request(_create())
        query = WalkRequestQuery(id=request_id)
        await self.store.update_walk_request_by_query(
            query, WalkRequestUpdate(accepted_by="w1", accepted_at=self.clock(), add_to_acceptances="w1")
        )

        updated = await self.store.update_walk_request_by_query(
            query,
            WalkRequestUpdate(unset_accepted_by=True, unset_accepted_at=True, remove_from_acceptances="w1"),
        )

        assert updated.accepted_by is None
        assert updated.accepted_at is None
        assert updated.acceptances == frozenset()

    async def test_accepted_by_neq_matches_unclaimed(self):
        request_id = await self.store.create_walk_request(_create())

        matches = await self.store.query_walk_requests(WalkRequestQuery(accepted_by_neq="w1"))
        assert [r.id for r in matches] == [request_id]

        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=request_id), WalkRequestUpdate(accepted_by="w1")
        )
        assert await self.store.query_walk_requests(WalkRequestQuery(accepted_by_neq="w1")) == []
        assert len(await self.store.query_walk_requests(WalkRequestQuery(accepted_by_neq="w2"))) == 1

    async def test_accepted_by_conditions_combine(self):
        request_id = await self.store.create_walk_request(_create())
        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=request_id), WalkRequestUpdate(accepted_by="w1")
        )

        query = WalkRequestQuery(accepted_by="w1", accepted_by_is_null=True)
        assert await self.store.query_walk_requests(query) == []

    async def test_dog_and_acceptance_membership_filters(self):
        both = await self.store.create_walk_request(
            _create(dogs=(make_dog("d1"), make_dog("d2", name="Fido")))
        )
        only_first = await self.store.create_walk_request(_create(dogs=(make_dog("d1"),)))
        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=both), WalkRequestUpdate(add_to_acceptances="w1")
        )
        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=both), WalkRequestUpdate(add_to_acceptances="w2")
        )
        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=only_first), WalkRequestUpdate(add_to_acceptances="w2")
        )

        async def ids(**terms):
            return {r.id for r in await self.store.query_walk_requests(WalkRequestQuery(**terms))}

        assert await ids(dog_ids_includes_any=["d2", "d9"]) == {both}
        assert await ids(dog_ids_includes_all=["d1"]) == {both, only_first}
        assert await ids(dog_ids_includes_all=["d1", "d2"]) == {both}
        assert await ids(acceptances_includes_any=["w2"]) == {both, only_first}
        assert await ids(acceptances_includes_all=["w1", "w2"]) == {both}
        assert await ids(acceptances_includes_any=["w3"]) == set()

    async def test_nearby_filters_by_radius_and_sets_distance(self):
        at_origin = await self.store.create_walk_request(_create(longitude=0.0, latitude=0.0))
        far_away = await self.store.create_walk_request(_create(longitude=10.0, latitude=10.0))
        close_by = await self.store.create_walk_request(_create(longitude=0.005, latitude=0.0))

        results = await self.store.query_walk_requests(
            WalkRequestQuery(nearby=Nearby(longitude=0.0, latitude=0.0, radius=1000.0))
        )

        by_id = {r.id: r for r in results}
        assert set(by_id) == {at_origin, close_by}
        assert far_away not in by_id
        assert by_id[at_origin].distance == pytest.approx(0.0)
        assert by_id[close_by].distance == pytest.approx(556.6, rel=1e-3)

    async def test_nearby_combines_with_other_terms(self):
        await self.store.create_walk_request(_create(owner="owner-1"))
        other = await self.store.create_walk_request(_create(owner="owner-2"))

        results = await self.store.query_walk_requests(
            WalkRequestQuery(
                created_by="owner-2", nearby=Nearby(longitude=0.0, latitude=0.0, radius=10.0)
            )
        )
        assert [r.id for r in results] == [other]

    async def test_sort_then_paginate(self):
        ids = [await self.store.create_walk_request(_create()) for _ in range(5)]

        newest_first = await self.store.query_walk_requests(
            WalkRequestQuery(),
            sort_by=SortBy(field="created_at", order=Order.DESC),
            pagination=Pagination(skip=1, limit=2),
        )
        assert [r.id for r in newest_first] == [ids[3], ids[2]]

        unsorted = await self.store.query_walk_requests(
            WalkRequestQuery(), pagination=Pagination(skip=3, limit=10)
        )
        assert [r.id for r in unsorted] == ids[3:]

    async def test_sort_places_nulls_first_ascending(self):
        first = await self.store.create_walk_request(_create())
        second = await self.store.create_walk_request(_create())
        await self.store.update_walk_request_by_query(
            WalkRequestQuery(id=first), WalkRequestUpdate(started_at=self.clock())
        )

        ascending = await self.store.query_walk_requests(
            WalkRequestQuery(), sort_by=SortBy(field="started_at", order=Order.ASC)
        )
        descending = await self.store.query_walk_requests(
            WalkRequestQuery(), sort_by=SortBy(field="started_at", order=Order.DESC)
        )

        assert [r.id for r in ascending] == [second, first]
        assert [r.id for r in descending] == [first, second]

    async def test_walking_locations_are_appended_per_request(self):
        request_id = await self.store.create_walk_request(_create())
        other_id = await self.store.create_walk_request(_create())

        first = await self.store.create_walking_location(
            WalkingLocationCreate(walk_request_id=request_id, longitude=0.1, latitude=0.1)
        )
        second = await self.store.create_walking_location(
            WalkingLocationCreate(walk_request_id=request_id, longitude=0.2, latitude=0.2)
        )
        await self.store.create_walking_location(
            WalkingLocationCreate(walk_request_id=other_id, longitude=5.0, latitude=5.0)
        )

        trail = await self.store.query_walking_locations(request_id)
        assert [location.id for location in trail] == [first, second]
        assert trail[0].created_at < trail[1].created_at
        assert await self.store.query_walking_locations("missing") == []


class TestPortShapes:
    """Validation rules of the predicate and update value types."""

    def test_great_circle_distance_one_degree_at_equator(self):
        assert great_circle_distance(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_318.8, rel=1e-4)
        assert great_circle_distance(10.0, 10.0, 10.0, 10.0) == 0.0

    def test_nearby_from_triple(self):
        nearby = Nearby.from_triple([1.5, 2.5, 300.0])
        assert (nearby.longitude, nearby.latitude, nearby.radius) == (1.5, 2.5, 300.0)

    @pytest.mark.parametrize("values", [[], [0.0, 0.0], [0.0, 0.0, 1.0, 2.0]])
    def test_nearby_requires_exactly_three_values(self, values):
        with pytest.raises(InvalidInputError):
            Nearby.from_triple(values)

    @pytest.mark.parametrize("values", [[181.0, 0.0, 1.0], [0.0, -91.0, 1.0], [0.0, 0.0, -5.0]])
    def test_nearby_rejects_out_of_range_values(self, values):
        with pytest.raises(InvalidInputError) as excinfo:
            Nearby.from_triple(values)
        assert isinstance(excinfo.value.__cause__, ValidationError)

    def test_update_cannot_set_and_unset_the_same_field(self):
        with pytest.raises(ValidationError):
            WalkRequestUpdate(accepted_by="w1", unset_accepted_by=True)
        with pytest.raises(ValidationError):
            WalkRequestUpdate(add_to_acceptances="w1", remove_from_acceptances="w1")

    def test_create_requires_a_dog(self):
        with pytest.raises(ValidationError):
            WalkRequestCreate(dogs=(), longitude=0.0, latitude=0.0, created_by="owner-1")
