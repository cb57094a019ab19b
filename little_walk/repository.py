"""
Persistence port for walk requests.

The lifecycle coordinator never locks anything itself. It expresses each
transition as a predicate (WalkRequestQuery) plus a partial update
(WalkRequestUpdate) and relies on the backend applying the pair atomically
per document. Any backend honouring that contract can implement
WalkRequestRepository; little_walk.store.MemoryStore is the in-process one.
"""

from abc import ABC, abstractmethod
from collections.abc import Sequence
from enum import Enum
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator

from .errors import InvalidInputError
from .models import Dog, UtcDatetime, WalkingLocation, WalkRequest

SortField = Literal[
    "created_at",
    "updated_at",
    "accepted_at",
    "canceled_at",
    "started_at",
    "finished_at",
    "distance",
]


class Order(str, Enum):
    ASC = "asc"
    DESC = "desc"


class SortBy(BaseModel):
    """Single-field sort specification."""

    model_config = ConfigDict(frozen=True)

    field: SortField
    order: Order = Order.ASC


class Pagination(BaseModel):
    model_config = ConfigDict(frozen=True)

    skip: int = Field(0, ge=0)
    limit: int = Field(20, ge=1)


class Nearby(BaseModel):
    """Proximity clause: origin point plus radius in meters."""

    model_config = ConfigDict(frozen=True)

    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    radius: float = Field(..., ge=0)

    @classmethod
    def from_triple(cls, values: Sequence[float]) -> "Nearby":
        """
        Build a proximity clause from an [longitude, latitude, radius] triple.

        Raises:
            InvalidInputError: If values is not exactly three numbers in range
        """
        if len(values) != 3:
            raise InvalidInputError(
                f"invalid nearby query, expected [longitude, latitude, radius], got {list(values)}"
            )
        longitude, latitude, radius = values
        try:
            return cls(longitude=longitude, latitude=latitude, radius=radius)
        except ValidationError as exc:
            raise InvalidInputError(f"invalid nearby query: {exc}") from exc


class WalkRequestQuery(BaseModel):
    """
    Conjunctive predicate over walk requests.

    Every field left at None is ignored; all others must hold at once. The
    accepted_by conditions combine rather than override each other.
    """

    model_config = ConfigDict(frozen=True)

    id: str | None = None
    created_by: str | None = None
    accepted_by: str | None = None
    accepted_by_neq: str | None = None
    accepted_by_is_null: bool | None = None
    canceled_at_is_null: bool | None = None
    dog_ids_includes_any: frozenset[str] | None = None
    dog_ids_includes_all: frozenset[str] | None = None
    acceptances_includes_any: frozenset[str] | None = None
    acceptances_includes_all: frozenset[str] | None = None
    nearby: Nearby | None = None


class WalkRequestUpdate(BaseModel):
    """
    Partial update of a walk request's claim and lifecycle state.

    A field left at None is left unchanged. Clearing the claim uses the
    dedicated unset flags, and bid pool membership changes through
    add_to_acceptances / remove_from_acceptances.
    """

    model_config = ConfigDict(frozen=True)

    accepted_by: str | None = None
    accepted_at: UtcDatetime | None = None
    unset_accepted_by: bool = False
    unset_accepted_at: bool = False
    add_to_acceptances: str | None = None
    remove_from_acceptances: str | None = None
    canceled_at: UtcDatetime | None = None
    started_at: UtcDatetime | None = None
    finished_at: UtcDatetime | None = None

    @model_validator(mode="after")
    def _check_conflicts(self) -> "WalkRequestUpdate":
        if self.accepted_by is not None and self.unset_accepted_by:
            raise ValueError("accepted_by cannot be both set and unset")
        if self.accepted_at is not None and self.unset_accepted_at:
            raise ValueError("accepted_at cannot be both set and unset")
        if (
            self.add_to_acceptances is not None
            and self.add_to_acceptances == self.remove_from_acceptances
        ):
            raise ValueError("cannot add and remove the same acceptance")
        return self


class WalkRequestCreate(BaseModel):
    """Insert payload for a new, waiting walk request."""

    model_config = ConfigDict(frozen=True)

    dogs: tuple[Dog, ...] = Field(..., min_length=1)
    should_start_after: UtcDatetime | None = None
    should_start_before: UtcDatetime | None = None
    should_end_after: UtcDatetime | None = None
    should_end_before: UtcDatetime | None = None
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    created_by: str = Field(..., min_length=1)


class WalkingLocationCreate(BaseModel):
    model_config = ConfigDict(frozen=True)

    walk_request_id: str
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)


class WalkRequestRepository(ABC):
    """
    Storage contract consumed by the coordinator and the listing service.

    Each conditional update must be atomic with respect to every other
    caller: it either applies to the state current at the moment it runs or
    matches nothing.
    """

    @abstractmethod
    async def create_walk_request(self, create: WalkRequestCreate) -> str:
        """Insert a new walk request and return its id."""

    @abstractmethod
    async def get_walk_request(self, walk_request_id: str) -> WalkRequest | None:
        """Return the walk request, or None when it does not exist."""

    @abstractmethod
    async def update_walk_request_by_query(
        self, query: WalkRequestQuery, update: WalkRequestUpdate
    ) -> WalkRequest | None:
        """
        Atomically apply update to at most one walk request matching query.

        Returns:
            The post-update walk request, or None when nothing matched
        """

    @abstractmethod
    async def update_walk_requests_by_query(
        self, query: WalkRequestQuery, update: WalkRequestUpdate
    ) -> int:
        """Atomically apply update to every match and return the match count."""

    @abstractmethod
    async def query_walk_requests(
        self,
        query: WalkRequestQuery,
        sort_by: SortBy | None = None,
        pagination: Pagination | None = None,
    ) -> list[WalkRequest]:
        """
        Return the walk requests matching query.

        When query carries a proximity clause every result has distance set.
        Sorting is applied before skip/limit.
        """

    @abstractmethod
    async def create_walking_location(self, create: WalkingLocationCreate) -> str:
        """Append a location sample and return its id."""

    @abstractmethod
    async def query_walking_locations(self, walk_request_id: str) -> list[WalkingLocation]:
        """Return the samples of one walk request, oldest first."""
