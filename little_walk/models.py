"""
Shared data models for the Little Walk service.

This module defines the entities moved around by the lifecycle coordinator,
the listing service and the HTTP layer. Every model is frozen: a WalkRequest
carries value snapshots of its dogs taken at creation time, never live
references to the dog records.
"""

from datetime import UTC, datetime
from enum import Enum
from typing import Annotated

from pydantic import AfterValidator, AwareDatetime, BaseModel, ConfigDict, Field, computed_field


def utcnow() -> datetime:
    return datetime.now(UTC)


# Timezone-aware instant, normalised to UTC. Naive datetimes are rejected.
UtcDatetime = Annotated[AwareDatetime, AfterValidator(lambda value: value.astimezone(UTC))]


class Category(str, Enum):
    """Size category of a breed."""

    SMALL = "Small"
    MEDIUM = "Medium"
    LARGE = "Large"
    GIANT = "Giant"


class Gender(str, Enum):
    OTHER = "Other"
    MALE = "Male"
    FEMALE = "Female"


class WalkStatus(str, Enum):
    """Derived lifecycle label of a walk request."""

    CANCELED = "Canceled"
    ACCEPTED = "Accepted"
    STARTED = "Started"
    FINISHED = "Finished"
    WAITING = "Waiting"


class Breed(BaseModel):
    """Immutable breed reference data."""

    model_config = ConfigDict(frozen=True)

    id: str
    category: Category
    name: str


class Dog(BaseModel):
    """A dog as embedded into a walk request."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    gender: Gender = Gender.OTHER
    breed: Breed
    birthday: UtcDatetime
    owner_id: str
    tags: frozenset[str] = Field(default_factory=frozenset)
    portrait_id: str | None = None


def derive_status(
    canceled_at: datetime | None,
    accepted_at: datetime | None,
    started_at: datetime | None,
    finished_at: datetime | None,
) -> WalkStatus:
    """
    Derive the status label from the lifecycle timestamps.

    The first set timestamp wins, tested in the order canceled, accepted,
    started, finished. accepted_at stays set while a walk is under way, so a
    claimed request reports Accepted even after it started or finished.
    """
    if canceled_at is not None:
        return WalkStatus.CANCELED
    if accepted_at is not None:
        return WalkStatus.ACCEPTED
    if started_at is not None:
        return WalkStatus.STARTED
    if finished_at is not None:
        return WalkStatus.FINISHED
    return WalkStatus.WAITING


class WalkRequest(BaseModel):
    """A dog owner's request for someone to walk their dogs."""

    model_config = ConfigDict(frozen=True)

    id: str
    dogs: tuple[Dog, ...] = ()

    # Preferred time window, not enforced.
    should_start_after: UtcDatetime | None = None
    should_start_before: UtcDatetime | None = None
    should_end_after: UtcDatetime | None = None
    should_end_before: UtcDatetime | None = None

    longitude: float
    latitude: float
    distance: float | None = Field(
        None, description="Meters from the query origin, set by proximity queries only"
    )

    created_by: str
    created_at: UtcDatetime
    updated_at: UtcDatetime

    accepted_by: str | None = None
    accepted_at: UtcDatetime | None = None
    acceptances: frozenset[str] = Field(default_factory=frozenset)

    canceled_at: UtcDatetime | None = None
    started_at: UtcDatetime | None = None
    finished_at: UtcDatetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status(self) -> WalkStatus:
        return derive_status(
            self.canceled_at, self.accepted_at, self.started_at, self.finished_at
        )


class WalkingLocation(BaseModel):
    """A breadcrumb sample recorded while a walk is in progress."""

    model_config = ConfigDict(frozen=True)

    id: str
    walk_request_id: str
    longitude: float
    latitude: float
    created_at: UtcDatetime
