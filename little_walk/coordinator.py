"""
Walk request lifecycle coordination.

Every mutating verb has the same shape: describe the state the request must
currently be in as a WalkRequestQuery, describe the change as a
WalkRequestUpdate, and hand both to the repository as one atomic conditional
update. A zero-match result means either that the request does not exist or
that somebody else changed it first; one diagnostic read tells the two apart.
No verb locks, retries or queues: concurrent walkers race at the backend and
exactly one conditional update wins.
"""

import logging
from collections.abc import Callable, Sequence
from datetime import datetime
from typing import NoReturn

from pydantic import ValidationError

from .errors import InvalidInputError, NotFoundError, PreconditionFailedError, backend_errors
from .models import Dog, WalkRequest, utcnow
from .repository import (
    WalkingLocationCreate,
    WalkRequestCreate,
    WalkRequestQuery,
    WalkRequestRepository,
    WalkRequestUpdate,
)

logger = logging.getLogger(__name__)

ALREADY_CANCELED = "walk request already canceled"
NOT_YOUR_REQUEST = "walk request belongs to another owner"


class WalkCoordinator:
    """
    Owner and walker verbs over the walk request state machine.

    Owner verbs additionally require the acting owner to be the creator of
    the request, and every verb after creation requires the request not to
    be canceled.
    """

    def __init__(
        self,
        repository: WalkRequestRepository,
        clock: Callable[[], datetime] = utcnow,
    ) -> None:
        self._repository = repository
        self._clock = clock

    # MARK: - Owner verbs

    async def create_walk_request(
        self,
        owner_id: str,
        dogs: Sequence[Dog],
        longitude: float,
        latitude: float,
        should_start_after: datetime | None = None,
        should_start_before: datetime | None = None,
        should_end_after: datetime | None = None,
        should_end_before: datetime | None = None,
    ) -> WalkRequest:
        """
        Create a waiting walk request from snapshots of the owner's dogs.

        The time window bounds are preferences and are stored as given.

        Raises:
            InvalidInputError: No dogs, a dog owned by someone else, naive
                window bounds, or coordinates out of range
        """
        foreign = sorted(dog.id for dog in dogs if dog.owner_id != owner_id)
        if foreign:
            raise InvalidInputError(
                f"invalid walk request: dogs {', '.join(foreign)} do not belong to {owner_id}"
            )
        try:
            create = WalkRequestCreate(
                dogs=tuple(dogs),
                longitude=longitude,
                latitude=latitude,
                created_by=owner_id,
                should_start_after=should_start_after,
                should_start_before=should_start_before,
                should_end_after=should_end_after,
                should_end_before=should_end_before,
            )
        except ValidationError as exc:
            raise InvalidInputError(f"invalid walk request: {exc}") from exc

        with backend_errors("create walk request"):
            walk_request_id = await self._repository.create_walk_request(create)
            created = await self._repository.get_walk_request(walk_request_id)
        if created is None:
            raise NotFoundError(walk_request_id)

        logger.info(
            "Walk request created",
            extra={"walk_request_id": walk_request_id, "actor_id": owner_id, "verb": "create"},
        )
        return created

    async def assign_accepter(self, request_id: str, owner_id: str, walker_id: str) -> None:
        """Promote a walker from the bid pool to the accepted walker."""
        await self._update_many(
            "assign",
            request_id,
            owner_id,
            WalkRequestQuery(
                id=request_id,
                created_by=owner_id,
                accepted_by_is_null=True,
                acceptances_includes_all=[walker_id],
            ),
            WalkRequestUpdate(accepted_by=walker_id, accepted_at=self._clock()),
            reason="walk request already claimed or bid withdrawn",
            owner_id=owner_id,
        )

    async def dismiss_accepter(self, request_id: str, owner_id: str, walker_id: str) -> None:
        """Take the claim away from the accepted walker; the bid stays in the pool."""
        await self._update_many(
            "dismiss",
            request_id,
            owner_id,
            WalkRequestQuery(id=request_id, created_by=owner_id, accepted_by=walker_id),
            WalkRequestUpdate(unset_accepted_by=True, unset_accepted_at=True),
            reason="claim already vacated",
            owner_id=owner_id,
        )

    async def cancel_unaccepted_request(self, request_id: str, owner_id: str) -> None:
        await self._update_many(
            "cancel",
            request_id,
            owner_id,
            WalkRequestQuery(id=request_id, created_by=owner_id, accepted_by_is_null=True),
            WalkRequestUpdate(canceled_at=self._clock()),
            reason="walk request already claimed",
            owner_id=owner_id,
        )

    async def cancel_accepted_request(
        self, request_id: str, owner_id: str, walker_id: str
    ) -> None:
        """Cancel a request while walker_id still holds the claim."""
        await self._update_many(
            "cancel",
            request_id,
            owner_id,
            WalkRequestQuery(id=request_id, created_by=owner_id, accepted_by=walker_id),
            WalkRequestUpdate(canceled_at=self._clock()),
            reason="walk request is not claimed by that walker",
            owner_id=owner_id,
        )

    # MARK: - Walker verbs

    async def accept(self, request_id: str, walker_id: str) -> WalkRequest:
        """
        Claim an unclaimed walk request for walker_id.

        Of any number of concurrent claims on the same request exactly one
        succeeds; the others raise PreconditionFailedError.
        """
        return await self._update_one(
            "claim",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id, accepted_by_is_null=True),
            WalkRequestUpdate(accepted_by=walker_id, accepted_at=self._clock()),
            reason="walk request already claimed",
        )

    async def add_acceptance(self, request_id: str, walker_id: str) -> WalkRequest:
        """Join the bid pool. Joining twice leaves a single entry."""
        return await self._update_one(
            "join",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id),
            WalkRequestUpdate(add_to_acceptances=walker_id),
            reason=ALREADY_CANCELED,
        )

    async def remove_acceptance(self, request_id: str, walker_id: str) -> None:
        """Withdraw a bid, unless the owner already confirmed this walker."""
        await self._update_many(
            "withdraw",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id, accepted_by_neq=walker_id),
            WalkRequestUpdate(remove_from_acceptances=walker_id),
            reason="bid already confirmed by owner",
        )

    async def resign_acceptance(self, request_id: str, walker_id: str) -> None:
        """Give up the claim and leave the bid pool."""
        await self._update_many(
            "resign",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id, accepted_by=walker_id),
            WalkRequestUpdate(
                unset_accepted_by=True,
                unset_accepted_at=True,
                remove_from_acceptances=walker_id,
            ),
            reason="claim already dismissed by owner",
        )

    async def start_walk(self, request_id: str, walker_id: str) -> WalkRequest:
        return await self._update_one(
            "start",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id, accepted_by=walker_id),
            WalkRequestUpdate(started_at=self._clock()),
            reason="walker is not the assigned walker",
        )

    async def finish_walk(self, request_id: str, walker_id: str) -> WalkRequest:
        return await self._update_one(
            "finish",
            request_id,
            walker_id,
            WalkRequestQuery(id=request_id, accepted_by=walker_id),
            WalkRequestUpdate(finished_at=self._clock()),
            reason="walker is not the assigned walker",
        )

    async def record_walking_location(
        self, request_id: str, walker_id: str, longitude: float, latitude: float
    ) -> str:
        """
        Append a breadcrumb sample to a walk request.

        Samples never contend with lifecycle updates; the only check is that
        the referenced request exists.

        Returns:
            The id of the new sample
        """
        try:
            create = WalkingLocationCreate(
                walk_request_id=request_id, longitude=longitude, latitude=latitude
            )
        except ValidationError as exc:
            raise InvalidInputError(f"invalid walking location: {exc}") from exc

        with backend_errors("record walking location"):
            if await self._repository.get_walk_request(request_id) is None:
                raise NotFoundError(request_id)
            location_id = await self._repository.create_walking_location(create)

        logger.debug(
            "Walking location recorded",
            extra={"walk_request_id": request_id, "actor_id": walker_id, "verb": "record_location"},
        )
        return location_id

    # MARK: - Private Helpers

    async def _update_one(
        self,
        verb: str,
        request_id: str,
        actor_id: str,
        query: WalkRequestQuery,
        update: WalkRequestUpdate,
        reason: str,
        owner_id: str | None = None,
    ) -> WalkRequest:
        query = query.model_copy(update={"canceled_at_is_null": True})
        with backend_errors(f"{verb} walk request"):
            updated = await self._repository.update_walk_request_by_query(query, update)
        if updated is None:
            await self._raise_conflict(verb, request_id, actor_id, reason, owner_id)
        self._log_success(verb, request_id, actor_id)
        return updated

    async def _update_many(
        self,
        verb: str,
        request_id: str,
        actor_id: str,
        query: WalkRequestQuery,
        update: WalkRequestUpdate,
        reason: str,
        owner_id: str | None = None,
    ) -> None:
        query = query.model_copy(update={"canceled_at_is_null": True})
        with backend_errors(f"{verb} walk request"):
            matched = await self._repository.update_walk_requests_by_query(query, update)
        if matched == 0:
            await self._raise_conflict(verb, request_id, actor_id, reason, owner_id)
        self._log_success(verb, request_id, actor_id)

    async def _raise_conflict(
        self,
        verb: str,
        request_id: str,
        actor_id: str,
        reason: str,
        owner_id: str | None,
    ) -> NoReturn:
        """Work out why a conditional update matched nothing and raise accordingly."""
        with backend_errors(f"{verb} walk request"):
            current = await self._repository.get_walk_request(request_id)
        if current is None:
            raise NotFoundError(request_id)

        if current.canceled_at is not None:
            reason = ALREADY_CANCELED
        elif owner_id is not None and current.created_by != owner_id:
            reason = NOT_YOUR_REQUEST

        logger.warning(
            "Walk request %s rejected: %s",
            verb,
            reason,
            extra={"walk_request_id": request_id, "actor_id": actor_id, "verb": verb},
        )
        raise PreconditionFailedError(verb, request_id, reason)

    def _log_success(self, verb: str, request_id: str, actor_id: str) -> None:
        logger.info(
            "Walk request %s succeeded",
            verb,
            extra={"walk_request_id": request_id, "actor_id": actor_id, "verb": verb},
        )
