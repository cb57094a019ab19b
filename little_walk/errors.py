"""
Error taxonomy for the Little Walk service.

Every lifecycle verb either returns its value or raises exactly one of the
LittleWalkError subclasses below. The HTTP layer turns them into JSON bodies
through to_response().
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager
from typing import Any

logger = logging.getLogger(__name__)


class LittleWalkError(Exception):
    """Base exception for all Little Walk failures."""

    code = "INTERNAL_ERROR"
    http_status = 500

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def details(self) -> dict[str, Any]:
        return {}

    def to_response(self) -> dict[str, Any]:
        """Convert to the REST error envelope."""
        return {"error": {"code": self.code, "message": self.message, **self.details()}}


class NotFoundError(LittleWalkError):
    """The target walk request does not exist."""

    code = "NOT_FOUND"
    http_status = 404

    def __init__(self, walk_request_id: str) -> None:
        super().__init__(f"walk request {walk_request_id} not found")
        self.walk_request_id = walk_request_id

    def details(self) -> dict[str, Any]:
        return {"walk_request_id": self.walk_request_id}


class PreconditionFailedError(LittleWalkError):
    """
    The walk request exists but was not in the state a verb requires.

    This is the business-level outcome of losing a race or acting on stale
    state; callers must re-read before deciding whether to try again.
    """

    code = "PRECONDITION_FAILED"
    http_status = 409

    def __init__(self, verb: str, walk_request_id: str, reason: str) -> None:
        super().__init__(f"cannot {verb} walk request {walk_request_id}: {reason}")
        self.verb = verb
        self.walk_request_id = walk_request_id
        self.reason = reason

    def details(self) -> dict[str, Any]:
        return {
            "verb": self.verb,
            "walk_request_id": self.walk_request_id,
            "reason": self.reason,
        }


class InvalidInputError(LittleWalkError):
    """Malformed input, such as a proximity parameter that is not a triple."""

    code = "INVALID_INPUT"
    http_status = 422


class BackendUnavailableError(LittleWalkError):
    """The persistence backend failed; the original exception is the __cause__."""

    code = "BACKEND_UNAVAILABLE"
    http_status = 503


@contextmanager
def backend_errors(action: str) -> Iterator[None]:
    """
    Re-raise any non-domain exception from the persistence port as
    BackendUnavailableError, chained to the original.

    Args:
        action: Short description of the attempted operation, used in the
            error message

    Raises:
        BackendUnavailableError: When the wrapped block raised anything that
            is not a LittleWalkError
    """
    try:
        yield
    except LittleWalkError:
        raise
    except Exception as exc:
        logger.error("Backend failure while trying to %s: %s", action, exc, exc_info=True)
        raise BackendUnavailableError(f"failed to {action}: {exc}") from exc
