"""
FastAPI server for the Little Walk service.

This module exposes the walk request lifecycle verbs and listings over HTTP.
The acting user arrives in the X-User-Id header; authenticating it is the
job of whatever sits in front of this service.
"""

import logging
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from .config import Settings, get_settings
from .coordinator import WalkCoordinator
from .errors import InvalidInputError, LittleWalkError
from .listing import WalkListing
from .models import Dog, UtcDatetime, WalkingLocation, WalkRequest
from .observability import setup_logging
from .repository import (
    Nearby,
    Order,
    Pagination,
    SortBy,
    SortField,
    WalkRequestQuery,
    WalkRequestRepository,
)
from .store import MemoryStore

logger = logging.getLogger(__name__)


# API Request/Response Schemas
class WalkRequestCreateBody(BaseModel):
    """Payload for creating a walk request."""

    dogs: list[Dog] = Field(..., min_length=1, description="Dogs to be walked")
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)
    should_start_after: UtcDatetime | None = None
    should_start_before: UtcDatetime | None = None
    should_end_after: UtcDatetime | None = None
    should_end_before: UtcDatetime | None = None


class CancellationBody(BaseModel):
    """Payload for cancellation; naming the walker cancels a claimed request."""

    accepted_by: str | None = Field(
        None, description="Walker currently holding the claim, if any"
    )


class WalkingLocationBody(BaseModel):
    longitude: float = Field(..., ge=-180, le=180)
    latitude: float = Field(..., ge=-90, le=90)


class WalkRequestResponse(BaseModel):
    walk_request: WalkRequest


class WalkRequestListResponse(BaseModel):
    walk_requests: list[WalkRequest]


class WalkingLocationResponse(BaseModel):
    id: str


class WalkTrailResponse(BaseModel):
    locations: list[WalkingLocation]


def current_user(x_user_id: str = Header(..., min_length=1)) -> str:
    """Identity of the acting owner or walker."""
    return x_user_id


def _parse_nearby(raw: str) -> list[float]:
    try:
        return [float(part) for part in raw.split(",")]
    except ValueError as exc:
        raise InvalidInputError(
            f"invalid nearby query, expected longitude,latitude,radius, got {raw!r}"
        ) from exc


def register_error_handlers(app: FastAPI) -> None:
    """Map domain errors and request validation errors to JSON responses."""

    @app.exception_handler(LittleWalkError)
    async def little_walk_error_handler(request: Request, exc: LittleWalkError) -> JSONResponse:
        log = logger.error if exc.http_status >= 500 else logger.info
        log(
            "%s on %s: %s",
            type(exc).__name__,
            request.url.path,
            exc.message,
            extra={"error_code": exc.code, "path": request.url.path},
        )
        return JSONResponse(status_code=exc.http_status, content=exc.to_response())

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(
        request: Request, exc: RequestValidationError
    ) -> JSONResponse:
        logger.warning("Validation error on %s: %s", request.url.path, exc.errors())
        return JSONResponse(
            status_code=InvalidInputError.http_status,
            content={
                "error": {
                    "code": InvalidInputError.code,
                    "message": "Invalid request data",
                    "details": [
                        {
                            "field": ".".join(str(loc) for loc in error["loc"]),
                            "message": error["msg"],
                            "type": error["type"],
                        }
                        for error in exc.errors()
                    ],
                }
            },
        )


def create_app(
    store: WalkRequestRepository | None = None, settings: Settings | None = None
) -> FastAPI:
    """
    Create a FastAPI application over the given walk request store.

    Args:
        store: Persistence backend; a fresh MemoryStore when omitted
        settings: Configuration; the cached environment settings when omitted

    Returns:
        Configured FastAPI application
    """
    settings = settings or get_settings()
    store = store if store is not None else MemoryStore()
    coordinator = WalkCoordinator(store)
    listing = WalkListing(store)

    def pagination(
        skip: int = Query(0, ge=0),
        limit: int = Query(settings.default_page_size, ge=1),
    ) -> Pagination:
        return Pagination(skip=skip, limit=min(limit, settings.max_page_size))

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
        logger.info("%s starting", settings.app_name)
        yield
        logger.info("%s stopped", settings.app_name)

    app = FastAPI(
        title=settings.app_name,
        description="Walk request lifecycle and walker claim coordination",
        version="0.1.0",
        lifespan=lifespan,
    )
    register_error_handlers(app)

    @app.get("/")
    async def root() -> dict[str, str]:
        """Health check endpoint."""
        return {"status": "ok", "service": "little-walk"}

    # MARK: - Listings

    @app.get("/walk-requests")
    async def search_walk_requests(
        id: str | None = None,
        created_by: str | None = None,
        accepted_by: str | None = None,
        accepted_by_neq: str | None = None,
        accepted_by_is_null: bool | None = None,
        canceled_at_is_null: bool | None = None,
        dog_ids_any: list[str] | None = Query(None),
        dog_ids_all: list[str] | None = Query(None),
        acceptances_any: list[str] | None = Query(None),
        acceptances_all: list[str] | None = Query(None),
        nearby: str | None = Query(None, description="longitude,latitude,radius"),
        sort_by: SortField | None = None,
        order: Order = Order.ASC,
        page: Pagination = Depends(pagination),
    ) -> WalkRequestListResponse:
        """Search walk requests with any combination of filters."""
        query = WalkRequestQuery(
            id=id,
            created_by=created_by,
            accepted_by=accepted_by,
            accepted_by_neq=accepted_by_neq,
            accepted_by_is_null=accepted_by_is_null,
            canceled_at_is_null=canceled_at_is_null,
            dog_ids_includes_any=dog_ids_any,
            dog_ids_includes_all=dog_ids_all,
            acceptances_includes_any=acceptances_any,
            acceptances_includes_all=acceptances_all,
            nearby=Nearby.from_triple(_parse_nearby(nearby)) if nearby else None,
        )
        sort = SortBy(field=sort_by, order=order) if sort_by else None
        results = await listing.search_walk_requests(query, sort_by=sort, pagination=page)
        return WalkRequestListResponse(walk_requests=results)

    @app.get("/walk-requests/nearby")
    async def nearby_walk_requests(
        longitude: float,
        latitude: float,
        radius: float = settings.default_nearby_radius,
        sort_by: SortField | None = None,
        order: Order = Order.ASC,
        page: Pagination = Depends(pagination),
    ) -> WalkRequestListResponse:
        """Unclaimed walk requests around a point, with their distance in meters."""
        sort = SortBy(field=sort_by, order=order) if sort_by else None
        results = await listing.nearby_walk_requests(
            [longitude, latitude, radius], pagination=page, sort_by=sort
        )
        return WalkRequestListResponse(walk_requests=results)

    @app.get("/walk-requests/mine")
    async def my_walk_requests(
        user_id: str = Depends(current_user),
        page: Pagination = Depends(pagination),
    ) -> WalkRequestListResponse:
        """Walk requests created by the acting owner, newest first."""
        results = await listing.my_walk_requests(user_id, pagination=page)
        return WalkRequestListResponse(walk_requests=results)

    @app.get("/walk-requests/{request_id}")
    async def get_walk_request(request_id: str) -> WalkRequestResponse:
        return WalkRequestResponse(walk_request=await listing.get_walk_request(request_id))

    @app.get("/walk-requests/{request_id}/locations")
    async def walk_trail(request_id: str) -> WalkTrailResponse:
        return WalkTrailResponse(locations=await listing.walk_trail(request_id))

    # MARK: - Owner verbs

    @app.post("/walk-requests", status_code=status.HTTP_201_CREATED)
    async def create_walk_request(
        body: WalkRequestCreateBody, user_id: str = Depends(current_user)
    ) -> WalkRequestResponse:
        created = await coordinator.create_walk_request(
            user_id,
            body.dogs,
            longitude=body.longitude,
            latitude=body.latitude,
            should_start_after=body.should_start_after,
            should_start_before=body.should_start_before,
            should_end_after=body.should_end_after,
            should_end_before=body.should_end_before,
        )
        return WalkRequestResponse(walk_request=created)

    @app.put(
        "/walk-requests/{request_id}/acceptances/{walker_id}/assignment",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    async def assign_accepter(
        request_id: str, walker_id: str, user_id: str = Depends(current_user)
    ) -> Response:
        await coordinator.assign_accepter(request_id, user_id, walker_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.delete(
        "/walk-requests/{request_id}/acceptances/{walker_id}/assignment",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    async def dismiss_accepter(
        request_id: str, walker_id: str, user_id: str = Depends(current_user)
    ) -> Response:
        await coordinator.dismiss_accepter(request_id, user_id, walker_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put(
        "/walk-requests/{request_id}/cancellation",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    async def cancel_walk_request(
        request_id: str,
        body: CancellationBody | None = None,
        user_id: str = Depends(current_user),
    ) -> Response:
        if body is not None and body.accepted_by is not None:
            await coordinator.cancel_accepted_request(request_id, user_id, body.accepted_by)
        else:
            await coordinator.cancel_unaccepted_request(request_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # MARK: - Walker verbs

    @app.put("/walk-requests/{request_id}/acceptance")
    async def accept_walk_request(
        request_id: str, user_id: str = Depends(current_user)
    ) -> WalkRequestResponse:
        """Claim an unclaimed walk request; 409 when someone else got there first."""
        return WalkRequestResponse(walk_request=await coordinator.accept(request_id, user_id))

    @app.delete(
        "/walk-requests/{request_id}/acceptance",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    async def resign_acceptance(
        request_id: str, user_id: str = Depends(current_user)
    ) -> Response:
        await coordinator.resign_acceptance(request_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put("/walk-requests/{request_id}/acceptances")
    async def add_acceptance(
        request_id: str, user_id: str = Depends(current_user)
    ) -> WalkRequestResponse:
        return WalkRequestResponse(
            walk_request=await coordinator.add_acceptance(request_id, user_id)
        )

    @app.delete(
        "/walk-requests/{request_id}/acceptances",
        status_code=status.HTTP_204_NO_CONTENT,
    )
    async def remove_acceptance(
        request_id: str, user_id: str = Depends(current_user)
    ) -> Response:
        await coordinator.remove_acceptance(request_id, user_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @app.put("/walk-requests/{request_id}/start")
    async def start_walk(
        request_id: str, user_id: str = Depends(current_user)
    ) -> WalkRequestResponse:
        return WalkRequestResponse(walk_request=await coordinator.start_walk(request_id, user_id))

    @app.put("/walk-requests/{request_id}/finish")
    async def finish_walk(
        request_id: str, user_id: str = Depends(current_user)
    ) -> WalkRequestResponse:
        return WalkRequestResponse(walk_request=await coordinator.finish_walk(request_id, user_id))

    @app.post(
        "/walk-requests/{request_id}/locations",
        status_code=status.HTTP_201_CREATED,
    )
    async def record_walking_location(
        request_id: str,
        body: WalkingLocationBody,
        user_id: str = Depends(current_user),
    ) -> WalkingLocationResponse:
        location_id = await coordinator.record_walking_location(
            request_id, user_id, body.longitude, body.latitude
        )
        return WalkingLocationResponse(id=location_id)

    return app


# Default app instance for uvicorn
app = create_app(MemoryStore())


def main() -> None:
    """Main entry point for the server."""
    import uvicorn

    settings = get_settings()
    setup_logging(settings.log_level, settings.log_format)
    uvicorn.run(
        "little_walk.server:app",
        host=settings.host,
        port=settings.port,
        log_level=settings.log_level.lower(),
    )


if __name__ == "__main__":
    main()
