"""
Command-line interface for the Little Walk service.
"""

import asyncio
import json
from collections.abc import Coroutine
from pathlib import Path
from typing import Any

import httpx
import typer

from .models import WalkingLocation, WalkRequest

DEFAULT_BASE_URL = "http://localhost:8000"

app = typer.Typer(help="Little Walk CLI tools")

BaseUrl = typer.Option(
    DEFAULT_BASE_URL,
    "--url",
    "-u",
    envvar="LITTLE_WALK_URL",
    help="Base URL of the Little Walk service",
)
User = typer.Option(
    ..., "--user", envvar="LITTLE_WALK_USER", help="Acting owner or walker id"
)
JsonOutput = typer.Option(False, "--json", "-j", help="Output raw JSON")
Skip = typer.Option(0, "--skip", min=0, help="Number of results to skip")
Limit = typer.Option(20, "--limit", min=1, help="Maximum number of results")


# MARK: - Commands


@app.command()
def create(
    dogs_file: Path = typer.Argument(
        ..., exists=True, dir_okay=False, help="JSON file holding the list of dogs"
    ),
    longitude: float = typer.Option(..., "--longitude", "--lng"),
    latitude: float = typer.Option(..., "--latitude", "--lat"),
    start_after: str | None = typer.Option(None, help="ISO 8601 instant"),
    start_before: str | None = typer.Option(None, help="ISO 8601 instant"),
    end_after: str | None = typer.Option(None, help="ISO 8601 instant"),
    end_before: str | None = typer.Option(None, help="ISO 8601 instant"),
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Create a walk request for the dogs listed in DOGS_FILE."""
    payload = {
        "dogs": json.loads(dogs_file.read_text()),
        "longitude": longitude,
        "latitude": latitude,
        "should_start_after": start_after,
        "should_start_before": start_before,
        "should_end_after": end_after,
        "should_end_before": end_before,
    }
    _show_walk_request(
        _run(_call("POST", "/walk-requests", base_url, user, json_body=payload), base_url),
        json_output,
    )


@app.command()
def show(
    request_id: str,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Show one walk request."""
    _show_walk_request(
        _run(_call("GET", f"/walk-requests/{request_id}", base_url), base_url), json_output
    )


@app.command()
def search(
    created_by: str | None = typer.Option(None, help="Owner id"),
    accepted_by: str | None = typer.Option(None, help="Accepted walker id"),
    unclaimed: bool = typer.Option(False, help="Only requests without an accepted walker"),
    active: bool = typer.Option(False, help="Leave out canceled requests"),
    bidder: list[str] = typer.Option([], help="Walker id that must be in the bid pool"),
    dog: list[str] = typer.Option([], help="Dog id that must be in the request"),
    nearby: str | None = typer.Option(None, help="longitude,latitude,radius"),
    sort_by: str | None = typer.Option(None, help="Field to sort by"),
    order: str = typer.Option("asc", help="asc or desc"),
    skip: int = Skip,
    limit: int = Limit,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Search walk requests."""
    params: dict[str, Any] = {"skip": skip, "limit": limit, "order": order}
    optional = {
        "created_by": created_by,
        "accepted_by": accepted_by,
        "nearby": nearby,
        "sort_by": sort_by,
    }
    params.update({key: value for key, value in optional.items() if value is not None})
    if unclaimed:
        params["accepted_by_is_null"] = "true"
    if active:
        params["canceled_at_is_null"] = "true"
    if bidder:
        params["acceptances_all"] = bidder
    if dog:
        params["dog_ids_all"] = dog
    _show_walk_requests(
        _run(_call("GET", "/walk-requests", base_url, params=params), base_url), json_output
    )


@app.command()
def nearby(
    longitude: float = typer.Option(..., "--longitude", "--lng"),
    latitude: float = typer.Option(..., "--latitude", "--lat"),
    radius: float = typer.Option(1000.0, help="Radius in meters"),
    sort_by: str | None = typer.Option(None, help="Field to sort by, e.g. distance"),
    order: str = typer.Option("asc", help="asc or desc"),
    skip: int = Skip,
    limit: int = Limit,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """List unclaimed walk requests around a point."""
    params: dict[str, Any] = {
        "longitude": longitude,
        "latitude": latitude,
        "radius": radius,
        "order": order,
        "skip": skip,
        "limit": limit,
    }
    if sort_by is not None:
        params["sort_by"] = sort_by
    _show_walk_requests(
        _run(_call("GET", "/walk-requests/nearby", base_url, params=params), base_url),
        json_output,
    )


@app.command()
def mine(
    skip: int = Skip,
    limit: int = Limit,
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """List your own walk requests, newest first."""
    params = {"skip": skip, "limit": limit}
    _show_walk_requests(
        _run(_call("GET", "/walk-requests/mine", base_url, user, params=params), base_url),
        json_output,
    )


@app.command()
def claim(
    request_id: str,
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Claim an unclaimed walk request."""
    path = f"/walk-requests/{request_id}/acceptance"
    _show_walk_request(_run(_call("PUT", path, base_url, user), base_url), json_output)


@app.command()
def resign(request_id: str, user: str = User, base_url: str = BaseUrl) -> None:
    """Give up your claim on a walk request."""
    _run(_call("DELETE", f"/walk-requests/{request_id}/acceptance", base_url, user), base_url)
    print(f"Resigned from {request_id}")


@app.command()
def join(
    request_id: str,
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Join the bid pool of a walk request."""
    path = f"/walk-requests/{request_id}/acceptances"
    _show_walk_request(_run(_call("PUT", path, base_url, user), base_url), json_output)


@app.command()
def withdraw(request_id: str, user: str = User, base_url: str = BaseUrl) -> None:
    """Withdraw your bid on a walk request."""
    _run(_call("DELETE", f"/walk-requests/{request_id}/acceptances", base_url, user), base_url)
    print(f"Withdrew bid on {request_id}")


@app.command()
def assign(
    request_id: str, walker_id: str, user: str = User, base_url: str = BaseUrl
) -> None:
    """Assign a walker from the bid pool to your walk request."""
    path = f"/walk-requests/{request_id}/acceptances/{walker_id}/assignment"
    _run(_call("PUT", path, base_url, user), base_url)
    print(f"Assigned {walker_id} to {request_id}")


@app.command()
def dismiss(
    request_id: str, walker_id: str, user: str = User, base_url: str = BaseUrl
) -> None:
    """Dismiss the walker currently holding the claim."""
    path = f"/walk-requests/{request_id}/acceptances/{walker_id}/assignment"
    _run(_call("DELETE", path, base_url, user), base_url)
    print(f"Dismissed {walker_id} from {request_id}")


@app.command()
def cancel(
    request_id: str,
    accepted_by: str | None = typer.Option(
        None, help="Walker holding the claim, to cancel a claimed request"
    ),
    user: str = User,
    base_url: str = BaseUrl,
) -> None:
    """Cancel your walk request."""
    path = f"/walk-requests/{request_id}/cancellation"
    _run(_call("PUT", path, base_url, user, json_body={"accepted_by": accepted_by}), base_url)
    print(f"Canceled {request_id}")


@app.command()
def start(
    request_id: str,
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Start the walk you were assigned."""
    path = f"/walk-requests/{request_id}/start"
    _show_walk_request(_run(_call("PUT", path, base_url, user), base_url), json_output)


@app.command()
def finish(
    request_id: str,
    user: str = User,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Finish the walk you were assigned."""
    path = f"/walk-requests/{request_id}/finish"
    _show_walk_request(_run(_call("PUT", path, base_url, user), base_url), json_output)


@app.command("record-location")
def record_location(
    request_id: str,
    longitude: float = typer.Option(..., "--longitude", "--lng"),
    latitude: float = typer.Option(..., "--latitude", "--lat"),
    user: str = User,
    base_url: str = BaseUrl,
) -> None:
    """Record a location sample for a walk in progress."""
    path = f"/walk-requests/{request_id}/locations"
    body = {"longitude": longitude, "latitude": latitude}
    result = _run(_call("POST", path, base_url, user, json_body=body), base_url)
    print(result["id"])


@app.command()
def trail(
    request_id: str,
    base_url: str = BaseUrl,
    json_output: bool = JsonOutput,
) -> None:
    """Print the recorded location samples of a walk request."""
    result = _run(_call("GET", f"/walk-requests/{request_id}/locations", base_url), base_url)
    if json_output:
        print(json.dumps(result, indent=2))
        return
    for raw in result["locations"]:
        location = WalkingLocation.model_validate(raw)
        timestamp = location.created_at.strftime("%H:%M:%S")
        print(f"{timestamp} > {location.longitude:.6f},{location.latitude:.6f}")


# MARK: - Private Helpers


async def _call(
    method: str,
    path: str,
    base_url: str,
    user: str | None = None,
    params: dict[str, Any] | None = None,
    json_body: dict[str, Any] | None = None,
) -> dict[str, Any]:
    """Send one request and return the decoded body ({} for 204)."""
    headers = {"X-User-Id": user} if user else {}
    async with httpx.AsyncClient(base_url=base_url) as client:
        response = await client.request(
            method, path, headers=headers, params=params, json=json_body
        )
        response.raise_for_status()
        if response.status_code == httpx.codes.NO_CONTENT:
            return {}
        return response.json()


def _format_walk_request(request: WalkRequest) -> str:
    """One-line summary of a walk request."""
    parts = [request.id, request.status.value]
    if request.accepted_by:
        parts.append(f"walker={request.accepted_by}")
    if request.acceptances:
        parts.append(f"bids={','.join(sorted(request.acceptances))}")
    if request.distance is not None:
        parts.append(f"{request.distance:.0f}m")
    parts.append(", ".join(dog.name for dog in request.dogs))
    return "  ".join(parts)


def _show_walk_request(result: dict[str, Any], json_output: bool) -> None:
    if json_output:
        print(json.dumps(result, indent=2))
        return
    print(_format_walk_request(WalkRequest.model_validate(result["walk_request"])))


def _show_walk_requests(result: dict[str, Any], json_output: bool) -> None:
    if json_output:
        print(json.dumps(result, indent=2))
        return
    requests = result["walk_requests"]
    if not requests:
        print("No walk requests")
    for raw in requests:
        print(_format_walk_request(WalkRequest.model_validate(raw)))


def _error_message(response: httpx.Response) -> str:
    try:
        return response.json()["error"]["message"]
    except (ValueError, KeyError, TypeError):
        return response.text or response.reason_phrase


def _run(coro: Coroutine[Any, Any, Any], base_url: str) -> Any:
    """Run an async coroutine with standardized error handling."""
    try:
        return asyncio.run(coro)
    except KeyboardInterrupt:
        print("\nStopped")
        raise typer.Exit(0)
    except httpx.ConnectError:
        print(f"Error: Could not connect to {base_url}")
        raise typer.Exit(1)
    except httpx.HTTPStatusError as e:
        print(f"Error: HTTP {e.response.status_code}: {_error_message(e.response)}")
        raise typer.Exit(1)
    except Exception as e:
        error_msg = str(e) if str(e) else f"Unknown error of type {type(e).__name__}"
        print(f"Error: {error_msg}")
        raise typer.Exit(1)


if __name__ == "__main__":
    app()
