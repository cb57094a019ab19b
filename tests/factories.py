"""
Shared builders for the Little Walk test suites.
"""

import asyncio
import socket
import threading
import time
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import UTC, datetime, timedelta
from typing import Any

import httpx
import uvicorn
from fastapi import FastAPI

from little_walk.models import Breed, Category, Dog, Gender


class FakeClock:
    """Clock advancing one second per call, so every timestamp is distinct."""

    def __init__(self, start: datetime | None = None) -> None:
        self.current = start or datetime(2024, 5, 1, 8, 0, tzinfo=UTC)

    def __call__(self) -> datetime:
        self.current += timedelta(seconds=1)
        return self.current


def make_dog(dog_id: str = "dog-1", owner_id: str = "owner-1", name: str = "Rex") -> Dog:
    return Dog(
        id=dog_id,
        name=name,
        gender=Gender.MALE,
        breed=Breed(id="breed-1", category=Category.MEDIUM, name="Beagle"),
        birthday=datetime(2020, 3, 14, tzinfo=UTC),
        owner_id=owner_id,
        tags={"friendly", "energetic"},
    )


def dog_payload(dog_id: str = "dog-1", owner_id: str = "owner-1", name: str = "Rex") -> dict[str, Any]:
    """JSON shape of make_dog, for HTTP and CLI tests."""
    return make_dog(dog_id, owner_id, name).model_dump(mode="json")


@contextmanager
def live_server(app: FastAPI) -> Iterator[str]:
    """Serve app with uvicorn on a free local port in a background thread."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    host, port = sock.getsockname()
    sock.close()
    base_url = f"http://{host}:{port}"

    config = uvicorn.Config(
        app=app,
        host=host,
        port=port,
        loop="asyncio",
        lifespan="on",
        log_level="warning",
        ws="none",
    )
    server = uvicorn.Server(config)
    thread = threading.Thread(target=lambda: asyncio.run(server.serve()), daemon=True)
    thread.start()

    start = time.time()
    while time.time() - start < 5.0:
        try:
            if httpx.get(base_url + "/", timeout=0.2).status_code == 200:
                break
        except httpx.HTTPError:
            pass
        time.sleep(0.05)
    else:
        server.should_exit = True
        thread.join(timeout=1.0)
        raise RuntimeError("Server did not start in time")

    try:
        yield base_url
    finally:
        server.should_exit = True
        thread.join(timeout=2.0)
