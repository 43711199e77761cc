"""Pytest configuration and fixtures."""

import sys
import time
from collections.abc import Callable, Iterator
from pathlib import Path

# Add src to path for imports
sys.path.insert(0, str(Path(__file__).parent.parent / "src"))

import pytest
from fastapi import FastAPI
from fastapi.testclient import TestClient

from httpwatch.app import create_app
from httpwatch.config import Settings


@pytest.fixture
def site(tmp_path: Path) -> Path:
    """Create a served directory with an index page and a stylesheet."""
    root = tmp_path / "site"
    root.mkdir()
    (root / "index.html").write_text("<html><body>hello</body></html>" * 20)
    (root / "style.css").write_text("body { color: black; }\n" * 50)
    return root


@pytest.fixture
def settings(site: Path) -> Settings:
    """Create test settings watching the served directory."""
    return Settings(
        host="127.0.0.1",
        port=8080,
        dir=site,
        pattern=r"\.(html|css|md)$",
        keepalive_interval=30.0,
        _env_file=None,
    )


@pytest.fixture
def app(settings: Settings) -> FastAPI:
    """Create a configured application."""
    return create_app(settings)


@pytest.fixture
def client(app: FastAPI) -> Iterator[TestClient]:
    """Yield a test client with the lifespan running."""
    with TestClient(app) as client:
        yield client


def _wait_until(predicate: Callable[[], bool], timeout: float = 5.0) -> bool:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.02)
    return predicate()


@pytest.fixture
def wait_until() -> Callable[..., bool]:
    """Return a helper polling a predicate until it holds or times out."""
    return _wait_until
