import os

import pytest
from fastapi.testclient import TestClient

# Ensure we default to memory backend for tests to avoid filesystem dependencies
os.environ.setdefault("PERSISTENCE_BACKEND", "memory")

from fakes import FlakyDataService, seed_profile  # noqa: E402
from src.api.main import create_app  # noqa: E402
from src.api.session import Session  # noqa: E402
from src.api.settings import Settings  # noqa: E402


@pytest.fixture()
def service() -> FlakyDataService:
    return FlakyDataService()


@pytest.fixture()
def alice(service: FlakyDataService) -> Session:
    return seed_profile(service, "alice", "Alice")


@pytest.fixture()
def bob(service: FlakyDataService) -> Session:
    return seed_profile(service, "bob", "Bob")


@pytest.fixture()
def settings() -> Settings:
    return Settings(persistence_backend="memory")


@pytest.fixture()
def client(settings: Settings, service: FlakyDataService):
    with TestClient(create_app(settings=settings, data_service=service)) as c:
        yield c
