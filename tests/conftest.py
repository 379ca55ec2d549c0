"""Shared pytest fixtures for flowrelay tests."""
import sys
sys.dont_write_bytecode = True

import pytest  # noqa: E402

from fakes import FakeSender, FakeStore, ImmediateExecutor  # noqa: E402
from flowrelay.config import Settings, get_settings  # noqa: E402
from flowrelay.tasks.client import TasksClient  # noqa: E402


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep host configuration out of tests.

    Settings are cached per process; clear the cache so tests that set env
    vars see them.
    """
    for name in (
        "CREDENTIALS_KEY",
        "TASKS_BACKEND",
        "TASKS_OIDC_AUDIENCE",
        "TASKS_OIDC_SERVICE_ACCOUNT",
        "INTERNAL_TASK_SECRET",
        "META_VERIFY_TOKEN",
        "SEED_ACCESS_TOKEN",
        "SEED_TENANT_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


@pytest.fixture
def store(monkeypatch) -> FakeStore:
    """In-memory store patched over the repositories, with one tenant."""
    fake = FakeStore()
    fake.install(monkeypatch)
    fake.add_tenant()
    return fake


@pytest.fixture
def settings() -> Settings:
    return Settings(meta_verify_token="verify-me", delivery_backoff_seconds=0.0)


@pytest.fixture
def sleeps() -> list[float]:
    return []


@pytest.fixture
def tasks_client(sleeps) -> TasksClient:
    """Inline client that runs handlers synchronously and records backoff
    delays instead of sleeping."""
    return TasksClient("inline", sleep=sleeps.append, executor=ImmediateExecutor())


@pytest.fixture
def sender() -> FakeSender:
    return FakeSender()
