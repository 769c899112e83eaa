from __future__ import annotations

import asyncio
import contextlib

import pytest

from rosa_provisioner import config
from rosa_provisioner.catalog import RoleCatalog
from rosa_provisioner.orchestrator import ProvisioningOrchestrator
from rosa_provisioner.poller import ConvergencePoller

from fakes import (
    FakeClock,
    FakeCloudBackend,
    FakeClusterService,
    RecordingReporter,
    build_orchestrator,
    build_poller,
    small_catalog,
)


@pytest.fixture(autouse=True)
def _close_default_event_loop() -> None:
    yield
    policy = asyncio.get_event_loop_policy()
    local = getattr(policy, "_local", None)
    loop = getattr(local, "_loop", None) if local is not None else None
    if loop is not None and not loop.is_running() and not loop.is_closed():
        with contextlib.suppress(Exception):
            loop.close()
    if loop is not None:
        with contextlib.suppress(Exception):
            policy.set_event_loop(None)


@pytest.fixture(autouse=True)
def _fresh_settings(monkeypatch: pytest.MonkeyPatch) -> None:
    # A developer's .env must not leak into test settings.
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def backend() -> FakeCloudBackend:
    return FakeCloudBackend()


@pytest.fixture
def service() -> FakeClusterService:
    return FakeClusterService()


@pytest.fixture
def catalog() -> RoleCatalog:
    return small_catalog()


@pytest.fixture
def reporter() -> RecordingReporter:
    return RecordingReporter()


@pytest.fixture
def poller(service: FakeClusterService, clock: FakeClock) -> ConvergencePoller:
    return build_poller(service, clock)


@pytest.fixture
def orchestrator(
    backend: FakeCloudBackend,
    service: FakeClusterService,
    clock: FakeClock,
    catalog: RoleCatalog,
    reporter: RecordingReporter,
) -> ProvisioningOrchestrator:
    return build_orchestrator(backend, service, clock, catalog, reporter)
