"""Application context assembly."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

from rosa_provisioner.backends.iam import IamIdentityBackend
from rosa_provisioner.backends.ocm import OcmClusterService
from rosa_provisioner.catalog import RoleCatalog, load_catalog
from rosa_provisioner.config import Settings, load_settings
from rosa_provisioner.inspector import ResourceInspector
from rosa_provisioner.orchestrator import ProvisioningOrchestrator
from rosa_provisioner.poller import ConvergencePoller
from rosa_provisioner.provisioner import ResourceProvisioner
from rosa_provisioner.reporting import RunReporter
from rosa_provisioner.rollback import RollbackCoordinator
from rosa_provisioner.teardown import ClusterTeardown
from rosa_provisioner.verification import ClusterVerifier, http_readyz_probe


@dataclass
class AppContext:
    """Application-wide dependency container.

    Settings are read here and nowhere else; every engine component receives
    its configuration through constructor arguments.
    """

    settings: Settings
    catalog: RoleCatalog
    backend: IamIdentityBackend
    service: OcmClusterService
    poller: ConvergencePoller
    orchestrator: ProvisioningOrchestrator
    teardown: ClusterTeardown

    async def aclose(self) -> None:
        await self.service.aclose()


def build_context(
    settings: Settings | None = None,
    *,
    reporter: RunReporter | None = None,
    region: str | None = None,
    probe_api: bool = True,
) -> AppContext:
    """Wire the engine from settings.

    ``region`` overrides the configured AWS region; IAM is global but the
    client still needs a region to resolve its endpoint.
    """
    settings = settings or load_settings()
    catalog = load_catalog(settings.provisioning.role_catalog_path)

    backend = IamIdentityBackend(
        region=region or settings.aws.default_region,
        profile=settings.aws.default_profile,
        timeout_seconds=settings.aws.sdk_timeout_seconds,
        max_attempts=settings.aws.max_attempts,
    )
    service = OcmClusterService(
        settings.ocm.url,
        offline_token=settings.ocm.token,
        token_url=settings.ocm.token_url,
        client_id=settings.ocm.client_id,
        timeout_seconds=settings.ocm.request_timeout_seconds,
    )
    polling = settings.polling
    poller = ConvergencePoller(
        service,
        initial_interval=polling.initial_interval_seconds,
        max_interval=polling.max_interval_seconds,
        multiplier=polling.multiplier,
        max_transient_errors=polling.max_transient_errors,
        sleep=asyncio.sleep,
    )
    provisioning = settings.provisioning
    inspector = ResourceInspector(backend, catalog, max_retries=provisioning.max_retries)
    provisioner = ResourceProvisioner(
        backend,
        max_workers=provisioning.max_workers,
        max_retries=provisioning.max_retries,
        read_after_write_attempts=provisioning.read_after_write_attempts,
        read_after_write_delay=provisioning.read_after_write_delay_seconds,
    )
    rollback = RollbackCoordinator(
        backend,
        service,
        poller,
        cluster_delete_timeout=polling.timeout_seconds,
        max_retries=provisioning.max_retries,
    )
    orchestrator = ProvisioningOrchestrator(
        inspector,
        provisioner,
        service,
        poller,
        ClusterVerifier(probe=http_readyz_probe if probe_api else None),
        rollback,
        reporter=reporter,
        poll_timeout=polling.timeout_seconds,
    )
    teardown = ClusterTeardown(
        service, backend, poller, max_retries=provisioning.max_retries
    )

    return AppContext(
        settings=settings,
        catalog=catalog,
        backend=backend,
        service=service,
        poller=poller,
        orchestrator=orchestrator,
        teardown=teardown,
    )
