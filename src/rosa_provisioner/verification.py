"""Post-create checks on a converged cluster."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

import httpx

from rosa_provisioner.domain.models import ClusterRecord, ClusterSpec
from rosa_provisioner.errors import VerificationError

logger = logging.getLogger(__name__)

Probe = Callable[[str], Awaitable[bool]]


async def http_readyz_probe(api_url: str, timeout: float = 10.0) -> bool:
    """Return True when the API server answers at all.

    Any HTTP response counts; a fresh cluster usually rejects anonymous
    requests with 401/403 and that still proves the endpoint is serving.
    """
    url = f"{api_url.rstrip('/')}/readyz"
    try:
        async with httpx.AsyncClient(timeout=timeout, verify=False) as client:
            response = await client.get(url)
    except httpx.HTTPError as exc:
        logger.warning("API probe %s failed: %s", url, exc)
        return False
    logger.debug("API probe %s answered %s", url, response.status_code)
    return True


class ClusterVerifier:
    def __init__(self, probe: Probe | None = None) -> None:
        self._probe = probe

    async def verify(self, spec: ClusterSpec, record: ClusterRecord) -> None:
        problems: list[str] = []
        if record.state != "ready":
            problems.append(f"cluster state is {record.state}, expected ready")
        if record.compute_nodes is None:
            problems.append("cluster reports no compute node count")
        elif record.compute_nodes < spec.replicas:
            problems.append(
                f"cluster has {record.compute_nodes} compute nodes, {spec.replicas} requested"
            )
        if not record.api_url:
            problems.append("cluster has no API URL")
        elif self._probe is not None and not await self._probe(record.api_url):
            problems.append(f"API endpoint {record.api_url} is not reachable")

        if problems:
            raise VerificationError(problems)
        logger.info("Cluster %s (%s) verified", record.name, record.id)
