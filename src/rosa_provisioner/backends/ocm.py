"""Managed cluster service client for the OpenShift Cluster Manager API."""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from rosa_provisioner.domain.models import AddOn, AddOnInstallation, ClusterRecord
from rosa_provisioner.errors import (
    BackendError,
    BackendRejectedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientBackendError,
)
from rosa_provisioner.utils.masking import redact_sensitive_fields

logger = logging.getLogger(__name__)

CLUSTERS_API = "/api/clusters_mgmt/v1"
_TOKEN_REFRESH_MARGIN_SECONDS = 30


def translate_response_error(response: httpx.Response, action: str) -> BackendError:
    """Map an OCM error response onto the backend error taxonomy."""
    reason = response.reason_phrase
    code: str | None = None
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict):
        reason = str(body.get("reason") or reason)
        code = body.get("code")
    message = f"{action} failed: HTTP {response.status_code}: {reason}"
    status = response.status_code
    if status == 404:
        return NotFoundError(message)
    if status in (401, 403):
        return PermissionDeniedError(message)
    if status == 409:
        return ConflictError(message)
    if status == 429 or status >= 500:
        return TransientBackendError(message)
    return BackendRejectedError(message, code=code)


def _quote_search_value(value: str) -> str:
    return value.replace("'", "''")


class OcmClusterService:
    """Async OCM client; one instance per process, close with ``aclose``."""

    def __init__(
        self,
        base_url: str,
        *,
        offline_token: str | None = None,
        access_token: str | None = None,
        token_url: str | None = None,
        client_id: str = "cloud-services",
        timeout_seconds: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._base_url = base_url.rstrip("/")
        self._offline_token = offline_token
        self._access_token = access_token
        self._access_token_expires_at = float("inf") if access_token else 0.0
        self._token_url = token_url
        self._client_id = client_id
        self._timeout = timeout_seconds
        self._transport = transport
        self._client: httpx.AsyncClient | None = None
        self._token_lock = asyncio.Lock()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"Accept": "application/json"},
            )
        return self._client

    async def aclose(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

    async def _bearer_token(self) -> str:
        async with self._token_lock:
            now = time.monotonic()
            if self._access_token and now < self._access_token_expires_at:
                return self._access_token
            if not self._offline_token or not self._token_url:
                raise PermissionDeniedError(
                    "No OCM token configured; set OCM_TOKEN to an offline token",
                    code="missing_token",
                )
            try:
                response = await self._get_client().post(
                    self._token_url,
                    data={
                        "grant_type": "refresh_token",
                        "client_id": self._client_id,
                        "refresh_token": self._offline_token,
                    },
                )
            except httpx.HTTPError as exc:
                raise TransientBackendError(f"token exchange failed: {exc}") from exc
            if response.status_code != 200:
                raise translate_response_error(response, "token exchange")
            data = response.json()
            logger.debug("Token exchange response: %s", redact_sensitive_fields(data))
            self._access_token = str(data["access_token"])
            expires_in = float(data.get("expires_in", 300))
            self._access_token_expires_at = (
                now + max(expires_in - _TOKEN_REFRESH_MARGIN_SECONDS, 0)
            )
            return self._access_token

    async def _request(
        self,
        method: str,
        path: str,
        action: str,
        *,
        json_body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        token = await self._bearer_token()
        try:
            response = await self._get_client().request(
                method,
                f"{CLUSTERS_API}{path}",
                json=json_body,
                params=params,
                headers={"Authorization": f"Bearer {token}"},
            )
        except httpx.HTTPError as exc:
            raise TransientBackendError(f"{action} failed: {exc}") from exc
        if response.status_code >= 400:
            raise translate_response_error(response, action)
        if not response.content:
            return {}
        return response.json()

    async def submit_create(self, payload: dict[str, Any]) -> str:
        logger.debug("Submitting cluster payload: %s", redact_sensitive_fields(payload))
        data = await self._request(
            "POST", "/clusters", f"create cluster {payload.get('name')}", json_body=payload
        )
        cluster_id = data.get("id")
        if not cluster_id:
            raise BackendRejectedError("Cluster creation response did not include an id")
        logger.info("Cluster %s accepted with id %s", payload.get("name"), cluster_id)
        return str(cluster_id)

    async def get_status(self, cluster_id: str) -> str:
        data = await self._request(
            "GET", f"/clusters/{cluster_id}/status", f"get status of {cluster_id}"
        )
        return str(data.get("state", "unknown")).lower()

    async def delete_cluster(self, cluster_id: str) -> None:
        await self._request("DELETE", f"/clusters/{cluster_id}", f"delete cluster {cluster_id}")
        logger.info("Requested deletion of cluster %s", cluster_id)

    async def get_cluster(self, cluster_key: str) -> ClusterRecord:
        key = _quote_search_value(cluster_key)
        data = await self._request(
            "GET",
            "/clusters",
            f"find cluster {cluster_key}",
            params={
                "search": f"id = '{key}' or name = '{key}' or external_id = '{key}'",
                "size": "1",
            },
        )
        items = data.get("items") or []
        if not items:
            raise NotFoundError(f"Cluster '{cluster_key}' not found")
        return ClusterRecord.from_api(items[0])

    async def list_available_addons(self) -> list[AddOn]:
        data = await self._request(
            "GET",
            "/addons",
            "list add-ons",
            params={"search": "enabled = 't'", "order": "name asc"},
        )
        return [
            AddOn(
                id=str(item.get("id", "")),
                name=str(item.get("name", "")),
                available=bool(item.get("enabled", False)),
            )
            for item in data.get("items") or []
        ]

    async def list_cluster_addons(self, cluster_id: str) -> list[AddOnInstallation]:
        data = await self._request(
            "GET", f"/clusters/{cluster_id}/addons", f"list add-ons of {cluster_id}"
        )
        installations: list[AddOnInstallation] = []
        for item in data.get("items") or []:
            addon = item.get("addon") or {}
            installations.append(
                AddOnInstallation(
                    id=str(addon.get("id") or item.get("id", "")),
                    name=str(addon.get("name") or addon.get("id") or ""),
                    state=str(item.get("state", "unknown")),
                )
            )
        return installations
