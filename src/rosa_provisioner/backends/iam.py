"""AWS IAM implementation of the cloud identity backend."""

from __future__ import annotations

import asyncio
import json
import logging
import threading
from typing import Any

import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError

from rosa_provisioner.catalog.catalog import CLUSTER_TAG, VERSION_TAG, issuer_host_path
from rosa_provisioner.domain.models import ResourceDescriptor, ResourceKind, ResourceSpec
from rosa_provisioner.errors import (
    BackendError,
    BackendRejectedError,
    ConflictError,
    NotFoundError,
    PermissionDeniedError,
    TransientBackendError,
    ValidationError,
)

logger = logging.getLogger(__name__)

_NOT_FOUND_CODES = frozenset({"NoSuchEntity", "NoSuchEntityException"})
_PERMISSION_CODES = frozenset(
    {"AccessDenied", "AccessDeniedException", "UnauthorizedOperation", "InvalidClientTokenId"}
)
_CONFLICT_CODES = frozenset({"EntityAlreadyExists", "DeleteConflict"})
_TRANSIENT_CODES = frozenset(
    {
        "Throttling",
        "ThrottlingException",
        "RequestLimitExceeded",
        "ServiceFailure",
        "ServiceUnavailable",
        "ConcurrentModification",
        "RequestTimeout",
    }
)

_ROLE_KINDS = frozenset({ResourceKind.ACCOUNT_ROLE, ResourceKind.OPERATOR_ROLE})


def translate_client_error(exc: ClientError, action: str) -> BackendError:
    """Map a botocore ClientError onto the backend error taxonomy."""
    error_code = exc.response.get("Error", {}).get("Code", "Unknown")
    error_message = exc.response.get("Error", {}).get("Message", str(exc))
    message = f"{action} failed: {error_code}: {error_message}"
    if error_code in _NOT_FOUND_CODES:
        return NotFoundError(message)
    if error_code in _PERMISSION_CODES:
        return PermissionDeniedError(message)
    if error_code in _CONFLICT_CODES:
        return ConflictError(message)
    if error_code in _TRANSIENT_CODES:
        return TransientBackendError(message)
    return BackendRejectedError(message, code=error_code)


def _tags_to_list(tags: dict[str, str]) -> list[dict[str, str]]:
    return [{"Key": key, "Value": value} for key, value in sorted(tags.items())]


def _tags_to_dict(tags: list[dict[str, str]] | None) -> dict[str, str]:
    return {tag["Key"]: tag["Value"] for tag in tags or []}


def _inline_policy_name(role_name: str) -> str:
    return f"{role_name}-policy"


class IamIdentityBackend:
    """Thread-safe IAM backend; blocking boto3 calls run in worker threads."""

    def __init__(
        self,
        region: str | None = None,
        profile: str | None = None,
        timeout_seconds: int = 30,
        max_attempts: int = 3,
        client: Any = None,
    ) -> None:
        self._region = region
        self._profile = profile
        self._timeout_seconds = timeout_seconds
        self._max_attempts = max_attempts
        self._client = client
        self._lock = threading.Lock()

    def _get_client(self) -> Any:
        if self._client is not None:
            return self._client

        with self._lock:
            if self._client is not None:
                return self._client

            session = boto3.Session(profile_name=self._profile, region_name=self._region)
            self._client = session.client(
                "iam",
                config=Config(
                    connect_timeout=self._timeout_seconds,
                    read_timeout=self._timeout_seconds,
                    retries={"max_attempts": self._max_attempts, "mode": "standard"},
                ),
            )
            logger.info("IAM client initialized (profile=%s)", self._profile or "default")
            return self._client

    async def _call(self, action: str, fn: Any, *args: Any) -> Any:
        try:
            return await asyncio.to_thread(fn, *args)
        except ClientError as exc:
            raise translate_client_error(exc, action) from exc
        except BotoCoreError as exc:
            raise TransientBackendError(f"{action} failed: {exc}") from exc

    async def find_resource(self, kind: ResourceKind, name: str) -> ResourceDescriptor | None:
        if kind == ResourceKind.OIDC_PROVIDER:
            return await self._call(f"find OIDC provider {name}", self._find_oidc_sync, name)
        try:
            return await self._call(f"get role {name}", self._get_role_sync, kind, name)
        except NotFoundError:
            return None

    async def create_resource(self, kind: ResourceKind, spec: ResourceSpec) -> ResourceDescriptor:
        if kind == ResourceKind.OIDC_PROVIDER:
            return await self._call(
                f"create OIDC provider {spec.name}", self._create_oidc_sync, spec
            )
        if kind not in _ROLE_KINDS:
            raise ValidationError(f"IAM backend cannot create {kind.value}")
        return await self._call(f"create role {spec.name}", self._create_role_sync, spec)

    async def update_resource(
        self, spec: ResourceSpec, existing: ResourceDescriptor
    ) -> ResourceDescriptor:
        if existing.kind not in _ROLE_KINDS:
            raise ValidationError(f"IAM backend cannot update {existing.kind.value}")
        return await self._call(
            f"update role {existing.name}", self._update_role_sync, spec, existing
        )

    async def delete_resource(self, descriptor: ResourceDescriptor) -> None:
        if descriptor.kind == ResourceKind.OIDC_PROVIDER:
            await self._call(
                f"delete OIDC provider {descriptor.arn}",
                self._delete_oidc_sync,
                descriptor.arn,
            )
            return
        await self._call(f"delete role {descriptor.name}", self._delete_role_sync, descriptor.name)

    async def list_cluster_resources(
        self, kind: ResourceKind, cluster_name: str
    ) -> list[ResourceDescriptor]:
        if kind == ResourceKind.OIDC_PROVIDER:
            return await self._call(
                "list OIDC providers", self._list_cluster_oidc_sync, cluster_name
            )
        return await self._call("list roles", self._list_cluster_roles_sync, kind, cluster_name)

    # OIDC providers

    def _find_oidc_sync(self, issuer_url: str) -> ResourceDescriptor | None:
        client = self._get_client()
        suffix = f"oidc-provider/{issuer_host_path(issuer_url)}"
        response = client.list_open_id_connect_providers()
        for provider in response.get("OpenIDConnectProviderList", []):
            arn = provider["Arn"]
            if arn.endswith(suffix):
                details = client.get_open_id_connect_provider(OpenIDConnectProviderArn=arn)
                tags = _tags_to_dict(details.get("Tags"))
                return ResourceDescriptor(
                    kind=ResourceKind.OIDC_PROVIDER,
                    name=issuer_url,
                    arn=arn,
                    version=tags.get(VERSION_TAG),
                    tags=tags,
                )
        return None

    def _create_oidc_sync(self, spec: ResourceSpec) -> ResourceDescriptor:
        client = self._get_client()
        params: dict[str, Any] = {
            "Url": spec.name,
            "ClientIDList": list(spec.client_ids),
            "Tags": _tags_to_list(spec.tags),
        }
        if spec.thumbprints:
            params["ThumbprintList"] = list(spec.thumbprints)
        response = client.create_open_id_connect_provider(**params)
        arn = response["OpenIDConnectProviderArn"]
        logger.info("Created OIDC provider %s", arn)
        return ResourceDescriptor(
            kind=ResourceKind.OIDC_PROVIDER,
            name=spec.name,
            arn=arn,
            version=spec.tags.get(VERSION_TAG),
            tags=dict(spec.tags),
        )

    def _delete_oidc_sync(self, arn: str) -> None:
        self._get_client().delete_open_id_connect_provider(OpenIDConnectProviderArn=arn)
        logger.info("Deleted OIDC provider %s", arn)

    def _list_cluster_oidc_sync(self, cluster_name: str) -> list[ResourceDescriptor]:
        client = self._get_client()
        found: list[ResourceDescriptor] = []
        response = client.list_open_id_connect_providers()
        for provider in response.get("OpenIDConnectProviderList", []):
            arn = provider["Arn"]
            details = client.get_open_id_connect_provider(OpenIDConnectProviderArn=arn)
            tags = _tags_to_dict(details.get("Tags"))
            if tags.get(CLUSTER_TAG) == cluster_name:
                found.append(
                    ResourceDescriptor(
                        kind=ResourceKind.OIDC_PROVIDER,
                        name=f"https://{details.get('Url', '')}",
                        arn=arn,
                        version=tags.get(VERSION_TAG),
                        tags=tags,
                    )
                )
        return found

    # Roles

    def _get_role_sync(self, kind: ResourceKind, name: str) -> ResourceDescriptor:
        role = self._get_client().get_role(RoleName=name)["Role"]
        tags = _tags_to_dict(role.get("Tags"))
        return ResourceDescriptor(
            kind=kind,
            name=role["RoleName"],
            arn=role["Arn"],
            version=tags.get(VERSION_TAG),
            tags=tags,
        )

    def _create_role_sync(self, spec: ResourceSpec) -> ResourceDescriptor:
        if spec.trust_policy is None:
            raise ValidationError(f"Role {spec.name} has no trust policy")
        client = self._get_client()
        response = client.create_role(
            RoleName=spec.name,
            Path=spec.path,
            AssumeRolePolicyDocument=json.dumps(spec.trust_policy),
            Tags=_tags_to_list(spec.tags),
        )
        arn = response["Role"]["Arn"]
        try:
            self._apply_role_permissions(client, spec)
        except ClientError:
            # The role is unusable without its permissions; remove it so the
            # failed create leaves nothing behind.
            logger.warning("Attaching permissions to %s failed; removing the role", spec.name)
            try:
                self._delete_role_sync(spec.name)
            except ClientError as cleanup_exc:
                logger.error("Could not remove half-created role %s: %s", spec.name, cleanup_exc)
            raise
        logger.info("Created role %s", arn)
        return ResourceDescriptor(
            kind=spec.kind,
            name=spec.name,
            arn=arn,
            version=spec.tags.get(VERSION_TAG),
            tags=dict(spec.tags),
        )

    def _apply_role_permissions(self, client: Any, spec: ResourceSpec) -> None:
        for policy_arn in spec.policy_arns:
            client.attach_role_policy(RoleName=spec.name, PolicyArn=policy_arn)
        if spec.inline_policy:
            client.put_role_policy(
                RoleName=spec.name,
                PolicyName=_inline_policy_name(spec.name),
                PolicyDocument=json.dumps(spec.inline_policy),
            )

    def _update_role_sync(
        self, spec: ResourceSpec, existing: ResourceDescriptor
    ) -> ResourceDescriptor:
        if spec.trust_policy is None:
            raise ValidationError(f"Role {spec.name} has no trust policy")
        client = self._get_client()
        client.update_assume_role_policy(
            RoleName=existing.name,
            PolicyDocument=json.dumps(spec.trust_policy),
        )
        attached = {
            policy["PolicyArn"]
            for policy in client.list_attached_role_policies(RoleName=existing.name).get(
                "AttachedPolicies", []
            )
        }
        for policy_arn in spec.policy_arns:
            if policy_arn not in attached:
                client.attach_role_policy(RoleName=existing.name, PolicyArn=policy_arn)
        if spec.inline_policy:
            client.put_role_policy(
                RoleName=existing.name,
                PolicyName=_inline_policy_name(existing.name),
                PolicyDocument=json.dumps(spec.inline_policy),
            )
        client.tag_role(RoleName=existing.name, Tags=_tags_to_list(spec.tags))
        logger.info("Upgraded role %s to version %s", existing.arn, spec.version)
        return ResourceDescriptor(
            kind=existing.kind,
            name=existing.name,
            arn=existing.arn,
            version=spec.tags.get(VERSION_TAG),
            tags={**existing.tags, **spec.tags},
        )

    def _delete_role_sync(self, name: str) -> None:
        client = self._get_client()
        attached = client.list_attached_role_policies(RoleName=name).get("AttachedPolicies", [])
        for policy in attached:
            client.detach_role_policy(RoleName=name, PolicyArn=policy["PolicyArn"])
        for policy_name in client.list_role_policies(RoleName=name).get("PolicyNames", []):
            client.delete_role_policy(RoleName=name, PolicyName=policy_name)
        client.delete_role(RoleName=name)
        logger.info("Deleted role %s", name)

    def _list_cluster_roles_sync(
        self, kind: ResourceKind, cluster_name: str
    ) -> list[ResourceDescriptor]:
        client = self._get_client()
        found: list[ResourceDescriptor] = []
        paginator = client.get_paginator("list_roles")
        for page in paginator.paginate():
            for role in page.get("Roles", []):
                tags = _tags_to_dict(
                    client.list_role_tags(RoleName=role["RoleName"]).get("Tags")
                )
                if tags.get(CLUSTER_TAG) != cluster_name or "operator_namespace" not in tags:
                    continue
                found.append(
                    ResourceDescriptor(
                        kind=kind,
                        name=role["RoleName"],
                        arn=role["Arn"],
                        version=tags.get(VERSION_TAG),
                        tags=tags,
                    )
                )
        return found
