"""Resolve the identity resources a cluster needs from the role catalog."""

from __future__ import annotations

import hashlib
import re
from typing import Any
from urllib.parse import urlparse

from rosa_provisioner.catalog.models import (
    AccountRoleDefinition,
    OperatorRoleDefinition,
    RoleCatalogConfig,
    RoleSelector,
)
from rosa_provisioner.domain.models import ClusterSpec, ResourceKind, ResourceSpec

MAX_ROLE_NAME_LENGTH = 64
_ROLE_NAME_PATTERN = re.compile(r"^[\w+=,.@-]+$")

VERSION_TAG = "rosa_role_version"
ROLE_TYPE_TAG = "rosa_role_type"
CLUSTER_TAG = "rosa_cluster_name"
MANAGED_TAG = "red-hat-managed"

OIDC_LOGICAL_NAME = "oidc provider"


def account_logical_name(role: str) -> str:
    return f"account role: {role.lower()}"


def operator_logical_name(role: str) -> str:
    return f"operator role: {role.lower()}"


def is_valid_role_name(name: str) -> bool:
    return 0 < len(name) <= MAX_ROLE_NAME_LENGTH and bool(_ROLE_NAME_PATTERN.match(name))


def _truncate_role_name(name: str) -> str:
    if len(name) <= MAX_ROLE_NAME_LENGTH:
        return name
    suffix = hashlib.sha256(name.encode()).hexdigest()[:8]
    return name[: MAX_ROLE_NAME_LENGTH - 9] + "-" + suffix


def issuer_host_path(issuer_url: str) -> str:
    """Return the issuer without scheme, as IAM uses it in ARNs and condition keys."""
    parsed = urlparse(issuer_url)
    return f"{parsed.netloc}{parsed.path}".rstrip("/")


def render_operator_trust_policy(
    resource: ResourceSpec,
    oidc_provider_arn: str,
    issuer_url: str,
) -> dict[str, Any]:
    """Trust policy letting the operator's service accounts assume the role via OIDC."""
    issuer = issuer_host_path(issuer_url)
    subjects = [
        f"system:serviceaccount:{resource.namespace}:{service_account}"
        for service_account in resource.service_accounts
    ]
    return {
        "Version": "2012-10-17",
        "Statement": [
            {
                "Effect": "Allow",
                "Principal": {"Federated": oidc_provider_arn},
                "Action": "sts:AssumeRoleWithWebIdentity",
                "Condition": {"StringEquals": {f"{issuer}:sub": subjects}},
            }
        ],
    }


class RoleCatalog:
    """Expands catalog definitions into concrete ResourceSpecs for one cluster."""

    def __init__(self, config: RoleCatalogConfig) -> None:
        self._config = config

    @property
    def config(self) -> RoleCatalogConfig:
        return self._config

    @staticmethod
    def _selected(definition: RoleSelector, spec: ClusterSpec) -> bool:
        if (
            definition.hosted_control_plane is not None
            and definition.hosted_control_plane != spec.hosted_control_plane
        ):
            return False
        return all(spec.has_feature(feature) for feature in definition.requires_features)

    def account_role_name(self, spec: ClusterSpec, role: str) -> str:
        naming = self._config.naming
        pattern = (
            naming.hosted_account_role_pattern
            if spec.hosted_control_plane
            else naming.account_role_pattern
        )
        return _truncate_role_name(pattern.format(prefix=spec.account_roles_prefix, role=role))

    def operator_role_name(self, spec: ClusterSpec, definition: OperatorRoleDefinition) -> str:
        name = self._config.naming.operator_role_pattern.format(
            prefix=spec.effective_operator_roles_prefix,
            namespace=definition.namespace,
            service_account=definition.service_accounts[0],
            role=definition.role,
        )
        return _truncate_role_name(name)

    def required_resources(self, spec: ClusterSpec) -> list[ResourceSpec]:
        """Resources the cluster needs, in dependency order.

        Direct-credential clusters need no identity resources at all.
        """
        if not spec.is_sts:
            return []

        version = spec.demanded_role_version
        base_tags = {**spec.tags, MANAGED_TAG: "true"}
        resources = [
            ResourceSpec(
                kind=ResourceKind.OIDC_PROVIDER,
                name=spec.oidc_issuer_url,
                logical_name=OIDC_LOGICAL_NAME,
                version=version,
                tags={**base_tags, VERSION_TAG: version, CLUSTER_TAG: spec.name},
                client_ids=tuple(self._config.oidc.client_ids),
                thumbprints=tuple(self._config.oidc.thumbprints),
            )
        ]
        resources.extend(
            self._account_resource(spec, definition, version, base_tags)
            for definition in self._config.account_roles
            if self._selected(definition, spec)
        )
        resources.extend(
            self._operator_resource(spec, definition, version, base_tags)
            for definition in self._config.operator_roles
            if self._selected(definition, spec)
        )
        return resources

    def _account_resource(
        self,
        spec: ClusterSpec,
        definition: AccountRoleDefinition,
        version: str,
        base_tags: dict[str, str],
    ) -> ResourceSpec:
        if definition.trust.aws:
            principal: dict[str, str] = {"AWS": definition.trust.aws}
        else:
            principal = {"Service": definition.trust.service or ""}
        trust_policy = {
            "Version": "2012-10-17",
            "Statement": [
                {"Effect": "Allow", "Principal": principal, "Action": "sts:AssumeRole"}
            ],
        }
        return ResourceSpec(
            kind=ResourceKind.ACCOUNT_ROLE,
            name=self.account_role_name(spec, definition.role),
            logical_name=account_logical_name(definition.role),
            version=version,
            role=definition.role.lower(),
            trust_policy=trust_policy,
            policy_arns=tuple(definition.policy_arns),
            inline_policy=definition.inline_policy,
            tags={**base_tags, VERSION_TAG: version, ROLE_TYPE_TAG: definition.role.lower()},
            path=self._config.naming.role_path,
        )

    def _operator_resource(
        self,
        spec: ClusterSpec,
        definition: OperatorRoleDefinition,
        version: str,
        base_tags: dict[str, str],
    ) -> ResourceSpec:
        return ResourceSpec(
            kind=ResourceKind.OPERATOR_ROLE,
            name=self.operator_role_name(spec, definition),
            logical_name=operator_logical_name(definition.role),
            version=version,
            role=definition.role.lower(),
            namespace=definition.namespace,
            service_accounts=tuple(definition.service_accounts),
            policy_arns=tuple(definition.policy_arns),
            inline_policy=definition.inline_policy,
            tags={
                **base_tags,
                VERSION_TAG: version,
                CLUSTER_TAG: spec.name,
                "operator_namespace": definition.namespace,
                "operator_name": definition.service_accounts[0],
            },
            path=self._config.naming.role_path,
        )
