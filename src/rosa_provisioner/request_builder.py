"""Translate a ClusterSpec and its identity resources into a creation payload."""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Sequence
from typing import Any

from rosa_provisioner.catalog.catalog import MAX_ROLE_NAME_LENGTH, is_valid_role_name
from rosa_provisioner.domain.models import (
    ClusterSpec,
    PlanEntry,
    ResourceKind,
    ResourcePlan,
    ResourceSpec,
)
from rosa_provisioner.errors import RequestValidationError

MAX_CLUSTER_NAME_LENGTH_CLASSIC = 15
MAX_CLUSTER_NAME_LENGTH_HOSTED = 54
MIN_REPLICAS = 2
MIN_MULTI_AZ_REPLICAS = 3
MAX_REPLICAS_CLASSIC = 180
MAX_REPLICAS_HOSTED = 500
HOST_PREFIX_RANGE = (23, 26)

_CLUSTER_NAME_PATTERN = re.compile(r"^[a-z]([-a-z0-9]*[a-z0-9])?$")
_VERSION_PATTERN = re.compile(r"^\d+\.\d+(\.\d+)?(-[0-9a-z.]+)?$")
_MACHINE_TYPE_PATTERN = re.compile(r"^([a-z][a-z0-9]*)\.([0-9]*x?large|metal)$")

ALLOWED_MACHINE_FAMILIES = frozenset(
    {
        "m5", "m5a", "m5d", "m6a", "m6i", "m6id", "m7a", "m7i",
        "c5", "c6a", "c6i", "r5", "r6i", "x2idn",
    }
)

AWS_REGIONS = frozenset(
    {
        "us-east-1", "us-east-2", "us-west-1", "us-west-2",
        "ca-central-1", "sa-east-1",
        "eu-central-1", "eu-central-2", "eu-west-1", "eu-west-2", "eu-west-3",
        "eu-north-1", "eu-south-1", "eu-south-2",
        "ap-east-1", "ap-south-1", "ap-south-2", "ap-northeast-1", "ap-northeast-2",
        "ap-northeast-3", "ap-southeast-1", "ap-southeast-2", "ap-southeast-3",
        "ap-southeast-4", "me-south-1", "me-central-1", "af-south-1", "il-central-1",
    }
)

REQUIRED_ACCOUNT_ROLES = ("installer",)


def _validate_name(spec: ClusterSpec, violations: list[str]) -> None:
    if not spec.name:
        violations.append("cluster name must not be empty")
        return
    limit = (
        MAX_CLUSTER_NAME_LENGTH_HOSTED
        if spec.hosted_control_plane
        else MAX_CLUSTER_NAME_LENGTH_CLASSIC
    )
    if len(spec.name) > limit:
        violations.append(
            f"cluster name '{spec.name}' is {len(spec.name)} characters; the limit is {limit}"
        )
    if not _CLUSTER_NAME_PATTERN.match(spec.name):
        violations.append(
            f"cluster name '{spec.name}' must start with a letter and contain only "
            "lowercase letters, digits and dashes"
        )


def _validate_compute(spec: ClusterSpec, violations: list[str]) -> None:
    if spec.region not in AWS_REGIONS:
        violations.append(f"region '{spec.region}' is not a supported AWS region")

    if not _VERSION_PATTERN.match(spec.version):
        violations.append(f"version '{spec.version}' is not a valid OpenShift version")

    match = _MACHINE_TYPE_PATTERN.match(spec.compute_machine_type)
    if match is None or match.group(1) not in ALLOWED_MACHINE_FAMILIES:
        violations.append(
            f"machine type '{spec.compute_machine_type}' is not an allowed compute instance type"
        )

    max_replicas = MAX_REPLICAS_HOSTED if spec.hosted_control_plane else MAX_REPLICAS_CLASSIC
    if spec.multi_az and not spec.hosted_control_plane:
        if spec.replicas < MIN_MULTI_AZ_REPLICAS or spec.replicas % 3 != 0:
            violations.append(
                f"multi-AZ clusters need a multiple of 3 compute nodes (at least "
                f"{MIN_MULTI_AZ_REPLICAS}); got {spec.replicas}"
            )
    elif spec.replicas < MIN_REPLICAS:
        violations.append(
            f"at least {MIN_REPLICAS} compute nodes are required; got {spec.replicas}"
        )
    if spec.replicas > max_replicas:
        violations.append(f"at most {max_replicas} compute nodes are allowed; got {spec.replicas}")


def _validate_network(spec: ClusterSpec, violations: list[str]) -> None:
    networks: dict[str, ipaddress.IPv4Network | ipaddress.IPv6Network] = {}
    for label, value in (
        ("machine CIDR", spec.machine_cidr),
        ("service CIDR", spec.service_cidr),
        ("pod CIDR", spec.pod_cidr),
    ):
        try:
            networks[label] = ipaddress.ip_network(value, strict=True)
        except ValueError as exc:
            violations.append(f"{label} '{value}' is invalid: {exc}")

    labels = list(networks)
    for index, first in enumerate(labels):
        for second in labels[index + 1 :]:
            if networks[first].overlaps(networks[second]):
                violations.append(f"{first} {networks[first]} overlaps {second} {networks[second]}")

    low, high = HOST_PREFIX_RANGE
    if not low <= spec.host_prefix <= high:
        violations.append(f"host prefix must be between {low} and {high}; got {spec.host_prefix}")

    if spec.hosted_control_plane and not spec.subnet_ids:
        violations.append("hosted control plane clusters require subnet ids")
    if spec.private and not spec.subnet_ids:
        violations.append("private clusters require existing subnet ids")


def _validate_security(
    spec: ClusterSpec, plan: ResourcePlan | None, violations: list[str]
) -> None:
    if not spec.is_sts:
        if spec.operator_roles_prefix:
            violations.append("operator roles prefix is only valid in STS security mode")
        if plan is not None and len(plan):
            violations.append("direct security mode must not reference identity roles")
        return

    if plan is None or not len(plan):
        violations.append("STS security mode requires identity resources but none were planned")
        return

    for entry in plan.not_ready():
        state = entry.outcome.value if entry.outcome else entry.status.value
        violations.append(f"{entry.logical_name} is not ready ({state})")

    for role in REQUIRED_ACCOUNT_ROLES:
        if plan.role_arn(ResourceKind.ACCOUNT_ROLE, role) is None:
            violations.append(f"account role '{role}' has no ARN")

    if not plan.by_kind(ResourceKind.OIDC_PROVIDER):
        violations.append("STS security mode requires an OIDC provider")
    if not plan.by_kind(ResourceKind.OPERATOR_ROLE):
        violations.append("STS security mode requires operator roles")


def _validate_role_names(resources: Sequence[ResourceSpec], violations: list[str]) -> None:
    for resource in resources:
        if resource.kind == ResourceKind.OIDC_PROVIDER:
            continue
        if not is_valid_role_name(resource.name):
            violations.append(
                f"role name '{resource.name}' must be 1-{MAX_ROLE_NAME_LENGTH} characters of "
                "letters, digits and +=,.@_-"
            )


def _operator_role_payload(entry: PlanEntry) -> dict[str, Any]:
    return {
        "name": entry.resource.service_accounts[0],
        "namespace": entry.resource.namespace,
        "role_arn": entry.identifier,
    }


def spec_violations(spec: ClusterSpec, resources: Sequence[ResourceSpec] = ()) -> list[str]:
    """Constraints that can be checked before any identity resource exists.

    ``resources`` are the identity resources the cluster will need; their
    names are checked against the IAM naming rules.
    """
    violations: list[str] = []
    _validate_name(spec, violations)
    _validate_compute(spec, violations)
    _validate_network(spec, violations)
    _validate_role_names(resources, violations)
    if not spec.is_sts and spec.hosted_control_plane:
        violations.append("hosted control plane clusters require STS security mode")
    return violations


def build_cluster_request(spec: ClusterSpec, plan: ResourcePlan | None) -> dict[str, Any]:
    """Return the cluster creation payload, or raise listing every violated constraint."""
    violations = spec_violations(spec)
    _validate_security(spec, plan, violations)
    if violations:
        raise RequestValidationError(violations)

    payload: dict[str, Any] = {
        "name": spec.name,
        "product": {"id": "rosa"},
        "cloud_provider": {"id": "aws"},
        "region": {"id": spec.region},
        "version": {
            "id": f"openshift-v{spec.version}",
            "channel_group": spec.channel_group,
        },
        "multi_az": spec.multi_az,
        "ccs": {"enabled": True},
        "hypershift": {"enabled": spec.hosted_control_plane},
        "api": {"listening": "internal" if spec.private else "external"},
        "nodes": {
            "compute": spec.replicas,
            "compute_machine_type": {"id": spec.compute_machine_type},
        },
        "network": {
            "type": spec.network_type,
            "machine_cidr": spec.machine_cidr,
            "service_cidr": spec.service_cidr,
            "pod_cidr": spec.pod_cidr,
            "host_prefix": spec.host_prefix,
        },
    }
    if spec.availability_zones:
        payload["nodes"]["availability_zones"] = list(spec.availability_zones)

    aws: dict[str, Any] = {}
    if spec.subnet_ids:
        aws["subnet_ids"] = list(spec.subnet_ids)
    if spec.tags:
        aws["tags"] = dict(spec.tags)

    if spec.is_sts and plan is not None:
        sts: dict[str, Any] = {
            "enabled": True,
            "role_arn": plan.role_arn(ResourceKind.ACCOUNT_ROLE, "installer"),
            "oidc_endpoint_url": spec.oidc_issuer_url,
            "operator_role_prefix": spec.effective_operator_roles_prefix,
            "operator_iam_roles": [
                _operator_role_payload(entry)
                for entry in plan.by_kind(ResourceKind.OPERATOR_ROLE)
            ],
        }
        support_arn = plan.role_arn(ResourceKind.ACCOUNT_ROLE, "support")
        if support_arn:
            sts["support_role_arn"] = support_arn
        instance_roles = {
            key: arn
            for key, arn in (
                ("worker_role_arn", plan.role_arn(ResourceKind.ACCOUNT_ROLE, "worker")),
                ("master_role_arn", plan.role_arn(ResourceKind.ACCOUNT_ROLE, "controlplane")),
            )
            if arn
        }
        if instance_roles:
            sts["instance_iam_roles"] = instance_roles
        aws["sts"] = sts

    if aws:
        payload["aws"] = aws
    return payload
