"""Backends for the cloud identity provider and the managed cluster service."""

from rosa_provisioner.backends.base import CloudIdentityBackend, ManagedClusterService
from rosa_provisioner.backends.iam import IamIdentityBackend
from rosa_provisioner.backends.ocm import OcmClusterService

__all__ = [
    "CloudIdentityBackend",
    "IamIdentityBackend",
    "ManagedClusterService",
    "OcmClusterService",
]
