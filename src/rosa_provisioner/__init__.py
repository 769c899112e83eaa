"""Provisioning engine for managed OpenShift clusters using STS identity roles."""

__version__ = "0.3.0"
