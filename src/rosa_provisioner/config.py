"""Configuration management for the cluster provisioner."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

from rosa_provisioner.domain.models import DEFAULT_OIDC_ENDPOINT_BASE, ClusterSpec
from rosa_provisioner.errors import InvalidClusterFile

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class AWSSettings(BaseModel):
    default_region: str | None = Field(default=None)
    default_profile: str | None = Field(default=None)
    sdk_timeout_seconds: int = Field(default=30, ge=1, le=300)
    max_attempts: int = Field(default=3, ge=1, le=10)


class OCMSettings(BaseModel):
    url: str = Field(default="https://api.openshift.com")
    token: str | None = Field(
        default=None,
        description="Offline refresh token used to obtain API access tokens",
    )
    token_url: str = Field(
        default="https://sso.redhat.com/auth/realms/redhat-external/protocol/openid-connect/token"
    )
    client_id: str = Field(default="cloud-services")
    request_timeout_seconds: float = Field(default=30.0, ge=0.1)

    @field_validator("url")
    @classmethod
    def _strip_trailing_slash(cls, value: str) -> str:
        return value.rstrip("/")


class PollingSettings(BaseModel):
    initial_interval_seconds: float = Field(default=10.0, gt=0)
    max_interval_seconds: float = Field(default=60.0, gt=0)
    multiplier: float = Field(default=1.5, ge=1.0)
    timeout_seconds: float = Field(default=3600.0, gt=0)
    max_transient_errors: int = Field(default=5, ge=0, le=50)


class ProvisioningSettings(BaseModel):
    max_workers: int = Field(default=4, ge=1, le=32)
    max_retries: int = Field(default=3, ge=0, le=10)
    read_after_write_attempts: int = Field(default=5, ge=1, le=30)
    read_after_write_delay_seconds: float = Field(default=2.0, ge=0)
    role_catalog_path: str | None = Field(default=None)
    oidc_endpoint_base: str = Field(default=DEFAULT_OIDC_ENDPOINT_BASE)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    aws: AWSSettings = Field(default_factory=AWSSettings)
    ocm: OCMSettings = Field(default_factory=OCMSettings)
    polling: PollingSettings = Field(default_factory=PollingSettings)
    provisioning: ProvisioningSettings = Field(default_factory=ProvisioningSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "aws_region": "AWS_DEFAULT_REGION",
    "aws_profile": "AWS_PROFILE",
    "ocm_url": "OCM_URL",
    "ocm_token": "OCM_TOKEN",
    "ocm_token_url": "OCM_TOKEN_URL",
    "ocm_client_id": "OCM_CLIENT_ID",
    "role_catalog_path": "ROSA_ROLE_CATALOG_PATH",
    "oidc_endpoint_base": "ROSA_OIDC_ENDPOINT_BASE",
}


def _resolve_path(path: str) -> str:
    return str(Path(path).expanduser().resolve())


def _env_int(key: str, default: int) -> int:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return int(value)
    except ValueError:
        _config_logger.warning(
            "Invalid integer value for %s: %r, using default %d", key, value, default
        )
        return default


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv()
    log_file_env = os.getenv(ENV_KEYS["log_file"])
    catalog_path_env = os.getenv(ENV_KEYS["role_catalog_path"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "aws": {
            "default_region": os.getenv("AWS_REGION") or os.getenv(ENV_KEYS["aws_region"]),
            "default_profile": os.getenv(ENV_KEYS["aws_profile"]),
            "sdk_timeout_seconds": _env_int(
                "AWS_SDK_TIMEOUT_SECONDS",
                AWSSettings().sdk_timeout_seconds,
            ),
            "max_attempts": _env_int("AWS_MAX_ATTEMPTS", AWSSettings().max_attempts),
        },
        "ocm": {
            "url": os.getenv(ENV_KEYS["ocm_url"], OCMSettings().url),
            "token": os.getenv(ENV_KEYS["ocm_token"]) or None,
            "token_url": os.getenv(ENV_KEYS["ocm_token_url"], OCMSettings().token_url),
            "client_id": os.getenv(ENV_KEYS["ocm_client_id"], OCMSettings().client_id),
            "request_timeout_seconds": _env_float(
                "OCM_REQUEST_TIMEOUT_SECONDS",
                OCMSettings().request_timeout_seconds,
            ),
        },
        "polling": {
            "initial_interval_seconds": _env_float(
                "POLL_INITIAL_INTERVAL_SECONDS",
                PollingSettings().initial_interval_seconds,
            ),
            "max_interval_seconds": _env_float(
                "POLL_MAX_INTERVAL_SECONDS",
                PollingSettings().max_interval_seconds,
            ),
            "multiplier": _env_float("POLL_MULTIPLIER", PollingSettings().multiplier),
            "timeout_seconds": _env_float(
                "POLL_TIMEOUT_SECONDS",
                PollingSettings().timeout_seconds,
            ),
            "max_transient_errors": _env_int(
                "POLL_MAX_TRANSIENT_ERRORS",
                PollingSettings().max_transient_errors,
            ),
        },
        "provisioning": {
            "max_workers": _env_int(
                "PROVISION_MAX_WORKERS",
                ProvisioningSettings().max_workers,
            ),
            "max_retries": _env_int(
                "PROVISION_MAX_RETRIES",
                ProvisioningSettings().max_retries,
            ),
            "read_after_write_attempts": _env_int(
                "READ_AFTER_WRITE_ATTEMPTS",
                ProvisioningSettings().read_after_write_attempts,
            ),
            "read_after_write_delay_seconds": _env_float(
                "READ_AFTER_WRITE_DELAY_SECONDS",
                ProvisioningSettings().read_after_write_delay_seconds,
            ),
            "role_catalog_path": _resolve_path(catalog_path_env) if catalog_path_env else None,
            "oidc_endpoint_base": os.getenv(
                ENV_KEYS["oidc_endpoint_base"],
                ProvisioningSettings().oidc_endpoint_base,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.polling.max_interval_seconds < settings.polling.initial_interval_seconds:
        raise RuntimeError(
            "Invalid configuration: POLL_MAX_INTERVAL_SECONDS must not be smaller "
            "than POLL_INITIAL_INTERVAL_SECONDS"
        )

    return settings


def load_cluster_spec(
    path: str | None,
    overrides: Mapping[str, Any] | None = None,
    settings: Settings | None = None,
) -> ClusterSpec:
    """Build the immutable ClusterSpec from a YAML cluster file plus CLI overrides.

    Overrides whose value is ``None`` are ignored so unset flags never mask
    values from the file.
    """
    data: dict[str, Any] = {}
    if path:
        cluster_path = Path(path)
        if not cluster_path.exists():
            raise FileNotFoundError(f"Cluster file not found: {cluster_path}")
        try:
            with cluster_path.open("r", encoding="utf-8") as handle:
                loaded = yaml.safe_load(handle) or {}
        except yaml.YAMLError as exc:
            raise InvalidClusterFile(
                f"Cluster file {cluster_path} is not valid YAML: {exc}"
            ) from exc
        if not isinstance(loaded, dict):
            raise InvalidClusterFile(f"Cluster file {cluster_path} must contain a mapping")
        data.update(loaded)

    for key, value in (overrides or {}).items():
        if value is not None:
            data[key] = value

    if settings is not None and "oidc_endpoint_base" not in data:
        data["oidc_endpoint_base"] = settings.provisioning.oidc_endpoint_base
    if settings is not None and "region" not in data and settings.aws.default_region:
        data["region"] = settings.aws.default_region

    return ClusterSpec.model_validate(data)
