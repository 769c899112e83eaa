"""Role catalog configuration models."""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator


def _ensure_list(v: Any) -> list:
    """Convert None to empty list, pass through lists."""
    if v is None:
        return []
    return v


class TrustSettings(BaseModel):
    """Principal an account role trusts: an AWS principal or an AWS service."""

    aws: str | None = Field(default=None)
    service: str | None = Field(default=None)

    @model_validator(mode="after")
    def _exactly_one(self) -> "TrustSettings":
        if bool(self.aws) == bool(self.service):
            raise ValueError("trust must name exactly one of 'aws' or 'service'")
        return self


class RoleSelector(BaseModel):
    hosted_control_plane: bool | None = Field(
        default=None,
        description="Only select the role for hosted (true) or classic (false); null for both",
    )
    requires_features: list[str] = Field(default_factory=list)

    @field_validator("requires_features", mode="before")
    @classmethod
    def _validate_features(cls, v: Any) -> list:
        return [str(item).lower() for item in _ensure_list(v)]


class AccountRoleDefinition(RoleSelector):
    role: str
    trust: TrustSettings
    policy_arns: list[str] = Field(default_factory=list)
    inline_policy: dict[str, Any] | None = Field(default=None)

    @field_validator("policy_arns", mode="before")
    @classmethod
    def _validate_arns(cls, v: Any) -> list:
        return _ensure_list(v)


class OperatorRoleDefinition(RoleSelector):
    role: str
    namespace: str
    service_accounts: list[str]
    policy_arns: list[str] = Field(default_factory=list)
    inline_policy: dict[str, Any] | None = Field(default=None)

    @field_validator("policy_arns", mode="before")
    @classmethod
    def _validate_arns(cls, v: Any) -> list:
        return _ensure_list(v)

    @model_validator(mode="after")
    def _has_permissions(self) -> "OperatorRoleDefinition":
        if not self.policy_arns and not self.inline_policy:
            raise ValueError(f"operator role '{self.role}' grants no permissions")
        if not self.service_accounts:
            raise ValueError(f"operator role '{self.role}' names no service accounts")
        return self


class OIDCSettings(BaseModel):
    client_ids: list[str] = Field(default_factory=lambda: ["openshift", "sts.amazonaws.com"])
    thumbprints: list[str] = Field(default_factory=list)


class NamingSettings(BaseModel):
    account_role_pattern: str = Field(default="{prefix}-{role}-Role")
    hosted_account_role_pattern: str = Field(default="{prefix}-HCP-ROSA-{role}-Role")
    operator_role_pattern: str = Field(default="{prefix}-{namespace}-{service_account}")
    role_path: str = Field(default="/")


class RoleCatalogConfig(BaseModel):
    version: int = Field(default=1)
    mode: Literal["sts"] = Field(default="sts")
    naming: NamingSettings = Field(default_factory=NamingSettings)
    oidc: OIDCSettings = Field(default_factory=OIDCSettings)
    account_roles: list[AccountRoleDefinition] = Field(default_factory=list)
    operator_roles: list[OperatorRoleDefinition] = Field(default_factory=list)

    @field_validator("account_roles", "operator_roles", mode="before")
    @classmethod
    def _validate_lists(cls, v: Any) -> list:
        return _ensure_list(v)

    @model_validator(mode="after")
    def _unique_roles(self) -> "RoleCatalogConfig":
        for label, roles in (
            ("account", [r.role.lower() for r in self.account_roles]),
            ("operator", [r.role.lower() for r in self.operator_roles]),
        ):
            duplicates = sorted({r for r in roles if roles.count(r) > 1})
            if duplicates:
                raise ValueError(f"duplicate {label} roles in catalog: {', '.join(duplicates)}")
        return self

    @classmethod
    def from_yaml(cls, data: dict[str, object]) -> "RoleCatalogConfig":
        return cls.model_validate(data)
