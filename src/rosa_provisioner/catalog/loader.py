"""Role catalog loader for role_catalog.yaml files."""

from __future__ import annotations

from importlib import resources
from pathlib import Path

import yaml

from rosa_provisioner.catalog.catalog import RoleCatalog
from rosa_provisioner.catalog.models import RoleCatalogConfig

DEFAULT_CATALOG = "default_catalog.yaml"


def load_catalog_config(path: str | None = None) -> RoleCatalogConfig:
    """Load a catalog file, or the catalog bundled with the package when ``path`` is None."""
    if path is None:
        text = resources.files("rosa_provisioner.catalog").joinpath(DEFAULT_CATALOG).read_text(
            encoding="utf-8"
        )
        data = yaml.safe_load(text) or {}
        return RoleCatalogConfig.from_yaml(data)

    catalog_path = Path(path)
    if not catalog_path.exists():
        raise FileNotFoundError(f"Role catalog not found: {catalog_path}")
    with catalog_path.open("r", encoding="utf-8") as handle:
        data = yaml.safe_load(handle) or {}
    return RoleCatalogConfig.from_yaml(data)


def load_catalog(path: str | None = None) -> RoleCatalog:
    return RoleCatalog(load_catalog_config(path))
