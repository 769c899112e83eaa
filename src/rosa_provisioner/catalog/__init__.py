"""Role catalog: which identity resources a cluster needs and their policies."""

from rosa_provisioner.catalog.catalog import RoleCatalog
from rosa_provisioner.catalog.loader import load_catalog, load_catalog_config
from rosa_provisioner.catalog.models import RoleCatalogConfig

__all__ = ["RoleCatalog", "RoleCatalogConfig", "load_catalog", "load_catalog_config"]
