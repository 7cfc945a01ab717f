"""Package managers.

This module handles:
- The PackageManager capability protocol and catalog queries
- Routing formats to backends (Registry)
- The manifest (index based) and tarball backends
"""

from ukbuild.packmanager.base import (
    CatalogQuery,
    PackageManager,
    PackManagerError,
    PackOptions,
    PullOptions,
)
from ukbuild.packmanager.router import Registry, default_registry

__all__ = [
    "CatalogQuery",
    "PackManagerError",
    "PackOptions",
    "PackageManager",
    "PullOptions",
    "Registry",
    "default_registry",
]
