"""Project model and loader.

This module handles:
- Kraftfile schema and loading
- Target and component value types
- Make-driven configure/prepare/build stages
"""

from ukbuild.project.loader import Project, load_project, place_component
from ukbuild.project.models import (
    ArchitectureRef,
    Component,
    KConfig,
    PlatformRef,
    Target,
)

__all__ = [
    "ArchitectureRef",
    "Component",
    "KConfig",
    "PlatformRef",
    "Project",
    "Target",
    "load_project",
    "place_component",
]
