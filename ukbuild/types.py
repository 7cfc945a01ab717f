"""Shared type definitions for ukbuild.

This module contains enums and small dataclasses shared across
subpackages to avoid circular imports.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class ComponentType(str, Enum):
    """Kind of a Unikraft component."""

    CORE = "core"
    APP = "app"
    LIB = "lib"
    ARCH = "arch"
    PLAT = "plat"


class BatchMode(str, Enum):
    """Failure policy for operations over many targets."""

    FAIL_FAST = "fail-fast"
    BEST_EFFORT = "best-effort"


class Stage(str, Enum):
    """Pipeline stage of a target."""

    CONFIGURE = "configure"
    PREPARE = "prepare"
    BUILD = "build"
    PACK = "pack"


class StageStatus(str, Enum):
    """Status carried by a stage event."""

    STARTED = "started"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


# Package format that lets the router pick the default backend
AUTO_FORMAT = "auto"

# KConfig key holding the full Unikraft version of a built target
UK_FULLVERSION = "UK_FULLVERSION"


@dataclass(frozen=True)
class StageEvent:
    """Progress event emitted around each pipeline stage."""

    target: str
    stage: Stage
    status: StageStatus
    error: str | None = None


__all__ = [
    "AUTO_FORMAT",
    "BatchMode",
    "ComponentType",
    "Stage",
    "StageEvent",
    "StageStatus",
    "UK_FULLVERSION",
]
