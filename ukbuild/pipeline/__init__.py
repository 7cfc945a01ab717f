"""Orchestration pipelines.

This module handles:
- Target selection and component resolution
- The build pipeline (configure -> prepare -> build per target)
- The packaging pipeline
- The pull orchestrator
- Package source, update and set operations
"""

from ukbuild.pipeline.build import BuildOptions, build, properclean
from ukbuild.pipeline.manage import add_source, remove_source, set_options, update
from ukbuild.pipeline.models import BuildReport, PackageReport, PullReport, TargetResult
from ukbuild.pipeline.package import PackageOptions, package
from ukbuild.pipeline.pull import PullOptions, pull, with_template
from ukbuild.pipeline.select import select_targets

__all__ = [
    "BuildOptions",
    "BuildReport",
    "PackageOptions",
    "PackageReport",
    "PullOptions",
    "PullReport",
    "TargetResult",
    "add_source",
    "build",
    "package",
    "properclean",
    "pull",
    "remove_source",
    "select_targets",
    "set_options",
    "update",
    "with_template",
]
