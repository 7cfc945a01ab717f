"""ukbuild - build, package and pull multi-target unikernel projects.

This package orchestrates target selection, component resolution against
pluggable package managers, and the staged configure/prepare/build pipeline.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
