"""Target selection.

A target is selected when ANY of the following holds:

1. no filter is given (build everything),
2. the name filter equals the target name,
3. only the architecture filter is given and matches,
4. only the platform filter is given and matches,
5. both architecture and platform filters are given and both match.

The build and packaging pipelines share this predicate.
"""

from collections.abc import Iterable

from ukbuild.errors import UsageConflictError
from ukbuild.project.models import Target


def check_selection(architecture: str = "", platform: str = "", target: str = "") -> None:
    """Reject an explicit target name combined with arch/plat filters.

    Raises:
        UsageConflictError: If the selection modes are mixed.
    """
    if target and (architecture or platform):
        raise UsageConflictError(
            "the architecture and platform filters are not supported "
            "in addition to an explicit target"
        )


def target_matches(
    target: Target, architecture: str = "", platform: str = "", name: str = ""
) -> bool:
    """Return True if ``target`` satisfies the selection predicate."""
    arch_ok = target.architecture.name == architecture
    plat_ok = target.platform.name == platform
    return (
        (not name and not architecture and not platform)
        or (bool(name) and target.name == name)
        or (bool(architecture) and not platform and arch_ok)
        or (bool(platform) and not architecture and plat_ok)
        or (bool(architecture) and bool(platform) and arch_ok and plat_ok)
    )


def select_targets(
    targets: Iterable[Target],
    architecture: str = "",
    platform: str = "",
    name: str = "",
) -> list[Target]:
    """Filter ``targets``, preserving order and listing each target once."""
    return [t for t in targets if target_matches(t, architecture, platform, name)]


__all__ = ["check_selection", "select_targets", "target_matches"]
