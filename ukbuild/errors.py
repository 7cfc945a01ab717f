"""Error taxonomy for ukbuild.

Every error raised by the core carries a stable ``code`` so that callers
(the CLI, or any other front end) can handle failures programmatically.
"""

from __future__ import annotations

from pathlib import Path
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from ukbuild.types import Stage

# Error code constants
USAGE_CONFLICT = "usage_conflict"
COMPONENT_NOT_FOUND = "component_not_found"
AMBIGUOUS_COMPONENT = "ambiguous_component"
UNSUPPORTED_FORMAT = "unsupported_format"
UNSUPPORTED_OPERATION = "unsupported_operation"
INCOMPATIBLE_SOURCE = "incompatible_source"
EMPTY_SELECTION = "empty_selection"
STAGE_ERROR = "stage_error"
DOTCONFIG_NOT_FOUND = "dotconfig_not_found"
INVALID_OPTION = "invalid_option"
TEMPLATE_NOT_MATERIALIZED = "template_not_materialized"
PROJECT_ERROR = "project_error"
CANCELLED = "cancelled"


class UkbuildError(Exception):
    """Base error for all ukbuild operations."""

    def __init__(self, message: str, code: str = "ukbuild_error") -> None:
        super().__init__(message)
        self.code = code


class UsageConflictError(UkbuildError):
    """Raised when mutually exclusive selection options are combined."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=USAGE_CONFLICT)


class ResolutionError(UkbuildError):
    """Raised when a catalog query does not resolve to exactly one package."""

    def __init__(self, message: str, subject: str, code: str) -> None:
        super().__init__(message, code=code)
        self.subject = subject


class ComponentNotFoundError(ResolutionError):
    """Raised when a catalog query returns no package."""

    def __init__(self, subject: str) -> None:
        super().__init__(f"could not find: {subject}", subject, COMPONENT_NOT_FOUND)


class AmbiguousComponentError(ResolutionError):
    """Raised when a catalog query returns more than one package."""

    def __init__(self, subject: str, count: int) -> None:
        super().__init__(
            f"too many options for {subject} ({count} matches)",
            subject,
            AMBIGUOUS_COMPONENT,
        )
        self.count = count


class UnsupportedFormatError(UkbuildError):
    """Raised when no package manager is registered for a format."""

    def __init__(self, fmt: str, available: tuple[str, ...] = ()) -> None:
        known = ", ".join(available) or "<none>"
        super().__init__(
            f"unsupported package format: {fmt} (available: {known})",
            code=UNSUPPORTED_FORMAT,
        )
        self.format = fmt


class UnsupportedOperationError(UkbuildError):
    """Raised when a package manager lacks a capability."""

    def __init__(self, fmt: str, operation: str) -> None:
        super().__init__(
            f"package manager '{fmt}' does not support {operation}",
            code=UNSUPPORTED_OPERATION,
        )
        self.format = fmt
        self.operation = operation


class IncompatibleSourceError(UkbuildError):
    """Raised when no package manager claims a locator."""

    def __init__(self, locator: str) -> None:
        super().__init__(
            f"incompatible package manager for: {locator}",
            code=INCOMPATIBLE_SOURCE,
        )
        self.locator = locator


class EmptySelectionError(UkbuildError):
    """Raised when no target matches the selection."""

    def __init__(self, operation: str = "build") -> None:
        super().__init__(f"no targets selected to {operation}", code=EMPTY_SELECTION)


class StageError(UkbuildError):
    """A pipeline stage failed for a specific target."""

    def __init__(self, stage: Stage, target: str, cause: BaseException) -> None:
        super().__init__(
            f"{stage.value} failed for target {target}: {cause}", code=STAGE_ERROR
        )
        self.stage = stage
        self.target = target
        self.cause = cause


class DotConfigNotFoundError(UkbuildError, FileNotFoundError):
    """Raised when a project has no persisted configuration."""

    def __init__(self, path: Path) -> None:
        UkbuildError.__init__(
            self, f"dotconfig file does not exist: {path}", code=DOTCONFIG_NOT_FOUND
        )
        self.path = path


class InvalidOptionError(UkbuildError):
    """Raised for malformed KEY=VALUE configuration options."""

    def __init__(self, message: str) -> None:
        super().__init__(message, code=INVALID_OPTION)


class ProjectError(UkbuildError):
    """Raised when a project cannot be loaded."""

    def __init__(self, message: str, code: str = PROJECT_ERROR) -> None:
        super().__init__(message, code=code)


class TemplateNotMaterializedError(ProjectError):
    """Raised when a project's template has not been pulled yet."""

    def __init__(self, template: str, path: Path) -> None:
        super().__init__(
            f"template {template} is not available at {path}",
            code=TEMPLATE_NOT_MATERIALIZED,
        )
        self.template = template
        self.path = path


class OperationCancelledError(UkbuildError):
    """Raised when an operation is cancelled through its context."""

    def __init__(self, message: str = "operation cancelled") -> None:
        super().__init__(message, code=CANCELLED)


__all__ = [
    "AmbiguousComponentError",
    "ComponentNotFoundError",
    "DotConfigNotFoundError",
    "EmptySelectionError",
    "IncompatibleSourceError",
    "InvalidOptionError",
    "OperationCancelledError",
    "ProjectError",
    "ResolutionError",
    "StageError",
    "TemplateNotMaterializedError",
    "UkbuildError",
    "UnsupportedFormatError",
    "UnsupportedOperationError",
    "UsageConflictError",
]
