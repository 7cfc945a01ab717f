"""Result models of the pipeline operations.

These are plain Pydantic models so front ends can render them or dump them
as JSON (``model_dump_json``).
"""

from pydantic import BaseModel, ConfigDict, Field

from ukbuild.types import Stage


class TargetResult(BaseModel):
    """Outcome of one target in a build or packaging run.

    Attributes:
        target: Target name.
        success: Whether every stage succeeded.
        failed_stage: Stage that failed, if any.
        error: Error message of the failed stage.
        error_code: Stable code of the underlying error.
        label: Display label ("packaging <name> (<format>)").
        format: Package format used (packaging only).
        output: Artifact produced (kernel image or package path).
    """

    model_config = ConfigDict(extra="forbid")

    target: str
    success: bool
    failed_stage: Stage | None = None
    error: str | None = None
    error_code: str | None = None
    label: str | None = None
    format: str | None = None
    output: str | None = None


class BatchReport(BaseModel):
    """Per-target results of a build or packaging run."""

    model_config = ConfigDict(extra="forbid")

    results: list[TargetResult] = Field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.results)

    @property
    def succeeded(self) -> int:
        return sum(1 for r in self.results if r.success)

    @property
    def failed(self) -> int:
        return self.total - self.succeeded

    @property
    def ok(self) -> bool:
        return self.failed == 0


class BuildReport(BatchReport):
    """Result of the build pipeline.

    Attributes:
        pulled: Number of dependencies materialized before building.
    """

    pulled: int = 0


class PackageReport(BatchReport):
    """Result of the packaging pipeline."""


class PulledPackage(BaseModel):
    """One package handled by the pull orchestrator."""

    model_config = ConfigDict(extra="forbid")

    name: str
    type: str
    version: str
    format: str
    changed: bool


class PullReport(BaseModel):
    """Result of the pull orchestrator.

    Attributes:
        queries: Number of catalog queries issued.
        pulled: Packages pulled (or found up to date).
        skipped: Locators no package manager claimed.
        warnings: Tolerated failures (query errors, empty results,
            failed pulls).
    """

    model_config = ConfigDict(extra="forbid")

    queries: int = 0
    pulled: list[PulledPackage] = Field(default_factory=list)
    skipped: list[str] = Field(default_factory=list)
    warnings: list[str] = Field(default_factory=list)


__all__ = [
    "BatchReport",
    "BuildReport",
    "PackageReport",
    "PullReport",
    "PulledPackage",
    "TargetResult",
]
