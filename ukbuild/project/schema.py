"""Pydantic models for Kraftfile validation.

A Kraftfile declares the project name, an optional template, the Unikraft
core, libraries and the list of targets. Short string forms are accepted
where they are unambiguous:

    template: app-helloworld:stable
    unikraft: stable
    targets:
      - qemu/x86_64
"""

import re
from typing import Annotated, Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

NAME_PATTERN = re.compile(r"^[a-zA-Z0-9_.\-]+$")


def _split_name_version(value: str) -> dict[str, str]:
    name, _, version = value.partition(":")
    return {"name": name.strip(), "version": version.strip()}


def _stringify_kconfig(value: Any) -> Any:
    """Coerce KConfig values to strings ('y' for true booleans)."""
    if value is None:
        return {}
    if not isinstance(value, dict):
        return value
    result: dict[str, str] = {}
    for key, item in value.items():
        if isinstance(item, bool):
            item = "y" if item else "n"
        result[str(key)] = str(item)
    return result


class ComponentSchema(BaseModel):
    """Schema for a library or core declaration."""

    model_config = ConfigDict(extra="forbid")

    version: str = Field(default="", description="Requested version")
    source: str = Field(default="", description="Origin locator")
    kconfig: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def accept_version_string(cls, data: Any) -> Any:
        """Accept a bare version string in place of a mapping."""
        if data is None:
            return {}
        if isinstance(data, (str, int, float)):
            return {"version": str(data)}
        return data

    @field_validator("kconfig", mode="before")
    @classmethod
    def validate_kconfig(cls, v: Any) -> Any:
        return _stringify_kconfig(v)


class TemplateSchema(BaseModel):
    """Schema for the template (base application) reference."""

    model_config = ConfigDict(extra="forbid")

    name: Annotated[str, Field(min_length=1, max_length=255)]
    version: str = Field(default="")
    source: str = Field(default="")

    @model_validator(mode="before")
    @classmethod
    def accept_name_version_string(cls, data: Any) -> Any:
        """Accept ``name:version`` in place of a mapping."""
        if isinstance(data, str):
            return _split_name_version(data)
        return data


class TargetSchema(BaseModel):
    """Schema for a build target."""

    model_config = ConfigDict(extra="forbid")

    name: str = Field(default="", description="Target name (defaults to plat-arch)")
    architecture: Annotated[str, Field(min_length=1, max_length=100)]
    platform: Annotated[str, Field(min_length=1, max_length=100)]
    format: str = Field(default="", description="Package format of the target")
    kconfig: dict[str, str] = Field(default_factory=dict)

    @model_validator(mode="before")
    @classmethod
    def accept_plat_arch_string(cls, data: Any) -> Any:
        """Accept ``plat/arch`` in place of a mapping."""
        if isinstance(data, str):
            plat, sep, arch = data.partition("/")
            if not sep:
                raise ValueError(f"target must be written as 'plat/arch', got '{data}'")
            return {"platform": plat.strip(), "architecture": arch.strip()}
        if isinstance(data, dict):
            data = dict(data)
            # Accept the short keys used by kraft
            if "arch" in data and "architecture" not in data:
                data["architecture"] = data.pop("arch")
            if "plat" in data and "platform" not in data:
                data["platform"] = data.pop("plat")
        return data

    @field_validator("kconfig", mode="before")
    @classmethod
    def validate_kconfig(cls, v: Any) -> Any:
        return _stringify_kconfig(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v and not NAME_PATTERN.match(v):
            raise ValueError(
                f"target name must match pattern {NAME_PATTERN.pattern}, got '{v}'"
            )
        return v


class KraftfileSchema(BaseModel):
    """Complete Kraftfile schema.

    Attributes:
        spec: Optional Kraftfile specification version.
        name: Project (application) name.
        template: Optional base application merged under this project.
        unikraft: Unikraft core declaration.
        libraries: Libraries keyed by name.
        targets: Build targets.
        cmd: Default command line.
        initrd: Optional initrd path relative to the project.
        kconfig: Project-wide KConfig values.
    """

    model_config = ConfigDict(extra="forbid")

    spec: str | None = Field(default=None, description="Kraftfile specification version")
    name: str = Field(default="", max_length=255)
    template: TemplateSchema | None = None
    unikraft: ComponentSchema | None = None
    libraries: dict[str, ComponentSchema] = Field(default_factory=dict)
    targets: list[TargetSchema] = Field(default_factory=list)
    cmd: list[str] = Field(default_factory=list)
    initrd: str | None = None
    kconfig: dict[str, str] = Field(default_factory=dict)

    @field_validator("spec", mode="before")
    @classmethod
    def validate_spec(cls, v: Any) -> Any:
        return None if v is None else str(v)

    @field_validator("libraries", mode="before")
    @classmethod
    def validate_libraries(cls, v: Any) -> Any:
        if v is None:
            return {}
        return v

    @field_validator("cmd", mode="before")
    @classmethod
    def validate_cmd(cls, v: Any) -> Any:
        if v is None:
            return []
        if isinstance(v, str):
            return v.split()
        return v

    @field_validator("kconfig", mode="before")
    @classmethod
    def validate_kconfig(cls, v: Any) -> Any:
        return _stringify_kconfig(v)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        if v and not NAME_PATTERN.match(v):
            raise ValueError(
                f"name must match pattern {NAME_PATTERN.pattern}, got '{v}'"
            )
        return v

    @model_validator(mode="after")
    def validate_unique_targets(self) -> "KraftfileSchema":
        """Target names (explicit or derived) must be unique."""
        seen: set[str] = set()
        for target in self.targets:
            name = target.name or f"{target.platform}-{target.architecture}"
            if name in seen:
                raise ValueError(f"duplicate target name '{name}'")
            seen.add(name)
        return self


__all__ = [
    "ComponentSchema",
    "KraftfileSchema",
    "TargetSchema",
    "TemplateSchema",
]
