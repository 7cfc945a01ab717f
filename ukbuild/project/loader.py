"""Project loading and per-target build operations.

This module provides:
- load_project(): interpret a project directory and its Kraftfile
- Project: targets, components, template merging
- Project.configure/prepare/build/properclean/set: the make-driven stages

Components are materialized under ``<workdir>/.unikraft``:

    .unikraft/unikraft          core
    .unikraft/libs/<name>       libraries
    .unikraft/apps/<name>       applications (templates)
    .unikraft/archs/<name>      external architectures
    .unikraft/plats/<name>      external platforms
    .unikraft/build/<target>    build output of a target
"""

from __future__ import annotations

import logging
import shutil
from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import TYPE_CHECKING

from ukbuild.errors import InvalidOptionError, ProjectError, TemplateNotMaterializedError
from ukbuild.project.io import (
    DEFAULT_KRAFTFILES,
    DOTCONFIG,
    find_kraftfile,
    format_dotconfig,
    load_kraftfile,
    read_dotconfig,
    update_dotconfig,
)
from ukbuild.project.make import MakeOptions, compose_make_command, run_make
from ukbuild.project.models import ArchitectureRef, Component, KConfig, PlatformRef, Target
from ukbuild.project.schema import KraftfileSchema
from ukbuild.types import ComponentType

if TYPE_CHECKING:
    from ukbuild.context import CancelToken

logger = logging.getLogger(__name__)

UNIKRAFT_DIR = ".unikraft"
CORE_NAME = "unikraft"

_TYPE_DIRS = {
    ComponentType.LIB: "libs",
    ComponentType.APP: "apps",
    ComponentType.ARCH: "archs",
    ComponentType.PLAT: "plats",
}

_ARCH_KCONFIG = {
    "x86_64": "CONFIG_ARCH_X86_64",
    "arm64": "CONFIG_ARCH_ARM_64",
    "arm": "CONFIG_ARCH_ARM_32",
}

_PLAT_KCONFIG = {
    "qemu": ("CONFIG_PLAT_KVM",),
    "kvm": ("CONFIG_PLAT_KVM",),
    "fc": ("CONFIG_PLAT_KVM", "CONFIG_KVM_VMM_FIRECRACKER"),
    "firecracker": ("CONFIG_PLAT_KVM", "CONFIG_KVM_VMM_FIRECRACKER"),
    "xen": ("CONFIG_PLAT_XEN",),
    "linuxu": ("CONFIG_PLAT_LINUXU",),
}


def place_component(workdir: Path, ctype: ComponentType, name: str) -> Path:
    """Return the directory a component is materialized into.

    Raises:
        ProjectError: If the component name is empty.
    """
    if not name:
        raise ProjectError(f"cannot place unnamed {ctype.value} component")
    root = workdir / UNIKRAFT_DIR
    if ctype is ComponentType.CORE:
        return root / CORE_NAME
    return root / _TYPE_DIRS[ctype] / name


def parse_assignments(assignments: Iterable[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings.

    Raises:
        InvalidOptionError: If an entry has no '=' or an empty value.
    """
    values: dict[str, str] = {}
    for item in assignments:
        if "=" not in item or item.endswith("="):
            raise InvalidOptionError(f"invalid or malformed argument: {item}")
        key, _, value = item.partition("=")
        if not key:
            raise InvalidOptionError(f"invalid or malformed argument: {item}")
        values[key] = value
    return values


def _config_key(key: str) -> str:
    return key if key.startswith("CONFIG_") else f"CONFIG_{key}"


class Project:
    """A loaded unikernel project.

    Attributes:
        workdir: Project directory.
        schema: Validated Kraftfile content.
        kraftfile: Path of the Kraftfile (None for an empty project).
        config_overrides: KEY=VALUE overrides supplied at load time.
        app_dir: Directory handed to make as the application (``A=``).
    """

    def __init__(
        self,
        workdir: Path,
        schema: KraftfileSchema,
        kraftfile: Path | None = None,
        config_overrides: Mapping[str, str] | None = None,
        app_dir: Path | None = None,
        template_merged: bool = False,
    ) -> None:
        self.workdir = workdir
        self.schema = schema
        self.kraftfile = kraftfile
        self.config_overrides = dict(config_overrides or {})
        self.app_dir = app_dir or workdir
        self._template_merged = template_merged

    def __repr__(self) -> str:
        return f"<Project(name='{self.name}', workdir='{self.workdir}')>"

    @property
    def name(self) -> str:
        return self.schema.name or self.workdir.name

    @property
    def dotconfig(self) -> Path:
        return self.workdir / DOTCONFIG

    @property
    def build_root(self) -> Path:
        return self.workdir / UNIKRAFT_DIR / "build"

    def build_dir(self, target: Target) -> Path:
        return self.build_root / target.name

    # Declarations

    def template(self) -> Component | None:
        """Return the template component, if the project declares one."""
        tpl = self.schema.template
        if tpl is None:
            return None
        return Component(
            name=tpl.name, type=ComponentType.APP, version=tpl.version, source=tpl.source
        )

    def components(self) -> list[Component]:
        """List the components the project depends on.

        Raises:
            TemplateNotMaterializedError: If a template is declared but has
                neither been merged nor pulled into the project.
        """
        template = self.template()
        if template is not None and not self._template_merged:
            path = place_component(self.workdir, template.type, template.name)
            if not path.is_dir():
                raise TemplateNotMaterializedError(template.type_name_version(), path)

        components: list[Component] = []
        core = self.schema.unikraft
        if core is not None:
            components.append(
                Component(
                    name=CORE_NAME,
                    type=ComponentType.CORE,
                    version=core.version,
                    source=core.source,
                )
            )
        for name, lib in self.schema.libraries.items():
            components.append(
                Component(
                    name=name,
                    type=ComponentType.LIB,
                    version=lib.version,
                    source=lib.source,
                )
            )
        return components

    def kconfig(self) -> dict[str, str]:
        """Project-wide KConfig: core, libraries, project, then overrides.

        Keys are normalized to carry the ``CONFIG_`` prefix.
        """
        layers: list[Mapping[str, str]] = []
        if self.schema.unikraft is not None:
            layers.append(self.schema.unikraft.kconfig)
        layers.extend(lib.kconfig for lib in self.schema.libraries.values())
        layers.append(self.schema.kconfig)
        layers.append(self.config_overrides)
        values: dict[str, str] = {}
        for layer in layers:
            values.update({_config_key(k): v for k, v in layer.items()})
        return values

    def targets(self) -> list[Target]:
        """Build the Target values declared by the project, in order."""
        targets: list[Target] = []
        base = self.kconfig()
        initrd = Path(self.schema.initrd) if self.schema.initrd else None
        if initrd is not None and not initrd.is_absolute():
            initrd = self.workdir / initrd

        for decl in self.schema.targets:
            name = decl.name or f"{decl.platform}-{decl.architecture}"
            build_dir = self.build_root / name
            # Values recorded by a previous build sit under the declared ones
            snapshot = build_dir / "config"
            values = read_dotconfig(snapshot) if snapshot.is_file() else {}
            values.update(base)
            values.update({_config_key(k): v for k, v in decl.kconfig.items()})

            targets.append(
                Target(
                    name=name,
                    architecture=ArchitectureRef(decl.architecture),
                    platform=PlatformRef(decl.platform),
                    kernel=build_dir / f"{self.name}_{decl.platform}-{decl.architecture}",
                    kconfig=KConfig(values),
                    initrd=initrd,
                    command=tuple(self.schema.cmd),
                    format=decl.format,
                )
            )
        return targets

    def merge_template(self, other: Project) -> Project:
        """Merge ``other`` on top of this (template) project.

        The template provides defaults; everything ``other`` declares wins.
        The result lives in ``other``'s working directory.
        """
        mine, theirs = self.schema, other.schema
        libraries = dict(mine.libraries)
        libraries.update(theirs.libraries)
        kconfig = dict(mine.kconfig)
        kconfig.update(theirs.kconfig)

        merged = KraftfileSchema(
            spec=theirs.spec or mine.spec,
            name=theirs.name or mine.name or other.workdir.name,
            template=theirs.template,
            unikraft=theirs.unikraft or mine.unikraft,
            libraries=libraries,
            targets=theirs.targets or mine.targets,
            cmd=theirs.cmd or mine.cmd,
            initrd=theirs.initrd or mine.initrd,
            kconfig=kconfig,
        )
        app_dir = other.workdir if (other.workdir / "Makefile.uk").is_file() else self.workdir
        overrides = dict(self.config_overrides)
        overrides.update(other.config_overrides)
        return Project(
            workdir=other.workdir,
            schema=merged,
            kraftfile=other.kraftfile,
            config_overrides=overrides,
            app_dir=app_dir,
            template_merged=True,
        )

    # Make-driven stages

    def _core_dir(self) -> Path:
        core = place_component(self.workdir, ComponentType.CORE, CORE_NAME)
        if not core.is_dir():
            raise ProjectError(f"unikraft core is not available at {core}")
        return core

    def _library_dirs(self) -> list[Path]:
        dirs = []
        for name in self.schema.libraries:
            path = place_component(self.workdir, ComponentType.LIB, name)
            if path.is_dir():
                dirs.append(path)
            else:
                logger.warning("Library %s is not available at %s", name, path)
        return dirs

    def _make(
        self,
        target: Target | None,
        goals: Iterable[str],
        options: MakeOptions | None,
        cancel: CancelToken | None,
        variables: dict[str, str] | None = None,
    ) -> None:
        build_dir = self.build_dir(target) if target is not None else self.build_root
        build_dir.mkdir(parents=True, exist_ok=True)
        cmd = compose_make_command(
            core_dir=self._core_dir(),
            app_dir=self.app_dir,
            build_dir=build_dir,
            goals=list(goals),
            libraries=self._library_dirs(),
            variables={"C": str(self.dotconfig), **(variables or {})},
            options=options,
        )
        run_make(cmd, cwd=self.workdir, options=options, cancel=cancel)

    def defconfig_values(
        self, target: Target, extra: Mapping[str, str] | None = None
    ) -> dict[str, str]:
        """KConfig values written to the defconfig of ``target``."""
        values: dict[str, str] = {}
        arch_key = _ARCH_KCONFIG.get(target.architecture.name)
        if arch_key is None:
            arch_key = f"CONFIG_ARCH_{target.architecture.name.upper()}"
        values[arch_key] = "y"
        for key in _PLAT_KCONFIG.get(
            target.platform.name, (f"CONFIG_PLAT_{target.platform.name.upper()}",)
        ):
            values[key] = "y"
        values["CONFIG_UK_NAME"] = f'"{self.name}"'
        values.update(target.kconfig)
        if extra:
            values.update({_config_key(k): v for k, v in extra.items()})
        return values

    def configure(
        self,
        target: Target,
        extra: Mapping[str, str] | None = None,
        options: MakeOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> None:
        """Write the target's defconfig and expand it into ``.config``."""
        build_dir = self.build_dir(target)
        build_dir.mkdir(parents=True, exist_ok=True)
        defconfig = build_dir / "defconfig"
        defconfig.write_text(
            format_dotconfig(self.defconfig_values(target, extra)), encoding="utf-8"
        )
        logger.debug("Wrote %s", defconfig)
        self._make(
            target,
            ["defconfig"],
            options,
            cancel,
            variables={"UK_DEFCONFIG": str(defconfig)},
        )

    def prepare(
        self,
        target: Target,
        options: MakeOptions | None = None,
        cancel: CancelToken | None = None,
        fetch: bool = True,
    ) -> None:
        """Fetch remote sources and prepare the build tree."""
        goals = ["fetch", "prepare"] if fetch else ["prepare"]
        self._make(target, goals, options, cancel)

    def build(
        self,
        target: Target,
        options: MakeOptions | None = None,
        cancel: CancelToken | None = None,
    ) -> Path:
        """Compile the target and return the path of its kernel image."""
        self._make(target, [], options, cancel)
        if self.dotconfig.is_file():
            shutil.copyfile(self.dotconfig, self.build_dir(target) / "config")
        return target.kernel

    def properclean(
        self, options: MakeOptions | None = None, cancel: CancelToken | None = None
    ) -> None:
        """Remove every build output of the project."""
        self._make(None, ["properclean"], options, cancel)
        if self.build_root.is_dir():
            shutil.rmtree(self.build_root)

    def set(self) -> None:
        """Write the load-time config overrides into ``.config``."""
        if not self.config_overrides:
            return
        updates = {_config_key(k): v for k, v in self.config_overrides.items()}
        update_dotconfig(self.dotconfig, updates)
        logger.info("Updated %d option(s) in %s", len(updates), self.dotconfig)


def load_project(
    workdir: Path,
    kraftfiles: Iterable[str] | None = None,
    config_overrides: Iterable[str] | None = None,
) -> Project:
    """Interpret a project directory.

    Args:
        workdir: Project directory.
        kraftfiles: Kraftfile names to look for (defaults to the standard set).
        config_overrides: ``KEY=VALUE`` strings applied on top of the
            project's KConfig.

    Returns:
        Loaded Project.

    Raises:
        ProjectError: If the directory or its Kraftfile cannot be used.
        InvalidOptionError: If an override is malformed.
    """
    workdir = Path(workdir).resolve()
    if not workdir.is_dir():
        raise ProjectError(f"project directory does not exist: {workdir}")

    overrides = parse_assignments(config_overrides or [])
    kraftfile = find_kraftfile(workdir, kraftfiles or DEFAULT_KRAFTFILES)
    if kraftfile is None:
        raise ProjectError(
            f"cannot use uninitialized project {workdir}: no Kraftfile found"
        )

    schema = load_kraftfile(kraftfile)
    logger.debug("Loaded %s", kraftfile)
    return Project(
        workdir=workdir,
        schema=schema,
        kraftfile=kraftfile,
        config_overrides=overrides,
    )


__all__ = [
    "CORE_NAME",
    "Project",
    "UNIKRAFT_DIR",
    "load_project",
    "parse_assignments",
    "place_component",
]
