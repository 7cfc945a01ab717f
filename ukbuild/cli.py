"""Thin CLI wrapper for ukbuild.

This module provides the command-line interface using Typer.
All business logic is delegated to the pipeline modules.
"""

import logging
import signal
from pathlib import Path
from typing import Annotated

import typer
from rich.console import Console
from rich.logging import RichHandler

from ukbuild import __version__
from ukbuild.config import Settings, get_settings, print_settings_json
from ukbuild.context import Context
from ukbuild.errors import UkbuildError
from ukbuild.types import AUTO_FORMAT, BatchMode, StageEvent, StageStatus

app = typer.Typer(
    name="ukbuild",
    help="Unikernel build orchestrator - build, package and pull Unikraft projects",
    no_args_is_help=True,
)
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        console.print(f"ukbuild version {__version__}")
        raise typer.Exit()


def configure_logging(level: str) -> None:
    """Route ukbuild logs through Rich on stderr."""
    logging.basicConfig(
        level=level,
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, show_path=False)],
    )


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option(
            "--version",
            "-V",
            help="Show version and exit",
            callback=version_callback,
            is_eager=True,
        ),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Unikernel build orchestrator - build, package and pull Unikraft projects."""
    configure_logging("DEBUG" if verbose else get_settings().log_level)


def make_context(settings: Settings | None = None) -> Context:
    """Build the invocation context and cancel it on Ctrl-C."""
    from ukbuild.packmanager.router import default_registry

    settings = settings or get_settings()
    ctx = Context(settings=settings, registry=default_registry(settings))

    def _on_sigint(signum: int, frame: object) -> None:
        logger.warning("Interrupted, cancelling...")
        ctx.cancel.cancel()

    try:
        signal.signal(signal.SIGINT, _on_sigint)
    except ValueError:
        # Not the main thread; Ctrl-C keeps its default behaviour.
        logger.debug("Cannot install SIGINT handler outside the main thread")
    return ctx


def parse_mode(mode: str) -> BatchMode:
    try:
        return BatchMode(mode)
    except ValueError:
        console.print(f"[red]Invalid mode: {mode}[/red]")
        console.print("Valid values: fail-fast, best-effort")
        raise typer.Exit(code=1) from None


def print_event(event: StageEvent) -> None:
    """Render a stage event as one status line."""
    name = f"{event.stage.value} {event.target}"
    if event.status is StageStatus.STARTED:
        console.print(f"[blue]→ {name}[/blue]")
    elif event.status is StageStatus.SUCCEEDED:
        console.print(f"[green]✓ {name}[/green]")
    else:
        console.print(f"[red]✗ {name}: {event.error}[/red]")


@app.command()
def config(
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Show effective configuration."""
    settings = get_settings()
    if json_output:
        console.print(print_settings_json(settings), soft_wrap=True)
    else:
        make_timeout = (
            str(settings.make_timeout) if settings.make_timeout else "(no timeout)"
        )
        console.print("[bold]Effective Configuration:[/bold]")
        console.print()
        console.print("[bold]Paths:[/bold]")
        console.print(f"  Cache directory:     {settings.cache_dir}")
        console.print(f"  Index directory:     {settings.index_dir}")
        console.print(f"  Archive directory:   {settings.archive_dir}")
        console.print(f"  Database URL:        {settings.db_url}")
        console.print()
        console.print("[bold]Operational:[/bold]")
        console.print(f"  Package manager:     {settings.manager}")
        console.print(f"  Offline mode:        {settings.offline}")
        console.print(f"  Log level:           {settings.log_level}")
        console.print()
        console.print("[bold]Timeouts (seconds):[/bold]")
        console.print(f"  Download timeout:    {settings.download_timeout}")
        console.print(f"  Make timeout:        {make_timeout}")


@app.command()
def build(
    workdir: Annotated[
        Path,
        typer.Argument(help="Project directory"),
    ] = Path("."),
    architecture: Annotated[
        str,
        typer.Option("--arch", "-m", help="Filter targets by architecture"),
    ] = "",
    platform: Annotated[
        str,
        typer.Option("--plat", "-p", help="Filter targets by platform"),
    ] = "",
    target: Annotated[
        str,
        typer.Option("--target", "-t", help="Build a single target by name"),
    ] = "",
    manager: Annotated[
        str,
        typer.Option("--manager", "-M", help="Package manager used for components"),
    ] = AUTO_FORMAT,
    jobs: Annotated[
        int,
        typer.Option("--jobs", "-j", min=0, help="Number of make jobs (0 = derive)"),
    ] = 0,
    fast: Annotated[
        bool,
        typer.Option("--fast", help="Use one make job per CPU"),
    ] = False,
    no_cache: Annotated[
        bool,
        typer.Option("--no-cache", "-F", help="Bypass cached indexes and archives"),
    ] = False,
    no_configure: Annotated[
        bool,
        typer.Option("--no-configure", help="Skip the configure stage"),
    ] = False,
    no_fetch: Annotated[
        bool,
        typer.Option("--no-fetch", help="Do not fetch remote sources during prepare"),
    ] = False,
    no_prepare: Annotated[
        bool,
        typer.Option("--no-prepare", help="Skip the prepare stage"),
    ] = False,
    build_log: Annotated[
        Path | None,
        typer.Option("--build-log", help="Save the build stage output to a file"),
    ] = None,
    mode: Annotated[
        str,
        typer.Option(
            "--mode", help="Batch mode: fail-fast or best-effort (default)"
        ),
    ] = "best-effort",
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Configure, prepare and build the selected targets of a project.

    Components are resolved and pulled first. Select targets by name or by
    architecture/platform; with no filter every target is built.
    """
    from ukbuild.pipeline.build import BuildOptions
    from ukbuild.pipeline.build import build as run_build

    options = BuildOptions(
        architecture=architecture,
        platform=platform,
        target=target,
        manager=manager,
        jobs=jobs,
        fast=fast,
        no_cache=no_cache,
        no_configure=no_configure,
        no_fetch=no_fetch,
        no_prepare=no_prepare,
        save_build_log=build_log,
        mode=parse_mode(mode),
    )

    try:
        ctx = make_context()
        report = run_build(
            ctx, workdir, options, on_event=None if json_output else print_event
        )
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(report.model_dump_json(indent=2), soft_wrap=True)
    else:
        console.print()
        console.print("[bold]Build Results:[/bold]")
        console.print(f"  Dependencies pulled: {report.pulled}")
        console.print(f"  Total targets: {report.total}")
        console.print(f"  [green]Succeeded: {report.succeeded}[/green]")
        if report.failed > 0:
            console.print(f"  [red]Failed: {report.failed}[/red]")
        console.print()
        for r in report.results:
            if r.success:
                console.print(f"  [green]✓ {r.target}[/green]  {r.output}")
            else:
                stage = r.failed_stage.value if r.failed_stage else "?"
                console.print(f"  [red]✗ {r.target} ({stage})[/red]")
                console.print(f"      Error: {r.error}")

    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def pkg(
    workdir: Annotated[
        Path,
        typer.Argument(help="Project directory"),
    ] = Path("."),
    architecture: Annotated[
        str,
        typer.Option("--arch", "-m", help="Filter targets by architecture"),
    ] = "",
    platform: Annotated[
        str,
        typer.Option("--plat", "-p", help="Filter targets by platform"),
    ] = "",
    target: Annotated[
        str,
        typer.Option("--target", "-t", help="Package a single target by name"),
    ] = "",
    fmt: Annotated[
        str,
        typer.Option("--as", "-M", help="Package format (auto = target's format)"),
    ] = AUTO_FORMAT,
    name: Annotated[
        str,
        typer.Option("--name", "-n", help="Name of the resulting package"),
    ] = "",
    output: Annotated[
        str,
        typer.Option("--output", "-o", help="Output location of the package"),
    ] = "",
    initrd: Annotated[
        str,
        typer.Option("--initrd", "-i", help="Initrd to include instead of the target's"),
    ] = "",
    with_kconfig: Annotated[
        bool,
        typer.Option("--kconfig", help="Include the target .config"),
    ] = False,
    dbg: Annotated[
        bool,
        typer.Option("--dbg", help="Package the debug kernel image"),
    ] = False,
    mode: Annotated[
        str,
        typer.Option(
            "--mode", help="Batch mode: fail-fast (default) or best-effort"
        ),
    ] = "fail-fast",
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Package the built kernels of the selected targets."""
    from ukbuild.pipeline.package import PackageOptions, package

    options = PackageOptions(
        architecture=architecture,
        platform=platform,
        target=target,
        format=fmt,
        name=name,
        output=output,
        initrd=initrd,
        with_kconfig=with_kconfig,
        dbg=dbg,
        mode=parse_mode(mode),
    )

    try:
        ctx = make_context()
        report = package(
            ctx, workdir, options, on_event=None if json_output else print_event
        )
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(report.model_dump_json(indent=2), soft_wrap=True)
    else:
        console.print()
        for r in report.results:
            if r.success:
                console.print(f"  [green]✓ {r.label}[/green]  {r.output or ''}")
            else:
                console.print(f"  [red]✗ {r.label}[/red]")
                console.print(f"      Error: {r.error}")

    if not report.ok:
        raise typer.Exit(code=1)


@app.command()
def pull(
    args: Annotated[
        list[str] | None,
        typer.Argument(help="Project directory, or package names/locations"),
    ] = None,
    manager: Annotated[
        str,
        typer.Option("--manager", "-M", help="Package manager to use"),
    ] = AUTO_FORMAT,
    force_cache: Annotated[
        bool,
        typer.Option("--force-cache", "-Z", help="Re-use cached indexes and archives"),
    ] = False,
    no_checksum: Annotated[
        bool,
        typer.Option("--no-checksum", "-C", help="Do not verify archive checksums"),
    ] = False,
    workdir: Annotated[
        Path | None,
        typer.Option("--workdir", "-w", help="Directory receiving listed packages"),
    ] = None,
    json_output: Annotated[
        bool,
        typer.Option("--json", help="Output as JSON"),
    ] = False,
) -> None:
    """Pull a project's dependencies or a list of packages.

    Unknown or unavailable packages are reported as warnings.
    """
    from ukbuild.pipeline.pull import PullOptions
    from ukbuild.pipeline.pull import pull as run_pull

    options = PullOptions(
        manager=manager,
        force_cache=force_cache,
        no_checksum=no_checksum,
        workdir=workdir,
    )

    try:
        ctx = make_context()
        report = run_pull(ctx, args or [], options)
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None

    if json_output:
        console.print(report.model_dump_json(indent=2), soft_wrap=True)
        return

    for p in report.pulled:
        state = "pulled" if p.changed else "up to date"
        console.print(f"  [green]✓ {p.type}/{p.name}:{p.version}[/green] ({state})")
    for locator in report.skipped:
        console.print(f"  [yellow]skipped {locator}: no compatible package manager[/yellow]")
    for warning in report.warnings:
        console.print(f"  [yellow]warning: {warning}[/yellow]")
    if not report.pulled and not report.skipped and not report.warnings:
        console.print("[yellow]Nothing to pull[/yellow]")


@app.command()
def source(
    locator: Annotated[str, typer.Argument(help="Package source to add")],
    manager: Annotated[
        str,
        typer.Option("--manager", "-M", help="Package manager to register with"),
    ] = AUTO_FORMAT,
) -> None:
    """Add a package source."""
    from ukbuild.pipeline.manage import add_source

    try:
        backend = add_source(make_context(), locator, manager)
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Added {backend.format} source {locator}[/green]")


@app.command()
def unsource(
    locator: Annotated[str, typer.Argument(help="Package source to remove")],
    manager: Annotated[
        str,
        typer.Option("--manager", "-M", help="Package manager to unregister from"),
    ] = AUTO_FORMAT,
) -> None:
    """Remove a package source."""
    from ukbuild.pipeline.manage import remove_source

    try:
        backend = remove_source(make_context(), locator, manager)
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Removed {backend.format} source {locator}[/green]")


@app.command()
def update(
    manager: Annotated[
        str,
        typer.Option("--manager", "-M", help="Package manager to update"),
    ] = AUTO_FORMAT,
) -> None:
    """Refresh the package indexes."""
    from ukbuild.pipeline.manage import update as run_update

    try:
        run_update(make_context(), manager)
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print("[green]Package indexes updated[/green]")


@app.command("set")
def set_cmd(
    assignments: Annotated[
        list[str] | None,
        typer.Argument(help="KEY=VALUE options to write into .config"),
    ] = None,
    workdir: Annotated[
        Path,
        typer.Option("--workdir", "-w", help="Project directory"),
    ] = Path("."),
) -> None:
    """Set KConfig options in the project's .config."""
    from ukbuild.pipeline.manage import set_options

    try:
        parsed = set_options(make_context(), workdir, assignments or [])
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print(f"[green]Set {len(parsed)} option(s)[/green]")


@app.command()
def properclean(
    workdir: Annotated[
        Path,
        typer.Argument(help="Project directory"),
    ] = Path("."),
) -> None:
    """Remove all build output of a project."""
    from ukbuild.pipeline.build import properclean as run_properclean

    try:
        run_properclean(make_context(), workdir)
    except UkbuildError as e:
        console.print(f"[red]Error: {e}[/red]")
        raise typer.Exit(code=1) from None
    console.print("[green]Build output removed[/green]")


if __name__ == "__main__":
    app()
