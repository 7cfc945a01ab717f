"""Kraftfile and .config file helpers.

This module loads Kraftfiles from YAML and reads and writes the KEY=VALUE
``.config`` files produced by the Unikraft configuration step.
"""

from collections.abc import Iterable, Mapping
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from ukbuild.errors import ProjectError
from ukbuild.project.schema import KraftfileSchema

# Kraftfile names looked up in a project directory, in order
DEFAULT_KRAFTFILES = ("Kraftfile", "kraft.yaml", "kraft.yml")

DOTCONFIG = ".config"


def find_kraftfile(
    workdir: Path, names: Iterable[str] = DEFAULT_KRAFTFILES
) -> Path | None:
    """Return the first existing Kraftfile in ``workdir``, if any."""
    for name in names:
        candidate = workdir / name
        if candidate.is_file():
            return candidate
    return None


def load_yaml(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict.

    Args:
        path: Path to the YAML file.

    Returns:
        Parsed YAML content as a dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        yaml.YAMLError: If the file is not valid YAML.
        ValueError: If the document is not a mapping.
    """
    with open(path, encoding="utf-8") as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"Expected a YAML mapping, got {type(data).__name__}")
    return data


def load_kraftfile(path: Path) -> KraftfileSchema:
    """Load and validate a Kraftfile.

    Raises:
        ProjectError: If the file cannot be parsed or validated.
    """
    try:
        return KraftfileSchema.model_validate(load_yaml(path))
    except (OSError, yaml.YAMLError, ValueError) as e:
        # pydantic's ValidationError is a ValueError
        kind = "invalid" if isinstance(e, ValidationError) else "unreadable"
        raise ProjectError(f"{kind} Kraftfile {path}: {e}") from e


def parse_dotconfig_line(line: str) -> tuple[str, str | None] | None:
    """Parse a single .config line.

    Returns:
        ``(key, value)`` for assignments, ``(key, None)`` for
        ``# KEY is not set`` lines, ``None`` for anything else.
    """
    stripped = line.strip()
    if stripped.startswith("# ") and stripped.endswith(" is not set"):
        return stripped[2 : -len(" is not set")], None
    if not stripped or stripped.startswith("#") or "=" not in stripped:
        return None
    key, _, value = stripped.partition("=")
    return key.strip(), value.strip()


def read_dotconfig(path: Path) -> dict[str, str]:
    """Read a .config file into an ordered mapping of set values."""
    values: dict[str, str] = {}
    with open(path, encoding="utf-8") as f:
        for line in f:
            parsed = parse_dotconfig_line(line)
            if parsed is not None and parsed[1] is not None:
                values[parsed[0]] = parsed[1]
    return values


def format_dotconfig(values: Mapping[str, str]) -> str:
    """Render a mapping as .config text (``KEY=VALUE`` per line)."""
    lines = []
    for key, value in values.items():
        if value == "n":
            lines.append(f"# {key} is not set")
        else:
            lines.append(f"{key}={value}")
    return "\n".join(lines) + "\n" if lines else ""


def update_dotconfig(path: Path, updates: Mapping[str, str]) -> None:
    """Apply ``updates`` to an existing .config file in place.

    Existing assignments (and ``is not set`` markers) are rewritten where
    they appear; new keys are appended at the end.
    """
    pending = dict(updates)
    out: list[str] = []
    with open(path, encoding="utf-8") as f:
        for line in f:
            parsed = parse_dotconfig_line(line)
            if parsed is not None and parsed[0] in pending:
                key = parsed[0]
                out.append(format_dotconfig({key: pending.pop(key)}))
            else:
                out.append(line if line.endswith("\n") else line + "\n")
    if pending:
        out.append(format_dotconfig(pending))

    tmp_path = path.with_name(path.name + ".tmp")
    tmp_path.write_text("".join(out), encoding="utf-8")
    tmp_path.replace(path)


__all__ = [
    "DEFAULT_KRAFTFILES",
    "DOTCONFIG",
    "find_kraftfile",
    "format_dotconfig",
    "load_kraftfile",
    "load_yaml",
    "parse_dotconfig_line",
    "read_dotconfig",
    "update_dotconfig",
]
