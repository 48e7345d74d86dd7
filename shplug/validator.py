"""Domain checks for enumerated specifier values."""

from __future__ import annotations

import typing as t
from pathlib import Path

import pydantic
import rich.console
import rich.markup

from shplug.errors import ValidationError
from shplug.registry import Registry
from shplug.specifier import PluginSpec

Kind = t.Literal["source", "command"]
Origin = t.Literal["", "github-releases"]


class _Domains(pydantic.BaseModel):
    """Enumerated fields of :class:`PluginSpec` with their permitted values."""

    kind: Kind
    origin: Origin | None
    frozen: pydantic.StrictBool


def validate_spec(spec: PluginSpec) -> None:
    """Raise :class:`ValidationError` for the first out-of-domain field.

    Examples
    --------
    >>> from shplug.specifier import parse_spec
    >>> validate_spec(parse_spec("a/b", "as:cmd, from:gh-r, frozen:1", Path("/r")))
    >>> validate_spec(parse_spec("a/b", "frozen:maybe", Path("/r")))
    Traceback (most recent call last):
    ...
    shplug.errors.ValidationError: a/b: invalid value 'maybe' for 'frozen'
    """
    try:
        _Domains(kind=spec.kind, origin=spec.origin, frozen=spec.frozen)
    except pydantic.ValidationError as exc:
        field = str(exc.errors()[0]["loc"][0])
        key = PluginSpec.model_fields[field].alias or field
        raise ValidationError(spec.plugin_id, key, getattr(spec, field)) from exc


def validate_registry(
    registry: Registry,
    repos_dir: Path,
    console: rich.console.Console | None = None,
) -> int:
    """Drop every registry entry with an out-of-domain value.

    Parameters
    ----------
    registry : Registry
        Registry to prune in place.
    repos_dir : Path
        Directory used to derive each spec's ``dir``.
    console : rich.console.Console, optional
        Where diagnostics are printed.

    Returns
    -------
    int
        Number of entries removed.
    """
    failures = 0
    with registry.lock:
        for plugin_id in registry.ids():
            try:
                validate_spec(registry.spec(plugin_id, repos_dir))
            except ValidationError as exc:
                if console is not None:
                    console.print(f"[red]Error:[/red] {rich.markup.escape(str(exc))}")
                registry.remove(plugin_id)
                failures += 1
    return failures
