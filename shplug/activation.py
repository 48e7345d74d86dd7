"""Activation ("load"): turn installed plugins into shell code for the session.

``eval "$(shplug load)"`` sources script plugins in declaration order and
puts the shared bin directory, holding one link per command plugin, at the
front of ``PATH``. Diagnostics go to the context console, which the CLI
points at stderr.
"""

from __future__ import annotations

import dataclasses
import logging
import os
import shlex
import stat
import uuid
from pathlib import Path

import rich.markup

from shplug._private_path import PrivatePath
from shplug.context import Context
from shplug.errors import ActivationSkip
from shplug.runner import run_batches
from shplug.specifier import PluginSpec

logger = logging.getLogger(__name__)

DEFAULT_SCRIPT_GLOBS = ("*.plugin.zsh", "init.zsh", "*.zsh", "*.sh", "*.zsh-theme")
"""Fallback script patterns for source plugins without ``of``; first match wins."""


@dataclasses.dataclass
class LoadPlan:
    """Result of one activation pass."""

    scripts: list[Path] = dataclasses.field(default_factory=list)
    links: dict[str, Path] = dataclasses.field(default_factory=dict)
    path: str | None = None
    skipped: dict[str, str] = dataclasses.field(default_factory=dict)

    def render(self) -> str:
        """Shell code that applies the plan to the current session.

        Examples
        --------
        >>> plan = LoadPlan(scripts=[Path("/p/a b/init.zsh")], path="/p/bin:/usr/bin")
        >>> print(plan.render())
        source '/p/a b/init.zsh'
        export PATH=/p/bin:/usr/bin
        """
        lines = [f"source {shlex.quote(str(script))}" for script in self.scripts]
        if self.path is not None:
            lines.append(f"export PATH={shlex.quote(self.path)}")
        return "\n".join(lines)


def prepend_path(path_value: str, entry: str) -> str:
    """Put *entry* first in a ``PATH``-style value, dropping other copies.

    Examples
    --------
    >>> prepend_path("/usr/bin:/bin", "/p/bin")
    '/p/bin:/usr/bin:/bin'
    >>> prepend_path("/p/bin:/usr/bin:/p/bin", "/p/bin")
    '/p/bin:/usr/bin'
    >>> prepend_path("", "/p/bin")
    '/p/bin'
    """
    rest = [part for part in path_value.split(os.pathsep) if part and part != entry]
    return os.pathsep.join([entry, *rest])


def _glob(base: Path, pattern: str) -> list[Path]:
    pattern = pattern.strip("/")
    if not pattern:
        return [base]
    return sorted(base.glob(pattern))


def _files(matches: list[Path]) -> list[Path]:
    return [path for path in matches if path.is_file()]


def source_scripts(spec: PluginSpec) -> list[Path]:
    """Scripts to source for a ``source`` plugin: ``of`` glob, else the defaults."""
    if spec.of:
        return _files(_glob(spec.dir, spec.of))
    for pattern in DEFAULT_SCRIPT_GLOBS:
        matches = _files(_glob(spec.dir, pattern))
        if matches:
            return matches
    return []


def resolve_command(spec: PluginSpec) -> Path | None:
    """Pick the single executable for a ``command`` plugin.

    Precedence: ``dir/<name>``, ``dir/<of>``, ``dir/<of>/<name>``, then
    ``dir`` itself when it is a file.
    """
    candidates = [spec.dir / spec.basename]
    if spec.of:
        matched = _glob(spec.dir, spec.of)
        candidates += matched
        candidates += [match / spec.basename for match in matched]
    candidates.append(spec.dir)
    for candidate in candidates:
        if candidate.is_file():
            return candidate
    return None


def link_command(bin_dir: Path, target: Path, name: str) -> Path:
    """Atomically point ``bin_dir/name`` at *target*, replacing any previous link."""
    bin_dir.mkdir(parents=True, exist_ok=True)
    mode = target.stat().st_mode
    if not mode & stat.S_IXUSR:
        target.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    link = bin_dir / name
    staging = bin_dir / f".{name}.{uuid.uuid4().hex}"
    staging.symlink_to(target)
    try:
        os.replace(staging, link)
    except OSError:
        staging.unlink(missing_ok=True)
        raise
    return link


def check_guards(ctx: Context, spec: PluginSpec) -> None:
    """Raise :class:`ActivationSkip` if *spec* must not be activated."""
    if spec.if_cond and not ctx.predicate(spec.if_cond):
        msg = f"ifCond false: {spec.if_cond}"
        raise ActivationSkip(msg)
    if spec.depends_on:
        dependency = (
            ctx.spec(spec.depends_on).dir
            if spec.depends_on in ctx.registry
            else ctx.settings.repos_dir / spec.depends_on
        )
        if not dependency.exists():
            msg = f"dependency {spec.depends_on} is not installed"
            raise ActivationSkip(msg)
    if not spec.dir.exists():
        msg = "not installed"
        raise ActivationSkip(msg)


def load(ctx: Context, path_value: str | None = None) -> LoadPlan:
    """Build the activation plan for every declared plugin, creating command links.

    Parameters
    ----------
    ctx : Context
        Invocation handle.
    path_value : str, optional
        ``PATH`` of the session being activated; defaults to this process's.
    """
    plan = LoadPlan()
    commands: dict[str, Path] = {}
    for plugin_id in ctx.registry.ids():
        spec = ctx.spec(plugin_id)
        try:
            check_guards(ctx, spec)
        except ActivationSkip as skip:
            plan.skipped[plugin_id] = str(skip)
            ctx.console.print(f"[yellow]skip[/yellow] {plugin_id}: {rich.markup.escape(str(skip))}", highlight=False)
            continue

        if not spec.is_command:
            plan.scripts.extend(source_scripts(spec))
            continue
        target = resolve_command(spec)
        if target is None:
            plan.skipped[plugin_id] = "no executable found"
            ctx.console.print(
                f"[yellow]skip[/yellow] {plugin_id}: no executable found in {PrivatePath(spec.dir)}",
                highlight=False,
            )
            continue
        name = spec.file or target.name
        if name in commands:
            ctx.console.print(f"[yellow]Warning:[/yellow] {plugin_id} replaces the '{name}' link", highlight=False)
        commands[name] = target

    bin_dir = ctx.settings.bin_dir

    def link(item: tuple[str, Path]) -> tuple[str, Path] | None:
        name, target = item
        try:
            link_command(bin_dir, target, name)
        except OSError as exc:
            ctx.console.print(f"[red]Error:[/red] cannot link '{name}': {exc}", highlight=False)
            return None
        return item

    if commands:
        linked = run_batches(list(commands.items()), link, limit=ctx.settings.threads, runner=ctx.runner)
        plan.links = dict(item for item in linked if item is not None)
        current = os.environ.get("PATH", "") if path_value is None else path_value
        plan.path = prepend_path(current, str(bin_dir))
    logger.debug("load: %d script(s), %d link(s)", len(plan.scripts), len(plan.links))
    return plan
