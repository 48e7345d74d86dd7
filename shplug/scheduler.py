"""Install and update jobs over the bounded worker pool."""

from __future__ import annotations

import contextlib
import dataclasses
import enum
import logging
import time
from collections.abc import Callable, Iterator, Sequence
from pathlib import Path

import rich.markup
import rich.status

from shplug._private_path import PrivatePath
from shplug.context import Context
from shplug.errors import FetchError, NotFoundError
from shplug.provider import clone_url
from shplug.runner import run_batches
from shplug.specifier import PluginSpec

logger = logging.getLogger(__name__)

SELF_ID = "shplug"
"""Pseudo plugin id used when the manager updates its own checkout."""


class Outcome(enum.StrEnum):
    """Per-job outcome; :attr:`code` feeds the aggregate failure count."""

    INSTALLED = "Installed"
    UPDATED = "Updated"
    UP_TO_DATE = "UpToDate"
    NOT_INSTALLED = "NotInstalled"
    NOT_UPDATED = "NotUpdated"
    NOT_FOUND = "NotFound"
    HOOK_FAILED = "HookFailed"
    SKIPPED_FROZEN = "SkippedFrozen"
    SKIPPED_CONDITION = "SkippedCondition"

    @property
    def code(self) -> int:
        """0 = success or deliberate skip, 1 = operation failed, 2 = target not found.

        Examples
        --------
        >>> Outcome.INSTALLED.code, Outcome.NOT_UPDATED.code, Outcome.NOT_FOUND.code
        (0, 1, 2)
        """
        if self is Outcome.NOT_FOUND:
            return 2
        if self in {Outcome.NOT_INSTALLED, Outcome.NOT_UPDATED, Outcome.HOOK_FAILED}:
            return 1
        return 0


_STYLES = {0: "green", 1: "red", 2: "yellow"}


@dataclasses.dataclass(frozen=True)
class JobResult:
    plugin_id: str
    outcome: Outcome
    elapsed: float = 0.0
    message: str = ""

    @property
    def code(self) -> int:
        return self.outcome.code


@dataclasses.dataclass
class RunSummary:
    """Ordered job results with the total wall time of the run."""

    results: list[JobResult] = dataclasses.field(default_factory=list)
    elapsed: float = 0.0

    @property
    def failures(self) -> int:
        return sum(1 for result in self.results if result.code != 0)

    @property
    def exit_code(self) -> int:
        return self.failures

    def by_id(self) -> dict[str, JobResult]:
        return {result.plugin_id: result for result in self.results}


def shallow_depth(spec: PluginSpec, shallow: bool) -> int | None:
    """Return the clone depth for *spec*: 1 when shallow, ``None`` for full history.

    Examples
    --------
    >>> from shplug.specifier import parse_spec
    >>> shallow_depth(parse_spec("a/b", "at:v2", Path("/r")), shallow=True)
    1
    >>> shallow_depth(parse_spec("a/b", "commit:1a2b3c", Path("/r")), shallow=True) is None
    True
    """
    if spec.commit or not shallow:
        return None
    return 1


def report(ctx: Context, result: JobResult) -> None:
    style = _STYLES[result.code]
    line = f"  [{style}]{result.outcome.value:<16}[/{style}] {result.plugin_id}"
    if result.elapsed:
        line += f" [dim]({result.elapsed:.1f}s)[/dim]"
    if result.message:
        line += f"\n    [dim]{rich.markup.escape(result.message)}[/dim]"
    ctx.console.print(line, highlight=False)


@contextlib.contextmanager
def _progress(ctx: Context, verb: str, total: int) -> Iterator[Callable[[JobResult], None]]:
    """Yield a per-result callback that reports and, on a terminal, drives a spinner."""
    done = 0
    status: rich.status.Status | None = None
    if ctx.console.is_terminal:
        status = ctx.console.status(f"{verb} 0/{total}...")

    def on_result(result: JobResult) -> None:
        nonlocal done
        done += 1
        report(ctx, result)
        if status is not None:
            status.update(f"{verb} {done}/{total}...")

    if status is None:
        yield on_result
        return
    with status:
        yield on_result


def _run_hook(ctx: Context, spec: PluginSpec) -> str | None:
    """Run ``doHook`` in the plugin directory; return an error message on failure."""
    if not spec.hook:
        return None
    if not ctx.settings.allow_hooks:
        ctx.console.print(f"  [yellow]hook skipped[/yellow] {spec.plugin_id}: hooks are disabled")
        return None
    try:
        result = ctx.runner.run(ctx.shell_command(spec.hook), cwd=spec.dir)
    except OSError as exc:
        return f"cannot run hook: {exc}"
    if result.returncode != 0:
        detail = (result.stderr or result.stdout).strip().splitlines()
        return f"hook exited {result.returncode}" + (f": {detail[-1]}" if detail else "")
    return None


def _install_job(ctx: Context, plugin_id: str) -> JobResult:
    start = time.monotonic()

    def done(outcome: Outcome, message: str = "") -> JobResult:
        return JobResult(plugin_id, outcome, time.monotonic() - start, message)

    spec = ctx.spec(plugin_id)
    if spec.if_cond and not ctx.predicate(spec.if_cond):
        return done(Outcome.SKIPPED_CONDITION, f"ifCond false: {spec.if_cond}")
    try:
        if spec.is_release:
            tag = ctx.releases.fetch(spec)
            logger.debug("%s: release %s", plugin_id, tag)
        else:
            url = clone_url(plugin_id, ctx.settings.protocol, ctx.settings.host)
            depth = shallow_depth(spec, ctx.settings.shallow)
            ctx.provider.clone(url, spec.dir, ref=spec.at or None, depth=depth)
            if spec.commit:
                ctx.provider.checkout(spec.dir, spec.commit)
    except NotFoundError as exc:
        return done(Outcome.NOT_FOUND, str(exc))
    except FetchError as exc:
        return done(Outcome.NOT_INSTALLED, str(exc))
    hook_error = _run_hook(ctx, spec)
    if hook_error:
        return done(Outcome.HOOK_FAILED, hook_error)
    return done(Outcome.INSTALLED)


def _update_job(ctx: Context, plugin_id: str) -> JobResult:
    start = time.monotonic()

    def done(outcome: Outcome, message: str = "") -> JobResult:
        return JobResult(plugin_id, outcome, time.monotonic() - start, message)

    spec = ctx.spec(plugin_id)
    if not spec.dir.exists():
        return done(Outcome.NOT_FOUND, f"not installed: {PrivatePath(spec.dir)}")
    try:
        if spec.is_release:
            changed = ctx.releases.update(spec)
        else:
            before = ctx.provider.rev_parse(spec.dir, "HEAD")
            depth = shallow_depth(spec, ctx.settings.shallow)
            ctx.provider.update(spec.dir, ref=spec.at or None, depth=depth)
            if spec.commit:
                ctx.provider.checkout(spec.dir, spec.commit)
            changed = ctx.provider.rev_parse(spec.dir, "HEAD") != before
    except NotFoundError as exc:
        return done(Outcome.NOT_FOUND, str(exc))
    except FetchError as exc:
        return done(Outcome.NOT_UPDATED, str(exc))
    if not changed:
        return done(Outcome.UP_TO_DATE)
    hook_error = _run_hook(ctx, spec)
    if hook_error:
        return done(Outcome.HOOK_FAILED, hook_error)
    return done(Outcome.UPDATED)


def _resolve_targets(ctx: Context, ids: Sequence[str] | None) -> tuple[list[str], list[JobResult]]:
    """Split requested ids into declared targets and ``NotFound`` results."""
    if not ids:
        return ctx.registry.ids(), []
    declared: list[str] = []
    missing: list[JobResult] = []
    for plugin_id in dict.fromkeys(ids):
        if plugin_id in ctx.registry:
            declared.append(plugin_id)
        else:
            missing.append(JobResult(plugin_id, Outcome.NOT_FOUND, message="not declared"))
    return declared, missing


def _schedule(
    ctx: Context,
    verb: str,
    job: Callable[[Context, str], JobResult],
    targets: list[str],
    preset: list[JobResult],
) -> RunSummary:
    start = time.monotonic()
    summary = RunSummary(results=list(preset))
    for result in preset:
        report(ctx, result)
    if targets:
        with _progress(ctx, verb, len(targets)) as on_result:
            summary.results.extend(
                run_batches(
                    targets,
                    lambda plugin_id: job(ctx, plugin_id),
                    limit=ctx.settings.threads,
                    runner=ctx.runner,
                    on_result=on_result,
                )
            )
    summary.elapsed = time.monotonic() - start
    return summary


def install(ctx: Context, ids: Sequence[str] | None = None, *, verbose: bool = False) -> RunSummary:
    """Install every requested plugin whose directory does not exist yet.

    Parameters
    ----------
    ctx : Context
        Invocation handle.
    ids : Sequence[str], optional
        Plugins to install; all declared plugins when empty.
    verbose : bool
        Also report plugins skipped because they are already installed.

    Raises
    ------
    Interrupted
        If the run was interrupted; completed installs are left in place.
    """
    declared, preset = _resolve_targets(ctx, ids)
    targets: list[str] = []
    for plugin_id in declared:
        spec = ctx.spec(plugin_id)
        if spec.dir.exists():
            if verbose:
                ctx.console.print(f"  [dim]already installed[/dim] {plugin_id} ({PrivatePath(spec.dir)})")
            continue
        targets.append(plugin_id)
    return _schedule(ctx, "Installing", _install_job, targets, preset)


def update(
    ctx: Context,
    ids: Sequence[str] | None = None,
    *,
    confirm: Callable[[str], bool] | None = None,
) -> RunSummary:
    """Update installed plugins.

    Frozen plugins are skipped unless named in *ids*; an explicitly named
    frozen plugin is updated only when *confirm* (if given) approves it.
    """
    explicit = bool(ids)
    declared, preset = _resolve_targets(ctx, ids)
    targets: list[str] = []
    for plugin_id in declared:
        if ctx.spec(plugin_id).frozen is True and (not explicit or (confirm is not None and not confirm(plugin_id))):
            preset.append(JobResult(plugin_id, Outcome.SKIPPED_FROZEN, message="frozen"))
            continue
        targets.append(plugin_id)
    return _schedule(ctx, "Updating", _update_job, targets, preset)


def self_checkout() -> Path | None:
    """Return the git checkout the manager runs from, if any."""
    root = Path(__file__).resolve().parent.parent
    return root if (root / ".git").exists() else None


def update_self(ctx: Context) -> RunSummary:
    """Fast-forward the manager's own checkout."""
    start = time.monotonic()
    root = self_checkout()
    if root is None:
        result = JobResult(SELF_ID, Outcome.NOT_FOUND, message="not running from a git checkout; upgrade with pip")
    else:
        try:
            before = ctx.provider.rev_parse(root, "HEAD")
            ctx.provider.update(root, ref=None, depth=1 if ctx.settings.shallow else None)
            changed = ctx.provider.rev_parse(root, "HEAD") != before
            result = JobResult(SELF_ID, Outcome.UPDATED if changed else Outcome.UP_TO_DATE)
        except FetchError as exc:
            result = JobResult(SELF_ID, Outcome.NOT_UPDATED, message=str(exc))
        result = dataclasses.replace(result, elapsed=time.monotonic() - start)
    report(ctx, result)
    return RunSummary([result], time.monotonic() - start)
