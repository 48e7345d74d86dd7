"""Installation check and local-vs-remote drift reporting."""

from __future__ import annotations

import dataclasses
import enum
import logging
from collections.abc import Sequence

from shplug._private_path import PrivatePath
from shplug.context import Context
from shplug.errors import FetchError
from shplug.provider import clone_url
from shplug.releases import installed_tag
from shplug.runner import run_batches

logger = logging.getLogger(__name__)


class DriftState(enum.StrEnum):
    NOT_INITIALIZED = "not-initialized"
    NOT_ON_BRANCH = "not-on-any-branch"
    LOCAL_OUT_OF_DATE = "local-out-of-date"
    FAST_FORWARDABLE = "fast-forwardable"
    UP_TO_DATE = "up-to-date"
    UNKNOWN = "unknown"
    UNMANAGED = "unmanaged"


_RELATIONS = {
    "up to date": DriftState.UP_TO_DATE,
    "fast-forwardable": DriftState.FAST_FORWARDABLE,
    "local out of date": DriftState.LOCAL_OUT_OF_DATE,
}
"""git's push relation wording -> drift state."""


@dataclasses.dataclass(frozen=True)
class DriftRecord:
    plugin_id: str
    state: DriftState
    local_ref: str = ""
    tracking_remote: str = ""
    merge_branch: str = ""
    remote_url: str = ""
    detail: str = ""


def classify_counts(ahead: int, behind: int) -> DriftState:
    """Drift state from commit counts relative to the remote tracking ref.

    Examples
    --------
    >>> [classify_counts(a, b).value for a, b in [(0, 0), (1, 0), (0, 2), (1, 1)]]
    ['up-to-date', 'fast-forwardable', 'local-out-of-date', 'local-out-of-date']
    """
    if behind:
        return DriftState.LOCAL_OUT_OF_DATE
    if ahead:
        return DriftState.FAST_FORWARDABLE
    return DriftState.UP_TO_DATE


def check(ctx: Context, ids: Sequence[str] | None = None, *, verbose: bool = False) -> list[str]:
    """Return the requested plugins whose directory does not exist."""
    missing: list[str] = []
    for plugin_id in ids or ctx.registry.ids():
        if plugin_id not in ctx.registry:
            ctx.console.print(f"[yellow]Warning:[/yellow] {plugin_id} is not declared", highlight=False)
            missing.append(plugin_id)
            continue
        spec = ctx.spec(plugin_id)
        if spec.dir.exists():
            continue
        missing.append(plugin_id)
        if verbose:
            ctx.console.print(f"  [red]not installed[/red] {plugin_id}", highlight=False)
    return missing


def inspect(ctx: Context, plugin_id: str) -> DriftRecord:
    """Classify one plugin's checkout against its remote."""
    spec = ctx.spec(plugin_id)
    url = clone_url(plugin_id, ctx.settings.protocol, ctx.settings.host)
    if not spec.dir.exists():
        return DriftRecord(plugin_id, DriftState.UNMANAGED, remote_url=url)
    if spec.is_release:
        return DriftRecord(plugin_id, DriftState.UNKNOWN, local_ref=installed_tag(spec) or "", detail="release")

    provider = ctx.provider
    repo = spec.dir
    try:
        head = provider.rev_parse(repo, "HEAD") if (repo / ".git").exists() else None
        if head is None:
            return DriftRecord(plugin_id, DriftState.NOT_INITIALIZED, remote_url=url)
        branch = provider.current_branch(repo)
        if branch is None:
            return DriftRecord(plugin_id, DriftState.NOT_ON_BRANCH, local_ref=head[:7])
        tracking = provider.tracking(repo, branch)
        if tracking is None:
            return DriftRecord(plugin_id, DriftState.UNKNOWN, local_ref=branch, detail="no upstream")
        remote, merge = tracking
        remote_url = provider.remote_url(repo, remote) or ""

        state = _RELATIONS.get(provider.remote_relation(repo, remote, branch) or "")
        if state is None:
            counts = provider.ahead_behind(repo, branch, f"{remote}/{merge}")
            state = classify_counts(*counts) if counts is not None else DriftState.UNKNOWN
        remote_head = provider.remote_head(repo, remote, merge)
        if remote_head and not provider.has_commit(repo, remote_head):
            state = DriftState.LOCAL_OUT_OF_DATE
    except FetchError as exc:
        return DriftRecord(plugin_id, DriftState.UNKNOWN, detail=str(exc))
    return DriftRecord(plugin_id, state, branch, remote, merge, remote_url)


def status(ctx: Context, ids: Sequence[str] | None = None) -> list[DriftRecord]:
    """Inspect the requested (default: all declared) plugins in parallel."""
    targets = []
    for plugin_id in ids or ctx.registry.ids():
        if plugin_id in ctx.registry:
            targets.append(plugin_id)
        else:
            ctx.console.print(f"[yellow]Warning:[/yellow] {plugin_id} is not declared", highlight=False)
    records = run_batches(
        targets,
        lambda plugin_id: inspect(ctx, plugin_id),
        limit=ctx.settings.threads,
        runner=ctx.runner,
    )
    for record in records:
        if record.state is DriftState.UNMANAGED:
            ctx.console.print(
                f"  [dim]unmanaged[/dim] {record.plugin_id} (would clone {record.remote_url} into "
                f"{PrivatePath(ctx.spec(record.plugin_id).dir)})",
                highlight=False,
            )
    return records
