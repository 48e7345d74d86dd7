"""Repository provider interface and its ``git`` implementation."""

from __future__ import annotations

import logging
import re
import shutil
import subprocess
import typing as t
from pathlib import Path

from shplug.errors import FetchError, NotFoundError
from shplug.runner import ProcessRunner

logger = logging.getLogger(__name__)

GIT_ENV = {"GIT_TERMINAL_PROMPT": "0", "LC_ALL": "C"}
"""Keep git non-interactive and its messages parseable."""

_NOT_FOUND_MARKERS = (
    "not found",
    "does not exist",
    "could not read username",
    "authentication failed",
)

_PUSH_RELATION_RE = re.compile(r"^\s*(?P<local>\S+)\s+pushes to\s+(?P<remote>\S+)\s+\((?P<state>[^)]+)\)\s*$")


def clone_url(plugin_id: str, protocol: str = "https", host: str = "github.com") -> str:
    """Build the clone URL for *plugin_id*.

    The HTTPS form carries an empty ``git:`` credential so a missing or
    misspelled repository fails instead of prompting for a password.

    Examples
    --------
    >>> clone_url("zsh-users/zsh-completions")
    'https://git::@github.com/zsh-users/zsh-completions.git'
    >>> clone_url("zsh-users/zsh-completions", "ssh")
    'git@github.com:zsh-users/zsh-completions.git'
    """
    if protocol == "ssh":
        return f"git@{host}:{plugin_id}.git"
    return f"https://git::@{host}/{plugin_id}.git"


class RepositoryProvider(t.Protocol):
    """Operations the scheduler and status comparator need from a repository backend."""

    def clone(self, url: str, dest: Path, *, ref: str | None, depth: int | None) -> None: ...

    def update(self, repo: Path, *, ref: str | None, depth: int | None) -> bool: ...

    def checkout(self, repo: Path, commit: str) -> None: ...

    def rev_parse(self, repo: Path, rev: str) -> str | None: ...

    def current_branch(self, repo: Path) -> str | None: ...

    def tracking(self, repo: Path, branch: str) -> tuple[str, str] | None: ...

    def remote_url(self, repo: Path, remote: str) -> str | None: ...

    def remote_relation(self, repo: Path, remote: str, branch: str) -> str | None: ...

    def ahead_behind(self, repo: Path, local: str, upstream: str) -> tuple[int, int] | None: ...

    def remote_head(self, repo: Path, remote: str, branch: str) -> str | None: ...

    def has_commit(self, repo: Path, commit: str) -> bool: ...


def _classify(action: str, target: str, result: subprocess.CompletedProcess[str]) -> FetchError:
    detail = (result.stderr or result.stdout).strip().splitlines()
    message = f"{action} {target}: {detail[-1] if detail else f'exit {result.returncode}'}"
    lowered = (result.stderr or "").lower()
    if any(marker in lowered for marker in _NOT_FOUND_MARKERS):
        return NotFoundError(message)
    return FetchError(message)


class GitProvider:
    """:class:`RepositoryProvider` backed by the ``git`` command line."""

    def __init__(self, runner: ProcessRunner, git: str = "git") -> None:
        self.runner = runner
        self.git = git

    def _git(self, repo: Path | None, *args: str) -> subprocess.CompletedProcess[str]:
        argv = [self.git, *(["-C", str(repo)] if repo is not None else []), *args]
        try:
            return self.runner.run(argv, env=GIT_ENV)
        except OSError as exc:
            msg = f"cannot run {self.git}: {exc}"
            raise FetchError(msg) from exc

    def _value(self, repo: Path, *args: str) -> str | None:
        result = self._git(repo, *args)
        if result.returncode != 0:
            return None
        return result.stdout.strip() or None

    def clone(self, url: str, dest: Path, *, ref: str | None, depth: int | None) -> None:
        """Clone *url* into *dest*; a failed clone leaves no directory behind."""
        args = ["clone", "--quiet", "--recurse-submodules"]
        if depth is not None:
            args += ["--depth", str(depth), "--shallow-submodules"]
        if ref:
            args += ["--branch", ref]
        dest.parent.mkdir(parents=True, exist_ok=True)
        result = self._git(None, *args, url, str(dest))
        if result.returncode != 0:
            shutil.rmtree(dest, ignore_errors=True)
            raise _classify("clone", url, result)

    def update(self, repo: Path, *, ref: str | None, depth: int | None) -> bool:
        """Fetch and fast-forward the tracked branch; return whether HEAD moved.

        A shallow checkout keeps its boundary; ``depth=None`` deepens it to
        the full history first.
        """
        before = self.rev_parse(repo, "HEAD")
        branch = ref or self.current_branch(repo)
        fetch = ["fetch", "--quiet", "origin"]
        if depth is None and self._value(repo, "rev-parse", "--is-shallow-repository") == "true":
            fetch.append("--unshallow")
        if branch:
            fetch.append(branch)
        result = self._git(repo, *fetch)
        if result.returncode != 0:
            raise _classify("fetch", str(repo), result)
        current = self.current_branch(repo)
        if current is None:
            # Tag checkouts stay detached at whatever the ref now names.
            step = self._git(repo, "checkout", "--quiet", "FETCH_HEAD")
        elif branch and current != branch:
            step = self._git(repo, "checkout", "--quiet", "-B", branch, "FETCH_HEAD")
        else:
            step = self._git(repo, "merge", "--quiet", "--ff-only", "FETCH_HEAD")
        if step.returncode != 0:
            raise _classify("fast-forward", str(repo), step)
        submodules = self._git(repo, "submodule", "update", "--init", "--recursive", "--quiet")
        if submodules.returncode != 0:
            raise _classify("submodule update", str(repo), submodules)
        return self.rev_parse(repo, "HEAD") != before

    def checkout(self, repo: Path, commit: str) -> None:
        result = self._git(repo, "checkout", "--quiet", commit)
        if result.returncode != 0:
            raise _classify("checkout", commit, result)

    def rev_parse(self, repo: Path, rev: str) -> str | None:
        return self._value(repo, "rev-parse", "--verify", "--quiet", rev)

    def current_branch(self, repo: Path) -> str | None:
        return self._value(repo, "symbolic-ref", "--short", "--quiet", "HEAD")

    def tracking(self, repo: Path, branch: str) -> tuple[str, str] | None:
        remote = self._value(repo, "config", f"branch.{branch}.remote")
        merge = self._value(repo, "config", f"branch.{branch}.merge")
        if remote is None or merge is None:
            return None
        return remote, merge.removeprefix("refs/heads/")

    def remote_url(self, repo: Path, remote: str) -> str | None:
        return self._value(repo, "config", f"remote.{remote}.url")

    def remote_relation(self, repo: Path, remote: str, branch: str) -> str | None:
        """Return git's push relation for *branch* (``up to date``, ``fast-forwardable``, ...)."""
        result = self._git(repo, "remote", "show", remote)
        if result.returncode != 0:
            return None
        for line in result.stdout.splitlines():
            match = _PUSH_RELATION_RE.match(line)
            if match and match["local"] == branch:
                return match["state"]
        return None

    def ahead_behind(self, repo: Path, local: str, upstream: str) -> tuple[int, int] | None:
        counts = self._value(repo, "rev-list", "--left-right", "--count", f"{local}...{upstream}")
        if counts is None:
            return None
        ahead, behind = counts.split()
        return int(ahead), int(behind)

    def remote_head(self, repo: Path, remote: str, branch: str) -> str | None:
        listing = self._value(repo, "ls-remote", remote, f"refs/heads/{branch}")
        if listing is None:
            return None
        return listing.split()[0]

    def has_commit(self, repo: Path, commit: str) -> bool:
        return self._git(repo, "cat-file", "-e", f"{commit}^{{commit}}").returncode == 0
