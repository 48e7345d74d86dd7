"""Shared fixtures: an in-memory repository provider and a context around it."""

from __future__ import annotations

import io
import shutil
import threading
import time
import typing as t
from pathlib import Path

import pytest
import rich.console

from shplug.config import Settings
from shplug.context import Context
from shplug.errors import FetchError
from shplug.registry import Registry
from shplug.releases import ReleaseFetcher
from shplug.runner import ProcessRunner


class FakeProvider:
    """Repository provider that works on plain directories.

    ``clone`` creates the target with an empty ``.git`` directory and records
    the requested ref and depth. Heads are opaque strings kept per directory.
    """

    def __init__(self, delay: float = 0.0) -> None:
        self.delay = delay
        self.clones: dict[Path, dict[str, t.Any]] = {}
        self.updates: dict[Path, dict[str, t.Any]] = {}
        self.checkouts: list[tuple[Path, str]] = []
        self.heads: dict[Path, str] = {}
        self.upstream: dict[Path, str] = {}
        self.failures: dict[str, FetchError] = {}
        self.branches: dict[Path, str | None] = {}
        self.relations: dict[Path, str] = {}
        self.counts: dict[Path, tuple[int, int]] = {}
        self.peak = 0
        self._active = 0
        self._lock = threading.Lock()

    def _enter(self) -> None:
        with self._lock:
            self._active += 1
            self.peak = max(self.peak, self._active)

    def _leave(self) -> None:
        with self._lock:
            self._active -= 1

    def clone(self, url: str, dest: Path, *, ref: str | None, depth: int | None) -> None:
        self._enter()
        try:
            time.sleep(self.delay)
            if url in self.failures:
                raise self.failures[url]
            (dest / ".git").mkdir(parents=True)
            self.heads[dest] = "c0"
            self.clones[dest] = {"url": url, "ref": ref, "depth": depth}
        finally:
            self._leave()

    def update(self, repo: Path, *, ref: str | None, depth: int | None) -> bool:
        self._enter()
        try:
            time.sleep(self.delay)
            self.updates[repo] = {"ref": ref, "depth": depth}
            before = self.heads.get(repo)
            self.heads[repo] = self.upstream.get(repo, before or "c0")
            return self.heads[repo] != before
        finally:
            self._leave()

    def checkout(self, repo: Path, commit: str) -> None:
        self.checkouts.append((repo, commit))
        self.heads[repo] = commit

    def rev_parse(self, repo: Path, rev: str) -> str | None:
        return self.heads.get(repo)

    def current_branch(self, repo: Path) -> str | None:
        return self.branches.get(repo, "master")

    def tracking(self, repo: Path, branch: str) -> tuple[str, str] | None:
        return "origin", branch

    def remote_url(self, repo: Path, remote: str) -> str | None:
        return f"fake://{repo.name}"

    def remote_relation(self, repo: Path, remote: str, branch: str) -> str | None:
        return self.relations.get(repo)

    def ahead_behind(self, repo: Path, local: str, upstream: str) -> tuple[int, int] | None:
        return self.counts.get(repo, (0, 0))

    def remote_head(self, repo: Path, remote: str, branch: str) -> str | None:
        return None

    def has_commit(self, repo: Path, commit: str) -> bool:
        return True


def output(ctx: Context) -> str:
    """Everything printed to the context console so far."""
    return t.cast("io.StringIO", ctx.console.file).getvalue()


@pytest.fixture
def settings(tmp_path: Path) -> Settings:
    return Settings(root=tmp_path / "home", threads=4, shell=shutil.which("sh") or "sh")


@pytest.fixture
def provider() -> FakeProvider:
    return FakeProvider()


@pytest.fixture
def ctx(settings: Settings, provider: FakeProvider) -> Context:
    runner = ProcessRunner()
    return Context(
        settings=settings,
        registry=Registry(),
        provider=provider,
        releases=ReleaseFetcher(runner),
        runner=runner,
        console=rich.console.Console(file=io.StringIO(), width=200),
    )
