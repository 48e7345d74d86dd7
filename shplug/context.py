"""Explicit handle passed to every core operation."""

from __future__ import annotations

import dataclasses
import logging

import rich.console

from shplug.config import Settings
from shplug.provider import GitProvider, RepositoryProvider
from shplug.registry import Registry
from shplug.releases import ReleaseFetcher
from shplug.runner import ProcessRunner
from shplug.specifier import PluginSpec

logger = logging.getLogger(__name__)


@dataclasses.dataclass
class Context:
    """Settings, registry and backends shared by one invocation."""

    settings: Settings
    registry: Registry
    provider: RepositoryProvider
    releases: ReleaseFetcher
    runner: ProcessRunner
    console: rich.console.Console

    @classmethod
    def create(
        cls,
        settings: Settings,
        registry: Registry | None = None,
        console: rich.console.Console | None = None,
    ) -> Context:
        """Wire the default ``git``/``curl`` backends around one runner."""
        runner = ProcessRunner()
        return cls(
            settings=settings,
            registry=registry if registry is not None else Registry(),
            provider=GitProvider(runner),
            releases=ReleaseFetcher(runner),
            runner=runner,
            console=console or rich.console.Console(),
        )

    def spec(self, plugin_id: str) -> PluginSpec:
        """Derive the current spec; nothing is cached between calls."""
        return self.registry.spec(plugin_id, self.settings.repos_dir)

    def shell_command(self, command: str) -> list[str]:
        return [self.settings.shell, "-c", command]

    def predicate(self, condition: str) -> bool:
        """Evaluate an ``ifCond`` predicate; exit status 0 means true."""
        try:
            result = self.runner.run(self.shell_command(condition))
        except OSError as exc:
            logger.warning("cannot evaluate ifCond with %s: %s", self.settings.shell, exc)
            return False
        logger.debug("ifCond %r -> %d", condition, result.returncode)
        return result.returncode == 0
