"""Prebuilt binaries from GitHub releases (``from:gh-r``).

Downloads run through ``curl`` on the shared :class:`ProcessRunner` so an
interrupt tears them down like any other job.
"""

from __future__ import annotations

import json
import logging
import os
import platform
import shutil
import stat
import tarfile
import typing as t
import zipfile
from pathlib import Path

from shplug.errors import FetchError, NotFoundError
from shplug.runner import ProcessRunner
from shplug.specifier import DEFAULT_REF, PluginSpec

logger = logging.getLogger(__name__)

RELEASE_MARKER = ".shplug-release"
"""File inside the plugin directory recording the installed release tag."""

API_ROOT = "https://api.github.com/repos"

OS_KEYWORDS: dict[str, tuple[str, ...]] = {
    "linux": ("linux",),
    "darwin": ("darwin", "macos", "apple", "osx"),
    "freebsd": ("freebsd",),
    "openbsd": ("openbsd",),
    "windows": ("windows", "win64", "win32"),
}

ARCH_KEYWORDS: dict[str, tuple[str, ...]] = {
    "x86_64": ("amd64", "x86_64", "x64", "64bit"),
    "aarch64": ("arm64", "aarch64"),
    "i686": ("386", "i386", "i686", "x86", "32bit"),
    "armv7l": ("armv7", "armhf", "arm"),
}

_SKIP_SUFFIXES = (".sha256", ".sha256sum", ".md5", ".sig", ".asc", ".txt", ".sbom", ".pem", ".deb", ".rpm", ".apk", ".msi")
_ARCHIVES = (".tar.gz", ".tgz", ".tar.xz", ".txz", ".tar.bz2", ".tbz2", ".zip")


def host_keywords() -> tuple[tuple[str, ...], tuple[str, ...]]:
    """Return the (OS, architecture) keywords for the running machine."""
    system = platform.system().lower()
    machine = platform.machine().lower()
    if machine == "arm64":
        machine = "aarch64"
    elif machine == "amd64":
        machine = "x86_64"
    return OS_KEYWORDS.get(system, (system,)), ARCH_KEYWORDS.get(machine, (machine,))


def pick_asset(
    names: list[str],
    os_words: tuple[str, ...],
    arch_words: tuple[str, ...],
    pattern: str | None = None,
) -> str | None:
    """Choose the asset for this host from release asset *names*.

    Parameters
    ----------
    names : list[str]
        Asset file names, in release order.
    os_words, arch_words : tuple[str, ...]
        Keywords identifying the host; see :func:`host_keywords`.
    pattern : str, optional
        Substring the asset must contain (the plugin's ``of``), when given.

    Examples
    --------
    >>> assets = [
    ...     "fzf-0.44.1-darwin_arm64.zip",
    ...     "fzf-0.44.1-linux_amd64.tar.gz",
    ...     "fzf-0.44.1-linux_arm64.tar.gz",
    ...     "fzf_0.44.1_checksums.txt",
    ... ]
    >>> pick_asset(assets, ("linux",), ("amd64", "x86_64"))
    'fzf-0.44.1-linux_amd64.tar.gz'
    >>> pick_asset(assets, ("darwin", "macos"), ("arm64", "aarch64"))
    'fzf-0.44.1-darwin_arm64.zip'
    >>> pick_asset(assets, ("windows",), ("amd64",)) is None
    True
    """
    candidates = [
        name for name in names if not name.lower().endswith(_SKIP_SUFFIXES) and (not pattern or pattern in name)
    ]
    on_os = [name for name in candidates if any(word in name.lower() for word in os_words)]
    for arch in arch_words:
        matching = [name for name in on_os if arch in name.lower()]
        if matching:
            archives = [name for name in matching if name.lower().endswith(_ARCHIVES)]
            return (archives or matching)[0]
    return on_os[0] if len(on_os) == 1 else None


def _extract(archive: Path, dest: Path) -> None:
    lowered = archive.name.lower()
    if lowered.endswith(".zip"):
        with zipfile.ZipFile(archive) as bundle:
            bundle.extractall(dest)
    else:
        with tarfile.open(archive) as bundle:
            bundle.extractall(dest, filter="data")
    archive.unlink()


def _mark_executables(dest: Path) -> None:
    for path in dest.rglob("*"):
        if path.is_file() and path.name != RELEASE_MARKER and not path.suffix:
            mode = path.stat().st_mode
            path.chmod(mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)


def installed_tag(spec: PluginSpec) -> str | None:
    marker = spec.dir / RELEASE_MARKER
    if not marker.exists():
        return None
    return marker.read_text(encoding="utf-8").strip() or None


class ReleaseFetcher:
    """Resolve and download release artifacts with ``curl``."""

    def __init__(self, runner: ProcessRunner, curl: str = "curl") -> None:
        self.runner = runner
        self.curl = curl

    def _curl(self, *args: str) -> str:
        headers = ["-H", "Accept: application/vnd.github+json"]
        token = os.environ.get("GITHUB_TOKEN")
        if token:
            headers += ["-H", f"Authorization: Bearer {token}"]
        try:
            result = self.runner.run([self.curl, "-fsSL", "--retry", "2", *headers, *args])
        except OSError as exc:
            msg = f"cannot run {self.curl}: {exc}"
            raise FetchError(msg) from exc
        if result.returncode == 22 and "404" in result.stderr:
            msg = f"{args[-1]}: not found"
            raise NotFoundError(msg)
        if result.returncode != 0:
            msg = f"{args[-1]}: {result.stderr.strip() or f'curl exit {result.returncode}'}"
            raise FetchError(msg)
        return result.stdout

    def latest(self, spec: PluginSpec) -> tuple[str, dict[str, str]]:
        """Return ``(tag, {asset name: download url})`` for the plugin's release."""
        if spec.at and spec.at != DEFAULT_REF:
            url = f"{API_ROOT}/{spec.plugin_id}/releases/tags/{spec.at}"
        else:
            url = f"{API_ROOT}/{spec.plugin_id}/releases/latest"
        try:
            payload = t.cast("dict[str, t.Any]", json.loads(self._curl(url)))
        except json.JSONDecodeError as exc:
            msg = f"{url}: invalid JSON: {exc}"
            raise FetchError(msg) from exc
        assets = t.cast("list[dict[str, t.Any]]", payload.get("assets") or [])
        return str(payload.get("tag_name", "")), {
            str(asset["name"]): str(asset["browser_download_url"]) for asset in assets
        }

    def fetch(self, spec: PluginSpec) -> str:
        """Install the host's artifact into ``spec.dir``; return the release tag."""
        tag, assets = self.latest(spec)
        os_words, arch_words = host_keywords()
        name = pick_asset(list(assets), os_words, arch_words, spec.of)
        if name is None:
            msg = f"{spec.plugin_id}: no release asset for {platform.system()}/{platform.machine()}"
            raise NotFoundError(msg)

        staging = spec.dir.with_name(f".{spec.dir.name}.partial")
        shutil.rmtree(staging, ignore_errors=True)
        staging.mkdir(parents=True)
        try:
            target = staging / name
            self._curl("-o", str(target), assets[name])
            if name.lower().endswith(_ARCHIVES):
                try:
                    _extract(target, staging)
                except (tarfile.TarError, zipfile.BadZipFile, OSError) as exc:
                    msg = f"{spec.plugin_id}: cannot unpack {name}: {exc}"
                    raise FetchError(msg) from exc
            _mark_executables(staging)
            (staging / RELEASE_MARKER).write_text(f"{tag}\n", encoding="utf-8")
            shutil.rmtree(spec.dir, ignore_errors=True)
            staging.rename(spec.dir)
        except BaseException:
            shutil.rmtree(staging, ignore_errors=True)
            raise
        logger.debug("%s: installed release %s (%s)", spec.plugin_id, tag, name)
        return tag

    def update(self, spec: PluginSpec) -> bool:
        """Re-install when the resolved tag differs from the installed one."""
        tag, _ = self.latest(spec)
        if tag and tag == installed_tag(spec):
            return False
        self.fetch(spec)
        return True
