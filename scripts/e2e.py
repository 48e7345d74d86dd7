#!/usr/bin/env -S uv run --script
# /// script
# requires-python = ">=3.12"
# dependencies = [
#     "pydantic>=2.0",
#     "pyyaml>=6.0",
#     "rich>=13.0",
#     "typer>=0.15",
# ]
# ///
"""E2E plugin lifecycle tests for shplug.

Runs the full lifecycle against real GitHub plugins in an isolated sandbox:
install -> list -> check -> load -> status -> update -> check --install.

Sandboxing: ``HOME`` and ``SHPLUG_HOME`` point at a temp directory and the
declarations file lives there too, so the user's own plugins and settings
are never touched. Needs ``git``, ``curl`` and network access.

Examples
--------
Run over HTTPS (default):

    uv run scripts/e2e.py

Run over SSH (needs a GitHub key):

    uv run scripts/e2e.py --protocol ssh
"""

from __future__ import annotations

import os
import shutil
import subprocess
import sys
import tempfile
import typing as t
from pathlib import Path

import rich.console
import typer

REPO_ROOT = Path(__file__).resolve().parent.parent
SOURCE_PLUGINS = ["zsh-users/zsh-autosuggestions", "zsh-users/zsh-syntax-highlighting"]
RELEASE_PLUGIN = "junegunn/fzf"
DECLARATIONS = [
    *SOURCE_PLUGINS,
    "zsh-users/zsh-completions, frozen:1",
    f"{RELEASE_PLUGIN}, from:gh-r, as:cmd",
]
PLUGINS = [*SOURCE_PLUGINS, "zsh-users/zsh-completions", RELEASE_PLUGIN]

app = typer.Typer(help="E2E plugin lifecycle tests for shplug.")
console = rich.console.Console()

Protocol = t.Literal["https", "ssh"]

TestCase = tuple[str, t.Callable[[], None]]


class TestFailureError(Exception):
    """Raised when a test assertion fails."""


def _run_shplug(args: list[str], sandbox: Path, protocol: Protocol) -> subprocess.CompletedProcess[str]:
    """Run ``shplug`` from this checkout with everything rooted in *sandbox*.

    Parameters
    ----------
    args : list[str]
        Arguments to pass after ``shplug``.
    sandbox : Path
        Temporary home directory for isolation.
    protocol : Protocol
        Clone transport.

    Returns
    -------
    subprocess.CompletedProcess[str]
        The completed process result.
    """
    env = {
        **os.environ,
        "HOME": str(sandbox),
        "SHPLUG_HOME": str(sandbox / ".shplug"),
        "SHPLUG_DECLARATIONS": str(sandbox / "plugins"),
        "SHPLUG_CONFIG": str(sandbox / "config.yaml"),
        "SHPLUG_PROTOCOL": protocol,
        "PYTHONPATH": str(REPO_ROOT),
        "COLUMNS": "200",
    }
    return subprocess.run(  # noqa: S603
        [sys.executable, "-m", "shplug", *args],
        capture_output=True,
        text=True,
        env=env,
        timeout=300,
        check=False,
    )


def _assert(condition: bool, msg: str) -> None:
    """Assert *condition* is truthy, raising `TestFailureError` on failure."""
    if not condition:
        raise TestFailureError(msg)


def _pass(label: str) -> None:
    console.print(f"  [green]✔[/green] {label}")


def _fail(label: str, detail: str) -> None:
    console.print(f"  [red]✘[/red] {label}")
    console.print(f"    [dim]{detail}[/dim]")


def _run_test(label: str, fn: t.Callable[[], None]) -> bool:
    """Run a single test, print pass/fail, return success bool."""
    try:
        fn()
        _pass(label)
    except TestFailureError as exc:
        _fail(label, str(exc))
        return False
    except subprocess.TimeoutExpired:
        _fail(label, "Command timed out (300s)")
        return False
    return True


# ---------------------------------------------------------------------------
# Test case builders
# ---------------------------------------------------------------------------


def _test_install(sandbox: Path, protocol: Protocol) -> list[TestCase]:
    """Build install + list test cases."""
    tests: list[TestCase] = []

    def _install() -> None:
        r = _run_shplug(["install"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        for plugin in PLUGINS:
            _assert(plugin in r.stdout, f"'{plugin}' not reported: {r.stdout}")

    tests.append((f"install ({len(PLUGINS)} plugins)", _install))

    def _install_again() -> None:
        r = _run_shplug(["install"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        _assert("Nothing to install" in r.stdout, f"Expected nothing to install: {r.stdout}")

    tests.append(("install (idempotent)", _install_again))

    def _list() -> None:
        r = _run_shplug(["list"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        for plugin in PLUGINS:
            _assert(plugin in r.stdout, f"'{plugin}' not in list: {r.stdout}")
        _assert("no" not in r.stdout.split(), f"Plugin reported as not installed: {r.stdout}")

    tests.append(("list", _list))

    return tests


def _test_check(sandbox: Path, protocol: Protocol) -> list[TestCase]:
    """Build check test cases."""
    tests: list[TestCase] = []

    def _check() -> None:
        r = _run_shplug(["check"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")

    tests.append(("check (all installed)", _check))

    return tests


def _test_load(sandbox: Path, protocol: Protocol) -> list[TestCase]:
    """Build load test cases."""
    tests: list[TestCase] = []
    bin_dir = sandbox / ".shplug" / "bin"

    def _load() -> None:
        r = _run_shplug(["load"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        _assert("zsh-autosuggestions.plugin.zsh" in r.stdout, f"Expected script to source: {r.stdout}")
        _assert("export PATH=" in r.stdout and str(bin_dir) in r.stdout, f"Expected PATH export: {r.stdout}")
        link = bin_dir / "fzf"
        _assert(link.is_symlink(), f"Missing link {link}")
        _assert(os.access(link, os.X_OK), f"Link target not executable: {link.resolve()}")

    tests.append(("load", _load))

    def _run_linked() -> None:
        result = subprocess.run(  # noqa: S603
            [str(bin_dir / "fzf"), "--version"],
            capture_output=True,
            text=True,
            timeout=30,
            check=False,
        )
        _assert(result.returncode == 0, f"fzf --version: exit {result.returncode}: {result.stderr}")

    tests.append(("run linked command", _run_linked))

    return tests


def _test_status(sandbox: Path, protocol: Protocol) -> list[TestCase]:
    """Build status test cases."""
    tests: list[TestCase] = []

    def _status() -> None:
        r = _run_shplug(["status"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        _assert(r.stdout.count("up-to-date") >= len(SOURCE_PLUGINS), f"Expected up-to-date checkouts: {r.stdout}")
        _assert("unknown" in r.stdout, f"Expected release plugin as unknown: {r.stdout}")

    tests.append(("status", _status))

    return tests


def _test_update(sandbox: Path, protocol: Protocol) -> list[TestCase]:
    """Build update + check --install test cases."""
    tests: list[TestCase] = []

    def _update() -> None:
        r = _run_shplug(["update"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        _assert("SkippedFrozen" in r.stdout, f"Expected frozen plugin to be skipped: {r.stdout}")
        _assert("UpToDate" in r.stdout, f"Expected up-to-date plugins: {r.stdout}")

    tests.append(("update", _update))

    def _check_install() -> None:
        target = sandbox / ".shplug" / "repos" / SOURCE_PLUGINS[0]
        shutil.rmtree(target)
        missing = _run_shplug(["check"], sandbox, protocol)
        _assert(missing.returncode == 1, f"check with a removed plugin: exit {missing.returncode}")
        r = _run_shplug(["check", "--install"], sandbox, protocol)
        _assert(r.returncode == 0, f"exit {r.returncode}: {r.stdout}{r.stderr}")
        _assert(target.is_dir(), f"{SOURCE_PLUGINS[0]} was not reinstalled")

    tests.append(("check --install", _check_install))

    return tests


# ---------------------------------------------------------------------------
# Suite runner
# ---------------------------------------------------------------------------


def _run_suite(protocol: Protocol) -> tuple[int, int]:
    """Run the full lifecycle in a fresh sandbox.

    Returns
    -------
    tuple[int, int]
        (passed, total) counts.
    """
    console.print(f"\n[bold]Protocol: {protocol}[/bold]")

    sandbox = Path(tempfile.mkdtemp(prefix="shplug-e2e-"))
    try:
        (sandbox / "plugins").write_text("\n".join(DECLARATIONS) + "\n", encoding="utf-8")
        tests: list[TestCase] = []
        tests.extend(_test_install(sandbox, protocol))
        tests.extend(_test_check(sandbox, protocol))
        tests.extend(_test_load(sandbox, protocol))
        tests.extend(_test_status(sandbox, protocol))
        tests.extend(_test_update(sandbox, protocol))

        passed = sum(_run_test(name, fn) for name, fn in tests)
        total = len(tests)
        return passed, total
    finally:
        shutil.rmtree(sandbox, ignore_errors=True)


@app.command()
def main(
    protocol: t.Annotated[Protocol, typer.Option(help="Clone transport: https or ssh")] = "https",
) -> None:
    """Run E2E plugin lifecycle tests against real GitHub plugins."""
    for tool in ("git", "curl"):
        if shutil.which(tool) is None:
            console.print(f"[red]Error:[/red] '{tool}' not found in PATH")
            raise SystemExit(1)

    console.print("[bold]E2E Plugin Lifecycle Tests[/bold]")
    console.print("=" * 40)

    passed, total = _run_suite(protocol)

    console.print()
    if passed == total:
        console.print(f"[green bold]{passed}/{total} tests passed[/green bold]")
    else:
        console.print(f"[red bold]{total - passed}/{total} tests failed[/red bold]")
        raise SystemExit(1)


if __name__ == "__main__":
    app()
