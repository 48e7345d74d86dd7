"""External process execution and the bounded worker pool.

Every network-touching unit of work runs as its own subprocess. The runner
tracks live processes so a single interrupt can tear all of them down, and
:func:`run_batches` admits work in barrier-separated batches no larger than
the pool limit.
"""

from __future__ import annotations

import logging
import os
import signal
import subprocess
import threading
import typing as t
from collections.abc import Callable, Mapping, Sequence
from concurrent.futures import ThreadPoolExecutor, wait
from pathlib import Path

from shplug.errors import Interrupted

logger = logging.getLogger(__name__)

T = t.TypeVar("T")
R = t.TypeVar("R")


class ProcessRunner:
    """Run commands in their own sessions and reap them on interrupt."""

    def __init__(self, env: Mapping[str, str] | None = None) -> None:
        self._env = dict(os.environ if env is None else env)
        self._live: set[subprocess.Popen[str]] = set()
        self._lock = threading.Lock()
        self._cancelled = threading.Event()

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def run(
        self,
        args: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
    ) -> subprocess.CompletedProcess[str]:
        """Run *args* to completion and capture its output.

        Raises
        ------
        Interrupted
            If the runner was cancelled before or while the command ran.
        """
        if self.cancelled:
            msg = "runner cancelled"
            raise Interrupted(msg)
        logger.debug("run %s (cwd=%s)", " ".join(args), cwd)
        proc = subprocess.Popen(  # noqa: S603
            list(args),
            cwd=cwd,
            env={**self._env, **(env or {})},
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
            text=True,
            start_new_session=True,
        )
        with self._lock:
            self._live.add(proc)
        try:
            try:
                stdout, stderr = proc.communicate(timeout=timeout)
            except subprocess.TimeoutExpired:
                self._signal(proc, signal.SIGKILL)
                stdout, stderr = proc.communicate()
                stderr += f"\ntimed out after {timeout}s"
        finally:
            with self._lock:
                self._live.discard(proc)
        if self.cancelled:
            msg = f"interrupted: {args[0]}"
            raise Interrupted(msg)
        return subprocess.CompletedProcess(list(args), proc.returncode, stdout, stderr)

    def terminate_all(self) -> int:
        """Cancel the runner and SIGTERM every live process group.

        Returns the number of processes signalled.
        """
        self._cancelled.set()
        with self._lock:
            live = list(self._live)
        for proc in live:
            self._signal(proc, signal.SIGTERM)
        return len(live)

    def reset(self) -> None:
        """Return to the baseline state after a cancellation."""
        self._cancelled.clear()

    @staticmethod
    def _signal(proc: subprocess.Popen[str], sig: signal.Signals) -> None:
        try:
            os.killpg(proc.pid, sig)
        except (ProcessLookupError, PermissionError):
            pass


def run_batches(
    items: Sequence[T],
    fn: Callable[[T], R],
    *,
    limit: int,
    runner: ProcessRunner,
    on_result: Callable[[R], None] | None = None,
) -> list[R]:
    """Apply *fn* to *items* with at most *limit* calls in flight.

    Items are admitted in batches of *limit*; the next batch starts only once
    the whole previous batch has finished. Results come back in the order of
    *items*.

    Raises
    ------
    Interrupted
        On ``KeyboardInterrupt``: live processes are terminated, pending work
        is cancelled and the runner is reset before this is raised.
    """
    results: list[R] = []
    if not items:
        return results
    limit = max(1, limit)
    pool = ThreadPoolExecutor(max_workers=min(limit, len(items)), thread_name_prefix="shplug")
    try:
        for start in range(0, len(items), limit):
            batch = items[start : start + limit]
            logger.debug("batch of %d (offset %d)", len(batch), start)
            futures = [pool.submit(fn, item) for item in batch]
            wait(futures)
            for future in futures:
                result = future.result()
                if on_result is not None:
                    on_result(result)
                results.append(result)
    except KeyboardInterrupt:
        killed = runner.terminate_all()
        logger.debug("interrupt: terminated %d process(es)", killed)
        pool.shutdown(wait=True, cancel_futures=True)
        msg = "interrupted"
        raise Interrupted(msg) from None
    finally:
        pool.shutdown(wait=True)
        runner.reset()
    return results
