"""Display helper that keeps the user's home directory out of output."""

from __future__ import annotations

import os
from pathlib import Path


class PrivatePath:
    """Render a path with the home directory collapsed to ``~``.

    Only affects display; pass the original path to filesystem calls.

    Examples
    --------
    >>> str(PrivatePath(Path.home() / ".shplug" / "bin"))
    '~/.shplug/bin'
    >>> str(PrivatePath("/opt/tools"))
    '/opt/tools'
    """

    __slots__ = ("_path",)

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self._path = Path(path)

    def __str__(self) -> str:
        try:
            relative = self._path.relative_to(Path.home())
        except ValueError:
            return str(self._path)
        if relative == Path():
            return "~"
        return f"~/{relative}"

    def __repr__(self) -> str:
        return f"PrivatePath({str(self)!r})"
