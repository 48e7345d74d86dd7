"""Process-scoped registry of declared plugins.

Maps each plugin id to its accumulated raw specifier text, in declaration
order. Declarations take the registry lock; readers take a snapshot.
"""

from __future__ import annotations

import logging
import threading
from pathlib import Path

from shplug.errors import DeclarationError
from shplug.specifier import (
    KNOWN_KEYS,
    RESERVED_KEYS,
    PluginSpec,
    check_plugin_id,
    iter_specifiers,
    parse_spec,
    split_top_level,
)

logger = logging.getLogger(__name__)


class Registry:
    """Ordered mapping of plugin id -> raw specifier text.

    Examples
    --------
    >>> reg = Registry()
    >>> reg.declare("a/b", "as:cmd")
    >>> reg.declare("a/b", "of:bin/*, as:src")
    >>> reg.raw("a/b")
    'as:cmd, of:bin/*, as:src'
    >>> reg.spec("a/b", Path("/r")).kind
    'source'
    """

    def __init__(self) -> None:
        self._entries: dict[str, str] = {}
        self._lock = threading.RLock()

    def __contains__(self, plugin_id: object) -> bool:
        return plugin_id in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def declare(self, plugin_id: str, *specifiers: str, upstream: str | None = None) -> None:
        """Register *plugin_id*, merging *specifiers* into any earlier declaration.

        Parameters
        ----------
        plugin_id : str
            ``owner/name`` identifier.
        *specifiers : str
            ``key:value`` strings; each may itself hold several comma-separated
            specifiers.
        upstream : str, optional
            Producer plugin piped into this declaration; recorded as ``on``.

        Raises
        ------
        DeclarationError
            If the id is malformed or a key is unknown or reserved.
        """
        check_plugin_id(plugin_id)
        tokens: list[str] = []
        for text in specifiers:
            for key, value in iter_specifiers(text):
                if key in RESERVED_KEYS:
                    msg = f"{plugin_id}: '{key}' is reserved and cannot be set"
                    raise DeclarationError(msg)
                if key not in KNOWN_KEYS:
                    msg = f"{plugin_id}: unknown specifier '{key}'"
                    raise DeclarationError(msg)
                if key == "on" and value:
                    check_plugin_id(value)
                tokens.append(_render(key, value))
        if upstream is not None:
            tokens.append(_render("on", check_plugin_id(upstream)))

        with self._lock:
            previous = self._entries.get(plugin_id)
            merged = [previous] if previous else []
            merged.extend(tokens)
            self._entries[plugin_id] = ", ".join(merged)
        logger.debug("declared %s: %s", plugin_id, self._entries[plugin_id])

    def remove(self, plugin_id: str) -> None:
        with self._lock:
            self._entries.pop(plugin_id, None)

    def ids(self) -> list[str]:
        """Snapshot of registered ids in declaration order."""
        with self._lock:
            return list(self._entries)

    def raw(self, plugin_id: str) -> str:
        with self._lock:
            return self._entries[plugin_id]

    def spec(self, plugin_id: str, repos_dir: Path) -> PluginSpec:
        """Derive a fresh :class:`PluginSpec`; raises ``KeyError`` if undeclared."""
        return parse_spec(plugin_id, self.raw(plugin_id), repos_dir)

    @property
    def lock(self) -> threading.RLock:
        return self._lock


def _render(key: str, value: str) -> str:
    """Format one specifier so that re-parsing yields *value* unchanged.

    Values holding a quote or separator are wrapped in a quote they do not
    contain.

    Examples
    --------
    >>> _render("as", "cmd")
    'as:cmd'
    >>> _render("of", "a,b")
    'of:"a,b"'
    >>> print(_render("ifCond", '"$TERM" = "xterm"'))
    ifCond:'"$TERM" = "xterm"'
    """
    if not any(char in value for char in ",|\"'"):
        return f"{key}:{value}"
    for quote in "\"'":
        if quote not in value:
            return f"{key}:{quote}{value}{quote}"
    msg = f"{key}: value {value!r} cannot mix single and double quotes"
    raise DeclarationError(msg)


def declare_line(registry: Registry, line: str) -> None:
    """Apply one declaration line, honouring a single ``producer | consumer`` pipe.

    Examples
    --------
    >>> reg = Registry()
    >>> declare_line(reg, "a/lib, as:src | a/tool, as:cmd")
    >>> reg.ids(), reg.raw("a/tool")
    (['a/lib', 'a/tool'], 'as:cmd, on:a/lib')
    """
    stages = split_top_level(line, "|")
    if len(stages) > 2:
        msg = "only one producer | consumer hop is supported per declaration"
        raise DeclarationError(msg)

    upstream: str | None = None
    for stage in stages:
        plugin_id, _, specifiers = stage.strip().partition(",")
        plugin_id = plugin_id.strip()
        if not plugin_id:
            msg = "missing plugin id"
            raise DeclarationError(msg)
        registry.declare(plugin_id, specifiers, upstream=upstream)
        upstream = plugin_id


def load_declarations(registry: Registry, path: Path) -> list[str]:
    """Declare every plugin listed in *path*.

    Blank lines and ``#`` comments are ignored. A bad line does not stop the
    rest of the file from loading.

    Returns
    -------
    list[str]
        One ``file:line: message`` entry per rejected declaration.
    """
    if not path.exists():
        logger.debug("no declarations file at %s", path)
        return []
    errors: list[str] = []
    with path.open(encoding="utf-8") as handle:
        for lineno, line in enumerate(handle, start=1):
            stripped = line.strip()
            if not stripped or stripped.startswith("#"):
                continue
            try:
                declare_line(registry, stripped)
            except DeclarationError as exc:
                errors.append(f"{path.name}:{lineno}: {exc}")
    return errors
