"""Specifier DSL: tokenizing ``key:value`` text and deriving :class:`PluginSpec`.

A declaration attaches comma-separated specifiers to a plugin id::

    zsh-users/zsh-autosuggestions
    junegunn/fzf, from:gh-r, as:cmd, file:fzf
    b4b4r07/enhancd, of:"init.sh", ifCond:"[[ -n $ZSH_VERSION ]]"

Parsing is pure: the same id and text always produce an equal record, and
nothing is cached between calls.
"""

from __future__ import annotations

import re
import typing as t
from collections.abc import Iterator
from pathlib import Path

import pydantic

from shplug.errors import DeclarationError

PLUGIN_ID_RE = re.compile(r"^[A-Za-z0-9._-]+/[A-Za-z0-9._-]+$")

KIND_SOURCE = "source"
KIND_COMMAND = "command"
ORIGIN_RELEASES = "github-releases"
DEFAULT_REF = "master"

KNOWN_KEYS = frozenset(
    {"as", "of", "from", "ifCond", "file", "at", "doHook", "frozen", "on", "commit"}
)
"""Specifier keys accepted from callers."""

RESERVED_KEYS = frozenset({"dir", "to"})
"""Keys the manager derives itself; callers may not set them."""

_KIND_ALIASES = {
    "src": KIND_SOURCE,
    "source": KIND_SOURCE,
    "plugin": KIND_SOURCE,
    "cmd": KIND_COMMAND,
    "command": KIND_COMMAND,
}
_ORIGIN_ALIASES = {"gh-r": ORIGIN_RELEASES, ORIGIN_RELEASES: ORIGIN_RELEASES}
_TRUE = frozenset({"1", "true", "yes"})
_FALSE = frozenset({"0", "false", "no"})
_QUOTES = "\"'"


class PluginSpec(pydantic.BaseModel):
    """Specification record derived from a plugin's accumulated specifiers.

    Enumerated fields keep unrecognised values verbatim so the validator can
    report them; see :func:`shplug.validator.validate_spec`.

    Examples
    --------
    >>> spec = parse_spec("junegunn/fzf", "as:cmd, from:gh-r", Path("/r/repos"))
    >>> spec.kind, spec.origin, spec.dir
    ('command', 'github-releases', PosixPath('/r/repos/junegunn/fzf'))
    >>> spec.basename
    'fzf'
    """

    model_config = pydantic.ConfigDict(frozen=True, populate_by_name=True)

    plugin_id: str
    kind: str = pydantic.Field(default=KIND_SOURCE, alias="as")
    of: str | None = None
    origin: str | None = pydantic.Field(default=None, alias="from")
    if_cond: str | None = pydantic.Field(default=None, alias="ifCond")
    dir: Path
    file: str | None = None
    at: str = DEFAULT_REF
    hook: str | None = pydantic.Field(default=None, alias="doHook")
    frozen: bool | str = False
    depends_on: str | None = pydantic.Field(default=None, alias="on")
    commit: str | None = None

    @property
    def basename(self) -> str:
        return self.plugin_id.rsplit("/", 1)[-1]

    @property
    def is_command(self) -> bool:
        return self.kind == KIND_COMMAND

    @property
    def is_release(self) -> bool:
        return self.origin == ORIGIN_RELEASES

    def specifiers(self) -> dict[str, str]:
        """Return the non-default specifiers in DSL form, for listings."""
        dumped = self.model_dump(by_alias=True, exclude={"plugin_id", "dir"})
        defaults = PluginSpec(plugin_id=self.plugin_id, dir=self.dir).model_dump(
            by_alias=True, exclude={"plugin_id", "dir"}
        )
        rendered: dict[str, str] = {}
        for key, value in dumped.items():
            if value == defaults[key]:
                continue
            if isinstance(value, bool):
                value = "1" if value else "0"
            rendered[key] = str(value)
        return rendered


def check_plugin_id(plugin_id: str) -> str:
    """Return *plugin_id* unchanged or raise :class:`DeclarationError`.

    Examples
    --------
    >>> check_plugin_id("zsh-users/zsh-syntax-highlighting")
    'zsh-users/zsh-syntax-highlighting'
    >>> check_plugin_id("no-slash")
    Traceback (most recent call last):
    ...
    shplug.errors.DeclarationError: malformed plugin id 'no-slash' (expected owner/name)
    """
    if not PLUGIN_ID_RE.match(plugin_id) or any(
        part in {".", ".."} for part in plugin_id.split("/")
    ):
        msg = f"malformed plugin id {plugin_id!r} (expected owner/name)"
        raise DeclarationError(msg)
    return plugin_id


def split_top_level(text: str, sep: str) -> list[str]:
    """Split *text* on *sep* wherever it is not inside single or double quotes.

    Examples
    --------
    >>> split_top_level('as:cmd, of:"a,b", at:v1', ",")
    ['as:cmd', ' of:"a,b"', ' at:v1']
    >>> split_top_level("a/b | c/d, ifCond:'x | y'", "|")
    ['a/b ', " c/d, ifCond:'x | y'"]
    """
    parts: list[str] = []
    current: list[str] = []
    quote: str | None = None
    for char in text:
        if quote is not None:
            if char == quote:
                quote = None
        elif char in _QUOTES:
            quote = char
        elif char == sep:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)
    parts.append("".join(current))
    return parts


def _unquote(value: str) -> str:
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def iter_specifiers(text: str) -> Iterator[tuple[str, str]]:
    """Yield ``(key, value)`` pairs from comma-separated specifier text.

    Empty values stay empty strings.

    Examples
    --------
    >>> list(iter_specifiers('as:cmd, of:"bin/*", file:'))
    [('as', 'cmd'), ('of', 'bin/*'), ('file', '')]
    """
    for token in split_top_level(text, ","):
        token = token.strip()
        if not token:
            continue
        key, colon, value = token.partition(":")
        if not colon or not key.strip():
            msg = f"malformed specifier {token!r} (expected key:value)"
            raise DeclarationError(msg)
        yield key.strip(), _unquote(value.strip())


def _parse_bool(value: str) -> bool | str:
    lowered = value.lower()
    if lowered in _TRUE:
        return True
    if lowered in _FALSE:
        return False
    return value


def parse_spec(plugin_id: str, raw: str, repos_dir: Path) -> PluginSpec:
    """Derive the specification record for *plugin_id*.

    Later occurrences of a key override earlier ones; unknown keys are
    ignored.

    Parameters
    ----------
    plugin_id : str
        ``owner/name`` identifier.
    raw : str
        Accumulated specifier text for the plugin.
    repos_dir : Path
        Directory holding every plugin checkout; ``dir`` is derived from it.

    Examples
    --------
    >>> spec = parse_spec("a/b", "as:cmd, at:v1, as:src, frozen:1", Path("/r"))
    >>> spec.kind, spec.at, spec.frozen
    ('source', 'v1', True)
    >>> parse_spec("a/b", "as:bogus", Path("/r")).kind
    'bogus'
    """
    fields: dict[str, t.Any] = {}
    for key, value in iter_specifiers(raw):
        if key not in KNOWN_KEYS:
            continue
        if key == "as":
            fields[key] = _KIND_ALIASES.get(value, value)
        elif key == "from":
            fields[key] = _ORIGIN_ALIASES.get(value, value)
        elif key == "frozen":
            fields[key] = _parse_bool(value)
        else:
            fields[key] = value
    return PluginSpec(plugin_id=plugin_id, dir=repos_dir / plugin_id, **fields)
