"""Settings for the plugin manager.

Values are layered: built-in defaults, then the optional YAML user file,
then ``SHPLUG_*`` environment overrides. The merged mapping is validated
through :class:`Settings`.
"""

from __future__ import annotations

import os
import shutil
import typing as t
from collections.abc import Mapping
from pathlib import Path

import pydantic
import yaml

from shplug.errors import ConfigError

DEFAULT_THREADS = 16

Protocol = t.Literal["https", "ssh"]
LogLevel = t.Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]

ENV_OVERRIDES: dict[str, str] = {
    "SHPLUG_HOME": "root",
    "SHPLUG_THREADS": "threads",
    "SHPLUG_SHALLOW": "shallow",
    "SHPLUG_PROTOCOL": "protocol",
    "SHPLUG_HOST": "host",
    "SHPLUG_DECLARATIONS": "declarations",
    "SHPLUG_SHELL": "shell",
    "SHPLUG_ALLOW_HOOKS": "allow_hooks",
    "SHPLUG_LOG_LEVEL": "log_level",
}
"""Environment variable -> settings field."""


def _default_shell() -> str:
    return "zsh" if shutil.which("zsh") else "sh"


class Settings(pydantic.BaseModel):
    """Configuration consumed by the core operations.

    Examples
    --------
    >>> s = Settings(root=Path("/tmp/sp"), threads=4)
    >>> s.repos_dir, s.bin_dir, s.declarations
    (PosixPath('/tmp/sp/repos'), PosixPath('/tmp/sp/bin'), PosixPath('/tmp/sp/plugins'))

    The pool needs at least one worker:

    >>> try:
    ...     Settings(threads=0)
    ... except pydantic.ValidationError:
    ...     print("rejected")
    rejected
    """

    model_config = pydantic.ConfigDict(frozen=True, extra="forbid", populate_by_name=True)

    root: Path = pydantic.Field(default_factory=lambda: Path.home() / ".shplug")
    threads: int = pydantic.Field(default=DEFAULT_THREADS, ge=1)
    shallow: bool = True
    protocol: Protocol = "https"
    host: str = "github.com"
    declarations_file: Path | None = pydantic.Field(default=None, alias="declarations")
    shell: str = pydantic.Field(default_factory=_default_shell)
    allow_hooks: bool = True
    log_level: LogLevel = "WARNING"

    @pydantic.field_validator("log_level", mode="before")
    @classmethod
    def _upper(cls, value: object) -> object:
        return value.upper() if isinstance(value, str) else value

    @pydantic.field_validator("root", "declarations_file", mode="after")
    @classmethod
    def _expand(cls, value: Path | None) -> Path | None:
        return value.expanduser() if value is not None else None

    @property
    def repos_dir(self) -> Path:
        return self.root / "repos"

    @property
    def bin_dir(self) -> Path:
        return self.root / "bin"

    @property
    def declarations(self) -> Path:
        return self.declarations_file or self.root / "plugins"


def user_config_path(env: Mapping[str, str]) -> Path:
    """Return the YAML user file location (which may not exist)."""
    explicit = env.get("SHPLUG_CONFIG")
    if explicit:
        return Path(explicit).expanduser()
    base = env.get("XDG_CONFIG_HOME") or str(Path.home() / ".config")
    return Path(base).expanduser() / "shplug" / "config.yaml"


def _load_user_file(path: Path) -> dict[str, t.Any]:
    if not path.exists():
        return {}
    try:
        loaded = t.cast("object", yaml.safe_load(path.read_text(encoding="utf-8")))
    except yaml.YAMLError as exc:
        msg = f"{path}: invalid YAML: {exc}"
        raise ConfigError(msg) from exc
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        msg = f"{path}: top-level value must be a mapping"
        raise ConfigError(msg)
    return t.cast("dict[str, t.Any]", loaded)


def env_overrides(env: Mapping[str, str]) -> dict[str, str]:
    """Collect ``SHPLUG_*`` overrides that are set and non-empty.

    Examples
    --------
    >>> env_overrides({"SHPLUG_THREADS": "4", "SHPLUG_SHALLOW": "", "PATH": "/bin"})
    {'threads': '4'}
    """
    return {field: env[name] for name, field in ENV_OVERRIDES.items() if env.get(name)}


def load_settings(
    env: Mapping[str, str] | None = None,
    path: Path | None = None,
) -> Settings:
    """Build :class:`Settings` from the user file and environment.

    Parameters
    ----------
    env : Mapping[str, str], optional
        Environment to read overrides from; defaults to ``os.environ``.
    path : Path, optional
        Explicit user file; defaults to :func:`user_config_path`.

    Raises
    ------
    ConfigError
        If the file cannot be parsed or a value fails validation.
    """
    env = os.environ if env is None else env
    merged: dict[str, t.Any] = {}
    merged.update(_load_user_file(path or user_config_path(env)))
    merged.update(env_overrides(env))
    try:
        return Settings.model_validate(merged)
    except pydantic.ValidationError as exc:
        msg = f"invalid configuration: {exc}"
        raise ConfigError(msg) from exc
