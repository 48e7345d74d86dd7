"""Error types raised by shplug."""

from __future__ import annotations


class ShplugError(RuntimeError):
    """Base error for the plugin manager."""


class ConfigError(ShplugError):
    """Invalid configuration file or environment override."""


class DeclarationError(ShplugError):
    """Malformed plugin id or specifier, rejected before registration."""


class ValidationError(ShplugError):
    """A registered specifier value falls outside its enumerated domain."""

    def __init__(self, plugin_id: str, key: str, value: object) -> None:
        super().__init__(f"{plugin_id}: invalid value {value!r} for '{key}'")
        self.plugin_id = plugin_id
        self.key = key
        self.value = value


class FetchError(ShplugError):
    """A clone, fetch, download or checkout failed."""


class NotFoundError(FetchError):
    """The target repository, release or directory does not exist."""


class ActivationSkip(ShplugError):
    """A plugin was deliberately not activated (false condition, missing dependency)."""


class Interrupted(ShplugError):
    """In-flight jobs were torn down by an interrupt."""
