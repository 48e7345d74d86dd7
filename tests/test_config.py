"""Tests for settings layering."""

from __future__ import annotations

from pathlib import Path

import pytest

from shplug.config import DEFAULT_THREADS, load_settings, user_config_path
from shplug.errors import ConfigError


class TestLoadSettings:
    def test_defaults(self, tmp_path):
        settings = load_settings(env={}, path=tmp_path / "absent.yaml")
        assert settings.threads == DEFAULT_THREADS
        assert settings.shallow is True
        assert settings.protocol == "https"
        assert settings.root == Path.home() / ".shplug"
        assert settings.declarations == settings.root / "plugins"

    def test_file_then_environment(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("threads: 4\nprotocol: ssh\nshallow: false\nlog_level: debug\n", encoding="utf-8")
        settings = load_settings(env={"SHPLUG_THREADS": "2", "SHPLUG_HOME": str(tmp_path)}, path=path)
        assert settings.threads == 2
        assert settings.protocol == "ssh"
        assert settings.shallow is False
        assert settings.log_level == "DEBUG"
        assert settings.repos_dir == tmp_path / "repos"

    def test_declarations_override(self, tmp_path):
        settings = load_settings(env={"SHPLUG_DECLARATIONS": str(tmp_path / "decl")}, path=tmp_path / "none")
        assert settings.declarations == tmp_path / "decl"

    def test_empty_file(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("", encoding="utf-8")
        assert load_settings(env={}, path=path).threads == DEFAULT_THREADS

    @pytest.mark.parametrize(
        ("content", "message"),
        [
            ("threads: [1\n", "invalid YAML"),
            ("- threads\n", "must be a mapping"),
            ("threads: 0\n", "invalid configuration"),
            ("protocol: ftp\n", "invalid configuration"),
            ("colour: blue\n", "invalid configuration"),
        ],
    )
    def test_rejected_files(self, tmp_path, content, message):
        path = tmp_path / "config.yaml"
        path.write_text(content, encoding="utf-8")
        with pytest.raises(ConfigError, match=message):
            load_settings(env={}, path=path)


class TestUserConfigPath:
    def test_explicit(self):
        assert user_config_path({"SHPLUG_CONFIG": "/etc/shplug.yaml"}) == Path("/etc/shplug.yaml")

    def test_xdg(self):
        assert user_config_path({"XDG_CONFIG_HOME": "/x"}) == Path("/x/shplug/config.yaml")
