"""Tests for the registry and declaration file loading."""

from __future__ import annotations

from pathlib import Path

import pytest

from shplug.errors import DeclarationError
from shplug.registry import Registry, declare_line, load_declarations
from shplug.validator import validate_registry

REPOS = Path("/r/repos")


class TestDeclare:
    def test_repeated_declarations_merge(self):
        reg = Registry()
        reg.declare("a/b", "as:cmd")
        reg.declare("a/b", "of:bin/*")
        spec = reg.spec("a/b", REPOS)
        assert spec.kind == "command"
        assert spec.of == "bin/*"
        assert reg.ids() == ["a/b"]

    def test_later_declaration_overrides_key(self):
        reg = Registry()
        reg.declare("a/b", "at:v1")
        reg.declare("a/b", "at:v2")
        assert reg.spec("a/b", REPOS).at == "v2"

    def test_declaration_order_is_kept(self):
        reg = Registry()
        for plugin_id in ["z/z", "a/a", "m/m"]:
            reg.declare(plugin_id)
        assert reg.ids() == ["z/z", "a/a", "m/m"]

    @pytest.mark.parametrize("key", ["dir", "to"])
    def test_reserved_keys(self, key):
        reg = Registry()
        with pytest.raises(DeclarationError, match="reserved"):
            reg.declare("a/b", f"{key}:/tmp")
        assert "a/b" not in reg

    def test_unknown_key(self):
        reg = Registry()
        with pytest.raises(DeclarationError, match="unknown specifier 'colour'"):
            reg.declare("a/b", "colour:blue")
        assert not len(reg)

    def test_malformed_id(self):
        with pytest.raises(DeclarationError, match="owner/name"):
            Registry().declare("just-a-name")

    def test_values_with_separators_survive_merging(self):
        reg = Registry()
        reg.declare("a/b", "doHook:'make, install'")
        reg.declare("a/b", "as:cmd")
        reg.declare("a/b", """ifCond:'"$TERM" = "xterm"'""")
        reg.declare("a/b", "of:bin/*")
        spec = reg.spec("a/b", REPOS)
        assert spec.hook == "make, install"
        assert spec.kind == "command"
        assert spec.if_cond == '"$TERM" = "xterm"'
        assert spec.of == "bin/*"

    def test_explicit_upstream_must_be_a_plugin_id(self):
        reg = Registry()
        with pytest.raises(DeclarationError, match="owner/name"):
            reg.declare("a/b", "on:../x")
        assert "a/b" not in reg


class TestPipe:
    def test_consumer_depends_on_producer(self):
        reg = Registry()
        declare_line(reg, "owner/lib | owner/tool, as:cmd")
        assert reg.ids() == ["owner/lib", "owner/tool"]
        assert reg.spec("owner/tool", REPOS).depends_on == "owner/lib"
        assert reg.spec("owner/lib", REPOS).depends_on is None

    def test_second_hop_is_rejected(self):
        with pytest.raises(DeclarationError, match="one producer"):
            declare_line(Registry(), "a/a | b/b | c/c")

    def test_quoted_pipe_is_not_a_hop(self):
        reg = Registry()
        declare_line(reg, "a/a, ifCond:'true || false'")
        assert reg.ids() == ["a/a"]
        assert reg.spec("a/a", REPOS).if_cond == "true || false"


class TestLoadDeclarations:
    def test_bad_lines_are_reported_and_skipped(self, tmp_path):
        path = tmp_path / "plugins"
        path.write_text(
            "# shell plugins\n"
            "zsh-users/zsh-autosuggestions\n"
            "\n"
            "junegunn/fzf, from:gh-r, as:cmd, to:/usr/bin\n"
            "b4b4r07/enhancd, of:init.sh\n",
            encoding="utf-8",
        )
        reg = Registry()
        errors = load_declarations(reg, path)
        assert reg.ids() == ["zsh-users/zsh-autosuggestions", "b4b4r07/enhancd"]
        assert len(errors) == 1
        assert errors[0].startswith("plugins:4:")

    def test_missing_file_declares_nothing(self, tmp_path):
        reg = Registry()
        assert load_declarations(reg, tmp_path / "absent") == []
        assert not len(reg)


class TestValidateRegistry:
    def test_bogus_kind_is_dropped(self):
        reg = Registry()
        reg.declare("a/good", "as:cmd")
        reg.declare("a/bad", "as:bogus")
        reg.declare("a/frozen", "frozen:maybe")
        assert validate_registry(reg, REPOS) == 2
        assert reg.ids() == ["a/good"]

    def test_valid_registry_is_untouched(self):
        reg = Registry()
        reg.declare("a/b", "from:gh-r, frozen:0")
        assert validate_registry(reg, REPOS) == 0
        assert reg.ids() == ["a/b"]
