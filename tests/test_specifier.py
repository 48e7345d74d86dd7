"""Tests for the specifier tokenizer and spec derivation."""

from __future__ import annotations

from pathlib import Path

import pytest

from shplug.errors import DeclarationError
from shplug.specifier import check_plugin_id, iter_specifiers, parse_spec

REPOS = Path("/r/repos")


class TestParseSpec:
    def test_defaults(self):
        spec = parse_spec("zsh-users/zsh-completions", "", REPOS)
        assert spec.kind == "source"
        assert spec.at == "master"
        assert spec.frozen is False
        assert spec.origin is None
        assert spec.dir == REPOS / "zsh-users" / "zsh-completions"

    def test_later_value_wins(self):
        spec = parse_spec("a/b", "as:cmd, at:v1, at:v2", REPOS)
        assert spec.kind == "command"
        assert spec.at == "v2"

    def test_disjoint_keys_merge(self):
        spec = parse_spec("a/b", "of:bin/*, frozen:1, file:tool", REPOS)
        assert (spec.of, spec.frozen, spec.file) == ("bin/*", True, "tool")

    def test_empty_value_stays_empty(self):
        spec = parse_spec("a/b", "file:, of:x", REPOS)
        assert spec.file == ""
        assert spec.of == "x"

    @pytest.mark.parametrize(
        ("raw", "kind"),
        [("as:src", "source"), ("as:plugin", "source"), ("as:cmd", "command"), ("as:command", "command")],
    )
    def test_kind_aliases(self, raw, kind):
        assert parse_spec("a/b", raw, REPOS).kind == kind

    def test_origin_aliases(self):
        assert parse_spec("a/b", "from:gh-r", REPOS).is_release
        assert parse_spec("a/b", "from:github-releases", REPOS).is_release

    @pytest.mark.parametrize(("value", "expected"), [("1", True), ("yes", True), ("false", False), ("0", False)])
    def test_boolean_spellings(self, value, expected):
        assert parse_spec("a/b", f"frozen:{value}", REPOS).frozen is expected

    def test_unrecognised_values_are_kept_for_validation(self):
        spec = parse_spec("a/b", "as:bogus, frozen:maybe", REPOS)
        assert spec.kind == "bogus"
        assert spec.frozen == "maybe"

    def test_unknown_keys_are_ignored(self):
        assert parse_spec("a/b", "colour:blue, as:cmd", REPOS).kind == "command"

    def test_quoted_values_keep_separators(self):
        spec = parse_spec("a/b", 'ifCond:"[[ $OSTYPE == linux* ]] || true", doHook:\'make, install\'', REPOS)
        assert spec.if_cond == "[[ $OSTYPE == linux* ]] || true"
        assert spec.hook == "make, install"

    def test_parsing_is_pure(self):
        assert parse_spec("a/b", "as:cmd", REPOS) == parse_spec("a/b", "as:cmd", REPOS)

    def test_specifiers_render_non_defaults(self):
        spec = parse_spec("a/b", "as:cmd, frozen:yes, at:master", REPOS)
        assert spec.specifiers() == {"as": "command", "frozen": "1"}


class TestTokenizer:
    def test_token_without_colon(self):
        with pytest.raises(DeclarationError, match="expected key:value"):
            list(iter_specifiers("as:cmd, oops"))

    def test_blank_tokens_are_skipped(self):
        assert list(iter_specifiers(" , as:cmd,, ")) == [("as", "cmd")]


class TestPluginId:
    @pytest.mark.parametrize("plugin_id", ["plain", "a/b/c", "../etc", "a/..", "a b/c", ""])
    def test_rejected(self, plugin_id):
        with pytest.raises(DeclarationError):
            check_plugin_id(plugin_id)

    def test_dots_inside_names_are_fine(self):
        assert check_plugin_id("ohmyzsh/oh.my.zsh") == "ohmyzsh/oh.my.zsh"
