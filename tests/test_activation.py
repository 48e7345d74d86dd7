"""Tests for building the activation plan."""

from __future__ import annotations

import os
import shlex

from shplug import activation
from shplug.activation import LoadPlan, link_command, resolve_command, source_scripts

from .conftest import output


def install_files(ctx, plugin_id, *names, specifiers=""):
    """Declare *plugin_id* and create *names* inside its directory."""
    ctx.registry.declare(plugin_id, specifiers)
    spec = ctx.spec(plugin_id)
    spec.dir.mkdir(parents=True, exist_ok=True)
    for name in names:
        path = spec.dir / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("# plugin\n", encoding="utf-8")
    return spec


class TestSourceScripts:
    def test_init_zsh_is_sourced(self, ctx):
        spec = install_files(ctx, "a/b", "init.zsh", "helper.sh", "README.md")
        assert source_scripts(spec) == [spec.dir / "init.zsh"]

    def test_plugin_zsh_takes_precedence(self, ctx):
        spec = install_files(ctx, "a/b", "init.zsh", "b.plugin.zsh")
        assert source_scripts(spec) == [spec.dir / "b.plugin.zsh"]

    def test_of_glob(self, ctx):
        spec = install_files(ctx, "a/b", "lib/two.sh", "lib/one.sh", "init.zsh", specifiers="of:lib/*.sh")
        assert source_scripts(spec) == [spec.dir / "lib" / "one.sh", spec.dir / "lib" / "two.sh"]

    def test_nothing_to_source(self, ctx):
        spec = install_files(ctx, "a/b", "README.md")
        assert source_scripts(spec) == []


class TestResolveCommand:
    def test_file_named_after_repository(self, ctx):
        spec = install_files(ctx, "a/tool", "tool", "other", specifiers="as:cmd")
        assert resolve_command(spec) == spec.dir / "tool"

    def test_of_selects_the_executable(self, ctx):
        spec = install_files(ctx, "a/tool", "bin/run-tool", specifiers="as:cmd, of:bin/run-*")
        assert resolve_command(spec) == spec.dir / "bin" / "run-tool"

    def test_of_directory_holding_the_name(self, ctx):
        spec = install_files(ctx, "a/tool", "dist/tool", specifiers="as:cmd, of:dist")
        assert resolve_command(spec) == spec.dir / "dist" / "tool"

    def test_missing_executable(self, ctx):
        spec = install_files(ctx, "a/tool", "README.md", specifiers="as:cmd")
        assert resolve_command(spec) is None


class TestLinkCommand:
    def test_link_is_executable_and_replaceable(self, tmp_path):
        first = tmp_path / "first"
        second = tmp_path / "second"
        for target in (first, second):
            target.write_text("#!/bin/sh\n", encoding="utf-8")
            target.chmod(0o644)
        bin_dir = tmp_path / "bin"

        link = link_command(bin_dir, first, "tool")
        assert link.resolve() == first.resolve()
        assert os.access(first, os.X_OK)

        link_command(bin_dir, second, "tool")
        assert link.resolve() == second.resolve()
        assert [path.name for path in bin_dir.iterdir()] == ["tool"]


class TestLoad:
    def test_source_and_command_plugins(self, ctx):
        script = install_files(ctx, "a/prompt", "init.zsh").dir / "init.zsh"
        tool = install_files(ctx, "a/tool", "bin/tool-linux", specifiers="as:cmd, of:bin/tool-*, file:foo")

        plan = activation.load(ctx, path_value="/usr/bin:/bin")

        bin_dir = ctx.settings.bin_dir
        assert plan.scripts == [script]
        assert plan.links == {"foo": tool.dir / "bin" / "tool-linux"}
        assert (bin_dir / "foo").resolve() == (tool.dir / "bin" / "tool-linux").resolve()
        assert plan.path == os.pathsep.join([str(bin_dir), "/usr/bin", "/bin"])
        rendered = plan.render()
        assert f"source {shlex.quote(str(script))}" in rendered
        assert f"export PATH={shlex.quote(plan.path)}" in rendered

    def test_load_twice_keeps_one_path_entry(self, ctx):
        install_files(ctx, "a/tool", "tool", specifiers="as:cmd")
        first = activation.load(ctx, path_value="/usr/bin")
        second = activation.load(ctx, path_value=first.path)
        assert second.path is not None
        assert second.path.split(os.pathsep).count(str(ctx.settings.bin_dir)) == 1

    def test_no_commands_leaves_path_alone(self, ctx):
        install_files(ctx, "a/prompt", "init.zsh")
        plan = activation.load(ctx, path_value="/usr/bin")
        assert plan.path is None
        assert "PATH" not in plan.render()

    def test_false_condition_is_skipped(self, ctx):
        install_files(ctx, "a/prompt", "init.zsh", specifiers="ifCond:false")
        plan = activation.load(ctx, path_value="")
        assert plan.scripts == []
        assert plan.skipped == {"a/prompt": "ifCond false: false"}

    def test_missing_dependency_is_skipped(self, ctx):
        ctx.registry.declare("a/lib")
        install_files(ctx, "a/tool", "tool", specifiers="as:cmd, on:a/lib")
        plan = activation.load(ctx, path_value="")
        assert plan.links == {}
        assert "a/lib is not installed" in plan.skipped["a/tool"]
        assert plan.skipped["a/lib"] == "not installed"
        assert "skip" in output(ctx)

    def test_installed_dependency_allows_activation(self, ctx):
        install_files(ctx, "a/lib", "init.zsh")
        install_files(ctx, "a/tool", "tool", specifiers="as:cmd, on:a/lib")
        plan = activation.load(ctx, path_value="")
        assert set(plan.links) == {"tool"}

    def test_duplicate_link_names_last_wins(self, ctx):
        install_files(ctx, "a/one", "one", specifiers="as:cmd, file:tool")
        second = install_files(ctx, "b/two", "two", specifiers="as:cmd, file:tool")
        plan = activation.load(ctx, path_value="")
        assert plan.links == {"tool": second.dir / "two"}
        assert "replaces the 'tool' link" in output(ctx)

    def test_render_empty_plan(self):
        assert LoadPlan().render() == ""
