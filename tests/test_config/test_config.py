"""
Tests for configuration aggregation.

Covers:
- parse_config_listing (git config --null --list output)
- ResolvedConfig: scalar/list views, layering, ordering, case rules
- load_config / load_layers with an injected git runner
- load_settings: githooks section, git booleans, env overrides
- eval:/file: value transforms and the restricted evaluator
"""

import subprocess
from pathlib import Path

import pytest

from githooks.config.loader import (
    ConfigSourceError,
    ResolvedConfig,
    load_config,
    load_layers,
    load_settings,
    parse_config_listing,
    split_key,
)
from githooks.config.schema import parse_git_bool
from githooks.config.values import ConfigEvalError, evaluate_expression, resolve_value


def _runner(stdout: str = "", returncode: int = 0, stderr: str = ""):
    calls: list[list[str]] = []

    def run(args: list[str]) -> subprocess.CompletedProcess:
        calls.append(args)
        return subprocess.CompletedProcess(args, returncode, stdout=stdout, stderr=stderr)

    run.calls = calls
    return run


# ── Tests: parsing ────────────────────────────────────────────────────────


class TestParseListing:
    def test_entries_with_values(self):
        out = "core.bare\nfalse\0githooks.plugin\nCheckReference\0"
        assert parse_config_listing(out) == [
            ("core.bare", "false"),
            ("githooks.plugin", "CheckReference"),
        ]

    def test_value_with_newline(self):
        out = "githooks.groups\nadmins = alice\nusers = bob\0"
        assert parse_config_listing(out) == [("githooks.groups", "admins = alice\nusers = bob")]

    def test_valueless_key_is_true(self):
        assert parse_config_listing("core.bare\0") == [("core.bare", "true")]

    def test_empty_output(self):
        assert parse_config_listing("") == []


class TestSplitKey:
    def test_without_subsection(self):
        assert split_key("Core.Bare") == ("core", None, "bare")

    def test_subsection_keeps_case_and_dots(self):
        assert split_key("remote.My.Origin.url") == ("remote", "My.Origin", "url")


# ── Tests: ResolvedConfig ────────────────────────────────────────────────


class TestResolvedConfig:
    def test_scalar_last_wins(self):
        config = ResolvedConfig([("githooks.userenv", "USER"), ("githooks.userenv", "GL_USER")])
        assert config.get("githooks", "userenv") == "GL_USER"

    def test_list_keeps_all_in_order(self):
        config = ResolvedConfig([("githooks.plugin", "A"), ("githooks.plugin", "B")])
        assert config.get_all("githooks", "plugin") == ["A", "B"]

    def test_absent(self):
        config = ResolvedConfig()
        assert config.get("githooks", "admin") is None
        assert config.get_all("githooks", "admin") == []

    def test_case_insensitive_section_and_key(self):
        config = ResolvedConfig([("GitHooks.Plugin", "A")])
        assert config.get("githooks", "PLUGIN") == "A"
        assert "githooks.plugin" in config

    def test_subsection(self):
        config = ResolvedConfig([("githooks.checkreference.acl", "admin CRUD ^refs/")])
        assert config.get_all("githooks", "acl", "checkreference") == ["admin CRUD ^refs/"]
        assert config.get("githooks", "acl") is None

    def test_merged_layers(self):
        system = ResolvedConfig.from_mapping({"githooks.plugin": "A", "githooks.userenv": "USER"})
        local = ResolvedConfig.from_mapping({"githooks.plugin": "B", "githooks.userenv": "GL_USER"})
        merged = system.merged(local)
        assert merged.get_all("githooks", "plugin") == ["A", "B"]
        assert merged.get("githooks", "userenv") == "GL_USER"
        # the originals are untouched
        assert system.get_all("githooks", "plugin") == ["A"]

    def test_items_first_definition_order(self):
        config = ResolvedConfig([("b.x", "1"), ("a.y", "2"), ("b.x", "3")])
        assert list(config.items()) == [("b.x", ["1", "3"]), ("a.y", ["2"])]

    def test_get_bool(self):
        config = ResolvedConfig([("githooks.externals", "no")])
        assert config.get_bool("githooks", "externals", default=True) is False
        assert config.get_bool("githooks", "missing", default=True) is True


class TestParseGitBool:
    @pytest.mark.parametrize("value", ["true", "Yes", "on", "1"])
    def test_true(self, value):
        assert parse_git_bool(value) is True

    @pytest.mark.parametrize("value", ["false", "NO", "off", "0", ""])
    def test_false(self, value):
        assert parse_git_bool(value) is False

    def test_invalid(self):
        with pytest.raises(ValueError):
            parse_git_bool("maybe")


# ── Tests: loading ───────────────────────────────────────────────────────


class TestLoadConfig:
    def test_runs_git_config_once(self):
        runner = _runner("githooks.plugin\nCheckReference\0")
        config = load_config(runner=runner)
        assert config.get("githooks", "plugin") == "CheckReference"
        assert runner.calls == [["config", "--null", "--list"]]

    def test_command_failure(self):
        runner = _runner(returncode=128, stderr="fatal: bad config")
        with pytest.raises(ConfigSourceError, match="bad config"):
            load_config(runner=runner)

    def test_command_cannot_start(self):
        def runner(args):
            raise FileNotFoundError("git")

        with pytest.raises(ConfigSourceError):
            load_config(runner=runner)


class TestLoadLayers:
    def test_missing_file(self, tmp_path: Path):
        with pytest.raises(ConfigSourceError, match="not found"):
            load_layers([tmp_path / "nope"], runner=_runner())

    def test_layers_in_order(self, tmp_path: Path):
        system = tmp_path / "system"
        local = tmp_path / "local"
        system.write_text("")
        local.write_text("")
        outputs = {
            str(system): "githooks.plugin\nA\0githooks.userenv\nUSER\0",
            str(local): "githooks.plugin\nB\0githooks.userenv\nGL_USER\0",
        }

        def runner(args):
            path = args[args.index("--file") + 1]
            return subprocess.CompletedProcess(args, 0, stdout=outputs[path], stderr="")

        config = load_layers([system, local], runner=runner)
        assert config.get_all("githooks", "plugin") == ["A", "B"]
        assert config.get("githooks", "userenv") == "GL_USER"


class TestLoadSettings:
    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("GITHOOKS_EXTERNALS", raising=False)
        settings = load_settings(ResolvedConfig())
        assert settings.plugin == []
        assert settings.externals is True
        assert settings.abort_commit is True
        assert settings.admin == []

    def test_section_values(self, monkeypatch):
        monkeypatch.delenv("GITHOOKS_EXTERNALS", raising=False)
        config = ResolvedConfig.from_mapping({
            "githooks.plugin": ["CheckReference", "a.b.Other"],
            "githooks.externals": "off",
            "githooks.abort-commit": "false",
            "githooks.admin": ["alice @ops"],
            "githooks.hooks": ["/opt/hooks"],
            "githooks.userenv": "GL_USER",
            "githooks.log-level": "DEBUG",
            "githooks.gerrit.url": "https://gerrit.example.com",
            "githooks.gerrit.votes-to-reject": "Verified-1",
        })
        settings = load_settings(config)
        assert settings.plugin == ["CheckReference", "a.b.Other"]
        assert settings.externals is False
        assert settings.abort_commit is False
        assert settings.admin == ["alice", "@ops"]
        assert settings.hooks == ["/opt/hooks"]
        assert settings.userenv == "GL_USER"
        assert settings.logging.level == "debug"
        assert settings.gerrit.enabled
        assert settings.gerrit.votes_to_reject == "Verified-1"

    def test_env_overrides(self, monkeypatch):
        monkeypatch.setenv("GITHOOKS_EXTERNALS", "0")
        monkeypatch.setenv("GITHOOKS_LOG_LEVEL", "INFO")
        config = ResolvedConfig.from_mapping({"githooks.externals": "true"})
        settings = load_settings(config)
        assert settings.externals is False
        assert settings.logging.level == "info"

    def test_invalid_bool(self, monkeypatch):
        monkeypatch.delenv("GITHOOKS_EXTERNALS", raising=False)
        config = ResolvedConfig.from_mapping({"githooks.externals": "sometimes"})
        with pytest.raises(ValueError):
            load_settings(config)


# ── Tests: value transforms ──────────────────────────────────────────────


class TestEvaluateExpression:
    def test_literal(self):
        assert evaluate_expression("'alice'", {}) == "alice"

    def test_env_subscript(self):
        assert evaluate_expression('env["GL_USER"]', {"GL_USER": "bob"}) == "bob"

    def test_env_subscript_missing(self):
        with pytest.raises(ConfigEvalError, match="not set"):
            evaluate_expression('env["NOPE"]', {})

    def test_getenv_default(self):
        assert evaluate_expression('getenv("NOPE", "anon")', {}) == "anon"
        assert evaluate_expression('env.get("NOPE")', {}) == ""

    def test_concat_and_methods(self):
        env = {"USER": " Alice "}
        assert evaluate_expression('env["USER"].strip().lower() + "@corp"', env) == "alice@corp"

    def test_rejects_arbitrary_code(self):
        with pytest.raises(ConfigEvalError) as excinfo:
            evaluate_expression('__import__("os").system("true")', {})
        assert excinfo.value.expression == '__import__("os").system("true")'

    def test_rejects_attribute_access(self):
        with pytest.raises(ConfigEvalError):
            evaluate_expression("env.__class__", {})

    def test_syntax_error(self):
        with pytest.raises(ConfigEvalError, match="syntax"):
            evaluate_expression("env[", {})


class TestResolveValue:
    def test_plain_value_unchanged(self):
        assert resolve_value("USER") == "USER"

    def test_eval_prefix(self):
        assert resolve_value('eval:env["X"]', {"X": "1"}) == "1"

    def test_file_prefix_relative(self, tmp_path: Path):
        (tmp_path / "groups.txt").write_text("admins = alice\n")
        assert resolve_value("file:groups.txt", base_dir=tmp_path) == "admins = alice\n"

    def test_file_prefix_missing(self, tmp_path: Path):
        with pytest.raises(ConfigEvalError, match="cannot read"):
            resolve_value(f"file:{tmp_path / 'missing'}")
