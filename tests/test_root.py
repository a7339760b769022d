import re

import pytest

from azdo.cli.root import AUTH_MESSAGE, auth_check_required, build_root, find_command


class TestFindCommand:
    def test_walks_names_and_aliases(self, harness):
        root = build_root(harness.ctx)
        node, rest = find_command(root, ["security", "perm", "ns", "ls", "myorg"])
        assert node.command_path() == "azdo security permission namespace list"
        assert rest == ["myorg"]

    def test_stops_at_first_flag(self, harness):
        root = build_root(harness.ctx)
        node, rest = find_command(root, ["pr", "--help", "list"])
        assert node.command_path() == "azdo pr"
        assert rest == ["--help", "list"]

    def test_auth_check_annotations(self, harness):
        root = build_root(harness.ctx)
        assert not auth_check_required(find_command(root, ["auth", "login"])[0])
        assert not auth_check_required(find_command(root, ["version"])[0])
        assert auth_check_required(find_command(root, ["repo", "list"])[0])


class TestDispatch:
    def test_no_arguments_prints_help(self, harness):
        assert harness.run() == 0
        output = harness.output()
        assert "USAGE" in output
        assert "CORE COMMANDS" in output
        assert "SECURITY COMMANDS" in output

    def test_version_flag(self, harness):
        assert harness.run("--version") == 0
        assert harness.output().startswith("azdo version ")

    def test_unknown_command_suggests(self, harness):
        assert harness.run("pt") == 1
        errors = harness.errors()
        assert 'unknown command "pt" for "azdo"' in errors
        assert "Did you mean this?" in errors
        assert "\tpr\n" in errors
        assert "Usage:" in errors

    def test_unknown_flag_prints_usage(self, harness):
        assert harness.run("version", "--bogus") == 1
        assert "unknown flag: --bogus" in harness.errors()
        assert "Usage:  azdo version" in harness.errors()

    def test_help_flag_does_not_run_command(self, harness):
        assert harness.run("pr", "list", "--help") == 0
        assert "JSON FIELDS" in harness.output()
        harness.clients.git.assert_not_called()

    def test_help_command(self, harness):
        assert harness.run("help", "repo") == 0
        assert "AVAILABLE COMMANDS" in harness.output()

    def test_help_topic(self, harness):
        assert harness.run("help", "exit-codes") == 0
        assert harness.output()

    def test_unknown_help_topic(self, harness):
        assert harness.run("help", "nonsense") == 1
        assert 'unknown help topic "nonsense"' in harness.errors()

    def test_group_without_subcommand_prints_help(self, harness):
        assert harness.run("repo") == 0
        assert "USAGE" in harness.output()


class TestAuthGate:
    def test_missing_credentials(self, make_harness):
        h = make_harness(config={})
        assert h.run("repo", "list", "myproject") == 4
        assert AUTH_MESSAGE in h.errors()
        h.clients.git.assert_not_called()

    def test_env_token_satisfies_gate(self, make_harness, monkeypatch):
        monkeypatch.setenv("AZDO_TOKEN", "t")
        monkeypatch.setenv("AZDO_ORGANIZATION", "envorg")
        h = make_harness(config={})
        h.client("git").get_repositories.return_value = []
        assert h.run("repo", "list", "myproject") == 1
        h.clients.git.assert_called_with("envorg")

    @pytest.mark.parametrize("argv", [["version"], ["help"], ["auth", "status", "--help"]])
    def test_commands_without_auth(self, make_harness, argv):
        assert make_harness(config={}).run(*argv) == 0


def visible_commands(cmd):
    for child in cmd.commands:
        if child.hidden or child.is_alias() or not child.is_available():
            continue
        yield child
        yield from visible_commands(child)


def listed_flags(help_text):
    names = set()
    for block in help_text.split("\n\n"):
        lines = block.splitlines()
        if lines and lines[0] in ("FLAGS", "INHERITED FLAGS"):
            for line in lines[1:]:
                match = re.match(r"\s+(?:-\w, )?\s*--([\w-]+)", line)
                if match:
                    names.add(match.group(1))
    return names


class TestHelpTree:
    def test_every_visible_command_has_help(self, harness, make_harness):
        root = build_root(harness.ctx)
        commands = list(visible_commands(root))
        assert len(commands) > 50
        for node in commands:
            h = make_harness()
            argv = node.command_path().split()[1:]
            assert h.run(*argv, "--help") == 0, node.command_path()
            output = h.output()
            assert output.strip(), node.command_path()
            expected = {f.long for f in node.all_flags() if not f.hidden} | {"help"}
            assert listed_flags(output) == expected, node.command_path()

    def test_reference_topic_is_not_listed(self, harness):
        assert harness.run("--help") == 0
        output = harness.output()
        assert "HELP TOPICS" in output
        assert "exit-codes:" in output
        assert "reference:" not in output

    def test_reference_topic_still_runs(self, harness):
        assert harness.run("help", "reference") == 0
        assert "azdo repo list" in harness.output()
