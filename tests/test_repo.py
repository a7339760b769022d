from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from azure.devops.v7_1.git.models import GitDeletedRepository, GitRepository

from azdo.classes.remotes import Remote, RemoteSet
from azdo.classes.repository import Repository
from azdo.cli.errors import FlagError
from azdo.commands.repo import check_fork_organization

CROSS_ORG = {
    "organizations": {"org1": {"pat": "a"}, "org2": {"pat": "b"}},
    "default_organization": "org1",
}


def repository(name, repository_id=None):
    return GitRepository(
        id=repository_id or f"id-{name}",
        name=name,
        ssh_url=f"git@ssh.dev.azure.com:v3/myorg/proj/{name}",
        web_url=f"https://dev.azure.com/myorg/proj/_git/{name}",
    )


class TestForkOrganization:
    def test_cross_organization_is_rejected(self):
        with pytest.raises(FlagError) as exc:
            check_fork_organization("org1/proj1/repo1", "org2/pX/rX")
        assert str(exc.value) == 'cannot fork across organizations: "org1" and "org2"'

    def test_same_organization_differs_only_in_case(self):
        check_fork_organization("Org1/proj1/repo1", "org1/pX/rX")

    def test_short_forms_are_not_checked(self):
        check_fork_organization("proj1/repo1", "org2/pX/rX")

    def test_create_fails_before_any_request(self, make_harness):
        h = make_harness(config=CROSS_ORG)
        assert h.run("repo", "create", "org1/proj1/repo1", "--parent", "org2/pX/rX") == 1
        assert 'cannot fork across organizations: "org1" and "org2"' in h.errors()
        h.clients.assert_not_called()
        h.clients.git.assert_not_called()
        h.clients.core.assert_not_called()


class TestRepoCreate:
    def test_create(self, harness):
        git = harness.client("git")
        git.create_repository.return_value = repository("newrepo")

        assert harness.run("repo", "create", "proj/newrepo") == 0

        options = git.create_repository.call_args[0][0]
        assert options.name == "newrepo"
        assert options.parent_repository is None
        assert git.create_repository.call_args[1] == {"project": "proj", "source_ref": None}
        assert "Name: newrepo\n" in harness.output()
        assert "Project: proj\n" in harness.output()

    def test_fork_in_same_project(self, harness):
        git = harness.client("git")
        harness.client("core").get_project.return_value = MagicMock(id="project-id")
        git.get_repository.return_value = MagicMock(id="parent-id")
        git.create_repository.return_value = repository("fork")

        assert harness.run("repo", "create", "proj/fork", "--parent", "upstream",
                           "--source-branch", "main") == 0

        git.get_repository.assert_called_once_with("upstream", project="proj")
        options = git.create_repository.call_args[0][0]
        assert options.parent_repository.id == "parent-id"
        assert options.parent_repository.project.id == "project-id"
        assert git.create_repository.call_args[1]["source_ref"] == "refs/heads/main"

    def test_source_branch_needs_parent(self, harness):
        assert harness.run("repo", "create", "proj/newrepo", "--source-branch", "main") == 1
        assert "--source-branch can only be used with --parent" in harness.errors()


class TestRepoList:
    def test_sorted_and_limited(self, harness):
        git = harness.client("git")
        git.get_repositories.return_value = [repository("zeta"), repository("Alpha"), repository("beta")]

        assert harness.run("repo", "list", "proj", "--limit", "2") == 0

        git.get_repositories.assert_called_once_with(project="proj", include_hidden=False)
        lines = harness.output().splitlines()
        assert [line.split("\t")[1] for line in lines] == ["Alpha", "beta"]

    def test_empty(self, harness):
        harness.client("git").get_repositories.return_value = []
        assert harness.run("repo", "list", "proj") == 1
        assert "No repositories found for project proj and organization myorg" in harness.errors()

    def test_project_required(self, harness):
        assert harness.run("repo", "list") == 1
        assert "cannot list: project name required" in harness.errors()


class TestRepoDelete:
    def test_delete(self, harness):
        git = harness.client("git")
        git.get_repository.return_value = MagicMock(id="repo-id")

        assert harness.run("repo", "delete", "proj/old", "--yes") == 0

        git.delete_repository.assert_called_once_with("repo-id", project="proj")
        assert harness.output() == "✓ Repository myorg/proj/old deleted\n"

    def test_missing_repository(self, harness):
        git = harness.client("git")
        git.get_repository.return_value = None
        assert harness.run("repo", "delete", "proj/old", "-y") == 1
        assert 'repository "myorg/proj/old" not found' in harness.errors()
        git.delete_repository.assert_not_called()

    def test_typed_confirmation(self, harness):
        git = harness.client("git")
        git.get_repository.return_value = MagicMock(id="repo-id")
        harness.ios.set_stdin_tty(True)
        harness.ios.set_stdout_tty(True)

        assert harness.run("repo", "delete", "proj/old") == 0

        harness.prompter.confirm_deletion.assert_called_once_with("myorg/proj/old")
        git.delete_repository.assert_called_once_with("repo-id", project="proj")

    def test_confirmation_needs_terminal(self, harness):
        assert harness.run("repo", "delete", "proj/old") == 1
        assert "--yes required when not running interactively" in harness.errors()
        harness.prompter.confirm_deletion.assert_not_called()


class TestRepoEdit:
    @pytest.fixture
    def git(self, harness):
        git = harness.client("git")
        git.get_repository.return_value = GitRepository(id="repo-id", name="myrepo", is_disabled=False)
        git.update_repository.side_effect = lambda update, repository_id, project=None: GitRepository(
            id=repository_id, name=update.name or "myrepo", default_branch=update.default_branch,
            is_disabled=bool(update.is_disabled))
        return git

    def test_default_branch_and_name(self, harness, git):
        assert harness.run("repo", "edit", "proj/myrepo", "--default-branch", "live", "--name", "renamed") == 0

        update, repository_id = git.update_repository.call_args[0]
        assert repository_id == "repo-id"
        assert git.update_repository.call_args[1] == {"project": "proj"}
        assert (update.default_branch, update.name, update.is_disabled) == ("refs/heads/live", "renamed", None)
        lines = harness.output().splitlines()
        assert "Name: renamed" in lines
        assert "DefaultBranch: live" in lines

    def test_nothing_to_edit(self, harness, git):
        assert harness.run("repo", "edit", "proj/myrepo") == 1
        assert "at least one of --name, --disable, --enable or --default-branch" in harness.errors()
        git.get_repository.assert_not_called()

    def test_disable(self, harness, git):
        assert harness.run("repo", "edit", "proj/myrepo", "--disable") == 0
        assert git.update_repository.call_args[0][0].is_disabled is True

    def test_already_enabled(self, harness, git):
        assert harness.run("repo", "edit", "proj/myrepo", "--enable") == 1
        assert "repository myorg/proj/myrepo is already enabled" in harness.errors()

    def test_disabled_repository_only_accepts_enable(self, harness, git):
        git.get_repository.return_value.is_disabled = True
        assert harness.run("repo", "edit", "proj/myrepo", "--name", "x") == 1
        assert "is disabled; only --enable can be used" in harness.errors()
        git.update_repository.assert_not_called()

        assert harness.run("repo", "edit", "proj/myrepo", "--enable") == 0
        assert git.update_repository.call_args[0][0].is_disabled is False


class TestRepoRestore:
    def test_most_recent_deletion_wins(self, harness):
        git = harness.client("git")
        git.get_recycle_bin_repositories.return_value = [
            GitDeletedRepository(id="old", name="MyRepo", deleted_date=datetime(2024, 1, 1, tzinfo=timezone.utc)),
            GitDeletedRepository(id="new", name="myrepo", deleted_date=datetime(2024, 6, 1, tzinfo=timezone.utc)),
            GitDeletedRepository(id="other", name="other"),
        ]

        assert harness.run("repo", "restore", "proj/myrepo") == 0

        details, project, repository_id = git.restore_repository_from_recycle_bin.call_args[0]
        assert details.deleted is False
        assert (project, repository_id) == ("proj", "new")
        assert harness.output() == "✓ Restored repository myorg/proj/myrepo\n"

    def test_not_in_recycle_bin(self, harness):
        harness.client("git").get_recycle_bin_repositories.return_value = []
        assert harness.run("repo", "restore", "proj/myrepo") == 1
        assert 'no deleted repository "myorg/proj/myrepo" found in the recycle bin' in harness.errors()


ORIGIN = "https://dev.azure.com/myorg/proj/_git/app"
UPSTREAM = "https://dev.azure.com/myorg/proj/_git/upstream-app"


class TestRemoteSet:
    def test_resolved_remote_wins_over_scores(self):
        git_client = MagicMock()
        git_client.remotes.return_value = [("origin", ORIGIN), ("upstream", UPSTREAM), ("gh", "https://github.com/x/y")]
        git_client.remote_resolutions.return_value = {"origin": "default"}

        remotes = RemoteSet.from_git(git_client)

        assert [remote.name for remote in remotes] == ["origin", "upstream"]
        assert remotes.resolved_default().name == "origin"

    def test_scores_without_resolution(self):
        remotes = RemoteSet([Remote("origin", Repository("myorg", "proj", "app")),
                             Remote("upstream", Repository("myorg", "proj", "upstream-app"))])
        assert remotes.default().name == "upstream"
        assert remotes.resolved_default() is None


class TestRepoSetDefault:
    @pytest.fixture
    def checkout(self, harness):
        harness.git_client.is_local_repo.return_value = True
        harness.git_client.remotes.return_value = [("origin", ORIGIN), ("upstream", UPSTREAM)]
        harness.ios.set_stdout_tty(True)
        return harness.git_client

    def test_explicit_repository(self, harness, checkout):
        assert harness.run("repo", "set-default", "myorg/proj/app") == 0
        checkout.set_remote_resolution.assert_called_once_with("origin", "default")
        checkout.unset_remote_resolution.assert_not_called()
        assert harness.output() == "✓ Set myorg/proj/app as the default repository for the current directory\n"

    def test_replaces_previous_default(self, harness, checkout):
        checkout.remote_resolutions.return_value = {"upstream": "default"}
        assert harness.run("repo", "set-default", "proj/app") == 0
        checkout.unset_remote_resolution.assert_called_once_with("upstream")
        checkout.set_remote_resolution.assert_called_once_with("origin", "default")

    def test_prompts_between_remotes(self, harness, checkout):
        harness.ios.set_stdin_tty(True)
        harness.prompter.select.return_value = 1
        assert harness.run("repo", "set-default") == 0
        message, default, options = harness.prompter.select.call_args[0]
        assert options == ["myorg/proj/upstream-app", "myorg/proj/app"]
        assert default is None
        checkout.set_remote_resolution.assert_called_once_with("origin", "default")

    def test_view(self, harness, checkout):
        checkout.remote_resolutions.return_value = {"origin": "default"}
        assert harness.run("repo", "set-default", "--view") == 0
        assert harness.output() == "myorg/proj/app\n"

    def test_view_without_default(self, harness, checkout):
        assert harness.run("repo", "set-default", "-v") == 0
        assert "no default repository has been set" in harness.errors()

    def test_unset(self, harness, checkout):
        checkout.remote_resolutions.return_value = {"origin": "default"}
        assert harness.run("repo", "set-default", "--unset") == 0
        checkout.unset_remote_resolution.assert_called_once_with("origin")
        assert harness.output() == "✓ Unset origin as default repository\n"

    def test_repository_required_without_terminal(self, harness, checkout):
        assert harness.run("repo", "set-default") == 1
        assert "repository required when not running interactively" in harness.errors()

    def test_outside_checkout(self, harness, checkout):
        checkout.is_local_repo.return_value = False
        assert harness.run("repo", "set-default", "proj/app") == 1
        assert "must be run from inside a git repository" in harness.errors()
