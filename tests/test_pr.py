import json
from unittest.mock import MagicMock

import pytest
from azure.devops.v7_1.git.models import GitPullRequest, IdentityRef, WebApiTagDefinition

from azdo.cli.errors import FlagError
from azdo.commands.pr import filter_pull_requests, parse_selector


def pull_request(pull_request_id, title="Fix build", draft=False, merge_status="succeeded", labels=(),
                 status="active"):
    return GitPullRequest(
        pull_request_id=pull_request_id,
        title=title,
        source_ref_name="refs/heads/feature-x",
        target_ref_name="refs/heads/main",
        status=status,
        is_draft=draft,
        merge_status=merge_status,
        labels=[WebApiTagDefinition(name=name) for name in labels] or None,
        created_by=IdentityRef(display_name="Jane Doe", unique_name="jane@example.com"),
    )


@pytest.fixture
def git(harness):
    git = harness.client("git")
    git.get_repository.return_value = MagicMock(id="repo-id")
    return git


class TestParseSelector:
    @pytest.mark.parametrize("selector,expected", [
        ("123", ("", "", "", 123)),
        ("#123", ("", "", "", 123)),
        ("proj/repo:12", ("", "proj", "repo", 12)),
        ("org/proj/repo:#7", ("org", "proj", "repo", 7)),
    ])
    def test_valid(self, selector, expected):
        assert parse_selector(selector) == expected

    def test_project_required_with_repository(self):
        with pytest.raises(FlagError, match="the project is missing"):
            parse_selector("repo:5")

    @pytest.mark.parametrize("selector", ["abc", "12a", "a/b/c/d:1"])
    def test_invalid(self, selector):
        with pytest.raises(FlagError, match="not a valid pull request selector"):
            parse_selector(selector)


class TestFilterPullRequests:
    def test_all_filters_must_hold(self):
        prs = [
            pull_request(1, draft=True, labels=["bug", "P1", "ui"]),
            pull_request(2, draft=True, labels=["bug"]),
            pull_request(3, draft=False, labels=["bug", "p1"]),
            pull_request(4, draft=True, labels=["bug", "p1"], merge_status="conflicts"),
        ]
        result = filter_pull_requests(prs, draft=True, merge_state="succeeded", labels=["bug", "p1"])
        assert [pr.pull_request_id for pr in result] == [1]

    def test_no_filters(self):
        prs = [pull_request(1), pull_request(2)]
        assert filter_pull_requests(prs) == prs


class TestPullRequestList:
    def test_default_query_and_table(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(7, merge_status=None)]

        assert harness.run("pr", "list", "myproj/myrepo") == 0

        git.get_repository.assert_called_once_with("myrepo", project="myproj")
        args, kwargs = git.get_pull_requests.call_args
        criteria = args[1]
        assert args[0] == "repo-id"
        assert criteria.status == "active"
        assert criteria.source_ref_name is None
        assert criteria.target_ref_name is None
        assert kwargs == {"project": "myproj", "top": 30}
        assert harness.output() == "7\tFix build\tfeature-x\tJane Doe (jane@example.com)\tactive\tfalse\tunknown\n"

    def test_filters(self, harness, git):
        git.get_pull_requests.return_value = [
            pull_request(1, draft=True, labels=["bug", "p1"]),
            pull_request(2, draft=False, labels=["bug", "p1"]),
        ]

        assert harness.run("pr", "list", "myproj/myrepo", "--base", "develop", "--head", "feature-x",
                           "--limit", "5", "--draft", "--label", "bug", "--label", "p1",
                           "--mergestate", "succeeded") == 0

        args, kwargs = git.get_pull_requests.call_args
        assert args[1].target_ref_name == "refs/heads/develop"
        assert args[1].source_ref_name == "refs/heads/feature-x"
        assert kwargs["top"] == 5
        assert harness.output().splitlines() == [
            "1\tFix build\tfeature-x\tJane Doe (jane@example.com)\tactive\ttrue\tsucceeded",
        ]

    def test_filters_remove_everything(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(1, draft=False)]
        assert harness.run("pr", "list", "myproj/myrepo", "--draft") == 1
        assert harness.errors() == (
            "No Pull Requests found for repository myrepo in project myproj at organization myorg "
            "using specified filters\n")

    def test_nothing_found(self, harness, git):
        git.get_pull_requests.return_value = []
        assert harness.run("pr", "list", "myproj/myrepo") == 1
        assert harness.errors() == \
            "No Pull Requests found for repository myrepo in project myproj at organization myorg\n"

    def test_invalid_limit(self, harness, git):
        assert harness.run("pr", "list", "myproj/myrepo", "--limit", "0") == 1
        assert "invalid value for --limit: 0" in harness.errors()
        git.get_pull_requests.assert_not_called()

    def test_json_export(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(7, labels=["bug"])]
        assert harness.run("pr", "list", "myproj/myrepo", "--json", "pullRequestId,labels") == 0
        assert json.loads(harness.output()) == [{"pullRequestId": 7, "labels": [{"name": "bug"}]}]

    def test_repo_flag(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(7)]
        assert harness.run("pr", "list", "-R", "myproj/myrepo") == 0
        git.get_repository.assert_called_once_with("myrepo", project="myproj")
        assert harness.git_client.method_calls == []

    def test_invalid_repo_flag(self, harness, git):
        assert harness.run("pr", "list", "--repo", "myrepo") == 1
        assert "invalid --repo value" in harness.errors()

    def test_author_me(self, harness, git):
        harness.client("rest").get_authenticated_user.return_value = {"id": "user-1"}
        git.get_pull_requests.return_value = [pull_request(1)]
        assert harness.run("pr", "list", "myproj/myrepo", "--author", "@me") == 0
        assert git.get_pull_requests.call_args[0][1].creator_id == "user-1"


class TestPullRequestClose:
    def test_close_with_comment(self, harness, git):
        pr = pull_request(12)
        git.get_pull_request_by_id.return_value = pr

        assert harness.run("pr", "close", "myproj/myrepo:12", "--comment", "not needed", "-y") == 0

        git.get_pull_request_by_id.assert_called_once_with(12, project="myproj")
        update, repository_id, pull_request_id = git.update_pull_request.call_args[0]
        assert update.status == "abandoned"
        assert (repository_id, pull_request_id) == ("repo-id", 12)
        thread = git.create_thread.call_args[0][0]
        assert thread.comments[0].content == "not needed"
        assert harness.output() == "✓ Closed pull request myorg/myproj/myrepo#12 (Fix build)\n"

    def test_close_requires_yes_when_not_interactive(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        assert harness.run("pr", "close", "myproj/myrepo:12") == 1
        assert "--yes required when not running interactively" in harness.errors()
        git.update_pull_request.assert_not_called()

    def test_close_inactive_pull_request(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12, status="completed")
        assert harness.run("pr", "close", "myproj/myrepo:12", "-y") == 0
        assert "because it is not active" in harness.errors()
        git.update_pull_request.assert_not_called()

    def test_reopen_requires_abandoned(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12, status="active")
        assert harness.run("pr", "reopen", "myproj/myrepo:12") == 1
        assert "is not in any of the specified states" in harness.errors()


REMOTE_URL = "https://dev.azure.com/myorg/myproj/_git/myrepo"
WEB_URL = "https://dev.azure.com/myorg/myproj/_git/myrepo/pullrequest"


@pytest.fixture
def checkout_dir(harness):
    harness.git_client.remotes.return_value = [("origin", REMOTE_URL)]
    harness.git_client.current_branch.return_value = "feature-x"
    return harness.git_client


class TestPullRequestCreate:
    @pytest.fixture(autouse=True)
    def repository(self, git, checkout_dir):
        git.get_repository.return_value = MagicMock(id="repo-id", default_branch="refs/heads/main")
        git.get_pull_requests.return_value = []

    def test_create(self, harness, git):
        git.create_pull_request.return_value = pull_request(42)

        assert harness.run("pr", "create", "-t", "Fix build", "-b", "Details", "-l", "bug,ui", "--draft") == 0

        created, repository_id = git.create_pull_request.call_args[0]
        assert repository_id == "repo-id"
        assert (created.source_ref_name, created.target_ref_name) == ("refs/heads/feature-x", "refs/heads/main")
        assert (created.title, created.description, created.is_draft) == ("Fix build", "Details", True)
        assert [label.name for label in created.labels] == ["bug", "ui"]
        assert created.reviewers is None
        assert harness.output() == f"Pull request #42 created: {WEB_URL}/42\n"

    def test_same_branch(self, harness, checkout_dir):
        checkout_dir.current_branch.return_value = "main"
        assert harness.run("pr", "create", "-t", "x") == 1
        assert "is the same as base branch" in harness.errors()

    def test_existing_pull_request(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(5)]
        assert harness.run("pr", "create", "-t", "x") == 1
        assert f"already exists:\n{WEB_URL}/5" in harness.errors()
        git.create_pull_request.assert_not_called()

    def test_title_required_without_terminal(self, harness):
        assert harness.run("pr", "create") == 1
        assert "must provide `--title` when not running interactively" in harness.errors()

    def test_body_and_body_file_are_exclusive(self, harness):
        assert harness.run("pr", "create", "-t", "x", "-b", "y", "-F", "body.md") == 1
        assert "none of the others can be" in harness.errors()


class TestPullRequestView:
    def test_list_output(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12, labels=["bug"])
        assert harness.run("pr", "view", "myproj/myrepo:12") == 0
        lines = harness.output().splitlines()
        assert "ID: 12" in lines
        assert "Branch: feature-x -> main" in lines
        assert "Labels: bug" in lines
        assert "Reviewers: None" in lines
        assert f"URL: {WEB_URL}/12" in lines

    def test_current_branch(self, harness, git, checkout_dir):
        git.get_pull_requests.return_value = [pull_request(3)]
        assert harness.run("pr", "view", "--json", "pullRequestId") == 0
        assert json.loads(harness.output()) == {"pullRequestId": 3}
        criteria = git.get_pull_requests.call_args[0][1]
        assert criteria.source_ref_name == "refs/heads/feature-x"


class TestPullRequestMerge:
    def test_merge(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)

        assert harness.run("pr", "merge", "myproj/myrepo:12", "-y", "--merge-strategy", "squash", "-d",
                           "-m", "Ship it") == 0

        update, repository_id, pull_request_id = git.update_pull_request.call_args[0]
        assert (repository_id, pull_request_id) == ("repo-id", 12)
        assert update.status == "completed"
        options = update.completion_options
        assert (options.merge_strategy, options.delete_source_branch) == ("squash", True)
        assert options.merge_commit_message == "Ship it"
        assert options.transition_work_items is True
        assert harness.output() == "✓ Merged pull request myorg/myproj/myrepo#12\n"

    def test_auto_complete(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        harness.client("rest").get_authenticated_user.return_value = {"id": "user-1"}

        assert harness.run("pr", "merge", "myproj/myrepo:12", "--auto") == 0

        update = git.update_pull_request.call_args[0][0]
        assert update.status is None
        assert update.auto_complete_set_by.id == "user-1"
        assert "will be automatically merged into main" in harness.output()

    def test_only_active(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12, status="completed")
        assert harness.run("pr", "merge", "myproj/myrepo:12", "-y") == 1
        git.update_pull_request.assert_not_called()


class TestPullRequestDiff:
    @pytest.fixture(autouse=True)
    def changes(self, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        git.get_pull_request_iterations.return_value = [MagicMock(id=1), MagicMock(id=2)]
        git.get_pull_request_iteration_changes.return_value = MagicMock(change_entries=[
            MagicMock(item={"path": "/src/app.py"}, change_type="edit"),
            MagicMock(item={"path": "/README.md"}, change_type="add"),
        ])

    def test_latest_iteration(self, harness, git):
        assert harness.run("pr", "diff", "myproj/myrepo:12") == 0
        assert git.get_pull_request_iteration_changes.call_args[0] == ("repo-id", 12, 2)
        assert harness.output() == "edit /src/app.py\nadd /README.md\n"

    def test_name_only(self, harness):
        assert harness.run("pr", "diff", "myproj/myrepo:12", "--name-only") == 0
        assert harness.output() == "/src/app.py\n/README.md\n"

    def test_no_iterations(self, harness, git):
        git.get_pull_request_iterations.return_value = []
        assert harness.run("pr", "diff", "myproj/myrepo:12") == 1
        assert "no iterations found for pull request" in harness.errors()


class TestPullRequestEdit:
    def test_edit(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12, draft=True)

        assert harness.run("pr", "edit", "myproj/myrepo:12", "--title", "New title", "--ready",
                           "--add-label", "bug,help", "--remove-label", "wontfix") == 0

        update = git.update_pull_request.call_args[0][0]
        assert (update.title, update.is_draft, update.description) == ("New title", False, None)
        added = [c[0][0].name for c in git.create_pull_request_label.call_args_list]
        assert added == ["bug", "help"]
        git.delete_pull_request_labels.assert_called_once_with("repo-id", 12, "wontfix", project="myproj")
        assert harness.output() == f"{WEB_URL}/12\n"

    def test_labels_only(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        assert harness.run("pr", "edit", "myproj/myrepo:12", "--add-label", "bug") == 0
        git.update_pull_request.assert_not_called()

    def test_nothing_to_edit(self, harness, git):
        assert harness.run("pr", "edit", "myproj/myrepo:12") == 1
        assert "nothing to edit" in harness.errors()
        git.get_pull_request_by_id.assert_not_called()

    def test_draft_and_ready(self, harness, git):
        assert harness.run("pr", "edit", "12", "--draft", "--ready") == 1
        assert "specify only one of `--draft` or `--ready`" in harness.errors()


class TestPullRequestCheckout:
    @pytest.fixture(autouse=True)
    def found(self, git, checkout_dir):
        git.get_pull_request_by_id.return_value = pull_request(12)

    def test_new_branch(self, harness, checkout_dir):
        checkout_dir.has_local_branch.return_value = False
        assert harness.run("pr", "checkout", "12") == 0
        assert [c[0] for c in checkout_dir.run.call_args_list] == [
            ("fetch", "origin", "+refs/heads/feature-x:refs/remotes/origin/feature-x"),
            ("checkout", "-b", "pull/12", "--track", "origin/feature-x"),
        ]

    def test_existing_branch_forced(self, harness, checkout_dir):
        checkout_dir.has_local_branch.return_value = True
        assert harness.run("pr", "checkout", "#12", "--branch", "review", "--force") == 0
        assert [c[0] for c in checkout_dir.run.call_args_list][1:] == [
            ("checkout", "review"),
            ("reset", "--hard", "refs/remotes/origin/feature-x"),
        ]

    def test_detached(self, harness, checkout_dir):
        assert harness.run("pr", "checkout", "12", "--detach") == 0
        assert [c[0] for c in checkout_dir.run.call_args_list] == [
            ("fetch", "origin", "+refs/heads/feature-x"),
            ("checkout", "--detach", "FETCH_HEAD"),
        ]

    def test_invalid_number(self, harness):
        assert harness.run("pr", "checkout", "abc") == 1
        assert "invalid pull request number" in harness.errors()


class TestPullRequestComment:
    def test_new_thread(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        git.create_thread.return_value = MagicMock(comments=[MagicMock(id=1)])

        assert harness.run("pr", "comment", "myproj/myrepo:12", "-c", "Looks good") == 0

        thread, repository_id, pull_request_id = git.create_thread.call_args[0]
        assert thread.comments[0].content == "Looks good"
        assert (repository_id, pull_request_id) == ("repo-id", 12)
        git.create_comment.assert_not_called()
        assert harness.output() == "Created comment: 1\n"

    def test_reply_from_stdin(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        git.create_comment.return_value = MagicMock(id=3)
        harness.stdin.write("Fixed in the latest push\n")
        harness.stdin.seek(0)

        assert harness.run("pr", "comment", "myproj/myrepo:12", "--thread", "4", "--comment", "-") == 0

        comment, repository_id, pull_request_id, thread_id = git.create_comment.call_args[0]
        assert comment.content == "Fixed in the latest push\n"
        assert (pull_request_id, thread_id) == (12, 4)
        assert harness.output() == "Created comment: 3\n"

    def test_comment_required_without_terminal(self, harness, git):
        git.get_pull_request_by_id.return_value = pull_request(12)
        assert harness.run("pr", "comment", "myproj/myrepo:12") == 1
        assert "--comment required when not running interactively" in harness.errors()
        git.create_thread.assert_not_called()

    def test_prompts_for_comment(self, harness, git):
        harness.ios.set_stdin_tty(True)
        harness.ios.set_stdout_tty(True)
        harness.prompter.input.return_value = "typed"
        git.get_pull_request_by_id.return_value = pull_request(12)
        git.create_thread.return_value = MagicMock(comments=[MagicMock(id=9)])
        assert harness.run("pr", "comment", "myproj/myrepo:12") == 0
        assert git.create_thread.call_args[0][0].comments[0].content == "typed"


class TestPullRequestVote:
    @pytest.mark.parametrize("vote,value", [
        ("approve", 10), ("approve-with-suggestions", 5), ("reset", 0), ("wait-for-author", -5), ("reject", -10),
    ])
    def test_vote_values(self, harness, git, vote, value):
        harness.client("rest").get_authenticated_user.return_value = {"id": "user-1"}
        git.get_pull_request_by_id.return_value = pull_request(12)

        assert harness.run("pr", "vote", "myproj/myrepo:12", "--vote", vote) == 0

        reviewer, repository_id, pull_request_id, reviewer_id = git.create_pull_request_reviewer.call_args[0]
        assert reviewer.vote == value
        assert (repository_id, pull_request_id, reviewer_id) == ("repo-id", 12, "user-1")
        assert harness.output() == f"✓ Set vote to '{vote}' for myorg/myproj/myrepo#12\n"

    def test_invalid_vote(self, harness, git):
        assert harness.run("pr", "vote", "12", "--vote", "maybe") == 1
        git.create_pull_request_reviewer.assert_not_called()


class TestPullRequestStatus:
    @pytest.fixture(autouse=True)
    def me(self, harness, checkout_dir):
        harness.client("rest").get_authenticated_user.return_value = {"id": "user-1"}

    def test_sections(self, harness, git):
        mine = pull_request(3, title="Mine")
        mine.created_by.id = "user-1"
        other = pull_request(5, title="Review me", merge_status="conflicts")

        def search(repository_id, criteria, project=None):
            if criteria.source_ref_name:
                return [mine]
            if criteria.creator_id:
                return [mine]
            return [mine, other]

        git.get_pull_requests.side_effect = search

        assert harness.run("pr", "status", "-c") == 0

        output = harness.output()
        assert output.startswith("Relevant pull requests in myorg/myproj/myrepo\n")
        assert "Current branch\n  #3  Mine  [feature-x]" in output
        assert "Requesting a code review from you\n  #5  Review me  [feature-x] - merge status: conflicts\n" in output
        assert all(call[0][1].status == "active" for call in git.get_pull_requests.call_args_list)

    def test_empty_sections(self, harness, git):
        git.get_pull_requests.return_value = []
        assert harness.run("pr", "status") == 0
        output = harness.output()
        assert "There is no pull request associated with [feature-x]" in output
        assert "You have no open pull requests" in output
        assert "You have no pull requests to review" in output

    def test_json_combines_sections(self, harness, git):
        git.get_pull_requests.return_value = [pull_request(3)]
        assert harness.run("pr", "status", "--json", "pullRequestId") == 0
        assert json.loads(harness.output()) == [{"pullRequestId": 3}]
