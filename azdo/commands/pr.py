"""
azdo pr: work with pull requests.

Most subcommands select their pull request through PullRequestFinder: an
explicit "[[ORGANIZATION/]PROJECT/REPO:]#ID" selector, or the active pull
request of the current branch when no selector is given.
"""

import logging
import re
from typing import List, Optional, Tuple

from azure.devops.v7_1.git.models import (
    Comment,
    GitPullRequest,
    GitPullRequestCommentThread,
    GitPullRequestCompletionOptions,
    GitPullRequestSearchCriteria,
    IdentityRef,
    IdentityRefWithVote,
    WebApiCreateTagRequestData,
    WebApiTagDefinition,
)

from ..classes.repository import Repository
from ..cli.command import Command, Flag, exact_args, maximum_args, no_args
from ..cli.errors import AzdoError, FlagError, NoResultsError, mutually_exclusive
from ..cli.json_flags import add_json_flags
from ..cli.scope import ME, resolve_organization
from ..helpers.text import branch_ref, strip_ref, utc_now
from .shared import (
    confirm,
    get_git_repository,
    open_in_browser,
    progress,
    render_or_export,
    repository_from_arg,
    resolve_identity_id,
    yes_flag,
)

logger = logging.getLogger(__name__)

PULL_REQUEST_PATTERN = re.compile(
    r"^(((?P<org>[\w\-.\s]+)/)?((?P<project>[\w\-.\s]+)/)?(?P<repo>[\w\-.\s]+):)?#?(?P<id>\d+)$")

PULL_REQUEST_FIELDS = [
    "pullRequestId", "title", "description", "status", "createdBy", "creationDate", "closedDate",
    "closedBy", "sourceRefName", "targetRefName", "isDraft", "mergeStatus", "mergeId", "labels",
    "reviewers", "url", "repository", "autoCompleteSetBy", "completionOptions",
    "lastMergeSourceCommit", "lastMergeTargetCommit", "workItemRefs",
]

STATES = ["abandoned", "active", "all", "completed"]
MERGE_STATES = ["succeeded", "conflicts"]
MERGE_STRATEGIES = ["noFastForward", "squash", "rebase", "rebaseMerge"]

VOTES = {
    10: "approved",
    5: "approved with suggestions",
    0: "no vote",
    -5: "waiting for author",
    -10: "rejected",
}


def new_cmd_pr(ctx) -> Command:
    cmd = Command(
        use="pr <command>",
        short="Manage pull requests",
        long="Work with Azure DevOps pull requests.",
        example=("  $ azdo pr list\n"
                 "  $ azdo pr create --title \"Fix the build\"\n"
                 "  $ azdo pr checkout 321"),
        annotations={"help:arguments": (
            "A pull request can be supplied as argument in any of the following formats:\n"
            '- by number, e.g. "123" or "#123";\n'
            '- by repository and number, e.g. "myproject/myrepo:123" or "myorg/myproject/myrepo:123".')},
    )
    cmd.add_command(
        new_cmd_pr_list(ctx),
        new_cmd_pr_create(ctx),
        new_cmd_pr_view(ctx),
        new_cmd_pr_checkout(ctx),
        new_cmd_pr_close(ctx),
        new_cmd_pr_reopen(ctx),
        new_cmd_pr_merge(ctx),
        new_cmd_pr_diff(ctx),
        new_cmd_pr_edit(ctx),
        new_cmd_pr_comment(ctx),
        new_cmd_pr_vote(ctx),
        new_cmd_pr_status(ctx),
    )
    cmd.add_persistent_flag(Flag("repo", "R", metavar="[ORGANIZATION/]PROJECT/REPO",
                                 help="Select another repository using the [ORGANIZATION/]PROJECT/REPO format"))

    def select_repository(opts):
        if opts.repo:
            ctx.repo_context().override = opts.repo.strip()

    cmd.pre_run_hooks.append(select_repository)
    return cmd


# Finder

def parse_selector(selector: str) -> Tuple[str, str, str, int]:
    """
    Split a pull request selector into (organization, project, repository, id).
    Missing parts are returned as empty strings.
    """
    match = PULL_REQUEST_PATTERN.match(selector.strip())
    if not match:
        raise FlagError(f'not a valid pull request selector: "{selector}"')
    organization = (match.group("org") or "").strip()
    project = (match.group("project") or "").strip()
    name = (match.group("repo") or "").strip()
    if organization and not project:
        organization, project = "", organization
    if name and not project:
        raise FlagError(f'not a valid pull request selector: "{selector}", the project is missing')
    return organization, project, name, int(match.group("id"))


class PullRequestFinder:
    """Locates a single pull request and the repository it belongs to."""

    def __init__(self, ctx):
        self.ctx = ctx

    def _repository(self, organization: str, project: str, name: str) -> Repository:
        if name:
            return Repository(resolve_organization(self.ctx, organization), project, name)
        return self.ctx.repo_context().current_repository()

    def find(self, selector: str = "", base_branch: str = "",
             states: Optional[List[str]] = None) -> Tuple[GitPullRequest, Repository]:
        """
        Args:
            selector: "[[ORGANIZATION/]PROJECT/REPO:]#ID"; empty selects the pull
                request whose source is the current branch
            base_branch: Require this target branch
            states: Require one of these statuses

        Raises:
            NoResultsError: Nothing matched
        """
        with progress(self.ctx):
            if selector:
                organization, project, name, pull_request_id = parse_selector(selector)
                repo = self._repository(organization, project, name)
                git = self.ctx.client_factory().git(repo.organization)
                pr = git.get_pull_request_by_id(pull_request_id, project=repo.project)
                if pr is None:
                    raise NoResultsError("pull request not found")
            else:
                repo = self._repository("", "", "")
                branch = self.ctx.git_client().current_branch()
                repository = get_git_repository(self.ctx, repo)
                git = self.ctx.client_factory().git(repo.organization)
                criteria = GitPullRequestSearchCriteria(source_ref_name=branch_ref(branch))
                found = git.get_pull_requests(repository.id, criteria, project=repo.project, top=1) or []
                if not found:
                    raise NoResultsError("pull request not found")
                pr = found[0]

        if base_branch and (pr.target_ref_name or "").lower() != branch_ref(base_branch).lower():
            raise NoResultsError(f'pull request "{selector}" does not have base branch "{base_branch}"')
        if states and (pr.status or "").lower() not in [s.lower() for s in states]:
            raise NoResultsError(
                f'pull request "{selector or pr.pull_request_id}" is not in any of the specified states {states}')
        return pr, repo


def _repository_id(pr: GitPullRequest, ctx, repo: Repository) -> str:
    if pr.repository is not None and pr.repository.id:
        return pr.repository.id
    return get_git_repository(ctx, repo).id


def _web_url(repo: Repository, pull_request_id: int) -> str:
    return f"{repo.web_url()}/pullrequest/{pull_request_id}"


def _identity_text(identity) -> str:
    if identity is None:
        return ""
    if identity.unique_name:
        return f"{identity.display_name} ({identity.unique_name})"
    return identity.display_name or ""


def _label_names(pr: GitPullRequest) -> List[str]:
    return [label.name for label in (pr.labels or []) if label.name]


# list

def filter_pull_requests(prs: List[GitPullRequest], draft: bool = False, merge_state: str = "",
                         labels: Optional[List[str]] = None) -> List[GitPullRequest]:
    """
    Client side filters; every given filter must hold. Labels must all be
    present on a pull request.
    """
    wanted = {label.lower() for label in labels or []}
    result = []
    for pr in prs:
        if draft and not pr.is_draft:
            continue
        if merge_state and (pr.merge_status or "").lower() != merge_state.lower():
            continue
        if wanted and not wanted.issubset({name.lower() for name in _label_names(pr)}):
            continue
        result.append(pr)
    return result


def new_cmd_pr_list(ctx) -> Command:
    def run(opts):
        if opts.limit < 1:
            raise FlagError(f"invalid value for --limit: {opts.limit}")
        repo = repository_from_arg(ctx, opts.args[0] if opts.args else "")
        git = ctx.client_factory().git(repo.organization)

        with progress(ctx):
            repository = get_git_repository(ctx, repo)
            criteria = GitPullRequestSearchCriteria(status=opts.state)
            if opts.base:
                criteria.target_ref_name = branch_ref(opts.base)
            if opts.head:
                criteria.source_ref_name = branch_ref(opts.head)
            if opts.author:
                criteria.creator_id = resolve_identity_id(ctx, repo.organization, opts.author)
            if opts.reviewer:
                criteria.reviewer_id = resolve_identity_id(ctx, repo.organization, opts.reviewer)
            prs = git.get_pull_requests(repository.id, criteria, project=repo.project, top=opts.limit) or []

        message = (f"No Pull Requests found for repository {repo.name} in project {repo.project} "
                   f"at organization {repo.organization}")
        if not prs:
            raise NoResultsError(message)
        prs = filter_pull_requests(prs, opts.draft, opts.mergestate or "", opts.label)
        if not prs:
            raise NoResultsError(message + " using specified filters")

        def render():
            printer = ctx.printer(opts.format)
            printer.add_columns("ID", "Title", "Branch", "Author", "State", "IsDraft", "MergeStatus")
            for pr in prs:
                printer.add_field(pr.pull_request_id)
                printer.add_field(pr.title, truncate=None)
                printer.add_field(strip_ref(pr.source_ref_name))
                printer.add_field(_identity_text(pr.created_by))
                printer.add_field(pr.status)
                printer.add_field(bool(pr.is_draft))
                printer.add_field(pr.merge_status or "unknown")
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, prs, render)

    cmd = Command(
        use="list [[organization/]project/repository]",
        short="List pull requests in a repository",
        long=("List pull requests of an Azure DevOps repository.\n\n"
              "Without an argument, the repository of the current directory is used.\n"
              "All given filters must match; with several `--label` values a pull request must\n"
              "carry every one of them."),
        example=("  $ azdo pr list --state all --limit 5\n"
                 "  $ azdo pr list --base develop --draft\n"
                 "  $ azdo pr list myproject/myrepo --author @me"),
        aliases=["ls"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("limit", "L", kind="int", default=30, help="Maximum number of items to fetch"))
    cmd.add_flag(Flag("state", "s", choices=STATES, default="active", help="Filter by state"))
    cmd.add_flag(Flag("mergestate", "m", choices=MERGE_STATES, help="Filter by merge state"))
    cmd.add_flag(Flag("base", "B", help="Filter by base branch"))
    cmd.add_flag(Flag("head", "H", help="Filter by head branch"))
    cmd.add_flag(Flag("label", "l", kind="strings", help="Filter by label"))
    cmd.add_flag(Flag("author", "a", help='Filter by author; "@me" selects yourself'))
    cmd.add_flag(Flag("reviewer", "r", help='Filter by reviewer; "@me" selects yourself'))
    cmd.add_flag(Flag("format", "f", choices=["table", "json"], default="table", help="Output format"))
    cmd.add_flag(Flag("draft", "d", kind="bool", help="Filter by draft state"))
    add_json_flags(cmd, PULL_REQUEST_FIELDS)
    return cmd


# create

def new_cmd_pr_create(ctx) -> Command:
    def run(opts):
        ios = ctx.io_streams()
        repo = ctx.repo_context().current_repository()
        repository = get_git_repository(ctx, repo)

        base = strip_ref(opts.base) if opts.base else strip_ref(repository.default_branch)
        if not base:
            raise AzdoError("repository does not specify a default branch. "
                            "Specify the base branch using --base or -B")
        head = strip_ref(opts.head) if opts.head else ctx.git_client().current_branch()
        if head == base:
            raise AzdoError(f"head branch '{head}' is the same as base branch. "
                            "Cannot create a pull request from a branch to itself")

        title, body = opts.title or "", opts.body or ""
        if opts.body_file:
            body = ios.read_user_file(opts.body_file)
        if not title:
            if not ios.can_prompt():
                raise FlagError("must provide `--title` when not running interactively")
            prompter = ctx.prompter()
            title = prompter.input("Title")
            if not body:
                body = prompter.input("Body", "")

        git = ctx.client_factory().git(repo.organization)
        with progress(ctx):
            existing = git.get_pull_requests(
                repository.id,
                GitPullRequestSearchCriteria(status="active", source_ref_name=branch_ref(head),
                                             target_ref_name=branch_ref(base)),
                project=repo.project, top=1) or []
        if existing:
            raise AzdoError(f'a pull request for branch "{head}" into branch "{base}" already exists:\n'
                            f"{_web_url(repo, existing[0].pull_request_id)}")

        reviewers = []
        for name, required in [(r, True) for r in opts.required_reviewer] + [(r, False) for r in opts.reviewer]:
            reviewers.append(IdentityRefWithVote(
                id=resolve_identity_id(ctx, repo.organization, name), is_required=required))

        to_create = GitPullRequest(
            title=title,
            description=body,
            source_ref_name=branch_ref(head),
            target_ref_name=branch_ref(base),
            is_draft=opts.draft,
            reviewers=reviewers or None,
            labels=[WebApiTagDefinition(name=label) for label in opts.label] or None,
        )
        with progress(ctx):
            created = git.create_pull_request(to_create, repository.id, project=repo.project)
        ios.out.write(f"Pull request #{created.pull_request_id} created: "
                      f"{_web_url(repo, created.pull_request_id)}\n")

    cmd = Command(
        use="create",
        short="Create a pull request",
        long=("Create a pull request on Azure DevOps.\n\n"
              "The head branch defaults to the current branch and the base branch to the default\n"
              "branch of the repository. The head branch must already be pushed.\n\n"
              "Without `--title`, the title and body are prompted for."),
        example=('  $ azdo pr create --title "The bug is fixed" --body "Everything works again"\n'
                 "  $ azdo pr create --reviewer monalisa@contoso.com --label bug\n"
                 "  $ azdo pr create --base develop --head feature --draft"),
        aliases=["new"],
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("title", "t", help="Title for the pull request"))
    cmd.add_flag(Flag("body", "b", help="Body for the pull request"))
    cmd.add_flag(Flag("body-file", "F", metavar="file",
                      help='Read body text from file (use "-" to read from standard input)'))
    cmd.add_flag(Flag("base", "B", metavar="branch", help="The branch into which you want your code merged"))
    cmd.add_flag(Flag("head", "H", metavar="branch",
                      help="The branch that contains commits for your pull request (default [current branch])"))
    cmd.add_flag(Flag("draft", "d", kind="bool", help="Mark pull request as a draft"))
    cmd.add_flag(Flag("reviewer", "r", kind="strings", help="Optional reviewers by name or email"))
    cmd.add_flag(Flag("required-reviewer", kind="strings", help="Required reviewers by name or email"))
    cmd.add_flag(Flag("label", "l", kind="strings", help="Add labels"))
    cmd.mark_flags_mutually_exclusive("body", "body-file")
    return cmd


# view

def new_cmd_pr_view(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "")
        if opts.web:
            open_in_browser(ctx, _web_url(repo, pr.pull_request_id))
            return

        def render():
            cs = ctx.io_streams().color_scheme()
            printer = ctx.printer("list")
            printer.add_columns("ID", "Title", "Status", "IsDraft", "Author", "Branch", "Created",
                                "MergeStatus", "Reviewers", "Labels", "Description", "URL")
            printer.add_field(pr.pull_request_id)
            printer.add_field(pr.title)
            printer.add_field(pr.status)
            printer.add_field(bool(pr.is_draft))
            printer.add_field(_identity_text(pr.created_by))
            printer.add_field(f"{strip_ref(pr.source_ref_name)} -> {strip_ref(pr.target_ref_name)}")
            printer.add_time_field(utc_now(), pr.creation_date)
            printer.add_field(pr.merge_status or "unknown")
            reviewers = [f"{r.display_name} ({VOTES.get(r.vote or 0, r.vote)})" for r in pr.reviewers or []]
            printer.add_field(", ".join(reviewers) or "None")
            printer.add_field(", ".join(_label_names(pr)) or "None")
            printer.add_field(pr.description or cs.gray("No description provided"))
            printer.add_field(_web_url(repo, pr.pull_request_id))
            printer.end_row()
            printer.render()

        render_or_export(ctx, opts, pr, render)

    cmd = Command(
        use="view [<number>]",
        short="View a pull request",
        long=("Display the title, body and other information about a pull request.\n\n"
              "Without an argument, the pull request that belongs to the current branch is displayed.\n\n"
              "With `--web`, open the pull request in a web browser instead."),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("web", "w", kind="bool", help="Open a pull request in the browser"))
    add_json_flags(cmd, PULL_REQUEST_FIELDS)
    return cmd


# checkout

def new_cmd_pr_checkout(ctx) -> Command:
    def run(opts):
        selector = opts.args[0].lstrip("#")
        if not selector.isdigit():
            raise FlagError("invalid pull request number")
        pr, repo = PullRequestFinder(ctx).find(selector)

        remote = ctx.repo_context().remotes().find_by_repository(repo)
        git_client = ctx.git_client()
        source = strip_ref(pr.source_ref_name)
        remote_branch = f"{remote.name}/{source}"
        refspec = f"+{pr.source_ref_name}"
        if not opts.detach:
            refspec += f":refs/remotes/{remote_branch}"

        commands = [["fetch", remote.name, refspec]]
        local_branch = opts.branch or f"pull/{pr.pull_request_id}"
        if opts.detach:
            commands.append(["checkout", "--detach", "FETCH_HEAD"])
        elif git_client.has_local_branch(local_branch):
            commands.append(["checkout", local_branch])
            if opts.force:
                commands.append(["reset", "--hard", f"refs/remotes/{remote_branch}"])
            else:
                commands.append(["merge", "--ff-only", f"refs/remotes/{remote_branch}"])
        else:
            commands.append(["checkout", "-b", local_branch, "--track", remote_branch])
        if opts.recurse_submodules:
            commands.append(["submodule", "sync", "--recursive"])
            commands.append(["submodule", "update", "--init", "--recursive"])

        for args in commands:
            git_client.run(*args)

    cmd = Command(
        use="checkout <number>",
        short="Check out a pull request in git",
        example="  $ azdo pr checkout 321\n  $ azdo pr checkout 321 --branch review/321",
        args=exact_args(1, "argument required"),
        run=run,
    )
    cmd.add_flag(Flag("recurse-submodules", kind="bool", help="Update all submodules after checkout"))
    cmd.add_flag(Flag("force", "f", kind="bool",
                      help="Reset the existing local branch to the latest state of the pull request"))
    cmd.add_flag(Flag("detach", kind="bool", help="Checkout PR with a detached HEAD"))
    cmd.add_flag(Flag("branch", "b", help="Local branch name to use (default [pull/<number>])"))
    return cmd


# close / reopen

def _comment_thread(text: str, status: str) -> GitPullRequestCommentThread:
    return GitPullRequestCommentThread(comments=[Comment(content=text)], status=status)


def new_cmd_pr_close(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0])
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        if (pr.status or "").lower() != "active":
            ios.err_out.write(f"{cs.warning_icon()} Unable to close pull request {repo.full_name()}"
                              f"#{pr.pull_request_id} ({pr.title}) because it is not active\n")
            return
        confirm(ctx, opts.yes, f"Close pull request #{pr.pull_request_id} ({pr.title})?")

        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)
        with progress(ctx):
            git.update_pull_request(GitPullRequest(status="abandoned"), repository_id,
                                    pr.pull_request_id, project=repo.project)
            if opts.comment:
                git.create_thread(_comment_thread(opts.comment, "closed"), repository_id,
                                  pr.pull_request_id, project=repo.project)
        ios.out.write(f"{cs.red(cs.success_icon())} Closed pull request {repo.full_name()}"
                      f"#{pr.pull_request_id} ({pr.title})\n")

    cmd = Command(
        use="close <number>",
        short="Close a pull request",
        long="Abandon an active pull request.",
        args=exact_args(1, "cannot close pull request: number required"),
        run=run,
    )
    cmd.add_flag(Flag("comment", "c", help="Leave a closing comment"))
    cmd.add_flag(yes_flag())
    return cmd


def new_cmd_pr_reopen(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0], states=["abandoned"])
        ios = ctx.io_streams()
        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)
        with progress(ctx):
            updated = git.update_pull_request(GitPullRequest(status="active"), repository_id,
                                              pr.pull_request_id, project=repo.project)
            if opts.comment:
                git.create_thread(_comment_thread(opts.comment, "active"), repository_id,
                                  pr.pull_request_id, project=repo.project)
        ios.out.write(f"Pull request {updated.pull_request_id} reopened successfully.\n")

    cmd = Command(
        use="reopen <number>",
        short="Reopen a pull request",
        long="Reactivate an abandoned pull request.",
        args=exact_args(1, "cannot reopen pull request: number required"),
        run=run,
    )
    cmd.add_flag(Flag("comment", "c", help="Add a reopening comment"))
    return cmd


# merge

def new_cmd_pr_merge(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "", states=["active"])
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        target = strip_ref(pr.target_ref_name)
        if not opts.auto:
            confirm(ctx, opts.yes, f"Merge pull request #{pr.pull_request_id} ({pr.title}) into {target}?")

        completion = GitPullRequestCompletionOptions(
            delete_source_branch=opts.delete_source_branch,
            merge_commit_message=opts.message or None,
            merge_strategy=opts.merge_strategy,
            transition_work_items=not opts.no_transition_work_items,
        )
        update = GitPullRequest(completion_options=completion)
        if opts.auto:
            update.auto_complete_set_by = IdentityRef(id=resolve_identity_id(ctx, repo.organization, ME))
        else:
            update.status = "completed"
            update.last_merge_source_commit = pr.last_merge_source_commit

        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)
        with progress(ctx):
            git.update_pull_request(update, repository_id, pr.pull_request_id, project=repo.project)

        if opts.auto:
            ios.out.write(f"{cs.success_icon()} Pull request {repo.full_name()}#{pr.pull_request_id} "
                          f"will be automatically merged into {target} when all policies pass\n")
            return
        ios.out.write(f"{cs.success_icon()} Merged pull request {repo.full_name()}#{pr.pull_request_id}\n")

    cmd = Command(
        use="merge [<number>]",
        short="Merge a pull request",
        long=("Merge a pull request on Azure DevOps.\n\n"
              "Without an argument, the pull request that belongs to the current branch is selected.\n\n"
              "With `--auto`, the pull request is completed by the service once all required\n"
              "policies have passed."),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("message", "m", help="Message to include when completing the pull request"))
    cmd.add_flag(Flag("delete-source-branch", "d", kind="bool", help="Delete the source branch after merging"))
    cmd.add_flag(Flag("merge-strategy", choices=MERGE_STRATEGIES, default="noFastForward",
                      help="Merge strategy to use"))
    cmd.add_flag(Flag("no-transition-work-items", kind="bool",
                      help="Do not transition linked work item statuses upon merging"))
    cmd.add_flag(Flag("auto", kind="bool", help="Set the pull request to complete automatically"))
    cmd.add_flag(yes_flag())
    return cmd


# diff

def _change_path(change) -> str:
    item = change.item
    if isinstance(item, dict):
        return item.get("path") or ""
    return getattr(item, "path", None) or ""


def new_cmd_pr_diff(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "")
        ios = ctx.io_streams()
        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)

        with progress(ctx):
            iterations = git.get_pull_request_iterations(repository_id, pr.pull_request_id,
                                                         project=repo.project) or []
            if not iterations:
                raise NoResultsError("no iterations found for pull request")
            changes = git.get_pull_request_iteration_changes(
                repository_id, pr.pull_request_id, iterations[-1].id, project=repo.project)

        use_color = {"always": True, "never": False}.get(opts.color, ios.color_enabled())
        cs = ios.color_scheme()
        markers = {"add": (cs.green, "+"), "edit": (cs.yellow, "~"), "delete": (cs.red, "-")}

        ios.start_pager()
        try:
            for change in changes.change_entries or []:
                path = _change_path(change)
                if not path:
                    continue
                if opts.name_only:
                    ios.out.write(path + "\n")
                    continue
                change_type = str(change.change_type or "")
                if use_color and change_type in markers:
                    colorize, marker = markers[change_type]
                    ios.out.write(f"{colorize(marker) if cs.enabled else marker} {path}\n")
                else:
                    ios.out.write(f"{change_type} {path}\n")
        finally:
            ios.stop_pager()

    cmd = Command(
        use="diff [<number>]",
        short="View changes in a pull request",
        long=("View the files changed by the latest iteration of a pull request with their change type.\n\n"
              "Without an argument, the pull request that belongs to the current branch is selected."),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("color", choices=["always", "never", "auto"], default="auto",
                      help="Use color in diff output"))
    cmd.add_flag(Flag("name-only", kind="bool", help="Display only names of changed files"))
    return cmd


# edit

def new_cmd_pr_edit(ctx) -> Command:
    def run(opts):
        mutually_exclusive("specify only one of `--draft` or `--ready`", opts.draft, opts.ready)
        editable = ("title", "body", "base", "draft", "ready", "add-label", "remove-label")
        if not any(opts.changed(name) for name in editable):
            raise FlagError("nothing to edit; use at least one of " +
                            ", ".join(f"--{name}" for name in editable))

        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "")
        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)

        update = GitPullRequest()
        changed = False
        if opts.changed("title"):
            update.title = opts.title
            changed = True
        if opts.changed("body"):
            update.description = opts.body
            changed = True
        if opts.base:
            update.target_ref_name = branch_ref(opts.base)
            changed = True
        if opts.draft or opts.ready:
            update.is_draft = bool(opts.draft)
            changed = True

        with progress(ctx):
            if changed:
                git.update_pull_request(update, repository_id, pr.pull_request_id, project=repo.project)
            for label in opts.add_label:
                git.create_pull_request_label(WebApiCreateTagRequestData(name=label), repository_id,
                                              pr.pull_request_id, project=repo.project)
            for label in opts.remove_label:
                git.delete_pull_request_labels(repository_id, pr.pull_request_id, label, project=repo.project)

        ctx.io_streams().out.write(_web_url(repo, pr.pull_request_id) + "\n")

    cmd = Command(
        use="edit [<number>]",
        short="Edit a pull request",
        long=("Edit the title, body, base branch, draft state or labels of a pull request.\n\n"
              "Without an argument, the pull request that belongs to the current branch is selected."),
        example=('  $ azdo pr edit 23 --title "I found a bug" --body "Nothing works"\n'
                 "  $ azdo pr edit 23 --add-label bug,help --remove-label wontfix\n"
                 "  $ azdo pr edit --ready"),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("title", "t", help="Set the new title"))
    cmd.add_flag(Flag("body", "b", help="Set the new body"))
    cmd.add_flag(Flag("base", "B", metavar="branch", help="Change the base branch for this pull request"))
    cmd.add_flag(Flag("draft", kind="bool", help="Convert the pull request to a draft"))
    cmd.add_flag(Flag("ready", kind="bool", help="Mark the pull request as ready for review"))
    cmd.add_flag(Flag("add-label", kind="strings", metavar="name", help="Add labels by name"))
    cmd.add_flag(Flag("remove-label", kind="strings", metavar="name", help="Remove labels by name"))
    return cmd


# comment

def new_cmd_pr_comment(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "")
        ios = ctx.io_streams()
        if opts.comment == "-":
            text = ios.in_.read()
        elif opts.comment:
            text = opts.comment
        elif ios.can_prompt() and not ctx.prompt_disabled():
            text = ctx.prompter().input("Comment:")
        else:
            raise FlagError("--comment required when not running interactively")
        if not text.strip():
            raise FlagError("comment must not be empty")

        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)
        with progress(ctx):
            if opts.thread > 0:
                created = git.create_comment(Comment(content=text), repository_id, pr.pull_request_id,
                                             opts.thread, project=repo.project)
                comment_id = created.id
            else:
                thread = git.create_thread(GitPullRequestCommentThread(comments=[Comment(content=text)]),
                                           repository_id, pr.pull_request_id, project=repo.project)
                comment_id = thread.comments[0].id if thread.comments else thread.id
        ios.out.write(f"Created comment: {comment_id}\n")

    cmd = Command(
        use="comment [<number>]",
        short="Comment a pull request",
        long=("Add a comment to an existing pull request, either as a new thread or as a reply\n"
              "to the thread given with `--thread`.\n\n"
              "Without an argument, the pull request that belongs to the current branch is selected."),
        example=('  $ azdo pr comment 23 --comment "Looks good"\n'
                 "  $ echo 'Fixed' | azdo pr comment 23 --thread 4 --comment -"),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("comment", "c", help='Comment to add to the pull request; "-" reads it from standard input'))
    cmd.add_flag(Flag("thread", "t", kind="int", default=0, help="ID of the thread to reply to"))
    return cmd


# vote

VOTE_VALUES = {
    "approve": 10,
    "approve-with-suggestions": 5,
    "reset": 0,
    "wait-for-author": -5,
    "reject": -10,
}


def new_cmd_pr_vote(ctx) -> Command:
    def run(opts):
        pr, repo = PullRequestFinder(ctx).find(opts.args[0] if opts.args else "")
        git = ctx.client_factory().git(repo.organization)
        repository_id = _repository_id(pr, ctx, repo)
        with progress(ctx):
            reviewer_id = resolve_identity_id(ctx, repo.organization, ME)
            git.create_pull_request_reviewer(IdentityRefWithVote(vote=VOTE_VALUES[opts.vote]), repository_id,
                                             pr.pull_request_id, reviewer_id, project=repo.project)
        ios = ctx.io_streams()
        ios.out.write(f"{ios.color_scheme().success_icon()} Set vote to '{opts.vote}' for "
                      f"{repo.full_name()}#{pr.pull_request_id}\n")

    cmd = Command(
        use="vote [<number>]",
        short="Vote on a pull request",
        long=("Cast or reset your reviewer vote on a pull request.\n\n"
              "Without an argument, the pull request that belongs to the current branch is selected."),
        example="  $ azdo pr vote 23 --vote approve\n  $ azdo pr vote --vote reset",
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("vote", choices=list(VOTE_VALUES), default="approve", help="Vote value to set"))
    return cmd


# status

def new_cmd_pr_status(ctx) -> Command:
    def run(opts):
        repo = ctx.repo_context().current_repository()
        git = ctx.client_factory().git(repo.organization)
        branch = ctx.git_client().current_branch()

        with progress(ctx):
            repository = get_git_repository(ctx, repo)
            me = resolve_identity_id(ctx, repo.organization, ME)

            def search(**criteria):
                return git.get_pull_requests(repository.id, GitPullRequestSearchCriteria(status="active", **criteria),
                                             project=repo.project) or []

            current = search(source_ref_name=branch_ref(branch)) if branch else []
            created = search(creator_id=me)
            review = [pr for pr in search(reviewer_id=me)
                      if not pr.created_by or pr.created_by.id != me]

        if opts.exporter is not None:
            seen, combined = set(), []
            for pr in current + created + review:
                if pr.pull_request_id not in seen:
                    seen.add(pr.pull_request_id)
                    combined.append(pr)
            opts.exporter.write(ctx.io_streams(), combined)
            return

        ios = ctx.io_streams()
        cs = ios.color_scheme()
        out = ios.out

        def section(title, prs, empty):
            out.write(f"\n{cs.bold(title)}\n")
            if not prs:
                out.write(f"  {cs.gray(empty)}\n")
                return
            for pr in prs:
                line = f"  #{pr.pull_request_id}  {pr.title}  [{strip_ref(pr.source_ref_name)}]"
                if pr.is_draft:
                    line += " (draft)"
                if opts.conflict_status:
                    line += f" - merge status: {pr.merge_status or 'unknown'}"
                out.write(line + "\n")

        out.write(f"Relevant pull requests in {repo.full_name()}\n")
        if branch:
            section("Current branch", current[:1],
                    f"There is no pull request associated with [{branch}]")
        section("Created by you", created, "You have no open pull requests")
        section("Requesting a code review from you", review, "You have no pull requests to review")

    cmd = Command(
        use="status",
        short="Show status of relevant pull requests",
        long=("Show the pull request of the current branch, the active pull requests you created\n"
              "and those that request a review from you, all in the current repository."),
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("conflict-status", "c", kind="bool",
                      help="Display the merge conflict status of each pull request"))
    add_json_flags(cmd, PULL_REQUEST_FIELDS)
    return cmd
