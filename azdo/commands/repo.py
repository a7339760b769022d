"""
azdo repo: manage Git repositories and the default repository of a checkout.
"""

import logging
import os

from azure.devops.v7_1.core.models import TeamProjectReference
from azure.devops.v7_1.git.models import (
    GitRecycleBinRepositoryDetails,
    GitRepository,
    GitRepositoryCreateOptions,
    GitRepositoryRef,
)

from ..classes.remotes import DEFAULT_RESOLUTION, NoAzureDevOpsRemoteError
from ..cli.command import Command, Flag, exact_args, maximum_args, minimum_args
from ..cli.errors import AzdoError, FlagError, NoResultsError, NotFoundError, mutually_exclusive
from ..cli.json_flags import add_json_flags
from ..cli.scope import parse_project_scope, parse_target, resolve_organization
from ..config.config_loader import GIT_PROTOCOL, ORGANIZATIONS
from ..helpers.text import branch_ref, strip_ref
from .shared import (
    confirm_deletion,
    get_git_repository,
    open_in_browser,
    progress,
    render_or_export,
    repository_from_arg,
    yes_flag,
)

logger = logging.getLogger(__name__)

REPOSITORY_FIELDS = [
    "id", "name", "project", "defaultBranch", "size", "remoteUrl", "sshUrl", "webUrl",
    "isDisabled", "isFork", "isInMaintenance", "parentRepository",
]


def new_cmd_repo(ctx) -> Command:
    cmd = Command(
        use="repo <command>",
        short="Manage repositories",
        long="Work with Azure DevOps Git repositories.",
        example=("  $ azdo repo list myproject\n"
                 "  $ azdo repo create myproject/myrepo\n"
                 "  $ azdo repo clone myorg/myproject/myrepo"),
    )
    cmd.add_command(
        new_cmd_repo_list(ctx),
        new_cmd_repo_create(ctx),
        new_cmd_repo_clone(ctx),
        new_cmd_repo_view(ctx),
        new_cmd_repo_delete(ctx),
        new_cmd_repo_edit(ctx),
        new_cmd_repo_restore(ctx),
        new_cmd_repo_set_default(ctx),
    )
    return cmd


def _git_protocol(ctx, organization: str) -> str:
    return ctx.config().get_or_default([ORGANIZATIONS, organization, GIT_PROTOCOL]) or "https"


def _clone_url(repository, protocol: str) -> str:
    if protocol.lower() == "ssh" and repository.ssh_url:
        return repository.ssh_url
    return repository.remote_url or repository.web_url


# list

def new_cmd_repo_list(ctx) -> Command:
    def run(opts):
        if opts.limit < 1:
            raise FlagError(f"invalid limit: {opts.limit}")
        scope = parse_project_scope(ctx, opts.args[0])
        git = ctx.client_factory().git(scope.organization)

        with progress(ctx):
            repositories = git.get_repositories(project=scope.project, include_hidden=opts.include_hidden) or []
        if not repositories:
            raise NoResultsError(
                f"No repositories found for project {scope.project} and organization {scope.organization}")
        repositories = sorted(repositories, key=lambda r: (r.name or "").lower())[:opts.limit]

        def render():
            printer = ctx.printer(opts.format)
            printer.add_columns("ID", "Name", "SSHUrl", "HTTPUrl")
            for repository in repositories:
                printer.add_field(repository.id, truncate=None)
                printer.add_field(repository.name)
                printer.add_field(repository.ssh_url)
                printer.add_field(repository.web_url)
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, repositories, render)

    cmd = Command(
        use="list [organization/]<project>",
        short="List repositories of a project inside an organization",
        example=("  # list the repositories of a project using the default organization\n"
                 "  $ azdo repo list myproject\n\n"
                 "  # list the repositories of a project using the specified organization\n"
                 "  $ azdo repo list myorg/myproject"),
        aliases=["ls"],
        args=exact_args(1, "cannot list: project name required"),
        run=run,
    )
    cmd.add_flag(Flag("limit", "L", kind="int", default=30, help="Maximum number of repositories to list"))
    cmd.add_flag(Flag("format", choices=["table", "json"], default="table", help="Output format"))
    cmd.add_flag(Flag("include-hidden", kind="bool", help="Include hidden repositories"))
    add_json_flags(cmd, REPOSITORY_FIELDS)
    return cmd


# create

def check_fork_organization(target: str, parent: str):
    """
    Reject forks whose explicit parent organization differs from the target
    organization. Runs on the raw arguments so no lookup happens first.
    """
    target_parts = target.strip().split("/")
    parent_parts = parent.strip().split("/")
    if len(target_parts) == 3 and len(parent_parts) == 3 and \
            target_parts[0].strip().lower() != parent_parts[0].strip().lower():
        raise FlagError(
            f'cannot fork across organizations: "{target_parts[0].strip()}" and "{parent_parts[0].strip()}"')


def new_cmd_repo_create(ctx) -> Command:
    def run(opts):
        parent = (opts.parent or "").strip()
        if opts.source_branch and not parent:
            raise FlagError("--source-branch can only be used with --parent")
        if parent:
            check_fork_organization(opts.args[0], parent)

        scope = parse_target(ctx, opts.args[0])
        organization, project, name = scope.organization, scope.project, scope.target

        parent_repository = None
        source_ref = None
        if parent:
            parts = [p.strip() for p in parent.split("/")]
            if len(parts) == 1:
                parent_project, parent_name = project, parts[0]
            elif len(parts) == 2:
                parent_project, parent_name = parts
            elif len(parts) == 3:
                parent_organization = resolve_organization(ctx, parts[0])
                if parent_organization.lower() != organization.lower():
                    raise FlagError(
                        f'cannot fork across organizations: "{organization}" and "{parent_organization}"')
                parent_project, parent_name = parts[1], parts[2]
            else:
                raise FlagError(f'invalid parent value "{parent}"')
            if not parent_project or not parent_name:
                raise FlagError(f'invalid parent value "{parent}"')

            core = ctx.client_factory().core(organization)
            git = ctx.client_factory().git(organization)
            with progress(ctx):
                parent_project_details = core.get_project(parent_project)
                parent_details = git.get_repository(parent_name, project=parent_project)
            parent_repository = GitRepositoryRef(
                id=parent_details.id,
                name=parent_name,
                project=TeamProjectReference(id=parent_project_details.id),
            )
            if opts.source_branch:
                source_ref = branch_ref(opts.source_branch)

        git = ctx.client_factory().git(organization)
        to_create = GitRepositoryCreateOptions(name=name, parent_repository=parent_repository)
        with progress(ctx):
            created = git.create_repository(to_create, project=project, source_ref=source_ref)
        logger.debug("Created repository %s in %s/%s", created.id, organization, project)

        data = {
            "id": created.id,
            "name": created.name,
            "project": project,
            "sshUrl": created.ssh_url,
            "webUrl": created.web_url,
        }

        def render():
            printer = ctx.printer("list")
            printer.add_columns("ID", "Name", "Project", "SshUrl", "WebUrl")
            printer.add_field(created.id)
            printer.add_field(created.name)
            printer.add_field(project)
            printer.add_field(created.ssh_url or "")
            printer.add_field(created.web_url or "")
            printer.end_row()
            printer.render()

        render_or_export(ctx, opts, data, render)

    cmd = Command(
        use="create [organization/]<project>/<name>",
        short="Create a new repository in a project",
        example=("  # create a repository in the specified project of the default organization\n"
                 "  $ azdo repo create myproject/myrepo\n\n"
                 "  # create a repository in the specified organization and project\n"
                 "  $ azdo repo create myorg/myproject/myrepo\n\n"
                 "  # create a fork of an existing repository in another project\n"
                 "  $ azdo repo create myproject/myfork --parent otherproject/otherrepo"),
        args=exact_args(1, "cannot create: project/repo name required"),
        run=run,
    )
    cmd.add_flag(Flag("parent", help="[[ORGANIZATION/]PROJECT/]REPO to fork from (same organization)"))
    cmd.add_flag(Flag("source-branch", help="Only fork the specified branch (defaults to all branches)"))
    add_json_flags(cmd, ["id", "name", "project", "sshUrl", "webUrl"])
    return cmd


# clone

def new_cmd_repo_clone(ctx) -> Command:
    def run(opts):
        positional = opts.args[:len(opts.args) - len(opts.dash_args)]
        if len(positional) > 2:
            raise FlagError(f"accepts at most 2 arg(s), received {len(positional)}\n"
                            "Separate git clone flags with '--'.")
        repo = parse_target(ctx, positional[0]).repository()
        directory = positional[1] if len(positional) > 1 else ""

        git = ctx.client_factory().git(repo.organization)
        repository = get_git_repository(ctx, repo)
        protocol = _git_protocol(ctx, repo.organization)

        git_client = ctx.git_client()
        git_client.clone(_clone_url(repository, protocol), directory, opts.dash_args)
        clone_dir = directory or repository.name
        cloned = git_client.with_repo_dir(os.path.abspath(clone_dir))

        if opts.recurse_submodules:
            cloned.run("submodule", "sync", "--recursive")
            cloned.run("submodule", "update", "--init", "--recursive")

        if repository.is_fork:
            with_parent = git.get_repository_with_parent(repository.id, True, project=repo.project)
            parent_ref = with_parent.parent_repository
            upstream = git.get_repository(parent_ref.id, project=parent_ref.project.id)
            cloned.add_remote(opts.upstream_remote_name, _clone_url(upstream, protocol),
                              [strip_ref(upstream.default_branch)] if upstream.default_branch else None)
            cloned.run("fetch", opts.upstream_remote_name)
            cloned.run("remote", "set-branches", opts.upstream_remote_name, "*")

    cmd = Command(
        use="clone [organization/]project/repository [<directory>] [-- <gitflags>...]",
        short="Clone a repository locally",
        long=("Clone an Azure DevOps repository locally. Pass additional `git clone` flags by listing\n"
              'them after "--".\n\n'
              "If the repository name does not specify an organization, the configured default\n"
              "organization is used or the value of the AZDO_ORGANIZATION environment variable."),
        args=minimum_args(1, "cannot clone: repository argument required"),
        run=run,
    )
    cmd.add_flag(Flag("upstream-remote-name", "u", default="upstream",
                      help="Upstream remote name when cloning a fork"))
    cmd.add_flag(Flag("recurse-submodules", kind="bool", help="Update all submodules after checkout"))
    return cmd


# view

def new_cmd_repo_view(ctx) -> Command:
    def run(opts):
        repo = repository_from_arg(ctx, opts.args[0] if opts.args else "")
        if opts.web:
            open_in_browser(ctx, repo.web_url())
            return

        with progress(ctx):
            repository = get_git_repository(ctx, repo)

        def render():
            printer = ctx.printer("list")
            printer.add_columns("ID", "Name", "Project", "DefaultBranch", "Size", "IsFork", "SSHUrl", "WebUrl")
            printer.add_field(repository.id)
            printer.add_field(repository.name)
            printer.add_field(repository.project.name if repository.project else repo.project)
            printer.add_field(strip_ref(repository.default_branch))
            printer.add_field(repository.size)
            printer.add_field(bool(repository.is_fork))
            printer.add_field(repository.ssh_url)
            printer.add_field(repository.web_url)
            printer.end_row()
            printer.render()

        render_or_export(ctx, opts, repository, render)

    cmd = Command(
        use="view [[organization/]project/repository]",
        short="View a repository",
        long=("Display the details of an Azure DevOps repository.\n\n"
              "Without an argument, the repository of the current directory is displayed.\n\n"
              "With `--web`, open the repository in a web browser instead."),
        example="  $ azdo repo view\n  $ azdo repo view myproject/myrepo --web",
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("web", "w", kind="bool", help="Open a repository in the browser"))
    add_json_flags(cmd, REPOSITORY_FIELDS)
    return cmd


# delete

def new_cmd_repo_delete(ctx) -> Command:
    def run(opts):
        repo = parse_target(ctx, opts.args[0]).repository()
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        confirm_deletion(ctx, opts.yes, repo.full_name())

        repository = get_git_repository(ctx, repo)
        git = ctx.client_factory().git(repo.organization)
        with progress(ctx):
            git.delete_repository(repository.id, project=repo.project)
        ios.out.write(f"{cs.success_icon()} Repository {cs.bold(repo.full_name())} deleted\n")

    cmd = Command(
        use="delete [organization/]project/repository",
        short="Delete a Git repository in a team project",
        example=("  # delete a repository in the default organization\n"
                 "  $ azdo repo delete myproject/myrepo\n\n"
                 "  # delete a repository using the specified organization\n"
                 "  $ azdo repo delete myorg/myproject/myrepo"),
        aliases=["d"],
        args=exact_args(1, "cannot delete: repository argument required"),
        run=run,
    )
    cmd.add_flag(yes_flag())
    return cmd


# edit

def new_cmd_repo_edit(ctx) -> Command:
    def run(opts):
        editable = ("default-branch", "name", "disable", "enable")
        if not any(opts.changed(name) for name in editable):
            raise FlagError("at least one of --name, --disable, --enable or --default-branch must be specified")
        mutually_exclusive("specify only one of `--disable` or `--enable`", opts.disable, opts.enable)
        repo = parse_target(ctx, opts.args[0]).repository()
        git = ctx.client_factory().git(repo.organization)

        with progress(ctx):
            repository = get_git_repository(ctx, repo)
            disabled = bool(repository.is_disabled)
            if disabled and (not opts.enable or opts.name or opts.default_branch):
                raise AzdoError(f"repository {repo.full_name()} is disabled; only --enable can be used")
            if opts.disable and disabled:
                raise AzdoError(f"repository {repo.full_name()} is already disabled")
            if opts.enable and not disabled:
                raise AzdoError(f"repository {repo.full_name()} is already enabled")

            update = GitRepository()
            if opts.default_branch:
                update.default_branch = branch_ref(opts.default_branch)
            if opts.name:
                update.name = opts.name
            if opts.disable or opts.enable:
                update.is_disabled = bool(opts.disable)
            updated = git.update_repository(update, repository.id, project=repo.project)

        def render():
            printer = ctx.printer("list")
            printer.add_columns("ID", "Name", "Project", "DefaultBranch", "IsDisabled")
            printer.add_field(updated.id)
            printer.add_field(updated.name)
            printer.add_field(repo.project)
            printer.add_field(strip_ref(updated.default_branch))
            printer.add_field(bool(updated.is_disabled))
            printer.end_row()
            printer.render()

        render_or_export(ctx, opts, updated, render)

    cmd = Command(
        use="edit [organization/]project/repository",
        short="Edit or update an existing Git repository in a team project",
        long=("Change the default branch of a repository, rename it, or toggle its disabled state.\n\n"
              "A disabled repository only accepts `--enable`; disabling a disabled repository or\n"
              "enabling an enabled one fails."),
        example=("  $ azdo repo edit myproject/myrepo --default-branch live\n"
                 "  $ azdo repo edit myorg/myproject/myrepo --name NewRepoName\n"
                 "  $ azdo repo edit myproject/myrepo --disable"),
        args=exact_args(1, "cannot edit: repository argument required"),
        run=run,
    )
    cmd.add_flag(Flag("default-branch", help="Set the default branch for the repository"))
    cmd.add_flag(Flag("name", help="Rename the repository"))
    cmd.add_flag(Flag("disable", kind="bool", help="Disable the repository"))
    cmd.add_flag(Flag("enable", kind="bool", help="Enable the repository"))
    add_json_flags(cmd, REPOSITORY_FIELDS)
    return cmd


# restore

def new_cmd_repo_restore(ctx) -> Command:
    def run(opts):
        repo = parse_target(ctx, opts.args[0]).repository()
        git = ctx.client_factory().git(repo.organization)
        with progress(ctx):
            deleted = git.get_recycle_bin_repositories(repo.project) or []
            matches = [d for d in deleted if (d.name or "").lower() == repo.name.lower()]
            if not matches:
                raise NotFoundError(f'no deleted repository "{repo.full_name()}" found in the recycle bin')
            latest = max(matches, key=lambda d: d.deleted_date.timestamp() if d.deleted_date else 0)
            git.restore_repository_from_recycle_bin(GitRecycleBinRepositoryDetails(deleted=False),
                                                    repo.project, latest.id)
        ios = ctx.io_streams()
        ios.out.write(f"{ios.color_scheme().success_icon()} Restored repository {repo.full_name()}\n")

    cmd = Command(
        use="restore [organization/]project/repository",
        short="Restore a deleted repository",
        long=("Restore a repository from the recycle bin of its project. When several deleted\n"
              "repositories share the name, the most recently deleted one is restored."),
        example=("  $ azdo repo restore myproject/myrepo\n"
                 "  $ azdo repo restore myorg/myproject/myrepo"),
        args=exact_args(1, "cannot restore: repository argument required"),
        run=run,
    )
    return cmd


# set-default

def new_cmd_repo_set_default(ctx) -> Command:
    def run(opts):
        ios = ctx.io_streams()
        selected = None
        if opts.args:
            selected = parse_target(ctx, opts.args[0]).repository()
        if not opts.view and not opts.unset and selected is None and not ios.can_prompt():
            raise FlagError("repository required when not running interactively")

        git_client = ctx.git_client()
        if not git_client.is_local_repo():
            raise AzdoError("must be run from inside a git repository")
        remotes = ctx.repo_context().remotes()
        if not len(remotes):
            raise NoAzureDevOpsRemoteError()

        cs = ios.color_scheme()
        current = remotes.resolved_default()
        if opts.view:
            if current is not None:
                ios.out.write(f"{current}\n")
            else:
                ios.err_out.write("no default repository has been set; use `azdo repo set-default` to select one\n")
            return

        if opts.unset:
            if current is None:
                message = "no default repository has been set"
            else:
                git_client.unset_remote_resolution(current.name)
                message = f"{cs.success_icon()} Unset {current.name} as default repository"
            if ios.is_stdout_tty():
                ios.out.write(message + "\n")
            return

        if selected is not None:
            chosen = remotes.find_by_repository(selected)
        elif len(remotes) == 1:
            chosen = remotes.default()
        else:
            names = [str(remote) for remote in remotes]
            index = ctx.prompter().select("Which repository should be the default?",
                                          str(current) if current else None, names)
            chosen = list(remotes)[index]

        if current is not None:
            git_client.unset_remote_resolution(current.name)
        git_client.set_remote_resolution(chosen.name, DEFAULT_RESOLUTION)
        if ios.is_stdout_tty():
            ios.out.write(f"{cs.success_icon()} Set {chosen} as the default repository for the current directory\n")

    cmd = Command(
        use="set-default [<repository>]",
        short="Configure default repository for this directory",
        long=("Set the git remote whose Azure DevOps repository is used by commands that act on\n"
              "the current directory, such as `azdo pr create`.\n\n"
              "Only remotes pointing to an Azure DevOps organization are taken into account."),
        example=("  # interactively select a default repository\n"
                 "  $ azdo repo set-default\n\n"
                 "  # set a repository explicitly\n"
                 "  $ azdo repo set-default myorg/myproject/myrepo\n\n"
                 "  # view the current default repository\n"
                 "  $ azdo repo set-default --view"),
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("view", "v", kind="bool", help="View the current default repository"))
    cmd.add_flag(Flag("unset", "u", kind="bool", help="Unset the current default repository"))
    cmd.mark_flags_mutually_exclusive("view", "unset")
    return cmd
