"""
azdo project: list, create, delete and show team projects.
"""

import logging

from azure.devops.v7_1.core.models import TeamProject

from ..classes.operations import poll_operation
from ..cli.command import Command, Flag, exact_args, maximum_args
from ..cli.errors import AzdoError, FlagError, NoResultsError
from ..cli.json_flags import add_json_flags
from ..cli.scope import parse_organization_arg, parse_project_scope
from ..helpers.text import format_duration
from .shared import confirm, progress, render_or_export, yes_flag

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 3600.0

PROJECT_STATES = ["deleting", "new", "wellFormed", "createPending", "all", "unchanged", "deleted"]

PROJECT_FIELDS = [
    "id", "name", "state", "visibility", "process", "sourceControl", "lastUpdateTime",
    "revision", "description", "url", "defaultTeamName",
]
OPERATION_FIELDS = ["operationId", "operationStatus", "operationUrl"]


def new_cmd_project(ctx) -> Command:
    cmd = Command(
        use="project <command>",
        short="Work with Azure DevOps Projects",
        long="Create, list, show and delete the team projects of an organization.",
        example="  $ azdo project list\n  $ azdo project create myorg/myproject --visibility public",
    )
    cmd.add_command(
        new_cmd_project_list(ctx),
        new_cmd_project_create(ctx),
        new_cmd_project_delete(ctx),
        new_cmd_project_show(ctx),
    )
    return cmd


def project_list(response):
    """get_projects answers with a continuation wrapper in newer SDK releases."""
    value = getattr(response, "value", response)
    return list(value or [])


def project_details(project) -> dict:
    """Flatten a TeamProject into the fields shown and exported by the project commands."""
    capabilities = project.capabilities or {}
    default_team = project.default_team
    return {
        "id": str(project.id) if project.id else "",
        "name": project.name or "",
        "state": project.state or "",
        "visibility": project.visibility or "",
        "process": capabilities.get("processTemplate", {}).get("templateName", ""),
        "sourceControl": capabilities.get("versioncontrol", {}).get("sourceControlType", ""),
        "lastUpdateTime": project.last_update_time,
        "revision": project.revision,
        "description": project.description or "",
        "url": project.url or "",
        "defaultTeamName": default_team.name if default_team is not None else "",
    }


def _operation_details(operation) -> dict:
    return {
        "operationId": str(operation.id),
        "operationStatus": operation.status or "",
        "operationUrl": operation.url or "",
    }


def _timeout(opts) -> float:
    return opts.timeout if opts.timeout is not None else DEFAULT_TIMEOUT


def new_cmd_project_list(ctx) -> Command:
    def run(opts):
        try:
            organization = parse_organization_arg(ctx, opts.args[0] if opts.args else "")
        except FlagError as e:
            raise FlagError(f"invalid organization scope: {e}", cause=e) from e
        if opts.limit < 1:
            raise FlagError(f"invalid value for --limit: {opts.limit}")

        core = ctx.client_factory().core(organization)
        with progress(ctx):
            kwargs = {"top": opts.limit}
            if opts.state:
                kwargs["state_filter"] = opts.state
            projects = project_list(core.get_projects(**kwargs))
        if not projects:
            raise NoResultsError(f"No projects found for organization {organization}")
        projects.sort(key=lambda p: (p.name or "").lower())

        def render():
            printer = ctx.printer(opts.format)
            printer.add_columns("ID", "Name", "State")
            for project in projects:
                printer.add_field(str(project.id), truncate=None)
                printer.add_field(project.name)
                printer.add_field(project.state)
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, projects, render)

    cmd = Command(
        use="list [organization]",
        short="List the projects for an organization",
        example=("  # list the default organization's projects\n"
                 "  $ azdo project list\n\n"
                 "  # list the projects of another organization including closed ones\n"
                 "  $ azdo project list myorg --state all"),
        aliases=["ls", "l"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("format", choices=["table", "json"], default="table", help="Output format"))
    cmd.add_flag(Flag("state", choices=PROJECT_STATES, help="Project state filter"))
    cmd.add_flag(Flag("limit", "l", kind="int", default=30, help="Maximum number of projects to fetch"))
    add_json_flags(cmd, ["id", "name", "state", "visibility", "description", "url", "revision", "lastUpdateTime"])
    return cmd


def _process_id(core, name: str) -> str:
    for process in core.get_processes() or []:
        if (process.name or "").lower() == name.lower():
            return str(process.id)
    raise AzdoError(f"process '{name}' not found")


def new_cmd_project_create(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        ios = ctx.io_streams()
        core = ctx.client_factory().core(scope.organization)

        capabilities = {"versioncontrol": {"sourceControlType": opts.source_control}}
        with progress(ctx):
            if opts.process:
                capabilities["processTemplate"] = {"templateTypeId": _process_id(core, opts.process)}
            to_create = TeamProject(
                name=scope.project,
                description=opts.description or None,
                visibility=opts.visibility,
                capabilities=capabilities,
            )
            logger.debug("Queueing creation of project %s in %s", scope.project, scope.organization)
            reference = core.queue_create_project(to_create)

        if opts.no_wait:
            details = _operation_details(reference)

            def render_queued():
                printer = ctx.printer("list")
                printer.add_columns("ID", "Status", "URL")
                printer.add_field(details["operationId"], truncate=None)
                printer.add_field(details["operationStatus"])
                printer.add_field(details["operationUrl"], truncate=None)
                printer.end_row()
                printer.render()

            render_or_export(ctx, opts, details, render_queued)
            return

        with progress(ctx, f"Waiting up to {format_duration(_timeout(opts))} for the project"):
            operation = poll_operation(ctx.client_factory().operations(scope.organization), reference.id,
                                       timeout=_timeout(opts), context=ctx.context())
            project = core.get_project(scope.project, include_capabilities=True)

        details = dict(_operation_details(operation), **project_details(project))

        def render():
            printer = ctx.printer("list")
            printer.add_columns("ID", "Name", "State", "Visibility", "Process", "Source Control")
            for key in ("id", "name", "state", "visibility", "process", "sourceControl"):
                printer.add_field(details[key], truncate=None)
            printer.end_row()
            printer.render()

        if opts.exporter is None:
            cs = ios.color_scheme()
            ios.err_out.write(f"{cs.success_icon()} Created project {cs.bold(scope.qualified())}\n")
        render_or_export(ctx, opts, details, render)

    cmd = Command(
        use="create [ORGANIZATION/]PROJECT",
        short="Create a new Azure DevOps Project",
        long=("Create a new Azure DevOps project in the specified organization.\n\n"
              "The creation is queued on the server and polled until it finishes; the project\n"
              "details are printed afterwards. With --no-wait the command returns right after\n"
              "queueing and prints the operation id, status and URL instead.\n\n"
              "If the organization name is omitted, the default organization is used."),
        example=('  $ azdo project create MyProject --description "A new project" --process Scrum\n'
                 "  $ azdo project create MyOrg/MyPublicProject --source-control tfvc --visibility public\n"
                 "  $ azdo project create MyOrg/MyAsyncProject --no-wait\n"
                 "  $ azdo project create MyOrg/MyTimedProject --timeout 5m"),
        aliases=["new", "add"],
        args=exact_args(1, "project name required"),
        run=run,
    )
    cmd.add_flag(Flag("description", "d", help="Description for the new project"))
    cmd.add_flag(Flag("process", "p", default="Agile", help="Process to use (e.g., Scrum, Agile, CMMI)"))
    cmd.add_flag(Flag("source-control", "s", choices=["git", "tfvc"], default="git", help="Source control type"))
    cmd.add_flag(Flag("visibility", choices=["private", "public"], default="private", help="Project visibility"))
    cmd.add_flag(Flag("no-wait", kind="bool", help="Do not wait for the project to be created"))
    cmd.add_flag(Flag("timeout", kind="duration", help="Maximum time to wait for completion (default 1h)"))
    cmd.mark_flags_mutually_exclusive("no-wait", "timeout")
    add_json_flags(cmd, OPERATION_FIELDS + PROJECT_FIELDS)
    return cmd


def new_cmd_project_delete(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        confirm(ctx, opts.yes, f"Delete project {cs.bold(scope.qualified())}?")

        core = ctx.client_factory().core(scope.organization)
        with progress(ctx):
            project = core.get_project(scope.project)
            if project is None:
                raise NoResultsError(f'project "{scope.qualified()}" not found')
            reference = core.queue_delete_project(str(project.id))

        if opts.no_wait:
            details = _operation_details(reference)
            render_or_export(ctx, opts, details, lambda: ios.out.write(
                f"{cs.success_icon()} Project {cs.bold(scope.qualified())} deletion queued. "
                f"Operation ID: {details['operationId']}\n"))
            return

        with progress(ctx):
            operation = poll_operation(ctx.client_factory().operations(scope.organization), reference.id,
                                       timeout=_timeout(opts), context=ctx.context())
        render_or_export(ctx, opts, _operation_details(operation), lambda: ios.out.write(
            f"{cs.success_icon()} Project {cs.bold(scope.qualified())} deleted successfully.\n"))

    cmd = Command(
        use="delete [ORGANIZATION/]PROJECT",
        short="Delete a project",
        example=("  # delete a project in the default organization\n"
                 "  $ azdo project delete myproject\n\n"
                 "  # delete a project in a specific organization\n"
                 "  $ azdo project delete myorg/myproject --yes"),
        aliases=["d"],
        args=exact_args(1, "project name required"),
        run=run,
    )
    cmd.add_flag(yes_flag())
    cmd.add_flag(Flag("no-wait", kind="bool", help="Do not wait for the project deletion to complete"))
    cmd.add_flag(Flag("timeout", kind="duration", help="Maximum time to wait for completion (default 1h)"))
    cmd.mark_flags_mutually_exclusive("no-wait", "timeout")
    add_json_flags(cmd, OPERATION_FIELDS)
    return cmd


def new_cmd_project_show(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        core = ctx.client_factory().core(scope.organization)
        with progress(ctx):
            project = core.get_project(scope.project, include_capabilities=True)
        if project is None:
            raise NoResultsError(f'project "{scope.qualified()}" not found')
        details = project_details(project)

        def render():
            printer = ctx.printer("list")
            printer.add_columns("ID", "Name", "State", "Visibility", "Process", "Source Control",
                                "Last Update Time", "Revision", "Description", "URL", "Default Team")
            for key in PROJECT_FIELDS:
                printer.add_field(details[key] if details[key] is not None else "", truncate=None)
            printer.end_row()
            printer.render()

        render_or_export(ctx, opts, details, render)

    cmd = Command(
        use="show [ORGANIZATION/]PROJECT",
        short="Show details of an Azure DevOps Project",
        long=("Shows details of an Azure DevOps project in the specified organization.\n\n"
              "If the organization name is omitted, the default organization is used."),
        example="  $ azdo project show MyProject\n  $ azdo project show MyOrg/MyProject",
        aliases=["s"],
        args=exact_args(1),
        run=run,
    )
    add_json_flags(cmd, PROJECT_FIELDS)
    return cmd
