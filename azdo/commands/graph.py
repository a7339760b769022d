"""
azdo graph: users and groups known to an organization.
"""

import logging

from azure.devops.v7_1.graph.models import GraphSubjectQuery

from ..cli.command import Command, Flag, maximum_args
from ..cli.errors import FlagError, NoResultsError
from ..cli.json_flags import add_json_flags
from ..cli.scope import parse_organization_arg, parse_project_scope, resolve_scope_descriptor
from .shared import progress, render_or_export

logger = logging.getLogger(__name__)

USER_FIELDS = ["descriptor", "displayName", "principalName", "mailAddress", "origin", "subjectKind"]


def new_cmd_graph(ctx) -> Command:
    cmd = Command(
        use="graph <command>",
        short="Manage identities and memberships",
        long="Query the users and groups of an Azure DevOps organization.",
    )
    user = Command(use="user <command>", short="Manage users")
    user.add_command(new_cmd_graph_user_list(ctx))
    cmd.add_command(user)
    return cmd


def _continuation(value) -> str:
    # Header value; older SDK releases hand it over as a list
    if isinstance(value, (list, tuple)):
        value = value[0] if value else ""
    return value or ""


def list_users(graph, subject_types, scope_descriptor, limit: int) -> list:
    users = []
    token = None
    while len(users) < limit:
        page = graph.list_users(subject_types=subject_types, continuation_token=token,
                                scope_descriptor=scope_descriptor)
        users.extend((page.graph_users or [])[:limit - len(users)])
        token = _continuation(page.continuation_token)
        if not token:
            break
    return users


def search_users(graph, query: str, scope_descriptor, limit: int) -> list:
    subjects = graph.query_subjects(GraphSubjectQuery(
        query=query, subject_kind=["User"], scope_descriptor=scope_descriptor)) or []
    return [graph.get_user(subject.descriptor) for subject in subjects[:limit]]


def new_cmd_graph_user_list(ctx) -> Command:
    def run(opts):
        if opts.limit < 1:
            raise FlagError(f"invalid value for --limit: {opts.limit}")
        value = opts.args[0] if opts.args else ""
        if "/" in value:
            scope = parse_project_scope(ctx, value)
            organization, project = scope.organization, scope.project
        else:
            organization, project = parse_organization_arg(ctx, value), ""
        graph = ctx.client_factory().graph(organization)

        with progress(ctx):
            _, scope_descriptor = resolve_scope_descriptor(ctx, organization, project)
            if opts.filter:
                users = search_users(graph, opts.filter, scope_descriptor, opts.limit)
            else:
                users = list_users(graph, opts.subject_type or ["aad"], scope_descriptor, opts.limit)
        if not users:
            raise NoResultsError(f"no users found in organization {organization}")
        users.sort(key=lambda user: (user.display_name or "").lower())

        def render():
            printer = ctx.printer("table")
            printer.add_columns("Descriptor", "Display Name", "Principal Name", "Mail")
            for user in users:
                printer.add_field(user.descriptor)
                printer.add_field(user.display_name, truncate=None)
                printer.add_field(user.principal_name)
                printer.add_field(user.mail_address)
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, users, render)

    cmd = Command(
        use="list [ORGANIZATION[/PROJECT]]",
        short="List users in Azure DevOps",
        long=("List the users of an organization, or of one of its projects when the\n"
              "argument has the ORGANIZATION/PROJECT form.\n\n"
              "Users are filtered by subject type (aad unless --subject-type is given);\n"
              "--filter runs a prefix search on names instead."),
        example=("  $ azdo graph user list\n"
                 '  $ azdo graph user list "myorg/My Project"\n'
                 "  $ azdo graph user list --subject-type msa --limit 10\n"
                 '  $ azdo graph user list --filter "john.doe"'),
        aliases=["ls"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("subject-type", "T", kind="strings", help='Subject types filter (default "aad")'))
    cmd.add_flag(Flag("filter", "F", help="Filter users by name prefix"))
    cmd.add_flag(Flag("limit", "L", kind="int", default=20, help="Maximum number of users to return"))
    add_json_flags(cmd, USER_FIELDS)
    return cmd
