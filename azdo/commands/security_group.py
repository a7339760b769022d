"""
azdo security group: security groups of an organization or project and their memberships.

Groups are addressed as ORGANIZATION/GROUP or ORGANIZATION/PROJECT/GROUP.
Several groups can share a display name; --descriptor picks one of them.
"""

import logging
import re
from typing import List, Optional

from azure.devops.v7_1.graph.models import GraphSubjectLookup, GraphSubjectLookupKey

from ..cli.command import Command, Flag, exact_args, maximum_args
from ..cli.errors import AzdoError, FlagError, NoResultsError, is_not_found_error, mutually_exclusive
from ..cli.json_flags import add_json_flags
from ..cli.scope import (ME, parse_organization_arg, parse_project_scope, parse_subject_target,
                         resolve_scope_descriptor)
from .graph import _continuation
from .shared import confirm, progress, render_or_export, yes_flag

logger = logging.getLogger(__name__)

GROUP_FIELDS = ["descriptor", "displayName", "description", "mailAddress", "principalName", "origin", "originId",
                "domain", "url"]
MEMBER_FIELDS = ["descriptor", "displayName", "url", "legacyDescriptor", "origin", "originId", "subjectKind"]
MEMBERSHIP_RESULT_FIELDS = ["groupDescriptor", "groupDisplayName", "memberDescriptor", "memberDisplayName",
                            "memberSubjectKind", "status"]

DESCRIPTOR_PATTERN = re.compile(r"^[^@\s]+\.[^@\s]+$")


def new_cmd_security_group(ctx) -> Command:
    cmd = Command(
        use="group <command>",
        short="Manage security groups",
        long="Manage the security groups of an Azure DevOps organization or project.",
        aliases=["g", "grp"],
    )
    membership = Command(use="membership <command>", short="Manage security group memberships", aliases=["m"])
    membership.add_command(
        new_cmd_membership_list(ctx),
        new_cmd_membership_add(ctx),
        new_cmd_membership_remove(ctx),
    )
    cmd.add_command(
        new_cmd_group_list(ctx),
        new_cmd_group_create(ctx),
        new_cmd_group_delete(ctx),
        membership,
    )
    return cmd


def parse_group_scope(ctx, value: str):
    """ORGANIZATION or ORGANIZATION/PROJECT; empty selects the default organization."""
    if "/" in value:
        scope = parse_project_scope(ctx, value)
        return scope.organization, scope.project
    return parse_organization_arg(ctx, value), ""


def parse_group_target(ctx, value: str):
    scope = parse_subject_target(ctx, value)
    if not scope.target:
        raise FlagError(f'invalid group "{value}", expected ORGANIZATION/GROUP or ORGANIZATION/PROJECT/GROUP')
    return scope


def list_groups(graph, scope_descriptor: Optional[str] = None, subject_types: Optional[List[str]] = None) -> list:
    groups = []
    token = None
    while True:
        page = graph.list_groups(scope_descriptor=scope_descriptor, subject_types=subject_types,
                                 continuation_token=token)
        groups.extend(page.graph_groups or [])
        token = _continuation(page.continuation_token)
        if not token:
            return groups


def find_group(ctx, organization: str, project: str, name: str, descriptor: str = ""):
    """
    Find the group called name, case-insensitively, in the organization or project.

    Raises:
        NoResultsError: No group has the name
        AzdoError: Several groups match and descriptor does not pick one
    """
    _, scope_descriptor = resolve_scope_descriptor(ctx, organization, project)
    graph = ctx.client_factory().graph(organization)
    matches = [g for g in list_groups(graph, scope_descriptor) if (g.display_name or "").lower() == name.lower()]
    if not matches:
        raise NoResultsError(f'no security group found with name "{name}"')
    if descriptor:
        for group in matches:
            if group.descriptor == descriptor:
                return group
        raise AzdoError(f'no group "{name}" has the descriptor "{descriptor}"')
    if len(matches) > 1:
        raise AzdoError(f'multiple groups found with name "{name}"; specify --descriptor')
    return matches[0]


def lookup_subjects(graph, descriptors: List[str]) -> dict:
    if not descriptors:
        return {}
    keys = [GraphSubjectLookupKey(descriptor=d) for d in descriptors]
    return graph.lookup_subjects(GraphSubjectLookup(lookup_keys=keys)) or {}


def resolve_member_descriptor(ctx, organization: str, member: str) -> str:
    """
    Graph descriptor of a user or group given by descriptor, mail address,
    principal name or @me.
    """
    member = member.strip()
    if not member:
        raise FlagError("member must not be empty")
    if member.lower() == ME:
        user = ctx.client_factory().rest(organization).get_authenticated_user()
        descriptor = user.get("subjectDescriptor") or ""
        if not descriptor:
            raise AzdoError("the authenticated user does not have a subject descriptor")
        return descriptor
    if DESCRIPTOR_PATTERN.match(member):
        return member
    identity = ctx.client_factory().identity(organization)
    identities = identity.read_identities(search_filter="General", filter_value=member) or []
    if not identities:
        raise AzdoError(f'no identity found for "{member}"')
    found = identities[0]
    descriptor = getattr(found, "subject_descriptor", None) or ""
    if not descriptor:
        result = ctx.client_factory().graph(organization).get_descriptor(str(found.id))
        descriptor = getattr(result, "value", None) or ""
    if not descriptor:
        raise AzdoError(f'identity "{member}" does not have a descriptor')
    logger.debug("Resolved member %s to %s", member, descriptor)
    return descriptor


def _render_group(ctx, group):
    printer = ctx.printer("list")
    printer.add_columns("Descriptor", "PrincipalName", "DisplayName", "Description")
    printer.add_field(group.get("descriptor"))
    printer.add_field(group.get("principalName"))
    printer.add_field(group.get("displayName"))
    printer.add_field(group.get("description"))
    printer.end_row()
    printer.render()


# list

def new_cmd_group_list(ctx) -> Command:
    def run(opts):
        pattern = None
        if opts.filter:
            try:
                pattern = re.compile(opts.filter, re.IGNORECASE)
            except re.error as e:
                raise FlagError(f"invalid filter regex: {e}", cause=e) from e
        if any(not value.strip() for value in opts.subject_types):
            raise FlagError("--subject-types contains an empty value")
        organization, project = parse_group_scope(ctx, opts.args[0] if opts.args else "")
        graph = ctx.client_factory().graph(organization)

        with progress(ctx):
            _, scope_descriptor = resolve_scope_descriptor(ctx, organization, project)
            groups = list_groups(graph, scope_descriptor, opts.subject_types or None)
        if pattern is not None:
            groups = [g for g in groups if pattern.search(g.display_name or "")]
        if not groups:
            raise NoResultsError(f"no security groups found in {organization}/{project}".rstrip("/"))

        def render():
            printer = ctx.printer("table")
            printer.add_columns("ID", "DisplayName", "Description", "Principal Name")
            for group in groups:
                printer.add_field(group.descriptor, truncate=None)
                printer.add_field(group.display_name)
                printer.add_field(group.description)
                printer.add_field(group.principal_name)
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, groups, render)

    cmd = Command(
        use="list [ORGANIZATION[/PROJECT]]",
        short="List security groups",
        long="List the security groups of an organization, or of a project when the argument names one.",
        example=("  $ azdo security group list\n"
                 "  $ azdo security group list myorg/myproject --filter 'dev.*team'\n"
                 "  $ azdo security group list --filter '-qa$' --subject-types vssgp,aadgp"),
        aliases=["ls", "l"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("filter", "f", help="Case-insensitive regular expression matched against group names"))
    cmd.add_flag(Flag("subject-types", kind="strings", help="Subject types to include, e.g. vssgp,aadgp"))
    add_json_flags(cmd, GROUP_FIELDS)
    return cmd


# create

def new_cmd_group_create(ctx) -> Command:
    def run(opts):
        mutually_exclusive("specify only one of --name, --email or --origin-id", opts.name, opts.email,
                           opts.origin_id)
        if opts.description and not opts.name:
            raise FlagError("--description can only be used with --name")
        if opts.name:
            creation_context = {"displayName": opts.name}
            if opts.description:
                creation_context["description"] = opts.description
        elif opts.email:
            creation_context = {"mailAddress": opts.email}
        elif opts.origin_id:
            creation_context = {"originId": opts.origin_id}
        else:
            raise FlagError("exactly one of --name, --email or --origin-id must be specified")
        organization, project = parse_group_scope(ctx, opts.args[0] if opts.args else "")

        with progress(ctx):
            _, scope_descriptor = resolve_scope_descriptor(ctx, organization, project)
            group = ctx.client_factory().rest(organization).create_group(
                creation_context, scope_descriptor=scope_descriptor, group_descriptors=opts.groups or None)

        render_or_export(ctx, opts, group, lambda: _render_group(ctx, group))

    cmd = Command(
        use="create [ORGANIZATION[/PROJECT]]",
        short="Create a security group",
        long=("Create a security group in an organization or project.\n\n"
              "A new group is created with --name; --email and --origin-id bring an existing\n"
              "Microsoft Entra group into Azure DevOps instead."),
        example=('  $ azdo security group create myorg/myproject --name "Release Managers"\n'
                 "  $ azdo security group create --email devs@example.com"),
        aliases=["add", "new", "c"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("name", help="Name of the new security group"))
    cmd.add_flag(Flag("description", help="Description of the new security group"))
    cmd.add_flag(Flag("email", help="Mail address of an existing Microsoft Entra group"))
    cmd.add_flag(Flag("origin-id", help="Origin ID of an existing Microsoft Entra group"))
    cmd.add_flag(Flag("groups", kind="strings", help="Descriptors of groups the new group joins"))
    add_json_flags(cmd, GROUP_FIELDS)
    return cmd


# delete

def new_cmd_group_delete(ctx) -> Command:
    def run(opts):
        scope = parse_group_target(ctx, opts.args[0])
        with progress(ctx):
            group = find_group(ctx, scope.organization, scope.project, scope.target, opts.descriptor)
        confirm(ctx, opts.yes, f'Delete security group "{group.display_name}"?')
        with progress(ctx):
            ctx.client_factory().graph(scope.organization).delete_group(group.descriptor)
        ios = ctx.io_streams()
        ios.out.write(f'{ios.color_scheme().success_icon()} Deleted security group "{group.display_name}"\n')

    cmd = Command(
        use="delete ORGANIZATION/GROUP | ORGANIZATION/PROJECT/GROUP",
        short="Delete a security group",
        example=('  $ azdo security group delete "myorg/myproject/Release Managers" --yes'),
        aliases=["d", "del", "rm"],
        args=exact_args(1, "group argument required"),
        run=run,
    )
    cmd.add_flag(Flag("descriptor", help="Descriptor of the group when several share the name"))
    cmd.add_flag(yes_flag())
    return cmd


# membership

def new_cmd_membership_list(ctx) -> Command:
    def run(opts):
        scope = parse_group_target(ctx, opts.args[0])
        graph = ctx.client_factory().graph(scope.organization)
        member_of = opts.relationship == "memberof"
        with progress(ctx):
            group = find_group(ctx, scope.organization, scope.project, scope.target, opts.descriptor)
            memberships = graph.list_memberships(group.descriptor, direction="up" if member_of else "down") or []
            descriptors = [m.container_descriptor if member_of else m.member_descriptor for m in memberships]
            subjects = lookup_subjects(graph, descriptors)

        ios = ctx.io_streams()
        if not descriptors:
            ios.out.write(f'No members found for group "{scope}"\n')
            return
        members = [subjects[d] for d in descriptors if d in subjects]
        members.sort(key=lambda s: (s.display_name or "").lower())

        def render():
            printer = ctx.printer("table")
            printer.add_columns("DisplayName", "Descriptor", "SubjectType")
            for subject in members:
                printer.add_field(subject.display_name)
                printer.add_field(subject.descriptor, truncate=None)
                printer.add_field(subject.subject_kind)
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, members, render)

    cmd = Command(
        use="list ORGANIZATION/GROUP | ORGANIZATION/PROJECT/GROUP",
        short="List the members of a security group",
        long=("List the direct members of a security group, or with `--relationship memberof`\n"
              "the groups it is a member of."),
        example='  $ azdo security group membership list "myorg/myproject/Contributors"',
        aliases=["ls", "l"],
        args=exact_args(1, "group argument required"),
        run=run,
    )
    cmd.add_flag(Flag("relationship", "r", choices=["members", "memberof"], default="members",
                      help="Relationship to list"))
    cmd.add_flag(Flag("descriptor", help="Descriptor of the group when several share the name"))
    add_json_flags(cmd, MEMBER_FIELDS)
    return cmd


def _membership_result(group, descriptor: str, subject, status: str) -> dict:
    return {
        "groupDescriptor": group.descriptor,
        "groupDisplayName": group.display_name,
        "memberDescriptor": descriptor,
        "memberDisplayName": getattr(subject, "display_name", None),
        "memberSubjectKind": getattr(subject, "subject_kind", None),
        "status": status,
    }


def _render_membership_results(ctx, results: List[dict]):
    printer = ctx.printer("table")
    printer.add_columns("Member", "Descriptor", "Status")
    for result in results:
        printer.add_field(result["memberDisplayName"] or "")
        printer.add_field(result["memberDescriptor"], truncate=None)
        printer.add_field(result["status"])
        printer.end_row()
    printer.render()


def new_cmd_membership_add(ctx) -> Command:
    def run(opts):
        members = [m for m in opts.member if m.strip()]
        if not members:
            raise FlagError("at least one --member value must be provided")
        scope = parse_group_target(ctx, opts.args[0])
        graph = ctx.client_factory().graph(scope.organization)

        results = []
        with progress(ctx):
            group = find_group(ctx, scope.organization, scope.project, scope.target, opts.descriptor)
            descriptors = [resolve_member_descriptor(ctx, scope.organization, m) for m in members]
            subjects = lookup_subjects(graph, descriptors)
            for descriptor in descriptors:
                try:
                    graph.check_membership_existence(descriptor, group.descriptor)
                except Exception as e:
                    if not is_not_found_error(e):
                        raise
                    graph.add_membership(descriptor, group.descriptor)
                    status = "added"
                else:
                    status = "already member"
                results.append(_membership_result(group, descriptor, subjects.get(descriptor), status))

        render_or_export(ctx, opts, results, lambda: _render_membership_results(ctx, results))

    cmd = Command(
        use="add ORGANIZATION/GROUP | ORGANIZATION/PROJECT/GROUP",
        short="Add members to a security group",
        long=("Add users or groups to a security group. Members are given by mail address,\n"
              "principal name, descriptor or @me. Existing members are reported and skipped."),
        example=('  $ azdo security group membership add "myorg/Project Collection Administrators" '
                 "--member jane@example.com\n"
                 "  $ azdo security group membership add myorg/myproject/Readers --member vssgp.Uy0xLTItMw=="),
        aliases=["a"],
        args=exact_args(1, "group argument required"),
        run=run,
    )
    cmd.add_flag(Flag("member", "m", kind="strings", required=True, help="Members to add, comma separated"))
    cmd.add_flag(Flag("descriptor", help="Descriptor of the group when several share the name"))
    add_json_flags(cmd, MEMBERSHIP_RESULT_FIELDS)
    return cmd


def new_cmd_membership_remove(ctx) -> Command:
    def run(opts):
        members = [m for m in opts.member if m.strip()]
        if not members:
            raise FlagError("at least one --member value must be provided")
        scope = parse_group_target(ctx, opts.args[0])
        graph = ctx.client_factory().graph(scope.organization)

        with progress(ctx):
            group = find_group(ctx, scope.organization, scope.project, scope.target, opts.descriptor)
            descriptors = [resolve_member_descriptor(ctx, scope.organization, m) for m in members]
        confirm(ctx, opts.yes, f'Remove {len(descriptors)} member(s) from security group "{group.display_name}"?')

        results = []
        with progress(ctx):
            subjects = lookup_subjects(graph, descriptors)
            for descriptor in descriptors:
                try:
                    graph.remove_membership(descriptor, group.descriptor)
                    status = "removed"
                except Exception as e:
                    if not is_not_found_error(e):
                        raise
                    status = "not a member"
                results.append(_membership_result(group, descriptor, subjects.get(descriptor), status))

        render_or_export(ctx, opts, results, lambda: _render_membership_results(ctx, results))

    cmd = Command(
        use="remove ORGANIZATION/GROUP | ORGANIZATION/PROJECT/GROUP",
        short="Remove members from a security group",
        example='  $ azdo security group membership remove myorg/myproject/Readers --member jane@example.com --yes',
        aliases=["rm", "r"],
        args=exact_args(1, "group argument required"),
        run=run,
    )
    cmd.add_flag(Flag("member", "m", kind="strings", required=True, help="Members to remove, comma separated"))
    cmd.add_flag(Flag("descriptor", help="Descriptor of the group when several share the name"))
    cmd.add_flag(yes_flag())
    add_json_flags(cmd, MEMBERSHIP_RESULT_FIELDS)
    return cmd
