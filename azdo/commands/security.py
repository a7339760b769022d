"""
azdo security: security namespaces and the access control entries stored in them.

Permissions are bit masks over the actions a namespace defines. The commands
accept bits as hexadecimal (0x4), decimal (4), action name (Read), action
display name ("View repository") or "bit N" (the Nth bit, counting from zero).
"""

import logging
import uuid
from typing import Dict, List, Optional

from ..cli.command import Command, Flag, exact_args, maximum_args
from ..cli.errors import AzdoError, FlagError, NoResultsError
from ..cli.json_flags import add_json_flags
from ..cli.scope import (parse_organization_arg, parse_subject_target, resolve_organization,
                         resolve_scope_descriptor, resolve_subject_descriptor)
from ..helpers.text import split_comma_values
from .security_group import new_cmd_security_group
from .shared import confirm, progress, render_or_export, yes_flag

logger = logging.getLogger(__name__)

ACE_FIELDS = [
    "token", "descriptor", "inheritPermissions", "allow", "deny",
    "effectiveAllow", "effectiveDeny", "inheritedAllow", "inheritedDeny",
]
BIT_FIELDS = ["bit", "name", "displayName", "effective"]
NAMESPACE_FIELDS = [
    "namespaceId", "name", "displayName", "dataspaceCategory", "isRemotable",
    "systemBitMask", "writePermission", "readPermission", "structureValue", "useTokenTranslator", "actions",
]

TARGET_HELP = """
Accepted TARGET formats:

  ORGANIZATION/SUBJECT            subject of the organization
  ORGANIZATION/PROJECT/SUBJECT    subject scoped to a project

SUBJECT is a user principal name, a mail address, a group name or @me.
"""


def new_cmd_security(ctx) -> Command:
    cmd = Command(
        use="security <command>",
        short="Work with Azure DevOps security",
        long="Inspect security namespaces and manage the permissions granted in them.",
    )
    permission = Command(
        use="permission <command>",
        short="Manage permissions of users and groups",
        aliases=["p", "perm"],
    )
    namespace = Command(use="namespace <command>", short="Inspect security namespaces", aliases=["ns"])
    namespace.add_command(new_cmd_namespace_list(ctx), new_cmd_namespace_show(ctx))
    permission.add_command(
        namespace,
        new_cmd_permission_list(ctx),
        new_cmd_permission_show(ctx),
        new_cmd_permission_update(ctx),
        new_cmd_permission_reset(ctx),
        new_cmd_permission_delete(ctx),
    )
    cmd.add_command(permission, new_cmd_security_group(ctx))
    return cmd


# Bits


def _action_bit(action) -> int:
    return int(action.bit or 0)


def parse_permission_bits(actions, values: List[str]) -> int:
    """
    Combine permission tokens into one bit mask.

    Args:
        actions: ActionDefinitions of the namespace
        values: Tokens as given on the command line; each entry may hold
            several comma separated tokens

    Raises:
        FlagError: A token is empty, unknown or names a bit the namespace
            does not define
    """
    defined = 0
    by_name: Dict[str, int] = {}
    for action in actions or []:
        bit = _action_bit(action)
        defined |= bit
        for label in (action.name, action.display_name):
            if label:
                by_name[label.strip().lower()] = bit

    mask = 0
    for token in split_comma_values(values):
        token = token.strip()
        lowered = token.lower()
        if lowered in by_name:
            mask |= by_name[lowered]
            continue
        if lowered.startswith("bit "):
            raw = lowered[4:].strip()
            if not raw.isdigit() or int(raw) > 62:
                raise FlagError(f'invalid bit value "{token}"')
            value = 1 << int(raw)
        elif lowered.startswith("0x"):
            try:
                value = int(lowered[2:], 16)
            except ValueError as e:
                raise FlagError(f'invalid bit value "{token}"', cause=e) from e
        elif lowered.isdigit():
            value = int(lowered)
        else:
            raise FlagError(f'unrecognized permission token "{token}"')
        if value == 0:
            raise FlagError("permission bit value cannot be zero")
        if value & ~defined:
            raise FlagError(f"permission bit value {value} is not defined for this namespace")
        mask |= value
    return mask


def describe_bitmask(actions, mask: Optional[int]) -> str:
    """Names of the actions set in mask, e.g. "GenericRead, GenericContribute"."""
    mask = int(mask or 0)
    if mask == 0:
        return "None"
    names = []
    remaining = mask
    for action in actions or []:
        bit = _action_bit(action)
        if bit and mask & bit == bit:
            names.append(action.name or action.display_name or f"0x{bit:X}")
            remaining &= ~bit
    names.sort(key=str.lower)
    if remaining:
        names.append(f"Unknown (0x{remaining:X})")
    return ", ".join(names)


def bit_state(bit: int, entry: Optional[dict]) -> str:
    """Effective state of one bit in a flattened access control entry."""
    if entry is None:
        return "Not set"
    effective_allow = entry["effectiveAllow"] or entry["allow"]
    effective_deny = entry["effectiveDeny"] or entry["deny"]
    if effective_deny & bit:
        return "Deny" if entry["deny"] & bit else "Deny (inherited)"
    if effective_allow & bit:
        return "Allow" if entry["allow"] & bit else "Allow (inherited)"
    return "Not set"


# Request helpers


def parse_namespace_id(value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        raise FlagError("--namespace-id is required")
    try:
        return str(uuid.UUID(value))
    except ValueError as e:
        raise FlagError(f'invalid namespace id "{value}": {e}', cause=e) from e


def require_token(value: Optional[str]) -> str:
    value = (value or "").strip()
    if not value:
        raise FlagError("--token is required")
    return value


def resolve_subject(ctx, raw_target: str):
    """
    Parse a TARGET naming a subject and resolve the subject's descriptor.

    Returns:
        (scope, descriptor)
    """
    scope = parse_subject_target(ctx, raw_target)
    if not scope.target:
        raise FlagError("a subject is required")
    logger.debug("Resolved target organization=%s project=%s subject=%s",
                 scope.organization, scope.project, scope.target)
    if scope.project:
        resolve_scope_descriptor(ctx, scope.organization, scope.project)
    return scope, resolve_subject_descriptor(ctx, scope.organization, scope.target)


def namespace_actions(security, namespace_id: str) -> list:
    namespaces = security.query_security_namespaces(security_namespace_id=namespace_id) or []
    if not namespaces:
        raise AzdoError(f"security namespace {namespace_id} not found")
    return list(namespaces[0].actions or [])


def access_control_entries(acls, descriptor: Optional[str] = None) -> list:
    """
    Flatten access control lists into (acl, ace) pairs.

    Entries without allow and deny bits are dropped when filtering by descriptor.
    """
    entries = []
    for acl in acls or []:
        for key, ace in (acl.aces_dictionary or {}).items():
            candidate = (ace.descriptor or key or "").strip()
            if descriptor is not None:
                if candidate.lower() != descriptor.lower():
                    continue
                if not (ace.allow or ace.deny or ace.extended_info):
                    continue
            entries.append((acl, ace))
    return entries


def ace_details(acl, ace) -> dict:
    extended = ace.extended_info
    return {
        "token": acl.token or "",
        "descriptor": ace.descriptor or "",
        "inheritPermissions": bool(acl.inherit_permissions),
        "allow": int(ace.allow or 0),
        "deny": int(ace.deny or 0),
        "effectiveAllow": int(getattr(extended, "effective_allow", None) or 0),
        "effectiveDeny": int(getattr(extended, "effective_deny", None) or 0),
        "inheritedAllow": int(getattr(extended, "inherited_allow", None) or 0),
        "inheritedDeny": int(getattr(extended, "inherited_deny", None) or 0),
    }


def _yes_no(value) -> str:
    return "Yes" if value else "No"


def render_aces(ctx, actions, details: List[dict]):
    """One list block per access control entry with every mask described by action name."""
    ios = ctx.io_streams()
    if not details:
        ios.out.write("No permissions found.\n")
        return
    printer = ctx.printer("list")
    printer.add_columns("Token", "Subject Descriptor", "Inherit Permissions", "Allow", "Deny",
                        "Effective Allow", "Effective Deny", "Inherited Allow", "Inherited Deny")
    for entry in details:
        printer.add_field(entry["token"], truncate=None)
        printer.add_field(entry["descriptor"], truncate=None)
        printer.add_field(_yes_no(entry["inheritPermissions"]))
        for key in ("allow", "deny", "effectiveAllow", "effectiveDeny", "inheritedAllow", "inheritedDeny"):
            printer.add_field(describe_bitmask(actions, entry[key]), truncate=None)
        printer.end_row()
    printer.render()


def query_subject_aces(security, namespace_id: str, token: str, descriptor: str, recurse: bool = False) -> list:
    kwargs = {"token": token, "descriptors": descriptor, "include_extended_info": True}
    if recurse:
        kwargs["recurse"] = True
    acls = security.query_access_control_lists(namespace_id, **kwargs)
    return [ace_details(acl, ace) for acl, ace in access_control_entries(acls, descriptor)]


# Namespaces


def namespace_details(namespace) -> dict:
    return {
        "namespaceId": str(namespace.namespace_id or ""),
        "name": namespace.name or "",
        "displayName": namespace.display_name or "",
        "dataspaceCategory": namespace.dataspace_category or "",
        "isRemotable": bool(namespace.is_remotable),
        "systemBitMask": namespace.system_bit_mask,
        "writePermission": namespace.write_permission,
        "readPermission": namespace.read_permission,
        "structureValue": namespace.structure_value,
        "useTokenTranslator": bool(namespace.use_token_translator),
        "actions": [
            {"bit": _action_bit(action), "name": action.name or "", "displayName": action.display_name or ""}
            for action in namespace.actions or []
        ],
    }


def new_cmd_namespace_list(ctx) -> Command:
    def run(opts):
        organization = parse_organization_arg(ctx, opts.args[0] if opts.args else "")
        security = ctx.client_factory().security(organization)
        with progress(ctx):
            kwargs = {"local_only": True} if opts.local_only else {}
            namespaces = security.query_security_namespaces(**kwargs) or []
        details = sorted((namespace_details(ns) for ns in namespaces), key=lambda d: d["name"].lower())

        def render():
            if not details:
                ctx.io_streams().out.write("No security namespaces found.\n")
                return
            printer = ctx.printer("table")
            printer.add_columns("Namespace ID", "Name", "Display Name", "Dataspace", "Remotable")
            for entry in details:
                printer.add_field(entry["namespaceId"], truncate=None)
                printer.add_field(entry["name"])
                printer.add_field(entry["displayName"])
                printer.add_field(entry["dataspaceCategory"])
                printer.add_field(_yes_no(entry["isRemotable"]))
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, details, render)

    cmd = Command(
        use="list [ORGANIZATION]",
        short="List security namespaces",
        example=("  $ azdo security permission namespace list\n"
                 "  $ azdo security permission namespace list myorg --local-only"),
        aliases=["ls", "l"],
        args=maximum_args(1),
        run=run,
    )
    cmd.add_flag(Flag("local-only", kind="bool", help="Only list namespaces held by the organization itself"))
    add_json_flags(cmd, NAMESPACE_FIELDS)
    return cmd


def _find_namespace(namespaces, identifier: str):
    try:
        wanted = uuid.UUID(identifier)
    except ValueError:
        wanted = None
    if wanted is not None:
        for namespace in namespaces:
            if str(namespace.namespace_id or "").lower() == str(wanted):
                return namespace
        return None
    lowered = identifier.lower()
    matches = [ns for ns in namespaces
               if (ns.name or "").lower() == lowered or (ns.display_name or "").lower() == lowered]
    if len(matches) > 1:
        raise FlagError(f'multiple namespaces matched "{identifier}"; specify the namespace ID instead')
    return matches[0] if matches else None


def new_cmd_namespace_show(ctx) -> Command:
    def run(opts):
        value = opts.args[0].strip()
        organization, _, identifier = value.rpartition("/")
        if not identifier:
            raise FlagError("namespace must not be empty")
        organization = resolve_organization(ctx, organization)
        security = ctx.client_factory().security(organization)
        with progress(ctx):
            namespace = _find_namespace(security.query_security_namespaces() or [], identifier)
        if namespace is None:
            raise NoResultsError(f'security namespace "{identifier}" not found')
        details = namespace_details(namespace)

        def render():
            ios = ctx.io_streams()
            printer = ctx.printer("list")
            printer.add_columns("Namespace ID", "Name", "Display Name", "Dataspace", "Remotable",
                                "System Bit Mask", "Write Permission", "Read Permission", "Structure",
                                "Use Translator")
            for key in NAMESPACE_FIELDS[:-1]:
                field = details[key]
                if isinstance(field, bool):
                    field = _yes_no(field)
                printer.add_field("-" if field is None or field == "" else field, truncate=None)
            printer.end_row()
            printer.render()

            ios.out.write("\n")
            if not details["actions"]:
                ios.out.write("No actions are defined for this namespace.\n")
                return
            actions = ctx.printer("table")
            actions.add_columns("Bit", "Hex", "Name", "Display Name")
            for action in sorted(details["actions"], key=lambda a: a["bit"]):
                actions.add_field(str(action["bit"]))
                actions.add_field(f"0x{action['bit']:X}")
                actions.add_field(action["name"] or "-")
                actions.add_field(action["displayName"] or "-", truncate=None)
                actions.end_row()
            actions.render()

        render_or_export(ctx, opts, details, render)

    cmd = Command(
        use="show [ORGANIZATION/]NAMESPACE",
        short="Show a security namespace and the actions it defines",
        long="Show a security namespace, selected by its ID or by its name.",
        example=("  $ azdo security permission namespace show 52d39943-cb85-4d7f-8fa8-c6baac873819\n"
                 "  $ azdo security permission namespace show myorg/Project"),
        aliases=["s"],
        args=exact_args(1, "namespace required"),
        run=run,
    )
    add_json_flags(cmd, NAMESPACE_FIELDS)
    return cmd


# Permissions


def _namespace_flags(cmd: Command, token_required: bool = True):
    cmd.add_flag(Flag("namespace-id", "n", required=True, help="ID of the security namespace"))
    cmd.add_flag(Flag("token", required=token_required, help="Security token of the resource"))


def new_cmd_permission_list(ctx) -> Command:
    def run(opts):
        namespace_id = parse_namespace_id(opts.namespace_id)
        scope = parse_subject_target(ctx, opts.args[0] if opts.args else "")
        security = ctx.client_factory().security(scope.organization)
        descriptor = None
        with progress(ctx):
            if scope.target:
                if scope.project:
                    resolve_scope_descriptor(ctx, scope.organization, scope.project)
                descriptor = resolve_subject_descriptor(ctx, scope.organization, scope.target)
            kwargs = {"include_extended_info": True}
            if descriptor:
                kwargs["descriptors"] = descriptor
            if (opts.token or "").strip():
                kwargs["token"] = opts.token.strip()
            if opts.recurse:
                kwargs["recurse"] = True
            logger.debug("Querying access control entries %s", kwargs)
            acls = security.query_access_control_lists(namespace_id, **kwargs)
        details = [ace_details(acl, ace) for acl, ace in access_control_entries(acls, descriptor)]

        def render():
            if not details:
                ctx.io_streams().out.write("No permissions found.\n")
                return
            printer = ctx.printer("table")
            columns = ["Token", "Descriptor", "Allow", "Deny", "Effective Allow", "Effective Deny", "Inherits"]
            if descriptor:
                columns.remove("Descriptor")
            printer.add_columns(*columns)
            for entry in details:
                printer.add_field(entry["token"], truncate=None)
                if not descriptor:
                    printer.add_field(entry["descriptor"])
                for key in ("allow", "deny", "effectiveAllow", "effectiveDeny"):
                    printer.add_field(f"0x{entry[key]:X}" if entry[key] else "-")
                printer.add_field(_yes_no(entry["inheritPermissions"]))
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, details, render)

    cmd = Command(
        use="list [TARGET]",
        short="List access control entries of a namespace",
        long=("List the access control entries of a security namespace, optionally\n"
              "restricted to one subject and token.\n" + TARGET_HELP +
              "\nAn empty TARGET or a bare ORGANIZATION lists the entries of every subject."),
        example=("  $ azdo security permission list --namespace-id 5a27515b-ccd7-42c9-84f1-54c998f03866\n"
                 "  $ azdo security permission list fabrikam/contoso@example.com -n 5a27515b-ccd7-42c9-84f1-54c998f03866"),
        aliases=["ls", "l"],
        args=maximum_args(1),
        run=run,
    )
    _namespace_flags(cmd, token_required=False)
    cmd.add_flag(Flag("recurse", kind="bool", help="Include the entries of child tokens"))
    add_json_flags(cmd, ACE_FIELDS)
    return cmd


def new_cmd_permission_show(ctx) -> Command:
    def run(opts):
        namespace_id = parse_namespace_id(opts.namespace_id)
        token = require_token(opts.token)
        with progress(ctx):
            scope, descriptor = resolve_subject(ctx, opts.args[0])
            security = ctx.client_factory().security(scope.organization)
            actions = namespace_actions(security, namespace_id)
            details = query_subject_aces(security, namespace_id, token, descriptor, recurse=True)
        render_or_export(ctx, opts, details, lambda: render_aces(ctx, actions, details))

    cmd = Command(
        use="show TARGET",
        short="Show the permissions of a subject on a token",
        long="Show the explicit, inherited and effective permissions of a subject.\n" + TARGET_HELP,
        example=("  $ azdo security permission show fabrikam/contoso@example.com \\\n"
                 "      --namespace-id 2e9eb7ed-3c0a-47d4-87c1-0ffdd275fd87 --token repoV2/1234"),
        args=exact_args(1, "target required"),
        run=run,
    )
    _namespace_flags(cmd)
    add_json_flags(cmd, ACE_FIELDS)
    return cmd


def new_cmd_permission_update(ctx) -> Command:
    def run(opts):
        namespace_id = parse_namespace_id(opts.namespace_id)
        token = require_token(opts.token)
        if not opts.allow_bit and not opts.deny_bit:
            raise FlagError("at least one of --allow-bit or --deny-bit must be provided")

        with progress(ctx):
            scope, descriptor = resolve_subject(ctx, opts.args[0])
            security = ctx.client_factory().security(scope.organization)
            actions = namespace_actions(security, namespace_id)
        allow = parse_permission_bits(actions, opts.allow_bit) if opts.allow_bit else 0
        deny = parse_permission_bits(actions, opts.deny_bit) if opts.deny_bit else 0
        if allow & deny:
            raise FlagError(f"permission bits {describe_bitmask(actions, allow & deny)} are both allowed and denied")

        confirm(ctx, opts.yes, f'Update permissions for "{scope.target}" on "{token}"?')
        with progress(ctx):
            container = {
                "token": token,
                "merge": bool(opts.merge),
                "accessControlEntries": [{"descriptor": descriptor, "allow": allow, "deny": deny}],
            }
            logger.debug("Setting access control entry allow=%d deny=%d merge=%s", allow, deny, opts.merge)
            security.set_access_control_entries(container, namespace_id)
            details = query_subject_aces(security, namespace_id, token, descriptor)
        render_or_export(ctx, opts, details, lambda: render_aces(ctx, actions, details))

    cmd = Command(
        use="update TARGET",
        short="Grant or deny permissions to a subject",
        long=("Set the allowed and denied permission bits of a subject on a token.\n" + TARGET_HELP +
              "\nWithout --merge the given bits replace the existing entry of the subject.\n"
              "The effective permissions are printed afterwards."),
        example=("  $ azdo security permission update fabrikam/contoso@example.com \\\n"
                 "      --namespace-id 2e9eb7ed-3c0a-47d4-87c1-0ffdd275fd87 --token repoV2/1234 \\\n"
                 "      --allow-bit GenericRead --allow-bit 0x4 --yes"),
        aliases=["create", "u", "new"],
        args=exact_args(1, "target required"),
        run=run,
    )
    _namespace_flags(cmd)
    cmd.add_flag(Flag("allow-bit", kind="strings", help="Permission bits to allow"))
    cmd.add_flag(Flag("deny-bit", kind="strings", help="Permission bits to deny"))
    cmd.add_flag(Flag("merge", kind="bool", help="Merge with the existing entry instead of replacing it"))
    cmd.add_flag(yes_flag())
    add_json_flags(cmd, ACE_FIELDS)
    return cmd


def bit_summary(actions, mask: int, details: List[dict]) -> List[dict]:
    """State of every namespace action selected by mask for the subject's entry."""
    summary = []
    entry = details[0] if details else None
    for action in sorted(actions or [], key=_action_bit):
        bit = _action_bit(action)
        if not bit or not mask & bit:
            continue
        summary.append({
            "bit": bit,
            "name": action.name or "",
            "displayName": action.display_name or "",
            "effective": bit_state(bit, entry),
        })
    return summary


def new_cmd_permission_reset(ctx) -> Command:
    def run(opts):
        namespace_id = parse_namespace_id(opts.namespace_id)
        token = require_token(opts.token)
        if not opts.permission_bit:
            raise FlagError("--permission-bit is required")

        with progress(ctx):
            scope, descriptor = resolve_subject(ctx, opts.args[0])
            security = ctx.client_factory().security(scope.organization)
            actions = namespace_actions(security, namespace_id)
        mask = parse_permission_bits(actions, opts.permission_bit)

        confirm(ctx, opts.yes, f'Reset permissions for "{scope.target}" on "{token}"?')
        with progress(ctx):
            logger.debug("Removing permission bits 0x%X from %s", mask, descriptor)
            security.remove_permission(namespace_id, descriptor, permissions=mask, token=token)
            summary = bit_summary(actions, mask, query_subject_aces(security, namespace_id, token, descriptor))

        def render():
            if not summary:
                ctx.io_streams().out.write("No permissions changed.\n")
                return
            printer = ctx.printer("list")
            printer.add_columns("Action", "Bit", "Effective")
            for entry in summary:
                printer.add_field(entry["displayName"] or entry["name"], truncate=None)
                printer.add_field("%d (0x%X)" % (entry["bit"], entry["bit"]))
                printer.add_field(entry["effective"])
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, summary, render)

    cmd = Command(
        use="reset TARGET",
        short="Reset permission bits of a subject to not set",
        long=("Remove explicit allow and deny bits of a subject on a token so they fall\n"
              "back to the inherited value.\n" + TARGET_HELP),
        example=("  $ azdo security permission reset fabrikam/contoso@example.com \\\n"
                 "      --namespace-id 2e9eb7ed-3c0a-47d4-87c1-0ffdd275fd87 --token repoV2/1234 \\\n"
                 "      --permission-bit GenericContribute --yes"),
        args=exact_args(1, "target required"),
        run=run,
    )
    _namespace_flags(cmd)
    cmd.add_flag(Flag("permission-bit", kind="strings", required=True, help="Permission bits to reset"))
    cmd.add_flag(yes_flag())
    add_json_flags(cmd, BIT_FIELDS)
    return cmd


def new_cmd_permission_delete(ctx) -> Command:
    def run(opts):
        namespace_id = parse_namespace_id(opts.namespace_id)
        token = require_token(opts.token)
        with progress(ctx):
            scope, descriptor = resolve_subject(ctx, opts.args[0])
        confirm(ctx, opts.yes, f'Delete permissions for "{scope.target}" on "{token}"?')

        security = ctx.client_factory().security(scope.organization)
        with progress(ctx):
            logger.debug("Removing access control entries of %s on %s", descriptor, token)
            if not security.remove_access_control_entries(namespace_id, token=token, descriptors=descriptor):
                raise AzdoError("failed to delete permissions: service returned no confirmation")
            remaining = security.query_access_control_lists(
                namespace_id, token=token, descriptors=descriptor, include_extended_info=True)
        for _, ace in access_control_entries(remaining, descriptor):
            if ace.allow or ace.deny:
                raise AzdoError(f'descriptor "{descriptor}" still has permissions on token "{token}"')
        ctx.io_streams().out.write("Permissions deleted.\n")

    cmd = Command(
        use="delete TARGET",
        short="Delete the access control entry of a subject",
        long="Remove every explicit permission of a subject on a token.\n" + TARGET_HELP,
        example=("  $ azdo security permission delete fabrikam/contoso@example.com \\\n"
                 "      --namespace-id 2e9eb7ed-3c0a-47d4-87c1-0ffdd275fd87 --token repoV2/1234 --yes"),
        aliases=["d", "rm"],
        args=exact_args(1, "target required"),
        run=run,
    )
    _namespace_flags(cmd)
    cmd.add_flag(yes_flag())
    return cmd
