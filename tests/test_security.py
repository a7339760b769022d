import json
from unittest.mock import MagicMock

import pytest
from azure.devops.v7_1.graph.models import GraphGroup, GraphSubject
from azure.devops.v7_1.security.models import (
    AccessControlEntry,
    AccessControlList,
    AceExtendedInformation,
    ActionDefinition,
    SecurityNamespaceDescription,
)

from azdo.cli.errors import FlagError, NotFoundError
from azdo.commands.security import (
    bit_state,
    describe_bitmask,
    parse_namespace_id,
    parse_permission_bits,
)

NAMESPACE_ID = "2e9eb7ed-3c0a-47d4-87c1-0ffdd275fd87"
DESCRIPTOR = "Microsoft.IdentityModel.Claims.ClaimsIdentity;jane@example.com"

ACTIONS = [
    ActionDefinition(bit=1, name="Read", display_name="View repository"),
    ActionDefinition(bit=2, name="Administer", display_name="Administer"),
    ActionDefinition(bit=4, name="Contribute", display_name="Contribute to repository"),
]


def namespace():
    return SecurityNamespaceDescription(
        namespace_id=NAMESPACE_ID, name="Git Repositories", display_name="Git Repositories",
        dataspace_category="Git", is_remotable=True, actions=ACTIONS)


def acl(allow=0, deny=0, effective_allow=None, effective_deny=0, token="repoV2/1"):
    entry = AccessControlEntry(
        descriptor=DESCRIPTOR, allow=allow, deny=deny,
        extended_info=AceExtendedInformation(
            effective_allow=allow if effective_allow is None else effective_allow,
            effective_deny=effective_deny))
    return AccessControlList(token=token, inherit_permissions=True, aces_dictionary={DESCRIPTOR: entry})


@pytest.fixture
def security(harness):
    harness.client("identity").read_identities.return_value = [MagicMock(descriptor=DESCRIPTOR)]
    security = harness.client("security")
    security.query_security_namespaces.return_value = [namespace()]
    return security


class TestPermissionBits:
    def test_names_display_names_and_numbers(self):
        assert parse_permission_bits(ACTIONS, ["read"]) == 1
        assert parse_permission_bits(ACTIONS, ["contribute to repository"]) == 4
        assert parse_permission_bits(ACTIONS, ["0x4", "2"]) == 6
        assert parse_permission_bits(ACTIONS, ["bit 1"]) == 2
        assert parse_permission_bits(ACTIONS, ["Read,Administer"]) == 3

    @pytest.mark.parametrize("value,message", [
        ("Delete", 'unrecognized permission token "Delete"'),
        ("0", "permission bit value cannot be zero"),
        ("0x8", "permission bit value 8 is not defined for this namespace"),
        ("0xZZ", 'invalid bit value "0xZZ"'),
        ("bit x", 'invalid bit value "bit x"'),
    ])
    def test_invalid(self, value, message):
        with pytest.raises(FlagError) as exc:
            parse_permission_bits(ACTIONS, [value])
        assert str(exc.value) == message

    def test_describe_bitmask(self):
        assert describe_bitmask(ACTIONS, 0) == "None"
        assert describe_bitmask(ACTIONS, 5) == "Contribute, Read"
        assert describe_bitmask(ACTIONS, 0x11) == "Read, Unknown (0x10)"

    def test_bit_state(self):
        entry = {"allow": 1, "deny": 0, "effectiveAllow": 5, "effectiveDeny": 2}
        assert bit_state(1, entry) == "Allow"
        assert bit_state(4, entry) == "Allow (inherited)"
        assert bit_state(2, entry) == "Deny (inherited)"
        assert bit_state(8, entry) == "Not set"
        assert bit_state(1, None) == "Not set"

    def test_namespace_id(self):
        assert parse_namespace_id(NAMESPACE_ID.upper()) == NAMESPACE_ID
        with pytest.raises(FlagError, match="--namespace-id is required"):
            parse_namespace_id(" ")
        with pytest.raises(FlagError, match='invalid namespace id "nope"'):
            parse_namespace_id("nope")


class TestPermissionUpdate:
    ARGS = ("security", "permission", "update", "myorg/jane@example.com",
            "--namespace-id", NAMESPACE_ID, "--token", "repoV2/1")

    def test_update_sets_one_entry_and_renders_result(self, harness, security):
        security.query_access_control_lists.return_value = [acl(allow=5)]

        assert harness.run(*self.ARGS, "--allow-bit", "Read", "--allow-bit", "0x4", "-y") == 0

        harness.client("identity").read_identities.assert_called_once_with(
            search_filter="General", filter_value="jane@example.com")
        security.set_access_control_entries.assert_called_once_with({
            "token": "repoV2/1",
            "merge": False,
            "accessControlEntries": [{"descriptor": DESCRIPTOR, "allow": 5, "deny": 0}],
        }, NAMESPACE_ID)
        output = harness.output()
        assert "Token: repoV2/1\n" in output
        assert "Allow: Contribute, Read\n" in output
        assert "Deny: None\n" in output
        assert "Effective Allow: Contribute, Read\n" in output

    def test_unknown_bit_name_is_rejected_before_mutation(self, harness, security):
        assert harness.run(*self.ARGS, "--allow-bit", "Delete", "-y") == 1
        assert 'unrecognized permission token "Delete"' in harness.errors()
        security.set_access_control_entries.assert_not_called()

    def test_allow_and_deny_must_not_overlap(self, harness, security):
        assert harness.run(*self.ARGS, "--allow-bit", "Read", "--deny-bit", "0x1", "-y") == 1
        assert "are both allowed and denied" in harness.errors()
        security.set_access_control_entries.assert_not_called()

    def test_bits_required(self, harness, security):
        assert harness.run(*self.ARGS, "-y") == 1
        assert "at least one of --allow-bit or --deny-bit must be provided" in harness.errors()

    def test_requires_subject(self, harness, security):
        assert harness.run("security", "permission", "update", "myorg", "--namespace-id", NAMESPACE_ID,
                           "--token", "t", "--allow-bit", "Read", "-y") == 1
        assert "a subject is required" in harness.errors()

    def test_confirmation_declined(self, harness, security):
        harness.ios.set_stdin_tty(True)
        harness.ios.set_stdout_tty(True)
        harness.prompter.confirm.return_value = False
        assert harness.run(*self.ARGS, "--allow-bit", "Read") == 2
        security.set_access_control_entries.assert_not_called()


class TestPermissionShowResetDelete:
    ARGS = ("myorg/jane@example.com", "--namespace-id", NAMESPACE_ID, "--token", "repoV2/1")

    def test_list_for_subject(self, harness, security):
        security.query_access_control_lists.return_value = [acl(allow=1)]
        assert harness.run("security", "permission", "list", "myorg/jane@example.com", "-n", NAMESPACE_ID) == 0
        security.query_access_control_lists.assert_called_once_with(
            NAMESPACE_ID, include_extended_info=True, descriptors=DESCRIPTOR)
        assert harness.output() == "repoV2/1\t0x1\t-\t0x1\t-\tYes\n"

    def test_show_json(self, harness, security):
        security.query_access_control_lists.return_value = [acl(allow=1, deny=2)]
        assert harness.run("security", "permission", "show", *self.ARGS, "--json", "token,allow,deny") == 0
        assert json.loads(harness.output()) == [{"token": "repoV2/1", "allow": 1, "deny": 2}]
        assert security.query_access_control_lists.call_args[1]["recurse"] is True

    def test_show_nothing(self, harness, security):
        security.query_access_control_lists.return_value = []
        assert harness.run("security", "permission", "show", *self.ARGS) == 0
        assert harness.output() == "No permissions found.\n"

    def test_reset(self, harness, security):
        security.query_access_control_lists.return_value = [acl(allow=0, effective_allow=4)]
        assert harness.run("security", "permission", "reset", *self.ARGS,
                           "--permission-bit", "Contribute", "--yes") == 0
        security.remove_permission.assert_called_once_with(
            NAMESPACE_ID, DESCRIPTOR, permissions=4, token="repoV2/1")
        assert harness.output() == (
            "Action: Contribute to repository\n"
            "Bit: 4 (0x4)\n"
            "Effective: Allow (inherited)\n")

    def test_delete(self, harness, security):
        security.remove_access_control_entries.return_value = True
        security.query_access_control_lists.return_value = []
        assert harness.run("security", "permission", "delete", *self.ARGS, "-y") == 0
        security.remove_access_control_entries.assert_called_once_with(
            NAMESPACE_ID, token="repoV2/1", descriptors=DESCRIPTOR)
        assert harness.output() == "Permissions deleted.\n"

    def test_delete_verifies_removal(self, harness, security):
        security.remove_access_control_entries.return_value = True
        security.query_access_control_lists.return_value = [acl(allow=1)]
        assert harness.run("security", "permission", "delete", *self.ARGS, "-y") == 1
        assert "still has permissions" in harness.errors()


class TestNamespaces:
    def test_list(self, harness, security):
        assert harness.run("security", "permission", "namespace", "list", "--local-only") == 0
        security.query_security_namespaces.assert_called_once_with(local_only=True)
        assert harness.output() == f"{NAMESPACE_ID}\tGit Repositories\tGit Repositories\tGit\tYes\n"

    def test_show_by_name(self, harness, security):
        assert harness.run("security", "perm", "ns", "show", "git repositories") == 0
        output = harness.output()
        assert f"Namespace ID: {NAMESPACE_ID}\n" in output
        assert "1\t0x1\tRead\tView repository\n" in output
        assert "4\t0x4\tContribute\tContribute to repository\n" in output

    def test_show_unknown(self, harness, security):
        assert harness.run("security", "permission", "namespace", "show", "myorg/Nope") == 1
        assert 'security namespace "Nope" not found' in harness.errors()


def group(name, descriptor=None, description=""):
    return GraphGroup(descriptor=descriptor or f"vssgp.{name.replace(' ', '')}", display_name=name,
                      description=description, principal_name=f"[proj]\\{name}")


def groups_page(items, token=None):
    return MagicMock(graph_groups=items, continuation_token=token)


@pytest.fixture
def graph(harness):
    harness.client("core").get_project.return_value = MagicMock(id="p-1")
    graph = harness.client("graph")
    graph.get_descriptor.return_value = MagicMock(value="scp.p1")
    graph.list_groups.return_value = groups_page([group("Readers"), group("Contributors", description="Can edit")])
    return graph


class TestSecurityGroupList:
    def test_pages_and_filters(self, harness, graph):
        graph.list_groups.side_effect = [
            groups_page([group("Readers")], ["next"]),
            groups_page([group("Release Managers"), group("Contributors")]),
        ]

        assert harness.run("security", "group", "list", "myorg/proj", "--filter", "^re") == 0

        assert graph.list_groups.call_args_list[0][1]["scope_descriptor"] == "scp.p1"
        assert graph.list_groups.call_args_list[1][1]["continuation_token"] == "next"
        assert harness.output() == (
            "vssgp.Readers\tReaders\t\t[proj]\\Readers\n"
            "vssgp.ReleaseManagers\tRelease Managers\t\t[proj]\\Release Managers\n")

    def test_organization_scope_and_subject_types(self, harness, graph):
        assert harness.run("security", "group", "ls", "--subject-types", "vssgp,aadgp") == 0
        assert graph.list_groups.call_args[1]["scope_descriptor"] is None
        assert graph.list_groups.call_args[1]["subject_types"] == ["vssgp", "aadgp"]
        harness.client("core").get_project.assert_not_called()

    def test_invalid_filter(self, harness, graph):
        assert harness.run("security", "group", "list", "--filter", "(") == 1
        assert "invalid filter regex" in harness.errors()

    def test_nothing_matches(self, harness, graph):
        assert harness.run("security", "group", "list", "--filter", "nope") == 1
        assert "no security groups found in myorg" in harness.errors()

    def test_json(self, harness, graph):
        assert harness.run("security", "group", "list", "--json", "displayName,description") == 0
        assert json.loads(harness.output()) == [
            {"displayName": "Readers", "description": ""},
            {"displayName": "Contributors", "description": "Can edit"},
        ]


class TestSecurityGroupCreate:
    @pytest.fixture
    def rest(self, harness, graph):
        rest = harness.client("rest")
        rest.create_group.return_value = {
            "descriptor": "vssgp.new", "principalName": "[proj]\\Release", "displayName": "Release",
            "description": "Ships it"}
        return rest

    def test_create_in_project(self, harness, rest):
        assert harness.run("security", "group", "create", "myorg/proj", "--name", "Release",
                           "--description", "Ships it", "--groups", "vssgp.a,vssgp.b") == 0

        rest.create_group.assert_called_once_with(
            {"displayName": "Release", "description": "Ships it"},
            scope_descriptor="scp.p1", group_descriptors=["vssgp.a", "vssgp.b"])
        assert "Descriptor: vssgp.new" in harness.output()
        assert "DisplayName: Release" in harness.output()

    def test_create_from_email(self, harness, rest):
        assert harness.run("security", "group", "create", "--email", "devs@example.com") == 0
        rest.create_group.assert_called_once_with(
            {"mailAddress": "devs@example.com"}, scope_descriptor=None, group_descriptors=None)

    @pytest.mark.parametrize("argv,message", [
        ((), "exactly one of --name, --email or --origin-id must be specified"),
        (("--name", "a", "--email", "b@example.com"), "specify only one of --name, --email or --origin-id"),
        (("--email", "b@example.com", "--description", "x"), "--description can only be used with --name"),
    ])
    def test_flag_errors(self, harness, rest, argv, message):
        assert harness.run("security", "group", "create", *argv) == 1
        assert message in harness.errors()
        rest.create_group.assert_not_called()


class TestSecurityGroupDelete:
    def test_delete(self, harness, graph):
        assert harness.run("security", "group", "delete", "myorg/proj/readers", "--yes") == 0
        graph.delete_group.assert_called_once_with("vssgp.Readers")
        assert '✓ Deleted security group "Readers"' in harness.output()

    def test_needs_yes_without_terminal(self, harness, graph):
        assert harness.run("security", "group", "delete", "myorg/proj/Readers") == 1
        assert "--yes required when not running interactively" in harness.errors()
        graph.delete_group.assert_not_called()

    def test_unknown_group(self, harness, graph):
        assert harness.run("security", "group", "delete", "myorg/proj/Admins", "--yes") == 1
        assert 'no security group found with name "Admins"' in harness.errors()

    def test_ambiguous_name_needs_descriptor(self, harness, graph):
        graph.list_groups.return_value = groups_page([group("Readers", "vssgp.1"), group("readers", "vssgp.2")])

        assert harness.run("security", "group", "delete", "myorg/Readers", "--yes") == 1
        assert "specify --descriptor" in harness.errors()

        assert harness.run("security", "group", "delete", "myorg/Readers", "--yes", "--descriptor", "vssgp.2") == 0
        graph.delete_group.assert_called_once_with("vssgp.2")

    def test_group_name_required(self, harness, graph):
        assert harness.run("security", "group", "delete", "myorg", "--yes") == 1
        assert 'invalid group "myorg"' in harness.errors()


class TestSecurityGroupMembership:
    @pytest.fixture
    def members(self, graph):
        graph.list_memberships.return_value = [
            MagicMock(container_descriptor="vssgp.Readers", member_descriptor="aad.zed"),
            MagicMock(container_descriptor="vssgp.Readers", member_descriptor="aad.amy"),
        ]
        graph.lookup_subjects.return_value = {
            "aad.zed": GraphSubject(descriptor="aad.zed", display_name="Zed", subject_kind="user"),
            "aad.amy": GraphSubject(descriptor="aad.amy", display_name="Amy", subject_kind="user"),
        }
        return graph

    def test_list_members(self, harness, members):
        assert harness.run("security", "group", "membership", "list", "myorg/proj/Readers") == 0

        members.list_memberships.assert_called_once_with("vssgp.Readers", direction="down")
        keys = members.lookup_subjects.call_args[0][0].lookup_keys
        assert [k.descriptor for k in keys] == ["aad.zed", "aad.amy"]
        assert harness.output() == "Amy\taad.amy\tuser\nZed\taad.zed\tuser\n"

    def test_list_member_of(self, harness, members):
        members.list_memberships.return_value = []
        assert harness.run("security", "group", "m", "ls", "myorg/proj/Readers", "-r", "memberof") == 0
        members.list_memberships.assert_called_once_with("vssgp.Readers", direction="up")
        assert harness.output() == 'No members found for group "myorg/proj/Readers"\n'

    def test_add(self, harness, members):
        harness.client("identity").read_identities.return_value = [MagicMock(subject_descriptor="aad.amy")]
        members.check_membership_existence.side_effect = [NotFoundError("missing"), None]

        assert harness.run("security", "group", "membership", "add", "myorg/proj/Readers",
                           "--member", "amy@example.com,aad.zed") == 0

        members.add_membership.assert_called_once_with("aad.amy", "vssgp.Readers")
        assert harness.output() == "Amy\taad.amy\tadded\nZed\taad.zed\talready member\n"

    def test_add_me(self, harness, members):
        harness.client("rest").get_authenticated_user.return_value = {"subjectDescriptor": "aad.amy"}
        members.check_membership_existence.side_effect = NotFoundError("missing")

        assert harness.run("security", "group", "membership", "add", "myorg/proj/Readers", "-m", "@me") == 0
        members.add_membership.assert_called_once_with("aad.amy", "vssgp.Readers")

    def test_add_falls_back_to_storage_key(self, harness, members):
        harness.client("identity").read_identities.return_value = [MagicMock(subject_descriptor=None, id="id-1")]
        members.get_descriptor.return_value = MagicMock(value="aad.amy")
        members.check_membership_existence.side_effect = NotFoundError("missing")

        assert harness.run("security", "group", "membership", "add", "myorg/Readers", "-m", "amy") == 0
        members.get_descriptor.assert_called_with("id-1")
        members.add_membership.assert_called_once_with("aad.amy", "vssgp.Readers")

    def test_add_unexpected_error_propagates(self, harness, members):
        members.check_membership_existence.side_effect = RuntimeError("boom")
        assert harness.run("security", "group", "membership", "add", "myorg/Readers", "-m", "aad.zed") == 1
        members.add_membership.assert_not_called()

    def test_remove(self, harness, members):
        members.remove_membership.side_effect = [None, NotFoundError("missing")]

        assert harness.run("security", "group", "membership", "remove", "myorg/proj/Readers",
                           "-m", "aad.amy,aad.zed", "--yes") == 0

        assert members.remove_membership.call_args_list[0][0] == ("aad.amy", "vssgp.Readers")
        assert harness.output() == "Amy\taad.amy\tremoved\nZed\taad.zed\tnot a member\n"

    def test_remove_needs_yes(self, harness, members):
        assert harness.run("security", "group", "membership", "remove", "myorg/Readers", "-m", "aad.amy") == 1
        members.remove_membership.assert_not_called()
