from unittest.mock import MagicMock

from azure.devops.v7_1.graph.models import GraphUser

from azdo.commands.graph import list_users


def user(name, descriptor=None):
    return GraphUser(descriptor=descriptor or f"aad.{name}", display_name=name,
                     principal_name=f"{name.lower()}@example.com", mail_address=f"{name.lower()}@example.com")


def page(users, token=None):
    return MagicMock(graph_users=users, continuation_token=token)


class TestListUsers:
    def test_follows_continuation_until_limit(self):
        graph = MagicMock()
        graph.list_users.side_effect = [page([user("a"), user("b")], ["next"]), page([user("c"), user("d")], "x")]
        users = list_users(graph, ["aad"], None, 3)
        assert [u.display_name for u in users] == ["a", "b", "c"]
        assert graph.list_users.call_args_list[1][1]["continuation_token"] == "next"

    def test_stops_without_token(self):
        graph = MagicMock()
        graph.list_users.return_value = page([user("a")], [])
        assert len(list_users(graph, ["aad"], None, 10)) == 1
        assert graph.list_users.call_count == 1


class TestGraphUserList:
    def test_table(self, harness):
        graph = harness.client("graph")
        graph.list_users.return_value = page([user("Zed"), user("Amy")])

        assert harness.run("graph", "user", "list", "--subject-type", "aad,msa") == 0

        assert graph.list_users.call_args[1] == {
            "subject_types": ["aad", "msa"], "continuation_token": None, "scope_descriptor": None}
        assert harness.output() == (
            "aad.Amy\tAmy\tamy@example.com\tamy@example.com\n"
            "aad.Zed\tZed\tzed@example.com\tzed@example.com\n")

    def test_project_scope_and_filter(self, harness):
        harness.client("core").get_project.return_value = MagicMock(id="p-1")
        graph = harness.client("graph")
        graph.get_descriptor.return_value = MagicMock(value="scp.p1")
        graph.query_subjects.return_value = [MagicMock(descriptor="aad.Amy")]
        graph.get_user.return_value = user("Amy")

        assert harness.run("graph", "user", "ls", "myorg/Fabrikam", "--filter", "am") == 0

        query = graph.query_subjects.call_args[0][0]
        assert (query.query, query.subject_kind, query.scope_descriptor) == ("am", ["User"], "scp.p1")
        graph.get_user.assert_called_once_with("aad.Amy")

    def test_no_users(self, harness):
        harness.client("graph").list_users.return_value = page([])
        assert harness.run("graph", "user", "list") == 1
        assert "no users found in organization myorg" in harness.errors()
