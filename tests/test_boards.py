from datetime import datetime, timezone
from unittest.mock import MagicMock

import pytest
from azure.devops.v7_1.work_item_tracking.models import (
    WorkItem,
    WorkItemClassificationNode,
    WorkItemQueryResult,
    WorkItemReference,
    WorkItemStateColor,
    WorkItemType,
)

from azdo.cli.errors import FlagError
from azdo.commands.boards import (
    DateConstraint,
    build_classification_path,
    build_wiql_query,
    fetch_work_items,
    normalize_classification_path,
    resolve_state_names,
)

NOW = datetime(2024, 6, 15, 10, 0, tzinfo=timezone.utc)


def iteration(name, path, start=None, finish=None, children=None):
    attributes = {}
    if start:
        attributes["startDate"] = start
    if finish:
        attributes["finishDate"] = finish
    return WorkItemClassificationNode(
        id=hash(path) % 1000, name=name, path=path, has_children=bool(children),
        children=children, attributes=attributes or None)


class TestClassificationPaths:
    def test_normalize(self):
        assert normalize_classification_path(r"\Fabrikam\Area\\Web\ ") == "Fabrikam/Area/Web"
        assert normalize_classification_path(None) == ""

    @pytest.mark.parametrize("raw,expected", [
        ("Fabrikam/Area/Web", "Web"),
        (r"\fabrikam\Area\Web\Payments", "Web/Payments"),
        ("Area/Web", "Web"),
        ("Web", "Web"),
        ("", ""),
    ])
    def test_build(self, raw, expected):
        assert build_classification_path("Fabrikam", "Area", raw) == expected


class TestDateConstraint:
    def test_operators(self):
        after = DateConstraint.parse(">=2024-06-01", "start-date")
        assert after.matches(datetime(2024, 6, 1, tzinfo=timezone.utc))
        assert not after.matches(datetime(2024, 5, 31, tzinfo=timezone.utc))
        assert not after.matches(None)

    def test_today(self):
        before = DateConstraint.parse("<today", "finish-date", now=NOW)
        assert before.value == datetime(2024, 6, 15, tzinfo=timezone.utc)

    def test_empty(self):
        assert DateConstraint.parse("  ", "start-date") is None

    @pytest.mark.parametrize("raw", ["2024-01-01", ">=", ">=yesterday"])
    def test_invalid(self, raw):
        with pytest.raises(FlagError, match='invalid start-date'):
            DateConstraint.parse(raw, "start-date")


class TestWiql:
    def test_defaults_to_project_only(self):
        assert build_wiql_query("Fabrikam") == (
            "SELECT [System.Id] FROM WorkItems WHERE [System.TeamProject] = 'Fabrikam' "
            "ORDER BY [System.ChangedDate] DESC")

    def test_all_filters(self):
        query = build_wiql_query(
            "O'Brien", states=["New", "Active", "new"], types=["Bug"], assigned_to=["@me", "jane@example.com"],
            areas=["Under:Web", "Api"], iterations=["Sprint 1"])
        assert "[System.TeamProject] = 'O''Brien'" in query
        assert "[System.State] IN ('New', 'Active')" in query
        assert "[System.WorkItemType] IN ('Bug')" in query
        assert "([System.AssignedTo] = @Me OR [System.AssignedTo] = 'jane@example.com')" in query
        assert "([System.AreaPath] UNDER 'Web' OR [System.AreaPath] = 'Api')" in query
        assert "[System.IterationPath] = 'Sprint 1'" in query


class TestStateResolution:
    def test_open_states_across_types(self):
        wit = MagicMock()
        wit.get_work_item_types.return_value = [
            WorkItemType(name="Bug", states=[
                WorkItemStateColor(name="New", category="Proposed"),
                WorkItemStateColor(name="Active", category="InProgress"),
                WorkItemStateColor(name="Closed", category="Completed"),
            ]),
            WorkItemType(name="Old", is_disabled=True, states=[WorkItemStateColor(name="Zombie", category="New")]),
        ]
        assert resolve_state_names(wit, "Fabrikam", [], []) == ["New", "Active"]

    def test_explicit_types(self):
        wit = MagicMock()
        wit.get_work_item_type_states.return_value = [WorkItemStateColor(name="Resolved", category="Resolved")]
        assert resolve_state_names(wit, "Fabrikam", ["resolved"], ["Bug"]) == ["Resolved"]
        wit.get_work_item_type_states.assert_called_once_with("Fabrikam", "Bug")

    def test_all_means_no_restriction(self):
        wit = MagicMock()
        assert resolve_state_names(wit, "Fabrikam", ["all"], []) == []
        wit.get_work_item_types.assert_not_called()

    def test_unknown_category(self):
        with pytest.raises(FlagError, match="invalid value for --state"):
            resolve_state_names(MagicMock(), "Fabrikam", ["finished"], [])


class TestFetchWorkItems:
    def test_batches_preserve_order(self, monkeypatch):
        monkeypatch.setattr("azdo.commands.boards.WORK_ITEM_BATCH_SIZE", 2)
        wit = MagicMock()
        wit.get_work_items_batch.side_effect = lambda request, project: [
            WorkItem(id=i) for i in reversed(request.ids)]
        items = fetch_work_items(wit, "Fabrikam", [5, 3, 9])
        assert [item.id for item in items] == [5, 3, 9]
        assert wit.get_work_items_batch.call_count == 2


class TestBoardsCommands:
    def test_area_list(self, harness):
        wit = harness.client("work_item_tracking")
        wit.get_classification_node.return_value = WorkItemClassificationNode(
            id=1, name="Fabrikam", path=r"\Fabrikam\Area", has_children=True,
            children=[WorkItemClassificationNode(id=2, name="Web", path=r"\Fabrikam\Area\Web", has_children=False)])

        assert harness.run("boards", "area", "list", "Fabrikam", "--path", "Fabrikam/Area", "--depth", "2") == 0

        wit.get_classification_node.assert_called_once_with("Fabrikam", "areas", path=None, depth=2)
        assert harness.output() == "Fabrikam\tFabrikam/Area\ttrue\nWeb\tFabrikam/Area/Web\tfalse\n"

    def test_iteration_date_filter(self, harness):
        wit = harness.client("work_item_tracking")
        wit.get_classification_node.return_value = iteration("Fabrikam", r"\Fabrikam\Iteration", children=[
            iteration("Sprint 1", r"\Fabrikam\Iteration\Sprint 1", "2024-01-01T00:00:00Z", "2024-01-14T00:00:00Z"),
            iteration("Sprint 2", r"\Fabrikam\Iteration\Sprint 2", "2024-02-01T00:00:00Z", "2024-02-14T00:00:00Z"),
        ])

        assert harness.run("boards", "iteration", "list", "Fabrikam", "--start-date", ">=2024-01-15",
                           "--include-dates") == 0

        assert harness.output() == (
            "Sprint 2\tFabrikam/Iteration/Sprint 2\t2\tfalse\t2024-02-01T00:00:00Z\t2024-02-14T00:00:00Z\n")

    def test_iteration_depth_bounds(self, harness):
        assert harness.run("boards", "iteration", "list", "Fabrikam", "--depth", "11") == 1
        assert "--depth must be between 1 and 10" in harness.errors()

    def test_work_item_list(self, harness):
        wit = harness.client("work_item_tracking")
        wit.query_by_wiql.return_value = WorkItemQueryResult(work_items=[WorkItemReference(id=42)])
        wit.get_work_items_batch.return_value = [WorkItem(id=42, fields={
            "System.WorkItemType": "Bug",
            "System.State": "Active",
            "System.Title": "Crash on save",
            "System.AssignedTo": {"displayName": "Jane Doe", "uniqueName": "jane@example.com"},
            "System.AreaPath": "Fabrikam\\Web",
            "System.IterationPath": "Fabrikam\\Sprint 2",
        })]

        assert harness.run("boards", "wi", "ls", "Fabrikam", "--state", "all", "--type", "Bug", "-L", "10") == 0

        wiql = wit.query_by_wiql.call_args[0][0]
        assert "[System.State]" not in wiql.query
        assert "[System.WorkItemType] IN ('Bug')" in wiql.query
        assert wit.query_by_wiql.call_args[1] == {"top": 10}
        assert harness.output() == "42\tBug\tActive\tCrash on save\tJane Doe\tFabrikam\\Web\tFabrikam\\Sprint 2\n"

    def test_work_item_list_empty(self, harness):
        wit = harness.client("work_item_tracking")
        wit.query_by_wiql.return_value = WorkItemQueryResult(work_items=[])
        assert harness.run("boards", "work-item", "list", "Fabrikam", "--state", "all") == 1
        assert "no work items matched the provided filters" in harness.errors()
        wit.get_work_items_batch.assert_not_called()
