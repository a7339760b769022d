import json
from unittest.mock import MagicMock

import pytest
from azure.devops.v7_1.core.models import TeamProject, TeamProjectReference

from azdo.classes.operations import OperationFailedError, poll_operation
from azdo.commands.project import project_details, project_list


def operation(status, operation_id="op-1"):
    return MagicMock(id=operation_id, status=status, url=f"https://dev.azure.com/myorg/_apis/operations/{operation_id}",
                     result_message="")


def project(name="Fabrikam", project_id="p-1"):
    return TeamProject(
        id=project_id, name=name, state="wellFormed", visibility="private",
        capabilities={
            "processTemplate": {"templateName": "Agile"},
            "versioncontrol": {"sourceControlType": "Git"},
        },
    )


class TestPollOperation:
    def test_waits_until_done(self):
        client = MagicMock()
        client.get_operation.side_effect = [operation("queued"), operation("inProgress"), operation("succeeded")]
        sleeps = []
        result = poll_operation(client, "op-1", sleep=sleeps.append)
        assert result.status == "succeeded"
        assert sleeps == [1.0, 1.0]

    def test_failed_operation(self):
        client = MagicMock()
        client.get_operation.return_value = operation("failed")
        with pytest.raises(OperationFailedError, match="status=failed"):
            poll_operation(client, "op-1", sleep=lambda s: None)


class TestProjectHelpers:
    def test_project_list_unwraps_continuation(self):
        items = [TeamProjectReference(name="a")]
        assert project_list(MagicMock(value=items)) == items
        assert project_list(items) == items
        assert project_list(None) == []

    def test_project_details(self):
        details = project_details(project())
        assert details["process"] == "Agile"
        assert details["sourceControl"] == "Git"
        assert details["defaultTeamName"] == ""


class TestProjectList:
    def test_sorted_table(self, harness):
        core = harness.client("core")
        core.get_projects.return_value = [
            TeamProjectReference(id="2", name="zulu", state="wellFormed"),
            TeamProjectReference(id="1", name="Alpha", state="wellFormed"),
        ]
        assert harness.run("project", "list", "--state", "all") == 0
        core.get_projects.assert_called_once_with(top=30, state_filter="all")
        assert harness.output() == "1\tAlpha\twellFormed\n2\tzulu\twellFormed\n"

    def test_none_found(self, harness):
        harness.client("core").get_projects.return_value = []
        assert harness.run("project", "list") == 1
        assert "No projects found for organization myorg" in harness.errors()

    def test_invalid_organization(self, harness):
        assert harness.run("project", "list", "a/b") == 1
        assert "invalid organization scope" in harness.errors()


class TestProjectCreate:
    def test_no_wait(self, harness):
        core = harness.client("core")
        core.get_processes.return_value = [MagicMock(id="proc-1"), MagicMock(id="proc-2")]
        core.get_processes.return_value[0].name = "Agile"
        core.get_processes.return_value[1].name = "Scrum"
        core.queue_create_project.return_value = operation("queued")

        assert harness.run("project", "create", "Fabrikam", "--process", "scrum", "--no-wait",
                           "--json", "operationId,operationStatus") == 0

        created = core.queue_create_project.call_args[0][0]
        assert created.name == "Fabrikam"
        assert created.visibility == "private"
        assert created.capabilities == {
            "versioncontrol": {"sourceControlType": "git"},
            "processTemplate": {"templateTypeId": "proc-2"},
        }
        assert json.loads(harness.output()) == {"operationId": "op-1", "operationStatus": "queued"}
        harness.client("operations").get_operation.assert_not_called()

    def test_waits_for_operation(self, harness):
        core = harness.client("core")
        core.get_processes.return_value = []
        core.queue_create_project.return_value = operation("queued")
        harness.client("operations").get_operation.return_value = operation("succeeded")
        core.get_project.return_value = project()

        assert harness.run("project", "create", "Fabrikam", "--process", "") == 0

        core.get_project.assert_called_once_with("Fabrikam", include_capabilities=True)
        assert "Created project myorg/Fabrikam" in harness.errors()
        assert "Process: Agile\n" in harness.output()

    def test_unknown_process(self, harness):
        harness.client("core").get_processes.return_value = []
        assert harness.run("project", "create", "Fabrikam") == 1
        assert "process 'Agile' not found" in harness.errors()

    def test_no_wait_and_timeout_are_exclusive(self, harness):
        assert harness.run("project", "create", "Fabrikam", "--no-wait", "--timeout", "5m") == 1
        assert "none of the others can be" in harness.errors()


class TestProjectDeleteShow:
    def test_delete(self, harness):
        core = harness.client("core")
        core.get_project.return_value = project()
        core.queue_delete_project.return_value = operation("queued")
        harness.client("operations").get_operation.return_value = operation("succeeded")

        assert harness.run("project", "delete", "Fabrikam", "--yes") == 0

        core.queue_delete_project.assert_called_once_with("p-1")
        assert harness.output() == "✓ Project myorg/Fabrikam deleted successfully.\n"

    def test_delete_missing(self, harness):
        harness.client("core").get_project.return_value = None
        assert harness.run("project", "delete", "Fabrikam", "-y") == 1
        assert 'project "myorg/Fabrikam" not found' in harness.errors()

    def test_show(self, harness):
        harness.client("core").get_project.return_value = project()
        assert harness.run("project", "show", "myorg/Fabrikam") == 0
        output = harness.output()
        assert "Name: Fabrikam\n" in output
        assert "Source Control: Git\n" in output
