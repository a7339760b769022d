"""
azdo boards: area paths, iterations and work items of a project.
"""

import logging
import re
from datetime import datetime
from typing import Dict, List, Optional

from azure.devops.v7_1.work_item_tracking.models import Wiql, WorkItemBatchGetRequest

from ..cli.command import Command, Flag, exact_args
from ..cli.errors import FlagError, NoResultsError
from ..cli.json_flags import add_json_flags
from ..cli.scope import ME, parse_project_scope
from ..helpers.text import parse_time, utc_now
from .shared import progress, render_or_export

logger = logging.getLogger(__name__)

WORK_ITEM_BATCH_SIZE = 200

WORK_ITEM_FIELDS = [
    "System.Id",
    "System.WorkItemType",
    "System.State",
    "System.Title",
    "System.AssignedTo",
    "System.AreaPath",
    "System.IterationPath",
]

STATE_CATEGORIES = {
    "open": ["New", "Active", "Proposed", "InProgress"],
    "closed": ["Completed", "Removed"],
    "resolved": ["Resolved"],
}

_SLASHES = re.compile(r"/+")


def new_cmd_boards(ctx) -> Command:
    cmd = Command(
        use="boards <command>",
        short="Work with Azure Boards",
        long="Inspect the area paths, iterations and work items of an Azure DevOps project.",
    )

    area = Command(use="area <command>", short="Manage area paths")
    area.add_command(new_cmd_boards_area_list(ctx))
    iteration = Command(use="iteration <command>", short="Manage iterations")
    iteration.add_command(new_cmd_boards_iteration_list(ctx))
    work_item = Command(use="work-item <command>", short="Manage work items", aliases=["wi"])
    work_item.add_command(new_cmd_boards_work_item_list(ctx))

    cmd.add_command(area, iteration, work_item)
    return cmd


# Classification paths

def normalize_classification_path(raw: Optional[str]) -> str:
    r"""\Fabrikam\Area\Web -> Fabrikam/Area/Web"""
    text = (raw or "").strip().replace("\\", "/")
    return _SLASHES.sub("/", text).strip("/").strip()


def build_classification_path(project: str, scope_name: str, raw: Optional[str]) -> str:
    """
    Reduce a user supplied path to the part below the structure root. A
    leading project segment and a following "Area"/"Iteration" segment are
    dropped.
    """
    segments = [s.strip() for s in normalize_classification_path(raw).split("/") if s.strip()]
    if segments and project and segments[0].lower() == project.lower():
        segments = segments[1:]
    if segments and segments[0].lower() == scope_name.lower():
        segments = segments[1:]
    return "/".join(segments)


def _classification_rows(node, level: int = 1, parent: str = "") -> List[Dict]:
    if node is None:
        return []
    attributes = node.attributes or {}
    rows = [{
        "id": node.id,
        "identifier": str(node.identifier) if node.identifier else "",
        "name": node.name or "",
        "path": normalize_classification_path(node.path),
        "parentPath": normalize_classification_path(parent),
        "level": level,
        "hasChildren": bool(node.has_children),
        "startDate": parse_time(attributes.get("startDate")),
        "finishDate": parse_time(attributes.get("finishDate")),
    }]
    for child in node.children or []:
        rows.extend(_classification_rows(child, level + 1, node.path or ""))
    return rows


def _fetch_classification(ctx, scope, structure_group: str, scope_name: str, path: str, depth: int):
    wit = ctx.client_factory().work_item_tracking(scope.organization)
    relative = build_classification_path(scope.project, scope_name, path)
    logger.debug("Fetching %s of %s below %r, depth %d", structure_group, scope, relative, depth)
    with progress(ctx):
        return wit.get_classification_node(scope.project, structure_group, path=relative or None,
                                           depth=depth if depth > 0 else None)


def new_cmd_boards_area_list(ctx) -> Command:
    def run(opts):
        if opts.depth < 0:
            raise FlagError("--depth must be greater than or equal to 0")
        scope = parse_project_scope(ctx, opts.args[0])
        root = _fetch_classification(ctx, scope, "areas", "Area", opts.path, opts.depth)
        rows = _classification_rows(root)
        if not rows:
            raise NoResultsError("no area paths found")
        rows.sort(key=lambda row: row["path"].lower())
        fields = ["id", "identifier", "name", "path", "hasChildren", "parentPath"]
        data = [{key: row[key] for key in fields} for row in rows]

        def render():
            printer = ctx.printer("table")
            printer.add_columns("Name", "Path", "HasChildren")
            for row in rows:
                printer.add_field(row["name"])
                printer.add_field(row["path"], truncate=None)
                printer.add_field(row["hasChildren"])
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, data, render)

    cmd = Command(
        use="list [ORGANIZATION/]PROJECT",
        short="List area paths defined for a project",
        long=("List Azure Boards area paths for a project.\n\n"
              "Relative paths given to --path are resolved below <project>/Area."),
        example=("  $ azdo boards area list Fabrikam\n"
                 "  $ azdo boards area list myorg/Fabrikam --depth 5\n"
                 "  $ azdo boards area list myorg/Fabrikam --path Payments --depth 3"),
        aliases=["ls"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    cmd.add_flag(Flag("path", "p", help="Restrict results to a specific area path"))
    cmd.add_flag(Flag("depth", "d", kind="int", default=1,
                      help="Depth of child nodes to include (use 0 to omit child nodes)"))
    add_json_flags(cmd, ["id", "identifier", "name", "path", "hasChildren", "parentPath"])
    return cmd


# Iteration date filters

_OPERATORS = [
    ("<=", lambda a, b: a <= b),
    (">=", lambda a, b: a >= b),
    ("==", lambda a, b: a == b),
    ("<", lambda a, b: a < b),
    (">", lambda a, b: a > b),
]


class DateConstraint:
    """A comparison such as ">=2024-01-01" or "<=today"."""

    def __init__(self, operator: str, compare, value: datetime):
        self.operator = operator
        self.compare = compare
        self.value = value

    def matches(self, date: Optional[datetime]) -> bool:
        return date is not None and self.compare(date, self.value)

    @classmethod
    def parse(cls, raw: Optional[str], flag: str, now: Optional[datetime] = None) -> Optional["DateConstraint"]:
        raw = (raw or "").strip()
        if not raw:
            return None
        for operator, compare in _OPERATORS:
            if raw.startswith(operator):
                rest = raw[len(operator):].strip()
                break
        else:
            operator, rest = "", ""
        if not operator or not rest:
            raise FlagError(f'invalid {flag} "{raw}": expected comparison operator followed by a '
                            "RFC3339 or YYYY-MM-DD date")
        try:
            if rest.lower() == "today":
                current = now or utc_now()
                value = parse_time(current.strftime("%Y-%m-%dT00:00:00Z"))
            elif "T" in rest:
                value = parse_time(rest)
            else:
                value = parse_time(f"{rest}T00:00:00Z")
        except ValueError as e:
            raise FlagError(f'invalid {flag} "{raw}": {e}', cause=e) from e
        return cls(operator, compare, value)


def new_cmd_boards_iteration_list(ctx) -> Command:
    def run(opts):
        if opts.depth < 1 or opts.depth > 10:
            raise FlagError("--depth must be between 1 and 10")
        scope = parse_project_scope(ctx, opts.args[0])
        start = DateConstraint.parse(opts.start_date, "start-date")
        finish = DateConstraint.parse(opts.finish_date, "finish-date")

        root = _fetch_classification(ctx, scope, "iterations", "Iteration", opts.path, opts.depth)
        rows = _classification_rows(root)
        if not rows:
            raise NoResultsError("no iteration nodes found")
        if start or finish:
            rows = [row for row in rows
                    if (start is None or start.matches(row["startDate"]))
                    and (finish is None or finish.matches(row["finishDate"]))]
            if not rows:
                raise NoResultsError("no iteration nodes matched the provided date filters")

        fields = ["name", "path", "level", "hasChildren", "startDate", "finishDate"]
        data = [{key: row[key] for key in fields} for row in rows]

        def render():
            printer = ctx.printer("table")
            columns = ["Name", "Path", "Level", "HasChildren"]
            if opts.include_dates:
                columns += ["StartDate", "FinishDate"]
            printer.add_columns(*columns)
            for row in rows:
                printer.add_field(row["name"])
                printer.add_field(row["path"], truncate=None)
                printer.add_field(row["level"])
                printer.add_field(row["hasChildren"])
                if opts.include_dates:
                    printer.add_field(row["startDate"])
                    printer.add_field(row["finishDate"])
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, data, render)

    cmd = Command(
        use="list [ORGANIZATION/]PROJECT",
        short="List iteration hierarchy for a project",
        long="List the iteration (sprint) hierarchy for a project within an Azure DevOps organization.",
        example=("  $ azdo boards iteration list myorg/myproject\n"
                 '  $ azdo boards iteration list myproject --path "Release 2025/Sprint 1"\n'
                 '  $ azdo boards iteration list myproject --include-dates --start-date ">=today"\n'
                 "  $ azdo boards iteration list myproject --json name,path,startDate"),
        aliases=["ls"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    cmd.add_flag(Flag("path", "p", help="Iteration path relative to project root"))
    cmd.add_flag(Flag("depth", "d", kind="int", default=3, help="Depth to fetch (1-10)"))
    cmd.add_flag(Flag("include-dates", kind="bool", help="Include iteration start and finish dates"))
    cmd.add_flag(Flag("start-date", help='Comparison filter on start dates, e.g. ">=today"'))
    cmd.add_flag(Flag("finish-date", help='Comparison filter on finish dates, e.g. "<=2024-12-31"'))
    add_json_flags(cmd, ["name", "path", "level", "hasChildren", "startDate", "finishDate"])
    return cmd


# Work items

def wiql_quote(value: str) -> str:
    return "'" + value.replace("'", "''") + "'"


def _unique(values: List[str]) -> List[str]:
    seen = set()
    result = []
    for value in values:
        value = value.strip()
        if value and value.lower() not in seen:
            seen.add(value.lower())
            result.append(value)
    return result


def _under_or_equals(field: str, values: List[str]) -> str:
    parts = []
    for value in _unique(values):
        if value.startswith("Under:"):
            parts.append(f"{field} UNDER {wiql_quote(value[len('Under:'):].strip())}")
        else:
            parts.append(f"{field} = {wiql_quote(value)}")
    if len(parts) == 1:
        return parts[0]
    return "(" + " OR ".join(parts) + ")"


def build_wiql_query(project: str, states: Optional[List[str]] = None, types: Optional[List[str]] = None,
                     assigned_to: Optional[List[str]] = None, areas: Optional[List[str]] = None,
                     iterations: Optional[List[str]] = None) -> str:
    """
    Assemble the WIQL statement selecting work item ids; every filter is
    ANDed, values of one filter are ORed.
    """
    clauses = [f"[System.TeamProject] = {wiql_quote(project)}"]
    if states:
        clauses.append(f"[System.State] IN ({', '.join(wiql_quote(s) for s in _unique(states))})")
    if types:
        clauses.append(f"[System.WorkItemType] IN ({', '.join(wiql_quote(t) for t in _unique(types))})")
    if assigned_to:
        people = []
        for person in _unique(assigned_to):
            people.append("[System.AssignedTo] = @Me" if person.lower() == ME
                          else f"[System.AssignedTo] = {wiql_quote(person)}")
        clauses.append(people[0] if len(people) == 1 else "(" + " OR ".join(people) + ")")
    if areas:
        clauses.append(_under_or_equals("[System.AreaPath]", areas))
    if iterations:
        clauses.append(_under_or_equals("[System.IterationPath]", iterations))
    return f"SELECT [System.Id] FROM WorkItems WHERE {' AND '.join(clauses)} ORDER BY [System.ChangedDate] DESC"


def resolve_state_names(wit, project: str, categories: List[str], types: List[str]) -> List[str]:
    """
    Map state categories (open, closed, resolved) onto the state names the
    project's work item types use. "all" yields no restriction.
    """
    categories = [c.lower() for c in categories] or ["open"]
    if "all" in categories:
        return []
    wanted = set()
    for category in categories:
        if category not in STATE_CATEGORIES:
            raise FlagError(f'invalid value for --state: "{category}" (valid: open, closed, resolved, all)')
        wanted.update(STATE_CATEGORIES[category])

    state_lists = []
    if types:
        for work_item_type in types:
            state_lists.append(wit.get_work_item_type_states(project, work_item_type) or [])
    else:
        for work_item_type in wit.get_work_item_types(project) or []:
            if work_item_type.is_disabled:
                continue
            if work_item_type.states:
                state_lists.append(work_item_type.states)
            elif work_item_type.name:
                state_lists.append(wit.get_work_item_type_states(project, work_item_type.name) or [])

    names = [state.name for states in state_lists for state in states
             if state.name and state.category in wanted]
    names = _unique(names)
    if not names:
        raise FlagError("no states matched --state filters for the selected work item types")
    return names


def fetch_work_items(wit, project: str, ids: List[int], expand_all: bool = False) -> list:
    """Fetch work items in batches, preserving the order of ids."""
    items = []
    for start in range(0, len(ids), WORK_ITEM_BATCH_SIZE):
        request = WorkItemBatchGetRequest(
            ids=ids[start:start + WORK_ITEM_BATCH_SIZE],
            fields=None if expand_all else WORK_ITEM_FIELDS,
            expand="all" if expand_all else None,
            error_policy="omit",
        )
        items.extend(item for item in wit.get_work_items_batch(request, project=project) or [] if item)
    by_id = {item.id: item for item in items}
    return [by_id[i] for i in ids if i in by_id]


def _field(fields: dict, name: str) -> str:
    value = fields.get(name)
    if isinstance(value, dict):
        return value.get("displayName") or value.get("uniqueName") or ""
    return "" if value is None else str(value)


def new_cmd_boards_work_item_list(ctx) -> Command:
    def run(opts):
        if opts.limit < 0:
            raise FlagError(f"invalid value for --limit: {opts.limit}")
        scope = parse_project_scope(ctx, opts.args[0])
        wit = ctx.client_factory().work_item_tracking(scope.organization)

        with progress(ctx):
            states = resolve_state_names(wit, scope.project, opts.state, opts.type)
            query = build_wiql_query(scope.project, states, opts.type, opts.assigned_to, opts.area, opts.iteration)
            logger.debug("Running WIQL query: %s", query)
            result = wit.query_by_wiql(Wiql(query=query), top=opts.limit or None)
            ids = [reference.id for reference in result.work_items or [] if reference.id is not None]
            if not ids:
                raise NoResultsError("no work items matched the provided filters")
            work_items = fetch_work_items(wit, scope.project, ids, expand_all=opts.exporter is not None)
        if not work_items:
            raise NoResultsError("no work items matched the provided filters")

        def render():
            printer = ctx.printer("table")
            printer.add_columns("ID", "Type", "State", "Title", "Assigned To", "Area", "Iteration")
            for item in work_items:
                fields = item.fields or {}
                printer.add_field(item.id)
                printer.add_field(_field(fields, "System.WorkItemType"))
                printer.add_field(_field(fields, "System.State"))
                printer.add_field(_field(fields, "System.Title"))
                printer.add_field(_field(fields, "System.AssignedTo"))
                printer.add_field(_field(fields, "System.AreaPath"))
                printer.add_field(_field(fields, "System.IterationPath"))
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, work_items, render)

    cmd = Command(
        use="list [ORGANIZATION/]PROJECT",
        short="List work items belonging to a project",
        long=("List work items belonging to a project.\n\n"
              "A WIQL query selects the work item ids; details are then fetched in batches.\n"
              "--state takes state categories: open (default), closed, resolved or all."),
        example=("  $ azdo boards work-item list Fabrikam\n"
                 "  $ azdo boards work-item list Fabrikam --assigned-to @me --state all\n"
                 '  $ azdo boards work-item list Fabrikam --type "User Story" --limit 10\n'
                 "  $ azdo boards work-item list Fabrikam --area Under:Web/Payments"),
        aliases=["ls"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    cmd.add_flag(Flag("state", "s", kind="strings", default=["open"],
                      help="Filter by state category: open, closed, resolved, all"))
    cmd.add_flag(Flag("type", "T", kind="strings", help="Filter by work item type"))
    cmd.add_flag(Flag("assigned-to", "a", kind="strings", help='Filter by assignee; "@me" selects yourself'))
    cmd.add_flag(Flag("area", kind="strings", help="Filter by area path; prefix with Under: to include the subtree"))
    cmd.add_flag(Flag("iteration", kind="strings",
                      help="Filter by iteration path; prefix with Under: to include the subtree"))
    cmd.add_flag(Flag("limit", "L", kind="int", default=0, help="Maximum number of results to return"))
    add_json_flags(cmd, ["id", "rev", "fields", "relations", "url", "_links", "commentVersionRef"])
    return cmd
