"""
The --json, --jq and --template flag group.
"""

from typing import List

from .command import Command, Flag, Options
from .errors import FlagError
from ..helpers.exporter import Exporter
from ..helpers.text import split_comma_values


def add_json_flags(cmd: Command, fields: List[str]):
    """
    Register the exporter flags on a command.

    After parsing, opts.exporter holds an Exporter when --json was given and
    None otherwise.
    """
    cmd.add_flag(Flag("json", kind="stringArray", metavar="fields", no_opt_default="",
                      help="Output JSON with the specified fields"))
    cmd.add_flag(Flag("jq", "q", metavar="expression",
                      help="Filter JSON output using a jq expression"))
    cmd.add_flag(Flag("template", "t", metavar="string",
                      help="Format JSON output using a Jinja2 template; see \"azdo help formatting\""))
    cmd.annotations["help:json-fields"] = ",".join(fields)

    def apply(opts: Options):
        opts.exporter = exporter_from_options(opts, fields)

    cmd.pre_run_hooks.append(apply)


def _field_list(fields: List[str]) -> str:
    return "\n".join("  " + field for field in sorted(fields, key=str.lower))


def exporter_from_options(opts: Options, fields: List[str]):
    jq_expression = getattr(opts, "jq", None) or ""
    template = getattr(opts, "template", None) or ""

    if not opts.changed("json"):
        if jq_expression:
            raise FlagError("cannot use `--jq` without specifying `--json`")
        if template:
            raise FlagError("cannot use `--template` without specifying `--json`")
        return None

    requested = split_comma_values(opts.json)
    if not requested:
        raise FlagError(f"specify one or more comma-separated fields for `--json`:\n{_field_list(fields)}")

    known = {field.lower(): field for field in fields}
    selected = []
    for name in requested:
        field = known.get(name.lower())
        if field is None:
            raise FlagError(f'unknown JSON field: "{name}"\navailable fields:\n{_field_list(fields)}')
        if field not in selected:
            selected.append(field)
    return Exporter(selected, jq_expression, template)
