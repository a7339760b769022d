"""
Help, usage and reference rendering for the command tree.
"""

import textwrap
from typing import List, Tuple

from .command import Command, Flag
from ..helpers.text import format_slice

NAME_PADDING = 14
HELP_FLAG = Flag("help", "h", kind="bool", help="Show help for command")


def rpad(text: str, padding: int) -> str:
    return f"{text:<{padding}} "


def flag_usages(flags: List[Flag]) -> str:
    rows = [flag.usage() for flag in flags if not flag.hidden]
    if not rows:
        return ""
    width = max(len(name) for name, _ in rows)
    lines = [f"{name:<{width}}   {text}".rstrip() for name, text in rows]
    return textwrap.dedent("\n".join(lines))


def grouped_commands(cmd: Command) -> List[Tuple[str, List[Command]]]:
    groups = []
    for group_id, title in cmd.groups:
        members = [c for c in cmd.commands if c.group_id == group_id and c.is_available()]
        if members:
            groups.append((title, members))
    ungrouped = [c for c in cmd.commands if not c.group_id and c.is_available()]
    if ungrouped:
        title = "Additional commands" if cmd.groups else "Available commands"
        groups.append((title, ungrouped))
    return groups


def help_entries(cmd: Command) -> List[Tuple[str, str]]:
    entries = []
    long_text = cmd.long or cmd.short
    if long_text and cmd.lookup_flag("jq") is not None:
        long_text = long_text.rstrip("\n") + \
            "\n\nFor more information about output formatting flags, see `azdo help formatting`."
    if long_text:
        entries.append(("", long_text))
    entries.append(("USAGE", cmd.use_line()))
    if cmd.aliases:
        parent = cmd.parent.command_path() + " " if cmd.parent is not None else ""
        entries.append(("ALIASES", ", ".join(parent + alias for alias in cmd.aliases)))

    for title, members in grouped_commands(cmd):
        lines = [rpad(c.name + ":", NAME_PADDING) + c.short for c in members]
        entries.append((title.upper(), "\n".join(lines)))

    if cmd.parent is None:
        topics = sorted(rpad(c.name + ":", NAME_PADDING) + c.short for c in cmd.commands
                        if c.is_help_topic() and c.annotations.get("help_topic_listed") != "false")
        if topics:
            entries.append(("HELP TOPICS", "\n".join(topics)))

    local = cmd.local_flags()
    inherited = cmd.inherited_flags()
    if cmd.parent is None:
        local = local + [HELP_FLAG]
    else:
        inherited = inherited + [HELP_FLAG]
    usages = flag_usages(local)
    if usages:
        entries.append(("FLAGS", usages))
    usages = flag_usages(inherited)
    if usages:
        entries.append(("INHERITED FLAGS", usages))

    if "help:json-fields" in cmd.annotations:
        fields = cmd.annotations["help:json-fields"].split(",")
        entries.append(("JSON FIELDS", format_slice(fields, 80, 0, sort=True)))
    if "help:arguments" in cmd.annotations:
        entries.append(("ARGUMENTS", cmd.annotations["help:arguments"]))
    if cmd.example:
        entries.append(("EXAMPLES", cmd.example))
    if "help:environment" in cmd.annotations:
        entries.append(("ENVIRONMENT VARIABLES", cmd.annotations["help:environment"]))
    entries.append(("LEARN MORE",
                    'Use "azdo <command> <subcommand> --help" for more information about a command.'))
    return entries


def render_help(cmd: Command, color_scheme=None) -> str:
    parts = []
    for title, body in help_entries(cmd):
        if title:
            heading = color_scheme.bold(title) if color_scheme is not None else title
            parts.append(heading + "\n" + textwrap.indent(body.strip("\r\n"), "  ") + "\n")
        else:
            parts.append(body.rstrip("\n") + "\n")
    return "\n".join(parts) + "\n"


def render_usage(cmd: Command) -> str:
    """Short usage block printed after a flag error."""
    text = f"Usage:  {cmd.use_line()}"
    available = [c for c in cmd.commands if c.is_available()]
    if available:
        text += "\n\nAvailable commands:\n" + "".join(f"  {c.name}\n" for c in available)
        return text
    usages = flag_usages(cmd.local_flags())
    if usages:
        text += "\n\nFlags:\n" + textwrap.indent(usages, "  ") + "\n"
    return text


def render_reference(root: Command, color_scheme=None) -> str:
    """Help of every reachable command, depth first."""
    sections = []

    def walk(cmd: Command):
        for child in cmd.commands:
            if child.hidden or child.is_alias():
                continue
            sections.append(f"## {child.command_path()}\n\n" + render_help(child, color_scheme))
            walk(child)

    walk(root)
    return "# azdo reference\n\n" + "".join(sections)


def suggestions_for(cmd: Command, typed: str, minimum_distance: int = 2) -> List[str]:
    if typed == "help":
        return ["--help"]
    typed_lower = typed.lower()
    found = []
    for child in cmd.commands:
        if not child.is_available():
            continue
        names = [child.name] + child.aliases
        if any(levenshtein(typed_lower, name.lower()) <= minimum_distance or
               name.lower().startswith(typed_lower) for name in names):
            found.append(child.name)
    return found


def levenshtein(a: str, b: str) -> int:
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + (ca != cb)))
        previous = current
    return previous[-1]
