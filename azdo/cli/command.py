"""
Command tree nodes and their flags.

Each node owns an argparse parser built on demand from its local flags and
the persistent flags of its ancestors. Parse failures surface as FlagError.
"""

import argparse
import logging
from typing import Any, Callable, Dict, List, Optional, Tuple

from .errors import FlagError
from ..helpers.text import parse_duration, split_comma_values

logger = logging.getLogger(__name__)

FLAG_KINDS = ("string", "bool", "int", "strings", "stringArray", "duration")


def _duration(value: str) -> float:
    try:
        return parse_duration(value)
    except ValueError as e:
        raise argparse.ArgumentTypeError(str(e)) from e


_duration.__name__ = "duration"


class Flag:
    """
    A named command line flag.

    Args:
        long: Long name without dashes, e.g. "organization"
        short: Optional single letter shorthand
        kind: One of string, bool, int, strings (comma separated, repeatable),
            stringArray (repeatable) or duration ("90s", "1h30m"; stored as seconds)
        default: Value used when the flag is absent
        help: One line description
        choices: Allowed values
        required: The flag must be given
        hidden: Left out of help output
        metavar: Placeholder shown in help; defaults to the kind
        no_opt_default: Value used when the flag is given without a value
    """

    def __init__(self, long: str, short: Optional[str] = None, kind: str = "string", default: Any = None,
                 help: str = "", choices: Optional[List[str]] = None, required: bool = False,
                 hidden: bool = False, metavar: Optional[str] = None,
                 no_opt_default: Optional[str] = None):
        if kind not in FLAG_KINDS:
            raise ValueError(f"unknown flag kind {kind}")
        self.long = long
        self.short = short
        self.kind = kind
        if default is None and kind == "bool":
            default = False
        if default is None and kind in ("strings", "stringArray"):
            default = []
        self.default = default
        self.help = help
        self.choices = choices
        self.required = required
        self.hidden = hidden
        self.metavar = metavar
        self.no_opt_default = no_opt_default

    @property
    def dest(self) -> str:
        return self.long.replace("-", "_")

    def option_strings(self) -> List[str]:
        names = []
        if self.short:
            names.append(f"-{self.short}")
        names.append(f"--{self.long}")
        return names

    def add_to(self, parser: argparse.ArgumentParser):
        kwargs: Dict[str, Any] = {"dest": self.dest, "default": argparse.SUPPRESS}
        if self.kind == "bool":
            kwargs["action"] = "store_true"
        else:
            if self.kind in ("strings", "stringArray"):
                kwargs["action"] = "append"
            elif self.kind == "int":
                kwargs["type"] = int
            elif self.kind == "duration":
                kwargs["type"] = _duration
            if self.choices:
                kwargs["choices"] = self.choices
            if self.no_opt_default is not None:
                kwargs["nargs"] = "?"
                kwargs["const"] = self.no_opt_default
        parser.add_argument(*self.option_strings(), **kwargs)

    def finalize(self, value: Any) -> Any:
        if self.kind == "strings":
            return split_comma_values(value)
        return value

    def value_type(self) -> str:
        if self.metavar:
            return self.metavar
        if self.kind == "bool":
            return ""
        if self.choices:
            return "{" + "|".join(self.choices) + "}"
        return self.kind

    def usage(self) -> Tuple[str, str]:
        """(flag column, description column) for help output."""
        name = f"-{self.short}, --{self.long}" if self.short else f"    --{self.long}"
        value_type = self.value_type()
        if value_type:
            name = f"{name} {value_type}"
        text = self.help
        if self.kind != "bool" and self.default not in (None, "", []):
            shown = f'"{self.default}"' if isinstance(self.default, str) else self.default
            text = f"{text} (default {shown})"
        return name, text


class Options(argparse.Namespace):
    """
    Parsed flag values plus the positional arguments of one invocation.
    args is only assigned by Command.parse once argparse has finished.
    """

    def __init__(self, **kwargs):
        super().__init__(**kwargs)
        self.dash_args: List[str] = []
        self.exporter = None
        self._changed = set()

    def changed(self, name: str) -> bool:
        """True when the flag was given on the command line."""
        return name.replace("-", "_") in self._changed


class _FlagParser(argparse.ArgumentParser):
    def error(self, message):
        raise FlagError(message)


# Positional argument rules

def no_args():
    def check(cmd, args):
        if args:
            raise FlagError(f'unknown command "{args[0]}" for "{cmd.command_path()}"')
    return check


def exact_args(n: int, message: Optional[str] = None):
    def check(cmd, args):
        if len(args) != n:
            raise FlagError(message or f"accepts {n} arg(s), received {len(args)}")
    return check


def maximum_args(n: int, message: Optional[str] = None):
    def check(cmd, args):
        if len(args) > n:
            raise FlagError(message or f"accepts at most {n} arg(s), received {len(args)}")
    return check


def minimum_args(n: int, message: Optional[str] = None):
    def check(cmd, args):
        if len(args) < n:
            raise FlagError(message or f"requires at least {n} arg(s), only received {len(args)}")
    return check


def arbitrary_args(cmd, args):
    return None


class Command:
    """
    A node of the command tree.

    Args:
        use: Usage line; its first word is the command name
        short: One line description shown in listings
        long: Full description shown by --help
        example: Example invocations, already indented
        aliases: Alternative names
        group_id: Id of the parent group this command is listed under
        args: Positional argument rule, see exact_args and friends
        run: Callable receiving the parsed Options; None for pure groups
        annotations: Free form metadata such as skip_auth_check
        hidden: Left out of help listings
        disable_flag_parsing: Pass every token through as a positional
    """

    def __init__(self, use: str, short: str = "", long: str = "", example: str = "",
                 aliases: Optional[List[str]] = None, group_id: str = "",
                 args: Callable = arbitrary_args, run: Optional[Callable[[Options], Any]] = None,
                 annotations: Optional[Dict[str, str]] = None, hidden: bool = False,
                 disable_flag_parsing: bool = False):
        self.use = use
        self.short = short
        self.long = long
        self.example = example
        self.aliases = list(aliases or [])
        self.group_id = group_id
        self.args = args
        self.run = run
        self.annotations = dict(annotations or {})
        self.hidden = hidden
        self.disable_flag_parsing = disable_flag_parsing

        self.parent: Optional["Command"] = None
        self.commands: List["Command"] = []
        self.groups: List[tuple] = []
        self.flags: List[Flag] = []
        self.persistent_flags: List[Flag] = []
        self.exclusive_flag_sets: List[List[str]] = []
        self.pre_run_hooks: List[Callable[[Options], None]] = []

    @property
    def name(self) -> str:
        return self.use.split(" ", 1)[0]

    # Tree

    def add_command(self, *commands: "Command"):
        for command in commands:
            for existing in self.commands:
                if existing.name == command.name:
                    raise ValueError(f'duplicate command "{command.name}" under "{self.command_path()}"')
            command.parent = self
            self.commands.append(command)

    def add_group(self, group_id: str, title: str):
        if not self.has_group(group_id):
            self.groups.append((group_id, title))

    def has_group(self, group_id: str) -> bool:
        return any(existing == group_id for existing, _ in self.groups)

    def find_child(self, name: str) -> Optional["Command"]:
        for command in self.commands:
            if command.name == name or name in command.aliases:
                return command
        return None

    def root(self) -> "Command":
        node = self
        while node.parent is not None:
            node = node.parent
        return node

    def ancestors(self) -> List["Command"]:
        nodes = []
        node = self.parent
        while node is not None:
            nodes.append(node)
            node = node.parent
        return nodes

    def command_path(self) -> str:
        if self.parent is None:
            return self.name
        return f"{self.parent.command_path()} {self.name}"

    def use_line(self) -> str:
        parent_path = self.parent.command_path() + " " if self.parent is not None else ""
        line = parent_path + self.use
        if self.has_available_flags() and "[flags]" not in line:
            line += " [flags]"
        return line

    def runnable(self) -> bool:
        return self.run is not None

    def is_available(self) -> bool:
        return not self.hidden and (self.runnable() or any(c.is_available() for c in self.commands))

    def is_help_topic(self) -> bool:
        return self.annotations.get("help_topic") == "true"

    def is_alias(self) -> bool:
        return "alias_expansion" in self.annotations

    # Flags

    def add_flag(self, flag: Flag) -> Flag:
        self.flags.append(flag)
        return flag

    def add_persistent_flag(self, flag: Flag) -> Flag:
        self.persistent_flags.append(flag)
        return flag

    def mark_flags_mutually_exclusive(self, *names: str):
        self.exclusive_flag_sets.append(list(names))

    def local_flags(self) -> List[Flag]:
        return list(self.flags) + list(self.persistent_flags)

    def inherited_flags(self) -> List[Flag]:
        flags = []
        for ancestor in self.ancestors():
            flags.extend(ancestor.persistent_flags)
        return flags

    def all_flags(self) -> List[Flag]:
        return self.local_flags() + self.inherited_flags()

    def lookup_flag(self, long: str) -> Optional[Flag]:
        for flag in self.all_flags():
            if flag.long == long:
                return flag
        return None

    def has_available_flags(self) -> bool:
        return any(not flag.hidden for flag in self.all_flags())

    def parser(self) -> argparse.ArgumentParser:
        parser = _FlagParser(prog=self.command_path(), add_help=False, allow_abbrev=False)
        for flag in self.all_flags():
            flag.add_to(parser)
        parser.add_argument("args", nargs="*")
        return parser

    def parse(self, tokens: List[str]) -> Options:
        """Parse tokens into Options; everything after "--" is positional."""
        if "--" in tokens:
            index = tokens.index("--")
            tokens, dash_args = tokens[:index], tokens[index + 1:]
        else:
            dash_args = []

        options = Options()
        if self.disable_flag_parsing:
            options.args = list(tokens) + list(dash_args)
            options.dash_args = list(dash_args)
            return options

        namespace, unknown = self.parser().parse_known_intermixed_args(tokens, namespace=options)
        if unknown:
            raise FlagError(f"unknown flag: {unknown[0]}")

        changed = set(vars(namespace)) - {"args", "dash_args", "exporter", "_changed"}
        namespace._changed = changed
        for flag in self.all_flags():
            if flag.dest in changed:
                setattr(namespace, flag.dest, flag.finalize(getattr(namespace, flag.dest)))
            else:
                default = flag.default
                setattr(namespace, flag.dest, list(default) if isinstance(default, list) else default)
        namespace.args = list(getattr(namespace, "args", None) or []) + list(dash_args)
        namespace.dash_args = list(dash_args)
        return namespace

    def validate_flags(self, options: Options):
        missing = [flag.long for flag in self.all_flags() if flag.required and not options.changed(flag.long)]
        if missing:
            names = ", ".join(f'"{name}"' for name in missing)
            raise FlagError(f"required flag(s) {names} not set")
        for group in self.exclusive_flag_sets:
            given = [name for name in group if options.changed(name)]
            if len(given) > 1:
                raise FlagError(
                    f"if any flags in the group [{' '.join(group)}] are set none of the others can be; "
                    f"[{' '.join(given)}] were all set")

    def __repr__(self):
        return f"Command({self.command_path()!r})"
