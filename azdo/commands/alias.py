"""
azdo alias: manage command shortcuts stored in config.yml.
"""

import logging
import shlex

from ..cli.alias import is_shell_alias
from ..cli.command import Command, Flag, exact_args, no_args
from ..cli.errors import AzdoError, FlagError, NoResultsError

logger = logging.getLogger(__name__)


def new_cmd_alias(ctx) -> Command:
    cmd = Command(
        use="alias <command>",
        short="Create command shortcuts",
        long=("Aliases can be used to make shortcuts for azdo commands or to compose multiple commands.\n\n"
              'Run "azdo help alias set" to learn more.'),
        annotations={"skip_auth_check": "true"},
    )
    cmd.add_command(new_cmd_alias_set(ctx), new_cmd_alias_list(ctx), new_cmd_alias_delete(ctx))
    return cmd


def _find_path(root: Command, words):
    node = root
    for word in words:
        node = node.find_child(word)
        if node is None:
            return None
    return node


def new_cmd_alias_set(ctx) -> Command:
    def run(opts):
        name, expansion = opts.args[0].strip(), opts.args[1]
        root = cmd.root()
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        aliases = ctx.config().aliases()

        if not name:
            raise FlagError("alias name must not be empty")
        node = _find_path(root, name.split())
        if node is not None and not node.is_alias():
            raise AzdoError(f'could not create alias: "{name}" is already an azdo command')

        if opts.shell and not is_shell_alias(expansion):
            expansion = "!" + expansion
        if not is_shell_alias(expansion):
            try:
                expanded = shlex.split(expansion)
            except ValueError as e:
                raise AzdoError(f"could not create alias: {e}") from e
            if not expanded or root.find_child(expanded[0]) is None:
                raise AzdoError(
                    f"could not create alias: {expansion} does not correspond to an azdo command")

        existing = aliases.all().get(name)
        if existing and not opts.clobber:
            raise AzdoError(f'could not create alias: "{name}" already exists; use --clobber to overwrite')

        aliases.add(name, expansion)
        ctx.config().write()
        if existing:
            ios.err_out.write(f"{cs.warning_icon()} Changed alias {cs.bold(name)} from {existing} to {expansion}\n")
        else:
            ios.err_out.write(f"{cs.success_icon()} Added alias {cs.bold(name)}\n")

    cmd = Command(
        use="set <alias> <expansion>",
        short="Create a shortcut for an azdo command",
        long=("Define a word that will expand to a full azdo command when invoked.\n\n"
              "The expansion may specify additional arguments and flags. If the expansion includes\n"
              "positional placeholders such as \"$1\", extra arguments that follow the alias will be\n"
              "inserted appropriately. Otherwise, extra arguments are appended to the expanded command.\n\n"
              "Use \"-\" as expansion argument to read the expansion string from standard input.\n\n"
              "If the expansion starts with \"!\" or --shell is given, the expansion is a shell\n"
              "expression evaluated through the \"sh\" interpreter."),
        example=("  $ azdo alias set prls 'pr list --state=all'\n"
                 "  $ azdo prls --limit 5\n"
                 "  #=> azdo pr list --state=all --limit 5\n\n"
                 "  $ azdo alias set --shell igrep 'azdo pr list --label=\"$1\" | grep \"$2\"'"),
        args=exact_args(2, "accepts 2 arg(s): <alias> <expansion>"),
        run=run,
    )
    cmd.add_flag(Flag("shell", "s", kind="bool", help="Declare an alias to be passed through a shell interpreter"))
    cmd.add_flag(Flag("clobber", kind="bool", help="Overwrite existing aliases of the same name"))

    def read_stdin_expansion(opts):
        if len(opts.args) == 2 and opts.args[1] == "-":
            opts.args[1] = ctx.io_streams().in_.read().strip()

    cmd.pre_run_hooks.append(read_stdin_expansion)
    return cmd


def new_cmd_alias_list(ctx) -> Command:
    def run(opts):
        aliases = ctx.config().aliases().all()
        if not aliases:
            raise NoResultsError("no aliases configured")
        printer = ctx.printer("table")
        for name in sorted(aliases):
            printer.add_field(name + ":", truncate=None)
            printer.add_field(aliases[name])
            printer.end_row()
        printer.render()

    return Command(
        use="list",
        short="List your aliases",
        long="This command prints out all of the aliases azdo is configured to use.",
        aliases=["ls"],
        args=no_args(),
        run=run,
    )


def new_cmd_alias_delete(ctx) -> Command:
    def run(opts):
        name = opts.args[0]
        aliases = ctx.config().aliases()
        expansion = aliases.all().get(name)
        if not expansion:
            raise AzdoError(f'no such alias "{name}"')
        aliases.delete(name)
        ctx.config().write()
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        ios.err_out.write(f"{cs.failure_icon()} Deleted alias {cs.bold(name)}; was {expansion}\n")

    return Command(
        use="delete <alias>",
        short="Delete an alias",
        args=exact_args(1),
        run=run,
    )
