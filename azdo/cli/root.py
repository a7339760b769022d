"""
Root command, alias registration and the dispatcher that turns argv into a
command run.
"""

import logging
from typing import List, Tuple

from .alias import MAX_ALIAS_DEPTH, AliasExpansionError, expand_alias, is_shell_alias, run_shell_alias
from .command import Command, Flag
from .errors import AuthError, FlagError
from .help import render_help, render_reference, render_usage, suggestions_for
from .help_topic import HELP_TOPICS, new_cmd_help_topic, render_topic
from .. import __build_date__, __version__
from ..commands.alias import new_cmd_alias
from ..commands.auth import new_cmd_auth
from ..commands.boards import new_cmd_boards
from ..commands.config import new_cmd_config
from ..commands.graph import new_cmd_graph
from ..commands.pr import new_cmd_pr
from ..commands.project import new_cmd_project
from ..commands.repo import new_cmd_repo
from ..commands.security import new_cmd_security
from ..commands.service_endpoint import new_cmd_service_endpoint
from ..commands.version import new_cmd_version, version_info
from ..helpers.text import truncate

logger = logging.getLogger(__name__)

ALIAS_GROUP = "alias"
HELP_FLAGS = ("-h", "--help")

AUTH_MESSAGE = (
    "To get started with Azure DevOps CLI, please run:  azdo auth login\n"
    "Alternatively, populate the AZDO_TOKEN environment variable with an Azure DevOps API authentication token.")


def new_cmd_root(ctx) -> Command:
    root = Command(
        use="azdo <command> <subcommand> [flags]",
        short="Azure DevOps CLI",
        long="Work seamlessly with Azure DevOps from the command line.",
        example="  $ azdo repo list myproject\n  $ azdo pr list\n  $ azdo pr checkout 321",
        annotations={"versionInfo": version_info(__version__, __build_date__)},
    )
    root.add_flag(Flag("version", kind="bool", help="Show azdo version"))

    root.add_group("core", "Core commands")
    root.add_group("security", "Security commands")
    root.add_group("admin", "Administration commands")

    root.add_command(new_cmd_auth(ctx))
    root.add_command(new_cmd_config(ctx))
    root.add_command(new_cmd_alias(ctx))
    root.add_command(new_cmd_version(ctx))

    for factory in (new_cmd_project, new_cmd_repo, new_cmd_pr, new_cmd_boards):
        command = factory(ctx)
        command.group_id = "core"
        root.add_command(command)
    for factory in (new_cmd_security, new_cmd_graph):
        command = factory(ctx)
        command.group_id = "security"
        root.add_command(command)
    command = new_cmd_service_endpoint(ctx)
    command.group_id = "admin"
    root.add_command(command)

    for name, short, long, example in HELP_TOPICS:
        topic = new_cmd_help_topic(ctx, name, short, long, example, listed=name != "reference")
        if name == "reference":
            topic.run = lambda opts: _run_reference(ctx, root)
        root.add_command(topic)
    return root


def _run_reference(ctx, root: Command):
    ios = ctx.io_streams()
    ios.start_pager()
    try:
        ios.out.write(render_reference(root, ios.color_scheme()))
    finally:
        ios.stop_pager()


def register_aliases(root: Command, aliases: dict):
    """Add the configured aliases to the tree; names taken by built-ins are skipped."""
    for path, expansion in sorted(aliases.items()):
        words = path.split()
        if not words:
            continue
        parent = root
        for word in words[:-1]:
            parent = parent.find_child(word)
            if parent is None:
                break
        if parent is None:
            logger.debug("Skipping alias %r: no command %r", path, " ".join(words[:-1]))
            continue
        name = words[-1]
        if parent.find_child(name) is not None:
            logger.debug("Skipping alias %r: collides with a built-in command", path)
            continue
        kind = "Shell alias" if is_shell_alias(expansion) else "Alias"
        shown = expansion[1:] if is_shell_alias(expansion) else expansion
        parent.add_group(ALIAS_GROUP, "Alias commands")
        parent.add_command(Command(
            use=name,
            short=truncate(80, f'{kind} for "{shown}"'),
            group_id=ALIAS_GROUP,
            disable_flag_parsing=True,
            annotations={"alias_expansion": expansion, "skip_auth_check": "true"},
        ))


def build_root(ctx) -> Command:
    root = new_cmd_root(ctx)
    register_aliases(root, ctx.config().aliases().all())
    return root


def find_command(root: Command, argv: List[str]) -> Tuple[Command, List[str]]:
    node = root
    index = 0
    while index < len(argv):
        token = argv[index]
        if token.startswith("-"):
            break
        child = node.find_child(token)
        if child is None:
            break
        node = child
        index += 1
    return node, list(argv[index:])


def auth_check_required(cmd: Command) -> bool:
    node = cmd
    while node is not None:
        if node.annotations.get("skip_auth_check") == "true":
            return False
        node = node.parent
    return True


def _wants_help(tokens: List[str]) -> bool:
    if "--" in tokens:
        tokens = tokens[:tokens.index("--")]
    return any(token in HELP_FLAGS for token in tokens)


def _unknown_command(node: Command, typed: str) -> FlagError:
    message = f'unknown command "{typed}" for "{node.command_path()}"'
    candidates = suggestions_for(node, typed)
    if candidates:
        message += "\n\nDid you mean this?\n" + "".join(f"\t{c}\n" for c in candidates)
    error = FlagError(message)
    error.usage = render_usage(node)
    return error


def _print_help(ctx, node: Command):
    ios = ctx.io_streams()
    if node.is_help_topic():
        ios.out.write(render_topic(node))
        return
    ios.out.write(render_help(node, ios.color_scheme()))


def _run_help_command(ctx, root: Command, args: List[str]):
    node, rest = find_command(root, args)
    if rest and node is root:
        raise FlagError(f'unknown help topic "{" ".join(args)}"')
    if rest:
        raise _unknown_command(node, rest[0])
    _print_help(ctx, node)


def execute(ctx, root: Command, argv: List[str], depth: int = 0):
    """
    Resolve argv against the tree and run the selected command.

    Raises:
        FlagError: Bad command, flag or argument; carries a usage attribute
        AuthError: The command needs credentials and none are configured
    """
    if argv and argv[0] == "help" and root.find_child("help") is None:
        _run_help_command(ctx, root, argv[1:])
        return

    node, rest = find_command(root, argv)

    if node.is_alias():
        if depth >= MAX_ALIAS_DEPTH:
            raise AliasExpansionError(f"alias expansion exceeded the maximum depth of {MAX_ALIAS_DEPTH}")
        expansion = node.annotations["alias_expansion"]
        if is_shell_alias(expansion):
            run_shell_alias(expansion, rest, ctx.io_streams())
            return
        expanded = expand_alias(expansion, rest)
        logger.debug("Expanded alias %s to %s", node.command_path(), expanded)
        execute(ctx, root, expanded, depth + 1)
        return

    if node is root and rest and rest[0] == "--version":
        ctx.io_streams().out.write(root.annotations["versionInfo"])
        return

    if _wants_help(rest):
        _print_help(ctx, node)
        return

    if not node.runnable():
        if rest and not rest[0].startswith("-"):
            raise _unknown_command(node, rest[0])
        if rest:
            error = FlagError(f"unknown flag: {rest[0]}")
            error.usage = render_usage(node)
            raise error
        _print_help(ctx, node)
        return

    if auth_check_required(node) and not ctx.config().authentication().check_auth():
        raise AuthError(AUTH_MESSAGE)

    try:
        opts = node.parse(rest)
        node.args(node, opts.args)
        node.validate_flags(opts)
        for owner in list(reversed(node.ancestors())) + [node]:
            for hook in owner.pre_run_hooks:
                hook(opts)
        logger.debug("Running %s with %s", node.command_path(), opts.args)
        node.run(opts)
    except FlagError as e:
        if getattr(e, "usage", None) is None:
            e.usage = render_usage(node)
        raise
