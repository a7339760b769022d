"""
azdo config: get, set and list configuration values.
"""

import logging

from ..cli.command import Command, Flag, exact_args, no_args
from ..cli.errors import AzdoError, FlagError, SilentError
from ..config.config_loader import ORGANIZATIONS, PAT, KeyNotFoundError, options

logger = logging.getLogger(__name__)


def new_cmd_config(ctx) -> Command:
    lines = "\n".join(f"- {o.key}: {o.description}" +
                      (f" {{{'|'.join(o.allowed_values)}}}" if o.allowed_values else "") +
                      (f' (default "{o.default}")' if o.default else "")
                      for o in options())
    cmd = Command(
        use="config <command>",
        short="Manage configuration for azdo",
        long=f"Display or change configuration settings for azdo.\n\nCurrent respected settings:\n{lines}",
        annotations={"skip_auth_check": "true"},
    )
    cmd.add_command(new_cmd_config_get(ctx), new_cmd_config_set(ctx), new_cmd_config_list(ctx))
    return cmd


def _known_organization(ctx, organization: str) -> str:
    """Return the configured spelling or print a hint and raise SilentError."""
    if not organization:
        return ""
    known = ctx.config().authentication().find_organization(organization)
    if known is None:
        ios = ctx.io_streams()
        ios.err_out.write(
            f'You are not logged into the Azure DevOps organization "{organization}". '
            f"Run {ios.color_scheme().bold('azdo auth login')} to authenticate.\n")
        raise SilentError()
    return known


def _key_path(organization: str, key: str):
    if organization:
        return [ORGANIZATIONS, organization, key]
    return [key]


def new_cmd_config_get(ctx) -> Command:
    def run(opts):
        cfg = ctx.config()
        organization = _known_organization(ctx, opts.organization)
        key = opts.args[0]
        out = ctx.io_streams().out

        if organization and key == PAT:
            try:
                token = cfg.authentication().get_token(organization)
            except AzdoError as e:
                raise FlagError(f"failed to get token for organization {organization}; {e}", cause=e) from e
            out.write(token + "\n")
            return

        value = cfg.get_or_default(_key_path(organization, key))
        if value:
            out.write(f"{value}\n")

    cmd = Command(
        use="get <key>",
        short="Print the value of a given configuration key",
        example="  $ azdo config get git_protocol\n  https",
        args=exact_args(1),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="Get per-organization setting"))
    return cmd


def validate_value(key: str, value: str):
    for option in options():
        if option.key == key and option.allowed_values and value not in option.allowed_values:
            allowed = ", ".join(f"'{v}'" for v in option.allowed_values)
            raise AzdoError(f'failed to set "{key}" to "{value}": valid values are {allowed}')


def new_cmd_config_set(ctx) -> Command:
    def run(opts):
        expected = 1 if opts.remove else 2
        if len(opts.args) != expected:
            raise FlagError(f"accepts {expected} arg(s), received {len(opts.args)}")
        cfg = ctx.config()
        ios = ctx.io_streams()
        key = opts.args[0]

        if key not in {o.key for o in options()}:
            ios.err_out.write(f'{ios.color_scheme().warning_icon()} "{key}" is not a known configuration key\n')

        organization = _known_organization(ctx, opts.organization)
        if opts.remove:
            if not organization:
                raise FlagError("configuration values can only be removed for organizations. "
                                "Please specify the organization via -o")
            try:
                cfg.remove(_key_path(organization, key))
            except KeyNotFoundError:
                logger.debug("Nothing to remove for %s", key)
                return
        else:
            value = opts.args[1]
            validate_value(key, value)
            cfg.set(_key_path(organization, key), value)

        try:
            cfg.write()
        except OSError as e:
            raise AzdoError(f"failed to write config to disk: {e}") from e

    cmd = Command(
        use="set <key> <value>",
        short="Update configuration with a value for the given key",
        example=("  $ azdo config set editor vim\n"
                 '  $ azdo config set editor "code --wait"\n'
                 "  $ azdo config set git_protocol ssh --organization myorg\n"
                 "  $ azdo config set prompt disabled\n"
                 "  $ azdo config set -r -o myorg git_protocol"),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="Set per-organization setting"))
    cmd.add_flag(Flag("remove", "r", kind="bool",
                      help="Remove config item for an organization, so that the default value will be in effect again"))
    return cmd


def new_cmd_config_list(ctx) -> Command:
    def run(opts):
        cfg = ctx.config()
        organization = _known_organization(ctx, opts.organization)
        out = ctx.io_streams().out
        for option in options():
            value = cfg.get_or_default(_key_path(organization, option.key))
            if value or opts.all:
                out.write(f"{option.key}={value}\n")

    cmd = Command(
        use="list",
        short="Print a list of configuration keys and values",
        aliases=["ls"],
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="Get per-organization configuration"))
    cmd.add_flag(Flag("all", kind="bool", help="Show config options which are not configured"))
    return cmd
