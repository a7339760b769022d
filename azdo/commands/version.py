"""
The version command.
"""

from .. import __build_date__, __version__
from ..cli.command import Command, no_args


def version_info(version: str, build_date: str = "") -> str:
    if build_date:
        return f"azdo version {version} ({build_date})\n"
    return f"azdo version {version}\n"


def new_cmd_version(ctx) -> Command:
    def run(opts):
        ctx.io_streams().out.write(version_info(__version__, __build_date__))

    return Command(
        use="version",
        short="Show azdo version",
        args=no_args(),
        run=run,
        hidden=True,
        annotations={"skip_auth_check": "true"},
    )
