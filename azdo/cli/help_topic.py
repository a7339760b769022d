"""
Help topics reachable through "azdo help <topic>".
"""

import textwrap

from .command import Command, no_args

MINTTY = textwrap.dedent("""\
    MinTTY is the terminal emulator that ships with Git for Windows. azdo
    cannot reliably prompt for input inside it.

    Workarounds:

    - Reinstall Git for Windows and enable the experimental support for pseudo consoles.

    - Use another terminal emulator such as Windows Terminal. Running
      "C:\\Program Files\\Git\\bin\\bash.exe" from it keeps the Git for Windows tooling available.

    - Prefix invocations with winpty, e.g. "winpty azdo auth login". This can cause rendering glitches.
""")

ENVIRONMENT = textwrap.dedent("""\
    AZDO_TOKEN: an authentication token for Azure DevOps API requests. Setting this avoids
    being prompted to authenticate and takes precedence over stored credentials.

    AZDO_ORGANIZATION: the default Azure DevOps organization when not inside a repository.
    A credential for exactly this organization must exist; AZDO_TOKEN counts as one.

    AZDO_REPO: the repository to operate on, in "[ORGANIZATION/]PROJECT/REPO" format, instead
    of the one found in the git remotes of the current directory.

    AZDO_EDITOR, GIT_EDITOR, VISUAL, EDITOR (in order of precedence): the editor used for
    authoring text.

    AZDO_BROWSER, BROWSER (in order of precedence): the web browser used for opening links.

    AZDO_DEBUG: set to a truthy value to enable verbose output on standard error. Set to "api"
    to additionally log HTTP traffic.

    AZDO_PAGER, PAGER (in order of precedence): a terminal paging program to send standard
    output to, e.g. "less".

    AZDO_TIMEOUT: a deadline for the whole invocation such as "90s" or "5m". Running requests
    and polls are cancelled when it expires.

    NO_COLOR: set to any value to avoid printing ANSI escape sequences for color output.

    CLICOLOR: set to "0" to disable printing ANSI colors in output.

    CLICOLOR_FORCE: set to a value other than "0" to keep ANSI colors in output even when
    the output is piped.

    AZDO_FORCE_TTY: set to any value to force terminal-style output even when the output is
    redirected. A number is taken as the number of columns of the viewport; a percentage is
    applied to the columns of the current viewport.

    AZDO_CONFIG_DIR: the directory where azdo stores configuration files. Defaults to the
    first of:
      - "$XDG_CONFIG_HOME/azdo" (if $XDG_CONFIG_HOME is set),
      - "$AppData/AzDO CLI" (on Windows if $AppData is set), or
      - "$HOME/.config/azdo".

    AZDO_PROMPT_DISABLED: set to any value to disable interactive prompting in the terminal.
""")

EXIT_CODES = textwrap.dedent("""\
    azdo follows normal conventions regarding exit codes.

    - If a command completes successfully, the exit code will be 0

    - If a command fails for any reason, the exit code will be 1

    - If a command is running but gets cancelled, the exit code will be 2

    - If a command encounters an authentication issue, the exit code will be 4

    - A shell alias exits with the exit code of the shell

    NOTE: a particular command may have more exit codes; check its documentation when
    relying on exit codes to control some behavior.
""")

FORMATTING = textwrap.dedent("""\
    By default azdo prints line based plain text. Commands that support the `--json` flag
    print JSON instead, which can be reshaped with either `--jq` or `--template`.

    `--json` takes a comma separated list of fields. Run the command with `--json` and no
    value to see the available field names. `--jq` and `--template` require `--json`.

    `--jq` takes a query in jq syntax and prints the matching values; strings are printed
    without quotes. The jq executable does not need to be installed. See
    <https://jqlang.github.io/jq/manual/>

    `--template` takes a Jinja2 template. The selected data is available as `data`; when
    it is an object its keys are also available directly. These functions can be used:
    - `autocolor(style, text)`: like `color`, but only emits color to terminals
    - `color(style, text)`: colorize text with a style such as "green" or "bold red"
    - `join(sep, list)`: joins values in the list using a separator
    - `pluck(field, list)`: collects the values of a field from all items
    - `tablerow(fields...)`: aligns fields in output vertically as a table
    - `tablerender()`: renders fields added by tablerow in place
    - `timeago(time)`: renders a timestamp relative to now
    - `timefmt(format, time)`: formats a timestamp with strftime directives
    - `truncate(length, text)`: ensures text fits within length
    - `hyperlink(url, text)`: renders a terminal hyperlink

    To learn more about Jinja2 templates, see <https://jinja.palletsprojects.com/templates/>.
""")

FORMATTING_EXAMPLE = textwrap.dedent("""\
    # select fields
    $ azdo pr list --json pullRequestId,title,createdBy

    # print only the titles
    $ azdo pr list --json title --jq '.[].title'

    # custom table
    $ azdo pr list --json pullRequestId,title,sourceRefName --template \\
        '{% for pr in data %}{{ tablerow(autocolor("green", pr.pullRequestId), pr.title, pr.sourceRefName) }}{% endfor %}'
""")

HELP_TOPICS = [
    ("mintty", "Information about using azdo with MinTTY", MINTTY, ""),
    ("environment", "Environment variables that can be used with azdo", ENVIRONMENT, ""),
    ("exit-codes", "Exit codes used by azdo", EXIT_CODES, ""),
    ("formatting", "Formatting options for JSON data exported from azdo", FORMATTING, FORMATTING_EXAMPLE),
    ("reference", "A comprehensive reference of all azdo commands", "", ""),
]


def render_topic(cmd: Command) -> str:
    text = cmd.long
    if cmd.example:
        text = text.rstrip("\n") + "\n\nEXAMPLES\n" + textwrap.indent(cmd.example, "  ")
    return text


def new_cmd_help_topic(ctx, name: str, short: str, long: str, example: str = "", listed: bool = True) -> Command:
    """listed=False keeps the topic out of the HELP TOPICS section of root help."""
    def run(opts):
        ctx.io_streams().out.write(render_topic(cmd))

    cmd = Command(
        use=name,
        short=short,
        long=long,
        example=example,
        args=no_args(),
        run=run,
        hidden=True,
        annotations={"help_topic": "true", "skip_auth_check": "true"},
    )
    if not listed:
        cmd.annotations["help_topic_listed"] = "false"
    return cmd
