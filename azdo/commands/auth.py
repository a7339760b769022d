"""
azdo auth: login, logout, status, token, switch and the git credential helper.
"""

import logging
import shutil
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, List, Optional, Tuple
from urllib.parse import urlparse

from ..classes.repository import organization_from_url
from ..cli.command import Command, Flag, exact_args, maximum_args, no_args
from ..cli.errors import AzdoError, FlagError, SilentError
from ..cli.scope import resolve_organization
from .shared import progress

logger = logging.getLogger(__name__)

URL_TYPES = ["https://dev.azure.com/{organization}", "https://{organization}.visualstudio.com"]
GIT_PROTOCOLS = ["ssh", "https"]
# Security namespace queried to prove a token works.
STATUS_NAMESPACE_ID = "5a27515b-ccd7-42c9-84f1-54c998f03866"


def new_cmd_auth(ctx) -> Command:
    cmd = Command(
        use="auth <command>",
        short="Authenticate azdo and git with Azure DevOps",
        annotations={"skip_auth_check": "true"},
    )
    cmd.add_command(
        new_cmd_login(ctx),
        new_cmd_logout(ctx),
        new_cmd_status(ctx),
        new_cmd_token(ctx),
        new_cmd_switch(ctx),
        new_cmd_setup_git(ctx),
        new_cmd_git_credential(ctx),
    )
    return cmd


# login

def new_cmd_login(ctx) -> Command:
    def run(opts):
        ios = ctx.io_streams()
        token = ""
        if opts.with_token:
            token = ios.in_.read().strip()
            if not token:
                raise FlagError("failed to read token from standard input: token is empty")
        interactive = ios.can_prompt() and not token
        login_run(ctx, opts.organization_url or "", token, opts.git_protocol or "",
                  opts.insecure_storage, interactive)

    cmd = Command(
        use="login",
        short="Authenticate with an Azure DevOps organization",
        long=(
            "Authenticate with an Azure DevOps organization.\n\n"
            "The default mode is interactive: a personal access token (PAT) is requested and stored.\n"
            "The minimum required scopes for the token are: `Code: Read`, `Project and Team: Read`.\n\n"
            "Alternatively, use `--with-token` to pass in a token on standard input, or set AZDO_TOKEN.\n"
            "Tokens are stored in the system credential store; when none is available, or with\n"
            "`--insecure-storage`, they are written in plain text to credentials.yml."
        ),
        example=(
            "  # start interactive setup\n"
            "  $ azdo auth login\n\n"
            "  # authenticate by reading the token from a file\n"
            "  $ azdo auth login --with-token < mytoken.txt\n\n"
            "  # authenticate with a specific organization\n"
            "  $ azdo auth login --organization-url https://dev.azure.com/myorg"
        ),
        args=no_args(),
        run=run,
        annotations={"skip_auth_check": "true"},
    )
    cmd.add_flag(Flag("organization-url", "o", help="The URL to the Azure DevOps organization to authenticate with"))
    cmd.add_flag(Flag("with-token", kind="bool", help="Read token from standard input"))
    cmd.add_flag(Flag("git-protocol", "p", choices=GIT_PROTOCOLS, help="The protocol to use for git operations"))
    cmd.add_flag(Flag("insecure-storage", kind="bool",
                      help="Save authentication credentials in plain text instead of credential store"))
    return cmd


def prompt_for_organization(ctx) -> Tuple[str, str]:
    """Returns (organization url, organization name)."""
    prompter = ctx.prompter()
    url_type = prompter.select("Azure DevOps Organization URL type?", URL_TYPES[0], URL_TYPES)
    name = prompter.input_organization_name().lower()
    return URL_TYPES[url_type].replace("{organization}", name), name


def login_run(ctx, organization_url: str, token: str, git_protocol: str,
              insecure_storage: bool, interactive: bool):
    prompter = ctx.prompter()
    organization = ""
    if interactive and not organization_url:
        organization_url, organization = prompt_for_organization(ctx)
    if not organization_url:
        raise FlagError("--organization-url required when not running interactively")
    if not organization:
        try:
            organization = organization_from_url(organization_url).lower()
        except ValueError as e:
            raise FlagError(f"invalid organization URL {organization_url!r}: {e}", cause=e) from e

    git_protocol = git_protocol.lower()
    if interactive and not git_protocol:
        choices = ["HTTPS", "SSH"]
        git_protocol = choices[prompter.select(
            "What is your preferred protocol for Git operations?", choices[0], choices)].lower()

    if not token:
        token = prompter.auth_token()

    auth = ctx.config().authentication()
    insecure = auth.login(organization, organization_url, token, git_protocol, not insecure_storage)

    ios = ctx.io_streams()
    cs = ios.color_scheme()
    if insecure:
        ios.err_out.write(f"{cs.warning_icon()} Authentication token stored in plain text\n")
    ios.err_out.write(f"{cs.success_icon()} Logged in to {cs.bold(organization)}\n")


# logout

def new_cmd_logout(ctx) -> Command:
    def run(opts):
        ios = ctx.io_streams()
        if not opts.organization and not ios.can_prompt():
            raise FlagError("--organization required when not running interactively")
        logout_run(ctx, opts.organization or "")

    cmd = Command(
        use="logout",
        short="Log out of an Azure DevOps organization",
        long=("Remove authentication for an Azure DevOps organization.\n\n"
              "The organization is either selected interactively or given with `--organization`."),
        example=("  $ azdo auth logout\n"
                 "  # => select what organization to log out of via a prompt\n\n"
                 "  $ azdo auth logout --organization myorg\n"
                 "  # => log out of the specified organization"),
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="The Azure DevOps organization to log out of"))
    return cmd


def logout_run(ctx, organization: str):
    ios = ctx.io_streams()
    cs = ios.color_scheme()
    auth = ctx.config().authentication()
    organizations = auth.get_organizations()

    if not organizations:
        ios.err_out.write(f"You are {cs.red('not')} logged into any Azure DevOps organizations.\n")
        raise SilentError()

    if not organization:
        if len(organizations) == 1:
            organization = organizations[0]
        else:
            selected = ctx.prompter().select("What organization do you want to log out of?", None, organizations)
            organization = organizations[selected]
    else:
        known = auth.find_organization(organization)
        if known is None:
            ios.err_out.write(
                f'You are {cs.red("not")} logged in to the Azure DevOps organization "{organization}".\n')
            raise SilentError()
        organization = known

    try:
        default = auth.get_default_organization()
    except AzdoError:
        default = ""
    if default == organization:
        if not ctx.prompter().confirm(
                f'"{organization}" is the current default organization. Perform logout?', False):
            return
        auth.set_default_organization("")

    auth.logout(organization)
    ios.err_out.write(f"{cs.success_icon()} Logged out of {cs.bold(organization)}\n")


# status

def new_cmd_status(ctx) -> Command:
    def run(opts):
        status_run(ctx, opts.args[0] if opts.args else "")

    return Command(
        use="status [organization]",
        short="View authentication status",
        long=("Verifies and displays information about your authentication state.\n\n"
              "This command tests the authentication state of every Azure DevOps organization azdo\n"
              "knows about and reports any issues."),
        args=maximum_args(1),
        run=run,
    )


def check_organization(ctx, organization: str) -> Optional[str]:
    """Return an error message, or None when the organization is reachable."""
    try:
        ctx.context().check()
        url = ctx.config().authentication().get_url(organization)
        try:
            url_organization = organization_from_url(url)
        except ValueError as e:
            return f'invalid AzDO url "{url}" for organization "{organization}": {e}'
        if url_organization.lower() != organization.lower():
            return (f'url "{url}" of organization "{organization}" does not match '
                    f"organization name from URL ({url_organization})")
        ctx.client_factory().security(organization).query_security_namespaces(
            security_namespace_id=STATUS_NAMESPACE_ID)
    except Exception as e:
        logger.debug("Status check for %s failed", organization, exc_info=True)
        return str(e)
    return None


def status_run(ctx, organization: str):
    ios = ctx.io_streams()
    cs = ios.color_scheme()
    auth = ctx.config().authentication()
    organizations = auth.get_organizations()

    if not organizations:
        ios.err_out.write(
            f"You are not logged into any Azure DevOps organizations. Run {cs.bold('azdo auth login')} "
            "to authenticate.\n")
        raise SilentError()

    to_check: List[str] = organizations
    if organization:
        known = auth.find_organization(organization)
        if known is None:
            ios.err_out.write(
                f"You are not logged into the Azure DevOps organization {cs.red(organization)}. "
                f"Run {cs.bold('azdo auth login')} to authenticate.\n")
            raise SilentError()
        to_check = [known]

    with progress(ctx):
        with ThreadPoolExecutor(max_workers=min(8, len(to_check))) as pool:
            results = list(zip(to_check, pool.map(lambda org: check_organization(ctx, org), to_check)))

    for name, error in results:
        if error:
            ios.out.write(f"{cs.red(cs.failure_icon())} {cs.bold(name)}: "
                          f"failed to check authentication status: {error}\n")
        else:
            ios.out.write(f"{cs.success_icon()} {cs.bold(name)}: successfully checked authentication status\n")


# token

def new_cmd_token(ctx) -> Command:
    def run(opts):
        organization = resolve_organization(ctx, opts.organization or "")
        token = ctx.config().authentication().get_token(organization)
        ctx.io_streams().out.write(token + "\n")

    cmd = Command(
        use="token",
        short="Print the authentication token azdo uses for an organization",
        long=("Print the token used by azdo for the given organization, or the default one.\n"
              "AZDO_TOKEN takes precedence over stored credentials."),
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="The Azure DevOps organization"))
    return cmd


# switch

def new_cmd_switch(ctx) -> Command:
    def run(opts):
        auth = ctx.config().authentication()
        organizations = auth.get_organizations()
        if not organizations:
            raise AzdoError('no organizations configured; run "azdo auth login"')
        organization = opts.organization or ""
        if not organization:
            try:
                current = auth.get_default_organization()
            except AzdoError:
                current = None
            selected = ctx.prompter().select("Which organization should be the default?", current, organizations)
            organization = organizations[selected]
        auth.set_default_organization(organization)
        ctx.config().write()
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        ios.err_out.write(f"{cs.success_icon()} Default organization is now {cs.bold(auth.find_organization(organization))}\n")

    cmd = Command(
        use="switch",
        short="Switch the default organization",
        long="Set the organization used when a command does not name one.",
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="The Azure DevOps organization to make the default"))
    return cmd


# setup-git

def azdo_executable() -> str:
    return shutil.which("azdo") or "azdo"


def new_cmd_setup_git(ctx) -> Command:
    def run(opts):
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        auth = ctx.config().authentication()
        organizations = auth.get_organizations()
        if not organizations:
            ios.err_out.write(
                f"You are not logged into any Azure DevOps organizations. Run {cs.bold('azdo auth login')} "
                "to authenticate.\n")
            raise SilentError()
        if opts.organization:
            known = auth.find_organization(opts.organization)
            if known is None:
                ios.err_out.write(
                    f'You are not logged into the Azure DevOps organization "{opts.organization}". '
                    f"Run {cs.bold('azdo auth login')} to authenticate.\n")
                raise SilentError()
            organizations = [known]

        git = ctx.git_client()
        helper = f"!{azdo_executable()} auth git-credential"
        for organization in organizations:
            url = auth.get_url(organization)
            parsed = urlparse(url)
            logger.debug("Configuring git credential helper for %s", url)
            git.set_credential_helper(url, helper)
            git.reject_credential(parsed.netloc, parsed.path.lstrip("/"))

    cmd = Command(
        use="setup-git",
        short="Setup git with azdo",
        long=("Configure git to use azdo as a credential helper.\n"
              "For more information on git credential helpers see https://git-scm.com/docs/gitcredentials.\n\n"
              "By default azdo becomes the credential helper of every authenticated organization.\n"
              "Use `--organization` to configure a single one.\n\n"
              "A credential helper only works with git remotes that use the HTTPS protocol."),
        example=("  # Use azdo as the credential helper of all authenticated organizations\n"
                 "  $ azdo auth setup-git\n\n"
                 "  # Use azdo as the credential helper of one organization\n"
                 "  $ azdo auth setup-git --organization myorg"),
        args=no_args(),
        run=run,
    )
    cmd.add_flag(Flag("organization", "o", help="Configure the git credential helper for this organization"))
    return cmd


def read_credential_request(stream) -> Dict[str, str]:
    """Parse the key=value lines git sends to a credential helper, up to a blank line."""
    wants: Dict[str, str] = {}
    for line in stream:
        line = line.rstrip("\r\n")
        if not line:
            break
        key, sep, value = line.partition("=")
        if not sep:
            continue
        if key == "url":
            parsed = urlparse(value)
            wants.update(protocol=parsed.scheme, host=parsed.netloc.rpartition("@")[2],
                         path=parsed.path.lstrip("/"), username=parsed.username or "",
                         password=parsed.password or "")
        else:
            wants[key] = value
    return wants


def organization_from_credential(wants: Dict[str, str]) -> str:
    host = wants.get("host", "").lower()
    if host.endswith(".visualstudio.com"):
        return host.split(".")[0]
    if host == "dev.azure.com":
        if "path" not in wants:
            raise AzdoError("authenticating via dev.azure.com host requires path parameter")
        return wants["path"].lstrip("/").split("/")[0]
    raise AzdoError(f"not an Azure DevOps host {host}")


def new_cmd_git_credential(ctx) -> Command:
    def run(opts):
        operation = opts.args[0]
        if operation in ("store", "erase"):
            return
        if operation != "get":
            raise AzdoError(f'azdo auth git-credential: "{operation}" operation not supported')

        ios = ctx.io_streams()
        wants = read_credential_request(ios.in_)
        if wants.get("protocol") != "https":
            raise AzdoError(f"protocol {wants.get('protocol', '')} != https")
        organization = organization_from_credential(wants)
        if not organization:
            raise AzdoError(f"unable to get token from host {wants.get('host')} or path {wants.get('path')}")
        try:
            token = ctx.config().authentication().get_token(organization)
        except AzdoError as e:
            raise AzdoError(f"unable to get token for organization {organization}") from e
        if not token:
            raise AzdoError(f"unable to get token for organization {organization}")

        ios.out.write(f"protocol=https\nhost={wants['host']}\nusername=azdo\npassword={token}\n")

    return Command(
        use="git-credential <operation>",
        short="Implements the git credential helper protocol",
        hidden=True,
        args=exact_args(1, "operation required"),
        run=run,
    )
