"""
Helpers shared by the leaf commands: confirmation, repository resolution,
progress reporting and identity lookups.
"""

import contextlib
import logging
from typing import Optional

from ..classes.repository import Repository
from ..cli.command import Flag
from ..cli.errors import AzdoError, CancelError, FlagError, NotFoundError, is_not_found_error
from ..cli.scope import ME, parse_target
from ..config.config_loader import InvalidConfigFileError
from ..helpers.browser import open_url

logger = logging.getLogger(__name__)

YES_FLAG_HELP = "Do not prompt for confirmation"


def yes_flag() -> Flag:
    return Flag("yes", "y", kind="bool", help=YES_FLAG_HELP)


def confirm(ctx, yes: bool, message: str):
    """
    Ask once before a destructive change.

    Raises:
        FlagError: Confirmation is needed but prompting is not possible
        CancelError: The user answered no
    """
    if yes:
        return
    if not ctx.io_streams().can_prompt() or ctx.prompt_disabled():
        raise FlagError("--yes required when not running interactively")
    if not ctx.prompter().confirm(message, False):
        raise CancelError()


def confirm_deletion(ctx, yes: bool, name: str):
    """Like confirm, but the user has to type name back."""
    if yes:
        return
    if not ctx.io_streams().can_prompt() or ctx.prompt_disabled():
        raise FlagError("--yes required when not running interactively")
    ctx.prompter().confirm_deletion(name)


def repository_from_arg(ctx, value: Optional[str]) -> Repository:
    """
    [ORGANIZATION/]PROJECT/REPO when given, otherwise the repository of the
    current working copy.
    """
    if value:
        return parse_target(ctx, value).repository()
    return ctx.repo_context().current_repository()


def get_git_repository(ctx, repo: Repository):
    """Fetch the server side repository, raising NotFoundError when missing."""
    git = ctx.client_factory().git(repo.organization)
    try:
        result = git.get_repository(repo.name, project=repo.project)
    except Exception as e:
        if is_not_found_error(e):
            raise NotFoundError(f'repository "{repo.full_name()}" not found') from e
        raise
    if result is None:
        raise NotFoundError(f'repository "{repo.full_name()}" not found')
    return result


@contextlib.contextmanager
def progress(ctx, label: str = ""):
    ios = ctx.io_streams()
    ios.start_progress_indicator(label)
    try:
        yield
    finally:
        ios.stop_progress_indicator()


def resolve_identity_id(ctx, organization: str, value: str) -> str:
    """
    Resolve a user to its identity id. "@me" is the authenticated user.
    """
    value = value.strip()
    if value.lower() == ME:
        user = ctx.client_factory().rest(organization).get_authenticated_user()
        identity_id = user.get("id") or ""
        if not identity_id:
            raise AzdoError("the authenticated user does not have an id")
        return identity_id
    identity = ctx.client_factory().identity(organization)
    identities = identity.read_identities(search_filter="General", filter_value=value) or []
    if not identities:
        raise AzdoError(f'no identity found for "{value}"')
    return str(identities[0].id)


def render_or_export(ctx, opts, data, render):
    """Write data through the exporter when --json was given, otherwise call render()."""
    if opts.exporter is not None:
        opts.exporter.write(ctx.io_streams(), data)
        return
    render()


def open_in_browser(ctx, url: str):
    try:
        configured = ctx.config().get_or_default(["browser"])
    except InvalidConfigFileError:
        configured = ""
    open_url(ctx.io_streams(), url, configured)
