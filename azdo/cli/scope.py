"""
Parsing of [ORGANIZATION/]PROJECT[/TARGET] arguments and resolution of
projects and subjects to server side identifiers.
"""

import logging
from typing import List, Optional, Tuple

from .errors import AzdoError, FlagError, NoDefaultOrganizationError
from ..classes.repository import InvalidRepositoryError, Repository

logger = logging.getLogger(__name__)

ME = "@me"


class Scope:
    """
    A parsed (organization, project, target) triple.

    str() gives back the argument as the user spelled it, with whitespace
    around segments removed; qualified() always includes the resolved
    organization.
    """

    def __init__(self, organization: str, project: str = "", target: str = "", given: str = ""):
        self.organization = organization
        self.project = project
        self.target = target
        self.given = given

    def repository(self) -> Repository:
        return Repository(self.organization, self.project, self.target)

    def __eq__(self, other):
        if not isinstance(other, Scope):
            return NotImplemented
        return (self.organization, self.project, self.target) == \
            (other.organization, other.project, other.target)

    def __repr__(self):
        return f"Scope({self.organization!r}, {self.project!r}, {self.target!r})"

    def qualified(self) -> str:
        return "/".join(part for part in (self.organization, self.project, self.target) if part)

    def __str__(self):
        return self.given or self.qualified()


def _segments(value: str) -> List[str]:
    return [segment.strip() for segment in value.strip().split("/")]


def _auth(ctx):
    return ctx.config().authentication()


def resolve_organization(ctx, organization: str = "") -> str:
    """
    Return the configured spelling of an explicit organization, or the
    default organization when none was given.
    """
    auth = _auth(ctx)
    organization = (organization or "").strip()
    if not organization:
        try:
            return auth.get_default_organization()
        except NoDefaultOrganizationError as e:
            raise NoDefaultOrganizationError(f"no default organization: {e}") from e
    known = auth.find_organization(organization)
    if known:
        return known
    if auth.is_known(organization):
        return organization
    raise AzdoError(f'organization "{organization}" is not configured; run "azdo auth login"')


def parse_scope(ctx, value: str) -> Scope:
    """
    PROJECT, ORGANIZATION/PROJECT or ORGANIZATION/PROJECT/TARGET.
    """
    segments = _segments(value)
    if not value.strip() or len(segments) > 3 or any(not segment for segment in segments):
        raise FlagError(str(InvalidRepositoryError(value)))
    if len(segments) == 1:
        return Scope(resolve_organization(ctx), segments[0], given="/".join(segments))
    organization = resolve_organization(ctx, segments[0])
    if len(segments) == 2:
        return Scope(organization, segments[1], given="/".join(segments))
    return Scope(organization, segments[1], segments[2], given="/".join(segments))


def parse_project_scope(ctx, value: str) -> Scope:
    """[ORGANIZATION/]PROJECT"""
    segments = _segments(value)
    if not value.strip() or len(segments) > 2 or any(not segment for segment in segments):
        raise FlagError(f'invalid project scope, expected the "[ORGANIZATION/]PROJECT" format, got "{value}"')
    if len(segments) == 1:
        return Scope(resolve_organization(ctx), segments[0], given="/".join(segments))
    return Scope(resolve_organization(ctx, segments[0]), segments[1], given="/".join(segments))


def parse_target(ctx, value: str) -> Scope:
    """[ORGANIZATION/]PROJECT/TARGET; the target is required."""
    segments = _segments(value)
    if len(segments) not in (2, 3) or any(not segment for segment in segments):
        raise FlagError(str(InvalidRepositoryError(value)))
    if len(segments) == 2:
        return Scope(resolve_organization(ctx), segments[0], segments[1], given="/".join(segments))
    return Scope(resolve_organization(ctx, segments[0]), segments[1], segments[2], given="/".join(segments))


def parse_organization_arg(ctx, value: Optional[str] = None) -> str:
    value = (value or "").strip()
    if "/" in value:
        raise FlagError(f'invalid organization "{value}"')
    return resolve_organization(ctx, value)


def parse_subject_target(ctx, value: str) -> Scope:
    """
    Targets of the permission commands:

        ORGANIZATION
        ORGANIZATION/SUBJECT
        ORGANIZATION/PROJECT/SUBJECT

    An empty value selects the default organization.
    """
    if not value.strip():
        return Scope(resolve_organization(ctx))
    segments = _segments(value)
    if len(segments) > 3:
        raise FlagError(f'invalid target "{value}"')
    if not segments[0]:
        raise FlagError("organization must not be empty")
    organization = resolve_organization(ctx, segments[0])
    if len(segments) == 1:
        return Scope(organization, given="/".join(segments))
    if len(segments) == 2:
        if not segments[1]:
            raise FlagError("subject must not be empty")
        return Scope(organization, "", segments[1], given="/".join(segments))
    if not segments[1]:
        raise FlagError("project must not be empty")
    if not segments[2]:
        raise FlagError("subject must not be empty")
    return Scope(organization, segments[1], segments[2], given="/".join(segments))


def resolve_scope_descriptor(ctx, organization: str, project: str) -> Tuple[Optional[str], Optional[str]]:
    """
    Look up a project and its graph scope descriptor.

    Returns:
        (project id, scope descriptor), both None when project is empty
    """
    if not project:
        return None, None
    core = ctx.client_factory().core(organization)
    project_ref = core.get_project(project)
    if project_ref is None or not getattr(project_ref, "id", None):
        raise AzdoError("project storage key is missing")

    graph = ctx.client_factory().graph(organization)
    descriptor = graph.get_descriptor(project_ref.id)
    value = getattr(descriptor, "value", None)
    if not value:
        raise AzdoError("project descriptor is empty")
    logger.debug("Project %s has id %s and descriptor %s", project, project_ref.id, value)
    return str(project_ref.id), value


def resolve_subject_descriptor(ctx, organization: str, subject: str) -> str:
    """
    Resolve a user or group to its identity descriptor.

    "@me" is the authenticated user; anything else is searched by account
    name, mail address or display name.
    """
    subject = subject.strip()
    if subject.lower() == ME:
        user = ctx.client_factory().rest(organization).get_authenticated_user()
        descriptor = user.get("descriptor") or ""
        if not descriptor:
            raise AzdoError("the authenticated user does not have a descriptor")
        return descriptor

    identity = ctx.client_factory().identity(organization)
    identities = identity.read_identities(search_filter="General", filter_value=subject) or []
    if not identities:
        raise AzdoError(f'no identity found for "{subject}"')
    descriptor = getattr(identities[0], "descriptor", None) or ""
    if not descriptor:
        raise AzdoError(f'identity "{subject}" does not have a descriptor')
    logger.debug("Resolved %s to descriptor %s", subject, descriptor)
    return descriptor
