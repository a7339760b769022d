"""
Repository references and Azure DevOps URL parsing.
"""

import re
from typing import Optional
from urllib.parse import unquote, urlparse

from ..config.config import Config

_ORGANIZATION = r"[\w\-_.\s]+"
_PROJECT = r"[^/]+"
_NAME = r"[^/]+"

REPOSITORY_PATTERN = re.compile(rf"^(?:({_ORGANIZATION})/)?({_PROJECT})/({_NAME})$")


class InvalidRepositoryError(ValueError):
    def __init__(self, value: str):
        super().__init__(
            f'not a valid repository name, expected the "[ORGANIZATION/]PROJECT/REPO" format, got "{value}"')
        self.value = value


class Repository:
    """An immutable (organization, project, name) triple."""

    __slots__ = ("_organization", "_project", "_name", "_hostname")

    def __init__(self, organization: str, project: str, name: str = "", hostname: str = ""):
        self._organization = organization
        self._project = project
        self._name = name
        self._hostname = hostname or Config.DEFAULT_HOSTNAME

    @property
    def organization(self) -> str:
        return self._organization

    @property
    def project(self) -> str:
        return self._project

    @property
    def name(self) -> str:
        return self._name

    @property
    def hostname(self) -> str:
        return self._hostname

    def full_name(self) -> str:
        parts = [self._organization, self._project]
        if self._name:
            parts.append(self._name)
        return "/".join(parts)

    def remote_url(self, protocol: str = "https") -> str:
        if protocol == "ssh":
            return f"git@ssh.{self._hostname}:v3/{self._organization}/{self._project}/{self._name}"
        return f"https://{self._hostname}/{self._organization}/{self._project}/_git/{self._name}"

    def web_url(self) -> str:
        return self.remote_url("https")

    def __eq__(self, other):
        if not isinstance(other, Repository):
            return NotImplemented
        return (self._organization.lower(), self._project.lower(), self._name.lower()) == \
            (other._organization.lower(), other._project.lower(), other._name.lower())

    def __hash__(self):
        return hash((self._organization.lower(), self._project.lower(), self._name.lower()))

    def __repr__(self):
        return f"Repository({self.full_name()!r})"

    def __str__(self):
        return self.full_name()


def repository_from_name(value: str, default_organization: Optional[str] = None) -> Repository:
    """Parse "[ORGANIZATION/]PROJECT/REPO"."""
    match = REPOSITORY_PATTERN.match(value.strip())
    if not match:
        raise InvalidRepositoryError(value)
    organization, project, name = match.groups()
    if not organization:
        if not default_organization:
            raise InvalidRepositoryError(value)
        organization = default_organization
    return Repository(organization.strip(), project.strip(), name.strip())


def is_azure_devops_host(hostname: str) -> bool:
    hostname = (hostname or "").lower()
    return hostname == "dev.azure.com" or hostname.endswith(".dev.azure.com") \
        or hostname.endswith(".visualstudio.com")


def organization_from_url(url: str) -> str:
    """https://dev.azure.com/org or https://org.visualstudio.com -> org"""
    parsed = urlparse(url)
    hostname = (parsed.hostname or "").lower()
    if hostname.endswith(".visualstudio.com"):
        return hostname.split(".")[0]
    if hostname == "dev.azure.com":
        segments = [s for s in parsed.path.split("/") if s]
        if segments:
            return unquote(segments[0])
    raise ValueError(f'unable to determine organization from URL "{url}"')


def _parse_scp_like(url: str) -> Optional[str]:
    # git@ssh.dev.azure.com:v3/org/project/repo
    match = re.match(r"^(?:[\w.-]+@)?([\w.-]+):(?!//)(.*)$", url)
    if not match:
        return None
    return f"ssh://{match.group(1)}/{match.group(2)}"


def repository_from_url(url: str) -> Repository:
    """Build a Repository from an Azure DevOps https or ssh clone URL."""
    normalized = url.strip()
    if "://" not in normalized:
        normalized = _parse_scp_like(normalized) or normalized
    parsed = urlparse(normalized)
    hostname = (parsed.hostname or "").lower()
    if not is_azure_devops_host(hostname):
        raise ValueError(f'not an Azure DevOps URL: "{url}"')

    segments = [unquote(s) for s in parsed.path.split("/") if s]
    if parsed.scheme in ("https", "http"):
        if "_git" not in segments:
            raise ValueError(f'invalid Azure DevOps URL, missing "/_git": "{url}"')
        index = segments.index("_git")
        if index + 1 >= len(segments):
            raise ValueError(f'invalid Azure DevOps URL: "{url}"')
        name = segments[index + 1]
        prefix = segments[:index]
        if hostname.endswith(".visualstudio.com"):
            organization = hostname.split(".")[0]
            project = prefix[-1] if prefix else name
        else:
            if not prefix:
                raise ValueError(f'invalid Azure DevOps URL: "{url}"')
            organization = prefix[0]
            project = prefix[1] if len(prefix) > 1 else name
        return Repository(organization, project, name, "dev.azure.com")

    if parsed.scheme == "ssh":
        if len(segments) != 4 or not re.match(r"^v\d+$", segments[0]):
            raise ValueError(f'invalid Azure DevOps SSH URL: "{url}"')
        _, organization, project, name = segments
        return Repository(organization, project, name, "dev.azure.com")

    raise ValueError(f'unsupported URL scheme in "{url}"')
