"""
Resolve the Azure DevOps repository behind the local git checkout.
"""

import logging
from typing import List, Optional

from ..cli.errors import AzdoError
from .repository import Repository, repository_from_url

logger = logging.getLogger(__name__)

REMOTE_SCORES = {"upstream": 3, "azdo": 2, "origin": 1}
DEFAULT_RESOLUTION = "default"


class Remote:
    def __init__(self, name: str, repository: Repository, resolved: str = ""):
        self.name = name
        self.repository = repository
        self.resolved = resolved

    def __repr__(self):
        return f"Remote({self.name!r}, {self.repository!r})"

    def __str__(self):
        return self.repository.full_name()


class NoAzureDevOpsRemoteError(AzdoError):
    def __init__(self):
        super().__init__("none of the git remotes configured for this repository point to a known Azure DevOps host")


class RemoteSet:
    """
    Remotes pointing at Azure DevOps, best candidate first. A remote marked
    as default with "azdo repo set-default" wins over the name based scores.
    """

    def __init__(self, remotes: List[Remote]):
        self.remotes = sorted(remotes, key=lambda r: (r.resolved != DEFAULT_RESOLUTION,
                                                      -REMOTE_SCORES.get(r.name, 0)))

    @classmethod
    def from_git(cls, git_client) -> "RemoteSet":
        resolutions = git_client.remote_resolutions()
        remotes = []
        for name, url in git_client.remotes():
            try:
                remotes.append(Remote(name, repository_from_url(url), resolutions.get(name, "")))
            except ValueError:
                logger.debug("Ignoring remote %s (%s)", name, url)
        return cls(remotes)

    def __len__(self):
        return len(self.remotes)

    def __iter__(self):
        return iter(self.remotes)

    def find_by_repository(self, repository: Repository) -> Remote:
        for remote in self.remotes:
            if remote.repository == repository:
                return remote
        raise AzdoError(f"no git remote points to {repository.full_name()}")

    def default(self) -> Remote:
        if not self.remotes:
            raise NoAzureDevOpsRemoteError()
        return self.remotes[0]

    def resolved_default(self) -> Optional[Remote]:
        """The remote chosen with set-default, if any."""
        for remote in self.remotes:
            if remote.resolved == DEFAULT_RESOLUTION:
                return remote
        return None
