"""
Azure DevOps access for the azdo command line tool.
Contains the REST wrapper, SDK client factories, repository references and
local git helpers.
"""

from .AzureDevOps import AzureDevOps, AzureDevOpsRequestError
from .client_factory import ClientFactory, ConnectionFactory
from .git_client import GitClient, GitCommandError
from .operations import OperationFailedError, poll_operation
from .remotes import Remote, RemoteSet
from .repository import (
    InvalidRepositoryError,
    Repository,
    organization_from_url,
    repository_from_name,
    repository_from_url,
)

__all__ = [
    'AzureDevOps',
    'AzureDevOpsRequestError',
    'ClientFactory',
    'ConnectionFactory',
    'GitClient',
    'GitCommandError',
    'OperationFailedError',
    'poll_operation',
    'Remote',
    'RemoteSet',
    'InvalidRepositoryError',
    'Repository',
    'organization_from_url',
    'repository_from_name',
    'repository_from_url',
]
