"""
Per-organization SDK connections and service clients.
"""

import logging
import threading
from typing import Dict

from azure.devops.connection import Connection
from msrest.authentication import BasicAuthentication

from .AzureDevOps import AzureDevOps

logger = logging.getLogger(__name__)


class ConnectionFactory:
    """Creates one azure-devops Connection per organization and caches it."""

    def __init__(self, auth_config):
        self.auth_config = auth_config
        self._lock = threading.Lock()
        self._connections: Dict[str, Connection] = {}

    def organization_url(self, organization: str) -> str:
        return self.auth_config.get_url(organization)

    def token(self, organization: str) -> str:
        return self.auth_config.get_token(organization)

    def connection(self, organization: str) -> Connection:
        key = organization.lower()
        with self._lock:
            if key not in self._connections:
                url = self.organization_url(organization)
                credentials = BasicAuthentication('', self.token(organization))
                logger.debug("Opening connection to %s", url)
                self._connections[key] = Connection(base_url=url, creds=credentials)
            return self._connections[key]


class _CancellableClient:
    """Proxy that checks the run context before every client call."""

    def __init__(self, client, context):
        self._client = client
        self._context = context

    def __getattr__(self, name):
        attribute = getattr(self._client, name)
        if not callable(attribute) or self._context is None:
            return attribute

        def call(*args, **kwargs):
            self._context.check()
            return attribute(*args, **kwargs)

        return call


class ClientFactory:
    """
    Hands out typed service clients for an organization.

    Args:
        connection_factory: A ConnectionFactory
        context: Optional RunContext consulted before each remote call
    """

    def __init__(self, connection_factory, context=None):
        self.connection_factory = connection_factory
        self.context = context
        self._lock = threading.Lock()
        self._clients = {}

    def _client(self, organization: str, kind: str):
        key = (organization.lower(), kind)
        with self._lock:
            if key not in self._clients:
                clients = self.connection_factory.connection(organization).clients_v7_1
                getter = getattr(clients, f"get_{kind}_client")
                self._clients[key] = _CancellableClient(getter(), self.context)
            return self._clients[key]

    def core(self, organization: str):
        return self._client(organization, "core")

    def git(self, organization: str):
        return self._client(organization, "git")

    def graph(self, organization: str):
        return self._client(organization, "graph")

    def identity(self, organization: str):
        return self._client(organization, "identity")

    def operations(self, organization: str):
        return self._client(organization, "operations")

    def security(self, organization: str):
        return self._client(organization, "security")

    def service_endpoint(self, organization: str):
        return self._client(organization, "service_endpoint")

    def work_item_tracking(self, organization: str):
        return self._client(organization, "work_item_tracking")

    def rest(self, organization: str) -> AzureDevOps:
        """Raw REST wrapper for endpoints missing from the SDK."""
        timeout = None
        if self.context is not None:
            timeout = self.context.remaining()
        return AzureDevOps(
            self.connection_factory.organization_url(organization),
            self.connection_factory.token(organization),
            timeout=timeout)
