import base64
import logging
from urllib.parse import urlparse

import requests

from ..cli.errors import AuthError, AzdoError, NotFoundError
from ..config.config import Config

logger = logging.getLogger(__name__)


class AzureDevOpsRequestError(AzdoError):
    """A REST call answered with an unexpected HTTP status."""

    def __init__(self, message, status_code=None, response=None):
        super().__init__(message)
        self.status_code = status_code
        self.response = response


class AzureDevOps:
    """
    Thin REST wrapper for the few endpoints the SDK does not cover.
    """

    def __init__(self, organization_url, personal_access_token, session=None, timeout=None):
        self.base_url = organization_url.rstrip("/") + "/"
        self.pat = personal_access_token
        self.encoded_pat = base64.b64encode(f":{self.pat}".encode()).decode()
        self.session = session or requests.Session()
        self.timeout = timeout

    def handle_request(self, method, endpoint, data=None, params=None, base_url=None):
        """
        Send a request and decode the JSON answer.

        Args:
            method (str): HTTP method (GET, POST, PATCH, DELETE)
            endpoint (str): Path relative to the organization URL
            data (dict): JSON body
            params (dict): Query string parameters
            base_url (str): Send to this host instead of the organization URL

        Returns:
            dict: Response data, empty for an empty body

        Raises:
            AuthError: 401 or 403
            NotFoundError: 404
            AzureDevOpsRequestError: Any other failure status or a non JSON body
        """
        url = f"{base_url or self.base_url}{endpoint}"
        headers = {
            "Authorization": f"Basic {self.encoded_pat}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }
        logger.debug("Sending %s request to: %s", method, url)
        response = self.session.request(
            method, url, headers=headers, json=data, params=params, timeout=self.timeout)

        if response.status_code in (401, 403):
            raise AuthError(f"HTTP {response.status_code}: authentication failed for {self.base_url}")
        if response.status_code == 404:
            raise NotFoundError(f"HTTP 404: {url} not found")
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as http_err:
            logger.debug("Response content: %s", response.content)
            raise AzureDevOpsRequestError(
                f"HTTP {response.status_code}: {http_err}", response.status_code, response) from http_err

        if not response.content:
            return {}
        try:
            return response.json()
        except ValueError as json_err:
            raise AzureDevOpsRequestError(
                f"invalid JSON response from {url}", response.status_code, response) from json_err

    def get_api_version(self, service):
        """Get the API version for a specific service."""
        return Config.API_VERSION.get(service, "7.1")

    def get_connection_data(self):
        endpoint = f"_apis/connectionData?api-version={self.get_api_version('connection_data')}"
        return self.handle_request("GET", endpoint)

    def get_authenticated_user(self):
        """
        Returns:
            dict: The authenticatedUser entry of connectionData
        """
        data = self.get_connection_data()
        user = data.get("authenticatedUser") or {}
        if not user:
            raise AuthError("unable to determine the authenticated user")
        return user

    def authorize_all_pipelines(self, project_id, resource_type, resource_id, authorized=True):
        """
        Allow (or stop allowing) every pipeline of a project to use a resource.

        Args:
            project_id (str): Project the pipelines live in
            resource_type (str): Resource kind, e.g. "endpoint"
            resource_id (str): Id of the resource
        """
        endpoint = (f"{project_id}/_apis/pipelines/pipelinepermissions/{resource_type}/{resource_id}"
                    f"?api-version={self.get_api_version('pipeline_permissions')}")
        return self.handle_request("PATCH", endpoint, data={"allPipelines": {"authorized": authorized}})

    def graph_base_url(self):
        """The identity (vssps) host serving the graph API of the organization."""
        parsed = urlparse(self.base_url)
        host = parsed.hostname or ""
        if host == "dev.azure.com":
            host = "vssps.dev.azure.com"
        elif host.endswith(".visualstudio.com") and ".vssps." not in host:
            host = host[:-len(".visualstudio.com")] + ".vssps.visualstudio.com"
        return parsed._replace(netloc=host).geturl()

    def create_group(self, creation_context, scope_descriptor=None, group_descriptors=None):
        """
        Create a security group. The SDK only sends the storage key of a
        creation context, so the request is built here.

        Args:
            creation_context (dict): displayName and description, mailAddress or originId
            scope_descriptor (str): Project scope; the organization when omitted
            group_descriptors (list): Groups the new group joins

        Returns:
            dict: The created GraphGroup
        """
        params = {"api-version": self.get_api_version("graph")}
        if scope_descriptor:
            params["scopeDescriptor"] = scope_descriptor
        if group_descriptors:
            params["groupDescriptors"] = ",".join(group_descriptors)
        return self.handle_request("POST", "_apis/graph/groups", data=creation_context, params=params,
                                   base_url=self.graph_base_url())
