"""
azdo service-endpoint: service connections used by pipelines.
"""

import json
import logging
import os
import uuid
from typing import List, Optional

from azure.devops.v7_1.service_endpoint.models import (
    DataSourceDetails,
    EndpointAuthorization,
    ProjectReference,
    ResultTransformationDetails,
    ServiceEndpoint,
    ServiceEndpointDetails,
    ServiceEndpointProjectReference,
    ServiceEndpointRequest,
)

from ..cli.command import Command, Flag, exact_args
from ..cli.errors import (
    AzdoError,
    CancelError,
    FlagError,
    NoResultsError,
    NotFoundError,
    TransientError,
    is_not_found_error,
    mutually_exclusive,
)
from ..cli.json_flags import add_json_flags
from ..cli.scope import Scope, parse_project_scope, parse_target
from ..helpers.poll import PollError, poll
from ..helpers.text import split_comma_values
from .project import project_list
from .shared import confirm, progress, render_or_export, yes_flag

logger = logging.getLogger(__name__)

ENDPOINT_FIELDS = [
    "administratorsGroup", "authorization", "createdBy", "data", "description", "groupScopeId", "id",
    "isReady", "isShared", "name", "operationStatus", "owner", "readersGroup",
    "serviceEndpointProjectReferences", "type", "url",
]
ACTION_FILTERS = ["manage", "use", "view", "none"]
OWNER = "library"
DEFAULT_WAIT_TIMEOUT = 120.0

AZURE_ENVIRONMENTS = {
    "AzureCloud": "https://management.azure.com/",
    "AzureChinaCloud": "https://management.chinacloudapi.cn/",
    "AzureUSGovernment": "https://management.usgovcloudapi.net/",
    "AzureGermanCloud": "https://management.microsoftazure.de/",
    "AzureStack": "",
}
SERVICE_PRINCIPAL = "ServicePrincipal"
MANAGED_IDENTITY = "ManagedServiceIdentity"
WORKLOAD_IDENTITY = "WorkloadIdentityFederation"


def new_cmd_service_endpoint(ctx) -> Command:
    cmd = Command(
        use="service-endpoint <command>",
        short="Work with Azure DevOps service connections",
        long="Create, inspect, share and delete the service connections of a project.",
        aliases=["se"],
    )
    create = Command(
        use="create <type>",
        short="Create a service connection",
        aliases=["c", "new"],
    )
    create.add_command(new_cmd_create_github(ctx), new_cmd_create_azurerm(ctx))
    cmd.add_command(
        new_cmd_list(ctx),
        new_cmd_show(ctx),
        create,
        new_cmd_delete(ctx),
        new_cmd_share(ctx),
        new_cmd_update(ctx),
        new_cmd_test(ctx),
        new_cmd_export(ctx),
    )
    return cmd


# Lookup


def find_endpoint(client, project: str, identifier: str) -> Optional[ServiceEndpoint]:
    """
    Find a service endpoint by id or, failing that, by case-insensitive name.

    Returns:
        The endpoint, or None when nothing matched
    """
    try:
        endpoint_id = str(uuid.UUID(identifier))
    except ValueError:
        endpoint_id = None

    if endpoint_id:
        logger.debug("Resolving service endpoint %s by id in %s", endpoint_id, project)
        try:
            endpoint = client.get_service_endpoint_details(project, endpoint_id)
        except Exception as e:
            if is_not_found_error(e):
                return None
            raise
        # A missing endpoint comes back as an empty body
        if endpoint is None or not endpoint.id:
            return None
        return endpoint

    logger.debug("Resolving service endpoint %r by name in %s", identifier, project)
    endpoints = client.get_service_endpoints_by_names(project, [identifier], include_failed=True) or []
    for endpoint in endpoints:
        if (endpoint.name or "").lower() == identifier.lower():
            return endpoint
    return None


def redact_secrets(endpoint):
    authorization = getattr(endpoint, "authorization", None)
    if authorization is not None and authorization.parameters:
        authorization.parameters = {key: "REDACTED" for key in authorization.parameters}
    return endpoint


def authorization_scheme(endpoint) -> str:
    authorization = getattr(endpoint, "authorization", None)
    return (authorization.scheme or "") if authorization is not None else ""


def format_project_references(references) -> str:
    names = []
    for reference in references or []:
        project = reference.project_reference
        if project is not None and project.name:
            names.append(project.name)
    return ", ".join(sorted(names, key=str.lower))


def _yes_no(value) -> str:
    return "Yes" if value else "No"


def _identity_text(identity) -> str:
    if identity is None or not identity.display_name:
        return ""
    if identity.unique_name:
        return f"{identity.display_name} ({identity.unique_name})"
    return identity.display_name


def render_endpoint(ctx, endpoint):
    printer = ctx.printer("list")
    printer.add_columns("ID", "Name", "Type", "URL", "Owner", "Ready", "Shared", "Auth Scheme",
                        "Description", "Created By", "Projects")
    printer.add_field(str(endpoint.id or ""), truncate=None)
    printer.add_field(endpoint.name, truncate=None)
    printer.add_field(endpoint.type)
    printer.add_field(endpoint.url, truncate=None)
    printer.add_field(endpoint.owner)
    printer.add_field(_yes_no(endpoint.is_ready))
    printer.add_field(_yes_no(endpoint.is_shared))
    printer.add_field(authorization_scheme(endpoint))
    printer.add_field(endpoint.description, truncate=None)
    printer.add_field(_identity_text(endpoint.created_by), truncate=None)
    printer.add_field(format_project_references(endpoint.service_endpoint_project_references), truncate=None)
    printer.end_row()
    printer.render()


def _not_found(ctx, scope):
    ios = ctx.io_streams()
    cs = ios.color_scheme()
    ios.out.write(f'{cs.warning_icon()} Service endpoint "{scope.target}" was not found in '
                  f"{scope.organization}/{scope.project}.\n")


def _parse_uuids(values: List[str]) -> List[str]:
    ids = []
    for value in split_comma_values(values):
        try:
            ids.append(str(uuid.UUID(value)))
        except ValueError as e:
            raise FlagError(f'invalid endpoint id "{value}": {e}', cause=e) from e
    return ids


def _is_forbidden(error: BaseException) -> bool:
    if getattr(error, "status_code", None) == 403:
        return True
    type_key = getattr(error, "type_key", None) or ""
    return "AccessCheck" in type_key or "Unauthorized" in type_key


# List and show


def new_cmd_list(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        names = split_comma_values(opts.name)
        auth_schemes = split_comma_values(opts.auth_scheme) or None
        endpoint_ids = _parse_uuids(opts.endpoint_id) if opts.endpoint_id else None
        action_filter = (opts.action_filter or "").strip().lower()
        if action_filter and action_filter not in ACTION_FILTERS:
            raise FlagError(f'invalid action filter "{opts.action_filter}": valid values are '
                            "{manage|use|view|none}")

        client = ctx.client_factory().service_endpoint(scope.organization)
        common = {
            "type": (opts.type or "").strip() or None,
            "auth_schemes": auth_schemes,
            "owner": (opts.owner or "").strip() or None,
            "include_failed": True if opts.include_failed else None,
            "include_details": True if opts.include_details else None,
        }
        logger.debug("Listing service endpoints of %s with %s", scope, common)
        with progress(ctx):
            if names:
                endpoints = client.get_service_endpoints_by_names(scope.project, names, **common) or []
                if endpoint_ids:
                    endpoints = [ep for ep in endpoints if str(ep.id) in endpoint_ids]
                    if not endpoints:
                        raise NoResultsError("no service endpoints matched the provided --name and "
                                             "--endpoint-id filters")
            else:
                endpoints = client.get_service_endpoints(scope.project, endpoint_ids=endpoint_ids, **common) or []
            if action_filter:
                endpoints = _filter_by_action(client, scope.project, action_filter, endpoints)
                if not endpoints:
                    raise NoResultsError("no service endpoints matched the requested action filter")
        if not endpoints:
            raise NoResultsError(f"no service endpoints found for project {scope.project} "
                                 f"in organization {scope.organization}")
        endpoints.sort(key=lambda ep: (ep.name or "").lower())

        def render():
            ios = ctx.io_streams()
            if opts.output_format == "ids":
                for endpoint in endpoints:
                    if endpoint.id:
                        ios.out.write(f"{endpoint.id}\n")
                return
            printer = ctx.printer("table")
            printer.add_columns("ID", "Name", "Type", "Owner", "Ready", "Shared", "Auth Scheme", "Project Reference")
            for endpoint in endpoints:
                printer.add_field(str(endpoint.id or ""), truncate=None)
                printer.add_field(endpoint.name)
                printer.add_field(endpoint.type)
                printer.add_field(endpoint.owner)
                printer.add_field(_yes_no(endpoint.is_ready))
                printer.add_field(_yes_no(endpoint.is_shared))
                printer.add_field(authorization_scheme(endpoint))
                printer.add_field(format_project_references(endpoint.service_endpoint_project_references))
                printer.end_row()
            printer.render()

        render_or_export(ctx, opts, [redact_secrets(ep) for ep in endpoints], render)

    cmd = Command(
        use="list [ORGANIZATION/]PROJECT",
        short="List service endpoints in a project",
        long=("List the service endpoints (service connections) defined within a project.\n\n"
              "When the organization segment is omitted the default organization is used."),
        example=("  $ azdo service-endpoint list MyProject\n"
                 "  $ azdo service-endpoint list myorg/MyProject --type AzureRM --action-filter manage"),
        aliases=["ls", "l"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    cmd.add_flag(Flag("type", help="Filter by service endpoint type (e.g., AzureRM, GitHub, Generic)"))
    cmd.add_flag(Flag("owner", help="Filter by service endpoint owner (e.g., Library, AgentCloud)"))
    cmd.add_flag(Flag("auth-scheme", kind="strings", help="Filter by authorization scheme"))
    cmd.add_flag(Flag("endpoint-id", kind="strings", help="Filter by endpoint ID"))
    cmd.add_flag(Flag("action-filter", help="Filter endpoints by caller permissions (manage, use, view, none)"))
    cmd.add_flag(Flag("include-failed", kind="bool", help="Include endpoints that are in a failed state"))
    cmd.add_flag(Flag("include-details", kind="bool", help="Request additional authorization metadata"))
    cmd.add_flag(Flag("name", kind="strings", help="Filter by endpoint display name"))
    cmd.add_flag(Flag("output-format", choices=["table", "ids"], default="table",
                      help="Select non-JSON output format"))
    add_json_flags(cmd, ENDPOINT_FIELDS)
    return cmd


def _filter_by_action(client, project: str, action_filter: str, endpoints) -> list:
    allowed = []
    for endpoint in endpoints:
        if not endpoint.id:
            continue
        try:
            details = client.get_service_endpoint_details(project, str(endpoint.id), action_filter=action_filter)
        except Exception as e:
            if _is_forbidden(e):
                continue
            raise AzdoError(f"failed to fetch permissions for endpoint {endpoint.name or endpoint.id}: {e}") from e
        if details is not None and details.id:
            allowed.append(endpoint)
    return allowed


def new_cmd_show(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
        if endpoint is None:
            _not_found(ctx, scope)
            return
        redact_secrets(endpoint)
        render_or_export(ctx, opts, endpoint, lambda: render_endpoint(ctx, endpoint))

    cmd = Command(
        use="show [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Show details of a service endpoint",
        example=("  $ azdo service-endpoint show MyProject/12345678-1234-1234-1234-1234567890ab\n"
                 "  $ azdo service-endpoint show myorg/MyProject/MyConnection"),
        aliases=["s"],
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    add_json_flags(cmd, ENDPOINT_FIELDS)
    return cmd


# Create


def resolve_project_reference(ctx, scope) -> ProjectReference:
    core = ctx.client_factory().core(scope.organization)
    project = core.get_project(scope.project)
    if project is None or not project.id:
        raise AzdoError(f'project "{scope.project}" does not expose an ID')
    return ProjectReference(id=str(project.id), name=project.name)


def new_endpoint(name: str, endpoint_type: str, url: str, description: str, project_ref: ProjectReference,
                 scheme: str, parameters: dict, data: Optional[dict] = None) -> ServiceEndpoint:
    return ServiceEndpoint(
        name=name,
        type=endpoint_type,
        url=url,
        description=description,
        owner=OWNER,
        authorization=EndpointAuthorization(scheme=scheme, parameters=parameters),
        data=data,
        service_endpoint_project_references=[
            ServiceEndpointProjectReference(project_reference=project_ref, name=name, description=description),
        ],
    )


def wait_for_ready(ctx, client, project: str, endpoint, timeout: float):
    """Poll until the endpoint reports ready; a failed operation status aborts."""

    def check():
        current = client.get_service_endpoint_details(project, str(endpoint.id))
        if current is not None and current.is_ready:
            return current
        status = getattr(current, "operation_status", None)
        if isinstance(status, dict) and str(status.get("state", "")).lower() == "failed":
            raise AzdoError(f"service endpoint creation failed: {status}")
        raise TransientError("service endpoint is not ready")

    return poll(check, timeout=timeout, context=ctx.context())


def run_connection_test(ctx, client, project: str, endpoint, timeout: float):
    """Run the TestConnection data source of the endpoint's type until it answers ok."""
    types = client.get_service_endpoint_types(type=endpoint.type) or []
    matched = next((t for t in types if (t.name or "").lower() == (endpoint.type or "").lower()), None)
    if matched is None:
        raise AzdoError(f"unknown service endpoint type: {endpoint.type}")
    if not any((source.name or "").lower() == "testconnection" for source in matched.data_sources or []):
        raise AzdoError(f"TestConnection not supported for endpoint type {endpoint.type}")

    request = ServiceEndpointRequest(
        data_source_details=DataSourceDetails(data_source_name="TestConnection"),
        service_endpoint_details=ServiceEndpointDetails(
            data=endpoint.data, authorization=endpoint.authorization, url=endpoint.url, type=endpoint.type),
        result_transformation_details=ResultTransformationDetails(),
    )

    def attempt():
        result = client.execute_service_endpoint_request(request, project, str(endpoint.id))
        status = getattr(result, "status_code", None)
        if status is None:
            raise TransientError("test connection returned empty result")
        if str(status).lower() != "ok":
            raise TransientError(f"test connection status: {status}")

    poll(attempt, timeout=timeout, context=ctx.context())


def _create_flags(cmd: Command):
    cmd.add_flag(Flag("name", required=True, help="Name of the service endpoint"))
    cmd.add_flag(Flag("description", default="", help="Description for the service endpoint"))
    cmd.add_flag(Flag("wait", kind="bool", help="Wait until the endpoint reports ready"))
    cmd.add_flag(Flag("timeout", kind="duration", help="Maximum time to wait with --wait or --validate-connection"))
    cmd.add_flag(Flag("validate-connection", kind="bool", help="Run TestConnection after creation"))
    cmd.add_flag(Flag("grant-permission-to-all-pipelines", kind="bool",
                      help="Grant access permission to all pipelines to use the service connection"))
    add_json_flags(cmd, ENDPOINT_FIELDS)


def create_endpoint(ctx, opts, scope, endpoint: ServiceEndpoint, project_ref: ProjectReference):
    """Create the endpoint, then run the optional wait, validation and pipeline authorization steps."""
    client = ctx.client_factory().service_endpoint(scope.organization)
    timeout = opts.timeout if opts.timeout is not None else DEFAULT_WAIT_TIMEOUT
    with progress(ctx):
        created = client.create_service_endpoint(endpoint)
        logger.debug("Created %s service endpoint %s", endpoint.type, created.id)
        if opts.wait:
            created = wait_for_ready(ctx, client, scope.project, created, timeout)
        if opts.validate_connection:
            run_connection_test(ctx, client, scope.project, created, timeout)
        if opts.grant_permission_to_all_pipelines:
            try:
                ctx.client_factory().rest(scope.organization).authorize_all_pipelines(
                    project_ref.id, "endpoint", str(created.id))
            except AzdoError as e:
                logger.debug("Removing endpoint %s after failed authorization", created.id)
                client.delete_service_endpoint(str(created.id), [project_ref.id])
                raise AzdoError(f"failed to authorize endpoint {created.id} for all pipelines: {e}") from e

    redact_secrets(created)
    if opts.exporter is None:
        ios = ctx.io_streams()
        cs = ios.color_scheme()
        ios.err_out.write(f"{cs.success_icon()} Created service endpoint {cs.bold(created.name or '')}\n")
    render_or_export(ctx, opts, created, lambda: render_endpoint(ctx, created))


def new_cmd_create_github(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        token = opts.token or ""
        mutually_exclusive("--token and --configuration-id are mutually exclusive", token, opts.configuration_id)
        if not token and not opts.configuration_id:
            if not ctx.io_streams().can_prompt():
                raise FlagError("no authentication provided: pass --token or --configuration-id")
            token = ctx.prompter().password("GitHub token:")

        if opts.configuration_id:
            scheme, parameters = "InstallationToken", {"ConfigurationId": opts.configuration_id}
        else:
            scheme, parameters = "Token", {"AccessToken": token}
        with progress(ctx):
            project_ref = resolve_project_reference(ctx, scope)
        endpoint = new_endpoint(opts.name, "github", opts.url or "https://github.com", opts.description,
                                project_ref, scheme, parameters)
        create_endpoint(ctx, opts, scope, endpoint, project_ref)

    cmd = Command(
        use="github [ORGANIZATION/]PROJECT",
        short="Create a GitHub service endpoint",
        long=("Create a GitHub service endpoint using a personal access token or an\n"
              "installation/OAuth configuration. Without either flag the token is prompted for."),
        example=('  $ azdo service-endpoint create github my-org/my-project --name "gh-ep" --token <PAT>\n'
                 '  $ azdo service-endpoint create github my-org/my-project --name "gh-ep" '
                 "--configuration-id <CONFIG_ID>"),
        aliases=["gh"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    _create_flags(cmd)
    cmd.add_flag(Flag("url", help="GitHub URL (defaults to https://github.com)"))
    cmd.add_flag(Flag("token", help="GitHub personal access token"))
    cmd.add_flag(Flag("configuration-id", help="OAuth or installation configuration to connect with"))
    return cmd


def azurerm_payload(opts, certificate: str = ""):
    """
    Build the authorization parameters and data of an azurerm endpoint.

    Returns:
        (url, parameters, data)
    """
    scheme = opts.authentication_scheme
    creation_mode = ""
    if scheme in (SERVICE_PRINCIPAL, WORKLOAD_IDENTITY):
        creation_mode = "Manual" if opts.service_principal_id else "Automatic"

    parameters = {"tenantid": opts.tenant_id}
    data = {"environment": opts.environment}
    if creation_mode:
        data["creationMode"] = creation_mode
    if opts.subscription_id:
        if opts.resource_group and scheme != MANAGED_IDENTITY:
            parameters["scope"] = f"/subscriptions/{opts.subscription_id}/resourcegroups/{opts.resource_group}"
        data.update(scopeLevel="Subscription", subscriptionId=opts.subscription_id,
                    subscriptionName=opts.subscription_name)
    else:
        data.update(scopeLevel="ManagementGroup", managementGroupId=opts.management_group_id,
                    managementGroupName=opts.management_group_name)

    if scheme == SERVICE_PRINCIPAL:
        parameters["serviceprincipalid"] = opts.service_principal_id
        if opts.service_principal_key:
            parameters["authenticationType"] = "spnKey"
            parameters["serviceprincipalkey"] = opts.service_principal_key
        elif certificate:
            parameters["authenticationType"] = "spnCertificate"
            parameters["servicePrincipalCertificate"] = certificate
    elif scheme == WORKLOAD_IDENTITY:
        parameters["serviceprincipalid"] = opts.service_principal_id or ""

    url = opts.server_url if opts.environment == "AzureStack" else AZURE_ENVIRONMENTS[opts.environment]
    return url, parameters, data


def validate_azurerm(ctx, opts):
    if not opts.tenant_id:
        raise FlagError("--tenant-id is required")
    if not opts.subscription_id and not opts.management_group_id:
        raise FlagError("one of --subscription-id or --management-group-id must be provided")
    mutually_exclusive("--subscription-id and --management-group-id are mutually exclusive",
                       opts.subscription_id, opts.management_group_id)
    if opts.management_group_id and not opts.management_group_name:
        raise FlagError("--management-group-name is required when --management-group-id is specified")
    if opts.subscription_id and not opts.subscription_name:
        raise FlagError("--subscription-name is required when --subscription-id is specified")
    if opts.environment == "AzureStack" and not opts.server_url:
        raise FlagError("--server-url is required when environment is AzureStack")
    if opts.authentication_scheme != SERVICE_PRINCIPAL:
        return
    if not opts.service_principal_id:
        raise FlagError("automatic creation mode is not supported for ServicePrincipal; "
                        "provide --service-principal-id")
    mutually_exclusive("--service-principal-key and --certificate-path are mutually exclusive",
                       opts.service_principal_key, opts.certificate_path)
    if not opts.service_principal_key and not opts.certificate_path:
        if not ctx.io_streams().can_prompt():
            raise FlagError("--service-principal-key not provided and prompting disabled")
        opts.service_principal_key = ctx.prompter().password("Service principal key:")


def new_cmd_create_azurerm(ctx) -> Command:
    def run(opts):
        scope = parse_project_scope(ctx, opts.args[0])
        validate_azurerm(ctx, opts)
        certificate = ""
        if opts.certificate_path:
            certificate = ctx.io_streams().read_user_file(opts.certificate_path)
        confirm(ctx, opts.yes, "This will create credentials in Azure DevOps. Continue?")

        with progress(ctx):
            project_ref = resolve_project_reference(ctx, scope)
        url, parameters, data = azurerm_payload(opts, certificate)
        endpoint = new_endpoint(opts.name, "azurerm", url, opts.description, project_ref,
                                opts.authentication_scheme, parameters, data)
        create_endpoint(ctx, opts, scope, endpoint, project_ref)

    cmd = Command(
        use="azurerm [ORGANIZATION/]PROJECT",
        short="Create an Azure Resource Manager service connection",
        long=("Create an Azure Resource Manager service connection scoped to a subscription\n"
              "or a management group.\n\n"
              "ServicePrincipal needs --service-principal-id and either a key or a certificate.\n"
              "WorkloadIdentityFederation without --service-principal-id lets Azure DevOps\n"
              "create the principal."),
        example=("  $ azdo service-endpoint create azurerm my-org/my-project \\\n"
                 '      --name "My AzureRM Connection" --authentication-scheme ServicePrincipal \\\n'
                 "      --tenant-id <TENANT> --service-principal-id <APP> --service-principal-key <SECRET> \\\n"
                 '      --subscription-id <SUB> --subscription-name "My Subscription"'),
        aliases=["arm"],
        args=exact_args(1, "project argument required"),
        run=run,
    )
    _create_flags(cmd)
    cmd.add_flag(Flag("authentication-scheme", choices=[SERVICE_PRINCIPAL, MANAGED_IDENTITY, WORKLOAD_IDENTITY],
                      default=SERVICE_PRINCIPAL, help="Authentication scheme"))
    cmd.add_flag(Flag("tenant-id", help="Azure tenant ID"))
    cmd.add_flag(Flag("subscription-id", help="Azure subscription ID"))
    cmd.add_flag(Flag("subscription-name", help="Azure subscription name"))
    cmd.add_flag(Flag("management-group-id", help="Azure management group ID"))
    cmd.add_flag(Flag("management-group-name", help="Azure management group name"))
    cmd.add_flag(Flag("resource-group", help="Resource group to scope a subscription level connection to"))
    cmd.add_flag(Flag("service-principal-id", help="Service principal (application) ID"))
    cmd.add_flag(Flag("service-principal-key", help="Service principal secret"))
    cmd.add_flag(Flag("certificate-path", help="Path to a PEM service principal certificate"))
    cmd.add_flag(Flag("environment", choices=list(AZURE_ENVIRONMENTS), default="AzureCloud",
                      help="Azure environment"))
    cmd.add_flag(Flag("server-url", help="Azure Stack Resource Manager URL, required for AzureStack"))
    cmd.add_flag(yes_flag())
    return cmd


# Delete and share


def project_id_from_endpoint(endpoint, project: str) -> str:
    for reference in endpoint.service_endpoint_project_references or []:
        ref = reference.project_reference
        if ref is not None and ref.id and (ref.name or "").lower() == project.lower():
            return str(ref.id)
    return ""


def _project_id(ctx, organization: str, endpoint, project: str) -> str:
    project_id = project_id_from_endpoint(endpoint, project)
    if project_id:
        return project_id
    found = ctx.client_factory().core(organization).get_project(project)
    if found is None or not found.id:
        raise AzdoError(f'project "{project}" returned without an ID')
    return str(found.id)


def _same_organization_scopes(ctx, values: List[str], organization: str, flag: str) -> list:
    scopes = []
    for value in split_comma_values(values):
        scope = parse_project_scope(ctx, value)
        if scope.organization.lower() != organization.lower():
            raise FlagError(f'{flag} "{value}" must belong to organization {organization}')
        scopes.append(scope)
    return scopes


def new_cmd_delete(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        additional = _same_organization_scopes(ctx, opts.additional_project, scope.organization,
                                               "additional project")
        message = f'Delete service endpoint "{scope.target}" from project {scope.organization}/{scope.project}?'
        extra = []
        if opts.deep:
            extra.append("This will also delete the backing Azure AD application when supported.")
        if additional:
            extra.append(f"This will also remove access from {len(additional)} additional project(s).")
        if extra:
            message = f"{message}\n{' '.join(extra)}"
        confirm(ctx, opts.yes, message)

        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
            if endpoint is None:
                _not_found(ctx, scope)
                return
            project_ids = []
            for project in [scope.project] + [s.project for s in additional]:
                project_id = _project_id(ctx, scope.organization, endpoint, project)
                if project_id not in project_ids:
                    project_ids.append(project_id)
            logger.debug("Deleting service endpoint %s from projects %s deep=%s", endpoint.id, project_ids, opts.deep)
            client.delete_service_endpoint(str(endpoint.id), project_ids, deep=True if opts.deep else None)

        ios = ctx.io_streams()
        cs = ios.color_scheme()
        name = (endpoint.name or scope.target).strip()
        ios.out.write(f'{cs.success_icon()} Deleted service endpoint "{name}" ({endpoint.id}) '
                      f"from {len(project_ids)} project(s).\n")

    cmd = Command(
        use="delete [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Delete a service endpoint from a project",
        example=("  $ azdo service-endpoint delete MyProject/058bff6f-2717-4500-af7e-3fffc2b0b546\n"
                 '  $ azdo service-endpoint delete "myorg/MyProject/My Connection" '
                 "--additional-project myorg/SharedProject\n"
                 "  $ azdo service-endpoint delete myorg/MyProject/ProdConnection --deep --yes"),
        aliases=["rm", "del", "d"],
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    cmd.add_flag(Flag("deep", kind="bool", help="Also delete the backing Azure AD application when supported"))
    cmd.add_flag(Flag("additional-project", kind="stringArray",
                      help="Additional [ORGANIZATION/]PROJECT the endpoint is shared with"))
    cmd.add_flag(yes_flag())
    return cmd


def _select_target_projects(ctx, scope) -> list:
    """Let the user pick the projects to share with from the rest of the organization."""
    if not ctx.io_streams().can_prompt() or ctx.prompt_disabled():
        raise FlagError("at least one --target-project is required when not running interactively")
    core = ctx.client_factory().core(scope.organization)
    with progress(ctx):
        names = sorted(p.name for p in project_list(core.get_projects())
                       if p.name and p.name.lower() != scope.project.lower())
    if not names:
        raise NoResultsError(f"no other projects found in organization {scope.organization}")
    picked = ctx.prompter().multi_select("Share with which projects?", [], names)
    if not picked:
        raise CancelError()
    return [Scope(scope.organization, names[i]) for i in picked]


def new_cmd_share(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        targets = _same_organization_scopes(ctx, opts.target_project, scope.organization, "target project")
        if not targets:
            targets = _select_target_projects(ctx, scope)

        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
            if endpoint is None:
                _not_found(ctx, scope)
                return
            references = []
            for target in targets:
                project_ref = resolve_project_reference(ctx, target)
                if project_id_from_endpoint(endpoint, target.project):
                    logger.debug("Endpoint %s is already shared with %s", endpoint.id, target)
                    continue
                references.append(ServiceEndpointProjectReference(
                    project_reference=project_ref, name=endpoint.name, description=endpoint.description))
            if references:
                client.share_service_endpoint(references, str(endpoint.id))

        ios = ctx.io_streams()
        cs = ios.color_scheme()
        if not references:
            ios.out.write(f"{cs.warning_icon()} Service endpoint \"{endpoint.name}\" is already shared "
                          "with the requested projects.\n")
            return
        shared_with = ", ".join(ref.project_reference.name for ref in references)
        ios.out.write(f'{cs.success_icon()} Shared service endpoint "{endpoint.name}" with {shared_with}.\n')

    cmd = Command(
        use="share [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Share a service endpoint with other projects",
        long=("Make a service endpoint of one project available in other projects of the\n"
              "same organization. Projects the endpoint is already shared with are skipped."),
        example="  $ azdo service-endpoint share myorg/MyProject/MyConnection --target-project myorg/Other",
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    cmd.add_flag(Flag("target-project", kind="stringArray",
                      help="[ORGANIZATION/]PROJECT to share the endpoint with; prompted for when omitted"))
    return cmd


# Update, test and export

ENCODINGS = {"utf-8": "utf-8", "utf8": "utf-8", "ascii": "ascii", "utf-16be": "utf-16-be", "utf-16le": "utf-16-le"}
SECRET_PLACEHOLDER = "__SECRET__"


def read_endpoint_file(ios, path: str, encoding: str) -> ServiceEndpoint:
    """
    Parse a JSON service endpoint definition from a file or standard input.

    Fields that are present must not be blank; missing ones are filled in
    from the existing endpoint by the caller.
    """
    codec = ENCODINGS.get(encoding.strip().lower())
    if codec is None:
        raise FlagError(f'unsupported encoding "{encoding}"; valid values are {", ".join(sorted(set(ENCODINGS)))}')
    source = "standard input" if path == "-" else path
    try:
        if path == "-":
            text = ios.in_.read()
        else:
            with open(path, "r", encoding=codec) as f:
                text = f.read()
    except (OSError, UnicodeDecodeError) as e:
        raise FlagError(f"failed to read {source}: {e}", cause=e) from e
    try:
        data = json.loads(text.lstrip("\ufeff"))
    except ValueError as e:
        raise FlagError(f"failed to parse JSON from {source}: {e}", cause=e) from e
    if not isinstance(data, dict):
        raise FlagError(f"{source} must contain a JSON object")
    for key in ("name", "type", "url"):
        if key in data and not str(data[key] or "").strip():
            raise FlagError(f'"{key}" in {source} must not be empty')
    return ServiceEndpoint.from_dict(data)


def _merge_endpoint(payload: ServiceEndpoint, existing: ServiceEndpoint, project_ref: ProjectReference):
    payload.id = existing.id
    for attr in ("name", "type", "url", "authorization", "data"):
        if getattr(payload, attr) is None:
            setattr(payload, attr, getattr(existing, attr))
    missing = [attr for attr in ("name", "type", "url") if not getattr(payload, attr)]
    if payload.authorization is None or not payload.authorization.scheme:
        missing.append("authorization.scheme")
    if missing:
        raise FlagError(f"service endpoint definition is missing {', '.join(missing)}")
    references = payload.service_endpoint_project_references or []
    if not any(ref.project_reference is not None and str(ref.project_reference.id) == str(project_ref.id)
               for ref in references):
        references.append(ServiceEndpointProjectReference(
            project_reference=project_ref, name=payload.name, description=payload.description))
    payload.service_endpoint_project_references = references
    return payload


def new_cmd_update(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        overlay = [opts.changed(name) for name in ("name", "description", "url")]
        from_file = (opts.from_file or "").strip()
        if not (any(overlay) or from_file or opts.changed("enable-for-all")):
            raise FlagError("at least one mutating flag must be supplied")
        if from_file and any(overlay):
            raise FlagError("--from-file is mutually exclusive with --name, --description, and --url")

        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
            if endpoint is None:
                _not_found(ctx, scope)
                return
            project_ref = None
            if from_file:
                project_ref = resolve_project_reference(ctx, scope)
                payload = read_endpoint_file(ctx.io_streams(), from_file, opts.encoding)
                endpoint = _merge_endpoint(payload, endpoint, project_ref)
            else:
                if opts.changed("name"):
                    endpoint.name = opts.name
                if opts.changed("description"):
                    endpoint.description = opts.description
                if opts.changed("url"):
                    endpoint.url = opts.url
            logger.debug("Updating service endpoint %s in %s mode", endpoint.id,
                         "from-file" if from_file else "overlay")
            updated = client.update_service_endpoint(endpoint, str(endpoint.id))

            if opts.changed("enable-for-all"):
                if project_ref is None:
                    project_ref = resolve_project_reference(ctx, scope)
                ctx.client_factory().rest(scope.organization).authorize_all_pipelines(
                    project_ref.id, "endpoint", str(updated.id), authorized=opts.enable_for_all == "true")

        redact_secrets(updated)
        render_or_export(ctx, opts, updated, lambda: render_endpoint(ctx, updated))

    cmd = Command(
        use="update [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Update a service endpoint",
        long=("Update an existing service endpoint.\n\n"
              "Change single attributes with --name, --description and --url, or replace the\n"
              "definition with --from-file. Fields missing from the file keep their current values.\n"
              "--enable-for-all grants, and --enable-for-all=false revokes, access for all pipelines."),
        example=("  $ azdo service-endpoint update MyProject/MyConnection --name NewName\n"
                 "  $ azdo service-endpoint update myorg/MyProject/MyConnection --from-file endpoint.json\n"
                 "  $ azdo service-endpoint update MyProject/MyConnection --enable-for-all=false"),
        aliases=["u", "edit"],
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    cmd.add_flag(Flag("name", help="New friendly name for the service endpoint"))
    cmd.add_flag(Flag("description", help="New description for the service endpoint"))
    cmd.add_flag(Flag("url", help="New service endpoint URL"))
    cmd.add_flag(Flag("from-file", "f",
                      help='Path to a JSON service endpoint definition or "-" for standard input'))
    cmd.add_flag(Flag("encoding", "e", default="utf-8", help="File encoding (utf-8, ascii, utf-16be, utf-16le)"))
    cmd.add_flag(Flag("enable-for-all", choices=["true", "false"], no_opt_default="true", metavar="bool",
                      help="Grant (true) or revoke (false) access for all pipelines"))
    add_json_flags(cmd, ENDPOINT_FIELDS)
    return cmd


def new_cmd_test(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        timeout = opts.timeout if opts.timeout is not None else DEFAULT_WAIT_TIMEOUT
        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
            if endpoint is None:
                _not_found(ctx, scope)
                return
            try:
                run_connection_test(ctx, client, scope.project, endpoint, timeout)
            except PollError as e:
                raise AzdoError(f"test connection failed: {e.last_error or e}") from e

        ios = ctx.io_streams()
        ios.out.write(f'{ios.color_scheme().success_icon()} Connection test for service endpoint '
                      f'"{endpoint.name}" succeeded.\n')

    cmd = Command(
        use="test [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Test the connection of a service endpoint",
        long=("Run the TestConnection data source of the endpoint's type and wait until it\n"
              "reports success or the timeout expires."),
        example="  $ azdo service-endpoint test myorg/MyProject/MyConnection --timeout 30s",
        aliases=["t"],
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    cmd.add_flag(Flag("timeout", kind="duration", help="Maximum time to wait for a successful test (default 2m)"))
    return cmd


def export_endpoint(endpoint, target: str, with_secrets: bool):
    """
    The reusable part of an endpoint definition.

    Returns:
        (definition, whether any secret was replaced by the placeholder)
    """
    definition = {
        "name": (endpoint.name or target).strip(),
        "type": (endpoint.type or "").strip(),
        "url": (endpoint.url or "").strip(),
    }
    if (endpoint.description or "").strip():
        definition["description"] = endpoint.description.strip()
    if endpoint.is_shared is not None:
        definition["isShared"] = endpoint.is_shared
    redacted = False
    if endpoint.authorization is not None:
        authorization = {}
        if endpoint.authorization.scheme:
            authorization["scheme"] = endpoint.authorization.scheme
        parameters = endpoint.authorization.parameters
        if parameters:
            if with_secrets:
                authorization["parameters"] = dict(parameters)
            else:
                authorization["parameters"] = {key: SECRET_PLACEHOLDER for key in parameters}
                redacted = any(value != SECRET_PLACEHOLDER for value in parameters.values())
        definition["authorization"] = authorization
    if endpoint.data:
        definition["data"] = dict(endpoint.data)
    return definition, redacted


def new_cmd_export(ctx) -> Command:
    def run(opts):
        scope = parse_target(ctx, opts.args[0])
        client = ctx.client_factory().service_endpoint(scope.organization)
        with progress(ctx):
            endpoint = find_endpoint(client, scope.project, scope.target)
        if endpoint is None:
            raise NotFoundError(f'service endpoint "{scope.target}" was not found in '
                                f"{scope.organization}/{scope.project}")

        definition, redacted = export_endpoint(endpoint, scope.target, opts.with_secrets)
        logger.debug("Exporting service endpoint %s to %s with_secrets=%s", endpoint.id,
                     opts.output_file or "stdout", opts.with_secrets)
        text = json.dumps(definition, indent=2) + "\n"

        ios = ctx.io_streams()
        cs = ios.color_scheme()
        if not opts.output_file:
            ios.out.write(text)
        else:
            try:
                fd = os.open(opts.output_file, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    f.write(text)
            except OSError as e:
                raise AzdoError(f"failed to write {opts.output_file}: {e}") from e
            ios.out.write(f"{cs.success_icon()} Export wrote {opts.output_file} "
                          f"({len(text.encode('utf-8'))} bytes).\n")

        if redacted:
            ios.err_out.write(f'{cs.warning_icon()} Sensitive authorization values replaced with '
                              f'"{SECRET_PLACEHOLDER}". Update them before reusing this file.\n')
        elif opts.with_secrets:
            ios.err_out.write(f"{cs.warning_icon()} Export includes live secrets. Store the file securely.\n")

    cmd = Command(
        use="export [ORGANIZATION/]PROJECT/ID_OR_NAME",
        short="Export a service endpoint definition as JSON",
        long=("Write the definition of a service endpoint as JSON that `service-endpoint update\n"
              "--from-file` accepts. Secrets are replaced with a placeholder unless --with-secrets is given."),
        example=("  $ azdo service-endpoint export myorg/MyProject/MyEndpoint\n"
                 "  $ azdo service-endpoint export MyProject/058bff6f-2717-4500-af7e-3fffc2b0b546 "
                 "--output-file ./endpoint.json --with-secrets"),
        aliases=["e", "ex"],
        args=exact_args(1, "service endpoint target required"),
        run=run,
    )
    cmd.add_flag(Flag("output-file", "o", help="Path to write the exported JSON; defaults to standard output"))
    cmd.add_flag(Flag("with-secrets", kind="bool", help="Include sensitive authorization values in the export"))
    return cmd
