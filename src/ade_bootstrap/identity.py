"""Application identity, service principal and RBAC provisioning.

Creates (or reuses) the application identity a GitHub workflow will log in
as, its service principal, and the three role assignments the workflow
needs to deploy into Azure Deployment Environments:

1. Reader on the dev center project
2. Deployment Environments User on ``{project}/environmentTypes/{EnvType}``
3. Contributor on the deployment resource group

RE-ENTRY:
Every step is idempotent. The application is found by its derived display
name before creating one, an existing service principal is resolved by appId,
and role assignments use deterministic names so a duplicate is reported as
``RoleAssignmentExists`` and treated as success. A failure part-way leaves
the earlier steps applied; running the operation again completes the rest.
Nothing is rolled back.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from dataclasses import asdict, dataclass, field
from typing import Any

from azure.core.exceptions import HttpResponseError
from azure.mgmt.authorization.models import RoleAssignmentCreateParameters

from .errors import (
    ConflictError,
    ErrorKind,
    NotFoundError,
    ProvisionError,
    error_code_of,
    from_http_error,
    kind_of,
)
from .graph import GraphClient, odata_quote
from .locator import parse_resource_id, resolve_resource_group_scope
from .session import AzureSession, log_audit_event, redact

logger = logging.getLogger(__name__)

READER_ROLE = "Reader"
DEPLOYMENT_ENVIRONMENTS_USER_ROLE = "Deployment Environments User"
CONTRIBUTOR_ROLE = "Contributor"

# Well-known Azure built-in role GUIDs, identical in every tenant
BUILTIN_ROLES: dict[str, str] = {
    READER_ROLE: "acdd72a7-3385-48ef-bd42-f606fba81ae7",
    CONTRIBUTOR_ROLE: "b24988ac-6180-42a0-ab88-20f7382dd24c",
    DEPLOYMENT_ENVIRONMENTS_USER_ROLE: "18e40d4e-8d2e-438d-97e1-9528336e149c",
}

DEVCENTER_PROJECT_RESOURCE_TYPE = "Microsoft.DevCenter/projects"

# ARM reports a principal that has not replicated from Entra ID yet this way
PRINCIPAL_NOT_FOUND_ERROR_CODE = "PrincipalNotFound"


def normalize_environment_type(env_type: str) -> str:
    """Capitalize the first letter and lowercase the rest (``dev`` -> ``Dev``)."""
    env_type = env_type.strip()
    if not env_type:
        raise ValueError("Environment type cannot be empty")
    return env_type[0].upper() + env_type[1:].lower()


def identity_display_name(project_name: str, env_type: str) -> str:
    """Derive the application display name, the only lookup key for the identity."""
    if not project_name:
        raise ValueError("Project name cannot be empty")
    return f"{project_name}-{normalize_environment_type(env_type)}"


def role_definition_id(subscription_id: str, role_name: str) -> str:
    """Return the full role definition id for a built-in role name."""
    if role_name not in BUILTIN_ROLES:
        raise ValueError(f"Role '{role_name}' is not a supported built-in role")
    return (
        f"/subscriptions/{subscription_id}/providers/Microsoft.Authorization"
        f"/roleDefinitions/{BUILTIN_ROLES[role_name]}"
    )


def role_assignment_name(principal_id: str, role_name: str, scope: str) -> str:
    """Deterministic assignment GUID: same inputs, same assignment."""
    return str(uuid.uuid5(uuid.NAMESPACE_DNS, f"{principal_id}:{role_name}:{scope.lower()}"))


def find_application(graph: GraphClient, display_name: str) -> dict[str, Any] | None:
    """Find the single application with ``display_name``.

    Raises:
        ConflictError: If more than one application carries the name.
        ProvisionError: If Graph rejects the lookup.
    """
    try:
        matches = graph.find_applications(display_name)
    except HttpResponseError as e:
        raise from_http_error(e, f"Failed to look up application '{display_name}'") from e

    if len(matches) > 1:
        raise ConflictError(
            f"Display name '{display_name}' is ambiguous: {len(matches)} applications share it",
            detail=", ".join(str(m.get("appId")) for m in matches),
        )
    return matches[0] if matches else None


@dataclass
class ProjectReference:
    """A dev center project resolved to its ARM identity."""

    name: str
    resource_id: str
    resource_group: str
    subscription_id: str


@dataclass
class RoleAssignmentOutcome:
    role_name: str
    scope: str
    assignment_name: str
    created: bool


@dataclass
class IdentityProvisionResult:
    """Identifiers produced by ``create_identity_and_principal``."""

    display_name: str
    application_id: str  # client id
    object_id: str
    principal_id: str
    created_application: bool = False
    created_principal: bool = False
    project: ProjectReference | None = None
    role_assignments: list[RoleAssignmentOutcome] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IdentityProvisioner:
    """Create-or-reuse the workflow identity and grant it its roles."""

    def __init__(self, session: AzureSession) -> None:
        self._session = session
        self._config = session.config

    async def create_identity_and_principal(
        self,
        env_type: str,
        project_name: str | None,
        deployment_resource_group: str,
    ) -> IdentityProvisionResult:
        """Provision the identity for one (project, environment type) pair.

        Args:
            env_type: Environment type, any casing.
            project_name: Dev center project; falls back to DEVCENTER_PROJECT.
            deployment_resource_group: Resource group name in the pinned
                subscription, or a full resource group id.

        Returns:
            IdentityProvisionResult with application, object and principal ids.

        Raises:
            ProvisionError: If a create is rejected. Steps already applied stay.
            NotFoundError: If the project does not exist.
            ConflictError: If the display name is ambiguous.
        """
        project = self._config.require_project(project_name)
        env_type_name = normalize_environment_type(env_type)
        display_name = identity_display_name(project, env_type)
        graph = self._session.graph_client()

        application, created_application = self._ensure_application(graph, display_name)
        app_id = application["appId"]
        principal, created_principal = self._ensure_service_principal(graph, app_id)

        result = IdentityProvisionResult(
            display_name=display_name,
            application_id=app_id,
            object_id=application["id"],
            principal_id=principal["id"],
            created_application=created_application,
            created_principal=created_principal,
        )

        result.project = self.resolve_project(project)
        assignments = [
            (READER_ROLE, result.project.resource_id),
            (
                DEPLOYMENT_ENVIRONMENTS_USER_ROLE,
                f"{result.project.resource_id}/environmentTypes/{env_type_name}",
            ),
            (
                CONTRIBUTOR_ROLE,
                resolve_resource_group_scope(
                    deployment_resource_group, self._session.subscription_id
                ),
            ),
        ]
        # Order matters: a fatal rejection stops the remaining assignments
        for role_name, scope in assignments:
            outcome = await self._assign_role(result.principal_id, role_name, scope)
            result.role_assignments.append(outcome)

        logger.info(
            f"Identity '{display_name}' ready",
            extra={
                "app_id": redact(app_id),
                "created_application": created_application,
                "created_principal": created_principal,
                "role_assignments_created": sum(1 for r in result.role_assignments if r.created),
            },
        )
        return result

    def _ensure_application(
        self, graph: GraphClient, display_name: str
    ) -> tuple[dict[str, Any], bool]:
        existing = find_application(graph, display_name)
        if existing is not None:
            logger.info(f"Reusing application '{display_name}'")
            return existing, False

        try:
            application = graph.create_application(display_name)
        except HttpResponseError as e:
            raise from_http_error(e, f"Failed to create application '{display_name}'") from e

        log_audit_event(
            "application_created",
            target=display_name,
            action="create",
            result="success",
            app_id=redact(application.get("appId")),
        )
        return application, True

    def _ensure_service_principal(
        self, graph: GraphClient, app_id: str
    ) -> tuple[dict[str, Any], bool]:
        try:
            principal = graph.create_service_principal(app_id)
        except HttpResponseError as e:
            if kind_of(e) not in (ErrorKind.ALREADY_EXISTS, ErrorKind.CONFLICT):
                raise from_http_error(
                    e, f"Failed to create service principal for {redact(app_id)}"
                ) from e
            logger.info(
                "Service principal already exists, resolving by appId",
                extra={"app_id": redact(app_id), "error_code": error_code_of(e)},
            )
        else:
            log_audit_event(
                "service_principal_created",
                target=redact(app_id),
                action="create",
                result="success",
            )
            return principal, True

        try:
            existing = graph.find_service_principal(app_id)
        except HttpResponseError as e:
            raise from_http_error(
                e, f"Failed to look up service principal for {redact(app_id)}"
            ) from e
        if existing is None:
            raise ProvisionError(
                f"Service principal for {redact(app_id)} reported as existing but was not found"
            )
        return existing, False

    def resolve_project(self, project_name: str) -> ProjectReference:
        """Resolve a dev center project name to its ARM id and resource group.

        Raises:
            NotFoundError: If no project with that name exists.
            ConflictError: If the name matches projects in several resource groups.
        """
        client = self._session.resource_client()
        query = (
            f"resourceType eq '{DEVCENTER_PROJECT_RESOURCE_TYPE}' "
            f"and name eq {odata_quote(project_name)}"
        )
        try:
            matches = list(client.resources.list(filter=query))
        except HttpResponseError as e:
            raise from_http_error(e, f"Failed to look up project '{project_name}'") from e

        if not matches:
            raise NotFoundError(
                f"Dev center project '{project_name}' not found in subscription "
                f"{self._session.subscription_id}"
            )
        if len(matches) > 1:
            raise ConflictError(
                f"Project name '{project_name}' matches {len(matches)} projects",
                detail=", ".join(m.id for m in matches),
            )

        resource_id = matches[0].id
        location = parse_resource_id(resource_id)
        return ProjectReference(
            name=project_name,
            resource_id=resource_id,
            resource_group=location.resource_group,
            subscription_id=location.subscription or self._session.subscription_id,
        )

    async def _assign_role(
        self, principal_id: str, role_name: str, scope: str
    ) -> RoleAssignmentOutcome:
        subscription_id = parse_resource_id(scope).subscription or self._session.subscription_id
        client = self._session.authorization_client(subscription_id)
        assignment_name = role_assignment_name(principal_id, role_name, scope)
        parameters = RoleAssignmentCreateParameters(
            role_definition_id=role_definition_id(subscription_id, role_name),
            principal_id=principal_id,
            principal_type="ServicePrincipal",
            description="Managed by ade-bootstrap",
        )

        attempts = self._config.principal_propagation_attempts
        for attempt in range(1, attempts + 1):
            try:
                client.role_assignments.create(
                    scope=scope,
                    role_assignment_name=assignment_name,
                    parameters=parameters,
                )
            except HttpResponseError as e:
                kind = kind_of(e)
                if kind == ErrorKind.ALREADY_EXISTS:
                    logger.info(f"Role assignment {role_name} already exists at {scope}")
                    return RoleAssignmentOutcome(role_name, scope, assignment_name, created=False)

                if error_code_of(e) == PRINCIPAL_NOT_FOUND_ERROR_CODE and attempt < attempts:
                    logger.info(
                        f"Principal not yet replicated, retrying {role_name} "
                        f"({attempt}/{attempts})",
                        extra={"principal_id": redact(principal_id)},
                    )
                    await asyncio.sleep(self._config.principal_propagation_delay_seconds)
                    continue

                logger.error(
                    f"Failed to create role assignment {role_name} at {scope}",
                    extra={"status_code": e.status_code, "error_code": error_code_of(e)},
                )
                raise from_http_error(
                    e, f"Failed to assign {role_name} at {scope}"
                ) from e

            log_audit_event(
                "role_assignment_created",
                target=scope,
                action=role_name,
                result="success",
                principal_id=redact(principal_id),
            )
            return RoleAssignmentOutcome(role_name, scope, assignment_name, created=True)

        # Unreachable: the last attempt either returns or raises
        raise ProvisionError(f"Failed to assign {role_name} at {scope}")
