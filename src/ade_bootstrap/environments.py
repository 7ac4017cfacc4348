"""Azure Deployment Environments: definitions, environments, inventory.

Environment definitions and environments are read and written through the
dev center data plane. The create is a long-running operation; the blocking
poller is awaited on the default executor so the event loop stays free.
"""

from __future__ import annotations

import asyncio
import json
import logging
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from azure.core.exceptions import HttpResponseError, ResourceNotFoundError

from .errors import ConflictError, ErrorKind, from_http_error, kind_of
from .locator import ResourceLocation, parse_resource_id
from .session import AzureSession, log_audit_event

logger = logging.getLogger(__name__)

# Environments are owned by the calling identity
CURRENT_USER = "me"


def _as_dict(model: Any) -> dict[str, Any]:
    if model is None:
        return {}
    if isinstance(model, Mapping):
        return dict(model)
    return model.as_dict()


def parse_parameters(parameters: Mapping[str, Any] | str | None) -> dict[str, Any] | None:
    """Accept environment parameters as a mapping or a JSON object string.

    Raises:
        ValueError: If the string is not valid JSON or not a JSON object.
    """
    if parameters is None:
        return None
    if isinstance(parameters, Mapping):
        return dict(parameters)
    if not parameters.strip():
        return None
    try:
        value = json.loads(parameters)
    except json.JSONDecodeError as e:
        raise ValueError(f"Environment parameters are not valid JSON: {e}") from e
    if not isinstance(value, dict):
        raise ValueError("Environment parameters must be a JSON object")
    return value


@dataclass
class EnvironmentInstance:
    """A deployed ADE environment and the resource group it lives in."""

    name: str
    environment_type: str
    definition_name: str
    catalog_name: str
    resource_group_id: str
    provisioning_state: str | None = None
    parameters: dict[str, Any] = field(default_factory=dict)

    @property
    def location(self) -> ResourceLocation:
        return parse_resource_id(self.resource_group_id)

    @property
    def resource_group(self) -> str:
        return self.location.resource_group

    @property
    def subscription(self) -> str:
        return self.location.subscription

    @classmethod
    def from_remote(cls, data: Mapping[str, Any]) -> EnvironmentInstance:
        return cls(
            name=data.get("name", ""),
            environment_type=data.get("environmentType", ""),
            definition_name=data.get("environmentDefinitionName", ""),
            catalog_name=data.get("catalogName", ""),
            resource_group_id=data.get("resourceGroupId", ""),
            provisioning_state=data.get("provisioningState"),
            parameters=dict(data.get("parameters") or {}),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "environmentType": self.environment_type,
            "environmentDefinitionName": self.definition_name,
            "catalogName": self.catalog_name,
            "provisioningState": self.provisioning_state,
            "resourceGroupId": self.resource_group_id,
            "resourceGroup": self.resource_group,
            "subscription": self.subscription,
        }


class EnvironmentProvisioner:
    """Read ADE definitions and create environments from them."""

    def __init__(self, session: AzureSession) -> None:
        self._session = session
        self._config = session.config

    def list_definitions(self, project_name: str | None = None) -> list[dict[str, Any]]:
        project = self._config.require_project(project_name)
        client = self._session.devcenter_client()
        try:
            return [_as_dict(d) for d in client.list_environment_definitions(project)]
        except HttpResponseError as e:
            raise from_http_error(
                e, f"Failed to list environment definitions of '{project}'"
            ) from e

    def get_definition(
        self,
        definition_name: str,
        catalog_name: str | None = None,
        project_name: str | None = None,
    ) -> dict[str, Any]:
        """Fetch one environment definition, including its parameter schema.

        Raises:
            NotFoundError: If the definition does not exist in the catalog.
        """
        project = self._config.require_project(project_name)
        catalog = self._config.require_catalog(catalog_name)
        client = self._session.devcenter_client()
        try:
            definition = client.get_environment_definition(project, catalog, definition_name)
        except HttpResponseError as e:
            raise from_http_error(
                e, f"Failed to get environment definition '{catalog}/{definition_name}'"
            ) from e
        return _as_dict(definition)

    def get_environment(
        self, env_name: str, project_name: str | None = None
    ) -> EnvironmentInstance:
        project = self._config.require_project(project_name)
        client = self._session.devcenter_client()
        try:
            environment = client.get_environment(project, CURRENT_USER, env_name)
        except HttpResponseError as e:
            raise from_http_error(e, f"Failed to get environment '{env_name}'") from e
        return EnvironmentInstance.from_remote(_as_dict(environment))

    def _environment_exists(self, client: Any, project: str, env_name: str) -> bool:
        try:
            client.get_environment(project, CURRENT_USER, env_name)
        except ResourceNotFoundError:
            return False
        except HttpResponseError as e:
            if kind_of(e) == ErrorKind.NOT_FOUND:
                return False
            raise from_http_error(e, f"Failed to look up environment '{env_name}'") from e
        return True

    async def create_environment(
        self,
        env_name: str,
        env_type: str,
        definition_name: str,
        project_name: str | None = None,
        catalog_name: str | None = None,
        parameters: Mapping[str, Any] | str | None = None,
    ) -> EnvironmentInstance:
        """Create an environment and wait for its resource group.

        Args:
            env_name: Environment name, unique per project and user.
            env_type: Environment type configured on the project.
            definition_name: Environment definition in the catalog.
            project_name: Falls back to DEVCENTER_PROJECT.
            catalog_name: Falls back to DEVCENTER_CATALOG.
            parameters: Mapping or JSON object string; omitted when None.

        Returns:
            EnvironmentInstance with resource group and subscription derived
            from the environment's resourceGroupId.

        Raises:
            ValueError: If ``parameters`` is not a JSON object. No call is made.
            ConflictError: If an environment with this name already exists.
            ProvisionError: If the create is rejected or fails.
        """
        body_parameters = parse_parameters(parameters)
        project = self._config.require_project(project_name)
        catalog = self._config.require_catalog(catalog_name)
        client = self._session.devcenter_client()

        if self._environment_exists(client, project, env_name):
            raise ConflictError(
                f"Environment '{env_name}' already exists in project '{project}'"
            )

        body: dict[str, Any] = {
            "environmentType": env_type,
            "catalogName": catalog,
            "environmentDefinitionName": definition_name,
        }
        if body_parameters is not None:
            body["parameters"] = body_parameters

        logger.info(
            f"Creating ADE environment '{env_name}'",
            extra={
                "project": project,
                "environment_type": env_type,
                "definition": f"{catalog}/{definition_name}",
            },
        )
        try:
            poller = client.begin_create_or_update_environment(
                project, CURRENT_USER, env_name, body
            )
            loop = asyncio.get_running_loop()
            await loop.run_in_executor(None, poller.result)
        except HttpResponseError as e:
            raise from_http_error(e, f"Failed to create environment '{env_name}'") from e

        environment = self.get_environment(env_name, project)
        if not environment.location.resolvable:
            logger.warning(
                f"Environment '{env_name}' has no resolvable resource group",
                extra={"resource_group_id": environment.resource_group_id},
            )

        log_audit_event(
            "ade_environment_created",
            target=env_name,
            action="create",
            result="success",
            project=project,
            resource_group=environment.resource_group,
        )
        return environment

    def list_resources(
        self, resource_group: str, subscription_id: str | None = None
    ) -> list[dict[str, Any]]:
        """Inventory of the resources deployed into a resource group."""
        client = self._session.resource_client(subscription_id)
        try:
            resources = client.resources.list_by_resource_group(resource_group)
            return [_as_dict(r) for r in resources]
        except HttpResponseError as e:
            raise from_http_error(
                e, f"Failed to list resources of '{resource_group}'"
            ) from e
