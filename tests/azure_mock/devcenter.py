"""Mock dev center data-plane client for testing.

Environments land in a resource group named ``{project}-{environment}`` in
the mock subscription, the way ADE names them by default.
"""

from __future__ import annotations

from typing import Any

from azure.core.exceptions import ResourceNotFoundError

from .errors import make_http_error
from .resources import MockAzureState


class MockLROPoller:
    """Minimal LROPoller: the operation has already finished."""

    def __init__(self, result: Any, error: Exception | None = None) -> None:
        self._result = result
        self._error = error

    def result(self, timeout: float | None = None) -> Any:
        if self._error is not None:
            raise self._error
        return self._result

    def done(self) -> bool:
        return True


class MockDevCenterClient:
    """Mock DevCenterClient bound to the shared state."""

    def __init__(self, state: MockAzureState, endpoint: str = "") -> None:
        self._state = state
        self.endpoint = endpoint

    def add_definition(
        self, name: str, catalog: str, parameters: list[dict[str, Any]] | None = None
    ) -> dict[str, Any]:
        definition = {
            "name": name,
            "catalogName": catalog,
            "id": f"/projects/p/catalogs/{catalog}/environmentDefinitions/{name}",
            "parameters": parameters or [],
        }
        self._state.environment_definitions.append(definition)
        return definition

    def list_environment_definitions(
        self, project_name: str, **kwargs: Any
    ) -> list[dict[str, Any]]:
        self._state.record("devcenter.list_environment_definitions")
        return [dict(d) for d in self._state.environment_definitions]

    def get_environment_definition(
        self, project_name: str, catalog_name: str, definition_name: str, **kwargs: Any
    ) -> dict[str, Any]:
        self._state.record("devcenter.get_environment_definition")
        for definition in self._state.environment_definitions:
            if definition["catalogName"] == catalog_name and definition["name"] == definition_name:
                return dict(definition)
        raise make_http_error(
            404,
            "EnvironmentDefinitionNotFound",
            f"Environment definition {catalog_name}/{definition_name} not found",
            cls=ResourceNotFoundError,
        )

    def get_environment(
        self, project_name: str, user_id: str, environment_name: str, **kwargs: Any
    ) -> dict[str, Any]:
        self._state.record("devcenter.get_environment")
        environment = self._state.environments.get((project_name, environment_name))
        if environment is None:
            raise make_http_error(
                404,
                "EnvironmentNotFound",
                f"Environment {environment_name} not found",
                cls=ResourceNotFoundError,
            )
        return dict(environment)

    def begin_create_or_update_environment(
        self,
        project_name: str,
        user_id: str,
        environment_name: str,
        body: dict[str, Any],
        **kwargs: Any,
    ) -> MockLROPoller:
        self._state.record("devcenter.begin_create_or_update_environment")
        rg_name = f"{project_name}-{environment_name}"
        environment = {
            "name": environment_name,
            "environmentType": body["environmentType"],
            "catalogName": body["catalogName"],
            "environmentDefinitionName": body["environmentDefinitionName"],
            "parameters": body.get("parameters", {}),
            "provisioningState": "Succeeded",
            "resourceGroupId": self._state.add_resource_group(rg_name),
        }
        self._state.environments[(project_name, environment_name)] = environment
        return MockLROPoller(dict(environment))
