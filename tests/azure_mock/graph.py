"""Mock Microsoft Graph client for testing.

Mirrors the GraphClient surface over the shared MockAzureState, raising the
same errors Graph returns for duplicates and missing objects.
"""

from __future__ import annotations

import uuid
from typing import Any

from azure.core.exceptions import ResourceExistsError, ResourceNotFoundError

from .errors import make_http_error
from .resources import MockAzureState


class MockGraphClient:
    """In-memory applications, service principals and federated credentials."""

    def __init__(self, state: MockAzureState) -> None:
        self._state = state

    def add_application(self, display_name: str) -> dict[str, Any]:
        """Seed an application directly, bypassing call recording."""
        application = {
            "id": str(uuid.uuid4()),
            "appId": str(uuid.uuid4()),
            "displayName": display_name,
        }
        self._state.applications[application["id"]] = application
        return application

    def find_applications(self, display_name: str) -> list[dict[str, Any]]:
        self._state.record("graph.find_applications")
        return [
            dict(a) for a in self._state.applications.values()
            if a["displayName"] == display_name
        ]

    def create_application(self, display_name: str) -> dict[str, Any]:
        self._state.record("graph.create_application")
        return dict(self.add_application(display_name))

    def create_service_principal(self, app_id: str) -> dict[str, Any]:
        self._state.record("graph.create_service_principal")
        if app_id in self._state.service_principals:
            raise make_http_error(
                409,
                "Request_MultipleObjectsWithSameKeyValue",
                "Another object with the same value for property servicePrincipalNames "
                "already exists.",
                cls=ResourceExistsError,
            )
        if not any(a["appId"] == app_id for a in self._state.applications.values()):
            raise make_http_error(400, "Request_BadRequest", f"Application {app_id} not found")
        principal = {"id": str(uuid.uuid4()), "appId": app_id}
        self._state.service_principals[app_id] = principal
        return dict(principal)

    def find_service_principal(self, app_id: str) -> dict[str, Any] | None:
        self._state.record("graph.find_service_principal")
        principal = self._state.service_principals.get(app_id)
        return dict(principal) if principal else None

    def list_federated_credentials(self, application_object_id: str) -> list[dict[str, Any]]:
        self._state.record("graph.list_federated_credentials")
        if application_object_id not in self._state.applications:
            raise make_http_error(
                404, "Request_ResourceNotFound", "Application not found", cls=ResourceNotFoundError
            )
        return [dict(c) for c in self._state.federated_credentials.get(application_object_id, [])]

    def create_federated_credential(
        self, application_object_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        self._state.record("graph.create_federated_credential")
        credentials = self._state.federated_credentials.setdefault(application_object_id, [])
        if any(c["name"] == body["name"] for c in credentials):
            raise make_http_error(
                409,
                "Request_BadRequest",
                f"FederatedIdentityCredential with name {body['name']} already exists.",
                cls=ResourceExistsError,
            )
        credential = {"id": str(uuid.uuid4()), **body}
        credentials.append(credential)
        return dict(credential)

    def get_tenant_id(self) -> str | None:
        self._state.record("graph.get_tenant_id")
        return self._state.tenant_id

    def close(self) -> None:
        pass
