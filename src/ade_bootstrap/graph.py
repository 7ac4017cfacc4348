"""Microsoft Graph client for application identities.

Covers the Graph calls the provisioning pipeline needs:
- applications (find by display name, create)
- service principals (create, find by appId)
- federated identity credentials (list, create)
- organization (tenant id lookup)

Requests go through an azure-core pipeline with bearer-token auth, so Graph
errors surface as azure-core ``HttpResponseError`` subclasses with the parsed
OData error attached, the same as every other Azure SDK call in the package.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core import PipelineClient
from azure.core.credentials import TokenCredential
from azure.core.exceptions import (
    ClientAuthenticationError,
    HttpResponseError,
    ResourceExistsError,
    ResourceNotFoundError,
    map_error,
)
from azure.core.pipeline.policies import (
    BearerTokenCredentialPolicy,
    HeadersPolicy,
    HttpLoggingPolicy,
    RetryPolicy,
)
from azure.core.rest import HttpRequest

logger = logging.getLogger(__name__)

GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
GRAPH_SCOPE = "https://graph.microsoft.com/.default"

# Bound on paged list results
MAX_GRAPH_PAGES = 50

ERROR_MAP: dict[int, type[HttpResponseError]] = {
    401: ClientAuthenticationError,
    404: ResourceNotFoundError,
    409: ResourceExistsError,
}


def odata_quote(value: str) -> str:
    """Quote a string literal for an OData ``$filter`` expression."""
    return "'" + value.replace("'", "''") + "'"


class GraphClient:
    """Thin Microsoft Graph v1.0 client.

    Returns raw Graph JSON objects; interpretation belongs to the callers.
    """

    def __init__(
        self,
        credential: TokenCredential,
        endpoint: str = GRAPH_ENDPOINT,
        **kwargs: Any,
    ) -> None:
        policies = [
            HeadersPolicy({"Accept": "application/json"}),
            RetryPolicy(),
            BearerTokenCredentialPolicy(credential, GRAPH_SCOPE),
            HttpLoggingPolicy(),
        ]
        self._client: PipelineClient = PipelineClient(
            base_url=endpoint, policies=policies, **kwargs
        )

    def _send(
        self,
        method: str,
        url: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        request = HttpRequest(method, self._client.format_url(url), json=json, params=params)
        response = self._client.send_request(request)

        if response.status_code >= 400:
            map_error(status_code=response.status_code, response=response, error_map=ERROR_MAP)
            raise HttpResponseError(response=response)

        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    def _list(self, url: str, params: dict[str, str] | None = None) -> list[dict[str, Any]]:
        items: list[dict[str, Any]] = []
        next_url: str | None = url
        pages = 0
        while next_url and pages < MAX_GRAPH_PAGES:
            # nextLink already carries the query string
            page = self._send("GET", next_url, params=params if pages == 0 else None)
            items.extend(page.get("value", []))
            next_url = page.get("@odata.nextLink")
            pages += 1
        if next_url:
            logger.warning(f"Graph listing of {url} truncated after {MAX_GRAPH_PAGES} pages")
        return items

    # Applications

    def find_applications(self, display_name: str) -> list[dict[str, Any]]:
        return self._list(
            "/applications",
            params={"$filter": f"displayName eq {odata_quote(display_name)}"},
        )

    def create_application(self, display_name: str) -> dict[str, Any]:
        return self._send("POST", "/applications", json={"displayName": display_name})

    # Service principals

    def create_service_principal(self, app_id: str) -> dict[str, Any]:
        return self._send("POST", "/servicePrincipals", json={"appId": app_id})

    def find_service_principal(self, app_id: str) -> dict[str, Any] | None:
        matches = self._list(
            "/servicePrincipals",
            params={"$filter": f"appId eq {odata_quote(app_id)}"},
        )
        return matches[0] if matches else None

    # Federated identity credentials

    def list_federated_credentials(self, application_object_id: str) -> list[dict[str, Any]]:
        return self._list(f"/applications/{application_object_id}/federatedIdentityCredentials")

    def create_federated_credential(
        self, application_object_id: str, body: dict[str, Any]
    ) -> dict[str, Any]:
        return self._send(
            "POST",
            f"/applications/{application_object_id}/federatedIdentityCredentials",
            json=body,
        )

    # Organization

    def get_tenant_id(self) -> str | None:
        organizations = self._list("/organization")
        if not organizations:
            return None
        return organizations[0].get("id")

    def close(self) -> None:
        self._client.close()
