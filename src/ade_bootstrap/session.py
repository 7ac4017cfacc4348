"""Authenticated Azure session shared by every Azure-facing component.

The session is an explicit object built once at process start and passed by
reference, instead of relying on ambient CLI login state:

1. ``ensure_authenticated()`` picks the credential. Service-principal
   credentials (tenant id, client id, client secret) are used when configured;
   otherwise the interactive Azure CLI session is reused.
2. A token request against ARM validates the credential before any
   provisioning step runs.
3. The configured subscription is pinned for every client the session builds.

NOT thread-safe: call ``ensure_authenticated()`` once, before any concurrent
work starts. One authenticated identity per process.
"""

from __future__ import annotations

import logging
from typing import Any

from azure.core.credentials import TokenCredential
from azure.core.exceptions import ClientAuthenticationError, HttpResponseError
from azure.developer.devcenter import DevCenterClient
from azure.identity import AzureCliCredential, ClientSecretCredential, CredentialUnavailableError
from azure.mgmt.authorization import AuthorizationManagementClient
from azure.mgmt.resource import ResourceManagementClient

from .config import Config
from .errors import AuthError
from .graph import GraphClient

logger = logging.getLogger(__name__)

ARM_SCOPE = "https://management.azure.com/.default"

NO_CREDENTIAL_MESSAGE = (
    "No Azure session found and no service principal credentials configured. "
    "Run 'az login' or set AZURE_TENANT_ID, AZURE_CLIENT_ID and AZURE_CLIENT_SECRET."
)


def redact(value: str | None) -> str | None:
    """Shorten an identifier for logging."""
    if value is None:
        return None
    return value[:8] + "..." if len(value) > 8 else value


def log_audit_event(
    event_type: str,
    target: str | None = None,
    action: str | None = None,
    result: str | None = None,
    **fields: Any,
) -> None:
    """Log a control-plane mutation with structured fields.

    Never pass secret values here.
    """
    logger.info(
        f"Audit: {event_type}",
        extra={
            "audit": True,
            "event_type": event_type,
            "target": target,
            "action": action,
            "result": result,
            **fields,
        },
    )


class AzureSession:
    """Authenticated context against the Azure control plane."""

    def __init__(self, config: Config) -> None:
        self._config = config
        self._credential: TokenCredential | None = None
        self._login_mode: str | None = None
        self._tenant_id: str | None = config.tenant_id

    @property
    def config(self) -> Config:
        return self._config

    @property
    def is_authenticated(self) -> bool:
        return self._credential is not None

    @property
    def login_mode(self) -> str | None:
        """``service-principal`` or ``azure-cli`` once authenticated."""
        return self._login_mode

    @property
    def subscription_id(self) -> str:
        return self._config.subscription_id

    @property
    def credential(self) -> TokenCredential:
        if self._credential is None:
            raise AuthError("Azure session is not authenticated; call ensure_authenticated() first")
        return self._credential

    def ensure_authenticated(self) -> None:
        """Establish the session, or do nothing if it already exists.

        Raises:
            AuthError: If no credential is available or Azure rejects it.
        """
        if self._credential is not None:
            return

        credential: TokenCredential
        if self._config.has_service_principal_credentials:
            mode = "service-principal"
            credential = ClientSecretCredential(
                tenant_id=self._config.tenant_id,
                client_id=self._config.client_id,
                client_secret=self._config.client_secret,
            )
        else:
            mode = "azure-cli"
            credential = AzureCliCredential(tenant_id=self._config.tenant_id or "")

        try:
            credential.get_token(ARM_SCOPE)
        except CredentialUnavailableError as e:
            logger.error("No usable Azure credential", extra={"login_mode": mode})
            raise AuthError(NO_CREDENTIAL_MESSAGE, detail=str(e)) from e
        except ClientAuthenticationError as e:
            logger.error("Azure rejected the credential", extra={"login_mode": mode})
            raise AuthError(
                f"Azure rejected the {mode} credential: {e.message}", detail=str(e)
            ) from e

        self._credential = credential
        self._login_mode = mode
        logger.info(
            "Azure session established",
            extra={
                "login_mode": mode,
                "client_id": redact(self._config.client_id),
                "subscription_id": self.subscription_id,
            },
        )

    def tenant_id(self) -> str:
        """Return the tenant id, asking Graph when it is not configured."""
        if self._tenant_id:
            return self._tenant_id
        graph = self.graph_client()
        try:
            tenant_id = graph.get_tenant_id()
        except HttpResponseError as e:
            raise AuthError(f"Could not resolve tenant id: {e.message}", detail=str(e)) from e
        if not tenant_id:
            raise AuthError("Could not resolve tenant id from Microsoft Graph")
        self._tenant_id = tenant_id
        return tenant_id

    # Client factories. Every client is bound to the session credential.

    def resource_client(self, subscription_id: str | None = None) -> ResourceManagementClient:
        return ResourceManagementClient(
            credential=self.credential,
            subscription_id=subscription_id or self.subscription_id,
        )

    def authorization_client(
        self, subscription_id: str | None = None
    ) -> AuthorizationManagementClient:
        return AuthorizationManagementClient(
            credential=self.credential,
            subscription_id=subscription_id or self.subscription_id,
        )

    def graph_client(self) -> GraphClient:
        return GraphClient(credential=self.credential)

    def devcenter_client(self) -> DevCenterClient:
        return DevCenterClient(
            endpoint=self._config.require_devcenter_endpoint(),
            credential=self.credential,
        )
