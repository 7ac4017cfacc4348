"""Bind GitHub Actions OIDC tokens to an application identity.

A federated identity credential lets a workflow running in
``repo:{org}/{repo}:environment:{EnvType}`` exchange its OIDC token for an
Azure AD token of the application, with no stored secret.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import asdict, dataclass
from typing import Any

from azure.core.exceptions import HttpResponseError

from .errors import ConflictError, ErrorKind, NotFoundError, from_http_error, kind_of
from .identity import find_application, identity_display_name, normalize_environment_type
from .models import MAX_FEDERATED_CREDENTIAL_NAME_LENGTH, FederatedCredential
from .session import AzureSession, log_audit_event, redact

logger = logging.getLogger(__name__)

FEDERATED_CREDENTIAL_NAME_PREFIX = "ADE"

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]+")


def federated_subject(org: str, repo: str, env_type: str) -> str:
    """OIDC subject GitHub issues for a job bound to a deployment environment."""
    if not org or not repo:
        raise ValueError("Both org and repo are required")
    return f"repo:{org}/{repo}:environment:{normalize_environment_type(env_type)}"


def federated_credential_name(org: str, repo: str, env_type: str) -> str:
    """Deterministic credential name for one (org, repo, environment type).

    Graph allows letters, digits, ``-`` and ``_`` up to 120 characters. Longer
    names are truncated and suffixed with a hash of the full name so distinct
    repositories never collide.
    """
    raw = "-".join(
        [FEDERATED_CREDENTIAL_NAME_PREFIX, org, repo, normalize_environment_type(env_type)]
    )
    name = _INVALID_NAME_CHARS.sub("-", raw).strip("-")
    if len(name) <= MAX_FEDERATED_CREDENTIAL_NAME_LENGTH:
        return name
    digest = hashlib.sha256(raw.encode()).hexdigest()[:10]
    return f"{name[:MAX_FEDERATED_CREDENTIAL_NAME_LENGTH - 11]}-{digest}"


@dataclass
class FederationResult:
    application_id: str
    object_id: str
    credential_name: str
    subject: str
    created: bool

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class FederatedCredentialBinder:
    """Attach the GitHub OIDC subject to an existing application identity."""

    def __init__(self, session: AzureSession) -> None:
        self._session = session
        self._config = session.config

    async def bind_federated_credential(
        self,
        org: str,
        repo: str,
        env_type: str,
        project_name: str | None = None,
    ) -> FederationResult:
        """Create the federated credential unless an equivalent one exists.

        Raises:
            NotFoundError: If no application carries the derived display name.
            ConflictError: If the display name is ambiguous, or a credential
                with the derived name already trusts a different subject.
            ProvisionError: If Graph rejects the create.
        """
        project = self._config.require_project(project_name)
        display_name = identity_display_name(project, env_type)
        graph = self._session.graph_client()

        application = find_application(graph, display_name)
        if application is None:
            raise NotFoundError(
                f"No application named '{display_name}'. "
                "Create the identity before binding a federated credential."
            )

        desired = FederatedCredential(
            name=federated_credential_name(org, repo, env_type),
            subject=federated_subject(org, repo, env_type),
            description=normalize_environment_type(env_type),
        )
        object_id = application["id"]
        app_id = application["appId"]

        try:
            existing = graph.list_federated_credentials(object_id)
        except HttpResponseError as e:
            raise from_http_error(
                e, f"Failed to list federated credentials of '{display_name}'"
            ) from e

        for credential in existing:
            if credential.get("name") == desired.name:
                if desired.same_trust(credential):
                    logger.info(f"Federated credential '{desired.name}' already present")
                    return self._result(application, desired.name, desired.subject, False)
                raise ConflictError(
                    f"Federated credential '{desired.name}' already exists on "
                    f"'{display_name}' with a different trust",
                    detail=f"subject={credential.get('subject')}",
                )

        for credential in existing:
            if (
                credential.get("issuer") == desired.issuer
                and credential.get("subject") == desired.subject
            ):
                # Graph refuses a second credential for the same issuer and subject
                logger.info(
                    f"Reusing federated credential '{credential.get('name')}' "
                    f"for {desired.subject}"
                )
                return self._result(application, credential["name"], desired.subject, False)

        try:
            graph.create_federated_credential(object_id, desired.to_graph_body())
        except HttpResponseError as e:
            if kind_of(e) in (ErrorKind.CONFLICT, ErrorKind.ALREADY_EXISTS):
                raise ConflictError(
                    f"Federated credential '{desired.name}' conflicts with an existing one "
                    f"({e.status_code}): {e.message}",
                    status_code=e.status_code,
                    detail=e.message,
                ) from e
            raise from_http_error(
                e, f"Failed to create federated credential '{desired.name}'"
            ) from e

        log_audit_event(
            "federated_credential_created",
            target=display_name,
            action="create",
            result="success",
            app_id=redact(app_id),
            subject=desired.subject,
        )
        return self._result(application, desired.name, desired.subject, True)

    @staticmethod
    def _result(
        application: dict[str, Any], name: str, subject: str, created: bool
    ) -> FederationResult:
        return FederationResult(
            application_id=application["appId"],
            object_id=application["id"],
            credential_name=name,
            subject=subject,
            created=created,
        )
