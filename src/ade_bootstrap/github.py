"""GitHub REST client and deployment-environment configuration.

Deployment environments and their secrets are written through the GitHub
REST API:

1. ``PUT /repos/{owner}/{repo}/environments/{name}`` creates or updates an
   environment (PUT semantics, safe to repeat).
2. The environment's public key is fetched and each secret is sealed against
   it (libsodium sealed box) before ``PUT .../secrets/{name}``.

Authentication is a personal access token, or a GitHub App whose
installation token is minted from an RS256 JWT and cached until shortly
before it expires. Plaintext secret values are never logged or returned.
"""

from __future__ import annotations

import logging
import re
import time
from base64 import b64decode
from datetime import datetime
from typing import Any
from urllib.parse import quote

import httpx
import jwt
from nacl import encoding, public

from .config import Config
from .errors import AuthError, ConflictError, NotFoundError, ProvisionError, ProvisioningError
from .models import DeploymentBranchPolicy, EnvironmentReviewer, GitHubEnvironmentSettings
from .session import log_audit_event

logger = logging.getLogger(__name__)

GITHUB_ACCEPT = "application/vnd.github+json"
GITHUB_API_VERSION = "2022-11-28"

# App JWTs may live at most 10 minutes; iat is backdated for clock drift
APP_JWT_LIFETIME_SECONDS = 540
APP_JWT_CLOCK_SKEW_SECONDS = 60
INSTALLATION_TOKEN_REFRESH_MARGIN_SECONDS = 300

SECRET_NAME_PATTERN = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")
RESERVED_SECRET_PREFIX = "GITHUB_"


def _path(segment: str) -> str:
    return quote(segment, safe="")


def validate_secret_name(name: str) -> None:
    """Reject names GitHub would refuse, before any request is made."""
    if not SECRET_NAME_PATTERN.match(name):
        raise ValueError(
            f"Invalid secret name '{name}': use letters, digits and underscores, "
            "not starting with a digit"
        )
    if name.upper().startswith(RESERVED_SECRET_PREFIX):
        raise ValueError(f"Invalid secret name '{name}': the GITHUB_ prefix is reserved")


def seal_secret(public_key: str, plaintext: str) -> str:
    """Encrypt ``plaintext`` for GitHub with a sealed box.

    Args:
        public_key: The repository or environment public key, standard base64.
        plaintext: Secret value.

    Returns:
        Standard base64 ciphertext for the ``encrypted_value`` field.
    """
    key = public.PublicKey(public_key.encode("utf-8"), encoding.Base64Encoder)
    sealed_box = public.SealedBox(key)
    return (
        encoding.Base64Encoder()
        .encode(sealed_box.encrypt(plaintext.encode("utf-8")))
        .decode("utf-8")
    )


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or response.reason_phrase
    if isinstance(body, dict) and body.get("message"):
        return str(body["message"])
    return response.reason_phrase


def raise_for_github_status(response: httpx.Response, action: str) -> None:
    """Map a GitHub error response to the provisioning error taxonomy."""
    if response.status_code < 400:
        return
    message = f"{action} ({response.status_code}): {_error_message(response)}"
    error_cls: type[ProvisioningError]
    if response.status_code == 401:
        error_cls = AuthError
    elif response.status_code == 404:
        error_cls = NotFoundError
    elif response.status_code == 409:
        error_cls = ConflictError
    else:
        error_cls = ProvisionError
    raise error_cls(message, status_code=response.status_code, detail=_error_message(response))


class GitHubClient:
    """Authenticated async GitHub REST client."""

    def __init__(
        self,
        config: Config,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        config.require_github_credentials()
        self._config = config
        self._client = httpx.AsyncClient(
            base_url=config.github_api_url,
            headers={
                "Accept": GITHUB_ACCEPT,
                "X-GitHub-Api-Version": GITHUB_API_VERSION,
                "User-Agent": "ade-bootstrap",
            },
            transport=transport,
        )
        self._installation_token: str | None = None
        self._installation_token_expires_at = 0.0

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    @property
    def auth_mode(self) -> str:
        return "pat" if self._config.github_token else "app"

    def _app_jwt(self) -> str:
        now = int(time.time())
        payload = {
            "iat": now - APP_JWT_CLOCK_SKEW_SECONDS,
            "exp": now + APP_JWT_LIFETIME_SECONDS,
            "iss": self._config.github_app_id,
        }
        # Keys passed through env vars often carry escaped newlines
        private_key = (self._config.github_private_key or "").replace("\\n", "\n").strip()
        try:
            return jwt.encode(payload, private_key, algorithm="RS256")
        except (ValueError, jwt.PyJWTError) as e:
            raise AuthError(f"Invalid GitHub App private key: {e}") from e

    async def _installation_token_value(self) -> str:
        if (
            self._installation_token
            and time.time() < self._installation_token_expires_at
        ):
            return self._installation_token

        installation_id = self._config.github_installation_id
        response = await self._send(
            "POST",
            f"/app/installations/{installation_id}/access_tokens",
            headers={"Authorization": f"Bearer {self._app_jwt()}"},
        )
        raise_for_github_status(response, "Failed to obtain GitHub App installation token")
        data = response.json()

        expires_at = time.time() + 3600
        if data.get("expires_at"):
            expires_at = datetime.fromisoformat(
                data["expires_at"].replace("Z", "+00:00")
            ).timestamp()
        self._installation_token = data["token"]
        self._installation_token_expires_at = (
            expires_at - INSTALLATION_TOKEN_REFRESH_MARGIN_SECONDS
        )
        logger.info(
            "GitHub App installation token issued",
            extra={"installation_id": installation_id},
        )
        return self._installation_token

    async def _authorization(self) -> str:
        if self._config.github_token:
            return f"Bearer {self._config.github_token}"
        return f"token {await self._installation_token_value()}"

    async def _send(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return await self._client.request(method, path, **kwargs)
        except httpx.RequestError as e:
            raise ProvisionError(f"GitHub request {method} {path} failed: {e}") from e

    async def request(
        self,
        method: str,
        path: str,
        *,
        json: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Send an authenticated request. Status handling is left to the caller."""
        headers = {"Authorization": await self._authorization()}
        return await self._send(method, path, json=json, params=params, headers=headers)

    async def create_repository_from_template(
        self,
        template_owner: str,
        template_repo: str,
        owner: str,
        name: str,
        description: str | None = None,
        private: bool = True,
        include_all_branches: bool = False,
    ) -> dict[str, Any]:
        """Create ``owner/name`` from a template repository."""
        body: dict[str, Any] = {
            "owner": owner,
            "name": name,
            "private": private,
            "include_all_branches": include_all_branches,
        }
        if description:
            body["description"] = description

        response = await self.request(
            "POST",
            f"/repos/{_path(template_owner)}/{_path(template_repo)}/generate",
            json=body,
        )
        raise_for_github_status(
            response, f"Failed to create {owner}/{name} from {template_owner}/{template_repo}"
        )
        data = response.json()
        log_audit_event(
            "repository_created",
            target=data.get("full_name"),
            action="generate",
            result="success",
            template=f"{template_owner}/{template_repo}",
        )
        return {"full_name": data.get("full_name"), "html_url": data.get("html_url")}

    async def get_file_content(
        self, owner: str, repo: str, path: str, ref: str | None = None
    ) -> str:
        """Return the decoded text of a file in a repository."""
        response = await self.request(
            "GET",
            f"/repos/{_path(owner)}/{_path(repo)}/contents/{quote(path.lstrip('/'))}",
            params={"ref": ref} if ref else None,
        )
        raise_for_github_status(response, f"Failed to read {owner}/{repo}/{path}")
        data = response.json()
        if not isinstance(data, dict) or data.get("type") != "file":
            raise ProvisionError(f"{owner}/{repo}/{path} is not a file")
        if data.get("encoding") != "base64":
            raise ProvisionError(
                f"Unsupported content encoding for {owner}/{repo}/{path}: {data.get('encoding')}"
            )
        return b64decode(data.get("content", "")).decode("utf-8")


class GitHubEnvironmentConfigurer:
    """Create deployment environments and write their secrets."""

    def __init__(self, client: GitHubClient) -> None:
        self._client = client

    @property
    def client(self) -> GitHubClient:
        return self._client

    async def create_or_update_environment(
        self,
        owner: str,
        repo: str,
        name: str,
        wait_timer: int = 0,
        reviewers: list[dict[str, Any] | EnvironmentReviewer] | None = None,
        deployment_branch_policy: dict[str, Any] | DeploymentBranchPolicy | None = None,
        prevent_self_review: bool = False,
    ) -> dict[str, Any]:
        """Create or update a deployment environment.

        Inputs are validated before any request: wait timer 0..43200 minutes,
        at most six reviewers of type User or Team, and branch policy flags
        not both true.

        Returns:
            The environment as GitHub returns it, including created_at and
            updated_at.

        Raises:
            pydantic.ValidationError: If the inputs are out of range.
            ProvisioningError: If GitHub rejects the request.
        """
        settings = GitHubEnvironmentSettings(
            wait_timer=wait_timer,
            prevent_self_review=prevent_self_review,
            reviewers=reviewers or [],
            deployment_branch_policy=deployment_branch_policy,
        )
        response = await self._client.request(
            "PUT",
            f"/repos/{_path(owner)}/{_path(repo)}/environments/{_path(name)}",
            json=settings.to_request_body(),
        )
        raise_for_github_status(
            response, f"Failed to configure environment '{name}' on {owner}/{repo}"
        )
        environment = response.json()
        log_audit_event(
            "github_environment_configured",
            target=f"{owner}/{repo}",
            action=name,
            result="success",
            wait_timer=settings.wait_timer,
            reviewers=len(settings.reviewers),
        )
        return environment

    async def get_public_key(self, owner: str, repo: str, environment: str) -> dict[str, str]:
        """Return ``{"key_id", "key"}`` for sealing environment secrets."""
        response = await self._client.request(
            "GET",
            f"/repos/{_path(owner)}/{_path(repo)}/environments/{_path(environment)}"
            "/secrets/public-key",
        )
        raise_for_github_status(
            response, f"Failed to fetch public key of environment '{environment}'"
        )
        data = response.json()
        return {"key_id": data["key_id"], "key": data["key"]}

    async def set_secret(
        self,
        owner: str,
        repo: str,
        environment: str,
        name: str,
        plaintext: str,
    ) -> str:
        """Seal and store an environment secret.

        Returns:
            ``"created"`` for a new secret, ``"updated"`` when it replaced one.
        """
        validate_secret_name(name)
        key = await self.get_public_key(owner, repo, environment)
        body = {
            "encrypted_value": seal_secret(key["key"], plaintext),
            "key_id": key["key_id"],
        }
        response = await self._client.request(
            "PUT",
            f"/repos/{_path(owner)}/{_path(repo)}/environments/{_path(environment)}"
            f"/secrets/{name}",
            json=body,
        )
        raise_for_github_status(
            response, f"Failed to set secret {name} on environment '{environment}'"
        )

        outcome = "created" if response.status_code == 201 else "updated"
        log_audit_event(
            "github_secret_written",
            target=f"{owner}/{repo}:{environment}",
            action=name,
            result=outcome,
        )
        return outcome
