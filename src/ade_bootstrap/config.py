"""Configuration management with validation.

All settings come from environment variables and are validated when the
``Config`` object is built, so a misconfigured process fails before it
touches Azure or GitHub.
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field


class ConfigurationError(Exception):
    """Raised when configuration validation fails."""

    pass


DEFAULT_GITHUB_API_URL = "https://api.github.com"
DEFAULT_CATALOG_PATH = "pe.yaml"

# A freshly created service principal can take a while to replicate to ARM
DEFAULT_PRINCIPAL_PROPAGATION_ATTEMPTS = 6
DEFAULT_PRINCIPAL_PROPAGATION_DELAY_SECONDS = 10
MAX_PRINCIPAL_PROPAGATION_ATTEMPTS = 30

MAX_CATALOG_FILE_SIZE_BYTES = 1024 * 1024  # 1MB max catalog document

# Input validation patterns
VALID_GUID_PATTERN = r"^[0-9a-f]{8}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{4}-[0-9a-f]{12}$"
VALID_REPO_SLUG_PATTERN = r"^[A-Za-z0-9_.-]+/[A-Za-z0-9_.-]+$"
VALID_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


@dataclass(frozen=True)
class Config:
    """Process configuration loaded from environment variables.

    Azure service-principal and GitHub App credentials are all-or-nothing
    groups. Optional settings that only some operations need (dev center
    endpoint, GitHub credentials, default project) are checked by the
    ``require_*`` helpers at the point of use.
    """

    subscription_id: str

    # Non-interactive Azure login (service principal)
    tenant_id: str | None = None
    client_id: str | None = None
    client_secret: str | None = field(default=None, repr=False)

    # Dev center
    devcenter_name: str | None = None
    devcenter_endpoint: str | None = None
    devcenter_project: str | None = None
    devcenter_catalog: str | None = None

    # GitHub
    github_token: str | None = field(default=None, repr=False)
    github_app_id: str | None = None
    github_private_key: str | None = field(default=None, repr=False)
    github_installation_id: str | None = None
    github_api_url: str = DEFAULT_GITHUB_API_URL

    # Platform catalog location
    catalog_repo: str | None = None
    catalog_path: str = DEFAULT_CATALOG_PATH

    # Timing
    principal_propagation_attempts: int = DEFAULT_PRINCIPAL_PROPAGATION_ATTEMPTS
    principal_propagation_delay_seconds: float = DEFAULT_PRINCIPAL_PROPAGATION_DELAY_SECONDS

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    def __post_init__(self) -> None:
        """Validate configuration after initialization.

        All problems are collected and reported together.
        """
        errors: list[str] = []

        if not self.subscription_id:
            errors.append("AZURE_SUBSCRIPTION_ID is required")
        elif not re.match(VALID_GUID_PATTERN, self.subscription_id.lower()):
            errors.append(f"AZURE_SUBSCRIPTION_ID must be a valid GUID: {self.subscription_id}")

        if self.tenant_id and not re.match(VALID_GUID_PATTERN, self.tenant_id.lower()):
            errors.append(f"AZURE_TENANT_ID must be a valid GUID: {self.tenant_id}")

        sp_values = (self.tenant_id, self.client_id, self.client_secret)
        if any(sp_values[1:]) and not all(sp_values):
            errors.append(
                "Service principal login requires AZURE_TENANT_ID, AZURE_CLIENT_ID "
                "and AZURE_CLIENT_SECRET together"
            )

        if self.devcenter_endpoint and not self.devcenter_endpoint.startswith("https://"):
            errors.append(f"DEVCENTER_ENDPOINT must be an https URL: {self.devcenter_endpoint}")

        app_values = (self.github_app_id, self.github_private_key, self.github_installation_id)
        if any(app_values) and not all(app_values):
            errors.append(
                "GitHub App authentication requires GITHUB_APP_ID, GITHUB_PRIVATE_KEY "
                "and GITHUB_INSTALLATION_ID together"
            )
        if self.github_installation_id and not self.github_installation_id.isdigit():
            errors.append(
                f"GITHUB_INSTALLATION_ID must be numeric: {self.github_installation_id}"
            )

        if not self.github_api_url.startswith("https://"):
            errors.append(f"GITHUB_API_URL must be an https URL: {self.github_api_url}")

        if self.catalog_repo and not re.match(VALID_REPO_SLUG_PATTERN, self.catalog_repo):
            errors.append(f"PE_CONFIG_REPO must be in owner/repo format: {self.catalog_repo}")

        if not 1 <= self.principal_propagation_attempts <= MAX_PRINCIPAL_PROPAGATION_ATTEMPTS:
            errors.append(
                "PRINCIPAL_PROPAGATION_ATTEMPTS must be between 1 "
                f"and {MAX_PRINCIPAL_PROPAGATION_ATTEMPTS}"
            )
        if self.principal_propagation_delay_seconds < 0:
            errors.append("PRINCIPAL_PROPAGATION_DELAY cannot be negative")

        if self.log_level.upper() not in VALID_LOG_LEVELS:
            errors.append(f"LOG_LEVEL must be one of {VALID_LOG_LEVELS}: {self.log_level}")

        if errors:
            error_msg = "Configuration validation failed:\n  - " + "\n  - ".join(errors)
            raise ConfigurationError(error_msg)

    @property
    def has_service_principal_credentials(self) -> bool:
        return bool(self.tenant_id and self.client_id and self.client_secret)

    @property
    def has_github_app_credentials(self) -> bool:
        return bool(self.github_app_id and self.github_private_key and self.github_installation_id)

    def require_project(self, project_name: str | None) -> str:
        """Return the explicit project name or the configured default."""
        project = project_name or self.devcenter_project
        if not project:
            raise ConfigurationError(
                "Project name must be provided either as a parameter "
                "or through the DEVCENTER_PROJECT environment variable"
            )
        return project

    def require_catalog(self, catalog_name: str | None) -> str:
        """Return the explicit catalog name or the configured default."""
        catalog = catalog_name or self.devcenter_catalog
        if not catalog:
            raise ConfigurationError(
                "Catalog name must be provided either as a parameter "
                "or through the DEVCENTER_CATALOG environment variable"
            )
        return catalog

    def require_devcenter_endpoint(self) -> str:
        if not self.devcenter_endpoint:
            raise ConfigurationError("DEVCENTER_ENDPOINT is required for environment operations")
        return self.devcenter_endpoint

    def require_github_credentials(self) -> None:
        if not self.github_token and not self.has_github_app_credentials:
            raise ConfigurationError(
                "Either GITHUB_PAT or all GitHub App credentials (GITHUB_APP_ID, "
                "GITHUB_PRIVATE_KEY, GITHUB_INSTALLATION_ID) must be provided"
            )

    @classmethod
    def from_env(cls) -> Config:
        """Load configuration from environment variables.

        Environment Variables:
            AZURE_SUBSCRIPTION_ID: Subscription pinned for all Azure calls (required)
            AZURE_TENANT_ID / AZURE_CLIENT_ID / AZURE_CLIENT_SECRET:
                Service principal login; without them the Azure CLI session is reused
            DEVCENTER_NAME: Dev center name
            DEVCENTER_ENDPOINT: Dev center data-plane endpoint
            DEVCENTER_PROJECT: Default dev center project
            DEVCENTER_CATALOG: Default catalog for environment definitions
            GITHUB_PAT: GitHub personal access token
            GITHUB_APP_ID / GITHUB_PRIVATE_KEY / GITHUB_INSTALLATION_ID: GitHub App login
            GITHUB_API_URL: GitHub REST endpoint (default: https://api.github.com)
            PE_CONFIG_REPO: Repository holding the platform catalog (owner/repo)
            PE_CONFIG_PATH: Catalog path inside that repository (default: pe.yaml)
            PRINCIPAL_PROPAGATION_ATTEMPTS: Role assignment attempts while a new
                principal replicates (default: 6)
            PRINCIPAL_PROPAGATION_DELAY: Seconds between those attempts (default: 10)
            LOG_LEVEL: Root log level (default: INFO)
            LOG_JSON: If "false", log plain text instead of JSON (default: true)
        """

        def get_int(key: str, default: int) -> int:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return int(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be an integer: {value}") from e

        def get_float(key: str, default: float) -> float:
            value = os.environ.get(key)
            if value is None:
                return default
            try:
                return float(value)
            except ValueError as e:
                raise ConfigurationError(f"{key} must be a number: {value}") from e

        def get_bool(key: str, default: bool) -> bool:
            value = os.environ.get(key, "").lower()
            if not value:
                return default
            return value in ("true", "1", "yes")

        def get_optional(key: str) -> str | None:
            return os.environ.get(key) or None

        return cls(
            subscription_id=os.environ.get("AZURE_SUBSCRIPTION_ID", ""),
            tenant_id=get_optional("AZURE_TENANT_ID"),
            client_id=get_optional("AZURE_CLIENT_ID"),
            client_secret=get_optional("AZURE_CLIENT_SECRET"),
            devcenter_name=get_optional("DEVCENTER_NAME"),
            devcenter_endpoint=get_optional("DEVCENTER_ENDPOINT"),
            devcenter_project=get_optional("DEVCENTER_PROJECT"),
            devcenter_catalog=get_optional("DEVCENTER_CATALOG"),
            github_token=get_optional("GITHUB_PAT"),
            github_app_id=get_optional("GITHUB_APP_ID"),
            github_private_key=get_optional("GITHUB_PRIVATE_KEY"),
            github_installation_id=get_optional("GITHUB_INSTALLATION_ID"),
            github_api_url=os.environ.get("GITHUB_API_URL") or DEFAULT_GITHUB_API_URL,
            catalog_repo=get_optional("PE_CONFIG_REPO"),
            catalog_path=os.environ.get("PE_CONFIG_PATH") or DEFAULT_CATALOG_PATH,
            principal_propagation_attempts=get_int(
                "PRINCIPAL_PROPAGATION_ATTEMPTS", DEFAULT_PRINCIPAL_PROPAGATION_ATTEMPTS
            ),
            principal_propagation_delay_seconds=get_float(
                "PRINCIPAL_PROPAGATION_DELAY", DEFAULT_PRINCIPAL_PROPAGATION_DELAY_SECONDS
            ),
            log_level=(os.environ.get("LOG_LEVEL") or "INFO").upper(),
            json_logs=get_bool("LOG_JSON", True),
        )
