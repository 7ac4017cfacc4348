"""Pydantic models for remote payloads and the platform catalog.

These models provide:
1. Validation at the boundary, before any network call is made
2. The exact wire shapes Graph and GitHub expect
3. Type-safe YAML parsing of the platform catalog
"""

from __future__ import annotations

from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field, field_validator, model_validator

# =============================================================================
# OIDC Federated Credential
# =============================================================================

GITHUB_OIDC_ISSUER = "https://token.actions.githubusercontent.com"
AZURE_AD_TOKEN_EXCHANGE_AUDIENCE = "api://AzureADTokenExchange"
MAX_FEDERATED_CREDENTIAL_NAME_LENGTH = 120


class FederatedCredential(BaseModel):
    """Trust statement written to an application identity.

    The field set is a compatibility contract with the GitHub Actions OIDC
    consumer: name, issuer, subject, description, audiences.
    """

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1, max_length=MAX_FEDERATED_CREDENTIAL_NAME_LENGTH)]
    issuer: str = GITHUB_OIDC_ISSUER
    subject: Annotated[str, Field(min_length=1)]
    description: str | None = None
    audiences: list[str] = Field(default_factory=lambda: [AZURE_AD_TOKEN_EXCHANGE_AUDIENCE])

    def to_graph_body(self) -> dict[str, Any]:
        return {
            "name": self.name,
            "issuer": self.issuer,
            "subject": self.subject,
            "description": self.description,
            "audiences": list(self.audiences),
        }

    def same_trust(self, other: dict[str, Any]) -> bool:
        """Whether a Graph credential object grants exactly this trust."""
        return (
            other.get("issuer") == self.issuer
            and other.get("subject") == self.subject
            and sorted(other.get("audiences") or []) == sorted(self.audiences)
        )


# =============================================================================
# GitHub Deployment Environment
# =============================================================================

MAX_WAIT_TIMER_MINUTES = 43200  # 30 days
MAX_ENVIRONMENT_REVIEWERS = 6


class EnvironmentReviewer(BaseModel):
    """A user or team allowed to approve deployments to an environment."""

    model_config = {"extra": "ignore"}

    type: Literal["User", "Team"]
    id: Annotated[int, Field(gt=0)]


class DeploymentBranchPolicy(BaseModel):
    """Which branches may deploy to an environment.

    GitHub rejects both flags being true; both false is expressed by omitting
    the policy entirely.
    """

    model_config = {"extra": "ignore"}

    protected_branches: bool = False
    custom_branch_policies: bool = False

    @model_validator(mode="after")
    def validate_exclusive(self) -> DeploymentBranchPolicy:
        if self.protected_branches and self.custom_branch_policies:
            raise ValueError(
                "protected_branches and custom_branch_policies cannot both be true"
            )
        return self


class GitHubEnvironmentSettings(BaseModel):
    """Body of ``PUT /repos/{owner}/{repo}/environments/{name}``."""

    model_config = {"extra": "ignore"}

    wait_timer: Annotated[int, Field(ge=0, le=MAX_WAIT_TIMER_MINUTES)] = 0
    prevent_self_review: bool = False
    reviewers: list[EnvironmentReviewer] = Field(
        default_factory=list, max_length=MAX_ENVIRONMENT_REVIEWERS
    )
    deployment_branch_policy: DeploymentBranchPolicy | None = None

    def to_request_body(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "wait_timer": self.wait_timer,
            "prevent_self_review": self.prevent_self_review,
            "reviewers": [r.model_dump() for r in self.reviewers],
        }
        policy = self.deployment_branch_policy
        if policy and (policy.protected_branches or policy.custom_branch_policies):
            body["deployment_branch_policy"] = policy.model_dump()
        else:
            body["deployment_branch_policy"] = None
        return body


# =============================================================================
# Platform Catalog
# =============================================================================


class WorkflowOrg(BaseModel):
    """GitHub organization publishing workflow templates."""

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    url: Annotated[str, Field(min_length=1)]
    description: str = ""

    @property
    def workflows_url(self) -> str:
        return f"{self.url.rstrip('/')}/.github/workflow-templates"


class TemplateMetadata(BaseModel):
    """Technical and compliance facets of a repository template."""

    model_config = {"extra": "ignore", "populate_by_name": True}

    language: str = ""
    framework: str = ""
    architecture_type: str = Field("", alias="architectureType")
    features: list[str] = Field(default_factory=list)
    compliance: list[str] = Field(default_factory=list)
    use_cases: list[str] = Field(default_factory=list, alias="use-cases")
    complexity: Literal["low", "medium", "high"] = "medium"

    @field_validator("complexity", mode="before")
    @classmethod
    def normalize_complexity(cls, v: Any) -> Any:
        return v.lower() if isinstance(v, str) else v


class RepositoryTemplate(BaseModel):
    """Organization-approved repository template."""

    model_config = {"extra": "ignore"}

    name: Annotated[str, Field(min_length=1)]
    url: Annotated[str, Field(min_length=1)]
    description: str = ""
    metadata: TemplateMetadata = Field(default_factory=TemplateMetadata)


class CatalogSources(BaseModel):
    model_config = {"extra": "ignore"}

    github_workflow_orgs: list[WorkflowOrg] = Field(default_factory=list)
    github_repository_templates: list[RepositoryTemplate] = Field(default_factory=list)


class PlatformCatalog(BaseModel):
    """Root of the platform engineering catalog document (``pe.yaml``)."""

    model_config = {"extra": "ignore"}

    sources: CatalogSources = Field(default_factory=CatalogSources)
