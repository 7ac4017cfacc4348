"""End-to-end provisioning pipeline for one repository and environment type.

The pipeline is a saga: an ordered list of idempotent steps with no
compensation.

1. ade-environment: create (or reuse) the ADE environment when one is
   requested; it yields the deployment resource group
2. identity: application, service principal and the three role assignments
3. federated-credential: trust ``repo:{org}/{repo}:environment:{EnvType}``
4. github-environment: deployment environment named ``{EnvType}``
5. github-secrets: AZURE_CLIENT_ID, AZURE_TENANT_ID, AZURE_SUBSCRIPTION_ID,
   AZURE_RESOURCE_GROUP sealed into that environment

RE-ENTRY GUARANTEE:
A failed step stops the run and is recorded with its error; steps before it
stay applied. A cancelled step is recorded as ``unknown``: it may or may not
have been applied remotely. Running the same request again is the recovery
path. Every step finds what already exists and converges it, so a re-run
completes the remaining work without duplicating anything.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import ValidationError

from .environments import EnvironmentInstance, EnvironmentProvisioner, parse_parameters
from .errors import ConflictError, NotFoundError, ProvisionError, ProvisioningError
from .federation import FederatedCredentialBinder, FederationResult
from .github import GitHubEnvironmentConfigurer
from .identity import IdentityProvisioner, IdentityProvisionResult, normalize_environment_type
from .locator import parse_resource_id
from .models import GitHubEnvironmentSettings
from .session import AzureSession

logger = logging.getLogger(__name__)


class PipelineStep(str, Enum):
    ADE_ENVIRONMENT = "ade-environment"
    IDENTITY = "identity"
    FEDERATED_CREDENTIAL = "federated-credential"
    GITHUB_ENVIRONMENT = "github-environment"
    GITHUB_SECRETS = "github-secrets"


class StepStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    # Interrupted mid-flight; the remote effect may or may not exist
    UNKNOWN = "unknown"


@dataclass
class StepRecord:
    step: PipelineStep
    status: StepStatus | None = None
    detail: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "step": self.step.value,
            "status": self.status.value if self.status else None,
            "detail": self.detail,
            "error": self.error,
        }


@dataclass
class PipelineRequest:
    """Inputs for one pipeline run.

    Either ``deployment_resource_group`` or an ADE environment
    (``ade_environment_name`` with ``ade_definition_name``) must be given;
    the environment's resource group wins when both are.
    """

    project_name: str
    env_type: str
    org: str
    repo: str
    deployment_resource_group: str | None = None
    ade_environment_name: str | None = None
    ade_definition_name: str | None = None
    ade_catalog_name: str | None = None
    ade_parameters: Mapping[str, Any] | str | None = None
    wait_timer: int = 0
    reviewers: list[dict[str, Any]] | None = None
    deployment_branch_policy: dict[str, Any] | None = None
    prevent_self_review: bool = False
    github_settings: GitHubEnvironmentSettings = field(init=False, repr=False)

    def __post_init__(self) -> None:
        errors: list[str] = []
        if not self.project_name:
            errors.append("project_name is required")
        if not self.env_type or not self.env_type.strip():
            errors.append("env_type is required")
        if not self.org or not self.repo:
            errors.append("org and repo are required")
        if bool(self.ade_environment_name) != bool(self.ade_definition_name):
            errors.append("ade_environment_name and ade_definition_name go together")
        if not self.deployment_resource_group and not self.ade_environment_name:
            errors.append(
                "Either deployment_resource_group or an ADE environment must be given"
            )
        try:
            parse_parameters(self.ade_parameters)
        except ValueError as e:
            errors.append(str(e))
        try:
            self.github_settings = GitHubEnvironmentSettings(
                wait_timer=self.wait_timer,
                prevent_self_review=self.prevent_self_review,
                reviewers=self.reviewers or [],
                deployment_branch_policy=self.deployment_branch_policy,
            )
        except ValidationError as e:
            problems = ", ".join(
                f"{'.'.join(str(p) for p in err['loc'])}: {err['msg']}" for err in e.errors()
            )
            errors.append(f"Invalid GitHub environment settings: {problems}")
        if errors:
            raise ValueError("Invalid pipeline request: " + "; ".join(errors))

    @property
    def creates_ade_environment(self) -> bool:
        return bool(self.ade_environment_name)

    @property
    def environment_type(self) -> str:
        return normalize_environment_type(self.env_type)


@dataclass
class PipelineResult:
    """Outcome of a pipeline run, including partial progress."""

    start_time: datetime = field(default_factory=lambda: datetime.now(UTC))
    end_time: datetime | None = None
    steps: list[StepRecord] = field(default_factory=list)
    outputs: dict[str, Any] = field(default_factory=dict)
    error: dict[str, Any] | None = None

    @property
    def success(self) -> bool:
        if self.error:
            return False
        return all(s.status == StepStatus.COMPLETED for s in self.steps)

    @property
    def duration_seconds(self) -> float:
        if self.end_time is None:
            return 0.0
        return (self.end_time - self.start_time).total_seconds()

    @property
    def completed_steps(self) -> list[PipelineStep]:
        return [s.step for s in self.steps if s.status == StepStatus.COMPLETED]

    def to_dict(self) -> dict[str, Any]:
        return {
            "success": self.success,
            "duration_seconds": round(self.duration_seconds, 3),
            "steps": [s.to_dict() for s in self.steps],
            "outputs": self.outputs,
            "error": self.error,
        }


class ProvisioningPipeline:
    """Run the provisioning saga for one (project, environment type, repository)."""

    def __init__(
        self,
        session: AzureSession,
        configurer: GitHubEnvironmentConfigurer,
        identity: IdentityProvisioner | None = None,
        binder: FederatedCredentialBinder | None = None,
        environments: EnvironmentProvisioner | None = None,
    ) -> None:
        self._session = session
        self._configurer = configurer
        self._identity = identity or IdentityProvisioner(session)
        self._binder = binder or FederatedCredentialBinder(session)
        self._environments = environments or EnvironmentProvisioner(session)

    async def run(
        self, request: PipelineRequest, result: PipelineResult | None = None
    ) -> PipelineResult:
        """Run every step in order and record what happened.

        Args:
            request: What to provision.
            result: Record progress into this result instead of a new one, so a
                caller that cancels the run can still inspect it.

        Returns:
            PipelineResult. A failed step, ProvisioningError or not, is
            recorded on the result and on the step rather than raised.

        Raises:
            asyncio.CancelledError: After recording the interrupted step.
        """
        if result is None:
            result = PipelineResult()
        env_type = request.environment_type
        logger.info(
            f"Pipeline started for {request.org}/{request.repo} ({env_type})",
            extra={"project": request.project_name},
        )

        try:
            resource_group_scope = request.deployment_resource_group or ""
            if request.creates_ade_environment:
                environment = await self._run_step(
                    result, PipelineStep.ADE_ENVIRONMENT, self._ensure_ade_environment, request
                )
                resource_group_scope = environment.resource_group_id

            location = parse_resource_id(resource_group_scope)
            subscription_id = location.subscription or self._session.subscription_id
            resource_group = location.resource_group or resource_group_scope

            identity: IdentityProvisionResult = await self._run_step(
                result,
                PipelineStep.IDENTITY,
                self._identity.create_identity_and_principal,
                env_type,
                request.project_name,
                resource_group_scope,
            )
            result.outputs["client_id"] = identity.application_id

            federation: FederationResult = await self._run_step(
                result,
                PipelineStep.FEDERATED_CREDENTIAL,
                self._binder.bind_federated_credential,
                request.org,
                request.repo,
                env_type,
                request.project_name,
            )
            result.outputs["federated_credential"] = federation.credential_name

            settings = request.github_settings
            await self._run_step(
                result,
                PipelineStep.GITHUB_ENVIRONMENT,
                self._configurer.create_or_update_environment,
                request.org,
                request.repo,
                env_type,
                wait_timer=settings.wait_timer,
                reviewers=settings.reviewers,
                deployment_branch_policy=settings.deployment_branch_policy,
                prevent_self_review=settings.prevent_self_review,
            )
            result.outputs["github_environment"] = env_type

            secrets = {
                "AZURE_CLIENT_ID": identity.application_id,
                "AZURE_TENANT_ID": self._session.tenant_id(),
                "AZURE_SUBSCRIPTION_ID": subscription_id,
                "AZURE_RESOURCE_GROUP": resource_group,
            }
            await self._run_step(
                result, PipelineStep.GITHUB_SECRETS, self._write_secrets, request, secrets
            )
            result.outputs["subscription_id"] = subscription_id
            result.outputs["resource_group"] = resource_group

        except ProvisioningError as e:
            logger.error(
                f"Pipeline stopped: {e.message}",
                extra={"error_kind": e.kind.value, "status_code": e.status_code},
            )
            result.error = e.to_dict()
        except Exception as e:
            logger.exception("Unexpected error during pipeline run")
            result.error = {"kind": type(e).__name__, "message": str(e)}
        finally:
            result.end_time = datetime.now(UTC)

        logger.info(
            f"Pipeline finished: success={result.success}, "
            f"{len(result.completed_steps)}/{len(result.steps)} steps completed, "
            f"duration={result.duration_seconds:.1f}s"
        )
        return result

    async def _run_step(
        self,
        result: PipelineResult,
        step: PipelineStep,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **kwargs: Any,
    ) -> Any:
        record = StepRecord(step=step)
        result.steps.append(record)
        logger.info(f"Step {step.value} started")
        try:
            value = await func(*args, **kwargs)
        except asyncio.CancelledError:
            record.status = StepStatus.UNKNOWN
            logger.warning(f"Step {step.value} cancelled; outcome unknown")
            raise
        except ProvisioningError as e:
            record.status = StepStatus.FAILED
            record.error = e.to_dict()
            raise
        except Exception as e:
            record.status = StepStatus.FAILED
            record.error = {"kind": type(e).__name__, "message": str(e)}
            raise

        record.status = StepStatus.COMPLETED
        if hasattr(value, "to_dict"):
            record.detail = value.to_dict()
        elif isinstance(value, dict):
            record.detail = value
        logger.info(f"Step {step.value} completed")
        return value

    async def _ensure_ade_environment(self, request: PipelineRequest) -> EnvironmentInstance:
        name = request.ade_environment_name or ""
        try:
            environment = self._environments.get_environment(name, request.project_name)
        except NotFoundError:
            environment = await self._environments.create_environment(
                env_name=name,
                env_type=request.env_type,
                definition_name=request.ade_definition_name or "",
                project_name=request.project_name,
                catalog_name=request.ade_catalog_name,
                parameters=request.ade_parameters,
            )
        else:
            if environment.definition_name != request.ade_definition_name:
                raise ConflictError(
                    f"Environment '{name}' already exists with definition "
                    f"'{environment.definition_name}'"
                )
            if environment.environment_type.lower() != request.env_type.lower():
                raise ConflictError(
                    f"Environment '{name}' already exists with environment type "
                    f"'{environment.environment_type}'"
                )
            if (
                request.ade_catalog_name
                and environment.catalog_name.lower() != request.ade_catalog_name.lower()
            ):
                raise ConflictError(
                    f"Environment '{name}' already exists from catalog "
                    f"'{environment.catalog_name}'"
                )
            logger.info(f"Reusing ADE environment '{name}'")

        if not environment.location.resolvable:
            raise ProvisionError(f"Environment '{name}' has no resolvable resource group")
        return environment

    async def _write_secrets(
        self, request: PipelineRequest, secrets: dict[str, str]
    ) -> dict[str, Any]:
        outcomes: dict[str, str] = {}
        for name, value in secrets.items():
            outcomes[name] = await self._configurer.set_secret(
                request.org, request.repo, request.environment_type, name, value
            )
        return {"secrets": outcomes}
