"""ADE bootstrap CLI (adeb).

Operator surface for every provisioning operation. Results are printed to
stdout as JSON; logs go to stderr.

Usage:
    adeb identity create --env-type dev --resource-group rg-app
    adeb identity bind --org contoso --repo web --env-type dev
    adeb ade definitions
    adeb ade create my-env --env-type dev --definition WebApp
    adeb github env contoso/web Dev --wait-timer 5
    adeb github secret contoso/web Dev AZURE_CLIENT_ID
    adeb catalog templates --language python
    adeb pipeline run --org contoso --repo web --env-type dev --resource-group rg-app

Exit codes:
    0  success
    1  provisioning, validation or configuration failure
    2  authentication failure
"""

from __future__ import annotations

import asyncio
import json
import os
from collections.abc import Callable
from pathlib import Path
from typing import Any

import click

from .catalog import (
    CatalogLoadError,
    filter_repository_templates,
    filter_workflow_orgs,
    format_repository_template,
    format_workflow_org,
    load_catalog,
    load_catalog_from_github,
)
from .config import Config, ConfigurationError
from .environments import EnvironmentProvisioner
from .errors import ErrorKind, ProvisioningError
from .federation import FederatedCredentialBinder
from .github import GitHubClient, GitHubEnvironmentConfigurer
from .identity import IdentityProvisioner
from .main import setup_logging
from .models import PlatformCatalog
from .pipeline import PipelineRequest, ProvisioningPipeline
from .session import AzureSession

EXIT_SUCCESS = 0
EXIT_FAILURE = 1
EXIT_AUTH_FAILURE = 2


def _echo_json(value: Any) -> None:
    click.echo(json.dumps(value, indent=2, default=str))


def _split_slug(value: str) -> tuple[str, str]:
    """Split ``owner/repo``."""
    owner, sep, repo = value.partition("/")
    if not sep or not owner or not repo or "/" in repo:
        raise ValueError(f"Expected owner/repo, got '{value}'")
    return owner, repo


def _parse_reviewer(value: str) -> dict[str, Any]:
    kind, sep, identifier = value.partition(":")
    if not sep or not identifier.isdigit():
        raise ValueError(f"Reviewer must be User:<id> or Team:<id>, got '{value}'")
    return {"type": kind, "id": int(identifier)}


def _branch_policy(
    protected_branches: bool, custom_branch_policies: bool
) -> dict[str, bool] | None:
    if not protected_branches and not custom_branch_policies:
        return None
    return {
        "protected_branches": protected_branches,
        "custom_branch_policies": custom_branch_policies,
    }


def _config(ctx: click.Context) -> Config:
    state = ctx.ensure_object(dict)
    if "config" not in state:
        state["config"] = Config.from_env()
    return state["config"]


def _session(ctx: click.Context) -> AzureSession:
    state = ctx.ensure_object(dict)
    if "session" not in state:
        session = AzureSession(_config(ctx))
        session.ensure_authenticated()
        state["session"] = session
    return state["session"]


def _run(ctx: click.Context, action: Callable[[], Any]) -> Any:
    """Run ``action`` and map failures to an error report and exit code."""
    try:
        return action()
    except ProvisioningError as e:
        click.echo(json.dumps({"error": e.to_dict()}, indent=2), err=True)
        ctx.exit(EXIT_AUTH_FAILURE if e.kind == ErrorKind.AUTH else EXIT_FAILURE)
    except (ConfigurationError, CatalogLoadError, ValueError) as e:
        click.echo(
            json.dumps({"error": {"kind": type(e).__name__, "message": str(e)}}, indent=2),
            err=True,
        )
        ctx.exit(EXIT_FAILURE)


def _execute(ctx: click.Context, action: Callable[[], Any]) -> None:
    _echo_json(_run(ctx, action))


@click.group()
@click.version_option(version="0.1.0", prog_name="adeb")
@click.option(
    "--log-level",
    type=click.Choice(["DEBUG", "INFO", "WARNING", "ERROR"], case_sensitive=False),
    default=None,
    help="Log level (default: LOG_LEVEL or INFO)",
)
@click.option("--json-logs/--text-logs", default=None, help="Log format (default: LOG_JSON)")
@click.pass_context
def cli(ctx: click.Context, log_level: str | None, json_logs: bool | None) -> None:
    """Provision ADE environments and GitHub OIDC trust."""
    ctx.ensure_object(dict)
    if json_logs is None:
        json_logs = os.environ.get("LOG_JSON", "true").lower() in ("true", "1", "yes")
    setup_logging(log_level or os.environ.get("LOG_LEVEL") or "INFO", json_logs)


# =============================================================================
# Identity
# =============================================================================


@cli.group()
def identity() -> None:
    """Application identity and federated credentials."""


@identity.command("create")
@click.option("--env-type", required=True, help="Environment type, e.g. dev")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.option(
    "--resource-group",
    "resource_group",
    required=True,
    help="Deployment resource group name or id (Contributor scope)",
)
@click.pass_context
def identity_create(
    ctx: click.Context, env_type: str, project_name: str | None, resource_group: str
) -> None:
    """Create or reuse the identity and assign its roles."""

    def action() -> Any:
        provisioner = IdentityProvisioner(_session(ctx))
        result = asyncio.run(
            provisioner.create_identity_and_principal(env_type, project_name, resource_group)
        )
        return result.to_dict()

    _execute(ctx, action)


@identity.command("bind")
@click.option("--org", required=True, help="GitHub organization or user")
@click.option("--repo", required=True, help="GitHub repository name")
@click.option("--env-type", required=True, help="Environment type, e.g. dev")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.pass_context
def identity_bind(
    ctx: click.Context, org: str, repo: str, env_type: str, project_name: str | None
) -> None:
    """Trust GitHub OIDC tokens of a repository environment."""

    def action() -> Any:
        binder = FederatedCredentialBinder(_session(ctx))
        result = asyncio.run(binder.bind_federated_credential(org, repo, env_type, project_name))
        return result.to_dict()

    _execute(ctx, action)


# =============================================================================
# Azure Deployment Environments
# =============================================================================


@cli.group()
def ade() -> None:
    """Azure Deployment Environments."""


@ade.command("definitions")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.pass_context
def ade_definitions(ctx: click.Context, project_name: str | None) -> None:
    """List environment definitions available to a project."""
    _execute(ctx, lambda: EnvironmentProvisioner(_session(ctx)).list_definitions(project_name))


@ade.command("definition")
@click.argument("name")
@click.option("--catalog", "catalog_name", help="Catalog (default: DEVCENTER_CATALOG)")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.pass_context
def ade_definition(
    ctx: click.Context, name: str, catalog_name: str | None, project_name: str | None
) -> None:
    """Show one environment definition and its parameters."""
    _execute(
        ctx,
        lambda: EnvironmentProvisioner(_session(ctx)).get_definition(
            name, catalog_name, project_name
        ),
    )


@ade.command("create")
@click.argument("name")
@click.option("--env-type", required=True, help="Environment type configured on the project")
@click.option("--definition", "definition_name", required=True, help="Environment definition")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.option("--catalog", "catalog_name", help="Catalog (default: DEVCENTER_CATALOG)")
@click.option("--parameters", help="Definition parameters as a JSON object")
@click.pass_context
def ade_create(
    ctx: click.Context,
    name: str,
    env_type: str,
    definition_name: str,
    project_name: str | None,
    catalog_name: str | None,
    parameters: str | None,
) -> None:
    """Create an environment and report its resource group."""

    def action() -> Any:
        provisioner = EnvironmentProvisioner(_session(ctx))
        environment = asyncio.run(
            provisioner.create_environment(
                name, env_type, definition_name, project_name, catalog_name, parameters
            )
        )
        return environment.to_dict()

    _execute(ctx, action)


@ade.command("show")
@click.argument("name")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.pass_context
def ade_show(ctx: click.Context, name: str, project_name: str | None) -> None:
    """Show an environment and its resource group."""
    _execute(
        ctx,
        lambda: EnvironmentProvisioner(_session(ctx)).get_environment(name, project_name).to_dict(),
    )


@ade.command("resources")
@click.argument("resource_group")
@click.option("--subscription", "subscription_id", help="Subscription (default: pinned)")
@click.pass_context
def ade_resources(ctx: click.Context, resource_group: str, subscription_id: str | None) -> None:
    """List the resources deployed into a resource group."""
    _execute(
        ctx,
        lambda: EnvironmentProvisioner(_session(ctx)).list_resources(
            resource_group, subscription_id
        ),
    )


# =============================================================================
# GitHub
# =============================================================================


@cli.group()
def github() -> None:
    """GitHub repositories, environments and secrets."""


@github.command("env")
@click.argument("repository")
@click.argument("name")
@click.option("--wait-timer", type=int, default=0, help="Minutes to wait before deploying")
@click.option("--reviewer", "reviewers", multiple=True, help="User:<id> or Team:<id>")
@click.option("--protected-branches", is_flag=True, help="Only protected branches may deploy")
@click.option("--custom-branch-policies", is_flag=True, help="Use custom branch policies")
@click.option("--prevent-self-review", is_flag=True, help="Block self-approval")
@click.pass_context
def github_env(
    ctx: click.Context,
    repository: str,
    name: str,
    wait_timer: int,
    reviewers: tuple[str, ...],
    protected_branches: bool,
    custom_branch_policies: bool,
    prevent_self_review: bool,
) -> None:
    """Create or update a deployment environment in OWNER/REPO."""

    async def configure() -> Any:
        owner, repo = _split_slug(repository)
        reviewer_list = [_parse_reviewer(r) for r in reviewers]
        async with GitHubClient(_config(ctx)) as client:
            return await GitHubEnvironmentConfigurer(client).create_or_update_environment(
                owner,
                repo,
                name,
                wait_timer=wait_timer,
                reviewers=reviewer_list,
                deployment_branch_policy=_branch_policy(
                    protected_branches, custom_branch_policies
                ),
                prevent_self_review=prevent_self_review,
            )

    _execute(ctx, lambda: asyncio.run(configure()))


@github.command("secret")
@click.argument("repository")
@click.argument("environment")
@click.argument("name")
@click.option("--value", prompt=True, hide_input=True, help="Secret value (prompted if omitted)")
@click.pass_context
def github_secret(
    ctx: click.Context, repository: str, environment: str, name: str, value: str
) -> None:
    """Seal and store an environment secret in OWNER/REPO."""

    async def write() -> Any:
        owner, repo = _split_slug(repository)
        async with GitHubClient(_config(ctx)) as client:
            outcome = await GitHubEnvironmentConfigurer(client).set_secret(
                owner, repo, environment, name, value
            )
        return {"secret": name, "environment": environment, "result": outcome}

    _execute(ctx, lambda: asyncio.run(write()))


@github.command("repo-from-template")
@click.argument("template")
@click.argument("target")
@click.option("--description", help="Repository description")
@click.option("--public", is_flag=True, help="Create a public repository")
@click.option("--include-all-branches", is_flag=True, help="Copy every template branch")
@click.pass_context
def github_repo_from_template(
    ctx: click.Context,
    template: str,
    target: str,
    description: str | None,
    public: bool,
    include_all_branches: bool,
) -> None:
    """Create TARGET (owner/name) from the TEMPLATE repository."""

    async def create() -> Any:
        template_owner, template_repo = _split_slug(template)
        owner, name = _split_slug(target)
        async with GitHubClient(_config(ctx)) as client:
            return await client.create_repository_from_template(
                template_owner,
                template_repo,
                owner,
                name,
                description=description,
                private=not public,
                include_all_branches=include_all_branches,
            )

    _execute(ctx, lambda: asyncio.run(create()))


# =============================================================================
# Platform catalog
# =============================================================================


def _load_platform_catalog(ctx: click.Context, path: Path | None) -> PlatformCatalog:
    if path is not None:
        return load_catalog(path)

    config = _config(ctx)
    if not config.catalog_repo:
        raise ConfigurationError("Pass --file or set PE_CONFIG_REPO to locate the catalog")

    async def fetch() -> PlatformCatalog:
        async with GitHubClient(config) as client:
            return await load_catalog_from_github(client, config.catalog_repo, config.catalog_path)

    return asyncio.run(fetch())


@cli.group()
def catalog() -> None:
    """Platform catalog of templates and workflow organizations."""


@catalog.command("templates")
@click.option("--file", "path", type=click.Path(path_type=Path), help="Local catalog file")
@click.option("--language")
@click.option("--framework")
@click.option("--architecture-type")
@click.option("--feature")
@click.option("--compliance")
@click.option("--complexity", type=click.Choice(["low", "medium", "high"], case_sensitive=False))
@click.pass_context
def catalog_templates(
    ctx: click.Context,
    path: Path | None,
    language: str | None,
    framework: str | None,
    architecture_type: str | None,
    feature: str | None,
    compliance: str | None,
    complexity: str | None,
) -> None:
    """List repository templates matching the filters."""

    def action() -> Any:
        templates = filter_repository_templates(
            _load_platform_catalog(ctx, path),
            language=language,
            framework=framework,
            architecture_type=architecture_type,
            feature=feature,
            compliance=compliance,
            complexity=complexity,
        )
        return [format_repository_template(t) for t in templates]

    _execute(ctx, action)


@catalog.command("workflows")
@click.option("--file", "path", type=click.Path(path_type=Path), help="Local catalog file")
@click.option("--organization", help="Case-insensitive part of the organization name")
@click.pass_context
def catalog_workflows(ctx: click.Context, path: Path | None, organization: str | None) -> None:
    """List organizations publishing workflow templates."""

    def action() -> Any:
        orgs = filter_workflow_orgs(_load_platform_catalog(ctx, path), organization)
        return [format_workflow_org(o) for o in orgs]

    _execute(ctx, action)


# =============================================================================
# Pipeline
# =============================================================================


@cli.group()
def pipeline() -> None:
    """End-to-end provisioning."""


@pipeline.command("run")
@click.option("--org", required=True, help="GitHub organization or user")
@click.option("--repo", required=True, help="GitHub repository name")
@click.option("--env-type", required=True, help="Environment type, e.g. dev")
@click.option("--project", "project_name", help="Dev center project (default: DEVCENTER_PROJECT)")
@click.option("--resource-group", help="Deployment resource group name or id")
@click.option("--ade-environment", help="Create or reuse this ADE environment")
@click.option("--definition", help="Environment definition for --ade-environment")
@click.option("--catalog", "catalog_name", help="Catalog (default: DEVCENTER_CATALOG)")
@click.option("--parameters", help="Definition parameters as a JSON object")
@click.option("--wait-timer", type=int, default=0, help="GitHub environment wait timer")
@click.option("--reviewer", "reviewers", multiple=True, help="User:<id> or Team:<id>")
@click.pass_context
def pipeline_run(
    ctx: click.Context,
    org: str,
    repo: str,
    env_type: str,
    project_name: str | None,
    resource_group: str | None,
    ade_environment: str | None,
    definition: str | None,
    catalog_name: str | None,
    parameters: str | None,
    wait_timer: int,
    reviewers: tuple[str, ...],
) -> None:
    """Provision identity, trust, environment and secrets in one run."""

    async def provision(session: AzureSession, request: PipelineRequest) -> Any:
        async with GitHubClient(session.config) as client:
            runner = ProvisioningPipeline(session, GitHubEnvironmentConfigurer(client))
            return await runner.run(request)

    def action() -> Any:
        config = _config(ctx)
        request = PipelineRequest(
            project_name=config.require_project(project_name),
            env_type=env_type,
            org=org,
            repo=repo,
            deployment_resource_group=resource_group,
            ade_environment_name=ade_environment,
            ade_definition_name=definition,
            ade_catalog_name=catalog_name,
            ade_parameters=parameters,
            wait_timer=wait_timer,
            reviewers=[_parse_reviewer(r) for r in reviewers],
        )
        return asyncio.run(provision(_session(ctx), request))

    result = _run(ctx, action)
    _echo_json(result.to_dict())
    if not result.success:
        auth_failed = (result.error or {}).get("kind") == ErrorKind.AUTH.value
        ctx.exit(EXIT_AUTH_FAILURE if auth_failed else EXIT_FAILURE)
