"""Platform catalog loading and filtering.

The catalog (``pe.yaml``) lists the repository templates and the workflow
template organizations a platform team approves:

    sources:
      github_workflow_orgs:
        - name: contoso-workflows
          url: https://github.com/contoso-workflows
      github_repository_templates:
        - name: python-api
          url: https://github.com/contoso/python-api-template
          metadata:
            language: python
            complexity: low

SECURITY: Loaded documents are size-limited before parsing and parsed with
``yaml.safe_load`` only.
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .config import MAX_CATALOG_FILE_SIZE_BYTES
from .errors import ProvisioningError
from .github import GitHubClient
from .models import PlatformCatalog, RepositoryTemplate, WorkflowOrg

logger = logging.getLogger(__name__)


class CatalogLoadError(Exception):
    """Raised when the catalog cannot be read or fails validation."""

    pass


def parse_catalog(content: str, source: str = "<string>") -> PlatformCatalog:
    """Parse and validate a catalog document.

    Raises:
        CatalogLoadError: If the document is too large, not YAML, or invalid.
    """
    if len(content.encode("utf-8")) > MAX_CATALOG_FILE_SIZE_BYTES:
        raise CatalogLoadError(
            f"Catalog exceeds maximum size of {MAX_CATALOG_FILE_SIZE_BYTES} bytes: {source}"
        )

    try:
        raw_data = yaml.safe_load(content)
    except yaml.YAMLError as e:
        raise CatalogLoadError(f"Invalid YAML in {source}: {e}") from e

    if raw_data is None:
        return PlatformCatalog()
    if not isinstance(raw_data, dict):
        raise CatalogLoadError(f"Catalog must contain a YAML mapping: {source}")

    try:
        return PlatformCatalog.model_validate(raw_data)
    except ValidationError as e:
        errors = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            errors.append(f"  - {loc}: {error['msg']}")
        error_list = "\n".join(errors)
        raise CatalogLoadError(f"Validation failed for {source}:\n{error_list}") from e


def load_catalog(path: Path) -> PlatformCatalog:
    """Load the catalog from a local file."""
    if not path.exists():
        raise CatalogLoadError(f"Catalog file not found: {path}")

    try:
        file_size = path.stat().st_size
    except OSError as e:
        raise CatalogLoadError(f"Failed to stat catalog file {path}: {e}") from e

    if file_size > MAX_CATALOG_FILE_SIZE_BYTES:
        raise CatalogLoadError(
            f"Catalog exceeds maximum size of {MAX_CATALOG_FILE_SIZE_BYTES} bytes: {path}"
        )

    try:
        content = path.read_text(encoding="utf-8")
    except OSError as e:
        raise CatalogLoadError(f"Failed to read catalog file {path}: {e}") from e

    catalog = parse_catalog(content, str(path))
    logger.info(f"Loaded catalog from {path}")
    return catalog


async def load_catalog_from_github(
    client: GitHubClient, repository: str, path: str
) -> PlatformCatalog:
    """Load the catalog from a GitHub repository.

    A catalog that cannot be fetched or parsed is logged and replaced by an
    empty one, so listing commands still answer.
    """
    owner, _, repo = repository.partition("/")
    source = f"{repository}/{path}"
    try:
        content = await client.get_file_content(owner, repo, path)
        catalog = parse_catalog(content, source)
    except (ProvisioningError, CatalogLoadError) as e:
        logger.error(f"Failed to load catalog {source}: {e}")
        return PlatformCatalog()

    logger.info(
        f"Loaded catalog from {source}",
        extra={
            "templates": len(catalog.sources.github_repository_templates),
            "workflow_orgs": len(catalog.sources.github_workflow_orgs),
        },
    )
    return catalog


def _matches(value: str, wanted: str | None) -> bool:
    return wanted is None or value.lower() == wanted.lower()


def _contains(values: list[str], wanted: str | None) -> bool:
    return wanted is None or any(v.lower() == wanted.lower() for v in values)


def filter_repository_templates(
    catalog: PlatformCatalog,
    language: str | None = None,
    framework: str | None = None,
    architecture_type: str | None = None,
    feature: str | None = None,
    compliance: str | None = None,
    complexity: str | None = None,
) -> list[RepositoryTemplate]:
    """Templates matching every given filter, case-insensitively."""
    return [
        t
        for t in catalog.sources.github_repository_templates
        if _matches(t.metadata.language, language)
        and _matches(t.metadata.framework, framework)
        and _matches(t.metadata.architecture_type, architecture_type)
        and _contains(t.metadata.features, feature)
        and _contains(t.metadata.compliance, compliance)
        and _matches(t.metadata.complexity, complexity)
    ]


def filter_workflow_orgs(
    catalog: PlatformCatalog, organization: str | None = None
) -> list[WorkflowOrg]:
    """Workflow organizations whose name contains ``organization``."""
    if not organization:
        return list(catalog.sources.github_workflow_orgs)
    needle = organization.lower()
    return [o for o in catalog.sources.github_workflow_orgs if needle in o.name.lower()]


def format_repository_template(template: RepositoryTemplate) -> dict[str, Any]:
    metadata = template.metadata
    return {
        "name": template.name,
        "url": template.url,
        "description": template.description,
        "language": metadata.language,
        "framework": metadata.framework,
        "architectureType": metadata.architecture_type,
        "features": ", ".join(metadata.features),
        "compliance": ", ".join(metadata.compliance),
        "useCases": ", ".join(metadata.use_cases),
        "complexity": metadata.complexity,
    }


def format_workflow_org(org: WorkflowOrg) -> dict[str, Any]:
    return {
        "name": org.name,
        "url": org.url,
        "description": org.description,
        "workflowsUrl": org.workflows_url,
    }
