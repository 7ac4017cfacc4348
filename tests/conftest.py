"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for azure_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from ade_bootstrap.config import Config  # noqa: E402
from azure_mock import MOCK_SUBSCRIPTION_ID, MockAzureContext  # noqa: E402

TEST_DEVCENTER_ENDPOINT = "https://tenant-devcenter.westeurope.devcenter.azure.com"


@pytest.fixture
def config() -> Config:
    """Configuration for an Azure CLI session with a GitHub token."""
    # Tenant left unset so tenant lookups go through Graph
    return Config(
        subscription_id=MOCK_SUBSCRIPTION_ID,
        devcenter_endpoint=TEST_DEVCENTER_ENDPOINT,
        devcenter_project="proj",
        devcenter_catalog="catalog",
        github_token="ghp_test",
        principal_propagation_attempts=3,
        principal_propagation_delay_seconds=0,
    )


@pytest.fixture
def azure():
    """Patched Azure SDK clients with the ``proj`` project registered."""
    with MockAzureContext(projects=["proj"]) as ctx:
        yield ctx
