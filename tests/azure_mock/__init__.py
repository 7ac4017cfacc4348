"""Azure API Mock for Testing.

In-memory stand-ins for the Azure control planes the provisioning code talks
to, so identity, federation and environment flows run without Azure
connectivity.

Key Features:
- One shared state for ARM resources, role assignments, Graph objects and
  ADE environments
- Duplicate detection with the real error codes (RoleAssignmentExists,
  Request_MultipleObjectsWithSameKeyValue)
- Error injection per operation, and PrincipalNotFound replication lag

Usage:
    from azure_mock import MockAzureContext

    with MockAzureContext(projects=["proj"]) as ctx:
        session = AzureSession(config)
        session.ensure_authenticated()
        ...
        assert len(ctx.state.role_assignments) == 3
"""

from .context import MockAzureContext, mock_azure_context
from .credential import (
    FAIL_REJECTED,
    FAIL_UNAVAILABLE,
    MockTokenCredential,
    create_mock_credential,
)
from .devcenter import MockDevCenterClient, MockLROPoller
from .errors import make_http_error
from .graph import MockGraphClient
from .resources import (
    MOCK_SUBSCRIPTION_ID,
    MOCK_TENANT_ID,
    MockAuthorizationClient,
    MockAzureState,
    MockResource,
    MockResourceClient,
)

__all__ = [
    "FAIL_REJECTED",
    "FAIL_UNAVAILABLE",
    "MOCK_SUBSCRIPTION_ID",
    "MOCK_TENANT_ID",
    "MockAuthorizationClient",
    "MockAzureContext",
    "MockAzureState",
    "MockDevCenterClient",
    "MockGraphClient",
    "MockLROPoller",
    "MockResource",
    "MockResourceClient",
    "MockTokenCredential",
    "create_mock_credential",
    "make_http_error",
    "mock_azure_context",
]
