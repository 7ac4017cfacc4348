"""Mock Azure credential for session testing.

Stands in for both ClientSecretCredential and AzureCliCredential. Returns
fake tokens without Azure connectivity, or fails the way azure-identity does.
"""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any

from azure.core.credentials import AccessToken
from azure.core.exceptions import ClientAuthenticationError
from azure.identity import CredentialUnavailableError

# Token validity duration
TOKEN_VALIDITY_HOURS = 1

# Failure modes
FAIL_UNAVAILABLE = "unavailable"
FAIL_REJECTED = "rejected"


class MockTokenCredential:
    """Mock implementation of an azure-identity credential.

    Tracks get_token calls for test assertions.
    """

    def __init__(self) -> None:
        self._get_token_calls: list[dict[str, Any]] = []
        self._token_counter = 0
        self._failure_mode: str | None = None
        self._failure_message = "Authentication failed"

    @property
    def get_token_call_count(self) -> int:
        return len(self._get_token_calls)

    @property
    def get_token_calls(self) -> list[dict[str, Any]]:
        return self._get_token_calls.copy()

    def set_failure(self, mode: str | None, message: str = "Authentication failed") -> None:
        """Fail subsequent get_token calls.

        Args:
            mode: ``unavailable`` (no session, no credentials), ``rejected``
                (credential refused by Entra ID), or None to succeed.
            message: Error message to raise.
        """
        self._failure_mode = mode
        self._failure_message = message

    def get_token(self, *scopes: str, **kwargs: Any) -> AccessToken:
        self._get_token_calls.append({
            "scopes": scopes,
            "kwargs": kwargs,
            "timestamp": datetime.now(UTC).isoformat(),
        })

        if self._failure_mode == FAIL_UNAVAILABLE:
            raise CredentialUnavailableError(message=self._failure_message)
        if self._failure_mode == FAIL_REJECTED:
            raise ClientAuthenticationError(message=self._failure_message)

        self._token_counter += 1
        expires_on = datetime.now(UTC) + timedelta(hours=TOKEN_VALIDITY_HOURS)
        return AccessToken(f"mock-token-{self._token_counter}", int(expires_on.timestamp()))

    def close(self) -> None:
        pass


def create_mock_credential() -> MockTokenCredential:
    return MockTokenCredential()
