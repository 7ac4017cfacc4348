"""Typed error taxonomy for provisioning operations.

Remote failures are classified by the structured status code and error code
the control plane returns, never by matching message text. Callers switch on
``ProvisioningError.kind``:

- ``AlreadyExists``: an idempotent create hit an existing object. The step
  that issued the create recovers locally; it is never surfaced.
- ``Conflict``: a name is taken where uniqueness is required. Fatal.
- ``NotFound``: a referenced project, application or definition is missing.
- ``Auth``: no usable credential, or the credential was rejected.
- ``Other``: any other remote rejection.
"""

from __future__ import annotations

from enum import Enum
from typing import Any

from azure.core.exceptions import HttpResponseError


class ErrorKind(str, Enum):
    """Discriminator carried by every provisioning error."""

    CONFLICT = "Conflict"
    ALREADY_EXISTS = "AlreadyExists"
    NOT_FOUND = "NotFound"
    AUTH = "Auth"
    OTHER = "Other"


# Remote error codes that mean "the object you asked for is already there"
ALREADY_EXISTS_ERROR_CODES: frozenset[str] = frozenset({
    "RoleAssignmentExists",
    "Request_MultipleObjectsWithSameKeyValue",
})


class ProvisioningError(Exception):
    """Base class for every failure surfaced by a provisioning operation."""

    kind: ErrorKind = ErrorKind.OTHER

    def __init__(
        self,
        message: str,
        *,
        status_code: int | None = None,
        error_code: str | None = None,
        detail: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.detail = detail

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind.value,
            "message": self.message,
            "status_code": self.status_code,
            "error_code": self.error_code,
            "detail": self.detail,
        }


class AuthError(ProvisioningError):
    """No usable Azure or GitHub credential, or the credential was rejected."""

    kind = ErrorKind.AUTH


class ProvisionError(ProvisioningError):
    """Generic remote rejection, surfaced with the remote status and message."""

    kind = ErrorKind.OTHER


class NotFoundError(ProvisionError):
    """A referenced project, application, environment or definition is missing."""

    kind = ErrorKind.NOT_FOUND


class ConflictError(ProvisionError):
    """A name is already in use where uniqueness is required."""

    kind = ErrorKind.CONFLICT


def classify(status_code: int | None, error_code: str | None) -> ErrorKind:
    """Map a remote status code and error code to an ``ErrorKind``."""
    if error_code in ALREADY_EXISTS_ERROR_CODES:
        return ErrorKind.ALREADY_EXISTS
    if status_code == 409:
        return ErrorKind.CONFLICT
    if status_code == 404:
        return ErrorKind.NOT_FOUND
    if status_code == 401:
        return ErrorKind.AUTH
    return ErrorKind.OTHER


def error_code_of(exc: HttpResponseError) -> str | None:
    """Return the structured error code of an Azure SDK error, if any.

    ARM and Graph both answer with an OData v4 ``{"error": {"code": ...}}``
    body which azure-core parses into ``exc.error``.
    """
    error = getattr(exc, "error", None)
    code = getattr(error, "code", None)
    if code:
        return str(code)
    response = getattr(exc, "response", None)
    if response is None:
        return None
    try:
        body = response.json()
    except (ValueError, AttributeError):
        return None
    if isinstance(body, dict) and isinstance(body.get("error"), dict):
        return body["error"].get("code")
    return None


def kind_of(exc: HttpResponseError) -> ErrorKind:
    return classify(exc.status_code, error_code_of(exc))


def from_http_error(exc: HttpResponseError, message: str) -> ProvisioningError:
    """Build the typed error for an Azure SDK ``HttpResponseError``.

    Only called where the caller has no local recovery for the failure, so an
    already-exists condition is reported as a conflict.
    """
    kind = kind_of(exc)
    error_cls: type[ProvisioningError]
    if kind in (ErrorKind.CONFLICT, ErrorKind.ALREADY_EXISTS):
        error_cls = ConflictError
    elif kind == ErrorKind.NOT_FOUND:
        error_cls = NotFoundError
    elif kind == ErrorKind.AUTH:
        error_cls = AuthError
    else:
        error_cls = ProvisionError

    status = exc.status_code if exc.status_code is not None else "n/a"
    return error_cls(
        f"{message} ({status}): {exc.message}",
        status_code=exc.status_code,
        error_code=error_code_of(exc),
        detail=exc.message,
    )
