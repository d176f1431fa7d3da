from __future__ import annotations

from enum import IntEnum
from typing import Optional


class ExitCode(IntEnum):
    OK = 0
    CONFIG_ERROR = 2
    AUTH_ERROR = 3
    AWS_ERROR = 4
    RUNTIME_ERROR = 5


class InventoryError(Exception):
    """Base error for inventory pipeline."""


class ConfigError(InventoryError):
    """Raised for configuration or argument issues."""


class InvalidIdentifierFormat(ConfigError):
    """Raised when a delegated role identifier is not a well-formed IAM role ARN."""


class AuthResolutionError(InventoryError):
    """Raised when authentication or caller identity cannot be resolved."""


class RemoteApiError(InventoryError):
    """Raised when an AWS API call fails in a non-retriable way."""

    def __init__(self, message: str, code: Optional[str] = None) -> None:
        super().__init__(message)
        self.code = code


class NotFoundInRegion(RemoteApiError):
    """Raised when an explicitly requested resource id does not exist in a region."""


class DirectoryListingError(RemoteApiError):
    """Raised when organization member accounts cannot be listed."""


class DelegationError(RemoteApiError):
    """Raised when delegated credentials cannot be obtained for a role/region pair."""


class ExportError(InventoryError):
    """Raised when exporting artifacts fails."""


def as_exit_code(exc: BaseException) -> int:
    if isinstance(exc, (ConfigError, ValueError)):
        return int(ExitCode.CONFIG_ERROR)
    if isinstance(exc, AuthResolutionError):
        return int(ExitCode.AUTH_ERROR)
    if isinstance(exc, RemoteApiError):
        return int(ExitCode.AWS_ERROR)
    if isinstance(exc, (ExportError, InventoryError)):
        return int(ExitCode.RUNTIME_ERROR)
    return 1


def _aws_error_types() -> tuple[type[BaseException], ...]:
    try:
        from botocore.exceptions import BotoCoreError, ClientError
    except Exception:
        return ()
    return (ClientError, BotoCoreError)


def is_aws_error(exc: BaseException) -> bool:
    """
    Return True if the exception looks like a botocore/boto3 error.
    """
    aws_types = _aws_error_types()
    if aws_types and isinstance(exc, aws_types):
        return True
    return exc.__class__.__module__.startswith(("botocore.", "boto3."))


def aws_error_code(exc: BaseException) -> Optional[str]:
    """
    Return the machine-readable error code of a ClientError (e.g. 'InvalidVpcID.NotFound').
    """
    response = getattr(exc, "response", None)
    if not isinstance(response, dict):
        return None
    code = (response.get("Error") or {}).get("Code")
    return str(code) if code else None


def map_aws_error(
    exc: BaseException,
    context: str,
    error_cls: type[RemoteApiError] = RemoteApiError,
) -> RemoteApiError | None:
    """
    Wrap AWS SDK errors with RemoteApiError (or a subclass) for consistent handling.
    """
    if isinstance(exc, RemoteApiError):
        return exc
    if not is_aws_error(exc):
        return None
    return error_cls(f"{context}: {exc}", code=aws_error_code(exc))
