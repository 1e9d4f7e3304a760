"""
Exception taxonomy for the storage metrics collector.

Fatal errors (abort the run): AuthenticationMissing, InvalidConfiguration,
NoAccessibleAccounts. Policy-gated errors (skip-and-record or abort, per
continue_on_error): DiscoveryFailure, ResourceAddressingFailure.
Absorbed errors: AccountResolutionFailure is logged and the account dropped;
MetricFetchFailure never leaves the metric it belongs to.
"""
from typing import Optional

# Azure error status codes that indicate auth/permission issues
AZURE_AUTH_STATUS_CODES = {401, 403}


class CollectorError(Exception):
    """Base class for every error raised by the collection pipeline."""

    def __init__(self, message: str, original_error: Optional[BaseException] = None):
        self.original_error = original_error
        super().__init__(message)


class AuthenticationMissing(CollectorError):
    """No valid session, or the credential was rejected by the API."""


class InvalidConfiguration(CollectorError):
    """Unknown symbolic token or out-of-range option value."""


class AccountResolutionFailure(CollectorError):
    """A requested subscription id could not be resolved."""

    def __init__(self, account_id: str, message: str, original_error: Optional[BaseException] = None):
        self.account_id = account_id
        super().__init__(message, original_error)


class NoAccessibleAccounts(CollectorError):
    """The resolved subscription scope is empty."""


class DiscoveryFailure(CollectorError):
    """Listing resources in a subscription failed."""

    def __init__(self, account_id: str, message: str, original_error: Optional[BaseException] = None):
        self.account_id = account_id
        super().__init__(message, original_error)


class ResourceAddressingFailure(CollectorError):
    """The subscription context for a resource could not be established."""

    def __init__(self, resource_id: str, message: str, original_error: Optional[BaseException] = None):
        self.resource_id = resource_id
        super().__init__(message, original_error)


class MetricFetchFailure(CollectorError):
    """A metric fetch failed after exhausting its retry budget."""

    def __init__(self, resource_id: str, metric_name: str, attempts: int,
                 message: str, original_error: Optional[BaseException] = None):
        self.resource_id = resource_id
        self.metric_name = metric_name
        self.attempts = attempts
        super().__init__(message, original_error)


class SinkWriteFailure(CollectorError):
    """Results could not be persisted or exported."""

    def __init__(self, sink: str, message: str, original_error: Optional[BaseException] = None):
        self.sink = sink
        super().__init__(message, original_error)


class CollectionCancelled(CollectorError):
    """The run was cancelled (deadline, interrupt or fail-fast abort)."""


def is_auth_error(exc: BaseException) -> bool:
    """
    Check if an exception represents an authentication/authorization error.

    Detects Azure HttpResponseError / ClientAuthenticationError with a
    401/403 status, or an auth-related message on those types.
    """
    if isinstance(exc, AuthenticationMissing):
        return True

    exc_type_name = type(exc).__name__
    if exc_type_name in ('HttpResponseError', 'ClientAuthenticationError'):
        status_code = getattr(exc, 'status_code', None)
        if status_code in AZURE_AUTH_STATUS_CODES:
            return True
        error_msg = str(exc).lower()
        return 'authentication' in error_msg or 'authorization' in error_msg

    return exc_type_name == 'CredentialUnavailableError'


def check_and_raise_auth_error(exc: BaseException, context: str) -> None:
    """
    Raise AuthenticationMissing if exc is an auth error.

    Call this in exception handlers before logging and continuing so that
    credential problems stop the run instead of being recorded per account.
    """
    if isinstance(exc, AuthenticationMissing):
        raise exc
    if is_auth_error(exc):
        raise AuthenticationMissing(
            f"Authentication/authorization error while trying to {context}: {exc}",
            original_error=exc
        ) from exc
