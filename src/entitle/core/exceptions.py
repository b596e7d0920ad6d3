"""Core exceptions for Entitle entitlement and billing operations.

Every error carries a stable ``error_code`` that is safe to show to API
clients. The message and attributes are for logs.
"""

from entitle.utils.exceptions import EntitleError


class NotFoundError(EntitleError):
    """Raised when a principal or record does not exist.

    Attributes:
        resource: Kind of record that was looked up (e.g., "seat", "user")
        identifier: The identifier that was not found
    """

    error_code = "not_found"

    def __init__(self, message: str, resource: str, identifier: object = None):
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier

    def __str__(self) -> str:
        return f"NotFoundError({self.resource}): {self.args[0]}"


class ConflictError(EntitleError):
    """Raised when a write would violate an entitlement invariant.

    Examples are a second active subscription for the same owner, a
    license key already bound to another machine, or a concurrent writer
    having changed the row first.

    Attributes:
        resource: Kind of record involved
        identifier: Identifier of the conflicting record, if known
    """

    error_code = "conflict"

    def __init__(self, message: str, resource: str, identifier: object = None):
        super().__init__(message)
        self.resource = resource
        self.identifier = identifier

    def __str__(self) -> str:
        return f"ConflictError({self.resource}): {self.args[0]}"


class ConcurrentUpdateError(ConflictError):
    """Raised when another writer changed the subscription first.

    Unlike an invariant conflict, the operation can succeed if it is run
    again on fresh state.
    """

    def __str__(self) -> str:
        return f"ConcurrentUpdateError({self.resource}): {self.args[0]}"


class DuplicateError(EntitleError):
    """Raised when a unique constraint would be violated.

    Attributes:
        resource: Kind of record involved
        field: The field whose value already exists
    """

    error_code = "duplicate"

    def __init__(self, message: str, resource: str, field: str | None = None):
        super().__init__(message)
        self.resource = resource
        self.field = field

    def __str__(self) -> str:
        return f"DuplicateError({self.resource}.{self.field}): {self.args[0]}"


class UpstreamError(EntitleError):
    """Raised when a billing or identity provider call fails.

    Attributes:
        service: External service name (e.g., "billing", "identity")
        operation: Operation that was attempted
    """

    error_code = "upstream_error"

    def __init__(self, message: str, service: str, operation: str):
        super().__init__(message)
        self.service = service
        self.operation = operation

    def __str__(self) -> str:
        return f"{type(self).__name__}({self.service}.{self.operation}): {self.args[0]}"


class UpstreamTimeoutError(UpstreamError):
    """Raised when a provider call did not answer within its timeout."""

    error_code = "upstream_timeout"


class UpstreamRejectedError(UpstreamError):
    """Raised when a provider answered but refused the request.

    Attributes:
        status_code: HTTP status returned by the provider, if any
    """

    error_code = "upstream_rejected"

    def __init__(
        self,
        message: str,
        service: str,
        operation: str,
        status_code: int | None = None,
    ):
        super().__init__(message, service, operation)
        self.status_code = status_code


class UnresolvableEventError(EntitleError):
    """Raised when a billing event references no locally known record.

    This is never reported to the billing provider as a failure.

    Attributes:
        event_type: The billing event type
        subscription_ref: Provider subscription reference carried by the event
    """

    error_code = "unresolvable_event"

    def __init__(self, message: str, event_type: str, subscription_ref: str | None = None):
        super().__init__(message)
        self.event_type = event_type
        self.subscription_ref = subscription_ref


class ValidationError(EntitleError):
    """Raised when input is malformed.

    Attributes:
        field: The offending field, if a single one can be named
    """

    error_code = "validation_error"

    def __init__(self, message: str, field: str | None = None):
        super().__init__(message)
        self.field = field


class AuthenticationError(EntitleError):
    """Raised when credentials or tokens are missing or invalid."""

    error_code = "unauthorized"

    def __init__(self, message: str = "Authentication failed"):
        super().__init__(message)


class AccessDeniedError(EntitleError):
    """Raised when an authenticated principal is not entitled to an action.

    Attributes:
        reason: Stable machine-readable denial reason (e.g., "account_suspended")
    """

    error_code = "forbidden"

    def __init__(self, message: str, reason: str):
        super().__init__(message)
        self.reason = reason

    def __str__(self) -> str:
        return f"AccessDeniedError({self.reason}): {self.args[0]}"
