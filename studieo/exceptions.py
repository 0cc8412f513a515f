"""
Lifecycle exception hierarchy.

Raised inside the application lifecycle engine and converted to an
``ActionResult`` at each public operation, never shown to callers as-is.
"""

from studieo.schemas.application import ErrorKind


class LifecycleException(Exception):
    """Base exception for all lifecycle errors"""

    kind: ErrorKind = ErrorKind.STATE_CONFLICT


class AuthenticationException(LifecycleException):
    """No caller identity"""

    kind = ErrorKind.NOT_AUTHENTICATED

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationException(LifecycleException):
    """Caller is not a party to this application"""

    kind = ErrorKind.NOT_AUTHORIZED


class ResourceNotFoundException(LifecycleException):
    """Requested resource not found"""

    kind = ErrorKind.NOT_FOUND

    def __init__(self, resource_type: str, identifier: str):
        self.resource_type = resource_type
        self.identifier = identifier
        super().__init__(f"{resource_type} not found")


class StateConflictException(LifecycleException):
    """Operation is invalid for the current status"""

    kind = ErrorKind.STATE_CONFLICT


class ValidationException(LifecycleException):
    """Input rejected before touching the store"""

    kind = ErrorKind.VALIDATION
