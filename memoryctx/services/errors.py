"""
Exceptions surfaced by the public ranking operations.

Signal failures never reach callers (they degrade the ranking); only
malformed input and tenant violations do.
"""


class MemoryServiceError(Exception):
    """Base exception for memory ranking and context operations."""
    pass


class InvalidRequestError(MemoryServiceError, ValueError):
    """Raised when a call is malformed, e.g. a missing organization id."""
    pass


class TenantAuthorizationError(MemoryServiceError):
    """Raised when an operation targets data owned by another organization."""

    def __init__(self, resource: str, resource_id: str, organization_id: str):
        self.resource = resource
        self.resource_id = resource_id
        self.organization_id = organization_id
        super().__init__(f'{resource} {resource_id} is not accessible to organization {organization_id}')


class RateLimitExceededError(MemoryServiceError):
    """Raised by the interface layer when a caller exceeds its request window."""

    def __init__(self, key: str, retry_after: float):
        self.key = key
        self.retry_after = retry_after
        super().__init__(f'Rate limit exceeded for {key}, retry in {retry_after:.1f}s')
