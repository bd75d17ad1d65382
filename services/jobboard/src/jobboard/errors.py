from __future__ import annotations


class ListingFetchError(RuntimeError):
    """The listing source could not be reached or answered with an error status."""


class ListingNotFoundError(LookupError):
    pass


class AuthorizationError(PermissionError):
    """No signed-in user or no live credentials; the store was not called."""


class StoreOperationError(RuntimeError):
    """A document store call failed. The message is safe to show to users."""
