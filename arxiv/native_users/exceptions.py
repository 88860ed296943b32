"""Exceptions."""

from typing import Any, List, Optional


class NativeUsersError(RuntimeError):
    """Base class for failures raised by the native user store."""


class NotStarted(NativeUsersError):
    """An operation was attempted while the store was not started."""


class IllegalState(NativeUsersError):
    """A lifecycle transition was requested from an incompatible state."""


class ValidationFailed(NativeUsersError):
    """A request violated a business rule, e.g. the user must already exist."""

    def __init__(self, *errors: str) -> None:
        """Collect one or more validation error messages."""
        self.errors: List[str] = list(errors)
        super(ValidationFailed, self).__init__(
            'Validation Failed: ' + '; '.join(
                f'{i}: {error}' for i, error in enumerate(self.errors, 1)
            )
        )


class StoreTimeout(NativeUsersError):
    """Gave up waiting for the document store to respond."""


class MalformedRecord(NativeUsersError):
    """A stored document could not be decoded."""


class CacheClearFailed(NativeUsersError):
    """
    A mutation was applied, but the realm cache could not be cleared.

    The mutation is not rolled back. ``result`` holds the value that the
    caller would have received had the cache been cleared.
    """

    def __init__(self, username: str, result: Optional[Any] = None) -> None:
        """Keep the affected username and the result of the mutation."""
        self.username = username
        self.result = result
        super(CacheClearFailed, self).__init__(
            f'clearing the cache for [{username}] failed. please clear the'
            ' realm cache manually'
        )
