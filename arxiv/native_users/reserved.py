"""
Built-in (reserved) users.

Reserved users exist without ever being created. Their password hash and
enabled flag may be overridden by a document in the store; without one they
fall back to :data:`DEFAULT_PASSWORD_HASH` and are enabled.
"""

from typing import Any, Dict, Iterable, Iterator, Mapping, Optional

from . import config
from .domain import ReservedUserInfo

DEFAULT_PASSWORD = 'changeme'
DEFAULT_PASSWORD_HASH = \
    '$2b$10$N9qo8uLOickgx2ZMRZoMyeGcnw0Ahagw0zRFVBu0DUSeIrMC3VogO'
"""Placeholder hash (of :data:`DEFAULT_PASSWORD`) for reserved users."""

DEFAULT_USER_INFO = ReservedUserInfo(password_hash=DEFAULT_PASSWORD_HASH,
                                     enabled=True)


class ReservedUsers(object):
    """The set of reserved usernames."""

    def __init__(self, usernames: Iterable[str], enabled: bool = True) -> None:
        """If the reserved realm is not ``enabled``, no user is reserved."""
        self._usernames = frozenset(usernames) if enabled else frozenset()

    @classmethod
    def from_config(cls, settings: Mapping[str, Any]) -> 'ReservedUsers':
        """Load the reserved usernames from configuration."""
        return cls(config.names(settings, 'NATIVE_USERS_RESERVED'),
                   enabled=config.flag(settings, 'RESERVED_REALM_ENABLED'))

    def __contains__(self, username: object) -> bool:
        return username in self._usernames

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._usernames))

    def __len__(self) -> int:
        return len(self._usernames)

    def is_reserved(self, username: str) -> bool:
        """Determine whether ``username`` belongs to a reserved user."""
        return username in self._usernames

    def lookup(self, store: Any, username: str,
               timeout: Optional[float] = None) -> ReservedUserInfo:
        """
        Get the effective credentials of a reserved user.

        Parameters
        ----------
        store : :class:`.NativeUsersStore`
        username : str
        timeout : float
            Seconds to wait for the store.

        Returns
        -------
        :class:`.ReservedUserInfo`
            The stored override, or :data:`DEFAULT_USER_INFO`.

        Raises
        ------
        :class:`.MalformedRecord`
            Raised if a stored override is corrupt; the default is only used
            when nothing is stored at all.

        """
        if username not in self._usernames:
            raise KeyError(username)
        info: Optional[ReservedUserInfo] = \
            store.get_reserved_user_info(username, timeout=timeout)
        if info is None:
            return DEFAULT_USER_INFO
        return info

    def lookup_all(self, store: Any, timeout: Optional[float] = None) \
            -> Dict[str, ReservedUserInfo]:
        """Get the effective credentials of every reserved user."""
        stored = store.get_all_reserved_user_info(timeout=timeout)
        return {username: stored.get(username, DEFAULT_USER_INFO)
                for username in self}
