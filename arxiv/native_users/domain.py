"""Defines user and controller concepts for the native user store."""

from enum import Enum
from typing import Any, Mapping, NamedTuple, Optional, Tuple

USER_DOC_TYPE = 'user'
"""Document type under which regular users are stored."""

RESERVED_USER_DOC_TYPE = 'reserved-user'
"""Document type under which overrides for reserved users are stored."""


class State(Enum):
    """Lifecycle states of the native user store."""

    INITIALIZED = 'initialized'
    STARTING = 'starting'
    STARTED = 'started'
    STOPPING = 'stopping'
    STOPPED = 'stopped'
    FAILED = 'failed'


class User(NamedTuple):
    """A user account held in the native user store."""

    username: str
    """Unique and immutable name of the account."""

    roles: Tuple[str, ...] = ()
    """Names of the roles granted to the user. Order is not significant."""

    full_name: Optional[str] = None
    """The user's full name (if available)."""

    email: Optional[str] = None
    """The user's e-mail address (if available)."""

    metadata: Mapping[str, Any] = {}
    """Arbitrary key-value data attached to the account."""

    enabled: bool = True
    """Disabled users are kept, but must not be allowed to authenticate."""


class UserAndPassword(NamedTuple):
    """A :class:`.User` together with its stored password hash."""

    user: User

    password_hash: Optional[str] = None
    """
    Stored hash of the user's password.

    ``None`` means that no credential is stored, in which case the password
    can never be verified.
    """


class ReservedUserInfo(NamedTuple):
    """Stored overrides for a built-in (reserved) user."""

    password_hash: str
    enabled: bool


class IndexRouting(NamedTuple):
    """Routing status of an index, as reported by the cluster."""

    name: str
    all_primaries_active: bool = False


class ClusterState(NamedTuple):
    """Snapshot of the cluster signals that the store depends on."""

    recovered: bool = True
    """Whether persisted cluster state has been recovered from disk."""

    template_up_to_date: bool = True
    """Whether the index template (schema) is known to be current."""

    indices: Mapping[str, IndexRouting] = {}
    """Indices that exist in the cluster, by name."""

    def index(self, name: str) -> Optional[IndexRouting]:
        """Get the routing status of an index, or ``None`` if it is absent."""
        return self.indices.get(name)
