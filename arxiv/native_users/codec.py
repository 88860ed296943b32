"""Translate between stored documents and :mod:`.domain` objects."""

import logging
from typing import Any, Dict, Mapping, Optional

from . import domain
from .exceptions import MalformedRecord

logger = logging.getLogger(__name__)


class Fields:
    """Names of the fields in stored user documents."""

    USERNAME = 'username'
    PASSWORD = 'password'
    ROLES = 'roles'
    FULL_NAME = 'full_name'
    EMAIL = 'email'
    METADATA = 'metadata'
    ENABLED = 'enabled'


def to_source(user: domain.User,
              password_hash: Optional[str] = None) -> Dict[str, Any]:
    """
    Generate the stored representation of a :class:`.domain.User`.

    Parameters
    ----------
    user : :class:`.domain.User`
    password_hash : str or None
        If provided, the hash is included in the document.

    Returns
    -------
    dict

    """
    source: Dict[str, Any] = {
        Fields.USERNAME: user.username,
        Fields.ROLES: list(user.roles),
        Fields.FULL_NAME: user.full_name,
        Fields.EMAIL: user.email,
        Fields.METADATA: dict(user.metadata),
        Fields.ENABLED: user.enabled,
    }
    if password_hash is not None:
        source[Fields.PASSWORD] = password_hash
    return source


def _optional_str(source: Mapping[str, Any], field: str) -> Optional[str]:
    value = source.get(field)
    if value is not None and not isinstance(value, str):
        raise MalformedRecord(f'{field} must be a string')
    return value


def decode_user(username: str,
                source: Mapping[str, Any]) -> domain.UserAndPassword:
    """
    Load a :class:`.domain.UserAndPassword` from a stored document.

    Users created before the ``enabled`` field existed are treated as
    enabled.

    Raises
    ------
    :class:`.MalformedRecord`
        Raised if a required field is missing or a field has the wrong type.

    """
    if Fields.PASSWORD not in source:
        raise MalformedRecord(f'user [{username}] has no password field')
    password = _optional_str(source, Fields.PASSWORD)

    roles = source.get(Fields.ROLES)
    if not isinstance(roles, (list, tuple)) \
            or not all(isinstance(role, str) for role in roles):
        raise MalformedRecord(f'user [{username}] has malformed roles')

    metadata = source.get(Fields.METADATA)
    if metadata is None:
        metadata = {}
    elif not isinstance(metadata, dict):
        raise MalformedRecord(f'user [{username}] has malformed metadata')

    enabled = source.get(Fields.ENABLED)
    if enabled is None:
        enabled = True
    elif not isinstance(enabled, bool):
        raise MalformedRecord(f'user [{username}] has malformed enabled flag')

    user = domain.User(
        username=username,
        roles=tuple(roles),
        full_name=_optional_str(source, Fields.FULL_NAME),
        email=_optional_str(source, Fields.EMAIL),
        metadata=metadata,
        enabled=enabled
    )
    return domain.UserAndPassword(user=user, password_hash=password or None)


def transform_user(username: str, source: Optional[Mapping[str, Any]]) \
        -> Optional[domain.UserAndPassword]:
    """Decode a stored user document, or get ``None`` if it is unusable."""
    if source is None:
        return None
    try:
        return decode_user(username, source)
    except MalformedRecord as e:
        logger.error('error in the format of data for user [%s]: %s',
                     username, e)
        return None


def decode_reserved(username: str,
                    source: Mapping[str, Any]) -> domain.ReservedUserInfo:
    """
    Load a :class:`.domain.ReservedUserInfo` from a stored document.

    Unlike regular users, missing fields are never defaulted here.

    Raises
    ------
    :class:`.MalformedRecord`
        Raised if the hash is empty or the enabled flag is not set.

    """
    password = source.get(Fields.PASSWORD)
    enabled = source.get(Fields.ENABLED)
    if not isinstance(password, str) or not password:
        raise MalformedRecord('password hash must not be empty!')
    if not isinstance(enabled, bool):
        raise MalformedRecord('enabled must not be null!')
    return domain.ReservedUserInfo(password_hash=password, enabled=enabled)
