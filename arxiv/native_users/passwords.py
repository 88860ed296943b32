"""Password hashing for native users."""

import logging

import bcrypt

logger = logging.getLogger(__name__)

DEFAULT_ROUNDS = 10
"""Work factor used for new hashes."""


class PasswordAuthenticationFailed(RuntimeError):
    """Password is not correct."""


def hash_password(password: str, rounds: int = DEFAULT_ROUNDS) -> str:
    """
    Generate a secure hash of a password.

    bcrypt limits passwords to 72 bytes once encoded.
    """
    salt = bcrypt.gensalt(rounds)
    return bcrypt.hashpw(password.encode('utf-8'), salt).decode('ascii')


def check_password(password: str, encrypted: str) -> bool:
    """
    Check a password against a hash.

    Raises
    ------
    :class:`PasswordAuthenticationFailed`
        Raised if the password does not match, or if the hash is not a
        bcrypt hash.

    """
    try:
        matched = bcrypt.checkpw(password.encode('utf-8'),
                                 encrypted.encode('ascii'))
    except (ValueError, UnicodeEncodeError) as e:
        logger.debug('could not check password against hash: %s', e)
        raise PasswordAuthenticationFailed('Invalid password hash') from e
    if not matched:
        raise PasswordAuthenticationFailed('Incorrect password')
    return True


def verify(password: str, encrypted: str) -> bool:
    """Check a password against a hash, without raising on mismatch."""
    try:
        return check_password(password, encrypted)
    except PasswordAuthenticationFailed:
        return False
