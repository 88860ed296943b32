"""Configuration for the native user store."""

import os
import re
from typing import Any, Mapping, Union

from flask import Flask

SCROLL_SIZE = os.environ.get('NATIVE_USERS_SCROLL_SIZE', '1000')
"""Number of users fetched per page when scanning all users."""

SCROLL_KEEP_ALIVE = os.environ.get('NATIVE_USERS_SCROLL_KEEP_ALIVE', '10s')
"""How long the document store keeps a scan cursor open between pages."""

TIMEOUT = os.environ.get('NATIVE_USERS_TIMEOUT', '30')
"""Seconds to wait on the document store in blocking calls."""

INDEX = os.environ.get('NATIVE_USERS_INDEX', '.security')
DATABASE_URI = os.environ.get('NATIVE_USERS_DATABASE_URI',
                              'sqlite:///native_users.db')

RESERVED = os.environ.get('NATIVE_USERS_RESERVED', 'admin,monitor,ingest')
RESERVED_REALM_ENABLED = os.environ.get('RESERVED_REALM_ENABLED', '1')

REDIS_HOST = os.environ.get('REDIS_HOST', 'localhost')
REDIS_PORT = os.environ.get('REDIS_PORT', '6379')
REDIS_DATABASE = os.environ.get('REDIS_DATABASE', '0')
REDIS_CLUSTER = os.environ.get('REDIS_CLUSTER', '0')
CACHE_CHANNEL = os.environ.get('NATIVE_USERS_CACHE_CHANNEL',
                               'native_users:clear_cache')

DEFAULTS = {
    'NATIVE_USERS_SCROLL_SIZE': SCROLL_SIZE,
    'NATIVE_USERS_SCROLL_KEEP_ALIVE': SCROLL_KEEP_ALIVE,
    'NATIVE_USERS_TIMEOUT': TIMEOUT,
    'NATIVE_USERS_INDEX': INDEX,
    'NATIVE_USERS_DATABASE_URI': DATABASE_URI,
    'NATIVE_USERS_RESERVED': RESERVED,
    'RESERVED_REALM_ENABLED': RESERVED_REALM_ENABLED,
    'REDIS_HOST': REDIS_HOST,
    'REDIS_PORT': REDIS_PORT,
    'REDIS_DATABASE': REDIS_DATABASE,
    'REDIS_CLUSTER': REDIS_CLUSTER,
    'NATIVE_USERS_CACHE_CHANNEL': CACHE_CHANNEL,
}

_TIME_VALUE = re.compile(r'^\s*(\d+(?:\.\d+)?)\s*(ms|s|m|h)?\s*$')
_TIME_UNITS = {'ms': 0.001, 's': 1.0, 'm': 60.0, 'h': 3600.0}


def init_app(app: Flask) -> None:
    """Set default configuration parameters for an application instance."""
    for key, value in DEFAULTS.items():
        app.config.setdefault(key, value)


def get(config: Mapping[str, Any], key: str) -> Any:
    """Get a configuration value, using the module default if unset."""
    return config.get(key, DEFAULTS[key])


def flag(config: Mapping[str, Any], key: str) -> bool:
    """Interpret a configuration value as a boolean."""
    value = get(config, key)
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in ('1', 'true', 'yes', 'on')


def names(config: Mapping[str, Any], key: str) -> frozenset:
    """Interpret a configuration value as a set of names."""
    value = get(config, key)
    if isinstance(value, str):
        value = value.split(',')
    return frozenset(name.strip() for name in value if name.strip())


def parse_time_value(value: Union[str, int, float]) -> float:
    """
    Parse a duration such as ``10s``, ``500ms`` or ``1m`` into seconds.

    Bare numbers are seconds.

    Raises
    ------
    :class:`ValueError`
        Raised if ``value`` is not a duration.

    """
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        seconds = float(value)
    else:
        match = _TIME_VALUE.match(str(value))
        if match is None:
            raise ValueError(f'failed to parse time value [{value}]')
        amount, unit = match.groups()
        seconds = float(amount) * _TIME_UNITS[unit or 's']
    if seconds <= 0:
        raise ValueError(f'time value must be positive, got [{value}]')
    return seconds
