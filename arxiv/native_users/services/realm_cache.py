"""
Broadcast realm cache invalidations.

Authentication layers keep read-through caches of users loaded from the
native user store. When a user changes, a message naming the user is
published on a Redis channel; cache holders subscribe to the channel and
drop their cached copy. Publishing does not wait for the subscribers.
"""

import json
import logging
from concurrent.futures import Future, ThreadPoolExecutor
from typing import Any, Mapping, Optional

import redis
from redis.cluster import RedisCluster

from .. import config

logger = logging.getLogger(__name__)


class CacheUnavailable(RuntimeError):
    """Could not publish an invalidation message."""


class RealmCache(object):
    """
    Publishes cache invalidations to Redis.

    The Redis client is thread safe, and connections are attached at the
    time a command is executed. Publishing runs on a worker thread.
    """

    def __init__(self, host: str, port: int, db: int,
                 channel: str = config.CACHE_CHANNEL, cluster: bool = False,
                 executor: Optional[ThreadPoolExecutor] = None) -> None:
        """Open the connection to Redis."""
        logger.debug('New Redis connection at %s, port %s', host, port)
        if cluster:
            self.r = RedisCluster(host=host, port=port)
        else:
            self.r = redis.StrictRedis(host=host, port=port, db=db)
        self._channel = channel
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=2,
                thread_name_prefix='native-users-cache'
            )
        self._executor = executor

    @classmethod
    def from_config(cls, settings: Mapping[str, Any]) -> 'RealmCache':
        """Create a :class:`RealmCache` from configuration parameters."""
        return cls(
            host=config.get(settings, 'REDIS_HOST'),
            port=int(config.get(settings, 'REDIS_PORT')),
            db=int(config.get(settings, 'REDIS_DATABASE')),
            channel=config.get(settings, 'NATIVE_USERS_CACHE_CHANNEL'),
            cluster=config.flag(settings, 'REDIS_CLUSTER')
        )

    @property
    def channel(self) -> str:
        """The channel on which invalidations are published."""
        return self._channel

    def clear(self, *usernames: str) -> Future:
        """
        Clear cached copies of users with ``usernames``.

        Resolves to the number of subscribers that received the message.
        """
        return self._executor.submit(self._publish, list(usernames))

    def close(self) -> None:
        """Wait for pending invalidations."""
        self._executor.shutdown(wait=True)

    def _publish(self, usernames: list) -> int:
        message = json.dumps({'usernames': usernames})
        try:
            receivers: int = self.r.publish(self._channel, message)
        except redis.exceptions.ConnectionError as e:
            raise CacheUnavailable(f'Connection failed: {e}') from e
        except Exception as e:
            raise CacheUnavailable(f'Failed to publish: {e}') from e
        logger.debug('cleared realm cache for %s on %s subscribers',
                     usernames, receivers)
        return receivers
