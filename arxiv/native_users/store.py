"""
The native user store.

Users are kept as documents in a :class:`.DocumentStore`: regular users
under :data:`.USER_DOC_TYPE`, and overrides for the built-in (reserved)
users under :data:`.RESERVED_USER_DOC_TYPE`. The store only serves requests
once it has been started (see :mod:`.lifecycle` and :mod:`.readiness`).

Operations do not block; they return a :class:`concurrent.futures.Future`.
Every successful change to a user is followed by a best-effort attempt to
clear that user from the realm caches of the cluster, before the change is
reported to the caller. If the cache cannot be cleared, the caller gets a
:class:`.CacheClearFailed` even though the change has been applied.

The module-level functions wrap the store of the current Flask application,
and block (for at most ``NATIVE_USERS_TIMEOUT`` seconds) until the operation
is complete.
"""

import logging
from concurrent.futures import Future
from functools import wraps
from typing import Any, Dict, Iterable, List, Mapping, Optional

from flask import Flask, current_app

from . import codec, config, futures, passwords, readiness
from .codec import Fields
from .domain import RESERVED_USER_DOC_TYPE, USER_DOC_TYPE, ClusterState, \
    ReservedUserInfo, State, User, UserAndPassword
from .exceptions import CacheClearFailed, NotStarted, ValidationFailed
from .lifecycle import IndexPresence, Lifecycle
from .reserved import DEFAULT_PASSWORD_HASH, ReservedUsers
from .scroll import UserScroll
from .services.documents import DocumentStore, RefreshPolicy, Result, \
    is_index_not_found, is_index_not_found_or_document_missing
from .services.realm_cache import RealmCache

logger = logging.getLogger(__name__)

EXTENSION = 'native_users'
MAX_RESERVED_USERS = 10


class NativeUsersStore(object):
    """Manages users in the document store."""

    def __init__(self, documents: DocumentStore, cache: RealmCache,
                 settings: Optional[Mapping[str, Any]] = None,
                 reserved: Optional[ReservedUsers] = None) -> None:
        """
        Set up a store that is not yet started.

        Parameters
        ----------
        documents : :class:`.DocumentStore`
        cache : :class:`.RealmCache`
            Used to clear cached copies of changed users.
        settings : dict
            Configuration, read when the store is started.
        reserved : :class:`.ReservedUsers`
            Defaults to the reserved users named in ``settings``.

        """
        self._documents = documents
        self._cache = cache
        self._settings: Mapping[str, Any] = settings or {}
        if reserved is None:
            reserved = ReservedUsers.from_config(self._settings)
        self._reserved = reserved
        self.presence = IndexPresence()
        self.lifecycle = Lifecycle(self.presence)
        self._scroll_size = int(config.SCROLL_SIZE)
        self._scroll_keep_alive = config.parse_time_value(
            config.SCROLL_KEEP_ALIVE
        )
        self._timeout = futures.DEFAULT_TIMEOUT

    @classmethod
    def from_config(cls, settings: Mapping[str, Any]) -> 'NativeUsersStore':
        """Create a store, and its integrations, from configuration."""
        documents = DocumentStore.from_uri(
            config.get(settings, 'NATIVE_USERS_DATABASE_URI'),
            config.get(settings, 'NATIVE_USERS_INDEX')
        )
        return cls(documents, RealmCache.from_config(settings), settings)

    @property
    def documents(self) -> DocumentStore:
        """The underlying document store."""
        return self._documents

    @property
    def reserved(self) -> ReservedUsers:
        """The reserved users."""
        return self._reserved

    @property
    def timeout(self) -> float:
        """Seconds that blocking calls wait for the document store."""
        return self._timeout

    # Lifecycle.

    @property
    def state(self) -> State:
        """Current :class:`.State` of the store."""
        return self.lifecycle.state

    @property
    def started(self) -> bool:
        """Whether the store is accepting operations."""
        return self.lifecycle.started

    @property
    def index_exists(self) -> bool:
        """
        Whether the index exists, as of the last cluster event.

        This may be out of date by the time the caller acts on it.
        """
        return bool(self.presence)

    def can_start(self, cluster: ClusterState) -> bool:
        """Determine whether the store may be started."""
        return readiness.can_start(self.state, cluster,
                                   self._documents.index_name, self.presence)

    def cluster_changed(self, cluster: ClusterState) -> None:
        """Handle a change in the state of the cluster."""
        readiness.observe(cluster, self._documents.index_name, self.presence)

    def start(self) -> bool:
        """Start the store. Returns whether it is started."""
        return self.lifecycle.start(self._configure)

    def start_if_ready(self) -> bool:
        """Start the store if the document store reports that it is ready."""
        if not self.can_start(self._documents.cluster_state()):
            return self.started
        return self.start()

    def stop(self) -> bool:
        """Stop the store."""
        return self.lifecycle.stop()

    def reset(self) -> None:
        """Return a stopped or failed store to ``INITIALIZED``."""
        self.lifecycle.reset()

    def close(self) -> None:
        """Release the resources of the integrations."""
        self._documents.close()
        self._cache.close()

    def _configure(self) -> None:
        scroll_size = int(config.get(self._settings,
                                     'NATIVE_USERS_SCROLL_SIZE'))
        if scroll_size <= 0:
            raise ValueError(f'scroll size must be positive, got'
                             f' [{scroll_size}]')
        keep_alive = config.parse_time_value(
            config.get(self._settings, 'NATIVE_USERS_SCROLL_KEEP_ALIVE')
        )
        timeout = config.parse_time_value(
            config.get(self._settings, 'NATIVE_USERS_TIMEOUT')
        )
        self._scroll_size = scroll_size
        self._scroll_keep_alive = keep_alive
        self._timeout = timeout

    def _require_started(self, message: str) -> None:
        if not self.started:
            raise NotStarted(message)

    # Users.

    def get_user(self, username: str) -> Future:
        """
        Get a user.

        Resolves to a :class:`.User`, or to ``None`` if there is no such user
        (or no index at all).
        """
        if not self.started:
            logger.debug('attempted to get user [%s] before service was'
                         ' started', username)
            return futures.failed(NotStarted(
                'user cannot be retrieved as native user service has not'
                ' been started'
            ))
        return futures.transform(
            self._get_user_and_password(username),
            lambda found: found.user if found is not None else None
        )

    def get_users(self, usernames: Optional[Iterable[str]] = None) \
            -> UserScroll:
        """
        Get users by name, or all users if ``usernames`` is empty.

        Returns
        -------
        :class:`.UserScroll`
            A lazy sequence of users, which may be iterated more than once.
            Unknown usernames and malformed documents are left out.

        Raises
        ------
        :class:`.NotStarted`

        """
        if not self.started:
            logger.debug('attempted to get users before service was started')
            raise NotStarted('users cannot be retrieved as native user service'
                             ' has not been started')
        return UserScroll(self._documents,
                          list(usernames) if usernames else None,
                          size=self._scroll_size,
                          keep_alive=self._scroll_keep_alive,
                          timeout=self._timeout)

    def put_user(self, username: str, roles: Iterable[str],
                 full_name: Optional[str] = None, email: Optional[str] = None,
                 metadata: Optional[Mapping[str, Any]] = None,
                 enabled: bool = True, password_hash: Optional[str] = None,
                 refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE) -> Future:
        """
        Create or update a user.

        Without a ``password_hash`` this is an update of an existing user, and
        the password is left as it is. With a ``password_hash`` the user is
        created, or replaced entirely.

        Resolves to ``True`` if a new user was created.

        Raises
        ------
        :class:`.ValidationFailed`
            (Through the future.) No ``password_hash`` was given and the user
            does not exist.

        """
        if not self.started:
            return futures.failed(NotStarted(
                'user cannot be added as native user service has not been'
                ' started'
            ))
        user = User(username=username, roles=tuple(roles),
                    full_name=full_name, email=email,
                    metadata=dict(metadata or {}), enabled=enabled)
        if password_hash is None:
            return self._update_user_without_password(user, refresh)
        return self._index_user(user, password_hash, refresh)

    def change_password(self, username: str, password_hash: str,
                        refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE) \
            -> Future:
        """
        Change the password of a regular or reserved user.

        A reserved user without a stored document gets one, with this
        password and enabled.
        """
        if not self.started:
            return futures.failed(NotStarted(
                'password cannot be changed as native user service has not'
                ' been started'
            ))
        reserved = self._reserved.is_reserved(username)
        doc_type = RESERVED_USER_DOC_TYPE if reserved else USER_DOC_TYPE

        def _on_failure(e: BaseException) -> Any:
            if not is_index_not_found_or_document_missing(e):
                raise e
            if reserved:
                return self._create_reserved_user(username, password_hash,
                                                  refresh)
            logger.debug('failed to change password for user [%s]: %s',
                         username, e)
            raise ValidationFailed(
                'user must exist in order to change password'
            ) from e

        return futures.transform(
            self._documents.update(doc_type, username,
                                   {Fields.PASSWORD: password_hash},
                                   refresh=refresh),
            lambda _: self._clear_realm_cache(username, None),
            _on_failure
        )

    def set_enabled(self, username: str, enabled: bool,
                    refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE) \
            -> Future:
        """
        Enable or disable a user.

        A reserved user without a stored document gets one, with the default
        password. A regular user must already exist.
        """
        if not self.started:
            return futures.failed(NotStarted(
                'enabled status cannot be changed as native user service has'
                ' not been started'
            ))
        if self._reserved.is_reserved(username):
            return self._set_reserved_user_enabled(username, enabled, refresh)
        return self._set_regular_user_enabled(username, enabled, refresh)

    def delete_user(self, username: str,
                    refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE) \
            -> Future:
        """
        Delete a user.

        Resolves to ``True`` if the user existed. A missing index is not an
        error; the user simply did not exist.
        """
        if not self.started:
            return futures.failed(NotStarted(
                'user cannot be deleted as native user service has not been'
                ' started'
            ))
        return futures.transform(
            self._documents.delete(USER_DOC_TYPE, username, refresh=refresh,
                                   ignore_unavailable=True),
            lambda result: self._clear_realm_cache(
                username, result is Result.DELETED
            )
        )

    def verify_password(self, username: str, password: str) -> Future:
        """
        Check a password against the one stored for a user.

        Resolves to the :class:`.User` if the password matches, otherwise
        ``None``. Users without a stored password never match.
        """
        if not self.started:
            logger.debug('attempted to verify user credentials for [%s] but'
                         ' service was not started', username)
            return futures.failed(NotStarted(
                'user credentials cannot be verified as native user service'
                ' has not been started'
            ))

        def _verify(found: Optional[UserAndPassword]) -> Optional[User]:
            if found is None or found.password_hash is None:
                return None
            if passwords.verify(password, found.password_hash):
                return found.user
            return None

        return futures.transform(self._get_user_and_password(username),
                                 _verify)

    # Reserved users.

    def get_reserved_user_info(self, username: str,
                               timeout: Optional[float] = None) \
            -> Optional[ReservedUserInfo]:
        """
        Get the stored overrides for a reserved user, blocking.

        Returns
        -------
        :class:`.ReservedUserInfo` or None
            ``None`` if nothing is stored for the user.

        Raises
        ------
        :class:`.MalformedRecord`
            The stored document is corrupt.
        :class:`.StoreTimeout`
            The store did not respond in time.

        """
        self._require_started('built in user info cannot be retrieved as'
                              ' native user service has not been started')
        try:
            source = futures.wait(
                self._documents.get(RESERVED_USER_DOC_TYPE, username),
                self._timeout if timeout is None else timeout,
                f'built in user [{username}]'
            )
        except Exception as e:
            if is_index_not_found(e):
                logger.debug('could not retrieve built in user [%s] info'
                             ' since security index does not exist', username)
                return None
            logger.error('failed to retrieve built in user [%s] info: %s',
                         username, e)
            raise
        if source is None:
            return None
        return codec.decode_reserved(username, source)

    def get_all_reserved_user_info(self, timeout: Optional[float] = None) \
            -> Dict[str, ReservedUserInfo]:
        """
        Get the stored overrides for all reserved users, blocking.

        Any corrupt document fails the whole call.
        """
        self._require_started('built in users cannot be retrieved as native'
                              ' user service has not been started')
        try:
            page = futures.wait(
                self._documents.search(RESERVED_USER_DOC_TYPE,
                                       size=MAX_RESERVED_USERS),
                self._timeout if timeout is None else timeout,
                'built in users'
            )
        except Exception as e:
            if is_index_not_found(e):
                logger.debug('could not retrieve built in users since'
                             ' security index does not exist')
                return {}
            logger.error('failed to retrieve built in users: %s', e)
            raise
        assert page.total <= MAX_RESERVED_USERS, \
            'there are more than 10 reserved users we need to change this' \
            ' to retrieve them all!'
        return {hit.doc_id: codec.decode_reserved(hit.doc_id, hit.source)
                for hit in page.hits}

    # Internals.

    def _get_user_and_password(self, username: str) -> Future:
        def _on_failure(e: BaseException) -> None:
            if is_index_not_found(e):
                logger.debug('could not retrieve user [%s] because security'
                             ' index does not exist', username)
                return None
            logger.error('failed to retrieve user [%s]: %s', username, e)
            raise e

        return futures.transform(
            self._documents.get(USER_DOC_TYPE, username),
            lambda source: codec.transform_user(username, source),
            _on_failure
        )

    def _update_user_without_password(self, user: User,
                                      refresh: RefreshPolicy) -> Future:
        def _on_failure(e: BaseException) -> None:
            if not is_index_not_found_or_document_missing(e):
                raise e
            # Without an index or a document, this cannot be an update.
            logger.debug('failed to update user document with username'
                         ' [%s]: %s', user.username, e)
            raise ValidationFailed(
                'password must be specified unless you are updating an'
                ' existing user'
            ) from e

        return futures.transform(
            self._documents.update(USER_DOC_TYPE, user.username,
                                   codec.to_source(user), refresh=refresh),
            lambda _: self._clear_realm_cache(user.username, False),
            _on_failure
        )

    def _index_user(self, user: User, password_hash: str,
                    refresh: RefreshPolicy) -> Future:
        return futures.transform(
            self._documents.index(USER_DOC_TYPE, user.username,
                                  codec.to_source(user, password_hash),
                                  refresh=refresh),
            lambda result: self._clear_realm_cache(
                user.username, result is Result.CREATED
            )
        )

    def _create_reserved_user(self, username: str, password_hash: str,
                              refresh: RefreshPolicy) -> Future:
        return futures.transform(
            self._documents.index(RESERVED_USER_DOC_TYPE, username,
                                  {Fields.PASSWORD: password_hash,
                                   Fields.ENABLED: True},
                                  refresh=refresh),
            lambda _: self._clear_realm_cache(username, None)
        )

    def _set_regular_user_enabled(self, username: str, enabled: bool,
                                  refresh: RefreshPolicy) -> Future:
        action = 'enabled' if enabled else 'disabled'

        def _on_failure(e: BaseException) -> None:
            if not is_index_not_found_or_document_missing(e):
                raise e
            logger.debug('failed to set user [%s] %s: %s', username, action,
                         e)
            raise ValidationFailed(f'only existing users can be {action}') \
                from e

        return futures.transform(
            self._documents.update(USER_DOC_TYPE, username,
                                   {Fields.ENABLED: enabled},
                                   refresh=refresh),
            lambda _: self._clear_realm_cache(username, None),
            _on_failure
        )

    def _set_reserved_user_enabled(self, username: str, enabled: bool,
                                   refresh: RefreshPolicy) -> Future:
        return futures.transform(
            self._documents.update(RESERVED_USER_DOC_TYPE, username,
                                   {Fields.ENABLED: enabled},
                                   upsert={
                                       Fields.PASSWORD: DEFAULT_PASSWORD_HASH,
                                       Fields.ENABLED: enabled
                                   },
                                   refresh=refresh),
            lambda _: self._clear_realm_cache(username, None)
        )

    def _clear_realm_cache(self, username: str, result: Any) -> Future:
        """Clear ``username`` from realm caches, then resolve to ``result``."""
        def _on_failure(e: BaseException) -> None:
            logger.error('unable to clear realm cache for user [%s]: %s',
                         username, e)
            raise CacheClearFailed(username, result) from e

        return futures.transform(self._cache.clear(username),
                                 lambda _: result, _on_failure)


def init_app(app: Flask) -> None:
    """Set configuration defaults and attach a store to the application."""
    config.init_app(app)
    app.extensions[EXTENSION] = NativeUsersStore.from_config(app.config)


def current_store() -> NativeUsersStore:
    """Get/create the :class:`NativeUsersStore` of the current application."""
    if EXTENSION not in current_app.extensions:
        init_app(current_app)
    store: NativeUsersStore = current_app.extensions[EXTENSION]
    return store


def _wait(future: Future, timeout: Optional[float], description: str) -> Any:
    store = current_store()
    return futures.wait(future, store.timeout if timeout is None else timeout,
                        description)


@wraps(NativeUsersStore.get_user)
def get_user(username: str, timeout: Optional[float] = None) \
        -> Optional[User]:
    """Get a user."""
    return _wait(current_store().get_user(username), timeout,
                 f'user [{username}]')


@wraps(NativeUsersStore.get_users)
def get_users(usernames: Optional[Iterable[str]] = None) -> List[User]:
    """Get users by name, or all users."""
    return list(current_store().get_users(usernames))


@wraps(NativeUsersStore.put_user)
def put_user(username: str, roles: Iterable[str],
             full_name: Optional[str] = None, email: Optional[str] = None,
             metadata: Optional[Mapping[str, Any]] = None,
             enabled: bool = True, password_hash: Optional[str] = None,
             refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE,
             timeout: Optional[float] = None) -> bool:
    """Create or update a user."""
    return _wait(
        current_store().put_user(username, roles, full_name=full_name,
                                 email=email, metadata=metadata,
                                 enabled=enabled, password_hash=password_hash,
                                 refresh=refresh),
        timeout, f'put user [{username}]'
    )


@wraps(NativeUsersStore.change_password)
def change_password(username: str, password_hash: str,
                    refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE,
                    timeout: Optional[float] = None) -> None:
    """Change the password of a user."""
    return _wait(
        current_store().change_password(username, password_hash,
                                        refresh=refresh),
        timeout, f'change password of [{username}]'
    )


@wraps(NativeUsersStore.set_enabled)
def set_enabled(username: str, enabled: bool,
                refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE,
                timeout: Optional[float] = None) -> None:
    """Enable or disable a user."""
    return _wait(
        current_store().set_enabled(username, enabled, refresh=refresh),
        timeout, f'set enabled of [{username}]'
    )


@wraps(NativeUsersStore.delete_user)
def delete_user(username: str,
                refresh: RefreshPolicy = RefreshPolicy.IMMEDIATE,
                timeout: Optional[float] = None) -> bool:
    """Delete a user."""
    return _wait(current_store().delete_user(username, refresh=refresh),
                 timeout, f'delete user [{username}]')


@wraps(NativeUsersStore.verify_password)
def verify_password(username: str, password: str,
                    timeout: Optional[float] = None) -> Optional[User]:
    """Check a password against the one stored for a user."""
    return _wait(current_store().verify_password(username, password),
                 timeout, f'verify user [{username}]')
