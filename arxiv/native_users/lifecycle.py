"""
Lifecycle of the native user store.

The store may only serve reads and writes once it has been started, and it
may only be started once the backing index is ready (see :mod:`.readiness`).
State changes are made by compare-and-set under a lock, so callers that race
to start or stop the store all observe the same order of states.
"""

import logging
import threading
from typing import Callable, List

from .domain import State
from .exceptions import IllegalState

logger = logging.getLogger(__name__)

Listener = Callable[[State], None]


class IndexPresence(object):
    """
    Whether the backing index exists and all of its primaries are active.

    Written by the cluster-changed callback, read by anyone. It is not tied
    to the lifecycle :class:`.State`, and a reader may see a value that the
    next cluster event is about to replace.
    """

    def __init__(self) -> None:
        """Start out assuming that the index does not exist."""
        self._flag = threading.Event()

    def __bool__(self) -> bool:
        """Check the flag."""
        return self._flag.is_set()

    def set(self, exists: bool) -> None:
        """Record whether the index exists."""
        if exists:
            self._flag.set()
        else:
            self._flag.clear()


class Lifecycle(object):
    """Owns the :class:`.State` of the store."""

    def __init__(self, presence: IndexPresence) -> None:
        """Begin in :attr:`.State.INITIALIZED`."""
        self._lock = threading.RLock()
        self._state = State.INITIALIZED
        self._presence = presence
        self._listeners: List[Listener] = []

    @property
    def state(self) -> State:
        """The current state."""
        with self._lock:
            return self._state

    @property
    def started(self) -> bool:
        """Whether the store is accepting operations."""
        return self.state is State.STARTED

    def subscribe(self, listener: Listener) -> None:
        """Register a callable that is passed every state that is entered."""
        with self._lock:
            self._listeners.append(listener)

    def compare_and_set(self, expected: State, new: State) -> bool:
        """
        Move to ``new`` if the current state is ``expected``.

        Returns
        -------
        bool
            Whether the transition was applied.

        """
        with self._lock:
            if self._state is not expected:
                return False
            self._publish(new)
            return True

    def start(self, configure: Callable[[], None]) -> bool:
        """
        Start the store.

        ``configure`` is called between ``STARTING`` and ``STARTED``. If it
        raises, the store moves straight to ``FAILED``.

        Returns
        -------
        bool
            Whether the store is started.

        """
        with self._lock:
            if not self.compare_and_set(State.INITIALIZED, State.STARTING):
                return self._state is State.STARTED
            try:
                configure()
            except Exception as e:
                logger.error('failed to start native user store: %s', e)
                self._publish(State.FAILED)
                return False
            self._publish(State.STARTED)
            return True

    def stop(self) -> bool:
        """Stop the store, passing through ``STOPPING``."""
        with self._lock:
            if not self.compare_and_set(State.STARTED, State.STOPPING):
                return False
            self._publish(State.STOPPED)
            return True

    def reset(self) -> None:
        """
        Return a stopped or failed store to ``INITIALIZED``.

        This is intended for test harnesses that need to start the same
        store more than once.
        """
        with self._lock:
            if self._state not in (State.STOPPED, State.FAILED):
                raise IllegalState('can only reset if stopped!!!')
            self._presence.set(False)
            self._publish(State.INITIALIZED)

    def _publish(self, state: State) -> None:
        self._state = state
        logger.debug('native user store is %s', state.value)
        for listener in self._listeners:
            try:
                listener(state)
            except Exception as e:
                logger.error('state listener failed on [%s]: %s',
                             state.value, e)
