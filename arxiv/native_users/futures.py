"""
Helpers for chaining work on :class:`concurrent.futures.Future`.

Store operations never block the caller; they return a future that is
completed from a worker thread. These helpers compose such futures, and
:func:`wait` provides the bounded blocking wait used by synchronous callers.
"""

from concurrent import futures
from concurrent.futures import Future
from typing import Any, Callable, Optional

from .exceptions import StoreTimeout

DEFAULT_TIMEOUT = 30.0
"""Seconds that a blocking caller waits before giving up."""


def completed(result: Any = None) -> Future:
    """Get a future that has already succeeded with ``result``."""
    future: Future = Future()
    future.set_result(result)
    return future


def failed(exc: BaseException) -> Future:
    """Get a future that has already failed with ``exc``."""
    future: Future = Future()
    future.set_exception(exc)
    return future


def transform(source: Future,
              on_success: Callable[[Any], Any],
              on_failure: Optional[Callable[[BaseException], Any]] = None) \
        -> Future:
    """
    Chain callbacks onto ``source``, returning a future of their outcome.

    If the callback returns a :class:`Future`, the returned future follows
    it. An exception raised by a callback fails the returned future; without
    ``on_failure``, a failure of ``source`` is passed through unchanged.
    """
    target: Future = Future()

    def _done(future: Future) -> None:
        try:
            exc = future.exception()
            if exc is None:
                result = on_success(future.result())
            elif on_failure is not None:
                result = on_failure(exc)
            else:
                raise exc
        except BaseException as e:
            target.set_exception(e)
            return
        if isinstance(result, Future):
            follow(result, target)
        else:
            target.set_result(result)

    source.add_done_callback(_done)
    return target


def follow(source: Future, target: Future) -> None:
    """Complete ``target`` with the outcome of ``source``."""
    def _done(future: Future) -> None:
        exc = future.exception()
        if exc is None:
            target.set_result(future.result())
        else:
            target.set_exception(exc)
    source.add_done_callback(_done)


def wait(future: Future, timeout: Optional[float] = None,
         description: str = 'the document store') -> Any:
    """
    Block until ``future`` completes, for at most ``timeout`` seconds.

    Timing out does not cancel the underlying operation, which may still
    complete (and have effects) later.

    Raises
    ------
    :class:`.StoreTimeout`
        Raised if the future is not complete in time.

    """
    if timeout is None:
        timeout = DEFAULT_TIMEOUT
    done, _ = futures.wait([future], timeout=timeout)
    if not done:
        raise StoreTimeout(f'timed out waiting for {description}')
    return future.result()
