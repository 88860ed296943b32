"""Lazily scan all users, page by page."""

import logging
from concurrent.futures import Future
from typing import Iterator, List, Optional

from . import codec, futures
from .domain import USER_DOC_TYPE, User
from .services.documents import DocumentStore, SearchPage, \
    is_index_not_found

logger = logging.getLogger(__name__)


class UserScroll(object):
    """
    A restartable, lazy sequence of :class:`.User`.

    Each iteration opens a new scroll on the document store and fetches one
    page at a time, only once the previous page has been consumed. Documents
    that cannot be decoded are skipped. The scroll is released when the
    iteration ends, whether because all pages were read, because the
    consumer stopped early, or because fetching a page failed.
    """

    def __init__(self, documents: DocumentStore,
                 usernames: Optional[List[str]], size: int,
                 keep_alive: float, timeout: Optional[float] = None) -> None:
        """Scan for ``usernames``, or for all users if there are none."""
        self._documents = documents
        self._usernames = usernames or None
        self._size = size
        self._keep_alive = keep_alive
        self._timeout = timeout

    def __iter__(self) -> Iterator[User]:
        return self._scan()

    def _scan(self) -> Iterator[User]:
        scroll_id: Optional[str] = None
        try:
            page = self._fetch(self._documents.search(
                USER_DOC_TYPE, ids=self._usernames, size=self._size,
                scroll=self._keep_alive
            ))
            while page is not None:
                if page.scroll_id is not None:
                    scroll_id = page.scroll_id
                if not page.hits:
                    break
                for hit in page.hits:
                    user_and_password = codec.transform_user(hit.doc_id,
                                                             hit.source)
                    if user_and_password is not None:
                        yield user_and_password.user
                if scroll_id is None:
                    break
                page = self._fetch(
                    self._documents.scroll(scroll_id, self._keep_alive)
                )
        finally:
            if scroll_id is not None:
                self._release(scroll_id)

    def _fetch(self, future: Future) -> Optional[SearchPage]:
        try:
            page: SearchPage = futures.wait(future, self._timeout,
                                            'a page of users')
        except Exception as e:
            if is_index_not_found(e):
                logger.debug('could not retrieve users because security'
                             ' index does not exist')
                return None
            raise
        return page

    def _release(self, scroll_id: str) -> None:
        def _cleared(future: Future) -> None:
            exc = future.exception()
            if exc is not None:
                logger.warning('failed to clear scroll [%s]: %s', scroll_id,
                               exc)

        self._documents.clear_scroll(scroll_id).add_done_callback(_cleared)
