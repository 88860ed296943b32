"""
Document store for native user data.

Documents are JSON objects addressed by document type and id within a single
index, persisted with SQLAlchemy. Every operation runs on a worker thread and
returns a :class:`concurrent.futures.Future`, so that callers are never
blocked by the database.

An index does not exist until something is written to it. Reading from,
updating or scanning a missing index fails with :class:`IndexNotFound`.
"""

import logging
import threading
import time
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Iterable, List, Mapping, NamedTuple, Optional

from pytz import UTC
from sqlalchemy import inspect
from sqlalchemy.engine import Engine
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import sessionmaker
from sqlalchemy.orm.session import Session

from ...domain import ClusterState, IndexRouting
from . import util
from .models import Base, DBDocument, DBIndex

logger = logging.getLogger(__name__)


class DocumentStoreError(RuntimeError):
    """An operation on the document store failed."""


class IndexNotFound(DocumentStoreError):
    """The index does not exist."""

    def __init__(self, index: str) -> None:
        """Keep the name of the missing index."""
        self.index = index
        super(IndexNotFound, self).__init__(f'no such index [{index}]')


class DocumentMissing(DocumentStoreError):
    """The document to update does not exist."""


class VersionConflict(DocumentStoreError):
    """The document was changed by someone else during the update."""


class ScrollNotFound(DocumentStoreError):
    """The scroll id is unknown, or the scroll has expired."""


def _caused_by(e: Optional[BaseException], *types: type) -> bool:
    seen = set()
    while e is not None and id(e) not in seen:
        if isinstance(e, types):
            return True
        seen.add(id(e))
        e = e.__cause__
    return False


def is_index_not_found(e: BaseException) -> bool:
    """Determine whether ``e`` was caused by a missing index."""
    return _caused_by(e, IndexNotFound)


def is_index_not_found_or_document_missing(e: BaseException) -> bool:
    """Determine whether ``e`` was caused by a missing index or document."""
    return _caused_by(e, IndexNotFound, DocumentMissing)


class RefreshPolicy(Enum):
    """When a write becomes visible to searches."""

    NONE = 'false'
    IMMEDIATE = 'true'
    WAIT_UNTIL = 'wait_for'


class Result(Enum):
    """Outcome of a write."""

    CREATED = 'created'
    UPDATED = 'updated'
    DELETED = 'deleted'
    NOT_FOUND = 'not_found'
    NOOP = 'noop'


class Hit(NamedTuple):
    """A document matched by a search."""

    doc_id: str
    source: Dict[str, Any]


class SearchPage(NamedTuple):
    """One page of search results."""

    hits: List[Hit]
    total: int
    scroll_id: Optional[str] = None


class _Scroll(object):
    """Server-side state of an open scroll."""

    def __init__(self, doc_type: str, ids: List[str], size: int,
                 keep_alive: float) -> None:
        self.doc_type = doc_type
        self.ids = ids
        self.size = size
        self.position = 0
        self.touch(keep_alive)

    def touch(self, keep_alive: float) -> None:
        self.expires = time.monotonic() + keep_alive

    @property
    def expired(self) -> bool:
        return time.monotonic() > self.expires

    def next_ids(self) -> List[str]:
        ids = self.ids[self.position:self.position + self.size]
        self.position += len(ids)
        return ids


class DocumentStore(object):
    """
    Asynchronous client for documents in one index.

    Writes are committed before their future completes, so the refresh
    policy of a write has no further effect.
    """

    def __init__(self, engine: Engine, index: str,
                 executor: Optional[ThreadPoolExecutor] = None,
                 max_workers: int = 4) -> None:
        """Bind to ``engine``, storing documents in ``index``."""
        self._engine = engine
        self._sessions = sessionmaker(bind=engine)
        self._index = index
        if executor is None:
            executor = ThreadPoolExecutor(
                max_workers=max_workers,
                thread_name_prefix='native-users-documents'
            )
        self._executor = executor
        self._scrolls: Dict[str, _Scroll] = {}
        self._scroll_lock = threading.Lock()

    @classmethod
    def from_uri(cls, database_uri: str, index: str,
                 **kwargs: Any) -> 'DocumentStore':
        """Create a store for the database at ``database_uri``."""
        return cls(util.get_engine(database_uri), index, **kwargs)

    @property
    def index_name(self) -> str:
        """Name of the index in which documents are stored."""
        return self._index

    def create_all(self) -> None:
        """Create all tables in the database."""
        Base.metadata.create_all(self._engine)

    def drop_all(self) -> None:
        """Drop all tables in the database."""
        Base.metadata.drop_all(self._engine)

    def close(self) -> None:
        """Wait for pending operations, and release database connections."""
        self._executor.shutdown(wait=True)
        self._engine.dispose()

    def cluster_state(self) -> ClusterState:
        """
        Describe the database in terms of :class:`.ClusterState`.

        An unreachable database is reported as not yet recovered, and missing
        tables as an out-of-date template.
        """
        try:
            inspector = inspect(self._engine)
            if not all(inspector.has_table(table.name)
                       for table in Base.metadata.sorted_tables):
                return ClusterState(template_up_to_date=False)
            with util.transaction(self._sessions) as session:
                names = [name for name, in session.query(DBIndex.name)]
        except SQLAlchemyError as e:
            logger.error('Encountered an error talking to database: %s', e)
            return ClusterState(recovered=False, template_up_to_date=False)
        return ClusterState(indices={
            name: IndexRouting(name, all_primaries_active=True)
            for name in names
        })

    def create_index(self) -> Future:
        """Create the index if it does not already exist."""
        return self._executor.submit(self._create_index)

    def get(self, doc_type: str, doc_id: str) -> Future:
        """
        Get the source of a document.

        The future resolves to ``None`` if there is no such document.
        """
        return self._executor.submit(self._get, doc_type, doc_id)

    def index(self, doc_type: str, doc_id: str, source: Mapping[str, Any],
              refresh: RefreshPolicy = RefreshPolicy.NONE) -> Future:
        """Create or replace a document. Resolves to a :class:`Result`."""
        return self._executor.submit(self._put, doc_type, doc_id, source,
                                     refresh)

    def update(self, doc_type: str, doc_id: str, doc: Mapping[str, Any],
               upsert: Optional[Mapping[str, Any]] = None,
               refresh: RefreshPolicy = RefreshPolicy.NONE) -> Future:
        """
        Merge ``doc`` into an existing document.

        If the document does not exist, ``upsert`` is stored instead; without
        an ``upsert`` the future fails with :class:`DocumentMissing`.
        Resolves to a :class:`Result`.
        """
        return self._executor.submit(self._update, doc_type, doc_id, doc,
                                     upsert, refresh)

    def delete(self, doc_type: str, doc_id: str,
               refresh: RefreshPolicy = RefreshPolicy.NONE,
               ignore_unavailable: bool = False) -> Future:
        """
        Delete a document. Resolves to a :class:`Result`.

        With ``ignore_unavailable``, a missing index is treated like a
        missing document.
        """
        return self._executor.submit(self._delete, doc_type, doc_id, refresh,
                                     ignore_unavailable)

    def search(self, doc_type: str, ids: Optional[Iterable[str]] = None,
               size: int = 10, scroll: Optional[float] = None) -> Future:
        """
        Find documents of ``doc_type``, optionally restricted to ``ids``.

        Resolves to the first :class:`SearchPage`. If ``scroll`` (a keep-alive
        in seconds) is given, the page carries a scroll id from which further
        pages can be fetched; the scroll must be released with
        :meth:`clear_scroll`.
        """
        return self._executor.submit(self._search, doc_type,
                                     list(ids) if ids else None, size, scroll)

    def scroll(self, scroll_id: str, keep_alive: float) -> Future:
        """Fetch the next :class:`SearchPage` of an open scroll."""
        return self._executor.submit(self._scroll, scroll_id, keep_alive)

    def clear_scroll(self, scroll_id: str) -> Future:
        """Release an open scroll. Resolves to whether it was open."""
        return self._executor.submit(self._clear_scroll, scroll_id)

    def _require_index(self, session: Session) -> None:
        if session.get(DBIndex, self._index) is None:
            raise IndexNotFound(self._index)

    def _ensure_index(self, session: Session) -> bool:
        if session.get(DBIndex, self._index) is not None:
            return False
        logger.debug('creating index [%s]', self._index)
        session.add(DBIndex(name=self._index))
        session.flush()
        return True

    def _create_index(self) -> bool:
        with util.transaction(self._sessions) as session:
            return self._ensure_index(session)

    def _get(self, doc_type: str, doc_id: str) -> Optional[Dict[str, Any]]:
        with util.transaction(self._sessions) as session:
            self._require_index(session)
            db_doc = session.get(DBDocument, (self._index, doc_type, doc_id))
            if db_doc is None:
                return None
            return dict(db_doc.source)

    def _put(self, doc_type: str, doc_id: str, source: Mapping[str, Any],
             refresh: RefreshPolicy) -> Result:
        logger.debug('index [%s][%s] (refresh=%s)', doc_type, doc_id,
                     refresh.value)
        try:
            with util.transaction(self._sessions) as session:
                self._ensure_index(session)
                db_doc = session.get(DBDocument,
                                     (self._index, doc_type, doc_id))
                if db_doc is None:
                    session.add(DBDocument(index_name=self._index,
                                           doc_type=doc_type, doc_id=doc_id,
                                           source=dict(source), version=1))
                    return Result.CREATED
                db_doc.source = dict(source)
                db_doc.version = db_doc.version + 1
                return Result.UPDATED
        except IntegrityError as e:
            raise VersionConflict(f'[{doc_type}][{doc_id}]: version conflict,'
                                  ' document was created concurrently') from e

    def _update(self, doc_type: str, doc_id: str, doc: Mapping[str, Any],
                upsert: Optional[Mapping[str, Any]],
                refresh: RefreshPolicy) -> Result:
        logger.debug('update [%s][%s] (refresh=%s)', doc_type, doc_id,
                     refresh.value)
        try:
            with util.transaction(self._sessions) as session:
                if upsert is None:
                    self._require_index(session)
                else:
                    self._ensure_index(session)
                key = (self._index, doc_type, doc_id)
                db_doc = session.get(DBDocument, key)
                if db_doc is None:
                    if upsert is None:
                        raise DocumentMissing(
                            f'[{doc_type}][{doc_id}]: document missing'
                        )
                    session.add(DBDocument(index_name=self._index,
                                           doc_type=doc_type, doc_id=doc_id,
                                           source=dict(upsert), version=1))
                    return Result.CREATED

                merged = dict(db_doc.source)
                merged.update(doc)
                if merged == db_doc.source:
                    return Result.NOOP
                # Only apply the change on top of the version that was read.
                applied = (
                    session.query(DBDocument)
                    .filter(DBDocument.index_name == self._index)
                    .filter(DBDocument.doc_type == doc_type)
                    .filter(DBDocument.doc_id == doc_id)
                    .filter(DBDocument.version == db_doc.version)
                    .update({
                        DBDocument.source: merged,
                        DBDocument.version: db_doc.version + 1,
                        DBDocument.updated: datetime.now(tz=UTC)
                    }, synchronize_session=False)
                )
                if not applied:
                    raise VersionConflict(f'[{doc_type}][{doc_id}]: version'
                                          ' conflict, document was changed')
                return Result.UPDATED
        except IntegrityError as e:
            raise VersionConflict(f'[{doc_type}][{doc_id}]: version conflict,'
                                  ' document was created concurrently') from e

    def _delete(self, doc_type: str, doc_id: str, refresh: RefreshPolicy,
                ignore_unavailable: bool) -> Result:
        logger.debug('delete [%s][%s] (refresh=%s)', doc_type, doc_id,
                     refresh.value)
        with util.transaction(self._sessions) as session:
            if session.get(DBIndex, self._index) is None:
                if ignore_unavailable:
                    return Result.NOT_FOUND
                raise IndexNotFound(self._index)
            db_doc = session.get(DBDocument, (self._index, doc_type, doc_id))
            if db_doc is None:
                return Result.NOT_FOUND
            session.delete(db_doc)
            return Result.DELETED

    def _load(self, session: Session, doc_type: str,
              ids: List[str]) -> List[Hit]:
        if not ids:
            return []
        docs = {
            db_doc.doc_id: db_doc for db_doc in (
                session.query(DBDocument)
                .filter(DBDocument.index_name == self._index)
                .filter(DBDocument.doc_type == doc_type)
                .filter(DBDocument.doc_id.in_(ids))
            )
        }
        # Documents deleted since the scroll was opened are skipped.
        return [Hit(doc_id, dict(docs[doc_id].source))
                for doc_id in ids if doc_id in docs]

    def _search(self, doc_type: str, ids: Optional[List[str]], size: int,
                scroll: Optional[float]) -> SearchPage:
        with util.transaction(self._sessions) as session:
            self._require_index(session)
            query = (
                session.query(DBDocument.doc_id)
                .filter(DBDocument.index_name == self._index)
                .filter(DBDocument.doc_type == doc_type)
            )
            if ids:
                query = query.filter(DBDocument.doc_id.in_(ids))
            matched = [doc_id for doc_id, in query.order_by(DBDocument.doc_id)]
            if scroll is None:
                return SearchPage(hits=self._load(session, doc_type,
                                                  matched[:size]),
                                  total=len(matched))

            context = _Scroll(doc_type, matched, size, scroll)
            hits: List[Hit] = []
            while not hits and context.position < len(context.ids):
                hits = self._load(session, doc_type, context.next_ids())

        scroll_id = uuid.uuid4().hex
        with self._scroll_lock:
            self._expire_scrolls()
            self._scrolls[scroll_id] = context
        return SearchPage(hits=hits, total=len(matched), scroll_id=scroll_id)

    def _scroll(self, scroll_id: str, keep_alive: float) -> SearchPage:
        with self._scroll_lock:
            self._expire_scrolls()
            context = self._scrolls.get(scroll_id)
            if context is None:
                raise ScrollNotFound(f'No search context found for id'
                                     f' [{scroll_id}]')
            context.touch(keep_alive)
        with util.transaction(self._sessions) as session:
            self._require_index(session)
            hits: List[Hit] = []
            # An empty page only marks the end of the snapshot.
            while not hits:
                with self._scroll_lock:
                    ids = context.next_ids()
                if not ids:
                    break
                hits = self._load(session, context.doc_type, ids)
        return SearchPage(hits=hits, total=len(context.ids),
                          scroll_id=scroll_id)

    def _clear_scroll(self, scroll_id: str) -> bool:
        with self._scroll_lock:
            return self._scrolls.pop(scroll_id, None) is not None

    def _expire_scrolls(self) -> None:
        for scroll_id in [scroll_id for scroll_id, context
                          in self._scrolls.items() if context.expired]:
            logger.debug('scroll [%s] expired', scroll_id)
            del self._scrolls[scroll_id]
