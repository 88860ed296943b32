"""SQLAlchemy models for the document store."""

from datetime import datetime

from pytz import UTC
from sqlalchemy import JSON, Column, DateTime, ForeignKey, Integer, String
from sqlalchemy.orm import declarative_base, relationship

Base = declarative_base()


def _now() -> datetime:
    return datetime.now(tz=UTC)


class DBIndex(Base):
    """An index, i.e. a named collection of documents."""

    __tablename__ = 'native_index'

    name = Column(String(255), primary_key=True)
    created = Column(DateTime(timezone=True), default=_now)

    documents = relationship('DBDocument', back_populates='index',
                             cascade='all, delete-orphan')


class DBDocument(Base):
    """A JSON document, addressed by index, document type and id."""

    __tablename__ = 'native_document'

    index_name = Column(ForeignKey('native_index.name'), primary_key=True)
    doc_type = Column(String(64), primary_key=True)
    doc_id = Column(String(255), primary_key=True)
    version = Column(Integer, nullable=False, default=1)
    source = Column(JSON, nullable=False)
    updated = Column(DateTime(timezone=True), default=_now, onupdate=_now)

    index = relationship('DBIndex', back_populates='documents')
