"""
SQLAlchemy models for the pipeline's shared bookkeeping.
Supports SQLite (default) and PostgreSQL backends.
"""

from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import (
    Boolean, Column, DateTime, Index, Integer, String, Text, UniqueConstraint
)
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


class TaskType(str, Enum):
    EXTRACTION = 'extraction'
    TRANSLATION = 'translation'


class UrlKind(str, Enum):
    PAGE = 'page'
    API_ENDPOINT = 'api-endpoint'


class TranslationProgress(Base):
    """Counters for one batch of work: the extraction run, or one locale's translation run."""
    __tablename__ = 'translation_progress'

    id = Column(Integer, primary_key=True, autoincrement=True)
    type = Column(String(20), nullable=False)
    locale = Column(String(10), nullable=True)
    total = Column(Integer, nullable=False, default=0)
    completed = Column(Integer, nullable=False, default=0)
    failed = Column(Integer, nullable=False, default=0)
    started_at = Column(DateTime, nullable=True)
    updated_at = Column(DateTime, nullable=True)
    completed_at = Column(DateTime, nullable=True)

    __table_args__ = (
        UniqueConstraint('type', 'locale', name='uq_progress_type_locale'),
    )


class MissingTranslation(Base):
    """A key looked up in a target locale without a real translation."""
    __tablename__ = 'missing_translations'

    id = Column(Integer, primary_key=True, autoincrement=True)
    key = Column(String(500), nullable=False)
    locale = Column(String(10), nullable=False)
    occurrences = Column(Integer, nullable=False, default=1)
    first_seen = Column(DateTime, nullable=False, default=utcnow)
    last_seen = Column(DateTime, nullable=False, default=utcnow)

    __table_args__ = (
        UniqueConstraint('key', 'locale', name='uq_key_locale'),
        Index('idx_missing_locale', 'locale'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'key': self.key,
            'locale': self.locale,
            'occurrences': self.occurrences,
            'first_seen': self.first_seen.isoformat() if self.first_seen else '',
            'last_seen': self.last_seen.isoformat() if self.last_seen else '',
        }


class TranslationUrl(Base):
    """A page to scan, or an API endpoint that lists pages to scan."""
    __tablename__ = 'translation_urls'

    id = Column(Integer, primary_key=True, autoincrement=True)
    url = Column(Text, nullable=False, unique=True)
    active = Column(Boolean, nullable=False, default=True)
    kind = Column(String(20), nullable=False, default=UrlKind.PAGE.value)
    created_at = Column(DateTime, default=utcnow)

    __table_args__ = (
        Index('idx_url_active', 'active'),
        Index('idx_url_kind', 'kind'),
        Index('idx_url_active_kind', 'active', 'kind'),
    )

    def to_dict(self) -> dict:
        return {
            'id': self.id,
            'url': self.url,
            'active': bool(self.active),
            'kind': self.kind,
        }
