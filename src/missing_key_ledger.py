"""
Persistent ledger of keys looked up in target locales without a translation.
"""

import logging
from typing import Iterable, List, Optional

from sqlalchemy import delete, func, select

from src.catalog_store import CatalogStore, is_translated
from src.database import SessionFactory, dialect_insert
from src.models import MissingTranslation, utcnow

logger = logging.getLogger(__name__)

MAX_KEY_LENGTH = 500
MAX_LOCALE_LENGTH = 10


class MissingKeyLedger:
    """Upsert store of (key, locale) -> occurrences / first_seen / last_seen."""

    def __init__(self, session_factory: SessionFactory, source_locale: str):
        """
        Initialize the ledger.

        Args:
            session_factory: Callable returning a new SQLAlchemy session.
            source_locale: Locale whose keys are never recorded here; the
                source catalog itself is the record of those.
        """
        self._Session = session_factory
        self.source_locale = source_locale

    def record(self, key: str, locale: str) -> bool:
        """
        Count one observation of ``key`` missing in ``locale``.

        Uses a single INSERT ... ON CONFLICT DO UPDATE so concurrent callers
        can neither create duplicate rows nor lose an increment.

        Returns:
            True if the observation was stored, False if it was ignored.
        """
        if locale == self.source_locale:
            return False
        if len(key) > MAX_KEY_LENGTH or len(locale) > MAX_LOCALE_LENGTH:
            logger.warning(f"Not recording missing key for '{locale}': key or locale exceeds the column size.")
            return False

        now = utcnow()
        session = self._Session()
        try:
            insert = dialect_insert(session)
            stmt = insert(MissingTranslation).values(
                key=key, locale=locale, occurrences=1, first_seen=now, last_seen=now
            )
            stmt = stmt.on_conflict_do_update(
                index_elements=[MissingTranslation.key, MissingTranslation.locale],
                set_={
                    'occurrences': MissingTranslation.occurrences + 1,
                    'last_seen': now,
                },
            )
            session.execute(stmt)
            session.commit()
            return True
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def list_for_locale(self, locale: str) -> List[MissingTranslation]:
        session = self._Session()
        try:
            query = select(MissingTranslation).where(MissingTranslation.locale == locale)
            return list(session.scalars(query.order_by(MissingTranslation.last_seen.desc())))
        finally:
            session.close()

    def list_all(self, locale: Optional[str] = None, search: Optional[str] = None) -> List[MissingTranslation]:
        """Target-locale records, most recently seen first, optionally filtered."""
        session = self._Session()
        try:
            query = select(MissingTranslation).where(MissingTranslation.locale != self.source_locale)
            if locale:
                query = query.where(MissingTranslation.locale == locale)
            if search:
                query = query.where(MissingTranslation.key.contains(search, autoescape=True))
            return list(session.scalars(query.order_by(MissingTranslation.last_seen.desc())))
        finally:
            session.close()

    def keys_for_locale(self, locale: str) -> List[str]:
        return [record.key for record in self.list_for_locale(locale)]

    def get(self, record_id: int) -> Optional[MissingTranslation]:
        session = self._Session()
        try:
            return session.get(MissingTranslation, record_id)
        finally:
            session.close()

    def count(self) -> int:
        session = self._Session()
        try:
            query = select(func.count()).select_from(MissingTranslation).where(
                MissingTranslation.locale != self.source_locale
            )
            return session.scalar(query) or 0
        finally:
            session.close()

    def _delete(self, *criteria) -> int:
        session = self._Session()
        try:
            result = session.execute(delete(MissingTranslation).where(*criteria))
            session.commit()
            return result.rowcount or 0
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def delete(self, record_id: int) -> bool:
        return self._delete(MissingTranslation.id == record_id) > 0

    def delete_keys(self, locale: str, keys: Iterable[str]) -> int:
        keys = list(keys)
        if not keys:
            return 0
        return self._delete(MissingTranslation.locale == locale, MissingTranslation.key.in_(keys))

    def clear_locale(self, locale: str) -> int:
        return self._delete(MissingTranslation.locale == locale)

    def clear_all(self) -> int:
        return self._delete(MissingTranslation.id.isnot(None))

    def purge_resolved(self, catalog_store: CatalogStore) -> int:
        """
        Delete every record whose key now has a real translation in its locale's catalog.

        Returns:
            The number of records deleted.
        """
        catalogs = {}
        resolved = {}
        for record in self.list_all():
            if record.locale not in catalogs:
                catalogs[record.locale] = catalog_store.read(record.locale)
            if is_translated(record.key, catalogs[record.locale].get(record.key)):
                resolved.setdefault(record.locale, []).append(record.key)

        cleared = 0
        for locale, keys in resolved.items():
            cleared += self.delete_keys(locale, keys)
        if cleared:
            logger.info(f"Cleared {cleared} resolved missing key(s).")
        return cleared
