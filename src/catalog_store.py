"""
Per-locale key -> text catalogs persisted as flat JSON files.

Every writer holds an exclusive advisory lock on ``<locale>.json.lock`` for
the whole read-modify-write cycle, so concurrent scan flushes, translation
merges and manual edits never lose each other's changes. Files are replaced
atomically, which lets snapshot readers skip the lock entirely.
"""
import fcntl
import json
import logging
import os
import tempfile
from contextlib import contextmanager
from typing import Dict, Iterable, Iterator, Mapping, Optional

import jsonschema

logger = logging.getLogger(__name__)

# A catalog is a JSON object whose every value is a string.
LOCALIZATION_SCHEMA = {
    "type": "object",
    "patternProperties": {
        "^.*$": {"type": "string"}
    },
    "additionalProperties": False
}


class CatalogFormatError(ValueError):
    """Raised when a catalog file exists but is not a string -> string JSON object."""


def is_translated(key: str, value: Optional[str]) -> bool:
    """
    Whether ``value`` is a real translation of ``key``.

    A value equal to its key is the "untranslated" sentinel; empty values are
    treated the same way.
    """
    return bool(value) and value != key


def serialize_catalog(translations: Mapping[str, str]) -> str:
    """Pretty, key-sorted JSON with literal non-ASCII text and unescaped slashes."""
    ordered = dict(sorted(translations.items()))
    return json.dumps(ordered, ensure_ascii=False, indent=4) + "\n"


class CatalogStore:
    """Reads and merges the catalog files stored under ``lang_path``."""

    def __init__(self, lang_path: str):
        self.lang_path = lang_path
        os.makedirs(self.lang_path, exist_ok=True)

    def locale_path(self, locale: str) -> str:
        return os.path.join(self.lang_path, f"{locale}.json")

    def _lock_path(self, locale: str) -> str:
        return self.locale_path(locale) + ".lock"

    @contextmanager
    def locked(self, locale: str) -> Iterator[None]:
        """Hold the exclusive writer lock for ``locale``; blocks while another writer has it."""
        with open(self._lock_path(locale), 'a+', encoding='utf-8') as lock_file:
            fcntl.flock(lock_file.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_file.fileno(), fcntl.LOCK_UN)

    def _load(self, locale: str) -> Dict[str, str]:
        """Strict read used by writers: a corrupt file raises instead of being overwritten."""
        file_path = self.locale_path(locale)
        if not os.path.exists(file_path):
            return {}
        with open(file_path, 'r', encoding='utf-8') as f:
            content = f.read()
        if not content.strip():
            return {}
        try:
            translations = json.loads(content)
            jsonschema.validate(instance=translations, schema=LOCALIZATION_SCHEMA)
        except json.JSONDecodeError as json_exc:
            raise CatalogFormatError(f"Catalog '{file_path}' is not valid JSON: {json_exc}") from json_exc
        except jsonschema.ValidationError as schema_exc:
            raise CatalogFormatError(
                f"Catalog '{file_path}' must map strings to strings: {schema_exc.message}"
            ) from schema_exc
        return translations

    def _write(self, locale: str, translations: Mapping[str, str]) -> None:
        file_path = self.locale_path(locale)
        fd, temp_path = tempfile.mkstemp(dir=self.lang_path, prefix=f".{locale}.", suffix=".tmp")
        try:
            with os.fdopen(fd, 'w', encoding='utf-8') as temp_f:
                temp_f.write(serialize_catalog(translations))
            os.replace(temp_path, file_path)
        except BaseException:
            if os.path.exists(temp_path):
                os.remove(temp_path)
            raise

    def read(self, locale: str) -> Dict[str, str]:
        """
        Snapshot of one locale's catalog.

        Returns an empty mapping when the file does not exist yet or cannot be
        parsed. Never raises.
        """
        try:
            return self._load(locale)
        except (CatalogFormatError, OSError) as exc:
            logger.error(f"Could not read catalog for '{locale}': {exc}")
            return {}

    def merge_new_keys(self, locale: str, keys: Iterable[str]) -> int:
        """
        Insert every key that is not in the catalog yet, with itself as the value.

        Args:
            locale: Catalog to merge into, normally the source locale.
            keys: Keys observed by a unit of work.

        Returns:
            The number of keys actually added. The file is only rewritten when
            this is greater than zero.
        """
        keys = set(keys)
        if not keys:
            return 0
        with self.locked(locale):
            translations = self._load(locale)
            added = 0
            for key in keys:
                if key not in translations:
                    translations[key] = key
                    added += 1
            if added:
                self._write(locale, translations)
        if added:
            logger.debug(f"Added {added} new key(s) to '{locale}' catalog.")
        return added

    def upsert_value(self, locale: str, key: str, value: str) -> None:
        """Overwrite a single entry, e.g. after a manual edit."""
        with self.locked(locale):
            translations = self._load(locale)
            translations[key] = value
            self._write(locale, translations)
        logger.debug(f"Saved value for key '{key}' in '{locale}' catalog.")

    def merge_translated_batch(self, locale: str, translations: Mapping[str, str]) -> int:
        """
        Write AI translations without clobbering existing real translations.

        Only keys whose current value is absent, empty or equal to the key are
        overwritten.

        Returns:
            The number of entries written.
        """
        if not translations:
            return 0
        with self.locked(locale):
            existing = self._load(locale)
            changed = 0
            for key, translated_text in translations.items():
                if not translated_text:
                    continue
                if is_translated(key, existing.get(key)):
                    logger.debug(f"Keeping existing '{locale}' translation for key '{key}'.")
                    continue
                existing[key] = translated_text
                changed += 1
            if changed:
                self._write(locale, existing)
        return changed

    def untranslated(self, source_locale: str, target_locale: str) -> Dict[str, str]:
        """Source entries (key -> source text) that have no real translation in ``target_locale``."""
        source = self.read(source_locale)
        target = self.read(target_locale)
        return {
            key: source_text
            for key, source_text in source.items()
            if not is_translated(key, target.get(key))
        }
