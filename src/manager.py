"""
Operator facade over the extraction and translation pipeline.

Actions return a :class:`StatusMessage` for display instead of raising, and
queue their units of work on a :class:`JobRunner`. Call
:meth:`TranslationManager.run_pending_jobs` to execute what was queued.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Union

from aiolimiter import AsyncLimiter

from src.app_config import AppConfig
from src.catalog_store import CatalogStore, is_translated
from src.database import SessionFactory, create_session_factory
from src.job_runner import Job, JobReport, JobRunner
from src.key_filter import DefaultKeyFilter, KeyPolicy
from src.missing_key_ledger import MissingKeyLedger
from src.models import TaskType, UrlKind
from src.progress_tracker import ProgressTracker
from src.render import RenderCollaborator, load_render_collaborator
from src.scan_worker import PageScanWorker
from src.translation_worker import TranslationWorker
from src.translator import AITranslator
from src.url_registry import EndpointFetcher, UrlRegistry

logger = logging.getLogger(__name__)

STATUS_SUCCESS = 'success'
STATUS_INFO = 'info'
STATUS_WARNING = 'warning'
STATUS_ERROR = 'error'

NOT_CONFIGURED_MESSAGE = "OpenAI API key not configured."


@dataclass(frozen=True)
class StatusMessage:
    message: str
    kind: str = STATUS_SUCCESS

    @property
    def ok(self) -> bool:
        return self.kind in (STATUS_SUCCESS, STATUS_INFO)


def split_lines(value: Union[str, Iterable[str]]) -> List[str]:
    """Newline-separated text or an iterable of strings -> trimmed, non-empty entries."""
    if isinstance(value, str):
        value = value.splitlines()
    return [line.strip() for line in value if line and line.strip()]


def chunked(strings: Dict[str, str], size: int) -> List[Dict[str, str]]:
    items = list(strings.items())
    size = max(1, size)
    return [dict(items[start:start + size]) for start in range(0, len(items), size)]


class TranslationManager:
    def __init__(
            self,
            config: AppConfig,
            session_factory: SessionFactory,
            translator: AITranslator,
            renderer: Optional[RenderCollaborator] = None,
            runner: Optional[JobRunner] = None,
            key_filter: Optional[KeyPolicy] = None,
            fetcher: Optional[EndpointFetcher] = None,
            call_delay: float = 0.1
    ):
        self.config = config
        self.catalog_store = CatalogStore(config.lang_path)
        self.ledger = MissingKeyLedger(session_factory, config.source_locale)
        self.progress = ProgressTracker(session_factory)
        self.registry = UrlRegistry(session_factory, fetcher or EndpointFetcher(timeout=config.endpoint_timeout))
        self.translator = translator
        self.runner = runner or JobRunner(concurrency=config.concurrent_jobs)
        self.key_filter = key_filter or DefaultKeyFilter(
            max_identifier_length=config.max_identifier_length,
            path_separators=list(config.path_separators),
        )
        self.translation_worker = TranslationWorker(
            translator, self.catalog_store, self.ledger, self.progress, call_delay=call_delay
        )
        self.scan_worker = None
        if renderer is not None:
            self.scan_worker = PageScanWorker(
                renderer,
                self.catalog_store,
                self.ledger,
                self.progress,
                config.source_locale,
                key_filter=self.key_filter,
                delay_between_requests=config.delay_between_requests,
            )

    @classmethod
    def from_config(cls, config: AppConfig) -> 'TranslationManager':
        """Wire every component from the loaded configuration."""
        translator = AITranslator(
            client=config.openai_client,
            model_name=config.model_name,
            system_prompt=config.system_prompt,
            languages=config.languages,
            rate_limiter=AsyncLimiter(max_rate=config.rate_limit_per_minute, time_period=60),
            request_timeout=config.request_timeout,
        )
        renderer = None
        if config.render_collaborator:
            renderer = load_render_collaborator(config.render_collaborator)
        return cls(config, create_session_factory(config.database_url), translator, renderer=renderer)

    @property
    def source_locale(self) -> str:
        return self.config.source_locale

    @property
    def target_locales(self) -> List[str]:
        return list(self.config.target_locales)

    # URLs

    def add_urls(self, urls: Union[str, Iterable[str]]) -> StatusMessage:
        lines = split_lines(urls)
        if not lines:
            return StatusMessage("Please enter at least one URL.", STATUS_WARNING)
        added = self.registry.add_bulk(lines)
        skipped = len(lines) - added
        message = f"Added {added} new URL(s)."
        if skipped > 0:
            message += f" {skipped} duplicate(s) skipped."
        return StatusMessage(message)

    async def add_endpoints(self, endpoints: Union[str, Iterable[str]]) -> StatusMessage:
        lines = split_lines(endpoints)
        if not lines:
            return StatusMessage("Please enter at least one API endpoint.", STATUS_WARNING)
        added = await self.registry.import_from_endpoints(lines)
        return StatusMessage(f"Processed {len(lines)} API endpoint(s). {added} new URL(s) collected.")

    async def refresh_endpoints(self) -> StatusMessage:
        added = await self.registry.refresh_all()
        return StatusMessage(f"Refreshed all API endpoints. {added} new URL(s) added.")

    def list_urls(self, kind: Optional[Union[UrlKind, str]] = None) -> List[dict]:
        return [entry.to_dict() for entry in self.registry.list_entries(kind)]

    def toggle_url(self, url_id: int) -> StatusMessage:
        active = self.registry.toggle_active(url_id)
        if active is None:
            return StatusMessage(f"URL #{url_id} not found.", STATUS_ERROR)
        return StatusMessage(f"URL #{url_id} {'activated' if active else 'deactivated'}.")

    def remove_url(self, url_id: int) -> StatusMessage:
        if not self.registry.remove(url_id):
            return StatusMessage(f"URL #{url_id} not found.", STATUS_ERROR)
        return StatusMessage(f"URL #{url_id} removed.")

    def clear_urls(self, kind: Optional[Union[UrlKind, str]] = None) -> StatusMessage:
        if kind is None:
            removed = self.registry.clear_all()
        else:
            removed = self.registry.clear_by_kind(kind)
        return StatusMessage(f"Removed {removed} URL(s).")

    # Extraction

    def collect_strings(self) -> StatusMessage:
        """Start an extraction run: one scan job per active page URL."""
        if self.scan_worker is None:
            return StatusMessage("No render collaborator configured; cannot scan pages.", STATUS_ERROR)

        urls = self.registry.list_scannable()
        if not urls:
            return StatusMessage("No active URLs to extract from.", STATUS_ERROR)

        self.progress.start_batch(TaskType.EXTRACTION, None, len(urls))
        for url in urls:
            self.runner.dispatch(Job(
                name=f"scan {url}",
                factory=lambda url=url: self.scan_worker.scan(url),
                timeout=self.config.scan_timeout,
                max_tries=self.config.max_tries,
            ))
        return StatusMessage(f"Started collecting strings from {len(urls)} URLs!")

    # Translation

    def _dispatch_batches(self, strings: Dict[str, str], locale: str) -> int:
        batches = chunked(strings, self.config.batch_size)
        for index, batch in enumerate(batches, start=1):
            self.runner.dispatch(Job(
                name=f"translate {locale} batch {index}/{len(batches)}",
                factory=lambda batch=batch: self.translation_worker.translate_batch(batch, locale),
                timeout=self.config.translation_timeout,
                max_tries=self.config.max_tries,
            ))
        return len(batches)

    def translate_all(self, locales: Optional[Iterable[str]] = None) -> StatusMessage:
        """Queue every untranslated source string for each target locale."""
        source = self.catalog_store.read(self.source_locale)
        if not source:
            return StatusMessage(f"No strings found in {self.source_locale}.json.", STATUS_ERROR)
        if not self.translator.is_configured():
            return StatusMessage(NOT_CONFIGURED_MESSAGE, STATUS_ERROR)

        locales = list(locales) if locales is not None else self.target_locales
        total_untranslated = 0
        dispatched_locales = 0
        for locale in locales:
            if locale == self.source_locale:
                continue
            untranslated = self.catalog_store.untranslated(self.source_locale, locale)
            if not untranslated:
                continue
            total_untranslated += len(untranslated)
            dispatched_locales += 1
            self.progress.start_batch(TaskType.TRANSLATION, locale, len(untranslated))
            self._dispatch_batches(untranslated, locale)

        if total_untranslated == 0:
            return StatusMessage("All strings are already translated!", STATUS_INFO)
        return StatusMessage(f"Started translating {total_untranslated} strings to {dispatched_locales} languages!")

    def translate_missing_for_locale(self, locale: str) -> StatusMessage:
        """Queue every ledger key of ``locale`` and clear the locale from the ledger."""
        if not self.translator.is_configured():
            return StatusMessage(NOT_CONFIGURED_MESSAGE, STATUS_ERROR)

        keys = self.ledger.keys_for_locale(locale)
        if not keys:
            return StatusMessage(f"No missing keys for {locale}.", STATUS_INFO)

        source = self.catalog_store.read(self.source_locale)
        strings = {key: source.get(key) or key for key in keys}
        self.progress.start_batch(TaskType.TRANSLATION, locale, len(strings))
        self._dispatch_batches(strings, locale)
        self.ledger.clear_locale(locale)
        return StatusMessage(f"Queued {len(strings)} missing keys for {self.config.language_name(locale)}.")

    def translate_missing_key(self, record_id: int) -> StatusMessage:
        """Queue one ledger record as a single-item batch and drop the record."""
        if not self.translator.is_configured():
            return StatusMessage(NOT_CONFIGURED_MESSAGE, STATUS_ERROR)

        record = self.ledger.get(record_id)
        if record is None:
            return StatusMessage(f"Missing key #{record_id} not found.", STATUS_ERROR)

        source = self.catalog_store.read(self.source_locale)
        self._dispatch_batches({record.key: source.get(record.key) or record.key}, record.locale)
        self.ledger.delete(record_id)
        return StatusMessage(f"Queued \"{record.key}\" for {record.locale} translation.")

    async def translate_single(self, key: str, locale: str) -> StatusMessage:
        """Translate one catalog entry right away, outside the job queue."""
        if not self.translator.is_configured():
            return StatusMessage(NOT_CONFIGURED_MESSAGE, STATUS_ERROR)

        source = await asyncio.to_thread(self.catalog_store.read, self.source_locale)
        translated = await self.translator.translate(source.get(key) or key, locale)
        if not translated:
            return StatusMessage("AI translation failed.", STATUS_ERROR)
        await asyncio.to_thread(self.save_translation, locale, key, translated)
        return StatusMessage("AI translated successfully.")

    def save_translation(self, locale: str, key: str, value: str) -> StatusMessage:
        self.catalog_store.upsert_value(locale, key, value)
        if locale != self.source_locale and is_translated(key, value):
            self.ledger.delete_keys(locale, [key])
        return StatusMessage("Translation saved.")

    async def run_pending_jobs(self, description: str = "Running jobs") -> JobReport:
        return await self.runner.run_until_complete(description)

    # Status

    def translation_status(self) -> Dict[str, dict]:
        source = self.catalog_store.read(self.source_locale)
        total_source = len(source)
        status = {}
        for locale in self.target_locales:
            target = self.catalog_store.read(locale)
            translated = sum(1 for key in source if is_translated(key, target.get(key)))
            percentage = round((translated / total_source) * 100, 1) if total_source > 0 else 0
            status[locale] = {
                'name': self.config.languages.get(locale, locale.upper()),
                'locale': locale,
                'total_source': total_source,
                'total_target': len(target),
                'translated': translated,
                'missing': total_source - translated,
                'percentage': percentage,
            }
        return status

    def editable_strings(self, locale: str, search: Optional[str] = None) -> List[dict]:
        """Source strings with their ``locale`` values, optionally filtered by key or value."""
        source = self.catalog_store.read(self.source_locale)
        target = self.catalog_store.read(locale)
        needle = search.lower() if search else None

        rows = []
        for key, source_text in source.items():
            target_value = target.get(key, '')
            if needle and needle not in key.lower() and needle not in target_value.lower():
                continue
            rows.append({
                'key': key,
                'source': source_text,
                'target': target_value,
                'is_translated': is_translated(key, target_value),
            })
        return rows

    def missing_keys(self, locale: Optional[str] = None, search: Optional[str] = None) -> Dict[str, List[dict]]:
        """Ledger records grouped by locale, most recently seen first."""
        grouped: Dict[str, List[dict]] = {}
        for record in self.ledger.list_all(locale=locale, search=search):
            grouped.setdefault(record.locale, []).append(record.to_dict())
        return grouped

    def progress_overview(self) -> dict:
        overview = self.progress.overview(self.target_locales)
        return {
            'extraction': overview['extraction'].to_dict(),
            'translation': {locale: snapshot.to_dict() for locale, snapshot in overview['translation'].items()},
        }

    def reset_progress(self) -> StatusMessage:
        self.progress.reset_all()
        return StatusMessage("Progress reset.")

    def clear_resolved_missing(self) -> StatusMessage:
        cleared = self.ledger.purge_resolved(self.catalog_store)
        return StatusMessage(f"Cleared {cleared} resolved missing key(s).")

    def clear_all_missing(self) -> StatusMessage:
        self.ledger.clear_all()
        return StatusMessage("All missing keys cleared.")
