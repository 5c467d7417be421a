"""Translates one batch of source strings into one target locale."""
import asyncio
import logging
from dataclasses import dataclass, field
from typing import Dict, List, Mapping

from src.bookkeeping import best_effort
from src.catalog_store import CatalogStore, is_translated
from src.missing_key_ledger import MissingKeyLedger
from src.models import TaskType
from src.progress_tracker import ProgressTracker
from src.translator import AITranslator

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    locale: str
    attempted: int
    skipped: List[str] = field(default_factory=list)
    translated: Dict[str, str] = field(default_factory=dict)
    failed: List[str] = field(default_factory=list)
    written: int = 0


class TranslationWorker:
    """
    Runs the translate-merge-count cycle for a batch.

    Progress counts work attempted: ``completed`` grows by the batch size
    once the batch has run, whatever the individual results. Items the
    translator gave no result for are additionally counted in ``failed``.
    """

    def __init__(
            self,
            translator: AITranslator,
            catalog_store: CatalogStore,
            ledger: MissingKeyLedger,
            progress: ProgressTracker,
            call_delay: float = 0.1
    ):
        self.translator = translator
        self.catalog_store = catalog_store
        self.ledger = ledger
        self.progress = progress
        self.call_delay = call_delay

    async def _translate_pending(self, strings: Mapping[str, str], locale: str, result: BatchResult) -> None:
        existing = await asyncio.to_thread(self.catalog_store.read, locale)

        for key, source_text in strings.items():
            if is_translated(key, existing.get(key)):
                result.skipped.append(key)
                continue

            translated = await self.translator.translate(source_text or key, locale)
            if translated:
                result.translated[key] = translated
            else:
                result.failed.append(key)

            if self.call_delay > 0:
                await asyncio.sleep(self.call_delay)

        if result.translated:
            result.written = await asyncio.to_thread(
                self.catalog_store.merge_translated_batch, locale, result.translated
            )

    async def translate_batch(self, strings: Mapping[str, str], locale: str) -> BatchResult:
        """
        Translate ``strings`` (key -> source text) into ``locale`` and merge the results.

        Raises:
            Any unexpected error or cancellation (e.g. the job timeout),
            after adding the whole batch to ``failed``.
        """
        result = BatchResult(locale=locale, attempted=len(strings))
        try:
            await self._translate_pending(strings, locale, result)
        except BaseException as exc:
            if isinstance(exc, asyncio.CancelledError):
                logger.error(f"Translation batch for '{locale}' was cancelled before it finished.")
            else:
                logger.error(f"Translation batch failed for '{locale}': {exc}")
            with best_effort(f"count failed batch for '{locale}'"):
                await asyncio.to_thread(self.progress.increment_failed, TaskType.TRANSLATION, locale, len(strings))
            raise

        if result.failed:
            with best_effort(f"count failed items for '{locale}'"):
                await asyncio.to_thread(
                    self.progress.increment_failed, TaskType.TRANSLATION, locale, len(result.failed)
                )
        with best_effort(f"count completed batch for '{locale}'"):
            await asyncio.to_thread(self.progress.increment_completed, TaskType.TRANSLATION, locale, len(strings))
        if result.translated:
            with best_effort(f"clear translated keys from ledger for '{locale}'"):
                await asyncio.to_thread(self.ledger.delete_keys, locale, list(result.translated))

        logger.info(
            f"Translated {len(result.translated)}/{result.attempted} string(s) to '{locale}' "
            f"({len(result.skipped)} already translated, {len(result.failed)} without result)."
        )
        return result
