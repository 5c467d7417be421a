"""Renders one registered page and collects the text keys it looks up."""
import asyncio
import logging
from typing import Optional
from urllib.parse import urlparse

from src.bookkeeping import best_effort, flush_key_buffer
from src.catalog_store import CatalogStore
from src.key_buffer import RequestKeyBuffer
from src.key_filter import DefaultKeyFilter, KeyPolicy
from src.missing_key_ledger import MissingKeyLedger
from src.models import TaskType
from src.progress_tracker import ProgressTracker
from src.render import CollectionContext, RenderCollaborator

logger = logging.getLogger(__name__)


def path_and_query(url: str) -> str:
    """``https://site/a/b?x=1`` -> ``/a/b?x=1``; an empty path becomes ``/``."""
    parsed = urlparse(url)
    path = parsed.path or '/'
    if parsed.query:
        path = f"{path}?{parsed.query}"
    return path


class PageScanWorker:
    """
    Scans pages through a render collaborator.

    Each call to :meth:`scan` owns its own buffer and collection context. When
    the collaborator does not support concurrent renders, renders are
    serialized behind a lock while the surrounding bookkeeping still runs
    concurrently.
    """

    def __init__(
            self,
            renderer: RenderCollaborator,
            catalog_store: CatalogStore,
            ledger: MissingKeyLedger,
            progress: ProgressTracker,
            source_locale: str,
            key_filter: Optional[KeyPolicy] = None,
            delay_between_requests: float = 0.0
    ):
        self.renderer = renderer
        self.catalog_store = catalog_store
        self.ledger = ledger
        self.progress = progress
        self.source_locale = source_locale
        self.key_filter = key_filter or DefaultKeyFilter()
        self.delay_between_requests = delay_between_requests
        self._render_lock = None
        if not getattr(renderer, 'supports_concurrent_renders', False):
            self._render_lock = asyncio.Lock()

    async def _render(self, path: str, context: CollectionContext) -> None:
        if self._render_lock is None:
            await self.renderer.render(path, context)
            return
        async with self._render_lock:
            await self.renderer.render(path, context)

    async def scan(self, url: str) -> int:
        """
        Render ``url`` in collection mode and flush what it reported.

        Returns:
            The number of buffered observations (source keys plus missing
            target lookups).

        Raises:
            Whatever the renderer raised, after counting the scan as failed.
        """
        buffer = RequestKeyBuffer()
        context = CollectionContext(buffer, self.key_filter, self.source_locale)
        path = path_and_query(url)
        succeeded = False
        observed = 0

        logger.info(f"Scanning URL: {url}")
        try:
            if self.delay_between_requests > 0:
                await asyncio.sleep(self.delay_between_requests)
            await self._render(path, context)
            succeeded = True
        finally:
            context.close()
            observed = len(buffer)
            await asyncio.to_thread(
                flush_key_buffer, buffer, self.catalog_store, self.ledger, self.source_locale
            )
            if succeeded:
                with best_effort("count completed scan"):
                    await asyncio.to_thread(self.progress.increment_completed, TaskType.EXTRACTION, None, 1)
            else:
                logger.error(f"Failed to scan '{url}'.")
                with best_effort("count failed scan"):
                    await asyncio.to_thread(self.progress.increment_failed, TaskType.EXTRACTION, None, 1)

        logger.info(f"Scanned '{url}': {observed} key observation(s).")
        return observed
