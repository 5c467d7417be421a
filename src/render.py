"""
The boundary between the pipeline and whatever renders pages.

A render collaborator renders a path+query in-process and, while handed a
:class:`CollectionContext` that is collecting, reports every text lookup it
performs through ``context.report(key, locale, resolved)``. The context is
created per call, so concurrent renders never share collection state.
"""
import asyncio
import html
import importlib
import inspect
import logging
import os
import re
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, Optional, Protocol, Tuple

from src.bookkeeping import best_effort, flush_key_buffer
from src.catalog_store import CatalogStore, is_translated
from src.key_buffer import RequestKeyBuffer
from src.key_filter import DefaultKeyFilter, KeyPolicy
from src.missing_key_ledger import MissingKeyLedger

logger = logging.getLogger(__name__)

MARKER_PATTERN = re.compile(r'<!--T_START:(.*?):T_END-->', re.DOTALL)


class CollectionContext:
    """Per-render collection state: the buffer to fill and whether to fill it."""

    def __init__(
            self,
            buffer: RequestKeyBuffer,
            key_filter: KeyPolicy,
            source_locale: str,
            collecting: bool = True
    ):
        self.buffer = buffer
        self.key_filter = key_filter
        self.source_locale = source_locale
        self.collecting = collecting

    def close(self) -> None:
        """Leave collection mode; later reports are ignored."""
        self.collecting = False

    def report(self, key: str, locale: str, resolved: bool) -> None:
        """
        Record one text lookup made by the renderer.

        Every accepted key is added to the source set, so the source catalog
        always knows about it. Unresolved lookups in a target locale are also
        queued for the missing-key ledger. Never raises into the renderer.
        """
        if not self.collecting:
            return
        with best_effort("buffer text lookup"):
            if not self.key_filter.accepts(key):
                return
            self.buffer.add_source_key(key)
            if locale != self.source_locale and not resolved:
                self.buffer.add_target_key(key, locale)


class RenderCollaborator(Protocol):
    supports_concurrent_renders: bool

    async def render(self, path: str, context: CollectionContext) -> Any:
        ...


class CallableRenderer:
    """
    Adapts a plain ``render(path, context)`` callable.

    Synchronous callables run in a worker thread. Unless told otherwise the
    wrapped callable is assumed not to be safe for concurrent renders.
    """

    def __init__(self, render_func: Callable[..., Any], supports_concurrent_renders: bool = False):
        self.render_func = render_func
        self.supports_concurrent_renders = supports_concurrent_renders

    async def render(self, path: str, context: CollectionContext) -> Any:
        if inspect.iscoroutinefunction(self.render_func):
            return await self.render_func(path, context)
        return await asyncio.to_thread(self.render_func, path, context)


def extract_marked_keys(rendered_html: str) -> list:
    """Keys embedded as ``<!--T_START:key:T_END-->`` markers, HTML-unescaped, in page order."""
    return [html.unescape(match) for match in MARKER_PATTERN.findall(rendered_html or '')]


class HtmlMarkerRenderer:
    """
    Collaborator for templates that cannot call back into Python.

    ``render_html(path)`` returns the page HTML with every looked-up source
    string wrapped in a marker comment. Markers carry source text, so each one
    is reported as a source-locale lookup.
    """

    def __init__(self, render_html: Callable[[str], Any], supports_concurrent_renders: bool = True):
        self.render_html = render_html
        self.supports_concurrent_renders = supports_concurrent_renders

    async def render(self, path: str, context: CollectionContext) -> str:
        if inspect.iscoroutinefunction(self.render_html):
            rendered = await self.render_html(path)
        else:
            rendered = await asyncio.to_thread(self.render_html, path)
        for key in extract_marked_keys(rendered):
            context.report(key, context.source_locale, True)
        return rendered


def load_render_collaborator(dotted_path: str) -> RenderCollaborator:
    """
    Import a collaborator from ``package.module:attribute`` (or ``package.module.attribute``).

    Classes are instantiated without arguments; plain callables without a
    ``render`` method are wrapped in :class:`CallableRenderer`.
    """
    if ':' in dotted_path:
        module_name, attribute_name = dotted_path.split(':', 1)
    else:
        module_name, _, attribute_name = dotted_path.rpartition('.')
    if not module_name or not attribute_name:
        raise ValueError(f"Invalid render collaborator path: '{dotted_path}'")

    module = importlib.import_module(module_name)
    target = getattr(module, attribute_name)
    if inspect.isclass(target):
        target = target()
    if hasattr(target, 'render'):
        if not hasattr(target, 'supports_concurrent_renders'):
            target.supports_concurrent_renders = False
        logger.info(f"Loaded render collaborator '{dotted_path}'.")
        return target
    if callable(target):
        logger.info(f"Wrapped render function '{dotted_path}'; renders will be serialized.")
        return CallableRenderer(target)
    raise TypeError(f"'{dotted_path}' is neither a render collaborator nor a callable.")


class CatalogLookup:
    """
    Catalog-backed ``translate(key, locale)`` for renderers.

    Falls back to the key itself when there is no real translation and, when
    given a context, reports the lookup to it. Catalogs are cached and reloaded
    when their file changes on disk.
    """

    def __init__(self, catalog_store: CatalogStore, source_locale: str):
        self.catalog_store = catalog_store
        self.source_locale = source_locale
        self._cache: Dict[str, Tuple[Optional[float], Dict[str, str]]] = {}

    def _mtime(self, locale: str) -> Optional[float]:
        try:
            return os.path.getmtime(self.catalog_store.locale_path(locale))
        except OSError:
            return None

    def catalog(self, locale: str) -> Dict[str, str]:
        mtime = self._mtime(locale)
        cached = self._cache.get(locale)
        if cached is None or cached[0] != mtime:
            cached = (mtime, self.catalog_store.read(locale))
            self._cache[locale] = cached
        return cached[1]

    def invalidate(self, locale: Optional[str] = None) -> None:
        if locale is None:
            self._cache.clear()
        else:
            self._cache.pop(locale, None)

    def translate(self, key: str, locale: str, context: Optional[CollectionContext] = None) -> str:
        value = self.catalog(locale).get(key)
        if locale == self.source_locale:
            resolved = value is not None
        else:
            resolved = is_translated(key, value)
        if context is not None:
            context.report(key, locale, resolved)
        return value if resolved else key


@contextmanager
def collect_during(
        catalog_store: CatalogStore,
        ledger: MissingKeyLedger,
        source_locale: str,
        key_filter: Optional[KeyPolicy] = None
) -> Iterator[CollectionContext]:
    """
    Collect lookups for one ordinary page render and flush them once afterwards.

    The flush happens even when the render raises, and its own failures are
    only logged.
    """
    buffer = RequestKeyBuffer()
    context = CollectionContext(buffer, key_filter or DefaultKeyFilter(), source_locale)
    try:
        yield context
    finally:
        context.close()
        flush_key_buffer(buffer, catalog_store, ledger, source_locale)
