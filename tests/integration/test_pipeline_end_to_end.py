"""End-to-end runs of the extraction and translation pipeline against real storage."""
import httpx
import pytest
from aiolimiter import AsyncLimiter

from src.manager import TranslationManager
from src.models import TaskType
from src.render import CallableRenderer, CatalogLookup
from src.translator import AITranslator
from src.url_registry import EndpointFetcher
from tests.conftest import LANGUAGES

PAGES = {
    "/": ["Welcome to our shop", "Sign in", "Free shipping on every order"],
    "/about": ["About us", "Sign in", "Meet the team"],
    "/contact?ref=footer": ["Contact us", "Sign in", "Send message"],
}


class SitePages:
    """Tiny stand-in for a site's templates: every string goes through a catalog lookup."""

    supports_concurrent_renders = False

    def __init__(self, lookup: CatalogLookup, locale: str):
        self.lookup = lookup
        self.locale = locale
        self.rendered = []

    async def render(self, path, context):
        self.rendered.append(path)
        lines = [self.lookup.translate(text, self.locale, context) for text in PAGES[path]]
        # Framework lookups the key filter must drop.
        self.lookup.translate("validation.required", self.locale, context)
        return "\n".join(lines)


def build_manager(app_config, session_factory, translator, job_runner, renderer=None, fetcher=None):
    return TranslationManager(
        app_config, session_factory, translator,
        renderer=renderer, runner=job_runner, fetcher=fetcher, call_delay=0,
    )


@pytest.mark.asyncio
async def test_scanning_three_pages_fills_source_catalog(
        app_config, session_factory, translator, job_runner, catalog_store):
    site = SitePages(CatalogLookup(catalog_store, "en"), "en")
    manager = build_manager(app_config, session_factory, translator, job_runner, renderer=site)
    manager.add_urls([f"https://shop.example.com{path}" for path in PAGES])

    assert manager.collect_strings().ok
    report = await manager.run_pending_jobs()

    assert report.failed == []
    assert sorted(site.rendered) == sorted(PAGES)
    snapshot = manager.progress.get(TaskType.EXTRACTION)
    assert (snapshot.total, snapshot.completed, snapshot.failed, snapshot.status) == (3, 3, 0, 'completed')

    expected_keys = {text for texts in PAGES.values() for text in texts}
    source = manager.catalog_store.read("en")
    assert set(source) == expected_keys
    assert all(source[key] == key for key in source)
    assert manager.ledger.count() == 0


@pytest.mark.asyncio
async def test_rescanning_is_idempotent(app_config, session_factory, translator, job_runner, catalog_store):
    site = SitePages(CatalogLookup(catalog_store, "en"), "en")
    manager = build_manager(app_config, session_factory, translator, job_runner, renderer=site)
    manager.add_urls(["https://shop.example.com/about"])

    manager.collect_strings()
    await manager.run_pending_jobs()
    with open(catalog_store.locale_path("en"), encoding="utf-8") as f:
        first_pass = f.read()

    manager.collect_strings()
    await manager.run_pending_jobs()
    with open(catalog_store.locale_path("en"), encoding="utf-8") as f:
        assert f.read() == first_pass


@pytest.mark.asyncio
async def test_target_locale_renders_feed_the_missing_key_ledger(
        app_config, session_factory, translator, job_runner, catalog_store):
    catalog_store.upsert_value("es", "About us", "Sobre nosotros")
    site = SitePages(CatalogLookup(catalog_store, "en"), "es")
    manager = build_manager(app_config, session_factory, translator, job_runner, renderer=site)
    manager.add_urls(["https://shop.example.com/about"])

    manager.collect_strings()
    await manager.run_pending_jobs()

    assert sorted(manager.ledger.keys_for_locale("es")) == ["Meet the team", "Sign in"]
    assert set(catalog_store.read("en")) == {"About us", "Sign in", "Meet the team"}


@pytest.mark.asyncio
async def test_translate_es_in_batches_of_two(app_config, session_factory, translator, job_runner):
    manager = build_manager(app_config, session_factory, translator, job_runner)
    keys = ["Apple", "Banana", "Cherry", "Date", "Elderberry"]
    manager.catalog_store.merge_new_keys("en", keys)

    assert manager.translate_all(["es"]).ok
    assert len(manager.runner.pending) == 3

    report = await manager.run_pending_jobs()

    assert len(report.succeeded) == 3
    es = manager.catalog_store.read("es")
    assert es == {key: f"{key} (translated)" for key in keys}
    snapshot = manager.progress.get(TaskType.TRANSLATION, "es")
    assert (snapshot.total, snapshot.completed, snapshot.failed) == (5, 5, 0)
    assert snapshot.status == 'completed'
    assert snapshot.completed_at is not None
    assert manager.translation_status()['es']['percentage'] == 100.0


@pytest.mark.asyncio
async def test_rate_limited_translations_are_counted_as_failed(
        app_config, session_factory, mock_openai_client, job_runner):
    translator = AITranslator(
        client=mock_openai_client,
        model_name='gpt-4o-mini',
        system_prompt="Translate to {language}",
        languages=LANGUAGES,
        rate_limiter=AsyncLimiter(max_rate=3, time_period=60),
    )
    manager = build_manager(app_config, session_factory, translator, job_runner)
    manager.catalog_store.merge_new_keys("en", ["One", "Two", "Three", "Four", "Five"])

    manager.translate_all(["es"])
    report = await manager.run_pending_jobs()

    assert report.failed == []
    es = manager.catalog_store.read("es")
    assert len(es) == 3
    assert mock_openai_client.chat.completions.create.await_count == 3
    snapshot = manager.progress.get(TaskType.TRANSLATION, "es")
    assert snapshot.failed == 2
    assert snapshot.completed == 5
    assert manager.translation_status()['es']['missing'] == 2


@pytest.mark.asyncio
async def test_endpoint_import_then_scan(app_config, session_factory, translator, job_runner, catalog_store):
    endpoint = "https://shop.example.com/api/pages"

    def handler(request):
        return httpx.Response(200, json=[f"https://shop.example.com{path}" for path in PAGES])

    site = SitePages(CatalogLookup(catalog_store, "en"), "en")
    manager = build_manager(
        app_config, session_factory, translator, job_runner,
        renderer=site, fetcher=EndpointFetcher(transport=httpx.MockTransport(handler)),
    )

    status = await manager.add_endpoints(endpoint)
    assert status.message == "Processed 1 API endpoint(s). 3 new URL(s) collected."

    manager.collect_strings()
    await manager.run_pending_jobs()

    assert endpoint not in site.rendered
    assert manager.progress.get(TaskType.EXTRACTION).completed == 3


@pytest.mark.asyncio
async def test_failing_page_is_retried_then_reported(app_config, session_factory, translator, job_runner):
    attempts = []

    def render(path, context):
        attempts.append(path)
        raise RuntimeError("500 from template")

    manager = build_manager(app_config, session_factory, translator, job_runner, renderer=CallableRenderer(render))
    manager.add_urls(["https://shop.example.com/broken"])

    manager.collect_strings()
    report = await manager.run_pending_jobs()

    assert len(attempts) == app_config.max_tries
    assert [failure.job_name for failure in report.failed] == ["scan https://shop.example.com/broken"]
    snapshot = manager.progress.get(TaskType.EXTRACTION)
    assert (snapshot.completed, snapshot.failed) == (0, app_config.max_tries)
