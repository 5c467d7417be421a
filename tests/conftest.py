import os
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from aiolimiter import AsyncLimiter

from src.app_config import DEFAULT_SYSTEM_PROMPT, AppConfig
from src.catalog_store import CatalogStore
from src.database import create_session_factory
from src.job_runner import JobRunner
from src.missing_key_ledger import MissingKeyLedger
from src.progress_tracker import ProgressTracker
from src.translator import AITranslator

LANGUAGES = {"en": "English", "es": "Spanish", "fr": "French"}


def make_completion(content):
    """Shape of an ``AsyncOpenAI`` chat completion response, as far as the translator reads it."""
    return MagicMock(choices=[MagicMock(message=MagicMock(content=content))])


def echo_translation(**kwargs):
    """Side effect for ``chat.completions.create`` that 'translates' by tagging the user text."""
    user_text = kwargs['messages'][-1]['content']
    return make_completion(f"{user_text} (translated)")


@pytest.fixture(autouse=True)
def fixed_token_count():
    """Keep tiktoken from downloading encodings while tests run."""
    with patch('src.translator.count_tokens', return_value=8):
        yield


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite:///{os.path.join(str(tmp_path), 'storage', 'translation.db')}"


@pytest.fixture
def session_factory(database_url):
    factory = create_session_factory(database_url)
    yield factory
    factory.kw['bind'].dispose()


@pytest.fixture
def catalog_store(tmp_path):
    return CatalogStore(os.path.join(str(tmp_path), 'lang'))


@pytest.fixture
def ledger(session_factory):
    return MissingKeyLedger(session_factory, source_locale='en')


@pytest.fixture
def progress(session_factory):
    return ProgressTracker(session_factory)


@pytest.fixture
def mock_openai_client():
    client = MagicMock()
    client.chat.completions.create = AsyncMock(side_effect=echo_translation)
    return client


@pytest.fixture
def translator(mock_openai_client):
    return AITranslator(
        client=mock_openai_client,
        model_name='gpt-4o-mini',
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        languages=LANGUAGES,
        rate_limiter=AsyncLimiter(max_rate=1000, time_period=60),
    )


@pytest.fixture
def app_config(tmp_path, database_url):
    return AppConfig(
        project_root=str(tmp_path),
        lang_path=os.path.join(str(tmp_path), 'lang'),
        database_url=database_url,
        source_locale='en',
        languages=dict(LANGUAGES),
        target_locales=['es', 'fr'],
        model_name='gpt-4o-mini',
        system_prompt=DEFAULT_SYSTEM_PROMPT,
        rate_limit_per_minute=1000,
        request_timeout=30,
        batch_size=2,
        concurrent_jobs=3,
        max_tries=2,
        scan_timeout=5,
        translation_timeout=5,
        delay_between_requests=0,
        endpoint_timeout=5,
        max_identifier_length=64,
        path_separators=['/', '\\'],
        render_collaborator=None,
        openai_client=None,
    )


@pytest.fixture
def job_runner():
    return JobRunner(concurrency=3, base_delay=0, jitter=0, show_progress=False)
