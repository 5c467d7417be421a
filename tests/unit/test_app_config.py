"""Unit tests for the app_config module."""
import os
from unittest.mock import MagicMock, patch

import pytest
import yaml

from src.app_config import DEFAULT_SYSTEM_PROMPT, AppConfig, _build_languages, load_app_config


@pytest.fixture
def config_file(tmp_path):
    """Write a YAML config and point TRANSLATOR_CONFIG_FILE at it."""
    def write(data):
        path = tmp_path / "config.yaml"
        path.write_text(yaml.dump(data) if data is not None else "", encoding="utf-8")
        return str(path)
    return write


def load_with(config_path, **env):
    environment = {'TRANSLATOR_CONFIG_FILE': config_path}
    environment.update(env)
    with patch.dict(os.environ, environment, clear=True):
        with patch('src.app_config.setup_logger', return_value=MagicMock()):
            with patch('src.app_config._load_dotenv_files'):
                return load_app_config()


class TestAppConfig:

    def test_language_name_falls_back_to_code(self, app_config):
        assert app_config.language_name("es") == "Spanish"
        assert app_config.language_name("xx") == "xx"

    def test_is_a_plain_dataclass(self, app_config):
        assert isinstance(app_config, AppConfig)
        assert app_config.batch_size == 2


class TestBuildLanguages:

    def test_accepts_mapping(self):
        assert _build_languages({"es": "Spanish", "fr": "French"}) == {"es": "Spanish", "fr": "French"}

    def test_accepts_list_of_code_name_pairs(self):
        assert _build_languages([
            {"code": "de", "name": "German"},
            {"code": "", "name": "Nameless"},
            {"code": "es", "name": "Spanish"},
        ]) == {"de": "German", "es": "Spanish"}

    def test_other_shapes_give_empty_mapping(self):
        assert _build_languages("es") == {}


class TestLoadAppConfig:

    def test_values_from_yaml(self, config_file):
        path = config_file({
            "lang_path": "/srv/site/lang",
            "database_url": "sqlite:////srv/site/translation.db",
            "source_locale": "en",
            "languages": {"en": "English", "es": "Spanish", "ar": "Arabic"},
            "render_collaborator": "mysite.render:PageRenderer",
            "translation": {"model": "gpt-4o", "batch_size": 10, "rate_limit_per_minute": 60},
            "urls": {"delay_between_requests": 0.5, "timeout": 10},
            "jobs": {"concurrent_jobs": 2, "max_tries": 4, "scan_timeout": 30},
            "key_filter": {"max_identifier_length": 32, "path_separators": ["/"]},
        })

        config = load_with(path)

        assert config.lang_path == "/srv/site/lang"
        assert config.database_url == "sqlite:////srv/site/translation.db"
        assert config.target_locales == ["es", "ar"]
        assert config.model_name == "gpt-4o"
        assert config.batch_size == 10
        assert config.rate_limit_per_minute == 60
        assert config.delay_between_requests == 0.5
        assert config.endpoint_timeout == 10
        assert config.concurrent_jobs == 2
        assert config.max_tries == 4
        assert config.scan_timeout == 30
        assert config.translation_timeout == 120
        assert config.max_identifier_length == 32
        assert config.path_separators == ["/"]
        assert config.render_collaborator == "mysite.render:PageRenderer"

    def test_missing_file_uses_defaults(self, tmp_path):
        config = load_with(str(tmp_path / "absent.yaml"))

        assert config.source_locale == "en"
        assert config.languages == {"en": "English"}
        assert config.target_locales == []
        assert config.model_name == "gpt-4o-mini"
        assert config.batch_size == 20
        assert config.system_prompt == DEFAULT_SYSTEM_PROMPT
        assert config.lang_path == os.path.join(config.project_root, "lang")
        assert config.database_url.endswith(os.path.join("storage", "translation.db"))

    def test_invalid_yaml_uses_defaults(self, tmp_path):
        path = tmp_path / "config.yaml"
        path.write_text("translation: [unclosed", encoding="utf-8")

        config = load_with(str(path))

        assert config.batch_size == 20

    def test_explicit_target_locales_never_include_source(self, config_file):
        path = config_file({"languages": {"en": "English", "es": "Spanish"}, "target_locales": ["en", "es"]})
        assert load_with(path).target_locales == ["es"]

    def test_environment_overrides(self, config_file):
        path = config_file({"translation": {"model": "gpt-4o", "batch_size": 10}})

        config = load_with(
            path,
            OPENAI_MODEL="gpt-4.1-mini",
            TRANSLATION_BATCH_SIZE="5",
            TRANSLATION_DATABASE_URL="postgresql://db/translations",
        )

        assert config.model_name == "gpt-4.1-mini"
        assert config.batch_size == 5
        assert config.database_url == "postgresql://db/translations"

    def test_missing_api_key_leaves_client_unset(self, config_file):
        assert load_with(config_file({})).openai_client is None

    def test_api_key_creates_client(self, config_file):
        with patch('src.app_config.AsyncOpenAI') as mock_client_class:
            config = load_with(config_file({}), OPENAI_API_KEY="sk-test")

        mock_client_class.assert_called_once_with(api_key="sk-test")
        assert config.openai_client is mock_client_class.return_value
