"""Configuration for the extraction and translation pipeline: config.yaml, .env and environment overrides."""
import logging
import os
import sys
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

import yaml
from dotenv import load_dotenv
from openai import AsyncOpenAI

from src.logging_config import setup_logger

DEFAULT_SYSTEM_PROMPT = (
    "You are a professional translator. Translate the following text to {language}. "
    "Return ONLY the translated text with no explanations, greetings, or additional commentary. "
    "Preserve any HTML tags, placeholders like :name, and formatting."
)

CONFIG_FILE_ENV = 'TRANSLATOR_CONFIG_FILE'


@dataclass
class AppConfig:
    project_root: str
    lang_path: str
    database_url: str

    source_locale: str
    languages: Dict[str, str]
    target_locales: List[str]

    model_name: str
    system_prompt: str
    rate_limit_per_minute: int
    request_timeout: float

    batch_size: int
    concurrent_jobs: int
    max_tries: int
    scan_timeout: float
    translation_timeout: float
    delay_between_requests: float
    endpoint_timeout: float

    max_identifier_length: int
    path_separators: List[str]

    # Dotted path, e.g. "mysite.render:PageRenderer"
    render_collaborator: Optional[str]

    # None when no API key is configured
    openai_client: Optional[AsyncOpenAI]

    def language_name(self, locale: str) -> str:
        return self.languages.get(locale, locale)


def _compute_project_root() -> str:
    return os.path.abspath(os.path.join(os.path.dirname(os.path.realpath(__file__)), os.pardir))


def _dotenv_candidates(project_root: str) -> List[str]:
    return [os.path.join(project_root, '.env'), os.path.join(project_root, 'docker', '.env')]


def _load_dotenv_files(project_root: str) -> Optional[str]:
    """Load the first .env found (project root, then docker/). Returns its path, if any."""
    for candidate in _dotenv_candidates(project_root):
        if os.path.exists(candidate):
            load_dotenv(candidate)
            return candidate
    return None


def _config_warning(message: str) -> None:
    # Logging is not configured yet while the config file itself is being read
    print(message, file=sys.stderr)


def _load_yaml_config(project_root: str) -> Dict[str, Any]:
    """
    Read the YAML config named by TRANSLATOR_CONFIG_FILE (default: <project_root>/config.yaml).

    Every problem (missing, unreadable, invalid YAML, not a mapping) is
    reported on stderr and yields an empty dict, so defaults apply.
    """
    default_path = os.path.join(project_root, 'config.yaml')
    config_file = os.path.abspath(os.environ.get(CONFIG_FILE_ENV, default_path))

    if not os.path.exists(config_file):
        _config_warning(f"Warning: Configuration file '{config_file}' not found. Using default configuration.")
        _config_warning(f"Tip: Copy config.example.yaml to '{default_path}' or set {CONFIG_FILE_ENV}.")
        return {}

    try:
        with open(config_file, 'r', encoding='utf-8') as stream:
            loaded = yaml.safe_load(stream)
    except yaml.YAMLError as e:
        _config_warning(f"Error: Invalid YAML in '{config_file}': {e}. Using default configuration.")
        return {}
    except OSError as e:
        _config_warning(f"Error: Could not read '{config_file}': {e}. Using default configuration.")
        return {}

    if loaded is None:
        _config_warning(f"Warning: Configuration file '{config_file}' is empty. Using default configuration.")
        return {}
    if not isinstance(loaded, dict):
        _config_warning(f"Error: '{config_file}' must contain a YAML mapping. Using default configuration.")
        return {}
    return loaded


def _setup_logger_from_config(config: Dict[str, Any], project_root: str) -> logging.Logger:
    log_config = config.get('logging') or {}
    log_file_path = log_config.get('log_file_path', os.path.join('logs', 'translation_pipeline.log'))
    if log_file_path:
        log_file_path = _resolve_path(project_root, log_file_path)
    return setup_logger(
        str(log_config.get('log_level', 'INFO')),
        log_file_path,
        bool(log_config.get('log_to_console', True)),
    )


def _build_languages(languages_config: Any) -> Dict[str, str]:
    """
    Build the locale code -> language name mapping.

    Accepts either a mapping (``{"es": "Spanish"}``) or a list of
    ``{"code": ..., "name": ...}`` entries.
    """
    if isinstance(languages_config, dict):
        pairs = languages_config.items()
    elif isinstance(languages_config, list):
        pairs = ((entry.get('code'), entry.get('name')) for entry in languages_config if isinstance(entry, dict))
    else:
        return {}
    return {str(code): str(name) for code, name in pairs if code and name}


def _resolve_path(project_root: str, path: str) -> str:
    if os.path.isabs(path):
        return path
    return os.path.abspath(os.path.join(project_root, path))


def _setting(section: Dict[str, Any], key: str, default: Any, cast: Callable[[Any], Any], env: Optional[str] = None):
    """Section value (or environment override) converted with ``cast``."""
    if env and env in os.environ:
        return cast(os.environ[env])
    return cast(section.get(key, default))


def _create_openai_client(api_key: Optional[str], logger: logging.Logger) -> Optional[AsyncOpenAI]:
    """
    Create the OpenAI client when an API key is available.

    A missing key is not fatal: the operator facade reports it as a status
    message and refuses to dispatch translation jobs.
    """
    if not api_key:
        logger.warning("OPENAI_API_KEY is not set. AI translation is disabled until it is configured.")
        return None

    if not api_key.startswith('sk-'):
        logger.warning("OPENAI_API_KEY does not start with 'sk-'. This may be invalid.")

    try:
        client = AsyncOpenAI(api_key=api_key)
    except Exception as e:
        logger.error(f"Failed to initialize OpenAI client: {e}")
        return None
    logger.info("OpenAI client initialized.")
    return client


def load_app_config() -> AppConfig:
    """
    Load the pipeline configuration.

    Order of precedence: environment variables (including those loaded from
    .env), then config.yaml, then built-in defaults.
    """
    project_root = _compute_project_root()
    dotenv_path = _load_dotenv_files(project_root)
    config = _load_yaml_config(project_root)
    logger = _setup_logger_from_config(config, project_root)

    if dotenv_path:
        logger.info(f"Loaded environment variables from: {dotenv_path}")
    else:
        logger.info(
            f"No .env file found in {' or '.join(_dotenv_candidates(project_root))}. "
            "Relying on system environment variables."
        )

    source_locale = config.get('source_locale', 'en')
    languages = _build_languages(config.get('languages', {'en': 'English'}))
    configured_targets = config.get('target_locales') or [code for code in languages if code != source_locale]
    target_locales = [locale for locale in configured_targets if locale != source_locale]

    translation = config.get('translation') or {}
    urls = config.get('urls') or {}
    jobs = config.get('jobs') or {}
    key_filter = config.get('key_filter') or {}

    default_database = f"sqlite:///{os.path.join(project_root, 'storage', 'translation.db')}"

    return AppConfig(
        project_root=project_root,
        lang_path=_resolve_path(project_root, config.get('lang_path', 'lang')),
        database_url=_setting(config, 'database_url', default_database, str, env='TRANSLATION_DATABASE_URL'),
        source_locale=source_locale,
        languages=languages,
        target_locales=target_locales,
        model_name=_setting(translation, 'model', 'gpt-4o-mini', str, env='OPENAI_MODEL'),
        system_prompt=translation.get('system_prompt', DEFAULT_SYSTEM_PROMPT),
        rate_limit_per_minute=_setting(translation, 'rate_limit_per_minute', 300, int),
        request_timeout=_setting(translation, 'request_timeout', 30, float),
        batch_size=_setting(translation, 'batch_size', 20, int, env='TRANSLATION_BATCH_SIZE'),
        concurrent_jobs=_setting(jobs, 'concurrent_jobs', 5, int),
        max_tries=_setting(jobs, 'max_tries', 3, int),
        scan_timeout=_setting(jobs, 'scan_timeout', 60, float),
        translation_timeout=_setting(jobs, 'translation_timeout', 120, float),
        delay_between_requests=_setting(urls, 'delay_between_requests', 1, float),
        endpoint_timeout=_setting(urls, 'timeout', 20, float),
        max_identifier_length=_setting(key_filter, 'max_identifier_length', 64, int),
        path_separators=list(key_filter.get('path_separators', ['/', '\\'])),
        render_collaborator=config.get('render_collaborator'),
        openai_client=_create_openai_client(os.environ.get('OPENAI_API_KEY', translation.get('api_key')), logger),
    )
