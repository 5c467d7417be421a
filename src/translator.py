"""
AI translation of single strings through the OpenAI Chat Completions API.

Every outbound call goes through one shared ``AsyncLimiter``. A call that
finds the limiter without capacity returns ``None`` straight away, exactly
like an API error, so callers have one "no result" case to handle.
"""
import logging
import re
import uuid
from typing import Dict, Mapping, Optional, Tuple

import tiktoken
from aiolimiter import AsyncLimiter
from openai import (
    APIConnectionError,
    APIStatusError,
    APITimeoutError,
    AsyncOpenAI,
    OpenAIError,
    RateLimitError,
)
from openai.types.chat import (
    ChatCompletionSystemMessageParam,
    ChatCompletionUserMessageParam,
)

logger = logging.getLogger(__name__)

# HTML tags, {0} / {name} placeholders and :name parameters.
PLACEHOLDER_PATTERN = re.compile(r'(<[^<>]+>)|({[^{}]+})|((?<![\w:]):[A-Za-z_]\w*)')

PLACEHOLDER_INSTRUCTION = (
    "Do not translate or modify placeholder tokens: any text enclosed within double "
    "underscores (e.g. __PH_abc123__) must remain exactly as is."
)

MIN_COMPLETION_TOKENS = 256


def count_tokens(text: str, model_name: str = 'gpt-4o-mini') -> int:
    """Count the number of tokens in ``text`` for ``model_name``.

    ``tiktoken.encoding_for_model`` may need to download encoding data, which
    is not possible everywhere (e.g. in CI). If that fails the ``gpt2``
    encoding bundled with ``tiktoken`` is used, and as a last resort a
    whitespace split.
    """
    try:
        encoding = tiktoken.encoding_for_model(model_name)
    except Exception:
        try:
            encoding = tiktoken.get_encoding("gpt2")
        except Exception:
            return len(text.split())

    try:
        return len(encoding.encode(text))
    except Exception:
        return len(text.split())


def extract_placeholders(text: str) -> Tuple[str, Dict[str, str]]:
    """
    Replace placeholders and HTML tags with unique tokens the model leaves alone.

    Returns:
        The processed text and a token -> original placeholder mapping.
    """
    if not isinstance(text, str):
        raise ValueError("Input text must be a string.")

    placeholder_mapping = {}

    def replace_placeholder(match):
        placeholder_token = f"__PH_{uuid.uuid4().hex}__"
        placeholder_mapping[placeholder_token] = match.group(0)
        return placeholder_token

    return PLACEHOLDER_PATTERN.sub(replace_placeholder, text), placeholder_mapping


def restore_placeholders(text: str, placeholder_mapping: Mapping[str, str]) -> str:
    for token, placeholder in placeholder_mapping.items():
        text = text.replace(token, placeholder)
    return text


def clean_translated_text(translated_text: str, original_text: str) -> str:
    """
    Strip wrapping quotes or square brackets the model added around the answer.

    Wrappers that are also present in the original text are kept.
    """
    translated_text = translated_text.strip()
    for opening, closing in (('"', '"'), ('[', ']')):
        if (len(translated_text) >= 2
                and translated_text.startswith(opening) and translated_text.endswith(closing)
                and not (original_text.startswith(opening) and original_text.endswith(closing))):
            translated_text = translated_text[1:-1]
    return translated_text


class AITranslator:
    """Translates strings into a locale's language with a chat model."""

    def __init__(
            self,
            client: Optional[AsyncOpenAI],
            model_name: str,
            system_prompt: str,
            languages: Mapping[str, str],
            rate_limiter: AsyncLimiter,
            request_timeout: float = 30.0,
            temperature: float = 0.3
    ):
        self.client = client
        self.model_name = model_name
        self.system_prompt = system_prompt
        self.languages = dict(languages)
        self.rate_limiter = rate_limiter
        self.request_timeout = request_timeout
        self.temperature = temperature

    def is_configured(self) -> bool:
        return self.client is not None

    def language_name(self, locale: str) -> str:
        return self.languages.get(locale, locale)

    def build_system_prompt(self, locale: str, has_placeholders: bool) -> str:
        prompt = self.system_prompt.replace('{language}', self.language_name(locale))
        if has_placeholders:
            prompt = f"{prompt}\n{PLACEHOLDER_INSTRUCTION}"
        return prompt

    async def translate(self, text: str, locale: str) -> Optional[str]:
        """
        Translate ``text`` into ``locale``.

        Returns:
            The translated text, or None when no API key is configured, the
            shared rate limit is exhausted, or the API call failed.
        """
        if not self.is_configured():
            logger.warning("OpenAI API key not configured. Skipping translation.")
            return None

        if not self.rate_limiter.has_capacity():
            logger.warning(f"Translation rate limit reached; skipping text for '{locale}'.")
            return None
        await self.rate_limiter.acquire()

        processed_text, placeholder_mapping = extract_placeholders(text)
        max_tokens = max(MIN_COMPLETION_TOKENS, count_tokens(processed_text, self.model_name) * 4)

        try:
            response = await self.client.chat.completions.create(
                model=self.model_name,
                messages=[
                    ChatCompletionSystemMessageParam(
                        role="system",
                        content=self.build_system_prompt(locale, bool(placeholder_mapping))
                    ),
                    ChatCompletionUserMessageParam(role="user", content=processed_text),
                ],
                temperature=self.temperature,
                max_tokens=max_tokens,
                timeout=self.request_timeout,
            )
        except (RateLimitError, APITimeoutError, APIConnectionError, APIStatusError, OpenAIError) as api_exc:
            logger.error(f"API error while translating to '{locale}': {api_exc.__class__.__name__} - {api_exc}")
            return None

        content = response.choices[0].message.content if response.choices else None
        if not content or not content.strip():
            logger.warning(f"Empty translation returned for '{locale}'.")
            return None

        translated_text = restore_placeholders(content.strip(), placeholder_mapping)
        translated_text = clean_translated_text(translated_text, text)
        logger.debug(f"Translated text to '{locale}' successfully.")
        return translated_text
