"""
Streaming news summaries from the Perplexity chat completions API.
Opens one completion stream per request and relays its text deltas as they arrive.
"""

import logging
from typing import AsyncIterator, Optional

from openai import AsyncOpenAI, APIStatusError, OpenAIError

from newsdesk.db.repositories import ApiKeyRepository
from newsdesk.errors import (
    ConfigurationError,
    MissingApiKeyError,
    UpstreamError,
    ValidationFailed,
)
from newsdesk.utils.config import get_perplexity_config
from newsdesk.utils.crypto import decrypt_api_key

logger = logging.getLogger(__name__)


async def resolve_api_key(user_id: str, api_keys: ApiKeyRepository) -> str:
    """
    Resolve the provider API key used for a user's request.

    Args:
        user_id: Authenticated user id
        api_keys: Repository holding encrypted keys

    Returns:
        Plaintext API key, only valid for the current request

    Raises:
        MissingApiKeyError: No key on file and no global fallback
        ConfigurationError: Fallback enabled but PERPLEXITY_API_KEY missing
    """
    encrypted = await api_keys.get_encrypted_api_key(user_id)
    if encrypted:
        return decrypt_api_key(encrypted)

    config = get_perplexity_config()
    if not config["allow_global_fallback"]:
        raise MissingApiKeyError()
    if not config["api_key"]:
        logger.error("PERPLEXITY_API_KEY not configured")
        raise ConfigurationError()
    return config["api_key"]


class NewsStreamer:
    """
    Opens streamed completions for news topics.
    """

    def __init__(
        self,
        model: Optional[str] = None,
        base_url: Optional[str] = None,
        prompt_template: Optional[str] = None,
    ):
        config = get_perplexity_config()
        self.model = model or config["model"]
        self.base_url = base_url or config["base_url"]
        self.prompt_template = prompt_template or config["prompt_template"]

    def build_prompt(self, topic: str) -> str:
        """Substitute the trimmed topic into the prompt template."""
        return self.prompt_template.format(topic=topic.strip())

    def _create_client(self, api_key: str) -> AsyncOpenAI:
        return AsyncOpenAI(api_key=api_key, base_url=self.base_url, max_retries=0)

    async def open_stream(self, topic: str, api_key: str) -> AsyncIterator[str]:
        """
        Start a completion stream for a topic.

        The upstream request is sent before this returns, so setup failures
        surface here rather than in the middle of a response body.

        Args:
            topic: News topic, must not be blank
            api_key: Provider API key

        Returns:
            Async iterator over the text of each delta, in delivery order
        """
        if not topic or not topic.strip():
            raise ValidationFailed("Topic is required")

        client = self._create_client(api_key)
        try:
            stream = await client.chat.completions.create(
                model=self.model,
                messages=[
                    {
                        "role": "user",
                        "content": self.build_prompt(topic)
                    }
                ],
                stream=True
            )

        except APIStatusError as e:
            await client.close()
            logger.error(f"Upstream rejected news request: HTTP {e.status_code}")
            if e.status_code in (401, 403):
                raise ValidationFailed("Invalid Perplexity API key") from e
            raise UpstreamError() from e

        except OpenAIError as e:
            await client.close()
            logger.error(f"Failed to open news stream: {e}")
            raise UpstreamError() from e

        return self._relay(client, stream)

    async def _relay(self, client: AsyncOpenAI, stream) -> AsyncIterator[str]:
        try:
            async for chunk in stream:
                if not chunk.choices:
                    continue
                content = chunk.choices[0].delta.content
                if content:
                    yield content

        except Exception as e:
            logger.error(f"Stream error: {e}")
            raise

        finally:
            await stream.close()
            await client.close()


# Global streamer instance
news_streamer: Optional[NewsStreamer] = None


def get_news_streamer() -> NewsStreamer:
    """
    Get the global news streamer.

    Returns:
        News streamer
    """
    global news_streamer
    if news_streamer is None:
        news_streamer = NewsStreamer()
    return news_streamer
