"""Generate summaries and personalizations from crawled website content.

The engine is stateless apart from its prompt templates.  Each call to
:meth:`PersonalizationEngine.generate` issues exactly one text-generation
request.  It does not retry: the batch pipeline decides what to do with a
:class:`~site_personalizer.core.exceptions.GenerationError`.
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from site_personalizer.core.exceptions import GenerationError
from site_personalizer.personalization.openai_client import (
    build_payload,
    chat_completion,
    extract_content,
)
from site_personalizer.personalization.prompts import (
    BUILTIN_TEMPLATES,
    SUMMARY_TEMPLATE,
    is_custom_template,
    render_builtin,
    render_custom,
)
from site_personalizer.workers.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)


class PersonalizationEngine:
    """Render a template against website content and call the model.

    Args:
        client: Shared :class:`httpx.AsyncClient`.
        api_key: Chat-completions bearer token.
        api_url: Chat-completions endpoint.
        model: Model identifier.
        temperature: Sampling temperature.
        max_tokens: Completion token cap.
        rate_limiter: When given, a slot is acquired before every request.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        api_key: str,
        api_url: str = "https://api.openai.com/v1/chat/completions",
        model: str = "gpt-4o-mini",
        temperature: float = 0.7,
        max_tokens: int = 200,
        rate_limiter: RateLimiter | None = None,
    ) -> None:
        self._client = client
        self._api_key = api_key
        self._api_url = api_url
        self._model = model
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._rate_limiter = rate_limiter

    def render_prompt(
        self,
        content: Any,
        template: str,
        custom_prompt: str | None = None,
        business_name: str = "",
    ) -> str:
        """Return the user prompt for *template*.

        A supplied *custom_prompt* always wins.  Otherwise the template must
        be built-in.

        Raises:
            GenerationError: If the template is unknown and no prompt was
                supplied, including ``custom_*`` names without a prompt.
        """
        if custom_prompt:
            return render_custom(custom_prompt, content)
        if is_custom_template(template):
            raise GenerationError(
                f"Custom template {template!r} has no prompt", template=template
            )
        if template not in BUILTIN_TEMPLATES:
            raise GenerationError(f"Unknown prompt type: {template}", template=template)
        return render_builtin(template, content, business_name)

    async def generate(
        self,
        content: Any,
        template: str,
        custom_prompt: str | None = None,
        business_name: str = "",
    ) -> str:
        """Generate text for one template.

        Args:
            content: Cleaned page fragments for the website.
            template: Built-in template name or a ``custom_*`` name.
            custom_prompt: Prompt text for custom templates.
            business_name: Substituted into built-in templates.

        Returns:
            The model's reply, stripped.

        Raises:
            GenerationError: Unknown template, provider failure, or a reply
                without content.
        """
        prompt = self.render_prompt(content, template, custom_prompt, business_name)
        payload = build_payload(prompt, self._model, self._temperature, self._max_tokens)

        if self._rate_limiter is not None:
            await self._rate_limiter.acquire()

        response = await chat_completion(
            self._client, payload, self._api_key, self._api_url, template=template
        )
        text = extract_content(response, template=template)
        logger.debug(
            "engine: generated",
            extra={"template": template, "chars": len(text)},
        )
        return text

    async def summarize(self, content: Any) -> str:
        """Generate the short website summary."""
        return await self.generate(content, SUMMARY_TEMPLATE)
