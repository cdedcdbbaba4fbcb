"""Low-level HTTP client for an OpenAI-compatible chat-completions endpoint.

Responsibilities:
- ``build_payload()``: assemble the request body for one prompt.
- ``chat_completion()``: POST it and return the raw JSON response dict.
- ``extract_content()``: pull the first choice's message text out of a
  response.

Error handling maps every failure to
:class:`~site_personalizer.core.exceptions.GenerationError`:
- HTTP 429 -> ``retry_after`` set from the ``Retry-After`` header
- Other non-2xx -> the provider's ``error.message`` when present
- Network errors and unparseable bodies
"""

from __future__ import annotations

import logging
from typing import Any

import httpx

from site_personalizer.core.exceptions import GenerationError
from site_personalizer.personalization.prompts import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

_DEFAULT_ERROR = "Failed to get AI analysis"


def build_payload(
    prompt: str,
    model: str,
    temperature: float,
    max_tokens: int,
) -> dict[str, Any]:
    """Return the chat-completions request body for *prompt*."""
    return {
        "model": model,
        "messages": [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": prompt},
        ],
        "temperature": temperature,
        "max_tokens": max_tokens,
    }


def _provider_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return _DEFAULT_ERROR
    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict) and error.get("message"):
        return str(error["message"])
    return _DEFAULT_ERROR


async def chat_completion(
    client: httpx.AsyncClient,
    payload: dict[str, Any],
    api_key: str,
    api_url: str,
    template: str | None = None,
) -> dict[str, Any]:
    """POST *payload* to the chat-completions endpoint and return the response.

    Args:
        client: Shared :class:`httpx.AsyncClient` instance.
        payload: Request body from :func:`build_payload`.
        api_key: Bearer token.
        api_url: Full chat-completions URL.
        template: Template name, attached to raised errors.

    Returns:
        Parsed JSON response dict.

    Raises:
        GenerationError: On any HTTP, network or decoding failure.
    """
    headers: dict[str, str] = {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }
    try:
        response = await client.post(api_url, json=payload, headers=headers)
        response.raise_for_status()
    except httpx.HTTPStatusError as exc:
        code = exc.response.status_code
        message = _provider_message(exc.response)
        if code == 429:
            header = exc.response.headers.get("Retry-After", "60")
            retry_after = float(header) if header.replace(".", "", 1).isdigit() else 60.0
            raise GenerationError(
                f"HTTP 429: {message}", template=template, retry_after=retry_after
            ) from exc
        logger.warning(
            "openai: HTTP %d: %s", code, message, extra={"template": template}
        )
        raise GenerationError(message, template=template) from exc
    except httpx.RequestError as exc:
        raise GenerationError(f"network error: {exc}", template=template) from exc

    try:
        return response.json()  # type: ignore[no-any-return]
    except ValueError as exc:
        raise GenerationError(f"JSON parse error: {exc}", template=template) from exc


def extract_content(response: dict[str, Any], template: str | None = None) -> str:
    """Return the message text of the first choice.

    Raises:
        GenerationError: If the response has no choices or the first choice
            has no message content.
    """
    try:
        content = response["choices"][0]["message"]["content"]
    except (KeyError, IndexError, TypeError) as exc:
        raise GenerationError("Response contained no choices", template=template) from exc
    if not isinstance(content, str) or not content.strip():
        raise GenerationError("Response choice had no content", template=template)
    return content.strip()
