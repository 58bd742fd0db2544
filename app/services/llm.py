"""
OpenAI HTTP plumbing shared by the completion and Assistants clients.

One pooled httpx client for completions, one retry policy for every OpenAI
call: 429 and 5xx are retried with exponential backoff and jitter (or the
server's Retry-After), timeouts likewise, anything else fails fast.
"""

import asyncio
import logging
import random
import time
from typing import Any, Optional

import httpx

from ..core.config import get_settings

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = {429, 500, 502, 503, 504}
MAX_RETRIES = 3
BASE_DELAY = 1.0
MAX_DELAY = 16.0

_client: Optional[httpx.AsyncClient] = None


def _get_client() -> httpx.AsyncClient:
    global _client
    if _client is None or _client.is_closed:
        _client = httpx.AsyncClient(
            timeout=httpx.Timeout(connect=10, read=60, write=30, pool=10),
            limits=httpx.Limits(max_connections=20, max_keepalive_connections=10),
        )
    return _client


async def close_client():
    """Close the pooled completion client. Called on shutdown."""
    global _client
    if _client and not _client.is_closed:
        await _client.aclose()
        _client = None


def _backoff(attempt: int, retry_after: Optional[str] = None) -> float:
    if retry_after:
        try:
            return float(retry_after)
        except ValueError:
            pass
    return min(MAX_DELAY, BASE_DELAY * (2 ** attempt) + random.uniform(0, 1))


async def retry_request(
    client: httpx.AsyncClient,
    method: str,
    url: str,
    **kwargs,
) -> httpx.Response:
    """
    Send one OpenAI request under the retry policy.

    Returns the first non-retryable success. Non-retryable 4xx raise
    httpx.HTTPStatusError immediately; exhausting the retries raises the
    last error seen.
    """
    last_exc: Optional[Exception] = None

    for attempt in range(MAX_RETRIES + 1):
        try:
            resp = await client.request(method, url, **kwargs)
        except httpx.TimeoutException as e:
            last_exc = e
            delay = _backoff(attempt)
            logger.warning(
                "OpenAI %s %s timed out (attempt %d/%d), retry in %.1fs",
                method, url, attempt + 1, MAX_RETRIES + 1, delay,
            )
        else:
            if resp.status_code not in RETRYABLE_STATUS:
                if resp.status_code >= 400:
                    logger.error("OpenAI API error %d: %s", resp.status_code, resp.text[:500])
                resp.raise_for_status()
                return resp

            last_exc = httpx.HTTPStatusError(
                f"OpenAI returned {resp.status_code}", request=resp.request, response=resp,
            )
            delay = _backoff(attempt, resp.headers.get("retry-after"))
            logger.warning(
                "OpenAI %d on %s %s (attempt %d/%d), retry in %.1fs",
                resp.status_code, method, url, attempt + 1, MAX_RETRIES + 1, delay,
            )

        if attempt < MAX_RETRIES:
            await asyncio.sleep(delay)

    raise last_exc or RuntimeError("OpenAI request failed after retries")


def auth_headers(api_key: str) -> dict[str, str]:
    return {
        "Authorization": f"Bearer {api_key}",
        "Content-Type": "application/json",
    }


# ── Completions ──────────────────────────────────────────────────────

async def chat(
    messages: list[dict],
    model: Optional[str] = None,
    temperature: Optional[float] = None,
    max_tokens: Optional[int] = None,
) -> dict:
    """One chat-completion call. Returns the raw response body."""
    settings = get_settings()
    if not settings.openai_api_key:
        raise ValueError("No API key for OpenAI. Set OPENAI_API_KEY.")

    payload: dict[str, Any] = {
        "model": model or settings.openai_model,
        "messages": messages,
        "temperature": settings.chat_temperature if temperature is None else temperature,
        "max_tokens": max_tokens or settings.chat_max_tokens,
    }
    url = f"{settings.openai_base_url.rstrip('/')}/chat/completions"

    start = time.monotonic()
    try:
        resp = await retry_request(
            _get_client(), "POST", url,
            json=payload, headers=auth_headers(settings.openai_api_key),
        )
    except Exception as e:
        logger.error("Completion failed after %.1fs: %s", time.monotonic() - start, e)
        raise

    data = resp.json()
    usage = data.get("usage", {})
    logger.info(
        "Completion: %dms | in=%d out=%d tokens | model=%s",
        int((time.monotonic() - start) * 1000),
        usage.get("prompt_tokens", 0),
        usage.get("completion_tokens", 0),
        payload["model"],
    )
    return data


async def chat_simple(
    prompt: str,
    system: str = "",
    model: Optional[str] = None,
    temperature: float = 0.7,
    max_tokens: int = 1000,
) -> str:
    """Prompt in, reply text out."""
    messages = [{"role": "system", "content": system}] if system else []
    messages.append({"role": "user", "content": prompt})

    data = await chat(messages, model=model, temperature=temperature, max_tokens=max_tokens)
    return data["choices"][0]["message"]["content"] or ""
