"""
OpenAI Assistants v2 client: the calls a file_search run needs.

Direct HTTP via httpx. Every method is one request; the run lifecycle
(create → poll → read → delete) is driven by the Chat Responder.

Docs: https://platform.openai.com/docs/api-reference/assistants
"""

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from ..core.config import get_settings
from .llm import retry_request

logger = logging.getLogger(__name__)

DEFAULT_QUOTE = "Referenced from uploaded document"


@dataclass
class Citation:
    document_id: str
    quote: str = DEFAULT_QUOTE

    def to_dict(self) -> dict:
        return {"document_id": self.document_id, "quote": self.quote}


@dataclass
class AssistantMessage:
    text: str
    citations: list[Citation] = field(default_factory=list)


class AssistantsClient:
    """Thin wrapper over the Assistants, Threads, Runs and Files endpoints."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        settings = get_settings()
        self.api_key = api_key if api_key is not None else settings.openai_api_key
        self.base_url = (base_url or settings.openai_base_url).rstrip("/")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10, read=60, write=60, pool=10),
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self, json_body: bool = True) -> dict[str, str]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "OpenAI-Beta": "assistants=v2",
        }
        if json_body:
            headers["Content-Type"] = "application/json"
        return headers

    async def _request(self, method: str, path: str, **kwargs) -> dict:
        resp = await retry_request(
            self._get_client(), method, f"{self.base_url}{path}",
            headers=self._headers(json_body="files" not in kwargs),
            **kwargs,
        )
        return resp.json()

    # ── Assistants ───────────────────────────────────────────────────

    async def create_assistant(
        self, name: str, instructions: str, model: str, file_ids: list[str],
    ) -> str:
        body = await self._request("POST", "/assistants", json={
            "name": name,
            "instructions": instructions,
            "model": model,
            "tools": [{"type": "file_search"}],
            "tool_resources": {
                "file_search": {
                    "vector_stores": [{"file_ids": file_ids}],
                },
            },
        })
        logger.debug("Assistant created: %s (%d files)", body["id"], len(file_ids))
        return body["id"]

    async def delete_assistant(self, assistant_id: str) -> None:
        await self._request("DELETE", f"/assistants/{assistant_id}")

    # ── Threads & messages ───────────────────────────────────────────

    async def create_thread(self) -> str:
        body = await self._request("POST", "/threads", json={})
        return body["id"]

    async def delete_thread(self, thread_id: str) -> None:
        await self._request("DELETE", f"/threads/{thread_id}")

    async def post_message(self, thread_id: str, text: str) -> None:
        await self._request(
            "POST", f"/threads/{thread_id}/messages",
            json={"role": "user", "content": text},
        )

    async def list_messages(self, thread_id: str) -> list[AssistantMessage]:
        """Messages on the thread, newest first (the API default order)."""
        body = await self._request("GET", f"/threads/{thread_id}/messages")
        return [_parse_message(m) for m in body.get("data", [])]

    # ── Runs ─────────────────────────────────────────────────────────

    async def start_run(self, thread_id: str, assistant_id: str) -> str:
        body = await self._request(
            "POST", f"/threads/{thread_id}/runs",
            json={"assistant_id": assistant_id},
        )
        return body["id"]

    async def get_run_status(self, thread_id: str, run_id: str) -> str:
        body = await self._request("GET", f"/threads/{thread_id}/runs/{run_id}")
        return body.get("status", "")

    # ── Files ────────────────────────────────────────────────────────

    async def upload_file(self, file_path: str, filename: Optional[str] = None) -> str:
        """Upload a local file with purpose=assistants. Returns the OpenAI file id."""
        path = Path(file_path)
        body = await self._request(
            "POST", "/files",
            data={"purpose": "assistants"},
            files={"file": (filename or path.name, path.read_bytes())},
        )
        logger.info("File uploaded to OpenAI: %s → %s", filename or path.name, body["id"])
        return body["id"]


def _parse_message(message: dict) -> AssistantMessage:
    """Pull the text and file citations out of the first text content block."""
    for block in message.get("content", []):
        if block.get("type") != "text":
            continue
        text = block.get("text", {})
        citations = []
        for annotation in text.get("annotations") or []:
            if annotation.get("type") != "file_citation":
                continue
            cited = annotation.get("file_citation", {})
            citations.append(Citation(
                document_id=cited.get("file_id", ""),
                quote=cited.get("quote") or DEFAULT_QUOTE,
            ))
        return AssistantMessage(text=text.get("value", ""), citations=citations)
    return AssistantMessage(text="")
