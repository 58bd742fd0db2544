"""
Avatar video rendering. HeyGen OR a local mock. Selected once at startup.

The rest of the app only sees VideoRenderer: submit a script, ask for status.
HeyGen's status route has moved between API revisions, so HeyGenRenderer
tries a fixed list of endpoint shapes inside get_status() and nothing
outside this module knows about it.

Docs: https://docs.heygen.com/reference/create-an-avatar-video-v2
"""

import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

import httpx

from ..core.config import Settings, get_settings
from ..core.errors import RenderRequestError, RenderStatusError
from ..core.flags import FeatureFlags, get_flags

logger = logging.getLogger(__name__)

SAMPLE_VIDEO_URL = (
    "https://commondatastorage.googleapis.com/gtv-videos-bucket/sample/BigBuckBunny.mp4"
)


@dataclass
class RenderStatus:
    """One status reading for a render job."""

    status: str                          # pending, processing, completed, failed, ...
    video_url: Optional[str] = None
    duration: Optional[float] = None
    thumbnail_url: Optional[str] = None
    gif_url: Optional[str] = None
    error: Optional[str] = None

    @property
    def is_completed(self) -> bool:
        return self.status == "completed"

    @property
    def is_failed(self) -> bool:
        return self.status in ("failed", "error")


class VideoRenderer(ABC):
    name: str = ""

    @abstractmethod
    async def submit_render(self, text: str, session_id: str) -> str:
        """Start rendering `text`. Returns the job id. Raises RenderRequestError."""
        ...

    @abstractmethod
    async def get_status(self, job_id: str) -> RenderStatus:
        """Current status of a job. Raises RenderStatusError if it can't be read."""
        ...

    async def test_connection(self) -> dict:
        return {"connected": True}

    async def list_avatars(self) -> list[dict]:
        return []

    async def list_voices(self) -> list[dict]:
        return []

    async def close(self) -> None:
        return None


# ── HeyGen ───────────────────────────────────────────────────────────


class HeyGenRenderer(VideoRenderer):
    name = "heygen"

    STATUS_ENDPOINTS = (
        "/video_status/{job_id}",
        "/video/{job_id}",
        "/videos/{job_id}",
        "/video/status/{job_id}",
        "/video_generation/{job_id}",
    )

    def __init__(
        self,
        api_key: str,
        avatar_id: str,
        voice_id: str,
        base_url: str = "https://api.heygen.com/v2",
        test_mode: bool = True,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.avatar_id = avatar_id
        self.voice_id = voice_id
        self.base_url = base_url.rstrip("/")
        self.test_mode = test_mode
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10, read=30, write=10, pool=10),
            )
        return self._client

    async def close(self) -> None:
        if self._client and not self._client.is_closed:
            await self._client.aclose()
            self._client = None

    def _headers(self) -> dict[str, str]:
        return {
            "X-API-KEY": self.api_key,
            "Content-Type": "application/json",
        }

    async def submit_render(self, text: str, session_id: str) -> str:
        payload = {
            "video_inputs": [
                {
                    "character": {
                        "type": "avatar",
                        "avatar_id": self.avatar_id,
                        "scale": 1.0,
                    },
                    "voice": {
                        "type": "text",
                        "input_text": text,
                        "voice_id": self.voice_id,
                        "speed": 1.0,
                    },
                }
            ],
            "dimension": {"width": 1280, "height": 720},
            "aspect_ratio": "16:9",
            "test": self.test_mode,
            "caption": False,
        }

        url = f"{self.base_url}/video/generate"
        logger.info("HeyGen: generating video for session %s (%d chars)", session_id, len(text))

        try:
            resp = await self._get_client().post(url, json=payload, headers=self._headers())
        except httpx.HTTPError as e:
            logger.error("HeyGen submit transport error: %s", e)
            raise RenderRequestError(f"HeyGen request failed: {e}") from e

        if resp.status_code >= 400:
            logger.error("HeyGen submit error %d: %s", resp.status_code, resp.text[:500])
            raise RenderRequestError(f"HeyGen rejected the request ({resp.status_code})")

        try:
            body = resp.json()
        except ValueError as e:
            raise RenderRequestError("HeyGen returned a non-JSON response") from e

        if body.get("error"):
            raise RenderRequestError(f"HeyGen API error: {body['error']}")

        job_id = (body.get("data") or {}).get("video_id")
        if not job_id:
            raise RenderRequestError("HeyGen API error: Missing video_id in response")

        logger.info("HeyGen video generation started, id=%s", job_id)
        return job_id

    async def get_status(self, job_id: str) -> RenderStatus:
        client = self._get_client()

        for shape in self.STATUS_ENDPOINTS:
            endpoint = shape.format(job_id=job_id)
            try:
                resp = await client.get(f"{self.base_url}{endpoint}", headers=self._headers())
            except httpx.HTTPError as e:
                logger.debug("HeyGen status %s failed: %s", endpoint, e)
                continue

            if resp.status_code >= 400:
                logger.debug("HeyGen status %s failed: %d", endpoint, resp.status_code)
                continue

            try:
                body = resp.json()
            except ValueError:
                logger.debug("HeyGen status %s returned non-JSON", endpoint)
                continue

            data = (body.get("data") or body) if isinstance(body, dict) else None
            if not isinstance(data, dict):
                logger.debug("HeyGen status %s returned no status object", endpoint)
                continue

            logger.debug("HeyGen status endpoint %s answered for %s", endpoint, job_id)
            return RenderStatus(
                status=data.get("status", ""),
                video_url=data.get("video_url"),
                duration=data.get("duration"),
                thumbnail_url=data.get("thumbnail_url"),
                gif_url=data.get("gif_url"),
                error=_error_message(data.get("error")),
            )

        raise RenderStatusError("All video status endpoints failed", job_id=job_id)

    async def test_connection(self) -> dict:
        """Check the API key and whether the configured avatar exists."""
        try:
            avatars = await self.list_avatars()
        except httpx.HTTPError as e:
            logger.error("HeyGen API connection failed: %s", e)
            response = getattr(e, "response", None)
            return {
                "connected": False,
                "error": str(e),
                "status": response.status_code if response is not None else None,
            }

        ours = next((a for a in avatars if _avatar_id(a) == self.avatar_id), None)
        if ours:
            logger.info("HeyGen avatar found: %s", _avatar_name(ours))
        else:
            logger.warning("HeyGen avatar not found: %s", self.avatar_id)

        return {
            "connected": True,
            "avatar_found": ours is not None,
            "total_avatars": len(avatars),
            "available_avatars": [
                {
                    "id": _avatar_id(a),
                    "name": _avatar_name(a),
                    "gender": a.get("gender", "Unknown"),
                }
                for a in avatars[:10]
            ],
            "current_avatar_id": self.avatar_id,
        }

    async def list_avatars(self) -> list[dict]:
        resp = await self._get_client().get(f"{self.base_url}/avatars", headers=self._headers())
        resp.raise_for_status()
        return _extract_avatars(resp.json())

    async def list_voices(self) -> list[dict]:
        resp = await self._get_client().get(f"{self.base_url}/voices", headers=self._headers())
        resp.raise_for_status()
        data = resp.json().get("data") or []
        if isinstance(data, dict):
            return data.get("voices", [])
        return data


def _extract_avatars(body) -> list[dict]:
    """The avatar list has shipped in four different envelopes."""
    if isinstance(body, list):
        return body
    if not isinstance(body, dict):
        return []
    data = body.get("data")
    if isinstance(data, list):
        return data
    if isinstance(data, dict) and isinstance(data.get("avatars"), list):
        return data["avatars"]
    if isinstance(body.get("avatars"), list):
        return body["avatars"]
    logger.warning("Unexpected avatar response structure, keys=%s", list(body.keys()))
    return []


def _avatar_id(avatar: dict) -> Optional[str]:
    return avatar.get("avatar_id") or avatar.get("id") or avatar.get("avatarId")


def _avatar_name(avatar: dict) -> str:
    return (
        avatar.get("avatar_name") or avatar.get("name")
        or avatar.get("avatarName") or "Unknown"
    )


def _error_message(error) -> Optional[str]:
    if not error:
        return None
    if isinstance(error, dict):
        return error.get("message") or error.get("detail") or str(error)
    return str(error)


# ── Mock ─────────────────────────────────────────────────────────────


class MockRenderer(VideoRenderer):
    """Stand-in when HeyGen is off or unconfigured. Completes after a fixed delay."""

    name = "mock"

    def __init__(self, processing_seconds: float = 5.0, video_url: str = SAMPLE_VIDEO_URL):
        self.processing_seconds = processing_seconds
        self.video_url = video_url
        self._submitted: dict[str, float] = {}

    async def submit_render(self, text: str, session_id: str) -> str:
        job_id = f"mock_video_{int(time.time() * 1000)}"
        self._submitted[job_id] = time.monotonic()
        logger.info("MOCK renderer: accepted %s for session %s", job_id, session_id)
        return job_id

    async def get_status(self, job_id: str) -> RenderStatus:
        started = self._submitted.get(job_id)
        if started is not None and time.monotonic() - started < self.processing_seconds:
            return RenderStatus(status="processing")

        self._submitted.pop(job_id, None)
        return RenderStatus(status="completed", video_url=self.video_url, duration=10)

    async def test_connection(self) -> dict:
        return {"connected": True, "avatar_found": True, "mock": True}

    async def list_avatars(self) -> list[dict]:
        return [
            {"avatar_id": "mock_avatar_1", "avatar_name": "Mock Avatar 1", "gender": "Female"},
            {"avatar_id": "mock_avatar_2", "avatar_name": "Mock Avatar 2", "gender": "Male"},
        ]


def build_renderer(
    settings: Optional[Settings] = None,
    flags: Optional[FeatureFlags] = None,
) -> VideoRenderer:
    """Pick the renderer for this process. Called once at startup."""
    settings = settings or get_settings()
    flags = flags or get_flags()

    if flags.use_heygen and settings.heygen_api_key and settings.heygen_avatar_id:
        logger.info("HeyGen renderer initialized (avatar=%s)", settings.heygen_avatar_id)
        return HeyGenRenderer(
            api_key=settings.heygen_api_key,
            avatar_id=settings.heygen_avatar_id,
            voice_id=settings.heygen_voice_id,
            base_url=settings.heygen_base_url,
            test_mode=settings.heygen_test_mode,
        )

    if flags.use_heygen:
        logger.warning("HEYGEN_API_KEY / HEYGEN_AVATAR_ID not set — using mock renderer")
    else:
        logger.info("FF_USE_HEYGEN is off — using mock renderer")
    return MockRenderer(processing_seconds=settings.mock_render_seconds)
