"""
Central feature flags. One file controls every external dependency.

Set via environment variables (prefix FF_) or .env file.
When a flag is OFF, the system uses a local/mock fallback. Nothing crashes.
"""

from functools import lru_cache
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class FeatureFlags(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ── Video rendering ──────────────────────────────────────────────
    use_heygen: bool = Field(default=True, alias="FF_USE_HEYGEN")
    # ON  → HeyGen renders avatar videos. Needs HEYGEN_API_KEY + HEYGEN_AVATAR_ID.
    #       Missing credentials still fall back to the mock renderer.
    # OFF → Mock renderer. Returns a sample MP4 after a short delay.

    # ── Retrieval ────────────────────────────────────────────────────
    use_rag: bool = Field(default=True, alias="FF_USE_RAG")
    # ON  → Avatars with ingested files answer via Assistants file_search.
    # OFF → Every message goes straight to a plain completion.

    # ── Realtime ─────────────────────────────────────────────────────
    use_redis: bool = Field(default=False, alias="FF_USE_REDIS")
    # ON  → Redis pub/sub for video status notifications. Needs REDIS_URL.
    # OFF → Notifications silently skipped. Clients poll /api/video-status.


@lru_cache
def get_flags() -> FeatureFlags:
    return FeatureFlags()
