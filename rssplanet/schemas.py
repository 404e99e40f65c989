"""
Pydantic models for API responses and upstream payloads.
"""

from pydantic import BaseModel, ConfigDict, Field


# ─────────────────────────────────────────────────────────────
# Health Schemas
# ─────────────────────────────────────────────────────────────

class HealthResponse(BaseModel):
    """Liveness and configuration summary."""
    status: str
    version: str
    store_backend: str
    keys_loaded: int


# ─────────────────────────────────────────────────────────────
# Mastodon Schemas
# ─────────────────────────────────────────────────────────────

class MastoAccount(BaseModel):
    """The subset of a Mastodon account used for rendering."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    username: str = ""
    acct: str = ""
    display_name: str = ""
    url: str = ""
    avatar: str = ""

    @property
    def name(self) -> str:
        return self.display_name or self.username or self.acct


class MastoMediaAttachment(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    type: str = "unknown"
    url: str | None = None
    preview_url: str | None = None
    description: str | None = None


class MastoStatus(BaseModel):
    """A Mastodon status; boosts carry the original in reblog."""
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: str
    created_at: str
    url: str | None = None
    uri: str | None = None
    content: str = ""
    spoiler_text: str = ""
    sensitive: bool = False
    account: MastoAccount
    reblog: "MastoStatus | None" = None
    media_attachments: list[MastoMediaAttachment] = Field(default_factory=list)
    replies_count: int = 0
    reblogs_count: int = 0
    favourites_count: int = 0

    @property
    def link(self) -> str:
        return self.url or self.uri or ""


MastoStatus.model_rebuild()
