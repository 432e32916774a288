from datetime import datetime

from pydantic import BaseModel, Field

from app.config import MAX_CAPTION_LENGTH


def format_cursor(value: datetime | None) -> str | None:
    if value is None:
        return None
    return value.isoformat().replace("+00:00", "Z")


class LoginRequest(BaseModel):
    email: str
    password: str


class SignupRequest(BaseModel):
    email: str
    password: str
    next: str | None = None


class EmailRequest(BaseModel):
    email: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    refresh_token: str | None = None
    expires_at: int | None = None
    user_id: str
    email: str | None = None


class SignupResponse(BaseModel):
    status: str
    session: TokenResponse | None = None


class StatusResponse(BaseModel):
    status: str


class ProjectCreateRequest(BaseModel):
    title: str
    category: str = "other"


class ProjectResponse(BaseModel):
    id: int
    title: str
    category: str
    created_at: datetime


class EntryResponse(BaseModel):
    id: int
    project_id: int
    kind: str
    note: str | None
    taken_at: datetime
    media_path: str | None
    image_url: str | None = None


class ProjectDetailResponse(BaseModel):
    project: ProjectResponse
    entries: list[EntryResponse]


class ShareRequest(BaseModel):
    caption: str | None = Field(default=None, max_length=MAX_CAPTION_LENGTH)
    attribution_name: str | None = None
    attribution_url: str | None = None
    show_attribution: bool = False


class ShareResponse(BaseModel):
    id: int
    slug: str
    caption: str | None
    is_public: bool
    created_at: datetime
    href: str
    image_url: str | None = None


class ShareDetailResponse(BaseModel):
    slug: str
    caption: str | None
    created_at: datetime
    image_url: str | None
    fallback_href: str
    attribution_name: str | None = None
    attribution_url: str | None = None


class PairResponse(BaseModel):
    id: int
    caption: str | None
    is_public: bool
    created_at: datetime
    href: str


class PairDetailResponse(BaseModel):
    id: int
    caption: str | None
    created_at: datetime
    before_url: str | None
    after_url: str | None
    fallback_hrefs: dict[str, str]


class FeedItemResponse(BaseModel):
    key: str
    type: str
    id: int | str
    caption: str
    created_at: datetime
    href: str
    image_url: str | None = None
    before_url: str | None = None
    after_url: str | None = None
    fallback_hrefs: dict[str, str] = Field(default_factory=dict)
    attribution_name: str | None = None
    attribution_url: str | None = None


class FeedPageResponse(BaseModel):
    items: list[FeedItemResponse]
    next_cursor: str | None
    exhausted: bool
