import uuid
from datetime import datetime
from pydantic import BaseModel, ConfigDict, EmailStr, Field
from typing import List, Dict, Any, Optional, Literal


def new_episode_id() -> str:
    return uuid.uuid4().hex


class Episode(BaseModel):
    """One entry of a story's embedded episode array (stored with camelCase keys)."""

    model_config = ConfigDict(populate_by_name=True)

    id: str = Field(default_factory=new_episode_id, description="Stable id, survives reorders")
    number: int = Field(0, description="Derived: always index + 1")
    title: str
    duration: str = Field(..., description="Free-form, e.g. 10:00")
    audio_url: str = Field(..., alias="audioUrl")


class EpisodeCreate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    duration: str = Field(..., min_length=1)
    audio_url: str = Field(..., min_length=1, alias="audioUrl")


class EpisodeUpdate(BaseModel):
    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    duration: Optional[str] = Field(None, min_length=1)
    audio_url: Optional[str] = Field(None, min_length=1, alias="audioUrl")
    # принимается, но не применяется: номер выводится из позиции
    number: Optional[int] = None


class EpisodeMove(BaseModel):
    direction: Literal[-1, 1]


class EpisodeReposition(BaseModel):
    from_index: Optional[int] = None
    to_index: Optional[int] = None


class EpisodeList(BaseModel):
    story_id: str
    episodes: List[Episode]


class StoryCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1)
    author: str = Field(..., min_length=1)
    genre: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None
    color: str = "#6366f1"


class StoryUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: Optional[str] = Field(None, min_length=1)
    author: Optional[str] = Field(None, min_length=1)
    color: Optional[str] = None
    # null очищает поле
    genre: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None


class StoryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    author: str
    genre: Optional[str] = None
    description: Optional[str] = None
    cover_url: Optional[str] = None
    color: str
    is_featured: bool
    is_trending: bool
    created_at: datetime
    episodes: List[Episode] = []


class SectionOut(BaseModel):
    flag: str
    active: List[StoryOut]
    candidates: List[StoryOut]


class GenreIn(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(..., min_length=1, max_length=100)


class GenreOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    name: str


class AppUserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    name: Optional[str] = None
    phone: Optional[str] = None
    premium: bool
    created_at: datetime


class UsersPage(BaseModel):
    total: int
    premium: int
    users: List[AppUserOut]


class DashboardOut(BaseModel):
    stories: int
    episodes: int
    recent: List[StoryOut]


class NotificationCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    title: str = Field(..., min_length=1, max_length=50)
    body: str = Field(..., min_length=1, max_length=150)
    target: Literal["all", "premium", "free"] = "all"
    image_url: Optional[str] = None


class NotificationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    title: str
    body: str
    target: str
    image_url: Optional[str] = None
    sent_at: datetime
    status: str
    sent_message_id: Optional[str] = None
    error: Optional[str] = None


class AppConfigSchema(BaseModel):
    maintenance_mode: bool = False
    min_version: str = "1.0.0"
    latest_version: str = "1.0.0"
    support_email: str = ""
    privacy_url: str = ""
    play_store_url: str = ""


class HealthResponse(BaseModel):
    status: str


class SessionOut(BaseModel):
    staff_id: int
    email: EmailStr
    name: str
    role: str
    menu: List[Dict[str, Any]] = []
