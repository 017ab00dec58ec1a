"""Pydantic schemas for feeds and social actions."""

from datetime import datetime
from typing import Literal, Optional
from uuid import UUID

from pydantic import BaseModel, Field

from app.models.generation_job import GenerationType
from app.models.social import Visibility


class FeedAuthor(BaseModel):
    """Post author as embedded in feed items."""

    id: str
    username: str
    avatar_url: Optional[str] = None


class FeedContent(BaseModel):
    """Generation attached to a post."""

    id: UUID
    prompt: str
    generation_type: GenerationType
    result_url: Optional[str] = None


class FeedItem(BaseModel):
    """One post in a feed.

    liked_by_me is only populated on per-viewer feeds (home); shared
    feeds leave it unset so one viewer's state is never cached for others.
    """

    id: UUID
    caption: Optional[str] = None
    visibility: Visibility
    created_at: datetime
    user: FeedAuthor
    content: Optional[FeedContent] = None
    like_count: int = 0
    liked_by_me: Optional[bool] = None


class CachedFeed(BaseModel):
    """The cached head of a feed and the feed's size when it was cached."""

    items: list[FeedItem]
    total: int


class Pagination(BaseModel):
    """Pagination metadata."""

    page: int
    limit: int
    total: int
    has_more: bool


class FeedResponse(BaseModel):
    """A page of a feed."""

    data: list[FeedItem]
    pagination: Pagination
    cached: bool = Field(default=False, description="Served from the feed cache")


class PostCreateRequest(BaseModel):
    """Request body for POST /posts."""

    content_id: Optional[UUID] = Field(default=None, description="Generation to share")
    caption: Optional[str] = Field(default=None, max_length=500)
    visibility: Visibility = Visibility.PUBLIC


class PostResponse(BaseModel):
    """A created post."""

    id: UUID
    account_id: str
    content_id: Optional[UUID] = None
    caption: Optional[str] = None
    visibility: Visibility
    created_at: datetime

    class Config:
        from_attributes = True


class InteractionResponse(BaseModel):
    """Acknowledgement of a queued like/unlike."""

    post_id: UUID
    action: Literal["like", "unlike"]
    queued: bool = True


class FollowResponse(BaseModel):
    """Result of a follow/unfollow."""

    account_id: str
    following: bool
