from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Mapping, Sequence


@dataclass(frozen=True)
class TweetRecord:
    """A community post in canonical shape, ready for a coalescing upsert."""

    tweet_id: str
    created_at: datetime | None = None
    author_user_id: str | None = None
    author_username: str | None = None
    author_name: str | None = None
    url: str | None = None
    text: str | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class MetricSnapshot:
    """Latest engagement counters for one tweet; replaces any prior snapshot."""

    tweet_id: str
    view_count: int = 0
    like_count: int = 0
    retweet_count: int = 0
    reply_count: int = 0
    quote_count: int = 0
    bookmark_count: int = 0
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class UserProfile:
    user_id: str
    username: str
    name: str | None = None
    followers: int = 0
    following: int = 0
    profile_picture: str | None = None
    verified_type: str | None = None
    is_blue_verified: bool | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class CommunityMember:
    user_id: str
    username: str | None = None
    name: str | None = None
    followers: int = 0
    following: int = 0
    profile_picture: str | None = None
    is_blue_verified: bool | None = None
    raw: Mapping[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class SyncState:
    """
    Per-community progress.

    backfill_cursor=None means either "start from the beginning of history" or
    "backfill complete"; last_seen_tweet_id=None means no incremental run yet.
    """

    community_id: str
    backfill_cursor: str | None = None
    last_seen_tweet_id: str | None = None
    updated_at: str | None = None


@dataclass(frozen=True)
class Page:
    """One page of a cursor-paginated list endpoint."""

    items: Sequence[Mapping[str, Any]] = ()
    has_next_page: bool = False
    next_cursor: str | None = None

    @property
    def has_more(self) -> bool:
        return bool(self.has_next_page and self.next_cursor)


@dataclass(frozen=True)
class UserStats:
    username: str
    posts: int = 0
    views: int = 0
    likes: int = 0
    retweets: int = 0
    replies: int = 0
    quotes: int = 0
    bookmarks: int = 0
