from __future__ import annotations

import math
from datetime import datetime, timezone
from typing import Any, Mapping

from .records import CommunityMember, MetricSnapshot, Page, TweetRecord, UserProfile

# Upstream uses the classic Twitter format: "Tue Dec 10 07:00:30 +0000 2024".
_TWITTER_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def _coerce_str(value: Any) -> str | None:
    if isinstance(value, str):
        s = value.strip()
        return s if s else None
    return None


def _coerce_id(value: Any) -> str | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, str):
        v = value.strip()
        return v if v else None
    if isinstance(value, int):
        return str(value)
    return None


def _coerce_bool(value: Any) -> bool | None:
    if isinstance(value, bool):
        return value
    return None


# SQLite INTEGER is a signed 64-bit value.
_MAX_COUNT = 2**63 - 1


def _clamp_count(value: int) -> int:
    return max(-_MAX_COUNT - 1, min(_MAX_COUNT, value))


def _coerce_count(value: Any) -> int:
    if isinstance(value, bool) or value is None:
        return 0
    if isinstance(value, int):
        return _clamp_count(value)
    if isinstance(value, float):
        return _clamp_count(int(value)) if math.isfinite(value) else 0
    if isinstance(value, str):
        try:
            parsed = float(value.strip())
        except ValueError:
            return 0
        return _clamp_count(int(parsed)) if math.isfinite(parsed) else 0
    return 0


def _first(item: Mapping[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value is not None:
            return value
    return None


def parse_created_at(value: Any) -> datetime | None:
    """
    Parse an upstream timestamp into an aware UTC datetime.

    Accepts the Twitter format and ISO-8601 (with or without "Z"); anything else
    yields None rather than an error.
    """
    s = _coerce_str(value)
    if s is None:
        return None

    try:
        parsed = datetime.strptime(s, _TWITTER_DATE_FORMAT)
    except ValueError:
        try:
            parsed = datetime.fromisoformat(s.replace("Z", "+00:00"))
        except ValueError:
            return None

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def parse_page(data: Mapping[str, Any] | None, *, items_key: str) -> Page:
    """
    Extract items and pagination fields from a list-endpoint response.

    Items are read from `items_key`, falling back to "items" then "data"; entries
    that are not objects are dropped. A blank next_cursor counts as absent.
    """
    if not isinstance(data, Mapping):
        return Page()

    raw_items: Any = None
    for key in (items_key, "items", "data"):
        candidate = data.get(key)
        if isinstance(candidate, list):
            raw_items = candidate
            break

    items = tuple(i for i in (raw_items or []) if isinstance(i, Mapping))
    cursor = data.get("next_cursor")
    next_cursor = str(cursor).strip() if cursor is not None else None

    return Page(
        items=items,
        has_next_page=bool(data.get("has_next_page")),
        next_cursor=next_cursor or None,
    )


def item_id(item: Mapping[str, Any]) -> str | None:
    return _coerce_id(item.get("id"))


def normalize_tweet(item: Mapping[str, Any]) -> TweetRecord | None:
    """
    Map a tweet object into a TweetRecord.

    Field precedence:
    - created_at: "createdAt", then "created_at"
    - author id: author.id, then top-level "authorId"
    - author handle: author.userName, author.username, author.screen_name
    - url: "url", then "twitterUrl"

    Returns None only when the tweet has no usable id.
    """
    tweet_id = item_id(item)
    if tweet_id is None:
        return None

    author = item.get("author")
    if not isinstance(author, Mapping):
        author = {}

    author_user_id = _coerce_id(author.get("id")) or _coerce_id(item.get("authorId"))
    author_username = (
        _coerce_str(author.get("userName"))
        or _coerce_str(author.get("username"))
        or _coerce_str(author.get("screen_name"))
    )

    return TweetRecord(
        tweet_id=tweet_id,
        created_at=parse_created_at(_first(item, "createdAt", "created_at")),
        author_user_id=author_user_id,
        author_username=author_username,
        author_name=_coerce_str(author.get("name")),
        url=_coerce_str(item.get("url")) or _coerce_str(item.get("twitterUrl")),
        text=_coerce_str(item.get("text")),
        raw=dict(item),
    )


def normalize_metrics(item: Mapping[str, Any]) -> MetricSnapshot | None:
    tweet_id = item_id(item)
    if tweet_id is None:
        return None

    return MetricSnapshot(
        tweet_id=tweet_id,
        view_count=_coerce_count(item.get("viewCount")),
        like_count=_coerce_count(item.get("likeCount")),
        retweet_count=_coerce_count(item.get("retweetCount")),
        reply_count=_coerce_count(item.get("replyCount")),
        quote_count=_coerce_count(item.get("quoteCount")),
        bookmark_count=_coerce_count(item.get("bookmarkCount")),
        raw=dict(item),
    )


def normalize_user(item: Mapping[str, Any] | None) -> UserProfile | None:
    """
    Map a user object into a UserProfile.

    Records without both an id and a handle are dropped (None), never raised on.
    """
    if not isinstance(item, Mapping):
        return None

    user_id = item_id(item)
    username = (
        _coerce_str(item.get("userName"))
        or _coerce_str(item.get("username"))
        or _coerce_str(item.get("screen_name"))
    )
    if not user_id or not username:
        return None

    return UserProfile(
        user_id=user_id,
        username=username,
        name=_coerce_str(item.get("name")),
        followers=_coerce_count(_first(item, "followers", "followers_count")),
        following=_coerce_count(_first(item, "following", "friends_count")),
        profile_picture=(
            _coerce_str(item.get("profilePicture"))
            or _coerce_str(item.get("profile_image_url_https"))
        ),
        verified_type=_coerce_str(item.get("verifiedType")) or _coerce_str(item.get("verified_type")),
        is_blue_verified=_coerce_bool(_first(item, "isBlueVerified", "is_blue_verified")),
        raw=dict(item),
    )


def normalize_member(item: Mapping[str, Any]) -> CommunityMember | None:
    user_id = item_id(item)
    if user_id is None:
        return None

    return CommunityMember(
        user_id=user_id,
        username=_coerce_str(item.get("userName")) or _coerce_str(item.get("username")),
        name=_coerce_str(item.get("name")),
        followers=_coerce_count(_first(item, "followers", "followers_count")),
        following=_coerce_count(_first(item, "following", "friends_count")),
        profile_picture=(
            _coerce_str(item.get("profilePicture"))
            or _coerce_str(item.get("profile_image_url_https"))
        ),
        is_blue_verified=_coerce_bool(_first(item, "isBlueVerified", "is_blue_verified")),
        raw=dict(item),
    )


def user_payload(data: Mapping[str, Any] | None) -> Mapping[str, Any] | None:
    """Pick the profile object out of a single-user lookup: "user", "data", then "result"."""
    if not isinstance(data, Mapping):
        return None
    for key in ("user", "data", "result"):
        value = data.get(key)
        if isinstance(value, Mapping) and value:
            return value
    return None
