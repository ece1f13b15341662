from __future__ import annotations

import json
import sqlite3
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Mapping

from .errors import StorageError
from .records import (
    CommunityMember,
    MetricSnapshot,
    SyncState,
    TweetRecord,
    UserProfile,
    UserStats,
)
from .storage_schema import initialize_sqlite


def to_iso(value: datetime) -> str:
    """Second-precision UTC ISO-8601, so text order matches time order."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="seconds")


def _utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def _json_dumps(value: Any) -> str:
    return json.dumps(
        value,
        ensure_ascii=False,
        sort_keys=True,
        separators=(",", ":"),
        default=str,
    )


def _bool_to_int(value: bool | None) -> int | None:
    if value is None:
        return None
    return 1 if value else 0


def _require(value: str, name: str) -> str:
    v = (value or "").strip()
    if not v:
        raise ValueError(f"{name} must be non-empty")
    return v


_INSERT_COMMUNITY = "INSERT OR IGNORE INTO communities(community_id, created_at) VALUES (?, ?)"


class SQLiteSyncStore:
    """
    Persistence boundary for the sync drivers.

    Every write runs in its own short transaction, so a failure mid-page leaves the
    rows already written intact and the sync cursor untouched.
    """

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self._conn.row_factory = sqlite3.Row

    @classmethod
    def open(cls, path: str | Path) -> "SQLiteSyncStore":
        db_path = str(path)
        if db_path != ":memory:":
            Path(db_path).parent.mkdir(parents=True, exist_ok=True)

        try:
            conn = sqlite3.connect(db_path)
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to open sqlite database: {db_path}: {e}") from e

        try:
            initialize_sqlite(conn)
        except Exception as e:
            conn.close()
            raise StorageError(f"Failed to initialize sqlite schema: {e}") from e

        return cls(conn)

    def close(self) -> None:
        self._conn.close()

    def __enter__(self) -> "SQLiteSyncStore":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    @property
    def conn(self) -> sqlite3.Connection:
        return self._conn

    def ping(self) -> bool:
        try:
            row = self._conn.execute("SELECT 1").fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Database ping failed: {e}") from e
        return row is not None and int(row[0]) == 1

    # -- sync state -------------------------------------------------------

    def get_state(self, community_id: str) -> SyncState:
        """Return the community's sync state, creating an empty row on first access."""
        cid = _require(community_id, "community_id")
        now = _utc_now_iso()

        try:
            with self._conn:
                self._conn.execute(_INSERT_COMMUNITY, (cid, now))
                self._conn.execute(
                    """
                    INSERT INTO ingest_state(community_id, backfill_cursor, last_seen_tweet_id, updated_at)
                    VALUES (?, NULL, NULL, ?)
                    ON CONFLICT(community_id) DO NOTHING
                    """.strip(),
                    (cid, now),
                )
            row = self._conn.execute(
                """
                SELECT community_id, backfill_cursor, last_seen_tweet_id, updated_at
                FROM ingest_state
                WHERE community_id = ?
                """.strip(),
                (cid,),
            ).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to read sync state: {e}") from e

        if row is None:
            raise StorageError("Failed to read sync state after insert")

        return SyncState(
            community_id=str(row["community_id"]),
            backfill_cursor=row["backfill_cursor"],
            last_seen_tweet_id=row["last_seen_tweet_id"],
            updated_at=row["updated_at"],
        )

    def set_backfill_cursor(self, community_id: str, cursor: str | None) -> None:
        cid = _require(community_id, "community_id")
        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE ingest_state SET backfill_cursor = ?, updated_at = ? WHERE community_id = ?",
                    (cursor, _utc_now_iso(), cid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update backfill cursor: {e}") from e

    def set_watermark(self, community_id: str, tweet_id: str) -> None:
        cid = _require(community_id, "community_id")
        tid = _require(tweet_id, "tweet_id")
        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE ingest_state SET last_seen_tweet_id = ?, updated_at = ? WHERE community_id = ?",
                    (tid, _utc_now_iso(), cid),
                )
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to update watermark: {e}") from e

    # -- upserts ----------------------------------------------------------

    def upsert_tweet(self, community_id: str, tweet: TweetRecord) -> None:
        """Insert or update a post; a NULL incoming field never erases a stored value."""
        cid = _require(community_id, "community_id")
        tid = _require(tweet.tweet_id, "tweet_id")
        now = _utc_now_iso()
        created = to_iso(tweet.created_at) if tweet.created_at is not None else None
        raw_json = _json_dumps(dict(tweet.raw)) if tweet.raw else None

        try:
            with self._conn:
                self._conn.execute(_INSERT_COMMUNITY, (cid, now))
                self._conn.execute(
                    """
                    INSERT INTO community_tweets(
                      community_id, tweet_id, created_at, author_user_id, author_username,
                      author_name, url, text, raw_json, inserted_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(community_id, tweet_id) DO UPDATE SET
                      created_at = COALESCE(excluded.created_at, community_tweets.created_at),
                      author_user_id = COALESCE(excluded.author_user_id, community_tweets.author_user_id),
                      author_username = COALESCE(excluded.author_username, community_tweets.author_username),
                      author_name = COALESCE(excluded.author_name, community_tweets.author_name),
                      url = COALESCE(excluded.url, community_tweets.url),
                      text = COALESCE(excluded.text, community_tweets.text),
                      raw_json = COALESCE(excluded.raw_json, community_tweets.raw_json)
                    """.strip(),
                    (
                        cid,
                        tid,
                        created,
                        tweet.author_user_id,
                        tweet.author_username,
                        tweet.author_name,
                        tweet.url,
                        tweet.text,
                        raw_json,
                        now,
                    ),
                )
        except (sqlite3.DatabaseError, OverflowError) as e:
            raise StorageError(f"Failed to upsert tweet {tid}: {e}") from e

    def upsert_metrics(self, snapshot: MetricSnapshot, *, updated_at: datetime | None = None) -> None:
        """Replace the latest metric snapshot for a tweet (last write wins)."""
        tid = _require(snapshot.tweet_id, "tweet_id")
        ts = to_iso(updated_at) if updated_at is not None else _utc_now_iso()
        raw_json = _json_dumps(dict(snapshot.raw)) if snapshot.raw else None

        try:
            with self._conn:
                self._conn.execute(
                    """
                    INSERT INTO tweet_metrics_latest(
                      tweet_id, view_count, like_count, retweet_count, reply_count,
                      quote_count, bookmark_count, raw_json, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(tweet_id) DO UPDATE SET
                      view_count = excluded.view_count,
                      like_count = excluded.like_count,
                      retweet_count = excluded.retweet_count,
                      reply_count = excluded.reply_count,
                      quote_count = excluded.quote_count,
                      bookmark_count = excluded.bookmark_count,
                      raw_json = excluded.raw_json,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (
                        tid,
                        int(snapshot.view_count),
                        int(snapshot.like_count),
                        int(snapshot.retweet_count),
                        int(snapshot.reply_count),
                        int(snapshot.quote_count),
                        int(snapshot.bookmark_count),
                        raw_json,
                        ts,
                    ),
                )
        except (sqlite3.DatabaseError, OverflowError) as e:
            raise StorageError(f"Failed to upsert metrics for {tid}: {e}") from e

    def upsert_user(self, profile: UserProfile) -> None:
        """
        Replace a user profile.

        A handle can move between accounts upstream; any other row still holding
        this handle gives it up first so the unique constraint holds.
        """
        uid = _require(profile.user_id, "user_id")
        handle = _require(profile.username, "username")
        raw_json = _json_dumps(dict(profile.raw)) if profile.raw else None

        try:
            with self._conn:
                self._conn.execute(
                    "UPDATE users SET username = NULL WHERE username = ? AND user_id <> ?",
                    (handle, uid),
                )
                self._conn.execute(
                    """
                    INSERT INTO users(
                      user_id, username, name, followers, following, profile_picture,
                      verified_type, is_blue_verified, raw_json, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(user_id) DO UPDATE SET
                      username = excluded.username,
                      name = excluded.name,
                      followers = excluded.followers,
                      following = excluded.following,
                      profile_picture = excluded.profile_picture,
                      verified_type = excluded.verified_type,
                      is_blue_verified = excluded.is_blue_verified,
                      raw_json = excluded.raw_json,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (
                        uid,
                        handle,
                        profile.name,
                        int(profile.followers),
                        int(profile.following),
                        profile.profile_picture,
                        profile.verified_type,
                        _bool_to_int(profile.is_blue_verified),
                        raw_json,
                        _utc_now_iso(),
                    ),
                )
        except (sqlite3.DatabaseError, OverflowError) as e:
            raise StorageError(f"Failed to upsert user {uid}: {e}") from e

    def upsert_member(self, community_id: str, member: CommunityMember) -> None:
        cid = _require(community_id, "community_id")
        uid = _require(member.user_id, "user_id")
        now = _utc_now_iso()
        raw_json = _json_dumps(dict(member.raw)) if member.raw else None

        try:
            with self._conn:
                self._conn.execute(_INSERT_COMMUNITY, (cid, now))
                self._conn.execute(
                    """
                    INSERT INTO community_members(
                      community_id, user_id, username, name, followers, following,
                      profile_picture, is_blue_verified, raw_json, updated_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    ON CONFLICT(community_id, user_id) DO UPDATE SET
                      username = excluded.username,
                      name = excluded.name,
                      followers = excluded.followers,
                      following = excluded.following,
                      profile_picture = excluded.profile_picture,
                      is_blue_verified = excluded.is_blue_verified,
                      raw_json = excluded.raw_json,
                      updated_at = excluded.updated_at
                    """.strip(),
                    (
                        cid,
                        uid,
                        member.username,
                        member.name,
                        int(member.followers),
                        int(member.following),
                        member.profile_picture,
                        _bool_to_int(member.is_blue_verified),
                        raw_json,
                        now,
                    ),
                )
        except (sqlite3.DatabaseError, OverflowError) as e:
            raise StorageError(f"Failed to upsert member {uid}: {e}") from e

    # -- read queries -----------------------------------------------------

    def tweet_ids_needing_metrics(
        self,
        community_id: str,
        *,
        stale_before: datetime,
        since: datetime | None = None,
        limit: int = 5000,
    ) -> list[str]:
        """
        Tweets whose metrics are missing or older than `stale_before`, newest first.

        `since` restricts to tweets created at or after it; None means every tweet
        in the community.
        """
        cid = _require(community_id, "community_id")
        if limit <= 0:
            return []

        where = ["ct.community_id = ?"]
        params: list[Any] = [cid]
        if since is not None:
            where.append("ct.created_at >= ?")
            params.append(to_iso(since))
        params.extend([to_iso(stale_before), int(limit)])

        sql = f"""
        SELECT ct.tweet_id
        FROM community_tweets ct
        LEFT JOIN tweet_metrics_latest tm ON tm.tweet_id = ct.tweet_id
        WHERE {" AND ".join(where)}
          AND (tm.tweet_id IS NULL OR tm.updated_at < ?)
        ORDER BY ct.created_at IS NULL, ct.created_at DESC
        LIMIT ?
        """.strip()

        try:
            rows = self._conn.execute(sql, tuple(params)).fetchall()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to select tweets needing metrics: {e}") from e
        return [str(r["tweet_id"]) for r in rows]

    def active_usernames(self, community_id: str, *, since: datetime) -> list[str]:
        """Distinct lower-cased handles that posted in the community since `since`."""
        cid = _require(community_id, "community_id")
        try:
            rows = self._conn.execute(
                """
                SELECT DISTINCT lower(author_username) AS username
                FROM community_tweets
                WHERE community_id = ?
                  AND author_username IS NOT NULL
                  AND created_at >= ?
                ORDER BY 1
                """.strip(),
                (cid, to_iso(since)),
            ).fetchall()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to select active usernames: {e}") from e
        return [str(r["username"]) for r in rows if r["username"]]

    def user_stats(self, community_id: str, username: str) -> UserStats:
        """All-time totals for one handle's posts in the community."""
        cid = _require(community_id, "community_id")
        handle = _require(username, "username").lstrip("@").lower()

        try:
            row = self._conn.execute(
                """
                SELECT
                  COUNT(*) AS posts,
                  COALESCE(SUM(tm.view_count), 0) AS views,
                  COALESCE(SUM(tm.like_count), 0) AS likes,
                  COALESCE(SUM(tm.retweet_count), 0) AS retweets,
                  COALESCE(SUM(tm.reply_count), 0) AS replies,
                  COALESCE(SUM(tm.quote_count), 0) AS quotes,
                  COALESCE(SUM(tm.bookmark_count), 0) AS bookmarks
                FROM community_tweets ct
                LEFT JOIN tweet_metrics_latest tm ON tm.tweet_id = ct.tweet_id
                WHERE ct.community_id = ?
                  AND lower(ct.author_username) = ?
                """.strip(),
                (cid, handle),
            ).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Failed to compute user stats: {e}") from e

        if row is None:
            return UserStats(username=handle)

        return UserStats(
            username=handle,
            posts=int(row["posts"]),
            views=int(row["views"]),
            likes=int(row["likes"]),
            retweets=int(row["retweets"]),
            replies=int(row["replies"]),
            quotes=int(row["quotes"]),
            bookmarks=int(row["bookmarks"]),
        )

    def _fetch_one(self, sql: str, params: tuple[Any, ...] = ()) -> sqlite3.Row | None:
        try:
            return self._conn.execute(sql, params).fetchone()
        except sqlite3.DatabaseError as e:
            raise StorageError(f"Query failed: {e}") from e

    def get_tweet(self, community_id: str, tweet_id: str) -> Mapping[str, Any] | None:
        row = self._fetch_one(
            "SELECT * FROM community_tweets WHERE community_id = ? AND tweet_id = ?",
            (community_id, tweet_id),
        )
        return dict(row) if row is not None else None

    def get_metrics(self, tweet_id: str) -> Mapping[str, Any] | None:
        row = self._fetch_one("SELECT * FROM tweet_metrics_latest WHERE tweet_id = ?", (tweet_id,))
        return dict(row) if row is not None else None

    def get_user(self, user_id: str) -> Mapping[str, Any] | None:
        row = self._fetch_one("SELECT * FROM users WHERE user_id = ?", (user_id,))
        return dict(row) if row is not None else None

    def tweet_count(self, community_id: str | None = None) -> int:
        if community_id is None:
            row = self._fetch_one("SELECT COUNT(1) AS n FROM community_tweets")
        else:
            row = self._fetch_one(
                "SELECT COUNT(1) AS n FROM community_tweets WHERE community_id = ?",
                (community_id,),
            )
        return int(row["n"]) if row is not None else 0

    def metrics_count(self) -> int:
        row = self._fetch_one("SELECT COUNT(1) AS n FROM tweet_metrics_latest")
        return int(row["n"]) if row is not None else 0

    def user_count(self) -> int:
        row = self._fetch_one("SELECT COUNT(1) AS n FROM users")
        return int(row["n"]) if row is not None else 0

    def member_count(self, community_id: str) -> int:
        row = self._fetch_one(
            "SELECT COUNT(1) AS n FROM community_members WHERE community_id = ?",
            (community_id,),
        )
        return int(row["n"]) if row is not None else 0
