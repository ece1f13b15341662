from __future__ import annotations

import tempfile
import unittest
from datetime import datetime, timedelta, timezone
from pathlib import Path

from community_sync.errors import StorageError
from community_sync.records import CommunityMember, MetricSnapshot, TweetRecord, UserProfile
from community_sync.storage import SQLiteSyncStore

_NOW = datetime(2025, 6, 1, 12, 0, 0, tzinfo=timezone.utc)


def _tweet(tweet_id: str, **overrides: object) -> TweetRecord:
    fields: dict[str, object] = {
        "tweet_id": tweet_id,
        "created_at": _NOW - timedelta(hours=1),
        "author_user_id": "u1",
        "author_username": "Alice",
        "url": f"https://x.com/i/status/{tweet_id}",
        "text": "hello",
    }
    fields.update(overrides)
    return TweetRecord(**fields)  # type: ignore[arg-type]


class TestSyncState(unittest.TestCase):
    def test_state_is_created_lazily_and_idempotently(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            first = store.get_state("c1")
            second = store.get_state("c1")

            self.assertEqual(first.community_id, "c1")
            self.assertIsNone(first.backfill_cursor)
            self.assertIsNone(first.last_seen_tweet_id)
            self.assertEqual(second.community_id, "c1")

            n = store.conn.execute("SELECT COUNT(1) FROM ingest_state").fetchone()[0]
            self.assertEqual(n, 1)

    def test_cursor_and_watermark_point_updates(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.get_state("c1")
            store.get_state("c2")

            store.set_backfill_cursor("c1", "cur-1")
            store.set_watermark("c1", "T100")

            self.assertEqual(store.get_state("c1").backfill_cursor, "cur-1")
            self.assertEqual(store.get_state("c1").last_seen_tweet_id, "T100")
            self.assertIsNone(store.get_state("c2").backfill_cursor)

            store.set_backfill_cursor("c1", None)
            self.assertIsNone(store.get_state("c1").backfill_cursor)

    def test_state_survives_reopen(self) -> None:
        with tempfile.TemporaryDirectory() as td:
            db_path = Path(td) / "nested" / "state.sqlite"
            with SQLiteSyncStore.open(db_path) as store:
                store.get_state("c1")
                store.set_backfill_cursor("c1", "resume-here")

            with SQLiteSyncStore.open(db_path) as store:
                self.assertEqual(store.get_state("c1").backfill_cursor, "resume-here")


class TestTweetUpserts(unittest.TestCase):
    def test_same_tweet_twice_is_one_row(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1"))
            store.upsert_tweet("c1", _tweet("1"))

            self.assertEqual(store.tweet_count("c1"), 1)
            row = store.get_tweet("c1", "1")
            assert row is not None
            self.assertEqual(row["author_username"], "Alice")
            self.assertEqual(row["text"], "hello")

    def test_null_fields_do_not_erase_known_values(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1"))
            store.upsert_tweet(
                "c1",
                _tweet("1", author_username=None, created_at=None, text=None, url=None),
            )

            row = store.get_tweet("c1", "1")
            assert row is not None
            self.assertEqual(row["author_username"], "Alice")
            self.assertEqual(row["text"], "hello")
            self.assertEqual(row["created_at"], "2025-06-01T11:00:00+00:00")

    def test_non_null_fields_overwrite(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1"))
            store.upsert_tweet("c1", _tweet("1", text="edited"))
            row = store.get_tweet("c1", "1")
            assert row is not None
            self.assertEqual(row["text"], "edited")

    def test_same_tweet_in_two_communities(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1"))
            store.upsert_tweet("c2", _tweet("1"))
            self.assertEqual(store.tweet_count(), 2)


class TestSnapshots(unittest.TestCase):
    def test_metrics_last_write_wins(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_metrics(MetricSnapshot(tweet_id="1", like_count=10, view_count=100))
            store.upsert_metrics(MetricSnapshot(tweet_id="1", like_count=3))

            row = store.get_metrics("1")
            assert row is not None
            self.assertEqual(row["like_count"], 3)
            self.assertEqual(row["view_count"], 0)
            self.assertEqual(store.metrics_count(), 1)

    def test_out_of_range_counter_is_a_storage_error(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            with self.assertRaises(StorageError):
                store.upsert_metrics(MetricSnapshot(tweet_id="1", view_count=10**20))
            self.assertIsNone(store.get_metrics("1"))

    def test_user_overwrite_and_handle_move(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_user(UserProfile(user_id="1", username="alice", followers=5, name="A"))
            store.upsert_user(UserProfile(user_id="1", username="alice", followers=7))

            row = store.get_user("1")
            assert row is not None
            self.assertEqual(row["followers"], 7)
            self.assertIsNone(row["name"])

            # Handle reused by another account.
            store.upsert_user(UserProfile(user_id="2", username="alice"))
            old = store.get_user("1")
            new = store.get_user("2")
            assert old is not None and new is not None
            self.assertIsNone(old["username"])
            self.assertEqual(new["username"], "alice")

    def test_member_upsert(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_member("c1", CommunityMember(user_id="1", username="alice"))
            store.upsert_member("c1", CommunityMember(user_id="1", username="alice2"))
            self.assertEqual(store.member_count("c1"), 1)
            row = store.conn.execute("SELECT username FROM community_members").fetchone()
            self.assertEqual(row["username"], "alice2")


class TestReadQueries(unittest.TestCase):
    def test_tweets_needing_metrics(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("old", created_at=_NOW - timedelta(days=10)))
            store.upsert_tweet("c1", _tweet("fresh", created_at=_NOW - timedelta(hours=2)))
            store.upsert_tweet("c1", _tweet("stale", created_at=_NOW - timedelta(hours=3)))
            store.upsert_tweet("c1", _tweet("missing", created_at=_NOW - timedelta(hours=1)))
            store.upsert_tweet("c1", _tweet("undated", created_at=None))
            store.upsert_tweet("c2", _tweet("other", created_at=_NOW - timedelta(hours=1)))

            store.upsert_metrics(MetricSnapshot(tweet_id="fresh"), updated_at=_NOW - timedelta(hours=1))
            store.upsert_metrics(MetricSnapshot(tweet_id="stale"), updated_at=_NOW - timedelta(hours=7))

            stale_before = _NOW - timedelta(hours=6)

            recent = store.tweet_ids_needing_metrics(
                "c1", stale_before=stale_before, since=_NOW - timedelta(hours=48)
            )
            self.assertEqual(recent, ["missing", "stale"])

            everything = store.tweet_ids_needing_metrics("c1", stale_before=stale_before)
            self.assertEqual(everything, ["missing", "stale", "old", "undated"])

            capped = store.tweet_ids_needing_metrics("c1", stale_before=stale_before, limit=1)
            self.assertEqual(capped, ["missing"])

    def test_active_usernames_are_distinct_and_casefolded(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1", author_username="Alice"))
            store.upsert_tweet("c1", _tweet("2", author_username="alice"))
            store.upsert_tweet("c1", _tweet("3", author_username="Bob"))
            store.upsert_tweet("c1", _tweet("4", author_username=None))
            store.upsert_tweet(
                "c1", _tweet("5", author_username="carol", created_at=_NOW - timedelta(days=3))
            )

            names = store.active_usernames("c1", since=_NOW - timedelta(hours=24))
            self.assertEqual(names, ["alice", "bob"])

    def test_user_stats(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            store.upsert_tweet("c1", _tweet("1", author_username="Alice"))
            store.upsert_tweet("c1", _tweet("2", author_username="alice"))
            store.upsert_tweet("c1", _tweet("3", author_username="bob"))
            store.upsert_metrics(MetricSnapshot(tweet_id="1", view_count=100, like_count=5))
            store.upsert_metrics(MetricSnapshot(tweet_id="2", view_count=50, bookmark_count=2))

            stats = store.user_stats("c1", "@ALICE")
            self.assertEqual(stats.username, "alice")
            self.assertEqual(stats.posts, 2)
            self.assertEqual(stats.views, 150)
            self.assertEqual(stats.likes, 5)
            self.assertEqual(stats.bookmarks, 2)

            nobody = store.user_stats("c1", "nobody")
            self.assertEqual(nobody.posts, 0)
            self.assertEqual(nobody.views, 0)

    def test_reads_wrap_database_errors(self) -> None:
        store = SQLiteSyncStore.open(":memory:")
        store.close()

        with self.assertRaises(StorageError):
            store.get_tweet("c1", "1")
        with self.assertRaises(StorageError):
            store.tweet_count()

    def test_ping(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            self.assertTrue(store.ping())


if __name__ == "__main__":
    unittest.main()
