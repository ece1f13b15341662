# tests/test_normalize.py
from __future__ import annotations

import unittest
from datetime import datetime, timezone

from community_sync.normalize import (
    normalize_member,
    normalize_metrics,
    normalize_tweet,
    normalize_user,
    parse_created_at,
    parse_page,
    user_payload,
)


class TestParseCreatedAt(unittest.TestCase):
    def test_twitter_format(self) -> None:
        dt = parse_created_at("Tue Dec 10 07:00:30 +0000 2024")
        self.assertEqual(dt, datetime(2024, 12, 10, 7, 0, 30, tzinfo=timezone.utc))

    def test_iso_format_with_z(self) -> None:
        dt = parse_created_at("2025-01-02T03:04:05.000Z")
        self.assertEqual(dt, datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    def test_offset_is_converted_to_utc(self) -> None:
        dt = parse_created_at("2025-01-02T05:04:05+02:00")
        self.assertEqual(dt, datetime(2025, 1, 2, 3, 4, 5, tzinfo=timezone.utc))

    def test_unparsable_is_none(self) -> None:
        self.assertIsNone(parse_created_at("not a date"))
        self.assertIsNone(parse_created_at(""))
        self.assertIsNone(parse_created_at(12345))


class TestNormalizeTweet(unittest.TestCase):
    def test_extracts_common_fields(self) -> None:
        tw = normalize_tweet(
            {
                "id": 1869000000000000001,
                "url": "https://x.com/alice/status/1",
                "text": "gm",
                "createdAt": "Tue Dec 10 07:00:30 +0000 2024",
                "author": {"id": 42, "userName": "Alice", "name": "Alice A."},
            }
        )
        assert tw is not None
        self.assertEqual(tw.tweet_id, "1869000000000000001")
        self.assertEqual(tw.author_user_id, "42")
        self.assertEqual(tw.author_username, "Alice")
        self.assertEqual(tw.author_name, "Alice A.")
        self.assertEqual(tw.text, "gm")
        self.assertIsNotNone(tw.created_at)

    def test_author_handle_fallbacks(self) -> None:
        tw = normalize_tweet({"id": "1", "author": {"username": "bob"}})
        assert tw is not None
        self.assertEqual(tw.author_username, "bob")
        self.assertIsNone(tw.author_user_id)

        tw2 = normalize_tweet({"id": "2", "author": {"screen_name": "carol"}})
        assert tw2 is not None
        self.assertEqual(tw2.author_username, "carol")

    def test_missing_fields_default_to_none(self) -> None:
        tw = normalize_tweet({"id": "7", "createdAt": "garbage"})
        assert tw is not None
        self.assertIsNone(tw.created_at)
        self.assertIsNone(tw.author_username)
        self.assertIsNone(tw.url)
        self.assertIsNone(tw.text)

    def test_no_id_returns_none(self) -> None:
        self.assertIsNone(normalize_tweet({"text": "orphan"}))


class TestNormalizeMetrics(unittest.TestCase):
    def test_counters_default_to_zero(self) -> None:
        m = normalize_metrics({"id": 5, "likeCount": 3, "viewCount": "120"})
        assert m is not None
        self.assertEqual(m.tweet_id, "5")
        self.assertEqual(m.like_count, 3)
        self.assertEqual(m.view_count, 120)
        self.assertEqual(m.retweet_count, 0)
        self.assertEqual(m.reply_count, 0)
        self.assertEqual(m.quote_count, 0)
        self.assertEqual(m.bookmark_count, 0)

    def test_garbage_counter_is_zero(self) -> None:
        m = normalize_metrics({"id": "5", "likeCount": "lots", "replyCount": True})
        assert m is not None
        self.assertEqual(m.like_count, 0)
        self.assertEqual(m.reply_count, 0)

    def test_non_finite_counter_is_zero(self) -> None:
        m = normalize_metrics(
            {
                "id": "6",
                "viewCount": "inf",
                "likeCount": float("inf"),
                "retweetCount": "1e999",
                "replyCount": float("nan"),
            }
        )
        assert m is not None
        self.assertEqual(m.view_count, 0)
        self.assertEqual(m.like_count, 0)
        self.assertEqual(m.retweet_count, 0)
        self.assertEqual(m.reply_count, 0)

    def test_huge_counter_is_clamped_to_sqlite_range(self) -> None:
        m = normalize_metrics({"id": "7", "quoteCount": 10**20, "bookmarkCount": "1e30"})
        assert m is not None
        self.assertEqual(m.quote_count, 2**63 - 1)
        self.assertEqual(m.bookmark_count, 2**63 - 1)


class TestNormalizeUser(unittest.TestCase):
    def test_full_profile(self) -> None:
        u = normalize_user(
            {
                "id": "9",
                "userName": "dave",
                "name": "Dave",
                "followers": 10,
                "following": 2,
                "profilePicture": "https://img/d.png",
                "isBlueVerified": True,
                "verifiedType": "business",
            }
        )
        assert u is not None
        self.assertEqual(u.user_id, "9")
        self.assertEqual(u.username, "dave")
        self.assertEqual(u.followers, 10)
        self.assertTrue(u.is_blue_verified)
        self.assertEqual(u.verified_type, "business")

    def test_missing_handle_is_dropped(self) -> None:
        self.assertIsNone(normalize_user({"id": "9", "name": "No Handle"}))

    def test_missing_id_is_dropped(self) -> None:
        self.assertIsNone(normalize_user({"userName": "ghost"}))

    def test_non_mapping_is_dropped(self) -> None:
        self.assertIsNone(normalize_user(None))


class TestPayloadHelpers(unittest.TestCase):
    def test_user_payload_precedence(self) -> None:
        self.assertEqual(user_payload({"user": {"id": "1"}, "data": {"id": "2"}}), {"id": "1"})
        self.assertEqual(user_payload({"data": {"id": "2"}}), {"id": "2"})
        self.assertEqual(user_payload({"result": {"id": "3"}}), {"id": "3"})
        self.assertIsNone(user_payload({"status": "success"}))

    def test_parse_page(self) -> None:
        p = parse_page(
            {"tweets": [{"id": "1"}, "junk"], "has_next_page": True, "next_cursor": "abc"},
            items_key="tweets",
        )
        self.assertEqual(len(p.items), 1)
        self.assertTrue(p.has_more)
        self.assertEqual(p.next_cursor, "abc")

    def test_parse_page_blank_cursor_means_no_more(self) -> None:
        p = parse_page({"tweets": [], "has_next_page": True, "next_cursor": ""}, items_key="tweets")
        self.assertFalse(p.has_more)

    def test_parse_page_missing_flag_means_no_more(self) -> None:
        p = parse_page({"tweets": [], "next_cursor": "abc"}, items_key="tweets")
        self.assertFalse(p.has_more)

    def test_member_requires_id(self) -> None:
        self.assertIsNone(normalize_member({"userName": "x"}))
        m = normalize_member({"id": 3, "userName": "x", "followers": 4})
        assert m is not None
        self.assertEqual(m.user_id, "3")
        self.assertEqual(m.followers, 4)


if __name__ == "__main__":
    unittest.main()
