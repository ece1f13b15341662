from __future__ import annotations

import unittest

from community_sync.errors import HttpError
from community_sync.health import run_health_check
from community_sync.storage import SQLiteSyncStore

from _fakes import FakeApi, page, tweet


class _DownApi(FakeApi):
    def get_community_tweets(self, community_id: str, *, cursor: str | None = None) -> dict:
        raise HttpError("HTTP 503", status_code=503)


class TestHealthCheck(unittest.TestCase):
    def test_reports_first_page_size(self) -> None:
        api = FakeApi(tweet_pages={None: page([tweet("1"), tweet("2")], next_cursor="x")})

        with SQLiteSyncStore.open(":memory:") as store:
            report = run_health_check("c1", api=api, store=store)

            self.assertTrue(report.database_ok)
            self.assertTrue(report.api_ok)
            self.assertEqual(report.tweets_returned, 2)
            # A health check never writes posts or state.
            self.assertEqual(store.tweet_count(), 0)

        self.assertEqual(api.tweet_cursors, [None])

    def test_api_failure_propagates(self) -> None:
        with SQLiteSyncStore.open(":memory:") as store:
            with self.assertRaises(HttpError) as ctx:
                run_health_check("c1", api=_DownApi(), store=store)
        self.assertEqual(ctx.exception.status_code, 503)


if __name__ == "__main__":
    unittest.main()
