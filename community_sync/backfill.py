from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Literal

from .api_client import TwitterApiClient
from .config_schema import BackfillConfig
from .normalize import normalize_tweet, parse_page
from .run_log import EventLogger, NullRunLogger
from .storage import SQLiteSyncStore

BackfillStop = Literal["cutoff", "end_of_data", "page_budget"]


@dataclass(frozen=True)
class BackfillResult:
    status: BackfillStop
    pages: int
    inserted: int
    cursor: str | None


def backfill_cutoff(cfg: BackfillConfig, *, now: datetime | None = None) -> datetime | None:
    if cfg.cutoff_days <= 0:
        return None
    ref = now or datetime.now(timezone.utc)
    return ref - timedelta(days=int(cfg.cutoff_days))


def run_backfill(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
    cfg: BackfillConfig,
    logger: EventLogger | None = None,
    now: datetime | None = None,
) -> BackfillResult:
    """
    Walk history backwards from the persisted cursor.

    The cursor is written only after every row of its page has been upserted, so an
    interrupted run resumes at the page it was on (reprocessing it at worst).
    """
    log = logger or NullRunLogger()
    cutoff = backfill_cutoff(cfg, now=now)

    state = store.get_state(community_id)
    cursor = state.backfill_cursor
    inserted_total = 0

    log.info(
        "backfill_started",
        resume=cursor is not None,
        pages_per_run=int(cfg.pages_per_run),
        cutoff=cutoff.isoformat() if cutoff is not None else None,
    )

    for page_no in range(1, int(cfg.pages_per_run) + 1):
        data = api.get_community_tweets(community_id, cursor=cursor)
        page = parse_page(data, items_key="tweets")

        inserted_page = 0
        reached_cutoff = False

        for item in page.items:
            tweet = normalize_tweet(item)
            if tweet is None:
                continue

            # Pages are newest-first, so everything after the first too-old item is older still.
            if cutoff is not None and tweet.created_at is not None and tweet.created_at < cutoff:
                reached_cutoff = True
                break

            store.upsert_tweet(community_id, tweet)
            inserted_page += 1

        inserted_total += inserted_page
        log.info(
            "backfill_page",
            page=page_no,
            inserted_page=inserted_page,
            inserted_total=inserted_total,
            had_cursor=cursor is not None,
        )

        if reached_cutoff:
            store.set_backfill_cursor(community_id, None)
            log.info("backfill_stopped", reason="cutoff", cutoff_days=int(cfg.cutoff_days))
            return BackfillResult(status="cutoff", pages=page_no, inserted=inserted_total, cursor=None)

        if not page.has_more:
            store.set_backfill_cursor(community_id, None)
            log.info("backfill_stopped", reason="end_of_data")
            return BackfillResult(status="end_of_data", pages=page_no, inserted=inserted_total, cursor=None)

        cursor = page.next_cursor
        store.set_backfill_cursor(community_id, cursor)

    log.info("backfill_stopped", reason="page_budget", pages=int(cfg.pages_per_run))
    return BackfillResult(
        status="page_budget",
        pages=int(cfg.pages_per_run),
        inserted=inserted_total,
        cursor=cursor,
    )
