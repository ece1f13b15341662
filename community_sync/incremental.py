from __future__ import annotations

from dataclasses import dataclass
from typing import Literal

from .api_client import TwitterApiClient
from .config_schema import IncrementalConfig
from .normalize import item_id, normalize_tweet, parse_page
from .run_log import EventLogger, NullRunLogger
from .storage import SQLiteSyncStore

IncrementalStop = Literal["watermark", "end_of_data", "page_budget"]


@dataclass(frozen=True)
class IncrementalResult:
    status: IncrementalStop
    pages: int
    inserted: int
    previous_watermark: str | None
    watermark: str | None


def run_incremental(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
    cfg: IncrementalConfig,
    logger: EventLogger | None = None,
) -> IncrementalResult:
    """
    Ingest tweets newer than the last recorded head.

    The newest tweet of the first page is captured as the next watermark before any
    stop check, and written once the loop ends however it ended.
    """
    log = logger or NullRunLogger()

    state = store.get_state(community_id)
    stop_id = state.last_seen_tweet_id

    cursor: str | None = None
    candidate: str | None = None
    inserted = 0
    pages = 0
    status: IncrementalStop = "page_budget"

    for page_no in range(1, int(cfg.max_pages) + 1):
        data = api.get_community_tweets(community_id, cursor=cursor)
        page = parse_page(data, items_key="tweets")
        pages = page_no

        if page_no == 1 and page.items:
            candidate = item_id(page.items[0])

        matched = False
        for item in page.items:
            if stop_id is not None and item_id(item) == stop_id:
                matched = True
                break

            tweet = normalize_tweet(item)
            if tweet is None:
                continue
            store.upsert_tweet(community_id, tweet)
            inserted += 1

        log.info("incremental_page", page=page_no, inserted=inserted, stopped=matched)

        if matched:
            status = "watermark"
            break
        if not page.has_more:
            status = "end_of_data"
            break
        cursor = page.next_cursor

    if stop_id is not None and status != "watermark":
        # The previous head was not reached; anything between it and this run's
        # pages is left to the backfill.
        log.warning(
            "incremental_watermark_not_found",
            previous_watermark=stop_id,
            pages=pages,
            reason=status,
        )

    if candidate is not None:
        store.set_watermark(community_id, candidate)

    log.info(
        "incremental_completed",
        status=status,
        pages=pages,
        inserted=inserted,
        previous_watermark=stop_id,
        watermark=candidate or stop_id,
    )

    return IncrementalResult(
        status=status,
        pages=pages,
        inserted=inserted,
        previous_watermark=stop_id,
        watermark=candidate or stop_id,
    )
