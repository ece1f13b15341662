from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterator, Literal, Sequence

from .api_client import TwitterApiClient
from .config_schema import MetricsConfig, UsersConfig
from .errors import ApiError, HttpError
from .normalize import normalize_metrics, normalize_user, parse_page, user_payload
from .run_log import EventLogger, NullRunLogger
from .storage import SQLiteSyncStore


def _chunked(values: Sequence[str], size: int) -> Iterator[list[str]]:
    if size <= 0:
        raise ValueError("chunk size must be positive")

    batch: list[str] = []
    for item in values:
        batch.append(item)
        if len(batch) >= size:
            yield batch
            batch = []
    if batch:
        yield batch


@dataclass(frozen=True)
class MetricsRefreshResult:
    selected: int
    batches: int
    updated: int


def refresh_metrics(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
    cfg: MetricsConfig,
    hours: int | None = None,
    all_tweets: bool = False,
    logger: EventLogger | None = None,
    now: datetime | None = None,
) -> MetricsRefreshResult:
    """
    Re-fetch counters for tweets whose snapshot is missing or stale.

    Only records that come back from the API are written; a tweet the API omits
    keeps its old (stale) snapshot and is picked up again next run.
    """
    log = logger or NullRunLogger()
    ref = now or datetime.now(timezone.utc)
    window_hours = int(hours) if hours is not None else int(cfg.recent_hours)

    since = None if all_tweets else ref - timedelta(hours=window_hours)
    stale_before = ref - timedelta(hours=float(cfg.stale_after_hours))

    ids = store.tweet_ids_needing_metrics(
        community_id,
        stale_before=stale_before,
        since=since,
        limit=int(cfg.max_rows),
    )
    log.info(
        "metrics_refresh_selected",
        selected=len(ids),
        all_tweets=bool(all_tweets),
        hours=None if all_tweets else window_hours,
    )

    batches = 0
    updated = 0
    for group in _chunked(ids, int(cfg.batch_size)):
        data = api.get_tweets_by_ids(group)
        page = parse_page(data, items_key="tweets")
        batches += 1

        written = 0
        for item in page.items:
            snapshot = normalize_metrics(item)
            if snapshot is None:
                continue
            store.upsert_metrics(snapshot, updated_at=ref)
            written += 1

        updated += written
        log.info("metrics_refresh_batch", batch=batches, requested=len(group), updated=written)

    log.info("metrics_refresh_completed", selected=len(ids), batches=batches, updated=updated)
    return MetricsRefreshResult(selected=len(ids), batches=batches, updated=updated)


HandleStatus = Literal["ok", "skipped", "failed"]


@dataclass(frozen=True)
class HandleOutcome:
    username: str
    status: HandleStatus
    detail: str | None = None


@dataclass(frozen=True)
class UsersRefreshResult:
    outcomes: Sequence[HandleOutcome] = field(default_factory=tuple)

    def count(self, status: HandleStatus) -> int:
        return sum(1 for o in self.outcomes if o.status == status)

    @property
    def selected(self) -> int:
        return len(self.outcomes)

    @property
    def refreshed(self) -> int:
        return self.count("ok")

    @property
    def skipped(self) -> int:
        return self.count("skipped")

    @property
    def failed(self) -> int:
        return self.count("failed")


def refresh_user(
    username: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
) -> HandleOutcome:
    """
    Refresh one profile.

    HTTP and application errors become a "failed" outcome; rate-limit exhaustion
    and storage errors propagate and end the run.
    """
    if not (username or "").strip().lstrip("@"):
        return HandleOutcome(username=username, status="skipped", detail="empty handle")

    try:
        data = api.get_user_info(username)
    except (HttpError, ApiError) as e:
        return HandleOutcome(username=username, status="failed", detail=str(e))

    profile = normalize_user(user_payload(data))
    if profile is None:
        return HandleOutcome(username=username, status="skipped", detail="missing id or username")

    store.upsert_user(profile)
    return HandleOutcome(username=username, status="ok")


def refresh_users(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
    cfg: UsersConfig,
    hours: int | None = None,
    logger: EventLogger | None = None,
    now: datetime | None = None,
) -> UsersRefreshResult:
    log = logger or NullRunLogger()
    ref = now or datetime.now(timezone.utc)
    window_hours = int(hours) if hours is not None else int(cfg.active_hours)

    usernames = store.active_usernames(community_id, since=ref - timedelta(hours=window_hours))
    log.info("users_refresh_selected", selected=len(usernames), hours=window_hours)

    outcomes: list[HandleOutcome] = []
    for username in usernames:
        outcome = refresh_user(username, api=api, store=store)
        outcomes.append(outcome)

        if outcome.status == "failed":
            log.warning("users_refresh_failed", username=username, error=outcome.detail)
        elif outcome.status == "skipped":
            log.info("users_refresh_skipped", username=username, reason=outcome.detail)
        else:
            log.info("users_refresh_ok", username=username)

    result = UsersRefreshResult(outcomes=tuple(outcomes))
    log.info(
        "users_refresh_completed",
        selected=result.selected,
        refreshed=result.refreshed,
        skipped=result.skipped,
        failed=result.failed,
    )
    return result
