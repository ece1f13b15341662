from __future__ import annotations

from dataclasses import dataclass

from .api_client import TwitterApiClient
from .errors import StorageError
from .normalize import parse_page
from .storage import SQLiteSyncStore


@dataclass(frozen=True)
class HealthReport:
    database_ok: bool
    api_ok: bool
    tweets_returned: int


def run_health_check(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
) -> HealthReport:
    """
    Verify the store answers and the API serves the community's first page.

    API failures propagate as their own error types so the CLI can report them.
    """
    if not store.ping():
        raise StorageError("Database ping returned an unexpected result")

    data = api.get_community_tweets(community_id)
    page = parse_page(data, items_key="tweets")

    return HealthReport(database_ok=True, api_ok=True, tweets_returned=len(page.items))
