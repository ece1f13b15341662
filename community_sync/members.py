from __future__ import annotations

from dataclasses import dataclass

from .api_client import TwitterApiClient
from .config_schema import MembersConfig
from .normalize import normalize_member, normalize_user, parse_page
from .run_log import EventLogger, NullRunLogger
from .storage import SQLiteSyncStore


@dataclass(frozen=True)
class MembersSyncResult:
    pages: int
    members: int
    users: int
    complete: bool


def sync_members(
    community_id: str,
    *,
    api: TwitterApiClient,
    store: SQLiteSyncStore,
    cfg: MembersConfig,
    logger: EventLogger | None = None,
) -> MembersSyncResult:
    """
    Upsert every community member, plus its user profile when the payload has one.

    The member row is written even when the profile is dropped for a missing handle.
    """
    log = logger or NullRunLogger()
    max_pages = int(cfg.max_pages)

    cursor: str | None = None
    pages = 0
    members = 0
    users = 0
    complete = False

    while max_pages == 0 or pages < max_pages:
        data = api.get_community_members(community_id, cursor=cursor)
        page = parse_page(data, items_key="members")
        pages += 1

        added = 0
        for item in page.items:
            member = normalize_member(item)
            if member is None:
                continue

            profile = normalize_user(item)
            if profile is not None:
                store.upsert_user(profile)
                users += 1

            store.upsert_member(community_id, member)
            added += 1

        members += added
        log.info("members_page", page=pages, added=added, total=members)

        if not page.has_more:
            complete = True
            break
        cursor = page.next_cursor

    log.info("members_sync_completed", pages=pages, members=members, users=users, complete=complete)
    return MembersSyncResult(pages=pages, members=members, users=users, complete=complete)
