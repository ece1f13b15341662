from __future__ import annotations

import argparse
import sys
from contextlib import ExitStack
from dataclasses import dataclass
from typing import Callable, Sequence

from .api_client import TwitterApiClient
from .backfill import run_backfill
from .config import config_sha256, load_config, resolve_community_id, resolve_runtime_secrets
from .config_schema import AppConfig
from .errors import ApiClientError, ConfigError, StorageError
from .health import run_health_check
from .incremental import run_incremental
from .members import sync_members
from .refresh import refresh_metrics, refresh_users
from .retry import RetryEvent
from .run_log import RunLogger
from .storage import SQLiteSyncStore


@dataclass
class _Session:
    config: AppConfig
    community_id: str
    store: SQLiteSyncStore
    log: RunLogger
    api: TwitterApiClient | None = None

    def require_api(self) -> TwitterApiClient:
        if self.api is None:
            raise RuntimeError("command was not set up with an API client")
        return self.api


_Handler = Callable[[_Session, argparse.Namespace], int]


def _build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        required=True,
        help="Path to YAML config file.",
    )
    common.add_argument(
        "--community",
        default=None,
        help="Community id (overrides config and environment).",
    )

    parser = argparse.ArgumentParser(prog="community-sync")
    subparsers = parser.add_subparsers(dest="command", required=True)

    doctor = subparsers.add_parser(
        "doctor",
        parents=[common],
        help="Check database and API connectivity.",
    )
    doctor.set_defaults(_handler=_cmd_doctor, _needs_api=True)

    backfill = subparsers.add_parser(
        "backfill",
        parents=[common],
        help="Walk community history backwards from the saved cursor.",
    )
    backfill.set_defaults(_handler=_cmd_backfill, _needs_api=True)

    ingest = subparsers.add_parser(
        "ingest-new",
        parents=[common],
        help="Ingest tweets posted since the last incremental run.",
    )
    ingest.set_defaults(_handler=_cmd_ingest_new, _needs_api=True)

    metrics = subparsers.add_parser(
        "refresh-metrics",
        parents=[common],
        help="Refresh engagement counters for recent (or all) tweets.",
    )
    metrics.add_argument(
        "--all",
        action="store_true",
        help="Consider every tweet in the community, not just recent ones.",
    )
    metrics.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Recency window in hours (default: metrics.recent_hours).",
    )
    metrics.set_defaults(_handler=_cmd_refresh_metrics, _needs_api=True)

    users = subparsers.add_parser(
        "refresh-users",
        parents=[common],
        help="Refresh profiles of recently active authors.",
    )
    users.add_argument(
        "--hours",
        type=int,
        default=None,
        help="Activity window in hours (default: users.active_hours).",
    )
    users.set_defaults(_handler=_cmd_refresh_users, _needs_api=True)

    members = subparsers.add_parser(
        "sync-members",
        parents=[common],
        help="Upsert the community member list.",
    )
    members.set_defaults(_handler=_cmd_sync_members, _needs_api=True)

    stats = subparsers.add_parser(
        "user-stats",
        parents=[common],
        help="Print all-time totals for one author.",
    )
    stats.add_argument("username", help="Author handle, with or without @.")
    stats.set_defaults(_handler=_cmd_user_stats, _needs_api=False)

    return parser


def _eprint(message: str) -> None:
    print(message, file=sys.stderr)


def _cmd_doctor(session: _Session, args: argparse.Namespace) -> int:
    report = run_health_check(session.community_id, api=session.require_api(), store=session.store)
    session.log.info("doctor_completed", tweets_returned=report.tweets_returned)
    print("database=ok")
    print(f"api=ok tweets_returned={report.tweets_returned}")
    return 0


def _cmd_backfill(session: _Session, args: argparse.Namespace) -> int:
    result = run_backfill(
        session.community_id,
        api=session.require_api(),
        store=session.store,
        cfg=session.config.backfill,
        logger=session.log,
    )
    print(f"status={result.status}")
    print(f"pages={result.pages}")
    print(f"inserted={result.inserted}")
    print(f"cursor_saved={'yes' if result.cursor else 'no'}")
    return 0


def _cmd_ingest_new(session: _Session, args: argparse.Namespace) -> int:
    result = run_incremental(
        session.community_id,
        api=session.require_api(),
        store=session.store,
        cfg=session.config.incremental,
        logger=session.log,
    )
    print(f"status={result.status}")
    print(f"pages={result.pages}")
    print(f"inserted={result.inserted}")
    print(f"watermark={result.watermark or ''}")
    return 0


def _cmd_refresh_metrics(session: _Session, args: argparse.Namespace) -> int:
    result = refresh_metrics(
        session.community_id,
        api=session.require_api(),
        store=session.store,
        cfg=session.config.metrics,
        hours=args.hours,
        all_tweets=bool(args.all),
        logger=session.log,
    )
    print(f"selected={result.selected}")
    print(f"batches={result.batches}")
    print(f"updated={result.updated}")
    return 0


def _cmd_refresh_users(session: _Session, args: argparse.Namespace) -> int:
    result = refresh_users(
        session.community_id,
        api=session.require_api(),
        store=session.store,
        cfg=session.config.users,
        hours=args.hours,
        logger=session.log,
    )
    print(f"selected={result.selected}")
    print(f"refreshed={result.refreshed}")
    print(f"skipped={result.skipped}")
    print(f"failed={result.failed}")
    return 0


def _cmd_sync_members(session: _Session, args: argparse.Namespace) -> int:
    result = sync_members(
        session.community_id,
        api=session.require_api(),
        store=session.store,
        cfg=session.config.members,
        logger=session.log,
    )
    print(f"pages={result.pages}")
    print(f"members={result.members}")
    print(f"users={result.users}")
    print(f"complete={'yes' if result.complete else 'no'}")
    return 0


def _cmd_user_stats(session: _Session, args: argparse.Namespace) -> int:
    stats = session.store.user_stats(session.community_id, args.username)
    print(f"username={stats.username}")
    print(f"posts={stats.posts}")
    print(f"views={stats.views}")
    print(f"likes={stats.likes}")
    print(f"retweets={stats.retweets}")
    print(f"replies={stats.replies}")
    print(f"quotes={stats.quotes}")
    print(f"bookmarks={stats.bookmarks}")
    return 0


def _run_command(args: argparse.Namespace) -> int:
    cfg = load_config(args.config)
    community_id = resolve_community_id(cfg, override=args.community)
    needs_api = bool(getattr(args, "_needs_api", False))
    secrets = resolve_runtime_secrets(cfg) if needs_api else None

    with ExitStack() as stack:
        log = stack.enter_context(
            RunLogger.open(cfg.storage.log_path, community_id=community_id)
        )
        log.info(
            "command_started",
            command=args.command,
            config_path=str(args.config),
            config_hash=config_sha256(cfg),
        )

        try:
            store = stack.enter_context(SQLiteSyncStore.open(cfg.storage.database_path))

            api: TwitterApiClient | None = None
            if secrets is not None:

                def _on_retry(event: RetryEvent) -> None:
                    log.warning(
                        "api_rate_limited_retry",
                        operation=event.operation,
                        attempt=event.failure_attempt,
                        max_attempts=event.max_attempts,
                        delay_seconds=event.delay_seconds,
                        message=event.error_message,
                    )

                api = stack.enter_context(
                    TwitterApiClient(secrets.api_key, api=cfg.api, on_retry=_on_retry)
                )

            session = _Session(
                config=cfg,
                community_id=community_id,
                store=store,
                log=log,
                api=api,
            )
            handler: _Handler = getattr(args, "_handler")
            code = int(handler(session, args))
            log.info(
                "command_completed",
                command=args.command,
                exit_code=code,
                requests=api.request_count if api is not None else 0,
            )
            return code
        except Exception as e:
            log.exception("command_failed", exc=e, command=args.command)
            raise


def main(argv: Sequence[str] | None = None) -> int:
    parser = _build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)

    try:
        return _run_command(args)
    except ConfigError as e:
        _eprint(str(e))
        return 2
    except (ApiClientError, StorageError) as e:
        _eprint(str(e))
        return 3
    except KeyboardInterrupt:
        _eprint("Interrupted")
        return 130
    except Exception as e:
        _eprint(f"Unexpected error: {e}")
        return 1
