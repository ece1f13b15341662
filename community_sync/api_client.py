from __future__ import annotations

import json
from typing import Any, Mapping, Sequence

import httpx

from .api_retry import is_retryable_api_exception
from .config_schema import ApiConfig
from .errors import ApiError, HttpError, RateLimited
from .pacing import ClockFn, RequestPacer
from .retry import OnRetryFn, RetryConfig, SleepFn, call_with_retries

COMMUNITY_TWEETS_PATH = "/twitter/community/tweets"
COMMUNITY_MEMBERS_PATH = "/twitter/community/members"
TWEETS_BY_IDS_PATH = "/twitter/tweets"
USER_INFO_PATH = "/twitter/user/info"


def _clean_params(params: Mapping[str, Any] | None) -> dict[str, str]:
    out: dict[str, str] = {}
    for key, value in (params or {}).items():
        if value is None:
            continue
        text = str(value)
        if text == "":
            continue
        out[str(key)] = text
    return out


def _decode_body(response: httpx.Response) -> Any:
    text = response.text
    if not text:
        return {}
    try:
        return json.loads(text)
    except ValueError:
        return {"raw": text}


def _body_message(body: Any) -> str | None:
    if not isinstance(body, Mapping):
        return None
    for key in ("message", "msg", "error"):
        value = body.get(key)
        if isinstance(value, str) and value.strip():
            return value.strip()
    return None


class TwitterApiClient:
    """
    Paced client for the twitterapi.io REST API.

    Every outbound request passes through one RequestPacer, so calls from any
    driver sharing this instance respect the same global interval. HTTP 429 is
    retried with linear backoff; everything else fails fast.
    """

    def __init__(
        self,
        api_key: str,
        *,
        api: ApiConfig | None = None,
        client: httpx.Client | None = None,
        pacer: RequestPacer | None = None,
        on_retry: OnRetryFn | None = None,
        sleep_fn: SleepFn | None = None,
        clock: ClockFn | None = None,
    ) -> None:
        cfg = api or ApiConfig()
        self._cfg = cfg
        self._on_retry = on_retry
        self._sleep_fn = sleep_fn
        self._pacer = pacer or RequestPacer(
            cfg.min_request_interval_seconds,
            clock=clock,
            sleep_fn=sleep_fn,
        )
        self._retry = RetryConfig(
            max_attempts=int(cfg.max_rate_limit_retries) + 1,
            base_delay_seconds=float(cfg.min_request_interval_seconds),
            step_seconds=float(cfg.rate_limit_backoff_step_seconds),
        )
        self.request_count = 0

        if client is not None:
            self._client = client
        else:
            self._client = httpx.Client(
                base_url=cfg.base_url,
                headers={"X-API-Key": api_key},
                timeout=cfg.timeout_seconds,
            )

    @property
    def pacer(self) -> RequestPacer:
        return self._pacer

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> "TwitterApiClient":
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        self.close()

    def request(self, path: str, params: Mapping[str, Any] | None = None) -> dict[str, Any]:
        """
        GET `path` and return the decoded JSON object.

        Raises RateLimited, HttpError, or ApiError.
        """
        query = _clean_params(params)

        def _attempt() -> dict[str, Any]:
            self._pacer.wait()
            self.request_count += 1
            return self._send_once(path, query)

        return call_with_retries(
            _attempt,
            cfg=self._retry,
            is_retryable=is_retryable_api_exception,
            operation=f"GET {path}",
            on_retry=self._on_retry,
            sleep_fn=self._sleep_fn,
        )

    def _send_once(self, path: str, query: dict[str, str]) -> dict[str, Any]:
        try:
            response = self._client.get(path, params=query)
        except httpx.HTTPError as e:
            raise HttpError(f"Request failed: {e} @ {path}", path=path) from e

        body = _decode_body(response)

        if response.status_code == 429:
            msg = _body_message(body) or "Too Many Requests"
            raise RateLimited(f"{msg} @ {path}", path=path)

        if not response.is_success:
            msg = _body_message(body) or f"HTTP {response.status_code}"
            raise HttpError(
                f"{msg} @ {path}",
                status_code=response.status_code,
                path=path,
            )

        if not isinstance(body, dict):
            raise ApiError(f"Unexpected response shape ({type(body).__name__}) @ {path}", path=path)

        status = body.get("status")
        if status and status != "success":
            msg = _body_message(body) or "API status error"
            raise ApiError(f"{msg} @ {path}", path=path)

        return body

    def get_community_tweets(self, community_id: str, *, cursor: str | None = None) -> dict[str, Any]:
        return self.request(
            COMMUNITY_TWEETS_PATH,
            {"community_id": community_id, "cursor": cursor},
        )

    def get_community_members(self, community_id: str, *, cursor: str | None = None) -> dict[str, Any]:
        return self.request(
            COMMUNITY_MEMBERS_PATH,
            {"community_id": community_id, "cursor": cursor},
        )

    def get_tweets_by_ids(self, tweet_ids: Sequence[str]) -> dict[str, Any]:
        ids = [str(t).strip() for t in tweet_ids if str(t).strip()]
        if not ids:
            raise ValueError("At least one tweet id is required")
        return self.request(TWEETS_BY_IDS_PATH, {"tweet_ids": ",".join(ids)})

    def get_user_info(self, username: str) -> dict[str, Any]:
        handle = (username or "").strip().lstrip("@")
        if not handle:
            raise ValueError("username must be non-empty")
        return self.request(USER_INFO_PATH, {"userName": handle})
