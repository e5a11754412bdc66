from __future__ import annotations

import datetime as dt
import logging
import re
from dataclasses import dataclass, replace
from typing import Any

import httpx

from adopulse import normalize
from adopulse.config import AdoPulseConfig
from adopulse.models import Worklog

logger = logging.getLogger(__name__)

SEVEN_PACE_API_VERSION = "3.2"
REST_PAGE_SIZE = 500
REST_MAX_PAGES = 10
ODATA_MAX_PAGES = 10


class SevenPaceApiError(Exception):
    def __init__(self, message: str, status: int, code: str) -> None:
        super().__init__(message)
        self.status = status
        self.code = code


@dataclass(frozen=True)
class Pagination:
    pages_fetched: int
    total_records: int
    hit_safety_cap: bool


@dataclass(frozen=True)
class WorklogFetch:
    worklogs: list[Worklog]
    pagination: Pagination


def _to_timestamp(value: dt.datetime) -> str:
    # 7pace wants 2021-11-06T10:28:00, no fraction, no zone
    if value.tzinfo is not None:
        value = value.astimezone(dt.timezone.utc)
    return value.replace(microsecond=0, tzinfo=None).isoformat()


def _page_items(resp: Any) -> list[dict[str, Any]]:
    if isinstance(resp, list):
        return resp
    if isinstance(resp, dict):
        items = resp.get("data")
        if not isinstance(items, list):
            items = resp.get("value")
        return items if isinstance(items, list) else []
    return []


@dataclass
class SevenPaceClient:
    base_url: str
    token: str
    timeout_s: float = 30.0
    transport: httpx.BaseTransport | None = None

    @classmethod
    def from_config(cls, cfg: AdoPulseConfig) -> "SevenPaceClient | None":
        if not cfg.seven_pace_configured:
            return None
        return cls(base_url=str(cfg.seven_pace_base_url), token=str(cfg.seven_pace_token))

    def _headers(self) -> dict[str, str]:
        return {
            "Authorization": f"Bearer {self.token}",
            "Accept": "application/json",
            "User-Agent": "AdoPulse/0.1",
        }

    def _client(self) -> httpx.Client:
        return httpx.Client(headers=self._headers(), timeout=self.timeout_s, transport=self.transport)

    def _get_json(self, url: str, params: dict[str, Any] | None = None) -> Any:
        try:
            with self._client() as c:
                r = c.get(url, params=params)
        except httpx.TimeoutException as e:
            raise SevenPaceApiError("7pace API request timed out", 504, "TIMEOUT") from e
        except httpx.TransportError as e:
            raise SevenPaceApiError("7pace unavailable", 503, "UNAVAILABLE") from e

        if r.status_code == 401:
            raise SevenPaceApiError("Invalid 7pace token", 401, "AUTH_ERROR")
        if r.is_error:
            raise SevenPaceApiError(f"7pace API error: {r.status_code} {r.reason_phrase}", r.status_code, "API_ERROR")
        logger.info("7pace fetch OK %s status=%s", r.request.url.path, r.status_code)
        try:
            return r.json()
        except ValueError as e:
            raise SevenPaceApiError("7pace returned a non-JSON response", r.status_code, "API_ERROR") from e

    def _rest_url(self, path: str) -> str:
        return f"{self.base_url.rstrip('/')}/{path}"

    def _odata_url(self) -> str:
        # https://x.timehub.7pace.com/api/rest -> https://x.timehub.7pace.com
        origin = re.sub(r"/api/rest/?$", "", self.base_url).rstrip("/")
        return f"{origin}/api/odata/v{SEVEN_PACE_API_VERSION}/workLogsOnly"

    def get_users(self) -> dict[str, str]:
        """7pace user id -> ADO unique name."""
        resp = self._get_json(self._rest_url("users"), params={"api-version": SEVEN_PACE_API_VERSION})
        out: dict[str, str] = {}
        for user in _page_items(resp):
            unique_name = user.get("uniqueName") or user.get("email")
            if unique_name:
                out[str(user.get("id"))] = str(unique_name)
        return out

    def get_worklogs(self, start: dt.datetime, end: dt.datetime) -> WorklogFetch:
        """
        Org-wide worklogs between `start` and `end` from `workLogs/all`.
        The endpoint ignores user filters, so callers match worklogs to a
        roster themselves.
        """
        params = {
            "api-version": SEVEN_PACE_API_VERSION,
            "_fromTimestamp": _to_timestamp(start),
            "_toTimestamp": _to_timestamp(end),
        }
        raw: list[dict[str, Any]] = []
        page = 0
        while page < REST_MAX_PAGES:
            items = _page_items(
                self._get_json(
                    self._rest_url("workLogs/all"),
                    params={**params, "_count": REST_PAGE_SIZE, "_skip": page * REST_PAGE_SIZE},
                )
            )
            raw.extend(items)
            page += 1
            if len(items) < REST_PAGE_SIZE:
                break

        pagination = Pagination(pages_fetched=page, total_records=len(raw), hit_safety_cap=page >= REST_MAX_PAGES)
        if pagination.hit_safety_cap:
            logger.warning("7pace worklog paging stopped at the %d page cap (%d records)", REST_MAX_PAGES, len(raw))
        return WorklogFetch(worklogs=[normalize.worklog_from_rest(wl) for wl in raw], pagination=pagination)

    def get_worklogs_for_user(self, email: str, start: dt.datetime, end: dt.datetime) -> WorklogFetch:
        """Worklogs of one user through the reporting OData feed, following `@odata.nextLink`."""
        flt = f"Timestamp ge {start.isoformat()} and Timestamp lt {end.isoformat()}"
        url: str | None = self._odata_url()
        params: dict[str, Any] | None = {"$apply": f"filter({flt})", "worklogsFilter": f"User/Email eq '{email}'"}
        worklogs: list[Worklog] = []
        pages = 0
        while url and pages < ODATA_MAX_PAGES:
            resp = self._get_json(url, params=params)
            worklogs.extend(normalize.worklog_from_odata(wl) for wl in _page_items(resp))
            pages += 1
            # nextLink already carries the query
            url = resp.get("@odata.nextLink") if isinstance(resp, dict) else None
            params = None
        return WorklogFetch(
            worklogs=worklogs,
            pagination=Pagination(pages_fetched=pages, total_records=len(worklogs), hit_safety_cap=pages >= ODATA_MAX_PAGES),
        )


def fill_unique_names(worklogs: list[Worklog], users: dict[str, str]) -> list[Worklog]:
    """Worklogs whose embedded user lacks a unique name take it from the 7pace user list."""
    out = []
    for wl in worklogs:
        if not wl.unique_name and wl.user_id in users:
            wl = replace(wl, unique_name=users[wl.user_id])
        out.append(wl)
    return out
