from __future__ import annotations

import datetime as dt
import logging
import time
from collections.abc import Callable, Iterable, Sequence
from concurrent.futures import FIRST_EXCEPTION, ThreadPoolExecutor, wait
from dataclasses import dataclass
from typing import Any, TypeVar
from urllib.parse import quote

import httpx

from adopulse import normalize
from adopulse.config import AdoPulseConfig
from adopulse.models import ActivityRecord, RosterMember, TeamScope

logger = logging.getLogger(__name__)

T = TypeVar("T")

ADO_BASE_URL = "https://dev.azure.com"
ANALYTICS_BASE_URL = "https://analytics.dev.azure.com"
API_VERSION = "7.1"
PR_PAGE_LIMIT = 500
TEAM_PAGE_SIZE = 500
ODATA_PR_LIMIT = 1000
WORK_ITEM_BATCH_SIZE = 200
WORK_ITEM_FIELDS = "System.Title,System.WorkItemType,System.Parent,Custom.FeatureExpense,System.AreaPath"
DEFAULT_CONCURRENCY = 5
WORK_ITEM_CONCURRENCY = 3
# Analytics off (410) or PAT without Analytics:Read (401)
ODATA_FALLBACK_STATUSES = frozenset({401, 410})


class AdoApiError(Exception):
    def __init__(self, message: str, status: int, url: str) -> None:
        super().__init__(message)
        self.status = status
        self.url = url


class TeamNotFoundError(LookupError):
    pass


def _to_iso8601(value: dt.datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=dt.timezone.utc)
    return value.astimezone(dt.timezone.utc).isoformat().replace("+00:00", "Z")


def _sanitize_url(url: httpx.URL) -> str:
    # never log the host-qualified URL; path + query is enough to debug
    return url.raw_path.decode("ascii", errors="replace")


def fan_out(tasks: Sequence[Callable[[], T]], max_workers: int = DEFAULT_CONCURRENCY) -> list[T]:
    """
    Run `tasks` on a bounded pool and return their results in task order.
    The first failure cancels whatever has not started yet and is re-raised.
    """
    if not tasks:
        return []
    with ThreadPoolExecutor(max_workers=max_workers) as pool:
        futures = [pool.submit(t) for t in tasks]
        done, pending = wait(futures, return_when=FIRST_EXCEPTION)
        for f in done:
            exc = f.exception()
            if exc is not None:
                for p in pending:
                    p.cancel()
                raise exc
        return [f.result() for f in futures]


def _chunks(items: Sequence[T], size: int) -> list[Sequence[T]]:
    return [items[i : i + size] for i in range(0, len(items), size)]


@dataclass
class AdoClient:
    org: str
    project: str
    pat: str
    timeout_s: float = 30.0
    base_url: str = ADO_BASE_URL
    analytics_base_url: str = ANALYTICS_BASE_URL
    transport: httpx.BaseTransport | None = None

    @classmethod
    def from_config(cls, cfg: AdoPulseConfig) -> "AdoClient":
        return cls(org=cfg.ado_org, project=cfg.ado_project, pat=cfg.ado_pat)

    def _headers(self) -> dict[str, str]:
        return {
            "Accept": "application/json",
            "User-Agent": "AdoPulse/0.1",
        }

    def _client(self) -> httpx.Client:
        # PAT goes in as the Basic password with an empty user name
        return httpx.Client(
            headers=self._headers(),
            auth=httpx.BasicAuth("", self.pat),
            timeout=self.timeout_s,
            transport=self.transport,
        )

    def _org_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(self.org)}/{path}"

    def _project_url(self, path: str) -> str:
        return f"{self.base_url}/{quote(self.org)}/{quote(self.project)}/{path}"

    def _analytics_url(self, path: str) -> str:
        return f"{self.analytics_base_url}/{quote(self.org)}/{quote(self.project)}/_odata/v4.0/{path}"

    def _get_json(self, url: str, params: dict[str, Any] | None = None, *, versioned: bool = True) -> Any:
        params = {**({"api-version": API_VERSION} if versioned else {}), **(params or {})}
        start = time.monotonic()
        with self._client() as c:
            try:
                r = c.get(url, params=params)
            except httpx.TimeoutException as e:
                logger.error("ADO fetch timeout %s (%.0f ms)", url, (time.monotonic() - start) * 1000)
                raise AdoApiError("ADO API request timed out", 504, url) from e
            except httpx.TransportError as e:
                logger.error("ADO fetch failed %s: %s", url, e)
                raise AdoApiError("ADO unavailable", 503, url) from e

        safe = _sanitize_url(r.request.url)
        duration_ms = (time.monotonic() - start) * 1000
        if r.is_error:
            logger.warning("ADO fetch failed %s status=%s (%.0f ms)", safe, r.status_code, duration_ms)
            raise AdoApiError(f"ADO API error: {r.status_code} {r.reason_phrase}", r.status_code, str(r.request.url))

        # a 203 with an HTML sign-in page means the PAT was not accepted
        content_type = r.headers.get("content-type", "")
        if "application/json" not in content_type:
            logger.warning("ADO fetch non-JSON response %s status=%s content-type=%s", safe, r.status_code, content_type)
            raise AdoApiError(f"ADO API error: {r.status_code} Non-JSON response", r.status_code, str(r.request.url))

        logger.info("ADO fetch OK %s status=%s (%.0f ms)", safe, r.status_code, duration_ms)
        return r.json()

    def _value(self, url: str, params: dict[str, Any] | None = None) -> list[dict[str, Any]]:
        resp = self._get_json(url, params=params)
        items = resp.get("value") if isinstance(resp, dict) else resp
        if not isinstance(items, list):
            raise ValueError(f"Unexpected list response: {type(resp)}")
        return items

    def _paged_list(self, url: str, params: dict[str, Any] | None = None, page_size: int = TEAM_PAGE_SIZE) -> list[dict[str, Any]]:
        out: list[dict[str, Any]] = []
        skip = 0
        while True:
            items = self._value(url, params={**(params or {}), "$top": page_size, "$skip": skip})
            out.extend(items)
            if len(items) < page_size:
                break
            skip += page_size
        return out

    # ── Teams ────────────────────────────────────────────────────────

    def get_project_teams(self) -> list[dict[str, Any]]:
        teams = self._paged_list(self._org_url(f"_apis/projects/{quote(self.project)}/teams"))
        return sorted(teams, key=lambda t: str(t.get("name", "")).lower())

    def find_team(self, team_name: str) -> dict[str, Any]:
        wanted = team_name.lower()
        for team in self.get_project_teams():
            if str(team.get("name", "")).lower() == wanted:
                return team
        raise TeamNotFoundError(f'Team "{team_name}" not found')

    def get_team_members(self, team_name: str, team_id: str | None = None) -> list[RosterMember]:
        team_id = team_id or str(self.find_team(team_name)["id"])
        url = self._org_url(f"_apis/projects/{quote(self.project)}/teams/{quote(team_id)}/members")
        return normalize.roster(self._value(url))

    def get_team_scope(self, team_name: str, team_id: str | None = None) -> TeamScope:
        team_id = team_id or str(self.find_team(team_name)["id"])
        url = self._project_url(f"{quote(team_id)}/_apis/work/teamsettings/teamfieldvalues")
        resp = self._get_json(url, params={"api-version": "7.0"})
        return normalize.team_scope(resp if isinstance(resp, dict) else {})

    # ── Pull requests ────────────────────────────────────────────────

    def get_pull_requests_raw(self, since: dt.datetime) -> list[dict[str, Any]]:
        return self._value(
            self._project_url("_apis/git/pullrequests"),
            params={
                "searchCriteria.status": "completed",
                "searchCriteria.minTime": _to_iso8601(since),
                "$top": PR_PAGE_LIMIT,
            },
        )

    def get_pull_requests(self, since: dt.datetime) -> list[ActivityRecord]:
        return [normalize.pr_from_rest(pr) for pr in self.get_pull_requests_raw(since)]

    def get_open_pull_requests(self) -> list[ActivityRecord]:
        raw = self._value(
            self._project_url("_apis/git/pullrequests"),
            params={"searchCriteria.status": "active", "$top": PR_PAGE_LIMIT},
        )
        return [normalize.pr_from_rest(pr) for pr in raw]

    def get_reviews_given(self, member_id: str, since: dt.datetime) -> int:
        raw = self._value(
            self._project_url("_apis/git/pullrequests"),
            params={
                "searchCriteria.reviewerId": member_id,
                "searchCriteria.status": "completed",
                "searchCriteria.minTime": _to_iso8601(since),
                "$top": PR_PAGE_LIMIT,
            },
        )
        # self-reviews do not count
        return sum(1 for pr in raw if (pr.get("createdBy") or {}).get("id") != member_id)

    def reviews_given_by_members(
        self, members: Iterable[RosterMember], since: dt.datetime, max_workers: int = DEFAULT_CONCURRENCY
    ) -> dict[str, int]:
        members = list(members)
        counts = fan_out([lambda m=m: self.get_reviews_given(m.id, since) for m in members], max_workers)
        return {m.id: n for m, n in zip(members, counts)}

    # ── Work items ───────────────────────────────────────────────────

    def _work_item_batch(self, ids: Sequence[int]) -> list[dict[str, Any]]:
        return self._value(
            self._project_url("_apis/wit/workitems"),
            params={"ids": ",".join(str(i) for i in ids), "fields": WORK_ITEM_FIELDS},
        )

    def get_work_items(self, ids: Iterable[int]) -> dict[int, dict[str, Any]]:
        unique = list(dict.fromkeys(ids))
        if not unique:
            return {}
        batches = _chunks(unique, WORK_ITEM_BATCH_SIZE)
        results = fan_out([lambda b=b: self._work_item_batch(b) for b in batches], WORK_ITEM_CONCURRENCY)
        out: dict[int, dict[str, Any]] = {}
        for items in results:
            for item in items:
                out[int(item["id"])] = item
        return out

    def with_ancestors(self, ids: Iterable[int], max_depth: int = normalize.MAX_PARENT_DEPTH) -> dict[int, dict[str, Any]]:
        """
        Work items for `ids` plus their parents, level by level, so
        `normalize.resolve_feature` can walk up without further calls.
        """
        cache = self.get_work_items(ids)
        frontier = list(cache.values())
        for _ in range(max_depth):
            parents = []
            for item in frontier:
                fields = item.get("fields") or {}
                if fields.get("System.WorkItemType") == normalize.FEATURE_TYPE:
                    continue
                parent = fields.get("System.Parent")
                if parent is not None and int(parent) not in cache:
                    parents.append(int(parent))
            if not parents:
                break
            fetched = self.get_work_items(parents)
            cache.update(fetched)
            frontier = list(fetched.values())
        return cache

    # ── PRs with linked area paths ───────────────────────────────────

    def get_prs_with_work_items_odata(self, start: dt.datetime, end: dt.datetime) -> list[ActivityRecord]:
        flt = f"CompletedDate ge {_to_iso8601(start)} and CompletedDate le {_to_iso8601(end)}"
        resp = self._get_json(
            self._analytics_url("PullRequests"),
            params={
                "$filter": flt,
                "$select": "PullRequestId,Title,CreatedDate,CompletedDate",
                "$expand": "CreatedBy($select=UserName,UserEmail),Repository($select=RepositoryName),WorkItems($select=WorkItemId,AreaPath)",
                "$top": ODATA_PR_LIMIT,
            },
            versioned=False,
        )
        return [normalize.pr_from_odata(pr) for pr in (resp.get("value") or [])]

    def get_prs_with_work_items_rest(self, start: dt.datetime, end: dt.datetime) -> list[ActivityRecord]:
        raw = self.get_pull_requests_raw(start)
        # REST only filters on minTime
        kept = []
        for pr in raw:
            closed = normalize.parse_datetime_loose(pr.get("closedDate"))
            if closed is not None and closed <= end:
                kept.append(pr)
        work_items = self.get_work_items(normalize.work_item_ids(kept))
        return [normalize.pr_from_rest(pr, work_items) for pr in kept]

    def prs_with_work_items(self, start: dt.datetime, end: dt.datetime) -> list[ActivityRecord]:
        try:
            return self.get_prs_with_work_items_odata(start, end)
        except AdoApiError as e:
            if e.status not in ODATA_FALLBACK_STATUSES:
                raise
            logger.warning("Analytics OData unavailable (status %s); falling back to REST", e.status)
            return self.get_prs_with_work_items_rest(start, end)
