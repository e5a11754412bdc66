from __future__ import annotations

import base64
import datetime as dt
import threading

import httpx
import pytest

from adopulse.ado_client import AdoApiError, AdoClient, TeamNotFoundError, fan_out

START = dt.datetime(2025, 3, 1, tzinfo=dt.timezone.utc)
END = dt.datetime(2025, 3, 14, tzinfo=dt.timezone.utc)


def _client(handler) -> AdoClient:
    return AdoClient(org="acme", project="Shop", pat="secret-pat", transport=httpx.MockTransport(handler))


def test_requests_carry_basic_auth_and_api_version() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, json={"value": []})

    assert _client(handler).get_pull_requests(START) == []

    [req] = seen
    expected = "Basic " + base64.b64encode(b":secret-pat").decode()
    assert req.headers["Authorization"] == expected
    assert req.url.params["api-version"] == "7.1"
    assert req.url.params["searchCriteria.status"] == "completed"
    assert req.url.params["$top"] == "500"
    assert req.url.path == "/acme/Shop/_apis/git/pullrequests"


def test_error_status_raises_with_status() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(401, json={"message": "nope"})

    with pytest.raises(AdoApiError) as exc:
        _client(handler).get_open_pull_requests()
    assert exc.value.status == 401


def test_html_sign_in_page_is_an_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(203, text="<html>sign in</html>", headers={"content-type": "text/html"})

    with pytest.raises(AdoApiError) as exc:
        _client(handler).get_open_pull_requests()
    assert exc.value.status == 203
    assert "Non-JSON" in str(exc.value)


def test_timeout_maps_to_504() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("slow", request=request)

    with pytest.raises(AdoApiError) as exc:
        _client(handler).get_open_pull_requests()
    assert exc.value.status == 504


def test_connection_failure_maps_to_503() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(AdoApiError) as exc:
        _client(handler).get_pull_requests(START)
    assert exc.value.status == 503
    assert "unavailable" in str(exc.value)


def test_team_lookup_pages_and_matches_case_insensitively() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        skip = int(request.url.params["$skip"])
        if skip == 0:
            teams = [{"id": f"t{i}", "name": f"Team {i:03d}"} for i in range(500)]
        else:
            teams = [{"id": "alpha-id", "name": "Alpha"}]
        return httpx.Response(200, json={"value": teams, "count": len(teams)})

    client = _client(handler)
    teams = client.get_project_teams()
    assert len(teams) == 501
    assert teams[0]["name"] == "Alpha"
    assert client.find_team("ALPHA")["id"] == "alpha-id"
    with pytest.raises(TeamNotFoundError):
        client.find_team("Nope")


def test_team_members_and_scope() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        if request.url.path.endswith("/members"):
            return httpx.Response(
                200, json={"value": [{"identity": {"id": "a", "uniqueName": "alice@corp.com", "displayName": "Alice"}}]}
            )
        if request.url.path.endswith("/teamfieldvalues"):
            assert request.url.params["api-version"] == "7.0"
            return httpx.Response(200, json={"defaultValue": "Shop\\A", "values": [{"value": "Shop\\A"}]})
        raise AssertionError(f"unexpected {request.url}")

    client = _client(handler)
    [alice] = client.get_team_members("A", team_id="team-a")
    assert alice.unique_name == "alice@corp.com"
    assert client.get_team_scope("A", team_id="team-a").area_paths == ("Shop\\A",)


def test_self_reviews_are_not_counted() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        reviewer = request.url.params["searchCriteria.reviewerId"]
        prs = [{"createdBy": {"id": reviewer}}, {"createdBy": {"id": "other"}}, {"createdBy": {"id": "other2"}}]
        return httpx.Response(200, json={"value": prs})

    client = _client(handler)
    assert client.get_reviews_given("m1", START) == 2


def test_work_items_fetched_in_batches_of_200() -> None:
    batches: list[int] = []
    lock = threading.Lock()

    def handler(request: httpx.Request) -> httpx.Response:
        ids = [int(i) for i in request.url.params["ids"].split(",")]
        with lock:
            batches.append(len(ids))
        return httpx.Response(200, json={"value": [{"id": i, "fields": {}} for i in ids]})

    items = _client(handler).get_work_items(list(range(1, 451)) + [1, 2])
    assert len(items) == 450
    assert sorted(batches) == [50, 200, 200]


def test_with_ancestors_fetches_parents_until_feature() -> None:
    tree = {
        3: {"System.WorkItemType": "Task", "System.Parent": 2},
        2: {"System.WorkItemType": "User Story", "System.Parent": 1},
        1: {"System.WorkItemType": "Feature", "System.Parent": 0},
    }

    def handler(request: httpx.Request) -> httpx.Response:
        ids = [int(i) for i in request.url.params["ids"].split(",")]
        return httpx.Response(200, json={"value": [{"id": i, "fields": tree[i]} for i in ids]})

    assert sorted(_client(handler).with_ancestors([3])) == [1, 2, 3]


def _rest_handler(seen: list[httpx.Request], odata_status: int):
    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        if request.url.host == "analytics.dev.azure.com":
            return httpx.Response(odata_status, json={"message": "analytics off"})
        if request.url.path.endswith("/_apis/git/pullrequests"):
            return httpx.Response(
                200,
                json={
                    "value": [
                        {
                            "pullRequestId": 1,
                            "createdBy": {"uniqueName": "alice@corp.com", "displayName": "Alice"},
                            "repository": {"name": "shop"},
                            "closedDate": "2025-03-10T00:00:00Z",
                            "workItemRefs": [{"id": "42"}],
                        },
                        {
                            "pullRequestId": 2,
                            "createdBy": {"uniqueName": "bob@corp.com", "displayName": "Bob"},
                            "repository": {"name": "shop"},
                            "closedDate": "2025-03-20T00:00:00Z",
                        },
                    ]
                },
            )
        if request.url.path.endswith("/_apis/wit/workitems"):
            return httpx.Response(200, json={"value": [{"id": 42, "fields": {"System.AreaPath": "Shop\\A"}}]})
        raise AssertionError(f"unexpected {request.url}")

    return handler


@pytest.mark.parametrize("status", [401, 410])
def test_odata_unavailable_falls_back_to_rest(status: int) -> None:
    seen: list[httpx.Request] = []
    prs = _client(_rest_handler(seen, status)).prs_with_work_items(START, END)

    assert [pr.id for pr in prs] == [1]
    assert prs[0].linked_area_paths == ("Shop\\A",)
    odata = seen[0]
    assert odata.url.path == "/acme/Shop/_odata/v4.0/PullRequests"
    assert "api-version" not in odata.url.params


def test_other_odata_errors_propagate() -> None:
    seen: list[httpx.Request] = []
    with pytest.raises(AdoApiError) as exc:
        _client(_rest_handler(seen, 500)).prs_with_work_items(START, END)
    assert exc.value.status == 500
    assert len(seen) == 1


def test_odata_rows_are_normalized() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        return httpx.Response(
            200,
            json={
                "value": [
                    {
                        "PullRequestId": 5,
                        "CreatedBy": {"UserName": "alice@corp.com"},
                        "Repository": {"RepositoryName": "shop"},
                        "CompletedDate": "2025-03-05T00:00:00Z",
                        "WorkItems": [{"AreaPath": "Shop\\A"}],
                    }
                ]
            },
        )

    [pr] = _client(handler).prs_with_work_items(START, END)
    assert (pr.id, pr.repo_or_feature, pr.linked_area_paths) == (5, "shop", ("Shop\\A",))


def test_fan_out_keeps_order_and_fails_fast() -> None:
    assert fan_out([lambda: 1, lambda: 2, lambda: 3], max_workers=2) == [1, 2, 3]
    assert fan_out([]) == []

    def boom() -> int:
        raise RuntimeError("upstream down")

    with pytest.raises(RuntimeError, match="upstream down"):
        fan_out([lambda: 1, boom], max_workers=2)
