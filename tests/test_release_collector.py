from unittest import mock

import pytest
import requests

from release_downloads.config import MAX_RETRIES
from release_downloads.release_collector import Release, ReleaseCollector

PAGE_ONE = [
    {
        "tag_name": "v0.3.0",
        "draft": False,
        "prerelease": False,
        "assets": [
            {"id": 11, "name": "studio-win.zip", "download_count": 1200},
            {"id": 12, "name": "studio-mac.zip", "download_count": 300},
        ],
    },
]
PAGE_TWO = [
    {"tag_name": "v0.2.0-rc1", "draft": False, "prerelease": True,
     "assets": [{"id": 7, "name": "studio-win.zip", "download_count": 45}]},
    {"tag_name": "v0.1.0", "draft": True, "prerelease": False, "assets": []},
]


def make_response(payload=None, status=200, next_url=None):
    response = mock.Mock()
    response.status_code = status
    response.json.return_value = payload
    response.links = {"next": {"url": next_url}} if next_url else {}
    if status >= 400:
        response.raise_for_status.side_effect = requests.HTTPError(response=response)
    else:
        response.raise_for_status.return_value = None
    return response


def make_collector(*responses, token=None):
    session = mock.Mock()
    session.headers = {}
    session.get.side_effect = list(responses)
    return ReleaseCollector(repo="owner/project", token=token, session=session), session


@pytest.fixture(autouse=True)
def no_retry_wait():
    with mock.patch("tenacity.nap.time.sleep"):
        yield


def test_follows_pagination():
    next_url = "https://api.github.com/repositories/1/releases?per_page=100&page=2"
    collector, session = make_collector(
        make_response(PAGE_ONE, next_url=next_url),
        make_response(PAGE_TWO),
    )

    releases = collector.fetch_releases()

    assert [r.tag_name for r in releases] == ["v0.3.0", "v0.2.0-rc1", "v0.1.0"]
    assert session.get.call_count == 2

    first_call, second_call = session.get.call_args_list
    assert first_call.args[0] == "https://api.github.com/repos/owner/project/releases"
    assert first_call.kwargs["params"] == {"per_page": 100}
    assert second_call.args[0] == next_url
    assert second_call.kwargs["params"] is None


def test_parses_assets():
    collector, _ = make_collector(make_response(PAGE_TWO))
    rc, draft = collector.fetch_releases()

    assert rc.prerelease is True
    assert rc.assets[0].asset_id == 7
    assert rc.assets[0].download_count == 45
    assert draft.draft is True
    assert draft.assets == []


def test_token_header():
    collector, session = make_collector(make_response([]), token="abc123")
    assert session.headers["Authorization"] == "token abc123"
    assert collector.fetch_releases() == []


def test_no_token_no_header():
    _, session = make_collector(make_response([]))
    assert "Authorization" not in session.headers


def test_client_error_returns_empty_without_retry():
    collector, session = make_collector(make_response(status=404))
    assert collector.fetch_releases() == []
    assert session.get.call_count == 1


def test_server_error_is_retried_then_empty():
    collector, session = make_collector(*[make_response(status=502) for _ in range(MAX_RETRIES)])
    assert collector.fetch_releases() == []
    assert session.get.call_count == MAX_RETRIES


def test_transient_failure_recovers():
    collector, session = make_collector(
        requests.ConnectionError("reset"),
        make_response(PAGE_ONE),
    )
    releases = collector.fetch_releases()
    assert len(releases) == 1
    assert session.get.call_count == 2


def test_network_failure_returns_empty():
    collector, session = make_collector(*[requests.ConnectionError("down") for _ in range(MAX_RETRIES)])
    assert collector.fetch_releases() == []


def test_failure_on_later_page_discards_partial_result():
    collector, _ = make_collector(
        make_response(PAGE_ONE, next_url="https://api.github.com/next"),
        make_response(status=403),
    )
    assert collector.fetch_releases() == []


def test_malformed_payload_returns_empty():
    collector, _ = make_collector(make_response([{"tag_name": "v1", "assets": [{"name": "no-id"}]}]))
    assert collector.fetch_releases() == []


def test_release_from_api_defaults():
    release = Release.from_api({"tag_name": "v2", "assets": None})
    assert release.assets == []
    assert release.draft is False
