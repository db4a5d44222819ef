"""Tests for the collection API client."""

from __future__ import annotations

import httpx
import pytest

from bilisorter.errors import NotAuthenticatedError, RateLimitedError, SessionExpiredError, TransportError
from bilisorter.remote.collection import CollectionClient, Credentials
from bilisorter.state import Folder

from .fakes import FakeCollectionAPI, SleepRecorder


def _client_for(handler, sleep: SleepRecorder | None = None) -> CollectionClient:
    return CollectionClient(
        Credentials(sessdata="sess", bili_jct="csrf", dede_user_id="42"),
        client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
        sleep=sleep or SleepRecorder(),
    )


@pytest.mark.asyncio
async def test_check_auth_reports_owner_and_sends_cookies() -> None:
    api = FakeCollectionAPI()
    client = api.client()

    result = await client.check_auth()

    assert result.logged_in
    assert result.owner_id == "42"
    assert result.username == "tester"
    headers = api.requests[0].headers
    assert headers["Cookie"] == "SESSDATA=sess; bili_jct=csrf-token; DedeUserID=42"
    assert headers["Referer"] == "https://www.bilibili.com"


@pytest.mark.asyncio
async def test_check_auth_without_credentials_makes_no_request() -> None:
    api = FakeCollectionAPI()
    client = api.client(credentials=False)

    result = await client.check_auth()

    assert not result.logged_in
    assert api.requests == []
    with pytest.raises(NotAuthenticatedError):
        await client.resolve_owner()


@pytest.mark.asyncio
async def test_resolve_owner_raises_when_session_expired() -> None:
    client = FakeCollectionAPI(logged_in=False).client()

    with pytest.raises(SessionExpiredError):
        await client.resolve_owner()


@pytest.mark.asyncio
async def test_fetch_folders_maps_listing() -> None:
    api = FakeCollectionAPI(folders=[(1, "Music", 12), (2, "Games", 0)])

    folders = await api.client().fetch_folders("42")

    assert [(f.id, f.name, f.item_count) for f in folders] == [(1, "Music", 12), (2, "Games", 0)]
    assert all(f.sample_titles == [] for f in folders)
    assert api.requests[0].url.params["up_mid"] == "42"


@pytest.mark.asyncio
async def test_request_maps_http_412_to_rate_limited() -> None:
    client = _client_for(lambda request: httpx.Response(412, text="blocked"))

    with pytest.raises(RateLimitedError) as excinfo:
        await client.fetch_items_page(1, 1)

    assert "resource/list" in excinfo.value.url


@pytest.mark.asyncio
async def test_request_rejects_non_json_responses() -> None:
    client = _client_for(lambda request: httpx.Response(200, text="<html>captcha</html>"))

    with pytest.raises(TransportError, match="Expected JSON"):
        await client.fetch_folders("42")


@pytest.mark.asyncio
async def test_request_maps_connection_errors_to_transport_error() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("connection refused", request=request)

    with pytest.raises(TransportError, match="ConnectError"):
        await _client_for(handler).fetch_folders("42")


@pytest.mark.asyncio
async def test_non_zero_api_code_is_transport_error() -> None:
    client = _client_for(lambda request: httpx.Response(200, json={"code": -400, "data": None}))

    with pytest.raises(TransportError):
        await client.fetch_items_page(1, 1)


@pytest.mark.asyncio
async def test_null_media_fields_become_defaults() -> None:
    api = FakeCollectionAPI(
        folders=[(1, "Inbox", 1)],
        media_overrides={"BV1x0": {"title": None, "upper": {"name": None}, "cnt_info": {"play": None}}},
    )

    items, _, _ = await api.client().fetch_items_page(1, 1)

    assert items[0].external_id == "BV1x0"
    assert items[0].title == ""
    assert items[0].owner_name == ""
    assert items[0].play_count == 0


@pytest.mark.asyncio
async def test_malformed_media_is_transport_error() -> None:
    api = FakeCollectionAPI(folders=[(1, "Inbox", 2)], media_overrides={"BV1x1": {"cnt_info": {"play": "many"}}})

    with pytest.raises(TransportError, match="Malformed item in folder 1 page 1"):
        await api.client().fetch_items_page(1, 1)


@pytest.mark.asyncio
async def test_fetch_folder_sample_reads_one_random_page() -> None:
    api = FakeCollectionAPI(folders=[(5, "Docs", 45)])
    client = api.client()

    titles = await client.fetch_folder_sample(Folder(id=5, name="Docs", item_count=45), page_size=20, max_titles=10)

    assert len(api.item_requests()) == 1
    _, page = api.item_requests()[0]
    assert 1 <= page <= 3
    assert 1 <= len(titles) <= 10
    assert all(title.startswith("Video 5-") for title in titles)


@pytest.mark.asyncio
async def test_fetch_items_window_paces_pages(sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=[(7, "Inbox", 50)])

    window = await api.client(sleeper).fetch_items_window(
        7, start_page=1, max_pages=3, page_size=20, page_delay=0.5, retry_delay=3.0
    )

    assert len(window.items) == 50
    assert window.total == 50
    assert window.has_more is False
    assert window.next_page == 4
    assert sleeper.calls == [0.5, 0.5]


@pytest.mark.asyncio
async def test_fetch_items_window_stops_on_transport_error(sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=[(7, "Inbox", 100)], failing_pages={(7, 2)})

    window = await api.client(sleeper).fetch_items_window(7, start_page=1, max_pages=3)

    assert len(window.items) == 20
    assert window.has_more is True
    assert window.next_page == 2
    assert api.item_requests() == [(7, 1), (7, 2)]


@pytest.mark.asyncio
async def test_fetch_items_window_retries_rate_limited_page_once(sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=[(7, "Inbox", 60)], rate_limits={(7, 2): 1})

    window = await api.client(sleeper).fetch_items_window(7, max_pages=3, retry_delay=3.0)

    assert len(window.items) == 60
    assert api.item_requests() == [(7, 1), (7, 2), (7, 2), (7, 3)]
    assert 3.0 in sleeper.calls


@pytest.mark.asyncio
async def test_fetch_items_window_propagates_persistent_rate_limit_with_partial(sleeper: SleepRecorder) -> None:
    api = FakeCollectionAPI(folders=[(7, "Inbox", 60)], rate_limits={(7, 3): 2})

    with pytest.raises(RateLimitedError) as excinfo:
        await api.client(sleeper).fetch_items_window(7, max_pages=3)

    partial = excinfo.value.partial
    assert partial is not None
    assert len(partial.items) == 40
    assert partial.next_page == 3
    assert partial.has_more is True


@pytest.mark.asyncio
async def test_move_item_posts_form_and_accepts_already_in_target() -> None:
    api = FakeCollectionAPI(move_code=72010002)

    result = await api.client().move_item(1, 2, "BV1x0")

    assert result.success
    form = api.form()
    assert form["media_id"] == ["1"]
    assert form["target_media_id"] == ["2"]
    assert form["resources"] == ["BV1x0:2"]
    assert form["csrf"] == ["csrf-token"]


@pytest.mark.asyncio
async def test_move_item_reports_api_error() -> None:
    api = FakeCollectionAPI(move_code=-403)

    result = await api.client().move_item(1, 2, "BV1x0")

    assert not result.success
    assert result.code == -403
    assert result.error == "move rejected"


@pytest.mark.asyncio
async def test_sort_and_rename_use_space_origin() -> None:
    api = FakeCollectionAPI()
    client = api.client()

    sort_result = await client.sort_folders([3, 1, 2])
    rename_result = await client.rename_folder(3, "Renamed")

    assert sort_result.success and rename_result.success
    sort_request, rename_request = api.requests
    assert sort_request.url.params["sort"] == "3,1,2"
    assert sort_request.url.params["csrf"] == "csrf-token"
    assert sort_request.headers["Origin"] == "https://space.bilibili.com"
    assert api.form()["title"] == ["Renamed"]


@pytest.mark.asyncio
async def test_write_operations_require_credentials() -> None:
    client = FakeCollectionAPI().client(credentials=False)

    with pytest.raises(NotAuthenticatedError):
        await client.move_item(1, 2, "BV1")
