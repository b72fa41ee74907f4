from __future__ import annotations

from datetime import datetime, timezone

import httpx
import pytest

from core.errors import CollectionSourceError
from core.models import MediaType
from services.maintainerr_client import MaintainerrClient

PAYLOAD = [
    {
        "id": 3,
        "plexId": 5001,
        "libraryId": 1,
        "title": "Leaving Soon",
        "isActive": True,
        "deleteAfterDays": 30,
        "type": 1,
        "media": [
            {"plexId": 100, "addDate": "2024-02-20T08:30:00.000Z"},
            {"plexId": 101, "addDate": "2024-02-21T10:00:00+01:00"},
        ],
    },
    {"id": 4, "title": None, "isActive": False, "deleteAfterDays": None, "type": 2, "media": None},
]


def _client(handler) -> MaintainerrClient:
    return MaintainerrClient("http://maintainerr:6246/", client=httpx.Client(transport=httpx.MockTransport(handler)))


def test_get_collections_decodes_payload() -> None:
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(str(request.url))
        return httpx.Response(200, json=PAYLOAD)

    leaving, empty = _client(handler).get_collections()

    assert seen == ["http://maintainerr:6246/api/collections"]
    assert leaving.title == "Leaving Soon"
    assert leaving.media_type == MediaType.MOVIE
    assert leaving.delete_after_days == 30
    assert leaving.library_id == 1
    assert [m.plex_id for m in leaving.media] == [100, 101]
    assert leaving.media[0].add_date == datetime(2024, 2, 20, 8, 30, tzinfo=timezone.utc)
    assert leaving.media[1].add_date == datetime(2024, 2, 21, 9, 0, tzinfo=timezone.utc)
    assert empty.display_title == "Unknown Collection"
    assert empty.delete_after_days == 0
    assert empty.media == []


def test_empty_list_is_not_an_error() -> None:
    assert _client(lambda request: httpx.Response(200, json=[])).get_collections() == []


@pytest.mark.parametrize(
    "response",
    [
        httpx.Response(500, text="boom"),
        httpx.Response(200, text="<html>not json</html>"),
        httpx.Response(200, json={"collections": []}),
        httpx.Response(200, json=[{"id": 1, "media": [{"plexId": 1}]}]),
    ],
)
def test_unusable_responses_raise(response: httpx.Response) -> None:
    with pytest.raises(CollectionSourceError):
        _client(lambda request: response).get_collections()


def test_connection_failure_raises() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    with pytest.raises(CollectionSourceError):
        _client(handler).get_collections()


def test_url_is_required() -> None:
    with pytest.raises(ValueError):
        MaintainerrClient("")
