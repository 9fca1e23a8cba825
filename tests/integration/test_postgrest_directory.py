import httpx
import pytest

from usage_insights.domain.exceptions import DirectoryLookupError
from usage_insights.stores.postgrest import PostgrestDirectoryStore


def _build_client(handler):
    transport = httpx.MockTransport(handler)
    return httpx.Client(transport=transport)


def test_find_by_ids_uses_in_filter():
    captured = {}

    def handler(request: httpx.Request) -> httpx.Response:
        captured["path"] = request.url.path
        captured["params"] = dict(request.url.params)
        captured["headers"] = dict(request.headers)
        data = [
            {"id": "d-1", "name": "Ada Lovelace", "email": "ada@example.com"},
            {"id": None, "name": "Ghost", "email": None},
        ]
        return httpx.Response(200, json=data)

    store = PostgrestDirectoryStore(
        _build_client(handler), "https://dir.example.com/", "anon-key"
    )

    entries = store.find_by_ids(["d-2", "d-1", "d-1"])

    assert [entry.name for entry in entries] == ["Ada Lovelace"]
    assert captured["path"] == "/rest/v1/users"
    assert captured["params"]["id"] == 'in.("d-1","d-2")'
    assert captured["params"]["select"] == "id,name,email"
    assert captured["headers"]["apikey"] == "anon-key"
    assert captured["headers"]["authorization"] == "Bearer anon-key"


def test_find_by_emails_chunks_large_lookups():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request.url.params["email"])
        return httpx.Response(200, json=[])

    store = PostgrestDirectoryStore(
        _build_client(handler), "https://dir.example.com", "anon-key", chunk_size=2
    )

    store.find_by_emails(["a@example.com", "b@example.com", "c@example.com", ""])

    assert seen == ['in.("a@example.com","b@example.com")', 'in.("c@example.com")']


def test_empty_lookup_makes_no_request():
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("unexpected request")

    store = PostgrestDirectoryStore(
        _build_client(handler), "https://dir.example.com", "anon-key"
    )

    assert store.find_by_ids([]) == []


def test_error_status_raises_lookup_error():
    store = PostgrestDirectoryStore(
        _build_client(lambda request: httpx.Response(401, json={"message": "JWT"})),
        "https://dir.example.com",
        "anon-key",
    )

    with pytest.raises(DirectoryLookupError) as exc_info:
        store.find_by_ids(["d-1"])

    assert exc_info.value.context["status"] == 401


def test_unexpected_payload_raises_lookup_error():
    store = PostgrestDirectoryStore(
        _build_client(lambda request: httpx.Response(200, json={"id": "d-1"})),
        "https://dir.example.com",
        "anon-key",
    )

    with pytest.raises(DirectoryLookupError):
        store.find_by_ids(["d-1"])


@pytest.mark.parametrize(
    "kwargs",
    [
        {"base_url": "", "api_key": "key"},
        {"base_url": "https://dir.example.com", "api_key": ""},
        {"base_url": "https://dir.example.com", "api_key": "key", "chunk_size": 0},
    ],
)
def test_constructor_validation(kwargs):
    client = _build_client(lambda request: httpx.Response(200, json=[]))

    with pytest.raises(ValueError):
        PostgrestDirectoryStore(client, **kwargs)
