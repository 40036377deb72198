"""搜索接口测试。"""

from app.packages.wiki.services.directory_service import directory_service

API = "/api/v1/search"


def test_index_then_suggest(client, auth_headers, make_document):
    document = make_document("Deploy guide", content="helm charts")

    indexed = client.post(f"{API}/documents/{document.id}/index", headers=auth_headers)
    assert indexed.status_code == 200
    assert indexed.json()["data"]["action"] == "upserted"

    response = client.get(f"{API}/suggestions", params={"prefix": "dep"})
    body = response.json()
    assert response.status_code == 200
    assert body["data"]["available"] is True
    assert [item["document_id"] for item in body["data"]["items"]] == [document.id]
    assert body["data"]["items"][0]["directory_path"] == ""


def test_suggestions_validate_query(client):
    assert client.get(f"{API}/suggestions", params={"prefix": ""}).status_code == 422
    assert client.get(f"{API}/suggestions", params={"prefix": "a", "limit": 0}).status_code == 422


def test_index_requires_token(client, make_document):
    document = make_document("Private")
    assert client.post(f"{API}/documents/{document.id}/index").status_code == 401
    assert client.post(f"{API}/reindex").status_code == 401


def test_missing_document_returns_404(client, auth_headers):
    response = client.post(f"{API}/documents/999999/index", headers=auth_headers)
    assert response.status_code == 404


def test_delete_index_is_idempotent(client, auth_headers, make_document):
    document = make_document("Archive")
    client.post(f"{API}/documents/{document.id}/index", headers=auth_headers)

    first = client.delete(f"{API}/documents/{document.id}/index", headers=auth_headers)
    second = client.delete(f"{API}/documents/{document.id}/index", headers=auth_headers)

    assert first.status_code == 200
    assert second.status_code == 200
    assert client.get(f"{API}/suggestions", params={"prefix": "Arch"}).json()["data"]["items"] == []


def test_reindex_with_and_without_body(client, auth_headers, make_document):
    make_document("One")
    make_document("Two")

    plain = client.post(f"{API}/reindex", headers=auth_headers)
    assert plain.status_code == 200
    assert plain.json()["data"]["indexed_count"] == 2

    timed = client.post(f"{API}/reindex", json={"timeout_seconds": 30}, headers=auth_headers)
    assert timed.status_code == 200
    assert timed.json()["data"]["generation"] > plain.json()["data"]["generation"]

    status = client.get(f"{API}/status").json()["data"]
    assert status["status"] == "ready"
    assert status["document_count"] == 2
    assert status["live_generation"] == timed.json()["data"]["generation"]


def test_reindex_rejects_non_positive_timeout(client, auth_headers):
    response = client.post(f"{API}/reindex", json={"timeout_seconds": 0}, headers=auth_headers)
    assert response.status_code == 422


def test_unavailable_index_degrades(client, auth_headers, make_document, search_service):
    document = make_document("Offline")
    search_service.adapter.available = False

    suggestions = client.get(f"{API}/suggestions", params={"prefix": "Off"})
    assert suggestions.status_code == 200
    assert suggestions.json()["data"]["available"] is False
    assert suggestions.json()["data"]["items"] == []

    indexed = client.post(f"{API}/documents/{document.id}/index", headers=auth_headers)
    assert indexed.status_code == 503

    status = client.get(f"{API}/status").json()["data"]
    assert status["available"] is False

    search_service.adapter.available = True
    initialized = client.post(f"{API}/initialize", headers=auth_headers)
    assert initialized.json()["data"]["status"] == "ready"
    assert client.post(f"{API}/documents/{document.id}/index", headers=auth_headers).status_code == 200


def test_suggestions_filter_by_directory(client, auth_headers, db_session_fixture, make_document):
    db = db_session_fixture
    docs = directory_service.create_directory(db, name="Docs")["data"]
    api = directory_service.create_directory(db, name="API", parent_id=docs["id"])["data"]
    archive = directory_service.create_directory(db, name="Archive")["data"]
    inside = make_document("Release notes", directory_id=api["id"])
    outside = make_document("Release plan", directory_id=archive["id"])
    for document in (inside, outside):
        client.post(f"{API}/documents/{document.id}/index", headers=auth_headers)

    scoped = client.get(f"{API}/suggestions", params={"prefix": "rel", "directory_id": docs["id"]})
    assert scoped.status_code == 200
    assert [item["document_id"] for item in scoped.json()["data"]["items"]] == [inside.id]
    assert scoped.json()["data"]["items"][0]["directory_path"] == "Docs/API"

    paged = client.get(f"{API}/suggestions", params={"prefix": "rel", "limit": 1, "offset": 1})
    assert paged.json()["data"]["offset"] == 1
    assert len(paged.json()["data"]["items"]) == 1

    assert client.get(f"{API}/suggestions", params={"prefix": "rel", "directory_id": 999999}).status_code == 404
    assert client.get(f"{API}/suggestions", params={"prefix": "rel", "offset": -1}).status_code == 422
