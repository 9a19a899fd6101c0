from __future__ import annotations

from typing import Any, Dict

import pytest

pytest.importorskip("fastapi")
pytest.importorskip("httpx")

from fastapi.testclient import TestClient

from app.services.errors import ProviderError, StoreUnavailableError
from app.services.records import RecordWriter
from app.services.resolver import RecordResolver
from app.web import create_app
from app.web.server import REQUEST_ID_HEADER

from conftest import FakeClock, InMemoryDocumentStore, ScriptedProvider, build_orchestrator, seed_physics


def _build_client(
    store: InMemoryDocumentStore,
    temp_config,
    provider: ScriptedProvider | None = None,
    *,
    max_wait: float = 600.0,
) -> tuple[TestClient, Dict[str, Any]]:
    provider = provider or ScriptedProvider(["started", "started", "done"])
    clock = FakeClock()
    app = create_app(
        config=temp_config,
        store=store,
        orchestrator=build_orchestrator(provider, clock, max_wait=max_wait),
        resolver=RecordResolver(store),
        writer=RecordWriter(store),
        closers=[provider, store],
    )
    return TestClient(app), {"provider": provider, "clock": clock, "app": app}


def test_health_reports_database(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    response = client.get("/health")

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "OK"
    assert body["database"] == "professional"
    assert response.headers[REQUEST_ID_HEADER]


def test_request_ids_differ_per_request(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    first = client.get("/health").headers[REQUEST_ID_HEADER]
    second = client.get("/health").headers[REQUEST_ID_HEADER]

    assert first != second


def test_generate_and_upload_returns_video(store, temp_config) -> None:
    client, context = _build_client(store, temp_config)

    response = client.post(
        "/generate-and-upload",
        json={"subtopic": "Kinematics", "description": "Explain displacement and velocity"},
    )

    assert response.status_code == 200
    body = response.json()
    assert body["videoUrl"] == "https://cdn/video1.mp4"
    assert body["jobId"] == "talk_1"
    assert body["polls"] == 3
    assert body["subtopicIdentifier"] == "Kinematics"
    assert len(context["provider"].created) == 1


def test_generate_requires_subtopic_and_description(store, temp_config) -> None:
    client, context = _build_client(store, temp_config)

    missing_subtopic = client.post("/generate-and-upload", json={"description": "Long enough"})
    short_description = client.post(
        "/generate-and-upload", json={"subtopicIdentifier": "Kinematics", "description": "hi"}
    )

    assert missing_subtopic.status_code == 400
    assert short_description.status_code == 400
    assert "at least 3 characters" in short_description.json()["error"]
    assert context["provider"].created == []


def test_generate_maps_provider_failure_to_bad_gateway(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config, ScriptedProvider(["started", "rejected"]))

    response = client.post(
        "/generate-and-upload", json={"subtopic": "Kinematics", "description": "Explain motion"}
    )

    assert response.status_code == 502
    assert response.json()["error"] == "generation failed"
    assert response.json()["jobId"] == "talk_1"


def test_generate_maps_provider_http_error(store, temp_config) -> None:
    provider = ScriptedProvider(["started"])
    provider.poll_errors[0] = ProviderError("Unauthorized", status_code=401, job_id="talk_1")
    client, _ = _build_client(store, temp_config, provider)

    response = client.post(
        "/generate-and-upload", json={"subtopic": "Kinematics", "description": "Explain motion"}
    )

    assert response.status_code == 502
    assert response.json()["providerStatus"] == 401


def test_generate_maps_timeout_to_gateway_timeout(store, temp_config) -> None:
    client, context = _build_client(
        store, temp_config, ScriptedProvider(["started"]), max_wait=6.0
    )

    response = client.post(
        "/generate-and-upload", json={"subtopic": "Kinematics", "description": "Explain motion"}
    )

    assert response.status_code == 504
    body = response.json()
    assert body["jobId"] == "talk_1"
    assert body["polls"] == 3
    assert "timeout" in body["error"].lower()


def test_update_subtopic_video_and_repeat(store, temp_config) -> None:
    seed_physics(store)
    client, _ = _build_client(store, temp_config)
    payload = {
        "subtopicId": "sub-42",
        "aiVideoUrl": "https://cdn/video1.mp4",
        "subjectName": "physics",
    }

    first = client.put("/api/updateSubtopicVideo", json=payload)
    second = client.put("/api/updateSubtopicVideo", json=payload)

    assert first.status_code == 200
    assert first.json() == {
        "status": "ok",
        "matched": True,
        "location": "nestedUnit",
        "collectionName": "physics",
        "modifiedCount": 1,
        "strategy": "nested_string_id",
        "database": "professional",
    }
    assert second.json()["modifiedCount"] == 0
    assert second.json()["matched"] is True


def test_update_subtopic_video_accepts_metadata(store, temp_config) -> None:
    seed_physics(store)
    client, _ = _build_client(store, temp_config)

    response = client.put(
        "/api/updateSubtopicVideo",
        json={
            "recordIdentifier": "sub-42",
            "videoUrl": "https://cdn/video2.mp4",
            "collectionHint": "physics",
            "metadata": {"videoDuration": 31},
        },
    )

    assert response.status_code == 200
    unit = store.documents("physics")[0]["units"][0]
    assert unit["aiVideoUrl"] == "https://cdn/video2.mp4"
    assert unit["videoDuration"] == 31


def test_update_subtopic_video_not_found(store, temp_config) -> None:
    seed_physics(store)
    client, _ = _build_client(store, temp_config)

    response = client.put(
        "/api/updateSubtopicVideo",
        json={"subtopicId": "000000000000000000000000", "aiVideoUrl": "https://cdn/v.mp4"},
    )

    assert response.status_code == 404
    body = response.json()
    assert body["error"] == "Subtopic not found in database"
    assert body["identifier"] == "000000000000000000000000"
    assert body["collections"] == ["physics"]
    assert body["suggestion"]


def test_update_subtopic_video_requires_fields(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    response = client.put("/api/updateSubtopicVideo", json={"subtopicId": "sub-42"})

    assert response.status_code == 400


def test_store_outage_maps_to_service_unavailable(store, temp_config) -> None:
    seed_physics(store)
    store.unavailable = True
    client, _ = _build_client(store, temp_config)

    response = client.put(
        "/api/updateSubtopicVideo",
        json={"subtopicId": "sub-42", "aiVideoUrl": "https://cdn/v.mp4"},
    )

    assert response.status_code == 503


def test_debug_subtopic_reports_nested_match(store, temp_config) -> None:
    parent_id = seed_physics(store)
    client, _ = _build_client(store, temp_config)

    response = client.get("/api/debug-subtopic/sub-42", params={"collection": "physics"})

    assert response.status_code == 200
    body = response.json()
    assert body["found"] is True
    assert body["location"] == "nestedUnit"
    assert body["record"]["unitName"] == "Kinematics"
    assert body["parent"]["_id"] == str(parent_id)
    assert body["idField"] == "id"
    assert store.queries("update_one") == []


def test_debug_subtopic_reports_miss(store, temp_config) -> None:
    seed_physics(store)
    client, _ = _build_client(store, temp_config)

    body = client.get("/api/debug-subtopic/unknown").json()

    assert body["found"] is False
    assert body["location"] == "notFound"
    assert body["collectionsSearched"] == ["physics"]
    assert body["suggestion"]


def test_create_subtopic_nested_and_top_level(store, temp_config) -> None:
    parent_id = seed_physics(store)
    client, _ = _build_client(store, temp_config)

    nested = client.post(
        "/api/subtopics",
        json={"collection": "physics", "unitName": "Dynamics", "parentId": str(parent_id)},
    )
    top_level = client.post(
        "/api/subtopics", json={"collection": "chemistry", "subtopicName": "Bonds", "level": 2}
    )

    assert nested.status_code == 201
    assert nested.json()["location"] == "nestedUnit"
    assert nested.json()["parentId"] == str(parent_id)
    assert top_level.status_code == 201
    assert top_level.json()["location"] == "mainDocument"
    assert store.documents("chemistry")[0]["level"] == 2


def test_create_subtopic_with_unknown_parent(store, temp_config) -> None:
    seed_physics(store)
    client, _ = _build_client(store, temp_config)

    response = client.post(
        "/api/subtopics",
        json={"collection": "physics", "unitName": "Orphan", "parentId": "missing-parent"},
    )

    assert response.status_code == 404


def test_inspect_database_shapes_samples(store, temp_config) -> None:
    parent_id = seed_physics(store)
    client, _ = _build_client(store, temp_config)

    body = client.get("/api/inspect-database").json()

    assert body["database"] == "professional"
    physics = body["collections"]["physics"]
    assert physics["documentCount"] == 1
    sample = physics["sample"][0]
    assert sample["_id"] == str(parent_id)
    assert sample["hasUnits"] is True
    assert sample["unitsSample"] == [{"id": "sub-42", "unitName": "Kinematics"}]


def test_cors_preflight_allows_configured_origin(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    allowed = client.options(
        "/api/updateSubtopicVideo",
        headers={"Origin": "http://localhost:5173", "Access-Control-Request-Method": "PUT"},
    )
    rejected = client.options(
        "/api/updateSubtopicVideo",
        headers={"Origin": "http://evil.example", "Access-Control-Request-Method": "PUT"},
    )

    assert allowed.status_code == 200
    assert allowed.headers["access-control-allow-origin"] == "http://localhost:5173"
    assert allowed.headers["access-control-allow-credentials"] == "true"
    assert "access-control-allow-origin" not in rejected.headers


def test_lifespan_pings_store_and_releases_resources(store, temp_config) -> None:
    client, context = _build_client(store, temp_config)

    with client:
        assert store.pinged == 1
        assert client.get("/health").status_code == 200

    assert store.closed is True
    assert context["provider"].closed is True


def test_failed_startup_ping_still_releases_resources(store, temp_config) -> None:
    store.unavailable = True
    client, context = _build_client(store, temp_config)

    with pytest.raises(StoreUnavailableError):
        with client:
            pass

    assert store.closed is True
    assert context["provider"].closed is True


def test_update_subtopic_video_targets_requested_database(store, temp_config) -> None:
    seed_physics(store)
    staging = store.with_database("staging")
    seed_physics(staging)
    client, _ = _build_client(store, temp_config)

    response = client.put(
        "/api/updateSubtopicVideo",
        json={
            "subtopicId": "sub-42",
            "aiVideoUrl": "https://cdn/staging.mp4",
            "subjectName": "physics",
            "dbname": "staging",
        },
    )

    assert response.status_code == 200
    assert response.json()["database"] == "staging"
    assert staging.documents("physics")[0]["units"][0]["aiVideoUrl"] == "https://cdn/staging.mp4"
    assert "aiVideoUrl" not in store.documents("physics")[0]["units"][0]


def test_debug_and_inspect_accept_dbname(store, temp_config) -> None:
    staging = store.with_database("staging")
    seed_physics(staging)
    client, _ = _build_client(store, temp_config)

    default_db = client.get("/api/debug-subtopic/sub-42").json()
    staging_db = client.get(
        "/api/debug-subtopic/sub-42", params={"dbname": "staging", "subjectName": "physics"}
    ).json()
    inspected = client.get("/api/inspect-database", params={"dbname": "staging"}).json()

    assert default_db["found"] is False
    assert default_db["database"] == "professional"
    assert staging_db["found"] is True
    assert staging_db["database"] == "staging"
    assert staging_db["collectionsSearched"] == ["physics"]
    assert inspected["database"] == "staging"
    assert inspected["collections"]["physics"]["documentCount"] == 1


def test_create_subtopic_in_requested_database(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    response = client.post(
        "/api/subtopics",
        json={"collection": "chemistry", "subtopicName": "Bonds", "database": "staging"},
    )

    assert response.status_code == 201
    assert response.json()["database"] == "staging"
    stored = store.with_database("staging").documents("chemistry")[0]
    assert "database" not in stored
    assert store.documents("chemistry") == []


def test_invalid_database_name_is_rejected(store, temp_config) -> None:
    client, _ = _build_client(store, temp_config)

    response = client.get("/api/inspect-database", params={"dbname": "bad.name"})

    assert response.status_code == 400
    assert "bad.name" in response.json()["error"]
