"""Tests for the HTTP API."""

import time

import pytest
from fastapi.testclient import TestClient

from photo_faces.api import create_app

from conftest import face, unit


@pytest.fixture
def client(service):
    return TestClient(create_app(service))


class TestHealthAndOptions:
    """Test cases for service-level endpoints."""

    def test_health(self, client):
        response = client.get("/api/v1/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["detector"] == "fake"
        assert data["people"] == 0

    def test_root(self, client):
        assert client.get("/").json()["health"] == "/api/v1/health"

    def test_update_options(self, client, service):
        response = client.put("/api/v1/options", json={"match_confidence_threshold": 0.8})

        assert response.status_code == 200
        assert response.json()["match_confidence_threshold"] == 0.8
        assert response.json()["min_face_size"] == 20
        assert service.options.match_confidence_threshold == 0.8

    def test_invalid_option_value(self, client):
        response = client.put("/api/v1/options", json={"match_confidence_threshold": 3})
        assert response.status_code == 422
        assert response.json()["detail"]["code"] == "CONFIGURATION_ERROR"

    def test_no_service_returns_503(self):
        client = TestClient(create_app())
        assert client.get("/api/v1/health").status_code == 503


class TestRecognition:
    """Test cases for recognition endpoints."""

    def test_recognize(self, client, service, fake_detector, make_image):
        alice = service.create_or_update_person("Alice")
        service.assign_face(alice.id, make_image("alice.jpg", seed=1), (0, 0, 50, 50), unit(0))
        fake_detector.set_faces("party.jpg", [face(embedding=unit(0))])

        response = client.post(
            "/api/v1/recognize",
            json={"file_path": str(make_image("party.jpg", seed=2))},
        )

        assert response.status_code == 200
        data = response.json()
        assert data["error"] is None
        assert data["faces"][0]["person_name"] == "Alice"
        assert "embedding" not in data["faces"][0]

    def test_recognize_failure_reported_in_body(self, client, tmp_path):
        response = client.post("/api/v1/recognize", json={"file_path": str(tmp_path / "x.jpg")})
        assert response.status_code == 200
        assert response.json()["error"]

    def test_batch_lifecycle(self, client, make_image):
        paths = [str(make_image(f"p{i}.jpg", seed=i)) for i in range(2)]

        response = client.post("/api/v1/batches", json={"file_paths": paths})
        assert response.status_code == 202
        job_id = response.json()["job_id"]

        deadline = time.time() + 5
        while time.time() < deadline:
            data = client.get(f"/api/v1/batches/{job_id}").json()
            if data["status"] == "completed":
                break
            time.sleep(0.02)

        assert data["status"] == "completed"
        assert data["processed"] == 2
        assert [r["file_path"] for r in data["results"]] == paths

    def test_unknown_batch(self, client):
        assert client.get("/api/v1/batches/nope").status_code == 404
        assert client.delete("/api/v1/batches/nope").status_code == 404


class TestPeople:
    """Test cases for people endpoints."""

    def test_create_list_get(self, client):
        created = client.post("/api/v1/people", json={"name": "Alice"}).json()

        listing = client.get("/api/v1/people").json()
        assert listing["total"] == 1
        assert listing["people"][0]["id"] == created["id"]

        fetched = client.get(f"/api/v1/people/{created['id']}").json()
        assert fetched["name"] == "Alice"

    def test_create_is_upsert(self, client):
        first = client.post("/api/v1/people", json={"name": "Alice"}).json()
        second = client.post("/api/v1/people", json={"name": "alice"}).json()
        assert first["id"] == second["id"]

    def test_rename_conflict(self, client):
        client.post("/api/v1/people", json={"name": "Alice"})
        bob = client.post("/api/v1/people", json={"name": "Bob"}).json()

        response = client.patch(f"/api/v1/people/{bob['id']}", json={"name": "ALICE"})

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "NAME_CONFLICT"

    def test_rename(self, client):
        bob = client.post("/api/v1/people", json={"name": "Bob"}).json()
        response = client.patch(f"/api/v1/people/{bob['id']}", json={"name": "Robert"})
        assert response.json()["name"] == "Robert"

    def test_thumbnail_outside_exemplars_rejected(self, client, tmp_path):
        photo = tmp_path / "precious.jpg"
        photo.write_bytes(b"original photo")

        assert client.post(
            "/api/v1/people", json={"name": "Alice", "thumbnail_path": str(photo)}
        ).status_code == 422

        alice = client.post("/api/v1/people", json={"name": "Alice"}).json()
        response = client.patch(f"/api/v1/people/{alice['id']}", json={"thumbnail_path": str(photo)})
        assert response.status_code == 422

        client.delete(f"/api/v1/people/{alice['id']}")
        assert photo.exists()

    def test_unknown_person(self, client):
        assert client.get("/api/v1/people/nope").status_code == 404
        assert client.patch("/api/v1/people/nope", json={"name": "X"}).status_code == 404
        assert client.delete("/api/v1/people/nope").status_code == 404

    def test_assign_and_unassign_face(self, client, make_image):
        alice = client.post("/api/v1/people", json={"name": "Alice"}).json()
        body = {
            "image_path": str(make_image()),
            "bounding_box": {"x": 0, "y": 0, "width": 50, "height": 50},
            "embedding": unit(0),
        }

        response = client.post(f"/api/v1/people/{alice['id']}/faces", json=body)
        assert response.status_code == 201
        person = response.json()
        assert len(person["exemplars"]) == 1
        assert "embedding" not in person["exemplars"][0]

        face_id = person["exemplars"][0]["face_id"]
        response = client.delete(f"/api/v1/people/{alice['id']}/faces/{face_id}")
        assert response.status_code == 200
        assert response.json()["exemplars"] == []
        assert response.json()["thumbnail_path"] is None

    def test_assign_face_to_unknown_person(self, client, make_image):
        body = {
            "image_path": str(make_image()),
            "bounding_box": {"x": 0, "y": 0, "width": 50, "height": 50},
        }
        response = client.post("/api/v1/people/nope/faces", json=body)
        assert response.status_code == 404

    def test_assign_face_detector_miss(self, client, make_image):
        alice = client.post("/api/v1/people", json={"name": "Alice"}).json()
        body = {
            "image_path": str(make_image()),
            "bounding_box": {"x": 0, "y": 0, "width": 50, "height": 50},
        }
        response = client.post(f"/api/v1/people/{alice['id']}/faces", json=body)
        assert response.status_code == 502

    def test_assign_face_dimension_mismatch(self, client, make_image):
        alice = client.post("/api/v1/people", json={"name": "Alice"}).json()
        url = f"/api/v1/people/{alice['id']}/faces"
        body = {
            "image_path": str(make_image()),
            "bounding_box": {"x": 0, "y": 0, "width": 50, "height": 50},
            "embedding": unit(0),
        }
        client.post(url, json=body)

        body["embedding"] = [1.0, 0.0]
        assert client.post(url, json=body).status_code == 422

    def test_delete(self, client):
        alice = client.post("/api/v1/people", json={"name": "Alice"}).json()
        assert client.delete(f"/api/v1/people/{alice['id']}").status_code == 200
        assert client.get("/api/v1/people").json()["total"] == 0
