"""Tests for the force refresh endpoint."""

from fastapi.testclient import TestClient

from mirror_indexer.api.app import create_app
from mirror_indexer.errors import UnknownInstance


class TestRefreshEndpoint:
    """Tests for POST /instances/{instance_id}/subjects/{subject_id}/refresh."""

    def test_queues_first_page(self, client, mock_registry):
        response = client.post("/instances/research/subjects/42/refresh")

        assert response.status_code == 202
        assert response.json() == {
            "instance_id": "research",
            "subject_id": 42,
            "page": 1,
            "queued": True,
        }
        mock_registry.enqueue.assert_awaited_once_with("research", 42, 1)

    def test_explicit_page(self, client, mock_registry):
        response = client.post("/instances/pm/subjects/1000/refresh?page=3")

        assert response.status_code == 202
        assert response.json()["page"] == 3
        mock_registry.enqueue.assert_awaited_once_with("pm", 1000, 3)

    def test_already_outstanding(self, client, mock_registry):
        mock_registry.enqueue.return_value = False

        response = client.post("/instances/research/subjects/42/refresh")

        assert response.status_code == 202
        assert response.json()["queued"] is False

    def test_unknown_instance(self, client, mock_registry):
        mock_registry.enqueue.side_effect = UnknownInstance("nope")

        response = client.post("/instances/nope/subjects/42/refresh")

        assert response.status_code == 404
        assert "nope" in response.json()["detail"]

    def test_invalid_page(self, client, mock_registry):
        response = client.post("/instances/research/subjects/42/refresh?page=0")

        assert response.status_code == 422
        mock_registry.enqueue.assert_not_awaited()

    def test_non_numeric_subject(self, client):
        response = client.post("/instances/research/subjects/abc/refresh")

        assert response.status_code == 422

    def test_registry_not_running(self):
        client = TestClient(create_app())

        response = client.post("/instances/research/subjects/42/refresh")

        assert response.status_code == 503
