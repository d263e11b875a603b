"""HTTP surface tests."""

import base64
from unittest import mock

import pytest
from fastapi.testclient import TestClient

import certificate_service
from text_extraction import TextExtractionError


@pytest.fixture
def client(monkeypatch):
    monkeypatch.setattr(certificate_service, "API_KEY", "")
    return TestClient(certificate_service.app)


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "ok"

    def test_root(self, client):
        assert "features" in client.get("/").json()


class TestApiKey:
    def test_missing_key_rejected(self, client, monkeypatch):
        monkeypatch.setattr(certificate_service, "API_KEY", "secret")
        assert client.post("/verify", json={"extracted_text": "x"}).status_code == 401

    def test_valid_key(self, client, monkeypatch):
        monkeypatch.setattr(certificate_service, "API_KEY", "secret")
        response = client.post("/verify", json={"extracted_text": "x"}, headers={"X-API-Key": "secret"})
        assert response.status_code == 200


class TestVerifyEndpoints:
    def test_verify(self, client, full_text, full_claim):
        response = client.post("/verify", json={"extracted_text": full_text, **full_claim.to_dict()})
        body = response.json()
        assert response.status_code == 200
        assert body["confidence_score"] == 100
        assert body["ai_decision"] == "verified"
        assert body["summary"].startswith("Certificate appears to be authentic")

    def test_enhanced_with_image_analysis(self, client, full_text, full_claim):
        payload = {
            "extracted_text": full_text,
            **full_claim.to_dict(),
            "image_analysis": {"integrity_score": 85},
        }
        body = client.post("/verify/enhanced", json=payload).json()
        assert body["image_integrity_score"] == 85
        assert body["confidence_score"] == 96

    def test_issuer(self, client):
        body = client.post("/verify/issuer", json={
            "issuer": "Coursera",
            "credential_id": "ABC123XYZ9",
            "credential_url": "https://www.coursera.org/verify/ABC123XYZ9",
        }).json()
        assert body["issuer_verified"] is True
        assert body["database_checked"] is True

    def test_ai_degraded(self, client):
        with mock.patch("text_extraction.load_source", side_effect=TextExtractionError("offline")):
            body = client.post("/verify/ai", json={"file_url": "https://cdn.example.com/c.png"}).json()
        assert body["status"] == "degraded"
        assert body["score"] == 0.7


class TestVerifyCertificate:
    def test_missing_image_is_bad_request(self, client):
        response = client.post("/verify-certificate", json={"credential_url": "https://x.org/c"})
        assert response.status_code == 400
        assert "image URL is required" in response.json()["detail"]

    def test_unexpected_error_is_server_error(self, client):
        with mock.patch("certificate_service.verify_new_certificate", side_effect=RuntimeError("disk full")):
            response = client.post("/verify-certificate", json={"image_url": "c.png"})
        assert response.status_code == 500
        assert "disk full" in response.json()["detail"]

    def test_success(self, client, full_text, full_claim, png_bytes):
        image_url = "data:image/png;base64," + base64.b64encode(png_bytes).decode("ascii")
        with mock.patch("certificate_pipeline.extract_text_from_bytes", return_value=full_text):
            response = client.post("/verify-certificate", json={"image_url": image_url, **full_claim.to_dict()})
        body = response.json()
        assert response.status_code == 200
        assert body["success"] is True
        assert body["verification"]["confidence_score"] == 96


class TestServerPathsRejected:
    @pytest.fixture
    def secret_file(self, tmp_path):
        path = tmp_path / "settings.env"
        path.write_text("DB_PASSWORD=hunter2\n")
        return str(path)

    def test_verify_certificate(self, client, secret_file):
        response = client.post("/verify-certificate", json={
            "image_url": secret_file,
            "credential_url": "https://x.org/c",
        })
        assert response.status_code == 400
        assert "hunter2" not in response.text

    def test_verify(self, client, secret_file):
        response = client.post("/verify", json={"extracted_text": "x", "image_url": secret_file})
        assert response.status_code == 400

    def test_verify_ai(self, client, secret_file):
        response = client.post("/verify/ai", json={"file_url": secret_file})
        assert response.status_code == 400
        assert "hunter2" not in response.text

    def test_bulk_item_fails_alone(self, client, secret_file):
        body = client.post("/bulk-verify", json={"certificates": [
            {"id": "a", "title": "DB_PASSWORD", "image_url": secret_file},
        ]}).json()
        assert body["failed"] == 1
        assert body["results"][0]["success"] is False
        assert "hunter2" not in str(body)


class TestBulkVerify:
    def test_empty_is_bad_request(self, client):
        assert client.post("/bulk-verify", json={"certificates": []}).status_code == 400

    def test_items_reported(self, client):
        with mock.patch("certificate_service.extract_text", return_value="Cloud Fundamentals"):
            body = client.post("/bulk-verify", json={"certificates": [
                {"id": "a", "title": "Cloud Fundamentals", "image_url": "https://cdn.example.com/a.png"},
                {"id": "b", "title": "Cloud Fundamentals"},
            ]}).json()
        assert body["success"] is True
        assert body["successful"] == 1
        assert body["failed"] == 1
        assert body["results"][0]["score"] == 100
