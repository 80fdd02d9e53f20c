"""Tests for the FastAPI REST API endpoints."""

from __future__ import annotations

import base64
import io

import httpx
import pytest
from fastapi.testclient import TestClient
from PIL import Image

from divemetrics.api.app import create_app
from divemetrics.config.settings import DiveMetricsConfig, ImageURLPolicyConfig, StoreConfig
from divemetrics.ingestion.adapter import OCRAdapter
from divemetrics.ingestion.engines import EngineOutput
from divemetrics.ingestion.errors import EngineUnavailable
from divemetrics.pipeline.analyzer import DiveImageAnalyzer

CLEAN_TEXT = "MAX DEPTH 45.2m\nDIVE TIME 02:15\nTEMP 27°C\nDATE 07/15/2023"


def _png() -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (40, 30)).save(buf, format="PNG")
    return buf.getvalue()


class _FakeEngine:
    name = "fake"

    def __init__(self, text=CLEAN_TEXT, error=None):
        self.text = text
        self.error = error

    async def extract(self, image, instruction):
        if self.error is not None:
            raise self.error
        return EngineOutput(text=self.text)


def _image_server(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/dive.png":
        return httpx.Response(200, content=_png(), headers={"content-type": "image/png"})
    if request.url.path == "/moved.png":
        return httpx.Response(302, headers={"location": "http://127.0.0.1/dive.png"})
    return httpx.Response(404)


def _config(tmp_path, store_backend="jsonl") -> DiveMetricsConfig:
    return DiveMetricsConfig(
        store=StoreConfig(backend=store_backend, data_dir=tmp_path),
        image_url_policy=ImageURLPolicyConfig(allowed_domains=[], denied_domains=[]),
    )


def _client(tmp_path, engine=None, store_backend="jsonl") -> TestClient:
    analyzer = DiveImageAnalyzer(OCRAdapter(engine or _FakeEngine()))
    app = create_app(
        _config(tmp_path, store_backend),
        analyzer=analyzer,
        http_transport=httpx.MockTransport(_image_server),
    )
    return TestClient(app)


@pytest.fixture
def client(tmp_path):
    return _client(tmp_path)


class TestHealthEndpoint:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["service"] == "divemetrics"


class TestAnalyzeUpload:
    def test_clean_display(self, client):
        response = client.post(
            "/api/v1/analyze",
            files={"image": ("dive.png", _png(), "image/png")},
            data={"prompt_hint": "Shearwater Teric"},
        )
        assert response.status_code == 200
        data = response.json()
        assert data["maxDepthMeters"] == 45.2
        assert data["diveTimeSeconds"] == 135
        assert data["diveTimeFormatted"] == "2:15"
        assert data["waterTemperatureCelsius"] == 27.0
        assert data["diveDate"] == "2023-07-15"
        assert data["fieldConfidence"]["maxDepthMeters"] == "high"
        assert data["validationWarnings"] == []
        assert data["isUsable"] is True

    def test_unsupported_image(self, client):
        response = client.post(
            "/api/v1/analyze", files={"image": ("notes.txt", b"hello", "text/plain")}
        )
        assert response.status_code == 415

    def test_engine_unavailable(self, tmp_path):
        client = _client(tmp_path, engine=_FakeEngine(error=EngineUnavailable("backend down")))
        response = client.post("/api/v1/analyze", files={"image": ("dive.png", _png(), "image/png")})
        assert response.status_code == 503

    def test_blank_display_is_not_an_error(self, tmp_path):
        client = _client(tmp_path, engine=_FakeEngine(text=""))
        response = client.post("/api/v1/analyze", files={"image": ("dive.png", _png(), "image/png")})
        assert response.status_code == 200
        assert response.json()["isUsable"] is False


class TestAnalyzeBase64:
    def test_data_url_persisted_for_user(self, client):
        image_data = "data:image/png;base64," + base64.b64encode(_png()).decode()
        response = client.post(
            "/api/v1/analyze/base64", json={"imageData": image_data, "userId": "diver_1"}
        )
        assert response.status_code == 200
        record_id = response.json()["recordId"]

        records = client.get("/api/v1/users/diver_1/records").json()
        assert [r["recordId"] for r in records] == [record_id]

    def test_invalid_user_id(self, client):
        image_data = base64.b64encode(_png()).decode()
        response = client.post(
            "/api/v1/analyze/base64", json={"imageData": image_data, "userId": "../etc"}
        )
        assert response.status_code == 400

    def test_date_order_applied(self, tmp_path):
        client = _client(tmp_path, engine=_FakeEngine(text="Max 20m 1:30 Date 03/04/2023"))
        image_data = base64.b64encode(_png()).decode()
        response = client.post(
            "/api/v1/analyze/base64", json={"imageData": image_data, "dateOrder": "DMY"}
        )
        assert response.json()["diveDate"] == "2023-04-03"


class TestAnalyzeURL:
    def test_fetches_and_analyzes(self, client):
        response = client.post(
            "/api/v1/analyze/url", json={"imageUrl": "https://images.example.com/dive.png"}
        )
        assert response.status_code == 200
        assert response.json()["maxDepthMeters"] == 45.2

    def test_private_target_blocked(self, client):
        response = client.post("/api/v1/analyze/url", json={"imageUrl": "http://127.0.0.1/dive.png"})
        assert response.status_code == 400

    def test_redirect_not_followed(self, client):
        response = client.post(
            "/api/v1/analyze/url", json={"imageUrl": "https://images.example.com/moved.png"}
        )
        assert response.status_code == 502

    def test_upstream_error(self, client):
        response = client.post(
            "/api/v1/analyze/url", json={"imageUrl": "https://images.example.com/missing.png"}
        )
        assert response.status_code == 502


class TestAnalyzeBatch:
    def test_batch(self, client):
        files = [
            ("images", ("a.png", _png(), "image/png")),
            ("images", ("b.png", _png(), "image/png")),
        ]
        response = client.post("/api/v1/analyze/batch", files=files, data={"user_id": "diver_2"})
        assert response.status_code == 200
        data = response.json()
        assert data["batchId"].startswith("batch_")
        assert [item["status"] for item in data["items"]] == ["analyzed", "analyzed"]
        assert data["items"][0]["record"]["maxDepthMeters"] == 45.2
        assert len(client.get("/api/v1/users/diver_2/records").json()) == 2

    def test_batch_too_large(self, client):
        files = [("images", (f"{i}.png", b"x", "image/png")) for i in range(21)]
        response = client.post("/api/v1/analyze/batch", files=files)
        assert response.status_code == 400


class TestRecords:
    def _save(self, client, user_id="diver_1"):
        image_data = base64.b64encode(_png()).decode()
        response = client.post(
            "/api/v1/analyze/base64", json={"imageData": image_data, "userId": user_id}
        )
        return response.json()

    def test_correction_supersedes_original(self, client):
        original = self._save(client)
        response = client.post(
            f"/api/v1/users/diver_1/records/{original['recordId']}/corrections",
            json={"maxDepthMeters": 50.0},
        )
        assert response.status_code == 200
        corrected = response.json()
        assert corrected["supersedes"] == original["recordId"]
        assert corrected["maxDepthMeters"] == 50.0
        assert corrected["diveTimeSeconds"] == original["diveTimeSeconds"]

        records = client.get("/api/v1/users/diver_1/records").json()
        assert [r["recordId"] for r in records] == [corrected["recordId"]]

    def test_negative_correction_rejected(self, client):
        original = self._save(client)
        url = f"/api/v1/users/diver_1/records/{original['recordId']}/corrections"

        assert client.post(url, json={"diveTimeSeconds": -5}).status_code == 422
        assert client.post(url, json={"maxDepthMeters": -1.5}).status_code == 422

        records = client.get("/api/v1/users/diver_1/records").json()
        assert [r["recordId"] for r in records] == [original["recordId"]]

    def test_correction_of_unknown_record(self, client):
        response = client.post(
            "/api/v1/users/diver_1/records/nope/corrections", json={"maxDepthMeters": 10.0}
        )
        assert response.status_code == 404

    def test_records_without_store(self, tmp_path):
        client = _client(tmp_path, store_backend="none")
        assert client.get("/api/v1/users/diver_1/records").status_code == 503
