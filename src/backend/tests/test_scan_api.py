"""
Tests for the scan API endpoints.

Runs the FastAPI app in-process with a worker backed by fake OCR engines.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

from decimal import Decimal
import pytest
from fastapi.testclient import TestClient

from offline_receipt.config import settings
from offline_receipt.errors import EngineError, PipelineBusyError, PreprocessingError, ProcessingError
from offline_receipt.main import app
from offline_receipt.routers.scan import _error_status, get_worker
from offline_receipt.services.offline import LocalReceiptService
from offline_receipt.services.preferences import PreferenceStore
from offline_receipt.services.worker import ReceiptWorker
from fakes import WALMART_TEXT, FakeBackend, make_result, png_bytes, small_preprocessor

MIB = 1024 * 1024


def _png_upload(name="receipt.png", data=None):
    return (name, data if data is not None else png_bytes(), "image/png")


@pytest.fixture
def make_client(tmp_path):
    workers = []

    def factory(general=None):
        service = LocalReceiptService(
            general=general or FakeBackend(default=make_result(WALMART_TEXT, 90)),
            specialized=FakeBackend(name="paddle"),
            preprocessor=small_preprocessor(),
            preference_store=PreferenceStore(str(tmp_path / "preferences.json")),
        )
        worker = ReceiptWorker(service)
        workers.append(worker)
        app.dependency_overrides[get_worker] = lambda: worker
        return TestClient(app)

    yield factory

    app.dependency_overrides.clear()
    for worker in workers:
        worker.shutdown()


@pytest.fixture
def client(make_client):
    return make_client()


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "healthy"}

    def test_root(self, client):
        assert client.get("/").json()["status"] == "running"


class TestScan:

    def test_scan_receipt(self, client):
        response = client.post("/scan", files={"file": _png_upload()})

        assert response.status_code == 200
        data = response.json()
        assert len(data["transactions"]) == 1
        transaction = data["transactions"][0]
        assert transaction["description"] == "Walmart: Milk"
        assert Decimal(str(transaction["amount"])) == Decimal("3.99")
        assert transaction["date"] == "2024-01-15"
        assert data["raw_text"] == WALMART_TEXT
        assert data["confidence"] == pytest.approx(0.9)
        assert data["failed_images"] == []

    def test_invalid_file_type(self, client):
        response = client.post("/scan", files={"file": ("receipt.pdf", b"%PDF-1.4", "application/pdf")})
        assert response.status_code == 400
        assert "Invalid file type" in response.json()["detail"]

    def test_file_too_large(self, client, monkeypatch):
        monkeypatch.setattr(settings, "MAX_UPLOAD_MB", 0)
        response = client.post("/scan", files={"file": _png_upload()})
        assert response.status_code == 400
        assert "File too large" in response.json()["detail"]

    def test_malformed_image(self, client):
        response = client.post("/scan", files={"file": _png_upload(data=b"not really a png")})
        assert response.status_code == 400

    def test_engine_unavailable(self, make_client):
        client = make_client(general=FakeBackend(fail_init=True))
        response = client.post("/scan", files={"file": _png_upload()})
        assert response.status_code == 503

    def test_batch(self, client):
        response = client.post("/scan/batch", files=[
            ("files", _png_upload("top.png")),
            ("files", _png_upload("bottom.png")),
        ])

        assert response.status_code == 200
        data = response.json()
        assert len(data["transactions"]) == 1
        assert data["raw_text"] == WALMART_TEXT + "\n---\n" + WALMART_TEXT

    def test_messages_released_after_each_request(self, client):
        worker = app.dependency_overrides[get_worker]()
        for _ in range(10):
            assert client.post("/scan", files={"file": _png_upload()}).status_code == 200
        client.post("/scan/batch", files=[("files", _png_upload())])
        client.post("/scan", files={"file": _png_upload(data=b"not really a png")})
        client.post("/scan/preload", json={"scripts": ["latin"]})

        assert worker.messages.qsize() == 0


class TestStatusAndPreferences:

    def test_status_before_initialization(self, client):
        data = client.get("/scan/status").json()
        assert data["is_ready"] is False
        assert data["can_process_offline"] is False
        assert data["engine_mode"] == "auto"
        assert data["processing_mode"] == "basic"

    def test_status_after_scan(self, client):
        client.post("/scan", files={"file": _png_upload()})
        data = client.get("/scan/status").json()
        assert data["is_ready"] is True
        assert data["is_processing"] is False
        assert data["progress"] == 100

    def test_update_preferences(self, client):
        response = client.put("/scan/preferences", json={"engine_mode": "paddleocr"})

        assert response.status_code == 200
        assert response.json()["engine_mode"] == "paddleocr"
        assert response.json()["processing_mode"] == "basic"

    def test_invalid_preference(self, client):
        response = client.put("/scan/preferences", json={"processing_mode": "turbo"})
        assert response.status_code == 422


class TestPreload:

    def test_preload(self, client):
        response = client.post("/scan/preload", json={"scripts": ["latin", "japanese"]})

        assert response.status_code == 200
        assert response.json() == {"ready": True, "estimated_model_size": 30 * MIB}

    def test_unknown_script(self, client):
        response = client.post("/scan/preload", json={"scripts": ["klingon"]})
        assert response.status_code == 400

    def test_preload_failure(self, make_client):
        client = make_client(general=FakeBackend(fail_init=True))
        response = client.post("/scan/preload", json={"scripts": ["latin"]})
        assert response.status_code == 503


class TestErrorStatus:

    def test_mapping(self):
        assert _error_status(PipelineBusyError("busy")) == 409
        assert _error_status(EngineError("no engine")) == 503
        assert _error_status(ProcessingError("bad input")) == 400
        assert _error_status(PreprocessingError("no surface")) == 400
