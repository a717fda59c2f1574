"""
Tests for the background receipt worker.
"""

import sys
import os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

import pytest

from offline_receipt.errors import EngineError, ProcessingError
from offline_receipt.services.offline import LocalReceiptService
from offline_receipt.services.preferences import PreferenceStore
from offline_receipt.services.worker import MESSAGE_ERROR, MESSAGE_PROGRESS, MESSAGE_RESULT, ReceiptWorker
from fakes import WALMART_TEXT, FakeBackend, make_result, png_bytes, small_preprocessor


@pytest.fixture
def make_worker(tmp_path):
    workers = []

    def factory(general=None, **kwargs):
        service = LocalReceiptService(
            general=general or FakeBackend(default=make_result(WALMART_TEXT, 90)),
            specialized=FakeBackend(name="paddle"),
            preprocessor=small_preprocessor(),
            preference_store=PreferenceStore(str(tmp_path / "preferences.json")),
        )
        worker = ReceiptWorker(service, **kwargs)
        workers.append(worker)
        return worker

    yield factory

    for worker in workers:
        worker.shutdown()


class TestReceiptWorker:

    def test_result_and_progress_messages(self, make_worker):
        worker = make_worker()
        request_id, future = worker.submit_receipt(png_bytes())

        result = future.result(timeout=10)
        messages = worker.drain()

        assert result.transactions[0].description == "Walmart: Milk"
        assert all(m.request_id == request_id for m in messages)
        assert messages[-1].type == MESSAGE_RESULT
        assert messages[-1].payload is result

        progress = [m.payload["progress"] for m in messages if m.type == MESSAGE_PROGRESS]
        assert 20 in progress
        assert 100 in progress

    def test_error_message(self, make_worker):
        worker = make_worker(general=FakeBackend(fail_recognize=True))
        request_id, future = worker.submit_receipt(png_bytes())

        with pytest.raises(EngineError):
            future.result(timeout=10)

        last = worker.drain()[-1]
        assert last.type == MESSAGE_ERROR
        assert last.request_id == request_id
        assert "recognition failed" in last.payload

    def test_requests_run_one_after_another(self, make_worker):
        worker = make_worker()
        submitted = [worker.submit_receipt(png_bytes()) for _ in range(3)]

        results = [future.result(timeout=10) for _, future in submitted]

        assert all(len(r.transactions) == 1 for r in results)
        result_ids = [m.request_id for m in worker.drain() if m.type == MESSAGE_RESULT]
        assert result_ids == [request_id for request_id, _ in submitted]

    def test_multiple_images(self, make_worker):
        worker = make_worker()
        _, future = worker.submit_multiple_images([png_bytes(), png_bytes()])

        result = future.result(timeout=10)

        assert len(result.transactions) == 1
        assert result.failed_images == []

    def test_empty_batch_error(self, make_worker):
        worker = make_worker()
        _, future = worker.submit_multiple_images([])
        with pytest.raises(ProcessingError):
            future.result(timeout=10)

    def test_preload(self, make_worker):
        worker = make_worker()
        _, future = worker.submit_preload(["latin"], False)

        assert future.result(timeout=10) is None
        assert worker.service.can_process_offline()

    def test_no_messages_outside_requests(self, make_worker):
        worker = make_worker()
        worker.service.set_engine_mode("tesseract")
        worker.service.initialize(["latin"])
        assert worker.drain() == []

    def test_shutdown_releases_engines(self, tmp_path):
        general = FakeBackend(default=make_result(WALMART_TEXT, 90))
        service = LocalReceiptService(
            general=general,
            specialized=FakeBackend(name="paddle"),
            preprocessor=small_preprocessor(),
            preference_store=PreferenceStore(str(tmp_path / "preferences.json")),
        )
        worker = ReceiptWorker(service)
        worker.submit_receipt(png_bytes())[1].result(timeout=10)

        worker.shutdown()

        assert general.terminated == 1
        assert not service.can_process_offline()

    def test_queue_is_bounded(self, make_worker):
        worker = make_worker(max_messages=5)
        submitted = [worker.submit_receipt(png_bytes()) for _ in range(3)]
        for _, future in submitted:
            future.result(timeout=10)

        messages = worker.drain()

        assert len(messages) == 5
        assert messages[-1].type == MESSAGE_RESULT
        assert messages[-1].request_id == submitted[-1][0]

    def test_discard_only_removes_one_request(self, make_worker):
        worker = make_worker()
        first_id, first = worker.submit_receipt(png_bytes())
        second_id, second = worker.submit_receipt(png_bytes())
        first.result(timeout=10)
        second.result(timeout=10)

        removed = worker.discard(first_id)
        remaining = worker.drain()

        assert removed > 0
        assert remaining
        assert all(m.request_id == second_id for m in remaining)
        assert worker.discard(first_id) == 0
