"""
Background worker for the receipt pipeline.

Requests are queued on a single thread so they never interleave; callers
get a Future per request and can drain progress/result/error messages
from a bounded queue. HTTP callers discard their messages once the
Future resolves.
"""

import logging
import queue
import threading
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Tuple

from offline_receipt.errors import ReceiptOCRError
from offline_receipt.models.extraction import ProcessingResult, ProcessingState
from offline_receipt.services.offline import LocalReceiptService

logger = logging.getLogger(__name__)

MESSAGE_PROGRESS = "progress"
MESSAGE_RESULT = "result"
MESSAGE_ERROR = "error"

# Oldest messages are dropped once this many are waiting
MAX_QUEUED_MESSAGES = 256


@dataclass(frozen=True)
class WorkerMessage:
    request_id: str
    type: str
    payload: Any


class ReceiptWorker:
    """Runs a LocalReceiptService on one dedicated background thread."""

    def __init__(
        self,
        service: Optional[LocalReceiptService] = None,
        max_messages: int = MAX_QUEUED_MESSAGES,
    ):
        self.service = service or LocalReceiptService()
        self.messages: "queue.Queue[WorkerMessage]" = queue.Queue(maxsize=max_messages)
        self._messages_lock = threading.Lock()
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="receipt-worker")
        self._current_request: Optional[str] = None
        self._unsubscribe = self.service.subscribe(self._on_state)

    def submit_receipt(self, image_data: bytes) -> Tuple[str, "Future[ProcessingResult]"]:
        return self._submit(self.service.process_receipt, image_data)

    def submit_multiple_images(self, images: List[bytes]) -> Tuple[str, "Future[ProcessingResult]"]:
        return self._submit(self.service.process_multiple_images, images)

    def submit_preload(
        self,
        scripts: Optional[Iterable] = None,
        include_semantic_model: bool = True,
    ) -> Tuple[str, "Future[None]"]:
        return self._submit(self.service.preload_models, scripts, include_semantic_model)

    def drain(self) -> List[WorkerMessage]:
        """All messages posted since the last drain, oldest first."""
        drained = []
        while True:
            try:
                drained.append(self.messages.get_nowait())
            except queue.Empty:
                return drained

    def discard(self, request_id: str) -> int:
        """Drop every queued message for request_id; returns how many were removed."""
        with self._messages_lock:
            kept = []
            removed = 0
            while True:
                try:
                    message = self.messages.get_nowait()
                except queue.Empty:
                    break
                if message.request_id == request_id:
                    removed += 1
                else:
                    kept.append(message)
            for message in kept:
                self.messages.put_nowait(message)
        return removed

    def shutdown(self, wait: bool = True) -> None:
        """Stop accepting work, wait for queued requests and release engines."""
        self._executor.shutdown(wait=wait)
        self._unsubscribe()
        self.service.terminate()

    def _submit(self, fn: Callable, *args) -> Tuple[str, Future]:
        request_id = uuid.uuid4().hex
        future = self._executor.submit(self._run, request_id, fn, *args)
        return request_id, future

    def _run(self, request_id: str, fn: Callable, *args):
        self._current_request = request_id
        try:
            result = fn(*args)
        except ReceiptOCRError as e:
            logger.warning("Worker request failed", extra={"request_id": request_id, "error": str(e)})
            self._post(WorkerMessage(request_id, MESSAGE_ERROR, str(e)))
            raise
        finally:
            self._current_request = None

        self._post(WorkerMessage(request_id, MESSAGE_RESULT, result))
        return result

    def _post(self, message: WorkerMessage) -> None:
        with self._messages_lock:
            while True:
                try:
                    self.messages.put_nowait(message)
                    return
                except queue.Full:
                    try:
                        self.messages.get_nowait()
                    except queue.Empty:
                        pass

    def _on_state(self, state: ProcessingState) -> None:
        request_id = self._current_request
        if request_id is None:
            return
        self._post(WorkerMessage(request_id, MESSAGE_PROGRESS, {
            "progress": state.progress,
            "status": state.status,
        }))
