"""
Pydantic models for the scan API.
"""

from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel

from offline_receipt.models.extraction import LocalTransaction, ProcessingResult, ProcessingState
from offline_receipt.services.preferences import ProcessingMode
from offline_receipt.services.router import EngineMode


class TransactionResponse(BaseModel):
    """One extracted transaction candidate."""
    date: str  # YYYY-MM-DD
    description: str
    amount: Decimal
    type: str = "expense"
    currency: str = "USD"
    confidence: float

    @classmethod
    def from_transaction(cls, transaction: LocalTransaction) -> "TransactionResponse":
        return cls(
            date=transaction.date,
            description=transaction.description,
            amount=transaction.amount,
            type=transaction.type,
            currency=transaction.currency,
            confidence=round(transaction.confidence, 4),
        )


class ScanResponse(BaseModel):
    """Model for scan API responses."""
    transactions: List[TransactionResponse]
    raw_text: str
    confidence: float
    processing_time_ms: float
    failed_images: List[int] = []

    @classmethod
    def from_result(cls, result: ProcessingResult) -> "ScanResponse":
        return cls(
            transactions=[TransactionResponse.from_transaction(t) for t in result.transactions],
            raw_text=result.raw_text,
            confidence=round(result.confidence, 4),
            processing_time_ms=round(result.processing_time_ms, 1),
            failed_images=list(result.failed_images),
        )


class StatusResponse(BaseModel):
    """Pipeline state snapshot plus current preferences."""
    is_ready: bool
    is_initializing: bool
    is_processing: bool
    progress: int
    status: str
    last_error: Optional[str] = None
    semantic_model_ready: bool
    engine_mode: EngineMode
    processing_mode: ProcessingMode
    can_process_offline: bool

    @classmethod
    def from_state(
        cls,
        state: ProcessingState,
        engine_mode: EngineMode,
        processing_mode: ProcessingMode,
    ) -> "StatusResponse":
        return cls(
            is_ready=state.is_ready,
            is_initializing=state.is_initializing,
            is_processing=state.is_processing,
            progress=state.progress,
            status=state.status,
            last_error=state.last_error,
            semantic_model_ready=state.semantic_model_ready,
            engine_mode=engine_mode,
            processing_mode=processing_mode,
            can_process_offline=state.is_ready,
        )


class PreferencesUpdate(BaseModel):
    """Partial preference update; omitted fields are left unchanged."""
    engine_mode: Optional[EngineMode] = None
    processing_mode: Optional[ProcessingMode] = None


class PreloadRequest(BaseModel):
    scripts: Optional[List[str]] = None
    include_semantic_model: bool = True


class PreloadResponse(BaseModel):
    ready: bool
    estimated_model_size: int
