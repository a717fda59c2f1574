"""
Exception hierarchy for the offline receipt pipeline.
"""


class ReceiptOCRError(Exception):
    """Base class for all pipeline errors."""


class EngineError(ReceiptOCRError):
    """An OCR engine could not be initialised or failed to recognise text."""


class ProcessingError(ReceiptOCRError):
    """A receipt could not be processed (unreadable input, pipeline failure)."""


class PreprocessingError(ProcessingError):
    """Image preprocessing failed fatally for a single image."""


class PipelineBusyError(ProcessingError):
    """A run is already in flight on this pipeline instance."""
