"""
Persisted user preferences for engine and processing mode.
"""

import logging
import os
from enum import Enum
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ValidationError

from offline_receipt.config import settings
from offline_receipt.services.router import EngineMode

logger = logging.getLogger(__name__)


class ProcessingMode(str, Enum):
    BASIC = "basic"
    ENHANCED = "enhanced"


class Preferences(BaseModel):
    """User-selected pipeline modes."""
    engine_mode: EngineMode = EngineMode.AUTO
    processing_mode: ProcessingMode = ProcessingMode.BASIC


class PreferenceStore:
    """Loads and saves Preferences as a JSON file."""

    def __init__(self, path: Optional[str] = None):
        self.path = Path(os.path.expanduser(path or settings.PREFERENCES_FILE))

    def load(self) -> Preferences:
        if not self.path.exists():
            return Preferences()

        try:
            return Preferences.model_validate_json(self.path.read_text(encoding='utf-8'))
        except (OSError, ValidationError, ValueError):
            logger.warning("Unreadable preferences file %s, using defaults", self.path, exc_info=True)
            return Preferences()

    def save(self, preferences: Preferences) -> None:
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            self.path.write_text(preferences.model_dump_json(indent=2), encoding='utf-8')
        except OSError:
            logger.warning("Could not save preferences to %s", self.path, exc_info=True)
