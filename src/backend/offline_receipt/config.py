from pydantic_settings import BaseSettings
from typing import List, Optional


class Settings(BaseSettings):
    # App
    APP_NAME: str = "Offline Receipt OCR"
    DEBUG: bool = False
    LOG_LEVEL: str = "INFO"

    # CORS
    ALLOWED_ORIGINS: List[str] = ["http://localhost:3000"]

    # OCR engines
    TESSERACT_CMD: str = "tesseract"
    DEFAULT_SCRIPTS: List[str] = ["latin", "japanese", "traditional_chinese"]
    PADDLE_LANG: str = "chinese_cht"

    # Preferences
    PREFERENCES_FILE: str = "~/.offline_receipt/preferences.json"

    # Preprocessing
    MIN_IMAGE_SIDE: int = 1500
    MAX_IMAGE_SIDE: int = 3000
    CORRECT_ORIENTATION: bool = True
    CJK_SAMPLE_SEED: Optional[int] = None

    # Uploads
    MAX_UPLOAD_MB: int = 10

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
