from __future__ import annotations

import os
import sys
from pathlib import Path
from typing import List


def _default_data_root() -> Path:
    if sys.platform == "darwin":
        base = Path.home() / "Library" / "Application Support"
    elif os.name == "nt":
        base = Path(os.environ.get("APPDATA") or (Path.home() / "AppData" / "Roaming"))
    else:
        base = Path(os.environ.get("XDG_DATA_HOME") or (Path.home() / ".local" / "share"))
    return base / "AtlasVault"


class Settings:
    """Centralized configuration for the encrypted clinical store."""

    def __init__(self) -> None:
        self.data_root: Path = Path(
            os.environ.get("ATLAS_DATA_ROOT") or _default_data_root()
        ).expanduser()
        self.db_filename: str = os.environ.get("ATLAS_DB_FILENAME") or "db.json"

        # Keychain entry holding the raw AES-256 key (base64 encoded).
        self.keychain_service: str = (
            os.environ.get("ATLAS_KEYCHAIN_SERVICE") or "com.atlasvault.keychain"
        )
        self.key_account: str = os.environ.get("ATLAS_KEY_ACCOUNT") or "encryption-key-v1"

        self.jpeg_quality: int = int(os.environ.get("ATLAS_JPEG_QUALITY") or "95")
        self.min_reminder_delay_sec: float = float(
            os.environ.get("ATLAS_MIN_REMINDER_DELAY_SEC") or "1"
        )
        self.log_level: str = (os.environ.get("ATLAS_LOG_LEVEL") or "INFO").upper()
        self.max_upload_mb: int = int(os.environ.get("ATLAS_MAX_UPLOAD_MB") or "20")

        self.watermark_provider: str = os.environ.get("ATLAS_WATERMARK_PROVIDER") or ""
        self.watermark_clinic: str = os.environ.get("ATLAS_WATERMARK_CLINIC") or ""

        cors = os.environ.get("ATLAS_CORS_ORIGINS", "*")
        if cors.strip() == "*":
            self.cors_origins: List[str] = ["*"]
        else:
            self.cors_origins = [
                origin.strip() for origin in cors.split(",") if origin.strip()
            ]


settings = Settings()
