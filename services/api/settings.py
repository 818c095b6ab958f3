# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field, field_validator
import base64
from typing import List, Optional
from pathlib import Path

class Settings(BaseSettings):
    # Storage settings
    # sqlite by default; override via .env (STORAGE_BACKEND=json|sheets)
    storage_backend: str = "sqlite"
    db_url: str = "sqlite:///data/ashiato.db"
    json_data_dir: str = "data/json"
    google_sa_json: str = ""
    google_sa_json_base64: str = ""
    sheets_spreadsheet_id: str = ""

    # Image storage: "local" writes under image_upload_dir, "drive" uploads to Google Drive
    image_storage_backend: str = "local"
    image_upload_dir: str = "data/uploads"
    image_public_base_url: str = "http://localhost:8000/uploads"
    gdrive_root_folder_name: str = "Ashiato_Memo"
    # Optional: if you create the root folder manually & share it, put its ID here
    gdrive_root_folder_id: str = ""
    max_image_bytes: int = Field(default=5 * 1024 * 1024, gt=0)

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Wizard sessions (in-memory, per process)
    wizard_session_ttl_seconds: int = Field(default=6 * 60 * 60, gt=0)
    wizard_max_sessions: int = Field(default=1000, gt=0)
    wizard_max_sessions_per_user: int = Field(default=10, ge=1)
    max_custom_categories: int = Field(default=10, ge=1)

    # "Now" for statistics is taken in this timezone
    timezone: str = "Asia/Tokyo"

    # Export
    # Path to a TTF/OTF with Japanese glyphs (e.g. NotoSansJP-Regular.ttf);
    # unset means an installed font is looked up
    pdf_font_path: Optional[str] = None
    # refuse to start when no Japanese-capable font can be found
    pdf_font_required: bool = False
    export_fetch_timeout_seconds: float = 15.0

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    @field_validator("storage_backend", "image_storage_backend")
    @classmethod
    def _lower(cls, v: str) -> str:
        return (v or "").strip().lower()

    def resolved_google_sa_json(self) -> str:
        """
        Return the service account JSON (inline JSON or a file path).
        If GOOGLE_SA_JSON_BASE64 is set, it is decoded and returned as inline JSON.
        """
        if self.google_sa_json_base64:
            return base64.b64decode(self.google_sa_json_base64).decode("utf-8")
        return self.google_sa_json

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
