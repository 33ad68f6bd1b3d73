# services/api/settings.py
from pydantic_settings import BaseSettings
from pydantic import ConfigDict, Field
from typing import List, Optional
from pathlib import Path


class Settings(BaseSettings):
    # Admin login (static credential check -> static bearer token)
    admin_username: str = "admin"
    admin_password: str = ""
    # Empty token means every settings endpoint answers 401
    admin_token: str = ""

    # Process-wide OAuth client, used when an account record has none of its own
    google_client_id: str = ""
    google_client_secret: str = ""
    # Optional: fixed callback URL registered in the Google console.
    # Defaults to <request origin>/api/auth/callback
    oauth_redirect_uri: Optional[str] = None

    # Storage settings
    # "memory" keeps accounts in process; "json" persists them under data_dir
    storage_backend: str = "json"
    data_dir: str = "data"

    # CORS settings
    allowed_origins: str = "http://localhost:3000,http://localhost:8000"

    # Upstream endpoints
    token_url: str = "https://oauth2.googleapis.com/token"
    drive_api_base: str = "https://www.googleapis.com/drive/v3"
    userinfo_url: str = "https://www.googleapis.com/oauth2/v1/userinfo"

    # Access tokens are cached for (expires_in - margin) seconds
    token_expiry_margin_seconds: int = Field(default=60, ge=0)
    token_cache_maxsize: int = Field(default=1024, gt=0)

    # Drive listing
    default_page_size: int = Field(default=100, gt=0)
    max_page_size: int = Field(default=1000, gt=0)

    # Transport timeout (applied per read, so long streams keep flowing)
    upstream_timeout_seconds: float = 30.0
    stream_chunk_size: int = Field(default=64 * 1024, gt=0)

    log_level: str = "INFO"

    model_config = ConfigDict(
        # Always load .env from the same folder as this settings.py
        env_file=str(Path(__file__).resolve().parent / ".env"),
        extra="ignore",
    )

    def get_origins_list(self) -> List[str]:
        """Parse comma-separated origins into a list."""
        if not self.allowed_origins:
            return ["*"]
        return [origin.strip() for origin in self.allowed_origins.split(",") if origin.strip()]

    def clamp_page_size(self, page_size: Optional[int]) -> int:
        """Bound a caller-supplied page size to [1, max_page_size]."""
        if page_size is None:
            page_size = self.default_page_size
        return max(1, min(int(page_size), self.max_page_size))


_settings_instance = None

def get_settings() -> Settings:
    """Singleton pattern for settings."""
    global _settings_instance
    if _settings_instance is None:
        _settings_instance = Settings()
    return _settings_instance
