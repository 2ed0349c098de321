"""
Configuration management for the generative media studio.

Centralizes all configuration including:
- Provider API keys and endpoints
- Firebase service-account credentials
- Polling cadence for long-running video operations
- Client-side media handling (capture, playable handles)
"""

import os
from dataclasses import dataclass, field
from typing import Optional


def _optional_int(name: str) -> Optional[int]:
    value = os.getenv(name, "").strip()
    return int(value) if value else None


@dataclass
class APIConfig:
    """API configuration for the generative provider."""

    gemini_api_key: str = field(default_factory=lambda: os.getenv("GEMINI_API_KEY", ""))
    gemini_api_base: str = field(
        default_factory=lambda: os.getenv(
            "GEMINI_API_BASE", "https://generativelanguage.googleapis.com/v1beta"
        )
    )

    # Text generation may use a dedicated key, falling back to the Gemini key
    text_api_key: str = field(
        default_factory=lambda: os.getenv("FIREBASE_AI_API_KEY") or os.getenv("GEMINI_API_KEY", "")
    )


@dataclass
class FirebaseConfig:
    """Firebase service account used to verify ID tokens."""

    project_id: str = field(default_factory=lambda: os.getenv("FIREBASE_PROJECT_ID", ""))
    private_key_id: str = field(default_factory=lambda: os.getenv("FIREBASE_PRIVATE_KEY_ID", ""))
    private_key: str = field(
        default_factory=lambda: os.getenv("FIREBASE_PRIVATE_KEY", "").replace("\\n", "\n")
    )
    client_email: str = field(default_factory=lambda: os.getenv("FIREBASE_CLIENT_EMAIL", ""))
    client_id: str = field(default_factory=lambda: os.getenv("FIREBASE_CLIENT_ID", ""))
    client_x509_cert_url: str = field(
        default_factory=lambda: os.getenv("FIREBASE_CLIENT_X509_CERT_URL", "")
    )

    def service_account_info(self) -> dict:
        """Service account dict in the shape firebase_admin.credentials.Certificate expects."""
        return {
            "type": "service_account",
            "project_id": self.project_id,
            "private_key_id": self.private_key_id,
            "private_key": self.private_key,
            "client_email": self.client_email,
            "client_id": self.client_id,
            "auth_uri": "https://accounts.google.com/o/oauth2/auth",
            "token_uri": "https://oauth2.googleapis.com/token",
            "auth_provider_x509_cert_url": "https://www.googleapis.com/oauth2/v1/certs",
            "client_x509_cert_url": self.client_x509_cert_url,
        }


@dataclass
class PollingConfig:
    """
    Cadence for polling long-running video operations.

    Jobs take unpredictable real time, so polling is unbounded unless
    POLL_MAX_ATTEMPTS is set explicitly.
    """
    interval_seconds: float = field(
        default_factory=lambda: float(os.getenv("POLL_INTERVAL_SECONDS", "5.0"))
    )
    max_attempts: Optional[int] = field(default_factory=lambda: _optional_int("POLL_MAX_ATTEMPTS"))


@dataclass
class MediaConfig:
    """Client-side media handling."""
    ffmpeg_path: str = field(default_factory=lambda: os.getenv("FFMPEG_PATH", "ffmpeg"))
    capture_flush_ms: int = field(default_factory=lambda: int(os.getenv("CAPTURE_FLUSH_MS", "200")))
    handle_dir: Optional[str] = field(default_factory=lambda: os.getenv("MEDIA_HANDLE_DIR") or None)


@dataclass
class LogConfig:
    """In-memory event log."""
    buffer_size: int = field(default_factory=lambda: int(os.getenv("LOG_BUFFER_SIZE", "1000")))
    level: str = field(default_factory=lambda: os.getenv("LOG_LEVEL", "INFO"))


@dataclass
class ServerConfig:
    """Proxy server settings."""
    environment: str = field(default_factory=lambda: os.getenv("STUDIO_ENV", "production"))
    host: str = field(default_factory=lambda: os.getenv("STUDIO_HOST", "0.0.0.0"))
    port: int = field(default_factory=lambda: int(os.getenv("STUDIO_PORT", "8000")))
    base_url: str = field(default_factory=lambda: os.getenv("STUDIO_API_BASE_URL", "http://localhost:8000"))

    @property
    def is_development(self) -> bool:
        return self.environment.lower() == "development"


@dataclass
class ModelConfig:
    """Default model selections."""
    default_video: str = "veo-3.0-generate-001"
    default_image: str = "imagen-4.0-fast-generate-001"
    default_image_edit: str = "gemini-2.5-flash-image-preview"
    default_text: str = "gemini-2.0-flash"


@dataclass
class Config:
    """Main configuration class."""

    api: APIConfig = field(default_factory=APIConfig)
    firebase: FirebaseConfig = field(default_factory=FirebaseConfig)
    polling: PollingConfig = field(default_factory=PollingConfig)
    media: MediaConfig = field(default_factory=MediaConfig)
    logging: LogConfig = field(default_factory=LogConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    models: ModelConfig = field(default_factory=ModelConfig)

    @classmethod
    def from_env(cls) -> "Config":
        """Load configuration from environment variables."""
        return cls()

    def validate(self) -> list[str]:
        """Validate configuration and return list of issues."""
        issues = []

        if not self.api.gemini_api_key:
            issues.append("GEMINI_API_KEY not configured")

        if not self.server.is_development:
            if not self.firebase.project_id:
                issues.append("FIREBASE_PROJECT_ID not configured (needed to verify ID tokens)")
            if not self.firebase.private_key or not self.firebase.client_email:
                issues.append("Firebase service account credentials incomplete")

        if self.polling.interval_seconds <= 0:
            issues.append("POLL_INTERVAL_SECONDS must be positive")

        if self.polling.max_attempts is not None and self.polling.max_attempts < 1:
            issues.append("POLL_MAX_ATTEMPTS must be at least 1 when set")

        return issues


# Global config instance
_config: Optional[Config] = None


def get_config() -> Config:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = Config.from_env()
    return _config


def reload_config():
    """Reload configuration from environment."""
    global _config
    _config = Config.from_env()
