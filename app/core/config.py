import os
import logging
from pydantic import BaseModel, ConfigDict, Field
from typing import List, Optional
from dotenv import load_dotenv

load_dotenv()

_INSECURE_SESSION_SECRET = "dev-only-insecure-session-secret-DO-NOT-USE-IN-PROD"


class Config(BaseModel):
    # Built once at import time and shared; never mutated per request.
    model_config = ConfigDict(frozen=True)

    app_name: str = "StaffOS"
    environment: str = os.getenv("APP_ENV", os.getenv("NODE_ENV", "development"))
    api_prefix: str = "/api"
    port: int = int(os.getenv("PORT", "8000"))

    # Database
    database_url: str = os.getenv("DATABASE_URL", "sqlite:///./staffos.db")

    # Sessions
    session_secret: str = os.getenv("SESSION_SECRET", _INSECURE_SESSION_SECRET)
    session_cookie_name: str = "staffos_sid"
    csrf_cookie_name: str = "staffos_csrf"
    csrf_header_name: str = "X-CSRF-Token"
    session_max_age_seconds: int = 8 * 60 * 60
    audit_reauth_minutes: int = 15

    version: str = "1.0.0"
    request_id_header: str = "X-Request-ID"

    # CORS: localhost defaults plus FRONTEND_URL when set
    frontend_url: Optional[str] = os.getenv("FRONTEND_URL")
    cors_origins: List[str] = Field(
        default_factory=lambda: [
            o.strip()
            for o in os.getenv(
                "CORS_ORIGINS",
                "http://localhost:3000,http://localhost:5173,"
                "http://127.0.0.1:3000,http://127.0.0.1:5173",
            ).split(",")
            if o.strip()
        ]
    )

    # Rate limiting
    rate_limit_enabled: bool = os.getenv("RATE_LIMIT_ENABLED", "true").lower() == "true"
    global_rate_limit: str = "100/minute"
    auth_rate_limit: str = "10/minute"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"

    @property
    def secure_cookies(self) -> bool:
        return self.environment not in ("development", "testing")

    @property
    def allowed_origins(self) -> List[str]:
        origins = list(self.cors_origins)
        if self.frontend_url and self.frontend_url not in origins:
            origins.append(self.frontend_url)
        return origins


settings = Config()

# --- Startup Validation for Production ---
_logger = logging.getLogger(__name__)
if settings.environment not in ("development", "testing"):
    if settings.session_secret == _INSECURE_SESSION_SECRET:
        raise RuntimeError(
            "FATAL: SESSION_SECRET must be set for non-development environments. "
            "Set it as an environment variable."
        )
elif settings.session_secret == _INSECURE_SESSION_SECRET:
    _logger.warning("Using insecure default SESSION_SECRET, only acceptable in development.")
