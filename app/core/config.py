from pydantic_settings import BaseSettings
from typing import Optional

class Settings(BaseSettings):
    APP_ENV: str = "development"
    DATABASE_URL: str = "sqlite:///./listing_reel.db"

    # Auth (tokens are issued by the external identity provider)
    JWT_SECRET_KEY: str = "change-me"
    INTERNAL_API_KEY: str = "change-me-internal"

    # Comma-separated list of allowed browser origins
    CORS_ORIGINS: str = "http://localhost:3000,http://localhost:5173"

    # Redis Configuration (empty host disables Redis)
    REDIS_HOST: str = ""
    REDIS_PORT: int = 6379
    REDIS_PASSWORD: Optional[str] = None
    REDIS_DB: int = 0

    # Listing extractor
    EXTRACTOR_TIMEOUT_SECONDS: float = 15.0
    EXTRACTOR_USER_AGENT: str = (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
        "(KHTML, like Gecko) Chrome/124.0.0.0 Safari/537.36"
    )
    EXTRACTOR_CACHE_TTL_SECONDS: int = 600
    ANALYZE_RATE_LIMIT: int = 20  # requests per minute per client

    # Pipeline: "inline" runs in the API process, "queue" hands off to the render worker
    PIPELINE_MODE: str = "inline"
    WORKER_CONCURRENCY: int = 4

    # Render step: "simulated" or "http"
    RENDER_ENGINE: str = "simulated"
    RENDER_DELAY_SECONDS: float = 10.0
    RENDER_TIMEOUT_SECONDS: Optional[float] = None
    RENDER_API_URL: Optional[str] = None
    RENDER_API_KEY: Optional[str] = None

    # Asset handling
    ASSET_PROBE_ENABLED: bool = False
    ASSET_MIRROR_ENABLED: bool = False
    ASSET_MAX_BYTES: int = 15 * 1024 * 1024

    AWS_REGION: str = "us-east-1"
    AWS_S3_BUCKET: Optional[str] = None
    AWS_ACCESS_KEY_ID: Optional[str] = None
    AWS_SECRET_ACCESS_KEY: Optional[str] = None

    SSE_KEEPALIVE_SECONDS: float = 15.0

    class Config:
        env_file = ".env"

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse comma-separated CORS origins into list"""
        return [origin.strip() for origin in self.CORS_ORIGINS.split(",") if origin.strip()]

    @property
    def redis_enabled(self) -> bool:
        return bool(self.REDIS_HOST)

settings = Settings()
