"""Configuration settings for the HiveMind core services."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    db_host: str = "localhost"
    db_port: int = 5432
    db_name: str = "hivemind"
    db_user: str = "hivemind"
    db_password: str = "hivemind"

    # Redis
    redis_url: str = "redis://localhost:6379/0"
    telemetry_publish_enabled: bool = False

    # Model gateway
    gateway_url: str = "http://localhost:8080"
    gateway_api_key: str | None = None
    provider_timeout: float = 60.0  # seconds

    # Consensus
    consensus_threshold: float = 0.85
    consensus_providers: list[str] = ["openai", "anthropic", "google"]

    # Time-travel debugging
    ai_fix_provider: str = "anthropic"
    ai_fix_model: str = "claude-3-5-sonnet-20241022"
    similar_candidate_limit: int = 50
    similarity_floor: float = 0.70
    similar_results_limit: int = 10

    log_level: str = "INFO"

    @property
    def database_url(self) -> str:
        """SQLAlchemy database URL."""
        return f"postgresql://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    @property
    def async_database_url(self) -> str:
        """Async SQLAlchemy database URL."""
        return f"postgresql+asyncpg://{self.db_user}:{self.db_password}@{self.db_host}:{self.db_port}/{self.db_name}"

    class Config:
        env_prefix = "HIVEMIND_"
        env_file = ".env"


# Global settings instance
settings = Settings()
