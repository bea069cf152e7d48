from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    model_config = SettingsConfigDict(env_file=".env")

    app_name: str = "catalogsync"
    debug: bool = False

    database_url: str = "postgresql+asyncpg://localhost:5432/catalogsync"

    justtcg_api_key: str = ""
    justtcg_base_url: str = "https://api.justtcg.com/v1"

    # Provider paging and resilience
    provider_page_size: int = 100
    provider_timeout_seconds: float = 60.0
    provider_max_retries: int = 5
    provider_backoff_base_seconds: float = 0.5
    provider_backoff_max_seconds: float = 30.0
    provider_requests_per_minute: int = 400
    provider_burst: int = 10

    # Rows per INSERT statement when writing catalog tables
    db_chunk_size: int = 400

    # A job left running longer than this is considered orphaned
    job_liveness_minutes: int = 30

    # A synced set is not re-synced inside this window
    sync_cooldown_hours: float = 12.0

    # Queue drain defaults
    queue_max_concurrency: int = 3
    queue_max_batches: int = 10
    queue_batch_size: int = 5
    queue_time_budget_seconds: float = 45.0


settings = Settings()


# =============================================================================
# CATALOG SCOPE
# =============================================================================

DEFAULT_PROVIDER = "justtcg"

# Games accepted by the rebuild trigger
VALID_GAME_SLUGS = ("pokemon", "pokemon-japan", "mtg")

# Internal game slug -> provider query parameters
GAME_API_PARAMS: dict[str, dict[str, str]] = {
    "pokemon": {"game": "pokemon"},
    "pokemon-japan": {"game": "pokemon", "region": "japan"},
    "mtg": {"game": "magic-the-gathering"},
}
