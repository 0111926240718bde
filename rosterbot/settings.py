import os

from dotenv import load_dotenv
from pydantic import BaseModel, Field

load_dotenv()


class Settings(BaseModel):
    # Chat platform configuration
    discord_bot_token: str = Field(default="", alias="DISCORD_BOT_TOKEN")
    discord_api_base: str = Field(
        default="https://discord.com/api/v10", alias="DISCORD_API_BASE"
    )
    discord_request_timeout: float = Field(default=10.0, alias="DISCORD_REQUEST_TIMEOUT")

    # Cache store configuration (empty URL keeps everything in-process)
    redis_url: str = Field(default="", alias="REDIS_URL")
    roster_cache_ttl: int = Field(default=1800, alias="ROSTER_CACHE_TTL")
    roster_filtered_cache_ttl: int = Field(
        default=600, alias="ROSTER_FILTERED_CACHE_TTL"
    )
    roster_stale_retention: float = Field(default=2.0, alias="ROSTER_STALE_RETENTION")

    # Strategy deadlines (seconds)
    roster_cache_timeout: float = Field(default=1.0, alias="ROSTER_CACHE_TIMEOUT")
    roster_partial_timeout: float = Field(default=5.0, alias="ROSTER_PARTIAL_TIMEOUT")
    roster_full_timeout: float = Field(default=8.0, alias="ROSTER_FULL_TIMEOUT")

    # Pagination limits
    roster_partial_limit: int = Field(default=500, alias="ROSTER_PARTIAL_LIMIT")
    roster_full_limit: int = Field(default=2000, alias="ROSTER_FULL_LIMIT")
    roster_chunk_size: int = Field(default=100, alias="ROSTER_CHUNK_SIZE")
    roster_max_chunks: int = Field(default=20, alias="ROSTER_MAX_CHUNKS")
    roster_chunk_delay: float = Field(default=0.2, alias="ROSTER_CHUNK_DELAY")
    roster_slow_query_seconds: float = Field(
        default=5.0, alias="ROSTER_SLOW_QUERY_SECONDS"
    )

    # Circuit breaker
    breaker_failure_threshold: int = Field(default=3, alias="BREAKER_FAILURE_THRESHOLD")
    breaker_success_threshold: int = Field(default=3, alias="BREAKER_SUCCESS_THRESHOLD")
    breaker_cooldown_seconds: float = Field(default=30.0, alias="BREAKER_COOLDOWN")

    # Cache warming
    warm_interval_seconds: int = Field(default=240, alias="WARM_INTERVAL")
    warm_guild_ids: str = Field(default="", alias="WARM_GUILD_IDS")
    warm_role_names: str = Field(default="", alias="WARM_ROLE_NAMES")

    @property
    def warm_guilds(self) -> list[str]:
        return [g.strip() for g in self.warm_guild_ids.split(",") if g.strip()]

    @property
    def warm_roles(self) -> list[str]:
        return [r.strip() for r in self.warm_role_names.split(",") if r.strip()]


global_settings = Settings.model_validate(dict(os.environ))
