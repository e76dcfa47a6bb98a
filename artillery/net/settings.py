"""Peer protocol settings with defaults for local play."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Protocol settings, overridable via environment variables."""

    # Ready barrier: seconds to wait for every peer before forfeiting the
    # stragglers. None waits forever, which is how peers behave by default.
    BARRIER_TIMEOUT_S: float | None = None

    # Session
    MAX_PEERS: int = 7
    COMPRESS_SNAPSHOTS: bool = False

    # Ask followers for a board checksum after every shot
    VERIFY_CHECKSUMS: bool = True

    model_config = SettingsConfigDict(env_prefix="ARTILLERY_", env_file=".env", extra="ignore")


settings = Settings()
