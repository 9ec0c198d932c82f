"""Application settings loaded from environment variables via pydantic-settings.

Two sources, in priority order:

  1. Environment variables, e.g. ``SPOTIFY_CLIENT_ID=abc``
  2. The ``.env`` file in the project root (local development)

Field ``spotify_client_id`` maps to env var ``SPOTIFY_CLIENT_ID``.  Defaults
apply when neither source sets a value.  Credentials default to the empty
string, meaning "not configured"; :meth:`Settings.require_credentials`
turns that into a :class:`ConfigurationError` at startup.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict

from setlist_import.utils.errors import ConfigurationError


class Settings(BaseSettings):
    """setlist-import application settings."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # === Upstream providers ===
    spotify_client_id: str = ""
    spotify_client_secret: str = ""
    ticketmaster_api_key: str = ""
    http_timeout_seconds: float = 30.0

    # === Canonical store ===
    database_path: str = "data/setlist_import.db"

    # === Import pipeline ===
    identity_timeout_ms: int = 200
    liveness_threshold: float = 0.8
    album_concurrency: int = 10
    venue_concurrency: int = 5
    batch_import_group_size: int = 3
    songs_per_setlist: int = 5
    recompute_trending: bool = True
    progress_queue_size: int = 100

    # === Cache ===
    cache_ttl_seconds: int = 3600
    cache_max_size: int = 2048

    # === App ===
    app_env: str = "development"
    app_host: str = "0.0.0.0"
    app_port: int = 8000
    log_level: str = "INFO"
    log_stream: str = "stdout"
    config_path: str = "config/config.yaml"

    def get_missing_credentials(self) -> list[str]:
        """Return the env var names of unset provider credentials."""
        missing: list[str] = []
        if not self.spotify_client_id:
            missing.append("SPOTIFY_CLIENT_ID")
        if not self.spotify_client_secret:
            missing.append("SPOTIFY_CLIENT_SECRET")
        if not self.ticketmaster_api_key:
            missing.append("TICKETMASTER_API_KEY")
        return missing

    def require_credentials(self) -> None:
        """Raise :class:`ConfigurationError` when any credential is unset."""
        missing = self.get_missing_credentials()
        if missing:
            raise ConfigurationError(
                message=f"Missing provider credentials: {', '.join(missing)}"
            )
