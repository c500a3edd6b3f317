"""
Application settings loaded from environment variables.
Uses pydantic-settings for type-safe configuration.
"""

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Relay settings with defaults for development."""

    # Listening endpoint (env PORT)
    host: str = "0.0.0.0"
    port: int = 5000
    ws_path: str = "/"

    # CORS - comma-separated list, "*" allows any origin
    allowed_origins: str = "*"

    # Peer registry
    max_clients: int = 10  # Handshakes beyond this are refused before accept

    # Liveness monitor
    heartbeat_interval: float = 30.0  # Seconds between sweeps
    heartbeat_timeout: float = 60.0  # Peer is evicted after this much silence

    # WebSocket transport
    ws_max_message_size: int = 64 * 1024  # 64 KB, SDP blobs fit comfortably
    ws_accept_timeout: float = 5.0
    # Protocol-level keepalive handled by uvicorn, independent of the monitor
    ws_ping_interval: float = 20.0
    ws_ping_timeout: float = 20.0

    # Shutdown
    shutdown_message: str = "Server is shutting down"

    # Environment
    environment: str = "development"
    debug: bool = True

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False

    @property
    def origins(self) -> list[str]:
        """Allowed CORS origins as a list."""
        return [o.strip() for o in self.allowed_origins.split(",") if o.strip()]

    def validate_production_settings(self) -> list[str]:
        """
        Validate settings that must be tightened for production.
        Returns a list of validation errors. Empty list means all checks pass.
        """
        errors = []

        if self.max_clients <= 0:
            errors.append("MAX_CLIENTS must be a positive integer")

        if self.heartbeat_timeout <= self.heartbeat_interval:
            errors.append(
                "HEARTBEAT_TIMEOUT must be greater than HEARTBEAT_INTERVAL "
                "or live peers will be evicted between probes"
            )

        if self.environment == "production":
            if self.debug:
                errors.append("DEBUG must be False in production")

            if "*" in self.origins:
                errors.append(
                    "ALLOWED_ORIGINS should list explicit origins in production"
                )

        return errors


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Convenience export
settings = get_settings()
