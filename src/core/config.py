"""Configuration settings for Incident Sync."""
from pathlib import Path
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # Server endpoints
    api_base_url: str = "http://localhost:3000/api/v1"
    ws_url: str = "ws://localhost:3000"
    health_path: str = "/health"
    incidents_path: str = "/incidents"
    page_limit: int = 20

    # Resync scheduling (seconds)
    resync_interval: float = 30.0
    resync_base_delay: float = 30.0
    resync_max_delay: float = 300.0
    resync_max_jitter: float = 5.0
    health_timeout: float = 5.0

    # Push channel reconnection (seconds)
    reconnect_delay: float = 2.0
    reconnect_delay_max: float = 10.0
    reconnect_attempts: int = 10
    connect_timeout: float = 20.0
    broadcast_ack_timeout: float = 10.0

    # Alert sound
    preferences_dir: Path = Path.home() / ".incident_sync" / "preferences"
    sound_file: str = "notification.mp3"
    sound_volume: float = 0.7

    class Config:
        env_prefix = "INCIDENT_SYNC_"
        env_file = ".env"


settings = Settings()
