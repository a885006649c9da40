"""Configuration loader for RouterWatch."""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel
from pydantic_settings import BaseSettings

API_PORTS = [8728, 8729, 80, 443]


class ConnectionConfig(BaseModel):
    ports: list[int] = API_PORTS
    tls_ports: list[int] = [8729, 443]
    verify_tls: bool = False
    connect_timeout: float = 10.0  # seconds, per port
    timeout_grace: float = 1.0  # extra time the race timer allows the client's own timeout


class PollingConfig(BaseModel):
    collect_interval: int = 60
    max_concurrent_collections: int = 20


class DiscoveryConfig(BaseModel):
    """Subnet scanning and credential cascade."""

    subnets: list[str] = []
    auto_discover: bool = False
    discover_interval: int = 3600  # seconds
    batch_size: int = 10
    max_hosts: int = 254
    probe_timeout: float = 3.0
    product_name: str = "MikroTik"
    ports: list[int] = API_PORTS
    usernames: list[str] = ["admin", "user", "mikrotik"]
    passwords: list[str] = ["", "admin", "mikrotik", "password", "routeros"]


class RetentionConfig(BaseModel):
    metrics_per_device: int = 1440
    alerts: int = 1000


class AppConfig(BaseModel):
    connection: ConnectionConfig = ConnectionConfig()
    polling: PollingConfig = PollingConfig()
    discovery: DiscoveryConfig = DiscoveryConfig()
    retention: RetentionConfig = RetentionConfig()


class Settings(BaseSettings):
    """Environment-based settings."""

    redis_url: str = "redis://localhost:6379"
    storage_backend: str = "redis"  # "redis" or "memory"
    dev_mode: bool = False  # forces in-memory storage
    log_level: str = "INFO"
    config_path: str = "../config/config.yaml"

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


def load_yaml_config(path: str) -> dict[str, Any]:
    """Load a YAML configuration file."""
    config_path = Path(path)
    if not config_path.is_absolute():
        config_path = Path(__file__).parent.parent / path

    if not config_path.exists():
        return {}

    with open(config_path) as f:
        return yaml.safe_load(f) or {}


def get_config() -> AppConfig:
    """Load and return the application configuration."""
    settings = Settings()
    yaml_config = load_yaml_config(settings.config_path)
    return AppConfig(**yaml_config)


# Singleton instance
settings = Settings()
