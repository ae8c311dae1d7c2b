"""Application configuration"""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Application
    app_name: str = "Token Ledger API"
    app_version: str = "0.1.0"
    debug: bool = True

    # API
    api_host: str = "0.0.0.0"
    api_port: int = 8000
    api_prefix: str = "/api/v1"

    # Ledger node
    rpc_url: str = "http://localhost:8545"
    token_address: str = "0x5FbDB2315678afecb367f032d93F642f64180aa3"

    # Retry / backoff around the event source
    retry_max_attempts: int = 3
    retry_base_delay: float = 2.0  # seconds
    retry_max_delay: float = 300.0  # seconds
    retry_jitter: float = 0.0  # fraction of the computed delay

    # Cap table
    balance_batch_size: int = 10

    # Transaction history paging
    estimated_events_per_index: int = 10
    default_page_size: int = 50
    max_page_size: int = 500
    event_query_chunk_size: int = 0  # 0 = query the whole range at once

    # CORS
    cors_origins: list[str] = ["http://localhost:3000", "http://127.0.0.1:3000"]

    class Config:
        env_file = ".env"
        env_file_encoding = "utf-8"


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()
