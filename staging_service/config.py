"""
Configuration settings for the Staged Message Queue Service
"""

from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings from environment variables"""

    # Service
    service_name: str = "instanthpi-staging"
    environment: str = "development"
    debug: bool = True

    # Staging queue timing
    initial_countdown: int = 60  # seconds before auto-send
    tick_interval_ms: int = 1000
    cancel_grace_ms: int = 500
    sent_grace_ms: int = 1000
    min_content_length: int = 1

    # Persistent store
    store_dir: str = ".staging-store"
    staging_queue_key: str = "instanthpi_staging_queue"

    # Spruce Health
    spruce_api_key: str = ""
    spruce_base_url: str = "https://api.sprucehealth.com/v1"
    spruce_timeout_seconds: float = 30.0

    # Azure OpenAI
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_deployment: str = "gpt-4"
    azure_openai_api_version: str = "2024-02-15-preview"

    # Alternative: OpenAI Direct
    openai_api_key: str = ""

    class Config:
        env_file = ".env"
        case_sensitive = False


@lru_cache()
def get_settings() -> Settings:
    return Settings()


settings = get_settings()
