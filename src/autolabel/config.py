"""
Autolabel Configuration
Pydantic Settings for all configurable options.
"""

import secrets
from pathlib import Path
from typing import List

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables or .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # --- API Security ---
    api_token: str = Field(default_factory=lambda: secrets.token_urlsafe(32))

    # --- Storage Paths ---
    storage_path: Path = Field(default=Path.home() / "_AUTOLABEL")
    state_file: Path = Field(default=Path.home() / "_AUTOLABEL" / "records.json")

    # --- Vision Model (Ollama) ---
    ollama_base_url: str = "http://localhost:11434"
    vision_model: str = "qwen2.5-vl:7b"
    vision_timeout_seconds: float = 120.0  # Vision models are slow
    max_image_size_mb: int = 50

    # --- Extraction Stage ---
    extraction_concurrency: int = 20  # Max in-flight vision calls

    # --- Naming ---
    naming_max_attempts: int = 1000  # Bound on the uniqueness loop
    naming_placeholder: str = "untitled"

    # --- Similarity Grouping ---
    description_threshold: float = 0.8
    description_weight: float = 0.8  # Flat contribution once threshold is met
    color_threshold: float = 0.5
    color_weight: float = 0.6
    time_window_seconds: float = 120.0  # +/- 2 minutes
    time_weight: float = 0.2
    grouping_min_score: float = 0.5  # Acceptance threshold for an anchor

    # --- Ingestion ---
    image_extensions: List[str] = Field(
        default_factory=lambda: ["jpg", "jpeg", "png", "heic", "heif"]
    )

    # --- Server ---
    api_host: str = "0.0.0.0"
    api_port: int = 3001

    def ensure_directories(self) -> None:
        """Create storage directories if they don't exist."""
        self.storage_path.mkdir(parents=True, exist_ok=True)
        self.state_file.parent.mkdir(parents=True, exist_ok=True)


# Global settings instance
settings = Settings()
