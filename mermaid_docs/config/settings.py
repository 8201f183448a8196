"""
Application Settings
===================

Main application settings and environment configuration using Pydantic Settings.
Supports development, testing, and production environments.
"""

import json
import tempfile
from pathlib import Path
from typing import List, Optional, Union

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


PAGE_SIZES = ("A4", "Letter", "Legal")
IMAGE_FORMATS = ("png", "jpeg", "svg")


class Settings(BaseSettings):
    """Main application settings with environment variable support."""

    # Application Configuration
    app_name: str = Field(default="Mermaid Docs", description="Application name")
    app_version: str = Field(default="1.0.0", description="Application version")
    environment: str = Field(
        default="development", description="Environment: development, testing, production"
    )
    log_level: str = Field(default="INFO", description="Logging level")
    log_file: Optional[Path] = Field(default=None, description="Optional rotating log file")

    # Browser Pool Configuration
    browser_pool_size: int = Field(default=2, ge=1, description="Maximum live browser instances")
    playwright_headless: bool = Field(default=True, description="Run browser in headless mode")
    browser_launch_timeout: int = Field(
        default=30000, description="Browser launch timeout in milliseconds"
    )
    browser_args: List[str] = Field(
        default=[
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
            "--disable-gpu",
        ],
        description="Extra Chromium command line flags",
    )

    # Rendering Configuration
    mermaid_script_url: str = Field(
        default="https://cdn.jsdelivr.net/npm/mermaid@10/dist/mermaid.min.js",
        description="Script URL of the Mermaid library loaded into the render page",
    )
    mermaid_version: str = Field(default="10", description="Mermaid major version in use")
    render_timeout: float = Field(
        default=60.0, gt=0, description="Per-stage render wait in seconds"
    )
    very_complex_render_timeout: float = Field(
        default=90.0, gt=0, description="Per-stage render wait for very complex diagrams"
    )
    default_page_size: str = Field(default="A4", description="Default page size name")
    default_image_format: str = Field(default="png", description="Default diagram format")

    # Cache Configuration
    cache_enabled: bool = Field(default=True, description="Enable the diagram cache")
    cache_ttl: int = Field(
        default=3600, ge=0, description="Cache TTL in seconds, 0 disables expiry"
    )
    cache_max_size_mb: float = Field(default=100, gt=0, description="Cache size budget in MB")
    cache_dir: Path = Field(
        default=Path(tempfile.gettempdir()) / "mermaid-converter-cache",
        description="Directory for cache side files",
    )
    cache_persist: bool = Field(default=True, description="Write cache entries to side files")
    cache_key_include_library_version: bool = Field(
        default=False, description="Mix the Mermaid version into cache keys"
    )

    # Host Configuration
    idle_shutdown_seconds: float = Field(
        default=30.0, ge=0, description="Tear down the browser pool after this idle period"
    )
    validation_timeout: float = Field(default=30.0, gt=0, description="Syntax validation timeout")
    extraction_timeout: float = Field(default=120.0, gt=0, description="Diagram extraction timeout")
    conversion_timeout: float = Field(default=300.0, gt=0, description="Full conversion timeout")
    max_input_bytes: int = Field(
        default=10 * 1024 * 1024, gt=0, description="Largest accepted Markdown input"
    )
    max_concurrent_renders: Optional[int] = Field(
        default=None, ge=1, description="Concurrent renders per service, defaults to pool size"
    )

    # PDF Configuration
    pdf_margin_top: str = Field(default="20mm")
    pdf_margin_right: str = Field(default="20mm")
    pdf_margin_bottom: str = Field(default="20mm")
    pdf_margin_left: str = Field(default="20mm")
    pdf_print_background: bool = Field(default=True)

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        """Validate environment value."""
        allowed = {"development", "testing", "production"}
        if v not in allowed:
            raise ValueError(f"Environment must be one of: {allowed}")
        return v

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in allowed:
            raise ValueError(f"Log level must be one of: {allowed}")
        return v.upper()

    @field_validator("default_page_size")
    @classmethod
    def validate_page_size(cls, v: str) -> str:
        """Validate default page size."""
        if v not in PAGE_SIZES:
            raise ValueError(f"Page size must be one of: {PAGE_SIZES}")
        return v

    @field_validator("default_image_format")
    @classmethod
    def validate_image_format(cls, v: str) -> str:
        """Validate default image format."""
        v = v.lower()
        if v not in IMAGE_FORMATS:
            raise ValueError(f"Image format must be one of: {IMAGE_FORMATS}")
        return v

    @field_validator("browser_args", mode="before")
    @classmethod
    def parse_browser_args(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse browser args from a JSON list or a comma-separated string."""
        if isinstance(v, str):
            v = v.strip()
            if v.startswith("[") and v.endswith("]"):
                try:
                    return json.loads(v)
                except json.JSONDecodeError:
                    pass
            return [arg.strip() for arg in v.split(",") if arg.strip()]
        return v

    @property
    def pool_concurrency(self) -> int:
        """Number of renders a service lets through to the pool at once."""
        return self.max_concurrent_renders or self.browser_pool_size

    @property
    def pdf_margins(self) -> dict[str, str]:
        return {
            "top": self.pdf_margin_top,
            "right": self.pdf_margin_right,
            "bottom": self.pdf_margin_bottom,
            "left": self.pdf_margin_left,
        }

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, env_prefix="MERMAID_DOCS_"
    )


# Global settings instance - will be initialized when needed
settings = None


def get_settings() -> Settings:
    """Get the global settings instance."""
    global settings
    if settings is None:
        settings = Settings()
    return settings


def reload_settings() -> Settings:
    """Reload settings from environment."""
    global settings
    settings = Settings()
    return settings
