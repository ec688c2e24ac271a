"""
Configuration for the process sequence pipeline.
"""
import os
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv

from .artifact import ImageQuality


@dataclass
class Settings:
    """Runtime settings loaded from environment variables"""

    # OpenRouter
    openrouter_api_key: str = ""
    openrouter_base_url: str = "https://openrouter.ai/api/v1"

    # Models
    text_model: str = "google/gemini-2.5-flash"
    image_model_fast: str = "google/gemini-2.5-flash-image-preview"
    image_model_high: str = "google/gemini-3-pro-image-preview"
    reasoning_effort: Optional[str] = "minimal"

    # Timeouts (seconds); process mode renders busier scenes than single images
    text_timeout: float = 60.0
    image_timeout: float = 120.0
    process_image_timeout: float = 300.0

    # Retry configuration
    max_retries: int = 3
    retry_initial_delay: float = 2.0

    # Prompt composition
    digest_description_limit: int = 160

    # Output
    output_dir: str = "data"
    llm_log_path: str = "llm_log.txt"

    # Logging
    log_level: str = "INFO"

    def image_model_for(self, quality: ImageQuality) -> str:
        return self.image_model_high if quality == ImageQuality.HIGH else self.image_model_fast


def load_settings(dotenv: bool = True) -> Settings:
    """Load settings from the environment, reading a .env file first"""
    if dotenv:
        load_dotenv()

    return Settings(
        openrouter_api_key=os.getenv('OPENROUTER_API_KEY', ''),
        openrouter_base_url=os.getenv('OPENROUTER_BASE_URL', 'https://openrouter.ai/api/v1'),

        text_model=os.getenv('TEXT_MODEL', 'google/gemini-2.5-flash'),
        image_model_fast=os.getenv('IMAGE_MODEL_FAST', 'google/gemini-2.5-flash-image-preview'),
        image_model_high=os.getenv('IMAGE_MODEL_HIGH', 'google/gemini-3-pro-image-preview'),
        reasoning_effort=os.getenv('REASONING_EFFORT', 'minimal') or None,

        text_timeout=float(os.getenv('TEXT_TIMEOUT', '60')),
        image_timeout=float(os.getenv('IMAGE_TIMEOUT', '120')),
        process_image_timeout=float(os.getenv('PROCESS_IMAGE_TIMEOUT', '300')),

        max_retries=int(os.getenv('MAX_RETRIES', '3')),
        retry_initial_delay=float(os.getenv('RETRY_INITIAL_DELAY', '2.0')),

        digest_description_limit=int(os.getenv('DIGEST_DESCRIPTION_LIMIT', '160')),

        output_dir=os.getenv('OUTPUT_DIR', 'data'),
        llm_log_path=os.getenv('LLM_LOG_PATH', 'llm_log.txt'),

        log_level=os.getenv('LOG_LEVEL', 'INFO'),
    )
