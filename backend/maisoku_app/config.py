"""
Configuration management for the Maisoku Listing Extraction application.
Loads service credentials and settings from environment variables.
"""
import os
from typing import Optional
from dotenv import load_dotenv

# Load environment variables from .env file if it exists
load_dotenv()


class Config:
    """Configuration class for service credentials and settings."""

    # Extraction / vision service (Anthropic-compatible messages API)
    LLM_API_KEY: Optional[str] = os.getenv('LLM_API_KEY') or os.getenv('ANTHROPIC_API_KEY')
    LLM_API_BASE: str = os.getenv('LLM_API_BASE', 'https://api.anthropic.com/v1')
    LLM_API_VERSION: str = os.getenv('LLM_API_VERSION', '2023-06-01')
    LLM_MODEL: str = os.getenv('LLM_MODEL') or os.getenv('ANTHROPIC_MODEL') or 'claude-3-5-sonnet-20241022'
    LLM_TIMEOUT: int = int(os.getenv('LLM_TIMEOUT', '60'))
    LLM_TEMPERATURE: float = float(os.getenv('LLM_TEMPERATURE', '0.1'))
    EXTRACTION_MAX_TOKENS: int = int(os.getenv('EXTRACTION_MAX_TOKENS', '8000'))
    CLASSIFICATION_MAX_TOKENS: int = int(os.getenv('CLASSIFICATION_MAX_TOKENS', '1000'))

    # Rate Limiting
    MAX_TOTAL_CALLS: int = int(os.getenv('MAX_TOTAL_CALLS', '500'))
    ENABLE_RATE_LIMITING: bool = os.getenv('ENABLE_RATE_LIMITING', 'true').lower() == 'true'
    INTER_CALL_DELAY_SECONDS: float = float(os.getenv('INTER_CALL_DELAY_SECONDS', '0.5'))

    # Progress logs of finished sessions are kept this long for late readers
    PROGRESS_RETENTION_SECONDS: float = float(os.getenv('PROGRESS_RETENTION_SECONDS', '300'))

    # Batch processing
    MAX_FILE_CONCURRENCY: int = int(os.getenv('MAX_FILE_CONCURRENCY', '3'))
    PREVIEW_TEXT_CHARS: int = int(os.getenv('PREVIEW_TEXT_CHARS', '500'))
    EXTRACTION_TEXT_CHARS: int = int(os.getenv('EXTRACTION_TEXT_CHARS', '5000'))

    # Page rendering
    RENDER_DPI: int = int(os.getenv('RENDER_DPI', '150'))
    RENDER_MAX_WIDTH: int = int(os.getenv('RENDER_MAX_WIDTH', '800'))
    RENDER_MAX_HEIGHT: int = int(os.getenv('RENDER_MAX_HEIGHT', '1200'))

    # Object store (S3)
    AWS_PROFILE: Optional[str] = os.getenv('AWS_PROFILE')
    AWS_ACCESS_KEY_ID: Optional[str] = os.getenv('AWS_ACCESS_KEY_ID')
    AWS_SECRET_ACCESS_KEY: Optional[str] = os.getenv('AWS_SECRET_ACCESS_KEY')
    AWS_SESSION_TOKEN: Optional[str] = os.getenv('AWS_SESSION_TOKEN')
    AWS_REGION: str = os.getenv('AWS_REGION', 'ap-northeast-1')
    S3_BUCKET: Optional[str] = os.getenv('S3_BUCKET')
    S3_PUBLIC_BASE_URL: Optional[str] = os.getenv('S3_PUBLIC_BASE_URL')
    MOCK_STORAGE_BASE_URL: str = os.getenv('MOCK_STORAGE_BASE_URL', 'https://example.com')

    # Destination database (Notion)
    NOTION_API_TOKEN: Optional[str] = os.getenv('NOTION_API_TOKEN')
    NOTION_DATABASE_ID: Optional[str] = os.getenv('NOTION_DATABASE_ID')
    NOTION_API_BASE: str = os.getenv('NOTION_API_BASE', 'https://api.notion.com/v1')
    NOTION_VERSION: str = os.getenv('NOTION_VERSION', '2022-06-28')

    # API Settings
    API_HOST: str = os.getenv('API_HOST', '0.0.0.0')
    API_PORT: int = int(os.getenv('API_PORT', '8000'))
    CORS_ORIGINS: list = os.getenv('CORS_ORIGINS', 'http://localhost:3000').split(',')

    @classmethod
    def validate(cls) -> bool:
        """
        Validate that required configuration is present.
        """
        if not cls.LLM_API_KEY:
            raise ValueError(
                "LLM_API_KEY (or ANTHROPIC_API_KEY) environment variable is required."
            )

        # Check if temporary credentials (ASIA) are used without session token
        if cls.AWS_ACCESS_KEY_ID and cls.AWS_ACCESS_KEY_ID.startswith('ASIA'):
            if not cls.AWS_SESSION_TOKEN:
                raise ValueError(
                    "Temporary credentials (ASIA) detected but AWS_SESSION_TOKEN is not set.\n"
                    "Temporary credentials require a session token to work."
                )

        if cls.INTER_CALL_DELAY_SECONDS < 0:
            raise ValueError("INTER_CALL_DELAY_SECONDS must not be negative.")

        if cls.MAX_FILE_CONCURRENCY < 1:
            raise ValueError("MAX_FILE_CONCURRENCY must be at least 1.")
        return True

    @classmethod
    def get_boto3_config(cls) -> dict:
        """
        Get AWS configuration dictionary for boto3.
        """
        config = {'region_name': cls.AWS_REGION}

        if cls.AWS_PROFILE:
            return {'profile_name': cls.AWS_PROFILE, 'region_name': cls.AWS_REGION}
        elif cls.AWS_ACCESS_KEY_ID and cls.AWS_SECRET_ACCESS_KEY:
            config.update({
                'aws_access_key_id': cls.AWS_ACCESS_KEY_ID,
                'aws_secret_access_key': cls.AWS_SECRET_ACCESS_KEY
            })
            if cls.AWS_SESSION_TOKEN:
                config['aws_session_token'] = cls.AWS_SESSION_TOKEN

        return config
