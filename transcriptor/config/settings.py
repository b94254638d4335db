import shutil
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class AssemblyAIConfig(BaseSettings):
    """Transcription provider configuration"""

    api_key: SecretStr | None = None
    base_url: str = "https://api.assemblyai.com"
    request_timeout_seconds: float = Field(default=60.0, gt=0)
    max_retries: int = Field(default=3, ge=1, le=10)
    retry_base_delay_seconds: float = Field(default=1.0, ge=0)
    poll_interval_seconds: float = Field(default=5.0, gt=0)
    max_poll_seconds: float = Field(default=30 * 60, gt=0)
    direct_upload_limit_mb: int = Field(default=500, ge=1)
    auto_chapters: bool = True
    word_boost: list[str] = ["JBA", "J B A", "J.B.A", "J-B-A"]
    boost_param: str = "high"

    @property
    def configured(self) -> bool:
        return bool(self.api_key and self.api_key.get_secret_value().strip())

    model_config = SettingsConfigDict(
        env_prefix="ASSEMBLYAI_",
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class AwsConfig(BaseSettings):
    """Static AWS credentials shared by boto3 clients"""

    access_key: Optional[str] = None
    secret_key: Optional[str] = None
    region: str = "us-east-1"

    model_config = SettingsConfigDict(
        env_prefix="AWS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class BedrockConfig(BaseSettings):
    """Amazon Bedrock configuration for code detection."""

    region: str = Field(
        default="us-east-1",
        validation_alias="BEDROCK_REGION",
    )
    model_id: str = Field(
        default="anthropic.claude-3-5-sonnet-20240620-v1:0",
        validation_alias="BEDROCK_MODEL_ID",
    )
    max_tokens: int = Field(
        default=4000,
        validation_alias="BEDROCK_MAX_TOKENS",
        ge=1,
        le=8192,
    )
    temperature: float = Field(
        default=0.1,
        validation_alias="BEDROCK_TEMPERATURE",
        ge=0.0,
        le=1.0,
    )
    top_p: float = Field(
        default=0.9,
        validation_alias="BEDROCK_TOP_P",
        ge=0.0,
        le=1.0,
    )
    api_key: SecretStr | None = Field(
        default=None,
        validation_alias="BEDROCK_API_KEY",
    )

    model_config = SettingsConfigDict(
        env_file=".env",
        secrets_dir=".secrets",
        case_sensitive=False,
        extra="ignore",
    )


class StorageConfig(BaseSettings):
    """Local file storage for sessions and media"""

    data_dir: Path = Path("data")
    uploads_dir: Path = Path("uploads")
    media_dir: Path = Path("media")
    sessions_file_name: str = "sessions.json"
    max_upload_bytes: int = Field(default=int(4.5 * 1024 * 1024 * 1024), ge=1)
    public_base_url: Optional[str] = None

    @property
    def sessions_file(self) -> Path:
        return self.data_dir / self.sessions_file_name

    def ensure_dirs(self) -> None:
        """Create the storage directories if they don't exist."""

        for directory in (self.data_dir, self.uploads_dir, self.media_dir):
            directory.mkdir(parents=True, exist_ok=True)

    model_config = SettingsConfigDict(
        env_prefix="STORAGE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class ExtractionConfig(BaseSettings):
    """ffmpeg audio extraction configuration"""

    ffmpeg_binary: str = Field(default_factory=lambda: shutil.which("ffmpeg") or "ffmpeg")
    sample_rate_hz: int = 44100
    channels: int = 2
    compressed_above_mb: int = 500
    lossless_above_mb: int = 100
    timeout_seconds: float = Field(default=60 * 60, gt=0)

    model_config = SettingsConfigDict(
        env_prefix="EXTRACTION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class DetectionConfig(BaseSettings):
    """Code detection tuning"""

    confidence_threshold: float = Field(default=0.7, ge=0.0, le=1.0)
    manual_confidence_threshold: float = Field(default=0.6, ge=0.0, le=1.0)
    max_transcript_chars: int = Field(default=15000, ge=100)
    transcript_window: Literal["tail", "head", "full"] = "tail"
    match_ratio: float = Field(default=0.7, gt=0.0, le=1.0)
    context_window_words: int = Field(default=50, ge=0)

    model_config = SettingsConfigDict(
        env_prefix="DETECTION_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


class Settings(BaseSettings):
    """Application settings"""

    app_name: str = "Transcriptor"
    app_version: str = "1.0.0"
    debug: bool = False
    host: str = "0.0.0.0"
    port: int = 3000
    log_file: str = "logs/app.log"
    pipeline_log_file: str = "logs/session_pipeline.log"
    transcript_log_file: str = "logs/transcripts.log"

    # Transcription provider
    assemblyai: AssemblyAIConfig = Field(default_factory=AssemblyAIConfig)

    # AWS
    aws: AwsConfig = Field(default_factory=AwsConfig)

    # Bedrock
    bedrock: BedrockConfig = Field(default_factory=BedrockConfig)

    # Storage
    storage: StorageConfig = Field(default_factory=StorageConfig)

    # ffmpeg
    extraction: ExtractionConfig = Field(default_factory=ExtractionConfig)

    # Code detection
    detection: DetectionConfig = Field(default_factory=DetectionConfig)

    # CORS
    cors_origins: list[str] = ["*"]
    cors_allow_credentials: bool = True
    cors_allow_methods: list[str] = ["*"]
    cors_allow_headers: list[str] = ["*"]

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )


# Global settings instance
settings = Settings()
